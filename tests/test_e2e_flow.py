async def test_exchange_from_listing_to_ledger(client, users):
    alice, bob, carol = users["alice"], users["bob"], users["carol"]

    # 1) alice lists a sofa
    r = await client.post(
        "/v1/listings",
        headers=alice["headers"],
        json={"intent": "give", "title": "Grey sofa", "description": "Pick up only"},
    )
    assert r.status_code == 201, r.text
    listing_id = r.json()["id"]

    # 2) two people ask about it
    for user, text in ((bob, "Can I have it?"), (carol, "Still free?")):
        r = await client.post(
            "/v1/messages",
            headers=user["headers"],
            json={"receiverId": alice["user_id"], "text": text, "listingId": listing_id},
        )
        assert r.status_code == 201, r.text

    inbox = (await client.get("/v1/conversations", headers=alice["headers"], params={"box": "received"})).json()
    assert {c["other_user_id"] for c in inbox} == {bob["user_id"], carol["user_id"]}
    bob_thread = next(c["id"] for c in inbox if c["other_user_id"] == bob["user_id"])

    # 3) alice picks bob; the agreement lands in the existing thread
    r = await client.post(
        "/v1/agreements",
        headers={**alice["headers"], "Idempotency-Key": "sofa-bob"},
        json={"listingId": listing_id, "counterpartyId": bob["user_id"]},
    )
    assert r.status_code == 201, r.text
    agreement_id = r.json()["agreementId"]

    received = (await client.get("/v1/agreements", headers=bob["headers"], params={"role": "received"})).json()
    assert received[0]["conversation_id"] == bob_thread

    # 4) the listing is off the browse page while pending
    browse = (await client.get("/v1/listings")).json()
    assert listing_id not in [x["id"] for x in browse]

    # 5) carol cannot get an agreement for it now
    r = await client.post(
        "/v1/agreements",
        headers=alice["headers"],
        json={"listingId": listing_id, "counterpartyId": carol["user_id"]},
    )
    assert r.status_code == 400

    # 6) bob accepts
    r = await client.post(
        f"/v1/agreements/{agreement_id}/resolve", headers=bob["headers"], json={"outcome": "accept"}
    )
    assert r.status_code == 200, r.text
    assert r.json()["listing_status"] == "completed"

    # 7) ledger and notifications reflect the exchange
    given = (await client.get("/v1/transactions", headers=alice["headers"], params={"role": "given"})).json()
    assert [t["listing_id"] for t in given] == [listing_id]

    alice_types = {n["type"] for n in (await client.get("/v1/notifications", headers=alice["headers"])).json()}
    bob_types = {n["type"] for n in (await client.get("/v1/notifications", headers=bob["headers"])).json()}
    assert alice_types == {"message.sent", "agreement.resolved"}
    assert bob_types == {"agreement.proposed"}

    # 8) completed listings cannot be removed
    r = await client.delete(f"/v1/listings/{listing_id}", headers=alice["headers"])
    assert r.status_code == 409
