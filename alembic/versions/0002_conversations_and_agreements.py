from alembic import op
import sqlalchemy as sa

revision = "0002_conversations_and_agreements"
down_revision = "0001_identity_and_listings"
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "conversations",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("user_low", sa.String(length=64), nullable=False),
        sa.Column("user_high", sa.String(length=64), nullable=False),
        sa.Column("listing_id", sa.String(), sa.ForeignKey("listings.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("last_activity_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint("user_low < user_high", name="ck_conversation_pair_ordered"),
    )
    op.create_index(
        "uq_conversation_pair_listing",
        "conversations",
        ["user_low", "user_high", "listing_id"],
        unique=True,
        postgresql_where=sa.text("listing_id IS NOT NULL"),
        sqlite_where=sa.text("listing_id IS NOT NULL"),
    )
    op.create_index(
        "uq_conversation_pair_direct",
        "conversations",
        ["user_low", "user_high"],
        unique=True,
        postgresql_where=sa.text("listing_id IS NULL"),
        sqlite_where=sa.text("listing_id IS NULL"),
    )

    op.create_table(
        "conversation_participants",
        sa.Column("conversation_id", sa.String(), sa.ForeignKey("conversations.id"), primary_key=True),
        sa.Column("user_id", sa.String(length=64), primary_key=True),
        sa.Column("hidden", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("hidden_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_conversation_participants_user", "conversation_participants", ["user_id", "hidden"]
    )

    op.create_table(
        "messages",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("conversation_id", sa.String(), sa.ForeignKey("conversations.id"), nullable=False),
        sa.Column("sender_id", sa.String(length=64), nullable=False),
        sa.Column("receiver_id", sa.String(length=64), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_messages_conversation_created", "messages", ["conversation_id", "created_at"])
    op.create_index("ix_messages_receiver_unread", "messages", ["receiver_id", "read"])

    op.create_table(
        "agreements",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("listing_id", sa.String(), sa.ForeignKey("listings.id"), nullable=False),
        sa.Column("proposer_id", sa.String(length=64), nullable=False),
        sa.Column("counterparty_id", sa.String(length=64), nullable=False),
        sa.Column("conversation_id", sa.String(), sa.ForeignKey("conversations.id"), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("outcome", sa.String(length=20), nullable=True),
        sa.Column("resolved_by", sa.String(length=64), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint("proposer_id <> counterparty_id", name="ck_agreement_distinct_parties"),
        sa.CheckConstraint(
            "status IN ('pending', 'accepted', 'declined', 'withdrawn')", name="ck_agreement_status"
        ),
    )
    op.create_index(
        "uq_agreement_pending_pair",
        "agreements",
        ["listing_id", "counterparty_id"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
        sqlite_where=sa.text("status = 'pending'"),
    )
    op.create_index("ix_agreements_proposer", "agreements", ["proposer_id"])
    op.create_index("ix_agreements_counterparty", "agreements", ["counterparty_id"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("listing_id", sa.String(), sa.ForeignKey("listings.id"), nullable=False, unique=True),
        sa.Column("agreement_id", sa.String(), sa.ForeignKey("agreements.id"), nullable=False, unique=True),
        sa.Column("from_party", sa.String(length=64), nullable=False),
        sa.Column("to_party", sa.String(length=64), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_transactions_from_party", "transactions", ["from_party"])
    op.create_index("ix_transactions_to_party", "transactions", ["to_party"])


def downgrade():
    op.drop_table("transactions")
    op.drop_table("agreements")
    op.drop_table("messages")
    op.drop_table("conversation_participants")
    op.drop_table("conversations")
