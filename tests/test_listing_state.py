import pytest

from reloop.core.errors import InvalidTransition
from reloop.services import listing_state as ls


@pytest.mark.parametrize(
    "current,new",
    [
        (ls.ACTIVE, ls.PENDING),
        (ls.PENDING, ls.ACTIVE),
        (ls.PENDING, ls.COMPLETED),
        (ls.ACTIVE, ls.REMOVED),
        (ls.PENDING, ls.REMOVED),
    ],
)
def test_allowed_edges(current, new):
    assert ls.can_transition(current, new)


@pytest.mark.parametrize(
    "current,new",
    [
        (ls.ACTIVE, ls.COMPLETED),
        (ls.COMPLETED, ls.ACTIVE),
        (ls.COMPLETED, ls.REMOVED),
        (ls.REMOVED, ls.ACTIVE),
        (ls.EXPIRED, ls.ACTIVE),
    ],
)
def test_rejected_edges(current, new):
    assert not ls.can_transition(current, new)
    with pytest.raises(InvalidTransition):
        ls.check_transition(current, new)


def test_expiry_is_system_only():
    assert not ls.can_transition(ls.ACTIVE, ls.EXPIRED)
    assert ls.can_transition(ls.ACTIVE, ls.EXPIRED, system=True)
    assert ls.can_transition(ls.PENDING, ls.EXPIRED, system=True)
    assert not ls.can_transition(ls.EXPIRED, ls.EXPIRED, system=True)
