from __future__ import annotations

from reloop.core.errors import InvalidTransition

ACTIVE = "active"
PENDING = "pending"
COMPLETED = "completed"
EXPIRED = "expired"
REMOVED = "removed"

# owner (or agreement-driven) edges; pending -> active is the only backward move
_EDGES = {
    (ACTIVE, PENDING),
    (PENDING, ACTIVE),
    (PENDING, COMPLETED),
    (ACTIVE, REMOVED),
    (PENDING, REMOVED),
}


def can_transition(current: str, new: str, *, system: bool = False) -> bool:
    if new == EXPIRED:
        # time-based sweep only
        return system and current != EXPIRED
    return (current, new) in _EDGES


def check_transition(current: str, new: str, *, system: bool = False) -> None:
    if not can_transition(current, new, system=system):
        raise InvalidTransition(f"Listing cannot move from {current} to {new}")
