from __future__ import annotations

from ..errors import Conflict, NotFound
from ..models import EventStatus


# current status -> statuses it may move to
TRANSITIONS: dict[str, frozenset[str]] = {
    EventStatus.DRAFT: frozenset({EventStatus.ACTIVE, EventStatus.CANCELLED}),
    EventStatus.ACTIVE: frozenset({EventStatus.DRAWN, EventStatus.CANCELLED}),
    EventStatus.DRAWN: frozenset({EventStatus.ACTIVE}),
    EventStatus.CANCELLED: frozenset(),
}


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def ensure_transition(current: str, target: str) -> None:
    if not can_transition(current, target):
        raise Conflict(f"Cannot move event from '{current}' to '{target}'.")


def ensure_can_draw(status: str) -> None:
    if status == EventStatus.CANCELLED:
        raise Conflict("Cancelled events cannot be drawn.")
    if status == EventStatus.DRAWN:
        raise Conflict("This event has already been drawn. Create a new event to redo it.")
    ensure_transition(status, EventStatus.DRAWN)


def ensure_can_cancel(status: str) -> bool:
    """True when a transition is needed, False when already cancelled."""
    if status == EventStatus.CANCELLED:
        return False
    if status == EventStatus.DRAWN:
        raise Conflict("This event has already been drawn. Undo the draw before cancelling it.")
    ensure_transition(status, EventStatus.CANCELLED)
    return True


def ensure_can_undo(status: str, history_length: int) -> None:
    if status == EventStatus.CANCELLED:
        raise Conflict("Cancelled events cannot be changed.")
    if status != EventStatus.DRAWN or history_length == 0:
        raise NotFound("There is no draw to undo for this event.")
    ensure_transition(status, EventStatus.ACTIVE)
