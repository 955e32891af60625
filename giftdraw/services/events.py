from __future__ import annotations

import logging
from datetime import datetime
from typing import Sequence

from ..errors import BadRequest, Conflict, NotFound
from ..extensions import db
from ..models import Event, EventStatus, utcnow
from ..notifications import dispatch, get_notifier
from ..repositories import EventRepository, ParticipantStore
from . import lifecycle


logger = logging.getLogger(__name__)

MIN_NAME_LENGTH = 4
MIN_PARTICIPANTS = 2

events = EventRepository()
participants = ParticipantStore()


def get_event_or_404(event_id: int) -> Event:
    event = events.find_by_id(event_id)
    if event is None:
        raise NotFound("Event not found.")
    return event


def _unique(ids: Sequence[int]) -> list[int]:
    seen = []
    for participant_id in ids:
        if participant_id not in seen:
            seen.append(participant_id)
    return seen


def create_event(
    name: str,
    participant_ids: Sequence[int] | None = None,
    location: str | None = None,
    draw_at: datetime | None = None,
    moderator_email: str | None = None,
) -> Event:
    """
    Creates an `active` event. Without explicit ids the roster is every
    verified participant; either way at least two unique ids are required.
    """
    name = (name or "").strip()
    if len(name) < MIN_NAME_LENGTH:
        raise BadRequest(f"Give the event a descriptive name (at least {MIN_NAME_LENGTH} characters).")

    if participant_ids is None:
        roster = [p.id for p in participants.list_verified()]
    else:
        roster = _unique(participant_ids)
        missing = set(roster) - participants.find_existing_ids(roster)
        if missing:
            raise BadRequest(f"Unknown participant ids: {', '.join(str(i) for i in sorted(missing))}.")

    if len(roster) < MIN_PARTICIPANTS:
        raise BadRequest("An event needs at least two participants.")

    event = events.insert(
        name=name,
        status=EventStatus.ACTIVE,
        participant_ids=roster,
        location=(location or "").strip() or None,
        draw_at=draw_at,
        moderator_email=moderator_email,
    )
    db.session.commit()
    logger.info("Event %s created with %d participants", event.id, len(roster))
    return event


def list_events() -> list[Event]:
    return events.list_all()


def list_open_events() -> list[Event]:
    return events.list_all(status=EventStatus.ACTIVE)


def cancel_event(event_id: int) -> Event:
    event = get_event_or_404(event_id)
    if not lifecycle.ensure_can_cancel(event.status):
        return event
    # conditional write; a concurrent draw leaves the row in another state
    if not events.compare_and_set_status(event.id, event.status, EventStatus.CANCELLED):
        db.session.rollback()
        event = get_event_or_404(event_id)
        if not lifecycle.ensure_can_cancel(event.status):
            return event
        raise Conflict("The event changed while it was being cancelled. Try again.")
    db.session.commit()
    logger.info("Event %s cancelled", event.id)
    return event


def delete_event(event_id: int) -> None:
    event = get_event_or_404(event_id)
    events.delete(event)
    db.session.commit()
    logger.info("Event %s deleted with its draw history", event_id)


def get_event_history(event_id: int) -> dict:
    event = get_event_or_404(event_id)
    return {
        "id": event.id,
        "name": event.name,
        "status": event.status,
        "draws": [
            {"drawnAt": entry.drawn_at.isoformat(), "tickets": len(entry.tickets)}
            for entry in event.draw_history
        ],
    }


def include_participant(event_id: int, participant_id: int) -> Event:
    event = get_event_or_404(event_id)
    if participants.find_by_id(participant_id) is None:
        raise NotFound("Participant not found.")
    if events.add_participant(event, participant_id):
        db.session.commit()
    return event


def exclude_participant(event_id: int, participant_id: int) -> Event:
    event = get_event_or_404(event_id)
    if events.remove_participant(event, participant_id):
        db.session.commit()
    return event


def send_due_reminders(now: datetime | None = None) -> int:
    """Emails the moderator of each active event whose draw time has passed. Returns the count sent."""
    now = now or utcnow()
    due = [
        e for e in events.list_all(status=EventStatus.ACTIVE)
        if e.draw_at is not None and e.draw_at <= now and e.moderator_email and e.reminder_sent_at is None
    ]
    notifier = get_notifier()
    report = dispatch(
        [(e.id, lambda e=e: notifier.send_draw_reminder(e, len(e.roster))) for e in due],
        purpose="reminder",
    )
    delivered = {o.recipient_id for o in report.outcomes if o.delivered}
    for event in due:
        if event.id in delivered:
            event.reminder_sent_at = now
    db.session.commit()
    return len(delivered)


def event_summary(event: Event) -> dict:
    return {
        "id": event.id,
        "name": event.name,
        "location": event.location,
        "status": event.status,
        "participantIds": event.participant_ids,
        "participantCount": len(event.roster),
        "drawCount": len(event.draw_history),
        "drawAt": event.draw_at.isoformat() if event.draw_at else None,
        "moderatorEmail": event.moderator_email,
        "createdAt": event.created_at.isoformat(),
        "updatedAt": event.updated_at.isoformat(),
    }


def public_event_summary(event: Event) -> dict:
    return {
        "id": event.id,
        "name": event.name,
        "status": event.status,
        "participantCount": len(event.roster),
        "createdAt": event.created_at.isoformat(),
    }
