from __future__ import annotations

import logging
import random
from dataclasses import dataclass

from flask import current_app

from ..errors import BadRequest, Conflict, ServiceError
from ..extensions import db
from ..models import Event, EventStatus, Participant, Ticket, utcnow
from ..notifications import DispatchReport, dispatch, get_notifier
from ..repositories import EventRepository, ParticipantStore
from . import lifecycle
from .derangement import derange
from .events import get_event_or_404
from .gift_lists import gift_list_snapshot, participants_without_gift_items
from .tickets import issue_tickets, revoke_tickets


logger = logging.getLogger(__name__)

events = EventRepository()
participants = ParticipantStore()


@dataclass
class DrawResult:
    """What a caller may learn about a draw: never the pairing itself."""

    event: Event
    ticket_count: int
    notifications: DispatchReport

    @property
    def status(self) -> str:
        return self.event.status

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "ticketCount": self.ticket_count,
            "notificationsFailed": len(self.notifications.failed),
        }


def _format_names(names: list[str]) -> str:
    if len(names) == 1:
        return names[0]
    return f"{', '.join(names[:-1])} and {names[-1]}"


def _eligible_participants(event: Event) -> list[Participant]:
    verified = participants.find_verified_by_ids(event.participant_ids)

    if len(verified) < 2:
        raise BadRequest("At least two verified participants are required for a draw.")
    if len(verified) % 2 != 0:
        raise BadRequest(
            f"The draw needs an even number of verified participants; this event has {len(verified)}."
        )

    if current_app.config.get("DRAW_REQUIRE_GIFT_LISTS"):
        missing = set(participants_without_gift_items([p.id for p in verified]))
        if missing:
            names = [p.display_name for p in verified if p.id in missing]
            raise BadRequest(
                f"The draw cannot run until {_format_names(names)} "
                f"{'have' if len(names) > 1 else 'has'} added a gift list."
            )
    return verified


def _notify_draw(event: Event, tickets: list[Ticket], by_id: dict[int, Participant]) -> DispatchReport:
    notifier = get_notifier()
    jobs = []
    for ticket in tickets:
        giver = by_id[ticket.giver_id]
        receiver = by_id[ticket.receiver_id]
        jobs.append((
            giver.id,
            lambda giver=giver, receiver=receiver, code=ticket.code: notifier.send_draw_result(
                giver, receiver, gift_list_snapshot(receiver), code, event
            ),
        ))
    return dispatch(jobs, purpose="draw")


def draw_event(event_id: int, rng: random.Random | None = None) -> DrawResult:
    """
    Pairs every verified participant of the event with a recipient and emails
    each giver their ticket.

    Status, history and tickets are written in one transaction guarded by a
    conditional `active -> drawn` update, so a concurrent draw of the same
    event gets a Conflict instead of a second set of tickets. Emails go out
    after the commit; a failed email is reported, never rolled back.
    """
    event = get_event_or_404(event_id)
    lifecycle.ensure_can_draw(event.status)

    givers = _eligible_participants(event)
    receivers = derange(givers, rng=rng)

    try:
        if not events.compare_and_set_status(event.id, EventStatus.ACTIVE, EventStatus.DRAWN):
            raise Conflict("This event has already been drawn. Create a new event to redo it.")
        entry = events.append_draw_history_entry(event, drawn_at=utcnow())
        tickets = issue_tickets(event, entry, givers, receivers)
        db.session.commit()
    except ServiceError:
        db.session.rollback()
        raise
    except Exception:
        db.session.rollback()
        logger.exception("Draw for event %s failed; nothing was committed", event_id)
        raise

    logger.info("Event %s drawn: %d tickets issued", event.id, len(tickets))

    report = _notify_draw(event, tickets, {p.id: p for p in givers})
    if report.failed:
        logger.warning(
            "Event %s: %d of %d draw emails failed", event.id, len(report.failed), len(report.outcomes)
        )
    return DrawResult(event=event, ticket_count=len(tickets), notifications=report)


def undo_last_draw(event_id: int) -> Event:
    """
    Reverts `drawn -> active`, dropping the newest history entry and its
    tickets, then tells the roster the draw no longer holds.
    """
    event = get_event_or_404(event_id)
    lifecycle.ensure_can_undo(event.status, len(event.draw_history))

    try:
        if not events.compare_and_set_status(event.id, EventStatus.DRAWN, EventStatus.ACTIVE):
            raise Conflict("The event changed while the draw was being undone. Try again.")
        entry = event.draw_history[-1]
        revoked = revoke_tickets(entry.ticket_ids)
        events.remove_last_draw_history_entry(event)
        db.session.commit()
    except ServiceError:
        db.session.rollback()
        raise
    except Exception:
        db.session.rollback()
        logger.exception("Undo for event %s failed; nothing was committed", event_id)
        raise

    logger.info("Event %s: last draw undone, %d tickets revoked", event.id, revoked)

    notifier = get_notifier()
    roster = participants.find_verified_by_ids(event.participant_ids)
    dispatch(
        [(p.id, lambda p=p: notifier.send_undo_notice(p, event)) for p in roster],
        purpose="undo",
    )
    return event
