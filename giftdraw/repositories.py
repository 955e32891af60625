from __future__ import annotations

from datetime import datetime
from typing import Iterable, Sequence

from sqlalchemy import select, update

from .extensions import db
from .models import DrawHistoryEntry, Event, EventParticipant, EventStatus, Participant, Ticket, utcnow
from .security import encrypt_ticket_receiver


class EventRepository:
    def insert(
        self,
        name: str,
        status: str = EventStatus.ACTIVE,
        participant_ids: Sequence[int] = (),
        **fields,
    ) -> Event:
        event = Event(name=name, status=status, **fields)
        for position, participant_id in enumerate(participant_ids):
            event.roster.append(EventParticipant(participant_id=participant_id, position=position))
        db.session.add(event)
        db.session.flush()
        return event

    def find_by_id(self, event_id: int) -> Event | None:
        return db.session.get(Event, event_id)

    def list_all(self, status: str | None = None) -> list[Event]:
        stmt = select(Event).order_by(Event.created_at.desc(), Event.id.desc())
        if status is not None:
            stmt = stmt.where(Event.status == status)
        return list(db.session.scalars(stmt))

    def update(self, event_id: int, **fields) -> Event | None:
        event = self.find_by_id(event_id)
        if event is None:
            return None
        for key, value in fields.items():
            setattr(event, key, value)
        event.updated_at = utcnow()
        db.session.flush()
        return event

    def compare_and_set_status(self, event_id: int, expected: str, new: str) -> bool:
        """Moves the status only if the row still holds `expected`."""
        result = db.session.execute(
            update(Event)
            .where(Event.id == event_id, Event.status == expected)
            .values(status=new, updated_at=utcnow())
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount == 1

    def add_participant(self, event: Event, participant_id: int) -> bool:
        if participant_id in event.participant_ids:
            return False
        next_position = max((row.position for row in event.roster), default=-1) + 1
        event.roster.append(EventParticipant(participant_id=participant_id, position=next_position))
        event.updated_at = utcnow()
        db.session.flush()
        return True

    def remove_participant(self, event: Event, participant_id: int) -> bool:
        for row in list(event.roster):
            if row.participant_id == participant_id:
                event.roster.remove(row)
                event.updated_at = utcnow()
                db.session.flush()
                return True
        return False

    def append_draw_history_entry(self, event: Event, drawn_at: datetime) -> DrawHistoryEntry:
        entry = DrawHistoryEntry(drawn_at=drawn_at)
        event.draw_history.append(entry)
        db.session.flush()
        return entry

    def remove_last_draw_history_entry(self, event: Event) -> DrawHistoryEntry | None:
        if not event.draw_history:
            return None
        entry = event.draw_history[-1]
        # tickets may already be gone; reload so the cascade sees the current rows
        db.session.expire(entry, ["tickets"])
        event.draw_history.remove(entry)
        db.session.flush()
        return entry

    def delete(self, event: Event) -> None:
        db.session.delete(event)
        db.session.flush()


class ParticipantStore:
    def find_by_id(self, participant_id: int) -> Participant | None:
        return db.session.get(Participant, participant_id)

    def find_verified_by_ids(self, ids: Sequence[int]) -> list[Participant]:
        """Verified participants among `ids`, in the order the ids were given."""
        if not ids:
            return []
        rows = db.session.scalars(
            select(Participant).where(Participant.id.in_(ids), Participant.email_verified.is_(True))
        )
        by_id = {p.id: p for p in rows}
        return [by_id[i] for i in ids if i in by_id]

    def find_existing_ids(self, ids: Iterable[int]) -> set[int]:
        ids = list(ids)
        if not ids:
            return set()
        return set(db.session.scalars(select(Participant.id).where(Participant.id.in_(ids))))

    def list_verified(self) -> list[Participant]:
        return list(
            db.session.scalars(
                select(Participant).where(Participant.email_verified.is_(True)).order_by(Participant.id)
            )
        )


class TicketStore:
    def create_many(
        self,
        event: Event,
        draw: DrawHistoryEntry,
        pairs: Sequence[tuple[int, int, str]],
    ) -> list[Ticket]:
        """`pairs` holds (giver_id, receiver_id, code) in draw order."""
        tickets = []
        for position, (giver_id, receiver_id, code) in enumerate(pairs):
            ticket = Ticket(
                event_id=event.id,
                position=position,
                giver_id=giver_id,
                receiver_token=encrypt_ticket_receiver(receiver_id),
                code=code,
            )
            draw.tickets.append(ticket)
            tickets.append(ticket)
        db.session.flush()
        return tickets

    def delete_by_ids(self, ticket_ids: Sequence[int]) -> int:
        if not ticket_ids:
            return 0
        tickets = list(db.session.scalars(select(Ticket).where(Ticket.id.in_(ticket_ids))))
        for ticket in tickets:
            db.session.delete(ticket)
        db.session.flush()
        return len(tickets)

    def find_by_event(self, event_id: int) -> list[Ticket]:
        return list(
            db.session.scalars(select(Ticket).where(Ticket.event_id == event_id).order_by(Ticket.id))
        )

    def count_for_event(self, event_id: int) -> int:
        return len(self.find_by_event(event_id))

    def existing_codes(self, codes: Iterable[str]) -> set[str]:
        codes = list(codes)
        if not codes:
            return set()
        return set(db.session.scalars(select(Ticket.code).where(Ticket.code.in_(codes))))

    def gives_in_drawn_event(self, participant_id: int) -> bool:
        stmt = (
            select(Ticket.id)
            .join(Event, Event.id == Ticket.event_id)
            .where(Ticket.giver_id == participant_id, Event.status == EventStatus.DRAWN)
            .limit(1)
        )
        return db.session.scalar(stmt) is not None
