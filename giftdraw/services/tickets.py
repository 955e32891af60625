from __future__ import annotations

import secrets
import string
from typing import Sequence

from ..models import DrawHistoryEntry, Event, Participant, Ticket
from ..repositories import TicketStore

TICKET_CODE_PREFIX = "TCK-"
TICKET_CODE_LENGTH = 6
_ALPHABET = string.ascii_uppercase + string.digits

tickets = TicketStore()


def generate_ticket_code() -> str:
    return TICKET_CODE_PREFIX + "".join(secrets.choice(_ALPHABET) for _ in range(TICKET_CODE_LENGTH))


def _unique_codes(count: int) -> list[str]:
    codes: list[str] = []
    while len(codes) < count:
        batch = {generate_ticket_code() for _ in range(count - len(codes))}
        batch -= set(codes)
        batch -= tickets.existing_codes(batch)
        codes.extend(sorted(batch))
    return codes


def issue_tickets(
    event: Event,
    draw: DrawHistoryEntry,
    givers: Sequence[Participant],
    receivers: Sequence[Participant],
) -> list[Ticket]:
    """One ticket per (givers[i], receivers[i]), each with a fresh code."""
    if len(givers) != len(receivers):
        raise ValueError("Every giver needs exactly one receiver.")
    codes = _unique_codes(len(givers))
    pairs = [(g.id, r.id, code) for g, r, code in zip(givers, receivers, codes)]
    return tickets.create_many(event, draw, pairs)


def revoke_tickets(ticket_ids: Sequence[int]) -> int:
    return tickets.delete_by_ids(ticket_ids)
