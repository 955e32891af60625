from __future__ import annotations

import logging
from datetime import timedelta
from typing import Sequence

from flask import current_app
from sqlalchemy import delete, select

from ..errors import BadRequest, Conflict, DeliveryFailed, NotFound
from ..extensions import db
from ..models import EventParticipant, Participant, PendingParticipant, utcnow
from ..notifications import NotificationError, get_notifier
from ..repositories import TicketStore
from ..security import generate_verification_code, hash_secret, verify_secret
from .gift_lists import count_items_by_participant


logger = logging.getLogger(__name__)

tickets = TicketStore()


def normalize_email(value: str | None) -> str | None:
    value = (value or "").strip().lower()
    return value or None


def split_full_name(full_name: str) -> tuple[str, str]:
    parts = full_name.split()
    if len(parts) < 2:
        return (parts[0] if parts else ""), ""
    return " ".join(parts[:-1]), parts[-1]


def _guardian_list(primary: str | None, extras: Sequence[str]) -> list[str]:
    emails = []
    for address in [primary, *extras]:
        address = normalize_email(address)
        if address and address not in emails:
            emails.append(address)
    return emails


def _issue_code(record: PendingParticipant | Participant) -> str:
    code = generate_verification_code()
    ttl = current_app.config["VERIFICATION_TTL_MINUTES"]
    record.code_hash = hash_secret(code)
    record.code_expires_at = utcnow() + timedelta(minutes=ttl)
    return code


def _check_code(record: PendingParticipant | Participant, code: str | None) -> None:
    if record.code_hash is None or record.code_expires_at is None:
        raise BadRequest("Request a code first.")
    if record.code_expires_at < utcnow():
        raise BadRequest("The code has expired. Request a new one.")
    if not verify_secret((code or "").strip(), record.code_hash):
        raise BadRequest("Invalid code. Check the email we sent you.")


def _send_code(pending: PendingParticipant, code: str) -> None:
    try:
        get_notifier().send_verification_code(pending, code)
    except NotificationError as e:
        logger.warning("Verification code for pending registration %s not delivered: %s", pending.id, e)
        raise DeliveryFailed(
            "We could not send the verification email. Request a new code in a moment."
        ) from e


def register_participant(
    first_name: str | None = None,
    last_name: str | None = None,
    full_name: str | None = None,
    nickname: str | None = None,
    email: str | None = None,
    is_child: bool = False,
    primary_guardian_email: str | None = None,
    guardian_emails: Sequence[str] = (),
) -> PendingParticipant:
    if full_name and not (first_name and last_name):
        first_name, last_name = split_full_name(full_name)
    first_name = (first_name or "").strip()
    last_name = (last_name or "").strip()
    if not first_name or not last_name:
        raise BadRequest("Please enter your full name.")

    email = normalize_email(email)
    primary_guardian_email = normalize_email(primary_guardian_email)

    if is_child:
        if not primary_guardian_email:
            raise BadRequest("Children need a primary guardian email.")
        guardians = _guardian_list(primary_guardian_email, guardian_emails)
    else:
        if not email:
            raise BadRequest("Adults need a contact email.")
        if db.session.scalar(select(Participant.id).where(Participant.email == email)) is not None:
            raise Conflict("This email is already registered and verified.")
        db.session.execute(delete(PendingParticipant).where(PendingParticipant.email == email))
        guardians = []

    pending = PendingParticipant(
        first_name=first_name,
        last_name=last_name,
        nickname=(nickname or "").strip() or None,
        email=email,
        is_child=is_child,
        primary_guardian_email=primary_guardian_email if is_child else None,
        guardian_emails=guardians,
    )
    code = _issue_code(pending)
    db.session.add(pending)
    db.session.commit()

    _send_code(pending, code)
    logger.info("Pending registration %s created", pending.id)
    return pending


def verify_participant(pending_id: int, code: str) -> Participant:
    pending = db.session.get(PendingParticipant, pending_id)
    if pending is None:
        raise NotFound("Registration not found or already verified.")
    _check_code(pending, code)

    if pending.email and db.session.scalar(
        select(Participant.id).where(Participant.email == pending.email)
    ) is not None:
        raise Conflict("This email is already registered and verified.")

    participant = Participant(
        first_name=pending.first_name,
        last_name=pending.last_name,
        nickname=pending.nickname,
        email=pending.email,
        is_child=pending.is_child,
        primary_guardian_email=pending.primary_guardian_email,
        guardian_emails=list(pending.guardian_emails or []),
        email_verified=True,
        created_at=pending.created_at,
    )
    db.session.add(participant)
    db.session.delete(pending)
    db.session.commit()
    logger.info("Pending registration %s verified as participant %s", pending_id, participant.id)
    return participant


def resend_verification_code(pending_id: int) -> None:
    pending = db.session.get(PendingParticipant, pending_id)
    if pending is None:
        raise NotFound("Registration not found. Please register again.")
    code = _issue_code(pending)
    db.session.commit()
    _send_code(pending, code)


def _address_in_use(address: str, exclude_pending_id: int | None = None) -> str | None:
    in_participants = select(Participant.id).where(
        (Participant.email == address) | (Participant.primary_guardian_email == address)
    )
    if db.session.scalar(in_participants.limit(1)) is not None:
        return "This email is already used by a confirmed registration."
    in_pending = select(PendingParticipant.id).where(
        (PendingParticipant.email == address) | (PendingParticipant.primary_guardian_email == address)
    )
    if exclude_pending_id is not None:
        in_pending = in_pending.where(PendingParticipant.id != exclude_pending_id)
    if db.session.scalar(in_pending.limit(1)) is not None:
        return "This email is already used by another pending registration."
    return None


def update_pending_email(pending_id: int, new_email: str) -> PendingParticipant:
    """
    Fixes the contact address of a registration that is not confirmed yet and
    sends a fresh code there. For children the primary guardian address changes.
    Confirmed participants cannot change their address.
    """
    pending = db.session.get(PendingParticipant, pending_id)
    if pending is None:
        raise NotFound("Registration not found or already verified.")
    new_email = normalize_email(new_email)
    if not new_email:
        raise BadRequest("Enter a valid email address.")
    problem = _address_in_use(new_email, exclude_pending_id=pending.id)
    if problem:
        raise Conflict(problem)

    if pending.is_child:
        old_primary = pending.primary_guardian_email
        others = [g for g in pending.guardian_emails or [] if g != old_primary]
        pending.primary_guardian_email = new_email
        pending.guardian_emails = _guardian_list(new_email, others)
    else:
        pending.email = new_email
    code = _issue_code(pending)
    db.session.commit()

    _send_code(pending, code)
    logger.info("Pending registration %s changed its contact address", pending.id)
    return pending


def find_participant_by_address(address: str) -> Participant:
    """A confirmed participant by their email, or a child by the primary guardian's."""
    address = normalize_email(address)
    if not address:
        raise NotFound("No confirmed participant uses this email.")
    participant = db.session.scalar(select(Participant).where(Participant.email == address))
    if participant is None:
        participant = db.session.scalar(
            select(Participant)
            .where(Participant.primary_guardian_email == address)
            .order_by(Participant.id)
            .limit(1)
        )
    if participant is not None:
        return participant

    pending = db.session.scalar(
        select(PendingParticipant.id).where(
            (PendingParticipant.email == address) | (PendingParticipant.primary_guardian_email == address)
        ).limit(1)
    )
    if pending is not None:
        raise BadRequest("This registration is not confirmed yet. Use the code we emailed you.")
    raise NotFound("No confirmed participant uses this email.")


def request_login_code(email: str) -> Participant:
    participant = find_participant_by_address(email)
    code = _issue_code(participant)
    db.session.commit()
    try:
        get_notifier().send_login_code(participant, code)
    except NotificationError as e:
        logger.warning("Sign-in code for participant %s not delivered: %s", participant.id, e)
        raise DeliveryFailed("We could not send the sign-in email. Try again in a moment.") from e
    return participant


def login_participant(email: str, code: str) -> Participant:
    participant = find_participant_by_address(email)
    _check_code(participant, code)
    participant.code_hash = None
    participant.code_expires_at = None
    db.session.commit()
    logger.info("Participant %s signed in with an emailed code", participant.id)
    return participant


def get_participant(participant_id: int) -> Participant:
    participant = db.session.get(Participant, participant_id)
    if participant is None:
        raise NotFound("Participant not found.")
    return participant


def list_participants() -> list[Participant]:
    return list(db.session.scalars(select(Participant).order_by(Participant.first_name, Participant.last_name)))


def delete_participant(participant_id: int) -> None:
    participant = get_participant(participant_id)
    if tickets.gives_in_drawn_event(participant.id):
        raise Conflict("This participant is part of a drawn event. Undo that draw first.")

    db.session.execute(delete(EventParticipant).where(EventParticipant.participant_id == participant.id))
    db.session.delete(participant)
    db.session.commit()
    logger.info("Participant %s removed", participant_id)


def participant_summary(participant: Participant, gift_count: int | None = None) -> dict:
    body = {
        "id": participant.id,
        "firstName": participant.first_name,
        "lastName": participant.last_name,
        "nickname": participant.nickname,
        "displayName": participant.display_name,
        "email": participant.email,
        "isChild": participant.is_child,
        "guardianEmails": list(participant.guardian_emails or []),
        "emailVerified": participant.email_verified,
        "createdAt": participant.created_at.isoformat(),
    }
    if gift_count is not None:
        body["giftCount"] = gift_count
    return body


def participant_summaries(participants: Sequence[Participant]) -> list[dict]:
    counts = count_items_by_participant([p.id for p in participants])
    return [participant_summary(p, counts.get(p.id, 0)) for p in participants]
