from __future__ import annotations

from datetime import datetime, timezone

from flask_login import UserMixin

from .extensions import db, login_manager
from .security import decrypt_ticket_receiver


def utcnow() -> datetime:
    """Naive UTC now; columns store UTC without tzinfo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class EventStatus:
    DRAFT = "draft"
    ACTIVE = "active"
    DRAWN = "drawn"
    CANCELLED = "cancelled"

    ALL = (DRAFT, ACTIVE, DRAWN, CANCELLED)


class GiftPriority:
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    ALL = (HIGH, MEDIUM, LOW)


class _ContactMixin:
    """Identity fields shared by pending and verified participants."""

    first_name = db.Column(db.String(64), nullable=False)
    last_name = db.Column(db.String(64), nullable=False)
    nickname = db.Column(db.String(64), nullable=True)
    email = db.Column(db.String(255), nullable=True, index=True)
    is_child = db.Column(db.Boolean, default=False, nullable=False)
    primary_guardian_email = db.Column(db.String(255), nullable=True)
    guardian_emails = db.Column(db.JSON, default=list, nullable=False)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def display_name(self) -> str:
        return self.nickname or self.full_name

    @property
    def contact_emails(self) -> list[str]:
        # Children are reached through their guardians.
        if not self.is_child:
            return [self.email] if self.email else []
        emails = []
        for address in [self.primary_guardian_email, *(self.guardian_emails or [])]:
            if address and address not in emails:
                emails.append(address)
        return emails


class Participant(_ContactMixin, UserMixin, db.Model):
    __tablename__ = "participants"

    id = db.Column(db.Integer, primary_key=True)
    email_verified = db.Column(db.Boolean, default=True, nullable=False)
    is_admin = False

    # one-time sign-in code, cleared once used
    code_hash = db.Column(db.String(255), nullable=True)
    code_expires_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    gift_items = db.relationship(
        "GiftItem",
        back_populates="participant",
        order_by="GiftItem.position",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        db.UniqueConstraint("email", name="uq_participants_email"),
    )

    def get_id(self) -> str:
        return f"participant:{self.id}"


class PendingParticipant(_ContactMixin, db.Model):
    """A registration waiting for its email code."""

    __tablename__ = "pending_participants"

    id = db.Column(db.Integer, primary_key=True)
    code_hash = db.Column(db.String(255), nullable=False)
    code_expires_at = db.Column(db.DateTime, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)


class GiftItem(db.Model):
    __tablename__ = "gift_items"

    id = db.Column(db.Integer, primary_key=True)
    participant_id = db.Column(
        db.Integer, db.ForeignKey("participants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position = db.Column(db.Integer, nullable=False, default=0)
    name = db.Column(db.String(120), nullable=False)
    url = db.Column(db.String(500), nullable=True)
    notes = db.Column(db.String(500), nullable=True)
    priority = db.Column(db.String(16), default=GiftPriority.MEDIUM, nullable=False)
    purchased = db.Column(db.Boolean, default=False, nullable=False)

    participant = db.relationship("Participant", back_populates="gift_items")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "url": self.url,
            "notes": self.notes,
            "priority": self.priority,
            "purchased": self.purchased,
        }


class EventParticipant(db.Model):
    """Roster row; `position` keeps the roster in insertion order."""

    __tablename__ = "event_participants"

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.Integer, db.ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    participant_id = db.Column(
        db.Integer, db.ForeignKey("participants.id", ondelete="CASCADE"), nullable=False
    )
    position = db.Column(db.Integer, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("event_id", "participant_id", name="uq_event_participant"),
    )


class Event(db.Model):
    __tablename__ = "events"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    location = db.Column(db.String(255), nullable=True)
    status = db.Column(db.String(16), default=EventStatus.ACTIVE, nullable=False, index=True)

    # Optional reminder for the organiser once the planned draw time has passed.
    draw_at = db.Column(db.DateTime, nullable=True)
    moderator_email = db.Column(db.String(255), nullable=True)
    reminder_sent_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    roster = db.relationship(
        "EventParticipant",
        order_by="EventParticipant.position",
        cascade="all, delete-orphan",
    )
    draw_history = db.relationship(
        "DrawHistoryEntry",
        back_populates="event",
        order_by="DrawHistoryEntry.id",
        cascade="all, delete-orphan",
    )

    @property
    def participant_ids(self) -> list[int]:
        return [row.participant_id for row in self.roster]


class DrawHistoryEntry(db.Model):
    __tablename__ = "draw_history"

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.Integer, db.ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    drawn_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    event = db.relationship("Event", back_populates="draw_history")
    tickets = db.relationship(
        "Ticket",
        back_populates="draw",
        order_by="Ticket.position",
        cascade="all, delete-orphan",
    )

    @property
    def ticket_ids(self) -> list[int]:
        return [t.id for t in self.tickets]


class Ticket(db.Model):
    __tablename__ = "tickets"

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.Integer, db.ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    draw_id = db.Column(db.Integer, db.ForeignKey("draw_history.id", ondelete="CASCADE"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)

    giver_id = db.Column(db.Integer, db.ForeignKey("participants.id"), nullable=False, index=True)
    # Encrypted receiver id (Fernet token). The pairing is never stored in plaintext.
    receiver_token = db.Column(db.Text, nullable=False)

    code = db.Column(db.String(16), unique=True, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    draw = db.relationship("DrawHistoryEntry", back_populates="tickets")

    @property
    def receiver_id(self) -> int:
        return decrypt_ticket_receiver(self.receiver_token)


class AdminUser(UserMixin):
    """The organiser session. Not stored; authenticated against ADMIN_PASSWORD_HASH."""

    id = "admin"
    is_admin = True

    def get_id(self) -> str:
        return self.id


@login_manager.user_loader
def load_user(user_id: str):
    if user_id == AdminUser.id:
        return AdminUser()
    kind, _, raw_id = user_id.partition(":")
    if kind != "participant" or not raw_id.isdigit():
        return None
    return db.session.get(Participant, int(raw_id))
