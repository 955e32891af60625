from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass, field
from email.message import EmailMessage
from typing import Callable, Sequence

from flask import Flask, current_app, render_template

from .models import Event, Participant, PendingParticipant


logger = logging.getLogger(__name__)

EXTENSION_KEY = "giftdraw.notifier"


class NotificationError(RuntimeError):
    pass


@dataclass
class OutboundEmail:
    to: list[str]
    subject: str
    text: str
    html: str | None = None


class Notifier:
    """Composes messages from templates; subclasses decide how they leave the process."""

    def __init__(self, sender: str):
        self.sender = sender

    def deliver(self, message: OutboundEmail) -> None:
        raise NotImplementedError

    def _send(self, to: Sequence[str], subject: str, template: str, html: bool = False, **context) -> None:
        if not to:
            raise NotificationError(f"No address to send '{subject}' to.")
        message = OutboundEmail(
            to=list(to),
            subject=subject,
            text=render_template(f"email/{template}.txt", **context),
            html=render_template(f"email/{template}.html", **context) if html else None,
        )
        self.deliver(message)

    def send_verification_code(self, contact: PendingParticipant, code: str) -> None:
        ttl = current_app.config["VERIFICATION_TTL_MINUTES"]
        self._send(
            contact.contact_emails,
            "Your Secret Santa verification code",
            "verification",
            contact=contact,
            code=code,
            ttl_minutes=ttl,
        )

    def send_login_code(self, participant: Participant, code: str) -> None:
        self._send(
            participant.contact_emails,
            "Your Secret Santa sign-in code",
            "login_code",
            participant=participant,
            code=code,
            ttl_minutes=current_app.config["VERIFICATION_TTL_MINUTES"],
        )

    def send_draw_result(
        self,
        giver: Participant,
        receiver: Participant,
        gift_items: Sequence[dict],
        ticket_code: str,
        event: Event,
    ) -> None:
        self._send(
            giver.contact_emails,
            f"{event.name}: your Secret Santa match",
            "draw_result",
            html=True,
            giver=giver,
            receiver_name=receiver.display_name,
            gift_items=gift_items,
            ticket_code=ticket_code,
            event=event,
        )

    def send_undo_notice(self, participant: Participant, event: Event) -> None:
        self._send(
            participant.contact_emails,
            f"{event.name}: the draw was reversed",
            "draw_undone",
            participant=participant,
            event=event,
        )

    def send_draw_reminder(self, event: Event, participant_count: int) -> None:
        self._send(
            [event.moderator_email] if event.moderator_email else [],
            f"{event.name}: time to run the draw",
            "draw_reminder",
            event=event,
            participant_count=participant_count,
        )


class SmtpNotifier(Notifier):
    def __init__(
        self,
        sender: str,
        host: str,
        port: int,
        username: str | None = None,
        password: str | None = None,
        use_tls: bool = True,
        timeout: float = 15.0,
    ):
        super().__init__(sender)
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    def _build(self, message: OutboundEmail) -> EmailMessage:
        email = EmailMessage()
        email["From"] = self.sender
        email["To"] = ", ".join(message.to)
        email["Subject"] = message.subject
        email.set_content(message.text)
        if message.html:
            email.add_alternative(message.html, subtype="html")
        return email

    def deliver(self, message: OutboundEmail) -> None:
        try:
            email = self._build(message)
        except ValueError as e:
            raise NotificationError(f"Cannot compose '{message.subject}'") from e
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                if self.use_tls:
                    smtp.starttls()
                if self.username:
                    smtp.login(self.username, self.password or "")
                smtp.send_message(email)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError(f"SMTP delivery to {', '.join(message.to)} failed") from e


class MemoryNotifier(Notifier):
    """Keeps messages in `outbox` and logs them. For development and tests."""

    def __init__(self, sender: str):
        super().__init__(sender)
        self.outbox: list[OutboundEmail] = []
        self.fail_for: set[str] = set()

    def deliver(self, message: OutboundEmail) -> None:
        refused = self.fail_for.intersection(message.to)
        if refused:
            raise NotificationError(f"Delivery refused for {', '.join(sorted(refused))}")
        self.outbox.append(message)
        logger.info("Email queued in memory: to=%s subject=%r", message.to, message.subject)

    def sent_to(self, address: str) -> list[OutboundEmail]:
        return [m for m in self.outbox if address in m.to]


def init_notifier(app: Flask) -> Notifier:
    backend = app.config.get("MAIL_BACKEND", "memory")
    sender = app.config.get("MAIL_FROM") or "secret-santa@localhost"
    if backend == "smtp":
        if not app.config.get("SMTP_HOST"):
            raise RuntimeError("SMTP_HOST is required when MAIL_BACKEND is 'smtp'.")
        notifier: Notifier = SmtpNotifier(
            sender=sender,
            host=app.config["SMTP_HOST"],
            port=int(app.config.get("SMTP_PORT") or 587),
            username=app.config.get("SMTP_USERNAME"),
            password=app.config.get("SMTP_PASSWORD"),
            use_tls=bool(app.config.get("SMTP_USE_TLS", True)),
        )
    elif backend == "memory":
        notifier = MemoryNotifier(sender)
    else:
        raise RuntimeError(f"Unknown MAIL_BACKEND '{backend}'.")
    app.extensions[EXTENSION_KEY] = notifier
    return notifier


def get_notifier() -> Notifier:
    return current_app.extensions[EXTENSION_KEY]


# ---------------------------------------------------------------------------
# Fan-out with isolated failures
# ---------------------------------------------------------------------------


@dataclass
class DispatchOutcome:
    recipient_id: int
    delivered: bool
    error: str | None = None


@dataclass
class DispatchReport:
    outcomes: list[DispatchOutcome] = field(default_factory=list)

    @property
    def failed(self) -> list[DispatchOutcome]:
        return [o for o in self.outcomes if not o.delivered]

    @property
    def delivered_count(self) -> int:
        return sum(1 for o in self.outcomes if o.delivered)


def dispatch(jobs: Sequence[tuple[int, Callable[[], None]]], purpose: str) -> DispatchReport:
    """
    Runs each (recipient_id, send) job and records its outcome.
    A failed send is logged and reported; it never stops the other jobs,
    whether it failed in delivery or while composing the message.
    """
    report = DispatchReport()
    for recipient_id, send in jobs:
        try:
            send()
        except NotificationError as e:
            logger.warning("%s notification failed for recipient %s: %s", purpose, recipient_id, e)
            report.outcomes.append(DispatchOutcome(recipient_id, False, str(e)))
        except Exception as e:
            logger.exception("%s notification for recipient %s failed unexpectedly", purpose, recipient_id)
            report.outcomes.append(DispatchOutcome(recipient_id, False, f"{type(e).__name__}: {e}"))
        else:
            report.outcomes.append(DispatchOutcome(recipient_id, True))
    return report
