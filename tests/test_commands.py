from datetime import timedelta

from cryptography.fernet import Fernet

from giftdraw.extensions import db
from giftdraw.models import utcnow
from giftdraw.repositories import TicketStore
from giftdraw.security import init_ticket_cipher
from giftdraw.services.draws import draw_event


def test_send_draw_reminders(app, make_participant, make_event, outbox):
    make_event(
        [make_participant(), make_participant()],
        draw_at=utcnow() - timedelta(minutes=5),
        moderator_email="mod@example.com",
    )

    result = app.test_cli_runner().invoke(args=["send-draw-reminders"])

    assert "Reminders sent: 1" in result.output
    assert outbox[0].to == ["mod@example.com"]


def test_rotate_ticket_keys(app, make_participant, make_event):
    old_key = Fernet.generate_key().decode()
    new_key = Fernet.generate_key().decode()
    app.config["TICKET_ENC_KEYS"] = old_key
    init_ticket_cipher(app)

    a, b = make_participant(), make_participant()
    event = make_event([a, b])
    draw_event(event.id)

    app.config["TICKET_ENC_KEYS"] = f"{new_key},{old_key}"
    init_ticket_cipher(app)
    result = app.test_cli_runner().invoke(args=["rotate-ticket-keys"])
    assert "Tickets re-encrypted: 2" in result.output

    app.config["TICKET_ENC_KEYS"] = new_key
    init_ticket_cipher(app)
    db.session.expire_all()
    pairing = {t.giver_id: t.receiver_id for t in TicketStore().find_by_event(event.id)}
    assert pairing == {a.id: b.id, b.id: a.id}
