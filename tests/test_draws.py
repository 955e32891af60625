import random
import smtplib

import pytest

from giftdraw import create_app, shutdown_app
from giftdraw.errors import BadRequest, Conflict, NotFound
from giftdraw.extensions import db
from giftdraw.models import EventStatus
from giftdraw.notifications import EXTENSION_KEY as NOTIFIER_KEY, SmtpNotifier
from giftdraw.repositories import TicketStore
from giftdraw.services import draws
from giftdraw.services.draws import draw_event, undo_last_draw
from giftdraw.services.events import cancel_event


tickets = TicketStore()


def pairing(event_id):
    return {t.giver_id: t.receiver_id for t in tickets.find_by_event(event_id)}


@pytest.fixture
def four(make_participant):
    return [make_participant(first_name=name) for name in ("Ana", "Ben", "Cleo", "Dan")]


def test_draw_pairs_every_participant_with_someone_else(four, make_event):
    event = make_event(four)

    result = draw_event(event.id, rng=random.Random(7))

    assert result.status == EventStatus.DRAWN
    assert result.ticket_count == 4
    mapping = pairing(event.id)
    ids = {p.id for p in four}
    assert set(mapping) == ids
    assert set(mapping.values()) == ids
    assert all(giver != receiver for giver, receiver in mapping.items())
    assert len(event.draw_history) == 1


def test_two_participants_swap(make_participant, make_event):
    a = make_participant(first_name="Alice")
    b = make_participant(first_name="Bob")
    event = make_event([a, b])

    draw_event(event.id)

    assert pairing(event.id) == {a.id: b.id, b.id: a.id}


@pytest.mark.parametrize("count", [0, 1, 3])
def test_draw_rejects_too_few_or_odd_participants(count, make_participant, make_event):
    event = make_event([make_participant() for _ in range(count)])

    with pytest.raises(BadRequest):
        draw_event(event.id)

    assert event.status == EventStatus.ACTIVE
    assert tickets.count_for_event(event.id) == 0
    assert event.draw_history == []


def test_unverified_participants_are_left_out(make_participant, make_event):
    verified = [make_participant(), make_participant()]
    pending = make_participant(verified=False)
    event = make_event([*verified, pending])

    result = draw_event(event.id)

    assert result.ticket_count == 2
    assert pending.id not in pairing(event.id)


def test_drawing_twice_is_a_conflict_and_keeps_tickets(four, make_event):
    event = make_event(four)
    draw_event(event.id)
    before = pairing(event.id)

    with pytest.raises(Conflict):
        draw_event(event.id)

    assert pairing(event.id) == before
    assert len(event.draw_history) == 1


def test_cancelled_event_cannot_be_drawn(four, make_event):
    event = make_event(four)
    cancel_event(event.id)

    with pytest.raises(Conflict):
        draw_event(event.id)

    assert tickets.count_for_event(event.id) == 0


def test_unknown_event(app):
    with pytest.raises(NotFound):
        draw_event(999)


def test_lost_status_race_writes_nothing(four, make_event, monkeypatch):
    event = make_event(four)
    monkeypatch.setattr(draws.events, "compare_and_set_status", lambda *args: False)

    with pytest.raises(Conflict):
        draw_event(event.id)

    assert tickets.count_for_event(event.id) == 0
    assert event.draw_history == []


def test_storage_failure_rolls_back_everything(four, make_event, monkeypatch):
    event = make_event(four)

    def broken(*args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(draws, "issue_tickets", broken)

    with pytest.raises(RuntimeError):
        draw_event(event.id)

    db.session.expire_all()
    assert event.status == EventStatus.ACTIVE
    assert event.draw_history == []
    assert tickets.count_for_event(event.id) == 0


def test_round_trip_draw_undo_redraw(four, make_event):
    event = make_event(four)
    draw_event(event.id)
    first_codes = {t.code for t in tickets.find_by_event(event.id)}
    assert len(first_codes) == 4

    undo_last_draw(event.id)

    assert event.status == EventStatus.ACTIVE
    assert tickets.count_for_event(event.id) == 0
    assert event.draw_history == []

    draw_event(event.id)
    second_codes = {t.code for t in tickets.find_by_event(event.id)}
    assert len(second_codes) == 4
    assert first_codes.isdisjoint(second_codes)
    assert len(event.draw_history) == 1


def test_second_undo_fails_and_changes_nothing(four, make_event):
    event = make_event(four)
    draw_event(event.id)
    undo_last_draw(event.id)

    with pytest.raises(NotFound):
        undo_last_draw(event.id)

    assert event.status == EventStatus.ACTIVE
    assert event.draw_history == []
    assert tickets.count_for_event(event.id) == 0


def test_undo_without_draw(four, make_event):
    event = make_event(four)
    with pytest.raises(NotFound):
        undo_last_draw(event.id)


def test_undo_on_cancelled_event_is_a_conflict(four, make_event):
    event = make_event(four)
    cancel_event(event.id)
    with pytest.raises(Conflict):
        undo_last_draw(event.id)


def test_history_keeps_only_live_draws(four, make_event):
    event = make_event(four)
    draw_event(event.id)
    undo_last_draw(event.id)
    draw_event(event.id)

    assert len(event.draw_history) == 1
    assert len(event.draw_history[0].tickets) == 4


def test_each_giver_is_emailed_their_match(make_participant, make_event, outbox):
    a = make_participant(first_name="Alice", gift_items=["Scarf"])
    b = make_participant(first_name="Bob", gift_items=["Board game", "Socks"])
    event = make_event([a, b], location="Grandma's house")

    result = draw_event(event.id)

    assert result.notifications.delivered_count == 2
    by_code = {t.giver_id: t.code for t in tickets.find_by_event(event.id)}
    to_alice = [m for m in outbox if m.to == [a.email]]
    assert len(to_alice) == 1
    assert "Bob Tester" in to_alice[0].text
    assert "Board game" in to_alice[0].text
    assert by_code[a.id] in to_alice[0].text
    assert to_alice[0].html is not None


def test_children_are_reached_through_guardians(make_participant, make_event, outbox):
    child = make_participant(
        first_name="Mia", is_child=True, guardian_emails=["mum@example.com", "dad@example.com"]
    )
    adult = make_participant(first_name="Otto")
    event = make_event([child, adult])

    draw_event(event.id)

    assert any(m.to == ["mum@example.com", "dad@example.com"] for m in outbox)


def test_failed_email_does_not_stop_the_draw(four, make_event, notifier):
    event = make_event(four)
    notifier.fail_for.add(four[1].email)

    result = draw_event(event.id)

    assert result.status == EventStatus.DRAWN
    assert result.ticket_count == 4
    assert [o.recipient_id for o in result.notifications.failed] == [four[1].id]
    assert len(notifier.outbox) == 3
    assert tickets.count_for_event(event.id) == 4


def test_result_never_exposes_the_pairing(four, make_event):
    event = make_event(four)
    body = draw_event(event.id).to_dict()
    assert body == {"status": EventStatus.DRAWN, "ticketCount": 4, "notificationsFailed": 0}


def test_receivers_are_encrypted_at_rest(four, make_event):
    event = make_event(four)
    draw_event(event.id)

    for ticket in tickets.find_by_event(event.id):
        assert ticket.receiver_token != str(ticket.receiver_id)
        assert ticket.code.startswith("TCK-")


def test_undo_tells_the_roster(four, make_event, outbox):
    event = make_event(four)
    draw_event(event.id)
    outbox.clear()

    undo_last_draw(event.id)

    assert sorted(m.to[0] for m in outbox) == sorted(p.email for p in four)
    assert all("reversed" in m.subject for m in outbox)


def test_gift_lists_can_be_required(app, make_participant, make_event):
    app.config["DRAW_REQUIRE_GIFT_LISTS"] = True
    a = make_participant(first_name="Alice", gift_items=["Book"])
    b = make_participant(first_name="Bob")
    event = make_event([a, b])

    with pytest.raises(BadRequest) as exc:
        draw_event(event.id)

    assert "Bob Tester" in exc.value.message
    assert event.status == EventStatus.ACTIVE


def test_unexpected_send_error_is_reported_not_raised(four, make_event, notifier, monkeypatch):
    event = make_event(four)
    send = notifier.send_draw_result

    def flaky(giver, *args):
        if giver.id == four[0].id:
            raise RuntimeError("template exploded")
        return send(giver, *args)

    monkeypatch.setattr(notifier, "send_draw_result", flaky)

    result = draw_event(event.id)

    assert result.status == EventStatus.DRAWN
    assert [o.recipient_id for o in result.notifications.failed] == [four[0].id]
    assert "RuntimeError" in result.notifications.failed[0].error
    assert len(notifier.outbox) == 3


def test_header_breaking_event_name_does_not_fail_the_draw(app, four, make_event, monkeypatch):
    sent = []

    class RecordingSMTP:
        def __init__(self, host, port, timeout):
            pass

        def __enter__(self):
            return self

        def __exit__(self, *exc):
            return False

        def starttls(self):
            pass

        def send_message(self, message):
            sent.append(message)

    monkeypatch.setattr(smtplib, "SMTP", RecordingSMTP)
    monkeypatch.setitem(
        app.extensions, NOTIFIER_KEY, SmtpNotifier("santa@example.com", host="mail.example.com", port=587)
    )
    event = make_event(four, name="Office\nParty")

    result = draw_event(event.id)

    assert result.status == EventStatus.DRAWN
    assert result.ticket_count == 4
    assert len(result.notifications.failed) == 4
    assert sent == []


def test_gift_lists_are_required_by_default(monkeypatch):
    monkeypatch.delenv("DRAW_REQUIRE_GIFT_LISTS", raising=False)
    app = create_app({"SQLALCHEMY_DATABASE_URI": "sqlite://"})
    try:
        assert app.config["DRAW_REQUIRE_GIFT_LISTS"] is True
    finally:
        shutdown_app(app)
