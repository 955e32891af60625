import itertools

import pytest

from giftdraw import create_app, shutdown_app
from giftdraw.extensions import db
from giftdraw.models import EventStatus, GiftItem, Participant
from giftdraw.notifications import get_notifier
from giftdraw.repositories import EventRepository


ADMIN_PASSWORD = "correct horse battery staple"


@pytest.fixture
def app():
    app = create_app({
        "TESTING": True,
        "SECRET_KEY": "test-secret",
        "SQLALCHEMY_DATABASE_URI": "sqlite://",
        "WTF_CSRF_ENABLED": False,
        "MAIL_BACKEND": "memory",
        "ADMIN_PASSWORD": ADMIN_PASSWORD,
        "ADMIN_PASSWORD_HASH": "",
        "TICKET_ENC_KEYS": "",
        "RATE_LIMIT_MAX_REQUESTS": 1000,
        "DRAW_REQUIRE_GIFT_LISTS": False,
    })
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()
    shutdown_app(app)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin_client(client):
    resp = client.post("/admin/login", json={"password": ADMIN_PASSWORD})
    assert resp.status_code == 200
    return client


@pytest.fixture
def outbox(app):
    return get_notifier().outbox


@pytest.fixture
def notifier(app):
    return get_notifier()


@pytest.fixture
def make_participant(app):
    counter = itertools.count(1)

    def factory(first_name=None, last_name="Tester", email=None, is_child=False,
                guardian_emails=(), verified=True, gift_items=()):
        n = next(counter)
        first_name = first_name or f"Person{n}"
        if not is_child and email is None:
            email = f"{first_name.lower()}.{n}@example.com"
        participant = Participant(
            first_name=first_name,
            last_name=last_name,
            email=email,
            is_child=is_child,
            primary_guardian_email=guardian_emails[0] if guardian_emails else None,
            guardian_emails=list(guardian_emails),
            email_verified=verified,
        )
        for position, name in enumerate(gift_items):
            participant.gift_items.append(GiftItem(position=position, name=name))
        db.session.add(participant)
        db.session.commit()
        return participant

    return factory


@pytest.fixture
def make_event(app):
    def factory(participants, name="Family Christmas", status=EventStatus.ACTIVE, **fields):
        event = EventRepository().insert(
            name=name,
            status=status,
            participant_ids=[p.id for p in participants],
            **fields,
        )
        db.session.commit()
        return event

    return factory
