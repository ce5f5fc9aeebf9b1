"""Shared fixtures: a throwaway SQLite database, a fixed clock and a recording email sender."""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from agenda import models  # noqa: F401 - register tables
from agenda.database import Base
from agenda.domain.notifications.change_feed import AppointmentChangeFeed
from agenda.domain.notifications.notifier import AppointmentNotifier
from agenda.errors import TransportError
from agenda.models import Appointment, Professional

# Naive UTC, like everything stored in the database
NOW = datetime(2026, 3, 10, 12, 0, 0)


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingEmailSender:
    """EmailSender that keeps every message and can be told to fail for some recipients"""

    def __init__(self):
        self.sent = []
        self.failing = set()
        self.on_send = None

    def send(self, to_email, to_name, subject, html):
        if self.on_send:
            self.on_send(to_email)
        if to_email in self.failing:
            raise TransportError(f"mailbox unavailable: {to_email}")
        self.sent.append({"to": to_email, "name": to_name, "subject": subject, "html": html})
        return f"msg-{len(self.sent)}"

    def subjects_for(self, to_email):
        return [m["subject"] for m in self.sent if m["to"] == to_email]


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'agenda_test.db'}", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return FakeClock(NOW)


@pytest.fixture
def sender():
    return RecordingEmailSender()


@pytest.fixture
def notifier(session_factory, sender):
    return AppointmentNotifier(session_factory, sender)


@pytest.fixture
def change_feed(session_factory, notifier):
    """Run the notifier inline for every committed appointment change"""
    events = []
    outcomes = []

    def dispatch(change):
        events.append(change)
        outcomes.append(notifier.handle(change))

    feed = AppointmentChangeFeed(dispatch)
    feed.register(session_factory)
    feed.events = events
    feed.outcomes = outcomes
    yield feed
    feed.unregister()


@pytest.fixture
def make_professional(db):
    def factory(**overrides):
        values = {
            "name": "Ana Souza",
            "email": "ana@studio.example",
            "timezone": "UTC",
            "plan": "trial",
            "buffer_before_minutes": 10,
            "buffer_after_minutes": 10,
        }
        values.update(overrides)
        professional = Professional(**values)
        db.add(professional)
        db.commit()
        db.refresh(professional)
        return professional

    return factory


@pytest.fixture
def professional(make_professional):
    return make_professional()


@pytest.fixture
def make_appointment(db):
    """Insert an appointment directly, bypassing holds (the unguarded path)"""

    def factory(professional, date_time, duration_minutes=50, **overrides):
        values = {
            "professional_id": professional.id,
            "client_name": "Bruno Lima",
            "client_email": "bruno@client.example",
            "service": "Consultation",
            "date_time": date_time,
            "duration_minutes": duration_minutes,
            "status": "Scheduled",
            "payment_status": "pending",
        }
        values.update(overrides)
        appointment = Appointment(**values)
        db.add(appointment)
        db.commit()
        db.refresh(appointment)
        return appointment

    return factory


@pytest.fixture(autouse=True)
def plain_mjml(monkeypatch):
    """Skip MJML compilation; tests assert on the rendered markup directly"""
    from agenda.domain.notifications import rendering

    monkeypatch.setattr(rendering, "compile_mjml_to_html", lambda mjml: mjml)
