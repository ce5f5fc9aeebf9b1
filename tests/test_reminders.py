from datetime import datetime, timedelta

import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError

from agenda.domain.reminders.repository import ReminderRepository
from agenda.domain.reminders.sweeper import REMINDER_3H, REMINDER_24H, ReminderSweeper
from agenda.models import Appointment


CLIENT = "bruno@client.example"
NOW = datetime(2026, 3, 10, 12, 0, 0)


def reload(db, appointment):
    db.expire_all()
    return db.get(Appointment, appointment.id)


@pytest.fixture
def sweep_24h(session_factory, sender, clock):
    return ReminderSweeper(session_factory, sender, REMINDER_24H, clock=clock)


@pytest.fixture
def sweep_3h(session_factory, sender, clock):
    return ReminderSweeper(session_factory, sender, REMINDER_3H, clock=clock)


class TestReminderSweep:
    def test_sends_once_and_marks_sent(self, sweep_24h, db, sender, professional, make_appointment):
        appointment = make_appointment(professional, NOW + timedelta(hours=24))

        summary = sweep_24h.run()

        assert summary["sent"] == 1
        assert sender.subjects_for(CLIENT) == ["Reminder: appointment tomorrow at 12:00"]
        stored = reload(db, appointment)
        assert stored.reminder_24h_sent is True
        assert stored.reminder_24h_sending is False
        assert stored.reminder_24h_sending_at is None
        assert stored.reminder_24h_sent_at == NOW

    def test_second_sweep_skips_sent_reminder(self, sweep_24h, sender, professional, make_appointment):
        make_appointment(professional, NOW + timedelta(hours=24))
        sweep_24h.run()

        summary = sweep_24h.run()

        assert summary["sent"] == 0
        assert summary["skipped"] == {"already_sent": 1}
        assert len(sender.sent) == 1

    def test_window_edges_are_inclusive(self, sweep_24h, professional, make_appointment):
        make_appointment(professional, NOW + timedelta(minutes=1410))
        make_appointment(professional, NOW + timedelta(minutes=1470))
        make_appointment(professional, NOW + timedelta(minutes=1471))

        assert sweep_24h.run()["candidates"] == 2

    def test_three_hour_reminder_is_independent(
        self, sweep_3h, sweep_24h, db, sender, professional, make_appointment
    ):
        appointment = make_appointment(professional, NOW + timedelta(hours=3))

        assert sweep_24h.run()["candidates"] == 0
        assert sweep_3h.run()["sent"] == 1

        stored = reload(db, appointment)
        assert stored.reminder_3h_sent is True
        assert stored.reminder_24h_sent is False
        assert sender.subjects_for(CLIENT) == ["Reminder: appointment today at 15:00"]

    @pytest.mark.parametrize("status", ["Canceled", "Finished", "Problem"])
    def test_ineligible_status(self, sweep_24h, sender, professional, make_appointment, status):
        make_appointment(professional, NOW + timedelta(hours=24), status=status)

        summary = sweep_24h.run()

        assert summary["skipped"] == {"ineligible_status": 1}
        assert sender.sent == []

    def test_confirmed_appointments_get_reminders(self, sweep_24h, professional, make_appointment):
        make_appointment(professional, NOW + timedelta(hours=24), status="Confirmed")
        assert sweep_24h.run()["sent"] == 1

    def test_missing_email(self, sweep_24h, sender, professional, make_appointment):
        make_appointment(professional, NOW + timedelta(hours=24), client_email=None)

        assert sweep_24h.run()["skipped"] == {"missing_email": 1}
        assert sender.sent == []

    def test_failed_send_releases_lease_for_retry(
        self, sweep_24h, db, sender, professional, make_appointment
    ):
        appointment = make_appointment(professional, NOW + timedelta(hours=24))
        sender.failing.add(CLIENT)

        assert sweep_24h.run()["failed"] == 1
        stored = reload(db, appointment)
        assert stored.reminder_24h_sent is False
        assert stored.reminder_24h_sending is False
        assert "mailbox unavailable" in stored.reminder_24h_error

        sender.failing.clear()
        assert sweep_24h.run()["sent"] == 1
        assert reload(db, appointment).reminder_24h_error is None

    def test_fresh_lease_is_respected(self, sweep_24h, sender, professional, make_appointment):
        make_appointment(
            professional,
            NOW + timedelta(hours=24),
            reminder_24h_sending=True,
            reminder_24h_sending_at=NOW - timedelta(minutes=5),
        )

        assert sweep_24h.run()["skipped"] == {"locked": 1}
        assert sender.sent == []

    def test_stale_lease_is_reclaimed(self, sweep_24h, db, sender, professional, make_appointment):
        appointment = make_appointment(
            professional,
            NOW + timedelta(hours=24),
            reminder_24h_sending=True,
            reminder_24h_sending_at=NOW - timedelta(minutes=45),
        )

        assert sweep_24h.run()["sent"] == 1
        assert reload(db, appointment).reminder_24h_sent is True

    def test_overlapping_sweeps_send_once(
        self, session_factory, sender, clock, professional, make_appointment
    ):
        make_appointment(professional, NOW + timedelta(hours=24))
        first = ReminderSweeper(session_factory, sender, REMINDER_24H, clock=clock)
        second = ReminderSweeper(session_factory, sender, REMINDER_24H, clock=clock)
        summaries = []

        def run_second_sweep(to_email):
            if not summaries:
                summaries.append(second.run())

        sender.on_send = run_second_sweep

        assert first.run()["sent"] == 1
        assert summaries[0]["skipped"] == {"locked": 1}
        assert len(sender.sent) == 1

    def test_falls_back_to_scan_when_range_query_fails(
        self, sweep_24h, professional, make_appointment, monkeypatch
    ):
        make_appointment(professional, NOW + timedelta(hours=24))
        make_appointment(professional, NOW + timedelta(hours=30))

        def broken(db, start, end):
            raise OperationalError("SELECT ...", {}, Exception("missing index"))

        monkeypatch.setattr(ReminderRepository, "find_in_window", staticmethod(broken))

        summary = sweep_24h.run()

        assert summary["candidates"] == 1
        assert summary["sent"] == 1

    def test_reschedule_rearms_reminder(self, sweep_24h, db, clock, professional, make_appointment):
        from agenda.domain.scheduling.appointment_service import AppointmentService

        appointment = make_appointment(professional, NOW + timedelta(hours=24))
        sweep_24h.run()
        db.expire_all()

        AppointmentService(db, clock).reschedule_appointment(
            professional.id, appointment.id, NOW + timedelta(hours=24, minutes=20)
        )

        assert sweep_24h.run()["sent"] == 1

    def test_cancel_after_read_gets_no_reminder(
        self, sweep_24h, session_factory, sender, professional, make_appointment, monkeypatch
    ):
        appointment = make_appointment(professional, NOW + timedelta(hours=24))
        original = ReminderSweeper._skip_reason

        def cancel_after_check(sweeper, candidate):
            reason = original(sweeper, candidate)
            other = session_factory()
            try:
                other.execute(
                    update(Appointment).where(Appointment.id == appointment.id).values(status="Canceled")
                )
                other.commit()
            finally:
                other.close()
            return reason

        monkeypatch.setattr(ReminderSweeper, "_skip_reason", cancel_after_check)

        summary = sweep_24h.run()

        assert summary["sent"] == 0
        assert sender.sent == []

    def test_reschedule_during_send_keeps_new_slot_armed(
        self, sweep_24h, db, session_factory, sender, clock, professional, make_appointment
    ):
        from agenda.domain.scheduling.appointment_service import AppointmentService

        appointment = make_appointment(professional, NOW + timedelta(hours=24))
        new_slot = NOW + timedelta(hours=24, minutes=20)

        def reschedule_mid_send(to_email):
            sender.on_send = None
            other = session_factory()
            try:
                AppointmentService(other, clock).reschedule_appointment(
                    professional.id, appointment.id, new_slot
                )
            finally:
                other.close()

        sender.on_send = reschedule_mid_send

        assert sweep_24h.run()["sent"] == 1
        stored = reload(db, appointment)
        assert stored.date_time == new_slot
        assert stored.reminder_24h_sent is False
        assert stored.reminder_24h_sending is False
        assert stored.reminder_24h_sending_at is None

        assert sweep_24h.run()["sent"] == 1
        assert len(sender.sent) == 2
