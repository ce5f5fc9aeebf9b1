from datetime import datetime, timedelta

import pytest

from agenda.domain.scheduling.appointment_service import AppointmentService
from agenda.domain.scheduling.finalization_service import FinalizationService
from agenda.domain.scheduling.payment_service import PaymentService
from agenda.domain.scheduling.reservation_service import ReservationService
from agenda.errors import (
    ConflictError,
    InvalidArgumentError,
    NotFoundError,
    PreconditionFailedError,
)
from agenda.models import Appointment, Reservation

SLOT = datetime(2026, 3, 11, 14, 0)


@pytest.fixture
def reservations(db, clock):
    return ReservationService(db, clock)


@pytest.fixture
def finalizer(db, clock):
    return FinalizationService(db, clock)


@pytest.fixture
def held(reservations, professional):
    result = reservations.create_reservation(
        professional.id, "consultation", SLOT, 50, "Bruno Lima", "bruno@client.example"
    )
    return result["reservationId"]


class TestFinalizeReservation:
    def test_creates_one_appointment_and_consumes_hold(self, finalizer, db, professional, held):
        result = finalizer.finalize_reservation(professional.id, held)

        appointment = db.get(Appointment, result["appointmentId"])
        reservation = db.get(Reservation, held)
        assert appointment.reservation_id == held
        assert appointment.date_time == SLOT
        assert appointment.duration_minutes == 50
        assert appointment.client_email == "bruno@client.example"
        assert reservation.used is True
        assert reservation.appointment_id == appointment.id
        assert reservation.finalized_at is not None

    def test_second_finalize_is_rejected(self, finalizer, db, professional, held):
        finalizer.finalize_reservation(professional.id, held)
        with pytest.raises(PreconditionFailedError) as exc:
            finalizer.finalize_reservation(professional.id, held)
        assert exc.value.message == "Reservation already used"
        assert db.query(Appointment).count() == 1

    def test_unpaid_hold_becomes_scheduled(self, finalizer, db, professional, held):
        result = finalizer.finalize_reservation(professional.id, held)
        appointment = db.get(Appointment, result["appointmentId"])
        assert appointment.status == "Scheduled"
        assert appointment.payment_status == "pending"

    @pytest.mark.parametrize("payment_status", ["paid", "Pago", "Paid"])
    def test_paid_spellings_confirm(self, finalizer, db, professional, held, payment_status):
        result = finalizer.finalize_reservation(professional.id, held, payment_status)
        appointment = db.get(Appointment, result["appointmentId"])
        assert appointment.status == "Confirmed"
        assert appointment.payment_status == payment_status

    def test_paid_status_stored_on_hold_confirms(self, finalizer, db, professional, held):
        reservation = db.get(Reservation, held)
        reservation.payment_status = "Pago"
        db.commit()

        result = finalizer.finalize_reservation(professional.id, held)
        assert db.get(Appointment, result["appointmentId"]).status == "Confirmed"

    def test_other_spellings_are_not_paid(self, finalizer, db, professional, held):
        result = finalizer.finalize_reservation(professional.id, held, "PAID")
        assert db.get(Appointment, result["appointmentId"]).status == "Scheduled"

    def test_expired_hold(self, finalizer, professional, held, clock):
        clock.advance(minutes=16)
        with pytest.raises(PreconditionFailedError) as exc:
            finalizer.finalize_reservation(professional.id, held)
        assert exc.value.message == "Reservation expired"

    def test_unknown_hold(self, finalizer, professional):
        with pytest.raises(NotFoundError):
            finalizer.finalize_reservation(professional.id, "does-not-exist")

    def test_hold_of_another_professional(self, finalizer, make_professional, held):
        other = make_professional(name="Carla")
        with pytest.raises(NotFoundError):
            finalizer.finalize_reservation(other.id, held)

    def test_slot_taken_since_hold_was_placed(
        self, finalizer, db, professional, held, make_appointment
    ):
        make_appointment(professional, SLOT + timedelta(minutes=20))
        with pytest.raises(ConflictError):
            finalizer.finalize_reservation(professional.id, held)
        assert db.get(Reservation, held).used is False


class TestAppointmentChanges:
    @pytest.fixture
    def appointments(self, db, clock):
        return AppointmentService(db, clock)

    def test_reschedule_to_free_slot_resets_reminders(
        self, appointments, professional, make_appointment
    ):
        appointment = make_appointment(professional, SLOT, reminder_24h_sent=True)
        moved = appointments.reschedule_appointment(
            professional.id, appointment.id, SLOT + timedelta(days=1)
        )
        assert moved.date_time == SLOT + timedelta(days=1)
        assert moved.reminder_24h_sent is False

    def test_reschedule_into_conflict(self, appointments, professional, make_appointment):
        make_appointment(professional, SLOT)
        other = make_appointment(professional, SLOT + timedelta(hours=3))
        with pytest.raises(ConflictError):
            appointments.reschedule_appointment(
                professional.id, other.id, SLOT + timedelta(minutes=30)
            )

    def test_reschedule_ignores_itself(self, appointments, professional, make_appointment):
        appointment = make_appointment(professional, SLOT)
        moved = appointments.reschedule_appointment(
            professional.id, appointment.id, SLOT + timedelta(minutes=15)
        )
        assert moved.date_time == SLOT + timedelta(minutes=15)

    def test_cancel_frees_slot(self, appointments, reservations, professional, make_appointment):
        appointment = make_appointment(professional, SLOT)
        canceled = appointments.cancel_appointment(professional.id, appointment.id)
        assert canceled.status == "Canceled"

        result = reservations.create_reservation(professional.id, "consultation", SLOT, 50, "Dora")
        assert result["reservationId"]

    def test_canceled_cannot_be_rescheduled(self, appointments, professional, make_appointment):
        appointment = make_appointment(professional, SLOT, status="Canceled")
        with pytest.raises(PreconditionFailedError):
            appointments.reschedule_appointment(
                professional.id, appointment.id, SLOT + timedelta(days=1)
            )

    def test_unknown_status(self, appointments, professional, make_appointment):
        appointment = make_appointment(professional, SLOT)
        with pytest.raises(InvalidArgumentError):
            appointments.update_status(professional.id, appointment.id, "Lost")

    def test_list_by_local_day(self, appointments, professional, make_appointment):
        make_appointment(professional, SLOT)
        make_appointment(professional, SLOT + timedelta(days=1))
        listed = appointments.list_appointments(professional.id, SLOT)
        assert [a.date_time for a in listed] == [SLOT]


class TestPaymentSignals:
    @pytest.fixture
    def payments(self, db, clock):
        return PaymentService(db, clock)

    @pytest.fixture
    def with_preference(self, reservations, professional, held):
        reservations.attach_payment_preference(professional.id, held, "pref-1")
        return held

    def test_approved_payment_finalizes(self, payments, db, with_preference):
        result = payments.handle_payment_status("approved", preference_id="pref-1")

        assert result["status"] == "finalized"
        appointment = db.get(Appointment, result["appointmentId"])
        assert appointment.status == "Confirmed"
        assert db.get(Reservation, with_preference).payment_status == "paid"

    def test_repeated_approval_is_idempotent(self, payments, db, with_preference):
        first = payments.handle_payment_status("approved", preference_id="pref-1")
        second = payments.handle_payment_status("approved", preference_id="pref-1")

        assert second == {"status": "already_finalized", "appointmentId": first["appointmentId"]}
        assert db.query(Appointment).count() == 1

    def test_other_status_is_recorded(self, payments, db, with_preference):
        result = payments.handle_payment_status("rejected", preference_id="pref-1")

        assert result["status"] == "recorded"
        reservation = db.get(Reservation, with_preference)
        assert reservation.payment_status == "rejected"
        assert reservation.used is False

    def test_lookup_by_reservation_id(self, payments, held):
        result = payments.handle_payment_status("approved", reservation_id=held)
        assert result["status"] == "finalized"

    def test_requires_an_identifier(self, payments):
        with pytest.raises(InvalidArgumentError):
            payments.handle_payment_status("approved")

    def test_unknown_preference_is_acknowledged(self, payments, db):
        result = payments.handle_payment_status("approved", preference_id="nope")

        assert result == {"status": "unmatched", "note": "No matching reservation found"}
        assert db.query(Appointment).count() == 0

    def test_approval_on_expired_hold_is_acknowledged(self, payments, db, clock, with_preference):
        clock.advance(minutes=16)

        result = payments.handle_payment_status("approved", preference_id="pref-1")

        assert result == {
            "status": "not_finalized",
            "reservationId": with_preference,
            "reason": "Reservation expired",
        }
        assert db.query(Appointment).count() == 0
        assert db.get(Reservation, with_preference).used is False

    def test_approval_on_taken_slot_is_acknowledged(
        self, payments, db, professional, make_appointment, with_preference
    ):
        make_appointment(professional, SLOT)

        result = payments.handle_payment_status("approved", preference_id="pref-1")

        assert result["status"] == "not_finalized"
        assert db.query(Appointment).count() == 1
