"""Appointment service - professional-facing changes to booked appointments"""

import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ...errors import InvalidArgumentError, NotFoundError, PreconditionFailedError
from ...models import Appointment
from .repository import SchedulingRepository
from .schedule_guard import (
    MAX_DURATION_MINUTES,
    assert_day_capacity,
    assert_no_appointment_conflict,
    assert_no_hold_conflict,
    load_professional,
    schedule_transaction,
)
from .statuses import AppointmentStatus
from .time_windows import BufferPolicy, TimeWindow, local_day_bounds, to_naive_utc, utcnow

logger = logging.getLogger(__name__)


class AppointmentService:
    """Service layer for appointment changes made by the professional"""

    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.repo = SchedulingRepository()
        self.clock = clock

    def get_appointment(self, professional_id: int, appointment_id: str) -> Appointment:
        appointment = self.repo.get_appointment(self.db, appointment_id, professional_id)
        if not appointment:
            raise NotFoundError("Appointment not found")
        return appointment

    def list_appointments(self, professional_id: int, day: Optional[datetime] = None) -> list:
        professional = load_professional(self.db, professional_id)
        if day is None:
            return self.repo.list_appointments(self.db, professional.id)
        start, end = local_day_bounds(to_naive_utc(day), professional.timezone)
        return self.repo.list_appointments(self.db, professional.id, start, end)

    def reschedule_appointment(
        self,
        professional_id: int,
        appointment_id: str,
        date_time: datetime,
        duration_minutes: Optional[int] = None,
    ) -> Appointment:
        """Move an appointment, applying the same day cap and buffered-overlap rules as a new hold"""
        start = to_naive_utc(date_time)
        now = self.clock()

        with schedule_transaction(self.db, "reschedule_appointment"):
            professional = load_professional(self.db, professional_id)
            appointment = self.get_appointment(professional.id, appointment_id)
            if appointment.status == AppointmentStatus.CANCELED.value:
                raise PreconditionFailedError("Canceled appointments cannot be rescheduled")

            duration = duration_minutes or appointment.duration_minutes
            if duration <= 0 or duration > MAX_DURATION_MINUTES:
                raise InvalidArgumentError("durationMinutes out of range")

            policy = BufferPolicy.for_professional(professional)
            window = TimeWindow.from_duration(start, duration).buffered(
                policy.buffer_before_minutes, policy.buffer_after_minutes
            )
            assert_day_capacity(
                self.db, professional, policy, start, exclude_appointment_id=appointment.id
            )
            assert_no_appointment_conflict(
                self.db, professional, policy, window, exclude_appointment_id=appointment.id
            )
            assert_no_hold_conflict(self.db, professional, policy, window, now)

            previous = appointment.date_time
            appointment.date_time = start
            appointment.duration_minutes = duration
            if start != previous:
                # The new slot gets its own reminders; a sweep still sending for the
                # old slot loses its lease
                for prefix in ("reminder_24h", "reminder_3h"):
                    setattr(appointment, f"{prefix}_sent", False)
                    setattr(appointment, f"{prefix}_sending", False)
                    setattr(appointment, f"{prefix}_sending_at", None)
                    setattr(appointment, f"{prefix}_error", None)
            self.repo.claim_schedule(self.db, professional, now)

        logger.info(f"🔄 Appointment {appointment_id} rescheduled to {start.isoformat()}")
        self.db.refresh(appointment)
        return appointment

    def cancel_appointment(self, professional_id: int, appointment_id: str) -> Appointment:
        return self.update_status(professional_id, appointment_id, AppointmentStatus.CANCELED.value)

    def update_status(self, professional_id: int, appointment_id: str, status: str) -> Appointment:
        try:
            new_status = AppointmentStatus(status)
        except ValueError as e:
            raise InvalidArgumentError(f"Unknown appointment status: {status}") from e

        now = self.clock()
        with schedule_transaction(self.db, "update_appointment_status"):
            professional = load_professional(self.db, professional_id)
            appointment = self.get_appointment(professional.id, appointment_id)
            if appointment.status == new_status.value:
                return appointment
            appointment.status = new_status.value
            self.repo.claim_schedule(self.db, professional, now)

        logger.info(f"✅ Appointment {appointment_id} status set to {new_status.value}")
        self.db.refresh(appointment)
        return appointment
