"""Finalization service - converts a valid hold into an appointment"""

import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ...errors import NotFoundError, PreconditionFailedError
from ...models import Appointment, generate_public_id
from .payments import is_paid
from .repository import SchedulingRepository
from .schedule_guard import assert_no_appointment_conflict, load_professional, schedule_transaction
from .statuses import AppointmentStatus
from .time_windows import BufferPolicy, utcnow

logger = logging.getLogger(__name__)


class FinalizationService:
    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.repo = SchedulingRepository()
        self.clock = clock

    def finalize_reservation(
        self, professional_id: int, reservation_id: str, payment_status: Optional[str] = None
    ) -> dict:
        """
        Turn the hold into exactly one appointment.

        The hold is re-read inside the transaction; a used or expired hold is
        rejected, and the slot is checked again against appointments committed
        since the hold was placed.
        """
        now = self.clock()

        with schedule_transaction(self.db, "finalize_reservation"):
            professional = load_professional(self.db, professional_id)
            reservation = self.repo.get_reservation(self.db, reservation_id)
            if not reservation or reservation.professional_id != professional.id:
                raise NotFoundError("Reservation not found")
            if reservation.used:
                raise PreconditionFailedError("Reservation already used")
            if now > reservation.expires_at:
                raise PreconditionFailedError("Reservation expired")

            policy = BufferPolicy.for_professional(professional)
            window = policy.buffered_window(reservation.date_time, reservation.duration_minutes)
            assert_no_appointment_conflict(self.db, professional, policy, window)

            paid = is_paid(payment_status, reservation.payment_status)
            appointment = Appointment(
                id=generate_public_id(),
                professional_id=professional.id,
                reservation_id=reservation.id,
                service_id=reservation.service_id,
                service=reservation.service_id,
                client_name=reservation.client_name,
                client_email=reservation.client_email,
                date_time=reservation.date_time,
                duration_minutes=reservation.duration_minutes,
                status=(AppointmentStatus.CONFIRMED if paid else AppointmentStatus.SCHEDULED).value,
                payment_status=payment_status
                or reservation.payment_status
                or ("Pago" if paid else "pending"),
            )
            self.db.add(appointment)

            reservation.used = True
            reservation.finalized_at = now
            reservation.appointment_id = appointment.id
            reservation.payment_status = payment_status or (
                "paid" if paid else reservation.payment_status or "pending"
            )
            self.repo.claim_schedule(self.db, professional, now)

        logger.info(
            f"✅ Reservation {reservation_id} finalized as appointment {appointment.id} "
            f"({appointment.status})"
        )
        return {"appointmentId": appointment.id}
