"""Reservation service - temporary holds on a professional's time slots"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ...errors import InvalidArgumentError, NotFoundError, PreconditionFailedError
from ...models import Reservation
from .payments import is_approved
from .repository import SchedulingRepository
from .schedule_guard import (
    MAX_DURATION_MINUTES,
    assert_day_capacity,
    assert_no_appointment_conflict,
    assert_no_hold_conflict,
    load_professional,
    schedule_transaction,
)
from .time_windows import BufferPolicy, TimeWindow, to_naive_utc, utcnow

logger = logging.getLogger(__name__)


class ReservationService:
    """Creates holds and tracks their payment preference"""

    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.repo = SchedulingRepository()
        self.clock = clock

    def create_reservation(
        self,
        professional_id: int,
        service_id: str,
        date_time: datetime,
        duration_minutes: int,
        client_name: str,
        client_email: Optional[str] = None,
        gateway: Optional[str] = None,
    ) -> dict:
        """
        Place a hold on [date_time, date_time + duration) for the professional.

        Runs as one transaction: the professional row is read, the day cap and
        buffered overlaps are checked against appointments and live holds, and
        the hold is written together with a schedule version bump. A concurrent
        writer that committed in between makes the commit fail with
        InternalError; the caller retries.
        """
        if not professional_id or not service_id or not client_name or date_time is None:
            raise InvalidArgumentError(
                "professionalId, serviceId, dateTime and clientName are required"
            )
        if not duration_minutes or duration_minutes <= 0:
            raise InvalidArgumentError("durationMinutes must be a positive number of minutes")
        if duration_minutes > MAX_DURATION_MINUTES:
            raise InvalidArgumentError(f"durationMinutes cannot exceed {MAX_DURATION_MINUTES}")

        start = to_naive_utc(date_time)
        now = self.clock()

        with schedule_transaction(self.db, "create_reservation"):
            professional = load_professional(self.db, professional_id)
            policy = BufferPolicy.for_professional(professional)

            if start < now + timedelta(hours=policy.min_notice_hours):
                raise PreconditionFailedError(
                    "Insufficient notice",
                    details={"minNoticeHours": policy.min_notice_hours},
                )

            window = TimeWindow.from_duration(start, duration_minutes).buffered(
                policy.buffer_before_minutes, policy.buffer_after_minutes
            )
            assert_day_capacity(self.db, professional, policy, start)
            assert_no_appointment_conflict(self.db, professional, policy, window)
            assert_no_hold_conflict(self.db, professional, policy, window, now)

            reservation = Reservation(
                professional_id=professional.id,
                service_id=service_id,
                client_name=client_name,
                client_email=client_email or None,
                date_time=start,
                duration_minutes=duration_minutes,
                payment_gateway=gateway,
                payment_status="pending",
                used=False,
                expires_at=now + timedelta(minutes=policy.reservation_hold_minutes),
            )
            self.db.add(reservation)
            self.repo.claim_schedule(self.db, professional, now)

        logger.info(
            f"✅ Reservation {reservation.id} held for professional {professional_id} "
            f"until {reservation.expires_at.isoformat()}"
        )
        return {"reservationId": reservation.id, "expiresAt": reservation.expires_at}

    def get_reservation(self, reservation_id: str) -> Reservation:
        reservation = self.repo.get_reservation(self.db, reservation_id)
        if not reservation:
            raise NotFoundError("Reservation not found")
        return reservation

    def attach_payment_preference(
        self,
        professional_id: int,
        reservation_id: str,
        preference_id: str,
        gateway: Optional[str] = None,
    ) -> Reservation:
        """Store the payment gateway's preference id on an unused hold"""
        if not preference_id:
            raise InvalidArgumentError("preferenceId is required")

        reservation = self.repo.get_reservation(self.db, reservation_id)
        if not reservation or reservation.professional_id != professional_id:
            raise NotFoundError("Reservation not found")
        if reservation.used:
            raise PreconditionFailedError("Reservation already used")

        reservation.payment_preference_id = preference_id
        if gateway:
            reservation.payment_gateway = gateway
        self.db.commit()
        self.db.refresh(reservation)
        logger.info(f"💳 Payment preference {preference_id} attached to reservation {reservation_id}")
        return reservation

    def record_gateway_status(self, reservation: Reservation, gateway_status: str) -> None:
        """Persist a non-approved gateway status on the hold"""
        if is_approved(gateway_status) or reservation.used:
            return
        reservation.payment_status = gateway_status
        self.db.commit()

    def purge_expired(self, retention: timedelta) -> int:
        cutoff = self.clock() - retention
        deleted = self.repo.delete_expired_reservations(self.db, cutoff)
        if deleted:
            logger.info(f"🧹 Purged {deleted} expired reservations (expired before {cutoff})")
        return deleted
