"""Payment service - reacts to gateway payment status signals"""

import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ...errors import (
    ConflictError,
    InvalidArgumentError,
    NotFoundError,
    PreconditionFailedError,
    ResourceExhaustedError,
)
from .finalization_service import FinalizationService
from .payments import is_approved
from .repository import SchedulingRepository
from .reservation_service import ReservationService
from .time_windows import utcnow

logger = logging.getLogger(__name__)

# Outcomes acknowledged with 202 so the gateway stops redelivering
UNMATCHED = "unmatched"
NOT_FINALIZED = "not_finalized"
ACKNOWLEDGED_OUTCOMES = frozenset({UNMATCHED, NOT_FINALIZED})


class PaymentService:
    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.repo = SchedulingRepository()
        self.clock = clock

    def handle_payment_status(
        self,
        status: str,
        preference_id: Optional[str] = None,
        reservation_id: Optional[str] = None,
    ) -> dict:
        """Finalize the linked hold on an approved payment; record any other status"""
        if not preference_id and not reservation_id:
            raise InvalidArgumentError("preferenceId or reservationId is required")

        if preference_id:
            reservation = self.repo.get_reservation_by_preference(self.db, preference_id)
        else:
            reservation = self.repo.get_reservation(self.db, reservation_id)
        if not reservation:
            logger.warning(
                f"⚠️ No reservation matches payment signal (preference={preference_id}, "
                f"reservation={reservation_id}); acknowledging"
            )
            return {"status": UNMATCHED, "note": "No matching reservation found"}

        if not is_approved(status):
            ReservationService(self.db, self.clock).record_gateway_status(reservation, status)
            logger.info(f"💳 Payment status '{status}' recorded for reservation {reservation.id}")
            return {"status": "recorded", "reservationId": reservation.id}

        if reservation.used:
            logger.info(f"⏭️ Reservation {reservation.id} already finalized; ignoring repeat signal")
            return {"status": "already_finalized", "appointmentId": reservation.appointment_id}

        finalizer = FinalizationService(self.db, self.clock)
        try:
            result = finalizer.finalize_reservation(reservation.professional_id, reservation.id, "paid")
        except (NotFoundError, PreconditionFailedError, ConflictError, ResourceExhaustedError) as e:
            self.db.expire_all()
            current = self.repo.get_reservation(self.db, reservation.id)
            if current and current.used:
                return {"status": "already_finalized", "appointmentId": current.appointment_id}
            logger.warning(f"⚠️ Approved payment for reservation {reservation.id} not finalized: {e.message}")
            return {"status": NOT_FINALIZED, "reservationId": reservation.id, "reason": e.message}
        logger.info(f"✅ Payment approved, reservation {reservation.id} finalized")
        return {"status": "finalized", **result}
