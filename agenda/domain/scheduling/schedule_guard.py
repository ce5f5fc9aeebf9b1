"""
Checks shared by every writer of a professional's calendar.

All functions run inside the caller's transaction. The caller is expected to
bump the professional's schedule version before committing so that the
checks below stay valid at commit time.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ...errors import AgendaError, ConflictError, InternalError, NotFoundError, ResourceExhaustedError
from ...models import Professional
from .repository import SchedulingRepository
from .time_windows import BufferPolicy, TimeWindow, find_conflict, local_day_bounds

logger = logging.getLogger(__name__)

# Longest bookable interval; bounds the range scanned for overlaps
MAX_DURATION_MINUTES = 24 * 60


def load_professional(db: Session, professional_id: int) -> Professional:
    professional = SchedulingRepository.get_professional(db, professional_id)
    if not professional:
        raise NotFoundError(f"Professional {professional_id} not found")
    return professional


def _overlap_scan_range(window: TimeWindow, policy: BufferPolicy) -> tuple[datetime, datetime]:
    # An entry starting before this cannot reach `window` even with its own buffers
    earliest = window.start - timedelta(
        minutes=MAX_DURATION_MINUTES + policy.buffer_after_minutes
    )
    latest = window.end + timedelta(minutes=policy.buffer_before_minutes)
    return earliest, latest


def assert_no_appointment_conflict(
    db: Session,
    professional: Professional,
    policy: BufferPolicy,
    window: TimeWindow,
    exclude_appointment_id: Optional[str] = None,
) -> None:
    """Raise ConflictError if a non-canceled appointment's buffered interval meets `window`"""
    start, end = _overlap_scan_range(window, policy)
    appointments = SchedulingRepository.get_active_appointments(
        db, professional.id, start, end, exclude_id=exclude_appointment_id
    )
    appointment = find_conflict(window, policy, appointments)
    if appointment:
        logger.info(
            f"🚫 Slot conflict for professional {professional.id}: appointment {appointment.id}"
        )
        raise ConflictError(
            "Slot already booked", details={"appointmentId": appointment.id}
        )


def assert_no_hold_conflict(
    db: Session,
    professional: Professional,
    policy: BufferPolicy,
    window: TimeWindow,
    now: datetime,
    exclude_reservation_id: Optional[str] = None,
) -> None:
    """Raise ConflictError if a live, unused hold's buffered interval meets `window`"""
    holds = SchedulingRepository.get_live_reservations(
        db, professional.id, now, exclude_id=exclude_reservation_id
    )
    hold = find_conflict(window, policy, holds)
    if hold:
        logger.info(f"🚫 Slot held for professional {professional.id}: reservation {hold.id}")
        raise ConflictError("Slot temporarily held", details={"reservationId": hold.id})


def assert_day_capacity(
    db: Session,
    professional: Professional,
    policy: BufferPolicy,
    day_of: datetime,
    exclude_appointment_id: Optional[str] = None,
) -> None:
    """Raise ResourceExhaustedError when the professional's local day is already full"""
    day_start, day_end = local_day_bounds(day_of, professional.timezone)
    booked = SchedulingRepository.get_active_appointments(
        db, professional.id, day_start, day_end, exclude_id=exclude_appointment_id
    )
    if len(booked) >= policy.max_appointments_per_day:
        raise ResourceExhaustedError(
            "Daily appointment limit reached",
            details={"limit": policy.max_appointments_per_day, "booked": len(booked)},
        )


@contextmanager
def schedule_transaction(db: Session, operation: str):
    """
    Commit the body's work or roll it back.

    Domain errors pass through unchanged. A version conflict or any other
    store failure becomes InternalError so the caller retries.
    """
    try:
        yield
        db.commit()
    except AgendaError:
        db.rollback()
        raise
    except StaleDataError as e:
        db.rollback()
        logger.warning(f"🔄 {operation}: concurrent schedule change detected, transaction rejected")
        raise InternalError("Transaction conflict, please retry") from e
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"❌ {operation}: database error: {e}")
        raise InternalError(f"{operation} failed") from e
