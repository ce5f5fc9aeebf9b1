"""Scheduling repository - Database operations for holds and appointments"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...models import Appointment, Professional, Reservation
from .statuses import AppointmentStatus


class SchedulingRepository:
    """Repository for reservation and appointment database operations"""

    @staticmethod
    def get_professional(db: Session, professional_id: int) -> Optional[Professional]:
        return db.query(Professional).filter(Professional.id == professional_id).first()

    @staticmethod
    def claim_schedule(db: Session, professional: Professional, now: datetime) -> None:
        """
        Bump the professional's schedule version.

        The UPDATE is conditional on the version read at the start of the
        transaction, so a concurrent writer that committed first makes this
        flush fail with StaleDataError.
        """
        professional.schedule_version = professional.schedule_version + 1
        professional.schedule_touched_at = now

    @staticmethod
    def get_active_appointments(
        db: Session,
        professional_id: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        exclude_id: Optional[str] = None,
    ) -> list[Appointment]:
        """Non-canceled appointments, optionally limited to date_time in [start, end)"""
        query = db.query(Appointment).filter(
            Appointment.professional_id == professional_id,
            Appointment.status != AppointmentStatus.CANCELED.value,
        )
        if start is not None:
            query = query.filter(Appointment.date_time >= start)
        if end is not None:
            query = query.filter(Appointment.date_time < end)
        if exclude_id is not None:
            query = query.filter(Appointment.id != exclude_id)
        return query.order_by(Appointment.date_time).all()

    @staticmethod
    def get_live_reservations(
        db: Session, professional_id: int, now: datetime, exclude_id: Optional[str] = None
    ) -> list[Reservation]:
        """Unused holds that have not expired yet"""
        query = db.query(Reservation).filter(
            Reservation.professional_id == professional_id,
            Reservation.used.is_(False),
            Reservation.expires_at > now,
        )
        if exclude_id is not None:
            query = query.filter(Reservation.id != exclude_id)
        return query.all()

    @staticmethod
    def get_reservation(db: Session, reservation_id: str) -> Optional[Reservation]:
        return db.query(Reservation).filter(Reservation.id == reservation_id).first()

    @staticmethod
    def get_reservation_by_preference(db: Session, preference_id: str) -> Optional[Reservation]:
        return (
            db.query(Reservation)
            .filter(Reservation.payment_preference_id == preference_id)
            .first()
        )

    @staticmethod
    def get_appointment(
        db: Session, appointment_id: str, professional_id: int
    ) -> Optional[Appointment]:
        return (
            db.query(Appointment)
            .filter(Appointment.id == appointment_id, Appointment.professional_id == professional_id)
            .first()
        )

    @staticmethod
    def list_appointments(
        db: Session,
        professional_id: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[Appointment]:
        query = db.query(Appointment).filter(Appointment.professional_id == professional_id)
        if start is not None:
            query = query.filter(Appointment.date_time >= start)
        if end is not None:
            query = query.filter(Appointment.date_time < end)
        return query.order_by(Appointment.date_time).all()

    @staticmethod
    def delete_expired_reservations(db: Session, cutoff: datetime) -> int:
        """Delete unused holds that expired before `cutoff`. Returns the number deleted."""
        deleted = (
            db.query(Reservation)
            .filter(Reservation.used.is_(False), Reservation.expires_at < cutoff)
            .delete(synchronize_session=False)
        )
        db.commit()
        return deleted
