"""Reminder repository - Candidate lookup for reminder sweeps"""

from datetime import datetime

from sqlalchemy.orm import Session

from ...models import Appointment, Professional
from ..scheduling.repository import SchedulingRepository
from ..scheduling.time_windows import coerce_datetime


class ReminderRepository:
    @staticmethod
    def find_in_window(db: Session, start: datetime, end: datetime) -> list[Appointment]:
        """Appointments starting in [start, end], via the date_time index"""
        return (
            db.query(Appointment)
            .filter(Appointment.date_time >= start, Appointment.date_time <= end)
            .order_by(Appointment.date_time)
            .all()
        )

    @staticmethod
    def scan_all_professionals(db: Session, start: datetime, end: datetime) -> list[Appointment]:
        """Degraded path: walk every professional's appointments and filter in memory"""
        matches = []
        for professional in db.query(Professional).order_by(Professional.id).all():
            for appointment in SchedulingRepository.list_appointments(db, professional.id):
                starts_at = coerce_datetime(appointment.date_time)
                if starts_at is not None and start <= starts_at <= end:
                    matches.append(appointment)
        return matches
