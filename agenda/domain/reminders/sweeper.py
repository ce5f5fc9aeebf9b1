"""
Reminder sweeps.

Each sweep looks at appointments starting inside a fixed look-ahead window
and sends one reminder per (appointment, reminder type). A lease marker,
taken with a compare-and-set UPDATE, keeps overlapping sweeps from sending
the same reminder twice; leases older than the TTL are reclaimed.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...config import (
    REMINDER_3H_WINDOW_END_MINUTES,
    REMINDER_3H_WINDOW_START_MINUTES,
    REMINDER_24H_WINDOW_END_MINUTES,
    REMINDER_24H_WINDOW_START_MINUTES,
    REMINDER_LEASE_TTL_MINUTES,
)
from ...email_service import EmailSender
from ...email_templates import TEMPLATE_REMINDER_3H, TEMPLATE_REMINDER_24H
from ...errors import TransportError
from ...models import Appointment, Professional
from ..notifications.change_feed import snapshot_after
from ..notifications.rendering import build_template_variables, render_notification
from ..scheduling.statuses import REMINDER_ELIGIBLE_STATUSES
from ..scheduling.time_windows import coerce_datetime, utcnow
from .repository import ReminderRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReminderType:
    name: str
    template_id: str
    window_start: timedelta
    window_end: timedelta
    field_prefix: str  # reminder_24h -> reminder_24h_sent, reminder_24h_sending, ...

    def column(self, suffix: str):
        return getattr(Appointment, f"{self.field_prefix}_{suffix}")

    def value(self, appointment: Appointment, suffix: str):
        return getattr(appointment, f"{self.field_prefix}_{suffix}")


REMINDER_24H = ReminderType(
    name="24h",
    template_id=TEMPLATE_REMINDER_24H,
    window_start=timedelta(minutes=REMINDER_24H_WINDOW_START_MINUTES),
    window_end=timedelta(minutes=REMINDER_24H_WINDOW_END_MINUTES),
    field_prefix="reminder_24h",
)

REMINDER_3H = ReminderType(
    name="3h",
    template_id=TEMPLATE_REMINDER_3H,
    window_start=timedelta(minutes=REMINDER_3H_WINDOW_START_MINUTES),
    window_end=timedelta(minutes=REMINDER_3H_WINDOW_END_MINUTES),
    field_prefix="reminder_3h",
)


@dataclass
class PreparedReminder:
    appointment_id: str
    date_time: datetime  # slot the reminder was rendered for
    to_email: str
    to_name: Optional[str]
    subject: str
    html: str


class ReminderSweeper:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        sender: EmailSender,
        reminder: ReminderType,
        clock: Callable[[], datetime] = utcnow,
        lease_ttl: timedelta = timedelta(minutes=REMINDER_LEASE_TTL_MINUTES),
    ):
        self.session_factory = session_factory
        self.sender = sender
        self.reminder = reminder
        self.clock = clock
        self.lease_ttl = lease_ttl

    def run(self) -> dict:
        """One sweep. Never raises; returns a summary of what happened."""
        now = self.clock()
        window_start = now + self.reminder.window_start
        window_end = now + self.reminder.window_end
        summary = {"reminder": self.reminder.name, "candidates": 0, "sent": 0, "failed": 0, "skipped": {}}

        logger.info(
            f"⏰ {self.reminder.name} reminder sweep: {window_start.isoformat()} -> {window_end.isoformat()}"
        )
        try:
            candidate_ids = self._find_candidates(window_start, window_end)
        except SQLAlchemyError as e:
            logger.error(f"❌ {self.reminder.name} sweep could not list appointments: {e}")
            summary["failed"] += 1
            return summary

        summary["candidates"] = len(candidate_ids)
        for appointment_id in candidate_ids:
            try:
                outcome = self._process(appointment_id, now)
            except Exception as e:
                logger.error(f"❌ {self.reminder.name} reminder for {appointment_id} failed: {e}")
                outcome = "failed"
            if outcome in ("sent", "failed"):
                summary[outcome] += 1
            else:
                summary["skipped"][outcome] = summary["skipped"].get(outcome, 0) + 1

        logger.info(f"✅ {self.reminder.name} reminder sweep finished: {summary}")
        return summary

    def _find_candidates(self, window_start: datetime, window_end: datetime) -> list[str]:
        db = self.session_factory()
        try:
            try:
                appointments = ReminderRepository.find_in_window(db, window_start, window_end)
            except SQLAlchemyError as e:
                db.rollback()
                logger.warning(
                    f"⚠️ Range query unavailable ({e}); falling back to per-professional scan"
                )
                appointments = ReminderRepository.scan_all_professionals(db, window_start, window_end)
            return [appointment.id for appointment in appointments]
        finally:
            db.close()

    def _process(self, appointment_id: str, now: datetime) -> str:
        db = self.session_factory()
        try:
            appointment = db.get(Appointment, appointment_id)
            if not appointment:
                return "missing"
            skip_reason = self._skip_reason(appointment)
            if skip_reason:
                return skip_reason

            professional = db.get(Professional, appointment.professional_id)
            variables = build_template_variables(snapshot_after(appointment), professional)
            try:
                subject, html = render_notification(db, self.reminder.template_id, variables)
            except (KeyError, TransportError) as e:
                logger.error(f"❌ Could not render {self.reminder.template_id}: {e}")
                return "failed"
            prepared = PreparedReminder(
                appointment_id=appointment.id,
                date_time=appointment.date_time,
                to_email=appointment.client_email,
                to_name=appointment.client_name,
                subject=subject,
                html=html,
            )
            db.commit()

            if not self._acquire_lease(db, appointment_id, now, prepared.date_time):
                logger.info(f"🔒 {self.reminder.name} reminder for {appointment_id} held by another sweep")
                return "locked"
        finally:
            db.close()

        try:
            message_id = self.sender.send(prepared.to_email, prepared.to_name, prepared.subject, prepared.html)
        except TransportError as e:
            logger.error(f"❌ {self.reminder.name} reminder to {prepared.to_email} failed: {e}")
            self._release_failed(appointment_id, now, str(e))
            return "failed"

        self._release_sent(appointment_id, now, prepared.date_time)
        logger.info(f"📧 {self.reminder.name} reminder sent for {appointment_id} ({message_id})")
        return "sent"

    def _skip_reason(self, appointment: Appointment) -> Optional[str]:
        if self.reminder.value(appointment, "sent"):
            return "already_sent"
        if appointment.status not in REMINDER_ELIGIBLE_STATUSES:
            return "ineligible_status"
        if not appointment.client_email:
            return "missing_email"
        if coerce_datetime(appointment.date_time) is None:
            return "invalid_datetime"
        return None

    def _acquire_lease(self, db: Session, appointment_id: str, now: datetime, slot: datetime) -> bool:
        """Set the sending marker unless it is already set and fresh.

        Status and slot are re-checked in the same statement so a cancel or a
        reschedule committed after the read is not reminded.
        """
        sent = self.reminder.column("sent")
        sending = self.reminder.column("sending")
        sending_at = self.reminder.column("sending_at")
        stmt = (
            update(Appointment)
            .where(
                Appointment.id == appointment_id,
                Appointment.status.in_(REMINDER_ELIGIBLE_STATUSES),
                Appointment.date_time == slot,
                sent.is_(False),
                or_(
                    sending.is_(False),
                    sending_at.is_(None),
                    sending_at < now - self.lease_ttl,
                ),
            )
            .values({sending: True, sending_at: now})
            .execution_options(synchronize_session=False)
        )
        try:
            result = db.execute(stmt)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"❌ Could not take {self.reminder.name} lease on {appointment_id}: {e}")
            return False
        return result.rowcount == 1

    def _release_sent(self, appointment_id: str, lease_at: datetime, slot: datetime) -> None:
        sent = self.reminder.column("sent")
        sending = self.reminder.column("sending")
        sending_at = self.reminder.column("sending_at")
        done = {
            sent: True,
            self.reminder.column("sent_at"): self.clock(),
            sending: False,
            sending_at: None,
            self.reminder.column("error"): None,
        }
        db = self.session_factory()
        try:
            result = db.execute(
                update(Appointment)
                .where(Appointment.id == appointment_id, sending.is_(True), sending_at == lease_at)
                .values(done)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                # Lease was reclaimed while we were sending; still record the delivery
                # unless the appointment has moved to another slot since
                logger.warning(f"⚠️ {self.reminder.name} lease on {appointment_id} lost during send")
                db.execute(
                    update(Appointment)
                    .where(Appointment.id == appointment_id, Appointment.date_time == slot)
                    .values({sent: True, self.reminder.column("sent_at"): self.clock()})
                    .execution_options(synchronize_session=False)
                )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"❌ Could not mark {self.reminder.name} reminder sent for {appointment_id}: {e}")
        finally:
            db.close()

    def _release_failed(self, appointment_id: str, lease_at: datetime, error: str) -> None:
        sending = self.reminder.column("sending")
        sending_at = self.reminder.column("sending_at")
        db = self.session_factory()
        try:
            db.execute(
                update(Appointment)
                .where(Appointment.id == appointment_id, sending.is_(True), sending_at == lease_at)
                .values({sending: False, sending_at: None, self.reminder.column("error"): error[:1000]})
                .execution_options(synchronize_session=False)
            )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"❌ Could not release {self.reminder.name} lease on {appointment_id}: {e}")
        finally:
            db.close()
