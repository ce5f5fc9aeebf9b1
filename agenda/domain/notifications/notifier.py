"""
Change-triggered appointment notifier.

Runs once per committed Appointment insert or update. Sends happen outside
any transaction; the outcome of every channel is recorded in one final
write together with the attempt counter, under a row lock.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...config import EMAIL_UPDATE_CEILING, WELCOME_EMAIL_CEILING
from ...email_service import EmailSender
from ...email_templates import (
    TEMPLATE_CLIENT_CONFIRMATION,
    TEMPLATE_CLIENT_UPDATE,
    TEMPLATE_PROFESSIONAL_NEW_BOOKING,
    TEMPLATE_PROFESSIONAL_UPDATE,
)
from ...errors import TransportError
from ...models import Appointment, Professional
from .change_feed import CREATED, AppointmentChange, snapshot_after
from .rendering import build_template_variables, render_notification
from .state import NotificationStatus, can_transition, event_key, is_semantic_change, is_settled

logger = logging.getLogger(__name__)


@dataclass
class ChannelOutcome:
    status: NotificationStatus
    message_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class PreparedMessage:
    channel: str  # client or professional
    to_email: str
    to_name: Optional[str]
    subject: str
    html: str


class AppointmentNotifier:
    """Sends booking and update emails to the client and the professional"""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        sender: EmailSender,
        update_ceiling: int = EMAIL_UPDATE_CEILING,
        create_ceiling: int = WELCOME_EMAIL_CEILING,
    ):
        self.session_factory = session_factory
        self.sender = sender
        self.update_ceiling = update_ceiling
        self.create_ceiling = create_ceiling

    def handle(self, change: AppointmentChange) -> str:
        """Process one change event. Never raises; returns a short outcome label."""
        try:
            if change.kind == CREATED:
                return self.on_created(change)
            return self.on_updated(change)
        except Exception as e:
            logger.error(
                f"❌ Notifier failed for appointment {change.appointment_id} ({change.kind}): {e}",
                exc_info=True,
            )
            return "failed"

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def on_created(self, change: AppointmentChange) -> str:
        db = self.session_factory()
        try:
            appointment = db.get(Appointment, change.appointment_id)
            if not appointment:
                logger.warning(f"⚠️ Appointment {change.appointment_id} no longer exists")
                return "missing"

            client_status = appointment.confirmation_email_status
            professional_status = appointment.professional_notification_status
            if is_settled(client_status) and is_settled(professional_status):
                logger.info(f"⏭️ Booking emails already handled for {appointment.id}")
                return "skipped_settled"

            if (appointment.welcome_email_attempt_count or 0) >= self.create_ceiling:
                logger.warning(
                    f"🚫 Booking email attempts exhausted for {appointment.id} "
                    f"({appointment.welcome_email_attempt_count}/{self.create_ceiling}); halting"
                )
                return "halted"

            professional = db.get(Professional, appointment.professional_id)
            snapshot = snapshot_after(appointment)
            variables = build_template_variables(snapshot, professional)

            outcomes: dict[str, ChannelOutcome] = {}
            messages: list[PreparedMessage] = []
            if not is_settled(client_status):
                self._prepare(
                    db, messages, outcomes, "client", TEMPLATE_CLIENT_CONFIRMATION,
                    snapshot.get("client_email"), snapshot.get("client_name"), variables,
                    NotificationStatus.SKIPPED_NO_CLIENT_EMAIL,
                )
            if not is_settled(professional_status):
                self._prepare(
                    db, messages, outcomes, "professional", TEMPLATE_PROFESSIONAL_NEW_BOOKING,
                    professional.email if professional else None,
                    professional.name if professional else None, variables,
                    NotificationStatus.SKIPPED_NO_PROFESSIONAL_EMAIL,
                )
            # End the read transaction before any network call
            db.commit()
        finally:
            db.close()

        self._send_all(messages, outcomes)
        self._record_created(change.appointment_id, outcomes)
        return "processed"

    def _record_created(self, appointment_id: str, outcomes: dict) -> None:
        def apply(appointment: Appointment) -> None:
            client = outcomes.get("client")
            if client and can_transition(appointment.confirmation_email_status):
                appointment.confirmation_email_status = client.status.value
                appointment.confirmation_email_id = client.message_id
                appointment.notification_error = client.error
            professional = outcomes.get("professional")
            if professional and can_transition(appointment.professional_notification_status):
                appointment.professional_notification_status = professional.status.value
                appointment.professional_notification_id = professional.message_id
                appointment.professional_notification_error = professional.error
            appointment.welcome_email_attempt_count = (appointment.welcome_email_attempt_count or 0) + 1

        self._write_back(appointment_id, apply)

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    def on_updated(self, change: AppointmentChange) -> str:
        if not is_semantic_change(change.before, change.after):
            logger.debug(f"⏭️ Ignoring bookkeeping-only update of {change.appointment_id}")
            return "skipped_own_write"

        key = event_key(change.after)
        db = self.session_factory()
        try:
            appointment = db.get(Appointment, change.appointment_id)
            if not appointment:
                logger.warning(f"⚠️ Appointment {change.appointment_id} no longer exists")
                return "missing"

            if (appointment.email_update_count or 0) >= self.update_ceiling:
                logger.warning(
                    f"🚫 Update email ceiling reached for {appointment.id} "
                    f"({appointment.email_update_count}/{self.update_ceiling}); halting"
                )
                return "halted"

            if appointment.update_event_key == key:
                client_status = appointment.update_email_status
                professional_status = appointment.professional_update_status
            else:
                client_status = professional_status = None
            if is_settled(client_status) and is_settled(professional_status):
                logger.info(f"⏭️ Update emails already handled for {appointment.id}")
                return "skipped_settled"

            professional = db.get(Professional, appointment.professional_id)
            variables = build_template_variables(change.after, professional)

            outcomes: dict[str, ChannelOutcome] = {}
            messages: list[PreparedMessage] = []
            if not is_settled(client_status):
                self._prepare(
                    db, messages, outcomes, "client", TEMPLATE_CLIENT_UPDATE,
                    change.after.get("client_email"), change.after.get("client_name"), variables,
                    NotificationStatus.SKIPPED_NO_CLIENT_EMAIL,
                )
            if not is_settled(professional_status):
                self._prepare(
                    db, messages, outcomes, "professional", TEMPLATE_PROFESSIONAL_UPDATE,
                    professional.email if professional else None,
                    professional.name if professional else None, variables,
                    NotificationStatus.SKIPPED_NO_PROFESSIONAL_EMAIL,
                )
            db.commit()
        finally:
            db.close()

        self._send_all(messages, outcomes)
        self._record_updated(change.appointment_id, key, outcomes)
        return "processed"

    def _record_updated(self, appointment_id: str, key: str, outcomes: dict) -> None:
        def apply(appointment: Appointment) -> None:
            if appointment.update_event_key != key:
                # First result for this logical event
                appointment.update_event_key = key
                appointment.update_email_status = None
                appointment.update_email_id = None
                appointment.professional_update_status = None
            client = outcomes.get("client")
            if client and can_transition(appointment.update_email_status):
                appointment.update_email_status = client.status.value
                appointment.update_email_id = client.message_id
                appointment.notification_error = client.error
            professional = outcomes.get("professional")
            if professional and can_transition(appointment.professional_update_status):
                appointment.professional_update_status = professional.status.value
                appointment.professional_notification_error = professional.error
            appointment.email_update_count = (appointment.email_update_count or 0) + 1

        self._write_back(appointment_id, apply)

    # ------------------------------------------------------------------
    # Shared steps
    # ------------------------------------------------------------------

    def _prepare(
        self,
        db: Session,
        messages: list,
        outcomes: dict,
        channel: str,
        template_id: str,
        to_email: Optional[str],
        to_name: Optional[str],
        variables: dict,
        skipped: NotificationStatus,
    ) -> None:
        if not to_email:
            outcomes[channel] = ChannelOutcome(status=skipped)
            return
        try:
            subject, html = render_notification(db, template_id, variables)
        except (KeyError, TransportError) as e:
            logger.error(f"❌ Could not render {template_id}: {e}")
            outcomes[channel] = ChannelOutcome(status=NotificationStatus.ERROR, error=str(e))
            return
        messages.append(PreparedMessage(channel, to_email, to_name, subject, html))

    def _send_all(self, messages: list, outcomes: dict) -> None:
        # Each channel is independent: a failure is recorded and the next one still runs
        for message in messages:
            try:
                message_id = self.sender.send(
                    message.to_email, message.to_name, message.subject, message.html
                )
                outcomes[message.channel] = ChannelOutcome(
                    status=NotificationStatus.SENT, message_id=message_id
                )
                logger.info(f"📧 {message.channel} email sent to {message.to_email}")
            except TransportError as e:
                logger.error(f"❌ {message.channel} email to {message.to_email} failed: {e}")
                outcomes[message.channel] = ChannelOutcome(
                    status=NotificationStatus.ERROR, error=str(e)
                )

    def _write_back(self, appointment_id: str, apply: Callable[[Appointment], None]) -> None:
        """Apply the accumulated outcome in a single locked write"""
        db = self.session_factory()
        try:
            appointment = (
                db.query(Appointment)
                .filter(Appointment.id == appointment_id)
                .with_for_update()
                .first()
            )
            if not appointment:
                logger.warning(f"⚠️ Appointment {appointment_id} vanished before write-back")
                return
            apply(appointment)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"❌ Failed to record notification state for {appointment_id}: {e}")
        finally:
            db.close()
