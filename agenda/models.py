import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


def generate_public_id():
    """Generate a unique public ID for secure public access"""
    return str(uuid.uuid4())


class Professional(Base):
    __tablename__ = "professionals"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    timezone = Column(String(64), nullable=True)  # IANA name, e.g. America/Sao_Paulo
    plan = Column(String(50), default="trial", nullable=True)  # trial, professional, enterprise
    subscription_status = Column(
        String(50), default="trialing", nullable=True
    )  # trialing, active, expired, cancelled
    trial_ends_at = Column(DateTime, nullable=True)

    # Buffer policy; NULL means "use the platform default"
    buffer_before_minutes = Column(Integer, nullable=True)
    buffer_after_minutes = Column(Integer, nullable=True)
    max_appointments_per_day = Column(Integer, nullable=True)
    min_notice_hours = Column(Float, nullable=True)
    reservation_hold_minutes = Column(Integer, nullable=True)

    # Optimistic lock over the professional's whole schedule. Every reservation
    # or finalization transaction bumps it, so two transactions that read the
    # same schedule snapshot cannot both commit.
    schedule_version = Column(Integer, nullable=False, default=1)
    schedule_touched_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    reservations = relationship("Reservation", back_populates="professional")
    appointments = relationship("Appointment", back_populates="professional")

    __mapper_args__ = {"version_id_col": schedule_version, "version_id_generator": False}


class Reservation(Base):
    __tablename__ = "reservations"

    id = Column(String(36), primary_key=True, default=generate_public_id)
    professional_id = Column(Integer, ForeignKey("professionals.id"), nullable=False, index=True)
    service_id = Column(String(255), nullable=False)
    client_name = Column(String(255), nullable=False)
    client_email = Column(String(255), nullable=True)
    date_time = Column(DateTime, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    payment_gateway = Column(String(50), nullable=True)  # stripe, mercadopago
    payment_preference_id = Column(String(255), nullable=True, index=True)
    payment_status = Column(String(50), default="pending", nullable=True)
    used = Column(Boolean, default=False, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
    appointment_id = Column(String(36), nullable=True)
    finalized_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    professional = relationship("Professional", back_populates="reservations")


class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(String(36), primary_key=True, default=generate_public_id)
    professional_id = Column(Integer, ForeignKey("professionals.id"), nullable=False)
    reservation_id = Column(String(36), nullable=True)
    service_id = Column(String(255), nullable=True)
    service = Column(String(255), nullable=True)  # display name of the service
    client_name = Column(String(255), nullable=False)
    client_email = Column(String(255), nullable=True)
    date_time = Column(DateTime, nullable=False, index=True)
    duration_minutes = Column(Integer, nullable=False)
    status = Column(String(50), default="Scheduled", nullable=False)
    payment_status = Column(String(50), nullable=True)

    # Notification state, persisted under the names other clients of the store read
    confirmation_email_status = Column("confirmationEmailStatus", String(50), nullable=True)
    confirmation_email_id = Column("confirmationEmailId", String(255), nullable=True)
    professional_notification_status = Column(
        "professionalNotificationStatus", String(50), nullable=True
    )
    professional_notification_id = Column("professionalNotificationId", String(255), nullable=True)
    professional_notification_error = Column("professionalNotificationError", Text, nullable=True)
    update_email_status = Column("updateEmailStatus", String(50), nullable=True)
    update_email_id = Column("updateEmailId", String(255), nullable=True)
    professional_update_status = Column("professionalUpdateStatus", String(50), nullable=True)
    update_event_key = Column("updateEventKey", String(64), nullable=True)
    notification_error = Column("notificationError", Text, nullable=True)
    welcome_email_attempt_count = Column(
        "welcomeEmailAttemptCount", Integer, default=0, nullable=False
    )
    email_update_count = Column("emailUpdateCount", Integer, default=0, nullable=False)

    # Reminder leases
    reminder_24h_sent = Column("reminder24hSent", Boolean, default=False, nullable=False)
    reminder_24h_sending = Column("reminder24hSending", Boolean, default=False, nullable=False)
    reminder_24h_sending_at = Column("reminder24hSendingAt", DateTime, nullable=True)
    reminder_24h_sent_at = Column("reminder24hSentAt", DateTime, nullable=True)
    reminder_24h_error = Column("reminder24hError", Text, nullable=True)
    reminder_3h_sent = Column("reminder3hSent", Boolean, default=False, nullable=False)
    reminder_3h_sending = Column("reminder3hSending", Boolean, default=False, nullable=False)
    reminder_3h_sending_at = Column("reminder3hSendingAt", DateTime, nullable=True)
    reminder_3h_sent_at = Column("reminder3hSentAt", DateTime, nullable=True)
    reminder_3h_error = Column("reminder3hError", Text, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    professional = relationship("Professional", back_populates="appointments")

    __table_args__ = (Index("ix_appointments_professional_date", "professional_id", "date_time"),)


class ResourceViolation(Base):
    __tablename__ = "resource_violations"

    id = Column(Integer, primary_key=True, index=True)
    actor_id = Column(String(255), nullable=False, index=True)
    type = Column(String(50), nullable=False)  # rateLimit, planLimit
    severity = Column(String(20), default="high", nullable=False)
    message = Column(Text, nullable=True)
    action = Column(String(50), default="throttle", nullable=False)
    details = Column("metadata", JSON, nullable=True)
    resolved = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, server_default=func.now())


class ResourceUsage(Base):
    __tablename__ = "resource_usage"

    id = Column(Integer, primary_key=True, index=True)
    professional_id = Column(Integer, ForeignKey("professionals.id"), nullable=False)
    resource_type = Column(String(50), nullable=False)  # apiCalls, storage, bandwidth
    period_start = Column(DateTime, nullable=False)  # first day of the month, UTC
    amount = Column(Integer, default=0, nullable=False)

    __table_args__ = (
        UniqueConstraint("professional_id", "resource_type", "period_start", name="uq_usage_period"),
    )


class EmailTemplate(Base):
    """Platform-level override of a built-in notification template"""

    __tablename__ = "email_templates"

    id = Column(Integer, primary_key=True, index=True)
    template_id = Column(String(64), unique=True, nullable=False)  # t_sched, t_remind, ...
    subject = Column(String(500), nullable=False)
    body = Column(Text, nullable=False)  # MJML fragment with {var} placeholders
    enabled = Column(Boolean, default=True, nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
