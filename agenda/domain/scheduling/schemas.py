"""Scheduling domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator


class ReservationCreate(BaseModel):
    """Schema for placing a hold"""

    professionalId: int
    serviceId: str
    dateTime: datetime
    durationMinutes: int
    clientName: str
    clientEmail: Optional[str] = None
    gateway: Optional[str] = None

    @field_validator("serviceId", "clientName")
    @classmethod
    def not_blank(cls, v):
        if not v or not v.strip():
            raise ValueError("must not be blank")
        return v.strip()

    @field_validator("clientEmail")
    @classmethod
    def normalize_email(cls, v):
        if v is None or not v.strip():
            return None
        v = v.strip().lower()
        if "@" not in v or "." not in v.split("@")[-1]:
            raise ValueError("invalid email address")
        return v


class ReservationCreated(BaseModel):
    reservationId: str
    expiresAt: datetime


class ReservationFinalize(BaseModel):
    paymentStatus: Optional[str] = None


class ReservationFinalized(BaseModel):
    appointmentId: str


class PaymentPreferenceAttach(BaseModel):
    preferenceId: str
    gateway: Optional[str] = None


class PaymentStatusSignal(BaseModel):
    """Payment status notification from a gateway"""

    status: str
    preferenceId: Optional[str] = None
    reservationId: Optional[str] = None


class ReservationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    professional_id: int
    service_id: str
    client_name: str
    date_time: datetime
    duration_minutes: int
    payment_status: Optional[str] = None
    payment_gateway: Optional[str] = None
    used: bool
    expires_at: datetime
    appointment_id: Optional[str] = None


class AppointmentReschedule(BaseModel):
    dateTime: datetime
    durationMinutes: Optional[int] = None


class AppointmentStatusUpdate(BaseModel):
    status: str


class AppointmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    professional_id: int
    reservation_id: Optional[str] = None
    service: Optional[str] = None
    client_name: str
    client_email: Optional[str] = None
    date_time: datetime
    duration_minutes: int
    status: str
    payment_status: Optional[str] = None
    confirmation_email_status: Optional[str] = None
    professional_notification_status: Optional[str] = None
    update_email_status: Optional[str] = None
    reminder_24h_sent: bool = False
    reminder_3h_sent: bool = False
