"""Scheduling router - FastAPI endpoints for holds, appointments and payment signals"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from ...database import get_db
from ...errors import InvalidArgumentError
from ...plan_limits import check_plan_limits, record_usage
from ...rate_limiter import create_rate_limiter
from ...webhook_security import verify_payment_webhook
from .appointment_service import AppointmentService
from .finalization_service import FinalizationService
from .payment_service import ACKNOWLEDGED_OUTCOMES, PaymentService
from .reservation_service import ReservationService
from .schemas import (
    AppointmentReschedule,
    AppointmentResponse,
    AppointmentStatusUpdate,
    PaymentPreferenceAttach,
    PaymentStatusSignal,
    ReservationCreate,
    ReservationCreated,
    ReservationFinalize,
    ReservationFinalized,
    ReservationResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reservations", tags=["Reservations"])
appointments_router = APIRouter(
    prefix="/professionals/{professional_id}/appointments", tags=["Appointments"]
)
payments_router = APIRouter(prefix="/payments", tags=["Payments"])

rate_limit_create_reservation = create_rate_limiter("user", "createReservation")
rate_limit_finalize_reservation = create_rate_limiter("user", "finalizeReservation")
rate_limit_global = create_rate_limiter("global", "api")


def get_reservation_service(db: Session = Depends(get_db)) -> ReservationService:
    """Dependency injection for ReservationService"""
    return ReservationService(db)


def get_finalization_service(db: Session = Depends(get_db)) -> FinalizationService:
    return FinalizationService(db)


def get_appointment_service(db: Session = Depends(get_db)) -> AppointmentService:
    return AppointmentService(db)


def get_payment_service(db: Session = Depends(get_db)) -> PaymentService:
    return PaymentService(db)


# ============================================================================
# HOLDS
# ============================================================================


@router.post("", response_model=ReservationCreated, status_code=201)
async def create_reservation(
    data: ReservationCreate,
    request: Request,
    db: Session = Depends(get_db),
    service: ReservationService = Depends(get_reservation_service),
    _: None = Depends(rate_limit_create_reservation),
):
    """Hold a slot for the client while payment is completed"""
    check_plan_limits(
        db,
        data.professionalId,
        "apiCalls",
        violation_sink=getattr(request.app.state, "violation_sink", None),
    )
    result = service.create_reservation(
        professional_id=data.professionalId,
        service_id=data.serviceId,
        date_time=data.dateTime,
        duration_minutes=data.durationMinutes,
        client_name=data.clientName,
        client_email=data.clientEmail,
        gateway=data.gateway,
    )
    try:
        record_usage(db, data.professionalId, "apiCalls")
    except Exception as e:
        # Usage accounting must not undo a committed hold
        logger.error(f"❌ Failed to record apiCalls usage for {data.professionalId}: {e}")
    return ReservationCreated(**result)


@router.get("/{reservation_id}", response_model=ReservationResponse)
async def get_reservation(
    reservation_id: str,
    service: ReservationService = Depends(get_reservation_service),
    _: None = Depends(rate_limit_global),
):
    return service.get_reservation(reservation_id)


@router.post("/{reservation_id}/finalize", response_model=ReservationFinalized)
async def finalize_reservation(
    reservation_id: str,
    data: ReservationFinalize,
    professional_id: int = Query(..., alias="professionalId"),
    service: FinalizationService = Depends(get_finalization_service),
    _: None = Depends(rate_limit_finalize_reservation),
):
    """Convert a valid hold into an appointment"""
    result = service.finalize_reservation(professional_id, reservation_id, data.paymentStatus)
    return ReservationFinalized(**result)


@router.post("/{reservation_id}/payment-preference", response_model=ReservationResponse)
async def attach_payment_preference(
    reservation_id: str,
    data: PaymentPreferenceAttach,
    professional_id: int = Query(..., alias="professionalId"),
    service: ReservationService = Depends(get_reservation_service),
    _: None = Depends(rate_limit_global),
):
    """Remember the gateway preference created for this hold"""
    return service.attach_payment_preference(
        professional_id, reservation_id, data.preferenceId, data.gateway
    )


# ============================================================================
# PAYMENT SIGNALS
# ============================================================================


@payments_router.post("/webhook")
async def payment_status_webhook(
    request: Request,
    service: PaymentService = Depends(get_payment_service),
):
    """Payment status from the gateway; approved payments finalize the hold.

    Unknown preferences and holds that can no longer be finalized are
    acknowledged with 202 so the gateway stops retrying.
    """
    body = await verify_payment_webhook(request)
    try:
        signal = PaymentStatusSignal.model_validate_json(body)
    except ValidationError as e:
        raise InvalidArgumentError(
            "Invalid payment status payload", details={"errors": e.errors(include_url=False, include_context=False)}
        ) from e

    logger.info(f"💳 Payment webhook: status={signal.status} preference={signal.preferenceId}")
    result = service.handle_payment_status(signal.status, signal.preferenceId, signal.reservationId)
    if result["status"] in ACKNOWLEDGED_OUTCOMES:
        return JSONResponse(status_code=202, content=result)
    return result


# ============================================================================
# PROFESSIONAL-FACING APPOINTMENT CHANGES
# ============================================================================


@appointments_router.get("", response_model=list[AppointmentResponse])
async def list_appointments(
    professional_id: int,
    day: Optional[datetime] = Query(None),
    service: AppointmentService = Depends(get_appointment_service),
    _: None = Depends(rate_limit_global),
):
    return service.list_appointments(professional_id, day)


@appointments_router.get("/{appointment_id}", response_model=AppointmentResponse)
async def get_appointment(
    professional_id: int,
    appointment_id: str,
    service: AppointmentService = Depends(get_appointment_service),
    _: None = Depends(rate_limit_global),
):
    return service.get_appointment(professional_id, appointment_id)


@appointments_router.post("/{appointment_id}/reschedule", response_model=AppointmentResponse)
async def reschedule_appointment(
    professional_id: int,
    appointment_id: str,
    data: AppointmentReschedule,
    service: AppointmentService = Depends(get_appointment_service),
    _: None = Depends(rate_limit_global),
):
    return service.reschedule_appointment(
        professional_id, appointment_id, data.dateTime, data.durationMinutes
    )


@appointments_router.post("/{appointment_id}/cancel", response_model=AppointmentResponse)
async def cancel_appointment(
    professional_id: int,
    appointment_id: str,
    service: AppointmentService = Depends(get_appointment_service),
    _: None = Depends(rate_limit_global),
):
    return service.cancel_appointment(professional_id, appointment_id)


@appointments_router.patch("/{appointment_id}/status", response_model=AppointmentResponse)
async def update_appointment_status(
    professional_id: int,
    appointment_id: str,
    data: AppointmentStatusUpdate,
    service: AppointmentService = Depends(get_appointment_service),
    _: None = Depends(rate_limit_global),
):
    return service.update_status(professional_id, appointment_id, data.status)
