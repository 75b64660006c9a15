# telecare/routers/appointments.py
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from .. import crud, models, schemas, security
from ..database import get_db
from ..dependencies import get_booking_service
from ..limiter import booking_rate_limit, limiter
from ..services.booking_service import BookingService

router = APIRouter(
    prefix="/appointments",
    tags=["Appointments"],
    responses={404: {"description": "Not found"}},
)


@router.post("", response_model=schemas.AppointmentBooked, status_code=201)
@limiter.limit(booking_rate_limit)
def book_appointment(
    request: Request,
    payload: schemas.AppointmentCreate,
    booking: BookingService = Depends(get_booking_service),
    current_account: models.Account = Depends(security.require_patient),
):
    """Book a slot and pay for it in one transaction.

    402 INSUFFICIENT_CREDITS means the patient must buy credits; 409
    SLOT_ALREADY_BOOKED means another slot must be picked.
    """
    appointment = booking.book_slot(current_account.id, payload.slot_id, payload.description)
    return schemas.AppointmentBooked(
        appointment_id=appointment.id,
        appointment=schemas.AppointmentResponse.model_validate(appointment),
        credits_remaining=current_account.credits,
    )


@router.get("", response_model=List[schemas.AppointmentResponse])
def list_my_appointments(
    status: Optional[models.AppointmentStatus] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    current_account: models.Account = Depends(security.get_current_account),
):
    """Own appointments for patients and doctors; admins see all of them."""
    return crud.get_appointments_for_account(db, current_account, status=status, skip=skip, limit=limit)


@router.post("/{appointment_id}/cancel", response_model=schemas.AppointmentResponse)
def cancel_appointment(
    appointment_id: int,
    booking: BookingService = Depends(get_booking_service),
    current_account: models.Account = Depends(security.get_current_account),
):
    return booking.cancel_appointment(appointment_id, current_account.id)


@router.post("/{appointment_id}/complete", response_model=schemas.AppointmentResponse)
def complete_appointment(
    appointment_id: int,
    booking: BookingService = Depends(get_booking_service),
    current_account: models.Account = Depends(security.require_doctor),
):
    return booking.complete_appointment(appointment_id, current_account.id)
