# telecare/routers/availability.py
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from .. import models, schemas, security
from ..dependencies import get_slot_service
from ..services.slot_service import SlotService, SlotWindow

router = APIRouter(
    prefix="/availability",
    tags=["Availability"],
    responses={404: {"description": "Not found"}},
)


@router.post("", response_model=schemas.AvailabilityCreateResponse, status_code=201)
def create_availability(
    payload: schemas.AvailabilityCreate,
    slots: SlotService = Depends(get_slot_service),
    current_account: models.Account = Depends(security.require_doctor),
):
    windows = [SlotWindow(w.start_time, w.end_time) for w in payload.slots]
    created = slots.create_slots(current_account.id, windows, replace_all=payload.replace_all)
    return schemas.AvailabilityCreateResponse(slots_created=created)


@router.get("", response_model=List[schemas.SlotResponse], dependencies=[Depends(security.get_current_account)])
def list_availability(
    doctor_id: int = Query(..., alias="doctorId"),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    only_available: bool = Query(False, alias="onlyAvailable"),
    slots: SlotService = Depends(get_slot_service),
):
    """Slots of one doctor in start-time order, each with its booked flag."""
    return slots.list_availability(doctor_id, start_date, end_date, only_available)


@router.delete("")
def delete_availability(
    slot_id: int = Query(..., alias="slotId"),
    slots: SlotService = Depends(get_slot_service),
    current_account: models.Account = Depends(security.require_doctor),
):
    slots.delete_slot(current_account.id, slot_id)
    return {"message": "Slot deleted", "slot_id": slot_id}


@router.patch("/{slot_id}", response_model=schemas.SlotResponse)
def update_availability(
    slot_id: int,
    patch: schemas.SlotUpdate,
    slots: SlotService = Depends(get_slot_service),
    current_account: models.Account = Depends(security.require_doctor),
):
    return slots.update_slot(
        current_account.id,
        slot_id,
        start_time=patch.start_time,
        end_time=patch.end_time,
        status=patch.status,
    )
