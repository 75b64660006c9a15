# telecare/schemas.py
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, computed_field, field_validator, model_validator

from .core.timeutils import as_utc
from .models import (
    AccountRole, AppointmentStatus, PayoutStatus, SlotStatus, TransactionType, VerificationStatus,
)


# --- Base Schemas ---
class BaseSchema(BaseModel):
    """Datetimes leave the API as aware UTC values even when storage drops tzinfo."""

    @field_validator("*", mode="after")
    @classmethod
    def _datetimes_as_utc(cls, v):
        if isinstance(v, datetime):
            return as_utc(v)
        return v


# --- Account Schemas ---
class AccountResponse(BaseSchema):
    id: int
    external_id: str
    email: Optional[str] = None
    name: Optional[str] = None
    role: AccountRole
    credits: int
    verification_status: Optional[VerificationStatus] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class DoctorProfileUpdate(BaseSchema):
    specialty: str = Field(..., min_length=1, max_length=100)
    experience_years: int = Field(..., ge=0, le=80)
    description: Optional[str] = None
    credential_url: Optional[str] = Field(None, max_length=500)
    consultation_price: Optional[int] = Field(None, ge=0)
    payout_email: Optional[str] = Field(None, max_length=255)


class DoctorResponse(BaseSchema):
    id: int
    name: Optional[str] = None
    email: Optional[str] = None
    specialty: Optional[str] = None
    experience_years: Optional[int] = None
    description: Optional[str] = None
    credential_url: Optional[str] = None
    consultation_price: Optional[int] = None
    verification_status: Optional[VerificationStatus] = None
    verification_notes: Optional[str] = None
    verified_at: Optional[datetime] = None
    verified_by: Optional[int] = None

    class Config:
        from_attributes = True


class DoctorReviewRequest(BaseSchema):
    decision: VerificationStatus
    notes: Optional[str] = Field(None, max_length=2000)


# --- Availability Schemas ---
class SlotWindowIn(BaseSchema):
    start_time: datetime = Field(..., alias="startTime")
    end_time: datetime = Field(..., alias="endTime")

    class Config:
        populate_by_name = True

    @model_validator(mode="after")
    def check_range(self):
        if self.start_time >= self.end_time:
            raise ValueError("startTime must be before endTime")
        return self


class AvailabilityCreate(BaseSchema):
    slots: List[SlotWindowIn] = Field(..., min_length=1)
    replace_all: bool = Field(False, alias="replaceAll")

    class Config:
        populate_by_name = True


class AvailabilityCreateResponse(BaseSchema):
    slots_created: int = Field(..., alias="slotsCreated")

    class Config:
        populate_by_name = True


class SlotUpdate(BaseSchema):
    start_time: Optional[datetime] = Field(None, alias="startTime")
    end_time: Optional[datetime] = Field(None, alias="endTime")
    status: Optional[SlotStatus] = None

    class Config:
        populate_by_name = True


class SlotResponse(BaseSchema):
    id: int
    doctor_id: int
    start_time: datetime
    end_time: datetime
    booked: bool
    appointment_id: Optional[int] = None

    class Config:
        from_attributes = True

    @computed_field
    @property
    def status(self) -> SlotStatus:
        return SlotStatus.BOOKED if self.booked else SlotStatus.AVAILABLE


# --- Appointment Schemas ---
class AppointmentCreate(BaseSchema):
    slot_id: int = Field(..., alias="slotId")
    description: Optional[str] = Field(None, max_length=2000)

    class Config:
        populate_by_name = True


class AppointmentResponse(BaseSchema):
    id: int
    patient_id: int
    doctor_id: int
    slot_id: Optional[int] = None
    start_time: datetime
    end_time: datetime
    status: AppointmentStatus
    patient_description: Optional[str] = None
    credits_charged: int
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[int] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class AppointmentBooked(BaseSchema):
    appointment_id: int = Field(..., alias="appointmentId")
    appointment: AppointmentResponse
    credits_remaining: int

    class Config:
        populate_by_name = True


# --- Ledger Schemas ---
class LedgerEntryResponse(BaseSchema):
    id: int
    account_id: int
    amount: int
    type: TransactionType
    description: Optional[str] = None
    package_id: Optional[str] = None
    appointment_id: Optional[int] = None
    payout_id: Optional[int] = None
    created_at: datetime

    class Config:
        from_attributes = True


class MonthlyAllocationRequest(BaseSchema):
    account_id: int = Field(..., alias="accountId")
    plan_id: str = Field(..., alias="planId", min_length=1, max_length=100)

    class Config:
        populate_by_name = True


class MonthlyAllocationResponse(BaseSchema):
    account_id: int
    plan_id: str
    period: str
    allocated: bool
    credits: int
    balance: int
    entry_id: Optional[int] = None

    class Config:
        from_attributes = True


class CreditPurchaseCreate(BaseSchema):
    account_id: int
    credits: int = Field(..., gt=0)
    package_id: Optional[str] = Field(None, max_length=100)
    external_reference: str = Field(..., min_length=1, max_length=255)


class CreditAdjustmentCreate(BaseSchema):
    amount: int
    description: Optional[str] = Field(None, max_length=500)

    @field_validator("amount")
    @classmethod
    def non_zero(cls, v):
        if v == 0:
            raise ValueError("amount must not be zero")
        return v


# --- Payout Schemas ---
class PayoutCreate(BaseSchema):
    amount: int = Field(..., gt=0, description="Credits to pay out")


class PayoutResponse(BaseSchema):
    id: int
    doctor_id: int
    credits: int
    amount_cents: int
    platform_fee_cents: int
    net_amount_cents: int
    payout_email: Optional[str] = None
    status: PayoutStatus
    processed_by: Optional[int] = None
    processed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PayoutCreated(BaseSchema):
    payout_id: int = Field(..., alias="payoutId")
    status: PayoutStatus
    payout: PayoutResponse

    class Config:
        populate_by_name = True


# --- Health Schemas ---
class LedgerMismatch(BaseModel):
    account_id: int
    cached_balance: int
    ledger_total: int
    issue: str


class OrphanedAppointment(BaseModel):
    appointment_id: int
    status: AppointmentStatus
    issue: str


class ConsistencyReport(BaseModel):
    ledger_mismatches: List[LedgerMismatch]
    appointments_without_slots: List[OrphanedAppointment]
