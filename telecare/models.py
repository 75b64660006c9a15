# telecare/models.py
import enum

from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, Text, CheckConstraint,
    Enum as SQLAlchemyEnum, Index, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .core.timeutils import utcnow
from .database import Base


class AccountRole(str, enum.Enum):
    PATIENT = "PATIENT"
    DOCTOR = "DOCTOR"
    ADMIN = "ADMIN"


class VerificationStatus(str, enum.Enum):
    PENDING = "PENDING"
    UNDER_REVIEW = "UNDER_REVIEW"
    VERIFIED = "VERIFIED"
    REJECTED = "REJECTED"


class SlotStatus(str, enum.Enum):
    AVAILABLE = "AVAILABLE"
    BOOKED = "BOOKED"


class AppointmentStatus(str, enum.Enum):
    SCHEDULED = "SCHEDULED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class TransactionType(str, enum.Enum):
    CREDIT_PURCHASE = "CREDIT_PURCHASE"
    APPOINTMENT_DEDUCTION = "APPOINTMENT_DEDUCTION"
    ADMIN_ADJUSTMENT = "ADMIN_ADJUSTMENT"
    PAYOUT = "PAYOUT"


class PayoutStatus(str, enum.Enum):
    PROCESSING = "PROCESSING"
    PROCESSED = "PROCESSED"
    REJECTED = "REJECTED"


class AuditAction(str, enum.Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    SLOTS_CREATE = "SLOTS_CREATE"
    SLOT_DELETE = "SLOT_DELETE"
    SLOT_UPDATE = "SLOT_UPDATE"
    APPOINTMENT_BOOK = "APPOINTMENT_BOOK"
    APPOINTMENT_CANCEL = "APPOINTMENT_CANCEL"
    APPOINTMENT_COMPLETE = "APPOINTMENT_COMPLETE"
    CREDIT_PURCHASE = "CREDIT_PURCHASE"
    CREDIT_ALLOCATION = "CREDIT_ALLOCATION"
    CREDIT_ADJUSTMENT = "CREDIT_ADJUSTMENT"
    PAYOUT_REQUEST = "PAYOUT_REQUEST"
    PAYOUT_APPROVE = "PAYOUT_APPROVE"
    PAYOUT_REJECT = "PAYOUT_REJECT"
    DOCTOR_REVIEW = "DOCTOR_REVIEW"


class Account(Base):
    """A patient, doctor or admin known through the external identity provider.

    ``credits`` is a cache of the ledger sum and is only changed by the
    ledger service together with a LedgerEntry.
    """
    __tablename__ = "accounts"
    __table_args__ = (
        CheckConstraint("credits >= 0", name="ck_accounts_credits_non_negative"),
        Index("idx_accounts_role_verification", "role", "verification_status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    external_id = Column(String(255), unique=True, index=True, nullable=False)
    email = Column(String(255), nullable=True)
    name = Column(String(255), nullable=True)
    role = Column(SQLAlchemyEnum(AccountRole, name="account_role"), nullable=False)
    credits = Column(Integer, nullable=False, default=0)

    # Doctor-only attributes
    specialty = Column(String(100), nullable=True)
    experience_years = Column(Integer, nullable=True)
    description = Column(Text, nullable=True)
    credential_url = Column(String(500), nullable=True)
    consultation_price = Column(Integer, nullable=True)
    payout_email = Column(String(255), nullable=True)
    verification_status = Column(SQLAlchemyEnum(VerificationStatus, name="verification_status"), nullable=True)
    verification_notes = Column(Text, nullable=True)
    verified_at = Column(DateTime(timezone=True), nullable=True)
    verified_by = Column(Integer, ForeignKey("accounts.id"), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=utcnow)

    # Relationships
    slots = relationship("AvailabilitySlot", back_populates="doctor")
    transactions = relationship("LedgerEntry", back_populates="account", order_by="LedgerEntry.id")

    @property
    def is_verified_doctor(self) -> bool:
        return self.role == AccountRole.DOCTOR and self.verification_status == VerificationStatus.VERIFIED


class AvailabilitySlot(Base):
    """A bookable window. Booked state is derived from the linked appointment."""
    __tablename__ = "availability_slots"
    __table_args__ = (
        CheckConstraint("start_time < end_time", name="ck_slots_time_range"),
        Index("idx_slots_doctor_start", "doctor_id", "start_time"),
    )

    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(Integer, ForeignKey("accounts.id"), nullable=False)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=utcnow)

    doctor = relationship("Account", back_populates="slots")
    # Deleting a slot never rewrites appointments; the foreign key refuses it instead
    appointment = relationship("Appointment", back_populates="slot", uselist=False, passive_deletes="all")


class Appointment(Base):
    """A scheduled encounter.

    ``slot_id`` is UNIQUE: the storage layer, not the application, guarantees
    at most one appointment per slot. Cancelling clears it to release the slot.
    """
    __tablename__ = "appointments"
    __table_args__ = (
        UniqueConstraint("slot_id", name="uq_appointments_slot_id"),
        Index("idx_appointments_patient_start", "patient_id", "start_time"),
        Index("idx_appointments_doctor_start", "doctor_id", "start_time"),
    )

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("accounts.id"), nullable=False)
    doctor_id = Column(Integer, ForeignKey("accounts.id"), nullable=False)
    slot_id = Column(Integer, ForeignKey("availability_slots.id"), nullable=True)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    status = Column(SQLAlchemyEnum(AppointmentStatus, name="appointment_status"), default=AppointmentStatus.SCHEDULED, nullable=False, index=True)
    patient_description = Column(Text, nullable=True)
    credits_charged = Column(Integer, nullable=False)

    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_by = Column(Integer, ForeignKey("accounts.id"), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=utcnow)

    patient = relationship("Account", foreign_keys=[patient_id])
    doctor = relationship("Account", foreign_keys=[doctor_id])
    slot = relationship("AvailabilitySlot", back_populates="appointment")


class LedgerEntry(Base):
    """One immutable credit movement."""
    __tablename__ = "credit_transactions"
    __table_args__ = (
        UniqueConstraint("account_id", "package_id", "allocation_period", name="uq_ledger_monthly_allocation"),
        Index("idx_ledger_account_created", "account_id", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False)
    amount = Column(Integer, nullable=False)
    type = Column(SQLAlchemyEnum(TransactionType, name="transaction_type"), nullable=False)
    description = Column(Text, nullable=True)
    package_id = Column(String(100), nullable=True)
    # Set only for recurring plan allocations, e.g. "2026-10"
    allocation_period = Column(String(7), nullable=True)
    external_reference = Column(String(255), unique=True, nullable=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=True)
    payout_id = Column(Integer, ForeignKey("payouts.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    account = relationship("Account", back_populates="transactions")


class PayoutRequest(Base):
    __tablename__ = "payouts"
    __table_args__ = (
        CheckConstraint("credits > 0", name="ck_payouts_credits_positive"),
        Index("idx_payouts_status_created", "status", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(Integer, ForeignKey("accounts.id"), nullable=False)
    credits = Column(Integer, nullable=False)
    amount_cents = Column(Integer, nullable=False)
    platform_fee_cents = Column(Integer, nullable=False)
    net_amount_cents = Column(Integer, nullable=False)
    payout_email = Column(String(255), nullable=True)
    status = Column(SQLAlchemyEnum(PayoutStatus, name="payout_status"), default=PayoutStatus.PROCESSING, nullable=False)
    processed_by = Column(Integer, ForeignKey("accounts.id"), nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=utcnow)

    doctor = relationship("Account", foreign_keys=[doctor_id])


class AuditLog(Base):
    """Audit trail of state-changing actions."""
    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("idx_audit_logs_actor_time", "actor_id", "timestamp"),
        Index("idx_audit_logs_category_time", "category", "timestamp"),
    )

    id = Column(Integer, primary_key=True, index=True)
    actor_id = Column(Integer, ForeignKey("accounts.id"), nullable=True)
    action = Column(SQLAlchemyEnum(AuditAction, name="audit_action"), nullable=False)
    category = Column(String(50), nullable=False)
    severity = Column(String(20), default="INFO", nullable=False)
    resource_type = Column(String(50), nullable=True)
    resource_id = Column(Integer, nullable=True)
    details = Column(Text, nullable=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=utcnow)
