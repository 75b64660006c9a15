# telecare/crud.py - lookups and account bootstrap shared by routers and services
from typing import List, Optional

import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from . import models
from .compliance_logger import ComplianceLogger
from .errors import AccountNotFound, AppointmentNotFound, DependencyFailure

logger = structlog.get_logger(__name__)


# ==================== ACCOUNTS ====================

def get_account(db: Session, account_id: int) -> Optional[models.Account]:
    return db.get(models.Account, account_id)


def get_account_or_404(db: Session, account_id: int) -> models.Account:
    account = get_account(db, account_id)
    if account is None:
        raise AccountNotFound(account_id)
    return account


def get_account_by_external_id(db: Session, external_id: str) -> Optional[models.Account]:
    return db.query(models.Account).filter(models.Account.external_id == external_id).first()


def get_or_create_account(
    db: Session,
    external_id: str,
    role: models.AccountRole,
    email: Optional[str] = None,
    name: Optional[str] = None,
) -> models.Account:
    """Return the account for an identity, creating it on first access.

    Doctors start in PENDING verification with no credits.
    """
    account = get_account_by_external_id(db, external_id)
    if account:
        return account

    account = models.Account(
        external_id=external_id,
        role=role,
        email=email,
        name=name,
        credits=0,
        verification_status=models.VerificationStatus.PENDING if role == models.AccountRole.DOCTOR else None,
    )
    try:
        db.add(account)
        db.flush()
        ComplianceLogger(db).log_event(
            actor_id=account.id,
            action=models.AuditAction.CREATE,
            category="ACCOUNTS",
            resource_type="Account",
            resource_id=account.id,
            details=f"Account created on first access as {role.value}",
        )
        db.commit()
        logger.info("account_created", account_id=account.id, role=role.value)
        return account
    except IntegrityError:
        # Another request created it first
        db.rollback()
        account = get_account_by_external_id(db, external_id)
        if account is None:
            raise DependencyFailure("Could not create account")
        return account
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("account_create_failed", external_id=external_id, error=str(e))
        raise DependencyFailure("A database error occurred while creating the account.")


def update_doctor_profile(db: Session, doctor: models.Account, profile: dict) -> models.Account:
    for field, value in profile.items():
        setattr(doctor, field, value)
    if doctor.verification_status is None:
        doctor.verification_status = models.VerificationStatus.PENDING
    ComplianceLogger(db).log_event(
        actor_id=doctor.id,
        action=models.AuditAction.UPDATE,
        category="ACCOUNTS",
        resource_type="Account",
        resource_id=doctor.id,
        details="Updated doctor profile: " + ", ".join(sorted(profile)),
    )
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("doctor_profile_update_failed", account_id=doctor.id, error=str(e))
        raise DependencyFailure("A database error occurred while updating the profile.")
    return doctor


def get_doctors(
    db: Session,
    statuses: Optional[List[models.VerificationStatus]] = None,
    specialty: Optional[str] = None,
    skip: int = 0,
    limit: int = 100,
) -> List[models.Account]:
    query = db.query(models.Account).filter(models.Account.role == models.AccountRole.DOCTOR)
    if statuses:
        query = query.filter(models.Account.verification_status.in_(statuses))
    if specialty:
        query = query.filter(models.Account.specialty == specialty)
    return query.order_by(models.Account.created_at.desc(), models.Account.id.desc()).offset(skip).limit(limit).all()


# ==================== LEDGER ====================

def get_transactions(db: Session, account_id: int, skip: int = 0, limit: int = 100) -> List[models.LedgerEntry]:
    return (
        db.query(models.LedgerEntry)
        .filter(models.LedgerEntry.account_id == account_id)
        .order_by(models.LedgerEntry.created_at.desc(), models.LedgerEntry.id.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )


# ==================== APPOINTMENTS ====================

def get_appointment(db: Session, appointment_id: int) -> Optional[models.Appointment]:
    return db.get(models.Appointment, appointment_id)


def get_appointment_or_404(db: Session, appointment_id: int) -> models.Appointment:
    appointment = get_appointment(db, appointment_id)
    if appointment is None:
        raise AppointmentNotFound(appointment_id)
    return appointment


def get_appointments_for_account(
    db: Session,
    account: models.Account,
    status: Optional[models.AppointmentStatus] = None,
    skip: int = 0,
    limit: int = 100,
) -> List[models.Appointment]:
    query = db.query(models.Appointment).options(joinedload(models.Appointment.slot))
    if account.role == models.AccountRole.DOCTOR:
        query = query.filter(models.Appointment.doctor_id == account.id)
    elif account.role == models.AccountRole.PATIENT:
        query = query.filter(models.Appointment.patient_id == account.id)
    if status:
        query = query.filter(models.Appointment.status == status)
    return query.order_by(models.Appointment.start_time).offset(skip).limit(limit).all()


# ==================== PAYOUTS ====================

def get_payouts(
    db: Session,
    status: Optional[models.PayoutStatus] = None,
    doctor_id: Optional[int] = None,
    skip: int = 0,
    limit: int = 100,
) -> List[models.PayoutRequest]:
    query = db.query(models.PayoutRequest)
    if status:
        query = query.filter(models.PayoutRequest.status == status)
    if doctor_id:
        query = query.filter(models.PayoutRequest.doctor_id == doctor_id)
    return query.order_by(models.PayoutRequest.created_at.desc(), models.PayoutRequest.id.desc()).offset(skip).limit(limit).all()


# ==================== CONSISTENCY ====================

def get_appointments_without_slots(db: Session) -> List[models.Appointment]:
    """Active appointments whose slot link was lost; only cancellation may clear it."""
    return (
        db.query(models.Appointment)
        .filter(
            models.Appointment.slot_id.is_(None),
            models.Appointment.status != models.AppointmentStatus.CANCELLED,
        )
        .order_by(models.Appointment.id)
        .all()
    )


# ==================== SLOTS ====================

def get_slot_appointment_id(db: Session, slot_id: int) -> Optional[int]:
    """Id of the appointment holding the slot, read from storage rather than a cached relationship."""
    row = db.query(models.Appointment.id).filter(models.Appointment.slot_id == slot_id).first()
    return row[0] if row else None
