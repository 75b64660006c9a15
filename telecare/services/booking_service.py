# telecare/services/booking_service.py
from typing import Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import crud, models
from ..compliance_logger import ComplianceLogger
from ..config import Settings
from ..core.timeutils import as_utc, utcnow
from ..errors import (
    AlreadyCancelled, DoctorNotVerified, InsufficientBalance, InsufficientCredits,
    InvalidStatusTransition, RoleNotAllowed, SlotAlreadyBooked, SlotNotFound,
    UnauthorizedError, ValidationError,
)
from .ledger_service import LedgerService
from .unit_of_work import atomic

logger = structlog.get_logger(__name__)


class BookingService:
    """Turns a slot reservation and its payment into one transaction.

    The appointment row is inserted and flushed before either balance is
    touched. ``appointments.slot_id`` is UNIQUE, so when several callers race
    for one slot the database rejects every insert but the first and no
    losing caller ever reaches the debit.
    """

    def __init__(self, db: Session, settings: Settings):
        self.db = db
        self.settings = settings
        self.ledger = LedgerService(db, settings)
        self.audit = ComplianceLogger(db)

    def _get_slot(self, slot_id: int) -> Optional[models.AvailabilitySlot]:
        return (
            self.db.query(models.AvailabilitySlot)
            .filter(models.AvailabilitySlot.id == slot_id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    def book_slot(self, patient_id: int, slot_id: int, description: Optional[str] = None) -> models.Appointment:
        cost = self.settings.appointment_cost

        slot = self._get_slot(slot_id)
        if slot is None:
            raise SlotNotFound(slot_id)
        if crud.get_slot_appointment_id(self.db, slot.id) is not None:
            raise SlotAlreadyBooked(slot_id)

        patient = crud.get_account_or_404(self.db, patient_id)
        if patient.role != models.AccountRole.PATIENT:
            raise RoleNotAllowed(patient.role, [models.AccountRole.PATIENT])
        doctor = slot.doctor
        if not doctor.is_verified_doctor:
            raise DoctorNotVerified(doctor.id)
        if as_utc(slot.start_time) <= utcnow():
            raise ValidationError("Cannot book a slot that has already started", {"slot_id": slot_id})
        if patient.credits < cost:
            raise InsufficientCredits(patient.id, patient.credits, cost)

        try:
            with atomic(self.db, "book_slot", passthrough_integrity=True, slot_id=slot_id, patient_id=patient.id):
                appointment = models.Appointment(
                    patient_id=patient.id,
                    doctor_id=doctor.id,
                    slot_id=slot.id,
                    start_time=slot.start_time,
                    end_time=slot.end_time,
                    status=models.AppointmentStatus.SCHEDULED,
                    patient_description=description,
                    credits_charged=cost,
                )
                self.db.add(appointment)
                # Claim the slot first; a losing racer fails here with nothing debited
                self.db.flush()

                self.ledger.apply_movement(
                    patient,
                    -cost,
                    models.TransactionType.APPOINTMENT_DEDUCTION,
                    description=f"Deducted {cost} credits for appointment with {doctor.name or 'doctor'}",
                    insufficient=InsufficientCredits,
                    appointment_id=appointment.id,
                )
                self.ledger.apply_movement(
                    doctor,
                    cost,
                    models.TransactionType.APPOINTMENT_DEDUCTION,
                    description=f"Received {cost} credits for appointment with {patient.name or 'patient'}",
                    appointment_id=appointment.id,
                )
                self.audit.log_event(
                    actor_id=patient.id,
                    action=models.AuditAction.APPOINTMENT_BOOK,
                    category="APPOINTMENTS",
                    resource_type="Appointment",
                    resource_id=appointment.id,
                    details=f"Booked slot {slot.id} for {cost} credits",
                )
        except IntegrityError as e:
            if self.db.get(models.AvailabilitySlot, slot_id) is None:
                raise SlotNotFound(slot_id) from e
            self.audit.log_failure(
                actor_id=patient.id,
                action=models.AuditAction.APPOINTMENT_BOOK,
                category="APPOINTMENTS",
                error_code="SLOT_ALREADY_BOOKED",
                resource_type="AvailabilitySlot",
                resource_id=slot_id,
            )
            raise SlotAlreadyBooked(slot_id) from e

        logger.info(
            "appointment_booked",
            appointment_id=appointment.id,
            slot_id=slot_id,
            patient_id=patient.id,
            doctor_id=doctor.id,
            credits=cost,
        )
        return appointment

    def _check_participant(self, appointment: models.Appointment, actor: models.Account) -> None:
        if actor.role == models.AccountRole.ADMIN:
            return
        if actor.id not in (appointment.patient_id, appointment.doctor_id):
            raise UnauthorizedError("Not authorized to modify this appointment", {"appointment_id": appointment.id})

    def cancel_appointment(self, appointment_id: int, actor_id: int) -> models.Appointment:
        """Cancel, release the slot and reverse exactly what the booking charged."""
        appointment = crud.get_appointment_or_404(self.db, appointment_id)
        actor = crud.get_account_or_404(self.db, actor_id)
        self._check_participant(appointment, actor)

        if appointment.status == models.AppointmentStatus.CANCELLED:
            raise AlreadyCancelled(appointment.id)
        if appointment.status != models.AppointmentStatus.SCHEDULED:
            raise InvalidStatusTransition("Appointment", appointment.status, models.AppointmentStatus.CANCELLED)

        refund = appointment.credits_charged
        released_slot_id = appointment.slot_id
        with atomic(self.db, "cancel_appointment", appointment_id=appointment.id, actor_id=actor.id):
            # Conditional on the status still being SCHEDULED, so a second concurrent cancel does nothing
            claimed = (
                self.db.query(models.Appointment)
                .filter(
                    models.Appointment.id == appointment.id,
                    models.Appointment.status == models.AppointmentStatus.SCHEDULED,
                )
                .update(
                    {
                        models.Appointment.status: models.AppointmentStatus.CANCELLED,
                        models.Appointment.slot_id: None,
                        models.Appointment.cancelled_at: utcnow(),
                        models.Appointment.cancelled_by: actor.id,
                        models.Appointment.updated_at: utcnow(),
                    },
                    synchronize_session=False,
                )
            )
            if claimed != 1:
                raise self._lost_transition(appointment, models.AppointmentStatus.CANCELLED)

            self.ledger.apply_movement(
                appointment.patient,
                refund,
                models.TransactionType.APPOINTMENT_DEDUCTION,
                description=f"Refund of {refund} credits for cancelled appointment",
                appointment_id=appointment.id,
            )
            self.ledger.apply_movement(
                appointment.doctor,
                -refund,
                models.TransactionType.APPOINTMENT_DEDUCTION,
                description=f"Reversal of {refund} credits for cancelled appointment",
                insufficient=InsufficientBalance,
                appointment_id=appointment.id,
            )
            self.audit.log_event(
                actor_id=actor.id,
                action=models.AuditAction.APPOINTMENT_CANCEL,
                category="APPOINTMENTS",
                resource_type="Appointment",
                resource_id=appointment.id,
                details=f"Cancelled appointment, released slot {released_slot_id}, refunded {refund} credits",
            )

        self.db.refresh(appointment)
        logger.info("appointment_cancelled", appointment_id=appointment.id, actor_id=actor.id, refunded=refund)
        return appointment

    def _lost_transition(self, appointment: models.Appointment, requested: models.AppointmentStatus):
        current = (
            self.db.query(models.Appointment.status)
            .filter(models.Appointment.id == appointment.id)
            .scalar()
        )
        if current == models.AppointmentStatus.CANCELLED and requested == models.AppointmentStatus.CANCELLED:
            return AlreadyCancelled(appointment.id)
        return InvalidStatusTransition("Appointment", current, requested)

    def complete_appointment(self, appointment_id: int, doctor_id: int) -> models.Appointment:
        appointment = crud.get_appointment_or_404(self.db, appointment_id)
        if appointment.doctor_id != doctor_id:
            raise UnauthorizedError("Only the appointment's doctor can complete it", {"appointment_id": appointment.id})
        if appointment.status != models.AppointmentStatus.SCHEDULED:
            raise InvalidStatusTransition("Appointment", appointment.status, models.AppointmentStatus.COMPLETED)

        with atomic(self.db, "complete_appointment", appointment_id=appointment.id):
            completed = (
                self.db.query(models.Appointment)
                .filter(
                    models.Appointment.id == appointment.id,
                    models.Appointment.status == models.AppointmentStatus.SCHEDULED,
                )
                .update(
                    {
                        models.Appointment.status: models.AppointmentStatus.COMPLETED,
                        models.Appointment.completed_at: utcnow(),
                        models.Appointment.updated_at: utcnow(),
                    },
                    synchronize_session=False,
                )
            )
            if completed != 1:
                raise self._lost_transition(appointment, models.AppointmentStatus.COMPLETED)
            self.audit.log_event(
                actor_id=doctor_id,
                action=models.AuditAction.APPOINTMENT_COMPLETE,
                category="APPOINTMENTS",
                resource_type="Appointment",
                resource_id=appointment.id,
            )

        self.db.refresh(appointment)
        logger.info("appointment_completed", appointment_id=appointment.id)
        return appointment
