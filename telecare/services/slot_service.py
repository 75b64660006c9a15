# telecare/services/slot_service.py
from dataclasses import dataclass
from datetime import datetime
from typing import Iterator, List, Optional, Sequence

import structlog
from sqlalchemy import exists
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import crud, models
from ..compliance_logger import ComplianceLogger
from ..core.timeutils import as_utc, utcnow
from ..errors import (
    DoctorNotVerified, NotFoundError, RoleNotAllowed, SlotHasAppointment, SlotNotFound, ValidationError,
)
from .unit_of_work import atomic

logger = structlog.get_logger(__name__)


@dataclass
class SlotWindow:
    start_time: datetime
    end_time: datetime


@dataclass
class SlotView:
    """A slot as seen by readers; ``booked`` is computed from the appointment link."""
    id: int
    doctor_id: int
    start_time: datetime
    end_time: datetime
    booked: bool
    appointment_id: Optional[int] = None

    @property
    def status(self) -> models.SlotStatus:
        return models.SlotStatus.BOOKED if self.booked else models.SlotStatus.AVAILABLE


def _unbooked():
    return ~exists().where(models.Appointment.slot_id == models.AvailabilitySlot.id)


def normalize_windows(windows: Sequence[SlotWindow]) -> List[SlotWindow]:
    """Validate and convert a batch of windows to UTC before any write happens."""
    if not windows:
        raise ValidationError("At least one slot is required")
    normalized = []
    for index, window in enumerate(windows):
        if window.start_time is None or window.end_time is None:
            raise ValidationError("Slot start and end times are required", {"index": index})
        start, end = as_utc(window.start_time), as_utc(window.end_time)
        if start >= end:
            raise ValidationError("Slot start time must be before its end time", {"index": index})
        normalized.append(SlotWindow(start, end))
    return normalized


class SlotService:
    """CRUD over a doctor's availability slots.

    Overlapping slots for one doctor are accepted; each slot can still be
    booked at most once.
    """

    def __init__(self, db: Session):
        self.db = db
        self.audit = ComplianceLogger(db)

    def _load_doctor(self, doctor_id: int) -> models.Account:
        doctor = crud.get_account_or_404(self.db, doctor_id)
        if doctor.role != models.AccountRole.DOCTOR:
            raise RoleNotAllowed(doctor.role, [models.AccountRole.DOCTOR])
        return doctor

    def _load_owned_unbooked_slot(self, doctor_id: int, slot_id: int) -> models.AvailabilitySlot:
        slot = (
            self.db.query(models.AvailabilitySlot)
            .filter(models.AvailabilitySlot.id == slot_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if slot is None:
            raise SlotNotFound(slot_id)
        if crud.get_slot_appointment_id(self.db, slot.id) is not None:
            raise SlotHasAppointment(slot_id)
        if slot.doctor_id != doctor_id:
            raise NotFoundError("Slot does not belong to this doctor", {"slot_id": slot_id}, code="SLOT_NOT_FOUND")
        return slot

    def create_slots(self, doctor_id: int, windows: Sequence[SlotWindow], replace_all: bool = False) -> int:
        """Create slots for a verified doctor and return how many were created.

        With ``replace_all`` every future slot without an appointment is
        removed first, in the same transaction.
        """
        normalized = normalize_windows(windows)
        doctor = self._load_doctor(doctor_id)
        if not doctor.is_verified_doctor:
            raise DoctorNotVerified(doctor.id)

        with atomic(self.db, "create_slots", doctor_id=doctor.id):
            deleted = 0
            if replace_all:
                deleted = self._delete_future_unbooked(doctor.id)
            self.db.add_all(
                [
                    models.AvailabilitySlot(doctor_id=doctor.id, start_time=w.start_time, end_time=w.end_time)
                    for w in normalized
                ]
            )
            self.db.flush()
            self.audit.log_event(
                actor_id=doctor.id,
                action=models.AuditAction.SLOTS_CREATE,
                category="SLOTS",
                resource_type="Account",
                resource_id=doctor.id,
                details=f"Created {len(normalized)} slots (replaced {deleted})",
            )
        logger.info("slots_created", doctor_id=doctor.id, created=len(normalized), replaced=deleted)
        return len(normalized)

    def _delete_future_unbooked(self, doctor_id: int) -> int:
        # Slots booked after the caller last looked are skipped by the guard
        return (
            self.db.query(models.AvailabilitySlot)
            .filter(
                models.AvailabilitySlot.doctor_id == doctor_id,
                models.AvailabilitySlot.start_time >= utcnow(),
                _unbooked(),
            )
            .delete(synchronize_session="fetch")
        )

    def _raise_lost_slot(self, slot_id: int) -> None:
        if crud.get_slot_appointment_id(self.db, slot_id) is not None:
            raise SlotHasAppointment(slot_id)
        raise SlotNotFound(slot_id)

    def delete_slot(self, doctor_id: int, slot_id: int) -> None:
        try:
            with atomic(self.db, "delete_slot", passthrough_integrity=True, doctor_id=doctor_id, slot_id=slot_id):
                slot = self._load_owned_unbooked_slot(doctor_id, slot_id)
                starts_at = as_utc(slot.start_time)
                deleted = (
                    self.db.query(models.AvailabilitySlot)
                    .filter(models.AvailabilitySlot.id == slot.id, _unbooked())
                    .delete(synchronize_session=False)
                )
                if deleted != 1:
                    self._raise_lost_slot(slot_id)
                self.db.expunge(slot)
                self.audit.log_event(
                    actor_id=doctor_id,
                    action=models.AuditAction.SLOT_DELETE,
                    category="SLOTS",
                    resource_type="AvailabilitySlot",
                    resource_id=slot_id,
                    details=f"Deleted slot starting {starts_at.isoformat()}",
                )
        except IntegrityError as e:
            raise SlotHasAppointment(slot_id) from e
        logger.info("slot_deleted", doctor_id=doctor_id, slot_id=slot_id)

    def update_slot(
        self,
        doctor_id: int,
        slot_id: int,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        status: Optional[models.SlotStatus] = None,
    ) -> SlotView:
        """Move an unbooked slot's bounds. Booked state cannot be set by hand."""
        if status is not None and status != models.SlotStatus.AVAILABLE:
            raise ValidationError("Slot status BOOKED is derived from appointments and cannot be set", {"status": status.value})

        try:
            with atomic(self.db, "update_slot", passthrough_integrity=True, doctor_id=doctor_id, slot_id=slot_id):
                slot = self._load_owned_unbooked_slot(doctor_id, slot_id)
                new_start = as_utc(start_time) if start_time else as_utc(slot.start_time)
                new_end = as_utc(end_time) if end_time else as_utc(slot.end_time)
                if new_start >= new_end:
                    raise ValidationError("Slot start time must be before its end time")
                # Conditional on the slot still being free
                updated = (
                    self.db.query(models.AvailabilitySlot)
                    .filter(models.AvailabilitySlot.id == slot.id, _unbooked())
                    .update(
                        {
                            models.AvailabilitySlot.start_time: new_start,
                            models.AvailabilitySlot.end_time: new_end,
                            models.AvailabilitySlot.updated_at: utcnow(),
                        },
                        synchronize_session=False,
                    )
                )
                if updated != 1:
                    self._raise_lost_slot(slot_id)
                self.audit.log_event(
                    actor_id=doctor_id,
                    action=models.AuditAction.SLOT_UPDATE,
                    category="SLOTS",
                    resource_type="AvailabilitySlot",
                    resource_id=slot.id,
                    details=f"Moved slot to {new_start.isoformat()} - {new_end.isoformat()}",
                )
        except IntegrityError as e:
            raise SlotHasAppointment(slot_id) from e
        self.db.refresh(slot)
        return SlotView(slot.id, slot.doctor_id, new_start, new_end, booked=False)

    def iter_availability(
        self,
        doctor_id: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        only_available: bool = False,
        batch_size: int = 200,
    ) -> Iterator[SlotView]:
        """Yield the doctor's slots in start-time order.

        Each call runs a fresh query, so the sequence can be iterated again.
        """
        query = (
            self.db.query(models.AvailabilitySlot, models.Appointment.id)
            .outerjoin(models.Appointment, models.Appointment.slot_id == models.AvailabilitySlot.id)
            .filter(models.AvailabilitySlot.doctor_id == doctor_id)
        )
        if start:
            query = query.filter(models.AvailabilitySlot.start_time >= as_utc(start))
        if end:
            query = query.filter(models.AvailabilitySlot.start_time <= as_utc(end))
        if only_available:
            query = query.filter(models.Appointment.id.is_(None))
        query = query.order_by(models.AvailabilitySlot.start_time, models.AvailabilitySlot.id)

        for slot, appointment_id in query.yield_per(batch_size):
            yield SlotView(
                id=slot.id,
                doctor_id=slot.doctor_id,
                start_time=as_utc(slot.start_time),
                end_time=as_utc(slot.end_time),
                booked=appointment_id is not None,
                appointment_id=appointment_id,
            )

    def list_availability(self, doctor_id: int, start: Optional[datetime] = None, end: Optional[datetime] = None, only_available: bool = False) -> List[SlotView]:
        crud.get_account_or_404(self.db, doctor_id)
        return list(self.iter_availability(doctor_id, start, end, only_available))
