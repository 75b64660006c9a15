# telecare/services/verification_service.py
from typing import Optional

import structlog
from sqlalchemy.orm import Session

from .. import crud, models
from ..compliance_logger import ComplianceLogger
from ..core.timeutils import utcnow
from ..errors import InvalidStatusTransition, RoleNotAllowed
from .unit_of_work import atomic

logger = structlog.get_logger(__name__)

VerificationStatus = models.VerificationStatus

# Allowed review decisions per current status. VERIFIED -> PENDING suspends a
# doctor; REJECTED -> PENDING is the admin override for a resubmission.
ALLOWED_TRANSITIONS = {
    VerificationStatus.PENDING: {VerificationStatus.UNDER_REVIEW},
    VerificationStatus.UNDER_REVIEW: {
        VerificationStatus.VERIFIED,
        VerificationStatus.REJECTED,
        VerificationStatus.PENDING,
    },
    VerificationStatus.VERIFIED: {VerificationStatus.PENDING},
    VerificationStatus.REJECTED: {VerificationStatus.PENDING},
}


def can_transition(current: VerificationStatus, decision: VerificationStatus) -> bool:
    return decision in ALLOWED_TRANSITIONS.get(current, set())


class VerificationService:
    def __init__(self, db: Session):
        self.db = db
        self.audit = ComplianceLogger(db)

    def review_doctor(
        self,
        admin_id: int,
        doctor_id: int,
        decision: VerificationStatus,
        notes: Optional[str] = None,
    ) -> models.Account:
        """Record an admin decision on a doctor's verification.

        ``verified_at``/``verified_by`` describe the current verification only,
        so they are set on VERIFIED and cleared by every other decision.
        """
        admin = crud.get_account_or_404(self.db, admin_id)
        if admin.role != models.AccountRole.ADMIN:
            raise RoleNotAllowed(admin.role, [models.AccountRole.ADMIN])
        doctor = crud.get_account_or_404(self.db, doctor_id)
        if doctor.role != models.AccountRole.DOCTOR:
            raise RoleNotAllowed(doctor.role, [models.AccountRole.DOCTOR])

        current = doctor.verification_status or VerificationStatus.PENDING
        if not can_transition(current, decision):
            raise InvalidStatusTransition("Doctor verification", current, decision)

        with atomic(self.db, "review_doctor", doctor_id=doctor.id, admin_id=admin.id):
            doctor.verification_status = decision
            doctor.verification_notes = notes
            if decision == VerificationStatus.VERIFIED:
                doctor.verified_at = utcnow()
                doctor.verified_by = admin.id
            else:
                doctor.verified_at = None
                doctor.verified_by = None
            self.db.flush()
            self.audit.log_event(
                actor_id=admin.id,
                action=models.AuditAction.DOCTOR_REVIEW,
                category="VERIFICATION",
                resource_type="Account",
                resource_id=doctor.id,
                details=f"{current.value} -> {decision.value}" + (f": {notes}" if notes else ""),
            )

        logger.info("doctor_reviewed", doctor_id=doctor.id, admin_id=admin.id, previous=current.value, decision=decision.value)
        return doctor
