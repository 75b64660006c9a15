# telecare/services/payout_service.py
import structlog
from sqlalchemy.orm import Session

from .. import crud, models
from ..compliance_logger import ComplianceLogger
from ..config import Settings
from ..core.timeutils import utcnow
from ..errors import (
    DoctorNotVerified, InsufficientBalance, PayoutAlreadyPending, PayoutAlreadyResolved,
    PayoutNotFound, RoleNotAllowed, ValidationError,
)
from .ledger_service import LedgerService
from .unit_of_work import atomic

logger = structlog.get_logger(__name__)


class PayoutService:
    """Admin-gated conversion of doctor credits into an external payout.

    A request is only a claim; the ledger is debited when an admin approves
    it, and the balance check happens then. PROCESSED and REJECTED are final.
    """

    def __init__(self, db: Session, settings: Settings):
        self.db = db
        self.settings = settings
        self.ledger = LedgerService(db, settings)
        self.audit = ComplianceLogger(db)

    def _get_payout_for_update(self, payout_id: int) -> models.PayoutRequest:
        payout = (
            self.db.query(models.PayoutRequest)
            .filter(models.PayoutRequest.id == payout_id)
            .with_for_update()
            .first()
        )
        if payout is None:
            raise PayoutNotFound(payout_id)
        return payout

    def _resolve(self, payout: models.PayoutRequest, status: models.PayoutStatus, admin_id: int) -> bool:
        """Move a PROCESSING request to its final status; False if another admin got there first."""
        resolved = (
            self.db.query(models.PayoutRequest)
            .filter(
                models.PayoutRequest.id == payout.id,
                models.PayoutRequest.status == models.PayoutStatus.PROCESSING,
            )
            .update(
                {
                    models.PayoutRequest.status: status,
                    models.PayoutRequest.processed_by: admin_id,
                    models.PayoutRequest.processed_at: utcnow(),
                    models.PayoutRequest.updated_at: utcnow(),
                },
                synchronize_session=False,
            )
        )
        return resolved == 1

    def request_payout(self, doctor_id: int, credits: int) -> models.PayoutRequest:
        if not isinstance(credits, int) or isinstance(credits, bool) or credits <= 0:
            raise ValidationError("Payout amount must be a positive whole number of credits", {"credits": credits})

        doctor = crud.get_account_or_404(self.db, doctor_id)
        if doctor.role != models.AccountRole.DOCTOR:
            raise RoleNotAllowed(doctor.role, [models.AccountRole.DOCTOR])
        if not doctor.is_verified_doctor:
            raise DoctorNotVerified(doctor.id)

        pending = (
            self.db.query(models.PayoutRequest)
            .filter(
                models.PayoutRequest.doctor_id == doctor.id,
                models.PayoutRequest.status == models.PayoutStatus.PROCESSING,
            )
            .first()
        )
        if pending:
            raise PayoutAlreadyPending(pending.id)

        amount_cents = credits * self.settings.credit_value_cents
        fee_cents = credits * self.settings.platform_fee_cents
        with atomic(self.db, "request_payout", doctor_id=doctor.id, credits=credits):
            payout = models.PayoutRequest(
                doctor_id=doctor.id,
                credits=credits,
                amount_cents=amount_cents,
                platform_fee_cents=fee_cents,
                net_amount_cents=amount_cents - fee_cents,
                payout_email=doctor.payout_email or doctor.email,
                status=models.PayoutStatus.PROCESSING,
            )
            self.db.add(payout)
            self.db.flush()
            self.audit.log_event(
                actor_id=doctor.id,
                action=models.AuditAction.PAYOUT_REQUEST,
                category="PAYOUTS",
                resource_type="PayoutRequest",
                resource_id=payout.id,
                details=f"Requested payout of {credits} credits",
            )
        logger.info("payout_requested", payout_id=payout.id, doctor_id=doctor.id, credits=credits)
        return payout

    def approve_payout(self, admin_id: int, payout_id: int) -> models.PayoutRequest:
        with atomic(self.db, "approve_payout", payout_id=payout_id, admin_id=admin_id):
            payout = self._get_payout_for_update(payout_id)
            if payout.status != models.PayoutStatus.PROCESSING:
                raise PayoutAlreadyResolved(payout.id, payout.status)

            # Balance is read again here: it may have changed since the request
            doctor = payout.doctor
            self.db.refresh(doctor)
            if doctor.credits < payout.credits:
                raise InsufficientBalance(doctor.id, doctor.credits, payout.credits)

            if not self._resolve(payout, models.PayoutStatus.PROCESSED, admin_id):
                self.db.refresh(payout)
                raise PayoutAlreadyResolved(payout.id, payout.status)

            self.ledger.apply_movement(
                doctor,
                -payout.credits,
                models.TransactionType.PAYOUT,
                description=f"Payout of {payout.credits} credits",
                insufficient=InsufficientBalance,
                payout_id=payout.id,
            )
            self.audit.log_event(
                actor_id=admin_id,
                action=models.AuditAction.PAYOUT_APPROVE,
                category="PAYOUTS",
                resource_type="PayoutRequest",
                resource_id=payout.id,
                details=f"Approved payout of {payout.credits} credits for doctor {doctor.id}",
            )

        self.db.refresh(payout)
        logger.info("payout_approved", payout_id=payout.id, admin_id=admin_id, credits=payout.credits)
        return payout

    def reject_payout(self, admin_id: int, payout_id: int) -> models.PayoutRequest:
        with atomic(self.db, "reject_payout", payout_id=payout_id, admin_id=admin_id):
            payout = self._get_payout_for_update(payout_id)
            if payout.status != models.PayoutStatus.PROCESSING:
                raise PayoutAlreadyResolved(payout.id, payout.status)
            if not self._resolve(payout, models.PayoutStatus.REJECTED, admin_id):
                self.db.refresh(payout)
                raise PayoutAlreadyResolved(payout.id, payout.status)
            self.audit.log_event(
                actor_id=admin_id,
                action=models.AuditAction.PAYOUT_REJECT,
                category="PAYOUTS",
                resource_type="PayoutRequest",
                resource_id=payout.id,
            )
        self.db.refresh(payout)
        logger.info("payout_rejected", payout_id=payout.id, admin_id=admin_id)
        return payout
