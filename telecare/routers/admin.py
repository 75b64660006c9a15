# telecare/routers/admin.py
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .. import crud, models, schemas, security
from ..database import get_db
from ..dependencies import get_ledger_service, get_verification_service
from ..services.ledger_service import LedgerService
from ..services.verification_service import VerificationService

router = APIRouter(
    prefix="/admin",
    tags=["Admin"],
    responses={404: {"description": "Not found"}},
)


@router.get("/doctors", response_model=List[schemas.DoctorResponse], dependencies=[Depends(security.require_admin)])
def list_doctors_for_review(
    status: Optional[models.VerificationStatus] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
):
    """Doctors by verification status; without a filter, the review queue (PENDING and UNDER_REVIEW)."""
    statuses = [status] if status else [models.VerificationStatus.PENDING, models.VerificationStatus.UNDER_REVIEW]
    return crud.get_doctors(db, statuses=statuses, skip=skip, limit=limit)


@router.post("/doctors/{doctor_id}/review", response_model=schemas.DoctorResponse)
def review_doctor(
    doctor_id: int,
    review: schemas.DoctorReviewRequest,
    verification: VerificationService = Depends(get_verification_service),
    current_account: models.Account = Depends(security.require_admin),
):
    return verification.review_doctor(current_account.id, doctor_id, review.decision, review.notes)


@router.get("/payouts", response_model=List[schemas.PayoutResponse], dependencies=[Depends(security.require_admin)])
def list_payouts(
    status: Optional[models.PayoutStatus] = models.PayoutStatus.PROCESSING,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
):
    return crud.get_payouts(db, status=status, skip=skip, limit=limit)


@router.post("/accounts/{account_id}/credit-adjustments", response_model=schemas.LedgerEntryResponse, status_code=201)
def adjust_account_credits(
    account_id: int,
    adjustment: schemas.CreditAdjustmentCreate,
    ledger: LedgerService = Depends(get_ledger_service),
    current_account: models.Account = Depends(security.require_admin),
):
    return ledger.adjust_credits(current_account.id, account_id, adjustment.amount, adjustment.description)
