# telecare/routers/payouts.py
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import crud, models, schemas, security
from ..database import get_db
from ..dependencies import get_payout_service
from ..services.payout_service import PayoutService

router = APIRouter(
    prefix="/payouts",
    tags=["Payouts"],
    responses={404: {"description": "Not found"}},
)


@router.post("", response_model=schemas.PayoutCreated, status_code=201)
def request_payout(
    payload: schemas.PayoutCreate,
    payouts: PayoutService = Depends(get_payout_service),
    current_account: models.Account = Depends(security.require_doctor),
):
    payout = payouts.request_payout(current_account.id, payload.amount)
    return schemas.PayoutCreated(
        payout_id=payout.id,
        status=payout.status,
        payout=schemas.PayoutResponse.model_validate(payout),
    )


@router.get("", response_model=List[schemas.PayoutResponse])
def list_my_payouts(
    db: Session = Depends(get_db),
    current_account: models.Account = Depends(security.require_doctor),
):
    return crud.get_payouts(db, doctor_id=current_account.id)


@router.post("/{payout_id}/approve", response_model=schemas.PayoutResponse)
def approve_payout(
    payout_id: int,
    payouts: PayoutService = Depends(get_payout_service),
    current_account: models.Account = Depends(security.require_admin),
):
    return payouts.approve_payout(current_account.id, payout_id)


@router.post("/{payout_id}/reject", response_model=schemas.PayoutResponse)
def reject_payout(
    payout_id: int,
    payouts: PayoutService = Depends(get_payout_service),
    current_account: models.Account = Depends(security.require_admin),
):
    return payouts.reject_payout(current_account.id, payout_id)
