# telecare/routers/credits.py
from fastapi import APIRouter, Depends

from .. import models, schemas, security
from ..dependencies import get_ledger_service
from ..errors import UnauthorizedError
from ..services.ledger_service import LedgerService

router = APIRouter(
    prefix="/credits",
    tags=["Credits"],
    responses={404: {"description": "Not found"}},
)


@router.post("/allocate-monthly", response_model=schemas.MonthlyAllocationResponse)
def allocate_monthly_credits(
    payload: schemas.MonthlyAllocationRequest,
    ledger: LedgerService = Depends(get_ledger_service),
    current_account: models.Account = Depends(security.get_current_account),
):
    """Grant the plan's credits for the current month. Safe to call on every session start."""
    if current_account.role != models.AccountRole.ADMIN and current_account.id != payload.account_id:
        raise UnauthorizedError("Credits can only be allocated to your own account", {"account_id": payload.account_id})
    return ledger.allocate_monthly_credits(payload.account_id, payload.plan_id)


@router.post("/purchases", response_model=schemas.LedgerEntryResponse, status_code=201)
def record_credit_purchase(
    payload: schemas.CreditPurchaseCreate,
    ledger: LedgerService = Depends(get_ledger_service),
    current_account: models.Account = Depends(security.require_admin),
):
    """Record a completed gateway payment. Replays with the same reference return the original entry."""
    return ledger.record_purchase(
        payload.account_id,
        payload.credits,
        payload.package_id,
        payload.external_reference,
        actor_id=current_account.id,
    )
