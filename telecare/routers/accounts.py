# telecare/routers/accounts.py
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .. import crud, models, schemas, security
from ..database import get_db

router = APIRouter(
    prefix="/accounts",
    tags=["Accounts"],
    responses={404: {"description": "Not found"}},
)


@router.get("/me", response_model=schemas.AccountResponse)
def read_current_account(current_account: models.Account = Depends(security.get_current_account)):
    return current_account


@router.get("/me/transactions", response_model=List[schemas.LedgerEntryResponse])
def read_my_transactions(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    current_account: models.Account = Depends(security.get_current_account),
):
    """Ledger history of the caller, newest first."""
    return crud.get_transactions(db, current_account.id, skip=skip, limit=limit)


@router.put("/me/doctor-profile", response_model=schemas.DoctorResponse)
def update_my_doctor_profile(
    profile: schemas.DoctorProfileUpdate,
    db: Session = Depends(get_db),
    current_account: models.Account = Depends(security.require_doctor),
):
    """Onboarding details reviewed by admins. Verification status is left as is."""
    return crud.update_doctor_profile(db, current_account, profile.model_dump(exclude_unset=True))
