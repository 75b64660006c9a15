# telecare/routers/doctors.py
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .. import crud, models, schemas, security
from ..database import get_db

router = APIRouter(
    prefix="/doctors",
    tags=["Doctors"],
)


@router.get("", response_model=List[schemas.DoctorResponse], dependencies=[Depends(security.get_current_account)])
def list_verified_doctors(
    specialty: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
):
    return crud.get_doctors(db, statuses=[models.VerificationStatus.VERIFIED], specialty=specialty, skip=skip, limit=limit)
