# telecare/routers/health.py
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
import structlog

from .. import crud, schemas, security
from ..database import get_db
from ..dependencies import get_ledger_service
from ..services.ledger_service import LedgerService

logger = structlog.get_logger(__name__)

router = APIRouter(
    prefix="/health",
    tags=["Health Checks"],
    responses={404: {"description": "Not found"}},
)


@router.get("")
def liveness(request: Request):
    settings = request.app.state.settings
    return {"status": "ok", "service": settings.app_name, "version": settings.app_version}


@router.get("/consistency-check", response_model=schemas.ConsistencyReport, dependencies=[Depends(security.require_admin)])
def check_system_consistency(
    db: Session = Depends(get_db),
    ledger: LedgerService = Depends(get_ledger_service),
) -> schemas.ConsistencyReport:
    """
    Compares every cached balance with its ledger sum and lists active
    appointments that lost their slot. Accessible only by admin users.
    """
    logger.info("consistency_check_started")
    mismatches = ledger.find_consistency_issues()
    orphans = [
        schemas.OrphanedAppointment(
            appointment_id=a.id,
            status=a.status,
            issue="Active appointment has no slot reference.",
        )
        for a in crud.get_appointments_without_slots(db)
    ]
    logger.info("consistency_check_finished", ledger_mismatches=len(mismatches), orphaned_appointments=len(orphans))
    return schemas.ConsistencyReport(
        ledger_mismatches=[schemas.LedgerMismatch(**m) for m in mismatches],
        appointments_without_slots=orphans,
    )
