# telecare/dependencies.py
# FastAPI dependencies that hand each request its own service instances,
# all bound to the request's session and the app's settings.

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from .config import Settings
from .database import get_db
from .services.booking_service import BookingService
from .services.ledger_service import LedgerService
from .services.payout_service import PayoutService
from .services.slot_service import SlotService
from .services.verification_service import VerificationService


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_ledger_service(db: Session = Depends(get_db), settings: Settings = Depends(get_app_settings)) -> LedgerService:
    return LedgerService(db, settings)


def get_slot_service(db: Session = Depends(get_db)) -> SlotService:
    return SlotService(db)


def get_booking_service(db: Session = Depends(get_db), settings: Settings = Depends(get_app_settings)) -> BookingService:
    return BookingService(db, settings)


def get_payout_service(db: Session = Depends(get_db), settings: Settings = Depends(get_app_settings)) -> PayoutService:
    return PayoutService(db, settings)


def get_verification_service(db: Session = Depends(get_db)) -> VerificationService:
    return VerificationService(db)
