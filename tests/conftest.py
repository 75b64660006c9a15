# tests/conftest.py
import itertools
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from telecare import models
from telecare.config import get_config_by_env
from telecare.core.timeutils import utcnow
from telecare.database import create_db_engine, create_session_factory, create_tables
from telecare.limiter import limiter
from telecare.main import create_app
from telecare.security import create_identity_token
from telecare.services.ledger_service import LedgerService
from telecare.services.slot_service import SlotService, SlotWindow

limiter.enabled = False

_ids = itertools.count(1)


@pytest.fixture
def settings(tmp_path):
    return get_config_by_env(
        "testing",
        database_url=f"sqlite:///{tmp_path / 'telecare-test.db'}",
        identity_jwt_secret="test-secret-key-that-is-long-enough-0123",
        appointment_cost=2,
        log_level="WARNING",
    )


@pytest.fixture
def engine(settings):
    engine = create_db_engine(settings)
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_account(db):
    def _make(role=models.AccountRole.PATIENT, name=None, verification_status=None, **extra):
        n = next(_ids)
        if role == models.AccountRole.DOCTOR and verification_status is None:
            verification_status = models.VerificationStatus.PENDING
        account = models.Account(
            external_id=f"idp|{role.value.lower()}-{n}",
            email=f"{role.value.lower()}{n}@example.com",
            name=name or f"{role.value.title()} {n}",
            role=role,
            credits=0,
            verification_status=verification_status,
            **extra,
        )
        db.add(account)
        db.commit()
        return account

    return _make


@pytest.fixture
def patient(make_account):
    return make_account(models.AccountRole.PATIENT)


@pytest.fixture
def doctor(make_account):
    return make_account(models.AccountRole.DOCTOR, verification_status=models.VerificationStatus.VERIFIED)


@pytest.fixture
def admin(make_account):
    return make_account(models.AccountRole.ADMIN)


@pytest.fixture
def fund(db, settings):
    """Give an account credits through the ledger so balance and entries agree."""
    def _fund(account, credits):
        LedgerService(db, settings).record_purchase(account.id, credits, "test-pack", f"ref-{next(_ids)}")
        db.refresh(account)
        return account

    return _fund


@pytest.fixture
def make_slot(db):
    def _make(doctor, starts_in=timedelta(days=1), length=timedelta(minutes=30)):
        start = utcnow() + starts_in
        SlotService(db).create_slots(doctor.id, [SlotWindow(start, start + length)])
        return (
            db.query(models.AvailabilitySlot)
            .filter(models.AvailabilitySlot.doctor_id == doctor.id)
            .order_by(models.AvailabilitySlot.id.desc())
            .first()
        )

    return _make


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def token_for(settings):
    def _token(external_id, role, email=None, name=None):
        return create_identity_token(settings, external_id, role, email=email, name=name)

    return _token


@pytest.fixture
def auth_headers(token_for):
    def _headers(external_id, role, **claims):
        return {"Authorization": f"Bearer {token_for(external_id, role, **claims)}"}

    return _headers
