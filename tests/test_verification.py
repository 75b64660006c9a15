# tests/test_verification.py
import pytest

from telecare import models
from telecare.errors import InvalidStatusTransition, RoleNotAllowed
from telecare.services.verification_service import VerificationService, can_transition

Status = models.VerificationStatus


@pytest.fixture
def verification(db):
    return VerificationService(db)


@pytest.fixture
def pending_doctor(make_account):
    return make_account(models.AccountRole.DOCTOR)


def review(verification, admin, doctor, *decisions):
    for decision in decisions:
        doctor = verification.review_doctor(admin.id, doctor.id, decision)
    return doctor


def test_full_review_sets_verified_fields(verification, admin, pending_doctor):
    doctor = review(verification, admin, pending_doctor, Status.UNDER_REVIEW, Status.VERIFIED)

    assert doctor.verification_status == Status.VERIFIED
    assert doctor.verified_by == admin.id
    assert doctor.verified_at is not None
    assert doctor.is_verified_doctor


def test_suspend_clears_verified_fields(verification, admin, pending_doctor):
    review(verification, admin, pending_doctor, Status.UNDER_REVIEW, Status.VERIFIED)
    doctor = verification.review_doctor(admin.id, pending_doctor.id, Status.PENDING, notes="Licence expired")

    assert doctor.verification_status == Status.PENDING
    assert doctor.verified_at is None
    assert doctor.verified_by is None
    assert doctor.verification_notes == "Licence expired"
    assert not doctor.is_verified_doctor


def test_rejection_can_be_overridden_back_to_pending(verification, admin, pending_doctor):
    doctor = review(verification, admin, pending_doctor, Status.UNDER_REVIEW, Status.REJECTED, Status.PENDING)
    assert doctor.verification_status == Status.PENDING


@pytest.mark.parametrize(
    "path",
    [
        (Status.VERIFIED,),
        (Status.REJECTED,),
        (Status.UNDER_REVIEW, Status.UNDER_REVIEW),
        (Status.UNDER_REVIEW, Status.REJECTED, Status.VERIFIED),
        (Status.UNDER_REVIEW, Status.VERIFIED, Status.REJECTED),
    ],
)
def test_invalid_transitions(db, verification, admin, pending_doctor, path):
    *allowed, last = path
    review(verification, admin, pending_doctor, *allowed)
    before = pending_doctor.verification_status

    with pytest.raises(InvalidStatusTransition):
        verification.review_doctor(admin.id, pending_doctor.id, last)

    db.refresh(pending_doctor)
    assert pending_doctor.verification_status == before


def test_transition_table():
    assert can_transition(Status.PENDING, Status.UNDER_REVIEW)
    assert can_transition(Status.VERIFIED, Status.PENDING)
    assert not can_transition(Status.PENDING, Status.PENDING)
    assert not can_transition(Status.REJECTED, Status.UNDER_REVIEW)


def test_only_doctors_are_reviewed(verification, admin, patient):
    with pytest.raises(RoleNotAllowed):
        verification.review_doctor(admin.id, patient.id, Status.UNDER_REVIEW)


def test_only_admins_review(verification, patient, pending_doctor):
    with pytest.raises(RoleNotAllowed):
        verification.review_doctor(patient.id, pending_doctor.id, Status.UNDER_REVIEW)


def test_review_is_audited(db, verification, admin, pending_doctor):
    verification.review_doctor(admin.id, pending_doctor.id, Status.UNDER_REVIEW, notes="Docs received")
    audit = db.query(models.AuditLog).filter(models.AuditLog.action == models.AuditAction.DOCTOR_REVIEW).one()
    assert audit.actor_id == admin.id
    assert audit.resource_id == pending_doctor.id
    assert "PENDING -> UNDER_REVIEW" in audit.details
