# tests/test_payouts.py
import pytest

from telecare import models
from telecare.errors import (
    DoctorNotVerified, InsufficientBalance, PayoutAlreadyPending, PayoutAlreadyResolved,
    PayoutNotFound, RoleNotAllowed, ValidationError,
)
from telecare.services.ledger_service import LedgerService
from telecare.services.payout_service import PayoutService


@pytest.fixture
def payouts(db, settings):
    return PayoutService(db, settings)


def payout_entries(db, doctor):
    return (
        db.query(models.LedgerEntry)
        .filter(models.LedgerEntry.account_id == doctor.id, models.LedgerEntry.type == models.TransactionType.PAYOUT)
        .all()
    )


class TestRequestPayout:
    def test_creates_processing_request_without_ledger_effect(self, db, payouts, doctor, fund):
        fund(doctor, 10)
        payout = payouts.request_payout(doctor.id, 4)

        assert payout.status == models.PayoutStatus.PROCESSING
        assert payout.credits == 4
        assert payout.amount_cents == 4000
        assert payout.platform_fee_cents == 800
        assert payout.net_amount_cents == 3200
        assert payout.payout_email == doctor.email
        db.refresh(doctor)
        assert doctor.credits == 10

    def test_balance_is_not_checked_at_request_time(self, payouts, doctor):
        payout = payouts.request_payout(doctor.id, 50)
        assert payout.status == models.PayoutStatus.PROCESSING

    def test_one_pending_request_per_doctor(self, payouts, doctor):
        first = payouts.request_payout(doctor.id, 1)
        with pytest.raises(PayoutAlreadyPending) as exc:
            payouts.request_payout(doctor.id, 1)
        assert exc.value.details["payout_id"] == first.id

    @pytest.mark.parametrize("amount", [0, -3])
    def test_amount_must_be_positive(self, payouts, doctor, amount):
        with pytest.raises(ValidationError):
            payouts.request_payout(doctor.id, amount)

    def test_unverified_doctor_cannot_request(self, payouts, make_account):
        pending = make_account(models.AccountRole.DOCTOR)
        with pytest.raises(DoctorNotVerified):
            payouts.request_payout(pending.id, 1)

    def test_patients_cannot_request(self, payouts, patient):
        with pytest.raises(RoleNotAllowed):
            payouts.request_payout(patient.id, 1)


class TestApprovePayout:
    def test_insufficient_balance_leaves_request_processing(self, db, payouts, admin, doctor, fund):
        fund(doctor, 3)
        payout = payouts.request_payout(doctor.id, 5)

        with pytest.raises(InsufficientBalance) as exc:
            payouts.approve_payout(admin.id, payout.id)

        assert exc.value.code == "INSUFFICIENT_BALANCE"
        db.refresh(payout)
        db.refresh(doctor)
        assert payout.status == models.PayoutStatus.PROCESSING
        assert payout.processed_by is None
        assert doctor.credits == 3
        assert payout_entries(db, doctor) == []

    def test_approval_debits_doctor(self, db, settings, payouts, admin, doctor, fund):
        fund(doctor, 10)
        payout = payouts.request_payout(doctor.id, 6)

        approved = payouts.approve_payout(admin.id, payout.id)

        assert approved.status == models.PayoutStatus.PROCESSED
        assert approved.processed_by == admin.id
        assert approved.processed_at is not None
        db.refresh(doctor)
        assert doctor.credits == 4
        (entry,) = payout_entries(db, doctor)
        assert entry.amount == -6
        assert entry.payout_id == payout.id
        assert LedgerService(db, settings).find_consistency_issues() == []

    def test_balance_is_read_at_approval_time(self, db, payouts, admin, doctor, fund):
        payout = payouts.request_payout(doctor.id, 5)
        fund(doctor, 5)
        assert payouts.approve_payout(admin.id, payout.id).status == models.PayoutStatus.PROCESSED

    def test_processed_is_final(self, payouts, admin, doctor, fund):
        fund(doctor, 10)
        payout = payouts.request_payout(doctor.id, 2)
        payouts.approve_payout(admin.id, payout.id)

        with pytest.raises(PayoutAlreadyResolved):
            payouts.approve_payout(admin.id, payout.id)
        with pytest.raises(PayoutAlreadyResolved):
            payouts.reject_payout(admin.id, payout.id)

    def test_unknown_payout(self, payouts, admin):
        with pytest.raises(PayoutNotFound):
            payouts.approve_payout(admin.id, 404)


class TestRejectPayout:
    def test_reject_has_no_ledger_effect(self, db, payouts, admin, doctor, fund):
        fund(doctor, 10)
        payout = payouts.request_payout(doctor.id, 3)

        rejected = payouts.reject_payout(admin.id, payout.id)

        assert rejected.status == models.PayoutStatus.REJECTED
        assert rejected.processed_by == admin.id
        db.refresh(doctor)
        assert doctor.credits == 10
        assert payout_entries(db, doctor) == []

    def test_rejected_is_final_and_frees_the_queue(self, payouts, admin, doctor):
        payout = payouts.request_payout(doctor.id, 3)
        payouts.reject_payout(admin.id, payout.id)

        with pytest.raises(PayoutAlreadyResolved):
            payouts.approve_payout(admin.id, payout.id)
        assert payouts.request_payout(doctor.id, 3).status == models.PayoutStatus.PROCESSING
