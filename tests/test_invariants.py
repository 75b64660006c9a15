# tests/test_invariants.py
import random
from datetime import timedelta

import pytest

from telecare import models
from telecare.errors import TelecareError
from telecare.services.booking_service import BookingService
from telecare.services.ledger_service import LedgerService
from telecare.services.payout_service import PayoutService

STEPS = 150


def assert_ledger_matches_balances(db, ledger, accounts):
    db.expire_all()
    assert ledger.find_consistency_issues() == []
    for account in accounts:
        assert account.credits >= 0
        assert ledger.ledger_sum(account.id) == account.credits


@pytest.mark.parametrize("seed", [7, 42, 2026])
def test_random_operations_keep_ledger_and_balances_in_step(db, settings, seed, admin, make_account, make_slot):
    rng = random.Random(seed)
    ledger = LedgerService(db, settings)
    booking = BookingService(db, settings)
    payouts = PayoutService(db, settings)

    patients = [make_account(models.AccountRole.PATIENT) for _ in range(4)]
    doctors = [
        make_account(models.AccountRole.DOCTOR, verification_status=models.VerificationStatus.VERIFIED)
        for _ in range(2)
    ]
    slots = [make_slot(rng.choice(doctors), starts_in=timedelta(days=1, hours=i)).id for i in range(12)]
    accounts = patients + doctors
    references = iter(range(10_000))

    def allocate():
        ledger.allocate_monthly_credits(rng.choice(patients).id, rng.choice(["free_user", "standard", "premium"]))

    def purchase():
        ledger.record_purchase(rng.choice(patients).id, rng.randint(1, 5), "pack", f"seed{seed}-{next(references)}")

    def adjust():
        ledger.adjust_credits(admin.id, rng.choice(accounts).id, rng.choice([-5, -2, -1, 1, 3]))

    def book():
        booking.book_slot(rng.choice(patients).id, rng.choice(slots))

    def cancel():
        scheduled = db.query(models.Appointment).filter(models.Appointment.status == models.AppointmentStatus.SCHEDULED).all()
        if scheduled:
            appointment = rng.choice(scheduled)
            booking.cancel_appointment(appointment.id, appointment.patient_id)

    def request_payout():
        payouts.request_payout(rng.choice(doctors).id, rng.randint(1, 6))

    def resolve_payout():
        pending = db.query(models.PayoutRequest).filter(models.PayoutRequest.status == models.PayoutStatus.PROCESSING).all()
        if pending:
            payout = rng.choice(pending)
            if rng.random() < 0.7:
                payouts.approve_payout(admin.id, payout.id)
            else:
                payouts.reject_payout(admin.id, payout.id)

    operations = [allocate, purchase, adjust, book, book, cancel, request_payout, resolve_payout]

    for _ in range(STEPS):
        try:
            rng.choice(operations)()
        except TelecareError as e:
            assert not e.retryable, f"unexpected storage failure: {e.code}"
        assert_ledger_matches_balances(db, ledger, accounts)

    booked = db.query(models.Appointment.slot_id).filter(models.Appointment.slot_id.isnot(None)).all()
    assert len(booked) == len(set(booked))
