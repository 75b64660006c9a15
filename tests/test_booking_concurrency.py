# tests/test_booking_concurrency.py
import threading
from concurrent.futures import ThreadPoolExecutor

from datetime import timedelta

from telecare import crud, models
from telecare.core.timeutils import utcnow
from telecare.errors import InvalidStatusTransition, SlotAlreadyBooked, SlotHasAppointment, SlotNotFound
from telecare.services.booking_service import BookingService
from telecare.services.ledger_service import LedgerService
from telecare.services.slot_service import SlotService, SlotWindow

CONTENDERS = 50


def test_fifty_concurrent_bookings_of_one_slot(db, settings, session_factory, doctor, make_account, fund, make_slot):
    patients = []
    for _ in range(CONTENDERS):
        patient = make_account(models.AccountRole.PATIENT)
        fund(patient, 2)
        patients.append(patient.id)
    slot_id = make_slot(doctor).id
    doctor_id = doctor.id

    barrier = threading.Barrier(CONTENDERS)

    def attempt(patient_id):
        session = session_factory()
        try:
            barrier.wait()
            BookingService(session, settings).book_slot(patient_id, slot_id)
            return "booked"
        except SlotAlreadyBooked:
            return "taken"
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=CONTENDERS) as pool:
        outcomes = list(pool.map(attempt, patients))

    assert outcomes.count("booked") == 1
    assert outcomes.count("taken") == CONTENDERS - 1

    db.expire_all()
    appointments = db.query(models.Appointment).filter(models.Appointment.slot_id == slot_id).all()
    assert len(appointments) == 1
    winner = appointments[0].patient_id

    balances = {a.id: a.credits for a in db.query(models.Account).filter(models.Account.id.in_(patients))}
    assert balances[winner] == 0
    assert all(credits == 2 for pid, credits in balances.items() if pid != winner)
    assert db.get(models.Account, doctor_id).credits == 2
    assert LedgerService(db, settings).find_consistency_issues() == []


def test_two_patients_racing_for_two_slots_both_succeed(db, settings, session_factory, doctor, make_account, fund, make_slot):
    first = fund(make_account(models.AccountRole.PATIENT), 2)
    second = fund(make_account(models.AccountRole.PATIENT), 2)
    slots = [make_slot(doctor).id, make_slot(doctor).id]
    barrier = threading.Barrier(2)

    def attempt(args):
        patient_id, slot_id = args
        session = session_factory()
        try:
            barrier.wait()
            return BookingService(session, settings).book_slot(patient_id, slot_id).id
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=2) as pool:
        ids = list(pool.map(attempt, [(first.id, slots[0]), (second.id, slots[1])]))

    assert len(set(ids)) == 2
    db.expire_all()
    assert db.get(models.Account, doctor.id).credits == 4


def run_together(*calls):
    barrier = threading.Barrier(len(calls))

    def run(call):
        barrier.wait()
        return call()

    with ThreadPoolExecutor(max_workers=len(calls)) as pool:
        return [f.result() for f in [pool.submit(run, call) for call in calls]]


def test_deleting_a_slot_while_it_is_booked(db, settings, session_factory, doctor, patient, fund, make_slot):
    fund(patient, 2)
    slot_id = make_slot(doctor).id
    patient_id, doctor_id = patient.id, doctor.id

    def book():
        session = session_factory()
        try:
            BookingService(session, settings).book_slot(patient_id, slot_id)
            return "booked"
        except SlotNotFound:
            return "gone"
        finally:
            session.close()

    def delete():
        session = session_factory()
        try:
            SlotService(session).delete_slot(doctor_id, slot_id)
            return "deleted"
        except SlotHasAppointment:
            return "kept"
        finally:
            session.close()

    outcome = run_together(book, delete)

    assert outcome in (["booked", "kept"], ["gone", "deleted"])
    db.expire_all()
    assert crud.get_appointments_without_slots(db) == []
    slot_exists = db.get(models.AvailabilitySlot, slot_id) is not None
    assert slot_exists == (outcome[0] == "booked")
    assert LedgerService(db, settings).find_consistency_issues() == []


def test_replacing_availability_while_a_slot_is_booked(db, settings, session_factory, doctor, patient, fund, make_slot):
    fund(patient, 2)
    slot_id = make_slot(doctor).id
    patient_id, doctor_id = patient.id, doctor.id
    start = utcnow() + timedelta(days=5)

    def book():
        session = session_factory()
        try:
            BookingService(session, settings).book_slot(patient_id, slot_id)
            return "booked"
        except SlotNotFound:
            return "gone"
        finally:
            session.close()

    def replace():
        session = session_factory()
        try:
            return SlotService(session).create_slots(doctor_id, [SlotWindow(start, start + timedelta(minutes=30))], replace_all=True)
        finally:
            session.close()

    booked, created = run_together(book, replace)

    assert created == 1
    db.expire_all()
    assert crud.get_appointments_without_slots(db) == []
    assert (db.get(models.AvailabilitySlot, slot_id) is not None) == (booked == "booked")


def test_completing_and_cancelling_at_once(db, settings, session_factory, doctor, patient, fund, make_slot):
    fund(patient, 2)
    appointment_id = BookingService(db, settings).book_slot(patient.id, make_slot(doctor).id).id
    patient_id, doctor_id = patient.id, doctor.id

    def complete():
        session = session_factory()
        try:
            BookingService(session, settings).complete_appointment(appointment_id, doctor_id)
            return "completed"
        except InvalidStatusTransition:
            return "lost"
        finally:
            session.close()

    def cancel():
        session = session_factory()
        try:
            BookingService(session, settings).cancel_appointment(appointment_id, patient_id)
            return "cancelled"
        except InvalidStatusTransition:
            return "lost"
        finally:
            session.close()

    outcome = run_together(complete, cancel)

    assert outcome in (["completed", "lost"], ["lost", "cancelled"])
    db.expire_all()
    stored = db.get(models.Appointment, appointment_id)
    if outcome[0] == "completed":
        assert stored.status == models.AppointmentStatus.COMPLETED
        assert db.get(models.Account, patient_id).credits == 0
    else:
        assert stored.status == models.AppointmentStatus.CANCELLED
        assert stored.completed_at is None
        assert db.get(models.Account, patient_id).credits == 2
    assert LedgerService(db, settings).find_consistency_issues() == []
