from datetime import date, datetime
from types import SimpleNamespace

import pytest

from clinic_backend.models.appointment import Appointment
from clinic_backend.models.schedule import SlotStatus
from clinic_backend.services import appointment_status_sweeper, schedule_service
from clinic_backend.services.appointment_status_sweeper import sweep_overdue_appointments
from clinic_backend.services.auto_schedule_initializer import find_schedule


def _appointment(db, doctor, patient, day: date, time_of_day: str, status: str) -> Appointment:
    appointment = Appointment(
        doctor_id=doctor.id,
        patient_id=patient.id,
        appointment_date=day,
        appointment_time=time_of_day,
        duration=30,
        status=status,
    )
    db.add(appointment)
    db.commit()
    return appointment


def test_expired_appointments_are_reclassified(db, doctor, patient, notifier, now) -> None:
    pending = _appointment(db, doctor, patient, date(2030, 1, 7), '07:30', 'pending')
    confirmed = _appointment(db, doctor, patient, date(2030, 1, 6), '10:00', 'confirmed')
    scheduled = _appointment(db, doctor, patient, date(2030, 1, 5), '10:00', 'scheduled')
    later_today = _appointment(db, doctor, patient, date(2030, 1, 7), '08:30', 'pending')
    starting_now = _appointment(db, doctor, patient, date(2030, 1, 7), '08:00', 'confirmed')
    completed = _appointment(db, doctor, patient, date(2030, 1, 4), '10:00', 'completed')

    summary = sweep_overdue_appointments(db, notifier, now=now, reconcile=False)

    assert summary == {'missed': 1, 'overdue': 2, 'skipped': 0, 'reconciled': 0}
    statuses = {item.id: item.status for item in db.query(Appointment).all()}
    assert statuses[pending.id] == 'missed'
    assert statuses[confirmed.id] == 'overdue'
    assert statuses[scheduled.id] == 'overdue'
    assert statuses[later_today.id] == 'pending'
    assert statuses[starting_now.id] == 'confirmed'
    assert statuses[completed.id] == 'completed'


def test_sweep_notifies_the_doctor_only(db, doctor, patient, notifier, now) -> None:
    appointment = _appointment(db, doctor, patient, date(2030, 1, 6), '09:00', 'pending')

    sweep_overdue_appointments(db, notifier, now=now, reconcile=False)

    assert notifier.events == [(appointment.id, 'missed', ('doctor',))]


def test_sweep_is_idempotent(db, doctor, patient, notifier, now) -> None:
    _appointment(db, doctor, patient, date(2030, 1, 6), '09:00', 'pending')
    _appointment(db, doctor, patient, date(2030, 1, 6), '11:00', 'confirmed')

    first = sweep_overdue_appointments(db, notifier, now=now, reconcile=False)
    second = sweep_overdue_appointments(db, notifier, now=now, reconcile=False)

    assert first['missed'] + first['overdue'] == 2
    assert second == {'missed': 0, 'overdue': 0, 'skipped': 0, 'reconciled': 0}
    assert len(notifier.events) == 2


def test_stale_reads_are_skipped(db, doctor, patient, notifier, now, monkeypatch: pytest.MonkeyPatch) -> None:
    appointment = _appointment(db, doctor, patient, date(2030, 1, 6), '09:00', 'pending')
    sweep_overdue_appointments(db, notifier, now=now, reconcile=False)
    # a second sweeper that read the row before the first one wrote it
    stale = SimpleNamespace(id=appointment.id, status='pending')
    monkeypatch.setattr(appointment_status_sweeper, 'find_expired_appointments', lambda *_args: [stale])

    summary = sweep_overdue_appointments(db, notifier, now=now, reconcile=False)

    assert summary['skipped'] == 1
    assert summary['missed'] == 0
    assert len(notifier.events) == 1


def test_sweep_reconciles_upcoming_slots(db, doctor, patient, notifier, now) -> None:
    upcoming = _appointment(db, doctor, patient, date(2030, 1, 9), '10:00', 'confirmed')
    schedule_service.get_day_schedule(db, doctor.id, date(2030, 1, 9), today=now.date())

    summary = sweep_overdue_appointments(db, notifier, now=now)

    slots = find_schedule(db, doctor.id, date(2030, 1, 9)).slots
    assert summary['reconciled'] == 1
    assert slots[0]['status'] == SlotStatus.BOOKED
    assert slots[0]['appointment_id'] == upcoming.id


def test_run_sweep_once_closes_its_session(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = []

    class FakeSession:
        def rollback(self):
            calls.append('rollback')

        def close(self):
            calls.append('close')

    monkeypatch.setattr(appointment_status_sweeper, 'SessionLocal', FakeSession)
    monkeypatch.setattr(
        appointment_status_sweeper,
        'sweep_overdue_appointments',
        lambda db: {'missed': 0, 'overdue': 0, 'skipped': 0, 'reconciled': 0},
    )

    assert appointment_status_sweeper.run_sweep_once()['missed'] == 0
    assert calls == ['close']
