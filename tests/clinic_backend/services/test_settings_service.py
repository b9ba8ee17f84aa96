from datetime import date

from clinic_backend.models.doctor_settings import DoctorSettings
from clinic_backend.services import settings_service


def test_get_settings_creates_defaults_once(db, doctor) -> None:
    first = settings_service.get_settings(db, doctor.id)
    second = settings_service.get_settings(db, doctor.id)

    assert first.id == second.id
    assert first.buffer_minutes == 0
    assert db.query(DoctorSettings).count() == 1


def test_update_settings_translates_and_mirrors_working_days(db, doctor) -> None:
    settings = settings_service.update_settings(
        db,
        doctor.id,
        {'working_days': [2, 4], 'start_time': '10:00', 'end_time': '16:00'},
    )

    db.refresh(doctor)
    assert settings.available_days == ['Tuesday', 'Thursday']
    assert doctor.available_days == ['Tuesday', 'Thursday']
    assert (doctor.start_time, doctor.end_time) == ('10:00', '16:00')


def test_effective_availability_prefers_settings(db, doctor) -> None:
    settings_service.update_settings(db, doctor.id, {'available_days': ['Saturday'], 'appointment_duration': 20})

    availability = settings_service.get_effective_availability(db, doctor, date(2030, 1, 12))

    assert availability.available_days == ['Saturday']
    assert availability.start_time == '09:00'
    assert availability.appointment_duration == 20


def test_effective_availability_outside_validity_window_uses_user_fields(db, doctor) -> None:
    db.add(DoctorSettings(
        doctor_id=doctor.id,
        available_days=['Saturday'],
        valid_from=date(2030, 2, 1),
        buffer_minutes=0,
    ))
    db.commit()

    availability = settings_service.get_effective_availability(db, doctor, date(2030, 1, 14))

    assert availability.available_days == ['Monday', 'Wednesday', 'Friday']
    assert availability.appointment_duration is None
