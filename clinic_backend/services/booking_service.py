"""Appointment booking engine.

Validates a booking request against the doctor's availability, commits the
appointment and claims the matching slot of the daily schedule in the same
transaction. The partial unique index ``uq_appointments_active_slot`` is the
final arbiter of exclusivity: a request that passes every check here but
loses the insert race gets a 409.
"""

import logging
from datetime import date, datetime

from fastapi import HTTPException, status
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_backend.core import config
from clinic_backend.core.days import Weekday, is_day_available
from clinic_backend.core.timeslots import add_minutes, current_time_string, time_to_minutes
from clinic_backend.models.appointment import Appointment, AppointmentStatus, PaymentStatus
from clinic_backend.models.schedule import SlotStatus
from clinic_backend.models.user import User, UserRole
from clinic_backend.services import schedule_service
from clinic_backend.services.auto_schedule_initializer import find_schedule
from clinic_backend.services.conflict_detection import TimeRange, check_reschedule_conflicts, check_slot_conflicts
from clinic_backend.services.directory import find_doctors, find_user, find_user_or_none
from clinic_backend.services.notifications import AppointmentEvent, NotificationTrigger, Recipient, emit
from clinic_backend.services.settings_service import get_effective_availability

logger = logging.getLogger(__name__)

SLOT_UNAVAILABLE_DETAIL = 'This time slot is no longer available. Please choose another time.'
PATIENT_FORBIDDEN_FIELDS = ('status', 'payment_status', 'receptionist_id', 'arrived')
UPDATABLE_FIELDS = (
    'appointment_date',
    'appointment_time',
    'duration',
    'appointment_type',
    'status',
    'payment_status',
    'receptionist_id',
    'arrived',
    'notes',
    'reason',
)
STATUS_EVENTS = {
    AppointmentStatus.CONFIRMED: AppointmentEvent.CONFIRMED,
    AppointmentStatus.CANCELLED: AppointmentEvent.CANCELLED,
}


def _bad_request(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


def _conflict(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=detail)


def _forbidden(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


def get_appointment(db: Session, appointment_id: int) -> Appointment:
    appointment = db.query(Appointment).filter(Appointment.id == appointment_id).first()
    if appointment is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f'Appointment with ID {appointment_id} not found',
        )
    return appointment


def find_active_appointment(
    db: Session,
    doctor_id: int,
    appointment_date: date,
    appointment_time: str,
    statuses: tuple[str, ...] = AppointmentStatus.OCCUPYING,
    exclude_id: int | None = None,
) -> Appointment | None:
    query = db.query(Appointment).filter(
        Appointment.doctor_id == doctor_id,
        Appointment.appointment_date == appointment_date,
        Appointment.appointment_time == appointment_time,
        Appointment.status.in_(statuses),
    )
    if exclude_id is not None:
        query = query.filter(Appointment.id != exclude_id)
    return query.first()


def _is_within_hours(appointment_time: str, duration: int, start_time: str | None, end_time: str | None) -> bool:
    if not start_time or not end_time:
        return True
    start = time_to_minutes(appointment_time)
    return time_to_minutes(start_time) <= start and start + duration <= time_to_minutes(end_time)


def _has_blocked_slot(db: Session, doctor_id: int, appointment_date: date, appointment_time: str) -> bool:
    schedule = find_schedule(db, doctor_id, appointment_date)
    if schedule is None:
        return False
    return any(
        slot.get('start_time') == appointment_time and slot.get('status') == SlotStatus.BLOCKED
        for slot in schedule.slots or []
    )


def auto_assign_doctor(db: Session, appointment_date: date, appointment_time: str, duration: int) -> User:
    """First active doctor who works that day and hour and is free at that exact time."""
    for doctor in find_doctors(db, active_only=True):
        availability = get_effective_availability(db, doctor, appointment_date)
        if not is_day_available(appointment_date, availability.available_days):
            continue
        if not _is_within_hours(appointment_time, duration, availability.start_time, availability.end_time):
            continue
        if find_active_appointment(db, doctor.id, appointment_date, appointment_time) is not None:
            continue
        if _has_blocked_slot(db, doctor.id, appointment_date, appointment_time):
            continue
        logger.info('Auto-assigned doctor %s for %s %s', doctor.id, appointment_date, appointment_time)
        return doctor

    raise _bad_request('No doctor is available at the requested date and time.')


def validate_doctor(doctor: User) -> None:
    if doctor.role != UserRole.DOCTOR:
        raise _bad_request('Selected user is not a doctor')
    if not doctor.is_active:
        raise _bad_request('Selected doctor is not currently active')


def validate_day_available(doctor: User, availability, appointment_date: date) -> None:
    if not is_day_available(appointment_date, availability.available_days):
        day_name = Weekday.from_date(appointment_date).label
        raise _bad_request(f'Doctor is not available on {day_name}')


def validate_not_past(appointment_date: date, appointment_time: str, now: datetime) -> None:
    if appointment_date < now.date():
        raise _bad_request('Appointments must be scheduled in the future.')
    if appointment_date == now.date() and appointment_time <= current_time_string(now):
        raise _bad_request('Appointment time has already passed. Please choose a later time.')


def validate_no_direct_conflict(
    db: Session,
    doctor_id: int,
    appointment_date: date,
    appointment_time: str,
    exclude_id: int | None = None,
) -> None:
    existing = find_active_appointment(db, doctor_id, appointment_date, appointment_time, exclude_id=exclude_id)
    if existing is None:
        return
    if existing.status == AppointmentStatus.PENDING:
        raise _conflict('This time slot has a pending appointment awaiting confirmation. Please choose another time.')
    raise _conflict('This time slot is already booked. Please choose another time.')


def validate_slot(
    db: Session,
    doctor_id: int,
    appointment_date: date,
    appointment_time: str,
    duration: int,
    availability,
    exclude_appointment_id: int | None = None,
    now: datetime | None = None,
) -> None:
    """Reject blocked/booked slots and any range overlapping one.

    With no slot starting at ``appointment_time`` the request must also fit the
    working-hours window.
    """
    view = None
    try:
        schedule = schedule_service.get_day_schedule(db, doctor_id, appointment_date)
        view = schedule_service.build_day_view(schedule)
    except SQLAlchemyError:
        db.rollback()
        logger.warning(
            'Schedule lookup failed for doctor %s on %s, using settings only',
            doctor_id,
            appointment_date,
            exc_info=True,
        )

    slot = None
    if view is not None:
        slot = next((item for item in view['slots'] if item['start_time'] == appointment_time), None)

    if slot is not None:
        owner = slot.get('appointment_id')
        if slot['status'] == SlotStatus.BLOCKED:
            raise _conflict(f'This time slot is blocked: {slot.get("blocked_reason") or "unavailable"}.')
        if slot['status'] == SlotStatus.BREAK:
            raise _conflict('This time falls within the doctor\'s break.')
        if slot['status'] == SlotStatus.BOOKED and (exclude_appointment_id is None or owner != exclude_appointment_id):
            raise _conflict('This time slot is already booked. Please choose another time.')

    if view is not None:
        others = [
            item for item in view['slots']
            if item is not slot and (exclude_appointment_id is None or item.get('appointment_id') != exclude_appointment_id)
        ]
        result = check_slot_conflicts(
            TimeRange(appointment_time, add_minutes(appointment_time, duration)),
            others,
            appointment_date,
            view['breaks'],
            now,
        )
        if result.has_conflict:
            raise _conflict('; '.join(result.conflicts))

    if slot is None and not _is_within_hours(appointment_time, duration, availability.start_time, availability.end_time):
        raise _bad_request(
            f'Requested time is outside the doctor\'s working hours '
            f'({availability.start_time}-{availability.end_time}).'
        )


def validate_reschedule_slot(
    db: Session,
    appointment: Appointment,
    new_date: date,
    new_time: str,
    duration: int,
    now: datetime,
) -> None:
    schedule = find_schedule(db, appointment.doctor_id, new_date)
    if schedule is None:
        return

    view = schedule_service.build_day_view(schedule)
    result = check_reschedule_conflicts(
        appointment.id,
        new_date,
        new_time,
        duration,
        view['slots'],
        view['breaks'],
        now,
    )
    if result.has_conflict:
        raise _conflict('; '.join(result.conflicts))


def _claim_slot_best_effort(db: Session, appointment: Appointment) -> None:
    try:
        with db.begin_nested():
            schedule_service.claim_appointment_slot(db, appointment, commit=False)
    except (SQLAlchemyError, HTTPException):
        logger.exception(
            'Failed to mark slot booked for appointment %s; slot will be reconciled by the sweeper',
            appointment.id,
        )


def _release_slot_best_effort(db: Session, doctor_id: int, appointment_date: date, appointment_time: str, appointment_id: int) -> None:
    try:
        with db.begin_nested():
            schedule_service.release_appointment_slot(
                db, doctor_id, appointment_date, appointment_time, appointment_id=appointment_id, commit=False
            )
    except (SQLAlchemyError, HTTPException):
        logger.exception('Failed to release slot for appointment %s', appointment_id)


def _commit_or_conflict(db: Session) -> None:
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise _conflict(SLOT_UNAVAILABLE_DETAIL) from exc


def create_appointment(
    db: Session,
    request: dict,
    patient_id: int,
    requestor_role: str,
    notifier: NotificationTrigger,
    now: datetime | None = None,
    requestor_id: int | None = None,
) -> Appointment:
    now = now or datetime.now()
    appointment_date = request['appointment_date']
    appointment_time = request['appointment_time']
    duration = request.get('duration') or config.DEFAULT_SLOT_DURATION_MINUTES
    doctor_id = request.get('doctor_id')

    if doctor_id is None:
        doctor = auto_assign_doctor(db, appointment_date, appointment_time, duration)
    else:
        doctor = find_user(db, doctor_id)
    validate_doctor(doctor)

    availability = get_effective_availability(db, doctor, appointment_date)
    validate_day_available(doctor, availability, appointment_date)
    validate_not_past(appointment_date, appointment_time, now)
    validate_no_direct_conflict(db, doctor.id, appointment_date, appointment_time)
    validate_slot(db, doctor.id, appointment_date, appointment_time, duration, availability, now=now)

    is_staff = requestor_role in UserRole.STAFF
    appointment = Appointment(
        doctor_id=doctor.id,
        patient_id=patient_id,
        receptionist_id=requestor_id if requestor_role == UserRole.RECEPTIONIST else request.get('receptionist_id'),
        appointment_date=appointment_date,
        appointment_time=appointment_time,
        duration=duration,
        appointment_type=request.get('appointment_type') or 'Consultation',
        status=AppointmentStatus.CONFIRMED if is_staff else AppointmentStatus.PENDING,
        payment_status=PaymentStatus.NOT_PAID if is_staff else PaymentStatus.PENDING,
        arrived=False,
        notes=request.get('notes'),
        reason=request.get('reason'),
    )

    db.add(appointment)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise _conflict(SLOT_UNAVAILABLE_DETAIL) from exc

    _claim_slot_best_effort(db, appointment)
    _commit_or_conflict(db)
    db.refresh(appointment)

    logger.info(
        'Created appointment %s for doctor %s on %s %s (status=%s)',
        appointment.id,
        doctor.id,
        appointment_date,
        appointment_time,
        appointment.status,
    )
    emit(notifier, appointment, AppointmentEvent.CREATED, find_user_or_none(db, patient_id), doctor, Recipient.BOTH)
    return appointment


def _authorize_access(appointment: Appointment, acting_user: User, action: str) -> None:
    if acting_user.role == UserRole.PATIENT and appointment.patient_id != acting_user.id:
        raise _forbidden(f'You can only {action} your own appointments')
    if acting_user.role == UserRole.DOCTOR and appointment.doctor_id != acting_user.id:
        raise _forbidden(f'You can only {action} appointments assigned to you')


def get_appointment_for_user(db: Session, appointment_id: int, acting_user: User) -> Appointment:
    appointment = get_appointment(db, appointment_id)
    _authorize_access(appointment, acting_user, 'view')
    return appointment


def update_appointment(
    db: Session,
    appointment_id: int,
    patch: dict,
    acting_user: User,
    notifier: NotificationTrigger,
    now: datetime | None = None,
) -> Appointment:
    now = now or datetime.now()
    appointment = get_appointment(db, appointment_id)
    _authorize_access(appointment, acting_user, 'update')

    changes = {key: value for key, value in patch.items() if key in UPDATABLE_FIELDS and value is not None}
    if acting_user.role == UserRole.PATIENT:
        for field_name in PATIENT_FORBIDDEN_FIELDS:
            changes.pop(field_name, None)

    old_date = appointment.appointment_date
    old_time = appointment.appointment_time
    new_date = changes.get('appointment_date', old_date)
    new_time = changes.get('appointment_time', old_time)
    rescheduled = new_date != old_date or new_time != old_time

    if rescheduled:
        validate_not_past(new_date, new_time, now)
        conflicting = find_active_appointment(
            db,
            appointment.doctor_id,
            new_date,
            new_time,
            statuses=(AppointmentStatus.CONFIRMED,),
            exclude_id=appointment.id,
        )
        if conflicting is not None:
            raise _conflict('This time slot is already booked')
        validate_reschedule_slot(
            db,
            appointment,
            new_date,
            new_time,
            changes.get('duration', appointment.duration),
            now,
        )

        if appointment.status in (AppointmentStatus.MISSED, AppointmentStatus.OVERDUE) and 'status' not in changes:
            changes['status'] = (
                AppointmentStatus.CONFIRMED if acting_user.role in UserRole.STAFF else AppointmentStatus.PENDING
            )

    old_status = appointment.status
    new_status = changes.get('status', old_status)
    if new_status != old_status:
        validate_status_change(old_status, new_status, rescheduled)

    for field_name, value in changes.items():
        setattr(appointment, field_name, value)

    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise _conflict(SLOT_UNAVAILABLE_DETAIL) from exc

    vacated = old_status in AppointmentStatus.OCCUPYING and new_status not in AppointmentStatus.OCCUPYING
    if rescheduled or vacated:
        _release_slot_best_effort(db, appointment.doctor_id, old_date, old_time, appointment.id)
    if rescheduled and new_status in AppointmentStatus.OCCUPYING:
        _claim_slot_best_effort(db, appointment)

    _commit_or_conflict(db)
    db.refresh(appointment)

    patient = find_user_or_none(db, appointment.patient_id)
    doctor = find_user_or_none(db, appointment.doctor_id)
    if rescheduled:
        logger.info(
            'Rescheduled appointment %s from %s %s to %s %s',
            appointment.id,
            old_date,
            old_time,
            new_date,
            new_time,
        )
        emit(notifier, appointment, AppointmentEvent.RESCHEDULED, patient, doctor)
    elif new_status != old_status and new_status in STATUS_EVENTS:
        logger.info('Appointment %s status changed: %s -> %s', appointment.id, old_status, new_status)
        emit(notifier, appointment, STATUS_EVENTS[new_status], patient, doctor)
    return appointment


def validate_status_change(old_status: str, new_status: str, rescheduled: bool) -> None:
    """Terminal statuses are final, except that a reschedule may revive a missed or overdue appointment."""
    if old_status not in AppointmentStatus.TERMINAL:
        return
    revivable = (
        old_status in (AppointmentStatus.MISSED, AppointmentStatus.OVERDUE)
        and new_status in AppointmentStatus.ACTIVE
    )
    if rescheduled and revivable:
        return
    raise _bad_request(f'Appointments that are {old_status} cannot be changed to {new_status}')


def confirm_appointment(
    db: Session,
    appointment_id: int,
    acting_user: User,
    notifier: NotificationTrigger,
) -> Appointment:
    appointment = get_appointment(db, appointment_id)

    if acting_user.role == UserRole.PATIENT:
        raise _forbidden('Patients cannot confirm appointments')
    if acting_user.role == UserRole.DOCTOR and appointment.doctor_id != acting_user.id:
        raise _forbidden('You can only confirm appointments assigned to you')
    if appointment.status == AppointmentStatus.CANCELLED:
        raise _bad_request('Cancelled appointments cannot be confirmed')
    if appointment.status not in (AppointmentStatus.PENDING, AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED):
        raise _bad_request(f'Appointments that are {appointment.status} cannot be confirmed')
    if appointment.status == AppointmentStatus.CONFIRMED:
        return appointment

    appointment.status = AppointmentStatus.CONFIRMED
    db.commit()
    db.refresh(appointment)

    emit(
        notifier,
        appointment,
        AppointmentEvent.CONFIRMED,
        find_user_or_none(db, appointment.patient_id),
        find_user_or_none(db, appointment.doctor_id),
    )
    return appointment


def cancel_appointment(
    db: Session,
    appointment_id: int,
    acting_user: User,
    notifier: NotificationTrigger,
) -> Appointment:
    appointment = get_appointment(db, appointment_id)
    _authorize_access(appointment, acting_user, 'cancel')

    if acting_user.role == UserRole.PATIENT and appointment.status != AppointmentStatus.PENDING:
        raise _forbidden('Patients can only cancel appointments that are still pending')
    if appointment.status == AppointmentStatus.CANCELLED:
        raise _bad_request('Appointment is already cancelled')
    if appointment.status == AppointmentStatus.COMPLETED:
        raise _bad_request('Completed appointments cannot be cancelled')
    if appointment.status not in AppointmentStatus.OCCUPYING:
        raise _bad_request(f'Appointments that are {appointment.status} cannot be cancelled')

    appointment.status = AppointmentStatus.CANCELLED
    db.flush()
    _release_slot_best_effort(
        db,
        appointment.doctor_id,
        appointment.appointment_date,
        appointment.appointment_time,
        appointment.id,
    )
    db.commit()
    db.refresh(appointment)

    logger.info('Cancelled appointment %s by user %s (%s)', appointment.id, acting_user.id, acting_user.role)
    emit(
        notifier,
        appointment,
        AppointmentEvent.CANCELLED,
        find_user_or_none(db, appointment.patient_id),
        find_user_or_none(db, appointment.doctor_id),
    )
    return appointment


def mark_arrived(db: Session, appointment_id: int, acting_user: User) -> Appointment:
    if acting_user.role not in UserRole.STAFF:
        raise _forbidden('Only receptionists can check patients in')

    appointment = get_appointment(db, appointment_id)
    if appointment.status not in (AppointmentStatus.CONFIRMED, AppointmentStatus.SCHEDULED, AppointmentStatus.PENDING):
        raise _bad_request(f'Appointments that are {appointment.status} cannot be checked in')

    appointment.arrived = True
    appointment.status = AppointmentStatus.WAITING
    if acting_user.role == UserRole.RECEPTIONIST:
        appointment.receptionist_id = acting_user.id
    db.commit()
    db.refresh(appointment)
    return appointment


def delete_appointment(db: Session, appointment_id: int, acting_user: User) -> None:
    if acting_user.role != UserRole.ADMIN:
        raise _forbidden('Only admins can delete appointments')

    appointment = get_appointment(db, appointment_id)
    _release_slot_best_effort(
        db,
        appointment.doctor_id,
        appointment.appointment_date,
        appointment.appointment_time,
        appointment.id,
    )
    db.delete(appointment)
    db.commit()


def list_appointments_for_user(db: Session, user: User) -> list[Appointment]:
    query = db.query(Appointment)
    if user.role == UserRole.PATIENT:
        query = query.filter(Appointment.patient_id == user.id)
    elif user.role == UserRole.DOCTOR:
        query = query.filter(Appointment.doctor_id == user.id)
    return query.order_by(Appointment.appointment_date.desc(), Appointment.appointment_time.desc()).all()


def get_pending_count(db: Session, doctor_id: int) -> int:
    return db.query(Appointment).filter(
        Appointment.doctor_id == doctor_id,
        Appointment.status == AppointmentStatus.PENDING,
    ).count()
