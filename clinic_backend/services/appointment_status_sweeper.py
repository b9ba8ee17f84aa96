"""
Periodic reclassification of appointments whose time has passed.

pending            -> missed
confirmed/scheduled -> overdue

Each transition is a conditional UPDATE guarded by the status that was read,
so overlapping sweeps (several app instances, or a manual run next to the
background loop) transition and notify each appointment once.
"""

import asyncio
import logging
from datetime import datetime

from sqlalchemy import and_, or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_backend.core import config
from clinic_backend.core.timeslots import current_time_string
from clinic_backend.database import SessionLocal
from clinic_backend.models.appointment import Appointment, AppointmentStatus
from clinic_backend.services.directory import find_user_or_none
from clinic_backend.services.notifications import AppointmentEvent, NotificationTrigger, Recipient, emit, get_notifier
from clinic_backend.services.schedule_service import reconcile_upcoming_slots

logger = logging.getLogger(__name__)

TRANSITIONS = {
    AppointmentStatus.PENDING: (AppointmentStatus.MISSED, AppointmentEvent.MISSED),
    AppointmentStatus.CONFIRMED: (AppointmentStatus.OVERDUE, AppointmentEvent.OVERDUE),
    AppointmentStatus.SCHEDULED: (AppointmentStatus.OVERDUE, AppointmentEvent.OVERDUE),
}


def find_expired_appointments(db: Session, now: datetime) -> list[Appointment]:
    today = now.date()
    return db.query(Appointment).filter(
        Appointment.status.in_(tuple(TRANSITIONS)),
        or_(
            Appointment.appointment_date < today,
            and_(
                Appointment.appointment_date == today,
                Appointment.appointment_time < current_time_string(now),
            ),
        ),
    ).order_by(Appointment.appointment_date.asc(), Appointment.appointment_time.asc()).all()


def transition_appointment(db: Session, appointment: Appointment, now: datetime) -> str | None:
    """Apply the status-guarded transition. Returns the new status, or None if another writer got there first."""
    old_status = appointment.status
    new_status, _ = TRANSITIONS[old_status]

    result = db.execute(
        update(Appointment)
        .where(Appointment.id == appointment.id, Appointment.status == old_status)
        .values(status=new_status, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()

    if result.rowcount != 1:
        return None

    db.refresh(appointment)
    return new_status


def sweep_overdue_appointments(
    db: Session,
    notifier: NotificationTrigger | None = None,
    now: datetime | None = None,
    reconcile: bool = True,
) -> dict:
    notifier = notifier or get_notifier()
    now = now or datetime.now()
    summary = {'missed': 0, 'overdue': 0, 'skipped': 0, 'reconciled': 0}

    for appointment in find_expired_appointments(db, now):
        old_status = appointment.status
        new_status = transition_appointment(db, appointment, now)
        if new_status is None:
            summary['skipped'] += 1
            continue

        summary[new_status] += 1
        _, event_type = TRANSITIONS[old_status]
        logger.info('Appointment %s transitioned: %s -> %s', appointment.id, old_status, new_status)
        emit(
            notifier,
            appointment,
            event_type,
            find_user_or_none(db, appointment.patient_id),
            find_user_or_none(db, appointment.doctor_id),
            recipients=(Recipient.DOCTOR,),
        )

    if reconcile:
        summary['reconciled'] = reconcile_upcoming_slots(db, today=now.date())

    if summary['missed'] or summary['overdue']:
        logger.info(
            'Status sweep finished: %d missed, %d overdue, %d skipped',
            summary['missed'],
            summary['overdue'],
            summary['skipped'],
        )
    return summary


def run_sweep_once() -> dict:
    db = SessionLocal()
    try:
        return sweep_overdue_appointments(db)
    except SQLAlchemyError:
        db.rollback()
        raise
    finally:
        db.close()


async def run_status_sweeper(interval_seconds: int | None = None) -> None:
    """Main sweeper loop - runs every ``SWEEP_INTERVAL_SECONDS``."""
    interval_seconds = interval_seconds or config.SWEEP_INTERVAL_SECONDS
    logger.info('Starting appointment status sweeper (every %ss)', interval_seconds)

    while True:
        try:
            await asyncio.to_thread(run_sweep_once)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception('Error in appointment status sweeper loop')

        await asyncio.sleep(interval_seconds)
