"""Lifecycle event hand-off to the notification subsystem.

Delivery (email/SMS/push) belongs to the receiver. The booking engine and the
status sweeper only call :meth:`NotificationTrigger.notify` inline with each
state transition.
"""

import logging

from clinic_backend.models.appointment import Appointment
from clinic_backend.models.user import User

logger = logging.getLogger(__name__)


class AppointmentEvent:
    CREATED = "created"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"
    REMINDER_24H = "reminder_24h"
    REMINDER_1H = "reminder_1h"
    OVERDUE = "overdue"
    MISSED = "missed"

    ALL = (CREATED, CONFIRMED, CANCELLED, RESCHEDULED, REMINDER_24H, REMINDER_1H, OVERDUE, MISSED)


class Recipient:
    PATIENT = "patient"
    DOCTOR = "doctor"

    BOTH = (PATIENT, DOCTOR)


class NotificationTrigger:
    """Receives appointment lifecycle events."""

    def notify(
        self,
        appointment: Appointment,
        event_type: str,
        patient: User | None,
        doctor: User | None,
        recipients: tuple[str, ...] = Recipient.BOTH,
    ) -> None:
        raise NotImplementedError


class LoggingNotificationTrigger(NotificationTrigger):
    def notify(self, appointment, event_type, patient, doctor, recipients=Recipient.BOTH):
        if event_type not in AppointmentEvent.ALL:
            raise ValueError(f"Unknown appointment event: {event_type}")

        logger.info(
            "Appointment %s event=%s recipients=%s patient=%s doctor=%s date=%s time=%s",
            appointment.id,
            event_type,
            ",".join(recipients),
            patient.id if patient else None,
            doctor.id if doctor else None,
            appointment.appointment_date,
            appointment.appointment_time,
        )


_notifier: NotificationTrigger = LoggingNotificationTrigger()


def get_notifier() -> NotificationTrigger:
    return _notifier


def set_notifier(notifier: NotificationTrigger) -> None:
    global _notifier
    _notifier = notifier


def emit(
    notifier: NotificationTrigger,
    appointment: Appointment,
    event_type: str,
    patient: User | None,
    doctor: User | None,
    recipients: tuple[str, ...] = Recipient.BOTH,
) -> None:
    """Notify without letting a delivery failure undo the state transition."""
    try:
        notifier.notify(appointment, event_type, patient, doctor, recipients)
    except Exception:
        logger.exception("Failed to emit %s notification for appointment %s", event_type, appointment.id)
