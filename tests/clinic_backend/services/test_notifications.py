import logging
from datetime import date
from types import SimpleNamespace

import pytest

from clinic_backend.services.notifications import (
    AppointmentEvent,
    LoggingNotificationTrigger,
    NotificationTrigger,
    Recipient,
    emit,
    get_notifier,
    set_notifier,
)

APPOINTMENT = SimpleNamespace(id=42, appointment_date=date(2030, 1, 14), appointment_time='10:00')


def test_logging_trigger_logs_each_event(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO, logger='clinic_backend.services.notifications')

    LoggingNotificationTrigger().notify(APPOINTMENT, AppointmentEvent.OVERDUE, None, None, (Recipient.DOCTOR,))

    assert 'Appointment 42 event=overdue recipients=doctor' in caplog.text


def test_logging_trigger_rejects_unknown_events() -> None:
    with pytest.raises(ValueError):
        LoggingNotificationTrigger().notify(APPOINTMENT, 'exploded', None, None)


def test_emit_does_not_propagate_delivery_failures(caplog: pytest.LogCaptureFixture) -> None:
    class BrokenTrigger(NotificationTrigger):
        def notify(self, appointment, event_type, patient, doctor, recipients=Recipient.BOTH):
            raise RuntimeError('smtp down')

    emit(BrokenTrigger(), APPOINTMENT, AppointmentEvent.CREATED, None, None)

    assert 'Failed to emit created notification for appointment 42' in caplog.text


def test_set_notifier_replaces_the_default() -> None:
    original = get_notifier()
    replacement = LoggingNotificationTrigger()
    try:
        set_notifier(replacement)
        assert get_notifier() is replacement
    finally:
        set_notifier(original)
