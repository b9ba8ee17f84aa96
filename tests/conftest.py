import os
from datetime import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')
os.environ.setdefault('SWEEPER_ENABLED', 'false')

from clinic_backend.database import Base, enable_sqlite_savepoints  # noqa: E402
from clinic_backend.models import appointment, availability_template, doctor_settings, schedule, user  # noqa: E402,F401
from clinic_backend.models.user import User, UserRole  # noqa: E402
from clinic_backend.services.notifications import NotificationTrigger, Recipient  # noqa: E402

# 2030-01-07 is a Monday
NOW = datetime(2030, 1, 7, 8, 0)


class RecordingNotifier(NotificationTrigger):
    def __init__(self):
        self.events = []

    def notify(self, appointment, event_type, patient, doctor, recipients=Recipient.BOTH):
        self.events.append((appointment.id, event_type, tuple(recipients)))


@pytest.fixture
def db():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    enable_sqlite_savepoints(engine)
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def make_user(db):
    counter = {'value': 0}

    def _make_user(role: str = UserRole.PATIENT, **fields) -> User:
        counter['value'] += 1
        fields.setdefault('email', f"{role}{counter['value']}@clinic.test")
        fields.setdefault('full_name', f"{role.title()} {counter['value']}")
        fields.setdefault('hashed_password', '')
        fields.setdefault('is_active', True)
        user_row = User(role=role, **fields)
        db.add(user_row)
        db.commit()
        db.refresh(user_row)
        return user_row

    return _make_user


@pytest.fixture
def doctor(make_user):
    # Dr. Smith works Monday, Wednesday and Friday, 09:00-17:00
    return make_user(
        UserRole.DOCTOR,
        full_name='Dr. Smith',
        available_days=['Monday', 'Wednesday', 'Friday'],
        start_time='09:00',
        end_time='17:00',
    )


@pytest.fixture
def patient(make_user):
    return make_user(UserRole.PATIENT)


@pytest.fixture
def receptionist(make_user):
    return make_user(UserRole.RECEPTIONIST)


@pytest.fixture
def admin(make_user):
    return make_user(UserRole.ADMIN)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def now():
    return NOW
