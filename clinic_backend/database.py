from threading import Lock

from sqlalchemy import create_engine, event, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from clinic_backend.core import config


def enable_sqlite_savepoints(target_engine) -> None:
    """Let SQLAlchemy own BEGIN on pysqlite so nested transactions behave."""

    @event.listens_for(target_engine, 'connect')
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(target_engine, 'begin')
    def _emit_begin(connection):
        connection.exec_driver_sql('BEGIN')


engine = create_engine(config.DATABASE_URL)

if engine.dialect.name == 'sqlite':
    enable_sqlite_savepoints(engine)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

ACTIVE_APPOINTMENT_STATUSES = ('pending', 'confirmed', 'scheduled')
# checked-in patients keep their slot until the visit ends
OCCUPYING_APPOINTMENT_STATUSES = ACTIVE_APPOINTMENT_STATUSES + ('waiting', 'in_progress')

_schema_lock = Lock()
_schedule_schema_checked = False
_appointment_schema_checked = False


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def ensure_schedule_schema() -> None:
    global _schedule_schema_checked

    if _schedule_schema_checked:
        return

    with _schema_lock:
        if _schedule_schema_checked:
            return

        inspector = inspect(engine)

        if 'doctor_schedules' not in inspector.get_table_names():
            _schedule_schema_checked = True
            return

        with engine.begin() as connection:
            connection.execute(
                text(
                    'CREATE UNIQUE INDEX IF NOT EXISTS uq_doctor_schedules_doctor_date '
                    'ON doctor_schedules(doctor_id, date)'
                )
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_availability_templates_doctor ON availability_templates(doctor_id)')
            )

        _schedule_schema_checked = True


def ensure_appointment_schema() -> None:
    global _appointment_schema_checked

    if _appointment_schema_checked:
        return

    with _schema_lock:
        if _appointment_schema_checked:
            return

        inspector = inspect(engine)

        if 'appointments' not in inspector.get_table_names():
            _appointment_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('appointments')}
        migration_steps = [
            ('receptionist_id', 'ALTER TABLE appointments ADD COLUMN receptionist_id INTEGER'),
            ('payment_status', "ALTER TABLE appointments ADD COLUMN payment_status VARCHAR DEFAULT 'pending'"),
            ('arrived', 'ALTER TABLE appointments ADD COLUMN arrived BOOLEAN DEFAULT FALSE'),
        ]
        statuses = ', '.join(f"'{status}'" for status in OCCUPYING_APPOINTMENT_STATUSES)

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text(
                    'CREATE UNIQUE INDEX IF NOT EXISTS uq_appointments_active_slot '
                    'ON appointments(doctor_id, appointment_date, appointment_time) '
                    f'WHERE status IN ({statuses})'
                )
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_status_date ON appointments(status, appointment_date)')
            )

        _appointment_schema_checked = True
