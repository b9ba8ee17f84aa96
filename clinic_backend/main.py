import asyncio
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from clinic_backend.core import config
from clinic_backend.database import Base, engine, ensure_appointment_schema, ensure_schedule_schema
from clinic_backend.models import appointment, availability_template, doctor_settings, schedule, user  # noqa: F401
from clinic_backend.routes import appointment_routes, schedule_routes, settings_routes, template_routes
from clinic_backend.services.appointment_status_sweeper import run_status_sweeper

logging.basicConfig(
    level=config.LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
)

app = FastAPI(title='Clinic Scheduling API')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)

_sweeper_task: asyncio.Task | None = None


@app.on_event('startup')
def initialize_database() -> None:
    config.validate_runtime_config()
    try:
        Base.metadata.create_all(bind=engine)
        ensure_schedule_schema()
        ensure_appointment_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and Postgres credentials.')


@app.on_event('startup')
async def start_status_sweeper() -> None:
    global _sweeper_task

    if not config.SWEEPER_ENABLED:
        logger.info('Appointment status sweeper disabled')
        return
    _sweeper_task = asyncio.create_task(run_status_sweeper())


@app.on_event('shutdown')
async def stop_status_sweeper() -> None:
    global _sweeper_task

    if _sweeper_task is None:
        return
    _sweeper_task.cancel()
    try:
        await _sweeper_task
    except asyncio.CancelledError:
        pass
    _sweeper_task = None


@app.get('/')
def root():
    return {'status': 'Clinic Scheduling API Running'}


app.include_router(schedule_routes.router, prefix='/doctors/schedule')
app.include_router(template_routes.router, prefix='/doctors/templates')
app.include_router(settings_routes.router, prefix='/doctors/settings')
app.include_router(appointment_routes.router, prefix='/appointments')
