"""
Appointment status sweeper runner
Run this as a separate process: python run_status_sweeper.py
Set SWEEPER_ENABLED=false on the API processes when using it.
"""

import asyncio
import logging
import sys

from clinic_backend.core import config
from clinic_backend.database import Base, engine
from clinic_backend.models import appointment, availability_template, doctor_settings, schedule, user  # noqa: F401
from clinic_backend.services.appointment_status_sweeper import run_status_sweeper

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger(__name__)

if __name__ == "__main__":
    config.validate_runtime_config()
    Base.metadata.create_all(bind=engine)
    logger.info("Starting appointment status sweeper...")
    try:
        asyncio.run(run_status_sweeper())
    except KeyboardInterrupt:
        logger.info("Status sweeper stopped by user")
    except Exception:
        logger.exception("Status sweeper crashed")
        sys.exit(1)
