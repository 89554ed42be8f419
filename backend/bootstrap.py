"""
Statement Core - Process Bootstrap

Wires configuration, structured logging, error tracking and the database
for whatever process hosts the core (web worker, CLI, job runner).
"""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load environment variables first
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

from config import Settings, get_settings
from logging_config import setup_logging, get_logger
from sentry_integration import init_sentry
from database import init_db, dispose_engine

SERVICE_NAME = "statement-core"


def configure(settings: Optional[Settings] = None) -> Settings:
    """Configure logging and Sentry from settings"""
    settings = settings or get_settings()

    # JSON in production (or when forced), plain text otherwise
    setup_logging(
        level=settings.LOG_LEVEL,
        json_format=settings.json_logs,
        service_name=SERVICE_NAME
    )

    if settings.SENTRY_DSN:
        init_sentry(
            dsn=settings.SENTRY_DSN,
            environment=settings.ENVIRONMENT,
            traces_sample_rate=0.1 if settings.is_production else 0.0,
        )

    return settings


@asynccontextmanager
async def lifespan(settings: Optional[Settings] = None):
    """Startup/shutdown handler for a host process"""
    settings = configure(settings)
    logger = get_logger(__name__)

    logger.info(f"Starting {SERVICE_NAME} ({settings.ENVIRONMENT})")
    logger.info(f"Lock timeout: {settings.LOCK_TIMEOUT_SECONDS}s, scorer: {settings.CLASSIFICATION_SCORER}")

    errors = settings.validate_production_config() if settings.is_production else []
    for error in errors:
        logger.error(f"Configuration Error: {error}")
    if errors:
        raise RuntimeError("Cannot start in production with invalid configuration")

    try:
        await init_db()
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise

    try:
        yield settings
    finally:
        logger.info(f"Shutting down {SERVICE_NAME}...")
        await dispose_engine()
