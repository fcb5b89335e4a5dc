"""
Migration Runner - Runs Alembic migrations at application startup.

Alembic's command API is synchronous while ``alembic/env.py`` drives the
async engine with ``asyncio.run``, so the upgrade runs in a worker thread.
"""

import asyncio
from pathlib import Path

from alembic import command
from alembic.config import Config
from structlog import get_logger

from manabee.config import Settings

logger = get_logger(__name__)

# Path to alembic.ini relative to project root
ALEMBIC_INI_PATH = Path(__file__).parent.parent.parent / "alembic.ini"


def build_alembic_config(database_url: str) -> Config:
    """Create an Alembic config pointing at the given database."""
    alembic_cfg = Config(str(ALEMBIC_INI_PATH))
    alembic_cfg.set_main_option("script_location", str(ALEMBIC_INI_PATH.parent / "alembic"))
    alembic_cfg.set_main_option("sqlalchemy.url", database_url.replace("%", "%%"))
    return alembic_cfg


def run_migrations(database_url: str) -> None:
    """
    Upgrade the database schema to head.

    Alembic skips revisions that are already applied, so this is safe to run
    on every start.
    """
    if not ALEMBIC_INI_PATH.exists():
        logger.warning("alembic_config_missing", path=str(ALEMBIC_INI_PATH))
        return

    try:
        command.upgrade(build_alembic_config(database_url), "head")
    except Exception as e:
        logger.error("migration_failed", error=str(e))
        raise RuntimeError(f"Database migration failed: {e}") from e

    logger.info("migrations_complete")


async def run_migrations_async(settings: Settings) -> None:
    """Run migrations off the event loop."""
    await asyncio.to_thread(run_migrations, settings.database_url)
