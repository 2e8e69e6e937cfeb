#!/usr/bin/env python3
"""
Database bootstrap for SchoolPulse.

Applies the Alembic migrations for the analytics tables and seeds the
default admin settings. The LMS platform tables are owned by the host
platform and are never created here.
"""

import logging
import os
import sys
from pathlib import Path

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from alembic import command  # noqa: E402
from alembic.config import Config  # noqa: E402
from alembic.runtime.migration import MigrationContext  # noqa: E402
from alembic.script import ScriptDirectory  # noqa: E402

from app.database.engine import engine  # noqa: E402
from app.database.init_db import init_settings  # noqa: E402
from app.database.session import SessionLocal  # noqa: E402

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


def run_migrations():
    """Upgrade the analytics schema to head."""
    try:
        alembic_cfg = Config(str(project_root / "alembic.ini"))
        alembic_cfg.set_main_option("script_location", str(project_root / "migrations"))
        alembic_cfg.set_main_option("sqlalchemy.url", str(engine.url))

        script = ScriptDirectory.from_config(alembic_cfg)
        with engine.connect() as conn:
            current_rev = MigrationContext.configure(conn).get_current_revision()
        head_rev = script.get_current_head()

        if current_rev != head_rev:
            logger.info(f"Applying migrations: {current_rev} -> {head_rev}")
            command.upgrade(alembic_cfg, "head")
            logger.info("Migrations applied")
        else:
            logger.info("Schema is up to date")
        return True
    except Exception as e:
        logger.error(f"Migration failed: {e}")
        return False


def seed_settings():
    db = SessionLocal()
    try:
        init_settings(db)
        return True
    except Exception as e:
        logger.error(f"Seeding settings failed: {e}")
        db.rollback()
        return False
    finally:
        db.close()


def main():
    if not os.getenv("DB_URL"):
        logger.error("DB_URL is not set")
        sys.exit(1)

    db_url = os.getenv("DB_URL")
    logger.info(f"Initializing database: {db_url.split('@')[1] if '@' in db_url else db_url}")

    if not run_migrations():
        sys.exit(1)
    if not seed_settings():
        sys.exit(1)

    logger.info("Database initialization finished")


if __name__ == "__main__":
    main()
