"""
Database initialization script.
"""
import logging

from sqlalchemy.orm import Session
from sqlmodel import SQLModel

from app.database.engine import engine
from app.database.session import SessionLocal
from app.models.admin import AdminSetting

logger = logging.getLogger("app.database")

DEFAULT_SETTINGS = [
    {"key": "ENROLLMENT_CUTOFF_MONTH", "value": "9", "description": "Academic year start month"},
    {"key": "ENROLLMENT_CUTOFF_DAY", "value": "1", "description": "Academic year start day"},
    {"key": "AUTO_ENROLL_ENABLED", "value": "false", "description": "Enrol linked students by program and level"},
]


def init_settings(db: Session) -> None:
    """
    Seed default admin settings.

    Args:
        db: Database session
    """
    for setting in DEFAULT_SETTINGS:
        existing = db.query(AdminSetting).filter(AdminSetting.key == setting["key"]).first()
        if not existing:
            db.add(AdminSetting(updated_by="seed", **setting))
            logger.info(f"Created setting: {setting['key']}")
        else:
            logger.debug(f"Setting already exists: {setting['key']}")

    db.commit()


def init_database() -> None:
    """
    Create all tables, platform tables included, and seed settings.

    For local development; deployments run the Alembic migrations.
    """
    logger.info("Initializing database...")

    # Register every table on the metadata
    import app.models.lms  # noqa: F401
    import app.models.metrics  # noqa: F401
    import app.models.registry  # noqa: F401

    SQLModel.metadata.create_all(engine)
    logger.info("Database tables created")

    db = SessionLocal()
    try:
        init_settings(db)
        logger.info("Database initialization completed")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    init_database()
