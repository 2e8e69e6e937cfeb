"""
Sessions for API requests and worker jobs.

API handlers get a request-scoped session from get_session and commit
themselves; the sync service also commits registry audit rows mid-request.
Worker jobs use get_db_session, which commits once the job body returns.
"""
import logging
from contextlib import contextmanager
from typing import Generator, Iterator

from sqlalchemy.orm import Session, sessionmaker

from app.database.engine import engine

logger = logging.getLogger("app.database")

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_session() -> Generator[Session, None, None]:
    """FastAPI dependency yielding one session per request."""
    session = SessionLocal()
    try:
        yield session
    except Exception as e:
        logger.error(f"Request rolled back: {e}")
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def get_db_session(owner: str = "worker") -> Iterator[Session]:
    """
    Session for a Celery job or event task.

    Args:
        owner: Job or task name used in log messages
    """
    session = SessionLocal()
    logger.debug(f"Session opened for {owner}")
    try:
        yield session
        session.commit()
    except Exception as e:
        logger.error(f"Session of {owner} rolled back: {e}")
        session.rollback()
        raise
    finally:
        session.close()
