"""
Celery tasks applying platform domain events to user metrics.
"""
import logging
from typing import Any, Dict

from app.database.session import get_db_session
from app.services.config_service import config_service
from app.services.event_updater import DomainEvent, EventUpdater
from worker.celery_app import celery_app

logger = logging.getLogger("worker.event_tasks")
event_updater = EventUpdater()


@celery_app.task(bind=True, max_retries=3, default_retry_delay=30)
def process_domain_event(self, payload: Dict[str, Any]):
    """
    Apply one domain event.

    Delivery is at-least-once; redelivered events with an event_id are dropped
    by the updater.
    """
    event = DomainEvent(**payload)
    try:
        with get_db_session(f"event {event.event_type}") as db:
            applied = event_updater.handle(db, event)
    except Exception as e:
        logger.error(f"Error applying {event.event_type} for user {event.user_id}: {e}")
        raise self.retry(exc=e)

    return {
        "status": "success",
        "applied": applied,
        "event_type": event.event_type,
        "timestamp": config_service.now().isoformat()
    }
