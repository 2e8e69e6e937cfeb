"""
Domain event intake.
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.database.session import get_session
from app.services.config_service import config_service
from app.services.event_updater import EVENT_TYPES, DomainEvent, EventUpdater

logger = logging.getLogger("app.events")
router = APIRouter(prefix="/api/events", tags=["events"])

event_updater = EventUpdater()


@router.post("")
async def receive_event(event: DomainEvent, db: Session = Depends(get_session)) -> Dict[str, Any]:
    """Apply a platform domain event to the current period metrics."""
    if event.event_type not in EVENT_TYPES:
        raise HTTPException(status_code=400, detail=f"Unknown event type: {event.event_type}")

    applied = event_updater.handle(db, event)
    return {
        "status": "success",
        "applied": applied,
        "timestamp": config_service.now().isoformat(),
    }
