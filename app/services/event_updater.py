"""
Incremental metric updates driven by platform domain events.
"""
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel
from sqlalchemy import case
from sqlalchemy.orm import Session

from app.database.upsert import insert_ignore, upsert
from app.models.lms import COMPLETION_COMPLETE, COMPLETION_COMPLETE_PASS
from app.models.metrics import PERIOD_TYPES, UserMetricRecord
from app.models.registry import ProcessedEvent
from app.services.config_service import config_service
from app.services.metrics_calculator import METRIC_KEY
from app.services.periods import period_bounds

logger = logging.getLogger("app.events")

QUIZ_SUBMITTED = "quiz_submitted"
ASSIGNMENT_SUBMITTED = "assignment_submitted"
MODULE_COMPLETION_UPDATED = "module_completion_updated"
COURSE_COMPLETED = "course_completed"

EVENT_TYPES = (QUIZ_SUBMITTED, ASSIGNMENT_SUBMITTED, MODULE_COMPLETION_UPDATED, COURSE_COMPLETED)

COMPLETED_STATES = (COMPLETION_COMPLETE, COMPLETION_COMPLETE_PASS)


class DomainEvent(BaseModel):
    """Platform event relevant to user metrics."""

    event_type: str
    user_id: int
    course_id: int
    event_id: Optional[str] = None
    occurred_at: Optional[datetime] = None
    grade: Optional[float] = None
    grade_max: Optional[float] = None
    completion_state: Optional[int] = None

    def score_percent(self) -> Optional[float]:
        """Grade as a percentage of grade_max, rounded to 2 places."""
        if self.grade is None or not self.grade_max:
            return None
        return round(self.grade / self.grade_max * 100, 2)


def _running_mean(avg_column, count_column, score: float):
    """New mean after adding score; count_column holds the number of graded scores so far."""
    return case(
        (avg_column.is_(None), score),
        else_=(avg_column * count_column + score) / (count_column + 1),
    )


class EventUpdater:
    """Applies single-statement upserts to the current period rows of a user."""

    def __init__(self):
        self.logger = logger

    def handle(self, db: Session, event: DomainEvent) -> bool:
        """
        Apply one domain event to the weekly and monthly rows of its period.

        Args:
            db: Database session
            event: Domain event

        Returns:
            True when metrics were touched, False for ignored or duplicate events
        """
        if event.event_type not in EVENT_TYPES:
            self.logger.warning(f"Ignoring unknown event type {event.event_type}")
            return False

        if event.event_type == MODULE_COMPLETION_UPDATED and event.completion_state not in COMPLETED_STATES:
            return False

        if event.event_id is not None:
            fresh = insert_ignore(
                db,
                ProcessedEvent,
                {
                    "event_id": event.event_id,
                    "event_type": event.event_type,
                    "processed_at": config_service.now(),
                },
                conflict_columns=("event_id",),
            )
            if not fresh:
                self.logger.info(f"Skipping redelivered event {event.event_id}")
                db.commit()
                return False

        occurred_at = event.occurred_at or config_service.now()
        for period_type in PERIOD_TYPES:
            period_start, period_end = period_bounds(occurred_at, period_type)
            self._apply(db, event, period_start, period_end, period_type)

        db.commit()
        self.logger.info(f"Applied {event.event_type} for user {event.user_id} in course {event.course_id}")
        return True

    def _apply(self, db: Session, event: DomainEvent, period_start: datetime,
               period_end: datetime, period_type: str) -> None:
        table = UserMetricRecord.__table__.c
        now = config_service.now()
        insert_values: Dict[str, Any] = {
            "user_id": event.user_id,
            "course_id": event.course_id,
            "period_start": period_start,
            "period_end": period_end,
            "period_type": period_type,
            "created_at": now,
            "updated_at": now,
        }
        updates: Dict[str, Any] = {"updated_at": now}
        score = event.score_percent()

        if event.event_type == QUIZ_SUBMITTED:
            insert_values.update(quizzes_attempted=1, quizzes_graded=0, quizzes_avg_score=score)
            updates["quizzes_attempted"] = table.quizzes_attempted + 1
            if score is not None:
                insert_values["quizzes_graded"] = 1
                updates["quizzes_graded"] = table.quizzes_graded + 1
                updates["quizzes_avg_score"] = _running_mean(table.quizzes_avg_score, table.quizzes_graded, score)

        elif event.event_type == ASSIGNMENT_SUBMITTED:
            insert_values.update(assignments_submitted=1, assignments_graded=0, assignments_avg_score=score)
            updates["assignments_submitted"] = table.assignments_submitted + 1
            if score is not None:
                insert_values["assignments_graded"] = 1
                updates["assignments_graded"] = table.assignments_graded + 1
                updates["assignments_avg_score"] = _running_mean(
                    table.assignments_avg_score, table.assignments_graded, score
                )

        elif event.event_type == MODULE_COMPLETION_UPDATED:
            insert_values["activities_completed"] = 1
            updates["activities_completed"] = table.activities_completed + 1

        elif event.event_type == COURSE_COMPLETED:
            insert_values["course_progress"] = 100.0
            updates["course_progress"] = 100.0

        upsert(db, UserMetricRecord, insert_values, conflict_columns=METRIC_KEY, update_expressions=updates)
