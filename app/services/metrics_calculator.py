"""
User metrics calculator turning interaction logs into per-period rollups.
"""
import logging
from datetime import datetime
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import and_, func
from sqlalchemy.orm import Session

from app.database.upsert import upsert
from app.models.lms import SITE_COURSE_ID, CourseActivity, InteractionLog
from app.models.metrics import UserMetricRecord
from app.services.config_service import config_service

logger = logging.getLogger("app.metrics")

# Gaps at or above this many seconds start a new session
SESSION_GAP_SECONDS = 1800

ANY = "*"

# (component, action, target) -> counters; target None matches any target,
# action ANY matches any action, component ANY matches any component.
CLASSIFICATION = {
    ("mod_resource", ANY, None): ("resources_viewed",),
    ("mod_resource", "viewed", None): ("files_downloaded",),
    (ANY, "downloaded", None): ("files_downloaded",),
    ("mod_page", ANY, None): ("pages_viewed",),
    ("mod_url", "viewed", None): ("videos_started",),
    ("mod_forum", "viewed", None): ("forum_views",),
    ("mod_forum", "created", "discussion"): ("forum_posts",),
    ("mod_forum", "created", "post"): ("forum_replies",),
    ("mod_chat", "sent", None): ("chat_messages",),
    ("mod_chat", "created", None): ("chat_messages",),
    ("mod_assign", "viewed", None): ("assignments_viewed",),
}

CONTENT_FIELDS = (
    "resources_viewed",
    "files_downloaded",
    "pages_viewed",
    "videos_started",
    "forum_views",
    "forum_posts",
    "forum_replies",
    "chat_messages",
    "assignments_viewed",
)

# Written by the batch calculator; event-managed columns are left alone.
LOG_DERIVED_FIELDS = (
    "period_end",
    "total_actions",
    "active_days",
    "first_access",
    "last_access",
    "time_spent_seconds",
    "resources_unique",
    "activities_total",
) + CONTENT_FIELDS

EVENT_MANAGED_FIELDS = (
    "assignments_submitted",
    "assignments_graded",
    "assignments_avg_score",
    "quizzes_attempted",
    "quizzes_graded",
    "quizzes_avg_score",
    "activities_completed",
    "course_progress",
)

METRIC_KEY = ("user_id", "course_id", "period_start", "period_type")


def classify(component: str, action: str, target: Optional[str] = None) -> FrozenSet[str]:
    """
    Counters a log row contributes to.

    A target specific rule for (component, action) replaces the generic one.
    """
    counters = set()
    specific = CLASSIFICATION.get((component, action, target)) if target is not None else None
    counters.update(specific or CLASSIFICATION.get((component, action, None), ()))
    counters.update(CLASSIFICATION.get((component, ANY, None), ()))
    counters.update(CLASSIFICATION.get((ANY, action, None), ()))
    return frozenset(counters)


def estimate_time_spent(timestamps: Sequence[datetime], session_gap: int = SESSION_GAP_SECONDS) -> int:
    """
    Estimate seconds spent from sorted interaction timestamps.

    Consecutive gaps shorter than session_gap are summed; longer gaps are
    session boundaries and contribute nothing.
    """
    total = 0.0
    for previous, current in zip(timestamps, timestamps[1:]):
        gap = (current - previous).total_seconds()
        if gap < session_gap:
            total += gap
    return int(total)


class UserMetricsCalculator:
    """Batch calculator for per-user, per-course, per-period metrics."""

    def __init__(self):
        self.logger = logger

    def compute(self, db: Session, period_start: datetime, period_end: datetime, period_type: str) -> Dict[str, int]:
        """
        Compute metrics for every user with course activity in the period.

        Re-running for the same period overwrites the log-derived fields.

        Args:
            db: Database session
            period_start: Inclusive period start
            period_end: Exclusive period end
            period_type: weekly or monthly

        Returns:
            Counters of processed and failed (user, course) pairs
        """
        pairs = db.query(InteractionLog.user_id, InteractionLog.course_id).filter(
            and_(
                InteractionLog.time_created >= period_start,
                InteractionLog.time_created < period_end,
                InteractionLog.course_id > SITE_COURSE_ID,
                InteractionLog.user_id > 0,
                InteractionLog.anonymous.is_(False),
            )
        ).distinct().order_by(InteractionLog.user_id, InteractionLog.course_id).all()

        self.logger.info(f"Computing {period_type} metrics from {period_start} for {len(pairs)} user/course pairs")

        activity_totals: Dict[int, int] = {}
        results = {"processed": 0, "errors": 0}
        for user_id, course_id in pairs:
            try:
                if course_id not in activity_totals:
                    activity_totals[course_id] = self._count_activities(db, course_id)
                self.compute_for_user(
                    db, user_id, course_id, period_start, period_end, period_type,
                    activities_total=activity_totals[course_id],
                )
                db.commit()
                results["processed"] += 1
            except Exception as e:
                db.rollback()
                results["errors"] += 1
                self.logger.error(f"Error computing metrics for user {user_id} in course {course_id}: {e}")

        return results

    def compute_for_user(
        self,
        db: Session,
        user_id: int,
        course_id: int,
        period_start: datetime,
        period_end: datetime,
        period_type: str,
        activities_total: Optional[int] = None,
    ) -> Dict[str, object]:
        """Compute and upsert metrics for one user in one course."""
        rows = db.query(
            InteractionLog.component,
            InteractionLog.action,
            InteractionLog.target,
            InteractionLog.object_id,
            InteractionLog.time_created,
        ).filter(
            and_(
                InteractionLog.user_id == user_id,
                InteractionLog.course_id == course_id,
                InteractionLog.time_created >= period_start,
                InteractionLog.time_created < period_end,
                InteractionLog.anonymous.is_(False),
            )
        ).order_by(InteractionLog.time_created, InteractionLog.id).all()

        metrics = self.summarize(rows)
        if activities_total is None:
            activities_total = self._count_activities(db, course_id)
        metrics["activities_total"] = activities_total

        self._save(db, user_id, course_id, period_start, period_end, period_type, metrics)
        return metrics

    @staticmethod
    def summarize(rows: Iterable[Tuple]) -> Dict[str, object]:
        """
        Fold log rows (component, action, target, object_id, time) into metric fields.

        Rows must be ordered by time.
        """
        counts = dict.fromkeys(CONTENT_FIELDS, 0)
        timestamps: List[datetime] = []
        resources = set()

        for component, action, target, object_id, time_created in rows:
            timestamps.append(time_created)
            for counter in classify(component, action, target):
                counts[counter] += 1
            if component == "mod_resource" and object_id is not None:
                resources.add(object_id)

        metrics: Dict[str, object] = {
            "total_actions": len(timestamps),
            "active_days": len({t.date() for t in timestamps}),
            "first_access": timestamps[0] if timestamps else None,
            "last_access": timestamps[-1] if timestamps else None,
            "time_spent_seconds": estimate_time_spent(timestamps),
            "resources_unique": len(resources),
        }
        metrics.update(counts)
        return metrics

    @staticmethod
    def _count_activities(db: Session, course_id: int) -> int:
        return db.query(func.count(CourseActivity.id)).filter(
            and_(CourseActivity.course_id == course_id, CourseActivity.deleting.is_(False))
        ).scalar() or 0

    def _save(self, db: Session, user_id: int, course_id: int, period_start: datetime,
              period_end: datetime, period_type: str, metrics: Dict[str, object]) -> None:
        now = config_service.now()
        values = {
            "user_id": user_id,
            "course_id": course_id,
            "period_start": period_start,
            "period_end": period_end,
            "period_type": period_type,
            "created_at": now,
            "updated_at": now,
            "assignments_submitted": 0,
            "assignments_graded": 0,
            "quizzes_attempted": 0,
            "quizzes_graded": 0,
            "activities_completed": 0,
            "course_progress": 0.0,
        }
        values.update(metrics)
        upsert(
            db,
            UserMetricRecord,
            values,
            conflict_columns=METRIC_KEY,
            update_columns=LOG_DERIVED_FIELDS + ("updated_at",),
        )
