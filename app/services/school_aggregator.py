"""
School aggregator rolling user metrics up to school, course and period.
"""
import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Set

from sqlalchemy import and_
from sqlalchemy.orm import Session

from app.database.upsert import upsert
from app.models.lms import Enrollment, InteractionLog
from app.models.metrics import SCHOOL_WIDE, SchoolMetricRecord, UserMetricRecord
from app.models.registry import ENTITY_STUDENT, STATUS_POISONED, LinkedIdentity
from app.services.config_service import config_service
from app.services.engagement import segment_engagement
from app.services.exceptions import AggregationError

logger = logging.getLogger("app.aggregator")

AT_RISK_DAYS = 7

SCHOOL_METRIC_KEY = ("school_id", "course_id", "period_start", "period_type")


def _mean(values: Iterable[Optional[float]]) -> Optional[float]:
    present = [v for v in values if v is not None]
    if not present:
        return None
    return round(sum(present) / len(present), 2)


def _rate(numerator: int, denominator: int) -> Optional[float]:
    if denominator == 0:
        return None
    return round(numerator / denominator * 100, 2)


def school_student_ids(db: Session, school_id: int) -> List[int]:
    """Platform user ids of the students linked to a school."""
    rows = db.query(LinkedIdentity.user_id).filter(
        and_(
            LinkedIdentity.school_id == school_id,
            LinkedIdentity.entity_type == ENTITY_STUDENT,
            LinkedIdentity.sync_status != STATUS_POISONED,
        )
    ).all()
    return [row.user_id for row in rows]


class SchoolAggregator:
    """Daily rollup of user metrics into school metrics."""

    def __init__(self):
        self.logger = logger

    def aggregate_all(
        self,
        db: Session,
        period_start: datetime,
        period_end: datetime,
        period_type: str,
        now: Optional[datetime] = None,
    ) -> Dict[str, int]:
        """
        Aggregate every school with linked students.

        A failing school is logged and skipped.

        Returns:
            Counters of schools processed and failed
        """
        now = now or config_service.now()
        school_ids = [
            row.school_id
            for row in db.query(LinkedIdentity.school_id).filter(
                and_(
                    LinkedIdentity.school_id.isnot(None),
                    LinkedIdentity.entity_type == ENTITY_STUDENT,
                )
            ).distinct().order_by(LinkedIdentity.school_id).all()
        ]

        results = {"total_schools": len(school_ids), "processed": 0, "errors": 0}
        for school_id in school_ids:
            try:
                self.aggregate(db, school_id, period_start, period_end, period_type, now=now)
                results["processed"] += 1
            except Exception as e:
                db.rollback()
                error = e if isinstance(e, AggregationError) else AggregationError(school_id, str(e))
                results["errors"] += 1
                self.logger.error(f"Error aggregating {period_type} metrics: {error}")

        self.logger.info(f"School aggregation finished for {period_type} period {period_start}: {results}")
        return results

    def aggregate(
        self,
        db: Session,
        school_id: int,
        period_start: datetime,
        period_end: datetime,
        period_type: str,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Aggregate one school: a row per course with metrics, then the school-wide row.

        Args:
            db: Database session
            school_id: School ID
            period_start: Period start
            period_end: Period end
            period_type: weekly or monthly
            now: Reference time for the at-risk lookback

        Returns:
            Number of school metric rows written
        """
        now = now or config_service.now()
        students = set(school_student_ids(db, school_id))
        if not students:
            return 0

        rows = db.query(UserMetricRecord).filter(
            and_(
                UserMetricRecord.user_id.in_(students),
                UserMetricRecord.period_start == period_start,
                UserMetricRecord.period_type == period_type,
            )
        ).all()

        rows_by_course: Dict[int, List[UserMetricRecord]] = defaultdict(list)
        for row in rows:
            rows_by_course[row.course_id].append(row)

        enrolled_by_course = self._enrolled_by_course(db, students, rows_by_course.keys())
        recent_by_course, recent_any = self._recently_active(db, students, now - timedelta(days=AT_RISK_DAYS))

        written = 0
        for course_id in sorted(rows_by_course):
            course_rows = rows_by_course[course_id]
            enrolled = enrolled_by_course.get(course_id, set())
            scores = [row.total_actions for row in course_rows]
            values = self._rollup(course_rows, scores, enrolled, recent_by_course.get(course_id, set()))
            values["completion_rate"] = _rate(
                sum(1 for row in course_rows if row.course_progress >= 100), len(enrolled)
            )
            self._save(db, school_id, course_id, period_start, period_end, period_type, values)
            written += 1

        totals: Dict[int, int] = defaultdict(int)
        for row in rows:
            totals[row.user_id] += row.total_actions
        values = self._rollup(rows, list(totals.values()), students, recent_any)
        values["completion_rate"] = None
        self._save(db, school_id, SCHOOL_WIDE, period_start, period_end, period_type, values)
        written += 1

        db.commit()
        self.logger.info(f"Aggregated school {school_id}: {written} rows for {period_type} {period_start}")
        return written

    @staticmethod
    def _rollup(rows: List[UserMetricRecord], scores: List[int], enrolled: Set[int],
                recent: Set[int]) -> Dict[str, object]:
        active = {row.user_id for row in rows}
        split = segment_engagement(scores)
        total_submissions = sum(row.assignments_submitted for row in rows)
        avg_seconds = _mean(row.time_spent_seconds for row in rows)
        return {
            "total_enrolled": len(enrolled),
            "total_active": len(active),
            "total_inactive": max(0, len(enrolled) - len(active)),
            "new_enrollments": 0,
            "avg_actions_per_student": _mean(row.total_actions for row in rows),
            "avg_active_days": _mean(row.active_days for row in rows),
            "avg_time_spent_minutes": round(avg_seconds / 60, 2) if avg_seconds is not None else None,
            "total_resource_views": sum(row.resources_viewed for row in rows),
            "avg_resources_per_student": _mean(row.resources_viewed for row in rows),
            "total_submissions": total_submissions,
            "total_quiz_attempts": sum(row.quizzes_attempted for row in rows),
            "avg_assignment_score": _mean(row.assignments_avg_score for row in rows),
            "avg_quiz_score": _mean(row.quizzes_avg_score for row in rows),
            "avg_course_progress": _mean(row.course_progress for row in rows),
            "submission_rate": _rate(total_submissions, len(enrolled)),
            "high_engagement_count": split.high,
            "medium_engagement_count": split.medium,
            "low_engagement_count": split.low,
            "at_risk_count": len(enrolled) - len(recent & enrolled),
        }

    @staticmethod
    def _enrolled_by_course(db: Session, students: Set[int], course_ids: Iterable[int]) -> Dict[int, Set[int]]:
        course_ids = list(course_ids)
        enrolled: Dict[int, Set[int]] = defaultdict(set)
        if not course_ids:
            return enrolled
        rows = db.query(Enrollment.course_id, Enrollment.user_id).filter(
            and_(
                Enrollment.course_id.in_(course_ids),
                Enrollment.user_id.in_(students),
                Enrollment.role == "student",
                Enrollment.active.is_(True),
            )
        ).all()
        for row in rows:
            enrolled[row.course_id].add(row.user_id)
        return enrolled

    @staticmethod
    def _recently_active(db: Session, students: Set[int], since: datetime):
        """Users with any log row since the cutoff, per course and overall."""
        rows = db.query(InteractionLog.course_id, InteractionLog.user_id).filter(
            and_(
                InteractionLog.user_id.in_(students),
                InteractionLog.time_created >= since,
                InteractionLog.anonymous.is_(False),
            )
        ).distinct().all()
        by_course: Dict[int, Set[int]] = defaultdict(set)
        overall: Set[int] = set()
        for row in rows:
            by_course[row.course_id].add(row.user_id)
            overall.add(row.user_id)
        return by_course, overall

    def _save(self, db: Session, school_id: int, course_id: int, period_start: datetime,
              period_end: datetime, period_type: str, values: Dict[str, object]) -> None:
        now = config_service.now()
        record = {
            "school_id": school_id,
            "course_id": course_id,
            "period_start": period_start,
            "period_end": period_end,
            "period_type": period_type,
            "created_at": now,
            "updated_at": now,
        }
        record.update(values)
        upsert(
            db,
            SchoolMetricRecord,
            record,
            conflict_columns=SCHOOL_METRIC_KEY,
            update_columns=[key for key in record if key not in SCHOOL_METRIC_KEY and key != "created_at"],
        )
