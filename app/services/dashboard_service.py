"""
Dashboard service for the read operations behind the school analytics UI.
"""
import logging
from collections import Counter, defaultdict
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, func, or_
from sqlalchemy.orm import Session

from app.models.lms import Course, InteractionLog, LmsUser
from app.models.metrics import PERIOD_WEEKLY, SCHOOL_WIDE, SchoolMetricRecord, UserMetricRecord
from app.models.registry import (
    ENTITY_STAFF,
    ENTITY_STUDENT,
    STATUS_POISONED,
    LinkedIdentity,
    School,
    StaffProfile,
    StudentProfile,
    SyncLogEntry,
)
from app.services.config_service import config_service
from app.services.engagement import AT_RISK, classify_score, engagement_thresholds
from app.services.periods import period_bounds, week_start
from app.services.school_aggregator import AT_RISK_DAYS

logger = logging.getLogger("app.dashboard")

MAX_PER_PAGE = 100
DEFAULT_ACCESS_LOG_DAYS = 7

TRAFFIC_DAILY = "daily"
TRAFFIC_WEEKLY = "weekly"
TRAFFIC_MONTHLY = "monthly"
TRAFFIC_PERIODS = (TRAFFIC_DAILY, TRAFFIC_WEEKLY, TRAFFIC_MONTHLY)
MAX_TRAFFIC_DAYS = 365

STUDENT_SORT_FIELDS = (
    "lastname",
    "firstname",
    "active_days",
    "total_actions",
    "quizzes_avg_score",
    "course_progress",
    "last_access",
)

ACCESS_LOG_SORT_FIELDS = {
    "access_time": InteractionLog.time_created,
    "user_fullname": LmsUser.lastname,
    "course_name": Course.fullname,
    "school_name": School.name,
}

METRIC_FIELDS = (
    "total_enrolled",
    "total_active",
    "total_inactive",
    "new_enrollments",
    "avg_actions_per_student",
    "avg_active_days",
    "avg_time_spent_minutes",
    "total_resource_views",
    "avg_resources_per_student",
    "total_submissions",
    "total_quiz_attempts",
    "avg_assignment_score",
    "avg_quiz_score",
    "avg_course_progress",
    "completion_rate",
    "submission_rate",
    "high_engagement_count",
    "medium_engagement_count",
    "low_engagement_count",
    "at_risk_count",
)


def _traffic_label(moment: datetime, period: str) -> str:
    if period == TRAFFIC_WEEKLY:
        return week_start(moment).strftime("%Y-%m-%d")
    if period == TRAFFIC_MONTHLY:
        return moment.strftime("%Y-%m")
    return moment.strftime("%Y-%m-%d")


def _page_window(page: int, perpage: int):
    page = max(0, page)
    perpage = max(1, min(MAX_PER_PAGE, perpage))
    return page, perpage


class DashboardService:
    """Read operations over cached registry data and aggregated metrics."""

    def __init__(self):
        self.logger = logger

    def _get_school(self, db: Session, school_code: str) -> School:
        school = db.query(School).filter(School.school_code == school_code).first()
        if school is None:
            raise LookupError(f"School {school_code} not found")
        return school

    def _latest_school_metrics(self, db: Session, school_id: int, course_id: int,
                               period_type: str) -> Optional[SchoolMetricRecord]:
        return db.query(SchoolMetricRecord).filter(
            and_(
                SchoolMetricRecord.school_id == school_id,
                SchoolMetricRecord.course_id == course_id,
                SchoolMetricRecord.period_type == period_type,
            )
        ).order_by(SchoolMetricRecord.period_start.desc()).first()

    def get_school_metrics(self, db: Session, school_code: str, course_id: int = SCHOOL_WIDE,
                           period_type: str = PERIOD_WEEKLY) -> Dict[str, Any]:
        """
        Most recent aggregated metrics of a school.

        Args:
            db: Database session
            school_code: Registry school code
            course_id: Course ID, 0 for school-wide
            period_type: weekly or monthly

        Returns:
            School header and metrics, metrics None when nothing was aggregated yet
        """
        school = self._get_school(db, school_code)
        record = self._latest_school_metrics(db, school.id, course_id, period_type)

        result = {
            "school_code": school.school_code,
            "school_name": school.name,
            "course_id": course_id,
            "period_type": period_type,
            "period_start": None,
            "period_end": None,
            "metrics": None,
        }
        if record is not None:
            result["period_start"] = record.period_start.isoformat()
            result["period_end"] = record.period_end.isoformat()
            result["metrics"] = {field: getattr(record, field) for field in METRIC_FIELDS}
        return result

    def get_engagement_distribution(self, db: Session, school_code: str, course_id: int = SCHOOL_WIDE,
                                    period_type: str = PERIOD_WEEKLY) -> Dict[str, Any]:
        """High/medium/low/at-risk counts from the latest aggregation."""
        school = self._get_school(db, school_code)
        record = self._latest_school_metrics(db, school.id, course_id, period_type)
        if record is None:
            return {"school_code": school_code, "period_start": None,
                    "high": 0, "medium": 0, "low": 0, "at_risk": 0, "total_active": 0, "total_enrolled": 0}
        return {
            "school_code": school_code,
            "period_start": record.period_start.isoformat(),
            "high": record.high_engagement_count,
            "medium": record.medium_engagement_count,
            "low": record.low_engagement_count,
            "at_risk": record.at_risk_count,
            "total_active": record.total_active,
            "total_enrolled": record.total_enrolled,
        }

    def get_student_list(
        self,
        db: Session,
        school_code: str = "",
        course_id: int = 0,
        program: str = "",
        engagement_level: str = "",
        status: str = "",
        search: str = "",
        sort: str = "lastname",
        order: str = "ASC",
        page: int = 0,
        perpage: int = 20,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Paginated list of linked students with current week metrics.

        Engagement levels use the same percentile split as the school
        aggregator, computed over the filtered population.

        Args:
            school_code: Restrict to one school
            course_id: Restrict metrics and activity to one course, 0 for all
            program: Program name or code
            engagement_level: high, medium, low or at_risk
            status: active or at_risk
            search: Substring of name, email or student code
            sort: One of STUDENT_SORT_FIELDS
            order: ASC or DESC
            page: Zero based page
            perpage: Page size, clamped to 1..100
        """
        now = now or config_service.now()
        page, perpage = _page_window(page, perpage)
        sort = sort if sort in STUDENT_SORT_FIELDS else "lastname"
        descending = order.upper() == "DESC"

        query = (
            db.query(LmsUser, StudentProfile, School)
            .join(LinkedIdentity, LinkedIdentity.user_id == LmsUser.id)
            .outerjoin(StudentProfile, StudentProfile.user_id == LmsUser.id)
            .outerjoin(School, School.id == LinkedIdentity.school_id)
            .filter(
                and_(
                    LinkedIdentity.entity_type == ENTITY_STUDENT,
                    LinkedIdentity.sync_status != STATUS_POISONED,
                    LmsUser.deleted.is_(False),
                )
            )
        )
        if school_code:
            query = query.filter(School.school_code == school_code)
        if program:
            query = query.filter(or_(StudentProfile.program == program, StudentProfile.program_code == program))
        if search:
            pattern = f"%{search.lower()}%"
            query = query.filter(
                or_(
                    func.lower(LmsUser.firstname).like(pattern),
                    func.lower(LmsUser.lastname).like(pattern),
                    func.lower(LmsUser.email).like(pattern),
                    func.lower(StudentProfile.student_code).like(pattern),
                )
            )
        rows = query.all()
        user_ids = [user.id for user, _, _ in rows]

        metrics = self._current_user_metrics(db, user_ids, course_id, now)
        last_seen = self._last_activity(db, user_ids, course_id)
        thresholds = engagement_thresholds([metrics[uid]["total_actions"] for uid in user_ids])
        recent_cutoff = now - timedelta(days=AT_RISK_DAYS)

        students = []
        for user, profile, school in rows:
            user_metrics = metrics[user.id]
            last_access = last_seen.get(user.id)
            at_risk = last_access is None or last_access < recent_cutoff
            level = AT_RISK if at_risk else classify_score(user_metrics["total_actions"], thresholds)
            students.append({
                "user_id": user.id,
                "firstname": user.firstname,
                "lastname": user.lastname,
                "email": user.email,
                "student_code": profile.student_code if profile else None,
                "program": profile.program if profile else None,
                "class_grade": profile.class_grade if profile else None,
                "school_code": school.school_code if school else None,
                "school_name": school.name if school else None,
                "last_access": last_access,
                "engagement_level": level,
                "status": "at_risk" if at_risk else "active",
                **user_metrics,
            })

        if engagement_level:
            students = [s for s in students if s["engagement_level"] == engagement_level]
        if status:
            students = [s for s in students if s["status"] == status]

        # None sorts first ascending
        students.sort(
            key=lambda s: (s[sort] is not None, s[sort] if s[sort] is not None else 0, s["user_id"]),
            reverse=descending,
        )
        total = len(students)
        window = students[page * perpage:(page + 1) * perpage]
        for student in window:
            if student["last_access"] is not None:
                student["last_access"] = student["last_access"].isoformat()

        return {"total": total, "page": page, "perpage": perpage, "students": window}

    def _current_user_metrics(self, db: Session, user_ids: List[int], course_id: int,
                              now: datetime) -> Dict[int, Dict[str, Any]]:
        period_start, _ = period_bounds(now, PERIOD_WEEKLY)
        merged: Dict[int, Dict[str, Any]] = defaultdict(lambda: {
            "total_actions": 0, "active_days": 0, "quizzes_avg_score": None, "course_progress": 0.0,
        })
        if not user_ids:
            return merged

        query = db.query(UserMetricRecord).filter(
            and_(
                UserMetricRecord.user_id.in_(user_ids),
                UserMetricRecord.period_start == period_start,
                UserMetricRecord.period_type == PERIOD_WEEKLY,
            )
        )
        if course_id:
            query = query.filter(UserMetricRecord.course_id == course_id)

        quiz_scores: Dict[int, List[float]] = defaultdict(list)
        progress: Dict[int, List[float]] = defaultdict(list)
        for record in query.all():
            entry = merged[record.user_id]
            entry["total_actions"] += record.total_actions
            entry["active_days"] = max(entry["active_days"], record.active_days)
            if record.quizzes_avg_score is not None:
                quiz_scores[record.user_id].append(record.quizzes_avg_score)
            progress[record.user_id].append(record.course_progress)

        for user_id, scores in quiz_scores.items():
            merged[user_id]["quizzes_avg_score"] = round(sum(scores) / len(scores), 2)
        for user_id, values in progress.items():
            merged[user_id]["course_progress"] = round(sum(values) / len(values), 2)
        return merged

    @staticmethod
    def _last_activity(db: Session, user_ids: List[int], course_id: int) -> Dict[int, datetime]:
        if not user_ids:
            return {}
        query = db.query(InteractionLog.user_id, func.max(InteractionLog.time_created)).filter(
            InteractionLog.user_id.in_(user_ids),
            InteractionLog.anonymous.is_(False),
        )
        if course_id:
            query = query.filter(InteractionLog.course_id == course_id)
        return dict(query.group_by(InteractionLog.user_id).all())

    def get_school_demographics(self, db: Session, school_code: str) -> Dict[str, Any]:
        """Gender, program and grade breakdown of a school's linked students and staff."""
        school = self._get_school(db, school_code)

        students = (
            db.query(StudentProfile)
            .join(LinkedIdentity, LinkedIdentity.user_id == StudentProfile.user_id)
            .filter(
                and_(
                    LinkedIdentity.school_id == school.id,
                    LinkedIdentity.entity_type == ENTITY_STUDENT,
                    LinkedIdentity.sync_status != STATUS_POISONED,
                )
            )
            .all()
        )
        staff = (
            db.query(StaffProfile)
            .join(LinkedIdentity, LinkedIdentity.user_id == StaffProfile.user_id)
            .filter(
                and_(
                    LinkedIdentity.school_id == school.id,
                    LinkedIdentity.entity_type == ENTITY_STAFF,
                    LinkedIdentity.sync_status != STATUS_POISONED,
                )
            )
            .all()
        )

        return {
            "school_code": school.school_code,
            "school_name": school.name,
            "total_students": len(students),
            "total_staff": len(staff),
            "students_by_gender": dict(Counter(s.gender or "UNKNOWN" for s in students)),
            "students_by_program": dict(Counter(s.program or "UNKNOWN" for s in students)),
            "students_by_grade": dict(Counter(s.class_grade or "UNKNOWN" for s in students)),
            "staff_by_gender": dict(Counter(s.gender or "UNKNOWN" for s in staff)),
            "staff_by_position": dict(Counter(s.position or "UNKNOWN" for s in staff)),
        }

    def get_platform_traffic(self, db: Session, period: str = TRAFFIC_DAILY, days_back: int = 30,
                             now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Platform-wide actions and distinct users per day, week or month.

        Args:
            db: Database session
            period: daily, weekly or monthly; anything else is treated as daily
            days_back: Look-back window in days, clamped to 1..365
            now: Reference time, defaults to the configured clock

        Returns:
            Buckets ordered by their first action, each labelled
            YYYY-MM-DD (day, or Monday of the week) or YYYY-MM (month)
        """
        now = now or config_service.now()
        period = period if period in TRAFFIC_PERIODS else TRAFFIC_DAILY
        days_back = max(1, min(MAX_TRAFFIC_DAYS, days_back))
        since = now - timedelta(days=days_back)

        rows = db.query(InteractionLog.user_id, InteractionLog.time_created).filter(
            and_(
                InteractionLog.time_created >= since,
                InteractionLog.user_id > 0,
                InteractionLog.anonymous.is_(False),
            )
        ).all()

        actions: Counter = Counter()
        users: Dict[str, set] = defaultdict(set)
        first_seen: Dict[str, datetime] = {}
        for user_id, time_created in rows:
            label = _traffic_label(time_created, period)
            actions[label] += 1
            users[label].add(user_id)
            if label not in first_seen or time_created < first_seen[label]:
                first_seen[label] = time_created

        data = [
            {
                "period_label": label,
                "total_actions": actions[label],
                "unique_users": len(users[label]),
                "period_start": first_seen[label].isoformat(),
            }
            for label in sorted(first_seen, key=first_seen.get)
        ]
        return {"period": period, "days_back": days_back, "data": data}

    def get_schools_list(self, db: Session) -> List[Dict[str, Any]]:
        """Cached schools with their linked student and staff counts."""
        counts: Dict[int, Counter] = defaultdict(Counter)
        rows = db.query(LinkedIdentity.school_id, LinkedIdentity.entity_type, func.count(LinkedIdentity.id)).filter(
            and_(LinkedIdentity.school_id.isnot(None), LinkedIdentity.sync_status != STATUS_POISONED)
        ).group_by(LinkedIdentity.school_id, LinkedIdentity.entity_type).all()
        for school_id, entity_type, count in rows:
            counts[school_id][entity_type] = count

        return [
            {
                "school_code": school.school_code,
                "school_name": school.name,
                "is_active": school.is_active,
                "district": school.district,
                "has_tvet": school.has_tvet,
                "student_count": counts[school.id][ENTITY_STUDENT],
                "staff_count": counts[school.id][ENTITY_STAFF],
                "last_synced": school.last_synced.isoformat() if school.last_synced else None,
            }
            for school in db.query(School).order_by(School.name).all()
        ]

    def get_enrollment_logs(self, db: Session, page: int = 0, perpage: int = 20,
                            operation: str = "") -> Dict[str, Any]:
        """Auto-enrolment audit rows, newest first."""
        page, perpage = _page_window(page, perpage)
        query = (
            db.query(SyncLogEntry, LmsUser)
            .outerjoin(LmsUser, LmsUser.id == SyncLogEntry.user_id)
            .filter(SyncLogEntry.sync_type == "enrollment")
        )
        if operation:
            query = query.filter(SyncLogEntry.operation == operation)

        total = query.count()
        rows = query.order_by(SyncLogEntry.created_at.desc(), SyncLogEntry.id.desc()) \
            .offset(page * perpage).limit(perpage).all()

        return {
            "total": total,
            "page": page,
            "perpage": perpage,
            "logs": [
                {
                    "id": entry.id,
                    "user_id": entry.user_id,
                    "user_fullname": user.fullname if user else "",
                    "lookup_key": entry.entity_id,
                    "operation": entry.operation,
                    "details": entry.details,
                    "created_at": entry.created_at.isoformat(),
                }
                for entry, user in rows
            ],
        }

    def get_access_log(
        self,
        db: Session,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        school_code: str = "",
        course_id: int = 0,
        user_type: str = "",
        search: str = "",
        sort: str = "access_time",
        order: str = "DESC",
        page: int = 0,
        perpage: int = 50,
    ) -> Dict[str, Any]:
        """
        Interaction log entries with user, school and course names.

        Defaults to the last seven days.
        """
        page, perpage = _page_window(page, perpage)
        date_to = date_to or config_service.now()
        date_from = date_from or date_to - timedelta(days=DEFAULT_ACCESS_LOG_DAYS)

        query = (
            db.query(InteractionLog, LmsUser, LinkedIdentity, School, Course)
            .join(LmsUser, LmsUser.id == InteractionLog.user_id)
            .outerjoin(LinkedIdentity, LinkedIdentity.user_id == LmsUser.id)
            .outerjoin(School, School.id == LinkedIdentity.school_id)
            .outerjoin(Course, Course.id == InteractionLog.course_id)
            .filter(
                and_(
                    InteractionLog.user_id > 0,
                    InteractionLog.anonymous.is_(False),
                    LmsUser.deleted.is_(False),
                    InteractionLog.time_created >= date_from,
                    InteractionLog.time_created <= date_to,
                )
            )
        )
        if school_code:
            query = query.filter(School.school_code == school_code)
        if course_id:
            query = query.filter(InteractionLog.course_id == course_id)
        if user_type:
            query = query.filter(LinkedIdentity.entity_type == user_type)
        if search:
            pattern = f"%{search.lower()}%"
            query = query.filter(
                or_(
                    func.lower(LmsUser.firstname).like(pattern),
                    func.lower(LmsUser.lastname).like(pattern),
                    func.lower(LinkedIdentity.external_code).like(pattern),
                )
            )

        total = query.count()
        column = ACCESS_LOG_SORT_FIELDS.get(sort, InteractionLog.time_created)
        direction = column.asc() if order.upper() == "ASC" else column.desc()
        rows = query.order_by(direction, InteractionLog.id.desc()).offset(page * perpage).limit(perpage).all()

        return {
            "total_count": total,
            "page": page,
            "perpage": perpage,
            "entries": [
                {
                    "id": log.id,
                    "user_fullname": user.fullname,
                    "external_code": identity.external_code if identity else "",
                    "user_type": identity.entity_type if identity else "",
                    "school_name": school.name if school else "",
                    "school_code": school.school_code if school else "",
                    "course_name": course.fullname if course else "",
                    "access_time": log.time_created.isoformat(),
                    "action": log.action,
                    "target": log.target or "",
                }
                for log, user, identity, school, course in rows
            ],
        }
