"""
Per-user and per-school metric rollups.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

PERIOD_WEEKLY = "weekly"
PERIOD_MONTHLY = "monthly"
PERIOD_TYPES = (PERIOD_WEEKLY, PERIOD_MONTHLY)

# Course id used for school-wide rows
SCHOOL_WIDE = 0


class UserMetricRecord(SQLModel, table=True):
    """Engagement, content and assessment metrics of one user in one course and period."""

    __tablename__ = "user_metrics"
    __table_args__ = (
        UniqueConstraint("user_id", "course_id", "period_start", "period_type", name="uix_user_metrics_period"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    course_id: int = Field(index=True)
    period_start: datetime = Field(index=True)
    period_end: datetime
    period_type: str = Field(max_length=10)

    # Engagement, from the interaction log
    total_actions: int = Field(default=0)
    active_days: int = Field(default=0)
    first_access: Optional[datetime] = None
    last_access: Optional[datetime] = None
    time_spent_seconds: int = Field(default=0)

    # Content, from the interaction log
    resources_viewed: int = Field(default=0)
    resources_unique: int = Field(default=0)
    pages_viewed: int = Field(default=0)
    files_downloaded: int = Field(default=0)
    videos_started: int = Field(default=0)

    # Social, from the interaction log
    forum_views: int = Field(default=0)
    forum_posts: int = Field(default=0)
    forum_replies: int = Field(default=0)
    chat_messages: int = Field(default=0)

    # Assessment, from domain events
    assignments_viewed: int = Field(default=0)
    assignments_submitted: int = Field(default=0)
    assignments_graded: int = Field(default=0)
    assignments_avg_score: Optional[float] = None
    quizzes_attempted: int = Field(default=0)
    quizzes_graded: int = Field(default=0)
    quizzes_avg_score: Optional[float] = None

    # Progress
    activities_completed: int = Field(default=0)
    activities_total: int = Field(default=0)
    course_progress: float = Field(default=0.0)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class SchoolMetricRecord(SQLModel, table=True):
    """Rollup of user metrics for one school, course (0 = school-wide) and period."""

    __tablename__ = "school_metrics"
    __table_args__ = (
        UniqueConstraint("school_id", "course_id", "period_start", "period_type", name="uix_school_metrics_period"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    school_id: int = Field(index=True)
    course_id: int = Field(default=SCHOOL_WIDE, index=True)
    period_start: datetime = Field(index=True)
    period_end: datetime
    period_type: str = Field(max_length=10)

    total_enrolled: int = Field(default=0)
    total_active: int = Field(default=0)
    total_inactive: int = Field(default=0)
    new_enrollments: int = Field(default=0)

    avg_actions_per_student: Optional[float] = None
    avg_active_days: Optional[float] = None
    avg_time_spent_minutes: Optional[float] = None

    total_resource_views: int = Field(default=0)
    avg_resources_per_student: Optional[float] = None

    total_submissions: int = Field(default=0)
    total_quiz_attempts: int = Field(default=0)
    avg_assignment_score: Optional[float] = None
    avg_quiz_score: Optional[float] = None

    avg_course_progress: Optional[float] = None
    completion_rate: Optional[float] = None
    submission_rate: Optional[float] = None

    high_engagement_count: int = Field(default=0)
    medium_engagement_count: int = Field(default=0)
    low_engagement_count: int = Field(default=0)
    at_risk_count: int = Field(default=0)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
