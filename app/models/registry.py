"""
Local cache of the external student registry and its sync audit trail.
"""

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import JSON, Column, Field, SQLModel, Text

ENTITY_STUDENT = "student"
ENTITY_STAFF = "staff"
ENTITY_SCHOOL = "school"

STATUS_LINKED = "linked"
STATUS_ERROR = "error"
STATUS_POISONED = "poisoned"


class School(SQLModel, table=True):
    """School record cached from the registry."""

    __tablename__ = "schools"

    id: Optional[int] = Field(default=None, primary_key=True)
    school_code: str = Field(max_length=50, unique=True, index=True)
    name: str = Field(max_length=255)
    status: Optional[str] = Field(default=None, max_length=30)
    is_active: bool = Field(default=True)
    school_type: Optional[str] = Field(default=None, max_length=100)
    province: Optional[str] = Field(default=None, max_length=100)
    district: Optional[str] = Field(default=None, max_length=100)
    sector: Optional[str] = Field(default=None, max_length=100)
    has_tvet: bool = Field(default=False)
    # levels -> combinations -> grades -> class groups, as returned upstream
    hierarchy: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    last_synced: Optional[datetime] = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class LinkedIdentity(SQLModel, table=True):
    """
    Link between a platform user and a registry record.

    At most one row per user. Rows in status "poisoned" are deliberate
    failure markers that keep the auto-link job from retrying the user.
    """

    __tablename__ = "linked_identities"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(unique=True, index=True)
    external_code: str = Field(max_length=50, index=True)
    entity_type: str = Field(max_length=20, index=True)
    school_id: Optional[int] = Field(default=None, index=True)
    sync_status: str = Field(default=STATUS_LINKED, max_length=20, index=True)
    sync_error: Optional[str] = Field(default=None, sa_column=Column(Text))
    last_synced: Optional[datetime] = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class StudentProfile(SQLModel, table=True):
    """Registry details of a linked student."""

    __tablename__ = "student_profiles"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(unique=True, index=True)
    student_code: str = Field(max_length=50)
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    gender: Optional[str] = Field(default=None, max_length=10)
    date_of_birth: Optional[date] = None
    program: Optional[str] = Field(default=None, max_length=255)
    program_code: Optional[str] = Field(default=None, max_length=50)
    level_number: Optional[int] = None
    class_grade: Optional[str] = Field(default=None, max_length=50)
    class_group: Optional[str] = Field(default=None, max_length=50)
    academic_year: Optional[str] = Field(default=None, max_length=20)
    registration_date: Optional[date] = None
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class StaffProfile(SQLModel, table=True):
    """Registry details of a linked staff member."""

    __tablename__ = "staff_profiles"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(unique=True, index=True)
    staff_number: str = Field(max_length=50)
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    gender: Optional[str] = Field(default=None, max_length=10)
    position: Optional[str] = Field(default=None, max_length=100)
    qualification: Optional[str] = Field(default=None, max_length=100)
    employment_status: Optional[str] = Field(default=None, max_length=50)
    subjects: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class SyncLogEntry(SQLModel, table=True):
    """Append-only audit row for registry requests and link attempts."""

    __tablename__ = "sync_log"

    id: Optional[int] = Field(default=None, primary_key=True)
    sync_type: str = Field(max_length=20, index=True)  # student, staff, school, enrollment
    entity_id: str = Field(max_length=100, index=True)
    user_id: Optional[int] = Field(default=None, index=True)
    operation: str = Field(max_length=20, index=True)  # fetch, error, link, poison, create, skip
    request_url: Optional[str] = Field(default=None, max_length=500)
    response_code: Optional[int] = None
    response_time_ms: Optional[int] = None
    error_message: Optional[str] = Field(default=None, sa_column=Column(Text))
    details: Optional[str] = Field(default=None, sa_column=Column(Text))
    triggered_by: str = Field(default="api", max_length=20)  # api, task, event, admin
    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)


class ProcessedEvent(SQLModel, table=True):
    """Domain events already applied, used to drop redeliveries."""

    __tablename__ = "processed_events"
    __table_args__ = (UniqueConstraint("event_id", name="uix_processed_event_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    event_id: str = Field(max_length=100)
    event_type: str = Field(max_length=50)
    processed_at: datetime = Field(default_factory=datetime.utcnow, index=True)
