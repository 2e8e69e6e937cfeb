"""
Learning platform tables read by the analytics pipeline.

These tables belong to the host platform. The pipeline only reads them,
except for enrolments written by student auto-enrolment.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

# Course id of the platform front page; its log rows are not course activity.
SITE_COURSE_ID = 1

COMPLETION_INCOMPLETE = 0
COMPLETION_COMPLETE = 1
COMPLETION_COMPLETE_PASS = 2
COMPLETION_COMPLETE_FAIL = 3


class LmsUser(SQLModel, table=True):
    """Platform account."""

    __tablename__ = "lms_users"

    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(max_length=100, index=True)
    email: Optional[str] = Field(default=None, max_length=255, index=True)
    firstname: str = Field(default="", max_length=100)
    lastname: str = Field(default="", max_length=100)
    deleted: bool = Field(default=False)
    suspended: bool = Field(default=False)
    last_access: Optional[datetime] = None

    @property
    def fullname(self) -> str:
        return f"{self.firstname} {self.lastname}".strip()


class CourseCategory(SQLModel, table=True):
    """Course category; idnumber carries the registry combination key."""

    __tablename__ = "lms_course_categories"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(max_length=255)
    idnumber: Optional[str] = Field(default=None, max_length=100, index=True)
    parent_id: int = Field(default=0, index=True)
    sortorder: int = Field(default=0)


class Course(SQLModel, table=True):
    """Platform course."""

    __tablename__ = "lms_courses"

    id: Optional[int] = Field(default=None, primary_key=True)
    fullname: str = Field(max_length=255)
    shortname: str = Field(default="", max_length=100)
    category_id: int = Field(default=0, index=True)
    visible: bool = Field(default=True)


class CourseSection(SQLModel, table=True):
    """Course section (unit); section number 0 is the general section."""

    __tablename__ = "lms_course_sections"

    id: Optional[int] = Field(default=None, primary_key=True)
    course_id: int = Field(index=True)
    section: int = Field(default=0)
    name: Optional[str] = Field(default=None, max_length=255)
    visible: bool = Field(default=True)


class CourseActivity(SQLModel, table=True):
    """Activity placed in a course section."""

    __tablename__ = "lms_course_modules"

    id: Optional[int] = Field(default=None, primary_key=True)
    course_id: int = Field(index=True)
    section_id: int = Field(index=True)
    name: str = Field(max_length=255)
    module: str = Field(max_length=50)  # quiz, assign, resource, page...
    visible: bool = Field(default=True)
    completion: int = Field(default=0)  # 0 disabled, 1 manual, 2 automatic
    deleting: bool = Field(default=False)


class Enrollment(SQLModel, table=True):
    """User enrolment in a course with its role."""

    __tablename__ = "lms_enrolments"
    __table_args__ = (UniqueConstraint("user_id", "course_id", name="uix_enrolment_user_course"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    course_id: int = Field(index=True)
    role: str = Field(default="student", max_length=30)
    method: str = Field(default="manual", max_length=30)
    active: bool = Field(default=True)
    time_start: Optional[datetime] = None
    time_created: datetime = Field(default_factory=datetime.utcnow)


class InteractionLog(SQLModel, table=True):
    """Append-only standard log of user interactions."""

    __tablename__ = "lms_logstore"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    course_id: int = Field(index=True)
    component: str = Field(max_length=100)
    action: str = Field(max_length=100)
    target: Optional[str] = Field(default=None, max_length=100)
    object_id: Optional[int] = None
    anonymous: bool = Field(default=False)
    ip: Optional[str] = Field(default=None, max_length=45)
    time_created: datetime = Field(index=True)


class ActivityCompletion(SQLModel, table=True):
    """Per user completion state of an activity."""

    __tablename__ = "lms_course_modules_completion"

    id: Optional[int] = Field(default=None, primary_key=True)
    activity_id: int = Field(index=True)
    user_id: int = Field(index=True)
    completion_state: int = Field(default=COMPLETION_INCOMPLETE)
    time_modified: datetime = Field(default_factory=datetime.utcnow)


class CourseCompletion(SQLModel, table=True):
    """Course completion record; time_completed is set once completed."""

    __tablename__ = "lms_course_completions"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    course_id: int = Field(index=True)
    time_completed: Optional[datetime] = None


class GradeItem(SQLModel, table=True):
    """Gradebook column, usually linked to an activity."""

    __tablename__ = "lms_grade_items"

    id: Optional[int] = Field(default=None, primary_key=True)
    course_id: int = Field(index=True)
    activity_id: Optional[int] = Field(default=None, index=True)
    item_type: str = Field(default="mod", max_length=30)
    item_module: Optional[str] = Field(default=None, max_length=50)
    grademax: float = Field(default=100.0)


class Grade(SQLModel, table=True):
    """Final grade of a user for a grade item."""

    __tablename__ = "lms_grade_grades"

    id: Optional[int] = Field(default=None, primary_key=True)
    item_id: int = Field(index=True)
    user_id: int = Field(index=True)
    finalgrade: Optional[float] = None
