"""
Course report service: section completion and grades per school.
"""
import logging
from collections import OrderedDict, defaultdict
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import and_, func
from sqlalchemy.orm import Session

from app.models.lms import (
    SITE_COURSE_ID,
    ActivityCompletion,
    Course,
    CourseActivity,
    CourseCategory,
    CourseCompletion,
    CourseSection,
    Enrollment,
    Grade,
    GradeItem,
    LmsUser,
)
from app.models.registry import LinkedIdentity, School
from app.services.config_service import config_service

logger = logging.getLogger("app.reports")

UNKNOWN_SCHOOL = "UNKNOWN"
DEFAULT_CUTOFF = (9, 1)


def get_cutoff() -> Tuple[int, int]:
    """Configured academic year cutoff (month, day); invalid values fall back to Sept 1."""
    month = config_service.get_int("ENROLLMENT_CUTOFF_MONTH", DEFAULT_CUTOFF[0])
    day = config_service.get_int("ENROLLMENT_CUTOFF_DAY", DEFAULT_CUTOFF[1])
    if not 1 <= month <= 12:
        month = DEFAULT_CUTOFF[0]
    if not 1 <= day <= 31:
        day = DEFAULT_CUTOFF[1]
    return month, day


def _cutoff_date(year: int, month: int, day: int) -> datetime:
    # Clamp the day for short months (e.g. a 31 cutoff in a 30 day month)
    while True:
        try:
            return datetime(year, month, day)
        except ValueError:
            day -= 1


def current_academic_year(now: Optional[datetime] = None) -> int:
    """Year in which the running academic year started."""
    now = now or config_service.now()
    month, day = get_cutoff()
    return now.year if (now.month, now.day) >= (month, day) else now.year - 1


def academic_year_window(year: int) -> Tuple[datetime, datetime]:
    """[start, end) of the academic year starting in the given year."""
    month, day = get_cutoff()
    return _cutoff_date(year, month, day), _cutoff_date(year + 1, month, day)


def section_completion_rate(student_ids: Sequence[int], activity_ids: Sequence[int],
                            completions: Dict[int, set]) -> float:
    """Completed (student, activity) pairs over students x activities, in percent."""
    if not student_ids or not activity_ids:
        return 0.0
    completed = sum(
        1 for activity_id in activity_ids for student_id in student_ids
        if student_id in completions.get(activity_id, ())
    )
    return round(completed / (len(student_ids) * len(activity_ids)) * 100, 1)


def section_average_grade(student_ids: Sequence[int], item_ids: Sequence[int],
                          grades: Dict[int, Dict[str, Any]]) -> Dict[str, float]:
    """
    Mean of the raw grades of the students over the section's grade items.

    Grade items may have different maxima; the largest contributing
    grademax is reported alongside the average.
    """
    if not student_ids or not item_ids:
        return {"average": 0.0, "grademax": 0.0}

    total = 0.0
    count = 0
    max_grademax = 0.0
    for item_id in item_ids:
        item = grades.get(item_id)
        if not item:
            continue
        max_grademax = max(max_grademax, item["grademax"])
        for student_id in student_ids:
            if student_id in item["grades"]:
                total += item["grades"][student_id]
                count += 1

    return {
        "average": round(total / count, 1) if count else 0.0,
        "grademax": max_grademax,
    }


class CourseReportService:
    """Read-side report assembly over course structure, completions and grades."""

    def __init__(self):
        self.logger = logger

    def get_course_report_by_school(self, db: Session, course_id: int, academic_year: int = 0) -> Dict[str, Any]:
        """
        Section completion and grades of a course's students, grouped by school.

        Args:
            db: Database session
            course_id: Course ID
            academic_year: Start year of the academic year, 0 for the current one

        Returns:
            Report with overview (all schools) and per-school sections
        """
        course = db.query(Course).filter(Course.id == course_id).first()
        if course is None:
            raise LookupError(f"Course {course_id} not found")

        if academic_year <= 0:
            academic_year = current_academic_year()

        sections = self._get_sections(db, course_id)
        students = self._get_enrolled_students(db, course_id, academic_year)
        completions = self._get_completions(db, course_id)
        grades = self._get_grades(db, course_id)

        by_school: Dict[str, List[Dict[str, Any]]] = OrderedDict()
        school_names: Dict[str, str] = {}
        for student in students:
            code = student["school_code"] or UNKNOWN_SCHOOL
            by_school.setdefault(code, []).append(student)
            school_names.setdefault(code, student["school_name"] or code)

        schools = []
        for code, school_students in by_school.items():
            ids = [s["id"] for s in school_students]
            schools.append({
                "school_code": code,
                "school_name": school_names[code],
                "student_count": len(ids),
                "sections": self._section_stats(sections, ids, completions, grades),
            })
        schools.sort(key=lambda s: s["student_count"], reverse=True)

        all_ids = [s["id"] for s in students]
        self.logger.info(f"Course report for course {course_id}: {len(all_ids)} students in {len(schools)} schools")
        return {
            "course_id": course_id,
            "course_name": course.fullname,
            "course_shortname": course.shortname,
            "academic_year": academic_year,
            "total_enrolled": len(all_ids),
            "total_schools": len(schools),
            "overview_sections": self._section_stats(sections, all_ids, completions, grades),
            "schools": schools,
        }

    def get_course_completion_stats(self, db: Session, course_id: int) -> Dict[str, Any]:
        """Course and per-activity completion of all enrolled participants."""
        course = db.query(Course).filter(Course.id == course_id).first()
        if course is None:
            raise LookupError(f"Course {course_id} not found")
        return self._course_stats(db, course_id)

    def get_category_completion_stats(self, db: Session, category_id: int) -> Dict[str, Any]:
        """
        Completion statistics of every course in a category and its subcategories.

        Args:
            db: Database session
            category_id: Category ID

        Returns:
            Category totals and one completion entry per course
        """
        category = db.query(CourseCategory).filter(CourseCategory.id == category_id).first()
        if category is None:
            raise LookupError(f"Category {category_id} not found")

        categories = {c.id: c for c in db.query(CourseCategory).all()}
        tree_ids = self._category_tree(categories, category_id)
        courses = (
            db.query(Course)
            .filter(and_(Course.category_id.in_(tree_ids), Course.id != SITE_COURSE_ID))
            .order_by(Course.fullname)
            .all()
        )

        total_participants = 0
        total_completed = 0
        entries = []
        for course in courses:
            stats = self._course_stats(db, course.id)
            total_participants += stats["total_participants"]
            total_completed += stats["completed_participants"]
            entries.append({
                "course_id": course.id,
                "course_name": course.fullname,
                "category_path": self._category_path(categories, course.category_id),
                "total_participants": stats["total_participants"],
                "completed_participants": stats["completed_participants"],
                "completion_rate": stats["completion_rate"],
                "sections": stats["sections"],
            })

        return {
            "category_id": category_id,
            "category_name": category.name,
            "total_courses": len(entries),
            "total_participants": total_participants,
            "completed_participants": total_completed,
            "completion_rate": (
                round(total_completed / total_participants * 100, 2) if total_participants else 0.0
            ),
            "courses": entries,
        }

    def get_all_courses_report(self, db: Session, academic_year: int = 0) -> Dict[str, Any]:
        """
        Per-school report of every course that has students in the academic year.

        A course whose report fails is logged and left out so one broken
        course does not hide the others.
        """
        if academic_year <= 0:
            academic_year = current_academic_year()

        reports = []
        for course in db.query(Course).filter(Course.id > SITE_COURSE_ID).order_by(Course.fullname).all():
            try:
                report = self.get_course_report_by_school(db, course.id, academic_year)
            except Exception as e:
                self.logger.exception(f"Course report for course {course.id} failed: {e}")
                continue
            if report["total_enrolled"] > 0:
                reports.append(report)

        return {"academic_year": academic_year, "total_courses": len(reports), "courses": reports}

    @staticmethod
    def _category_tree(categories: Dict[int, CourseCategory], root_id: int) -> List[int]:
        children: Dict[int, List[int]] = defaultdict(list)
        for category in categories.values():
            children[category.parent_id].append(category.id)
        tree = []
        pending = [root_id]
        while pending:
            current = pending.pop()
            if current in tree:
                continue
            tree.append(current)
            pending.extend(children.get(current, []))
        return tree

    @staticmethod
    def _category_path(categories: Dict[int, CourseCategory], category_id: int) -> str:
        names = []
        seen = set()
        current = categories.get(category_id)
        while current is not None and current.id not in seen:
            seen.add(current.id)
            names.append(current.name)
            current = categories.get(current.parent_id)
        return " / ".join(reversed(names))

    def _course_stats(self, db: Session, course_id: int) -> Dict[str, Any]:
        participants = db.query(func.count(Enrollment.id)).filter(
            and_(Enrollment.course_id == course_id, Enrollment.active.is_(True))
        ).scalar() or 0
        completed = db.query(func.count(CourseCompletion.id)).filter(
            and_(CourseCompletion.course_id == course_id, CourseCompletion.time_completed.isnot(None))
        ).scalar() or 0

        completed_by_activity = dict(
            db.query(ActivityCompletion.activity_id, func.count(ActivityCompletion.id))
            .join(CourseActivity, CourseActivity.id == ActivityCompletion.activity_id)
            .filter(and_(CourseActivity.course_id == course_id, ActivityCompletion.completion_state >= 1))
            .group_by(ActivityCompletion.activity_id)
            .all()
        )

        def rate(count: int) -> float:
            return round(count / participants * 100, 2) if participants else 0.0

        sections = []
        for section in self._visible_sections(db, course_id, include_general=True):
            activities = []
            for activity in self._visible_activities(db, section.id):
                count = completed_by_activity.get(activity.id, 0)
                activities.append({
                    "activity_id": activity.id,
                    "name": activity.name,
                    "module_type": activity.module,
                    "completion_enabled": activity.completion > 0,
                    "completed_count": count,
                    "completion_rate": rate(count),
                })
            if not activities:
                continue
            sections.append({
                "id": section.id,
                "name": section.name or f"Section {section.section}",
                "section_number": section.section,
                "total_activities": len(activities),
                "completed_activities_avg": round(
                    sum(a["completion_rate"] for a in activities) / len(activities), 2
                ),
                "activities": activities,
            })

        return {
            "course_id": course_id,
            "total_participants": participants,
            "completed_participants": completed,
            "completion_rate": rate(completed),
            "sections": sections,
        }

    def get_courses_list(self, db: Session) -> List[Dict[str, Any]]:
        """Courses grouped by category with their enrolment counts."""
        courses = db.query(Course).filter(Course.id > SITE_COURSE_ID).order_by(Course.fullname).all()
        counts = dict(
            db.query(Enrollment.course_id, func.count(Enrollment.id))
            .filter(Enrollment.active.is_(True))
            .group_by(Enrollment.course_id)
            .all()
        )
        names = {c.id: c.name for c in db.query(CourseCategory).all()}

        grouped: Dict[int, Dict[str, Any]] = {}
        for course in courses:
            group = grouped.setdefault(course.category_id, {
                "category_id": course.category_id,
                "category_name": names.get(course.category_id, ""),
                "courses": [],
            })
            group["courses"].append({
                "id": course.id,
                "shortname": course.shortname,
                "fullname": course.fullname,
                "enrolled_count": counts.get(course.id, 0),
            })
        return sorted(grouped.values(), key=lambda g: g["category_name"])

    @staticmethod
    def _section_stats(sections, student_ids, completions, grades) -> List[Dict[str, Any]]:
        stats = []
        for number, section in sections.items():
            grade = section_average_grade(student_ids, section["grade_items"], grades)
            stats.append({
                "section_number": number,
                "section_name": section["name"],
                "completion_rate": section_completion_rate(student_ids, section["activities"], completions),
                "average_grade": grade["average"],
                "grademax": grade["grademax"],
            })
        return stats

    @staticmethod
    def _visible_sections(db: Session, course_id: int, include_general: bool = False) -> List[CourseSection]:
        query = db.query(CourseSection).filter(
            and_(CourseSection.course_id == course_id, CourseSection.visible.is_(True))
        )
        if not include_general:
            query = query.filter(CourseSection.section > 0)
        return query.order_by(CourseSection.section).all()

    @staticmethod
    def _visible_activities(db: Session, section_id: int) -> List[CourseActivity]:
        return db.query(CourseActivity).filter(
            and_(
                CourseActivity.section_id == section_id,
                CourseActivity.visible.is_(True),
                CourseActivity.deleting.is_(False),
            )
        ).order_by(CourseActivity.id).all()

    def _get_sections(self, db: Session, course_id: int) -> "OrderedDict[int, Dict[str, Any]]":
        """Numbered sections with their completion-tracked activities and grade items."""
        item_by_activity = {
            item.activity_id: item.id
            for item in db.query(GradeItem).filter(
                and_(GradeItem.course_id == course_id, GradeItem.activity_id.isnot(None))
            ).all()
        }
        sections: "OrderedDict[int, Dict[str, Any]]" = OrderedDict()
        for section in self._visible_sections(db, course_id):
            activities = []
            grade_items = []
            for activity in self._visible_activities(db, section.id):
                if activity.completion > 0:
                    activities.append(activity.id)
                if activity.id in item_by_activity:
                    grade_items.append(item_by_activity[activity.id])
            sections[section.section] = {
                "name": section.name or f"Unit {section.section}",
                "activities": activities,
                "grade_items": grade_items,
            }
        return sections

    @staticmethod
    def _get_enrolled_students(db: Session, course_id: int, academic_year: int) -> List[Dict[str, Any]]:
        start, end = academic_year_window(academic_year)
        rows = (
            db.query(LmsUser.id, LmsUser.firstname, LmsUser.lastname, School.school_code, School.name)
            .join(Enrollment, Enrollment.user_id == LmsUser.id)
            .outerjoin(LinkedIdentity, LinkedIdentity.user_id == LmsUser.id)
            .outerjoin(School, School.id == LinkedIdentity.school_id)
            .filter(
                and_(
                    Enrollment.course_id == course_id,
                    Enrollment.role == "student",
                    Enrollment.time_start >= start,
                    Enrollment.time_start < end,
                    LmsUser.deleted.is_(False),
                )
            )
            .distinct()
            .order_by(School.school_code, LmsUser.lastname)
            .all()
        )
        return [
            {
                "id": row[0],
                "firstname": row[1],
                "lastname": row[2],
                "school_code": row[3],
                "school_name": row[4],
            }
            for row in rows
        ]

    @staticmethod
    def _get_completions(db: Session, course_id: int) -> Dict[int, set]:
        completions: Dict[int, set] = defaultdict(set)
        rows = (
            db.query(ActivityCompletion.activity_id, ActivityCompletion.user_id)
            .join(CourseActivity, CourseActivity.id == ActivityCompletion.activity_id)
            .filter(and_(CourseActivity.course_id == course_id, ActivityCompletion.completion_state >= 1))
            .all()
        )
        for activity_id, user_id in rows:
            completions[activity_id].add(user_id)
        return completions

    @staticmethod
    def _get_grades(db: Session, course_id: int) -> Dict[int, Dict[str, Any]]:
        grades: Dict[int, Dict[str, Any]] = {}
        rows = (
            db.query(Grade.item_id, Grade.user_id, Grade.finalgrade, GradeItem.grademax)
            .join(GradeItem, GradeItem.id == Grade.item_id)
            .filter(and_(GradeItem.course_id == course_id, Grade.finalgrade.isnot(None)))
            .all()
        )
        for item_id, user_id, finalgrade, grademax in rows:
            item = grades.setdefault(item_id, {"grademax": float(grademax or 0), "grades": {}})
            item["grades"][user_id] = float(finalgrade)
        return grades
