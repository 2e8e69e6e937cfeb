"""
Tests for course reports by school and completion statistics.
"""

from datetime import datetime

import pytest

from app.models.lms import (
    ActivityCompletion,
    CourseActivity,
    CourseCategory,
    CourseCompletion,
    CourseSection,
    Grade,
    GradeItem,
)
from app.services.config_service import config_service
from app.services.course_report_service import (
    CourseReportService,
    academic_year_window,
    current_academic_year,
    section_average_grade,
    section_completion_rate,
)
from factories import add_course, add_school, add_user, enroll, link

THIS_YEAR = datetime(2023, 10, 2)
LAST_YEAR = datetime(2022, 10, 3)


@pytest.fixture
def course(db_session):
    """
    Course 5 with two units; students 101-102 in SCH001, 103 in SCH002,
    104 unlinked and 105 enrolled in the previous academic year.
    """
    db = db_session
    db.add(CourseCategory(id=3, name="Senior 5"))
    add_course(db, 1, fullname="Site home")
    add_course(db, 5, fullname="Mathematics S5", category_id=3)
    add_course(db, 6, fullname="Physics S5", category_id=3)

    db.add(CourseSection(id=1, course_id=5, section=0, name="General"))
    db.add(CourseSection(id=2, course_id=5, section=1, name="Algebra"))
    db.add(CourseSection(id=3, course_id=5, section=2, name=None))
    db.add(CourseSection(id=4, course_id=5, section=3, name="Hidden", visible=False))

    db.add(CourseActivity(id=10, course_id=5, section_id=2, name="Algebra quiz", module="quiz", completion=2))
    db.add(CourseActivity(id=11, course_id=5, section_id=2, name="Algebra homework", module="assign", completion=1))
    db.add(CourseActivity(id=12, course_id=5, section_id=3, name="Reading", module="page", completion=0))
    db.add(CourseActivity(id=13, course_id=5, section_id=3, name="Geometry quiz", module="quiz", completion=2))
    db.add(CourseActivity(id=14, course_id=5, section_id=3, name="Removed", module="quiz", completion=2,
                          deleting=True))
    db.add(CourseActivity(id=15, course_id=5, section_id=4, name="Hidden quiz", module="quiz", completion=2))

    db.add(GradeItem(id=50, course_id=5, activity_id=10, item_module="quiz", grademax=10))
    db.add(GradeItem(id=51, course_id=5, activity_id=13, item_module="quiz", grademax=20))
    db.add(GradeItem(id=52, course_id=5, activity_id=None, item_type="course", grademax=100))
    db.commit()

    first = add_school(db, "SCH001", name="Groupe Scolaire Kigali")
    second = add_school(db, "SCH002", name="Lycee de Kigali")
    for user_id, lastname in ((101, "Abimana"), (102, "Bizimana"), (103, "Cyiza"), (104, "Dusabe"), (105, "Eza")):
        add_user(db, user_id, lastname=lastname)
    link(db, 101, first.id)
    link(db, 102, first.id)
    link(db, 103, second.id)
    for user_id in (101, 102, 103, 104):
        enroll(db, user_id, 5, time_start=THIS_YEAR)
    enroll(db, 105, 5, time_start=LAST_YEAR)
    enroll(db, 101, 6, time_start=THIS_YEAR)
    enroll(db, 900, 5, time_start=THIS_YEAR, role="teacher")

    for activity_id, user_id in ((10, 101), (10, 102), (10, 103), (11, 101), (13, 103)):
        db.add(ActivityCompletion(activity_id=activity_id, user_id=user_id, completion_state=1))
    db.add(ActivityCompletion(activity_id=11, user_id=102, completion_state=0))

    db.add(Grade(item_id=50, user_id=101, finalgrade=8))
    db.add(Grade(item_id=50, user_id=102, finalgrade=6))
    db.add(Grade(item_id=50, user_id=104, finalgrade=None))
    db.add(Grade(item_id=51, user_id=103, finalgrade=15))

    db.add(CourseCompletion(user_id=101, course_id=5, time_completed=datetime(2024, 4, 1)))
    db.add(CourseCompletion(user_id=102, course_id=5, time_completed=None))
    db.commit()


class TestAcademicYear:
    """Test academic year boundaries."""

    def test_current_year_before_cutoff(self, fake_now):
        assert current_academic_year() == 2023

    def test_current_year_on_cutoff(self, fake_now):
        config_service.set_setting("ENROLLMENT_CUTOFF_MONTH", "5")
        config_service.set_setting("ENROLLMENT_CUTOFF_DAY", "15")
        assert current_academic_year() == 2024

        config_service.set_setting("ENROLLMENT_CUTOFF_DAY", "16")
        assert current_academic_year() == 2023

    def test_window(self):
        assert academic_year_window(2023) == (datetime(2023, 9, 1), datetime(2024, 9, 1))

    def test_invalid_cutoff_falls_back(self):
        config_service.set_setting("ENROLLMENT_CUTOFF_MONTH", "13")
        config_service.set_setting("ENROLLMENT_CUTOFF_DAY", "x")
        assert academic_year_window(2023)[0] == datetime(2023, 9, 1)

    def test_cutoff_clamped_to_month_end(self):
        config_service.set_setting("ENROLLMENT_CUTOFF_MONTH", "2")
        config_service.set_setting("ENROLLMENT_CUTOFF_DAY", "31")
        assert academic_year_window(2023) == (datetime(2023, 2, 28), datetime(2024, 2, 29))


class TestSectionFormulas:
    """Test section level aggregates."""

    def test_completion_rate(self):
        completions = {10: {1, 2}, 11: {1}}
        assert section_completion_rate([1, 2], [10, 11], completions) == 75.0
        assert section_completion_rate([], [10], completions) == 0.0
        assert section_completion_rate([1], [], completions) == 0.0

    def test_average_grade_reports_largest_max(self):
        grades = {
            50: {"grademax": 10.0, "grades": {1: 8.0}},
            51: {"grademax": 20.0, "grades": {1: 14.0, 2: 17.0}},
        }
        assert section_average_grade([1, 2], [50, 51], grades) == {"average": 13.0, "grademax": 20.0}

    def test_average_grade_without_grades(self):
        assert section_average_grade([1], [50], {}) == {"average": 0.0, "grademax": 0.0}


class TestCourseReportBySchool:
    """Test the per-school course report."""

    def test_overview(self, db_session, course):
        report = CourseReportService().get_course_report_by_school(db_session, 5, academic_year=2023)

        assert report["course_name"] == "Mathematics S5"
        assert report["total_enrolled"] == 4
        assert report["total_schools"] == 3
        algebra, geometry = report["overview_sections"]
        assert algebra == {
            "section_number": 1,
            "section_name": "Algebra",
            "completion_rate": 50.0,
            "average_grade": 7.0,
            "grademax": 10.0,
        }
        assert geometry["section_name"] == "Unit 2"
        assert geometry["completion_rate"] == 25.0
        assert geometry["average_grade"] == 15.0

    def test_schools(self, db_session, course):
        report = CourseReportService().get_course_report_by_school(db_session, 5, academic_year=2023)

        schools = {school["school_code"]: school for school in report["schools"]}
        assert report["schools"][0]["school_code"] == "SCH001"
        assert set(schools) == {"SCH001", "SCH002", "UNKNOWN"}
        assert schools["SCH001"]["student_count"] == 2
        assert schools["SCH001"]["sections"][0]["completion_rate"] == 75.0
        assert schools["SCH002"]["sections"][1]["completion_rate"] == 100.0
        assert schools["UNKNOWN"]["school_name"] == "UNKNOWN"

    def test_previous_year(self, db_session, course):
        report = CourseReportService().get_course_report_by_school(db_session, 5, academic_year=2022)

        assert report["total_enrolled"] == 1
        assert report["schools"][0]["school_code"] == "UNKNOWN"

    def test_defaults_to_current_year(self, db_session, course, fake_now):
        report = CourseReportService().get_course_report_by_school(db_session, 5)

        assert report["academic_year"] == 2023

    def test_unknown_course(self, db_session):
        with pytest.raises(LookupError):
            CourseReportService().get_course_report_by_school(db_session, 99, academic_year=2023)


class TestCompletionStats:
    """Test course and activity completion."""

    def test_stats(self, db_session, course):
        stats = CourseReportService().get_course_completion_stats(db_session, 5)

        # five students and a teacher
        assert stats["total_participants"] == 6
        assert stats["completed_participants"] == 1
        assert stats["completion_rate"] == 16.67
        assert [s["name"] for s in stats["sections"]] == ["Algebra", "Section 2"]
        quiz = stats["sections"][0]["activities"][0]
        assert quiz["completed_count"] == 3
        assert quiz["completion_rate"] == 50.0
        assert stats["sections"][1]["total_activities"] == 2

    def test_unknown_course(self, db_session):
        with pytest.raises(LookupError):
            CourseReportService().get_course_completion_stats(db_session, 99)


class TestCoursesList:
    def test_grouped_by_category(self, db_session, course):
        groups = CourseReportService().get_courses_list(db_session)

        assert len(groups) == 1
        assert groups[0]["category_name"] == "Senior 5"
        courses = {c["id"]: c["enrolled_count"] for c in groups[0]["courses"]}
        assert courses == {5: 6, 6: 1}


class TestCategoryCompletion:
    """Test completion statistics over a category tree."""

    def test_includes_subcategories(self, db_session, course):
        db_session.add(CourseCategory(id=4, name="Senior 6", parent_id=3))
        db_session.add(CourseCategory(id=8, name="Primary"))
        add_course(db_session, 7, fullname="Chemistry S6", category_id=4)
        add_course(db_session, 9, fullname="Reading P1", category_id=8)
        enroll(db_session, 102, 7, time_start=THIS_YEAR)

        stats = CourseReportService().get_category_completion_stats(db_session, 3)

        assert stats["category_name"] == "Senior 5"
        assert [c["course_id"] for c in stats["courses"]] == [7, 5, 6]
        assert stats["courses"][0]["category_path"] == "Senior 5 / Senior 6"
        assert stats["total_courses"] == 3
        assert stats["total_participants"] == 8
        assert stats["completed_participants"] == 1
        assert stats["completion_rate"] == 12.5

    def test_empty_category(self, db_session, course):
        db_session.add(CourseCategory(id=8, name="Primary"))
        db_session.commit()

        stats = CourseReportService().get_category_completion_stats(db_session, 8)

        assert stats["total_courses"] == 0
        assert stats["completion_rate"] == 0.0

    def test_unknown_category(self, db_session):
        with pytest.raises(LookupError):
            CourseReportService().get_category_completion_stats(db_session, 99)


class TestAllCoursesReport:
    """Test the report over every course."""

    def test_courses_with_students(self, db_session, course):
        report = CourseReportService().get_all_courses_report(db_session, academic_year=2023)

        assert report["total_courses"] == 2
        assert [(c["course_id"], c["total_enrolled"]) for c in report["courses"]] == [(5, 4), (6, 1)]

    def test_empty_year(self, db_session, course):
        assert CourseReportService().get_all_courses_report(db_session, academic_year=2020)["courses"] == []

    def test_failing_course_is_skipped(self, db_session, course, monkeypatch):
        service = CourseReportService()
        original = service.get_course_report_by_school

        def report(db, course_id, academic_year=0):
            if course_id == 5:
                raise RuntimeError("broken course")
            return original(db, course_id, academic_year)

        monkeypatch.setattr(service, "get_course_report_by_school", report)

        result = service.get_all_courses_report(db_session, academic_year=2023)

        assert [c["course_id"] for c in result["courses"]] == [6]
