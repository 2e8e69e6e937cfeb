"""
Tests for the hourly user metrics calculator.
"""

from datetime import datetime, timedelta

from app.models.lms import CourseActivity, InteractionLog
from app.models.metrics import PERIOD_WEEKLY, UserMetricRecord
from app.services.metrics_calculator import UserMetricsCalculator, classify, estimate_time_spent
from app.services.periods import period_bounds
from factories import log

MONDAY = datetime(2024, 5, 13)


def _seconds(*offsets):
    return [MONDAY + timedelta(seconds=s) for s in offsets]


class TestTimeEstimation:
    """Test session gap time estimation."""

    def test_gaps_over_session_limit_are_dropped(self):
        assert estimate_time_spent(_seconds(0, 100, 1000, 3500)) == 1000

    def test_gap_equal_to_limit_splits_sessions(self):
        assert estimate_time_spent(_seconds(0, 1800)) == 0
        assert estimate_time_spent(_seconds(0, 1799)) == 1799

    def test_single_or_no_event(self):
        assert estimate_time_spent([]) == 0
        assert estimate_time_spent(_seconds(0)) == 0


class TestClassification:
    """Test log row classification."""

    def test_resource_view_counts_as_view_and_download(self):
        assert classify("mod_resource", "viewed", "course_module") == {"resources_viewed", "files_downloaded"}

    def test_reply_rule_replaces_post_rule(self):
        assert classify("mod_forum", "created", "post") == {"forum_replies"}
        assert classify("mod_forum", "created", "discussion") == {"forum_posts"}

    def test_forum_post_needs_discussion_target(self):
        assert classify("mod_forum", "created", "subscription") == frozenset()
        assert classify("mod_forum", "created") == frozenset()

    def test_wildcards(self):
        assert classify("mod_page", "updated", None) == {"pages_viewed"}
        assert classify("mod_folder", "downloaded", "all_files") == {"files_downloaded"}

    def test_unclassified(self):
        assert classify("core", "viewed", "course") == frozenset()


class TestCompute:
    """Test batch computation for a period."""

    def _seed(self, db):
        log(db, 10, 5, MONDAY + timedelta(hours=9), "mod_resource", "viewed", "course_module", object_id=100)
        log(db, 10, 5, MONDAY + timedelta(hours=9, minutes=5), "mod_resource", "viewed", "course_module",
            object_id=100)
        log(db, 10, 5, MONDAY + timedelta(hours=9, minutes=20), "mod_forum", "created", "post")
        log(db, 10, 5, MONDAY + timedelta(days=2, hours=14), "mod_page", "viewed", "course_module")
        # front page, anonymous and out of period rows are ignored
        log(db, 10, 1, MONDAY + timedelta(hours=10))
        db.add(InteractionLog(user_id=10, course_id=5, component="core", action="viewed", target="course",
                              anonymous=True, time_created=MONDAY + timedelta(hours=11)))
        log(db, 10, 5, MONDAY - timedelta(hours=1))
        log(db, 11, 6, MONDAY + timedelta(days=1))
        db.add(CourseActivity(course_id=5, section_id=1, name="Notes", module="resource"))
        db.add(CourseActivity(course_id=5, section_id=1, name="Forum", module="forum"))
        db.add(CourseActivity(course_id=5, section_id=1, name="Old quiz", module="quiz", deleting=True))
        db.commit()

    def _row(self, db, user_id, course_id):
        return db.query(UserMetricRecord).filter(
            UserMetricRecord.user_id == user_id, UserMetricRecord.course_id == course_id
        ).one()

    def test_compute_week(self, db_session):
        self._seed(db_session)
        start, end = period_bounds(MONDAY, PERIOD_WEEKLY)

        results = UserMetricsCalculator().compute(db_session, start, end, PERIOD_WEEKLY)

        assert results == {"processed": 2, "errors": 0}
        row = self._row(db_session, 10, 5)
        assert row.total_actions == 4
        assert row.active_days == 2
        assert row.first_access == MONDAY + timedelta(hours=9)
        assert row.last_access == MONDAY + timedelta(days=2, hours=14)
        assert row.time_spent_seconds == 20 * 60
        assert row.resources_viewed == 2
        assert row.resources_unique == 1
        assert row.files_downloaded == 2
        assert row.forum_replies == 1
        assert row.forum_posts == 0
        assert row.pages_viewed == 1
        assert row.activities_total == 2
        assert row.period_end == MONDAY + timedelta(days=7)

    def test_recompute_is_idempotent(self, db_session):
        self._seed(db_session)
        start, end = period_bounds(MONDAY, PERIOD_WEEKLY)
        calculator = UserMetricsCalculator()

        calculator.compute(db_session, start, end, PERIOD_WEEKLY)
        calculator.compute(db_session, start, end, PERIOD_WEEKLY)

        assert db_session.query(UserMetricRecord).count() == 2
        assert self._row(db_session, 10, 5).total_actions == 4

    def test_event_managed_fields_are_preserved(self, db_session):
        self._seed(db_session)
        start, end = period_bounds(MONDAY, PERIOD_WEEKLY)
        db_session.add(UserMetricRecord(
            user_id=10, course_id=5, period_start=start, period_end=end, period_type=PERIOD_WEEKLY,
            quizzes_attempted=2, quizzes_avg_score=80.0, assignments_submitted=1, course_progress=100.0,
        ))
        db_session.commit()

        UserMetricsCalculator().compute(db_session, start, end, PERIOD_WEEKLY)

        row = self._row(db_session, 10, 5)
        db_session.refresh(row)
        assert row.total_actions == 4
        assert row.quizzes_attempted == 2
        assert row.quizzes_avg_score == 80.0
        assert row.assignments_submitted == 1
        assert row.course_progress == 100.0

    def test_summarize_empty(self):
        metrics = UserMetricsCalculator.summarize([])

        assert metrics["total_actions"] == 0
        assert metrics["first_access"] is None
        assert metrics["time_spent_seconds"] == 0
