"""
Tests for configuration, the service clock, period bounds and upserts.
"""

from datetime import datetime

import pytest

from app.database.init_db import DEFAULT_SETTINGS, init_settings
from app.database.upsert import insert_ignore, upsert
from app.models.admin import AdminSetting
from app.models.metrics import PERIOD_MONTHLY, PERIOD_WEEKLY, UserMetricRecord
from app.models.registry import ProcessedEvent
from app.services.config_service import ConfigService, config_service
from app.services.periods import period_bounds


class TestConfigService:
    """Test setting lookup order and typed accessors."""

    def test_environment_and_default(self, monkeypatch):
        monkeypatch.setenv("REGISTRY_TIMEOUT", "12")
        service = ConfigService()

        assert service.get_int("REGISTRY_TIMEOUT", 30) == 12
        assert service.get_int("MISSING_SETTING", 30) == 30

    def test_override_beats_environment(self, monkeypatch):
        monkeypatch.setenv("AUTO_ENROLL_ENABLED", "false")
        service = ConfigService()
        service.set_setting("AUTO_ENROLL_ENABLED", "true")

        assert service.get_bool("AUTO_ENROLL_ENABLED") is True

    def test_invalid_integer_uses_default(self):
        service = ConfigService()
        service.set_setting("REGISTRY_CACHE_TTL", "a week")

        assert service.get_int("REGISTRY_CACHE_TTL", 604800) == 604800

    def test_list(self):
        service = ConfigService()
        service.set_setting("AUTO_LINK_EMAIL_DOMAINS", " school.rw, ,reb.rw ")

        assert service.get_list("AUTO_LINK_EMAIL_DOMAINS") == ["school.rw", "reb.rw"]
        assert service.get_list("UNSET_LIST", ["a"]) == ["a"]

    def test_load_overrides(self, db_session):
        db_session.add(AdminSetting(key="AUTO_LINK_BATCH_SIZE", value="50"))
        db_session.commit()
        service = ConfigService()

        assert service.load_overrides(db_session) == 1
        assert service.get_int("AUTO_LINK_BATCH_SIZE", 200) == 50

    def test_fake_clock(self, fake_now):
        assert config_service.is_fake_time_enabled()
        assert config_service.now() == fake_now

    def test_fake_clock_date_only(self):
        config_service.set_setting("APP_NOW_MODE", "fake")
        config_service.set_setting("APP_FAKE_NOW", "2024-02-29")

        assert config_service.now() == datetime(2024, 2, 29)

    def test_bad_fake_time_uses_real_clock(self):
        config_service.set_setting("APP_NOW_MODE", "fake")
        config_service.set_setting("APP_FAKE_NOW", "yesterday")

        assert config_service.now().year >= 2024
        assert config_service.now().tzinfo is None


class TestPeriods:
    """Test period boundaries."""

    def test_week_starts_monday(self):
        assert period_bounds(datetime(2024, 5, 19, 23, 59), PERIOD_WEEKLY) == (
            datetime(2024, 5, 13), datetime(2024, 5, 20),
        )

    def test_december(self):
        assert period_bounds(datetime(2024, 12, 31, 8), PERIOD_MONTHLY) == (
            datetime(2024, 12, 1), datetime(2025, 1, 1),
        )

    def test_unknown_period(self):
        with pytest.raises(ValueError):
            period_bounds(datetime(2024, 5, 1), "daily")


class TestUpsert:
    """Test the dialect aware upsert helpers."""

    def _values(self, **extra):
        values = {
            "user_id": 1,
            "course_id": 5,
            "period_start": datetime(2024, 5, 13),
            "period_end": datetime(2024, 5, 20),
            "period_type": PERIOD_WEEKLY,
        }
        values.update(extra)
        return values

    def test_insert_then_update(self, db_session):
        key = ("user_id", "course_id", "period_start", "period_type")
        upsert(db_session, UserMetricRecord, self._values(total_actions=3), key, update_columns=["total_actions"])
        upsert(db_session, UserMetricRecord, self._values(total_actions=7, active_days=2), key,
               update_columns=["total_actions"])
        db_session.commit()

        row = db_session.query(UserMetricRecord).one()
        assert row.total_actions == 7
        assert row.active_days == 0

    def test_update_expression(self, db_session):
        key = ("user_id", "course_id", "period_start", "period_type")
        column = UserMetricRecord.__table__.c.quizzes_attempted
        for _ in range(3):
            upsert(db_session, UserMetricRecord, self._values(quizzes_attempted=1), key,
                   update_expressions={"quizzes_attempted": column + 1})
        db_session.commit()

        assert db_session.query(UserMetricRecord).one().quizzes_attempted == 3

    def test_insert_ignore(self, db_session):
        values = {"event_id": "evt-1", "event_type": "quiz_submitted", "processed_at": datetime(2024, 5, 13)}

        assert insert_ignore(db_session, ProcessedEvent, values, ("event_id",)) is True
        assert insert_ignore(db_session, ProcessedEvent, values, ("event_id",)) is False
        assert db_session.query(ProcessedEvent).count() == 1


class TestSeedSettings:
    """Test default admin settings."""

    def test_seeds_once_and_keeps_edits(self, db_session):
        init_settings(db_session)
        row = db_session.query(AdminSetting).filter(AdminSetting.key == "ENROLLMENT_CUTOFF_MONTH").one()
        assert row.updated_by == "seed"
        row.value = "1"
        db_session.commit()

        init_settings(db_session)

        assert db_session.query(AdminSetting).count() == len(DEFAULT_SETTINGS)
        config_service.load_overrides(db_session)
        assert config_service.get_int("ENROLLMENT_CUTOFF_MONTH", 9) == 1
