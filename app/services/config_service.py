"""
Configuration service for reading settings from environment and database.
"""

import logging
import os
from datetime import datetime, timezone
from typing import Any, List, Optional

from sqlalchemy.orm import Session

from app.models.admin import AdminSetting

logger = logging.getLogger("app.config")

_TRUE_VALUES = {"1", "true", "yes", "on"}


class ConfigService:
    """Service for managing application configuration."""

    def __init__(self):
        self._cache: dict[str, Any] = {}
        self._overrides: dict[str, Any] = {}

    def get_setting(self, key: str, default: Any = None) -> Any:
        """
        Get setting value from database overrides or environment.

        Priority: Database > Environment > Default
        """
        if key in self._overrides:
            return self._overrides[key]

        if key in self._cache:
            return self._cache[key]

        value = os.getenv(key, default)
        self._cache[key] = value

        logger.debug(f"Retrieved setting {key}={value}")
        return value

    def get_int(self, key: str, default: int) -> int:
        """Get an integer setting, falling back to the default on bad values."""
        value = self.get_setting(key, default)
        try:
            return int(value)
        except (TypeError, ValueError):
            logger.warning(f"Invalid integer for {key}: {value!r}, using {default}")
            return default

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self.get_setting(key, None)
        if value is None or value == "":
            return default
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() in _TRUE_VALUES

    def get_list(self, key: str, default: Optional[List[str]] = None) -> List[str]:
        """Get a comma separated setting as a list of stripped, non-empty items."""
        value = self.get_setting(key, None)
        if value is None:
            return list(default or [])
        if isinstance(value, (list, tuple)):
            return [str(item).strip() for item in value if str(item).strip()]
        return [item.strip() for item in str(value).split(",") if item.strip()]

    def set_setting(self, key: str, value: Any, description: Optional[str] = None) -> None:
        """
        Set setting value for the running process.

        Persistent changes go through the admin_settings table and are picked
        up by load_overrides().
        """
        self._overrides[key] = value
        logger.info(f"Set setting {key}={value}")

    def load_overrides(self, db: Session) -> int:
        """
        Load admin overrides from the database.

        Args:
            db: Database session

        Returns:
            Number of overrides loaded
        """
        rows = db.query(AdminSetting).all()
        for row in rows:
            self._overrides[row.key] = row.value
        if rows:
            logger.info(f"Loaded {len(rows)} admin setting overrides")
        return len(rows)

    def clear_cache(self) -> None:
        self._cache.clear()
        self._overrides.clear()

    def now(self) -> datetime:
        """
        Get current time (real or fake based on APP_NOW_MODE).

        Returns:
            Current naive UTC datetime (real or fake)
        """
        fake_now = self.get_fake_time()
        if fake_now is not None:
            logger.debug(f"Using fake time: {fake_now}")
            return fake_now

        return datetime.now(timezone.utc).replace(tzinfo=None)

    def is_fake_time_enabled(self) -> bool:
        """Check if fake time mode is enabled."""
        return self.get_setting("APP_NOW_MODE", "real") == "fake"

    def get_fake_time(self) -> Optional[datetime]:
        """Get fake time if enabled, None otherwise."""
        if not self.is_fake_time_enabled():
            return None

        fake_now_str = self.get_setting("APP_FAKE_NOW")
        if fake_now_str:
            for fmt in ("%Y-%m-%dT%H:%M:%S", "%Y-%m-%d"):
                try:
                    return datetime.strptime(fake_now_str, fmt)
                except ValueError:
                    continue
            logger.warning(f"Invalid APP_FAKE_NOW format: {fake_now_str}, using real time")

        return None


# Global instance
config_service = ConfigService()
