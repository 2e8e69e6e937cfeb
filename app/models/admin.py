"""
Runtime settings edited by administrators.
"""
from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel


class AdminSetting(SQLModel, table=True):
    """
    One override of an environment setting, keyed by the same name.

    Workers reload these before every job, so changing the registry URL,
    the cache TTL or the academic year cutoff needs no restart.
    """

    __tablename__ = "admin_settings"

    key: str = Field(primary_key=True, max_length=100)
    value: str = Field(max_length=1000)
    description: Optional[str] = Field(default=None, max_length=500)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    # "seed" for defaults written at install time
    updated_by: Optional[str] = Field(default=None, max_length=100)
