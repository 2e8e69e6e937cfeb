"""
Scheduled jobs. Each job takes a JobContext so it runs the same under Celery
beat, from a shell or in tests.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from app.models.metrics import PERIOD_MONTHLY, PERIOD_TYPES, PERIOD_WEEKLY, SchoolMetricRecord, UserMetricRecord
from app.models.registry import STATUS_ERROR, STATUS_LINKED, LinkedIdentity, ProcessedEvent, School, SyncLogEntry
from app.services.config_service import config_service
from app.services.exceptions import RegistryError
from app.services.metrics_calculator import UserMetricsCalculator
from app.services.periods import period_bounds
from app.services.school_aggregator import SchoolAggregator
from app.services.sync_service import SyncService

logger = logging.getLogger("worker.jobs")

REFRESH_USER_BATCH = 100
REFRESH_SCHOOL_BATCH = 50


@dataclass
class JobContext:
    db: Session
    now: datetime
    triggered_by: str = "task"


@dataclass
class JobResult:
    job: str
    status: str = "success"
    details: Dict[str, Any] = field(default_factory=dict)
    finished_at: Optional[datetime] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "job": self.job,
            "status": self.status,
            "results": self.details,
            "timestamp": (self.finished_at or config_service.now()).isoformat(),
        }


class Job:
    """Base class for scheduled jobs."""

    name = "job"

    def run(self, context: JobContext) -> JobResult:
        raise NotImplementedError


def _periods_to_refresh(now: datetime, lookback: timedelta) -> List[Tuple[str, datetime, datetime]]:
    """
    Periods containing now, plus the previous period while it is still within lookback.

    Keeps the tail of a period that ended since the last run from being skipped.
    """
    periods = []
    for period_type in PERIOD_TYPES:
        for moment in (now - lookback, now):
            start, end = period_bounds(moment, period_type)
            if (period_type, start, end) not in periods:
                periods.append((period_type, start, end))
    return periods


class ComputeUserMetricsJob(Job):
    """Hourly: recompute user metrics for the current weekly and monthly periods."""

    name = "compute_user_metrics"

    def __init__(self, calculator: Optional[UserMetricsCalculator] = None):
        self.calculator = calculator or UserMetricsCalculator()

    def run(self, context: JobContext) -> JobResult:
        details = {}
        for period_type, start, end in _periods_to_refresh(context.now, timedelta(hours=1)):
            results = self.calculator.compute(context.db, start, end, period_type)
            details[f"{period_type}:{start.date().isoformat()}"] = results
        logger.info(f"User metrics computed: {details}")
        return JobResult(self.name, details=details, finished_at=context.now)


class AggregateSchoolMetricsJob(Job):
    """Daily: roll user metrics up to school metrics."""

    name = "aggregate_school_metrics"

    def __init__(self, aggregator: Optional[SchoolAggregator] = None):
        self.aggregator = aggregator or SchoolAggregator()

    def run(self, context: JobContext) -> JobResult:
        details = {}
        status = "success"
        for period_type, start, end in _periods_to_refresh(context.now, timedelta(days=1)):
            results = self.aggregator.aggregate_all(context.db, start, end, period_type, now=context.now)
            details[f"{period_type}:{start.date().isoformat()}"] = results
            if results["errors"]:
                status = "partial"
        return JobResult(self.name, status=status, details=details, finished_at=context.now)


class RefreshRegistryCacheJob(Job):
    """Daily: refresh stale linked users and schools from the registry."""

    name = "refresh_registry_cache"

    def __init__(self, sync_service: Optional[SyncService] = None):
        self.sync_service = sync_service

    def run(self, context: JobContext) -> JobResult:
        db = context.db
        sync = self.sync_service or SyncService(triggered_by=context.triggered_by)
        stale_before = context.now - timedelta(seconds=sync.cache_ttl())
        details = {"users_refreshed": 0, "users_failed": 0, "schools_refreshed": 0, "schools_failed": 0}

        users = db.query(LinkedIdentity.user_id).filter(
            and_(
                LinkedIdentity.sync_status.in_([STATUS_LINKED, STATUS_ERROR]),
                or_(LinkedIdentity.last_synced.is_(None), LinkedIdentity.last_synced < stale_before),
            )
        ).order_by(LinkedIdentity.last_synced.asc(), LinkedIdentity.user_id.asc()).limit(REFRESH_USER_BATCH).all()

        for row in users:
            try:
                if sync.refresh_user(db, row.user_id, force=True):
                    details["users_refreshed"] += 1
                else:
                    details["users_failed"] += 1
            except RegistryError as e:
                db.rollback()
                details["users_failed"] += 1
                logger.error(f"Refresh failed for user {row.user_id}: {e}")

        schools = db.query(School.school_code).filter(
            or_(School.last_synced.is_(None), School.last_synced < stale_before)
        ).order_by(School.last_synced.asc()).limit(REFRESH_SCHOOL_BATCH).all()

        for row in schools:
            try:
                if sync.sync_school(db, row.school_code, force=True) is not None:
                    details["schools_refreshed"] += 1
                else:
                    details["schools_failed"] += 1
            except RegistryError as e:
                db.rollback()
                details["schools_failed"] += 1
                logger.error(f"Refresh failed for school {row.school_code}: {e}")

        logger.info(f"Registry cache refresh finished: {details}")
        return JobResult(self.name, details=details, finished_at=context.now)


class AutoLinkByEmailJob(Job):
    """Daily: link unlinked users whose email carries a registry code."""

    name = "auto_link_users"

    def __init__(self, sync_service: Optional[SyncService] = None):
        self.sync_service = sync_service

    def run(self, context: JobContext) -> JobResult:
        sync = self.sync_service or SyncService(triggered_by=context.triggered_by)
        limit = config_service.get_int("AUTO_LINK_BATCH_SIZE", 200)
        details = sync.auto_link(context.db, limit)
        return JobResult(self.name, details=details, finished_at=context.now)


class CleanupOldMetricsJob(Job):
    """Weekly: delete metrics and audit rows past their retention."""

    name = "cleanup_old_metrics"

    def run(self, context: JobContext) -> JobResult:
        db = context.db
        weekly_cutoff = context.now - timedelta(days=config_service.get_int("METRICS_RETENTION_WEEKLY_DAYS", 90))
        monthly_cutoff = context.now - timedelta(days=config_service.get_int("METRICS_RETENTION_MONTHLY_DAYS", 365))
        log_cutoff = context.now - timedelta(days=config_service.get_int("SYNC_LOG_RETENTION_DAYS", 30))

        details = {}
        for model, label in ((UserMetricRecord, "user_metrics"), (SchoolMetricRecord, "school_metrics")):
            for period_type, cutoff in ((PERIOD_WEEKLY, weekly_cutoff), (PERIOD_MONTHLY, monthly_cutoff)):
                details[f"{label}_{period_type}"] = db.query(model).filter(
                    and_(model.period_type == period_type, model.period_start < cutoff)
                ).delete(synchronize_session=False)

        details["sync_log"] = db.query(SyncLogEntry).filter(
            SyncLogEntry.created_at < log_cutoff
        ).delete(synchronize_session=False)
        details["processed_events"] = db.query(ProcessedEvent).filter(
            ProcessedEvent.processed_at < log_cutoff
        ).delete(synchronize_session=False)

        db.commit()
        logger.info(f"Cleanup finished: {details}")
        return JobResult(self.name, details=details, finished_at=context.now)
