"""
Celery Beat tasks for the metrics pipeline and registry cache.
"""
import logging
from typing import Any, Dict

from app.database.session import get_db_session
from app.services.config_service import config_service
from worker.celery_app import celery_app
from worker.jobs import (
    AggregateSchoolMetricsJob,
    AutoLinkByEmailJob,
    CleanupOldMetricsJob,
    ComputeUserMetricsJob,
    Job,
    JobContext,
    RefreshRegistryCacheJob,
)

logger = logging.getLogger("worker.beat_tasks")


def run_job(job: Job) -> Dict[str, Any]:
    """
    Run a job in its own database session.

    Errors are logged and reported in the task result so one failing job
    never blocks the others.
    """
    logger.info(f"Starting job {job.name}")

    try:
        with get_db_session(job.name) as db:
            config_service.load_overrides(db)
            result = job.run(JobContext(db=db, now=config_service.now()))

            logger.info(f"Job {job.name} finished with status {result.status}")
            return result.as_dict()

    except Exception as e:
        logger.error(f"Error in {job.name}: {e}")
        return {
            "job": job.name,
            "status": "error",
            "error": str(e),
            "timestamp": config_service.now().isoformat()
        }


@celery_app.task
def compute_user_metrics():
    """Recompute user metrics for the current periods."""
    return run_job(ComputeUserMetricsJob())


@celery_app.task
def aggregate_school_metrics():
    """Roll user metrics up to school metrics."""
    return run_job(AggregateSchoolMetricsJob())


@celery_app.task
def refresh_registry_cache():
    """Refresh stale registry cache entries."""
    return run_job(RefreshRegistryCacheJob())


@celery_app.task
def auto_link_users():
    """Link unlinked users by the registry code in their email."""
    return run_job(AutoLinkByEmailJob())


@celery_app.task
def cleanup_old_metrics():
    """Apply metric and audit log retention."""
    return run_job(CleanupOldMetricsJob())
