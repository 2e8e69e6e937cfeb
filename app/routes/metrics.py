"""
Dashboard read API routes.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.database.session import get_session
from app.models.metrics import PERIOD_TYPES, PERIOD_WEEKLY, SCHOOL_WIDE
from app.services.dashboard_service import DashboardService

logger = logging.getLogger("app.dashboard")
router = APIRouter(prefix="/api/metrics", tags=["metrics"])

dashboard_service = DashboardService()


def _check_period(period_type: str) -> str:
    if period_type not in PERIOD_TYPES:
        raise HTTPException(status_code=400, detail=f"Unknown period type: {period_type}")
    return period_type


@router.get("/schools")
async def list_schools(db: Session = Depends(get_session)) -> List[Dict[str, Any]]:
    """Cached schools with linked user counts."""
    return dashboard_service.get_schools_list(db)


@router.get("/schools/{school_code}")
async def get_school_metrics(
    school_code: str,
    course_id: int = SCHOOL_WIDE,
    period_type: str = PERIOD_WEEKLY,
    db: Session = Depends(get_session),
) -> Dict[str, Any]:
    """
    Latest aggregated metrics of a school.

    Args:
        school_code: Registry school code
        course_id: Course ID, 0 for school-wide
        period_type: weekly or monthly
        db: Database session

    Returns:
        School metrics
    """
    try:
        return dashboard_service.get_school_metrics(db, school_code, course_id, _check_period(period_type))
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/schools/{school_code}/engagement")
async def get_engagement_distribution(
    school_code: str,
    course_id: int = SCHOOL_WIDE,
    period_type: str = PERIOD_WEEKLY,
    db: Session = Depends(get_session),
) -> Dict[str, Any]:
    """Engagement tiers and at-risk count of a school."""
    try:
        return dashboard_service.get_engagement_distribution(db, school_code, course_id, _check_period(period_type))
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/schools/{school_code}/demographics")
async def get_school_demographics(school_code: str, db: Session = Depends(get_session)) -> Dict[str, Any]:
    """Gender, program and grade breakdown of a school."""
    try:
        return dashboard_service.get_school_demographics(db, school_code)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/students")
async def get_student_list(
    school_code: str = "",
    course_id: int = 0,
    program: str = "",
    engagement_level: str = "",
    status: str = "",
    search: str = "",
    sort: str = "lastname",
    order: str = "ASC",
    page: int = Query(0, ge=0),
    perpage: int = 20,
    db: Session = Depends(get_session),
) -> Dict[str, Any]:
    """Paginated, sortable and filterable student list."""
    return dashboard_service.get_student_list(
        db,
        school_code=school_code,
        course_id=course_id,
        program=program,
        engagement_level=engagement_level,
        status=status,
        search=search,
        sort=sort,
        order=order,
        page=page,
        perpage=perpage,
    )


@router.get("/enrollment-logs")
async def get_enrollment_logs(
    page: int = Query(0, ge=0),
    perpage: int = 20,
    operation: str = "",
    db: Session = Depends(get_session),
) -> Dict[str, Any]:
    """Auto-enrolment audit trail."""
    return dashboard_service.get_enrollment_logs(db, page=page, perpage=perpage, operation=operation)


@router.get("/access-log")
async def get_access_log(
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    school_code: str = "",
    course_id: int = 0,
    user_type: str = "",
    search: str = "",
    sort: str = "access_time",
    order: str = "DESC",
    page: int = Query(0, ge=0),
    perpage: int = 50,
    db: Session = Depends(get_session),
) -> Dict[str, Any]:
    """Platform access log with user, school and course names."""
    return dashboard_service.get_access_log(
        db,
        date_from=date_from,
        date_to=date_to,
        school_code=school_code,
        course_id=course_id,
        user_type=user_type,
        search=search,
        sort=sort,
        order=order,
        page=page,
        perpage=perpage,
    )


@router.get("/traffic")
async def get_platform_traffic(
    period: str = "daily",
    days_back: int = 30,
    db: Session = Depends(get_session),
) -> Dict[str, Any]:
    """Platform actions and distinct users per day, week or month."""
    return dashboard_service.get_platform_traffic(db, period=period, days_back=days_back)
