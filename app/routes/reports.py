"""
Course report API routes.
"""

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.database.session import get_session
from app.services.course_report_service import CourseReportService

logger = logging.getLogger("app.reports")
router = APIRouter(prefix="/api/reports", tags=["reports"])

course_report_service = CourseReportService()


@router.get("/courses")
async def get_courses_list(db: Session = Depends(get_session)) -> List[Dict[str, Any]]:
    """Courses grouped by category."""
    return course_report_service.get_courses_list(db)


@router.get("/courses/{course_id}/by-school")
async def get_course_report_by_school(
    course_id: int, academic_year: int = 0, db: Session = Depends(get_session)
) -> Dict[str, Any]:
    """
    Section completion and grades of a course per school.

    Args:
        course_id: Course ID
        academic_year: Start year of the academic year, 0 for the current one
        db: Database session
    """
    try:
        return course_report_service.get_course_report_by_school(db, course_id, academic_year)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/courses/{course_id}/completion")
async def get_course_completion_stats(course_id: int, db: Session = Depends(get_session)) -> Dict[str, Any]:
    """Course and activity completion statistics."""
    try:
        return course_report_service.get_course_completion_stats(db, course_id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/categories/{category_id}/completion")
async def get_category_completion_stats(category_id: int, db: Session = Depends(get_session)) -> Dict[str, Any]:
    """Completion statistics of every course in a category tree."""
    try:
        return course_report_service.get_category_completion_stats(db, category_id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/all-courses")
async def get_all_courses_report(academic_year: int = 0, db: Session = Depends(get_session)) -> Dict[str, Any]:
    """Per-school report of every course with students in the academic year."""
    return course_report_service.get_all_courses_report(db, academic_year)
