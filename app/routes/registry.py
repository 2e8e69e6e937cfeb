"""
Registry sync API routes.

These handlers call the registry synchronously and may take several
seconds while retries back off.
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Response, UploadFile
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.database.session import get_session
from app.models.registry import ENTITY_STAFF, ENTITY_STUDENT
from app.services.bulk_link_service import TEMPLATE_CSV, BulkLinkFileError, BulkLinkService
from app.services.config_service import config_service
from app.services.exceptions import (
    AlreadyLinked,
    RegistryNotConfigured,
    UpstreamDataError,
    UpstreamRequestRejected,
    UpstreamUnavailable,
)
from app.services.sync_service import SyncService

logger = logging.getLogger("app.sync")
router = APIRouter(prefix="/api/registry", tags=["registry"])


class LinkUserRequest(BaseModel):
    user_id: int
    external_code: str
    entity_type: str = ENTITY_STUDENT


class RefreshUserRequest(BaseModel):
    force: bool = True


class UpdateUserSchoolRequest(BaseModel):
    school_code: str


def _raise_for_registry_error(e: Exception) -> None:
    if isinstance(e, UpstreamUnavailable):
        raise HTTPException(
            status_code=503,
            detail=f"Registry is temporarily unavailable, please retry later ({e})",
        )
    if isinstance(e, RegistryNotConfigured):
        raise HTTPException(status_code=503, detail=str(e))
    if isinstance(e, (UpstreamDataError, UpstreamRequestRejected)):
        raise HTTPException(status_code=502, detail=str(e))
    raise e


@router.post("/link")
def link_user(request_data: LinkUserRequest, db: Session = Depends(get_session)) -> Dict[str, Any]:
    """
    Link a platform user to a registry student or staff record.

    Args:
        request_data: User, registry code and entity type
        db: Database session

    Returns:
        Link outcome
    """
    if request_data.entity_type not in (ENTITY_STUDENT, ENTITY_STAFF):
        raise HTTPException(status_code=400, detail=f"Unknown entity type: {request_data.entity_type}")

    try:
        linked = SyncService().link_user(db, request_data.user_id, request_data.external_code, request_data.entity_type)
    except AlreadyLinked as e:
        raise HTTPException(status_code=409, detail=str(e))
    except (UpstreamUnavailable, UpstreamDataError, UpstreamRequestRejected, RegistryNotConfigured) as e:
        logger.error(f"Linking user {request_data.user_id} failed: {e}")
        _raise_for_registry_error(e)

    return {
        "success": linked,
        "error": None if linked else "Not found in registry",
        "timestamp": config_service.now().isoformat(),
    }


@router.post("/users/{user_id}/refresh")
def refresh_user(user_id: int, request_data: RefreshUserRequest, db: Session = Depends(get_session)) -> Dict[str, Any]:
    """Refresh a linked user's cached registry data."""
    try:
        refreshed = SyncService().refresh_user(db, user_id, force=request_data.force)
    except (UpstreamUnavailable, UpstreamDataError, UpstreamRequestRejected, RegistryNotConfigured) as e:
        logger.error(f"Refreshing user {user_id} failed: {e}")
        _raise_for_registry_error(e)

    return {
        "success": refreshed,
        "error": None if refreshed else "User is not linked or no longer in registry",
        "timestamp": config_service.now().isoformat(),
    }


@router.post("/schools/{school_code}/sync")
def sync_school_now(school_code: str, db: Session = Depends(get_session)) -> Dict[str, Any]:
    """Sync a school from the registry, bypassing the cache."""
    try:
        school = SyncService().sync_school(db, school_code, force=True)
    except (UpstreamUnavailable, UpstreamDataError, UpstreamRequestRejected, RegistryNotConfigured) as e:
        logger.error(f"Syncing school {school_code} failed: {e}")
        _raise_for_registry_error(e)

    if school is None:
        raise HTTPException(status_code=404, detail=f"School {school_code} not found in registry")

    return {
        "success": True,
        "school_code": school.school_code,
        "school_name": school.name,
        "timestamp": config_service.now().isoformat(),
    }


@router.put("/users/{user_id}/school")
def update_user_school(
    user_id: int, request_data: UpdateUserSchoolRequest, db: Session = Depends(get_session)
) -> Dict[str, Any]:
    """Admin override of a linked user's school."""
    try:
        identity = SyncService(triggered_by="admin").update_user_school(db, user_id, request_data.school_code)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return {
        "success": True,
        "user_id": identity.user_id,
        "school_id": identity.school_id,
        "timestamp": config_service.now().isoformat(),
    }


@router.get("/users/{user_id}/profile")
def get_user_profile(user_id: int, db: Session = Depends(get_session)) -> Dict[str, Any]:
    """Cached registry profile of a user, refreshed first when stale."""
    return SyncService().get_user_profile(db, user_id)


@router.get("/schools/{school_code}")
def get_school_info(school_code: str, db: Session = Depends(get_session)) -> Dict[str, Any]:
    """Cached school and hierarchy, synced first when missing or stale."""
    return SyncService().get_school_info(db, school_code)


@router.get("/lookup")
def lookup_user(external_code: str, entity_type: str = ENTITY_STUDENT, db: Session = Depends(get_session)) -> Dict[str, Any]:
    """Preview a registry record before linking it."""
    if entity_type not in (ENTITY_STUDENT, ENTITY_STAFF):
        raise HTTPException(status_code=400, detail=f"Unknown entity type: {entity_type}")
    return SyncService().lookup_user(db, external_code, entity_type)


@router.get("/unlinked-users")
def search_unlinked_users(
    search: str = "",
    page: int = Query(0, ge=0),
    perpage: int = 20,
    db: Session = Depends(get_session),
) -> Dict[str, Any]:
    """Platform users without a registry link."""
    return SyncService().search_unlinked_users(db, search, page=page, perpage=perpage)


@router.get("/bulk-link/template")
def bulk_link_template() -> Response:
    """Sample bulk link CSV."""
    return Response(
        content=TEMPLATE_CSV,
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="bulk_link_template.csv"'},
    )


@router.post("/bulk-link")
async def bulk_link(
    file: UploadFile = File(...),
    delimiter: str = Form("comma"),
    db: Session = Depends(get_session),
) -> Dict[str, Any]:
    """
    Link the users listed in an uploaded CSV file.

    Args:
        file: CSV with username, external_code and role columns
        delimiter: comma, semicolon or tab
        db: Database session

    Returns:
        Summary counts and one result per row
    """
    logger.info(f"Bulk link upload: {file.filename}")
    if not (file.filename or "").lower().endswith((".csv", ".txt")):
        raise HTTPException(status_code=400, detail="Only CSV files (.csv, .txt) are allowed")

    service = BulkLinkService()
    content = await file.read()
    try:
        rows = service.parse_csv(content, delimiter)
    except BulkLinkFileError as e:
        raise HTTPException(status_code=400, detail=str(e))

    result = service.link_rows(db, rows)
    result["timestamp"] = config_service.now().isoformat()
    return result
