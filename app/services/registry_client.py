"""
HTTP client for the external student registry.

The registry only offers single record lookups, so every call fetches one
student, staff member or school by code.
"""
import logging
import time
from typing import Any, Callable, Dict, List, Optional

import requests
from sqlalchemy.orm import Session

from app.models.registry import ENTITY_SCHOOL, ENTITY_STAFF, ENTITY_STUDENT, SyncLogEntry
from app.services.config_service import config_service
from app.services.exceptions import (
    RegistryNotConfigured,
    UpstreamDataError,
    UpstreamRequestRejected,
    UpstreamUnavailable,
)

logger = logging.getLogger("app.registry")

MAX_RETRIES = 3

ENDPOINTS = {
    ENTITY_STUDENT: ("/student", "studentCode"),
    ENTITY_STAFF: ("/staff", "staffNumber"),
    ENTITY_SCHOOL: ("/school", "schoolCode"),
}


def _embedded_status(payload: Dict[str, Any]) -> Optional[int]:
    """Status code of an error payload served with HTTP 200, when it has one."""
    value = payload.get("status")
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class RegistryClient:
    """Single record lookups with retry, backoff and an audit row per attempt."""

    def __init__(
        self,
        db: Session,
        base_url: Optional[str] = None,
        timeout: Optional[int] = None,
        http: Optional[requests.Session] = None,
        sleep: Optional[Callable[[float], None]] = None,
        triggered_by: str = "api",
    ):
        self.db = db
        self.base_url = (base_url or config_service.get_setting("REGISTRY_API_URL", "") or "").rstrip("/")
        self.timeout = timeout or config_service.get_int("REGISTRY_TIMEOUT", 30)
        self.http = http or requests.Session()
        self.sleep = sleep or time.sleep
        self.triggered_by = triggered_by

    def get_student(self, student_code: str, user_id: Optional[int] = None) -> Optional[Dict[str, Any]]:
        return self.fetch(ENTITY_STUDENT, student_code, user_id)

    def get_staff(self, staff_number: str, user_id: Optional[int] = None) -> Optional[Dict[str, Any]]:
        return self.fetch(ENTITY_STAFF, staff_number, user_id)

    def get_school(self, school_code: str) -> Optional[Dict[str, Any]]:
        return self.fetch(ENTITY_SCHOOL, school_code)

    def fetch(self, entity_type: str, code: str, user_id: Optional[int] = None) -> Optional[Dict[str, Any]]:
        """
        Fetch one registry record.

        Args:
            entity_type: student, staff or school
            code: Registry code of the record
            user_id: Platform user the lookup is made for, for the audit trail

        Returns:
            Record payload, or None when the registry has no such record

        Raises:
            UpstreamUnavailable: 5xx or connection failures on every attempt
            UpstreamDataError: HTTP 200 carrying an error payload or invalid JSON
            UpstreamRequestRejected: 4xx other than 404
        """
        if not self.base_url:
            raise RegistryNotConfigured("REGISTRY_API_URL is not configured")

        path, param = ENDPOINTS[entity_type]
        url = f"{self.base_url}{path}"
        status_codes: List[int] = []

        for attempt in range(1, MAX_RETRIES + 1):
            started = time.monotonic()
            try:
                response = self.http.get(
                    url,
                    params={param: code},
                    headers={"Accept": "application/json"},
                    timeout=self.timeout,
                )
                status_code = response.status_code
                transport_error = None
            except requests.exceptions.Timeout:
                status_code = 0
                transport_error = f"Timeout after {self.timeout}s"
            except requests.exceptions.RequestException as e:
                status_code = 0
                transport_error = f"Connection error: {e}"
            elapsed_ms = int((time.monotonic() - started) * 1000)
            request_url = f"{url}?{param}={code}"

            if status_code == 200:
                return self._handle_success(response, entity_type, code, user_id, request_url, elapsed_ms)

            if status_code == 404:
                self._log_attempt(entity_type, code, user_id, "fetch", request_url, 404, elapsed_ms, "Not found")
                logger.info(f"Registry {entity_type} {code} not found")
                return None

            status_codes.append(status_code)
            error = transport_error or f"HTTP {status_code}"
            self._log_attempt(entity_type, code, user_id, "error", request_url, status_code, elapsed_ms, error)

            if status_code == 0 or status_code >= 500:
                logger.warning(
                    f"Registry request for {entity_type} {code} failed (attempt {attempt}/{MAX_RETRIES}): {error}"
                )
                if attempt < MAX_RETRIES:
                    self.sleep(2 ** attempt)
                continue

            logger.error(f"Registry rejected {entity_type} {code}: HTTP {status_code}")
            raise UpstreamRequestRejected(f"Registry rejected request: HTTP {status_code}", status_code)

        raise UpstreamUnavailable(
            f"Registry unavailable after {len(status_codes)} attempt(s): HTTP {status_codes[-1]}",
            status_codes,
        )

    def _handle_success(
        self,
        response: requests.Response,
        entity_type: str,
        code: str,
        user_id: Optional[int],
        request_url: str,
        elapsed_ms: int,
    ) -> Optional[Dict[str, Any]]:
        try:
            payload = response.json()
        except ValueError:
            self._log_attempt(entity_type, code, user_id, "error", request_url, 200, elapsed_ms, "Invalid JSON response")
            logger.error(f"Registry returned invalid JSON for {entity_type} {code}")
            raise UpstreamDataError("Invalid JSON response from registry", UpstreamDataError.INVALID_JSON)

        if isinstance(payload, list):
            payload = payload[0] if payload else None

        if not payload:
            self._log_attempt(entity_type, code, user_id, "fetch", request_url, 200, elapsed_ms, "Empty response")
            return None

        if not isinstance(payload, dict):
            self._log_attempt(
                entity_type, code, user_id, "error", request_url, 200, elapsed_ms,
                f"Unexpected payload type {type(payload).__name__}",
            )
            logger.error(f"Registry returned a non-object payload for {entity_type} {code}")
            raise UpstreamDataError("Registry returned a non-object payload", UpstreamDataError.INVALID_PAYLOAD)

        embedded_status = _embedded_status(payload)
        if embedded_status is not None and embedded_status >= 400:
            message = payload.get("message") or "Unknown error"
            self._log_attempt(
                entity_type, code, user_id, "error", request_url, 200, elapsed_ms,
                f"Registry error {embedded_status}: {message}",
            )
            logger.error(f"Registry error for {entity_type} {code}: {embedded_status} {message}")
            raise UpstreamDataError(f"Registry error: {message}", UpstreamDataError.EMBEDDED_ERROR, embedded_status)

        self._log_attempt(entity_type, code, user_id, "fetch", request_url, 200, elapsed_ms, None)
        return payload

    def _log_attempt(
        self,
        entity_type: str,
        code: str,
        user_id: Optional[int],
        operation: str,
        request_url: str,
        response_code: int,
        response_time_ms: int,
        error_message: Optional[str],
    ) -> None:
        """Stage the audit row for one request attempt; callers commit it."""
        self.db.add(SyncLogEntry(
            sync_type=entity_type,
            entity_id=code,
            user_id=user_id,
            operation=operation,
            request_url=request_url,
            response_code=response_code,
            response_time_ms=response_time_ms,
            error_message=error_message,
            triggered_by=self.triggered_by,
            created_at=config_service.now(),
        ))
