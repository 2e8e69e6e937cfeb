"""
Error types raised by the registry, sync and aggregation services.
"""
from typing import List, Optional

HTTP_INTERNAL_ERROR = 500


class RegistryError(Exception):
    """Base error for registry communication."""


class RegistryNotConfigured(RegistryError):
    """Registry base URL is not set."""


class UpstreamUnavailable(RegistryError):
    """Registry could not be reached after exhausting retries."""

    def __init__(self, message: str, status_codes: Optional[List[int]] = None):
        super().__init__(message)
        # 0 marks a connection failure or timeout
        self.status_codes = list(status_codes or [])

    @property
    def attempts(self) -> int:
        return len(self.status_codes)

    @property
    def is_record_specific(self) -> bool:
        """True when every attempt failed with HTTP 500 for this record."""
        return bool(self.status_codes) and all(code == HTTP_INTERNAL_ERROR for code in self.status_codes)


class UpstreamDataError(RegistryError):
    """Registry answered HTTP 200 with a payload that is not a usable record."""

    EMBEDDED_ERROR = "embedded_error"
    INVALID_JSON = "invalid_json"
    INVALID_PAYLOAD = "invalid_payload"

    def __init__(self, message: str, reason: str = EMBEDDED_ERROR, upstream_status: Optional[int] = None):
        super().__init__(message)
        self.reason = reason
        self.upstream_status = upstream_status

    @property
    def poisons_record(self) -> bool:
        return self.reason == self.EMBEDDED_ERROR


class UpstreamRequestRejected(RegistryError):
    """Registry rejected the request with a 4xx other than 404."""

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code


class AlreadyLinked(Exception):
    """User already has a registry link for a different record."""

    def __init__(self, user_id: int, external_code: str, entity_type: str):
        super().__init__(f"User {user_id} is already linked to {entity_type} {external_code}")
        self.user_id = user_id
        self.external_code = external_code
        self.entity_type = entity_type


class InvalidLinkTransition(Exception):
    """Link state change not allowed by the link lifecycle."""


class AggregationError(Exception):
    """Aggregation failed for one school."""

    def __init__(self, school_id: int, message: str):
        super().__init__(f"School {school_id}: {message}")
        self.school_id = school_id
