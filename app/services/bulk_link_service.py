"""
Bulk linking of platform users to registry records from an uploaded CSV file.
"""
import io
import logging
from typing import Any, Dict, List

import pandas as pd
from sqlalchemy.orm import Session

from app.models.lms import LmsUser
from app.models.registry import ENTITY_STAFF, ENTITY_STUDENT, LinkedIdentity
from app.services.exceptions import AlreadyLinked, RegistryError
from app.services.sync_service import SyncService

logger = logging.getLogger("app.sync")

REQUIRED_COLUMNS = ("username", "external_code", "role")
DELIMITERS = {"comma": ",", "semicolon": ";", "tab": "\t"}

TEMPLATE_CSV = (
    "username,external_code,role\n"
    "john.doe,2019000123,student\n"
    "jane.smith,STF001,staff\n"
)

STATUS_SUCCESS = "success"
STATUS_ERROR = "error"
STATUS_SKIPPED = "skipped"


class BulkLinkFileError(ValueError):
    """The uploaded file cannot be read as a bulk link CSV."""


class BulkLinkService:
    """Service linking the users listed in a CSV file, one row at a time."""

    def __init__(self, sync_service: SyncService = None):
        self.sync_service = sync_service or SyncService(triggered_by="admin")
        self.logger = logger

    def parse_csv(self, content: bytes, delimiter: str = "comma") -> List[Dict[str, str]]:
        """
        Parse the uploaded CSV into rows keyed by the required columns.

        Args:
            content: Raw file content, UTF-8
            delimiter: comma, semicolon or tab; unknown names fall back to comma

        Returns:
            Rows with username, external_code and role as trimmed strings

        Raises:
            BulkLinkFileError: unreadable file or missing columns
        """
        sep = DELIMITERS.get(delimiter, ",")
        try:
            df = pd.read_csv(io.BytesIO(content), sep=sep, dtype=str, keep_default_na=False,
                             skip_blank_lines=True, encoding="utf-8")
        except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
            raise BulkLinkFileError(f"Invalid CSV file: {e}")

        df.columns = [str(column).strip().lower() for column in df.columns]
        missing = [column for column in REQUIRED_COLUMNS if column not in df.columns]
        if missing:
            raise BulkLinkFileError(f"Missing required columns: {', '.join(missing)}")

        rows = []
        for _, row in df.iterrows():
            rows.append({column: str(row[column]).strip() for column in REQUIRED_COLUMNS})
        return rows

    def link_rows(self, db: Session, rows: List[Dict[str, str]]) -> Dict[str, Any]:
        """
        Link each row's user, reporting success, error or skipped per row.

        Row numbers count the header as row 1.

        Returns:
            Per-row results and the summary counts
        """
        results = []
        for index, row in enumerate(rows, start=2):
            results.append(self._link_row(db, index, row))

        summary = {
            STATUS_SUCCESS: sum(1 for r in results if r["status"] == STATUS_SUCCESS),
            STATUS_ERROR: sum(1 for r in results if r["status"] == STATUS_ERROR),
            STATUS_SKIPPED: sum(1 for r in results if r["status"] == STATUS_SKIPPED),
        }
        self.logger.info(f"Bulk link finished: {summary}")
        return {"summary": summary, "results": results}

    def _link_row(self, db: Session, index: int, row: Dict[str, str]) -> Dict[str, Any]:
        username = row.get("username", "")
        code = row.get("external_code", "")
        role = row.get("role", "").lower()

        def outcome(status: str, message: str) -> Dict[str, Any]:
            return {"row": index, "username": username, "external_code": code,
                    "status": status, "message": message}

        if not username or not code or not role:
            return outcome(STATUS_ERROR, "Username, code and role are required")
        if role not in (ENTITY_STUDENT, ENTITY_STAFF):
            return outcome(STATUS_ERROR, f"Role must be {ENTITY_STUDENT} or {ENTITY_STAFF}")

        user = db.query(LmsUser).filter(LmsUser.username == username, LmsUser.deleted.is_(False)).first()
        if user is None:
            return outcome(STATUS_ERROR, "User not found")
        if db.query(LinkedIdentity).filter(LinkedIdentity.user_id == user.id).first() is not None:
            return outcome(STATUS_SKIPPED, "User is already linked")
        if db.query(LinkedIdentity).filter(LinkedIdentity.external_code == code).first() is not None:
            return outcome(STATUS_ERROR, "Code is already linked to another user")

        try:
            linked = self.sync_service.link_user(db, user.id, code, role)
        except (RegistryError, AlreadyLinked) as e:
            db.rollback()
            return outcome(STATUS_ERROR, str(e))
        except Exception as e:
            db.rollback()
            self.logger.exception(f"Bulk link of {username} failed: {e}")
            return outcome(STATUS_ERROR, f"{type(e).__name__}: {e}")

        if not linked:
            return outcome(STATUS_ERROR, "Not found in registry")
        return outcome(STATUS_SUCCESS, "Linked")
