"""
Sync service keeping the local registry cache consistent with the registry.
"""
import logging
import re
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.lms import Course, CourseCategory, Enrollment, LmsUser
from app.models.registry import (
    ENTITY_SCHOOL,
    ENTITY_STAFF,
    ENTITY_STUDENT,
    STATUS_ERROR,
    STATUS_LINKED,
    STATUS_POISONED,
    LinkedIdentity,
    School,
    StaffProfile,
    StudentProfile,
    SyncLogEntry,
)
from app.services.config_service import config_service
from app.services.exceptions import (
    AlreadyLinked,
    InvalidLinkTransition,
    RegistryError,
    UpstreamDataError,
    UpstreamUnavailable,
)
from app.services.registry_client import RegistryClient

logger = logging.getLogger("app.sync")

DEFAULT_CACHE_TTL = 604800  # 7 days
NUMERIC_EMAIL = re.compile(r"^[0-9]+@")
CANDIDATE_SCAN_BATCH = 500
MAX_SEARCH_PER_PAGE = 100
# Platform guest and primary admin accounts
RESERVED_USER_MAX_ID = 2


class LinkState(str, Enum):
    """Lifecycle of a user's registry link."""

    UNLINKED = "unlinked"
    LINKING = "linking"
    LINKED = STATUS_LINKED
    ERROR = STATUS_ERROR
    POISONED = STATUS_POISONED


_TRANSITIONS = {
    LinkState.UNLINKED: {LinkState.LINKING},
    LinkState.LINKING: {LinkState.LINKED, LinkState.POISONED},
    LinkState.LINKED: {LinkState.LINKING, LinkState.LINKED, LinkState.ERROR},
    LinkState.ERROR: {LinkState.LINKING, LinkState.LINKED, LinkState.ERROR},
    LinkState.POISONED: {LinkState.LINKING},
}


def check_transition(current: LinkState, target: LinkState) -> LinkState:
    """Validate a link state change and return the target state."""
    if target not in _TRANSITIONS[current]:
        raise InvalidLinkTransition(f"Cannot move link from {current.value} to {target.value}")
    return target


def state_of(identity: Optional[LinkedIdentity]) -> LinkState:
    if identity is None:
        return LinkState.UNLINKED
    return LinkState(identity.sync_status)


def _parse_date(value: Any) -> Optional[date]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value)[:10]).date()
    except ValueError:
        logger.debug(f"Ignoring unparseable date {value!r}")
        return None


def _level_number(class_grade: Optional[str]) -> Optional[int]:
    match = re.search(r"(\d+)", class_grade or "")
    return int(match.group(1)) if match else None


class SyncService:
    """Service linking platform users to registry records and refreshing the cache."""

    def __init__(self, client: Optional[RegistryClient] = None, triggered_by: str = "api"):
        self.client = client
        self.triggered_by = triggered_by
        self.logger = logger

    def _client(self, db: Session) -> RegistryClient:
        if self.client is None:
            return RegistryClient(db, triggered_by=self.triggered_by)
        return self.client

    @staticmethod
    def cache_ttl() -> int:
        return config_service.get_int("REGISTRY_CACHE_TTL", DEFAULT_CACHE_TTL)

    def _fetch(self, db: Session, entity_type: str, code: str, user_id: Optional[int] = None) -> Optional[Dict[str, Any]]:
        """Fetch from the registry and persist the attempt audit rows either way."""
        try:
            return self._client(db).fetch(entity_type, code, user_id)
        finally:
            db.commit()

    def _audit(self, db: Session, sync_type: str, entity_id: str, operation: str,
               user_id: Optional[int] = None, error_message: Optional[str] = None,
               details: Optional[str] = None, triggered_by: Optional[str] = None) -> None:
        db.add(SyncLogEntry(
            sync_type=sync_type,
            entity_id=entity_id,
            user_id=user_id,
            operation=operation,
            error_message=error_message,
            details=details,
            triggered_by=triggered_by or self.triggered_by,
            created_at=config_service.now(),
        ))

    def link_user(self, db: Session, user_id: int, external_code: str, entity_type: str) -> bool:
        """
        Link a platform user to a registry student or staff record.

        Args:
            db: Database session
            user_id: Platform user ID
            external_code: Student code or staff number
            entity_type: student or staff

        Returns:
            True when linked, False when the registry has no such record

        Raises:
            AlreadyLinked: user is linked to another record
            RegistryError: registry failure (UpstreamUnavailable, UpstreamDataError...)
        """
        existing = db.query(LinkedIdentity).filter(LinkedIdentity.user_id == user_id).first()
        if existing is not None and state_of(existing) in (LinkState.LINKED, LinkState.ERROR):
            if existing.external_code != external_code or existing.entity_type != entity_type:
                self._audit(db, entity_type, external_code, "reject", user_id,
                            error_message=f"Already linked to {existing.entity_type} {existing.external_code}")
                db.commit()
                raise AlreadyLinked(user_id, existing.external_code, existing.entity_type)

        state = check_transition(state_of(existing), LinkState.LINKING)
        self.logger.info(f"Linking user {user_id} to {entity_type} {external_code}")

        data = self._fetch(db, entity_type, external_code, user_id)
        if data is None:
            self._audit(db, entity_type, external_code, "link", user_id, error_message="Not found in registry")
            db.commit()
            return False

        school_code = self._extract_school_code(data, entity_type)
        if school_code:
            try:
                self.sync_school(db, school_code)
            except RegistryError as e:
                self.logger.warning(f"School {school_code} sync failed while linking user {user_id}: {e}")

        check_transition(state, LinkState.LINKED)
        try:
            self._upsert_identity(db, user_id, external_code, entity_type, data, school_code)
            self._audit(db, entity_type, external_code, "link", user_id)
            db.commit()
        except IntegrityError:
            db.rollback()
            current = db.query(LinkedIdentity).filter(LinkedIdentity.user_id == user_id).first()
            if current is not None and current.external_code == external_code:
                return True
            raise AlreadyLinked(user_id, current.external_code if current else external_code, entity_type)

        if entity_type == ENTITY_STUDENT:
            try:
                self.auto_enroll_student(db, user_id, data)
            except Exception as e:
                db.rollback()
                self.logger.error(f"Auto-enrolment failed for user {user_id}: {e}")

        self.logger.info(f"User {user_id} linked to {entity_type} {external_code}")
        return True

    def refresh_user(self, db: Session, user_id: int, force: bool = False) -> bool:
        """
        Refresh a linked user's cached registry data.

        Returns:
            True when the cache is fresh after the call
        """
        identity = db.query(LinkedIdentity).filter(LinkedIdentity.user_id == user_id).first()
        if identity is None or state_of(identity) == LinkState.POISONED:
            return False

        now = config_service.now()
        if not force and identity.last_synced and identity.last_synced > now - timedelta(seconds=self.cache_ttl()):
            return True

        data = self._fetch(db, identity.entity_type, identity.external_code, user_id)
        if data is None:
            check_transition(state_of(identity), LinkState.ERROR)
            identity.sync_status = LinkState.ERROR.value
            identity.sync_error = "Not found in registry"
            identity.updated_at = now
            db.commit()
            self.logger.warning(f"User {user_id} no longer found in registry")
            return False

        school_code = self._extract_school_code(data, identity.entity_type)
        if school_code:
            try:
                self.sync_school(db, school_code)
            except RegistryError as e:
                self.logger.warning(f"School {school_code} sync failed while refreshing user {user_id}: {e}")

        check_transition(state_of(identity), LinkState.LINKED)
        self._upsert_identity(db, user_id, identity.external_code, identity.entity_type, data, school_code)
        db.commit()
        return True

    def sync_school(self, db: Session, school_code: str, force: bool = False) -> Optional[School]:
        """
        Sync a school and its hierarchy, serving from cache while fresh.

        Returns:
            Cached school, or None when the registry has no such school
        """
        school = db.query(School).filter(School.school_code == school_code).first()
        now = config_service.now()
        if (
            school is not None
            and not force
            and school.last_synced
            and school.last_synced > now - timedelta(seconds=self.cache_ttl())
        ):
            return school

        data = self._fetch(db, ENTITY_SCHOOL, school_code)
        if data is None:
            return None

        if school is None:
            school = School(school_code=data.get("schoolCode") or school_code, name="", created_at=now)
            db.add(school)

        levels = data.get("levels") or []
        school.name = data.get("schoolName") or school.name or school_code
        school.status = data.get("schoolStatus")
        school.is_active = data.get("isActive") == "ACTIVE"
        school.school_type = data.get("schoolCategory")
        school.province = data.get("province")
        school.district = data.get("district")
        school.sector = data.get("sector")
        school.hierarchy = self._normalize_hierarchy(levels)
        school.has_tvet = any("TVET" in (level.get("levelName") or "").upper() for level in levels)
        school.last_synced = now
        school.updated_at = now
        db.commit()
        db.refresh(school)

        self.logger.info(f"School {school_code} synced ({len(levels)} levels)")
        return school

    def update_user_school(self, db: Session, user_id: int, school_code: str) -> LinkedIdentity:
        """
        Admin override of a linked user's school.

        Raises:
            LookupError: unknown school or user without a registry link
        """
        school = db.query(School).filter(School.school_code == school_code).first()
        if school is None:
            raise LookupError(f"School {school_code} not found")

        identity = db.query(LinkedIdentity).filter(LinkedIdentity.user_id == user_id).first()
        if identity is None or state_of(identity) == LinkState.POISONED:
            raise LookupError(f"User {user_id} is not linked to the registry")

        previous = identity.school_id
        identity.school_id = school.id
        identity.updated_at = config_service.now()
        self._audit(db, identity.entity_type, identity.external_code, "update", user_id,
                    details=f"school {previous} -> {school.id}", triggered_by="admin")
        db.commit()
        db.refresh(identity)
        return identity

    def get_user_profile(self, db: Session, user_id: int) -> Dict[str, Any]:
        """
        Cached registry profile of a linked user, refreshed first when stale.

        A failed refresh is logged and the stale cache is served.
        """
        identity = db.query(LinkedIdentity).filter(LinkedIdentity.user_id == user_id).first()
        if identity is not None and self._is_stale(identity.last_synced):
            try:
                self.refresh_user(db, user_id)
            except RegistryError as e:
                self.logger.warning(f"Serving stale registry profile of user {user_id}: {e}")
            identity = db.query(LinkedIdentity).filter(LinkedIdentity.user_id == user_id).first()

        if identity is None:
            return {"success": False, "error": "User not linked to registry", "user_id": user_id}

        school = None
        if identity.school_id:
            school = db.query(School).filter(School.id == identity.school_id).first()

        academic_year = program = position = None
        if identity.entity_type == ENTITY_STUDENT:
            student = db.query(StudentProfile).filter(StudentProfile.user_id == user_id).first()
            if student is not None:
                academic_year = student.academic_year
                program = student.program
        else:
            staff = db.query(StaffProfile).filter(StaffProfile.user_id == user_id).first()
            position = staff.position if staff else None

        return {
            "success": True,
            "error": None,
            "user_id": user_id,
            "external_code": identity.external_code,
            "entity_type": identity.entity_type,
            "school_code": school.school_code if school else None,
            "school_name": school.name if school else None,
            "academic_year": academic_year,
            "program": program,
            "position": position,
            "sync_status": identity.sync_status,
            "last_synced": identity.last_synced.isoformat() if identity.last_synced else None,
        }

    def get_school_info(self, db: Session, school_code: str) -> Dict[str, Any]:
        """
        Cached school with its hierarchy, synced first when missing or stale.

        A failed sync falls back to the cached row when there is one.
        """
        school = db.query(School).filter(School.school_code == school_code).first()
        if school is None or self._is_stale(school.last_synced):
            try:
                school = self.sync_school(db, school_code) or school
            except RegistryError as e:
                if school is None:
                    return {"success": False, "error": str(e), "school_code": school_code}
                self.logger.warning(f"Serving stale school {school_code}: {e}")

        if school is None:
            return {"success": False, "error": "School not found", "school_code": school_code}

        return {
            "success": True,
            "error": None,
            "school_code": school.school_code,
            "school_name": school.name,
            "province": school.province,
            "district": school.district,
            "is_active": school.is_active,
            "has_tvet": school.has_tvet,
            "levels": school.hierarchy or [],
            "last_synced": school.last_synced.isoformat() if school.last_synced else None,
        }

    def lookup_user(self, db: Session, external_code: str, entity_type: str) -> Dict[str, Any]:
        """
        Live registry preview of a student or staff record; nothing is linked or cached.

        Args:
            db: Database session, used for the audit rows only
            external_code: Student code or staff number
            entity_type: student or staff

        Returns:
            Preview with school, student_data or staff_data; success False when
            the record is missing or the registry fails
        """
        result: Dict[str, Any] = {
            "success": False,
            "error": None,
            "external_code": external_code,
            "entity_type": entity_type,
            "school": None,
            "student_data": None,
            "staff_data": None,
        }
        try:
            data = self._fetch(db, entity_type, external_code)
            if data is None:
                result["error"] = "Not found in registry"
                return result

            school_code = self._extract_school_code(data, entity_type)
            if school_code:
                school_data = self._fetch(db, ENTITY_SCHOOL, school_code)
                if school_data is not None:
                    levels = school_data.get("levels") or []
                    result["school"] = {
                        "school_code": school_data.get("schoolCode") or school_code,
                        "school_name": school_data.get("schoolName") or "",
                        "district": school_data.get("district"),
                        "is_active": school_data.get("isActive") == "ACTIVE",
                        "levels": self._normalize_hierarchy(levels),
                    }
        except RegistryError as e:
            self.logger.warning(f"Registry lookup of {entity_type} {external_code} failed: {e}")
            result["error"] = str(e)
            return result

        if entity_type == ENTITY_STUDENT:
            result["student_data"] = {
                "first_name": data.get("firstName"),
                "last_name": data.get("lastName"),
                "gender": data.get("gender"),
                "date_of_birth": data.get("dateOfBirth"),
                "class_grade": data.get("classGrade"),
                "class_group": data.get("classGroup"),
                "program": data.get("combination"),
                "program_code": data.get("combinationCode"),
                "registration_date": data.get("registrationDate"),
            }
        else:
            result["staff_data"] = {
                "first_name": data.get("firstName"),
                "last_name": data.get("lastName"),
                "position": data.get("position"),
                "specialities": [
                    {
                        "level_name": speciality.get("levelName"),
                        "combination_code": speciality.get("combinationCode"),
                        "subject_name": speciality.get("subjectName") or speciality.get("subject"),
                        "grade_name": speciality.get("gradeName"),
                        "class_group": speciality.get("classGroup"),
                    }
                    for speciality in data.get("specialities") or []
                ],
            }
        result["success"] = True
        return result

    def search_unlinked_users(self, db: Session, search: str, page: int = 0, perpage: int = 20) -> Dict[str, Any]:
        """Active platform accounts without a registry link matching a name, username or email."""
        page = max(0, page)
        perpage = max(1, min(MAX_SEARCH_PER_PAGE, perpage))
        pattern = f"%{search.lower()}%"
        linked = db.query(LinkedIdentity.user_id)
        query = db.query(LmsUser).filter(
            and_(
                LmsUser.id > RESERVED_USER_MAX_ID,
                LmsUser.deleted.is_(False),
                LmsUser.suspended.is_(False),
                LmsUser.id.notin_(linked),
                or_(
                    func.lower(LmsUser.firstname).like(pattern),
                    func.lower(LmsUser.lastname).like(pattern),
                    func.lower(LmsUser.username).like(pattern),
                    func.lower(LmsUser.email).like(pattern),
                ),
            )
        )
        total = query.count()
        users = query.order_by(LmsUser.lastname, LmsUser.firstname, LmsUser.id).offset(page * perpage).limit(perpage)
        return {
            "users": [
                {"user_id": user.id, "fullname": user.fullname, "username": user.username, "email": user.email}
                for user in users.all()
            ],
            "total_count": total,
            "page": page,
            "perpage": perpage,
        }

    def _is_stale(self, last_synced: Optional[datetime]) -> bool:
        if last_synced is None:
            return True
        return last_synced <= config_service.now() - timedelta(seconds=self.cache_ttl())

    def flag_poisoned(self, db: Session, user_id: int, external_code: str, entity_type: str,
                      error: Exception) -> LinkedIdentity:
        """
        Record a permanently failing registry record so auto-link stops retrying it.
        """
        check_transition(LinkState.LINKING, LinkState.POISONED)
        now = config_service.now()
        identity = db.query(LinkedIdentity).filter(LinkedIdentity.user_id == user_id).first()
        if identity is None:
            identity = LinkedIdentity(user_id=user_id, external_code=external_code,
                                      entity_type=entity_type, created_at=now)
            db.add(identity)
        identity.sync_status = LinkState.POISONED.value
        identity.sync_error = str(error)
        identity.last_synced = now
        identity.updated_at = now
        self._audit(db, entity_type, external_code, "poison", user_id, error_message=str(error))
        db.commit()
        self.logger.warning(f"User {user_id} flagged as permanently failing: {error}")
        return identity

    def find_auto_link_candidates(self, db: Session, limit: int) -> List[LmsUser]:
        """
        Unlinked users whose email local part is numeric, ascending by id.
        """
        domains = [d.lower().lstrip("@") for d in config_service.get_list("AUTO_LINK_EMAIL_DOMAINS")]
        linked = db.query(LinkedIdentity.user_id)
        query = db.query(LmsUser).filter(
            and_(
                LmsUser.deleted.is_(False),
                LmsUser.email.isnot(None),
                LmsUser.id.notin_(linked),
            )
        )

        candidates: List[LmsUser] = []
        last_id = 0
        while len(candidates) < limit:
            batch = query.filter(LmsUser.id > last_id).order_by(LmsUser.id.asc()).limit(CANDIDATE_SCAN_BATCH).all()
            if not batch:
                break
            for user in batch:
                email = user.email.strip().lower()
                if not NUMERIC_EMAIL.match(email):
                    continue
                if domains and email.split("@", 1)[1] not in domains:
                    continue
                candidates.append(user)
                if len(candidates) >= limit:
                    break
            last_id = batch[-1].id
        return candidates

    def auto_link(self, db: Session, limit: int) -> Dict[str, int]:
        """
        Link a bounded window of unlinked users by the code in their email.

        Returns:
            Counters: processed, linked, not_found, poisoned, failed
        """
        results = {"processed": 0, "linked": 0, "not_found": 0, "poisoned": 0, "failed": 0}
        for user in self.find_auto_link_candidates(db, limit):
            results["processed"] += 1
            code = user.email.split("@", 1)[0]
            entity_type = ENTITY_STUDENT
            try:
                if self.link_user(db, user.id, code, ENTITY_STUDENT):
                    results["linked"] += 1
                    continue
                entity_type = ENTITY_STAFF
                if self.link_user(db, user.id, code, ENTITY_STAFF):
                    results["linked"] += 1
                else:
                    results["not_found"] += 1
            except UpstreamDataError as e:
                if e.poisons_record:
                    self.flag_poisoned(db, user.id, code, entity_type, e)
                    results["poisoned"] += 1
                else:
                    results["failed"] += 1
                    self.logger.error(f"Auto-link failed for user {user.id}: {e}")
            except UpstreamUnavailable as e:
                if e.is_record_specific:
                    self.flag_poisoned(db, user.id, code, entity_type, e)
                    results["poisoned"] += 1
                else:
                    results["failed"] += 1
                    self.logger.error(f"Auto-link failed for user {user.id}: {e}")
            except (RegistryError, AlreadyLinked) as e:
                db.rollback()
                results["failed"] += 1
                self.logger.error(f"Auto-link failed for user {user.id}: {e}")
            except Exception as e:
                db.rollback()
                results["failed"] += 1
                self.logger.exception(f"Unexpected auto-link failure for user {user.id}: {e}")
                self._audit(db, entity_type, code, "error", user.id,
                            error_message=f"{type(e).__name__}: {e}"[:1000])
                db.commit()
        self.logger.info(f"Auto-link finished: {results}")
        return results

    def auto_enroll_student(self, db: Session, user_id: int, data: Dict[str, Any]) -> int:
        """
        Enrol a student into the courses of the category matching combination and level.

        Returns:
            Number of new enrolments
        """
        if not config_service.get_bool("AUTO_ENROLL_ENABLED", False):
            return 0

        combination = data.get("combinationCode")
        level = _level_number(data.get("classGrade"))
        if not combination or level is None:
            return 0

        lookup_key = f"{combination}:{level}"
        categories = db.query(CourseCategory).filter(CourseCategory.idnumber == lookup_key).all()
        if not categories:
            self._log_enrollment(db, user_id, "skip", lookup_key, "No matching category found")
            db.commit()
            return 0

        category_ids = set()
        pending = [c.id for c in categories]
        while pending:
            category_ids.update(pending)
            children = db.query(CourseCategory.id).filter(CourseCategory.parent_id.in_(pending)).all()
            pending = [row.id for row in children if row.id not in category_ids]

        course_ids = [row.id for row in db.query(Course.id).filter(Course.category_id.in_(category_ids)).all()]
        enrolled = {
            row.course_id
            for row in db.query(Enrollment.course_id).filter(Enrollment.user_id == user_id).all()
        }

        now = config_service.now()
        created = 0
        for course_id in course_ids:
            if course_id in enrolled:
                continue
            db.add(Enrollment(user_id=user_id, course_id=course_id, role="student", method="auto",
                              time_start=now, time_created=now))
            created += 1

        if created:
            self._log_enrollment(db, user_id, "create", lookup_key, f"Enrolled in {created} course(s)")
        else:
            self._log_enrollment(db, user_id, "skip", lookup_key, "Category matched but no new enrollments")
        db.commit()
        return created

    def _log_enrollment(self, db: Session, user_id: int, operation: str, lookup_key: str, details: str) -> None:
        self._audit(db, "enrollment", lookup_key, operation, user_id, details=details)

    @staticmethod
    def _extract_school_code(data: Dict[str, Any], entity_type: str) -> Optional[str]:
        if entity_type == ENTITY_STUDENT:
            return data.get("schoolCode")
        # staff payloads spell the key "schooCode"
        return data.get("schooCode") or data.get("schoolCode")

    @staticmethod
    def _normalize_hierarchy(levels: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        hierarchy = []
        for level in levels:
            combinations = []
            for combination in level.get("combinations") or []:
                grades = []
                for grade in combination.get("grades") or []:
                    grades.append({
                        "grade_code": grade.get("gradeCode"),
                        "grade_name": grade.get("gradeName"),
                        "class_groups": [
                            {"class_group_id": group.get("classGroupId"), "name": group.get("classGroupName")}
                            for group in grade.get("classGroups") or []
                        ],
                    })
                combinations.append({
                    "combination_code": combination.get("combinationCode"),
                    "combination_name": combination.get("combinationName"),
                    "grades": grades,
                })
            hierarchy.append({
                "level_id": level.get("levelId"),
                "level_name": level.get("levelName"),
                "combinations": combinations,
            })
        return hierarchy

    def _upsert_identity(self, db: Session, user_id: int, external_code: str, entity_type: str,
                         data: Dict[str, Any], school_code: Optional[str]) -> LinkedIdentity:
        now = config_service.now()
        school_id = None
        if school_code:
            school = db.query(School).filter(School.school_code == school_code).first()
            school_id = school.id if school else None

        identity = db.query(LinkedIdentity).filter(LinkedIdentity.user_id == user_id).first()
        if identity is None:
            identity = LinkedIdentity(user_id=user_id, external_code=external_code,
                                      entity_type=entity_type, created_at=now)
            db.add(identity)
        elif school_id is None:
            # keep the known school when the registry's school cannot be resolved
            school_id = identity.school_id

        identity.external_code = external_code
        identity.entity_type = entity_type
        identity.school_id = school_id
        identity.sync_status = LinkState.LINKED.value
        identity.sync_error = None
        identity.last_synced = now
        identity.updated_at = now
        db.flush()

        if entity_type == ENTITY_STUDENT:
            self._upsert_student_profile(db, user_id, external_code, data)
        else:
            self._upsert_staff_profile(db, user_id, external_code, data)
        return identity

    @staticmethod
    def _upsert_student_profile(db: Session, user_id: int, code: str, data: Dict[str, Any]) -> None:
        profile = db.query(StudentProfile).filter(StudentProfile.user_id == user_id).first()
        if profile is None:
            profile = StudentProfile(user_id=user_id, student_code=code)
            db.add(profile)
        gender = data.get("gender")
        profile.student_code = code
        profile.first_name = data.get("firstName")
        profile.last_name = data.get("lastName")
        profile.gender = gender.upper() if gender else None
        profile.date_of_birth = _parse_date(data.get("dateOfBirth"))
        profile.program = data.get("combination")
        profile.program_code = data.get("combinationCode")
        profile.class_grade = data.get("classGrade")
        profile.level_number = _level_number(data.get("classGrade"))
        profile.class_group = data.get("classGroup")
        profile.academic_year = (
            data.get("currentAcadmicYear") or data.get("currentAcademicYear") or data.get("academicYear")
        )
        profile.registration_date = _parse_date(data.get("registrationDate"))
        profile.updated_at = config_service.now()

    @staticmethod
    def _upsert_staff_profile(db: Session, user_id: int, code: str, data: Dict[str, Any]) -> None:
        profile = db.query(StaffProfile).filter(StaffProfile.user_id == user_id).first()
        if profile is None:
            profile = StaffProfile(user_id=user_id, staff_number=code)
            db.add(profile)
        gender = data.get("gender")
        profile.staff_number = code
        profile.first_name = data.get("firstName")
        profile.last_name = data.get("lastName")
        profile.gender = gender.upper() if gender else None
        profile.position = data.get("position")
        profile.qualification = data.get("qualification")
        profile.employment_status = data.get("employmentStatus")
        profile.subjects = sorted({
            speciality.get("subjectName") or speciality.get("subject") or ""
            for speciality in data.get("specialities") or []
        } - {""})
        profile.updated_at = config_service.now()
