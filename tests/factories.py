"""
Test data builders and a scripted registry HTTP session.
"""

from typing import Any, Dict, List, Optional

import requests

from app.models.lms import Course, Enrollment, InteractionLog, LmsUser
from app.models.registry import ENTITY_STUDENT, STATUS_LINKED, LinkedIdentity, School

REGISTRY_URL = "http://registry.test/api"


class FakeResponse:
    """Minimal stand-in for requests.Response."""

    def __init__(self, status_code: int = 200, payload: Any = None, text: Optional[str] = None):
        self.status_code = status_code
        self._payload = payload
        self._text = text

    def json(self):
        if self._text is not None:
            raise ValueError("No JSON object could be decoded")
        return self._payload


class FakeHttp:
    """
    Scripted HTTP session.

    Each entry of responses is a FakeResponse or an exception instance to raise.
    A dict of path -> list routes by URL path, otherwise one list serves every call.
    """

    def __init__(self, responses):
        self.responses = responses
        self.calls: List[Dict[str, Any]] = []

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append({"url": url, "params": params, "timeout": timeout})
        if isinstance(self.responses, dict):
            path = url[len(REGISTRY_URL):]
            queue = self.responses[path]
        else:
            queue = self.responses
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item



def timeout_error():
    return requests.exceptions.Timeout("read timed out")


def student_payload(code="2019000123", school_code="SCH001", **extra):
    payload = {
        "studentCode": code,
        "firstName": "Aline",
        "lastName": "Uwase",
        "gender": "female",
        "dateOfBirth": "2007-03-14",
        "schoolCode": school_code,
        "combination": "Mathematics-Physics-Computer",
        "combinationCode": "MPC",
        "classGrade": "Senior 5",
        "classGroup": "A",
        "currentAcadmicYear": "2023-2024",
        "registrationDate": "2019-01-10T00:00:00",
    }
    payload.update(extra)
    return payload


def school_payload(code="SCH001", **extra):
    payload = {
        "schoolCode": code,
        "schoolName": "Groupe Scolaire Kigali",
        "schoolStatus": "PUBLIC",
        "isActive": "ACTIVE",
        "schoolCategory": "Secondary",
        "province": "Kigali",
        "district": "Gasabo",
        "sector": "Remera",
        "levels": [
            {
                "levelId": 3,
                "levelName": "Advanced Level",
                "combinations": [
                    {
                        "combinationCode": "MPC",
                        "combinationName": "Mathematics-Physics-Computer",
                        "grades": [
                            {
                                "gradeCode": "S5",
                                "gradeName": "Senior 5",
                                "classGroups": [{"classGroupId": 11, "classGroupName": "A"}],
                            }
                        ],
                    }
                ],
            }
        ],
    }
    payload.update(extra)
    return payload


def add_user(db, user_id, email=None, firstname="Test", lastname="User"):
    user = LmsUser(id=user_id, username=f"user{user_id}", email=email, firstname=firstname, lastname=lastname)
    db.add(user)
    db.commit()
    return user


def add_school(db, code="SCH001", name="Groupe Scolaire Kigali", last_synced=None):
    school = School(school_code=code, name=name, last_synced=last_synced)
    db.add(school)
    db.commit()
    db.refresh(school)
    return school


def link(db, user_id, school_id, code=None, entity_type=ENTITY_STUDENT, status=STATUS_LINKED, last_synced=None):
    identity = LinkedIdentity(
        user_id=user_id,
        external_code=code or f"C{user_id}",
        entity_type=entity_type,
        school_id=school_id,
        sync_status=status,
        last_synced=last_synced,
    )
    db.add(identity)
    db.commit()
    return identity


def add_course(db, course_id, fullname=None, category_id=0):
    course = Course(id=course_id, fullname=fullname or f"Course {course_id}", shortname=f"C{course_id}",
                    category_id=category_id)
    db.add(course)
    db.commit()
    return course


def enroll(db, user_id, course_id, time_start=None, role="student"):
    db.add(Enrollment(user_id=user_id, course_id=course_id, role=role, time_start=time_start))
    db.commit()


def log(db, user_id, course_id, when, component="core", action="viewed", target="course", object_id=None):
    db.add(InteractionLog(user_id=user_id, course_id=course_id, component=component, action=action,
                          target=target, object_id=object_id, time_created=when))
