"""
Tests for linking users by the registry code in their email.
"""

from app.models.lms import LmsUser
from app.models.registry import ENTITY_STAFF, STATUS_POISONED, LinkedIdentity, SyncLogEntry
from app.services.config_service import config_service
from app.services.sync_service import SyncService
from factories import FakeResponse, add_user, link, school_payload, student_payload


def _identity(db, user_id):
    return db.query(LinkedIdentity).filter(LinkedIdentity.user_id == user_id).first()


class TestCandidates:
    """Test auto-link candidate selection."""

    def _seed(self, db):
        add_user(db, 3, "2019000003@school.rw")
        add_user(db, 1, "2019000001@school.rw")
        add_user(db, 2, "john.doe@school.rw")
        add_user(db, 4, "2019000004@other.org")
        add_user(db, 5, "2019000005@school.rw")
        add_user(db, 6, None)
        link(db, 5, None)
        db.add(LmsUser(id=7, username="gone", email="2019000007@school.rw", deleted=True))
        db.commit()

    def test_numeric_unlinked_users_in_id_order(self, db_session):
        self._seed(db_session)

        candidates = SyncService().find_auto_link_candidates(db_session, limit=10)

        assert [user.id for user in candidates] == [1, 3, 4]

    def test_domain_allow_list(self, db_session):
        self._seed(db_session)
        config_service.set_setting("AUTO_LINK_EMAIL_DOMAINS", "school.rw, @Schools.rw")

        candidates = SyncService().find_auto_link_candidates(db_session, limit=10)

        assert [user.id for user in candidates] == [1, 3]

    def test_limit(self, db_session):
        self._seed(db_session)

        candidates = SyncService().find_auto_link_candidates(db_session, limit=2)

        assert [user.id for user in candidates] == [1, 3]


class TestAutoLink:
    """Test the auto-link run."""

    def test_links_student(self, make_client, db_session):
        add_user(db_session, 1, "2019000123@school.rw")
        client, _ = make_client({
            "/student": [FakeResponse(200, student_payload())],
            "/school": [FakeResponse(200, school_payload())],
        })

        results = SyncService(client=client).auto_link(db_session, limit=10)

        assert results == {"processed": 1, "linked": 1, "not_found": 0, "poisoned": 0, "failed": 0}
        assert _identity(db_session, 1).external_code == "2019000123"

    def test_falls_back_to_staff(self, make_client, db_session):
        add_user(db_session, 1, "1200456@school.rw")
        client, http = make_client({
            "/student": [FakeResponse(404)],
            "/staff": [FakeResponse(200, {"staffNumber": "1200456", "schooCode": "SCH001"})],
            "/school": [FakeResponse(200, school_payload())],
        })

        results = SyncService(client=client).auto_link(db_session, limit=10)

        assert results["linked"] == 1
        assert _identity(db_session, 1).entity_type == ENTITY_STAFF

    def test_not_found_is_retried_next_run(self, make_client, db_session):
        add_user(db_session, 1, "2019000123@school.rw")
        client, _ = make_client({"/student": [FakeResponse(404)], "/staff": [FakeResponse(404)]})
        service = SyncService(client=client)

        assert service.auto_link(db_session, limit=10)["not_found"] == 1
        assert _identity(db_session, 1) is None
        assert service.auto_link(db_session, limit=10)["processed"] == 1

    def test_embedded_error_poisons_record(self, make_client, db_session):
        add_user(db_session, 1, "2019000123@school.rw")
        add_user(db_session, 2, "2019000456@school.rw")
        client, http = make_client({
            "/student": [
                FakeResponse(200, {"status": 500, "message": "Record cannot be serialised"}),
                FakeResponse(200, student_payload("2019000456")),
            ],
            "/school": [FakeResponse(200, school_payload())],
        })
        service = SyncService(client=client)

        results = service.auto_link(db_session, limit=10)

        assert results == {"processed": 2, "linked": 1, "not_found": 0, "poisoned": 1, "failed": 0}
        identity = _identity(db_session, 1)
        assert identity.sync_status == STATUS_POISONED
        assert "Record cannot be serialised" in identity.sync_error
        assert db_session.query(SyncLogEntry).filter(SyncLogEntry.operation == "poison").count() == 1

        calls = len(http.calls)
        again = service.auto_link(db_session, limit=10)
        assert again["processed"] == 0
        assert len(http.calls) == calls

    def test_persistent_internal_error_poisons_record(self, make_client, db_session, sleeps):
        add_user(db_session, 1, "2019000123@school.rw")
        client, http = make_client({"/student": [FakeResponse(500)]})

        results = SyncService(client=client).auto_link(db_session, limit=10)

        assert results["poisoned"] == 1
        assert len(http.calls) == 3
        assert sleeps == [2, 4]
        assert _identity(db_session, 1).sync_status == STATUS_POISONED

    def test_outage_is_not_poisoned(self, make_client, db_session):
        add_user(db_session, 1, "2019000123@school.rw")
        client, _ = make_client({"/student": [FakeResponse(503)]})
        service = SyncService(client=client)

        results = service.auto_link(db_session, limit=10)

        assert results["failed"] == 1
        assert results["poisoned"] == 0
        assert _identity(db_session, 1) is None
        assert service.auto_link(db_session, limit=10)["processed"] == 1

    def test_invalid_json_is_not_poisoned(self, make_client, db_session):
        add_user(db_session, 1, "2019000123@school.rw")
        client, _ = make_client({"/student": [FakeResponse(200, text="<html></html>")]})

        results = SyncService(client=client).auto_link(db_session, limit=10)

        assert results["failed"] == 1
        assert _identity(db_session, 1) is None

    def test_non_object_payload_does_not_stop_the_run(self, make_client, db_session):
        add_user(db_session, 1, "2019000123@school.rw")
        add_user(db_session, 2, "2019000456@school.rw")
        client, _ = make_client({
            "/student": [FakeResponse(200, ["garbage"]), FakeResponse(200, student_payload("2019000456"))],
            "/school": [FakeResponse(200, school_payload())],
        })

        results = SyncService(client=client).auto_link(db_session, limit=10)

        assert results == {"processed": 2, "linked": 1, "not_found": 0, "poisoned": 0, "failed": 1}
        assert _identity(db_session, 1) is None
        assert _identity(db_session, 2).sync_status == "linked"

    def test_unexpected_error_on_first_candidate_is_skipped(self, make_client, db_session):
        add_user(db_session, 1, "2019000123@school.rw")
        add_user(db_session, 2, "2019000456@school.rw")
        client, _ = make_client({
            "/student": [
                FakeResponse(200, student_payload(gender=1)),
                FakeResponse(200, student_payload("2019000456")),
            ],
            "/school": [FakeResponse(200, school_payload())],
        })

        results = SyncService(client=client).auto_link(db_session, limit=10)

        assert results["failed"] == 1
        assert results["linked"] == 1
        assert _identity(db_session, 1) is None
        assert _identity(db_session, 2).external_code == "2019000456"
        audit = db_session.query(SyncLogEntry).filter(
            SyncLogEntry.user_id == 1, SyncLogEntry.operation == "error"
        ).one()
        assert audit.error_message.startswith("AttributeError")

    def test_poisoned_user_can_be_linked_manually(self, make_client, db_session):
        add_user(db_session, 1, "2019000123@school.rw")
        link(db_session, 1, None, code="2019000123", status=STATUS_POISONED)
        client, _ = make_client({
            "/student": [FakeResponse(200, student_payload())],
            "/school": [FakeResponse(200, school_payload())],
        })

        assert SyncService(client=client).link_user(db_session, 1, "2019000123", "student") is True
        assert _identity(db_session, 1).sync_status == "linked"
