"""
Tests for the registry HTTP client: retries, error classification and audit rows.
"""

import pytest

from app.models.registry import SyncLogEntry
from app.services.exceptions import (
    RegistryNotConfigured,
    UpstreamDataError,
    UpstreamRequestRejected,
    UpstreamUnavailable,
)
from app.services.registry_client import MAX_RETRIES, RegistryClient
from factories import REGISTRY_URL, FakeResponse, school_payload, student_payload, timeout_error


def _audit_rows(db):
    db.flush()
    return db.query(SyncLogEntry).order_by(SyncLogEntry.id).all()


class TestSuccessfulLookups:
    """Test lookups answered with a record."""

    def test_student_lookup(self, make_client, db_session):
        client, http = make_client([FakeResponse(200, student_payload())])

        data = client.get_student("2019000123", user_id=7)

        assert data["studentCode"] == "2019000123"
        assert http.calls[0]["url"] == f"{REGISTRY_URL}/student"
        assert http.calls[0]["params"] == {"studentCode": "2019000123"}
        assert http.calls[0]["timeout"] == 5

        rows = _audit_rows(db_session)
        assert len(rows) == 1
        assert rows[0].operation == "fetch"
        assert rows[0].response_code == 200
        assert rows[0].user_id == 7
        assert rows[0].error_message is None

    def test_staff_and_school_use_their_parameters(self, make_client):
        client, http = make_client({
            "/staff": [FakeResponse(200, {"staffNumber": "ST01"})],
            "/school": [FakeResponse(200, school_payload())],
        })

        client.get_staff("ST01")
        client.get_school("SCH001")

        assert http.calls[0]["params"] == {"staffNumber": "ST01"}
        assert http.calls[1]["params"] == {"schoolCode": "SCH001"}

    def test_list_payload_is_unwrapped(self, make_client):
        client, _ = make_client([FakeResponse(200, [school_payload(), school_payload("SCH002")])])

        data = client.get_school("SCH001")

        assert data["schoolCode"] == "SCH001"

    def test_empty_payload_is_not_found(self, make_client):
        client, _ = make_client([FakeResponse(200, [])])

        assert client.get_school("SCH001") is None


class TestFailures:
    """Test error classification."""

    def test_not_found(self, make_client, db_session, sleeps):
        client, http = make_client([FakeResponse(404)])

        assert client.get_student("missing") is None
        assert len(http.calls) == 1
        assert sleeps == []
        assert _audit_rows(db_session)[0].response_code == 404

    def test_retries_server_errors_then_gives_up(self, make_client, db_session, sleeps):
        client, http = make_client([FakeResponse(503), FakeResponse(503), timeout_error()])

        with pytest.raises(UpstreamUnavailable) as exc_info:
            client.get_student("2019000123")

        assert len(http.calls) == MAX_RETRIES
        assert sleeps == [2, 4]
        assert exc_info.value.status_codes == [503, 503, 0]
        assert exc_info.value.attempts == 3
        assert not exc_info.value.is_record_specific

        rows = _audit_rows(db_session)
        assert [row.operation for row in rows] == ["error", "error", "error"]
        assert [row.response_code for row in rows] == [503, 503, 0]
        assert rows[2].error_message.startswith("Timeout")

    def test_service_unavailable_then_timeout_stops_at_three_attempts(self, make_client, db_session, sleeps):
        client, http = make_client([FakeResponse(503), FakeResponse(503), FakeResponse(503), timeout_error()])

        with pytest.raises(UpstreamUnavailable) as exc_info:
            client.get_student("2019000123")

        assert len(http.calls) == 3
        assert exc_info.value.status_codes == [503, 503, 503]
        assert sleeps == [2, 4]
        assert len(_audit_rows(db_session)) == 3

    def test_recovers_on_retry(self, make_client, sleeps):
        client, http = make_client([FakeResponse(502), FakeResponse(200, student_payload())])

        data = client.get_student("2019000123")

        assert data is not None
        assert len(http.calls) == 2
        assert sleeps == [2]

    def test_repeated_internal_errors_are_record_specific(self, make_client):
        client, _ = make_client([FakeResponse(500)])

        with pytest.raises(UpstreamUnavailable) as exc_info:
            client.get_student("2019000123")

        assert exc_info.value.status_codes == [500, 500, 500]
        assert exc_info.value.is_record_specific

    def test_embedded_error_is_not_retried(self, make_client, sleeps):
        client, http = make_client([FakeResponse(200, {"status": 500, "message": "Internal error for record"})])

        with pytest.raises(UpstreamDataError) as exc_info:
            client.get_student("2019000123")

        assert len(http.calls) == 1
        assert sleeps == []
        assert exc_info.value.poisons_record
        assert exc_info.value.upstream_status == 500

    def test_embedded_error_with_string_status(self, make_client, db_session):
        client, http = make_client([FakeResponse(200, {"status": "500", "message": "db error"})])

        with pytest.raises(UpstreamDataError) as exc_info:
            client.get_student("2019000123")

        assert len(http.calls) == 1
        assert exc_info.value.poisons_record
        assert exc_info.value.upstream_status == 500
        assert _audit_rows(db_session)[0].error_message == "Registry error 500: db error"

    def test_non_numeric_status_is_a_record_field(self, make_client):
        client, _ = make_client([FakeResponse(200, school_payload(status="OPEN"))])

        assert client.get_school("SCH001")["status"] == "OPEN"

    def test_non_object_payload(self, make_client, db_session):
        client, _ = make_client([FakeResponse(200, ["garbage"])])

        with pytest.raises(UpstreamDataError) as exc_info:
            client.get_student("2019000123")

        assert exc_info.value.reason == UpstreamDataError.INVALID_PAYLOAD
        assert not exc_info.value.poisons_record
        assert _audit_rows(db_session)[0].operation == "error"

    def test_invalid_json(self, make_client, db_session):
        client, http = make_client([FakeResponse(200, text="<html>gateway</html>")])

        with pytest.raises(UpstreamDataError) as exc_info:
            client.get_student("2019000123")

        assert exc_info.value.reason == UpstreamDataError.INVALID_JSON
        assert not exc_info.value.poisons_record
        assert len(http.calls) == 1
        assert _audit_rows(db_session)[0].error_message == "Invalid JSON response"

    def test_client_error_is_rejected(self, make_client, sleeps):
        client, http = make_client([FakeResponse(401)])

        with pytest.raises(UpstreamRequestRejected) as exc_info:
            client.get_student("2019000123")

        assert exc_info.value.status_code == 401
        assert len(http.calls) == 1
        assert sleeps == []

    def test_not_configured(self, db_session):
        client = RegistryClient(db_session, http=object())

        with pytest.raises(RegistryNotConfigured):
            client.get_student("2019000123")

    def test_audit_rows_carry_trigger(self, make_client, db_session):
        client, _ = make_client([FakeResponse(404)], triggered_by="task")

        client.get_school("SCH404")

        assert _audit_rows(db_session)[0].triggered_by == "task"
