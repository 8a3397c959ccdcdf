"""
Unit tests for VisitorRepository against the in-memory Snowflake mock.
"""

from datetime import datetime, timezone

import pytest

from hvms.core.custody.errors import VisitorNotFoundError
from hvms.core.custody.models import CheckInToken, IdentityProofRef
from hvms.infrastructure.snowflake.client import MockSnowflakeConnection
from hvms.infrastructure.snowflake.repositories.visitors import VisitorRepository

CHECK_IN = datetime(2026, 10, 19, 8, 30, tzinfo=timezone.utc)


@pytest.fixture
def connection():
    return MockSnowflakeConnection()


@pytest.fixture
def repository(connection):
    return VisitorRepository(connection)


def _fields(**overrides) -> dict:
    fields = {
        "name": "Asha Rao",
        "contact_number": "12345",
        "address": None,
        "purpose": "Visiting",
        "patient_id": 4,
        "check_in_time": CHECK_IN,
    }
    fields.update(overrides)
    return fields


class TestVisitorRepository:
    """Tests for visitor persistence."""

    def test_create_assigns_sequential_ids(self, repository, connection):
        first = repository.create_visitor(_fields())
        second = repository.create_visitor(_fields(name="Ravi"))

        assert (first, second) == (1, 2)
        assert connection._get_visitor(2)["name"] == "Ravi"
        assert connection._get_visitor(1)["check_in_time"] == CHECK_IN

    def test_visitor_without_proof_has_no_reference(self, repository):
        visitor_id = repository.create_visitor(_fields())

        assert repository.get_identity_proof_ref(visitor_id) is None

    def test_reference_round_trip(self, repository):
        visitor_id = repository.create_visitor(_fields())
        repository.set_identity_proof_ref(visitor_id, "visitor-1/x-my_id.png", "image/png")

        ref = repository.get_identity_proof_ref(visitor_id)

        assert ref == IdentityProofRef(
            owner_id=visitor_id,
            object_name="visitor-1/x-my_id.png",
            content_type="image/png",
        )

    def test_check_in_token_is_stored(self, repository, connection):
        visitor_id = repository.create_visitor(_fields())
        token = CheckInToken(
            visitor_id=visitor_id,
            issued_at=CHECK_IN,
            payload="HVMS:visitor:1",
            rendered_image=b"\x89PNG",
        )

        repository.set_check_in_token(visitor_id, token)

        row = connection._get_visitor(visitor_id)
        assert row["qr_payload"] == "HVMS:visitor:1"
        assert row["qr_code"] == token.data_url
        assert row["qr_issued_at"] == CHECK_IN

    def test_unknown_visitor(self, repository):
        with pytest.raises(VisitorNotFoundError):
            repository.get_identity_proof_ref(99)
        with pytest.raises(VisitorNotFoundError):
            repository.set_identity_proof_ref(99, "visitor-99/x", "image/png")

    def test_delete_visitor(self, repository, connection):
        visitor_id = repository.create_visitor(_fields())

        repository.delete_visitor(visitor_id)

        assert connection._get_visitor(visitor_id) is None

    def test_query_failure_propagates(self, repository, connection):
        connection._fail_queries_containing("INSERT INTO visitors")

        with pytest.raises(RuntimeError):
            repository.create_visitor(_fields())

    def test_ping(self, repository):
        repository.ping()
