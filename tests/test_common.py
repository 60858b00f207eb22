"""
Shared plumbing: error envelope, pagination, period parsing and the health check.
"""

from datetime import datetime, timezone as dt_timezone

import pytest
from django.core.exceptions import PermissionDenied, ValidationError
from django.db import DatabaseError

from apps.common import health
from apps.common.exceptions import (
    Conflict,
    InvalidTransition,
    NotFound,
    SkillRequirementsNotMet,
    error_payload,
)
from apps.common.pagination import paginate
from apps.common.periods import month_bounds, quarter_bounds


class TestErrorPayload:
    """Every service error maps to {"error", "message", "details"}."""

    def test_validation_error(self):
        payload = error_payload(ValidationError({"bounty": "Bounty must be a positive number"}))
        assert payload == {
            "error": "validation_error",
            "message": "Bounty must be a positive number",
            "details": {"bounty": ["Bounty must be a positive number"]},
        }

    def test_skill_requirements(self):
        exc = SkillRequirementsNotMet("nope", missing_skills=[1], insufficient_skills=[2, 3])
        payload = error_payload(exc)
        assert payload["error"] == "permission_denied"
        assert payload["details"] == {"missing_skills": [1], "insufficient_skills": [2, 3]}

    def test_plain_permission_denied(self):
        assert error_payload(PermissionDenied("Only admins can do that"))["message"] == "Only admins can do that"

    def test_invalid_transition(self):
        payload = error_payload(InvalidTransition("APPROVED", "CLAIMED"))
        assert payload["error"] == "invalid_transition"
        assert payload["details"] == {"current": "APPROVED", "requested": "CLAIMED"}

    def test_conflict_and_not_found(self):
        assert error_payload(Conflict("moved"))["error"] == "conflict"
        assert error_payload(NotFound("Quest not found", details={"quest_id": 3}))["details"] == {"quest_id": 3}

    def test_unknown_errors_do_not_leak(self):
        payload = error_payload(RuntimeError("secret connection string"))
        assert payload["error"] == "internal_error"
        assert "secret" not in payload["message"]


class TestPaginate:
    def test_defaults_and_cap(self, settings):
        settings.QUEST_BOARD_PAGE_SIZE = 3
        settings.QUEST_BOARD_MAX_PAGE_SIZE = 4

        assert paginate(list(range(10))).limit == 3
        assert paginate(list(range(10)), limit=50).limit == 4

    def test_page_past_the_end_is_empty(self):
        page = paginate(list(range(5)), page=9, limit=2)
        assert page.items == []
        assert page.total == 5
        assert page.total_pages == 3

    def test_empty(self):
        page = paginate([], page=0)
        assert page.page == 1
        assert page.total_pages == 0
        assert not page.has_next


class TestPeriods:
    def test_month(self):
        start, end = month_bounds("2026-12")
        assert start == datetime(2026, 12, 1, tzinfo=dt_timezone.utc)
        assert end == datetime(2027, 1, 1, tzinfo=dt_timezone.utc)

    def test_quarter(self):
        start, end = quarter_bounds("2026-Q3")
        assert start == datetime(2026, 7, 1, tzinfo=dt_timezone.utc)
        assert end == datetime(2026, 10, 1, tzinfo=dt_timezone.utc)

    @pytest.mark.parametrize("value", ["", "2026-3", "March", "2026-00"])
    def test_bad_month(self, value):
        with pytest.raises(ValidationError):
            month_bounds(value)


@pytest.mark.django_db
class TestHealth:
    def test_healthz_ok(self, client):
        response = client.get("/healthz/")
        assert response.status_code == 200
        assert response.json()["db"]["status"] == "ok"

    def test_db_health_reports_errors(self, mocker):
        connection = mocker.patch("apps.common.health.connection")
        connection.vendor = "sqlite"
        connection.cursor.side_effect = DatabaseError("down")

        assert health.db_health() == {"status": "error", "kind": "sqlite", "error": "down"}

    def test_database_failure_is_503(self, rf, mocker):
        mocker.patch("apps.common.health.db_health", return_value={"status": "error", "kind": "sqlite"})

        response = health.healthz(rf.get("/healthz/"))

        assert response.status_code == 503
