"""
Tests for application workflow endpoints.
Services are mocked; these cover request parsing, identity headers and
error envelopes.
"""

from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

from api.services.workflow import EligibilityVerdict
from core.exceptions import ApplicationNotFound, InvalidTransition, TerminalStateViolation
from database.models.applications import ActorType, ApplicationStatus

S = ApplicationStatus
ADMIN = {"X-Admin-Id": "7"}
APPLICANT = {"X-Applicant-Id": "5"}
SUBMITTED_AT = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def _application(status=S.ELIGIBLE, **overrides):
    values = dict(
        application_id=1,
        application_no="APP-00001",
        status=status,
        is_locked=True,
        updated_at=SUBMITTED_AT,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


class TestSubmitApplication:

    def test_submit_passes_verdict(self, client, db_session):
        result = {
            "application_id": 1,
            "application_no": "APP-00001",
            "status": S.NOT_ELIGIBLE,
            "is_eligible": False,
            "failed_checks": ["age"],
            "submitted_at": SUBMITTED_AT,
            "is_locked": True,
        }
        body = {
            "is_eligible": False,
            "checks": [
                {"name": "age", "passed": False, "message": "Above maximum age"},
                {"name": "education", "passed": True},
            ],
        }

        with patch("api.services.workflow.process_submission", new=AsyncMock(return_value=result)) as mock:
            response = client.post("/api/v1/applications/1/submit", json=body, headers=APPLICANT)

        assert response.status_code == 200
        assert response.json()["status"] == "NOT_ELIGIBLE"
        assert response.json()["failed_checks"] == ["age"]

        session, application_id, verdict = mock.call_args.args
        assert session is db_session
        assert application_id == 1
        assert isinstance(verdict, EligibilityVerdict)
        assert verdict.is_eligible is False
        assert [c.name for c in verdict.checks] == ["age", "education"]
        assert mock.call_args.kwargs == {"applicant_id": 5, "declaration_accepted": True}

    def test_submit_requires_applicant_identity(self, client):
        response = client.post("/api/v1/applications/1/submit", json={"is_eligible": True})

        assert response.status_code == 401
        error = response.json()["error"]
        assert error["code"] == "HTTP_EXCEPTION"
        assert error["message"] == "Applicant identity required"

    def test_submit_requires_verdict(self, client):
        response = client.post("/api/v1/applications/1/submit", json={}, headers=APPLICANT)

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_submit_unknown_application(self, client):
        with patch(
            "api.services.workflow.process_submission",
            new=AsyncMock(side_effect=ApplicationNotFound(99)),
        ):
            response = client.post(
                "/api/v1/applications/99/submit", json={"is_eligible": True}, headers=APPLICANT
            )

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "APPLICATION_NOT_FOUND"


class TestWithdraw:

    def test_withdraw_without_body(self, client):
        withdrawn = _application(S.WITHDRAWN)

        with patch("api.services.workflow.withdraw_application", new=AsyncMock(return_value=withdrawn)) as mock:
            response = client.post("/api/v1/applications/1/withdraw", headers=APPLICANT)

        assert response.status_code == 200
        assert response.json()["status"] == "WITHDRAWN"
        assert mock.call_args.args[1:] == (1, 5)
        assert mock.call_args.kwargs == {"remarks": None}

    def test_withdraw_after_decision(self, client):
        with patch(
            "api.services.workflow.withdraw_application",
            new=AsyncMock(side_effect=InvalidTransition("SELECTED", "WITHDRAWN")),
        ):
            response = client.post("/api/v1/applications/1/withdraw", headers=APPLICANT)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_TRANSITION"


class TestChangeStatus:

    def test_admin_change(self, client):
        with patch(
            "api.services.workflow.change_status",
            new=AsyncMock(return_value=_application(S.UNDER_REVIEW)),
        ) as mock:
            response = client.post(
                "/api/v1/applications/1/status",
                json={"status": "UNDER_REVIEW", "remarks": "Documents received"},
                headers=ADMIN,
            )

        assert response.status_code == 200
        assert response.json()["status"] == "UNDER_REVIEW"
        assert mock.call_args.args[1:] == (1, S.UNDER_REVIEW)
        assert mock.call_args.kwargs == {
            "actor_id": 7,
            "actor_type": ActorType.ADMIN,
            "remarks": "Documents received",
        }

    def test_terminal_status(self, client):
        with patch(
            "api.services.workflow.change_status",
            new=AsyncMock(side_effect=TerminalStateViolation("REJECTED")),
        ):
            response = client.post(
                "/api/v1/applications/1/status", json={"status": "ELIGIBLE"}, headers=ADMIN
            )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "TERMINAL_STATE"

    def test_unknown_status_value(self, client):
        response = client.post(
            "/api/v1/applications/1/status", json={"status": "HIRED"}, headers=ADMIN
        )

        assert response.status_code == 422

    def test_requires_admin(self, client):
        response = client.post("/api/v1/applications/1/status", json={"status": "ELIGIBLE"})

        assert response.status_code == 401
        assert response.json()["error"]["message"] == "Admin identity required"


class TestSelection:

    def test_select(self, client):
        result = {
            "application_id": 1,
            "application_no": "APP-00001",
            "old_status": S.ELIGIBLE,
            "status": S.SELECTED,
            "released_application_ids": [4, 9],
        }

        with patch(
            "api.services.selection.update_application_status", new=AsyncMock(return_value=result)
        ) as mock:
            response = client.patch(
                "/api/v1/applications/1/selection",
                json={"action": "SELECTED", "release_others": True},
                headers=ADMIN,
            )

        assert response.status_code == 200
        assert response.json()["released_application_ids"] == [4, 9]
        assert mock.call_args.args[1:] == (1, S.SELECTED, 7)
        assert mock.call_args.kwargs == {"remarks": None, "release_others": True}

    def test_bulk(self, client):
        result = {
            "action": S.REJECTED,
            "total": 2,
            "successful_count": 1,
            "failed_count": 1,
            "successful": [{
                "application_id": 1,
                "old_status": S.ON_HOLD,
                "status": S.REJECTED,
                "released_application_ids": [],
            }],
            "failed": [{
                "application_id": 2,
                "code": "APPLICATION_NOT_FOUND",
                "error": "Application 2 not found",
            }],
        }

        with patch(
            "api.services.selection.bulk_update_status", new=AsyncMock(return_value=result)
        ) as mock:
            response = client.post(
                "/api/v1/applications/bulk-status",
                json={"application_ids": [1, 2], "action": "REJECTED"},
                headers=ADMIN,
            )

        assert response.status_code == 200
        assert response.json()["failed"][0]["code"] == "APPLICATION_NOT_FOUND"
        assert mock.call_args.args[1:] == ([1, 2], S.REJECTED, 7)

    def test_bulk_requires_ids(self, client):
        response = client.post(
            "/api/v1/applications/bulk-status",
            json={"application_ids": [], "action": "REJECTED"},
            headers=ADMIN,
        )

        assert response.status_code == 422


class TestHistory:

    def test_history_exposes_metadata(self, client):
        entries = [
            SimpleNamespace(
                history_id=1,
                application_id=1,
                old_status=S.DRAFT,
                new_status=S.SUBMITTED,
                changed_by=5,
                changed_by_type=ActorType.APPLICANT,
                remarks="Application submitted",
                change_metadata=None,
                created_at=SUBMITTED_AT,
            ),
            SimpleNamespace(
                history_id=2,
                application_id=1,
                old_status=S.SUBMITTED,
                new_status=S.ELIGIBLE,
                changed_by=None,
                changed_by_type=ActorType.SYSTEM,
                remarks="Eligibility check passed",
                change_metadata={"failed_checks": []},
                created_at=SUBMITTED_AT,
            ),
        ]

        with patch("api.services.workflow.get_status_history", new=AsyncMock(return_value=entries)):
            response = client.get("/api/v1/applications/1/history", headers=ADMIN)

        assert response.status_code == 200
        body = response.json()
        assert [entry["new_status"] for entry in body] == ["SUBMITTED", "ELIGIBLE"]
        assert body[1]["metadata"] == {"failed_checks": []}
        assert body[1]["changed_by_type"] == "SYSTEM"
