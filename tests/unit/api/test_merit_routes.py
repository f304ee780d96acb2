"""
Tests for merit list endpoints.
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

from core.exceptions import PostNotFound
from database.models.applications import ApplicationStatus

ADMIN = {"X-Admin-Id": "7"}


def _merit_page(**overrides):
    page = {
        "items": [{
            "merit_rank": 11,
            "merit_score": 5_070_001_001_029,
            "breakdown": {
                "education_rank": 5,
                "marks": 70.0,
                "locality": 1,
                "experience_months": 1,
                "age_score": 29,
            },
            "is_local_candidate": True,
            "application_id": 14,
            "application_no": "APP-00014",
            "applicant_id": 8,
            "full_name": "Candidate 8",
            "district_id": 4,
            "status": ApplicationStatus.ELIGIBLE,
            "submitted_at": datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc),
            "total_applications": 2,
            "other_applications": [{
                "application_id": 20,
                "application_no": "APP-00020",
                "post_id": 6,
                "post_code": "POST006",
                "post_name": "Helper",
                "status": ApplicationStatus.ON_HOLD,
            }],
        }],
        "total": 11,
        "page": 2,
        "page_size": 10,
        "total_pages": 2,
        "post": {"post_id": 3, "post_code": "POST003", "post_name": "Worker", "district_id": 4},
        "status_summary": {"ELIGIBLE": 9, "ON_HOLD": 2},
    }
    page.update(overrides)
    return page


class TestGetMeritList:

    def test_query_parameters_forwarded(self, client):
        with patch("api.services.merit.get_merit_list", new=AsyncMock(return_value=_merit_page())) as mock:
            response = client.get(
                "/api/v1/merit/posts/3",
                params=[
                    ("district_id", 4),
                    ("status", "ELIGIBLE"),
                    ("status", "ON_HOLD"),
                    ("page", 2),
                    ("page_size", 10),
                ],
                headers=ADMIN,
            )

        assert response.status_code == 200
        body = response.json()
        assert body["items"][0]["merit_rank"] == 11
        assert body["items"][0]["other_applications"][0]["post_code"] == "POST006"
        assert body["status_summary"] == {"ELIGIBLE": 9, "ON_HOLD": 2}
        assert mock.call_args.args[1] == 3
        assert mock.call_args.kwargs == {
            "district_id": 4,
            "statuses": [ApplicationStatus.ELIGIBLE, ApplicationStatus.ON_HOLD],
            "page": 2,
            "page_size": 10,
        }

    def test_defaults(self, client):
        page = _merit_page(items=[], total=0, page=1, page_size=50, total_pages=0)

        with patch("api.services.merit.get_merit_list", new=AsyncMock(return_value=page)) as mock:
            response = client.get("/api/v1/merit/posts/3", headers=ADMIN)

        assert response.status_code == 200
        assert mock.call_args.kwargs == {
            "district_id": None,
            "statuses": None,
            "page": 1,
            "page_size": 50,
        }

    def test_unknown_post(self, client):
        with patch("api.services.merit.get_merit_list", new=AsyncMock(side_effect=PostNotFound(404))):
            response = client.get("/api/v1/merit/posts/404", headers=ADMIN)

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "POST_NOT_FOUND"

    def test_unknown_status_filter(self, client):
        response = client.get("/api/v1/merit/posts/3", params={"status": "HIRED"}, headers=ADMIN)

        assert response.status_code == 422


class TestMeritSnapshot:

    def test_snapshot_records_admin(self, client):
        result = {
            "post_id": 3,
            "district_id": None,
            "generated_at": datetime(2024, 3, 2, 12, 0, tzinfo=timezone.utc),
            "total": 11,
        }

        with patch(
            "api.services.merit.generate_merit_snapshot", new=AsyncMock(return_value=result)
        ) as mock:
            response = client.post("/api/v1/merit/posts/3/snapshot", headers=ADMIN)

        assert response.status_code == 200
        assert response.json()["total"] == 11
        assert mock.call_args.kwargs == {"district_id": None, "generated_by": 7}
