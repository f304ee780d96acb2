"""
Tests for health and readiness probes.
"""

from sqlalchemy.exc import OperationalError


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert "x-request-id" in response.headers


def test_ready(client, db_session):
    response = client.get("/ready")

    assert response.status_code == 200
    assert response.json() == {"status": "ready", "database": "ok"}
    db_session.execute.assert_awaited_once()


def test_not_ready_when_database_down(client, db_session):
    db_session.execute.side_effect = OperationalError("SELECT 1", {}, Exception("connection refused"))

    response = client.get("/ready")

    assert response.status_code == 503
    assert response.json() == {"status": "not_ready", "database": "unavailable"}
