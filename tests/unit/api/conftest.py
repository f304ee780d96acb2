"""Route test fixtures: the real app with the database dependency replaced."""

from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from api.main import app
from database.engine import get_db


@pytest.fixture
def db_session():
    return AsyncMock()


@pytest.fixture
def client(db_session):
    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    # No context manager: the lifespan (init_db) is not run
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()
