# backend/tests/conftest.py

from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from dotenv import load_dotenv
from unittest.mock import AsyncMock

# Load the test environment before any engagehub import so Settings() can validate.
load_dotenv(dotenv_path=Path(__file__).resolve().parent.parent / ".env.test", override=True)

from engagehub.main import app  # noqa: E402


@pytest.fixture(scope="function")
def test_client(mocker):
    """
    TestClient with the lifespan running, but without touching MongoDB
    on startup.
    """
    mocker.patch("engagehub.services.db_service.db_service.create_indexes", new_callable=AsyncMock)

    with TestClient(app) as client:
        yield client
