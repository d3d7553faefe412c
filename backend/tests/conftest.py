"""
Pytest configuration and shared test helpers for backend tests.
"""
import os

# Skip heavy server startup (MongoDB, scheduler) when running under pytest.
os.environ.setdefault("PYTEST_RUNNING", "1")

import pytest

# Shared TestClient fixture so tests can use in-process requests without a running server.
from fastapi.testclient import TestClient
from server import app
from utils.rate_limiter import rate_limiter


@pytest.fixture
def client():
    """Return a TestClient for the main FastAPI app (server:app). Use for unit-style API tests."""
    return TestClient(app)


@pytest.fixture(autouse=True)
def reset_rate_limiter():
    """Unlock attempts are rate limited per IP; every TestClient request shares one IP."""
    rate_limiter.attempts.clear()
    yield
    rate_limiter.attempts.clear()
