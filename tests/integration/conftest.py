"""Shared fixtures for integration tests against a running service.

These tests need the service, its database, and provider sandbox keys
(start it with uvicorn first).  They are deselected by default; run with
``pytest -m integration``.
"""

import os

import httpx
import pytest


PRIZE_DISTRIBUTION_URL = os.getenv("PRIZE_DISTRIBUTION_URL", "http://localhost:8000")


@pytest.fixture(scope="session")
def service_client():
    """HTTP client pointed at the prize-distribution service."""
    with httpx.Client(base_url=PRIZE_DISTRIBUTION_URL, timeout=30.0) as client:
        yield client


@pytest.fixture(scope="session", autouse=True)
def _check_service(service_client):
    """Verify the service is healthy before running integration tests."""
    resp = service_client.get("/health")
    assert resp.status_code == 200, "prize-distribution is not running"
