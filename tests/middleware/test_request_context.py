"""Tests for the request context middleware.

Verifies that every response gets:
- An X-Request-ID header (generated or echoed from the request)
- Request timing logged
"""

from __future__ import annotations

import logging
import uuid

import pytest
from fastapi.testclient import TestClient

from tests.conftest import auth


def test_request_id_generated_when_not_provided(client: TestClient) -> None:
    """When no X-Request-ID header is sent, one is generated."""
    resp = client.get("/health")
    req_id = resp.headers.get("x-request-id")
    assert req_id is not None
    # Should be a valid UUID
    uuid.UUID(req_id)  # raises ValueError if invalid


def test_request_id_echoed_when_provided(client: TestClient) -> None:
    """When the client sends X-Request-ID, the same value is echoed back."""
    custom_id = "my-custom-request-id-123"
    resp = client.get("/health", headers={"X-Request-ID": custom_id})
    assert resp.headers.get("x-request-id") == custom_id


def test_request_id_present_on_error_responses(client: TestClient) -> None:
    """Even error responses (401, 404) get an X-Request-ID header."""
    resp = client.get("/v1/orders/mine")  # No auth token → 401
    assert resp.status_code == 401
    assert resp.headers.get("x-request-id") is not None


def test_log_lines_carry_authenticated_user(
    client: TestClient, caplog: pytest.LogCaptureFixture
) -> None:
    """Lines logged while handling a request are tagged with the caller."""
    user_id = uuid.uuid4()
    with caplog.at_level(logging.DEBUG, logger="app.api.dependencies"):
        resp = client.get("/v1/cart", headers=auth(user_id))
    assert resp.status_code == 200
    tagged = [r for r in caplog.records if r.name == "app.api.dependencies"]
    assert tagged
    assert all(getattr(r, "user_id", None) == str(user_id) for r in tagged)


def test_request_id_is_stamped_on_records(
    client: TestClient, caplog: pytest.LogCaptureFixture
) -> None:
    with caplog.at_level(logging.INFO, logger="app.middleware.request_context"):
        client.get("/health", headers={"X-Request-ID": "trace-42"})
    summary = [r for r in caplog.records if r.name == "app.middleware.request_context"]
    assert summary[-1].request_id == "trace-42"
