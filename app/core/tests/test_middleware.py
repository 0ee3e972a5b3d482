"""Tests for request correlation and timing middleware."""

import pytest


@pytest.mark.asyncio
async def test_generated_request_id_is_uuid(client):
    """A request without X-Request-ID gets a fresh UUID."""
    response = await client.get("/health")

    assert len(response.headers["X-Request-ID"]) == 36


@pytest.mark.asyncio
async def test_generated_request_ids_differ(client):
    """Consecutive requests get distinct IDs."""
    first = await client.get("/health")
    second = await client.get("/health")

    assert first.headers["X-Request-ID"] != second.headers["X-Request-ID"]


@pytest.mark.asyncio
async def test_problem_details_carry_request_id(client):
    """Error documents name the request that produced them."""
    response = await client.post(
        "/forecasting/generate",
        headers={"X-Request-ID": "forecast-req-7"},
        json={"series_id": "s-1", "horizon_periods": 0, "observations": []},
    )

    assert response.status_code == 422
    assert response.headers["X-Request-ID"] == "forecast-req-7"
    body = response.json()
    assert body["request_id"] == "forecast-req-7"
    assert body["instance"] == "/requests/forecast-req-7"


@pytest.mark.asyncio
async def test_processing_time_header(client):
    """Wall time is reported in a response header."""
    response = await client.get("/health")

    assert float(response.headers["X-Process-Time-Ms"]) >= 0
