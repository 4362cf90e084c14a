"""Middleware tests: request id and JSON error handling."""

import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_request_id_generated(client: AsyncClient) -> None:
    """Request ID is auto-generated when not provided."""
    response = await client.get("/health")
    assert len(response.headers["x-request-id"]) == 32


@pytest.mark.asyncio
async def test_request_id_preserved(client: AsyncClient) -> None:
    """Custom request ID is echoed back in response."""
    response = await client.get("/health", headers={"X-Request-Id": "test-abc-123"})
    assert response.headers["x-request-id"] == "test-abc-123"


@pytest.mark.asyncio
async def test_404_returns_json(client: AsyncClient) -> None:
    response = await client.get("/nonexistent-path")
    assert response.status_code == 404
    assert response.json()["detail"] == "Not Found"


@pytest.mark.asyncio
async def test_request_validation_returns_json(client: AsyncClient) -> None:
    response = await client.post("/api/v1/users/1/xp", json={"amount": -1})
    assert response.status_code == 422
    assert response.json()["detail"] == "Validation error"
