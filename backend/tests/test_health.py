"""Test health check endpoints."""

from unittest.mock import PropertyMock, patch

import pytest
from httpx import AsyncClient

from shellfs.services.migrator import CURRENT_SCHEMA_VERSION


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient):
    resp = await client.get("/api/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert data["service"] == "shellfs"
    assert data["schema_version"] == CURRENT_SCHEMA_VERSION
    assert data["persist_enabled"] is True
    assert data["degraded"] is False
    assert "version" in data


@pytest.mark.asyncio
async def test_ping(client: AsyncClient):
    resp = await client.get("/api/ping")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_health_reports_partial_load(client: AsyncClient, fs):
    with patch.object(type(fs.index), "degraded", new_callable=PropertyMock, return_value=True):
        resp = await client.get("/api/health")
    assert resp.json()["degraded"] is True
