"""Health and root endpoint tests."""

from httpx import AsyncClient


async def test_health(client: AsyncClient):
    response = await client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] in ("healthy", "degraded")
    assert data["environment"] == "test"
    assert "version" in data


async def test_root(client: AsyncClient):
    response = await client.get("/")

    assert response.status_code == 200
    assert response.json()["api"] == "/api/v1"
