"""Analytics endpoint behavior tests."""

import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_analytics_for_new_link(client: AsyncClient) -> None:
    create_response = await client.post("/api/shorten", json={"url": "https://www.example.com"})
    code = create_response.json()["code"]

    response = await client.get(f"/api/analytics/{code}")
    assert response.status_code == 200
    data = response.json()
    assert data["code"] == code
    assert data["original_url"] == "https://www.example.com"
    assert data["click_count"] == 0
    assert data["days"] == 30
    assert data["daily_stats"] == []


@pytest.mark.asyncio
async def test_analytics_custom_window(client: AsyncClient) -> None:
    create_response = await client.post("/api/shorten", json={"url": "https://www.example.com"})
    code = create_response.json()["code"]

    response = await client.get(f"/api/analytics/{code}", params={"days": 7})
    assert response.status_code == 200
    assert response.json()["days"] == 7


@pytest.mark.asyncio
async def test_analytics_daily_stats_after_durable_clicks(client: AsyncClient, store) -> None:
    create_response = await client.post("/api/shorten", json={"url": "https://www.example.com"})
    code = create_response.json()["code"]
    await store.increment_click_count(code, 4)

    response = await client.get(f"/api/analytics/{code}", params={"days": 1})
    data = response.json()
    assert data["click_count"] == 4
    assert len(data["daily_stats"]) == 1
    assert data["daily_stats"][0]["clicks"] == 4


@pytest.mark.asyncio
async def test_analytics_nonexistent_code(client: AsyncClient) -> None:
    response = await client.get("/api/analytics/nonexistent123")
    assert response.status_code == 404


@pytest.mark.asyncio
@pytest.mark.parametrize("days", ["0", "-5", "366", "abc"])
async def test_analytics_invalid_window(client: AsyncClient, days: str) -> None:
    response = await client.get("/api/analytics/anything", params={"days": days})
    assert response.status_code == 422
