"""Redirect endpoint behavior tests."""

import pytest
from httpx import AsyncClient

from shortlinks.analytics import hash_ip


@pytest.mark.asyncio
async def test_redirect_valid_key(client: AsyncClient, create_link, settings) -> None:
    link = await create_link("https://www.google.com")

    # Follow redirect (httpx won't follow by default)
    response = await client.get(f"/{link['key']}", follow_redirects=False)
    assert response.status_code == settings.REDIRECT_STATUS_CODE
    assert response.headers["location"] == "https://www.google.com"


@pytest.mark.asyncio
async def test_redirect_invalid_key(client: AsyncClient) -> None:
    response = await client.get("/nonexistent", follow_redirects=False)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_redirect_expired_link(client: AsyncClient, create_link) -> None:
    link = await create_link("https://www.google.com", expires_in=-60)
    response = await client.get(f"/{link['key']}", follow_redirects=False)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_redirect_increments_clicks(client: AsyncClient, create_link, service_manager) -> None:
    link = await create_link("https://www.python.org")

    # Visit 3 times
    for _ in range(3):
        await client.get(f"/{link['key']}", follow_redirects=False)
    await service_manager.capture.drain()

    # Check stats
    stats_resp = await client.get(f"/api/v1/links/{link['key']}/stats")
    assert stats_resp.status_code == 200
    assert stats_resp.json()["click_count"] == 3


@pytest.mark.asyncio
async def test_redirect_with_custom_alias(client: AsyncClient, create_link) -> None:
    await create_link("https://www.github.com", custom_alias="ghub")
    response = await client.get("/ghub", follow_redirects=False)
    assert response.status_code == 307
    assert response.headers["location"] == "https://www.github.com"


@pytest.mark.asyncio
async def test_redirect_records_click_event(client: AsyncClient, create_link, service_manager) -> None:
    link = await create_link("https://www.example.com")
    await client.get(
        f"/{link['key']}",
        headers={
            "referer": "https://news.ycombinator.com/item?id=1",
            "user-agent": "Mozilla/5.0 (compatible; Googlebot/2.1; +http://www.google.com/bot.html)",
            "x-forwarded-for": "198.51.100.7, 10.0.0.1",
        },
        follow_redirects=False,
    )
    await service_manager.capture.drain()

    response = await client.get(f"/api/v1/links/{link['key']}/analytics/detailed")
    assert response.status_code == 200
    events = response.json()
    assert len(events) == 1
    assert events[0]["referrer_domain"] == "news.ycombinator.com"
    assert events[0]["ip_hash"] == hash_ip("198.51.100.7")
    assert events[0]["device_type"] == "bot"
