"""Error mapping tests for the HTTP surface."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import AsyncClient

from shortlinks.dependencies import get_resolver
from shortlinks.errors import KeyGenerationExhausted, NotFoundError, StoreUnavailable
from shortlinks.main import app


@pytest.fixture
def failing_resolver(client: AsyncClient) -> MagicMock:
    resolver = MagicMock()
    app.dependency_overrides[get_resolver] = lambda: resolver
    return resolver


@pytest.mark.asyncio
async def test_store_unavailable_is_generic_500(client: AsyncClient, failing_resolver) -> None:
    failing_resolver.resolve = AsyncMock(side_effect=StoreUnavailable("connection refused to db:5432"))

    response = await client.get("/abc1234", follow_redirects=False)
    assert response.status_code == 500
    assert response.json() == {"detail": "Internal server error"}


@pytest.mark.asyncio
async def test_key_generation_exhausted_is_generic_500(client: AsyncClient, failing_resolver) -> None:
    failing_resolver.create = AsyncMock(side_effect=KeyGenerationExhausted("no free keys"))

    response = await client.post("/api/v1/links", json={"url": "https://www.example.com"})
    assert response.status_code == 500
    assert response.json() == {"detail": "Internal server error"}


@pytest.mark.asyncio
async def test_not_found_error_maps_to_404(client: AsyncClient, failing_resolver) -> None:
    failing_resolver.get_stats = AsyncMock(side_effect=NotFoundError("Short link not found"))

    response = await client.get("/api/v1/links/abc1234/stats")
    assert response.status_code == 404
    assert response.json() == {"detail": "Short link not found"}
