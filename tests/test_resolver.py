"""LinkResolver tests: cache-aside reads, writes and validation order."""

import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from shortlinks.errors import ConflictError, KeyGenerationExhausted, ValidationError
from shortlinks.models import utcnow
from shortlinks.resolver import LinkResolver, validate_destination_url
from shortlinks.schemas import LinkCreate
from shortlinks.store import LinkStore


@pytest.fixture
def resolver(store, link_cache, mock_logger, settings) -> LinkResolver:
    return LinkResolver(store, link_cache, logger=mock_logger, settings=settings)


@pytest.fixture
def mock_store() -> MagicMock:
    store = MagicMock(spec=LinkStore)
    store.exists = AsyncMock(return_value=False)
    store.create = AsyncMock()
    store.find_by_key = AsyncMock(return_value=None)
    return store


@pytest.fixture
def mock_cache() -> MagicMock:
    cache = MagicMock()
    cache.get = AsyncMock(return_value=None)
    cache.set = AsyncMock()
    cache.invalidate = AsyncMock()
    return cache


# ============================================================================
# URL VALIDATION
# ============================================================================


@pytest.mark.parametrize(
    "url",
    [
        "https://www.example.com",
        "http://example.com/path?q=1#frag",
        "https://sub.example.co.uk:8443/a/b",
        "http://localhost/",
        "http://localhost:8000/x",
        "http://intranet/page",
        "https://my_host.example.com/",
    ],
)
def test_validate_destination_url_accepts(url: str) -> None:
    assert validate_destination_url(url) == url


@pytest.mark.parametrize(
    "url",
    ["", "not-a-url", "ftp://example.com/file", "javascript:alert(1)", "https://"],
)
def test_validate_destination_url_rejects(url: str) -> None:
    with pytest.raises(ValidationError):
        validate_destination_url(url)


def test_validate_destination_url_rejects_oversized() -> None:
    url = "https://example.com/" + "a" * 2048
    with pytest.raises(ValidationError):
        validate_destination_url(url)


# ============================================================================
# CREATE
# ============================================================================


@pytest.mark.asyncio
async def test_create_with_generated_key(resolver: LinkResolver, settings) -> None:
    link = await resolver.create(LinkCreate(url="https://www.example.com"))
    assert len(link.key) == settings.KEY_LENGTH
    assert link.original_url == "https://www.example.com"
    assert link.expires_at is None


@pytest.mark.asyncio
async def test_create_populates_cache(resolver: LinkResolver, link_cache) -> None:
    link = await resolver.create(LinkCreate(url="https://www.example.com"))
    cached = await link_cache.get(link.key)
    assert cached is not None
    assert cached.id == link.id


@pytest.mark.asyncio
async def test_create_with_alias(resolver: LinkResolver) -> None:
    link = await resolver.create(LinkCreate(url="https://www.github.com", custom_alias="ghub"))
    assert link.key == "ghub"


@pytest.mark.asyncio
async def test_create_duplicate_alias_is_conflict(resolver: LinkResolver) -> None:
    await resolver.create(LinkCreate(url="https://www.github.com", custom_alias="taken"))
    with pytest.raises(ConflictError):
        await resolver.create(LinkCreate(url="https://www.example.com", custom_alias="taken"))


@pytest.mark.asyncio
async def test_alias_conflict_leaves_existing_link_unchanged(resolver: LinkResolver, link_cache) -> None:
    await resolver.create(LinkCreate(url="https://www.github.com", custom_alias="taken"))
    with pytest.raises(ConflictError):
        await resolver.create(LinkCreate(url="https://www.example.com", custom_alias="taken"))

    assert (await resolver.get_stats("taken")).original_url == "https://www.github.com"
    await link_cache.clear()
    assert (await resolver.resolve("taken")).original_url == "https://www.github.com"


@pytest.mark.parametrize("expires_in", [10**12, -(10**12), 10**15])
@pytest.mark.asyncio
async def test_create_out_of_range_expiry_is_validation_error(
    expires_in: int, mock_store, mock_cache, mock_logger, settings
) -> None:
    resolver = LinkResolver(mock_store, mock_cache, logger=mock_logger, settings=settings)
    with pytest.raises(ValidationError):
        await resolver.create(LinkCreate(url="https://www.example.com", expires_in=expires_in))
    mock_store.create.assert_not_awaited()


@pytest.mark.asyncio
async def test_invalid_url_with_taken_alias_is_validation_error(resolver: LinkResolver) -> None:
    await resolver.create(LinkCreate(url="https://www.github.com", custom_alias="taken"))
    with pytest.raises(ValidationError):
        await resolver.create(LinkCreate(url="ftp://example.com", custom_alias="taken"))


@pytest.mark.asyncio
async def test_invalid_url_rejected_before_store_access(mock_store, mock_cache, mock_logger, settings) -> None:
    resolver = LinkResolver(mock_store, mock_cache, logger=mock_logger, settings=settings)
    with pytest.raises(ValidationError):
        await resolver.create(LinkCreate(url="ftp://example.com/file"))
    mock_store.exists.assert_not_awaited()
    mock_store.create.assert_not_awaited()
    mock_cache.set.assert_not_awaited()


@pytest.mark.asyncio
async def test_create_with_generated_key_retries_insert_race(mock_store, mock_cache, mock_logger, settings) -> None:
    created = MagicMock(key="abc1234")
    mock_store.create = AsyncMock(side_effect=[ConflictError("taken"), created])
    resolver = LinkResolver(mock_store, mock_cache, logger=mock_logger, settings=settings)

    link = await resolver.create(LinkCreate(url="https://www.example.com"))
    assert link is created
    assert mock_store.create.await_count == 2


@pytest.mark.asyncio
async def test_create_with_generated_key_exhausted(mock_store, mock_cache, mock_logger, settings) -> None:
    mock_store.exists = AsyncMock(return_value=True)
    resolver = LinkResolver(mock_store, mock_cache, logger=mock_logger, settings=settings)
    with pytest.raises(KeyGenerationExhausted):
        await resolver.create(LinkCreate(url="https://www.example.com"))
    mock_store.create.assert_not_awaited()


@pytest.mark.asyncio
async def test_insert_races_share_the_attempt_budget(mock_store, mock_cache, mock_logger, settings) -> None:
    mock_store.create = AsyncMock(side_effect=ConflictError("taken"))
    resolver = LinkResolver(mock_store, mock_cache, logger=mock_logger, settings=settings)
    with pytest.raises(KeyGenerationExhausted):
        await resolver.create(LinkCreate(url="https://www.example.com"))
    assert mock_store.exists.await_count == settings.KEY_MAX_ATTEMPTS
    assert mock_store.create.await_count == settings.KEY_MAX_ATTEMPTS


@pytest.mark.asyncio
async def test_collisions_and_insert_races_share_the_attempt_budget(
    mock_store, mock_cache, mock_logger, settings
) -> None:
    mock_store.exists = AsyncMock(side_effect=[True, False] * settings.KEY_MAX_ATTEMPTS)
    mock_store.create = AsyncMock(side_effect=ConflictError("taken"))
    resolver = LinkResolver(mock_store, mock_cache, logger=mock_logger, settings=settings)
    with pytest.raises(KeyGenerationExhausted):
        await resolver.create(LinkCreate(url="https://www.example.com"))
    assert mock_store.exists.await_count == settings.KEY_MAX_ATTEMPTS
    assert mock_store.create.await_count == settings.KEY_MAX_ATTEMPTS // 2


# ============================================================================
# RESOLVE
# ============================================================================


@pytest.mark.asyncio
async def test_resolve_round_trip_survives_cache_clear(resolver: LinkResolver, link_cache) -> None:
    url = "https://www.example.com/some/path?x=1&y=2"
    link = await resolver.create(LinkCreate(url=url))

    assert (await resolver.resolve(link.key)).original_url == url
    await link_cache.clear()
    assert (await resolver.resolve(link.key)).original_url == url


@pytest.mark.asyncio
async def test_resolve_missing_key(resolver: LinkResolver) -> None:
    assert await resolver.resolve("missing") is None


@pytest.mark.asyncio
async def test_resolve_populates_cache_on_miss(resolver: LinkResolver, link_cache) -> None:
    link = await resolver.create(LinkCreate(url="https://www.example.com"))
    await link_cache.clear()

    await resolver.resolve(link.key)
    assert await link_cache.get(link.key) is not None


@pytest.mark.asyncio
async def test_resolve_expired_link_is_not_found(resolver: LinkResolver, store: LinkStore) -> None:
    link = await resolver.create(LinkCreate(url="https://www.example.com", expires_in=-1))
    assert link.is_expired()

    assert await resolver.resolve(link.key) is None
    # The row is left in place for the sweeper
    assert await store.exists(link.key)


@pytest.mark.asyncio
async def test_resolve_invalidates_expired_cache_entry(resolver: LinkResolver, link_cache) -> None:
    link = await resolver.create(LinkCreate(url="https://www.example.com", expires_in=3600))
    stale = await link_cache.get(link.key)
    stale.expires_at = utcnow() - datetime.timedelta(seconds=1)
    await link_cache.set(link.key, stale)

    # The store row is still live, so the stale entry is replaced by it
    resolved = await resolver.resolve(link.key)
    assert resolved is not None
    assert not (await link_cache.get(link.key)).is_expired()


@pytest.mark.asyncio
async def test_resolve_expired_cache_entry_without_row(mock_store, mock_cache, mock_logger, settings) -> None:
    cached = MagicMock()
    cached.is_expired.return_value = True
    mock_cache.get = AsyncMock(return_value=cached)
    resolver = LinkResolver(mock_store, mock_cache, logger=mock_logger, settings=settings)

    assert await resolver.resolve("abc1234") is None
    mock_cache.invalidate.assert_awaited_once_with("abc1234")
    mock_cache.set.assert_not_awaited()


@pytest.mark.asyncio
async def test_resolve_cache_hit_skips_store(mock_store, mock_cache, mock_logger, settings) -> None:
    cached = MagicMock()
    cached.is_expired.return_value = False
    mock_cache.get = AsyncMock(return_value=cached)
    resolver = LinkResolver(mock_store, mock_cache, logger=mock_logger, settings=settings)

    assert await resolver.resolve("abc1234") is cached
    mock_store.find_by_key.assert_not_awaited()


# ============================================================================
# CLICKS, STATS AND DELETE
# ============================================================================


@pytest.mark.asyncio
async def test_record_click_invalidates_cache(resolver: LinkResolver, link_cache) -> None:
    link = await resolver.create(LinkCreate(url="https://www.example.com"))
    assert await link_cache.get(link.key) is not None

    await resolver.record_click(link.key)
    assert await link_cache.get(link.key) is None


@pytest.mark.asyncio
async def test_resolve_sees_each_click_on_cached_key(resolver: LinkResolver, link_cache) -> None:
    link = await resolver.create(LinkCreate(url="https://www.example.com"))

    for expected in range(1, 4):
        assert await link_cache.get(link.key) is not None
        before = (await resolver.resolve(link.key)).click_count
        await resolver.record_click(link.key)
        after = (await resolver.resolve(link.key)).click_count
        assert after == before + 1 == expected


@pytest.mark.asyncio
async def test_get_stats_reads_store(resolver: LinkResolver, session_factory, link_cache, settings) -> None:
    link = await resolver.create(LinkCreate(url="https://www.example.com"))

    async with session_factory() as session:
        other = LinkResolver(LinkStore(session), link_cache, settings=settings)
        await other.record_click(link.key)
        await other.record_click(link.key)

    stats = await resolver.get_stats(link.key)
    assert stats.click_count == 2


@pytest.mark.asyncio
async def test_get_stats_expired_is_not_found(resolver: LinkResolver) -> None:
    link = await resolver.create(LinkCreate(url="https://www.example.com", expires_in=-60))
    assert await resolver.get_stats(link.key) is None


@pytest.mark.asyncio
async def test_delete_invalidates_cache(resolver: LinkResolver, link_cache) -> None:
    link = await resolver.create(LinkCreate(url="https://www.example.com"))
    assert await resolver.delete(link.key) is True
    assert await link_cache.get(link.key) is None
    assert await resolver.resolve(link.key) is None


@pytest.mark.asyncio
async def test_delete_missing_key(resolver: LinkResolver) -> None:
    assert await resolver.delete("missing") is False


@pytest.mark.asyncio
async def test_list_links_clamps_limit(resolver: LinkResolver, settings) -> None:
    for _ in range(3):
        await resolver.create(LinkCreate(url="https://www.example.com"))

    assert len(await resolver.list_links(limit=2)) == 2
    assert len(await resolver.list_links(limit=10_000)) == 3
    assert len(await resolver.list_links(limit=0)) == 1
