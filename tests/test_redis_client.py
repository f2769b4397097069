"""Tests for the shared Redis connection used by the scope store."""

import pytest

from scope_gate import redis_client as redis_module
from scope_gate.config import Config
from scope_gate.errors import BackendUnavailable
from scope_gate.redis_client import check_redis_health, close_redis_client, get_redis_client


@pytest.fixture
async def unreachable_redis(monkeypatch):
    """Point the shared client at a closed port with fast retries."""
    monkeypatch.setattr(Config, "REDIS_URL", "redis://127.0.0.1:1")
    monkeypatch.setattr(Config, "REDIS_CONNECT_RETRIES", 2)
    monkeypatch.setattr(Config, "REDIS_CONNECT_RETRY_DELAY", 0.0)
    monkeypatch.setattr(Config, "REDIS_SOCKET_CONNECT_TIMEOUT", 0.2)
    await close_redis_client()
    yield
    await close_redis_client()


@pytest.mark.asyncio
async def test_exhausted_retries_raise_backend_unavailable(unreachable_redis):
    with pytest.raises(BackendUnavailable, match="scope store unreachable"):
        await get_redis_client()

    assert redis_module._redis_client is None
    assert redis_module._redis_pool is None


@pytest.mark.asyncio
async def test_health_check_reports_unreachable_store(unreachable_redis):
    healthy, message = await check_redis_health()

    assert healthy is False
    assert "unreachable" in message


def test_retry_delay_is_capped(monkeypatch):
    monkeypatch.setattr(Config, "REDIS_CONNECT_RETRY_DELAY", 0.5)
    monkeypatch.setattr(Config, "REDIS_CONNECT_RETRY_MAX_DELAY", 1.5)

    assert [redis_module._retry_delay(n) for n in (1, 2, 3, 4)] == [0.5, 1.0, 1.5, 1.5]


@pytest.mark.requires_redis
@pytest.mark.asyncio
async def test_health_check_counts_stored_scopes(redis_client, monkeypatch):
    monkeypatch.setattr(Config, "REDIS_URL", "redis://localhost:6379")
    await close_redis_client()
    await redis_client.sadd("test_health:scopes", "1", "2")

    try:
        healthy, message = await check_redis_health(prefix="test_health")
        assert await get_redis_client() is await get_redis_client()
    finally:
        await close_redis_client()

    assert healthy is True
    assert "2 permission scopes" in message
