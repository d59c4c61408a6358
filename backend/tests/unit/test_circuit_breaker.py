# backend/tests/unit/test_circuit_breaker.py

import pytest
from unittest.mock import AsyncMock

from engagehub.utils.circuit_breaker import (
    CircuitBreaker,
    CircuitOpenError,
    CircuitState,
    RedisCircuitBreaker,
)


class FakeRedisHash:
    """Just enough of redis.asyncio for hash-backed breaker state."""

    def __init__(self):
        self.hashes = {}

    async def hgetall(self, key):
        return dict(self.hashes.get(key, {}))

    async def hset(self, key, mapping):
        self.hashes.setdefault(key, {}).update(mapping)

    async def hincrby(self, key, field, amount):
        bucket = self.hashes.setdefault(key, {})
        bucket[field] = str(int(bucket.get(field, "0")) + amount)
        return int(bucket[field])

    async def expire(self, key, seconds):
        return True


async def _fail():
    raise ConnectionError("down")


async def test_local_breaker_opens_after_threshold_and_blocks():
    breaker = CircuitBreaker("exotel", failure_threshold=2, timeout=60)
    for _ in range(2):
        with pytest.raises(ConnectionError):
            await breaker.call(_fail)

    assert breaker.state == CircuitState.OPEN
    trial = AsyncMock(return_value="ok")
    with pytest.raises(CircuitOpenError):
        await breaker.call(trial)
    trial.assert_not_awaited()


async def test_local_breaker_closes_after_successful_trial_calls():
    breaker = CircuitBreaker("surepass", failure_threshold=1, timeout=0, success_threshold=2)
    with pytest.raises(ConnectionError):
        await breaker.call(_fail)
    assert breaker.state == CircuitState.OPEN

    ok = AsyncMock(return_value="ok")
    assert await breaker.call(ok) == "ok"
    assert breaker.state == CircuitState.HALF_OPEN
    await breaker.call(ok)
    assert breaker.state == CircuitState.CLOSED
    assert breaker.failures == 0


async def test_failed_trial_call_reopens_local_breaker():
    breaker = CircuitBreaker("whatsapp", failure_threshold=3, timeout=0)
    for _ in range(3):
        with pytest.raises(ConnectionError):
            await breaker.call(_fail)

    with pytest.raises(ConnectionError):
        await breaker.call(_fail)
    assert breaker.state == CircuitState.OPEN


async def test_success_resets_failure_count():
    breaker = CircuitBreaker("database", failure_threshold=2)
    with pytest.raises(ConnectionError):
        await breaker.call(_fail)
    await breaker.call(AsyncMock(return_value=1))
    with pytest.raises(ConnectionError):
        await breaker.call(_fail)

    assert breaker.state == CircuitState.CLOSED


async def test_redis_breaker_without_client_uses_local_state():
    breaker = RedisCircuitBreaker(None, "exotel", failure_threshold=1)
    with pytest.raises(ConnectionError):
        await breaker.call(_fail)

    assert breaker._local.state == CircuitState.OPEN


async def test_redis_breaker_shares_open_state_between_instances():
    redis = FakeRedisHash()
    first = RedisCircuitBreaker(redis, "surepass", failure_threshold=2, timeout=60)
    second = RedisCircuitBreaker(redis, "surepass", failure_threshold=2, timeout=60)

    for _ in range(2):
        with pytest.raises(ConnectionError):
            await first.call(_fail)

    assert redis.hashes["circuit:surepass"]["state"] == "open"
    with pytest.raises(CircuitOpenError):
        await second.call(AsyncMock())


async def test_redis_breaker_half_opens_and_closes():
    redis = FakeRedisHash()
    breaker = RedisCircuitBreaker(redis, "whatsapp", failure_threshold=1, timeout=0, success_threshold=1)
    with pytest.raises(ConnectionError):
        await breaker.call(_fail)

    assert await breaker.call(AsyncMock(return_value="sent")) == "sent"
    assert redis.hashes["circuit:whatsapp"]["state"] == "closed"


async def test_unreadable_redis_state_does_not_block_calls():
    redis = AsyncMock()
    redis.hgetall.side_effect = ConnectionError("redis down")
    breaker = RedisCircuitBreaker(redis, "database")

    assert await breaker.call(AsyncMock(return_value=42)) == 42
