# /engagehub/utils/circuit_breaker.py

import asyncio
import time
import logging
from enum import Enum
from typing import Any, Callable, Dict, Optional

from engagehub.utils.metrics import circuit_breaker_transitions

# Breakers in front of Mongo, Redis and the outbound adapters (WhatsApp,
# Exotel, Surepass). A breaker opens after `failure_threshold` consecutive
# failures, lets a trial call through after `timeout` seconds and closes again
# after `success_threshold` successful trial calls.

logger = logging.getLogger(__name__)


class CircuitOpenError(Exception):
    """Raised when a call is short-circuited because the breaker is open."""

    def __init__(self, service_name: str):
        super().__init__(f"Circuit breaker is OPEN for {service_name}")
        self.service_name = service_name


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


def _transition(service_name: str, state: CircuitState, failures: int = 0):
    circuit_breaker_transitions.labels(service=service_name, state=state.value).inc()
    if state == CircuitState.OPEN:
        logger.error(f"Circuit breaker for {service_name} OPENED after {failures} failures")
    else:
        logger.info(f"Circuit breaker for {service_name} is now {state.name}")


class CircuitBreaker:
    """In-process breaker, used directly or as the fallback when Redis is absent."""

    def __init__(self, service_name: str = "default", failure_threshold: int = 5, timeout: int = 60, success_threshold: int = 3):
        self.service_name = service_name
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.success_threshold = success_threshold
        self.failures = 0
        self.successes = 0
        self.opened_at: Optional[float] = None
        self.state = CircuitState.CLOSED
        self._lock = asyncio.Lock()

    async def _admit(self):
        async with self._lock:
            if self.state != CircuitState.OPEN:
                return
            if self.opened_at is not None and time.monotonic() - self.opened_at >= self.timeout:
                self.state = CircuitState.HALF_OPEN
                self.successes = 0
                _transition(self.service_name, self.state)
                return
        logger.warning(f"Call to {self.service_name} blocked by open circuit breaker")
        raise CircuitOpenError(self.service_name)

    async def call(self, func: Callable, *args: Any, **kwargs: Any) -> Any:
        await self._admit()
        try:
            result = await func(*args, **kwargs)
        except Exception:
            await self.record_failure()
            raise
        await self.record_success()
        return result

    async def record_success(self):
        async with self._lock:
            if self.state != CircuitState.HALF_OPEN:
                self.failures = 0
                return
            self.successes += 1
            if self.successes >= self.success_threshold:
                self.state = CircuitState.CLOSED
                self.failures = 0
                self.opened_at = None
                _transition(self.service_name, self.state)

    async def record_failure(self):
        async with self._lock:
            self.failures += 1
            if self.state == CircuitState.OPEN:
                return
            if self.state == CircuitState.HALF_OPEN or self.failures >= self.failure_threshold:
                self.state = CircuitState.OPEN
                self.opened_at = time.monotonic()
                _transition(self.service_name, self.state, self.failures)


class RedisCircuitBreaker:
    """
    Breaker whose state is shared by every gunicorn worker. The state lives
    in one Redis hash per service (`circuit:<service>`) holding the state,
    the failure and trial-success counters and the time it opened.

    Without a Redis client it delegates to an in-process CircuitBreaker.
    Redis errors never block a call: an unreadable breaker counts as closed.
    """

    def __init__(self, redis_client: Any, service_name: str, failure_threshold: int = 5, timeout: int = 60, success_threshold: int = 3):
        self.redis = redis_client
        self.service_name = service_name
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.success_threshold = success_threshold
        self.key = f"circuit:{service_name}"
        self._local = CircuitBreaker(service_name, failure_threshold, timeout, success_threshold)

    async def _read(self) -> Dict[str, str]:
        raw = await self.redis.hgetall(self.key) or {}
        return {
            (k.decode() if isinstance(k, bytes) else k): (v.decode() if isinstance(v, bytes) else v)
            for k, v in raw.items()
        }

    async def _write(self, **fields: Any):
        await self.redis.hset(self.key, mapping={k: str(v) for k, v in fields.items()})
        await self.redis.expire(self.key, self.timeout * 2)

    async def is_open(self) -> bool:
        try:
            stored = await self._read()
            if stored.get("state") != CircuitState.OPEN.value:
                return False
            if time.time() - float(stored.get("opened_at", 0)) >= self.timeout:
                await self._write(state=CircuitState.HALF_OPEN.value, successes=0)
                _transition(self.service_name, CircuitState.HALF_OPEN)
                return False
            return True
        except Exception as e:
            logger.error(f"Could not read circuit breaker state for {self.service_name}: {e}")
            return False

    async def call(self, func: Callable, *args: Any, **kwargs: Any) -> Any:
        if not self.redis:
            return await self._local.call(func, *args, **kwargs)

        if await self.is_open():
            logger.warning(f"Call to {self.service_name} blocked by open circuit breaker")
            raise CircuitOpenError(self.service_name)

        try:
            result = await func(*args, **kwargs)
        except Exception:
            await self.record_failure()
            raise
        await self.record_success()
        return result

    async def record_success(self):
        try:
            stored = await self._read()
            if stored.get("state") != CircuitState.HALF_OPEN.value:
                if stored.get("failures", "0") != "0":
                    await self._write(failures=0)
                return
            successes = await self.redis.hincrby(self.key, "successes", 1)
            if successes >= self.success_threshold:
                await self._write(state=CircuitState.CLOSED.value, failures=0, successes=0)
                _transition(self.service_name, CircuitState.CLOSED)
        except Exception as e:
            logger.error(f"Could not record success for {self.service_name} circuit breaker: {e}")

    async def record_failure(self):
        try:
            failures = await self.redis.hincrby(self.key, "failures", 1)
            await self.redis.expire(self.key, self.timeout * 2)
            stored = await self._read()
            state = stored.get("state", CircuitState.CLOSED.value)
            if state == CircuitState.OPEN.value:
                return
            if state == CircuitState.HALF_OPEN.value or failures >= self.failure_threshold:
                await self._write(state=CircuitState.OPEN.value, opened_at=time.time())
                _transition(self.service_name, CircuitState.OPEN, failures)
        except Exception as e:
            logger.error(f"Could not record failure for {self.service_name} circuit breaker: {e}")
