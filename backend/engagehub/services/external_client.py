# /engagehub/services/external_client.py

import logging
import time
from typing import Any, Optional, TypedDict

import httpx
import tenacity

from engagehub.services.cache_service import cache_service
from engagehub.utils.circuit_breaker import RedisCircuitBreaker
from engagehub.utils.metrics import external_api_counter, external_api_latency

# Base for the REST adapters (Exotel, Surepass): retries transport errors,
# shares a circuit breaker per service and reports every call as an
# ApiResult instead of raising, so callers can track failures as events.

logger = logging.getLogger(__name__)


class ApiResult(TypedDict):
    success: bool
    data: Any
    error: Optional[str]
    status_code: Optional[int]
    response_time_ms: float


class ExternalApiClient:
    service_name = "external"

    def __init__(self, base_url: str, timeout: float = 20.0, **client_kwargs: Any):
        self.base_url = base_url.rstrip("/")
        self.http_client = httpx.AsyncClient(timeout=timeout, **client_kwargs)
        self.circuit_breaker = RedisCircuitBreaker(cache_service.redis, self.service_name)

    @tenacity.retry(
        retry=tenacity.retry_if_exception_type((httpx.RequestError, httpx.TimeoutException)),
        stop=tenacity.stop_after_attempt(3),
        wait=tenacity.wait_exponential(multiplier=2, min=1, max=10),
        before_sleep=tenacity.before_sleep_log(logger, logging.WARNING)
    )
    async def resilient_api_call(self, func, *args, **kwargs):
        return await self.circuit_breaker.call(func, *args, **kwargs)

    @staticmethod
    def _error_from_body(body: Any, fallback: str) -> str:
        if isinstance(body, dict):
            for key in ("message", "error", "RestException"):
                value = body.get(key)
                if isinstance(value, dict):
                    value = value.get("Message") or value.get("message")
                if value:
                    return str(value)
        return fallback

    async def request(self, method: str, path: str, **kwargs: Any) -> ApiResult:
        url = f"{self.base_url}{path}"
        start = time.perf_counter()
        try:
            response = await self.resilient_api_call(self.http_client.request, method, url, **kwargs)
        except Exception as e:
            elapsed = (time.perf_counter() - start) * 1000
            external_api_counter.labels(service=self.service_name, status="error").inc()
            logger.error(f"{self.service_name} {method} {path} failed: {e}")
            return ApiResult(success=False, data=None, error=str(e), status_code=None, response_time_ms=elapsed)

        elapsed = (time.perf_counter() - start) * 1000
        external_api_latency.labels(service=self.service_name).observe(elapsed / 1000)
        try:
            body: Any = response.json()
        except ValueError:
            body = response.text

        if response.is_success:
            external_api_counter.labels(service=self.service_name, status="success").inc()
            return ApiResult(success=True, data=body, error=None, status_code=response.status_code, response_time_ms=elapsed)

        external_api_counter.labels(service=self.service_name, status="error").inc()
        error = self._error_from_body(body, f"HTTP {response.status_code}")
        logger.warning(f"{self.service_name} {method} {path} returned {response.status_code}: {error}")
        return ApiResult(success=False, data=body, error=error, status_code=response.status_code, response_time_ms=elapsed)

    async def close(self):
        await self.http_client.aclose()
