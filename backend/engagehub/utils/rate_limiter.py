# /engagehub/utils/rate_limiter.py

from slowapi import Limiter
from engagehub.utils.request_utils import get_remote_address
from engagehub.config.settings import settings

# Shared limiter instance; routers import it from here to avoid circular imports.

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[f"{settings.rate_limit_per_minute}/minute"],
    enabled=settings.environment != "test",
)
