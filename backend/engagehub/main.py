# /engagehub/main.py

import os
import time
import uuid
import asyncio
import structlog
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from engagehub.config.settings import settings
from engagehub.utils.lifecycle import lifespan
from engagehub.utils.errors import register_exception_handlers
from engagehub.utils.metrics import response_time_histogram
from engagehub.utils.rate_limiter import limiter
from engagehub.routes import (
    activity_logs, agents, auth, calls, gtm, notifications, product_catalogs, products,
    public, superadmin, tracking, users, verification, webhooks, websocket,
    whatsapp_templates, workflows,
)

log = structlog.get_logger(__name__)

app = FastAPI(
    title="EngageHub Unified Tracking API",
    version="1.0.0",
    description="WhatsApp workflows, KYC verification and calling with unified event tracking",
    lifespan=lifespan,
    openapi_url=f"/api/{settings.api_version}/openapi.json" if settings.environment != "production" else None,
    docs_url=f"/api/{settings.api_version}/docs" if settings.environment != "production" else None,
    redoc_url=f"/api/{settings.api_version}/redoc" if settings.environment != "production" else None,
)

# --- Rate Limiting ---
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# --- Errors ---
register_exception_handlers(app)

# --- Middleware ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

if settings.environment != "test":
    allowed_hosts = [host.strip() for host in settings.allowed_hosts.split(",") if host.strip()]
    if allowed_hosts:
        app.add_middleware(TrustedHostMiddleware, allowed_hosts=allowed_hosts)

app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(SlowAPIMiddleware)

@app.middleware("http")
async def timeout_middleware(request: Request, call_next):
    try:
        return await asyncio.wait_for(call_next(request), timeout=settings.request_timeout_seconds)
    except asyncio.TimeoutError:
        log.warning("request_timed_out", timeout=settings.request_timeout_seconds)
        return JSONResponse(
            {"success": False, "message": "Request timed out", "version": settings.api_version},
            status_code=504,
        )

@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    """Tag every log line of a request with its id, and time the matched route."""
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id, method=request.method, path=request.url.path)

    started = time.perf_counter()
    response = await call_next(request)
    elapsed = time.perf_counter() - started

    route = request.scope.get("route")
    response_time_histogram.labels(endpoint=getattr(route, "path", "unmatched")).observe(elapsed)
    response.headers["X-Request-ID"] = request_id
    response.headers["X-Process-Time"] = f"{elapsed:.4f}"
    return response

# --- API Routers ---
api_prefix = f"/api/{settings.api_version}"

app.include_router(public.router)
app.include_router(websocket.router)
for module in (
    auth, superadmin, agents, users, products, product_catalogs, whatsapp_templates,
    workflows, calls, verification, notifications, activity_logs, tracking, gtm, webhooks,
):
    app.include_router(module.router, prefix=api_prefix)

# --- Main Entry Point for Uvicorn (for local development) ---
if __name__ == "__main__":
    port = int(os.getenv("PORT", "8000"))
    host = os.getenv("HOST", "127.0.0.1")

    uvicorn.run(
        "engagehub.main:app",
        host=host,
        port=port,
        reload=True if settings.environment == "development" else False,
        workers=settings.workers if settings.environment == "production" else 1
    )
