# /engagehub/utils/lifecycle.py

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI

from engagehub.utils.logging import setup_logging
from engagehub.services.db_service import db_service
from engagehub.services.cache_service import cache_service
from engagehub.services.tracking_broadcaster import tracking_broadcaster
from engagehub.services.whatsapp_service import whatsapp_service
from engagehub.services.exotel_service import exotel_service
from engagehub.services.surepass_service import surepass_service
from engagehub.config.settings import settings

# Startup creates indexes; shutdown closes the tracking stream and every
# outbound client before the Mongo connection goes away.

logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    setup_logging()

    logger.info(f"Application starting up ({settings.environment})...")

    await db_service.create_indexes()
    if not settings.gtm_tracking_enabled:
        logger.info("GTM tag sync disabled; tracking events are stored and broadcast only.")

    logger.info("Application startup complete. Ready to accept requests.")

    yield  # Application is now running

    logger.info("Application shutting down...")

    await tracking_broadcaster.close()
    await whatsapp_service.close()
    await exotel_service.close()
    await surepass_service.close()
    await cache_service.close()
    if db_service.client:
        db_service.client.close()
