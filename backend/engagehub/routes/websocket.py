# /engagehub/routes/websocket.py

import logging
from typing import Optional
from fastapi import APIRouter, HTTPException, Query, WebSocket, WebSocketDisconnect, status

from engagehub.services.tracking_broadcaster import tracking_broadcaster
from engagehub.utils.dependencies import authenticate_token

router = APIRouter(tags=["Tracking"])

logger = logging.getLogger(__name__)


@router.websocket("/ws/tracking")
async def tracking_stream(websocket: WebSocket, token: Optional[str] = Query(None)):
    """
    Live feed of tracking events for dashboards. Browsers cannot set an
    Authorization header on a WebSocket, so the bearer token comes in the
    query string.
    """
    if not token:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    try:
        identity = await authenticate_token(token, "admin", "superadmin")
    except HTTPException as e:
        logger.warning(f"Rejected tracking WebSocket: {e.detail}")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    tracking_broadcaster.register_client(websocket)
    logger.info(f"Tracking stream opened for {identity['role']} {identity['account_id']}")
    try:
        while True:
            # Client messages are only keep-alives
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        tracking_broadcaster.unregister_client(websocket)
