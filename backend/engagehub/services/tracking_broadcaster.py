# /engagehub/services/tracking_broadcaster.py

import asyncio
import json
import logging
from typing import Any, Callable, Dict, List, Set

from fastapi import WebSocket
from starlette.websockets import WebSocketState

from engagehub.utils.metrics import broadcast_deliveries_counter

# Publish-subscribe fan-out for tracking payloads. In-process listeners are
# called synchronously; every connected WebSocket client gets its own send
# task so a slow or dead client never holds up the publisher.

logger = logging.getLogger(__name__)

Listener = Callable[[Dict[str, Any]], None]


class TrackingBroadcaster:
    def __init__(self):
        self._listeners: List[Listener] = []
        self._clients: Set[WebSocket] = set()
        self._pending: Set[asyncio.Task] = set()

    # --- Subscriptions ---

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a local listener; returns a callable that removes it."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def register_client(self, websocket: WebSocket) -> None:
        self._clients.add(websocket)
        logger.info(f"Tracking WebSocket client connected ({len(self._clients)} open)")

    def unregister_client(self, websocket: WebSocket) -> None:
        self._clients.discard(websocket)
        logger.info(f"Tracking WebSocket client disconnected ({len(self._clients)} open)")

    @property
    def client_count(self) -> int:
        return len(self._clients)

    # --- Publishing ---

    def publish(self, payload: Dict[str, Any]) -> int:
        """
        Deliver a payload to every listener and schedule a send to every open
        client. Returns the number of clients a send was scheduled for.
        Never raises.
        """
        for listener in list(self._listeners):
            try:
                listener(payload)
            except Exception:
                logger.exception("Tracking listener raised; continuing with the rest")

        if not self._clients:
            return 0

        try:
            message = json.dumps(payload, default=str)
        except (TypeError, ValueError) as e:
            logger.error(f"Tracking payload is not serializable: {e}")
            return 0

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop; skipping WebSocket fan-out")
            return 0

        scheduled = 0
        for client in list(self._clients):
            if client.client_state != WebSocketState.CONNECTED:
                self._clients.discard(client)
                continue
            task = loop.create_task(self._send(client, message))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
            scheduled += 1
        return scheduled

    async def _send(self, client: WebSocket, message: str) -> None:
        try:
            await client.send_text(message)
            broadcast_deliveries_counter.labels(status="sent").inc()
        except Exception as e:
            broadcast_deliveries_counter.labels(status="failed").inc()
            logger.warning(f"Dropping tracking WebSocket client after send failure: {e}")
            self._clients.discard(client)

    async def drain(self) -> None:
        """Wait for in-flight sends; used on shutdown and in tests."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def close(self) -> None:
        await self.drain()
        for client in list(self._clients):
            try:
                await client.close()
            except Exception as e:
                logger.debug(f"Ignoring error while closing tracking client: {e}")
        self._clients.clear()


# Globally accessible instance, injected into the tracking service
tracking_broadcaster = TrackingBroadcaster()
