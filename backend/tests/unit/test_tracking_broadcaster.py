# backend/tests/unit/test_tracking_broadcaster.py

import json
import pytest
from unittest.mock import AsyncMock, MagicMock

from starlette.websockets import WebSocketState

from engagehub.services.tracking_broadcaster import TrackingBroadcaster


def _client(send_side_effect=None, state=WebSocketState.CONNECTED):
    client = MagicMock()
    client.client_state = state
    client.send_text = AsyncMock(side_effect=send_side_effect)
    client.close = AsyncMock()
    return client


def test_listeners_receive_payload_and_can_unsubscribe():
    broadcaster = TrackingBroadcaster()
    received = []
    unsubscribe = broadcaster.subscribe(received.append)

    broadcaster.publish({"event": "a"})
    unsubscribe()
    broadcaster.publish({"event": "b"})

    assert received == [{"event": "a"}]


def test_failing_listener_does_not_stop_the_others():
    broadcaster = TrackingBroadcaster()
    received = []

    def broken(payload):
        raise ValueError("boom")

    broadcaster.subscribe(broken)
    broadcaster.subscribe(received.append)

    assert broadcaster.publish({"event": "a"}) == 0
    assert received == [{"event": "a"}]


@pytest.mark.asyncio
async def test_publish_sends_json_to_every_connected_client():
    broadcaster = TrackingBroadcaster()
    first, second = _client(), _client()
    broadcaster.register_client(first)
    broadcaster.register_client(second)

    scheduled = broadcaster.publish({"event": "node_executed", "success": True})
    await broadcaster.drain()

    assert scheduled == 2
    for client in (first, second):
        client.send_text.assert_awaited_once()
        assert json.loads(client.send_text.await_args.args[0]) == {"event": "node_executed", "success": True}


@pytest.mark.asyncio
async def test_failed_client_is_dropped_and_others_still_receive():
    broadcaster = TrackingBroadcaster()
    dead, alive = _client(send_side_effect=RuntimeError("socket closed")), _client()
    broadcaster.register_client(dead)
    broadcaster.register_client(alive)

    broadcaster.publish({"event": "x"})
    await broadcaster.drain()

    alive.send_text.assert_awaited_once()
    assert broadcaster.client_count == 1


@pytest.mark.asyncio
async def test_disconnected_clients_are_skipped():
    broadcaster = TrackingBroadcaster()
    gone = _client(state=WebSocketState.DISCONNECTED)
    broadcaster.register_client(gone)

    assert broadcaster.publish({"event": "x"}) == 0
    gone.send_text.assert_not_awaited()
    assert broadcaster.client_count == 0


@pytest.mark.asyncio
async def test_close_closes_clients():
    broadcaster = TrackingBroadcaster()
    client = _client()
    broadcaster.register_client(client)

    await broadcaster.close()

    client.close.assert_awaited_once()
    assert broadcaster.client_count == 0
