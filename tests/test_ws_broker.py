"""Broker fan-out and the WebSocket handler."""
import json

import pytest
from fastapi import WebSocketDisconnect

from odyssey.game.realtime import hud_topic, timer_topic
from odyssey.ws.broker import Broker
from odyssey.ws.handler import websocket_handler

from conftest import POST_ID, mission_in_design


class FakeSocket:
    def __init__(self, incoming=(), broken=False):
        self.sent: list[dict] = []
        self.incoming = list(incoming)
        self.accepted = False
        self.broken = broken

    async def accept(self):
        self.accepted = True

    async def send_json(self, message):
        if self.broken:
            raise RuntimeError("socket closed")
        self.sent.append(message)

    async def receive_text(self):
        if not self.incoming:
            raise WebSocketDisconnect(code=1000)
        return self.incoming.pop(0)


@pytest.mark.asyncio
async def test_publish_fans_out_and_drops_dead_sockets():
    broker = Broker()
    good, dead = FakeSocket(), FakeSocket(broken=True)
    broker.subscribe("t", good)
    broker.subscribe("t", dead)

    delivered = await broker.publish("t", {"t": "hud"})
    assert delivered == 1
    assert good.sent == [{"t": "hud"}]
    assert broker.subscribers["t"] == {good}

    assert await broker.publish("other", {"t": "hud"}) == 0


@pytest.mark.asyncio
async def test_unsubscribe_all_removes_empty_topics():
    broker = Broker()
    ws = FakeSocket()
    broker.subscribe("a", ws)
    broker.subscribe("b", ws)
    broker.unsubscribe_all(ws)
    assert broker.subscribers == {}


@pytest.mark.asyncio
async def test_handler_sends_snapshot_and_heartbeat(session_factory, service):
    mission = await mission_in_design(service)
    broker = Broker()
    ws = FakeSocket(incoming=[json.dumps({"type": "heartbeat"}), "not json"])

    await websocket_handler(ws, POST_ID, broker, session_factory)

    assert ws.accepted
    snapshot, ack, error = ws.sent
    assert snapshot["t"] == "snapshot"
    assert snapshot["mission_id"] == mission.mission_id
    assert snapshot["mission"]["phase"] == "DESIGN"
    assert ack["t"] == "heartbeat_ack"
    assert error["t"] == "error"
    # Disconnect cleans up both topic subscriptions
    assert hud_topic(POST_ID) not in broker.subscribers
    assert timer_topic(POST_ID) not in broker.subscribers
