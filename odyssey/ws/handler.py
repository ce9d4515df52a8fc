"""WebSocket endpoint streaming one post's HUD and timer topics."""
import json
import logging

from fastapi import WebSocket, WebSocketDisconnect

from odyssey.database import get_session_factory
from odyssey.game.clock import epoch_ms, utcnow
from odyssey.game.realtime import hud_topic, timer_topic
from odyssey.game.store import MissionStore
from odyssey.ws.broker import Broker

log = logging.getLogger(__name__)

MSG_HEARTBEAT = "heartbeat"
MSG_HEARTBEAT_ACK = "heartbeat_ack"
MSG_SNAPSHOT = "snapshot"
MSG_ERROR = "error"


async def websocket_handler(
    websocket: WebSocket,
    post_id: str,
    broker: Broker,
    session_factory=None,
):
    session_factory = session_factory or get_session_factory()
    await websocket.accept()

    topics = (hud_topic(post_id), timer_topic(post_id))
    for topic in topics:
        broker.subscribe(topic, websocket)

    # ---- snapshot first, so a reconnecting client never waits for a push ----
    mission = await MissionStore(session_factory).read(post_id)
    now = utcnow()
    await websocket.send_json({
        "t": MSG_SNAPSHOT,
        "mission_id": mission.mission_id,
        "ts": epoch_ms(now),
        "server_now": now.isoformat(),
        "mission": mission.model_dump(mode="json"),
    })

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                await websocket.send_json({"t": MSG_ERROR, "detail": "invalid JSON"})
                continue

            msg_type = message.get("type")
            if msg_type == MSG_HEARTBEAT:
                await websocket.send_json({"t": MSG_HEARTBEAT_ACK, "server_now": utcnow().isoformat()})
            else:
                await websocket.send_json({"t": MSG_ERROR, "detail": f"unknown message type: {msg_type}"})
    except WebSocketDisconnect:
        log.info("WebSocket for post %s disconnected", post_id)
    finally:
        broker.unsubscribe_all(websocket)
