"""In-process pub/sub for realtime mission topics.

WebSocket clients subscribe per topic; :meth:`Broker.publish` fans a JSON
message out to every subscriber and drops sockets whose send fails.
"""
import logging

from fastapi import WebSocket

log = logging.getLogger(__name__)


class Broker:
    def __init__(self) -> None:
        self.subscribers: dict[str, set[WebSocket]] = {}

    def subscribe(self, topic: str, websocket: WebSocket) -> None:
        self.subscribers.setdefault(topic, set()).add(websocket)

    def unsubscribe(self, topic: str, websocket: WebSocket) -> None:
        sockets = self.subscribers.get(topic)
        if sockets is None:
            return
        sockets.discard(websocket)
        if not sockets:
            del self.subscribers[topic]

    def unsubscribe_all(self, websocket: WebSocket) -> None:
        for topic in list(self.subscribers):
            self.unsubscribe(topic, websocket)

    async def publish(self, topic: str, message: dict) -> int:
        """Send *message* to every subscriber of *topic*; returns how many got it."""
        delivered = 0
        for ws in list(self.subscribers.get(topic, ())):
            try:
                await ws.send_json(message)
                delivered += 1
            except Exception:
                log.info("Dropping dead subscriber on %s", topic)
                self.unsubscribe(topic, ws)
        return delivered


broker = Broker()


def get_broker() -> Broker:
    """FastAPI dependency for the process-wide broker."""
    return broker
