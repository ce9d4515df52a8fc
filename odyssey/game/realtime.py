"""Realtime publishing of HUD and timer state.

Publishing happens strictly after the mission write commits.  A failed
publish is logged and dropped: the stored mission stays authoritative and
clients recover by polling the snapshot endpoint.
"""
import logging
from datetime import datetime
from typing import Callable

from odyssey.game.clock import epoch_ms, utcnow
from odyssey.game.state import Mission

log = logging.getLogger(__name__)


def hud_topic(post_id: str) -> str:
    return f"rt:mission:{post_id}:hud"


def timer_topic(post_id: str) -> str:
    return f"rt:mission:{post_id}:timer"


class Realtime:
    def __init__(self, broker, clock: Callable[[], datetime] = utcnow) -> None:
        self._broker = broker
        self._clock = clock

    async def publish_hud(self, post_id: str, mission: Mission, full: bool = True) -> bool:
        if not mission.mission_id:
            return False
        message = {
            "t": "hud",
            "mission_id": mission.mission_id,
            "ts": epoch_ms(self._clock()),
            "hud": mission.hud(),
            "full": full,
        }
        return await self._send(hud_topic(post_id), message)

    async def publish_timer(
        self,
        post_id: str,
        mission_id: str | None,
        kind: str,
        ends_at: datetime,
        status: str,
    ) -> bool:
        """Publish a timer transition.

        ``now`` travels with the deadline so subscribers can compute their
        clock drift (``server_now - local_now``) and count down smoothly
        between pushes.
        """
        now = self._clock()
        message = {
            "t": "timer",
            "mission_id": mission_id,
            "ts": epoch_ms(now),
            "timer": {
                "kind": kind,
                "ends_at": ends_at.isoformat(),
                "now": now.isoformat(),
                "status": status,
            },
        }
        return await self._send(timer_topic(post_id), message)

    async def _send(self, topic: str, message: dict) -> bool:
        try:
            await self._broker.publish(topic, message)
        except Exception:
            log.warning("Failed to publish %s message on %s", message["t"], topic, exc_info=True)
            return False
        log.debug("Published %s message on %s", message["t"], topic)
        return True
