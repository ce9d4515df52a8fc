"""Shared request dependencies for the mission routes."""
import random
from datetime import datetime
from typing import Callable

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from odyssey.database import get_session_factory
from odyssey.game.clock import utcnow
from odyssey.game.mission_engine import MissionService, build_mission_service
from odyssey.ws.broker import Broker, get_broker


def get_rng() -> random.Random | None:
    """Launch rolls and mission ids; ``None`` uses the module-level generator."""
    return None


def get_clock() -> Callable[[], datetime]:
    return utcnow


def envelope(data, clock: Callable[[], datetime] = utcnow) -> dict:
    return {"ok": True, "data": data, "server_now": clock().isoformat()}


async def get_mission_service(
    post_id: str,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    broker: Broker = Depends(get_broker),
    rng: random.Random | None = Depends(get_rng),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> MissionService:
    return build_mission_service(post_id, session_factory, broker, rng=rng, clock=clock)
