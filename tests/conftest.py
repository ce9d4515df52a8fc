from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from odyssey.models.base import Base
from odyssey.models import ledger as ledger_models, mission_record, scheduled_job  # noqa: F401
from odyssey.api.deps import get_clock, get_rng
from odyssey.auth.jwt import create_actor_token
from odyssey.database import get_session_factory
from odyssey.game.ledger import Ledger
from odyssey.game.mission_engine import build_mission_service
from odyssey.game.realtime import Realtime
from odyssey.game.scheduler import Scheduler
from odyssey.game.store import MissionStore
from odyssey.game.timers import TimerCoordinator
from odyssey.main import create_app
from odyssey.ws.broker import get_broker

POST_ID = "t3_post1"
T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


# -- Fakes ---------------------------------------------------------------------

class RecordingBroker:
    """Broker stand-in that keeps every published message."""

    def __init__(self):
        self.messages: list[tuple[str, dict]] = []
        self.fail = False

    async def publish(self, topic: str, message: dict) -> int:
        if self.fail:
            raise ConnectionError("broker down")
        self.messages.append((topic, message))
        return 1

    def on(self, topic: str) -> list[dict]:
        return [m for t, m in self.messages if t == topic]

    def timer_events(self, kind: str | None = None) -> list[dict]:
        events = [m["timer"] for _, m in self.messages if m["t"] == "timer"]
        if kind:
            events = [e for e in events if e["kind"] == kind]
        return events


class FixedRng:
    """Deterministic RNG: ``random()`` returns *rolls* in order, then repeats the last."""

    def __init__(self, *rolls: float):
        self.rolls = list(rolls) or [0.0]

    def random(self) -> float:
        if len(self.rolls) > 1:
            return self.rolls.pop(0)
        return self.rolls[0]

    def randrange(self, stop: int) -> int:
        return 4211 % stop


class FakeClock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


# -- Database ------------------------------------------------------------------

@pytest_asyncio.fixture
async def db_engine(tmp_path):
    # A file database, so concurrent sessions really race on the version column.
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'odyssey.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def broker():
    return RecordingBroker()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def rng():
    # 0.0 * 100 < any positive success, so launches succeed by default
    return FixedRng(0.0)


@pytest.fixture
def store(session_factory):
    return MissionStore(session_factory)


@pytest.fixture
def scheduler(session_factory):
    return Scheduler(session_factory)


@pytest.fixture
def ledger(session_factory):
    return Ledger(session_factory)


@pytest.fixture
def timers(store, scheduler, broker, clock):
    return TimerCoordinator(POST_ID, store, scheduler, Realtime(broker, clock=clock), clock=clock)


@pytest.fixture
def service(session_factory, broker, rng, clock):
    return build_mission_service(POST_ID, session_factory, broker, rng=rng, clock=clock)


# -- HTTP ----------------------------------------------------------------------

@pytest_asyncio.fixture
async def client(session_factory, broker, rng, clock):
    app = create_app()
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_broker] = lambda: broker
    app.dependency_overrides[get_rng] = lambda: rng
    app.dependency_overrides[get_clock] = lambda: clock

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


def auth(username: str, moderator: bool = False) -> dict:
    return {"Authorization": f"Bearer {create_actor_token(username, moderator)}"}


# -- Helpers -------------------------------------------------------------------

async def mission_in_design(service, username="alice"):
    return await service.start(username)


async def mission_in_launch(service, username="alice"):
    await service.start(username)
    return await service.finalize_design(username)


async def mission_in_flight(service, username="alice"):
    await mission_in_launch(service, username)
    return await service.launch(username)
