"""Versioned mission record: compare-and-swap and retry behaviour."""
import asyncio

import pytest

from odyssey.game import constants as C
from odyssey.game.errors import PhaseMismatch, StaleWrite
from odyssey.game.state import Mission
from odyssey.game.store import MissionStore

from conftest import POST_ID


@pytest.mark.asyncio
async def test_read_missing_returns_idle(store):
    mission, version = await store.read_versioned(POST_ID)
    assert mission.phase == C.PHASE_IDLE
    assert mission.mission_id is None
    assert version == 0


@pytest.mark.asyncio
async def test_transact_persists_and_bumps_version(store):
    def mutate(m: Mission) -> Mission:
        m.phase = C.PHASE_DESIGN
        m.mission_id = "OP-000001"
        return m

    await store.transact(POST_ID, mutate)
    await store.transact(POST_ID, lambda m: m)

    mission, version = await store.read_versioned(POST_ID)
    assert mission.phase == C.PHASE_DESIGN
    assert version == 2
    assert await store.list_post_ids() == [POST_ID]


@pytest.mark.asyncio
async def test_guard_failure_writes_nothing(store):
    await store.transact(POST_ID, lambda m: m.model_copy(update={"fuel": 40}))

    def mutate(m: Mission) -> Mission:
        m.fuel = 99
        raise PhaseMismatch(C.PHASE_DESIGN, m.phase)

    with pytest.raises(PhaseMismatch):
        await store.transact(POST_ID, mutate)

    mission, version = await store.read_versioned(POST_ID)
    assert mission.fuel == 40
    assert version == 1


@pytest.mark.asyncio
async def test_compare_and_swap_rejects_stale_version(store):
    await store.compare_and_swap(POST_ID, 0, Mission(fuel=1))
    await store.compare_and_swap(POST_ID, 1, Mission(fuel=2))

    with pytest.raises(StaleWrite):
        await store.compare_and_swap(POST_ID, 1, Mission(fuel=3))
    with pytest.raises(StaleWrite):
        await store.compare_and_swap(POST_ID, 0, Mission(fuel=4))

    assert (await store.read(POST_ID)).fuel == 2


@pytest.mark.asyncio
async def test_concurrent_increments_all_land(store):
    await store.transact(POST_ID, lambda m: m)

    def bump(m: Mission) -> Mission:
        m.fuel += 1
        return m

    await asyncio.gather(*(store.transact(POST_ID, bump) for _ in range(4)))
    assert (await store.read(POST_ID)).fuel == 4


@pytest.mark.asyncio
async def test_retry_exhaustion_raises_stale_write(session_factory):
    store = MissionStore(session_factory, retries=2)
    await store.transact(POST_ID, lambda m: m)
    calls = 0

    class Interfering(MissionStore):
        async def compare_and_swap(self, post_id, expected_version, mission):
            # Someone else always writes first
            await store.transact(post_id, lambda m: m)
            return await super().compare_and_swap(post_id, expected_version, mission)

    racer = Interfering(session_factory, retries=2)

    def mutate(m: Mission) -> Mission:
        nonlocal calls
        calls += 1
        return m

    with pytest.raises(StaleWrite):
        await racer.transact(POST_ID, mutate)
    assert calls == 3


@pytest.mark.asyncio
async def test_replace_overwrites_document(store):
    await store.transact(POST_ID, lambda m: m.model_copy(update={"phase": C.PHASE_FLIGHT}))
    await store.replace(POST_ID, Mission())
    mission = await store.read(POST_ID)
    assert mission.phase == C.PHASE_IDLE
