"""Scheduled jobs and the reconciler sweep."""
from datetime import timedelta

import pytest

from odyssey.game import constants as C
from odyssey.game.reconciler import Reconciler

from conftest import POST_ID, T0, mission_in_design, mission_in_launch


@pytest.fixture
def reconciler(session_factory, broker, rng, clock):
    return Reconciler(session_factory, broker, rng=rng, clock=clock)


@pytest.mark.asyncio
async def test_schedule_upsert_and_due_jobs(scheduler):
    await scheduler.schedule_at("job-1", T0 + timedelta(seconds=10), C.JOB_LAUNCH, post_id=POST_ID)
    await scheduler.schedule_at("job-2", T0 + timedelta(seconds=5), C.JOB_END_TIMER, post_id=POST_ID,
                                timer_kind=C.TIMER_BALLOT)
    await scheduler.cancel("job-2")

    assert await scheduler.due_jobs(T0) == []
    due = await scheduler.due_jobs(T0 + timedelta(seconds=30))
    assert [j.job_id for j in due] == ["job-1"]

    # Re-scheduling the same id clears the cancelled flag
    await scheduler.schedule_at("job-2", T0 + timedelta(seconds=6), C.JOB_END_TIMER, post_id=POST_ID)
    due = await scheduler.due_jobs(T0 + timedelta(seconds=30))
    assert [j.job_id for j in due] == ["job-2", "job-1"]


@pytest.mark.asyncio
async def test_mark_processed_skips_rearmed_job(scheduler):
    await scheduler.schedule_at("job-1", T0, C.JOB_LAUNCH, post_id=POST_ID)
    (job,) = await scheduler.due_jobs(T0)
    await scheduler.schedule_at("job-1", T0 + timedelta(seconds=60), C.JOB_LAUNCH, post_id=POST_ID)
    await scheduler.mark_processed("job-1", job.run_at)
    assert (await scheduler.get("job-1")).is_processed is False

    await scheduler.mark_processed("job-1", T0 + timedelta(seconds=60))
    assert (await scheduler.get("job-1")).is_processed is True


@pytest.mark.asyncio
async def test_sweep_fires_launch_job_once(service, reconciler, clock, scheduler):
    m = await mission_in_launch(service)

    early = await reconciler.sweep()
    assert early.jobs_run == 0
    assert (await service.snapshot()).phase == C.PHASE_LAUNCH

    clock.advance(seconds=121)
    result = await reconciler.sweep()
    assert result.jobs_run == 1
    assert (await service.snapshot()).phase == C.PHASE_FLIGHT
    assert (await scheduler.get(f"launch:{POST_ID}:{m.mission_id}")).is_processed is True

    again = await reconciler.sweep()
    assert again.jobs_run == 0
    assert again.launches_forced == 0


@pytest.mark.asyncio
async def test_scheduled_launch_is_inert_while_paused(service, timers, reconciler, clock):
    await mission_in_launch(service)
    clock.advance(seconds=60)
    await timers.pause(C.TIMER_LAUNCH)

    clock.advance(seconds=120)
    await reconciler.sweep()
    mission = await service.snapshot()
    assert mission.phase == C.PHASE_LAUNCH
    assert mission.status_of(C.TIMER_LAUNCH) == C.TIMER_PAUSED

    await timers.resume(C.TIMER_LAUNCH)
    clock.advance(seconds=61)
    await reconciler.sweep()
    assert (await service.snapshot()).phase == C.PHASE_FLIGHT


@pytest.mark.asyncio
async def test_scheduled_launch_noop_when_not_due(service, clock):
    await mission_in_launch(service)
    m = await service.launch(by_scheduler=True)
    assert m.phase == C.PHASE_LAUNCH


@pytest.mark.asyncio
async def test_sweep_closes_overdue_vote(service, reconciler, clock):
    await mission_in_design(service)
    await service.open_vote("alice", C.PHASE_DESIGN, [C.VOTE_FINALIZE_DESIGN], 30)
    await service.cast_vote("bob", C.VOTE_FINALIZE_DESIGN)

    clock.advance(seconds=31)
    await reconciler.sweep()

    mission = await service.snapshot()
    assert not mission.vote_window.is_open
    assert mission.phase == C.PHASE_LAUNCH


@pytest.mark.asyncio
async def test_scan_forces_launch_when_job_was_lost(service, reconciler, clock, scheduler):
    m = await mission_in_launch(service)
    await scheduler.cancel(f"launch:{POST_ID}:{m.mission_id}")

    clock.advance(seconds=130)
    result = await reconciler.sweep()
    assert result.jobs_run == 0
    assert result.launches_forced == 1
    assert (await service.snapshot()).phase == C.PHASE_FLIGHT


@pytest.mark.asyncio
async def test_job_after_manual_resolution_is_harmless(service, reconciler, clock, scheduler):
    m = await mission_in_launch(service)
    await service.launch("alice")
    # Simulate at-least-once delivery of the original job
    await scheduler.schedule_at(
        f"launch:{POST_ID}:{m.mission_id}", m.launch_countdown_until, C.JOB_LAUNCH,
        post_id=POST_ID, mission_id=m.mission_id, timer_kind=C.TIMER_LAUNCH,
    )

    clock.advance(seconds=200)
    result = await reconciler.sweep()
    assert result.jobs_run == 1
    assert result.jobs_failed == 0
    assert (await service.snapshot()).phase == C.PHASE_FLIGHT


@pytest.mark.asyncio
async def test_end_timer_job(service, timers, reconciler, clock):
    await mission_in_design(service)
    await timers.start(C.TIMER_BALLOT, 10_000)
    clock.advance(seconds=11)
    await reconciler.sweep()
    assert (await service.snapshot()).choices_open_until is None
