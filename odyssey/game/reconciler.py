"""Reconciler -- fires due timer jobs and catches anything the jobs missed.

A sweep has two passes:

1. Every due row in ``scheduled_jobs`` is dispatched to the mission
   operation it names, exactly as a user call would be, then marked
   processed.
2. Every stored mission is scanned for a running LAUNCH countdown or an
   open vote window whose deadline has passed, in case its job was lost.

The handlers guard on phase and timer status, so a job that arrives late,
twice, or after the mission moved on is harmless.  The background
:class:`SweepLoop` follows the same start/stop lifecycle as the app's
other loops and runs a sweep every ``SWEEP_INTERVAL`` seconds.
"""
import asyncio
import logging
import random
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from odyssey.game import constants as C
from odyssey.game.clock import utcnow
from odyssey.game.errors import NoOpenVote, PhaseMismatch
from odyssey.game.mission_engine import build_mission_service
from odyssey.game.scheduler import Scheduler
from odyssey.game.store import MissionStore

log = logging.getLogger(__name__)


@dataclass
class SweepResult:
    jobs_run: int = 0
    jobs_failed: int = 0
    launches_forced: int = 0
    votes_closed: int = 0

    def as_dict(self) -> dict:
        return {
            "jobs_run": self.jobs_run,
            "jobs_failed": self.jobs_failed,
            "launches_forced": self.launches_forced,
            "votes_closed": self.votes_closed,
        }


class Reconciler:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        broker=None,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._broker = broker
        self._rng = rng
        self._clock = clock
        self._scheduler = Scheduler(session_factory)
        self._store = MissionStore(session_factory)

    def _service(self, post_id: str, now: datetime):
        return build_mission_service(
            post_id, self._session_factory, self._broker, rng=self._rng, clock=lambda: now
        )

    async def sweep(self, now: datetime | None = None) -> SweepResult:
        now = now or self._clock()
        result = SweepResult()
        await self._run_due_jobs(now, result)
        await self._scan_missions(now, result)
        if result.jobs_run or result.launches_forced or result.votes_closed:
            log.info("Sweep at %s: %s", now.isoformat(), result.as_dict())
        return result

    # ------------------------------------------------------------------
    # Pass 1: due jobs
    # ------------------------------------------------------------------

    async def _run_due_jobs(self, now: datetime, result: SweepResult) -> None:
        for job in await self._scheduler.due_jobs(now):
            service = self._service(job.post_id, now)
            try:
                if job.action == C.JOB_LAUNCH:
                    await service.launch(by_scheduler=True)
                elif job.action == C.JOB_CLOSE_VOTE:
                    await service.close_vote(by_scheduler=True)
                elif job.action == C.JOB_END_TIMER:
                    await service.end_timer(job.timer_kind, by_scheduler=True)
                else:
                    log.warning("Unknown job action %r on %s", job.action, job.job_id)
            except (PhaseMismatch, NoOpenVote) as exc:
                log.info("Job %s already resolved: %s", job.job_id, exc.message)
            except Exception:
                result.jobs_failed += 1
                log.exception("Job %s failed; will retry next sweep", job.job_id)
                continue
            await self._scheduler.mark_processed(job.job_id, job.run_at)
            result.jobs_run += 1

    # ------------------------------------------------------------------
    # Pass 2: deadline scan
    # ------------------------------------------------------------------

    async def _scan_missions(self, now: datetime, result: SweepResult) -> None:
        for post_id in await self._store.list_post_ids():
            try:
                await self._reconcile_post(post_id, now, result)
            except (PhaseMismatch, NoOpenVote) as exc:
                log.info("Post %s already resolved: %s", post_id, exc.message)
            except Exception:
                log.exception("Failed to reconcile post %s", post_id)

    async def _reconcile_post(self, post_id: str, now: datetime, result: SweepResult) -> None:
        mission = await self._store.read(post_id)

        window = mission.vote_window
        if (
            window is not None
            and window.is_open
            and window.ends_at <= now
            and mission.status_of(C.TIMER_PHASE) != C.TIMER_PAUSED
        ):
            log.info("Closing overdue vote %s on post %s", window.id, post_id)
            mission, _ = await self._service(post_id, now).close_vote(by_scheduler=True)
            result.votes_closed += 1

        deadline = mission.deadline(C.TIMER_LAUNCH)
        if (
            mission.phase == C.PHASE_LAUNCH
            and deadline is not None
            and deadline <= now
            and mission.status_of(C.TIMER_LAUNCH) == C.TIMER_RUNNING
        ):
            log.info("Forcing overdue launch on post %s", post_id)
            await self._service(post_id, now).launch(by_scheduler=True)
            result.launches_forced += 1


class SweepLoop:
    """Background task that runs :meth:`Reconciler.sweep` periodically."""

    def __init__(self) -> None:
        self._running: bool = False
        self._task: asyncio.Task | None = None
        self.interval: float = 5.0
        self.reconciler: Reconciler | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, reconciler: Reconciler, interval: float) -> None:
        if self._running:
            return
        self.reconciler = reconciler
        self.interval = interval
        self._running = True
        self._task = asyncio.create_task(self._loop())
        log.info("Sweep loop started (every %.1fs)", interval)

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        log.info("Sweep loop stopped")

    async def _loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.interval)
            try:
                await self.reconciler.sweep()
            except asyncio.CancelledError:
                raise
            except Exception:
                log.exception("Unhandled error in reconciler sweep")


sweep_loop = SweepLoop()
