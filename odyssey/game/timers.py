"""Timer coordinator -- countdown lifecycle for LAUNCH, BALLOT and PHASE timers.

Each kind has its own deadline field on the mission record, and the
status (running/paused) is persisted next to it so a paused timer keeps
its remaining time across restarts.

The pure helpers (:func:`arm`, :func:`hold`, :func:`disarm`) are applied
inside a mission transaction.  :meth:`TimerCoordinator.announce` runs
after the commit: it registers the scheduled re-invocation for running
timers and publishes the transition with the server's current time.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable

from odyssey.game import constants as C
from odyssey.game.clock import after_ms, utcnow
from odyssey.game.errors import InvalidOption
from odyssey.game.realtime import Realtime
from odyssey.game.scheduler import Scheduler
from odyssey.game.state import Mission
from odyssey.game.store import MissionStore

log = logging.getLogger(__name__)


class _Unchanged(Exception):
    """Leave the record as it is; the caller re-announces the current state."""


# ---------------------------------------------------------------------------
# Pure record helpers
# ---------------------------------------------------------------------------

def arm(mission: Mission, kind: str, ends_at: datetime) -> None:
    mission.set_deadline(kind, ends_at)
    mission.timer_status[kind] = C.TIMER_RUNNING
    mission.timer_remaining_ms.pop(kind, None)
    _sync_vote_window(mission, kind, ends_at)


def hold(mission: Mission, kind: str, ends_at: datetime, remaining_ms: int) -> None:
    mission.set_deadline(kind, ends_at)
    mission.timer_status[kind] = C.TIMER_PAUSED
    mission.timer_remaining_ms[kind] = remaining_ms
    _sync_vote_window(mission, kind, ends_at)


def _sync_vote_window(mission: Mission, kind: str, ends_at: datetime) -> None:
    # An open vote window always closes with the PHASE timer backing it
    window = mission.vote_window
    if kind == C.TIMER_PHASE and window is not None and window.is_open:
        window.ends_at = ends_at


def disarm(mission: Mission, kind: str) -> bool:
    """Clear the deadline for *kind*; returns False when it was already clear."""
    was_set = mission.deadline(kind) is not None
    mission.set_deadline(kind, None)
    mission.timer_status.pop(kind, None)
    mission.timer_remaining_ms.pop(kind, None)
    return was_set


def job_for(post_id: str, mission: Mission, kind: str) -> tuple[str, str]:
    """Return ``(job_id, action)`` for the re-invocation backing *kind*.

    Job ids embed the post and mission so concurrent missions never collide.
    """
    if kind == C.TIMER_LAUNCH:
        return f"launch:{post_id}:{mission.mission_id}", C.JOB_LAUNCH
    if kind == C.TIMER_PHASE and mission.vote_window is not None and mission.vote_window.is_open:
        return f"voteclose:{post_id}:{mission.vote_window.id}", C.JOB_CLOSE_VOTE
    return f"timer:{kind.lower()}:{post_id}:{mission.mission_id}", C.JOB_END_TIMER


def _check_kind(kind: str) -> None:
    if kind not in C.TIMER_KINDS:
        raise InvalidOption(f"Unknown timer kind: {kind}")


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------

class TimerCoordinator:
    def __init__(
        self,
        post_id: str,
        store: MissionStore,
        scheduler: Scheduler,
        realtime: Realtime,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.post_id = post_id
        self._store = store
        self._scheduler = scheduler
        self._realtime = realtime
        self._clock = clock

    # ------------------------------------------------------------------
    # Post-commit side effects
    # ------------------------------------------------------------------

    async def announce(self, mission: Mission, kind: str) -> None:
        """Schedule and publish the committed state of timer *kind*."""
        status = mission.status_of(kind)
        ends_at = mission.deadline(kind)
        if status == C.TIMER_RUNNING:
            job_id, action = job_for(self.post_id, mission, kind)
            await self._schedule(job_id, ends_at, action, mission, kind)
        if ends_at is None:
            ends_at = self._clock()
        await self._realtime.publish_timer(
            self.post_id, mission.mission_id, kind, ends_at, status
        )

    async def announce_ended(self, mission: Mission, kind: str, job_id: str | None = None) -> None:
        if job_id:
            await self._cancel(job_id)
        await self._realtime.publish_timer(
            self.post_id, mission.mission_id, kind, self._clock(), C.TIMER_ENDED
        )

    async def _schedule(self, job_id, ends_at, action, mission, kind) -> None:
        try:
            await self._scheduler.schedule_at(
                job_id, ends_at, action,
                post_id=self.post_id,
                mission_id=mission.mission_id,
                timer_kind=kind,
            )
        except Exception:
            # The reconciler's deadline scan still catches the expiry.
            log.exception("Failed to schedule %s for post %s", job_id, self.post_id)

    async def _cancel(self, job_id: str) -> None:
        try:
            await self._scheduler.cancel(job_id)
        except Exception:
            log.exception("Failed to cancel %s for post %s", job_id, self.post_id)

    async def cancel_all(self) -> None:
        try:
            await self._scheduler.cancel_for_post(self.post_id)
        except Exception:
            log.exception("Failed to cancel scheduled jobs for post %s", self.post_id)

    # ------------------------------------------------------------------
    # Public lifecycle
    # ------------------------------------------------------------------

    async def start(self, kind: str, duration_ms: int) -> Mission:
        """Persist ``now + duration`` as the deadline, schedule it, publish ``running``."""
        _check_kind(kind)

        def mutate(m: Mission) -> Mission:
            arm(m, kind, after_ms(self._clock(), duration_ms))
            return m

        mission = await self._store.transact(self.post_id, mutate)
        await self.announce(mission, kind)
        log.info("Started %s timer for post %s (%d ms)", kind, self.post_id, duration_ms)
        return mission

    async def pause(self, kind: str, remaining_ms: int | None = None) -> Mission:
        """Re-anchor the deadline to ``now + remaining`` and mark it paused.

        When *remaining_ms* is omitted the time left on the running deadline
        is kept.  A timer with no deadline cannot be paused, and pausing an
        already paused timer without *remaining_ms* keeps its saved time.
        """
        _check_kind(kind)

        def mutate(m: Mission) -> Mission:
            now = self._clock()
            deadline = m.deadline(kind)
            if deadline is None:
                raise _Unchanged()
            left = remaining_ms
            if left is None:
                if m.status_of(kind) == C.TIMER_PAUSED:
                    raise _Unchanged()
                left = max(0, int((deadline - now) / timedelta(milliseconds=1)))
            hold(m, kind, after_ms(now, left), left)
            return m

        try:
            mission = await self._store.transact(self.post_id, mutate)
        except _Unchanged:
            mission = await self._store.read(self.post_id)
            await self.announce(mission, kind)
            log.info("%s timer for post %s is %s; pause ignored", kind, self.post_id, mission.status_of(kind))
            return mission

        await self.announce(mission, kind)
        log.info("Paused %s timer for post %s", kind, self.post_id)
        return mission

    async def resume(self, kind: str, remaining_ms: int | None = None) -> Mission:
        """Same as :meth:`start` but defaults to the remaining time saved at pause.

        Without *remaining_ms* only a paused timer is re-armed; a running or
        ended timer is left untouched and its current state re-announced.
        """
        _check_kind(kind)

        def mutate(m: Mission) -> Mission:
            left = remaining_ms
            if left is None:
                if m.status_of(kind) != C.TIMER_PAUSED:
                    raise _Unchanged()
                left = m.timer_remaining_ms.get(kind, 0)
            arm(m, kind, after_ms(self._clock(), left))
            return m

        try:
            mission = await self._store.transact(self.post_id, mutate)
        except _Unchanged:
            mission = await self._store.read(self.post_id)
            await self.announce(mission, kind)
            log.info("%s timer for post %s is %s; resume ignored", kind, self.post_id, mission.status_of(kind))
            return mission

        await self.announce(mission, kind)
        log.info("Resumed %s timer for post %s", kind, self.post_id)
        return mission

    async def end(self, kind: str) -> Mission:
        """Clear the deadline and publish ``ended``.  Safe to call repeatedly."""
        _check_kind(kind)
        current = await self._store.read(self.post_id)
        job_id, _ = job_for(self.post_id, current, kind)

        if current.deadline(kind) is None:
            mission = current
        else:
            def mutate(m: Mission) -> Mission:
                disarm(m, kind)
                return m

            mission = await self._store.transact(self.post_id, mutate)

        await self.announce_ended(mission, kind, job_id)
        log.info("Ended %s timer for post %s", kind, self.post_id)
        return mission
