"""Mission engine -- the phase state machine for one mission per game post.

Phases::

    IDLE --start--> DESIGN --finalize_design / design vote--> LAUNCH
    LAUNCH --launch / manual_launch vote--> FLIGHT | RESULT(fail)
    FLIGHT --flight_action / flight vote--> RESULT
    RESULT --acknowledge--> RESULT (rewards distributed)
    ANY --reset--> IDLE

Every operation is a pure mutation applied through
:meth:`MissionStore.transact`; guards raise before any field changes.
Side effects (HUD/timer publishing, scheduling, ledger credits) run only
after the write has committed, and their failures are logged rather than
propagated.
"""
import logging
import random
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from odyssey.config import get_settings
from odyssey.game import constants as C
from odyssey.game import timers as T
from odyssey.game.clock import after_ms, clamp100, epoch_ms, generate_mission_id, utcnow
from odyssey.game.errors import (
    InvalidDesign,
    InvalidOption,
    MissionError,
    NoOpenVote,
    NotPermitted,
    PhaseMismatch,
    VoteAlreadyOpen,
)
from odyssey.game.ledger import Ledger
from odyssey.game.realtime import Realtime
from odyssey.game.scheduler import Scheduler
from odyssey.game.state import DesignMutation, Mission, Tally, VoteWindow, idle_mission
from odyssey.game.store import MissionStore
from odyssey.game.voting import tally_votes, voters_for_option

log = logging.getLogger(__name__)

# A scheduler callback arriving this early is still treated as due.
SCHEDULER_TOLERANCE = timedelta(seconds=1)


class _Skip(Exception):
    """Abort a transaction without writing; the caller returns the current record."""


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

def assert_phase(mission: Mission, expected: str) -> None:
    if mission.phase != expected:
        raise PhaseMismatch(expected, mission.phase)


def _apply_deltas(mission: Mission, deltas: dict[str, int]) -> None:
    for stat, delta in deltas.items():
        if stat == "science":
            mission.science_points_delta += delta
        else:
            setattr(mission, stat, clamp100(getattr(mission, stat) + delta))


def _cap_fuel(mission: Mission) -> None:
    mission.fuel = min(mission.fuel, clamp100(mission.fuel_max))


def resolve_launch(mission: Mission, roll: float, now: datetime) -> None:
    """Resolve LAUNCH with a draw in [0, 100): at or below ``success`` flies."""
    T.disarm(mission, C.TIMER_LAUNCH)
    if roll <= mission.success:
        mission.enter_phase(C.PHASE_FLIGHT, now)
        mission.fuel = clamp100(mission.fuel - C.LAUNCH_FUEL_COST)
        mission.outcome = None
        log.info("Launch SUCCESS for %s (roll=%.1f success=%d)", mission.mission_id, roll, mission.success)
    else:
        mission.enter_phase(C.PHASE_RESULT, now)
        mission.outcome = C.OUTCOME_FAIL
        mission.science_points_delta += C.LAUNCH_FAIL_SCIENCE
        log.info("Launch FAILED for %s (roll=%.1f success=%d)", mission.mission_id, roll, mission.success)


def resolve_flight(mission: Mission, action: str, now: datetime) -> None:
    """Apply *action* and settle the mission.

    FLIGHT is a single decision: whatever the action, the mission resolves
    straight to RESULT.
    """
    _apply_deltas(mission, C.FLIGHT_EFFECTS[action])
    if mission.fuel <= 0 or mission.hull <= 0:
        mission.outcome = C.OUTCOME_ABORT
        mission.science_points_delta += C.FLIGHT_ABORT_SCIENCE
    else:
        mission.outcome = C.OUTCOME_SUCCESS
        mission.science_points_delta += C.FLIGHT_SUCCESS_SCIENCE
    mission.enter_phase(C.PHASE_RESULT, now)
    log.info("Mission %s resolved: %s after %s", mission.mission_id, mission.outcome, action)


# ---------------------------------------------------------------------------
# MissionService
# ---------------------------------------------------------------------------

class MissionService:
    def __init__(
        self,
        post_id: str,
        store: MissionStore,
        timers: T.TimerCoordinator,
        ledger: Ledger,
        realtime: Realtime,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.post_id = post_id
        self.store = store
        self.timers = timers
        self.ledger = ledger
        self.realtime = realtime
        self._rng = rng or random.Random()
        self._clock = clock
        settings = get_settings()
        self.launch_countdown_ms = settings.LAUNCH_COUNTDOWN_SECONDS * 1000
        self.min_vote_seconds = settings.MIN_VOTE_SECONDS

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def snapshot(self) -> Mission:
        return await self.store.read(self.post_id)

    async def vote_state(self) -> tuple[VoteWindow | None, Tally | None]:
        mission = await self.store.read(self.post_id)
        window = mission.vote_window
        if window is None:
            return None, None
        return window, tally_votes(window)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, username: str, mission_type: str | None = None) -> Mission:
        """Open a fresh mission in DESIGN.  Only an idle or finished post may start."""
        now = self._clock()

        def mutate(m: Mission) -> Mission:
            if m.phase not in (C.PHASE_IDLE, C.PHASE_RESULT):
                raise PhaseMismatch(C.PHASE_IDLE, m.phase)
            fresh = Mission(
                mission_id=generate_mission_id(self._rng),
                phase=C.PHASE_DESIGN,
                fuel=C.START_FUEL,
                hull=C.START_HULL,
                crew=C.START_CREW,
                success=C.START_SUCCESS,
                mission_type=mission_type,
                started_at=now,
                phase_started_at=now,
            )
            fresh.add_participant(username)
            return fresh

        mission = await self.store.transact(self.post_id, mutate)
        await self._publish_hud(mission)
        log.info("Started mission %s on post %s for %s", mission.mission_id, self.post_id, username)
        return mission

    async def apply_design(self, username: str, mutation: DesignMutation) -> Mission:
        if mutation.is_empty():
            raise InvalidDesign("Design action has no recognised field")

        def mutate(m: Mission) -> Mission:
            assert_phase(m, C.PHASE_DESIGN)
            m.add_participant(username)

            if mutation.select_mission:
                m.mission_type = mutation.select_mission

            if mutation.set_payload:
                m.payload = mutation.set_payload
                _apply_deltas(m, C.PAYLOAD_EFFECTS[mutation.set_payload])

            if mutation.select_tank:
                previous = C.TANK_FUEL_BONUS.get(m.fuel_tank, 0) if m.fuel_tank else 0
                m.fuel_tank = mutation.select_tank
                _apply_deltas(m, {"fuel": C.TANK_FUEL_BONUS[mutation.select_tank] - previous})

            if mutation.add_fuel:
                _apply_deltas(m, {"fuel": mutation.add_fuel, "hull": -C.ADD_FUEL_HULL_PENALTY})

            if mutation.pick_engine:
                m.engine = mutation.pick_engine
                _apply_deltas(m, C.ENGINE_EFFECTS[mutation.pick_engine])

            _cap_fuel(m)
            return m

        mission = await self.store.transact(self.post_id, mutate)
        await self._publish_hud(mission)
        log.info(
            "Design action by %s on %s: %s",
            username, mission.mission_id, mutation.model_dump(exclude_none=True),
        )
        return mission

    def _advance_to_launch(self, m: Mission, now: datetime) -> None:
        m.enter_phase(C.PHASE_LAUNCH, now)
        T.arm(m, C.TIMER_LAUNCH, after_ms(now, self.launch_countdown_ms))

    async def finalize_design(self, username: str) -> Mission:
        """First caller wins; later callers observe :class:`PhaseMismatch`."""
        now = self._clock()

        def mutate(m: Mission) -> Mission:
            assert_phase(m, C.PHASE_DESIGN)
            m.add_participant(username)
            m.add_decisive(username)
            self._advance_to_launch(m, now)
            return m

        mission = await self.store.transact(self.post_id, mutate)
        await self.timers.announce(mission, C.TIMER_LAUNCH)
        await self._publish_hud(mission)
        log.info("Design finalized by %s on %s, launch countdown started", username, mission.mission_id)
        return mission

    async def launch(self, username: str | None = None, by_scheduler: bool = False) -> Mission:
        """Resolve the launch roll.

        A scheduler callback only fires when the LAUNCH countdown is running
        and due; a paused or re-armed countdown makes it a no-op.
        """
        now = self._clock()
        roll = self._rng.random() * 100

        def mutate(m: Mission) -> Mission:
            assert_phase(m, C.PHASE_LAUNCH)
            if by_scheduler and not self._launch_due(m, now):
                raise _Skip()
            if username:
                m.add_participant(username)
                m.add_decisive(username)
            resolve_launch(m, roll, now)
            return m

        try:
            mission = await self.store.transact(self.post_id, mutate)
        except _Skip:
            log.info("Scheduled launch for post %s is not due; skipping", self.post_id)
            return await self.store.read(self.post_id)

        job_id, _ = T.job_for(self.post_id, mission, C.TIMER_LAUNCH)
        await self.timers.announce_ended(mission, C.TIMER_LAUNCH, None if by_scheduler else job_id)
        await self._publish_hud(mission)
        return mission

    @staticmethod
    def _launch_due(m: Mission, now: datetime) -> bool:
        deadline = m.deadline(C.TIMER_LAUNCH)
        if deadline is None or m.status_of(C.TIMER_LAUNCH) != C.TIMER_RUNNING:
            return False
        return deadline <= now + SCHEDULER_TOLERANCE

    async def flight_action(self, username: str, action: str) -> Mission:
        if action not in C.FLIGHT_EFFECTS:
            raise InvalidDesign(f"Unknown flight action: {action}")
        now = self._clock()

        def mutate(m: Mission) -> Mission:
            assert_phase(m, C.PHASE_FLIGHT)
            m.add_participant(username)
            m.add_decisive(username)
            resolve_flight(m, action, now)
            return m

        mission = await self.store.transact(self.post_id, mutate)
        await self._publish_hud(mission)
        return mission

    async def acknowledge(self, username: str) -> Mission:
        """Distribute rewards for a finished mission.

        Ledger credits are idempotent per (mission, user, reason), so a
        repeated acknowledge re-sends them harmlessly.  The science pool has
        no such key and is only credited by the call that first flips
        ``rewards_distributed``.
        """
        first = False

        def mutate(m: Mission) -> Mission:
            nonlocal first
            assert_phase(m, C.PHASE_RESULT)
            first = not m.rewards_distributed
            m.rewards_distributed = True
            return m

        mission = await self.store.transact(self.post_id, mutate)

        if first and mission.science_points_delta > 0:
            await self._guarded(self.ledger.add_science_points(mission.science_points_delta))

        if mission.decisive_actions:
            await self._guarded(self.ledger.bulk_credit_points(
                mission.mission_id, mission.decisive_actions, C.REASON_ACTION_DECISIVE
            ))

        reason = C.OUTCOME_REASONS.get(mission.outcome, C.REASON_MISSION_ABORT)
        if mission.participants:
            await self._guarded(self.ledger.bulk_credit_points(
                mission.mission_id, mission.participants, reason
            ))

        log.info("Mission %s acknowledged by %s, rewards distributed", mission.mission_id, username)
        return mission

    async def reset(self, username: str, is_moderator: bool) -> Mission:
        """Operator escape hatch: back to IDLE from any phase."""
        if not is_moderator:
            raise NotPermitted("Only moderators can reset the mission")

        previous = await self.store.read(self.post_id)
        mission = await self.store.replace(self.post_id, idle_mission())

        await self.timers.cancel_all()
        for kind in C.TIMER_KINDS:
            if previous.deadline(kind) is not None:
                await self.timers.announce_ended(previous, kind)

        log.info("Mission on post %s reset to IDLE by %s", self.post_id, username)
        return mission

    # ------------------------------------------------------------------
    # Voting
    # ------------------------------------------------------------------

    async def open_vote(
        self, username: str, phase: str, options: list[str], duration_sec: int
    ) -> Mission:
        choices = list(dict.fromkeys(options))
        if not choices:
            raise InvalidOption("A vote needs at least one option")
        duration = max(self.min_vote_seconds, duration_sec)
        now = self._clock()

        def mutate(m: Mission) -> Mission:
            if m.vote_window is not None and m.vote_window.is_open:
                raise VoteAlreadyOpen("A vote is already open")
            if phase not in C.VOTE_PHASES or m.phase != phase:
                raise PhaseMismatch(phase, m.phase, f"Phase mismatch for opening vote. Current={m.phase}, requested={phase}")
            ends_at = now + timedelta(seconds=duration)
            m.vote_window = VoteWindow(
                id=f"vote:{m.mission_id}:{epoch_ms(now)}",
                phase=phase,
                options=choices,
                opened_at=now,
                ends_at=ends_at,
            )
            T.arm(m, C.TIMER_PHASE, ends_at)
            m.add_participant(username)
            return m

        mission = await self.store.transact(self.post_id, mutate)
        await self.timers.announce(mission, C.TIMER_PHASE)
        await self._publish_hud(mission)
        log.info(
            "Vote opened by %s on %s: phase=%s options=%s duration=%ds",
            username, mission.mission_id, phase, ",".join(choices), duration,
        )
        return mission

    async def cast_vote(self, username: str, option_id: str) -> tuple[Mission, Tally]:
        """Record (or change) *username*'s ballot and return the live tally."""
        now = self._clock()

        def mutate(m: Mission) -> Mission:
            window = m.vote_window
            if window is None or not window.is_open:
                raise NoOpenVote("No open vote")
            if option_id not in window.options:
                raise InvalidOption(f"Invalid option: {option_id}")
            window.ballots[username] = option_id
            window.option_first_vote_at.setdefault(option_id, now)
            m.add_participant(username)
            return m

        mission = await self.store.transact(self.post_id, mutate)
        tally = tally_votes(mission.vote_window)

        await self._guarded(self.ledger.credit_points(
            mission.mission_id, username, C.REASON_VOTE_PARTICIPATION
        ))
        log.info("Vote cast by %s on %s: option=%s tallies=%s", username, mission.mission_id, option_id, tally.per_option)
        return mission, tally

    async def close_vote(
        self, by_scheduler: bool = False, is_moderator: bool = False
    ) -> tuple[Mission, Tally]:
        """Close the open window and apply its winner.

        Closing an already-closed window returns its final tally and applies
        nothing.  A winner whose phase has already moved on is not applied.
        """
        if not by_scheduler and not is_moderator:
            raise NotPermitted("Only moderators or the scheduler can close a vote")

        now = self._clock()
        roll = self._rng.random() * 100
        effects: dict = {}

        def mutate(m: Mission) -> Mission:
            window = m.vote_window
            if window is None:
                raise NoOpenVote("No vote to close")
            if not window.is_open:
                raise _Skip()
            if by_scheduler and m.status_of(C.TIMER_PHASE) == C.TIMER_PAUSED:
                raise _Skip()

            effects["job_id"] = T.job_for(self.post_id, m, C.TIMER_PHASE)[0]
            window.status = "closed"
            window.ends_at = now
            T.disarm(m, C.TIMER_PHASE)

            tally = tally_votes(window)
            effects["winner"] = tally.winner
            if tally.winner is not None:
                for voter in voters_for_option(window, tally.winner):
                    m.add_decisive(voter)
                effects["applied"] = self._apply_winner(m, window.phase, tally.winner, roll, now)
            return m

        try:
            mission = await self.store.transact(self.post_id, mutate)
        except _Skip:
            mission = await self.store.read(self.post_id)
            return mission, tally_votes(mission.vote_window)

        window = mission.vote_window
        tally = tally_votes(window)
        winner = effects.get("winner")

        await self.timers.announce_ended(mission, C.TIMER_PHASE, None if by_scheduler else effects["job_id"])

        applied = effects.get("applied")
        if applied == C.PHASE_LAUNCH:
            await self.timers.announce(mission, C.TIMER_LAUNCH)
        elif applied is not None and window.phase == C.PHASE_LAUNCH:
            job_id, _ = T.job_for(self.post_id, mission, C.TIMER_LAUNCH)
            await self.timers.announce_ended(mission, C.TIMER_LAUNCH, job_id)

        if winner is not None:
            winners = voters_for_option(window, winner)
            if winners:
                await self._guarded(self.ledger.bulk_credit_points(
                    mission.mission_id, winners, C.REASON_ACTION_DECISIVE
                ))
                log.info("Credited %d decisive voters for option %s", len(winners), winner)

        await self._publish_hud(mission)
        log.info(
            "Vote closed on %s: winner=%s tallies=%s applied=%s",
            mission.mission_id, winner, tally.per_option, applied,
        )
        return mission, tally

    def _apply_winner(
        self, m: Mission, vote_phase: str, winner: str, roll: float, now: datetime
    ) -> str | None:
        """Apply the phase-specific effect of *winner*; returns the phase entered.

        A vote whose phase is no longer current is stale and changes nothing.
        """
        if m.phase != vote_phase:
            log.info("Vote for %s is stale (mission is in %s); not applied", vote_phase, m.phase)
            return None

        if vote_phase == C.PHASE_DESIGN:
            self._advance_to_launch(m, now)
        elif vote_phase == C.PHASE_LAUNCH:
            if winner != C.VOTE_MANUAL_LAUNCH:
                return None
            resolve_launch(m, roll, now)
        elif vote_phase == C.PHASE_FLIGHT:
            resolve_flight(m, C.VOTE_FLIGHT_ACTIONS.get(winner, C.FLIGHT_HOLD_COURSE), now)
        return m.phase

    # ------------------------------------------------------------------
    # Timers (moderator controls)
    # ------------------------------------------------------------------

    async def pause_timer(self, kind: str, remaining_ms: int | None, is_moderator: bool) -> Mission:
        if not is_moderator:
            raise NotPermitted("Only moderators can pause timers")
        return await self.timers.pause(kind, remaining_ms)

    async def resume_timer(self, kind: str, remaining_ms: int | None, is_moderator: bool) -> Mission:
        if not is_moderator:
            raise NotPermitted("Only moderators can resume timers")
        return await self.timers.resume(kind, remaining_ms)

    async def end_timer(self, kind: str, is_moderator: bool = False, by_scheduler: bool = False) -> Mission:
        if not by_scheduler and not is_moderator:
            raise NotPermitted("Only moderators can end timers")
        return await self.timers.end(kind)

    # ------------------------------------------------------------------
    # Side-effect helpers
    # ------------------------------------------------------------------

    async def _publish_hud(self, mission: Mission) -> None:
        await self.realtime.publish_hud(self.post_id, mission, full=True)

    async def _guarded(self, call):
        """Await a collaborator call; failures are logged and never undo the commit."""
        try:
            return await call
        except MissionError as exc:
            log.warning("Collaborator call failed for post %s: %s", self.post_id, exc.message)
        except Exception:
            log.exception("Collaborator call failed for post %s", self.post_id)
        return None


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------

def build_mission_service(
    post_id: str,
    session_factory: async_sessionmaker[AsyncSession],
    broker=None,
    rng: random.Random | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> MissionService:
    """Assemble a :class:`MissionService` with its store, timers, ledger and realtime."""
    if broker is None:
        from odyssey.ws.broker import broker as default_broker
        broker = default_broker
    store = MissionStore(session_factory)
    realtime = Realtime(broker, clock=clock)
    scheduler = Scheduler(session_factory)
    timers = T.TimerCoordinator(post_id, store, scheduler, realtime, clock=clock)
    ledger = Ledger(session_factory)
    return MissionService(post_id, store, timers, ledger, realtime, rng=rng, clock=clock)
