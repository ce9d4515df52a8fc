"""Mission document shapes.

The whole mission lives in one JSON document per game post.  Mutations
work on a deep copy and the store writes the copy back with a version
check, so nothing here is ever edited in place on the stored value.
"""
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

from odyssey.game import constants as C

Phase = Literal["IDLE", "DESIGN", "LAUNCH", "FLIGHT", "RESULT"]
Outcome = Literal["success", "fail", "abort"]
TimerKind = Literal["LAUNCH", "BALLOT", "PHASE"]
TimerStatus = Literal["running", "paused", "ended"]


class VoteWindow(BaseModel):
    id: str
    phase: Phase
    options: list[str]
    opened_at: datetime
    ends_at: datetime
    status: Literal["open", "closed"] = "open"
    # user -> chosen option; latest write wins
    ballots: dict[str, str] = Field(default_factory=dict)
    # option -> first vote ever cast for it; never overwritten
    option_first_vote_at: dict[str, datetime] = Field(default_factory=dict)

    @property
    def is_open(self) -> bool:
        return self.status == "open"


class Tally(BaseModel):
    total: int
    per_option: dict[str, int]
    ranking: list[str]
    winner: Optional[str] = None


class Mission(BaseModel):
    mission_id: Optional[str] = None
    phase: Phase = C.PHASE_IDLE
    fuel: int = 0
    hull: int = C.START_HULL
    crew: int = C.START_CREW
    success: int = 0
    payload: Optional[Literal["Probe", "Hab", "Cargo"]] = None
    engine: Optional[Literal["Light", "Heavy", "Advanced"]] = None
    mission_type: Optional[str] = None
    fuel_tank: Optional[Literal["S", "M", "L", "XL"]] = None
    fuel_max: int = C.FUEL_MAX
    participants: list[str] = Field(default_factory=list)
    decisive_actions: list[str] = Field(default_factory=list)
    started_at: Optional[datetime] = None
    phase_started_at: Optional[datetime] = None

    # Timer deadlines, one per kind, with the status persisted beside them
    launch_countdown_until: Optional[datetime] = None
    choices_open_until: Optional[datetime] = None
    phase_gate_until: Optional[datetime] = None
    timer_status: dict[str, TimerStatus] = Field(default_factory=dict)
    # Time left when a timer was paused, so resume survives restarts
    timer_remaining_ms: dict[str, int] = Field(default_factory=dict)

    science_points_delta: int = 0
    outcome: Optional[Outcome] = None
    rewards_distributed: bool = False
    vote_window: Optional[VoteWindow] = None

    # -- helpers used by pure mutations ---------------------------------

    def add_participant(self, username: str) -> None:
        if username not in self.participants:
            self.participants.append(username)

    def add_decisive(self, username: str) -> None:
        if username not in self.decisive_actions:
            self.decisive_actions.append(username)

    def enter_phase(self, phase: str, now: datetime) -> None:
        self.phase = phase
        self.phase_started_at = now

    def deadline(self, kind: str) -> Optional[datetime]:
        return getattr(self, C.TIMER_FIELDS[kind])

    def set_deadline(self, kind: str, value: Optional[datetime]) -> None:
        setattr(self, C.TIMER_FIELDS[kind], value)

    def status_of(self, kind: str) -> str:
        if self.deadline(kind) is None:
            return C.TIMER_ENDED
        return self.timer_status.get(kind, C.TIMER_RUNNING)

    def hud(self) -> dict:
        return {
            "fuel": self.fuel,
            "hull": self.hull,
            "crew": self.crew,
            "success": self.success,
            "scienceDelta": self.science_points_delta,
            "phase": self.phase,
        }


def idle_mission() -> Mission:
    return Mission()


class DesignMutation(BaseModel):
    """One DESIGN-phase change; several fields may be combined in a call."""

    model_config = {"populate_by_name": True}

    set_payload: Optional[Literal["Probe", "Hab", "Cargo"]] = Field(None, alias="setPayload")
    add_fuel: Optional[int] = Field(None, alias="addFuel", ge=1, le=100)
    pick_engine: Optional[Literal["Light", "Heavy", "Advanced"]] = Field(None, alias="pickEngine")
    select_tank: Optional[Literal["S", "M", "L", "XL"]] = Field(None, alias="selectTank")
    select_mission: Optional[Literal["LunarOrbit", "MarsFlyby", "AsteroidSurvey"]] = Field(
        None, alias="selectMission"
    )

    def is_empty(self) -> bool:
        return not self.model_dump(exclude_none=True)
