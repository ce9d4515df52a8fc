from typing import Literal, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from odyssey.api.deps import envelope, get_clock, get_mission_service
from odyssey.auth.deps import Actor, get_actor
from odyssey.game.mission_engine import MissionService
from odyssey.game.state import DesignMutation

router = APIRouter(prefix="/api/mission/{post_id}", tags=["mission"])


class StartRequest(BaseModel):
    mission_type: Optional[Literal["LunarOrbit", "MarsFlyby", "AsteroidSurvey"]] = Field(
        None, alias="missionType"
    )

    model_config = {"populate_by_name": True}


class FlightActionRequest(BaseModel):
    action: str


class OpenVoteRequest(BaseModel):
    phase: str
    options: list[str]
    duration_sec: int = Field(60, alias="durationSec", ge=0)

    model_config = {"populate_by_name": True}


class VoteRequest(BaseModel):
    option_id: str = Field(alias="optionId")

    model_config = {"populate_by_name": True}


class TimerRequest(BaseModel):
    remaining_ms: Optional[int] = Field(None, alias="remainingMs", ge=0)

    model_config = {"populate_by_name": True}


def _mission(mission) -> dict:
    return mission.model_dump(mode="json")


# ---- lifecycle ----

@router.post("/start")
async def start_mission(
    req: StartRequest | None = None,
    actor: Actor = Depends(get_actor),
    service: MissionService = Depends(get_mission_service),
    clock=Depends(get_clock),
):
    mission_type = req.mission_type if req else None
    mission = await service.start(actor.username, mission_type)
    return envelope(_mission(mission), clock)


@router.post("/design")
async def apply_design(
    req: DesignMutation,
    actor: Actor = Depends(get_actor),
    service: MissionService = Depends(get_mission_service),
    clock=Depends(get_clock),
):
    mission = await service.apply_design(actor.username, req)
    return envelope(_mission(mission), clock)


@router.post("/finalize-design")
async def finalize_design(
    actor: Actor = Depends(get_actor),
    service: MissionService = Depends(get_mission_service),
    clock=Depends(get_clock),
):
    mission = await service.finalize_design(actor.username)
    return envelope(_mission(mission), clock)


@router.post("/launch")
async def launch(
    actor: Actor = Depends(get_actor),
    service: MissionService = Depends(get_mission_service),
    clock=Depends(get_clock),
):
    mission = await service.launch(actor.username)
    return envelope(_mission(mission), clock)


@router.post("/flight-action")
async def flight_action(
    req: FlightActionRequest,
    actor: Actor = Depends(get_actor),
    service: MissionService = Depends(get_mission_service),
    clock=Depends(get_clock),
):
    mission = await service.flight_action(actor.username, req.action)
    return envelope(_mission(mission), clock)


@router.post("/acknowledge")
async def acknowledge(
    actor: Actor = Depends(get_actor),
    service: MissionService = Depends(get_mission_service),
    clock=Depends(get_clock),
):
    mission = await service.acknowledge(actor.username)
    return envelope(_mission(mission), clock)


@router.post("/reset")
async def reset(
    actor: Actor = Depends(get_actor),
    service: MissionService = Depends(get_mission_service),
    clock=Depends(get_clock),
):
    mission = await service.reset(actor.username, actor.is_moderator)
    return envelope(_mission(mission), clock)


@router.get("/snapshot")
async def snapshot(
    service: MissionService = Depends(get_mission_service),
    clock=Depends(get_clock),
):
    mission = await service.snapshot()
    return envelope(_mission(mission), clock)


# ---- voting ----

@router.post("/open-vote")
async def open_vote(
    req: OpenVoteRequest,
    actor: Actor = Depends(get_actor),
    service: MissionService = Depends(get_mission_service),
    clock=Depends(get_clock),
):
    mission = await service.open_vote(actor.username, req.phase, req.options, req.duration_sec)
    return envelope(_mission(mission), clock)


@router.post("/vote")
async def cast_vote(
    req: VoteRequest,
    actor: Actor = Depends(get_actor),
    service: MissionService = Depends(get_mission_service),
    clock=Depends(get_clock),
):
    _, tally = await service.cast_vote(actor.username, req.option_id)
    return envelope({"tally": tally.model_dump()}, clock)


@router.post("/close-vote")
async def close_vote(
    actor: Actor = Depends(get_actor),
    service: MissionService = Depends(get_mission_service),
    clock=Depends(get_clock),
):
    mission, tally = await service.close_vote(is_moderator=actor.is_moderator)
    return envelope({"mission": _mission(mission), "tally": tally.model_dump()}, clock)


@router.get("/vote-state")
async def vote_state(
    service: MissionService = Depends(get_mission_service),
    clock=Depends(get_clock),
):
    window, tally = await service.vote_state()
    return envelope({
        "window": window.model_dump(mode="json") if window else None,
        "tally": tally.model_dump() if tally else None,
    }, clock)


# ---- timers ----

@router.post("/timer/{kind}/pause")
async def pause_timer(
    kind: str,
    req: TimerRequest | None = None,
    actor: Actor = Depends(get_actor),
    service: MissionService = Depends(get_mission_service),
    clock=Depends(get_clock),
):
    remaining = req.remaining_ms if req else None
    mission = await service.pause_timer(kind.upper(), remaining, actor.is_moderator)
    return envelope(_mission(mission), clock)


@router.post("/timer/{kind}/resume")
async def resume_timer(
    kind: str,
    req: TimerRequest | None = None,
    actor: Actor = Depends(get_actor),
    service: MissionService = Depends(get_mission_service),
    clock=Depends(get_clock),
):
    remaining = req.remaining_ms if req else None
    mission = await service.resume_timer(kind.upper(), remaining, actor.is_moderator)
    return envelope(_mission(mission), clock)


@router.post("/timer/{kind}/end")
async def end_timer(
    kind: str,
    actor: Actor = Depends(get_actor),
    service: MissionService = Depends(get_mission_service),
    clock=Depends(get_clock),
):
    mission = await service.end_timer(kind.upper(), is_moderator=actor.is_moderator)
    return envelope(_mission(mission), clock)
