from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from odyssey.api.deps import envelope, get_clock
from odyssey.database import get_session_factory
from odyssey.game.ledger import Ledger

router = APIRouter(prefix="/api/leaderboard", tags=["leaderboard"])


@router.get("")
async def leaderboard(
    limit: int = Query(10, ge=1, le=100),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    clock=Depends(get_clock),
):
    ledger = Ledger(session_factory)
    return envelope({
        "season": ledger.season,
        "entries": await ledger.top(limit),
        "science_points": await ledger.science_points(),
    }, clock)
