from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from odyssey.api.deps import envelope, get_clock, get_rng
from odyssey.database import get_session_factory
from odyssey.game.reconciler import Reconciler
from odyssey.ws.broker import Broker, get_broker

router = APIRouter(prefix="/internal/scheduler", tags=["internal"])


@router.post("/process-timers")
async def process_timers(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    broker: Broker = Depends(get_broker),
    rng=Depends(get_rng),
    clock=Depends(get_clock),
):
    """Run one reconciler sweep now (for an external cron or manual recovery)."""
    reconciler = Reconciler(session_factory, broker, rng=rng, clock=clock)
    result = await reconciler.sweep()
    return envelope(result.as_dict(), clock)
