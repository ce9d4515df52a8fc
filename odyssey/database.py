from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from odyssey.config import settings

engine = create_async_engine(settings.DATABASE_URL, echo=False)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """FastAPI dependency returning the session factory used by the game services.

    Mission writes open one short session per compare-and-swap attempt, so the
    services take the factory rather than a request-scoped session.
    """
    return async_session


async def init_db():
    """Create all tables. For development use only."""
    from odyssey.models.base import Base
    # Import all models so they register with Base.metadata
    from odyssey.models import mission_record, scheduled_job, ledger  # noqa: F401
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
