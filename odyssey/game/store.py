"""Persisted mission record -- versioned document behind compare-and-swap.

Every mutation goes through :meth:`MissionStore.transact`:

1. read the current document and its version,
2. apply a pure ``mutate(mission) -> mission`` to a deep copy,
3. write it back only if the version is unchanged.

A lost race is retried with a fresh read.  Each attempt runs in its own
short session that is committed before ``transact`` returns, so callers
can fire side effects knowing the write is durable.
"""
import logging
from typing import Callable

from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from odyssey.config import get_settings
from odyssey.game.errors import StaleWrite
from odyssey.game.state import Mission, idle_mission
from odyssey.models.mission_record import MissionRecord

log = logging.getLogger(__name__)

Mutation = Callable[[Mission], Mission]


class MissionStore:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        retries: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._retries = retries if retries is not None else get_settings().STALE_WRITE_RETRIES

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def read(self, post_id: str) -> Mission:
        mission, _ = await self.read_versioned(post_id)
        return mission

    async def read_versioned(self, post_id: str) -> tuple[Mission, int]:
        """Return the mission and its version (0 when nothing is stored yet)."""
        async with self._session_factory() as db:
            row = (
                await db.execute(
                    select(MissionRecord.version, MissionRecord.data).where(
                        MissionRecord.post_id == post_id
                    )
                )
            ).one_or_none()
        if row is None:
            return idle_mission(), 0
        return Mission.model_validate(row.data), row.version

    async def list_post_ids(self) -> list[str]:
        async with self._session_factory() as db:
            result = await db.execute(select(MissionRecord.post_id))
            return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def compare_and_swap(
        self, post_id: str, expected_version: int, mission: Mission
    ) -> int:
        """Write *mission* if the stored version is still *expected_version*.

        Returns the new version; raises :class:`StaleWrite` otherwise.
        """
        data = mission.model_dump(mode="json")
        new_version = expected_version + 1
        async with self._session_factory() as db:
            if expected_version == 0:
                try:
                    await db.execute(
                        insert(MissionRecord).values(
                            post_id=post_id, version=new_version, data=data
                        )
                    )
                    await db.commit()
                except IntegrityError:
                    await db.rollback()
                    raise StaleWrite(f"Mission record for {post_id} was created concurrently")
                return new_version

            result = await db.execute(
                update(MissionRecord)
                .where(
                    MissionRecord.post_id == post_id,
                    MissionRecord.version == expected_version,
                )
                .values(version=new_version, data=data)
            )
            if result.rowcount != 1:
                await db.rollback()
                raise StaleWrite(
                    f"Mission record for {post_id} changed since version {expected_version}"
                )
            await db.commit()
        return new_version

    async def transact(self, post_id: str, mutate: Mutation) -> Mission:
        """Apply *mutate* atomically, retrying on concurrent modification.

        Exceptions raised by *mutate* (guard failures) propagate untouched and
        nothing is written.
        """
        attempts = self._retries + 1
        for attempt in range(1, attempts + 1):
            current, version = await self.read_versioned(post_id)
            nxt = mutate(current.model_copy(deep=True))
            try:
                await self.compare_and_swap(post_id, version, nxt)
                return nxt
            except StaleWrite:
                log.info(
                    "Stale write on mission post=%s version=%d (attempt %d/%d)",
                    post_id, version, attempt, attempts,
                )
        raise StaleWrite(f"Gave up writing mission for {post_id} after {attempts} attempts")

    async def replace(self, post_id: str, mission: Mission) -> Mission:
        """Overwrite the document wholesale (still version-checked)."""
        return await self.transact(post_id, lambda _current: mission.model_copy(deep=True))
