"""Point ledger collaborator.

Credits are idempotent per ``(season, mission_id, username, reason)``: the
unique constraint on ``ledger_credits`` is the only thing that prevents
double crediting, so callers can retry freely.
"""
import logging
from dataclasses import dataclass, field

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from odyssey.game import constants as C
from odyssey.game.clock import utcnow
from odyssey.game.errors import CollaboratorUnavailable
from odyssey.models.ledger import LeaderboardTotal, LedgerCredit, SciencePool

log = logging.getLogger(__name__)

ALREADY_APPLIED = "Credit already applied"


@dataclass
class CreditResult:
    ok: bool
    new_total: int
    message: str = ""


@dataclass
class BulkCreditResult:
    ok: bool
    updated: int = 0
    skipped: list[str] = field(default_factory=list)


class Ledger:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        season: int = 1,
        point_rules: dict[str, int] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.season = season
        self.point_rules = dict(point_rules or C.POINT_RULES)

    async def credit_points(
        self,
        mission_id: str,
        username: str,
        reason: str,
        points: int | None = None,
    ) -> CreditResult:
        value = points if points is not None else self.point_rules[reason]
        try:
            async with self._session_factory() as db:
                db.add(LedgerCredit(
                    season=self.season,
                    mission_id=mission_id,
                    username=username,
                    reason=reason,
                    points=value,
                    credited_at=utcnow(),
                ))
                try:
                    await db.flush()
                except IntegrityError:
                    await db.rollback()
                    return CreditResult(
                        ok=True,
                        new_total=await self._total(db, username),
                        message=ALREADY_APPLIED,
                    )

                result = await db.execute(
                    update(LeaderboardTotal)
                    .where(
                        LeaderboardTotal.season == self.season,
                        LeaderboardTotal.username == username,
                    )
                    .values(points=LeaderboardTotal.points + value)
                )
                if result.rowcount == 0:
                    db.add(LeaderboardTotal(season=self.season, username=username, points=value))
                await db.commit()
                new_total = await self._total(db, username)
        except SQLAlchemyError as exc:
            raise CollaboratorUnavailable(f"Ledger unavailable: {exc}") from exc

        log.info(
            "Credited %d points to %s for %s on mission %s (total=%d)",
            value, username, reason, mission_id, new_total,
        )
        return CreditResult(ok=True, new_total=new_total, message=f"Credited {value} points for {reason}")

    async def bulk_credit_points(
        self,
        mission_id: str,
        usernames: list[str],
        reason: str,
        points: int | None = None,
    ) -> BulkCreditResult:
        updated = 0
        skipped: list[str] = []
        for username in usernames:
            result = await self.credit_points(mission_id, username, reason, points)
            if result.ok and result.message != ALREADY_APPLIED:
                updated += 1
            else:
                skipped.append(username)
        return BulkCreditResult(ok=True, updated=updated, skipped=skipped)

    async def add_science_points(self, delta: int) -> int:
        try:
            async with self._session_factory() as db:
                pool = await db.get(SciencePool, self.season)
                if pool is None:
                    pool = SciencePool(season=self.season, points=0)
                    db.add(pool)
                pool.points += delta
                await db.commit()
                total = pool.points
        except SQLAlchemyError as exc:
            raise CollaboratorUnavailable(f"Science pool unavailable: {exc}") from exc
        log.info("Added %d science points (season total=%d)", delta, total)
        return total

    async def science_points(self) -> int:
        async with self._session_factory() as db:
            pool = await db.get(SciencePool, self.season)
            return pool.points if pool else 0

    async def top(self, n: int = 10) -> list[dict]:
        """Top *n* users by points, ties broken by username."""
        async with self._session_factory() as db:
            rows = (
                await db.execute(
                    select(LeaderboardTotal)
                    .where(LeaderboardTotal.season == self.season)
                    .order_by(LeaderboardTotal.points.desc(), LeaderboardTotal.username)
                    .limit(n)
                )
            ).scalars().all()
        return [
            {"username": row.username, "points": row.points, "rank": idx + 1}
            for idx, row in enumerate(rows)
        ]

    async def _total(self, db: AsyncSession, username: str) -> int:
        total = (
            await db.execute(
                select(LeaderboardTotal.points).where(
                    LeaderboardTotal.season == self.season,
                    LeaderboardTotal.username == username,
                )
            )
        ).scalar_one_or_none()
        return total or 0
