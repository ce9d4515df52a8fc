from datetime import datetime

from sqlalchemy import DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class LedgerCredit(Base):
    """A single applied credit; the unique key makes crediting idempotent."""

    __tablename__ = "ledger_credits"
    __table_args__ = (
        UniqueConstraint("season", "mission_id", "username", "reason",
                         name="uq_ledger_credit"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    season: Mapped[int] = mapped_column(Integer, default=1)
    mission_id: Mapped[str] = mapped_column(String(32))
    username: Mapped[str] = mapped_column(String(64))
    reason: Mapped[str] = mapped_column(String(32))
    points: Mapped[int] = mapped_column(Integer)
    credited_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class LeaderboardTotal(Base):
    __tablename__ = "leaderboard_totals"

    season: Mapped[int] = mapped_column(Integer, primary_key=True)
    username: Mapped[str] = mapped_column(String(64), primary_key=True)
    points: Mapped[int] = mapped_column(Integer, default=0)


class SciencePool(Base):
    __tablename__ = "science_pool"

    season: Mapped[int] = mapped_column(Integer, primary_key=True)
    points: Mapped[int] = mapped_column(Integer, default=0)
