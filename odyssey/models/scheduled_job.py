from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class ScheduledJob(Base):
    __tablename__ = "scheduled_jobs"

    job_id: Mapped[str] = mapped_column(String(160), primary_key=True)
    post_id: Mapped[str] = mapped_column(String(64), index=True)
    mission_id: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    action: Mapped[str] = mapped_column(String(32))  # "launch", "close_vote", "end_timer"
    timer_kind: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    run_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    is_processed: Mapped[bool] = mapped_column(Boolean, default=False)
    is_cancelled: Mapped[bool] = mapped_column(Boolean, default=False)
