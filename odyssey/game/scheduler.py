"""Scheduled re-invocation service.

Timer starts register a job that names the mission operation to run at
the deadline (``launch``, ``close_vote`` or ``end_timer``).  Jobs are
rows in ``scheduled_jobs``; the reconciler picks up due rows and calls
back into the state machine.  Delivery is at-least-once: handlers guard
on phase/status, never on the job row.
"""
import logging
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from odyssey.game.clock import as_utc
from odyssey.models.scheduled_job import ScheduledJob

log = logging.getLogger(__name__)


class Scheduler:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def schedule_at(
        self,
        job_id: str,
        run_at: datetime,
        action: str,
        post_id: str,
        mission_id: str | None = None,
        timer_kind: str | None = None,
    ) -> ScheduledJob:
        """Register (or re-register) *job_id* to run at *run_at*."""
        async with self._session_factory() as db:
            job = await db.get(ScheduledJob, job_id)
            if job is None:
                job = ScheduledJob(job_id=job_id)
                db.add(job)
            job.post_id = post_id
            job.mission_id = mission_id
            job.action = action
            job.timer_kind = timer_kind
            job.run_at = run_at
            job.is_processed = False
            job.is_cancelled = False
            await db.commit()
        log.info("Scheduled job %s (%s) at %s", job_id, action, run_at.isoformat())
        return job

    async def cancel(self, job_id: str) -> None:
        async with self._session_factory() as db:
            await db.execute(
                update(ScheduledJob)
                .where(ScheduledJob.job_id == job_id)
                .values(is_cancelled=True)
            )
            await db.commit()
        log.info("Cancelled job %s", job_id)

    async def cancel_for_post(self, post_id: str) -> None:
        async with self._session_factory() as db:
            await db.execute(
                update(ScheduledJob)
                .where(
                    ScheduledJob.post_id == post_id,
                    ScheduledJob.is_processed == False,  # noqa: E712
                )
                .values(is_cancelled=True)
            )
            await db.commit()
        log.info("Cancelled pending jobs for post %s", post_id)

    async def due_jobs(self, now: datetime) -> list[ScheduledJob]:
        async with self._session_factory() as db:
            jobs = (
                await db.execute(
                    select(ScheduledJob).where(
                        ScheduledJob.run_at <= now,
                        ScheduledJob.is_processed == False,  # noqa: E712
                        ScheduledJob.is_cancelled == False,  # noqa: E712
                    ).order_by(ScheduledJob.run_at)
                )
            ).scalars().all()
        for job in jobs:
            job.run_at = as_utc(job.run_at)
        return list(jobs)

    async def mark_processed(self, job_id: str, run_at: datetime) -> None:
        """Mark *job_id* done unless it was re-armed for a different time meanwhile."""
        async with self._session_factory() as db:
            job = await db.get(ScheduledJob, job_id)
            if job is not None and as_utc(job.run_at) == run_at:
                job.is_processed = True
            await db.commit()

    async def get(self, job_id: str) -> ScheduledJob | None:
        async with self._session_factory() as db:
            job = await db.get(ScheduledJob, job_id)
        if job is not None:
            job.run_at = as_utc(job.run_at)
        return job
