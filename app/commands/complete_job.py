from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import Job, JobEventLog, as_utc, utcnow
from app.commands.transition import transition_job
from app.domain.states import JobStatus, JobEvent
from app.domain.models import RenderOutcome
from app.api.v1.metrics import JOB_DURATION, JOB_COMPLETE_TOTAL
from app.domain.errors import JobNotFoundError, InvalidJobStateError


async def _current_status(session: AsyncSession, job_id: UUID) -> Optional[JobStatus]:
    status = await session.scalar(select(Job.status).where(Job.id == job_id))
    return JobStatus(status) if status is not None else None


async def complete_job(session: AsyncSession, job_id: UUID, outcome: RenderOutcome) -> Job:
    """
    processing -> completed with the stored asset.
    completed_at is stamped here, once.
    """
    now = utcnow()

    if outcome.used_fallback:
        session.add(JobEventLog(
            job_id=job_id,
            event_type=JobEvent.FALLBACK_USED,
            timestamp=now,
            meta={"frame_count": outcome.frame_count},
        ))

    job = await transition_job(
        session,
        job_id,
        JobStatus.PROCESSING,
        JobStatus.COMPLETED,
        event=JobEvent.COMPLETED,
        meta={
            "asset_url": outcome.asset_url,
            "frame_count": outcome.frame_count,
            "rendered": outcome.rendered_count,
            "placeholders": outcome.placeholder_count,
            "packaging_degraded": outcome.packaging_degraded,
        },
        asset_url=outcome.asset_url,
        frames_generated=outcome.frame_count,
        used_fallback=outcome.used_fallback,
        audio_track=outcome.audio_track,
        last_error=None,
        completed_at=now,
        updated_at=now,
    )

    if job is None:
        current = await _current_status(session, job_id)
        if current is None:
            raise JobNotFoundError(job_id)
        raise InvalidJobStateError(current, JobStatus.COMPLETED)

    # Observe duration
    if job.started_at:
        duration = (now - as_utc(job.started_at)).total_seconds()
        if duration > 0:
            JOB_DURATION.observe(duration)

    JOB_COMPLETE_TOTAL.labels(tier=job.tier, fallback=str(outcome.used_fallback).lower()).inc()
    return job
