from typing import Any, Optional
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import Job, JobEventLog, utcnow
from app.domain.errors import InvalidJobStateError
from app.domain.states import JobEvent, JobStatus, can_transition


async def transition_job(
    session: AsyncSession,
    job_id: UUID,
    expected: JobStatus,
    target: JobStatus,
    event: Optional[JobEvent] = None,
    meta: Optional[dict[str, Any]] = None,
    **values: Any,
) -> Optional[Job]:
    """
    The single write path for job state.

    Compare-and-swap: the row is only updated while it is still in `expected`.
    Returns the updated job, or None if another writer moved it first.
    """
    if not can_transition(expected, target):
        raise InvalidJobStateError(expected, target)

    now = utcnow()
    values.setdefault("updated_at", now)
    if target == JobStatus.PROCESSING:
        values.setdefault("started_at", now)

    stmt = (
        update(Job)
        .where(Job.id == job_id, Job.status == expected)
        .values(status=target, **values)
        .returning(Job)
        .execution_options(populate_existing=True)
    )
    res = await session.execute(stmt)
    job = res.scalar_one_or_none()
    if job is None:
        return None

    if event is not None:
        session.add(JobEventLog(job_id=job_id, event_type=event, timestamp=now, meta=meta or {}))

    await session.flush()
    return job


async def mark_webhook_sent(session: AsyncSession, job_id: UUID) -> bool:
    """Flip webhook_sent once; a second call is a no-op returning False."""
    now = utcnow()
    stmt = (
        update(Job)
        .where(
            Job.id == job_id,
            Job.webhook_sent.is_(False),
            Job.status.in_([JobStatus.COMPLETED, JobStatus.FAILED]),
        )
        .values(webhook_sent=True, updated_at=now)
        .returning(Job.id)
    )
    res = await session.execute(stmt)
    flipped = res.scalar_one_or_none() is not None
    if flipped:
        session.add(JobEventLog(job_id=job_id, event_type=JobEvent.WEBHOOK_SENT, timestamp=now, meta={}))
        await session.flush()
    return flipped
