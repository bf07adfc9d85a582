from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import Job, utcnow
from app.commands.transition import transition_job
from app.domain.states import JobStatus, JobEvent
from app.domain.retry import decide_after_failure
from app.domain.errors import JobNotFoundError, InvalidJobStateError
from app.api.v1.metrics import JOB_FAILURES, QUEUE_DEPTH


async def fail_job(session: AsyncSession, job_id: UUID, error: str) -> Job:
    """
    Marks a processing job as failed and counts the attempt.

    Below the retry budget the job goes straight back to pending (error
    cleared, kept in the event log) within the same transaction. Otherwise it
    stays failed for good and completed_at is stamped.
    """
    now = utcnow()

    stmt = select(Job).where(Job.id == job_id).execution_options(populate_existing=True)
    job = (await session.execute(stmt)).scalar_one_or_none()

    if not job:
        raise JobNotFoundError(job_id)

    decision = decide_after_failure(job.retry_count)
    meta = {"error": error, "retry_count": decision.retry_count}

    values = dict(last_error=error, retry_count=decision.retry_count, updated_at=now)
    if not decision.requeue:
        values["completed_at"] = now

    failed = await transition_job(
        session,
        job_id,
        JobStatus.PROCESSING,
        JobStatus.FAILED,
        event=JobEvent.FAILED,
        meta={**meta, "final": not decision.requeue},
        **values,
    )
    if failed is None:
        raise InvalidJobStateError(job.status, JobStatus.FAILED)

    if not decision.requeue:
        JOB_FAILURES.labels(tier=failed.tier, type="final").inc()
        return failed

    requeued = await transition_job(
        session,
        job_id,
        JobStatus.FAILED,
        JobStatus.PENDING,
        event=JobEvent.RETRIED,
        meta=meta,
        last_error=None,
        started_at=None,
        updated_at=now,
    )
    if requeued is None:
        raise InvalidJobStateError(JobStatus.FAILED, JobStatus.PENDING)

    JOB_FAILURES.labels(tier=requeued.tier, type="retryable").inc()
    QUEUE_DEPTH.labels(tier=requeued.tier).inc()  # Back to pending
    return requeued
