from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import Job
from app.commands.transition import transition_job
from app.domain.states import JobEvent, JobStatus

# Candidates examined per claim; losing a CAS moves on to the next one.
CLAIM_BATCH_SIZE = 10


def dispatch_order():
    return (Job.priority.desc(), Job.created_at.asc(), Job.id.asc())


async def claim_next_job(session: AsyncSession) -> Optional[Job]:
    """
    Claims the highest-priority, oldest pending job.
    Returns the claimed job (now PROCESSING) or None when the queue is empty.
    """
    stmt = (
        select(Job.id)
        .where(Job.status == JobStatus.PENDING)
        .order_by(*dispatch_order())
        .limit(CLAIM_BATCH_SIZE)
    )
    if session.get_bind().dialect.name == "postgresql":
        stmt = stmt.with_for_update(skip_locked=True)

    candidates = (await session.execute(stmt)).scalars().all()

    for job_id in candidates:
        job = await claim_job(session, job_id)
        if job is not None:
            return job

    return None


async def claim_job(session: AsyncSession, job_id: UUID) -> Optional[Job]:
    """pending -> processing for one job; None if it is no longer pending."""
    return await transition_job(
        session,
        job_id,
        JobStatus.PENDING,
        JobStatus.PROCESSING,
        event=JobEvent.STARTED,
    )
