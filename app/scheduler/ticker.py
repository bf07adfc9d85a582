import logging

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import Job
from app.domain.states import JobStatus
from app.domain.tiers import Tier
from app.scheduler.dispatcher import Dispatcher

logger = logging.getLogger(__name__)


async def run_leader_tasks(dispatcher: Dispatcher, max_jobs: int) -> int:
    """
    One trigger tick: drain up to `max_jobs` jobs, one at a time.
    Returns the number of jobs dispatched.
    """
    processed = 0
    while processed < max_jobs:
        result = await dispatcher.dispatch_next()
        if result is None:
            break
        processed += 1

    if processed:
        logger.info(f"Ticker dispatched {processed} job(s)")
    return processed


async def queue_counts(session: AsyncSession) -> dict[str, int]:
    """Job counts per status, every status present."""
    rows = (await session.execute(
        select(Job.status, func.count(Job.id)).group_by(Job.status)
    )).all()
    counts = {str(s): 0 for s in JobStatus}
    for status, count in rows:
        counts[str(status)] = count
    return counts


async def run_metrics_tasks(session: AsyncSession) -> None:
    """Refresh queue-depth gauges from the database (runs on every instance)."""
    from app.api.v1.metrics import QUEUE_DEPTH

    q_depth = (
        select(Job.tier, func.count(Job.id))
        .where(Job.status == JobStatus.PENDING)
        .group_by(Job.tier)
    )
    rows = dict((await session.execute(q_depth)).all())

    # Tiers with nothing pending are reset to 0, not left at a stale value
    for tier in Tier:
        QUEUE_DEPTH.labels(tier=str(tier)).set(rows.get(str(tier), 0))

    await session.commit()
