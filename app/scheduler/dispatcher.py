import asyncio
import logging
from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.api.v1.metrics import JOB_DISPATCH_COUNT, JOB_QUEUE_WAIT, JOBS_PROCESSING, QUEUE_DEPTH
from app.commands.claim_job import claim_job, claim_next_job
from app.commands.complete_job import complete_job
from app.commands.fail_job import fail_job
from app.db.models import Job, as_utc
from app.domain.models import DispatchResult
from app.domain.states import TERMINAL_STATES, JobStatus
from app.scheduler.recovery import RecoveryController
from app.services.notifier import Notifier

logger = logging.getLogger(__name__)


class Dispatcher:
    """
    Single consumer of the queue.

    Every dispatch holds `_lock` from claim to terminal write, so within this
    process at most one job is processing. Across processes the periodic
    trigger takes the advisory leader lock before calling in here.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        recovery: RecoveryController,
        notifier: Optional[Notifier] = None,
    ):
        self.session_factory = session_factory
        self.recovery = recovery
        self.notifier = notifier
        self._lock = asyncio.Lock()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    async def dispatch_next(self) -> Optional[DispatchResult]:
        """
        Claim and process the next job. Returns None when nothing is pending.
        Does not return until the job reached a terminal (or requeued) state.
        """
        async with self._lock:
            async with self.session_factory() as session:
                job = await claim_next_job(session)
                await session.commit()

            if job is None:
                JOB_DISPATCH_COUNT.labels(status="empty").inc()
                return None

            return await self._process(job)

    async def run_job(self, job_id: UUID) -> Optional[DispatchResult]:
        """
        Process one specific job now. Returns None if it is no longer pending
        (a dispatch cycle got to it first).
        """
        async with self._lock:
            async with self.session_factory() as session:
                job = await claim_job(session, job_id)
                await session.commit()

            if job is None:
                logger.info(f"Job {job_id} was not pending, skipping inline run")
                return None

            return await self._process(job)

    async def _process(self, job: Job) -> DispatchResult:
        JOB_DISPATCH_COUNT.labels(status="claimed").inc()
        QUEUE_DEPTH.labels(tier=job.tier).dec()
        if job.started_at and job.created_at:
            wait = (as_utc(job.started_at) - as_utc(job.created_at)).total_seconds()
            JOB_QUEUE_WAIT.observe(max(0.0, wait))

        logger.info(f"Processing job {job.id} (tier={job.tier}, priority={job.priority}, retry={job.retry_count})")
        JOBS_PROCESSING.set(1)
        try:
            try:
                outcome = await self.recovery.execute(job)
            except Exception as e:
                return await self._fail(job, str(e))

            try:
                async with self.session_factory() as session:
                    final = await complete_job(session, job.id, outcome)
                    await session.commit()
            except Exception as e:
                # Rendered but not recorded; count it as a failed attempt
                logger.error(f"Recording completion of job {job.id} failed: {e}")
                return await self._fail(job, f"completion write failed: {e}")
        finally:
            JOBS_PROCESSING.set(0)

        logger.info(f"Job {final.id} completed: {final.asset_url}")
        await self._notify(final)

        return DispatchResult(
            job_id=final.id,
            status=JobStatus.COMPLETED,
            asset_url=final.asset_url,
            frame_count=outcome.frame_count,
            used_fallback=outcome.used_fallback,
            retry_count=final.retry_count,
        )

    async def _fail(self, job: Job, error: str) -> DispatchResult:
        async with self.session_factory() as session:
            updated = await fail_job(session, job.id, error)
            await session.commit()

        status = JobStatus(updated.status)
        will_retry = status == JobStatus.PENDING
        if will_retry:
            logger.warning(f"Job {job.id} failed (attempt {updated.retry_count}), requeued: {error}")
        else:
            logger.error(f"Job {job.id} failed permanently after {updated.retry_count} attempts: {error}")
            await self._notify(updated)

        return DispatchResult(
            job_id=updated.id,
            status=status,
            retry_count=updated.retry_count,
            will_retry=will_retry,
            error=error,
        )

    async def _notify(self, job: Job) -> None:
        if self.notifier is None or JobStatus(job.status) not in TERMINAL_STATES:
            return
        try:
            await self.notifier.notify(job)
        except Exception as e:
            logger.warning(f"Notifier raised for job {job.id}: {e}")
