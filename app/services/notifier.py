import logging
from typing import Any

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.api.v1.metrics import WEBHOOK_DELIVERIES
from app.commands.transition import mark_webhook_sent
from app.db.models import Job, as_utc
from app.domain.states import TERMINAL_STATES, JobStatus

logger = logging.getLogger(__name__)


def build_payload(job: Job) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "jobId": str(job.id),
        "accountId": job.account_id,
        "status": str(job.status),
        "frameCount": job.frames_generated or 0,
    }
    if job.status == JobStatus.COMPLETED and job.asset_url:
        payload["assetUrl"] = job.asset_url
    if job.status == JobStatus.FAILED and job.last_error:
        payload["errorMessage"] = job.last_error
    if job.completed_at:
        payload["completedAt"] = as_utc(job.completed_at).isoformat()
    return payload


class Notifier:
    """
    Delivers one callback per job once it reaches its final state.

    Delivery is best-effort: a failed POST is logged and the job keeps
    webhook_sent = false. There is no redelivery.
    """

    def __init__(self, client: httpx.AsyncClient, session_factory: async_sessionmaker[AsyncSession], timeout: float = 10.0):
        self.client = client
        self.session_factory = session_factory
        self.timeout = timeout

    async def notify(self, job: Job) -> bool:
        if not job.callback_url or job.webhook_sent:
            return False
        if JobStatus(job.status) not in TERMINAL_STATES:
            return False

        try:
            resp = await self.client.post(job.callback_url, json=build_payload(job), timeout=self.timeout)
        except httpx.HTTPError as e:
            WEBHOOK_DELIVERIES.labels(result="error").inc()
            logger.warning(f"Webhook delivery failed for job {job.id}: {e}")
            return False

        if not resp.is_success:
            WEBHOOK_DELIVERIES.labels(result="rejected").inc()
            logger.warning(f"Webhook for job {job.id} rejected with HTTP {resp.status_code}")
            return False

        try:
            async with self.session_factory() as session:
                flipped = await mark_webhook_sent(session, job.id)
                await session.commit()
        except Exception as e:
            logger.warning(f"Webhook delivered for job {job.id} but flag update failed: {e}")
            return False

        WEBHOOK_DELIVERIES.labels(result="delivered").inc()
        if flipped:
            job.webhook_sent = True
            logger.info(f"Webhook delivered for job {job.id}")
        return flipped
