"""
Admission control: the only way a job comes into existence.

Checks run in a fixed order and the first failure wins:
structure -> identity -> feature gate -> quota. The quota unit is reserved
in the caller's transaction, so it commits or rolls back with the job row.
"""
import logging
from typing import Any, Optional

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.metrics import ADMISSION_REJECTIONS, JOBS_ADMITTED, QUEUE_DEPTH
from app.auth.security import authenticate
from app.context import QueueContext
from app.db.models import Job, JobEventLog, utcnow
from app.domain.errors import (
    AdmissionRejected,
    AuthorizationError,
    FeatureNotAvailableError,
    InvalidPayloadError,
    QuotaExhaustedError,
)
from app.domain.models import AdmissionRequest
from app.domain.states import JobEvent, JobStatus

logger = logging.getLogger(__name__)

FIELD_ERROR_CODES = {
    "sourceRef": "INVALID_SOURCE_REF",
    "prompt": "INVALID_PROMPT",
    "accountId": "INVALID_ACCOUNT_ID",
    "tier": "INVALID_TIER",
    "requestedDurationSeconds": "INVALID_DURATION",
    "callbackUrl": "INVALID_CALLBACK_URL",
    "useQueue": "INVALID_PAYLOAD",
}

FIELD_MESSAGES = {
    "sourceRef": "sourceRef must be a valid URL",
    "prompt": "prompt must be a non-empty string",
    "accountId": "accountId must be a non-empty string",
    "tier": "tier must be one of free, pro, premium, vip",
    "requestedDurationSeconds": "requestedDurationSeconds must be a number between 1 and 120",
    "callbackUrl": "callbackUrl must be a valid URL",
    "useQueue": "useQueue must be a boolean",
}


def parse_admission(payload: Any) -> AdmissionRequest:
    if not isinstance(payload, dict):
        raise InvalidPayloadError("Request body must be a JSON object", code="INVALID_JSON")

    try:
        return AdmissionRequest.model_validate(payload)
    except ValidationError as e:
        first = e.errors()[0]
        field = str(first["loc"][0]) if first["loc"] else ""

        if field == "prompt" and first["type"] == "string_too_long":
            raise InvalidPayloadError("prompt must be at most 5000 characters", code="PROMPT_TOO_LONG") from e

        code = FIELD_ERROR_CODES.get(field, "INVALID_PAYLOAD")
        message = FIELD_MESSAGES.get(field, first["msg"])
        raise InvalidPayloadError(message, code=code) from e


async def admit_job(
    session: AsyncSession,
    ctx: QueueContext,
    payload: Any,
    api_key: Optional[str],
) -> tuple[Job, AdmissionRequest]:
    try:
        return await _admit(session, ctx, payload, api_key)
    except AdmissionRejected as e:
        ADMISSION_REJECTIONS.labels(code=e.code).inc()
        logger.info(f"Admission rejected: {e.code} ({e.message})")
        raise


async def _admit(
    session: AsyncSession,
    ctx: QueueContext,
    payload: Any,
    api_key: Optional[str],
) -> tuple[Job, AdmissionRequest]:
    # 1. Structure
    request = parse_admission(payload)

    # 2. Identity
    account = await authenticate(session, api_key, ctx.guard)
    if account.id != request.account_id:
        raise AuthorizationError("accountId does not match the authenticated caller", code="IDENTITY_MISMATCH")
    if account.tier != request.tier:
        raise AuthorizationError(
            f"Claimed tier {request.tier} does not match account tier",
            code="TIER_MISMATCH",
        )

    # 3. Feature gate
    if not ctx.tiers.is_allowed(request.tier):
        minimum = ctx.tiers.minimum_allowed()
        raise FeatureNotAvailableError(
            f"Video generation requires the {minimum} tier or higher",
            extra={"requiredTier": str(minimum) if minimum else None},
        )

    # 4. Quota (reserves one unit on success)
    decision = await ctx.quota.check_and_reserve(session, account.id, request.tier)
    if not decision.allowed:
        raise QuotaExhaustedError(
            "Monthly video generation limit reached",
            extra={
                "limit": decision.limit,
                "remaining": decision.remaining,
                "resetDate": decision.reset_date.isoformat(),
            },
        )

    policy = ctx.tiers.policy(request.tier)
    now = utcnow()
    job = Job(
        account_id=account.id,
        tier=request.tier,
        status=JobStatus.PENDING,
        priority=policy.priority,
        source_ref=str(request.source_ref),
        prompt=request.prompt.strip(),
        duration_seconds=policy.resolve_duration(request.requested_duration_seconds),
        callback_url=str(request.callback_url) if request.callback_url else None,
        retry_count=0,
        frames_generated=0,
        used_fallback=False,
        webhook_sent=False,
        created_at=now,
        updated_at=now,
    )
    session.add(job)
    await session.flush()

    session.add(JobEventLog(
        job_id=job.id,
        event_type=JobEvent.CREATED,
        timestamp=now,
        meta={"priority": job.priority, "duration_seconds": job.duration_seconds, "quota_remaining": decision.remaining},
    ))
    await session.flush()

    JOBS_ADMITTED.labels(tier=job.tier).inc()
    QUEUE_DEPTH.labels(tier=job.tier).inc()
    logger.info(
        f"Admitted job {job.id} for account={job.account_id} tier={job.tier} "
        f"priority={job.priority} duration={job.duration_seconds}s"
    )
    return job, request
