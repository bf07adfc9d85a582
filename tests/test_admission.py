"""Admission control ordering and rejection codes."""
import pytest
from sqlalchemy import func, select

from app.commands.admit_job import admit_job
from app.db.models import Job, JobEventLog, QuotaRecord
from app.domain.errors import (
    AuthenticationError,
    AuthorizationError,
    FeatureNotAvailableError,
    InvalidPayloadError,
    QuotaExhaustedError,
)
from app.domain.states import JobStatus
from app.domain.tiers import Tier, TierPolicy, TierTable
from tests.conftest import job_payload, make_account


async def _admit(ctx, payload, api_key="key-acct-vip"):
    async with ctx.session_factory() as s:
        job, request = await admit_job(s, ctx, payload, api_key)
        await s.commit()
        return job, request


async def _rejection(ctx, payload, api_key="key-acct-vip"):
    async with ctx.session_factory() as s:
        with pytest.raises(Exception) as info:
            await admit_job(s, ctx, payload, api_key)
        await s.rollback()
    return info.value


@pytest.mark.asyncio
async def test_admits_pending_job_with_tier_priority(ctx):
    await make_account(ctx)
    job, request = await _admit(ctx, job_payload())

    assert job.status == JobStatus.PENDING
    assert job.priority == 100
    assert job.duration_seconds == 45
    assert job.retry_count == 0
    assert job.webhook_sent is False
    assert request.use_queue is True

    async with ctx.session_factory() as s:
        events = (await s.execute(select(JobEventLog).where(JobEventLog.job_id == job.id))).scalars().all()
        assert [e.event_type for e in events] == ["created"]
        assert (await s.get(QuotaRecord, "acct-vip")).used == 1


@pytest.mark.asyncio
async def test_requested_duration_is_capped_by_tier(ctx):
    await make_account(ctx, "acct-prem", "premium")
    job, _ = await _admit(ctx, job_payload("acct-prem", "premium", requestedDurationSeconds=90), api_key="key-acct-prem")
    assert job.duration_seconds == 30


@pytest.mark.asyncio
@pytest.mark.parametrize("overrides, code", [
    ({"sourceRef": "not a url"}, "INVALID_SOURCE_REF"),
    ({"prompt": "   "}, "INVALID_PROMPT"),
    ({"prompt": 42}, "INVALID_PROMPT"),
    ({"prompt": "x" * 5001}, "PROMPT_TOO_LONG"),
    ({"accountId": ""}, "INVALID_ACCOUNT_ID"),
    ({"tier": "platinum"}, "INVALID_TIER"),
    ({"requestedDurationSeconds": 0}, "INVALID_DURATION"),
    ({"requestedDurationSeconds": 121}, "INVALID_DURATION"),
    ({"requestedDurationSeconds": "10"}, "INVALID_DURATION"),
    ({"callbackUrl": "nope"}, "INVALID_CALLBACK_URL"),
    ({"useQueue": "yes"}, "INVALID_PAYLOAD"),
])
async def test_structural_rejections(ctx, overrides, code):
    await make_account(ctx)
    err = await _rejection(ctx, job_payload(**overrides))
    assert isinstance(err, InvalidPayloadError)
    assert err.status_code == 400
    assert err.code == code


@pytest.mark.asyncio
async def test_non_object_body_is_invalid_json(ctx):
    err = await _rejection(ctx, ["not", "an", "object"])
    assert err.code == "INVALID_JSON"


@pytest.mark.asyncio
async def test_structure_is_checked_before_identity(ctx):
    err = await _rejection(ctx, job_payload(prompt=""), api_key=None)
    assert err.code == "INVALID_PROMPT"


@pytest.mark.asyncio
async def test_identity_rejections(ctx):
    await make_account(ctx)
    await make_account(ctx, "acct-other", "vip")

    missing = await _rejection(ctx, job_payload(), api_key=None)
    assert isinstance(missing, AuthenticationError)
    assert (missing.status_code, missing.code) == (401, "AUTH_HEADER_MISSING")

    unknown = await _rejection(ctx, job_payload(), api_key="who-dis")
    assert (unknown.status_code, unknown.code) == (401, "TOKEN_INVALID")

    mismatch = await _rejection(ctx, job_payload(), api_key="key-acct-other")
    assert isinstance(mismatch, AuthorizationError)
    assert (mismatch.status_code, mismatch.code) == (403, "IDENTITY_MISMATCH")


@pytest.mark.asyncio
async def test_claimed_tier_must_match_billing_tier(ctx):
    await make_account(ctx, "acct-prem", "premium")
    err = await _rejection(ctx, job_payload("acct-prem", "vip"), api_key="key-acct-prem")
    assert (err.status_code, err.code) == (403, "TIER_MISMATCH")


@pytest.mark.asyncio
async def test_feature_gate_names_minimum_tier(ctx):
    await make_account(ctx, "acct-pro", "pro")
    err = await _rejection(ctx, job_payload("acct-pro", "pro"), api_key="key-acct-pro")
    assert isinstance(err, FeatureNotAvailableError)
    assert err.status_code == 403
    assert err.to_dict()["requiredTier"] == "premium"
    assert "premium" in err.message


@pytest.mark.asyncio
async def test_quota_exhaustion_reports_limit_and_reset(ctx):
    ctx.quota.tiers = TierTable(policies={
        **TierTable().policies,
        Tier.VIP: TierPolicy(monthly_allowance=1, priority=100, default_duration_seconds=45, max_duration_seconds=120),
    })
    await make_account(ctx)
    await _admit(ctx, job_payload())

    err = await _rejection(ctx, job_payload())
    assert isinstance(err, QuotaExhaustedError)
    body = err.to_dict()
    assert err.status_code == 429
    assert body["code"] == "LIMIT_REACHED"
    assert body["limit"] == 1
    assert body["remaining"] == 0
    assert body["resetDate"].endswith("+00:00")

    async with ctx.session_factory() as s:
        assert await s.scalar(select(func.count(Job.id))) == 1


@pytest.mark.asyncio
async def test_permitted_tier_with_zero_allowance_is_quota_exhausted(ctx):
    tiers = TierTable(allowed=frozenset({Tier.PREMIUM, Tier.VIP, Tier.PRO}))
    ctx.tiers = tiers
    ctx.quota.tiers = tiers
    await make_account(ctx, "acct-pro", "pro")

    err = await _rejection(ctx, job_payload("acct-pro", "pro"), api_key="key-acct-pro")
    assert isinstance(err, QuotaExhaustedError)
    assert err.to_dict()["remaining"] == 0


@pytest.mark.asyncio
async def test_rejected_admission_consumes_nothing(ctx):
    await make_account(ctx)
    await _rejection(ctx, job_payload(callbackUrl="nope"))

    async with ctx.session_factory() as s:
        assert await s.get(QuotaRecord, "acct-vip") is None
        assert await s.scalar(select(func.count(Job.id))) == 0


@pytest.mark.asyncio
async def test_premium_month_admits_twenty_then_denies(ctx):
    await make_account(ctx, "acct-prem", "premium")
    for _ in range(20):
        await _admit(ctx, job_payload("acct-prem", "premium"), api_key="key-acct-prem")

    err = await _rejection(ctx, job_payload("acct-prem", "premium"), api_key="key-acct-prem")
    assert isinstance(err, QuotaExhaustedError)
    assert err.to_dict()["limit"] == 20
    assert err.to_dict()["remaining"] == 0

    async with ctx.session_factory() as s:
        assert await s.scalar(select(func.count(Job.id))) == 20
        assert (await s.get(QuotaRecord, "acct-prem")).used == 20
