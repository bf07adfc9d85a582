"""Callback delivery and the webhook_sent flag."""
import json

import httpx
import pytest

from app.commands.transition import mark_webhook_sent
from app.domain.states import JobStatus
from tests.conftest import HOOK_URL, add_job, get_job


@pytest.mark.asyncio
async def test_completed_job_is_delivered_once(ctx, http):
    job = await add_job(ctx, callback_url=HOOK_URL)

    await ctx.dispatcher.dispatch_next()

    assert len(http.callbacks) == 1
    body = json.loads(http.callbacks[0].content)
    assert body["jobId"] == str(job.id)
    assert body["accountId"] == "acct"
    assert body["status"] == "completed"
    assert body["assetUrl"].endswith(".mp4")
    assert body["frameCount"] == 4
    assert "errorMessage" not in body
    assert "completedAt" in body

    delivered = await get_job(ctx, job.id)
    assert delivered.webhook_sent is True

    # A second notify attempt is a no-op
    assert await ctx.notifier.notify(delivered) is False
    assert len(http.callbacks) == 1


@pytest.mark.asyncio
async def test_rejected_delivery_leaves_flag_unset(ctx, http):
    http.callback_status = 500
    job = await add_job(ctx, callback_url=HOOK_URL)

    result = await ctx.dispatcher.dispatch_next()

    assert result.status == JobStatus.COMPLETED
    assert len(http.callbacks) == 1
    assert (await get_job(ctx, job.id)).webhook_sent is False


@pytest.mark.asyncio
async def test_transport_error_is_swallowed(ctx, http):
    http.callback_error = httpx.ConnectError("connection refused")
    job = await add_job(ctx, callback_url=HOOK_URL)

    result = await ctx.dispatcher.dispatch_next()

    assert result.status == JobStatus.COMPLETED
    assert (await get_job(ctx, job.id)).webhook_sent is False


@pytest.mark.asyncio
async def test_no_callback_for_requeued_failures(ctx, http, store):
    store.fail_times = 100
    job = await add_job(ctx, callback_url=HOOK_URL)

    await ctx.dispatcher.dispatch_next()
    await ctx.dispatcher.dispatch_next()
    assert http.callbacks == []

    await ctx.dispatcher.dispatch_next()
    assert len(http.callbacks) == 1
    body = json.loads(http.callbacks[0].content)
    assert body["status"] == "failed"
    assert "bucket unavailable" in body["errorMessage"]
    assert "assetUrl" not in body
    assert (await get_job(ctx, job.id)).webhook_sent is True


@pytest.mark.asyncio
async def test_jobs_without_callback_are_not_notified(ctx, http):
    await add_job(ctx)
    await ctx.dispatcher.dispatch_next()
    assert http.callbacks == []


@pytest.mark.asyncio
async def test_flag_flips_only_once(ctx):
    job = await add_job(ctx, callback_url=HOOK_URL)
    await ctx.dispatcher.dispatch_next()

    async with ctx.session_factory() as s:
        assert await mark_webhook_sent(s, job.id) is False


@pytest.mark.asyncio
async def test_flag_requires_terminal_state(ctx):
    job = await add_job(ctx, callback_url=HOOK_URL)
    async with ctx.session_factory() as s:
        assert await mark_webhook_sent(s, job.id) is False
