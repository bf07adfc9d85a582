"""Concurrency guard: in-flight sharing and rate-limit back-off."""
import asyncio
import logging

import httpx
import pytest

from app.auth.security import account_guard_key, authenticate
from app.domain.errors import RateLimitedError
from app.utils.guard import ConcurrencyGuard, is_rate_limited, retry_delay


class FakeClock:
    def __init__(self):
        self.now = 1000.0
        self.sleeps: list[float] = []

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.mark.asyncio
async def test_identical_keys_share_one_call():
    guard = ConcurrencyGuard()
    calls = 0
    gate = asyncio.Event()

    async def action():
        nonlocal calls
        calls += 1
        await gate.wait()
        return "value"

    first = asyncio.create_task(guard.run("k", action))
    second = asyncio.create_task(guard.run("k", action))
    await asyncio.sleep(0)
    gate.set()

    assert await asyncio.gather(first, second) == ["value", "value"]
    assert calls == 1
    assert guard.inflight_count() == 0


@pytest.mark.asyncio
async def test_different_keys_run_separately():
    guard = ConcurrencyGuard()
    calls = []

    async def action(name):
        calls.append(name)
        return name

    results = await asyncio.gather(guard.run("a", lambda: action("a")), guard.run("b", lambda: action("b")))
    assert results == ["a", "b"]
    assert sorted(calls) == ["a", "b"]


@pytest.mark.asyncio
async def test_rate_limit_blocks_then_retries_once():
    clock = FakeClock()
    guard = ConcurrencyGuard(default_backoff=2.0, clock=clock, sleep=clock.sleep)
    attempts = 0

    async def action():
        nonlocal attempts
        attempts += 1
        if attempts == 1:
            raise RateLimitedError("slow down", retry_after=5)
        return "ok"

    assert await guard.run("k", action) == "ok"
    assert attempts == 2
    assert clock.sleeps == [5.0]


@pytest.mark.asyncio
async def test_block_applies_to_other_keys():
    clock = FakeClock()
    guard = ConcurrencyGuard(default_backoff=2.0, max_retries=0, clock=clock, sleep=clock.sleep)

    async def limited():
        raise RuntimeError("Rate limit exceeded, try again in 3 seconds")

    async def fine():
        return "fine"

    with pytest.raises(RuntimeError):
        await guard.run("a", limited)

    assert guard.blocked_for == pytest.approx(3.0)
    assert await guard.run("b", fine) == "fine"
    assert clock.sleeps == [pytest.approx(3.0)]


@pytest.mark.asyncio
async def test_other_errors_are_not_retried():
    guard = ConcurrencyGuard()
    attempts = 0

    async def action():
        nonlocal attempts
        attempts += 1
        raise ValueError("broken")

    with pytest.raises(ValueError):
        await guard.run("k", action)
    assert attempts == 1


def test_rate_limit_detection_and_delay():
    response = httpx.Response(429, headers={"Retry-After": "7"}, request=httpx.Request("GET", "https://x.test"))
    http_error = httpx.HTTPStatusError("too many", request=response.request, response=response)

    assert is_rate_limited(http_error)
    assert retry_delay(http_error, 2.0) == 7.0
    assert is_rate_limited(RateLimitedError())
    assert not is_rate_limited(ValueError("nope"))
    assert retry_delay(RuntimeError("please try again in 4.5 seconds"), 2.0) == 4.5
    assert retry_delay(RuntimeError("rate limit"), 2.0) == 2.0


class FlakyLookupSession:
    """Stands in for a session whose first account lookup is rate limited."""

    def __init__(self, account):
        self.account = account
        self.calls = 0

    async def scalar(self, stmt):
        self.calls += 1
        if self.calls == 1:
            raise RateLimitedError("slow down", retry_after=0)
        return self.account


@pytest.mark.asyncio
async def test_api_key_never_reaches_the_log(caplog):
    caplog.set_level(logging.DEBUG)
    clock = FakeClock()
    guard = ConcurrencyGuard(default_backoff=0.0, max_retries=1, clock=clock, sleep=clock.sleep)
    session = FlakyLookupSession(account=object())

    account = await authenticate(session, "super-secret-key", guard)

    assert account is session.account
    assert session.calls == 2
    assert any("Rate limited" in r.getMessage() for r in caplog.records)
    assert "super-secret-key" not in caplog.text
    assert account_guard_key("super-secret-key") != account_guard_key("other-key")
