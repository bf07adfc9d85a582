"""Shared fixtures: file-backed SQLite, fake render services, mocked HTTP."""
from datetime import datetime, timezone
from typing import Optional

import httpx
import pytest
from sqlalchemy import select

from app.context import build_context
from app.db.models import Account, Job, JobEventLog
from app.db.session import build_engine, create_schema
from app.domain.errors import StorageError
from app.domain.states import JobStatus
from app.main import create_app
from app.settings import Settings
from app.utils.guard import ConcurrencyGuard

SEED_URL = "https://seed.test/seed.png"
FRAME_HOST = "frames.test"
HOOK_URL = "https://hooks.test/render-done"


class FakeRenderer:
    """Returns frame URLs on frames.test; `fail_on` holds call numbers that raise."""

    def __init__(self, fail_on: Optional[set[int]] = None, always_fail: bool = False):
        self.fail_on = fail_on or set()
        self.always_fail = always_fail
        self.prompts: list[str] = []

    async def render_frame(self, prompt: str) -> str:
        call = len(self.prompts)
        self.prompts.append(prompt)
        if self.always_fail or call in self.fail_on:
            raise RuntimeError(f"renderer exploded on call {call}")
        return f"https://{FRAME_HOST}/frame-{call}.png"


class FakeStore:
    def __init__(self, fail_times: int = 0, bad_url: bool = False):
        self.fail_times = fail_times
        self.bad_url = bad_url
        self.calls = 0
        self.objects: dict[str, bytes] = {}

    async def store(self, data: bytes, path: str) -> str:
        self.calls += 1
        if self.calls <= self.fail_times:
            raise StorageError("bucket unavailable")
        self.objects[path] = data
        if self.bad_url:
            return f"https://cdn.test/{path}".replace(".mp4", ".bin")
        return f"https://cdn.test/{path}"


class FakeHttp:
    """MockTransport handler: serves frame/seed bytes and records callbacks."""

    def __init__(self):
        self.callback_status = 200
        self.callback_error: Optional[Exception] = None
        self.fetch_fails = False
        self.callbacks: list[httpx.Request] = []

    def handle(self, request: httpx.Request) -> httpx.Response:
        if request.method == "POST" and request.url.host == "hooks.test":
            self.callbacks.append(request)
            if self.callback_error is not None:
                raise self.callback_error
            return httpx.Response(self.callback_status, json={"ok": True})

        if request.method == "GET":
            if self.fetch_fails:
                return httpx.Response(503)
            if request.url.host == FRAME_HOST:
                return httpx.Response(200, content=f"FRAME:{request.url.path}".encode())
            if request.url.host == "seed.test":
                return httpx.Response(200, content=b"SEED")

        return httpx.Response(404)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        SQLALCHEMY_DATABASE_URI=f"sqlite+aiosqlite:///{tmp_path}/queue.db",
        SCHEDULER_ENABLED=False,
        ADMIN_TOKEN=None,
        MOOD_API_URL=None,
        GUARD_DEFAULT_BACKOFF_SECONDS=0.0,
    )


@pytest.fixture
async def engine(settings):
    engine = build_engine(settings.SQLALCHEMY_DATABASE_URI)
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def http():
    return FakeHttp()


@pytest.fixture
def renderer():
    return FakeRenderer()


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
async def ctx(settings, engine, http, renderer, store):
    client = httpx.AsyncClient(transport=httpx.MockTransport(http.handle))
    context = build_context(
        settings,
        engine=engine,
        http_client=client,
        renderer=renderer,
        store=store,
        guard=ConcurrencyGuard(default_backoff=0.0),
    )
    yield context
    await context.telemetry.flush()
    await client.aclose()


@pytest.fixture
async def session(ctx):
    async with ctx.session_factory() as s:
        yield s


@pytest.fixture
async def api(ctx):
    app = create_app(ctx)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        yield client


async def make_account(ctx, account_id: str = "acct-vip", tier: str = "vip", api_key: Optional[str] = None) -> Account:
    async with ctx.session_factory() as s:
        account = Account(id=account_id, name=account_id, tier=tier, api_key=api_key or f"key-{account_id}")
        s.add(account)
        await s.commit()
        return account


def job_payload(account_id: str = "acct-vip", tier: str = "vip", **overrides) -> dict:
    payload = {
        "sourceRef": SEED_URL,
        "prompt": "A lighthouse on a cliff during a storm",
        "accountId": account_id,
        "tier": tier,
    }
    payload.update(overrides)
    return payload


async def get_job(ctx, job_id) -> Job:
    async with ctx.session_factory() as s:
        return await s.get(Job, job_id)


async def add_job(ctx, account_id: str = "acct", tier: str = "vip", priority: int = 100, created_at=None, **values) -> Job:
    now = datetime.now(timezone.utc)
    async with ctx.session_factory() as s:
        job = Job(
            account_id=account_id,
            tier=tier,
            status=JobStatus.PENDING,
            priority=priority,
            source_ref=SEED_URL,
            prompt="A lighthouse on a cliff during a storm",
            duration_seconds=values.pop("duration_seconds", 45),
            created_at=created_at or now,
            updated_at=now,
            **values,
        )
        s.add(job)
        await s.commit()
        return job


async def events_for(ctx, job_id) -> list[str]:
    async with ctx.session_factory() as s:
        rows = await s.execute(
            select(JobEventLog.event_type).where(JobEventLog.job_id == job_id).order_by(JobEventLog.id)
        )
        return list(rows.scalars().all())
