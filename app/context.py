"""
Runtime collaborators, built once at startup and hung off `app.state`.
Tests build their own context with fakes in place of the HTTP services.
"""
from dataclasses import dataclass
from typing import Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from app.db.session import build_engine, build_session_factory
from app.domain.tiers import TierTable
from app.render.capabilities import (
    AssetStore,
    FrameRenderer,
    HttpFrameRenderer,
    HttpMoodDetector,
    LocalAssetStore,
    MoodDetector,
)
from app.render.pipeline import RenderPipeline
from app.scheduler.dispatcher import Dispatcher
from app.scheduler.recovery import RecoveryController
from app.services.notifier import Notifier
from app.services.quota import QuotaLedger
from app.services.telemetry import TelemetryRecorder
from app.settings import Settings
from app.utils.guard import ConcurrencyGuard


@dataclass
class QueueContext:
    settings: Settings
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    http_client: httpx.AsyncClient
    tiers: TierTable
    quota: QuotaLedger
    guard: ConcurrencyGuard
    telemetry: TelemetryRecorder
    pipeline: RenderPipeline
    recovery: RecoveryController
    notifier: Notifier
    dispatcher: Dispatcher

    async def aclose(self) -> None:
        await self.telemetry.flush()
        await self.http_client.aclose()
        await self.engine.dispose()


def build_context(
    settings: Settings,
    engine: Optional[AsyncEngine] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    renderer: Optional[FrameRenderer] = None,
    store: Optional[AssetStore] = None,
    mood_detector: Optional[MoodDetector] = None,
    tiers: Optional[TierTable] = None,
    guard: Optional[ConcurrencyGuard] = None,
) -> QueueContext:
    engine = engine or build_engine(settings.SQLALCHEMY_DATABASE_URI)
    session_factory = build_session_factory(engine)
    http_client = http_client or httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS)
    tiers = tiers or TierTable()
    guard = guard or ConcurrencyGuard(default_backoff=settings.GUARD_DEFAULT_BACKOFF_SECONDS)

    if renderer is None:
        renderer = HttpFrameRenderer(http_client, settings.RENDER_API_URL, settings.RENDER_API_KEY)
    if store is None:
        store = LocalAssetStore(settings.MEDIA_DIR, settings.MEDIA_PUBLIC_BASE_URL)
    if mood_detector is None and settings.MOOD_API_URL:
        mood_detector = HttpMoodDetector(http_client, settings.MOOD_API_URL)

    telemetry = TelemetryRecorder(session_factory)
    pipeline = RenderPipeline(
        renderer=renderer,
        store=store,
        http_client=http_client,
        storage_prefix=settings.STORAGE_PREFIX,
        mood_detector=mood_detector,
        telemetry=telemetry,
        guard=guard,
    )
    recovery = RecoveryController(
        pipeline,
        frame_count=settings.FRAME_COUNT,
        fallback_frame_count=settings.FALLBACK_FRAME_COUNT,
        fallback_max_duration=settings.FALLBACK_MAX_DURATION_SECONDS,
    )
    notifier = Notifier(http_client, session_factory, timeout=settings.WEBHOOK_TIMEOUT_SECONDS)
    dispatcher = Dispatcher(session_factory, recovery, notifier)

    return QueueContext(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        http_client=http_client,
        tiers=tiers,
        quota=QuotaLedger(tiers),
        guard=guard,
        telemetry=telemetry,
        pipeline=pipeline,
        recovery=recovery,
        notifier=notifier,
        dispatcher=dispatcher,
    )
