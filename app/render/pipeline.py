import logging
import time
from typing import Optional

import httpx

from app.api.v1.metrics import FRAME_FAULTS
from app.db.models import Job, utcnow
from app.domain.errors import StorageError
from app.domain.models import FrameAsset, FrameResult, RenderConfig, RenderFault, RenderOutcome
from app.render.audio import build_audio_track
from app.render.capabilities import AssetStore, FrameRenderer, MoodDetector
from app.render.container import MINIMAL_CONTAINER, assemble
from app.render.prompts import DEFAULT_MOOD, build_frame_prompts
from app.services.telemetry import TelemetryRecorder
from app.utils.guard import ConcurrencyGuard

logger = logging.getLogger(__name__)


class RenderPipeline:
    """
    prompt -> frames -> container -> stored asset.

    Frame faults never abort a render: the job's source image stands in for
    the missing frame. Packaging problems degrade to the minimal container.
    Only storage failures propagate.
    """

    def __init__(
        self,
        renderer: FrameRenderer,
        store: AssetStore,
        http_client: httpx.AsyncClient,
        storage_prefix: str = "media-videos",
        mood_detector: Optional[MoodDetector] = None,
        telemetry: Optional[TelemetryRecorder] = None,
        guard: Optional[ConcurrencyGuard] = None,
    ):
        self.renderer = renderer
        self.store = store
        self.http_client = http_client
        self.storage_prefix = storage_prefix.strip("/")
        self.mood_detector = mood_detector
        self.telemetry = telemetry
        self.guard = guard

    async def render(self, job: Job, config: RenderConfig) -> RenderOutcome:
        started = time.monotonic()

        mood = await self._detect_mood(job)
        prompts = build_frame_prompts(job.prompt, mood, config.frame_count)

        frames: list[FrameResult] = []
        for index, frame_prompt in enumerate(prompts):
            frames.append(await self._render_frame(job, index, frame_prompt))

        sources = [f.url if isinstance(f, FrameAsset) else job.source_ref for f in frames]
        data, degraded = await self._package(job, sources)

        asset_url = await self._store(job, data)

        outcome = RenderOutcome(
            asset_url=asset_url,
            frames=frames,
            used_fallback=config.fallback,
            packaging_degraded=degraded,
            audio_track=build_audio_track(job.prompt, config.duration_seconds),
            mood=mood,
        )

        logger.info(
            f"Rendered job {job.id}: {outcome.rendered_count}/{outcome.frame_count} frames, "
            f"fallback={config.fallback}, degraded={degraded}"
        )

        if self.telemetry is not None:
            self.telemetry.record(
                account_id=job.account_id,
                job_id=job.id,
                rendered_frames=outcome.rendered_count,
                duration_ms=int((time.monotonic() - started) * 1000),
                meta={
                    "tier": job.tier,
                    "mood": mood,
                    "fallback": config.fallback,
                    "placeholders": outcome.placeholder_count,
                    "duration_seconds": config.duration_seconds,
                },
                mood_detected=self.mood_detector is not None,
            )

        return outcome

    async def _detect_mood(self, job: Job) -> str:
        if self.mood_detector is None:
            return DEFAULT_MOOD
        try:
            return await self.mood_detector.detect_mood(job.prompt)
        except Exception as e:
            logger.warning(f"Mood detection failed for job {job.id}, using default: {e}")
            return DEFAULT_MOOD

    async def _render_frame(self, job: Job, index: int, prompt: str) -> FrameResult:
        try:
            if self.guard is not None:
                url = await self.guard.run(f"frame:{job.id}:{index}", lambda: self.renderer.render_frame(prompt))
            else:
                url = await self.renderer.render_frame(prompt)
            return FrameAsset(index=index, url=url)
        except Exception as e:
            logger.warning(f"Frame {index} of job {job.id} failed, using placeholder: {e}")
            FRAME_FAULTS.inc()
            return RenderFault(index=index, error=str(e))

    async def _fetch(self, url: str) -> bytes:
        try:
            resp = await self.http_client.get(url)
            resp.raise_for_status()
            return resp.content
        except httpx.HTTPError as e:
            logger.warning(f"Could not fetch frame data from {url}: {e}")
            return b""

    async def _package(self, job: Job, sources: list[str]) -> tuple[bytes, bool]:
        try:
            payloads = [await self._fetch(url) for url in sources]
            return assemble(payloads), False
        except Exception as e:
            logger.warning(f"Packaging degraded to minimal container for job {job.id}: {e}")
            return MINIMAL_CONTAINER, True

    async def _store(self, job: Job, data: bytes) -> str:
        timestamp = utcnow().strftime("%Y%m%dT%H%M%S%f")
        path = f"{self.storage_prefix}/{job.id}-{timestamp}.mp4"
        try:
            asset_url = await self.store.store(data, path)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"storage upload failed: {e}") from e

        if not asset_url or ".mp4" not in asset_url:
            raise StorageError(f"storage returned an invalid asset url: {asset_url!r}")
        return asset_url
