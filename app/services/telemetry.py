import asyncio
import logging
from typing import Any, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db.models import UsageLog

logger = logging.getLogger(__name__)

BASE_COST_USD = 0.10
MOOD_DETECTION_COST_USD = 0.0003
FRAME_COST_USD = 0.004
STORAGE_COST_USD = 0.004
TOKENS_PER_FRAME = 7500


def estimate_cost(rendered_frames: int, mood_detected: bool = True) -> dict[str, float]:
    breakdown = {
        "base": BASE_COST_USD,
        "mood_detection": MOOD_DETECTION_COST_USD if mood_detected else 0.0,
        "frames": round(rendered_frames * FRAME_COST_USD, 6),
        "storage": STORAGE_COST_USD,
    }
    breakdown["total"] = round(sum(breakdown.values()), 6)
    return breakdown


class TelemetryRecorder:
    """
    Best-effort usage log. `record` returns immediately; the write runs as a
    background task and a failure is only logged.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory
        self._tasks: set[asyncio.Task] = set()

    def record(
        self,
        account_id: str,
        job_id: Optional[UUID],
        rendered_frames: int,
        duration_ms: int,
        operation: str = "video_generation",
        meta: Optional[dict[str, Any]] = None,
        mood_detected: bool = True,
    ) -> asyncio.Task:
        cost = estimate_cost(rendered_frames, mood_detected)
        entry = UsageLog(
            account_id=account_id,
            job_id=job_id,
            operation=operation,
            frames_rendered=rendered_frames,
            estimated_cost_usd=cost["total"],
            duration_ms=duration_ms,
            meta={
                **(meta or {}),
                "cost_breakdown": cost,
                "tokens": rendered_frames * TOKENS_PER_FRAME,
            },
        )
        task = asyncio.create_task(self._write(entry))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _write(self, entry: UsageLog) -> None:
        try:
            async with self.session_factory() as session:
                session.add(entry)
                await session.commit()
        except Exception as e:
            logger.warning(f"Usage telemetry write failed for job {entry.job_id}: {e}")

    async def flush(self) -> None:
        """Wait for outstanding writes (shutdown and tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
