import logging

from app.db.models import Job
from app.domain.errors import TerminalRenderError
from app.domain.models import RenderConfig, RenderOutcome
from app.render.pipeline import RenderPipeline

logger = logging.getLogger(__name__)


class RecoveryController:
    """
    Full render first; if it raises, one immediate retry with the reduced
    fallback config. The fallback attempt does not consume the job's retry
    budget.
    """

    def __init__(
        self,
        pipeline: RenderPipeline,
        frame_count: int = 4,
        fallback_frame_count: int = 2,
        fallback_max_duration: int = 6,
    ):
        self.pipeline = pipeline
        self.frame_count = frame_count
        self.fallback_frame_count = fallback_frame_count
        self.fallback_max_duration = fallback_max_duration

    def full_config(self, job: Job) -> RenderConfig:
        return RenderConfig(frame_count=self.frame_count, duration_seconds=job.duration_seconds)

    def fallback_config(self, job: Job) -> RenderConfig:
        return RenderConfig(
            frame_count=self.fallback_frame_count,
            duration_seconds=min(job.duration_seconds, self.fallback_max_duration),
            fallback=True,
        )

    async def execute(self, job: Job) -> RenderOutcome:
        try:
            return await self.pipeline.render(job, self.full_config(job))
        except Exception as first:
            logger.warning(f"Full render failed for job {job.id}, trying fallback: {first}")
            try:
                return await self.pipeline.render(job, self.fallback_config(job))
            except Exception as second:
                logger.error(f"Fallback render failed for job {job.id}: {second}")
                raise TerminalRenderError(f"render failed: {first}; fallback failed: {second}") from second
