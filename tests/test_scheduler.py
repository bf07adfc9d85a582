"""In-process periodic trigger."""
import pytest
from prometheus_client import REGISTRY

from app.domain.states import JobStatus
from app.scheduler.service import SchedulerService
from tests.conftest import add_job, get_job


@pytest.mark.asyncio
async def test_tick_drains_up_to_max_jobs(ctx):
    jobs = [await add_job(ctx) for _ in range(3)]
    service = SchedulerService(ctx.session_factory, ctx.dispatcher, interval=0.01, max_jobs_per_tick=2)

    async with ctx.session_factory() as s:
        processed = await service.tick(s)

    assert processed == 2
    assert service.is_leader
    statuses = [(await get_job(ctx, j.id)).status for j in jobs]
    assert statuses.count(JobStatus.COMPLETED) == 2
    assert statuses.count(JobStatus.PENDING) == 1
    assert REGISTRY.get_sample_value("render_queue_depth", {"tier": "vip"}) == 1


@pytest.mark.asyncio
async def test_start_and_stop(ctx):
    service = SchedulerService(ctx.session_factory, ctx.dispatcher, interval=0.01)
    await service.start()
    await service.stop()
    assert service._task.done()
