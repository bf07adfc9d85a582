from fastapi import APIRouter

from app.api.deps import AdminGuard, Context, DbSession
from app.scheduler.ticker import queue_counts

router = APIRouter(dependencies=[AdminGuard])


@router.post("/process")
async def process_queue(ctx: Context):
    """One dispatch cycle. Target of the periodic trigger."""
    if ctx.dispatcher.busy:
        return {"processed": False, "busy": True, "message": "A job is already processing"}

    result = await ctx.dispatcher.dispatch_next()
    if result is None:
        return {"processed": False, "busy": False, "message": "No pending jobs"}

    return {
        "processed": True,
        "busy": False,
        "jobId": str(result.job_id),
        "status": result.status.value,
        "assetUrl": result.asset_url,
        "frameCount": result.frame_count,
        "usedFallback": result.used_fallback,
        "retryCount": result.retry_count,
        "willRetry": result.will_retry,
    }


@router.get("/stats")
async def queue_stats(session: DbSession, ctx: Context):
    counts = await queue_counts(session)
    return {
        "counts": counts,
        "total": sum(counts.values()),
        "dispatcherBusy": ctx.dispatcher.busy,
    }
