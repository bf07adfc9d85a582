from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, HTTPException, Request, Security
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import func, select

from app.api.deps import Context, DbSession
from app.auth.security import API_KEY_HEADER, CurrentAccount
from app.commands.admit_job import admit_job
from app.db.models import Job
from app.domain.errors import AdmissionRejected, InvalidPayloadError
from app.domain.models import JobRecord
from app.domain.states import JobStatus

router = APIRouter()


class JobListResponse(BaseModel):
    jobs: list[JobRecord]
    counts: dict[str, int]
    total: int


def _inline_response(job_id: UUID, result) -> JSONResponse:
    if result is None:
        # A dispatch cycle claimed it first; it is being handled by the queue
        return JSONResponse(status_code=202, content={"jobId": str(job_id), "status": JobStatus.PROCESSING.value})

    if result.status == JobStatus.COMPLETED:
        return JSONResponse(status_code=200, content={
            "jobId": str(result.job_id),
            "status": result.status.value,
            "assetUrl": result.asset_url,
            "frameCount": result.frame_count,
            "usedFallback": result.used_fallback,
        })

    return JSONResponse(status_code=502, content={
        "jobId": str(result.job_id),
        "status": result.status.value,
        "error": "Video generation failed",
        "code": "GENERATION_FAILED",
        "willRetry": result.will_retry,
        "retryCount": result.retry_count,
    })


@router.post("", status_code=202)
async def create_job(
    request: Request,
    session: DbSession,
    ctx: Context,
    api_key: Optional[str] = Security(API_KEY_HEADER),
):
    try:
        payload: Any = await request.json()
    except ValueError:
        raise InvalidPayloadError("Request body must be valid JSON", code="INVALID_JSON")

    try:
        job, admission = await admit_job(session, ctx, payload, api_key)
        await session.commit()
    except AdmissionRejected:
        await session.rollback()
        raise

    if admission.use_queue:
        return JSONResponse(status_code=202, content={"jobId": str(job.id), "status": JobStatus.PENDING.value})

    result = await ctx.dispatcher.run_job(job.id)
    return _inline_response(job.id, result)


@router.get("", response_model=JobListResponse)
async def list_jobs(
    account: CurrentAccount,
    session: DbSession,
    ctx: Context,
    status: Optional[JobStatus] = None,
):
    async def load() -> tuple[list[Job], dict[str, int]]:
        stmt = select(Job).where(Job.account_id == account.id)
        if status is not None:
            stmt = stmt.where(Job.status == status)
        stmt = stmt.order_by(Job.created_at.desc(), Job.id.desc())
        jobs = list((await session.execute(stmt)).scalars().all())

        count_stmt = (
            select(Job.status, func.count(Job.id))
            .where(Job.account_id == account.id)
            .group_by(Job.status)
        )
        counts = {str(s): 0 for s in JobStatus}
        for s, n in (await session.execute(count_stmt)).all():
            counts[str(s)] = n
        return jobs, counts

    jobs, counts = await ctx.guard.run(f"jobs:{account.id}:{status or 'all'}", load)
    return JobListResponse(
        jobs=[JobRecord.model_validate(j) for j in jobs],
        counts=counts,
        total=sum(counts.values()),
    )


@router.get("/{job_id}", response_model=JobRecord)
async def get_job(job_id: UUID, account: CurrentAccount, session: DbSession, ctx: Context):
    job = await ctx.guard.run(f"job:{job_id}", lambda: session.get(Job, job_id))
    # Other accounts' jobs are indistinguishable from missing ones
    if not job or job.account_id != account.id:
        raise HTTPException(status_code=404, detail="Job not found")
    return JobRecord.model_validate(job)
