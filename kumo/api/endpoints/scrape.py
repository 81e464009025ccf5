from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request

from kumo.api.endpoints.base import get_services
from kumo.jobs.models import JOB_KINDS, JOB_STATUSES, JobSubmission
from kumo.jobs.submission import submit_job

router = APIRouter()


@router.post(
    "/scrape",
    status_code=201,
    tags=["Scrape"],
    summary="Submit Scrape Job",
    description="Validates a scrape request and queues it. Returns the created job.",
)
async def create_scrape_job(request: Request, submission: JobSubmission):
    services = get_services(request)
    return await submit_job(
        submission,
        services.registry,
        services.store,
        services.queue,
        services.publisher,
    )


@router.get(
    "/scrape",
    tags=["Scrape"],
    summary="List Scrape Jobs",
)
async def list_scrape_jobs(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[str] = None,
    kind: Optional[str] = None,
):
    if status is not None and status not in JOB_STATUSES:
        raise HTTPException(status_code=400, detail=f"Unknown status: {status}")
    if kind is not None and kind not in JOB_KINDS:
        raise HTTPException(status_code=400, detail=f"Unknown kind: {kind}")

    jobs, total = await get_services(request).store.list(page, limit, status, kind)
    return {
        "jobs": jobs,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": (total + limit - 1) // limit,
        },
    }


@router.get(
    "/scrape/{job_id}",
    tags=["Scrape"],
    summary="Get Scrape Job",
)
async def get_scrape_job(request: Request, job_id: str):
    job = await get_services(request).store.get(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


@router.get(
    "/queue/stats",
    tags=["Scrape"],
    summary="Queue Statistics",
)
async def queue_stats(request: Request):
    services = get_services(request)

    worker = None
    if services.worker is not None:
        stats = services.worker.stats
        worker = {
            "running": services.worker.is_running,
            "concurrency": services.worker.concurrency,
            "processed": stats.processed,
            "completed": stats.completed,
            "retried": stats.retried,
            "failed": stats.failed,
            "uptime": round(stats.uptime, 2),
        }

    return {
        "queue": await services.queue.stats(),
        "jobs": await services.store.stats(),
        "content": await services.repository.counts(),
        "worker": worker,
    }
