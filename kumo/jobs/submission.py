import uuid

from kumo.core.exceptions import JobValidationError
from kumo.core.logger import logger
from kumo.jobs.models import (BatchJob, EpisodeJob, JobSubmission, TitleJob,
                              job_priority)
from kumo.scrapers.manager import SourceRegistry
from kumo.services.progress import ProgressEvent, notify
from kumo.utils.parsing import extract_slug, is_valid_url


def _resolve_target(submission: JobSubmission, registry: SourceRegistry):
    if not is_valid_url(submission.target_url):
        raise JobValidationError(
            f"Invalid target_url: {submission.target_url!r}",
            "target_url must be an http(s) URL",
        )
    target_url = submission.target_url.strip()

    source = submission.source.strip().lower() if submission.source else None
    if source:
        if source not in registry:
            raise JobValidationError(
                f"Unknown source: {source}",
                f"source must be one of: {', '.join(registry.names)}",
            )
    else:
        source = registry.detect_source(target_url)

    slug = (submission.target_slug or "").strip() or extract_slug(target_url)
    if not slug:
        raise JobValidationError(
            f"Cannot derive a slug from {target_url}",
            "target_slug is required when target_url has no path",
        )

    return source, target_url, slug


def _build_single(submission: JobSubmission, registry: SourceRegistry, job_id: str):
    source, target_url, slug = _resolve_target(submission, registry)

    if submission.kind == "episode":
        if not submission.parent_id:
            raise JobValidationError(
                "Episode job without parent_id",
                "parent_id is required for episode jobs",
            )
        return EpisodeJob(
            id=job_id,
            source=source,
            target_url=target_url,
            target_slug=slug,
            parent_id=submission.parent_id,
        )

    return TitleJob(
        id=job_id,
        source=source,
        target_url=target_url,
        target_slug=slug,
        parent_id=submission.parent_id,
    )


def build_job(submission: JobSubmission, registry: SourceRegistry, job_id: str = None):
    """Validate a submission and turn it into a queueable job.

    Raises `JobValidationError` for anything that must never reach the queue.
    """
    job_id = job_id or str(uuid.uuid4())

    if submission.kind != "batch":
        if submission.items:
            raise JobValidationError(
                "items given for a non-batch job", "items are only allowed on batch jobs"
            )
        return _build_single(submission, registry, job_id)

    if not submission.items:
        raise JobValidationError(
            "Batch job without items", "batch jobs need at least one item"
        )

    items = []
    for index, item in enumerate(submission.items, start=1):
        if item.kind == "batch":
            raise JobValidationError(
                "Nested batch job", "batch items must be title or episode jobs"
            )
        if item.items:
            raise JobValidationError(
                "items given for a batch item", "batch items cannot carry items"
            )
        if item.source is None and submission.source:
            item = item.model_copy(update={"source": submission.source})
        items.append(_build_single(item, registry, f"{job_id}#{index}"))

    if submission.target_url is not None and not is_valid_url(submission.target_url):
        raise JobValidationError(
            f"Invalid target_url: {submission.target_url!r}",
            "target_url must be an http(s) URL",
        )

    return BatchJob(
        id=job_id,
        source=submission.source.strip().lower() if submission.source else None,
        target_url=(submission.target_url or items[0].target_url).strip(),
        target_slug=(submission.target_slug or "").strip() or None,
        items=items,
    )


async def submit_job(submission: JobSubmission, registry, store, queue, publisher):
    job = build_job(submission, registry)

    # A job row without its queue entry would never run
    async with store.database.transaction():
        record = await store.create(job)
        await queue.enqueue(job, job_priority(job))

    logger.log(
        "QUEUE",
        f"Queued {job.kind} job {job.id} ({job.target_url}) - source: {job.source or 'auto'}",
    )
    await notify(
        publisher,
        ProgressEvent(
            name="job-created", job_id=job.id, status=record["status"], progress=0
        ),
    )
    return record
