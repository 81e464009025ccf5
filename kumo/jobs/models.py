from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

JOB_STATUSES = ("pending", "processing", "completed", "failed")
JOB_KINDS = ("title", "episode", "batch")

TITLE_PRIORITY = 1
DEFAULT_PRIORITY = 2


class JobSubmission(BaseModel):
    """Raw scrape request, as received from the API."""

    kind: Literal["title", "episode", "batch"]
    source: Optional[str] = None
    target_url: Optional[str] = None
    target_slug: Optional[str] = None
    parent_id: Optional[str] = None
    items: Optional[List["JobSubmission"]] = None


class TitleJob(BaseModel):
    kind: Literal["title"] = "title"
    id: str
    source: Optional[str] = None
    target_url: str
    target_slug: str
    parent_id: Optional[str] = None


class EpisodeJob(BaseModel):
    kind: Literal["episode"] = "episode"
    id: str
    source: Optional[str] = None
    target_url: str
    target_slug: str
    parent_id: str


BatchItem = Annotated[Union[TitleJob, EpisodeJob], Field(discriminator="kind")]


class BatchJob(BaseModel):
    kind: Literal["batch"] = "batch"
    id: str
    source: Optional[str] = None
    target_url: str
    target_slug: Optional[str] = None
    parent_id: Optional[str] = None
    items: List[BatchItem]


ScrapeJob = Annotated[Union[TitleJob, EpisodeJob, BatchJob], Field(discriminator="kind")]

scrape_job_adapter = TypeAdapter(ScrapeJob)


def job_priority(job) -> int:
    return TITLE_PRIORITY if job.kind == "title" else DEFAULT_PRIORITY


def load_job(payload: dict):
    return scrape_job_adapter.validate_python(payload)
