import asyncio
from typing import Awaitable, Callable, Optional

from kumo.content.repository import ContentRepository
from kumo.core.exceptions import (BatchFailed, ExhaustedSources,
                                  JobValidationError, KumoError,
                                  SourceNotFound, SourceTransientError,
                                  is_retryable)
from kumo.core.logger import logger
from kumo.jobs.models import BatchJob, EpisodeJob, TitleJob
from kumo.metadata.jikan import JikanClient
from kumo.metadata.merge import jikan_to_partial, merge_title
from kumo.scrapers.manager import SourceRegistry
from kumo.scrapers.models import EpisodePartial, TitlePartial

ProgressReporter = Callable[[int], Awaitable[None]]

# Title job checkpoints, 100 is only reached when the job completes
TITLE_STARTED = 10
TITLE_SCRAPED = 30
EPISODES_LISTED = 50
TITLE_MERGED = 70
TITLE_PERSISTED = 90

EPISODE_STARTED = 10
PARENT_RESOLVED = 30
EPISODE_SCRAPED = 70
EPISODE_PERSISTED = 90


def describe_error(error: BaseException) -> str:
    if isinstance(error, KumoError):
        return error.message
    if isinstance(error, asyncio.TimeoutError):
        return "Timed out"
    return str(error) or type(error).__name__


def humanize_slug(slug: str):
    return slug.replace("-", " ").replace("_", " ").strip()


def scaled_reporter(report: ProgressReporter, start: int, end: int) -> ProgressReporter:
    """Maps a 0-100 sub-progress onto the [start, end] slice of `report`."""

    async def sub_report(progress: int):
        await report(start + (end - start) * max(0, min(progress, 100)) // 100)

    return sub_report


class ScrapePipeline:
    """Runs one attempt of a scrape job.

    Each job variant has its own handler. Sources are tried in fallback order
    until one answers, and every write goes through an idempotent upsert so a
    retried attempt never duplicates rows.
    """

    def __init__(
        self,
        registry: SourceRegistry,
        repository: ContentRepository,
        enricher: Optional[JikanClient] = None,
        enrichment_timeout: float = 15,
    ):
        self.registry = registry
        self.repository = repository
        self.enricher = enricher
        self.enrichment_timeout = enrichment_timeout

        self._handlers = {
            TitleJob: self.run_title,
            EpisodeJob: self.run_episode,
            BatchJob: self.run_batch,
        }

    async def run(self, job, report: ProgressReporter) -> dict:
        return await self._handlers[type(job)](job, report)

    async def _first_success(self, hint: Optional[str], slug: str, operation):
        adapters = self.registry.fallback_order(hint)
        tried = [adapter.name for adapter in adapters]
        transient_errors = []

        for adapter in adapters:
            try:
                return adapter, await operation(adapter)
            except SourceNotFound as e:
                logger.log("SCRAPER", e.message)
            except SourceTransientError as e:
                logger.warning(e.message)
                transient_errors.append(e)
            except Exception as e:
                logger.warning(f"{adapter.name}: unexpected error for '{slug}': {e}")
                transient_errors.append(e)

        if transient_errors:
            raise SourceTransientError(
                ", ".join(tried),
                f"No source produced data for '{slug}' (last error: {describe_error(transient_errors[-1])})",
            )
        raise ExhaustedSources(slug, tried)

    async def _enrich(self, partial: TitlePartial) -> Optional[TitlePartial]:
        if self.enricher is None:
            return None

        query = partial.title or humanize_slug(partial.slug)
        try:
            candidate = await asyncio.wait_for(
                self.enricher.find(query), self.enrichment_timeout
            )
        except Exception as e:
            logger.log(
                "ENRICHMENT",
                f"Enrichment unavailable for '{query}': {describe_error(e)}",
            )
            return None

        if candidate is None:
            return None
        return jikan_to_partial(partial.slug, candidate)

    async def run_title(self, job: TitleJob, report: ProgressReporter) -> dict:
        slug = job.target_slug
        await report(TITLE_STARTED)

        adapter, partial = await self._first_success(
            job.source, slug, lambda adapter: adapter.fetch_title(slug)
        )
        logger.log("SCRAPER", f"{adapter.name}: scraped title '{slug}'")
        await report(TITLE_SCRAPED)

        # Episodes always come from the source that produced the title
        try:
            stubs = await adapter.fetch_episode_list(slug)
        except SourceNotFound:
            stubs = []
        await report(EPISODES_LISTED)

        enrichment = await self._enrich(partial)
        merged = merge_title(partial, enrichment)
        await report(TITLE_MERGED)

        title_id = await self.repository.upsert_title(merged)
        episodes = [EpisodePartial.from_stub(stub, adapter.name) for stub in stubs]
        episode_count = await self.repository.upsert_episodes(title_id, episodes)
        await report(TITLE_PERSISTED)

        return {
            "title_id": title_id,
            "slug": slug,
            "source": adapter.name,
            "episodes": episode_count,
            "enriched": enrichment is not None,
        }

    async def run_episode(self, job: EpisodeJob, report: ProgressReporter) -> dict:
        slug = job.target_slug
        await report(EPISODE_STARTED)

        parent = await self.repository.get_title_by_id(job.parent_id)
        if parent is None:
            raise JobValidationError(f"Parent title {job.parent_id} does not exist")
        await report(PARENT_RESOLVED)

        adapter, episode = await self._first_success(
            job.source, slug, lambda adapter: adapter.fetch_episode(slug)
        )
        logger.log(
            "SCRAPER",
            f"{adapter.name}: scraped episode {episode.episode_number} of '{parent['slug']}'",
        )
        await report(EPISODE_SCRAPED)

        episode_id = await self.repository.upsert_episode(parent["id"], episode)
        await report(EPISODE_PERSISTED)

        return {
            "episode_id": episode_id,
            "title_id": parent["id"],
            "episode_number": episode.episode_number,
            "source": adapter.name,
            "download_qualities": len(episode.download_links),
            "streaming_providers": len(episode.streaming_links),
        }

    async def run_batch(self, job: BatchJob, report: ProgressReporter) -> dict:
        total = len(job.items)
        outcomes = []
        errors = []

        for index, item in enumerate(job.items):
            start = index * 100 // total
            end = (index + 1) * 100 // total
            try:
                result = await self.run(item, scaled_reporter(report, start, end))
            except Exception as e:
                message = describe_error(e)
                logger.warning(f"Batch {job.id}: item {item.id} failed: {message}")
                errors.append(e)
                outcomes.append(
                    {
                        "id": item.id,
                        "kind": item.kind,
                        "target_slug": item.target_slug,
                        "status": "failed",
                        "error": message,
                    }
                )
            else:
                outcomes.append(
                    {
                        "id": item.id,
                        "kind": item.kind,
                        "target_slug": item.target_slug,
                        "status": "completed",
                        "result": result,
                    }
                )
            await report(end)

        succeeded = total - len(errors)
        if succeeded == 0:
            raise BatchFailed(
                f"All {total} batch items failed (last error: {describe_error(errors[-1])})",
                retryable=any(is_retryable(error) for error in errors),
            )

        return {"items": outcomes, "succeeded": succeeded, "failed": len(errors)}
