import asyncio

import pytest

from kumo.content.repository import ContentRepository
from kumo.core.database import teardown_database
from kumo.core.exceptions import (BatchFailed, EnrichmentError,
                                  ExhaustedSources, JobValidationError,
                                  SourceNotFound, SourceTransientError,
                                  is_retryable)
from kumo.jobs.models import BatchJob, EpisodeJob, TitleJob
from kumo.jobs.pipeline import ScrapePipeline
from kumo.scrapers.manager import SourceRegistry
from tests.fakes import (FakeAdapter, FakeEnricher, make_episode, make_stubs,
                         make_title, open_database, transient)

SLUG = "attack-on-titan"

CANDIDATE = {
    "mal_id": 16498,
    "title": "Shingeki no Kyojin",
    "title_english": "Attack on Titan",
    "synopsis": "Centuries ago, mankind was slaughtered to near extinction.",
    "studios": [{"name": "Wit Studio"}],
    "score": 8.54,
}


def title_job(source=None, slug=SLUG, job_id="job-1"):
    return TitleJob(
        id=job_id,
        source=source,
        target_url=f"https://primary.test/anime/{slug}",
        target_slug=slug,
    )


def run_pipeline(tmp_path, adapters, scenario, enricher=None, enrichment_timeout=1):
    """Runs `scenario(run, repository, progress)` against a fresh database."""

    async def main():
        database = await open_database(tmp_path)
        try:
            repository = ContentRepository(database)
            pipeline = ScrapePipeline(
                SourceRegistry(adapters),
                repository,
                enricher=enricher,
                enrichment_timeout=enrichment_timeout,
            )
            progress = []

            async def report(value):
                progress.append(value)

            def run_job(job):
                return pipeline.run(job, report)

            return await scenario(run_job, repository, progress)
        finally:
            await teardown_database(database)

    return asyncio.run(main())


def test_title_job_persists_merged_title_and_episodes(tmp_path):
    primary = FakeAdapter("primary", title=make_title(rating=9.0), stubs=make_stubs())
    enricher = FakeEnricher(candidate=CANDIDATE)

    async def scenario(run, repository, progress):
        result = await run(title_job())
        title = await repository.get_title(SLUG)
        return result, title, await repository.list_episodes(title["id"]), progress

    result, title, episodes, progress = run_pipeline(
        tmp_path, [primary], scenario, enricher=enricher
    )

    assert result["source"] == "primary"
    assert result["episodes"] == 3
    assert result["enriched"] is True
    assert enricher.queries == ["Attack on Titan"]

    assert title["rating"] == 9.0
    assert title["studio"] == "Wit Studio"
    assert title["external_id"] == 16498
    assert [episode["episode_number"] for episode in episodes] == [1, 2, 3]

    assert progress == sorted(progress)
    assert progress == [10, 30, 50, 70, 90]


def test_fallback_takes_episodes_from_the_answering_source(tmp_path):
    primary = FakeAdapter("primary", title=transient("primary"), stubs=make_stubs())
    secondary = FakeAdapter(
        "secondary",
        title=make_title(source="secondary"),
        stubs=make_stubs(source="secondary", numbers=(4, 5)),
    )

    async def scenario(run, repository, progress):
        result = await run(title_job())
        return result, await repository.list_episodes(result["title_id"])

    result, episodes = run_pipeline(tmp_path, [primary, secondary], scenario)

    assert result["source"] == "secondary"
    assert [call[0] for call in primary.calls] == ["title"]
    assert [episode["episode_number"] for episode in episodes] == [4, 5]
    assert all(set(episode["source_urls"]) == {"secondary"} for episode in episodes)


def test_source_hint_is_tried_first(tmp_path):
    primary = FakeAdapter("primary", title=make_title(), stubs=make_stubs())
    secondary = FakeAdapter(
        "secondary", title=make_title(source="secondary"), stubs=make_stubs()
    )

    async def scenario(run, repository, progress):
        return await run(title_job(source="secondary"))

    result = run_pipeline(tmp_path, [primary, secondary], scenario)

    assert result["source"] == "secondary"
    assert primary.calls == []


def test_every_source_not_found_exhausts_without_writing(tmp_path):
    primary = FakeAdapter("primary", title=None)
    secondary = FakeAdapter("secondary", title=None)

    async def scenario(run, repository, progress):
        with pytest.raises(ExhaustedSources) as excinfo:
            await run(title_job())
        return excinfo.value, await repository.counts()

    error, counts = run_pipeline(tmp_path, [primary, secondary], scenario)

    assert "No source produced data" in error.message
    assert is_retryable(error) is False
    assert counts == {"titles": 0, "episodes": 0}


def test_transient_failures_across_sources_are_retryable(tmp_path):
    primary = FakeAdapter("primary", title=None)
    secondary = FakeAdapter("secondary", title=transient("secondary"))

    async def scenario(run, repository, progress):
        with pytest.raises(SourceTransientError) as excinfo:
            await run(title_job())
        return excinfo.value, await repository.counts()

    error, counts = run_pipeline(tmp_path, [primary, secondary], scenario)

    assert "No source produced data" in error.message
    assert is_retryable(error) is True
    assert counts["titles"] == 0


def test_enrichment_errors_and_timeouts_degrade(tmp_path):
    failing = FakeEnricher(error=EnrichmentError("Jikan returned HTTP 500"))
    slow = FakeEnricher(candidate=CANDIDATE, delay=1)

    async def scenario(run, repository, progress):
        return await run(title_job())

    adapter = FakeAdapter("primary", title=make_title(title=None), stubs=make_stubs())
    result = run_pipeline(tmp_path / "failing", [adapter], scenario, enricher=failing)
    assert result["enriched"] is False
    # without a scraped title the slug is used as the query
    assert failing.queries == ["attack on titan"]

    adapter = FakeAdapter("primary", title=make_title(), stubs=make_stubs())
    result = run_pipeline(
        tmp_path / "slow", [adapter], scenario, enricher=slow, enrichment_timeout=0.1
    )
    assert result["enriched"] is False


def test_missing_episode_list_is_not_an_error(tmp_path):
    adapter = FakeAdapter(
        "primary", title=make_title(), stubs_error=SourceNotFound("primary", SLUG)
    )

    async def scenario(run, repository, progress):
        return await run(title_job())

    result = run_pipeline(tmp_path, [adapter], scenario)

    assert result["episodes"] == 0


def test_rerunning_a_title_job_does_not_duplicate(tmp_path):
    adapter = FakeAdapter("primary", title=make_title(), stubs=make_stubs())

    async def scenario(run, repository, progress):
        first = await run(title_job())
        second = await run(title_job(job_id="job-2"))
        return first, second, await repository.counts()

    first, second, counts = run_pipeline(tmp_path, [adapter], scenario)

    assert first["title_id"] == second["title_id"]
    assert counts == {"titles": 1, "episodes": 3}


def test_episode_job_requires_an_existing_parent(tmp_path):
    adapter = FakeAdapter("primary", episode=make_episode(7))

    async def scenario(run, repository, progress):
        orphan = EpisodeJob(
            id="orphan",
            target_url="https://primary.test/episode/x",
            target_slug="x",
            parent_id="missing",
        )
        with pytest.raises(JobValidationError):
            await run(orphan)

        title_id = await repository.upsert_title(make_title())
        job = EpisodeJob(
            id="episode-7",
            target_url="https://primary.test/episode/attack-on-titan-episode-7",
            target_slug="attack-on-titan-episode-7",
            parent_id=title_id,
        )
        result = await run(job)
        return result, title_id, await repository.list_episodes(title_id), progress

    result, title_id, episodes, progress = run_pipeline(tmp_path, [adapter], scenario)

    assert result["title_id"] == title_id
    assert result["episode_number"] == 7
    assert result["download_qualities"] == 1
    assert [episode["episode_number"] for episode in episodes] == [7]
    assert progress[-4:] == [10, 30, 70, 90]


def test_batch_runs_items_in_order_with_one_progress(tmp_path):
    adapter = FakeAdapter("primary", title=make_title(), stubs=make_stubs())

    async def scenario(run, repository, progress):
        job = BatchJob(
            id="batch",
            target_url="https://primary.test/anime/attack-on-titan",
            items=[
                title_job(job_id="batch#1"),
                EpisodeJob(
                    id="batch#2",
                    target_url="https://primary.test/episode/x",
                    target_slug="x",
                    parent_id="missing",
                ),
            ],
        )
        return await run(job), progress

    result, progress = run_pipeline(tmp_path, [adapter], scenario)

    assert result["succeeded"] == 1
    assert result["failed"] == 1
    assert [item["status"] for item in result["items"]] == ["completed", "failed"]
    assert progress == sorted(progress)
    assert progress[-1] == 100


def test_batch_with_only_failures_fails(tmp_path):
    adapter = FakeAdapter("primary", title=None)

    async def scenario(run, repository, progress):
        job = BatchJob(
            id="batch",
            target_url="https://primary.test/anime/a",
            items=[title_job(slug="a", job_id="batch#1"), title_job(slug="b", job_id="batch#2")],
        )
        with pytest.raises(BatchFailed) as excinfo:
            await run(job)
        return excinfo.value

    error = run_pipeline(tmp_path, [adapter], scenario)

    assert "All 2 batch items failed" in error.message
    assert is_retryable(error) is False
