import asyncio

import pytest

from kumo.core.database import teardown_database
from kumo.core.exceptions import JobValidationError
from kumo.jobs.models import BatchJob, EpisodeJob, JobSubmission, TitleJob
from kumo.jobs.queue import JobQueue
from kumo.jobs.store import JobStore
from kumo.jobs.submission import build_job, submit_job
from kumo.scrapers.manager import build_adapters
from tests.fakes import FakeSession, RecordingPublisher, make_settings, open_database


def registry_for(tmp_path):
    return build_adapters(make_settings(tmp_path), FakeSession())


def test_slug_and_source_are_derived_from_the_url(tmp_path):
    job = build_job(
        JobSubmission(
            kind="title",
            target_url="https://otakudesu.best/anime/shingeki-no-kyojin-sub-indo/",
        ),
        registry_for(tmp_path),
    )

    assert isinstance(job, TitleJob)
    assert job.source == "otakudesu"
    assert job.target_slug == "shingeki-no-kyojin-sub-indo"


def test_explicit_slug_and_source_win(tmp_path):
    job = build_job(
        JobSubmission(
            kind="title",
            source="AnoBoy",
            target_url="https://otakudesu.best/anime/snk/",
            target_slug="attack-on-titan",
        ),
        registry_for(tmp_path),
        job_id="fixed",
    )

    assert job.id == "fixed"
    assert job.source == "anoboy"
    assert job.target_slug == "attack-on-titan"


def test_unknown_host_uses_default_order(tmp_path):
    job = build_job(
        JobSubmission(kind="title", target_url="https://example.com/anime/snk"),
        registry_for(tmp_path),
    )

    assert job.source is None


@pytest.mark.parametrize(
    "submission",
    [
        JobSubmission(kind="title", target_url="ftp://otakudesu.best/anime/snk"),
        JobSubmission(kind="title", target_url="not a url"),
        JobSubmission(kind="title"),
        JobSubmission(kind="title", target_url="https://otakudesu.best/"),
        JobSubmission(kind="title", source="crunchyroll", target_url="https://a.test/x"),
        JobSubmission(kind="episode", target_url="https://otakudesu.best/episode/snk-1"),
        JobSubmission(kind="batch", target_url="https://otakudesu.best/anime/snk"),
        JobSubmission(
            kind="batch",
            items=[JobSubmission(kind="batch", target_url="https://a.test/x")],
        ),
        JobSubmission(
            kind="title",
            target_url="https://a.test/x",
            items=[JobSubmission(kind="title", target_url="https://a.test/y")],
        ),
    ],
)
def test_invalid_submissions_are_rejected(tmp_path, submission):
    with pytest.raises(JobValidationError):
        build_job(submission, registry_for(tmp_path))


def test_batch_items_become_typed_sub_jobs(tmp_path):
    job = build_job(
        JobSubmission(
            kind="batch",
            source="otakudesu",
            items=[
                JobSubmission(kind="title", target_url="https://otakudesu.best/anime/snk/"),
                JobSubmission(
                    kind="episode",
                    target_url="https://ww3.anoboy.app/snk-episode-1/",
                    parent_id="title-1",
                ),
            ],
        ),
        registry_for(tmp_path),
        job_id="batch",
    )

    assert isinstance(job, BatchJob)
    assert job.target_url == "https://otakudesu.best/anime/snk/"
    assert [item.id for item in job.items] == ["batch#1", "batch#2"]
    assert isinstance(job.items[1], EpisodeJob)
    assert [item.source for item in job.items] == ["otakudesu", "otakudesu"]


def test_submit_job_creates_queues_and_announces(tmp_path):
    publisher = RecordingPublisher(fail=True)

    async def run():
        database = await open_database(tmp_path)
        try:
            registry = registry_for(tmp_path)
            store = JobStore(database)
            queue = JobQueue(database)

            title = await submit_job(
                JobSubmission(kind="title", target_url="https://otakudesu.best/anime/snk/"),
                registry,
                store,
                queue,
                publisher,
            )
            episode = await submit_job(
                JobSubmission(
                    kind="episode",
                    target_url="https://otakudesu.best/episode/snk-episode-1/",
                    parent_id="title-1",
                ),
                registry,
                store,
                queue,
                publisher,
            )
            priorities = [
                row["priority"]
                for row in await database.fetch_all(
                    "SELECT priority FROM job_queue ORDER BY priority"
                )
            ]
            return title, episode, priorities
        finally:
            await teardown_database(database)

    title, episode, priorities = asyncio.run(run())

    assert title["status"] == "pending"
    assert title["progress"] == 0
    assert title["kind"] == "title"
    assert episode["parent_id"] == "title-1"
    assert priorities == [1, 2]
    # a failing channel never blocks submission
    assert publisher.names() == ["job-created", "job-created"]


class BrokenQueue(JobQueue):
    async def enqueue(self, job, priority):
        await super().enqueue(job, priority)
        raise RuntimeError("queue write failed")


def test_failed_enqueue_leaves_no_orphan_job(tmp_path):
    publisher = RecordingPublisher()

    async def run():
        database = await open_database(tmp_path)
        try:
            store = JobStore(database)
            queue = BrokenQueue(database)
            with pytest.raises(RuntimeError):
                await submit_job(
                    JobSubmission(kind="title", target_url="https://otakudesu.best/anime/snk/"),
                    registry_for(tmp_path),
                    store,
                    queue,
                    publisher,
                )
            return await store.list(), await queue.stats()
        finally:
            await teardown_database(database)

    (jobs, total), stats = asyncio.run(run())

    assert jobs == []
    assert total == 0
    assert stats["waiting"] == 0
    assert publisher.events == []
