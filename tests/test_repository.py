import asyncio

from kumo.content.repository import ContentRepository
from kumo.core.database import teardown_database
from kumo.scrapers.models import EpisodePartial, TitlePartial
from tests.fakes import make_episode, make_title, open_database


def run_with_repository(tmp_path, scenario):
    async def run():
        database = await open_database(tmp_path)
        try:
            return await scenario(ContentRepository(database))
        finally:
            await teardown_database(database)

    return asyncio.run(run())


def test_title_upsert_is_idempotent(tmp_path):
    async def scenario(repository):
        first_id = await repository.upsert_title(make_title(rating=8.5))
        second_id = await repository.upsert_title(make_title(rating=8.5))
        return first_id, second_id, await repository.counts()

    first_id, second_id, counts = run_with_repository(tmp_path, scenario)

    assert first_id == second_id
    assert counts == {"titles": 1, "episodes": 0}


def test_title_upsert_keeps_stored_values_and_merges_provenance(tmp_path):
    async def scenario(repository):
        await repository.upsert_title(
            make_title(source="otakudesu", studio="Wit Studio", genres=["Action"])
        )
        await repository.upsert_title(
            TitlePartial(
                slug="attack-on-titan",
                title="Shingeki no Kyojin",
                rating=8.54,
                source_urls={"anoboy": "https://anoboy.test/snk"},
            )
        )
        return await repository.get_title("attack-on-titan")

    title = run_with_repository(tmp_path, scenario)

    assert title["title"] == "Shingeki no Kyojin"
    assert title["rating"] == 8.54
    assert title["studio"] == "Wit Studio"
    assert title["genres"] == ["Action"]
    assert title["source_urls"] == {
        "otakudesu": "https://otakudesu.test/anime/attack-on-titan",
        "anoboy": "https://anoboy.test/snk",
    }


def test_episode_upsert_on_composite_key(tmp_path):
    async def scenario(repository):
        title_id = await repository.upsert_title(make_title())
        await repository.upsert_episodes(
            title_id, [make_episode(1), make_episode(2), make_episode(3)]
        )
        # a retried attempt writes the same episodes again
        await repository.upsert_episodes(title_id, [make_episode(2), make_episode(3)])
        await repository.upsert_episode(
            title_id,
            EpisodePartial(
                episode_number=1,
                slug="attack-on-titan-episode-1",
                title="To You, in 2000 Years",
                source_urls={"anoboy": "https://anoboy.test/snk-episode-1"},
            ),
        )
        return await repository.list_episodes(title_id), await repository.counts()

    episodes, counts = run_with_repository(tmp_path, scenario)

    assert counts == {"titles": 1, "episodes": 3}
    assert [episode["episode_number"] for episode in episodes] == [1, 2, 3]

    first = episodes[0]
    assert first["title"] == "To You, in 2000 Years"
    # links from the first scrape survive an update that has none
    assert first["download_links"] == {"720p": {"Mega": "https://mega.nz/file/abc"}}
    assert set(first["source_urls"]) == {"primary", "anoboy"}


def test_delete_title_cascades_to_episodes(tmp_path):
    async def scenario(repository):
        title_id = await repository.upsert_title(make_title())
        await repository.upsert_episodes(title_id, [make_episode(1), make_episode(2)])
        other_id = await repository.upsert_title(make_title(slug="bebop", title="Cowboy Bebop"))
        await repository.upsert_episodes(other_id, [make_episode(1, slug="bebop")])

        deleted = await repository.delete_title("attack-on-titan")
        missing = await repository.delete_title("attack-on-titan")
        return (
            deleted,
            missing,
            await repository.get_title("attack-on-titan"),
            await repository.list_episodes(title_id),
            await repository.counts(),
        )

    deleted, missing, title, episodes, counts = run_with_repository(tmp_path, scenario)

    assert deleted is True
    assert missing is False
    assert title is None
    assert episodes == []
    assert counts == {"titles": 1, "episodes": 1}


def test_list_titles_filters_and_paginates(tmp_path):
    async def scenario(repository):
        await repository.upsert_title(make_title(status="completed"))
        await repository.upsert_title(
            make_title(slug="one-piece", title="One Piece", status="ongoing")
        )
        await repository.upsert_title(
            make_title(slug="bebop", title="Cowboy Bebop", status="completed")
        )
        return (
            await repository.list_titles(status="completed"),
            await repository.list_titles(search="PIECE"),
            await repository.list_titles(limit=2, offset=2),
        )

    completed, search, last_page = run_with_repository(tmp_path, scenario)

    assert completed[1] == 2
    assert {title["slug"] for title in completed[0]} == {"attack-on-titan", "bebop"}
    assert [title["slug"] for title in search[0]] == ["one-piece"]
    assert last_page[1] == 3
    assert len(last_page[0]) == 1
