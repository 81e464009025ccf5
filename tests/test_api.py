import asyncio

import pytest
from fastapi.testclient import TestClient

from kumo.api.app import create_app
from kumo.content.repository import ContentRepository
from kumo.core.database import teardown_database
from tests.fakes import make_episode, make_settings, make_title, open_database


def seed_content(tmp_path):
    async def run():
        database = await open_database(tmp_path)
        try:
            repository = ContentRepository(database)
            title_id = await repository.upsert_title(make_title(status="ongoing"))
            await repository.upsert_episodes(title_id, [make_episode(1), make_episode(2)])
            await repository.upsert_title(
                make_title(slug="cowboy-bebop", title="Cowboy Bebop", status="completed")
            )
        finally:
            await teardown_database(database)

    asyncio.run(run())


@pytest.fixture
def client(tmp_path):
    seed_content(tmp_path)
    app = create_app(
        make_settings(tmp_path, WORKER_ENABLED=False, ENRICHMENT_ENABLED=False)
    )
    with TestClient(app) as client:
        yield client


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {
        "status": "ok",
        "database": True,
        "worker": False,
        "sources": ["otakudesu", "anoboy"],
    }


def test_submit_and_read_back_a_job(client):
    response = client.post(
        "/scrape",
        json={"kind": "title", "target_url": "https://otakudesu.best/anime/snk-sub-indo/"},
    )

    assert response.status_code == 201
    job = response.json()
    assert job["status"] == "pending"
    assert job["progress"] == 0
    assert job["source"] == "otakudesu"
    assert job["target_slug"] == "snk-sub-indo"

    fetched = client.get(f"/scrape/{job['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["id"] == job["id"]

    stats = client.get("/queue/stats").json()
    assert stats["queue"]["waiting"] == 1
    assert stats["jobs"]["pending"] == 1
    assert stats["content"] == {"titles": 2, "episodes": 2}
    assert stats["worker"] is None


@pytest.mark.parametrize(
    "payload",
    [
        {"kind": "title", "target_url": "not a url"},
        {"kind": "title", "source": "crunchyroll", "target_url": "https://a.test/x"},
        {"kind": "episode", "target_url": "https://otakudesu.best/episode/snk-1"},
        {"kind": "batch", "items": []},
    ],
)
def test_invalid_submissions_return_400(client, payload):
    response = client.post("/scrape", json=payload)

    assert response.status_code == 400
    assert response.json()["detail"]
    assert client.get("/scrape").json()["pagination"]["total"] == 0


def test_list_jobs_filters_and_paginates(client):
    for slug in ("a", "b", "c"):
        client.post(
            "/scrape", json={"kind": "title", "target_url": f"https://otakudesu.best/anime/{slug}"}
        )
    client.post(
        "/scrape",
        json={
            "kind": "episode",
            "target_url": "https://otakudesu.best/episode/a-episode-1",
            "parent_id": "title-a",
        },
    )

    page = client.get("/scrape", params={"page": 2, "limit": 3}).json()
    episodes = client.get("/scrape", params={"kind": "episode"}).json()
    completed = client.get("/scrape", params={"status": "completed"}).json()

    assert page["pagination"] == {"page": 2, "limit": 3, "total": 4, "pages": 2}
    assert len(page["jobs"]) == 1
    assert [job["kind"] for job in episodes["jobs"]] == ["episode"]
    assert completed["jobs"] == []

    assert client.get("/scrape", params={"status": "stuck"}).status_code == 400
    assert client.get("/scrape", params={"kind": "movie"}).status_code == 400


def test_unknown_job_is_404(client):
    assert client.get("/scrape/does-not-exist").status_code == 404


def test_titles_listing_and_detail(client):
    listing = client.get("/titles", params={"status": "completed"}).json()
    assert [title["slug"] for title in listing["titles"]] == ["cowboy-bebop"]
    assert listing["pagination"]["total"] == 1

    detail = client.get("/titles/attack-on-titan").json()
    assert detail["title"] == "Attack on Titan"
    assert [episode["episode_number"] for episode in detail["episodes"]] == [1, 2]

    episodes = client.get("/titles/attack-on-titan/episodes").json()
    assert episodes["title_id"] == detail["id"]
    assert len(episodes["episodes"]) == 2

    assert client.get("/titles/unknown").status_code == 404
    assert client.get("/titles/unknown/episodes").status_code == 404


def test_delete_title_removes_its_episodes(client):
    response = client.delete("/titles/attack-on-titan")

    assert response.status_code == 200
    assert response.json() == {"deleted": "attack-on-titan"}
    assert client.get("/titles/attack-on-titan").status_code == 404
    assert client.get("/queue/stats").json()["content"] == {"titles": 1, "episodes": 0}
    assert client.delete("/titles/attack-on-titan").status_code == 404
