import time
import uuid
from typing import List, Optional

import orjson
from databases import Database

from kumo.core.exceptions import PersistenceError
from kumo.core.logger import logger
from kumo.scrapers.models import EpisodePartial, TitlePartial

TITLE_COLUMNS = (
    "title",
    "alternate_title",
    "synopsis",
    "poster",
    "rating",
    "type",
    "status",
    "episode_count",
    "duration",
    "release_date",
    "studio",
    "genres",
    "external_id",
)

EPISODE_COLUMNS = (
    "title",
    "slug",
    "duration",
    "air_date",
    "download_links",
    "streaming_links",
)

TITLE_FIELDS = ("id", "slug", *TITLE_COLUMNS, "source_urls", "created_at", "updated_at")
EPISODE_FIELDS = (
    "id",
    "title_id",
    "episode_number",
    *EPISODE_COLUMNS,
    "source_urls",
    "created_at",
    "updated_at",
)

TITLE_SELECT = ", ".join(TITLE_FIELDS)
EPISODE_SELECT = ", ".join(EPISODE_FIELDS)


def _dumps(value):
    if not value:
        return None
    return orjson.dumps(value).decode("utf-8")


def _loads(value, default):
    if value is None:
        return default
    return orjson.loads(value)


def _coalesce_assignments(table: str, columns):
    return ",\n".join(
        f"{column} = COALESCE(excluded.{column}, {table}.{column})"
        for column in columns
    )


def title_row_to_dict(row):
    if row is None:
        return None
    data = {field: row[field] for field in TITLE_FIELDS}
    data["genres"] = _loads(data.get("genres"), [])
    data["source_urls"] = _loads(data.get("source_urls"), {})
    return data


def episode_row_to_dict(row):
    if row is None:
        return None
    data = {field: row[field] for field in EPISODE_FIELDS}
    data["source_urls"] = _loads(data.get("source_urls"), {})
    data["download_links"] = _loads(data.get("download_links"), {})
    data["streaming_links"] = _loads(data.get("streaming_links"), {})
    return data


class ContentRepository:
    """Title and episode records, written only through idempotent upserts.

    Values missing from a new scrape never blank out stored ones, and the
    per-source provenance maps are merged rather than replaced. Deleting a
    title cascades to its episodes.
    """

    def __init__(self, database: Database):
        self.database = database

    async def upsert_title(self, record: TitlePartial) -> str:
        try:
            existing = await self.database.fetch_one(
                "SELECT id, source_urls FROM titles WHERE slug = :slug",
                {"slug": record.slug},
            )
            source_urls = _loads(existing["source_urls"], {}) if existing else {}
            source_urls.update(record.source_urls)

            timestamp = time.time()
            params = {
                "id": existing["id"] if existing else str(uuid.uuid4()),
                "slug": record.slug,
                "title": record.title,
                "alternate_title": record.alternate_title,
                "synopsis": record.synopsis,
                "poster": record.poster,
                "rating": record.rating,
                "type": record.type,
                "status": record.status,
                "episode_count": record.episode_count,
                "duration": record.duration,
                "release_date": record.release_date,
                "studio": record.studio,
                "genres": _dumps(record.genres),
                "external_id": record.external_id,
                "source_urls": _dumps(source_urls),
                "created_at": timestamp,
                "updated_at": timestamp,
            }

            await self.database.execute(
                f"""
                    INSERT INTO titles (
                        id, slug, {", ".join(TITLE_COLUMNS)},
                        source_urls, created_at, updated_at
                    )
                    VALUES (
                        :id, :slug, {", ".join(f":{column}" for column in TITLE_COLUMNS)},
                        :source_urls, :created_at, :updated_at
                    )
                    ON CONFLICT (slug) DO UPDATE SET
                    {_coalesce_assignments("titles", TITLE_COLUMNS)},
                    source_urls = COALESCE(excluded.source_urls, titles.source_urls),
                    updated_at = excluded.updated_at
                """,
                params,
            )

            return await self.database.fetch_val(
                "SELECT id FROM titles WHERE slug = :slug", {"slug": record.slug}
            )
        except Exception as e:
            raise PersistenceError(
                f"Failed to upsert title '{record.slug}': {e}"
            ) from e

    async def _upsert_episode(self, title_id: str, episode: EpisodePartial):
        existing = await self.database.fetch_one(
            """
                SELECT id, source_urls FROM episodes
                WHERE title_id = :title_id AND episode_number = :episode_number
            """,
            {"title_id": title_id, "episode_number": episode.episode_number},
        )
        source_urls = _loads(existing["source_urls"], {}) if existing else {}
        source_urls.update(episode.source_urls)

        timestamp = time.time()
        params = {
            "id": existing["id"] if existing else str(uuid.uuid4()),
            "title_id": title_id,
            "episode_number": episode.episode_number,
            "title": episode.title,
            "slug": episode.slug,
            "duration": episode.duration,
            "air_date": episode.air_date,
            "download_links": _dumps(episode.download_links),
            "streaming_links": _dumps(episode.streaming_links),
            "source_urls": _dumps(source_urls),
            "created_at": timestamp,
            "updated_at": timestamp,
        }

        await self.database.execute(
            f"""
                INSERT INTO episodes (
                    id, title_id, episode_number, {", ".join(EPISODE_COLUMNS)},
                    source_urls, created_at, updated_at
                )
                VALUES (
                    :id, :title_id, :episode_number,
                    {", ".join(f":{column}" for column in EPISODE_COLUMNS)},
                    :source_urls, :created_at, :updated_at
                )
                ON CONFLICT (title_id, episode_number) DO UPDATE SET
                {_coalesce_assignments("episodes", EPISODE_COLUMNS)},
                source_urls = COALESCE(excluded.source_urls, episodes.source_urls),
                updated_at = excluded.updated_at
            """,
            params,
        )

        return await self.database.fetch_val(
            """
                SELECT id FROM episodes
                WHERE title_id = :title_id AND episode_number = :episode_number
            """,
            {"title_id": title_id, "episode_number": episode.episode_number},
        )

    async def upsert_episode(self, title_id: str, episode: EpisodePartial) -> str:
        try:
            return await self._upsert_episode(title_id, episode)
        except Exception as e:
            raise PersistenceError(
                f"Failed to upsert episode {episode.episode_number} of {title_id}: {e}"
            ) from e

    async def upsert_episodes(self, title_id: str, episodes: List[EpisodePartial]) -> int:
        if not episodes:
            return 0

        try:
            async with self.database.transaction():
                for episode in episodes:
                    await self._upsert_episode(title_id, episode)
        except Exception as e:
            raise PersistenceError(
                f"Failed to upsert {len(episodes)} episodes of {title_id}: {e}"
            ) from e

        logger.log("DATABASE", f"Upserted {len(episodes)} episodes for title {title_id}")
        return len(episodes)

    async def get_title(self, slug: str) -> Optional[dict]:
        row = await self.database.fetch_one(
            f"SELECT {TITLE_SELECT} FROM titles WHERE slug = :slug", {"slug": slug}
        )
        return title_row_to_dict(row)

    async def get_title_by_id(self, title_id: str) -> Optional[dict]:
        row = await self.database.fetch_one(
            f"SELECT {TITLE_SELECT} FROM titles WHERE id = :id", {"id": title_id}
        )
        return title_row_to_dict(row)

    async def list_titles(
        self,
        search: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ):
        conditions = []
        params = {}
        if search:
            conditions.append("(LOWER(title) LIKE :search OR LOWER(slug) LIKE :search)")
            params["search"] = f"%{search.lower()}%"
        if status:
            conditions.append("status = :status")
            params["status"] = status

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""

        total = await self.database.fetch_val(
            f"SELECT COUNT(*) FROM titles {where}", params
        )
        rows = await self.database.fetch_all(
            f"""
                SELECT {TITLE_SELECT} FROM titles {where}
                ORDER BY updated_at DESC
                LIMIT :limit OFFSET :offset
            """,
            {**params, "limit": limit, "offset": offset},
        )
        return [title_row_to_dict(row) for row in rows], total or 0

    async def list_episodes(self, title_id: str) -> List[dict]:
        rows = await self.database.fetch_all(
            f"""
                SELECT {EPISODE_SELECT} FROM episodes
                WHERE title_id = :title_id
                ORDER BY episode_number ASC
            """,
            {"title_id": title_id},
        )
        return [episode_row_to_dict(row) for row in rows]

    async def delete_title(self, slug: str) -> bool:
        title_id = await self.database.fetch_val(
            "SELECT id FROM titles WHERE slug = :slug", {"slug": slug}
        )
        if title_id is None:
            return False

        # sqlite only honours ON DELETE CASCADE with foreign_keys enabled
        async with self.database.transaction():
            await self.database.execute(
                "DELETE FROM episodes WHERE title_id = :title_id", {"title_id": title_id}
            )
            await self.database.execute(
                "DELETE FROM titles WHERE id = :title_id", {"title_id": title_id}
            )

        logger.log("DATABASE", f"Deleted title '{slug}' and its episodes")
        return True

    async def counts(self):
        titles = await self.database.fetch_val("SELECT COUNT(*) FROM titles")
        episodes = await self.database.fetch_val("SELECT COUNT(*) FROM episodes")
        return {"titles": titles or 0, "episodes": episodes or 0}
