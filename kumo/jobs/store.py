import time
from typing import Optional

import orjson
from databases import Database

from kumo.core.exceptions import PersistenceError

MAX_RUNNING_PROGRESS = 99

JOB_FIELDS = (
    "id",
    "kind",
    "source",
    "target_url",
    "target_slug",
    "parent_id",
    "payload",
    "status",
    "progress",
    "error",
    "result",
    "attempts",
    "created_at",
    "updated_at",
    "completed_at",
)
JOB_SELECT = ", ".join(JOB_FIELDS)


def job_row_to_dict(row):
    if row is None:
        return None
    data = {field: row[field] for field in JOB_FIELDS}
    data["result"] = orjson.loads(data["result"]) if data.get("result") else None
    data["payload"] = orjson.loads(data["payload"]) if data.get("payload") else None
    return data


def _claim_guard(claim_token: Optional[str]) -> str:
    if claim_token is None:
        return ""
    # A pending row has no owner yet
    return "AND (claim_token IS NULL OR claim_token = :claim_token)"


def _with_claim(params: dict, claim_token: Optional[str]) -> dict:
    if claim_token is not None:
        params["claim_token"] = claim_token
    return params


class JobStore:
    """Authoritative job status, progress, result and error.

    Progress only moves forward while a job is `processing` and stays below
    100 until `complete()`. Terminal rows are never rewritten. Writes that
    carry a claim token only apply while that claim still owns the row.
    """

    def __init__(self, database: Database):
        self.database = database

    async def create(self, job) -> dict:
        timestamp = time.time()
        try:
            await self.database.execute(
                """
                    INSERT INTO jobs (
                        id, kind, source, target_url, target_slug, parent_id,
                        payload, status, progress, attempts, created_at, updated_at
                    )
                    VALUES (
                        :id, :kind, :source, :target_url, :target_slug, :parent_id,
                        :payload, 'pending', 0, 0, :created_at, :updated_at
                    )
                """,
                {
                    "id": job.id,
                    "kind": job.kind,
                    "source": job.source,
                    "target_url": job.target_url,
                    "target_slug": job.target_slug,
                    "parent_id": job.parent_id,
                    "payload": orjson.dumps(job.model_dump()).decode("utf-8"),
                    "created_at": timestamp,
                    "updated_at": timestamp,
                },
            )
        except Exception as e:
            raise PersistenceError(f"Failed to create job {job.id}: {e}") from e

        return await self.get(job.id)

    async def get(self, job_id: str) -> Optional[dict]:
        row = await self.database.fetch_one(
            f"SELECT {JOB_SELECT} FROM jobs WHERE id = :id", {"id": job_id}
        )
        return job_row_to_dict(row)

    async def list(
        self,
        page: int = 1,
        limit: int = 20,
        status: Optional[str] = None,
        kind: Optional[str] = None,
    ):
        conditions = []
        params = {}
        if status:
            conditions.append("status = :status")
            params["status"] = status
        if kind:
            conditions.append("kind = :kind")
            params["kind"] = kind

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""

        total = await self.database.fetch_val(
            f"SELECT COUNT(*) FROM jobs {where}", params
        )
        rows = await self.database.fetch_all(
            f"""
                SELECT {JOB_SELECT} FROM jobs {where}
                ORDER BY created_at DESC
                LIMIT :limit OFFSET :offset
            """,
            {**params, "limit": limit, "offset": (max(page, 1) - 1) * limit},
        )
        return [job_row_to_dict(row) for row in rows], total or 0

    async def mark_processing(
        self, job_id: str, attempt: int, claim_token: Optional[str] = None
    ) -> bool:
        """Hands the job to the claim holding `claim_token` and resets progress."""
        await self.database.execute(
            """
                UPDATE jobs
                SET status = 'processing', progress = 0, attempts = :attempt,
                    claim_token = :claim_token, updated_at = :updated_at
                WHERE id = :id AND status IN ('pending', 'processing')
            """,
            {
                "id": job_id,
                "attempt": attempt,
                "claim_token": claim_token,
                "updated_at": time.time(),
            },
        )
        status = await self.database.fetch_val(
            "SELECT status FROM jobs WHERE id = :id", {"id": job_id}
        )
        return status == "processing"

    async def _owned_by(self, job_id: str, status: str, claim_token: Optional[str]):
        row = await self.database.fetch_one(
            "SELECT status, claim_token FROM jobs WHERE id = :id", {"id": job_id}
        )
        if row is None or row["status"] != status:
            return False
        return claim_token is None or row["claim_token"] == claim_token

    async def update_progress(
        self, job_id: str, progress: int, claim_token: Optional[str] = None
    ) -> Optional[int]:
        """Moves progress forward and returns the stored value.

        Returns None when the job is not processing under `claim_token`.
        """
        progress = max(0, min(progress, MAX_RUNNING_PROGRESS))
        await self.database.execute(
            f"""
                UPDATE jobs
                SET progress = :progress, updated_at = :updated_at
                WHERE id = :id AND status = 'processing' AND progress <= :progress
                {_claim_guard(claim_token)}
            """,
            _with_claim(
                {"id": job_id, "progress": progress, "updated_at": time.time()},
                claim_token,
            ),
        )
        if not await self._owned_by(job_id, "processing", claim_token):
            return None
        return await self.database.fetch_val(
            "SELECT progress FROM jobs WHERE id = :id", {"id": job_id}
        )

    async def complete(
        self, job_id: str, result: dict, claim_token: Optional[str] = None
    ) -> bool:
        timestamp = time.time()
        await self.database.execute(
            f"""
                UPDATE jobs
                SET status = 'completed', progress = 100, result = :result,
                    error = NULL, updated_at = :timestamp, completed_at = :timestamp
                WHERE id = :id AND status = 'processing'
                {_claim_guard(claim_token)}
            """,
            _with_claim(
                {
                    "id": job_id,
                    "result": orjson.dumps(result).decode("utf-8"),
                    "timestamp": timestamp,
                },
                claim_token,
            ),
        )
        return await self._owned_by(job_id, "completed", claim_token)

    async def fail(self, job_id: str, error: str, claim_token: Optional[str] = None) -> bool:
        timestamp = time.time()
        await self.database.execute(
            f"""
                UPDATE jobs
                SET status = 'failed', error = :error,
                    updated_at = :timestamp, completed_at = :timestamp
                WHERE id = :id AND status IN ('pending', 'processing')
                {_claim_guard(claim_token)}
            """,
            _with_claim(
                {"id": job_id, "error": error, "timestamp": timestamp}, claim_token
            ),
        )
        row = await self.database.fetch_one(
            "SELECT status, error, claim_token FROM jobs WHERE id = :id", {"id": job_id}
        )
        return (
            row is not None
            and row["status"] == "failed"
            and row["error"] == error
            and (claim_token is None or row["claim_token"] in (None, claim_token))
        )

    async def stats(self):
        rows = await self.database.fetch_all(
            "SELECT status, COUNT(*) AS total FROM jobs GROUP BY status"
        )
        counts = {status: 0 for status in ("pending", "processing", "completed", "failed")}
        for row in rows:
            counts[row["status"]] = row["total"]
        return counts
