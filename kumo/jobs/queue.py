import math
import time
import uuid
from dataclasses import dataclass
from typing import Optional

import orjson
from databases import Database

from kumo.core.logger import logger

CLAIM_RETRIES = 5
LEASE_GRACE = 60
UNBOUNDED_LEASE = 3600


def compute_backoff(attempt: int, base: float = 2.0) -> float:
    """Delay before retrying after `attempt` failed attempts: base, 2*base, 4*base..."""
    exponent = max(0, attempt - 1)
    return base * math.pow(2, exponent)


def claim_lease(attempt_timeout: float, grace: float = LEASE_GRACE) -> float:
    """How long a claim stays valid before another process may recover it."""
    if not attempt_timeout or attempt_timeout <= 0:
        return UNBOUNDED_LEASE
    return attempt_timeout + grace


@dataclass
class QueueEntry:
    job_id: str
    payload: dict
    priority: int
    attempts: int
    max_attempts: int
    claim_token: str

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.max_attempts


class JobQueue:
    """Durable priority queue on top of the `job_queue` table.

    Lower priority numbers are served first. A claim is a conditional
    update tagged with a fresh token, and only the worker whose token ends
    up on the row owns the entry.
    """

    def __init__(
        self,
        database: Database,
        max_attempts: int = 3,
        lease: float = claim_lease(600),
    ):
        self.database = database
        self.max_attempts = max_attempts
        self.lease = lease

    async def enqueue(self, job, priority: int):
        timestamp = time.time()
        await self.database.execute(
            """
                INSERT INTO job_queue (
                    job_id, payload, priority, status, attempts, max_attempts,
                    available_at, created_at, updated_at
                )
                VALUES (
                    :job_id, :payload, :priority, 'waiting', 0, :max_attempts,
                    :timestamp, :timestamp, :timestamp
                )
                ON CONFLICT (job_id) DO NOTHING
            """,
            {
                "job_id": job.id,
                "payload": orjson.dumps(job.model_dump()).decode("utf-8"),
                "priority": priority,
                "max_attempts": self.max_attempts,
                "timestamp": timestamp,
            },
        )

    async def _next_candidate(self, now: float):
        return await self.database.fetch_val(
            """
                SELECT job_id FROM job_queue
                WHERE status = 'waiting' AND available_at <= :now
                ORDER BY priority ASC, available_at ASC, created_at ASC
                LIMIT 1
            """,
            {"now": now},
        )

    async def claim_next(self) -> Optional[QueueEntry]:
        for _ in range(CLAIM_RETRIES):
            now = time.time()
            job_id = await self._next_candidate(now)
            if job_id is None:
                return None

            token = str(uuid.uuid4())
            await self.database.execute(
                """
                    UPDATE job_queue
                    SET status = 'active', claim_token = :token, claimed_at = :now,
                        attempts = attempts + 1, updated_at = :now
                    WHERE job_id = :job_id AND status = 'waiting'
                """,
                {"token": token, "now": now, "job_id": job_id},
            )

            row = await self.database.fetch_one(
                "SELECT * FROM job_queue WHERE job_id = :job_id", {"job_id": job_id}
            )
            if row is None or row["claim_token"] != token:
                # Another worker won the race for this entry
                continue

            return QueueEntry(
                job_id=row["job_id"],
                payload=orjson.loads(row["payload"]),
                priority=row["priority"],
                attempts=row["attempts"],
                max_attempts=row["max_attempts"],
                claim_token=token,
            )
        return None

    async def retry_later(self, entry: QueueEntry, error: str, delay: float):
        now = time.time()
        await self.database.execute(
            """
                UPDATE job_queue
                SET status = 'waiting', claim_token = NULL, available_at = :available_at,
                    last_error = :error, updated_at = :now
                WHERE job_id = :job_id AND claim_token = :token
            """,
            {
                "available_at": now + delay,
                "error": error,
                "now": now,
                "job_id": entry.job_id,
                "token": entry.claim_token,
            },
        )

    async def _finish(self, entry: QueueEntry, status: str, error: Optional[str]):
        await self.database.execute(
            """
                UPDATE job_queue
                SET status = :status, claim_token = NULL,
                    last_error = COALESCE(:error, last_error), updated_at = :now
                WHERE job_id = :job_id AND claim_token = :token
            """,
            {
                "status": status,
                "error": error,
                "now": time.time(),
                "job_id": entry.job_id,
                "token": entry.claim_token,
            },
        )

    async def mark_completed(self, entry: QueueEntry):
        await self._finish(entry, "completed", None)

    async def mark_failed(self, entry: QueueEntry, error: str):
        await self._finish(entry, "failed", error)

    async def recover_stale(self) -> int:
        """Puts back in line entries whose claim outlived the lease.

        A live worker finishes or gives up on its attempt well within the
        lease, so only claims held by a dead process are recovered.
        """
        now = time.time()
        cutoff = now - self.lease
        stale = await self.database.fetch_val(
            """
                SELECT COUNT(*) FROM job_queue
                WHERE status = 'active' AND claimed_at <= :cutoff
            """,
            {"cutoff": cutoff},
        )
        if not stale:
            return 0

        await self.database.execute(
            """
                UPDATE job_queue
                SET status = 'waiting', claim_token = NULL,
                    available_at = :now, updated_at = :now
                WHERE status = 'active' AND claimed_at <= :cutoff
            """,
            {"now": now, "cutoff": cutoff},
        )
        logger.log("QUEUE", f"Recovered {stale} stale queue entries")
        return stale

    async def stats(self):
        row = await self.database.fetch_one(
            """
                SELECT
                    SUM(CASE WHEN status = 'waiting' AND available_at <= :now THEN 1 ELSE 0 END) AS waiting,
                    SUM(CASE WHEN status = 'waiting' AND available_at > :now THEN 1 ELSE 0 END) AS delayed,
                    SUM(CASE WHEN status = 'active' THEN 1 ELSE 0 END) AS active,
                    SUM(CASE WHEN status = 'completed' THEN 1 ELSE 0 END) AS completed,
                    SUM(CASE WHEN status = 'failed' THEN 1 ELSE 0 END) AS failed
                FROM job_queue
            """,
            {"now": time.time()},
        )
        return {
            key: int(row[key] or 0) if row is not None else 0
            for key in ("waiting", "delayed", "active", "completed", "failed")
        }
