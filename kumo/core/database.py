import os
import traceback

from databases import Database

from kumo.core.logger import logger

DATABASE_VERSION = "1.0"


def create_database(settings) -> Database:
    if settings.DATABASE_TYPE == "sqlite":
        return Database(f"sqlite:///{settings.DATABASE_PATH}")
    return Database(f"postgresql+asyncpg://{settings.DATABASE_URL}")


async def setup_database(database: Database, settings):
    try:
        if settings.DATABASE_TYPE == "sqlite":
            directory = os.path.dirname(settings.DATABASE_PATH)
            if directory:
                os.makedirs(directory, exist_ok=True)

            if not os.path.exists(settings.DATABASE_PATH):
                open(settings.DATABASE_PATH, "a").close()

        if not database.is_connected:
            await database.connect()

        await database.execute(
            """
                CREATE TABLE IF NOT EXISTS db_version (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    version TEXT
                )
            """
        )

        current_version = await database.fetch_val(
            """
                SELECT version FROM db_version WHERE id = 1
            """
        )

        if current_version != DATABASE_VERSION:
            logger.log(
                "DATABASE",
                f"Database: Schema version {current_version} -> {DATABASE_VERSION}",
            )
            await database.execute(
                """
                    INSERT INTO db_version VALUES (1, :version)
                    ON CONFLICT (id) DO UPDATE SET version = :version
                """,
                {"version": DATABASE_VERSION},
            )

        await database.execute(
            """
                CREATE TABLE IF NOT EXISTS titles (
                    id TEXT PRIMARY KEY,
                    slug TEXT NOT NULL UNIQUE,
                    title TEXT,
                    alternate_title TEXT,
                    synopsis TEXT,
                    poster TEXT,
                    rating DOUBLE PRECISION,
                    type TEXT,
                    status TEXT,
                    episode_count INTEGER,
                    duration TEXT,
                    release_date TEXT,
                    studio TEXT,
                    genres TEXT,
                    external_id INTEGER,
                    source_urls TEXT,
                    created_at DOUBLE PRECISION,
                    updated_at DOUBLE PRECISION
                )
            """
        )

        await database.execute(
            """
                CREATE TABLE IF NOT EXISTS episodes (
                    id TEXT PRIMARY KEY,
                    title_id TEXT NOT NULL REFERENCES titles (id) ON DELETE CASCADE,
                    episode_number INTEGER NOT NULL,
                    title TEXT,
                    slug TEXT,
                    duration TEXT,
                    air_date TEXT,
                    source_urls TEXT,
                    download_links TEXT,
                    streaming_links TEXT,
                    created_at DOUBLE PRECISION,
                    updated_at DOUBLE PRECISION,
                    UNIQUE (title_id, episode_number)
                )
            """
        )

        await database.execute(
            """
                CREATE TABLE IF NOT EXISTS jobs (
                    id TEXT PRIMARY KEY,
                    kind TEXT NOT NULL,
                    source TEXT,
                    target_url TEXT NOT NULL,
                    target_slug TEXT,
                    parent_id TEXT,
                    payload TEXT,
                    status TEXT NOT NULL,
                    progress INTEGER NOT NULL DEFAULT 0,
                    error TEXT,
                    result TEXT,
                    attempts INTEGER NOT NULL DEFAULT 0,
                    claim_token TEXT,
                    created_at DOUBLE PRECISION,
                    updated_at DOUBLE PRECISION,
                    completed_at DOUBLE PRECISION
                )
            """
        )

        await database.execute(
            """
                CREATE TABLE IF NOT EXISTS job_queue (
                    job_id TEXT PRIMARY KEY,
                    payload TEXT NOT NULL,
                    priority INTEGER NOT NULL,
                    status TEXT NOT NULL,
                    attempts INTEGER NOT NULL DEFAULT 0,
                    max_attempts INTEGER NOT NULL,
                    available_at DOUBLE PRECISION NOT NULL,
                    claim_token TEXT,
                    claimed_at DOUBLE PRECISION,
                    last_error TEXT,
                    created_at DOUBLE PRECISION,
                    updated_at DOUBLE PRECISION
                )
            """
        )

        # =============================================================================
        # INDEXES
        # =============================================================================

        await database.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_episodes_title
            ON episodes (title_id, episode_number)
            """
        )

        await database.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_jobs_status_created
            ON jobs (status, created_at)
            """
        )

        # Claim order: priority first, then readiness, then age
        await database.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_job_queue_claim
            ON job_queue (status, priority, available_at, created_at)
            """
        )

        if settings.DATABASE_TYPE == "sqlite":
            await database.execute("PRAGMA busy_timeout=30000")  # 30 seconds timeout
            await database.execute("PRAGMA journal_mode=WAL")
            await database.execute("PRAGMA synchronous=NORMAL")
            await database.execute("PRAGMA temp_store=MEMORY")

        logger.log("DATABASE", "Database schema ready")
    except Exception as e:
        logger.error(f"Error setting up the database: {e}")
        logger.exception(traceback.format_exc())
        raise


async def teardown_database(database: Database):
    try:
        await database.disconnect()
    except Exception as e:
        logger.error(f"Error tearing down the database: {e}")
        logger.exception(traceback.format_exc())
