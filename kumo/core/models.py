from typing import List, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    FASTAPI_HOST: Optional[str] = "0.0.0.0"
    FASTAPI_PORT: Optional[int] = 8000
    FASTAPI_WORKERS: Optional[int] = 1
    LOG_LEVEL: Optional[str] = "DEBUG"

    DATABASE_TYPE: Optional[str] = "sqlite"
    DATABASE_URL: Optional[str] = "username:password@hostname:port"
    DATABASE_PATH: Optional[str] = "data/kumo.db"

    WORKER_ENABLED: Optional[bool] = True
    WORKER_CONCURRENCY: Optional[int] = 3
    QUEUE_MAX_ATTEMPTS: Optional[int] = 3
    QUEUE_BACKOFF_BASE: Optional[float] = 2.0
    QUEUE_POLL_INTERVAL: Optional[float] = 1.0
    QUEUE_RECOVERY_INTERVAL: Optional[float] = 60.0
    JOB_ATTEMPT_TIMEOUT: Optional[int] = 600

    SOURCE_ORDER: List[str] = ["otakudesu", "anoboy"]
    OTAKUDESU_URL: Optional[str] = "https://otakudesu.best"
    ANOBOY_URL: Optional[str] = "https://ww3.anoboy.app"
    SOURCE_TIMEOUT: Optional[int] = 30
    SOURCE_USER_AGENT: Optional[str] = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0 Safari/537.36 KumoScraper/1.0"
    )

    ENRICHMENT_ENABLED: Optional[bool] = True
    JIKAN_URL: Optional[str] = "https://api.jikan.moe/v4"
    JIKAN_USER_AGENT: Optional[str] = "KumoScraper/1.0"
    ENRICHMENT_TIMEOUT: Optional[int] = 15
    ENRICHMENT_MIN_INTERVAL: Optional[float] = 1.0
    ENRICHMENT_SEARCH_LIMIT: Optional[int] = 5

    PROGRESS_PUBLISHER: Optional[str] = "log"
    PUSHER_APP_ID: Optional[str] = None
    PUSHER_KEY: Optional[str] = None
    PUSHER_SECRET: Optional[str] = None
    PUSHER_CLUSTER: Optional[str] = "mt1"
    PUSHER_CHANNEL: Optional[str] = "scrape-jobs"

    HTTP_CLIENT_LIMIT: Optional[int] = 100
    HTTP_CLIENT_LIMIT_PER_HOST: Optional[int] = 10

    @field_validator("OTAKUDESU_URL", "ANOBOY_URL", "JIKAN_URL")
    def remove_trailing_slash(cls, v):
        if v and v.endswith("/"):
            return v[:-1]
        return v

    @field_validator("SOURCE_ORDER")
    def source_order_normalization(cls, v):
        return [source.replace(" ", "").lower() for source in v if source.strip()]

    @field_validator("ENRICHMENT_MIN_INTERVAL")
    def enforce_rate_limit_floor(cls, v):
        # Jikan rejects clients calling more than once per second
        if v is None or v < 1.0:
            return 1.0
        return v

    @field_validator("PROGRESS_PUBLISHER")
    def publisher_normalization(cls, v):
        return (v or "log").lower()


settings = AppSettings()
