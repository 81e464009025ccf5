import sys

from loguru import logger

from kumo.core.log_levels import CUSTOM_LOG_LEVELS, STANDARD_LOG_LEVELS


def setupLogger(level: str):
    # Configure custom log levels
    for level_name, level_config in CUSTOM_LOG_LEVELS.items():
        try:
            logger.level(level_name)
        except ValueError:
            logger.level(
                level_name,
                no=level_config["no"],
                icon=level_config["icon"],
                color=level_config["loguru_color"],
            )

    # Configure standard log levels (override defaults)
    for level_name, level_config in STANDARD_LOG_LEVELS.items():
        logger.level(
            level_name, icon=level_config["icon"], color=level_config["loguru_color"]
        )

    log_format = (
        "<white>{time:YYYY-MM-DD}</white> <magenta>{time:HH:mm:ss}</magenta> | "
        "<level>{level.icon}</level> <level>{level}</level> | "
        "<cyan>{module}</cyan>.<cyan>{function}</cyan> - <level>{message}</level>"
    )

    logger.configure(
        handlers=[
            {
                "sink": sys.stderr,
                "level": level,
                "format": log_format,
                "backtrace": False,
                "diagnose": False,
                "enqueue": True,
            }
        ]
    )


setupLogger("DEBUG")


def log_startup_info(settings):
    logger.log(
        "KUMO",
        f"Server started on http://{settings.FASTAPI_HOST}:{settings.FASTAPI_PORT} - {settings.FASTAPI_WORKERS} workers",
    )
    logger.log(
        "KUMO",
        f"Database ({settings.DATABASE_TYPE}): {settings.DATABASE_PATH if settings.DATABASE_TYPE == 'sqlite' else settings.DATABASE_URL}",
    )

    worker_display = (
        f" - Concurrency: {settings.WORKER_CONCURRENCY} - Attempts: {settings.QUEUE_MAX_ATTEMPTS} - Backoff: {settings.QUEUE_BACKOFF_BASE}s - Attempt Timeout: {settings.JOB_ATTEMPT_TIMEOUT}s"
        if settings.WORKER_ENABLED
        else ""
    )
    logger.log("KUMO", f"Scrape Worker: {bool(settings.WORKER_ENABLED)}{worker_display}")

    logger.log(
        "KUMO",
        f"Sources: {' -> '.join(settings.SOURCE_ORDER)} - Timeout: {settings.SOURCE_TIMEOUT}s",
    )
    logger.log("KUMO", f"Otakudesu URL: {settings.OTAKUDESU_URL}")
    logger.log("KUMO", f"Anoboy URL: {settings.ANOBOY_URL}")

    enrichment_display = (
        f" - {settings.JIKAN_URL} - Timeout: {settings.ENRICHMENT_TIMEOUT}s - Min Interval: {settings.ENRICHMENT_MIN_INTERVAL}s"
        if settings.ENRICHMENT_ENABLED
        else ""
    )
    logger.log(
        "KUMO", f"Enrichment: {bool(settings.ENRICHMENT_ENABLED)}{enrichment_display}"
    )

    publisher_display = (
        f" - App: {settings.PUSHER_APP_ID} - Cluster: {settings.PUSHER_CLUSTER} - Channel: {settings.PUSHER_CHANNEL}"
        if settings.PROGRESS_PUBLISHER == "pusher"
        else ""
    )
    logger.log(
        "KUMO", f"Progress Publisher: {settings.PROGRESS_PUBLISHER}{publisher_display}"
    )
