import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

from databases import Database
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from kumo.api.endpoints import base, content, scrape
from kumo.content.repository import ContentRepository
from kumo.core.database import create_database, setup_database, teardown_database
from kumo.core.exceptions import JobValidationError
from kumo.core.logger import logger
from kumo.core.models import AppSettings
from kumo.jobs.pipeline import ScrapePipeline
from kumo.jobs.queue import JobQueue, claim_lease
from kumo.jobs.store import JobStore
from kumo.jobs.worker import ScrapeWorkerPool
from kumo.metadata.jikan import JikanClient
from kumo.scrapers.manager import SourceRegistry, build_adapters
from kumo.services.progress import ProgressPublisher, build_publisher
from kumo.utils.http_client import HttpClientManager


class LoguruMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        try:
            response = await call_next(request)
        except Exception as e:
            logger.exception(f"Exception during request processing: {e}")
            raise
        finally:
            process_time = time.time() - start_time
            logger.log(
                "API",
                f"{request.method} {request.url.path} - {response.status_code if 'response' in locals() else '500'} - {process_time:.2f}s",
            )
        return response


@dataclass
class Services:
    settings: AppSettings
    database: Database
    http_client: HttpClientManager
    registry: SourceRegistry
    repository: ContentRepository
    store: JobStore
    queue: JobQueue
    publisher: ProgressPublisher
    pipeline: ScrapePipeline
    worker: Optional[ScrapeWorkerPool] = None


async def build_services(settings: AppSettings) -> Services:
    database = create_database(settings)
    await setup_database(database, settings)

    http_client = HttpClientManager(settings)
    session = await http_client.init()

    registry = build_adapters(settings, session)
    repository = ContentRepository(database)
    store = JobStore(database)
    queue = JobQueue(
        database,
        max_attempts=settings.QUEUE_MAX_ATTEMPTS,
        lease=claim_lease(settings.JOB_ATTEMPT_TIMEOUT),
    )
    publisher = build_publisher(settings, session)

    enricher = None
    if settings.ENRICHMENT_ENABLED:
        enricher = JikanClient(
            session,
            settings.JIKAN_URL,
            settings.JIKAN_USER_AGENT,
            min_interval=settings.ENRICHMENT_MIN_INTERVAL,
            search_limit=settings.ENRICHMENT_SEARCH_LIMIT,
            timeout=settings.ENRICHMENT_TIMEOUT,
        )

    pipeline = ScrapePipeline(
        registry,
        repository,
        enricher=enricher,
        enrichment_timeout=settings.ENRICHMENT_TIMEOUT,
    )

    services = Services(
        settings=settings,
        database=database,
        http_client=http_client,
        registry=registry,
        repository=repository,
        store=store,
        queue=queue,
        publisher=publisher,
        pipeline=pipeline,
    )

    if settings.WORKER_ENABLED:
        services.worker = ScrapeWorkerPool(
            queue,
            store,
            pipeline,
            publisher,
            concurrency=settings.WORKER_CONCURRENCY,
            poll_interval=settings.QUEUE_POLL_INTERVAL,
            backoff_base=settings.QUEUE_BACKOFF_BASE,
            attempt_timeout=settings.JOB_ATTEMPT_TIMEOUT,
            recovery_interval=settings.QUEUE_RECOVERY_INTERVAL,
        )

    return services


async def shutdown_services(services: Services):
    if services.worker is not None:
        await services.worker.stop()

    await services.publisher.close()
    await services.http_client.close()
    await teardown_database(services.database)


def create_app(settings: AppSettings) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        services = await build_services(settings)
        app.state.services = services

        if services.worker is not None:
            await services.worker.start()

        try:
            yield
        finally:
            await shutdown_services(services)

    app = FastAPI(
        title="Kumo",
        summary="Anime title and episode scraping service.",
        lifespan=lifespan,
        redoc_url=None,
    )

    app.add_middleware(LoguruMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(JobValidationError)
    async def job_validation_error_handler(request: Request, exc: JobValidationError):
        return JSONResponse(status_code=400, content={"detail": exc.display_message})

    app.include_router(base.router)
    app.include_router(scrape.router)
    app.include_router(content.router)

    return app
