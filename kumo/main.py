import traceback

import uvicorn

from kumo.api.app import create_app
from kumo.core.logger import log_startup_info, logger, setupLogger
from kumo.core.models import settings

app = create_app(settings)


def run_with_uvicorn():
    config = uvicorn.Config(
        app,
        host=settings.FASTAPI_HOST,
        port=settings.FASTAPI_PORT,
        proxy_headers=True,
        forwarded_allow_ips="*",
        workers=settings.FASTAPI_WORKERS,
        log_config=None,
    )
    server = uvicorn.Server(config=config)

    setupLogger(settings.LOG_LEVEL)
    log_startup_info(settings)
    try:
        server.run()
    except KeyboardInterrupt:
        logger.log("KUMO", "Server stopped by user")
    except Exception as e:
        logger.error(f"Unexpected error: {e}")
        logger.exception(traceback.format_exc())
    finally:
        logger.log("KUMO", "Server Shutdown")


if __name__ == "__main__":
    run_with_uvicorn()
