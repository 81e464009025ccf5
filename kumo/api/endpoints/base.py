from fastapi import APIRouter, Request

router = APIRouter()


def get_services(request: Request):
    return request.app.state.services


@router.get(
    "/health",
    tags=["General"],
    summary="Health Check",
    description="Returns the health status of the application.",
)
async def health(request: Request):
    services = get_services(request)
    worker = services.worker
    return {
        "status": "ok",
        "database": services.database.is_connected,
        "worker": bool(worker and worker.is_running),
        "sources": services.registry.names,
    }
