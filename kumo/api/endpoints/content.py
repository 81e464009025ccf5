from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request

from kumo.api.endpoints.base import get_services

router = APIRouter()


@router.get(
    "/titles",
    tags=["Content"],
    summary="List Titles",
)
async def list_titles(
    request: Request,
    search: Optional[str] = None,
    status: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
):
    titles, total = await get_services(request).repository.list_titles(
        search=search, status=status, limit=limit, offset=(page - 1) * limit
    )
    return {
        "titles": titles,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": (total + limit - 1) // limit,
        },
    }


@router.get(
    "/titles/{slug}",
    tags=["Content"],
    summary="Get Title",
    description="Returns a title with all of its episodes.",
)
async def get_title(request: Request, slug: str):
    repository = get_services(request).repository
    title = await repository.get_title(slug)
    if title is None:
        raise HTTPException(status_code=404, detail="Title not found")

    title["episodes"] = await repository.list_episodes(title["id"])
    return title


@router.get(
    "/titles/{slug}/episodes",
    tags=["Content"],
    summary="List Title Episodes",
)
async def list_title_episodes(request: Request, slug: str):
    repository = get_services(request).repository
    title = await repository.get_title(slug)
    if title is None:
        raise HTTPException(status_code=404, detail="Title not found")

    return {"title_id": title["id"], "episodes": await repository.list_episodes(title["id"])}


@router.delete(
    "/titles/{slug}",
    tags=["Content"],
    summary="Delete Title",
    description="Deletes a title together with its episodes.",
)
async def delete_title(request: Request, slug: str):
    if not await get_services(request).repository.delete_title(slug):
        raise HTTPException(status_code=404, detail="Title not found")
    return {"deleted": slug}
