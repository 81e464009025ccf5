from typing import Optional

from kumo.scrapers.models import TitlePartial
from kumo.utils.parsing import (parse_optional_int, normalize_title_status,
                                normalize_title_type, parse_rating)

MERGEABLE_FIELDS = (
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


def is_empty(value):
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict)):
        return len(value) == 0
    return False


def jikan_to_partial(slug: str, candidate: dict) -> TitlePartial:
    images = (candidate.get("images") or {}).get("jpg") or {}
    aired = candidate.get("aired") or {}
    studios = candidate.get("studios") or []

    return TitlePartial(
        slug=slug,
        title=candidate.get("title"),
        alternate_title=candidate.get("title_japanese"),
        synopsis=candidate.get("synopsis"),
        poster=images.get("large_image_url") or images.get("image_url"),
        rating=parse_rating(candidate.get("score")),
        type=normalize_title_type(candidate.get("type")),
        status=normalize_title_status(candidate.get("status")),
        episode_count=parse_optional_int(candidate.get("episodes")),
        duration=candidate.get("duration"),
        release_date=aired.get("string") or aired.get("from"),
        studio=studios[0].get("name") if studios else None,
        genres=[
            genre.get("name", "")
            for genre in candidate.get("genres") or []
            if isinstance(genre, dict)
        ],
        external_id=parse_optional_int(candidate.get("mal_id")),
    )


def merge_title(scraped: TitlePartial, enrichment: Optional[TitlePartial]) -> TitlePartial:
    """Scraped values win whenever present; enrichment only fills the gaps."""
    if enrichment is None:
        return scraped.model_copy(deep=True)

    merged = scraped.model_dump()
    for field in MERGEABLE_FIELDS:
        if is_empty(merged.get(field)):
            value = getattr(enrichment, field)
            if not is_empty(value):
                merged[field] = value

    return TitlePartial(**merged)
