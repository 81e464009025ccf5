import re
from urllib.parse import urlparse

NUMBER_PATTERN = re.compile(r"\d+(?:[.,]\d+)?")

TITLE_STATUSES = {
    "ongoing": "ongoing",
    "currently airing": "ongoing",
    "airing": "ongoing",
    "on going": "ongoing",
    "completed": "completed",
    "complete": "completed",
    "finished airing": "completed",
    "tamat": "completed",
    "upcoming": "upcoming",
    "not yet aired": "upcoming",
}

TITLE_TYPES = ("tv", "movie", "ova", "ona", "special", "music")


def parse_optional_int(value):
    if value is None or value == "":
        return None
    if isinstance(value, int):
        return value
    match = re.search(r"\d+", str(value))
    if not match:
        return None
    return int(match.group(0))


def parse_rating(value):
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return float(value)
    match = NUMBER_PATTERN.search(str(value))
    if not match:
        return None
    return float(match.group(0).replace(",", "."))


def normalize_title_status(value):
    if not value:
        return None
    return TITLE_STATUSES.get(str(value).strip().lower())


def normalize_title_type(value):
    if not value:
        return None
    cleaned = str(value).strip().lower()
    for title_type in TITLE_TYPES:
        if cleaned == title_type or cleaned.startswith(f"{title_type} "):
            return title_type
    return cleaned


def extract_slug(url: str):
    path = urlparse(url).path
    segments = [segment for segment in path.split("/") if segment]
    if not segments:
        return None
    return segments[-1]


def is_valid_url(value) -> bool:
    if not isinstance(value, str) or not value:
        return False
    parsed = urlparse(value.strip())
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def clean_link_map(links):
    """provider -> URL, dropping blank providers and malformed URLs."""
    if not links:
        return {}

    cleaned = {}
    for provider, url in links.items():
        if not isinstance(provider, str) or not provider.strip():
            continue
        if not is_valid_url(url):
            continue
        cleaned[provider.strip()] = url.strip()
    return cleaned


def clean_nested_link_map(links):
    """quality -> (provider -> URL), dropping qualities left empty."""
    if not links:
        return {}

    cleaned = {}
    for quality, providers in links.items():
        if not isinstance(quality, str) or not quality.strip():
            continue
        if not isinstance(providers, dict):
            continue
        provider_links = clean_link_map(providers)
        if provider_links:
            cleaned[quality.strip()] = provider_links
    return cleaned
