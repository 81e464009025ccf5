import re

from kumo.core.exceptions import SourceNotFound, SourceTransientError
from kumo.scrapers.base import BaseSourceAdapter
from kumo.scrapers.helpers.html import (DOWNLOAD_PROVIDERS,
                                        STREAMING_PROVIDERS, anchors,
                                        detect_provider, first_block,
                                        first_image, iframe_sources,
                                        paragraphs, tag_text)
from kumo.scrapers.models import EpisodePartial, EpisodeStub, TitlePartial

EPISODE_NUMBER_PATTERN = re.compile(r"episode[\s-]*(\d+)", re.IGNORECASE)
QUALITY_PATTERN = re.compile(r"(\d{3,4}p|HD|SD)", re.IGNORECASE)
DOWNLOAD_HREF_PATTERN = re.compile(r"download|\.mp4|\.mkv", re.IGNORECASE)
ENTRY_TITLE_PATTERN = re.compile(
    r"""<h1[^>]*class=["'][^"']*entry-title[^"']*["'][^>]*>(.*?)</h1>""",
    re.IGNORECASE | re.DOTALL,
)


def last_path_segment(url: str):
    segments = [segment for segment in url.split("?")[0].split("/") if segment]
    return segments[-1] if segments else ""


def entry_title(page: str):
    match = ENTRY_TITLE_PATTERN.search(page)
    if not match:
        return None
    return tag_text(f"<h1>{match.group(1)}</h1>", "h1")


def extract_episode_number(*candidates: str):
    for candidate in candidates:
        match = EPISODE_NUMBER_PATTERN.search(candidate or "")
        if match:
            return int(match.group(1))
    return 0


class AnoboyAdapter(BaseSourceAdapter):
    name = "anoboy"

    def title_urls(self, slug: str):
        # Anoboy serves series pages from two different layouts
        return [f"{self.url}/{slug}", f"{self.url}/anime/{slug}"]

    async def _fetch_title_page(self, slug: str):
        for url in self.title_urls(slug):
            try:
                page = await self.fetch_page(url, slug)
            except SourceNotFound:
                continue
            if entry_title(page) is not None:
                return url, page
        raise SourceNotFound(self.name, slug)

    async def fetch_title(self, slug: str) -> TitlePartial:
        url, page = await self._fetch_title_page(slug)
        return self.parse_title(page, slug, url)

    def parse_title(self, page: str, slug: str, url: str) -> TitlePartial:
        title = entry_title(page)
        if title is None:
            raise SourceNotFound(self.name, slug)

        content = first_block(page, "entry-content", "</div>")
        synopsis = next((p for p in paragraphs(content) if p), None)

        return TitlePartial(
            slug=slug,
            title=title or None,
            synopsis=synopsis,
            poster=first_image(content),
            source_urls={self.name: url},
        )

    async def fetch_episode_stubs(self, title_slug: str):
        _, page = await self._fetch_title_page(title_slug)
        return self.parse_episode_stubs(page)

    def parse_episode_stubs(self, page: str):
        stubs = []
        for href, text in anchors(page):
            if "episode" not in href.lower() or not text:
                continue

            slug = last_path_segment(href)
            if not slug:
                continue

            stubs.append(
                EpisodeStub(
                    episode_number=extract_episode_number(text, href),
                    slug=slug,
                    title=text,
                    url=href,
                )
            )
        return stubs

    async def fetch_episode(self, episode_slug: str) -> EpisodePartial:
        url = f"{self.url}/{episode_slug}"
        page = await self.fetch_page(url, episode_slug)
        return self.parse_episode(page, episode_slug, url)

    def parse_episode(self, page: str, episode_slug: str, url: str) -> EpisodePartial:
        title = entry_title(page)
        if title is None:
            raise SourceNotFound(self.name, episode_slug)

        episode_number = extract_episode_number(title, episode_slug)
        if episode_number <= 0:
            raise SourceTransientError(
                self.name, f"Unparseable episode number for '{episode_slug}'"
            )

        download_links = {}
        for href, text in anchors(page):
            if not text or not DOWNLOAD_HREF_PATTERN.search(href):
                continue
            quality_match = QUALITY_PATTERN.search(text)
            quality = quality_match.group(1) if quality_match else "Unknown"
            provider = detect_provider(href, DOWNLOAD_PROVIDERS)
            download_links.setdefault(quality, {})[provider] = href

        streaming_links = {}
        for src in iframe_sources(page):
            streaming_links[detect_provider(src, STREAMING_PROVIDERS)] = src

        return EpisodePartial(
            episode_number=episode_number,
            slug=episode_slug,
            title=title or None,
            source_urls={self.name: url},
            download_links=download_links,
            streaming_links=streaming_links,
        )
