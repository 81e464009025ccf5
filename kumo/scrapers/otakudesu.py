import re

from kumo.core.exceptions import SourceNotFound, SourceTransientError
from kumo.scrapers.base import BaseSourceAdapter
from kumo.scrapers.helpers.html import (STREAMING_PROVIDERS, anchors,
                                        blocks_by_class, clean_text,
                                        detect_provider, first_block,
                                        first_image, iframe_sources,
                                        list_items, paragraphs, strong_text,
                                        tag_text)
from kumo.scrapers.models import EpisodePartial, EpisodeStub, TitlePartial
from kumo.utils.parsing import (parse_optional_int, normalize_title_status,
                                normalize_title_type, parse_rating)

EPISODE_URL_NUMBER_PATTERN = re.compile(r"episode-(\d+)", re.IGNORECASE)
EPISODE_TEXT_NUMBER_PATTERN = re.compile(r"episode\s+(\d+)", re.IGNORECASE)
EPISODE_SLUG_PATTERN = re.compile(r"/episode/([^/?#]+)/?$")

INFO_FIELDS = {
    "judul": "title",
    "japanese": "alternate_title",
    "skor": "rating",
    "tipe": "type",
    "status": "status",
    "total episode": "episode_count",
    "durasi": "duration",
    "tanggal rilis": "release_date",
    "studio": "studio",
    "genre": "genres",
}


def parse_info_fields(info_block: str):
    fields = {}
    for paragraph in paragraphs(info_block):
        label, separator, value = paragraph.partition(":")
        if not separator:
            continue
        key = INFO_FIELDS.get(label.strip().lower())
        value = value.strip()
        if key and value:
            fields[key] = value
    return fields


def extract_episode_number(url: str, text: str = ""):
    match = EPISODE_URL_NUMBER_PATTERN.search(url) or EPISODE_TEXT_NUMBER_PATTERN.search(
        text
    )
    return int(match.group(1)) if match else 0


class OtakudesuAdapter(BaseSourceAdapter):
    name = "otakudesu"

    def title_url(self, slug: str):
        return f"{self.url}/anime/{slug}"

    def episode_url(self, episode_slug: str):
        return f"{self.url}/episode/{episode_slug}"

    async def fetch_title(self, slug: str) -> TitlePartial:
        url = self.title_url(slug)
        page = await self.fetch_page(url, slug)
        return self.parse_title(page, slug, url)

    def parse_title(self, page: str, slug: str, url: str) -> TitlePartial:
        info_block = first_block(page, "infozingle", "</div>")
        if info_block is None:
            raise SourceNotFound(self.name, slug)

        fields = parse_info_fields(info_block)

        return TitlePartial(
            slug=slug,
            title=fields.get("title"),
            alternate_title=fields.get("alternate_title"),
            synopsis=clean_text(first_block(page, "sinopc", "</div>")) or None,
            poster=first_image(first_block(page, "fotoanime", "</div>")),
            rating=parse_rating(fields.get("rating")),
            type=normalize_title_type(fields.get("type")),
            status=normalize_title_status(fields.get("status")),
            episode_count=parse_optional_int(fields.get("episode_count")),
            duration=fields.get("duration"),
            release_date=fields.get("release_date"),
            studio=fields.get("studio"),
            genres=fields.get("genres", "").split(","),
            source_urls={self.name: url},
        )

    async def fetch_episode_stubs(self, title_slug: str):
        url = self.title_url(title_slug)
        page = await self.fetch_page(url, title_slug)
        return self.parse_episode_stubs(page)

    def parse_episode_stubs(self, page: str):
        stubs = []
        for block in blocks_by_class(page, "episodelist", "</ul>"):
            for href, text in anchors(block):
                slug_match = EPISODE_SLUG_PATTERN.search(href)
                if not slug_match:
                    continue

                stubs.append(
                    EpisodeStub(
                        episode_number=extract_episode_number(href, text),
                        slug=slug_match.group(1),
                        title=text or None,
                        url=href,
                    )
                )
        return stubs

    async def fetch_episode(self, episode_slug: str) -> EpisodePartial:
        url = self.episode_url(episode_slug)
        page = await self.fetch_page(url, episode_slug)
        return self.parse_episode(page, episode_slug, url)

    def parse_episode(self, page: str, episode_slug: str, url: str) -> EpisodePartial:
        header = first_block(page, "venutama", "</h1>")
        if header is None:
            raise SourceNotFound(self.name, episode_slug)

        title = tag_text(f"{header}</h1>", "h1") or clean_text(header)
        episode_number = extract_episode_number(episode_slug, title)
        if episode_number <= 0:
            raise SourceTransientError(
                self.name, f"Unparseable episode number for '{episode_slug}'"
            )

        download_links = {}
        download_block = first_block(page, "download", "</div>")
        for item in list_items(download_block):
            quality = strong_text(item)
            links = {provider: href for href, provider in anchors(item) if provider}
            if quality and links:
                download_links[quality] = links

        streaming_links = {}
        for block in blocks_by_class(page, "responsive-embed-stream", "</div>"):
            for src in iframe_sources(block):
                streaming_links[detect_provider(src, STREAMING_PROVIDERS)] = src

        return EpisodePartial(
            episode_number=episode_number,
            slug=episode_slug,
            title=title or None,
            source_urls={self.name: url},
            download_links=download_links,
            streaming_links=streaming_links,
        )
