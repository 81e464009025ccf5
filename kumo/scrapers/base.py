import asyncio
from abc import ABC, abstractmethod
from typing import List

import aiohttp

from kumo.core.exceptions import SourceNotFound, SourceTransientError
from kumo.scrapers.models import EpisodePartial, EpisodeStub, TitlePartial


def normalize_episode_stubs(stubs: List[EpisodeStub]) -> List[EpisodeStub]:
    """Drops unparseable numbers, keeps the first stub per number, sorts ascending."""
    unique = {}
    for stub in stubs:
        if stub.episode_number is None or stub.episode_number <= 0:
            continue
        if stub.episode_number not in unique:
            unique[stub.episode_number] = stub
    return [unique[number] for number in sorted(unique)]


class BaseSourceAdapter(ABC):
    name: str = None

    def __init__(
        self,
        session: aiohttp.ClientSession,
        url: str,
        user_agent: str,
        timeout: int = 30,
    ):
        self.session = session
        self.url = url
        self.user_agent = user_agent
        self.timeout = aiohttp.ClientTimeout(total=timeout)

    @property
    def host(self):
        return self.url.split("://", 1)[-1].split("/", 1)[0].lower()

    async def fetch_page(self, url: str, slug: str) -> str:
        try:
            async with self.session.get(
                url, headers={"User-Agent": self.user_agent}, timeout=self.timeout
            ) as response:
                if response.status == 404:
                    raise SourceNotFound(self.name, slug)
                if response.status != 200:
                    raise SourceTransientError(
                        self.name, f"HTTP {response.status} for {url}"
                    )
                return await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise SourceTransientError(
                self.name, f"{type(e).__name__} while fetching {url}: {e}"
            ) from e

    @abstractmethod
    async def fetch_title(self, slug: str) -> TitlePartial:
        pass

    @abstractmethod
    async def fetch_episode(self, episode_slug: str) -> EpisodePartial:
        pass

    @abstractmethod
    async def fetch_episode_stubs(self, title_slug: str) -> List[EpisodeStub]:
        pass

    async def fetch_episode_list(self, title_slug: str) -> List[EpisodeStub]:
        # Stateless: every call re-derives the whole list
        stubs = await self.fetch_episode_stubs(title_slug)
        return normalize_episode_stubs(stubs)
