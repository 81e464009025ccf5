import asyncio
import time
from typing import List, Optional

import aiohttp

from kumo.core.exceptions import EnrichmentError
from kumo.core.logger import logger
from kumo.metadata.matching import find_best_match


class JikanClient:
    """MyAnimeList lookups through the public Jikan API.

    Jikan allows roughly one request per second per client, so every call
    waits until `min_interval` seconds have passed since the previous one.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        url: str,
        user_agent: str,
        min_interval: float = 1.0,
        search_limit: int = 5,
        timeout: int = 15,
    ):
        self.session = session
        self.url = url
        self.user_agent = user_agent
        self.min_interval = max(min_interval, 1.0)
        self.search_limit = search_limit
        self.timeout = aiohttp.ClientTimeout(total=timeout)

        self._lock = asyncio.Lock()
        self._last_call = None

    async def _wait_for_slot(self):
        if self._last_call is None:
            return
        elapsed = time.monotonic() - self._last_call
        if elapsed < self.min_interval:
            await asyncio.sleep(self.min_interval - elapsed)

    async def _get(self, path: str, params: dict = None):
        async with self._lock:
            await self._wait_for_slot()
            try:
                async with self.session.get(
                    f"{self.url}{path}",
                    params=params,
                    headers={"User-Agent": self.user_agent},
                    timeout=self.timeout,
                ) as response:
                    if response.status != 200:
                        raise EnrichmentError(f"Jikan returned HTTP {response.status}")
                    return await response.json()
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                raise EnrichmentError(f"Jikan request failed: {e}") from e
            finally:
                self._last_call = time.monotonic()

    async def search(self, query: str) -> List[dict]:
        data = await self._get("/anime", {"q": query, "limit": self.search_limit})
        results = data.get("data") if isinstance(data, dict) else None
        return results or []

    async def find(self, title: str) -> Optional[dict]:
        candidates = await self.search(title)
        match = find_best_match(title, candidates)

        if match is None:
            logger.log("ENRICHMENT", f"No Jikan candidates for '{title}'")
        else:
            logger.log(
                "ENRICHMENT",
                f"Matched '{title}' to MAL #{match.get('mal_id')} ({match.get('title')})",
            )
        return match
