import asyncio
from typing import Optional

import aiohttp


class HttpClientManager:
    def __init__(self, settings):
        self.settings = settings
        self._session: Optional[aiohttp.ClientSession] = None
        self._lock = asyncio.Lock()

    async def init(self) -> aiohttp.ClientSession:
        if self._session and not self._session.closed:
            return self._session

        async with self._lock:
            if self._session and not self._session.closed:
                return self._session

            limit = (
                self.settings.HTTP_CLIENT_LIMIT
                if self.settings.HTTP_CLIENT_LIMIT is not None
                else 100
            )
            limit_per_host = (
                self.settings.HTTP_CLIENT_LIMIT_PER_HOST
                if self.settings.HTTP_CLIENT_LIMIT_PER_HOST is not None
                else 10
            )
            connector = aiohttp.TCPConnector(
                limit=limit,
                limit_per_host=limit_per_host,
                enable_cleanup_closed=True,
            )
            # Per-call timeouts are applied by each adapter
            self._session = aiohttp.ClientSession(connector=connector)
            return self._session

    async def close(self) -> None:
        async with self._lock:
            if self._session and not self._session.closed:
                await self._session.close()
            self._session = None
