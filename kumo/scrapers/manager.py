from typing import Dict, List, Optional
from urllib.parse import urlparse

import aiohttp

from kumo.core.models import AppSettings
from kumo.scrapers.anoboy import AnoboyAdapter
from kumo.scrapers.base import BaseSourceAdapter
from kumo.scrapers.otakudesu import OtakudesuAdapter

ADAPTER_CLASSES = {
    OtakudesuAdapter.name: OtakudesuAdapter,
    AnoboyAdapter.name: AnoboyAdapter,
}


class SourceRegistry:
    """Ordered set of source adapters, in default fallback order."""

    def __init__(self, adapters: List[BaseSourceAdapter]):
        self.adapters: Dict[str, BaseSourceAdapter] = {}
        for adapter in adapters:
            self.adapters[adapter.name] = adapter

    @property
    def names(self):
        return list(self.adapters)

    def __contains__(self, name: str):
        return name in self.adapters

    def get(self, name: str) -> BaseSourceAdapter:
        return self.adapters[name]

    def fallback_order(self, hint: Optional[str] = None) -> List[BaseSourceAdapter]:
        order = list(self.adapters.values())
        if hint is None or hint not in self.adapters:
            return order

        hinted = self.adapters[hint]
        return [hinted] + [adapter for adapter in order if adapter is not hinted]

    def detect_source(self, url: str) -> Optional[str]:
        host = (urlparse(url).hostname or "").lower()
        if not host:
            return None

        for name, adapter in self.adapters.items():
            adapter_host = adapter.host.split(":", 1)[0]
            if host == adapter_host or host.endswith(f".{adapter_host}"):
                return name
        return None


def build_adapters(settings: AppSettings, session: aiohttp.ClientSession):
    urls = {
        OtakudesuAdapter.name: settings.OTAKUDESU_URL,
        AnoboyAdapter.name: settings.ANOBOY_URL,
    }

    adapters = []
    for name in settings.SOURCE_ORDER:
        adapter_class = ADAPTER_CLASSES.get(name)
        if adapter_class is None:
            continue
        adapters.append(
            adapter_class(
                session,
                urls[name],
                settings.SOURCE_USER_AGENT,
                timeout=settings.SOURCE_TIMEOUT,
            )
        )
    return SourceRegistry(adapters)
