from dataclasses import dataclass
from typing import Optional

import httpx

from app.core.cache import TTLCache
from app.core.config import Settings, get_settings
from app.core.http import UpstreamClient
from app.core.rate_limiter import TokenBucket
from app.ingestion.sources.coingecko import CoinGeckoSource
from app.ingestion.sources.defillama import DefiLlamaSource
from app.ingestion.sources.ethos import EthosSource
from app.ingestion.sources.hyperliquid import HyperliquidSource


@dataclass
class Sources:
    defillama: DefiLlamaSource
    ethos: EthosSource
    coingecko: CoinGeckoSource
    hyperliquid: HyperliquidSource
    ethos_limiter: TokenBucket
    cache: TTLCache


def build_sources(http: httpx.AsyncClient, cache: TTLCache, settings: Settings) -> Sources:
    return Sources(
        defillama=DefiLlamaSource(UpstreamClient(http, "defillama", settings), cache, settings),
        ethos=EthosSource(UpstreamClient(http, "ethos", settings), settings),
        coingecko=CoinGeckoSource(cache, settings),
        hyperliquid=HyperliquidSource(UpstreamClient(http, "hyperliquid", settings), settings),
        ethos_limiter=TokenBucket(settings.ETHOS_RATE_PER_SECOND, settings.ETHOS_BURST),
        cache=cache,
    )


# Lazy initialization to prevent import-time loop binding issues
class ClientManager:
    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._http: Optional[httpx.AsyncClient] = None
        self._sources: Optional[Sources] = None
        self.cache = TTLCache()

    @property
    def http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(
                timeout=self.settings.UPSTREAM_TIMEOUT_SECONDS,
                headers={"User-Agent": self.settings.PROJECT_NAME},
                follow_redirects=True,
            )
        return self._http

    @property
    def sources(self) -> Sources:
        if self._sources is None:
            self._sources = build_sources(self.http, self.cache, self.settings)
        return self._sources

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
        self._http = None
        self._sources = None


client_manager = ClientManager()


def get_sources() -> Sources:
    return client_manager.sources
