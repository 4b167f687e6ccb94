import asyncio
import json
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple
from unittest.mock import MagicMock

import httpx
import pytest
import pytest_asyncio

from app.core.cache import TTLCache
from app.core.clients import build_sources
from app.core.config import Settings
from app.ingestion.sources.coingecko import CoinGeckoSource

LLAMA = "https://api.llama.fi"
STABLES = "https://stablecoins.llama.fi"
ETHOS = "https://api.ethos.network/api/v2"
HYPERLIQUID = "https://api.hyperliquid.xyz"


@dataclass
class Route:
    status: int = 200
    payload: Any = None
    delay: float = 0.0
    handler: Optional[Callable[[httpx.Request], httpx.Response]] = None


class FakeUpstream:
    """Routes requests by (method, scheme://host/path); unknown routes answer 404."""

    def __init__(self):
        self.routes: Dict[Tuple[str, str], Route] = {}
        self.requests: List[httpx.Request] = []

    def add(self, method: str, url: str, payload: Any = None, status: int = 200,
            delay: float = 0.0, handler=None) -> None:
        self.routes[(method, url)] = Route(status=status, payload=payload, delay=delay, handler=handler)

    def calls(self, url: str, method: Optional[str] = None) -> int:
        return sum(1 for r in self.requests if self._key(r)[1] == url and (method is None or r.method == method))

    def bodies(self, url: str) -> List[Any]:
        return [json.loads(r.content) for r in self.requests if self._key(r)[1] == url and r.content]

    @staticmethod
    def _key(request: httpx.Request) -> Tuple[str, str]:
        return request.method, f"{request.url.scheme}://{request.url.host}{request.url.path}"

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(self._key(request))
        if route is None:
            return httpx.Response(404, json={"error": "not found"})
        if route.delay:
            await asyncio.sleep(route.delay)
        if route.handler is not None:
            return route.handler(request)
        return httpx.Response(route.status, json=route.payload)


@pytest.fixture
def test_settings():
    return Settings(
        UPSTREAM_RETRY_ATTEMPTS=1,
        UPSTREAM_RETRY_MIN_WAIT=0,
        UPSTREAM_RETRY_MAX_WAIT=0,
        UPSTREAM_TIMEOUT_SECONDS=2,
        COINGECKO_BATCH_DELAY_SECONDS=0,
        ETHOS_RATE_PER_SECOND=1000,
        ETHOS_BURST=5,
    )


@pytest.fixture
def upstream():
    return FakeUpstream()


COINS = {
    "ethereum": {"links": {"twitter_screen_name": "ethereum"}, "image": {"large": "https://cg.test/eth.png"}},
    "tron": {"links": {"twitter_screen_name": "justinsuntron"}, "image": {"large": "https://cg.test/trx.png"}},
    "xdai": {"links": {"twitter_screen_name": "gnosischain"}, "image": {}},
}


@pytest.fixture
def coingecko_client():
    client = MagicMock()

    def get_coin_by_id(gecko_id, **kwargs):
        if gecko_id not in COINS:
            raise ValueError({"error": "coin not found"})
        return COINS[gecko_id]

    client.get_coin_by_id.side_effect = get_coin_by_id
    return client


@pytest_asyncio.fixture
async def sources(upstream, test_settings, coingecko_client):
    http = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
    cache = TTLCache()
    bundle = build_sources(http, cache, test_settings)
    bundle.coingecko = CoinGeckoSource(cache, test_settings, client=coingecko_client)
    yield bundle
    await http.aclose()


# --- Seed data ---

PROTOCOLS = [
    {"id": "1", "name": "Aave V3", "slug": "aave-v3", "category": "Lending", "tvl": 30e9,
     "twitter": "aave", "logo": "https://icons.llama.fi/aave-v3.png"},
    {"id": 2, "name": "Hyperliquid", "slug": "hyperliquid", "category": "Derivatives", "tvl": 12e9,
     "twitter": "HyperliquidX"},
    {"id": "3", "name": "Uniswap V3", "slug": "uniswap-v3", "category": "Dexes", "tvl": 11e9,
     "twitter": None},
    {"id": "4", "name": "EigenLayer", "slug": "eigenlayer", "category": "Restaking", "tvl": 15e9,
     "twitter": "eigenlayer"},
    {"id": "5", "name": "Lido", "slug": "lido", "category": "Liquid Staking", "tvl": 25e9,
     "twitter": "LidoFinance"},
    {"id": "6", "name": "Binance CEX", "slug": "binance-cex", "category": "CEX", "tvl": 150e9,
     "twitter": "binance"},
    {"id": "7", "name": "Some Bridge", "slug": "some-bridge", "category": "Bridge", "tvl": 20e9,
     "twitter": "somebridge"},
    {"id": "8", "name": "Tiny Lender", "slug": "tiny-lender", "category": "Lending", "tvl": 1e9,
     "twitter": "tiny"},
]

ETHOS_USERS = {
    "aave": (11, 1850),
    "HyperliquidX": (12, 1400),
    "eigencloud": (13, 2650),
    "LidoFinance": (14, 1650),
    "ethereum": (21, 2100),
    "trondao": (22, 1300),
}


def ethos_users_handler(request: httpx.Request) -> httpx.Response:
    handle = json.loads(request.content)["accountIdsOrUsernames"][0]
    if handle not in ETHOS_USERS:
        return httpx.Response(200, json=[])
    return httpx.Response(200, json=[{"id": ETHOS_USERS[handle][0], "username": handle}])


def ethos_score_handler(request: httpx.Request) -> httpx.Response:
    user_id = int(request.url.params["userId"])
    for uid, score in ETHOS_USERS.values():
        if uid == user_id:
            return httpx.Response(200, json={"score": score, "level": "known"})
    return httpx.Response(404, json={"error": "not found"})


@pytest.fixture
def seed_ethos(upstream):
    upstream.add("POST", f"{ETHOS}/users/by/x", handler=ethos_users_handler)
    upstream.add("GET", f"{ETHOS}/score/userId", handler=ethos_score_handler)
    return upstream


@pytest.fixture
def seed_protocols(upstream, seed_ethos):
    upstream.add("GET", f"{LLAMA}/protocols", PROTOCOLS)
    upstream.add("GET", f"{LLAMA}/overview/options",
                 {"protocols": [{"name": "Hyperliquid", "dailyOpenInterest": 8e9}]})
    upstream.add("GET", f"{LLAMA}/overview/derivatives",
                 {"protocols": [{"name": "Hyperliquid", "total24h": 5e9}]})
    upstream.add("GET", f"{LLAMA}/overview/dexs",
                 {"protocols": [{"name": "Uniswap", "total24h": 1.5e9}]})
    upstream.add("GET", f"{LLAMA}/overview/fees", {"protocols": [
        {"name": "Aave V3", "total24h": 2.5e6},
        {"name": "Lido", "displayName": "Lido", "total24h": 3e6},
    ]})
    return upstream


@pytest.fixture
def seed_chains(upstream, seed_ethos):
    upstream.add("GET", f"{LLAMA}/v2/chains", [
        {"name": "Ethereum", "gecko_id": "ethereum", "tokenSymbol": "ETH", "chainId": 1, "tvl": 60e9},
        {"name": "Tron", "gecko_id": "tron", "tokenSymbol": "TRX", "tvl": 5e9},
        {"name": "Gnosis", "gecko_id": "xdai", "tokenSymbol": "XDAI", "chainId": "100", "tvl": 3e8},
        {"name": "Solana", "gecko_id": "solana", "tokenSymbol": "SOL", "tvl": 9e9},
        {"name": "OKX", "gecko_id": None, "tvl": 1e8},
        {"name": "Tiny", "gecko_id": None, "tvl": 1e6},
    ])
    upstream.add("GET", f"{STABLES}/stablecoinchains", [
        {"name": "Ethereum", "totalCirculatingUSD": {"peggedUSD": 150e9}},
        {"name": "Tron", "totalCirculatingUSD": {"peggedUSD": 60e9}},
        {"name": "Gnosis", "totalCirculatingUSD": {"peggedUSD": 6e9}},
        {"name": "Solana", "totalCirculatingUSD": {"peggedUSD": 12e9}},
        {"name": "OKX", "totalCirculatingUSD": {"peggedUSD": 8e9}},
        {"name": "Tiny", "totalCirculatingUSD": {"peggedUSD": 1e6}},
    ])
    upstream.add("GET", f"{LLAMA}/overview/fees/Ethereum", {"total24h": 4e6})
    upstream.add("GET", f"{LLAMA}/overview/fees/Tron", {"total24h": 1e6})
    upstream.add("GET", f"{LLAMA}/overview/fees/xDai", {"total24h": 50_000})
    return upstream


def daily_points(values, key="totalLiquidityUSD", end=None):
    end = int(end or time.time())
    n = len(values)
    return [{"date": end - (n - 1 - i) * 86400, key: v} for i, v in enumerate(values)]
