import asyncio
from typing import Any, Dict, List, Optional, Sequence

from pycoingecko import CoinGeckoAPI
from requests.exceptions import ConnectionError as RequestsConnectionError, Timeout
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from app.core.cache import TTLCache
from app.core.config import Settings, get_settings
from app.core.logging_config import get_logger

logger = get_logger("source_coingecko")


def build_client(settings: Settings) -> CoinGeckoAPI:
    api_key = settings.COINGECKO_API_KEY
    if not api_key:
        return CoinGeckoAPI()
    if settings.COINGECKO_DEMO_KEY:
        return CoinGeckoAPI(demo_api_key=api_key)
    return CoinGeckoAPI(api_key=api_key)


# Only network-level failures are retried. 404/429 surface from pycoingecko as ValueError.
@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=4),
    retry=retry_if_exception_type((RequestsConnectionError, Timeout)),
    reraise=True,
)
def fetch_coin_blocking(cg: CoinGeckoAPI, gecko_id: str) -> Dict[str, Any]:
    return cg.get_coin_by_id(
        gecko_id,
        localization=False,
        tickers=False,
        market_data=False,
        community_data=False,
        developer_data=False,
        sparkline=False,
    )


class CoinGeckoSource:
    """
    Coin metadata (social handle, logo) by gecko_id, cached for the identity TTL.
    pycoingecko is synchronous, so each lookup runs in a worker thread.
    """

    def __init__(self, cache: TTLCache, settings: Optional[Settings] = None,
                 client: Optional[CoinGeckoAPI] = None):
        self.cache = cache
        self.settings = settings or get_settings()
        self.client = client or build_client(self.settings)

    async def fetch_coin(self, gecko_id: str) -> Optional[Dict[str, Any]]:
        async def load():
            try:
                return await asyncio.to_thread(fetch_coin_blocking, self.client, gecko_id)
            except Exception as e:
                logger.warning("fetch_error", source="coingecko", gecko_id=gecko_id, error=str(e))
                return None

        return await self.cache.get_or_compute(
            f"coingecko-{gecko_id}", load, self.settings.IDENTITY_TTL_SECONDS,
            should_cache=lambda v: v is not None,
        )

    async def handle_for(self, gecko_id: str) -> Optional[str]:
        coin = await self.fetch_coin(gecko_id)
        if not coin:
            return None
        handle = (coin.get("links") or {}).get("twitter_screen_name") or None
        if not handle:
            logger.info("coingecko_no_handle", gecko_id=gecko_id)
        return handle

    async def logo_for(self, gecko_id: str) -> Optional[str]:
        coin = await self.fetch_coin(gecko_id)
        if not coin:
            return None
        return (coin.get("image") or {}).get("large") or None

    async def batch_metadata(self, gecko_ids: Sequence[str]) -> Dict[str, Dict[str, Optional[str]]]:
        """
        {gecko_id: {"handle", "logo"}} for at most COINGECKO_REQUEST_BUDGET ids, in
        batches of COINGECKO_BATCH_SIZE with a pause between batches.
        """
        unique: List[str] = list(dict.fromkeys(g for g in gecko_ids if g))
        budget = self.settings.COINGECKO_REQUEST_BUDGET
        if len(unique) > budget:
            logger.info("coingecko_budget_exceeded", requested=len(unique), budget=budget)
            unique = unique[:budget]

        batch_size = max(1, self.settings.COINGECKO_BATCH_SIZE)
        results: Dict[str, Dict[str, Optional[str]]] = {}
        for start in range(0, len(unique), batch_size):
            if start:
                await asyncio.sleep(self.settings.COINGECKO_BATCH_DELAY_SECONDS)
            batch = unique[start:start + batch_size]
            coins = await asyncio.gather(*(self.fetch_coin(g) for g in batch))
            for gecko_id, coin in zip(batch, coins):
                coin = coin or {}
                results[gecko_id] = {
                    "handle": (coin.get("links") or {}).get("twitter_screen_name") or None,
                    "logo": (coin.get("image") or {}).get("large") or None,
                }

        found = sum(1 for v in results.values() if v["handle"])
        logger.info("coingecko_batch", requested=len(unique), handles_found=found)
        return results
