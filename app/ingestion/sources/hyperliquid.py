from typing import Any, Dict, List, Optional, Tuple

from app.core.config import Settings, get_settings
from app.core.http import UpstreamClient
from app.core.logging_config import get_logger

logger = get_logger("source_hyperliquid")


def _as_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


class HyperliquidSource:
    """
    Direct Hyperliquid perp stats, used only to cross-check DefiLlama numbers in
    the API diagnostics.
    """

    def __init__(self, upstream: UpstreamClient, settings: Optional[Settings] = None):
        self.upstream = upstream
        self.settings = settings or get_settings()

    async def fetch_meta_and_asset_ctxs(self) -> Optional[Tuple[Dict[str, Any], List[Dict[str, Any]]]]:
        data = await self.upstream.post_json(
            f"{self.settings.HYPERLIQUID_API_URL}/info", {"type": "metaAndAssetCtxs"})
        if not isinstance(data, list) or len(data) < 2 or not isinstance(data[1], list):
            return None
        return data[0], [ctx for ctx in data[1] if isinstance(ctx, dict)]

    async def total_open_interest_usd(self) -> Optional[float]:
        # openInterest is quoted in coin units, so it is priced at the mark.
        result = await self.fetch_meta_and_asset_ctxs()
        if result is None:
            return None
        _, ctxs = result
        total = sum(_as_float(c.get("openInterest")) * _as_float(c.get("markPx")) for c in ctxs)
        logger.info("hyperliquid_open_interest", assets=len(ctxs), total_usd=total)
        return total

    async def total_volume_24h_usd(self) -> Optional[float]:
        result = await self.fetch_meta_and_asset_ctxs()
        if result is None:
            return None
        _, ctxs = result
        return sum(_as_float(c.get("dayNtlVlm")) for c in ctxs)
