"""
Manual corrections for identity fields DefiLlama gets wrong or leaves empty:
social handles, logos, display names, plus a hard exclusion list.
All keys are lowercase entity names.
"""
from typing import Dict, Optional

from app.core.config import get_settings

HANDLE_OVERRIDES: Dict[str, str] = {
    # Protocols
    "eigencloud": "eigencloud",
    "eigenlayer": "eigencloud",
    # Chains
    "ethereum": "ethereum",
    "base": "base",
    "arbitrum": "arbitrum",
    "solana": "solana",
    "bitcoin": "bitcoin",
    "tron": "trondao",
    "plasma": "PlasmaNetwork_",
    "binance": "binance",
}

LOGO_OVERRIDES: Dict[str, str] = {
    "bsc": "https://icons.llama.fi/binance.jpg",
    "op mainnet": "https://icons.llama.fi/optimism.jpg",
}

# Spelling the per-chain DefiLlama endpoints expect.
DISPLAY_NAME_OVERRIDES: Dict[str, str] = {
    "bsc": "BSC",
    "okexchain": "OKExChain",
    "ton": "TON",
    "icp": "ICP",
    "core": "CORE",
    "gnosis": "xDai",
    "xdai": "xDai",
    "zksync era": "zkSync Era",
    "zksync": "zkSync Era",
    "polygon zkevm": "Polygon zkEVM",
    "zetachain": "ZetaChain",
    "x layer": "X Layer",
    "manta atlantic": "Manta Atlantic",
    "arbitrum nova": "Arbitrum Nova",
}

# Entities never shown on the dashboard, whatever their size.
EXCLUDED_ENTITIES = frozenset({
    "binance cex",
    "okx",
    "bitfinex",
    "bybit",
    "robinhood",
    "coinbase",
    "wbtc",
})


def _key(value: str) -> str:
    return value.strip().lower()


def _resolve(table: Dict[str, str], entity_name: str, fallback: Optional[str]) -> Optional[str]:
    override = table.get(_key(entity_name))
    if override:
        return override
    if fallback:
        override = table.get(_key(fallback))
        if override:
            return override
    return fallback


def resolve_handle(entity_name: str, fallback_handle: Optional[str]) -> Optional[str]:
    return _resolve(HANDLE_OVERRIDES, entity_name, fallback_handle)


def resolve_logo(entity_name: str, fallback_logo: Optional[str]) -> Optional[str]:
    return _resolve(LOGO_OVERRIDES, entity_name, fallback_logo)


def resolve_display_name(entity_name: str) -> str:
    return DISPLAY_NAME_OVERRIDES.get(_key(entity_name), entity_name)


def default_chain_logo(chain_name: str) -> str:
    """DefiLlama icon CDN URL, used when neither the registry nor CoinGecko has a logo."""
    slug = "".join(chain_name.lower().split())
    return f"{get_settings().DEFILLAMA_ICONS_URL}/{slug}.jpg"


def is_excluded(entity_name: str) -> bool:
    return _key(entity_name) in EXCLUDED_ENTITIES
