from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import Optional

class Settings(BaseSettings):
    PROJECT_NAME: str = "stockflow-dashboard"

    # Upstreams
    DEFILLAMA_API_URL: str = "https://api.llama.fi"
    DEFILLAMA_STABLECOINS_URL: str = "https://stablecoins.llama.fi"
    DEFILLAMA_ICONS_URL: str = "https://icons.llama.fi"
    ETHOS_API_URL: str = "https://api.ethos.network/api/v2"
    HYPERLIQUID_API_URL: str = "https://api.hyperliquid.xyz"
    COINGECKO_API_KEY: Optional[str] = None
    COINGECKO_DEMO_KEY: bool = True

    # Upstream call discipline
    UPSTREAM_TIMEOUT_SECONDS: float = 15.0
    UPSTREAM_RETRY_ATTEMPTS: int = 3
    UPSTREAM_RETRY_MIN_WAIT: float = 0.5
    UPSTREAM_RETRY_MAX_WAIT: float = 4.0

    # Cache TTLs (seconds)
    REGISTRY_TTL_SECONDS: float = 120.0
    IDENTITY_TTL_SECONDS: float = 1800.0
    HISTORY_TTL_SECONDS: float = 900.0

    # Thresholds
    MIN_PROTOCOL_TVL: float = 10_000_000_000
    MIN_CHAIN_STABLECOIN_MCAP: float = 5_000_000_000

    # Ethos lazy path: requests per second and burst
    ETHOS_RATE_PER_SECOND: float = 1.0
    ETHOS_BURST: int = 1
    REVIEW_PAGE_SIZE: int = 1000

    # CoinGecko metadata budget
    COINGECKO_REQUEST_BUDGET: int = 20
    COINGECKO_BATCH_SIZE: int = 5
    COINGECKO_BATCH_DELAY_SECONDS: float = 1.5

    # Feature Flags
    WARM_CACHE_ON_STARTUP: bool = False
    LOG_LEVEL: str = "INFO"
    JSON_LOGS: bool = True

    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_file=".env",
        extra="ignore"
    )

@lru_cache()
def get_settings():
    return Settings()
