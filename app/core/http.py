"""
Single boundary for every upstream HTTP call.
Non-2xx responses, transport errors, undecodable bodies and deadline overruns are
logged and turned into None here, so no upstream failure propagates into aggregation.
"""
import asyncio
import time
from typing import Any, Dict, Optional

import httpx
from prometheus_client import Counter, Histogram
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from app.core.config import Settings, get_settings
from app.core.logging_config import get_logger

logger = get_logger("upstream")

UPSTREAM_REQUESTS = Counter('upstream_requests_total', 'Upstream HTTP calls', ['source', 'outcome'])
UPSTREAM_LATENCY = Histogram('upstream_request_duration_seconds', 'Upstream call duration', ['source'])


class UpstreamStatusError(Exception):
    def __init__(self, status_code: int, url: str):
        super().__init__(f"{url} returned {status_code}")
        self.status_code = status_code
        self.url = url


class TransientUpstreamError(UpstreamStatusError):
    """429 and 5xx responses, worth another attempt."""


class UpstreamClient:
    def __init__(self, http: httpx.AsyncClient, source: str, settings: Optional[Settings] = None):
        self.http = http
        self.source = source
        self.settings = settings or get_settings()

    async def get_json(self, url: str, params: Optional[Dict[str, Any]] = None,
                       headers: Optional[Dict[str, str]] = None) -> Optional[Any]:
        return await self.request("GET", url, params=params, headers=headers)

    async def post_json(self, url: str, payload: Any,
                        headers: Optional[Dict[str, str]] = None) -> Optional[Any]:
        return await self.request("POST", url, json=payload, headers=headers)

    async def request(self, method: str, url: str, **kwargs) -> Optional[Any]:
        start = time.perf_counter()
        outcome = "error"
        try:
            data = await asyncio.wait_for(
                self._request_with_retry(method, url, **kwargs),
                timeout=self.settings.UPSTREAM_TIMEOUT_SECONDS,
            )
            outcome = "success"
            return data
        except asyncio.TimeoutError:
            outcome = "timeout"
            logger.warning("upstream_timeout", source=self.source, url=url,
                           deadline_s=self.settings.UPSTREAM_TIMEOUT_SECONDS)
        except UpstreamStatusError as e:
            outcome = "status"
            logger.warning("upstream_status", source=self.source, url=url, status=e.status_code)
        except httpx.HTTPError as e:
            logger.warning("upstream_error", source=self.source, url=url, error=str(e))
        except ValueError as e:
            outcome = "decode"
            logger.warning("upstream_decode_error", source=self.source, url=url, error=str(e))
        finally:
            UPSTREAM_REQUESTS.labels(source=self.source, outcome=outcome).inc()
            UPSTREAM_LATENCY.labels(source=self.source).observe(time.perf_counter() - start)
        return None

    async def _request_with_retry(self, method: str, url: str, **kwargs) -> Any:
        # Retry only what a second attempt can fix; 4xx other than 429 fails fast.
        retrying = AsyncRetrying(
            stop=stop_after_attempt(max(1, self.settings.UPSTREAM_RETRY_ATTEMPTS)),
            wait=wait_exponential(
                multiplier=self.settings.UPSTREAM_RETRY_MIN_WAIT,
                min=self.settings.UPSTREAM_RETRY_MIN_WAIT,
                max=self.settings.UPSTREAM_RETRY_MAX_WAIT,
            ),
            retry=retry_if_exception_type((TransientUpstreamError, httpx.TransportError)),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                response = await self.http.request(method, url, **kwargs)
                if response.status_code == 429 or response.status_code >= 500:
                    raise TransientUpstreamError(response.status_code, url)
                if not response.is_success:
                    raise UpstreamStatusError(response.status_code, url)
                return response.json()
