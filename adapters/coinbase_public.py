#Description: Public Coinbase Exchange ticker adapter (async) and ticker price parsing.

import math

import httpx

from utils.config import settings

class TickerError(Exception):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code

class RateLimitedError(TickerError):
    pass

def _positive_float(value) -> float | None:
    try:
        v = float(value)
    except (TypeError, ValueError):
        return None
    return v if math.isfinite(v) and v > 0 else None

def parse_price(payload: dict) -> float:
    """Direct ``price`` field first, then the bid/ask midpoint; only finite positive prices count."""
    if not isinstance(payload, dict):
        raise TickerError("Unable to parse price from response")
    price = _positive_float(payload.get("price"))
    if price is not None:
        return price
    bid = _positive_float(payload.get("bid"))
    ask = _positive_float(payload.get("ask"))
    if bid is not None and ask is not None:
        return (bid + ask) / 2
    raise TickerError("Unable to parse price from response")

class CoinbasePublicAdapter:
    def __init__(self, base_url: str | None = None, timeout: float | None = None, client: httpx.AsyncClient | None = None):
        self.base_url = (base_url or settings.TICKER_BASE_URL).rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=timeout or settings.TICKER_TIMEOUT_SECONDS)

    async def get_ticker(self, pair: str) -> dict:
        url = f"{self.base_url}/products/{pair}/ticker"
        try:
            r = await self.client.get(url)
        except httpx.HTTPError as e:
            raise TickerError(f"Ticker request failed for {pair}: {e}") from e
        if r.status_code == 429:
            raise RateLimitedError(f"Rate limited for {pair}", status_code=429)
        if r.is_error:
            raise TickerError(f"HTTP {r.status_code}", status_code=r.status_code)
        return r.json()

    async def aclose(self):
        await self.client.aclose()
