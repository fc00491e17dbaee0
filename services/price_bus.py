#Description: Price bus in front of the public ticker: short TTL cache, single-flight de-duplication, pacing and 429 backoff.
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Awaitable, Callable, Dict, Iterable, Optional

from utils.config import settings
from utils.logging import logger
from models.schemas import PriceData
from adapters.coinbase_public import CoinbasePublicAdapter, RateLimitedError, parse_price

SnapshotReader = Callable[[str], Optional[PriceData]]

@dataclass
class _CachedPrice:
    data: PriceData
    cached_at: float

def _read_latest_snapshot(symbol: str) -> PriceData | None:
    from services.price_snapshots import PriceSnapshotService
    return PriceSnapshotService.instance().latest_price(symbol)

class PriceBus:
    """
    Owns its cache, pending-request and pacing maps; construct one per event loop
    consumer. ``clock`` and ``sleep`` are injectable so pacing and backoff can be
    driven deterministically.
    """

    _instance = None
    _lock = Lock()

    def __init__(
        self,
        ticker: CoinbasePublicAdapter | None = None,
        snapshot_reader: SnapshotReader | None = None,
        *,
        cache_ttl: float | None = None,
        max_concurrent: int | None = None,
        min_interval: float | None = None,
        retry_base: float | None = None,
        retry_max: float | None = None,
        max_retries: int | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.ticker = ticker or CoinbasePublicAdapter()
        self._snapshot_reader = snapshot_reader or _read_latest_snapshot
        self.cache_ttl = settings.PRICE_BUS_CACHE_TTL_SECONDS if cache_ttl is None else cache_ttl
        self.max_concurrent = settings.PRICE_BUS_MAX_CONCURRENT if max_concurrent is None else max_concurrent
        self.min_interval = settings.PRICE_BUS_MIN_INTERVAL_SECONDS if min_interval is None else min_interval
        self.retry_base = settings.PRICE_BUS_RETRY_BASE_SECONDS if retry_base is None else retry_base
        self.retry_max = settings.PRICE_BUS_RETRY_MAX_SECONDS if retry_max is None else retry_max
        self.max_retries = settings.PRICE_BUS_MAX_RETRIES if max_retries is None else max_retries
        self._clock = clock
        self._sleep = sleep

        self._cache: Dict[str, _CachedPrice] = {}
        self._pending: Dict[str, asyncio.Future] = {}
        self._last_request: Dict[str, float] = {}
        self._tasks: set[asyncio.Task] = set()
        self._semaphore: asyncio.Semaphore | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    @classmethod
    def instance(cls):
        with cls._lock:
            if not cls._instance:
                cls._instance = PriceBus()
        return cls._instance

    def _bind_loop(self):
        # Futures and the semaphore belong to one event loop
        loop = asyncio.get_running_loop()
        if loop is not self._loop:
            self._loop = loop
            self._semaphore = asyncio.Semaphore(self.max_concurrent)
            self._pending.clear()

    async def get_prices(self, symbols: Iterable[str]) -> Dict[str, PriceData]:
        """Prices for every symbol that could be resolved; unresolved symbols are left out."""
        self._bind_loop()
        unique = list(dict.fromkeys(symbols))
        outcomes = await asyncio.gather(*(self._get_price(s) for s in unique), return_exceptions=True)

        results: Dict[str, PriceData] = {}
        for symbol, outcome in zip(unique, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning(f"Failed to get price for {symbol}: {outcome}")
                continue
            results[symbol] = outcome
        return results

    def get_cached(self, symbol: str) -> PriceData | None:
        cached = self._cache.get(symbol)
        if cached and self._clock() - cached.cached_at < self.cache_ttl:
            return cached.data
        return None

    def flush(self):
        self._cache.clear()
        self._last_request.clear()
        self._pending.clear()

    def cache_size(self) -> int:
        return len(self._cache)

    def debug_info(self) -> dict:
        return {
            "cache_size": self.cache_size(),
            "cache_contents": {
                s: {"price": c.data.price, "ts": c.data.ts, "cached_at": c.cached_at}
                for s, c in self._cache.items()
            },
        }

    async def _get_price(self, symbol: str) -> PriceData:
        cached = self.get_cached(symbol)
        if cached:
            return cached

        fut = self._pending.get(symbol)
        if fut is None:
            fut = asyncio.get_running_loop().create_future()
            self._pending[symbol] = fut
            task = asyncio.create_task(self._execute(symbol, fut))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        # shield: one cancelled subscriber must not cancel the shared request
        return await asyncio.shield(fut)

    async def _execute(self, symbol: str, fut: asyncio.Future):
        try:
            price = await self._fetch_with_retry(symbol)
            data = PriceData(price=price, ts=datetime.now(timezone.utc).isoformat())
            self._cache[symbol] = _CachedPrice(data=data, cached_at=self._clock())
            if not fut.done():
                fut.set_result(data)
        except Exception as e:
            logger.warning(f"Ticker lookup failed for {symbol}: {e}; trying snapshot fallback")
            fallback = await self._fallback_price(symbol)
            if not fut.done():
                if fallback is not None:
                    fut.set_result(fallback)
                else:
                    fut.set_exception(e)
        finally:
            if self._pending.get(symbol) is fut:
                del self._pending[symbol]

    async def _fetch_with_retry(self, symbol: str) -> float:
        attempt = 0
        while True:
            await self._wait_for_symbol_interval(symbol)
            async with self._semaphore:
                self._last_request[symbol] = self._clock()
                try:
                    payload = await self.ticker.get_ticker(symbol)
                except RateLimitedError:
                    if attempt >= self.max_retries:
                        raise RateLimitedError(f"Rate limited after {attempt} retries", status_code=429)
                    delay = min(self.retry_base * (2 ** attempt), self.retry_max)
                    logger.warning(f"Rate limited for {symbol}, retrying in {delay:.1f}s (attempt {attempt + 1})")
                else:
                    return parse_price(payload)
            # slot released while backing off
            await self._sleep(delay)
            attempt += 1

    async def _wait_for_symbol_interval(self, symbol: str):
        last = self._last_request.get(symbol)
        if last is None:
            return
        elapsed = self._clock() - last
        if elapsed < self.min_interval:
            await self._sleep(self.min_interval - elapsed)

    async def _fallback_price(self, symbol: str) -> PriceData | None:
        try:
            return await asyncio.to_thread(self._snapshot_reader, symbol)
        except Exception as e:
            logger.warning(f"Fallback price lookup failed for {symbol}: {e}")
            return None

async def get_prices(symbols: Iterable[str]) -> Dict[str, PriceData]:
    return await PriceBus.instance().get_prices(symbols)

def get_cached(symbol: str) -> PriceData | None:
    return PriceBus.instance().get_cached(symbol)

def flush():
    PriceBus.instance().flush()
