#Description: Canonical writer of the price_snapshots table; also serves the latest snapshot as a price fallback.
import asyncio
import math
import time
import uuid
from datetime import datetime, timezone
from threading import Lock
from typing import Callable, List

import httpx
from sqlalchemy.dialects import postgresql, sqlite

from utils.config import settings
from utils.logging import logger
from models.db import get_session
from models.orm import PriceSnapshot, utcnow
from models.schemas import PriceData, SnapshotFailure, SnapshotRefreshReport

_UPSERT_DIALECTS = {"sqlite": sqlite.insert, "postgresql": postgresql.insert}

class PriceSnapshotService:
    _instance = None
    _lock = Lock()

    def __init__(
        self,
        session_factory: Callable | None = None,
        client: httpx.AsyncClient | None = None,
        symbols: List[str] | None = None,
        quote: str | None = None,
        timeout: float | None = None,
    ):
        self._session_factory = session_factory or get_session
        # without an injected client each refresh opens its own, bound to that refresh's loop
        self.client = client
        self.timeout = timeout or settings.TICKER_TIMEOUT_SECONDS
        self.base_url = settings.TICKER_BASE_URL.rstrip("/")
        self.symbols = list(symbols) if symbols is not None else list(settings.SNAPSHOT_SYMBOLS)
        self.quote = quote or settings.SNAPSHOT_QUOTE_CURRENCY

    @classmethod
    def instance(cls):
        with cls._lock:
            if not cls._instance:
                cls._instance = PriceSnapshotService()
        return cls._instance

    async def fetch_price(self, client: httpx.AsyncClient, symbol: str) -> PriceSnapshot | SnapshotFailure:
        """
        One ticker request for ``symbol`` against the quote currency.

        ``self.timeout`` bounds the whole request (connect, send and read together),
        not each phase separately.
        """
        pair = f"{symbol}-{self.quote}"
        try:
            r = await asyncio.wait_for(client.get(f"{self.base_url}/products/{pair}/ticker"), timeout=self.timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException):
            return SnapshotFailure(symbol=symbol, reason="timeout")
        except httpx.HTTPError:
            return SnapshotFailure(symbol=symbol, reason="network_error")

        if r.status_code == 404:
            return SnapshotFailure(symbol=symbol, reason="pair_not_found")
        if r.status_code == 429:
            return SnapshotFailure(symbol=symbol, reason="rate_limited")
        if r.is_error:
            return SnapshotFailure(symbol=symbol, reason=f"http_{r.status_code}")

        try:
            price = float(r.json().get("price"))
        except (TypeError, ValueError, AttributeError):
            return SnapshotFailure(symbol=symbol, reason="invalid_price")
        if not math.isfinite(price) or price <= 0:
            return SnapshotFailure(symbol=symbol, reason="invalid_price")
        return PriceSnapshot(symbol=symbol, price=price, ts=utcnow())

    async def fetch_all(self, symbols: List[str]) -> List[PriceSnapshot | SnapshotFailure]:
        """Fetch every symbol concurrently; results keep the order of ``symbols``."""
        if self.client is not None:
            return await asyncio.gather(*(self.fetch_price(self.client, s) for s in symbols))
        async with httpx.AsyncClient() as client:
            return await asyncio.gather(*(self.fetch_price(client, s) for s in symbols))

    def active_symbols(self) -> List[str]:
        """Configured defaults plus any base asset that already has snapshots."""
        symbols = list(self.symbols)
        try:
            with self._session_factory() as db:
                rows = db.query(PriceSnapshot.symbol).distinct().all()
        except Exception as e:
            logger.warning(f"[price-snapshot-refresh] Could not read tracked symbols, using defaults: {e}")
            return symbols
        for (sym,) in rows:
            base = sym.split("-", 1)[0].upper()
            if base and base not in symbols:
                symbols.append(base)
        return symbols

    def write_snapshots(self, prices: List[PriceSnapshot]) -> int:
        """
        Upsert one row per base symbol and one per pair, sharing the fetch ts.

        A row already stored for the same (symbol, ts) gets its price replaced.
        Returns the number of rows written.
        """
        rows = []
        for p in prices:
            for sym in (p.symbol, f"{p.symbol}-{self.quote}"):
                rows.append({"id": str(uuid.uuid4()), "symbol": sym, "price": p.price, "ts": p.ts})
        if not rows:
            return 0

        with self._session_factory() as db:
            insert = _UPSERT_DIALECTS.get(db.get_bind().dialect.name)
            if insert is not None:
                stmt = insert(PriceSnapshot).values(rows)
                stmt = stmt.on_conflict_do_update(
                    index_elements=["symbol", "ts"],
                    set_={"price": stmt.excluded.price},
                )
                db.execute(stmt)
            else:
                for row in rows:
                    existing = (
                        db.query(PriceSnapshot)
                        .filter(PriceSnapshot.symbol == row["symbol"], PriceSnapshot.ts == row["ts"])
                        .first()
                    )
                    if existing:
                        existing.price = row["price"]
                    else:
                        db.add(PriceSnapshot(**row))
            db.commit()
        return len(rows)

    def refresh(self) -> SnapshotRefreshReport:
        """Fetch all active symbols in parallel and upsert the results. Never raises."""
        started = time.monotonic()
        try:
            symbols = self.active_symbols()
            logger.info(f"[price-snapshot-refresh] Refreshing {len(symbols)} symbols")

            prices: List[PriceSnapshot] = []
            failed: List[SnapshotFailure] = []
            for res in asyncio.run(self.fetch_all(symbols)):
                if isinstance(res, SnapshotFailure):
                    failed.append(res)
                else:
                    prices.append(res)

            if prices:
                try:
                    written = self.write_snapshots(prices)
                    logger.info(f"[price-snapshot-refresh] Wrote {written} snapshot rows")
                except Exception as e:
                    logger.error(f"[price-snapshot-refresh] Write error: {e}")

            if failed:
                logger.warning(f"[price-snapshot-refresh] Failed symbols: {[f.model_dump() for f in failed]}")

            return SnapshotRefreshReport(
                success=True,
                refreshed=len(prices),
                failed=len(failed),
                symbols_refreshed=[p.symbol for p in prices],
                symbols_failed=failed,
                elapsed_ms=int((time.monotonic() - started) * 1000),
                timestamp=datetime.now(timezone.utc).isoformat(),
            )
        except Exception as e:
            logger.exception(f"[price-snapshot-refresh] Fatal error: {e}")
            return SnapshotRefreshReport(
                success=False,
                elapsed_ms=int((time.monotonic() - started) * 1000),
                timestamp=datetime.now(timezone.utc).isoformat(),
                error=str(e),
            )

    def latest_price(self, symbol: str) -> PriceData | None:
        with self._session_factory() as db:
            row = (
                db.query(PriceSnapshot)
                .filter(PriceSnapshot.symbol == symbol)
                .order_by(PriceSnapshot.ts.desc())
                .first()
            )
            if row is None:
                return None
            return PriceData(price=float(row.price), ts=row.ts.replace(tzinfo=timezone.utc).isoformat())
