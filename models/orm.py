#Description: ORM entity definitions for the signal, registry and price snapshot tables.

import uuid
from datetime import datetime, timezone

from sqlalchemy.orm import declarative_base, Mapped, mapped_column
from sqlalchemy import String, Float, DateTime, Boolean, UniqueConstraint

Base = declarative_base()

def utcnow() -> datetime:
    # Timestamps are stored as naive UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)

def _uuid() -> str:
    return str(uuid.uuid4())

class LiveSignal(Base):
    __tablename__ = "live_signals"
    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    symbol: Mapped[str] = mapped_column(String, index=True)  # BTC, ETH ... or ALL for market-wide
    signal_type: Mapped[str] = mapped_column(String, index=True)
    source: Mapped[str] = mapped_column(String, default="")
    signal_strength: Mapped[float] = mapped_column(Float)  # 0-1 or 0-100
    timestamp: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)

class SignalRegistryEntry(Base):
    __tablename__ = "signal_registry"
    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    key: Mapped[str] = mapped_column(String, unique=True, index=True)
    category: Mapped[str] = mapped_column(String, default="technical")
    description: Mapped[str | None] = mapped_column(String, nullable=True)
    default_weight: Mapped[float] = mapped_column(Float, default=1.0)
    min_weight: Mapped[float] = mapped_column(Float, default=0.0)
    max_weight: Mapped[float] = mapped_column(Float, default=3.0)
    direction_hint: Mapped[str] = mapped_column(String, default="symmetric")  # bullish|bearish|symmetric|contextual
    timeframe_hint: Mapped[str | None] = mapped_column(String, nullable=True)
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

class StrategySignalWeight(Base):
    __tablename__ = "strategy_signal_weights"
    __table_args__ = (UniqueConstraint("strategy_id", "signal_key"),)
    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    strategy_id: Mapped[str] = mapped_column(String, index=True)
    signal_key: Mapped[str] = mapped_column(String)
    weight: Mapped[float | None] = mapped_column(Float, nullable=True)
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

class PriceSnapshot(Base):
    __tablename__ = "price_snapshots"
    __table_args__ = (UniqueConstraint("symbol", "ts"),)
    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    symbol: Mapped[str] = mapped_column(String, index=True)  # BTC or BTC-EUR
    price: Mapped[float] = mapped_column(Float)
    ts: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
