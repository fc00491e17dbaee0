#Description: Signal fusion engine combining recent live signals into one bounded directional score.
from __future__ import annotations

from datetime import datetime, timezone, timedelta
from threading import Lock
from typing import Any, Callable, Dict

from utils.logging import logger
from utils.config import settings
from models.db import get_session
from models.orm import LiveSignal, SignalRegistryEntry, StrategySignalWeight, utcnow
from models.schemas import FusedSignalResult, FusedSignalSummary, SignalDetail, TopSignal

MARKET_WIDE_SYMBOL = "ALL"

LOOKBACK_WINDOWS: Dict[str, timedelta] = {
    "15m": timedelta(minutes=30),
    "1h": timedelta(hours=2),
    "4h": timedelta(hours=8),
    "24h": timedelta(hours=48),
}

def normalize_signal_strength(raw_strength: float) -> float:
    """Map a raw strength on a 0-1 or 0-100 scale onto [0, 1]."""
    if raw_strength <= 1:
        return max(0.0, min(1.0, float(raw_strength)))
    return max(0.0, min(1.0, raw_strength / 100.0))

def direction_multiplier(direction_hint: str | None) -> int:
    # symmetric/contextual signals carry their sign in the strength
    if (direction_hint or "").lower() == "bearish":
        return -1
    return 1

def is_signal_fusion_enabled(strategy_config: Dict[str, Any] | None) -> bool:
    """Fusion only runs for strategies in test mode that opted in."""
    cfg = strategy_config or {}
    is_test_mode = cfg.get("is_test_mode") is True or cfg.get("execution_mode") == "TEST"
    return is_test_mode and cfg.get("enableSignalFusion") is True

def summarize_fusion(result: FusedSignalResult, top_n: int = 5) -> FusedSignalSummary:
    """Compact form of a fusion result, as stored alongside a trade decision."""
    ranked = sorted(result.details, key=lambda d: abs(d.contribution), reverse=True)[:top_n]
    return FusedSignalSummary(
        score=result.fused_score,
        total_signals=result.total_signals,
        enabled_signals=result.enabled_signals,
        top_signals=[TopSignal(type=d.signal_type, contribution=round(d.contribution, 2)) for d in ranked],
    )

def _as_naive_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts
    return ts.astimezone(timezone.utc).replace(tzinfo=None)

class SignalFusionService:
    _instance = None
    _lock = Lock()

    def __init__(
        self,
        session_factory: Callable | None = None,
        score_scale: float | None = None,
        score_clamp: float | None = None,
    ):
        self._session_factory = session_factory or get_session
        self.score_scale = settings.FUSION_SCORE_SCALE if score_scale is None else score_scale
        self.score_clamp = settings.FUSION_SCORE_CLAMP if score_clamp is None else score_clamp

    @classmethod
    def instance(cls):
        with cls._lock:
            if not cls._instance:
                cls._instance = SignalFusionService()
        return cls._instance

    def compute_fused_signal_score(
        self,
        *,
        user_id: str,
        strategy_id: str,
        symbol: str,
        side: str,
        horizon: str,
        now: datetime | None = None,
    ) -> FusedSignalResult:
        """
        Fuse the live signals for ``symbol`` (plus market-wide ``ALL`` signals) seen
        within the lookback window of ``horizon``.

        Never raises: an empty window yields status ``no_signals`` and any lookup
        error yields status ``failed``, both with a zero score. ``side`` is accepted
        for directional weighting but does not affect the score yet.
        """
        try:
            window = LOOKBACK_WINDOWS.get(horizon) or LOOKBACK_WINDOWS[settings.FUSION_DEFAULT_HORIZON]
            cutoff = _as_naive_utc(now or utcnow()) - window

            with self._session_factory() as db:
                signals = (
                    db.query(LiveSignal)
                    .filter(LiveSignal.symbol.in_([symbol, MARKET_WIDE_SYMBOL]), LiveSignal.timestamp >= cutoff)
                    .order_by(LiveSignal.timestamp.desc())
                    .all()
                )
                if not signals:
                    logger.info(f"[SignalFusion] No signals for {symbol}/{horizon} in lookback window")
                    return FusedSignalResult.zero("no_signals")

                logger.info(f"[SignalFusion] Found {len(signals)} raw signals for {symbol}/{horizon}")

                signal_types = sorted({s.signal_type for s in signals})
                registry = {
                    r.key: r
                    for r in db.query(SignalRegistryEntry).filter(SignalRegistryEntry.key.in_(signal_types)).all()
                }
                overrides = self._load_overrides(db, strategy_id)

                details: list[SignalDetail] = []
                total_contribution = 0.0
                for sig in signals:
                    entry = registry.get(sig.signal_type)
                    if entry is None:
                        logger.warning(f"[SignalFusion] No registry entry for signal_type: {sig.signal_type}")
                        continue
                    if not entry.is_enabled:
                        logger.debug(f"[SignalFusion] Signal {sig.signal_type} is disabled in registry")
                        continue
                    override = overrides.get(sig.signal_type)
                    if override is not None and not override.is_enabled:
                        logger.debug(f"[SignalFusion] Signal {sig.signal_type} is disabled for strategy {strategy_id}")
                        continue

                    weight = override.weight if override is not None and override.weight is not None else entry.default_weight
                    normalized = normalize_signal_strength(sig.signal_strength)
                    contribution = normalized * weight * direction_multiplier(entry.direction_hint)

                    details.append(SignalDetail(
                        signal_id=sig.id,
                        signal_type=sig.signal_type,
                        source=sig.source,
                        raw_strength=sig.signal_strength,
                        normalized_strength=normalized,
                        applied_weight=weight,
                        contribution=contribution,
                        timestamp=sig.timestamp,
                    ))
                    total_contribution += contribution

            fused = max(-self.score_clamp, min(self.score_clamp, total_contribution * self.score_scale))
            logger.info(f"[SignalFusion] Fused score for {symbol}/{horizon}: {fused:.2f} from {len(details)} signals")
            return FusedSignalResult(
                fused_score=fused,
                details=details,
                total_signals=len(signals),
                enabled_signals=len(details),
                status="ok",
            )
        except Exception as e:
            logger.exception(f"[SignalFusion] Error computing fused signal for {symbol}/{horizon}: {e}")
            return FusedSignalResult.zero("failed", error=str(e))

    def _load_overrides(self, db, strategy_id: str) -> Dict[str, StrategySignalWeight]:
        # Missing overrides only mean registry defaults apply
        try:
            rows = db.query(StrategySignalWeight).filter(StrategySignalWeight.strategy_id == strategy_id).all()
        except Exception as e:
            logger.warning(f"[SignalFusion] Error fetching strategy weights for {strategy_id}: {e}")
            return {}
        return {w.signal_key: w for w in rows}
