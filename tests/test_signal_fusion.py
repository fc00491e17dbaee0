#Description: Signal fusion scoring, filtering and soft-fail behaviour against an in-memory database.

from datetime import datetime, timedelta, timezone

import pytest

from models.orm import LiveSignal, SignalRegistryEntry, StrategySignalWeight
from services.signal_fusion import (
    SignalFusionService,
    direction_multiplier,
    is_signal_fusion_enabled,
    normalize_signal_strength,
    summarize_fusion,
)

NOW = datetime(2026, 10, 18, 12, 0, 0)


def add_registry(factory, key, weight=1.0, direction="bullish", enabled=True):
    with factory() as db:
        db.add(SignalRegistryEntry(key=key, category="test", default_weight=weight,
                                   direction_hint=direction, is_enabled=enabled))
        db.commit()


def add_signal(factory, signal_type, strength, symbol="BTC", age=timedelta(minutes=10), source="collector"):
    with factory() as db:
        sig = LiveSignal(symbol=symbol, signal_type=signal_type, source=source,
                         signal_strength=strength, timestamp=NOW - age)
        db.add(sig)
        db.commit()
        return sig.id


def add_override(factory, strategy_id, key, weight=None, enabled=True):
    with factory() as db:
        db.add(StrategySignalWeight(strategy_id=strategy_id, signal_key=key, weight=weight, is_enabled=enabled))
        db.commit()


def fuse(factory, strategy_id="strat-1", symbol="BTC", horizon="1h", now=NOW):
    svc = SignalFusionService(session_factory=factory)
    return svc.compute_fused_signal_score(user_id="user-1", strategy_id=strategy_id, symbol=symbol,
                                          side="BUY", horizon=horizon, now=now)


def test_no_signals_returns_exact_zero(session_factory):
    res = fuse(session_factory)
    assert res.fused_score == 0
    assert res.details == []
    assert res.total_signals == 0
    assert res.enabled_signals == 0
    assert res.status == "no_signals"
    assert not res.failed


def test_weighted_sum_with_direction(session_factory):
    add_registry(session_factory, "rsi_oversold", weight=1.5, direction="bullish")
    add_registry(session_factory, "whale_outflow", weight=2.0, direction="bearish")
    add_signal(session_factory, "rsi_oversold", 80)
    add_signal(session_factory, "whale_outflow", 0.5)

    res = fuse(session_factory)
    # 0.8 * 1.5 - 0.5 * 2.0 = 0.2, scaled by 20
    assert res.fused_score == pytest.approx(4.0)
    assert res.total_signals == 2
    assert res.enabled_signals == 2
    assert res.status == "ok"
    by_type = {d.signal_type: d for d in res.details}
    assert by_type["rsi_oversold"].normalized_strength == pytest.approx(0.8)
    assert by_type["rsi_oversold"].raw_strength == 80
    assert by_type["whale_outflow"].contribution == pytest.approx(-1.0)


def test_score_is_clamped(session_factory):
    add_registry(session_factory, "momentum", weight=3.0)
    add_registry(session_factory, "fear", weight=3.0, direction="bearish")
    for _ in range(5):
        add_signal(session_factory, "momentum", 100)
    assert fuse(session_factory).fused_score == 100

    for _ in range(12):
        add_signal(session_factory, "fear", 100)
    res = fuse(session_factory)
    assert res.fused_score == -100
    assert res.enabled_signals <= res.total_signals


def test_lookback_window_depends_on_horizon(session_factory):
    add_registry(session_factory, "sentiment")
    add_signal(session_factory, "sentiment", 50, age=timedelta(minutes=45))

    assert fuse(session_factory, horizon="15m").status == "no_signals"
    assert fuse(session_factory, horizon="1h").total_signals == 1
    # unknown horizon behaves like 1h
    assert fuse(session_factory, horizon="3d").total_signals == 1

    add_signal(session_factory, "sentiment", 50, age=timedelta(hours=30))
    assert fuse(session_factory, horizon="4h").total_signals == 1
    assert fuse(session_factory, horizon="24h").total_signals == 2


def test_includes_market_wide_signals_only(session_factory):
    add_registry(session_factory, "macro")
    add_signal(session_factory, "macro", 40, symbol="ALL")
    add_signal(session_factory, "macro", 40, symbol="ETH")
    add_signal(session_factory, "macro", 40, symbol="BTC")

    res = fuse(session_factory, symbol="BTC")
    assert res.total_signals == 2
    assert res.fused_score == pytest.approx(0.4 * 2 * 20)


def test_details_are_newest_first(session_factory):
    add_registry(session_factory, "rsi")
    old_id = add_signal(session_factory, "rsi", 10, age=timedelta(minutes=50))
    new_id = add_signal(session_factory, "rsi", 20, age=timedelta(minutes=5))

    res = fuse(session_factory)
    assert [d.signal_id for d in res.details] == [new_id, old_id]


def test_signal_without_registry_entry_is_skipped(session_factory):
    add_registry(session_factory, "known")
    add_signal(session_factory, "known", 50)
    add_signal(session_factory, "mystery", 90)

    res = fuse(session_factory)
    assert res.total_signals == 2
    assert res.enabled_signals == 1
    assert [d.signal_type for d in res.details] == ["known"]


def test_registry_disable_wins_over_strategy_override(session_factory):
    add_registry(session_factory, "news", weight=2.0, enabled=False)
    add_registry(session_factory, "rsi", weight=1.0)
    add_override(session_factory, "strat-1", "news", weight=3.0, enabled=True)
    add_signal(session_factory, "news", 90)
    add_signal(session_factory, "news", 70)
    add_signal(session_factory, "rsi", 50)

    res = fuse(session_factory)
    assert all(d.signal_type != "news" for d in res.details)
    assert res.enabled_signals == 1
    assert res.total_signals == 3


def test_strategy_override_disables_for_that_strategy_only(session_factory):
    add_registry(session_factory, "whale_inflow", weight=1.0)
    add_override(session_factory, "strat-1", "whale_inflow", enabled=False)
    add_signal(session_factory, "whale_inflow", 60)

    assert fuse(session_factory, strategy_id="strat-1").enabled_signals == 0
    other = fuse(session_factory, strategy_id="strat-2")
    assert other.enabled_signals == 1
    assert other.fused_score == pytest.approx(0.6 * 20)


def test_override_weight_replaces_default(session_factory):
    add_registry(session_factory, "rsi", weight=1.0)
    add_registry(session_factory, "macd", weight=2.0)
    add_override(session_factory, "strat-1", "rsi", weight=2.5)
    add_override(session_factory, "strat-1", "macd", weight=None)
    add_signal(session_factory, "rsi", 0.4)
    add_signal(session_factory, "macd", 0.4)

    res = fuse(session_factory)
    weights = {d.signal_type: d.applied_weight for d in res.details}
    assert weights == {"rsi": 2.5, "macd": 2.0}
    assert res.fused_score == pytest.approx((0.4 * 2.5 + 0.4 * 2.0) * 20)


@pytest.mark.parametrize("strength", [0.01, 0.3, 1, 5, 55, 100, 250])
def test_bearish_never_contributes_positively(session_factory, strength):
    add_registry(session_factory, "liquidations", weight=1.2, direction="bearish")
    add_signal(session_factory, "liquidations", strength)

    res = fuse(session_factory)
    assert res.details[0].contribution <= 0
    assert res.fused_score <= 0


def test_timezone_aware_now(session_factory):
    add_registry(session_factory, "rsi")
    add_signal(session_factory, "rsi", 50)
    res = fuse(session_factory, now=NOW.replace(tzinfo=timezone.utc))
    assert res.enabled_signals == 1


def test_database_error_fails_soft():
    def broken_factory():
        raise RuntimeError("database unavailable")

    res = fuse(broken_factory)
    assert res.fused_score == 0
    assert res.details == []
    assert res.status == "failed"
    assert res.failed
    assert "database unavailable" in res.error


def test_custom_scale_and_clamp(session_factory):
    add_registry(session_factory, "rsi", weight=1.0)
    add_signal(session_factory, "rsi", 100)
    svc = SignalFusionService(session_factory=session_factory, score_scale=10.0, score_clamp=5.0)
    res = svc.compute_fused_signal_score(user_id="u", strategy_id="s", symbol="BTC", side="SELL", horizon="1h", now=NOW)
    assert res.fused_score == 5.0


def test_to_frame(session_factory):
    add_registry(session_factory, "rsi")
    add_signal(session_factory, "rsi", 50)
    df = fuse(session_factory).to_frame()
    assert len(df) == 1
    assert {"signal_type", "contribution", "applied_weight"} <= set(df.columns)
    assert fuse(session_factory, symbol="DOGE").to_frame().empty


def test_summarize_orders_by_magnitude(session_factory):
    add_registry(session_factory, "small", weight=0.5)
    add_registry(session_factory, "large", weight=3.0, direction="bearish")
    add_registry(session_factory, "mid", weight=1.0)
    add_signal(session_factory, "small", 50)
    add_signal(session_factory, "large", 80)
    add_signal(session_factory, "mid", 77.7)

    res = fuse(session_factory)
    summary = summarize_fusion(res, top_n=2)
    assert summary.score == res.fused_score
    assert summary.total_signals == 3
    assert [t.type for t in summary.top_signals] == ["large", "mid"]
    assert summary.top_signals[0].contribution == pytest.approx(-2.4)
    assert summary.top_signals[1].contribution == 0.78


@pytest.mark.parametrize("raw, expected", [
    (0, 0.0), (0.5, 0.5), (1, 1.0), (1.5, 0.015), (50, 0.5), (100, 1.0), (150, 1.0), (-5, 0.0),
])
def test_normalize_signal_strength(raw, expected):
    assert normalize_signal_strength(raw) == pytest.approx(expected)


def test_direction_multiplier():
    assert direction_multiplier("bearish") == -1
    assert direction_multiplier("BEARISH") == -1
    assert direction_multiplier("bullish") == 1
    assert direction_multiplier("symmetric") == 1
    assert direction_multiplier("contextual") == 1
    assert direction_multiplier("unheard-of") == 1
    assert direction_multiplier(None) == 1


@pytest.mark.parametrize("cfg, expected", [
    ({"is_test_mode": True, "enableSignalFusion": True}, True),
    ({"execution_mode": "TEST", "enableSignalFusion": True}, True),
    ({"is_test_mode": True}, False),
    ({"enableSignalFusion": True}, False),
    ({"is_test_mode": "yes", "enableSignalFusion": True}, False),
    (None, False),
])
def test_is_signal_fusion_enabled(cfg, expected):
    assert is_signal_fusion_enabled(cfg) is expected
