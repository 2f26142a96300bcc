"""
Tests for the TWAP / Iceberg / HFT order-flow pattern engine.
"""
import pytest

from services.market_params import ALGO_PATTERN, MarketConfigError, PatternType, VolatilityPhase
from services.order_flow import OrderFlowPatternEngine
from services.rng import Rng


def _patterns(**overrides):
    data = {pattern.value: dict(params) for pattern, params in ALGO_PATTERN.items()}
    for name, fields in overrides.items():
        data[name].update(fields)
    return {"patterns": data}


def _run_until_armed(engine, dt=1.0, limit=50_000):
    for _ in range(limit):
        assert engine.update(dt) is None
        if engine.active_pattern is not None:
            return engine.active_pattern
    pytest.fail("no pattern armed")


class TestOrderFlowTriggers:
    def test_eventually_overrides(self):
        engine = OrderFlowPatternEngine(Rng(42))
        overrides = [engine.update(1.0, VolatilityPhase.NORMAL, 1.0) for _ in range(5000)]
        assert any(o is not None for o in overrides)

    @pytest.mark.parametrize("seed", [0, 42, 123, 2 ** 32 - 1])
    def test_zero_dt_never_overrides(self, seed):
        engine = OrderFlowPatternEngine(Rng(seed))
        for _ in range(5000):
            assert engine.update(0.0) is None
        assert engine.active_pattern is None

    def test_negative_dt_never_overrides(self):
        engine = OrderFlowPatternEngine(Rng(9))
        assert all(engine.update(-1.0) is None for _ in range(2000))

    def test_zero_activity_never_triggers(self):
        engine = OrderFlowPatternEngine(Rng(42))
        assert all(engine.update(1.0, activity_mult=0.0) is None for _ in range(5000))

    def test_longer_steps_trigger_more(self):
        n = 10_000
        fast = OrderFlowPatternEngine(Rng(42))
        slow = OrderFlowPatternEngine(Rng(42))
        fast_count = sum(fast.update(2.0) is not None for _ in range(n))
        slow_count = sum(slow.update(0.5) is not None for _ in range(n))
        assert fast_count > slow_count

    def test_priority_order(self):
        config = _patterns(
            hft={"trigger_prob": 1.0}, iceberg={"trigger_prob": 1.0}, twap={"trigger_prob": 1.0},
        )
        engine = OrderFlowPatternEngine(Rng(1), config)
        engine.update(1.0)
        assert engine.active_pattern.type == PatternType.HFT

    def test_activity_multiplier_is_clamped(self):
        engine = OrderFlowPatternEngine(Rng(1))
        assert engine.update(1.0, activity_mult=1e9) is None
        assert engine.active_pattern is not None


class TestActivePattern:
    def test_arming_step_returns_no_override(self):
        engine = OrderFlowPatternEngine(Rng(123))
        armed = _run_until_armed(engine)
        assert armed.ticks_remaining > 0

    def test_exact_duration_and_single_pattern(self):
        engine = OrderFlowPatternEngine(Rng(123))
        armed = _run_until_armed(engine)
        for _ in range(armed.ticks_remaining):
            override = engine.update(1.0, activity_mult=1000.0)
            assert override is not None
            assert override.pattern == armed.type
        assert engine.active_pattern is None
        assert engine.update(1.0) is None

    def test_duration_within_configured_range(self):
        engine = OrderFlowPatternEngine(Rng(77))
        for _ in range(20):
            armed = _run_until_armed(engine)
            params = ALGO_PATTERN[armed.type]
            assert params["ticks_min"] <= armed.ticks_remaining <= params["ticks_max"]
            for _ in range(armed.ticks_remaining):
                engine.update(1.0)

    def test_hft_volume_is_constant(self):
        config = _patterns(hft={"trigger_prob": 1.0})
        engine = OrderFlowPatternEngine(Rng(5), config)
        engine.update(1.0, VolatilityPhase.HIGH)
        armed = engine.active_pattern
        assert armed.type == PatternType.HFT
        assert 1500 * 2.0 <= armed.base_volume < 1500 * 4.0
        volumes = [engine.update(1.0).volume for _ in range(armed.ticks_remaining)]
        assert set(volumes) == {armed.base_volume}

    def test_twap_volume_has_texture(self):
        config = _patterns(hft={"trigger_prob": 0.0}, iceberg={"trigger_prob": 0.0}, twap={"trigger_prob": 1.0})
        engine = OrderFlowPatternEngine(Rng(5), config)
        engine.update(1.0)
        armed = engine.active_pattern
        assert armed.type == PatternType.TWAP
        assert 600 <= armed.base_volume < 1200
        volumes = [engine.update(1.0).volume for _ in range(armed.ticks_remaining)]
        assert len(set(volumes)) > 1
        for volume in volumes:
            assert armed.base_volume * 0.8 <= volume < armed.base_volume * 1.2

    def test_restore_active_pattern(self):
        engine = OrderFlowPatternEngine(Rng(123))
        armed = _run_until_armed(engine)
        engine.update(1.0)
        saved = engine.serialize()
        resumed = OrderFlowPatternEngine(Rng(0), active=saved)
        assert resumed.active_pattern == saved
        assert resumed.active_pattern.ticks_remaining == armed.ticks_remaining - 1


class TestOrderFlowConfig:
    def test_rejects_inverted_tick_range(self):
        with pytest.raises(MarketConfigError):
            OrderFlowPatternEngine(Rng(1), _patterns(twap={"ticks_min": 10, "ticks_max": 5}))

    def test_rejects_negative_ticks(self):
        with pytest.raises(MarketConfigError):
            OrderFlowPatternEngine(Rng(1), _patterns(iceberg={"ticks_min": -1}))

    def test_rejects_probability_above_one(self):
        with pytest.raises(MarketConfigError):
            OrderFlowPatternEngine(Rng(1), _patterns(hft={"trigger_prob": 1.5}))

    def test_rejects_hft_without_multiplier(self):
        config = _patterns()
        config["patterns"]["hft"] = {"trigger_prob": 0.01, "ticks_min": 1, "ticks_max": 2,
                                     "volume_min": 10.0, "volume_max": 20.0}
        with pytest.raises(MarketConfigError):
            OrderFlowPatternEngine(Rng(1), config)
