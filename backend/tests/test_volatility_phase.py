"""
Tests for the three-state volatility phase controller.
"""
import pytest

from services.market_params import VOL_TRANSITION, MarketConfigError, VolatilityPhase
from services.rng import Rng
from services.volatility_phase import VolatilityPhaseController


def _transitions(**overrides):
    data = dict(VOL_TRANSITION)
    data.update(overrides)
    return data


class TestVolatilityPhaseController:
    def setup_method(self):
        self.controller = VolatilityPhaseController(Rng(42))

    def test_starts_normal(self):
        assert self.controller.phase == VolatilityPhase.NORMAL

    def test_zero_dt_never_transitions(self):
        for _ in range(5000):
            assert self.controller.step(0.0) == VolatilityPhase.NORMAL

    def test_visits_every_phase(self):
        seen = {self.controller.step(1.0) for _ in range(5000)}
        assert seen == set(VolatilityPhase)

    def test_unbiased_probabilities_at_reference_step(self):
        probs = dict(self.controller.transition_probabilities(1.0))
        assert probs[VolatilityPhase.HIGH] == pytest.approx(0.12)
        assert probs[VolatilityPhase.LOW] == pytest.approx(0.08)

    def test_bias_toward_target(self):
        probs = dict(self.controller.transition_probabilities(1.0, VolatilityPhase.HIGH))
        assert probs[VolatilityPhase.HIGH] == pytest.approx(0.12 * 1.5)
        assert probs[VolatilityPhase.LOW] == pytest.approx(0.08)

    def test_bias_holds_current_phase(self):
        probs = dict(self.controller.transition_probabilities(1.0, VolatilityPhase.NORMAL))
        assert probs[VolatilityPhase.HIGH] == pytest.approx(0.06)
        assert probs[VolatilityPhase.LOW] == pytest.approx(0.04)

    def test_time_compensation(self):
        probs = dict(self.controller.transition_probabilities(2.0))
        assert probs[VolatilityPhase.HIGH] == pytest.approx(1 - (1 - 0.12) ** 2)

    def test_biased_probability_is_clamped(self):
        controller = VolatilityPhaseController(
            Rng(1), {"transitions": _transitions(normal_to_high=0.9)}
        )
        probs = dict(controller.transition_probabilities(1.0, VolatilityPhase.HIGH))
        assert probs[VolatilityPhase.HIGH] == 1.0
        assert controller.step(1.0, VolatilityPhase.HIGH) == VolatilityPhase.HIGH

    def test_toward_normal_checked_first(self):
        """When both exits are certain, the move toward normal wins."""
        controller = VolatilityPhaseController(
            Rng(5),
            {
                "transitions": _transitions(high_to_normal=1.0, high_to_low=1.0),
                "initial_phase": "high",
            },
        )
        assert controller.step(1.0) == VolatilityPhase.NORMAL

    def test_same_seed_same_phase_path(self):
        a = VolatilityPhaseController(Rng(77))
        b = VolatilityPhaseController(Rng(77))
        assert [a.step(1.0) for _ in range(500)] == [b.step(1.0) for _ in range(500)]

    def test_rejects_out_of_range_probability(self):
        with pytest.raises(MarketConfigError):
            VolatilityPhaseController(Rng(1), {"transitions": _transitions(low_to_high=1.2)})

    def test_rejects_missing_transition(self):
        data = dict(VOL_TRANSITION)
        del data["low_to_high"]
        with pytest.raises(MarketConfigError):
            VolatilityPhaseController(Rng(1), {"transitions": data})


class TestTickIntervals:
    def _average(self, phase, n=5000):
        controller = VolatilityPhaseController(Rng(2024), phase=phase)
        samples = [controller.sample_interval() for _ in range(n)]
        assert min(samples) >= 20.0
        return sum(samples) / n

    def test_low_phase_averages_near_its_mean(self):
        low = self._average(VolatilityPhase.LOW)
        normal = self._average(VolatilityPhase.NORMAL)
        high = self._average(VolatilityPhase.HIGH)
        assert abs(low - 480.0) < 15.0
        assert abs(normal - 200.0) < 10.0
        assert abs(high - 80.0) < 5.0
        assert low > normal > high
