"""
Volatility phase controller.

Fast micro-structure layer: a three-state chain (high / normal / low) checked
once per tick. The phase sets the tick cadence and scales price moves.
"""
from __future__ import annotations

from schemas.market import PhaseConfig, validate_config
from services.market_params import (
    BIAS_AWAY,
    BIAS_TOWARD,
    MIN_TICK_INTERVAL,
    VolatilityPhase,
    clamp,
    scale_prob,
)
from services.rng import Rng

# Candidates leaving each phase, toward normal before toward the opposite extreme
_CANDIDATES: dict[VolatilityPhase, tuple[tuple[VolatilityPhase, str], ...]] = {
    VolatilityPhase.HIGH: (
        (VolatilityPhase.NORMAL, "high_to_normal"),
        (VolatilityPhase.LOW, "high_to_low"),
    ),
    VolatilityPhase.NORMAL: (
        (VolatilityPhase.HIGH, "normal_to_high"),
        (VolatilityPhase.LOW, "normal_to_low"),
    ),
    VolatilityPhase.LOW: (
        (VolatilityPhase.NORMAL, "low_to_normal"),
        (VolatilityPhase.HIGH, "low_to_high"),
    ),
}


class VolatilityPhaseController:
    """Owns the current volatility phase and samples tick intervals for it."""

    def __init__(
        self,
        rng: Rng,
        config: PhaseConfig | dict | None = None,
        phase: VolatilityPhase | None = None,
    ):
        self.config = validate_config(PhaseConfig, config)
        self._rng = rng
        self._phase = VolatilityPhase(phase) if phase is not None else self.config.initial_phase

    @property
    def phase(self) -> VolatilityPhase:
        return self._phase

    @property
    def vol_scale(self) -> float:
        return self.config.vol_scale[self._phase]

    def transition_probabilities(
        self, dt: float, bias: VolatilityPhase | None = None
    ) -> list[tuple[VolatilityPhase, float]]:
        """Time-compensated probabilities of leaving the current phase, in check order."""
        result = []
        for target, key in _CANDIDATES[self._phase]:
            prob = self.config.transitions[key]
            if bias is not None:
                if target == bias:
                    prob *= BIAS_TOWARD
                elif self._phase == bias:
                    prob *= BIAS_AWAY
            result.append((target, scale_prob(clamp(prob, 0.0, 1.0), dt)))
        return result

    def step(self, dt: float, bias: VolatilityPhase | None = None) -> VolatilityPhase:
        """Run one transition check. At most one transition fires per call."""
        rand = self._rng.next()
        cumulative = 0.0
        for target, prob in self.transition_probabilities(dt, bias):
            cumulative += prob
            if rand < cumulative:
                self._phase = target
                break
        return self._phase

    def sample_interval(self) -> float:
        """Wait until the next tick (ms), gaussian around the phase mean, floored."""
        params = self.config.tick_interval[self._phase]
        return max(MIN_TICK_INTERVAL, params.mean + self._rng.gaussian() * params.sd)
