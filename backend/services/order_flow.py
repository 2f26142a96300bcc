"""
Order-flow pattern engine.

Injects multi-tick volume signatures of algorithmic execution (TWAP, Iceberg,
HFT). At most one pattern runs at a time. A pattern that fires is armed on the
triggering step and reports its first volume on the following step, so a
pattern drawn with N ticks produces exactly N consecutive overrides.
"""
from __future__ import annotations
import logging
from typing import NamedTuple

from schemas.market import ActivePatternState, OrderFlowConfig, validate_config
from services.market_params import (
    BASE_VOLUME,
    PATTERN_PRIORITY,
    PatternType,
    VolatilityPhase,
    clamp,
    scale_prob,
)
from services.rng import Rng

logger = logging.getLogger(__name__)


class VolumeOverride(NamedTuple):
    volume: float
    pattern: PatternType


class OrderFlowPatternEngine:
    def __init__(
        self,
        rng: Rng,
        config: OrderFlowConfig | dict | None = None,
        base_volume: dict[VolatilityPhase, float] | None = None,
        active: ActivePatternState | None = None,
    ):
        self.config = validate_config(OrderFlowConfig, config)
        self._rng = rng
        self._base_volume = dict(base_volume or BASE_VOLUME)
        self._active = active.model_copy() if active is not None else None

    @property
    def active_pattern(self) -> ActivePatternState | None:
        return self._active.model_copy() if self._active is not None else None

    def update(
        self,
        dt: float,
        phase: VolatilityPhase = VolatilityPhase.NORMAL,
        activity_mult: float = 1.0,
    ) -> VolumeOverride | None:
        """Advance one step; returns the volume override while a pattern is running."""
        if self._active is not None:
            pattern = self._active
            pattern.ticks_remaining -= 1
            volume = self._tick_volume(pattern)
            if pattern.ticks_remaining <= 0:
                self._active = None
            return VolumeOverride(volume=volume, pattern=pattern.type)

        for pattern_type in PATTERN_PRIORITY:
            params = self.config.patterns[pattern_type]
            prob = scale_prob(clamp(params.trigger_prob * activity_mult, 0.0, 1.0), dt)
            if self._rng.chance(prob):
                self._active = self._arm(pattern_type, phase)
                logger.debug(
                    "Order-flow %s armed for %d ticks (base volume %.0f)",
                    pattern_type.value, self._active.ticks_remaining, self._active.base_volume,
                )
                return None

        return None

    def _arm(self, pattern_type: PatternType, phase: VolatilityPhase) -> ActivePatternState:
        params = self.config.patterns[pattern_type]
        ticks = self._rng.int_inclusive(params.ticks_min, params.ticks_max)
        if pattern_type == PatternType.HFT:
            base = self._base_volume[phase] * self._rng.range(params.volume_mult_min, params.volume_mult_max)
        else:
            base = self._rng.range(params.volume_min, params.volume_max)
        return ActivePatternState(type=pattern_type, ticks_remaining=ticks, base_volume=base)

    def _tick_volume(self, pattern: ActivePatternState) -> float:
        if pattern.type == PatternType.HFT:
            return pattern.base_volume
        variation = self.config.patterns[pattern.type].tick_variation
        return pattern.base_volume * self._rng.jitter(1.0, variation * 2)

    def serialize(self) -> ActivePatternState | None:
        return self.active_pattern
