"""
Extreme intraday events: flash crashes and melt-ups.

An event pushes the price hard in one direction for a drawn number of
reference steps, then gives back ``recovery_ratio`` of the displacement over a
second drawn span. Trigger probability is time-compensated; durations are
consumed by ``dt``, so a zero-length step neither triggers nor progresses.
"""
from __future__ import annotations
import logging

from schemas.market import ExtremeEventConfig, ExtremeEventState, validate_config
from services.market_params import scale_prob
from services.rng import Rng

logger = logging.getLogger(__name__)


class ExtremeEvent:
    def __init__(
        self,
        rng: Rng,
        config: ExtremeEventConfig | dict | None = None,
        state: ExtremeEventState | None = None,
    ):
        self.config = validate_config(ExtremeEventConfig, config)
        self._rng = rng
        self._state = state.model_copy() if state is not None else None

    @property
    def active(self) -> bool:
        return self._state is not None

    def clear(self) -> None:
        self._state = None

    def step(self, dt: float, price: float) -> float:
        """Price force contributed this step (price units)."""
        cfg = self.config
        if not cfg.enabled:
            return 0.0

        if self._state is None:
            if self._rng.chance(scale_prob(cfg.trigger_prob, dt)):
                crash = self._rng.chance(0.5)
                ticks = self._rng.int_inclusive(cfg.active_ticks_min, cfg.active_ticks_max)
                force_pct = cfg.crash_force_pct if crash else cfg.melt_up_force_pct
                self._state = ExtremeEventState(
                    kind="crash" if crash else "melt_up",
                    stage="active",
                    ticks_remaining=ticks,
                    force=price * force_pct,
                )
                logger.info("Extreme event %s started for %d steps", self._state.kind, ticks)
            return 0.0

        event = self._state
        if event.stage == "active":
            force = event.force * dt * self._rng.jitter(1.0, cfg.active_jitter)
            event.total_displacement += force
            event.ticks_remaining -= dt
            if event.ticks_remaining <= 0:
                recovery = self._rng.int_inclusive(cfg.recovery_ticks_min, cfg.recovery_ticks_max)
                event.stage = "recovery"
                event.force = -(event.total_displacement * cfg.recovery_ratio) / recovery
                event.ticks_remaining = recovery
            return force

        force = event.force * dt * self._rng.jitter(1.0, cfg.recovery_jitter)
        event.ticks_remaining -= dt
        if event.ticks_remaining <= 0:
            logger.info("Extreme event %s recovered", event.kind)
            self._state = None
        return force

    def serialize(self) -> ExtremeEventState | None:
        return self._state.model_copy() if self._state is not None else None
