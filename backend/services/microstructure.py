"""
Tick-level price formation.

Takes the macro price change of a step and turns it into an executed price on
the exchange grid:

- sticky price: changes accumulate as pending pressure and are released in
  one jump once the pressure clears a drawn multiple of the tick size, a
  hazard draw fires, the price has been stuck too long, or the pressure flips
  sign;
- round numbers: a pull toward nearby 100 / 500 / 1000 levels, and a
  momentum boost when the price breaks through one;
- ignition: short self-reinforcing bursts, biased toward the momentum sign;
- stop hunting: near the session high or low, a pierce through the level
  followed by a reversal.

Durations are counted in reference steps and consumed by ``dt``. Ignition and
stop hunts are suppressed while an extreme event is running.
"""
from __future__ import annotations
import logging
import math
from typing import NamedTuple

from schemas.market import (
    IgnitionState,
    MicrostructureConfig,
    MicrostructureState,
    StopHuntState,
    validate_config,
)
from services.market_params import ROUND_NUMBER_LEVELS, VolatilityPhase, clamp, scale_prob
from services.price_grid import round_price, tick_unit
from services.rng import Rng

logger = logging.getLogger(__name__)

FORCE_JITTER = 0.6
IGNITION_START_CURVE = 0.3


def _sign(value: float) -> int:
    return (value > 0) - (value < 0)


def _nearest(price: float, unit: float) -> float:
    return math.floor(price / unit + 0.5) * unit


class MicroResult(NamedTuple):
    price: float
    applied_change: float
    high: float
    low: float
    changed: bool
    ignition_active: bool
    momentum_boost: float


class Microstructure:
    def __init__(
        self,
        rng: Rng,
        open_price: float,
        config: MicrostructureConfig | dict | None = None,
        state: MicrostructureState | None = None,
    ):
        self.config = validate_config(MicrostructureConfig, config)
        self._rng = rng
        self.reset(open_price)
        if state is not None:
            self._pending = state.pending_pressure
            self._sticky_counter = state.sticky_counter
            self._session_high = state.session_high
            self._session_low = state.session_low
            self._ignition = state.ignition.model_copy() if state.ignition is not None else None
            self._stop_hunt = state.stop_hunt.model_copy() if state.stop_hunt is not None else None

    def reset(self, open_price: float) -> None:
        self._pending = 0.0
        self._sticky_counter = 0
        self._session_high = open_price
        self._session_low = open_price
        self._ignition: IgnitionState | None = None
        self._stop_hunt: StopHuntState | None = None

    @property
    def session_high(self) -> float:
        return self._session_high

    @property
    def session_low(self) -> float:
        return self._session_low

    @property
    def ignition_active(self) -> bool:
        return self._ignition is not None

    @property
    def stop_hunt_active(self) -> bool:
        return self._stop_hunt is not None

    def update(
        self,
        price: float,
        total_change: float,
        dt: float,
        phase: VolatilityPhase,
        effective_vol: float,
        momentum_sign: int = 0,
        extreme_active: bool = False,
    ) -> MicroResult:
        ignition_force = self._process_ignition(price, dt, phase, momentum_sign, extreme_active)
        hunt_force = self._process_stop_hunt(price, dt, extreme_active)
        change = total_change + ignition_force + hunt_force + self._round_number_force(price, dt)

        force_release = self._ignition is not None or self._stop_hunt is not None
        released, changed = self._apply_sticky(change, tick_unit(price), phase, force_release)
        new_price = round_price(price + released) if changed else price

        if changed:
            self._session_high = max(self._session_high, new_price)
            self._session_low = min(self._session_low, new_price)

        high, low = self._tick_high_low(new_price, effective_vol)
        return MicroResult(
            price=new_price,
            applied_change=abs(new_price - price),
            high=high if changed else new_price,
            low=low if changed else new_price,
            changed=changed,
            ignition_active=self._ignition is not None,
            momentum_boost=self._breakaway_boost(price, new_price, changed),
        )

    # ── Sticky price ───────────────────────────────────────────────────

    def _apply_sticky(
        self, change: float, tick: float, phase: VolatilityPhase, force_release: bool
    ) -> tuple[float, bool]:
        cfg = self.config.sticky
        previous = self._pending
        cap = tick * cfg.max_accumulation_mult
        self._pending = clamp(self._pending + change, -cap, cap)
        self._sticky_counter += 1

        sign_flipped = previous != 0 and _sign(previous) != _sign(self._pending)
        threshold = tick * self._rng.range(cfg.release_mult_min, cfg.release_mult_max)
        exceeded = abs(self._pending) >= threshold
        hazard = self._rng.chance(cfg.release_hazard_rate[phase])
        emergency = self._sticky_counter >= cfg.emergency_max_ticks[phase]

        if force_release or exceeded or hazard or emergency or sign_flipped:
            released = self._pending
            self._pending = 0.0
            self._sticky_counter = 0
            return released, True
        return 0.0, False

    # ── Round numbers ──────────────────────────────────────────────────

    def _round_number_force(self, price: float, dt: float) -> float:
        cfg = self.config.round_number
        total = 0.0
        for unit, strength in ROUND_NUMBER_LEVELS:
            distance = _nearest(price, unit) - price
            proximity = abs(distance) / price
            if proximity <= cfg.attraction_zone:
                closeness = 1 - proximity / cfg.attraction_zone
                total += _sign(distance) * cfg.force_scale * dt * price * closeness * strength
        return total

    def _breakaway_boost(self, old_price: float, new_price: float, changed: bool) -> float:
        if not changed:
            return 0.0
        for unit, strength in reversed(ROUND_NUMBER_LEVELS):
            if _nearest(old_price, unit) != _nearest(new_price, unit):
                return _sign(new_price - old_price) * self.config.round_number.breakaway_boost * strength * new_price
        return 0.0

    # ── Ignition ───────────────────────────────────────────────────────

    def _process_ignition(
        self, price: float, dt: float, phase: VolatilityPhase, momentum_sign: int, extreme_active: bool
    ) -> float:
        cfg = self.config.ignition
        ignition = self._ignition
        if ignition is not None:
            # parabolic ramp from 0.3 up to 1.0 mid-burst and back
            if ignition.total_duration == 0:
                progress = 1.0
            else:
                progress = 1 - ignition.ticks_remaining / ignition.total_duration
            curve = IGNITION_START_CURVE + (1 - IGNITION_START_CURVE) * 4 * progress * (1 - progress)
            direction = -ignition.direction if self._rng.chance(cfg.reversal_prob) else ignition.direction
            force = direction * ignition.force * dt * self._rng.jitter(1.0, FORCE_JITTER) * curve
            ignition.ticks_remaining -= dt
            if ignition.ticks_remaining <= 0:
                self._ignition = None
            return force

        if extreme_active:
            return 0.0
        prob = scale_prob(clamp(cfg.trigger_prob * cfg.phase_mult[phase], 0.0, 1.0), dt)
        if not self._rng.chance(prob):
            return 0.0

        ticks = self._rng.int_inclusive(cfg.duration_min, cfg.duration_max)
        if momentum_sign != 0:
            direction = momentum_sign if self._rng.chance(cfg.momentum_follow_prob) else -momentum_sign
        else:
            direction = 1 if self._rng.chance(0.5) else -1
        self._ignition = IgnitionState(
            direction=direction,
            ticks_remaining=ticks,
            total_duration=ticks,
            force=price * cfg.force_pct,
        )
        logger.debug("Ignition %+d for %d steps", direction, ticks)
        return direction * self._ignition.force * dt * self._rng.jitter(1.0, FORCE_JITTER) * IGNITION_START_CURVE

    # ── Stop hunting ───────────────────────────────────────────────────

    def _process_stop_hunt(self, price: float, dt: float, extreme_active: bool) -> float:
        cfg = self.config.stop_hunt
        hunt = self._stop_hunt
        if hunt is not None:
            force = hunt.direction * hunt.force * dt * self._rng.jitter(1.0, FORCE_JITTER)
            hunt.ticks_remaining -= dt
            if hunt.ticks_remaining <= 0:
                if hunt.stage == "pierce":
                    ticks = self._rng.int_inclusive(cfg.reversal_ticks_min, cfg.reversal_ticks_max)
                    self._stop_hunt = StopHuntState(
                        stage="reversal",
                        direction=-hunt.direction,
                        ticks_remaining=ticks,
                        force=price * cfg.reversal_force_pct * self._rng.jitter(1.0, FORCE_JITTER),
                    )
                else:
                    self._stop_hunt = None
            return force

        if extreme_active or self._session_high <= self._session_low:
            return 0.0
        near_high = abs(price - self._session_high) / price <= cfg.proximity_zone
        near_low = abs(price - self._session_low) / price <= cfg.proximity_zone
        if not (near_high or near_low):
            return 0.0
        if not self._rng.chance(scale_prob(cfg.trigger_prob, dt)):
            return 0.0

        direction = 1 if near_high else -1
        ticks = self._rng.int_inclusive(cfg.pierce_ticks_min, cfg.pierce_ticks_max)
        self._stop_hunt = StopHuntState(
            stage="pierce",
            direction=direction,
            ticks_remaining=ticks,
            force=price * cfg.pierce_force_pct * self._rng.jitter(1.0, FORCE_JITTER),
        )
        logger.debug("Stop hunt toward session %s for %d steps", "high" if near_high else "low", ticks)
        return direction * self._stop_hunt.force * dt * self._rng.jitter(1.0, FORCE_JITTER)

    # ── Intra-tick range ───────────────────────────────────────────────

    def _tick_high_low(self, price: float, effective_vol: float) -> tuple[float, float]:
        """Symmetric estimated high/low around the executed price, at least one tick wide."""
        min_overshoot = tick_unit(price + tick_unit(price))
        overshoot = max(abs(self._rng.gaussian()) * effective_vol * 0.5, min_overshoot)
        return round_price(price + overshoot), round_price(price - overshoot)

    def serialize(self) -> MicrostructureState:
        return MicrostructureState(
            pending_pressure=self._pending,
            sticky_counter=self._sticky_counter,
            session_high=self._session_high,
            session_low=self._session_low,
            ignition=self._ignition.model_copy() if self._ignition is not None else None,
            stop_hunt=self._stop_hunt.model_copy() if self._stop_hunt is not None else None,
        )
