"""
Tick generator: one price move and one tick interval per step.

Move model (all terms in price units):

    combined  = phase scale * regime vol * time-of-day vol * month vol bias
                * scenario phase vol
    shock     = N(0,1) * sd * combined
    fat tail  = N(0,1) * sd * kurtosis * combined, added with prob scale_prob(p, dt)
    move      = drift rate * price * dt
                + shock + fat tail + momentum * dt + external force * price * dt
                + mean reversion + extreme event force

The drift rate is regime drift + month drift unless the scenario phase
overrides it. Momentum is then decayed geometrically and fed the realized
shock, clamped to [-max_abs, max_abs].

Without a microstructure layer the price is ``max(PRICE_FLOOR, price + move)``.
With one, the move is handed to it and the executed grid price comes back,
together with the tick's high/low and any round-number breakout boost.
"""
from __future__ import annotations
from typing import NamedTuple

from schemas.market import MeanReversionConfig, PriceMoveConfig, ScenarioPhaseConfig, validate_config
from services.calendar_modifier import MonthModifier, TimeOfDayModifier
from services.extreme_event import ExtremeEvent
from services.intraday import mean_reversion_force
from services.market_params import (
    EXTERNAL_FORCE_DECAY,
    EXTERNAL_FORCE_EPS,
    PRICE_FLOOR,
    RegimeParams,
    VolatilityPhase,
    clamp,
    scale_decay,
    scale_prob,
)
from services.microstructure import Microstructure
from services.rng import Rng
from services.volatility_phase import VolatilityPhaseController


class PriceStep(NamedTuple):
    price: float
    delta: float
    interval_ms: float
    phase: VolatilityPhase
    fat_tail: bool
    high: float
    low: float
    price_changed: bool = True
    ignition_active: bool = False


class TickGenerator:
    """Owns the running price, momentum and pending external force."""

    def __init__(
        self,
        rng: Rng,
        phase_controller: VolatilityPhaseController,
        price: float,
        config: PriceMoveConfig | dict | None = None,
        momentum: float = 0.0,
        external_force: float = 0.0,
        open_price: float | None = None,
        extreme_event: ExtremeEvent | None = None,
        microstructure: Microstructure | None = None,
        mean_reversion: MeanReversionConfig | None = None,
    ):
        self.config = validate_config(PriceMoveConfig, config)
        self._rng = rng
        self.phase_controller = phase_controller
        self.price = max(PRICE_FLOOR, float(price))
        self.open_price = float(open_price) if open_price is not None else self.price
        self.momentum = momentum
        self.external_force = external_force
        self.extreme_event = extreme_event
        self.microstructure = microstructure
        self.mean_reversion = mean_reversion or MeanReversionConfig()

    def inject_external_force(self, force: float) -> None:
        """Queue a fractional price push (news shocks); stacks additively."""
        self.external_force += force

    def reset(self, price: float) -> None:
        """Session restart: new opening price; momentum, pending force and events cleared."""
        self.price = max(PRICE_FLOOR, float(price))
        self.open_price = self.price
        self.momentum = 0.0
        self.external_force = 0.0
        if self.extreme_event is not None:
            self.extreme_event.clear()
        if self.microstructure is not None:
            self.microstructure.reset(self.price)

    def combined_vol_mult(
        self,
        regime: RegimeParams,
        month: MonthModifier,
        time_of_day: TimeOfDayModifier | None,
    ) -> float:
        tod_mult = time_of_day.vol_mult if time_of_day is not None else 1.0
        return self.phase_controller.vol_scale * regime.vol_mult * tod_mult * month.vol_bias

    def step(
        self,
        dt: float,
        regime: RegimeParams,
        month: MonthModifier,
        time_of_day: TimeOfDayModifier | None = None,
        phase_bias: VolatilityPhase | None = None,
        scenario_phase: ScenarioPhaseConfig | None = None,
    ) -> PriceStep:
        phase = self.phase_controller.step(dt, phase_bias)
        interval = self.phase_controller.sample_interval()

        cfg = self.config
        combined = self.combined_vol_mult(regime, month, time_of_day)
        drift_rate = regime.drift + month.drift_bias
        if scenario_phase is not None:
            combined *= scenario_phase.vol_mult
            if scenario_phase.drift_override is not None:
                drift_rate = scenario_phase.drift_override

        shock = self._rng.gaussian() * cfg.sd * combined
        fat_tail = 0.0
        fired = self._rng.chance(scale_prob(cfg.fat_tail_p, dt))
        if fired:
            fat_tail = self._rng.gaussian() * cfg.sd * cfg.kurtosis * combined

        drift = drift_rate * self.price * dt
        external = self.external_force * self.price * dt
        self.external_force *= scale_decay(EXTERNAL_FORCE_DECAY, dt)
        if abs(self.external_force) < EXTERNAL_FORCE_EPS:
            self.external_force = 0.0

        mean_rev = 0.0
        if scenario_phase is not None:
            mean_rev = mean_reversion_force(
                self.price, self.open_price, scenario_phase.mean_rev_strength, dt, self.mean_reversion,
            )
        extreme = self.extreme_event.step(dt, self.price) if self.extreme_event is not None else 0.0

        move = drift + shock + fat_tail + self.momentum * dt + external + mean_rev + extreme

        decay = scale_decay(cfg.momentum_decay, dt)
        self.momentum = clamp(
            self.momentum * decay + (shock + fat_tail) * (1 - decay),
            -cfg.momentum_max_abs,
            cfg.momentum_max_abs,
        )

        previous = self.price
        if self.microstructure is None:
            self.price = max(PRICE_FLOOR, previous + move)
            return PriceStep(
                price=self.price,
                delta=self.price - previous,
                interval_ms=interval,
                phase=phase,
                fat_tail=fired,
                high=max(previous, self.price),
                low=min(previous, self.price),
            )

        micro = self.microstructure.update(
            price=previous,
            total_change=move,
            dt=dt,
            phase=phase,
            effective_vol=cfg.sd * combined,
            momentum_sign=(self.momentum > 0) - (self.momentum < 0),
            extreme_active=self.extreme_event is not None and self.extreme_event.active,
        )
        self.price = micro.price
        if micro.momentum_boost:
            self.momentum = clamp(
                self.momentum + micro.momentum_boost, -cfg.momentum_max_abs, cfg.momentum_max_abs,
            )
        return PriceStep(
            price=self.price,
            delta=self.price - previous,
            interval_ms=interval,
            phase=phase,
            fat_tail=fired,
            high=micro.high,
            low=micro.low,
            price_changed=micro.changed,
            ignition_active=micro.ignition_active,
        )
