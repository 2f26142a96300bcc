"""
Market simulation engine.

Composes the deterministic sub-systems into a tick stream:
clock, phase check + interval, regime parameters, calendar modifiers,
intraday scenario, price move, microstructure, baseline volume, order-flow
override. Every sub-system draws from its own RNG derived from the root seed,
so each stream stays reproducible on its own and engines never share mutable
state.

The engine imposes no timing: the host calls ``advance`` and supplies ``dt``
(elapsed simulated time in reference steps). Each tick carries the wait until
the next one (``interval_ms``); the clock moves by that wait on the next
non-zero step.
"""
from __future__ import annotations
import logging
import math
import secrets
from typing import Any

from schemas.market import (
    EngineSnapshot,
    MarketConfig,
    RegimeOutlook,
    RegimePreviewEntry,
    RngStates,
    ScenarioPhaseConfig,
    Tick,
    validate_config,
)
from services.calendar_modifier import (
    SessionClock,
    month_modifier,
    resolve_phase_bias,
    time_of_day_modifier,
)
from services.extreme_event import ExtremeEvent
from services.intraday import scenario_phase, select_scenario
from services.macro_regime import MacroRegimeManager
from services.market_params import (
    InvalidStepError,
    MarketConfigError,
    Regime,
    SessionEvent,
    TimeZone,
    VolatilityPhase,
)
from services.microstructure import Microstructure
from services.order_flow import OrderFlowPatternEngine
from services.rng import Rng, derive_seed
from services.tick_generator import TickGenerator
from services.volatility_phase import VolatilityPhaseController
from services.volume_model import VolumeModel

logger = logging.getLogger(__name__)

# Sub-stream offsets from the root seed
PRICE_STREAM = 0
VOLUME_STREAM = 1
MICRO_STREAM = 2
ORDER_FLOW_STREAM = 3
REGIME_STREAM = 4


class MarketEngine:
    """One simulated market session host. Not thread-safe; one owner per instance."""

    def __init__(
        self,
        seed: int | None = None,
        config: MarketConfig | dict[str, Any] | None = None,
        month: int = 1,
        open_price: float | None = None,
        regime: Regime | None = None,
        strict_dt: bool = False,
    ):
        self.config = validate_config(MarketConfig, config)
        self.seed = int(seed) if seed is not None else secrets.randbits(32)
        self.strict_dt = strict_dt
        self._month = self._check_month(month)
        self._tick_count = 0

        self._price_rng = Rng(derive_seed(self.seed, PRICE_STREAM))
        self._volume_rng = Rng(derive_seed(self.seed, VOLUME_STREAM))
        self._micro_rng = Rng(derive_seed(self.seed, MICRO_STREAM))
        self._order_flow_rng = Rng(derive_seed(self.seed, ORDER_FLOW_STREAM))
        self._regime_rng = Rng(derive_seed(self.seed, REGIME_STREAM))

        self._open_price = open_price if open_price is not None else self.config.open_price
        if self._open_price <= 0:
            raise MarketConfigError(f"open_price must be positive, got {self._open_price}")

        self.phase_controller = VolatilityPhaseController(self._price_rng, self.config.phase)
        self.regime_manager = MacroRegimeManager(self._regime_rng, self.config.regime)
        self.regime_manager.initialize(regime)
        self.extreme_event = ExtremeEvent(self._price_rng, self.config.extreme_event)
        self.microstructure = self._build_microstructure(self._open_price)
        self.tick_generator = TickGenerator(
            self._price_rng,
            self.phase_controller,
            self._open_price,
            self.config.price_move,
            extreme_event=self.extreme_event,
            microstructure=self.microstructure,
            mean_reversion=self.config.intraday.mean_reversion,
        )
        self.volume_model = VolumeModel(self._volume_rng, self.config.volume)
        self.order_flow = OrderFlowPatternEngine(
            self._order_flow_rng, self.config.order_flow, self.config.volume.base_volume,
        )
        self.clock = SessionClock()
        self._next_interval_ms = self._opening_interval()
        self._scenario = self._select_scenario()

        logger.info(
            "Market engine seeded %d: month=%d open=%.2f regime=%s scenario=%s",
            self.seed, self._month, self._open_price, self.regime_manager.regime.value, self._scenario,
        )

    @staticmethod
    def _check_month(month: int) -> int:
        if not 1 <= int(month) <= 12:
            raise MarketConfigError(f"month must be within 1..12, got {month}")
        return int(month)

    def _build_microstructure(self, open_price: float, state=None) -> Microstructure | None:
        if not self.config.microstructure.enabled:
            return None
        return Microstructure(self._micro_rng, open_price, self.config.microstructure, state=state)

    def _opening_interval(self) -> float:
        return self.config.phase.tick_interval[self.phase_controller.phase].mean

    def _select_scenario(self) -> str | None:
        if not self.config.intraday.enabled:
            return None
        return select_scenario(self._price_rng, self.regime_manager.regime, self.config.intraday)

    # ── Read-only views ────────────────────────────────────────────────

    @property
    def price(self) -> float:
        return self.tick_generator.price

    @property
    def open_price(self) -> float:
        return self._open_price

    @property
    def momentum(self) -> float:
        return self.tick_generator.momentum

    @property
    def phase(self) -> VolatilityPhase:
        return self.phase_controller.phase

    @property
    def regime(self) -> Regime:
        return self.regime_manager.regime

    @property
    def month(self) -> int:
        return self._month

    @property
    def scenario(self) -> str | None:
        return self._scenario

    @property
    def session_index(self) -> int:
        return self.regime_manager.session_index

    @property
    def session_closed(self) -> bool:
        return self.clock.closed

    @property
    def tick_count(self) -> int:
        return self._tick_count

    def scenario_phase(self) -> ScenarioPhaseConfig | None:
        """Scenario phase in force at the current session minute."""
        if self._scenario is None:
            return None
        return scenario_phase(self.config.intraday.scenarios[self._scenario], self.clock.minutes)

    def regime_outlook(self) -> RegimeOutlook:
        return self.regime_manager.outlook()

    def regime_preview(self, horizon: int = 4) -> list[RegimePreviewEntry]:
        return self.regime_manager.preview(horizon)

    # ── Mutation ───────────────────────────────────────────────────────

    def inject_external_force(self, force: float) -> None:
        if not math.isfinite(force):
            raise InvalidStepError(f"external force must be finite, got {force}")
        self.tick_generator.inject_external_force(force)

    def start_session(self, month: int | None = None, open_price: float | None = None) -> Regime:
        """Begin the next trading session: one regime transition, a fresh scenario, clock and momentum reset."""
        if month is not None:
            self._month = self._check_month(month)
        if open_price is not None:
            if open_price <= 0:
                raise MarketConfigError(f"open_price must be positive, got {open_price}")
            self._open_price = open_price
        else:
            self._open_price = self.price

        regime = self.regime_manager.transition()
        self.tick_generator.reset(self._open_price)
        self.clock.reset()
        self._next_interval_ms = self._opening_interval()
        self._scenario = self._select_scenario()
        logger.info(
            "Session %d started: month=%d open=%.2f regime=%s scenario=%s",
            self.session_index, self._month, self._open_price, regime.value, self._scenario,
        )
        return regime

    def _normalize_dt(self, dt: float) -> float:
        if not math.isfinite(dt):
            raise InvalidStepError(f"dt must be finite, got {dt}")
        if dt <= 0:
            if self.strict_dt:
                raise InvalidStepError(f"dt must be positive, got {dt}")
            return 0.0
        return float(dt)

    def advance(
        self,
        dt: float = 1.0,
        activity_mult: float = 1.0,
        time_zone: TimeZone | None = None,
    ) -> Tick:
        """Produce the next tick.

        ``time_zone`` overrides the engine's own session clock for the
        time-of-day modifiers; the clock still advances.

        A zero-length step (``dt <= 0`` outside strict mode) is a pure
        observation: price, clock, phase, momentum and order flow stay where
        they are and only a baseline volume is drawn. Reaching 11:30 yields a
        flat boundary tick and parks the clock on the lunch break; the next
        step yields the 12:30 boundary tick that reopens the afternoon.
        """
        dt = self._normalize_dt(dt)
        if not math.isfinite(activity_mult) or activity_mult < 0:
            raise InvalidStepError(f"activity_mult must be a non-negative number, got {activity_mult}")

        if dt == 0:
            return self._flat_tick(time_zone)
        if self.clock.lunch_break:
            self.clock.resume()
            logger.debug("Lunch break over at tick %d", self._tick_count)
            return self._flat_tick(time_zone, SessionEvent.LUNCH_RESUME, self._next_interval_ms)

        self.clock.advance(self._next_interval_ms)
        if self.clock.lunch_break:
            logger.debug("Lunch break reached at tick %d", self._tick_count)
            return self._flat_tick(time_zone, SessionEvent.LUNCH_BREAK)

        zone = TimeZone(time_zone) if time_zone is not None else self.clock.time_zone
        month_mod = month_modifier(self._month)
        tod_mod = time_of_day_modifier(zone)
        bias = resolve_phase_bias(self._month, zone)

        step = self.tick_generator.step(
            dt, self.regime_manager.params, month_mod, tod_mod, bias, self.scenario_phase(),
        )
        self._next_interval_ms = step.interval_ms

        volume = self.volume_model.generate(
            step.phase, tod_mod, step.delta, step.price, step.ignition_active, step.price_changed,
        )
        override = self.order_flow.update(dt, step.phase, activity_mult)
        pattern = None
        if override is not None:
            volume = max(0.0, override.volume)
            pattern = override.pattern

        self._tick_count += 1
        return Tick(
            price=step.price,
            high=step.high,
            low=step.low,
            volume=volume,
            timestamp=self.clock.minutes,
            interval_ms=step.interval_ms,
            phase=step.phase,
            regime=self.regime,
            time_zone=zone,
            pattern=pattern,
        )

    def _flat_tick(
        self,
        time_zone: TimeZone | None,
        event: SessionEvent | None = None,
        interval_ms: float = 0.0,
    ) -> Tick:
        """Tick at the current price and clock minute, no move and no order flow."""
        zone = TimeZone(time_zone) if time_zone is not None else self.clock.time_zone
        volume = self.volume_model.generate(self.phase, time_of_day_modifier(zone), 0.0, self.price)
        self._tick_count += 1
        return Tick(
            price=self.price,
            high=self.price,
            low=self.price,
            volume=volume,
            timestamp=self.clock.minutes,
            interval_ms=interval_ms,
            phase=self.phase,
            regime=self.regime,
            time_zone=zone,
            session_event=event,
        )

    def run(self, steps: int, dt: float = 1.0, activity_mult: float = 1.0) -> list[Tick]:
        return [self.advance(dt, activity_mult) for _ in range(steps)]

    # ── Save / resume ──────────────────────────────────────────────────

    def snapshot(self) -> EngineSnapshot:
        return EngineSnapshot(
            seed=self.seed,
            config=self.config,
            rng=RngStates(
                price=self._price_rng.state,
                volume=self._volume_rng.state,
                micro=self._micro_rng.state,
                order_flow=self._order_flow_rng.state,
                regime=self._regime_rng.state,
            ),
            phase=self.phase,
            regime=self.regime_manager.serialize(),
            month=self._month,
            price=self.price,
            open_price=self._open_price,
            momentum=self.momentum,
            external_force=self.tick_generator.external_force,
            clock_minutes=self.clock.minutes,
            lunch_break=self.clock.lunch_break,
            next_interval_ms=self._next_interval_ms,
            tick_count=self._tick_count,
            scenario=self._scenario,
            extreme_event=self.extreme_event.serialize(),
            microstructure=self.microstructure.serialize() if self.microstructure is not None else None,
            active_pattern=self.order_flow.serialize(),
        )

    @classmethod
    def restore(cls, snapshot: EngineSnapshot | dict[str, Any], strict_dt: bool = False) -> "MarketEngine":
        """Rebuild an engine that continues exactly where ``snapshot`` was taken."""
        snap = validate_config(EngineSnapshot, snapshot)
        if snap.regime.current_regime is None:
            raise MarketConfigError("snapshot has no active regime")
        if snap.scenario is not None and snap.scenario not in snap.config.intraday.scenarios:
            raise MarketConfigError(f"snapshot names unknown scenario {snap.scenario!r}")

        engine = cls(
            seed=snap.seed,
            config=snap.config,
            month=snap.month,
            open_price=snap.open_price,
            regime=snap.regime.current_regime,
            strict_dt=strict_dt,
        )
        engine._price_rng = Rng.from_state(snap.rng.price)
        engine._volume_rng = Rng.from_state(snap.rng.volume)
        engine._micro_rng = Rng.from_state(snap.rng.micro)
        engine._order_flow_rng = Rng.from_state(snap.rng.order_flow)
        engine._regime_rng = Rng.from_state(snap.rng.regime)

        engine.phase_controller = VolatilityPhaseController(
            engine._price_rng, snap.config.phase, phase=snap.phase,
        )
        engine.regime_manager = MacroRegimeManager(engine._regime_rng, snap.config.regime, state=snap.regime)
        engine.extreme_event = ExtremeEvent(engine._price_rng, snap.config.extreme_event, state=snap.extreme_event)
        engine.microstructure = engine._build_microstructure(snap.open_price, state=snap.microstructure)
        engine.tick_generator = TickGenerator(
            engine._price_rng,
            engine.phase_controller,
            snap.price,
            snap.config.price_move,
            momentum=snap.momentum,
            external_force=snap.external_force,
            open_price=snap.open_price,
            extreme_event=engine.extreme_event,
            microstructure=engine.microstructure,
            mean_reversion=snap.config.intraday.mean_reversion,
        )
        engine.volume_model = VolumeModel(engine._volume_rng, snap.config.volume)
        engine.order_flow = OrderFlowPatternEngine(
            engine._order_flow_rng,
            snap.config.order_flow,
            snap.config.volume.base_volume,
            active=snap.active_pattern,
        )
        engine.clock = SessionClock(snap.clock_minutes, lunch_break=snap.lunch_break)
        engine._next_interval_ms = snap.next_interval_ms
        engine._scenario = snap.scenario
        engine._tick_count = snap.tick_count
        return engine
