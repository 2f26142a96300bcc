import math
from typing import Any, Optional, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from services.market_params import (
    ALGO_PATTERN,
    BASE_VOLUME,
    EXTREME_EVENT,
    IGNITION,
    INTRADAY_SCENARIOS,
    MARKOV_MATRIX,
    MEAN_REVERSION,
    MOMENTUM,
    PHASE_VOL_SCALE,
    PRICE_MOVE,
    REGIME_ORDER,
    REGIME_PARAMS,
    ROUND_NUMBER,
    ROW_SUM_TOLERANCE,
    SCENARIO_REGIME_BIAS,
    STICKY_PRICE,
    STOP_HUNT,
    TICK_INTERVAL,
    VOL_TRANSITION,
    VOLUME_DYNAMICS,
    MarketConfigError,
    PatternType,
    Regime,
    SessionEvent,
    TimeZone,
    VolatilityPhase,
)

ModelT = TypeVar("ModelT", bound=BaseModel)


def validate_config(model: type[ModelT], data: Any) -> ModelT:
    """Validate ``data`` against a config model, raising MarketConfigError on failure."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data or {})
    except ValidationError as e:
        raise MarketConfigError(str(e)) from e


def _check_probability(name: str, value: float) -> float:
    if not (0.0 <= value <= 1.0) or math.isnan(value):
        raise ValueError(f"{name} must be within [0, 1], got {value}")
    return value


# ── Engine configuration ───────────────────────────────────────────────

class IntervalConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    mean: float = Field(gt=0)
    sd: float = Field(ge=0)


class PhaseConfig(BaseModel):
    """Volatility phase chain: six directed probabilities plus per-phase cadence and scale."""
    model_config = ConfigDict(frozen=True)

    transitions: dict[str, float] = Field(default_factory=lambda: dict(VOL_TRANSITION))
    tick_interval: dict[VolatilityPhase, IntervalConfig] = Field(
        default_factory=lambda: {
            phase: IntervalConfig(mean=row.mean, sd=row.sd) for phase, row in TICK_INTERVAL.items()
        }
    )
    vol_scale: dict[VolatilityPhase, float] = Field(default_factory=lambda: dict(PHASE_VOL_SCALE))
    initial_phase: VolatilityPhase = VolatilityPhase.NORMAL

    @field_validator("transitions")
    @classmethod
    def check_transitions(cls, v: dict[str, float]) -> dict[str, float]:
        missing = set(VOL_TRANSITION) - set(v)
        unknown = set(v) - set(VOL_TRANSITION)
        if missing or unknown:
            raise ValueError(
                f"transitions must define exactly {sorted(VOL_TRANSITION)} "
                f"(missing={sorted(missing)}, unknown={sorted(unknown)})"
            )
        for key, prob in v.items():
            _check_probability(key, prob)
        return v

    @field_validator("tick_interval", "vol_scale")
    @classmethod
    def check_every_phase(cls, v: dict) -> dict:
        if set(v) != set(VolatilityPhase):
            raise ValueError("every volatility phase must be configured")
        return v

    @field_validator("vol_scale")
    @classmethod
    def check_scales(cls, v: dict[VolatilityPhase, float]) -> dict[VolatilityPhase, float]:
        for phase, scale in v.items():
            if scale < 0:
                raise ValueError(f"vol_scale[{phase.value}] must be non-negative")
        return v


class RegimeParamsConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    drift: float
    vol_mult: float = Field(ge=0)


class RegimeConfig(BaseModel):
    """Macro regime chain: row-stochastic matrix plus per-regime drift and volatility."""
    model_config = ConfigDict(frozen=True)

    matrix: dict[Regime, list[float]] = Field(
        default_factory=lambda: {regime: list(row) for regime, row in MARKOV_MATRIX.items()}
    )
    params: dict[Regime, RegimeParamsConfig] = Field(
        default_factory=lambda: {
            regime: RegimeParamsConfig(drift=row.drift, vol_mult=row.vol_mult)
            for regime, row in REGIME_PARAMS.items()
        }
    )

    @field_validator("matrix")
    @classmethod
    def check_matrix(cls, v: dict[Regime, list[float]]) -> dict[Regime, list[float]]:
        if set(v) != set(Regime):
            raise ValueError("transition matrix must have one row per regime")
        for regime, row in v.items():
            if len(row) != len(REGIME_ORDER):
                raise ValueError(f"row {regime.value} must have {len(REGIME_ORDER)} columns")
            for prob in row:
                _check_probability(f"matrix[{regime.value}]", prob)
            total = math.fsum(row)
            if abs(total - 1.0) > ROW_SUM_TOLERANCE:
                raise ValueError(f"row {regime.value} sums to {total}, expected 1")
        return v

    @field_validator("params")
    @classmethod
    def check_params(cls, v: dict[Regime, RegimeParamsConfig]) -> dict[Regime, RegimeParamsConfig]:
        if set(v) != set(Regime):
            raise ValueError("params must be defined for every regime")
        return v


class PriceMoveConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    sd: float = Field(default=PRICE_MOVE["sd"], ge=0)
    kurtosis: float = Field(default=PRICE_MOVE["kurtosis"], ge=0)
    fat_tail_p: float = Field(default=PRICE_MOVE["fat_tail_p"], ge=0, le=1)
    momentum_decay: float = Field(default=MOMENTUM["decay"], ge=0, le=1)
    momentum_max_abs: float = Field(default=MOMENTUM["max_abs"], ge=0)


class PatternConfig(BaseModel):
    """One algorithmic order-flow signature.

    HFT patterns size their volume as a multiple of the phase base volume
    (``volume_mult_*``); TWAP and Iceberg draw an absolute base volume
    (``volume_min``/``volume_max``).
    """
    model_config = ConfigDict(frozen=True)

    trigger_prob: float = Field(ge=0, le=1)
    ticks_min: int = Field(ge=1)
    ticks_max: int = Field(ge=1)
    volume_min: Optional[float] = Field(default=None, ge=0)
    volume_max: Optional[float] = Field(default=None, ge=0)
    volume_mult_min: Optional[float] = Field(default=None, ge=0)
    volume_mult_max: Optional[float] = Field(default=None, ge=0)
    tick_variation: float = Field(default=0.0, ge=0, le=1)

    @model_validator(mode="after")
    def check_ranges(self) -> "PatternConfig":
        if self.ticks_max < self.ticks_min:
            raise ValueError("ticks_max must be >= ticks_min")
        has_absolute = self.volume_min is not None and self.volume_max is not None
        has_relative = self.volume_mult_min is not None and self.volume_mult_max is not None
        if not (has_absolute or has_relative):
            raise ValueError("pattern needs volume_min/volume_max or volume_mult_min/volume_mult_max")
        if has_absolute and self.volume_max < self.volume_min:
            raise ValueError("volume_max must be >= volume_min")
        if has_relative and self.volume_mult_max < self.volume_mult_min:
            raise ValueError("volume_mult_max must be >= volume_mult_min")
        return self


class OrderFlowConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    patterns: dict[PatternType, PatternConfig] = Field(
        default_factory=lambda: {
            pattern: PatternConfig(**dict(row)) for pattern, row in ALGO_PATTERN.items()
        }
    )

    @field_validator("patterns")
    @classmethod
    def check_patterns(cls, v: dict[PatternType, PatternConfig]) -> dict[PatternType, PatternConfig]:
        if set(v) != set(PatternType):
            raise ValueError("every order-flow pattern must be configured")
        hft = v[PatternType.HFT]
        if hft.volume_mult_min is None or hft.volume_mult_max is None:
            raise ValueError("hft pattern is sized by volume_mult_min/volume_mult_max")
        for pattern in (PatternType.TWAP, PatternType.ICEBERG):
            if v[pattern].volume_min is None or v[pattern].volume_max is None:
                raise ValueError(f"{pattern.value} pattern is sized by volume_min/volume_max")
        return v


class ExtremeEventConfig(BaseModel):
    """Flash crash / melt-up: an active push followed by a partial recovery."""
    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    trigger_prob: float = Field(default=EXTREME_EVENT["trigger_prob"], ge=0, le=1)
    active_ticks_min: int = Field(default=EXTREME_EVENT["active_ticks_min"], ge=1)
    active_ticks_max: int = Field(default=EXTREME_EVENT["active_ticks_max"], ge=1)
    recovery_ticks_min: int = Field(default=EXTREME_EVENT["recovery_ticks_min"], ge=1)
    recovery_ticks_max: int = Field(default=EXTREME_EVENT["recovery_ticks_max"], ge=1)
    crash_force_pct: float = Field(default=EXTREME_EVENT["crash_force_pct"], le=0)
    melt_up_force_pct: float = Field(default=EXTREME_EVENT["melt_up_force_pct"], ge=0)
    recovery_ratio: float = Field(default=EXTREME_EVENT["recovery_ratio"], ge=0, le=1)
    active_jitter: float = Field(default=EXTREME_EVENT["active_jitter"], ge=0, le=2)
    recovery_jitter: float = Field(default=EXTREME_EVENT["recovery_jitter"], ge=0, le=2)

    @model_validator(mode="after")
    def check_ranges(self) -> "ExtremeEventConfig":
        if self.active_ticks_max < self.active_ticks_min:
            raise ValueError("active_ticks_max must be >= active_ticks_min")
        if self.recovery_ticks_max < self.recovery_ticks_min:
            raise ValueError("recovery_ticks_max must be >= recovery_ticks_min")
        return self


class ScenarioPhaseConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    start_minute: float = Field(ge=0, le=1440)
    drift_override: Optional[float] = None
    vol_mult: float = Field(default=1.0, ge=0)
    mean_rev_strength: float = Field(default=0.0, ge=0)


class ScenarioConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    weight: float = Field(gt=0)
    phases: list[ScenarioPhaseConfig] = Field(min_length=1)

    @field_validator("phases")
    @classmethod
    def check_order(cls, v: list[ScenarioPhaseConfig]) -> list[ScenarioPhaseConfig]:
        starts = [phase.start_minute for phase in v]
        if starts != sorted(starts):
            raise ValueError("scenario phases must be ordered by start_minute")
        return v


class MeanReversionConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    threshold: float = Field(default=MEAN_REVERSION["threshold"], ge=0)
    scale: float = Field(default=MEAN_REVERSION["scale"], ge=0)
    max_force_pct: float = Field(default=MEAN_REVERSION["max_force_pct"], ge=0)


class IntradayConfig(BaseModel):
    """Session scenarios: one is drawn per session, weighted by the macro regime."""
    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    scenarios: dict[str, ScenarioConfig] = Field(
        default_factory=lambda: {
            name: ScenarioConfig(weight=row.weight, phases=[ScenarioPhaseConfig(**p._asdict()) for p in row.phases])
            for name, row in INTRADAY_SCENARIOS.items()
        }
    )
    regime_bias: dict[Regime, dict[str, float]] = Field(
        default_factory=lambda: {regime: dict(row) for regime, row in SCENARIO_REGIME_BIAS.items()}
    )
    mean_reversion: MeanReversionConfig = Field(default_factory=MeanReversionConfig)

    @model_validator(mode="after")
    def check_bias(self) -> "IntradayConfig":
        if not self.scenarios:
            raise ValueError("at least one intraday scenario is required")
        for regime, row in self.regime_bias.items():
            unknown = set(row) - set(self.scenarios)
            if unknown:
                raise ValueError(f"regime_bias[{regime.value}] names unknown scenarios {sorted(unknown)}")
            if any(mult < 0 for mult in row.values()):
                raise ValueError(f"regime_bias[{regime.value}] multipliers must be non-negative")
        return self


class StickyPriceConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    release_mult_min: float = Field(default=STICKY_PRICE["release_mult_min"], ge=0)
    release_mult_max: float = Field(default=STICKY_PRICE["release_mult_max"], ge=0)
    max_accumulation_mult: float = Field(default=STICKY_PRICE["max_accumulation_mult"], gt=0)
    release_hazard_rate: dict[VolatilityPhase, float] = Field(
        default_factory=lambda: dict(STICKY_PRICE["release_hazard_rate"])
    )
    emergency_max_ticks: dict[VolatilityPhase, int] = Field(
        default_factory=lambda: dict(STICKY_PRICE["emergency_max_ticks"])
    )

    @field_validator("release_hazard_rate")
    @classmethod
    def check_hazard(cls, v: dict[VolatilityPhase, float]) -> dict[VolatilityPhase, float]:
        if set(v) != set(VolatilityPhase):
            raise ValueError("release_hazard_rate must be defined for every volatility phase")
        for phase, prob in v.items():
            _check_probability(f"release_hazard_rate[{phase.value}]", prob)
        return v

    @field_validator("emergency_max_ticks")
    @classmethod
    def check_emergency(cls, v: dict[VolatilityPhase, int]) -> dict[VolatilityPhase, int]:
        if set(v) != set(VolatilityPhase):
            raise ValueError("emergency_max_ticks must be defined for every volatility phase")
        if any(ticks < 1 for ticks in v.values()):
            raise ValueError("emergency_max_ticks must be >= 1")
        return v

    @model_validator(mode="after")
    def check_release_range(self) -> "StickyPriceConfig":
        if self.release_mult_max < self.release_mult_min:
            raise ValueError("release_mult_max must be >= release_mult_min")
        return self


class RoundNumberConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    attraction_zone: float = Field(default=ROUND_NUMBER["attraction_zone"], gt=0)
    force_scale: float = Field(default=ROUND_NUMBER["force_scale"], ge=0)
    breakaway_boost: float = Field(default=ROUND_NUMBER["breakaway_boost"], ge=0)


class IgnitionConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    trigger_prob: float = Field(default=IGNITION["trigger_prob"], ge=0, le=1)
    duration_min: int = Field(default=IGNITION["duration_min"], ge=0)
    duration_max: int = Field(default=IGNITION["duration_max"], ge=0)
    force_pct: float = Field(default=IGNITION["force_pct"], ge=0)
    phase_mult: dict[VolatilityPhase, float] = Field(default_factory=lambda: dict(IGNITION["phase_mult"]))
    reversal_prob: float = Field(default=IGNITION["reversal_prob"], ge=0, le=1)
    momentum_follow_prob: float = Field(default=IGNITION["momentum_follow_prob"], ge=0, le=1)

    @field_validator("phase_mult")
    @classmethod
    def check_phase_mult(cls, v: dict[VolatilityPhase, float]) -> dict[VolatilityPhase, float]:
        if set(v) != set(VolatilityPhase):
            raise ValueError("phase_mult must be defined for every volatility phase")
        if any(mult < 0 for mult in v.values()):
            raise ValueError("phase_mult must be non-negative")
        return v

    @model_validator(mode="after")
    def check_duration(self) -> "IgnitionConfig":
        if self.duration_max < self.duration_min:
            raise ValueError("duration_max must be >= duration_min")
        return self


class StopHuntConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    proximity_zone: float = Field(default=STOP_HUNT["proximity_zone"], ge=0)
    trigger_prob: float = Field(default=STOP_HUNT["trigger_prob"], ge=0, le=1)
    pierce_ticks_min: int = Field(default=STOP_HUNT["pierce_ticks_min"], ge=0)
    pierce_ticks_max: int = Field(default=STOP_HUNT["pierce_ticks_max"], ge=0)
    pierce_force_pct: float = Field(default=STOP_HUNT["pierce_force_pct"], ge=0)
    reversal_ticks_min: int = Field(default=STOP_HUNT["reversal_ticks_min"], ge=0)
    reversal_ticks_max: int = Field(default=STOP_HUNT["reversal_ticks_max"], ge=0)
    reversal_force_pct: float = Field(default=STOP_HUNT["reversal_force_pct"], ge=0)

    @model_validator(mode="after")
    def check_ranges(self) -> "StopHuntConfig":
        if self.pierce_ticks_max < self.pierce_ticks_min:
            raise ValueError("pierce_ticks_max must be >= pierce_ticks_min")
        if self.reversal_ticks_max < self.reversal_ticks_min:
            raise ValueError("reversal_ticks_max must be >= reversal_ticks_min")
        return self


class MicrostructureConfig(BaseModel):
    """Tick-level price formation on the exchange price grid."""
    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    sticky: StickyPriceConfig = Field(default_factory=StickyPriceConfig)
    round_number: RoundNumberConfig = Field(default_factory=RoundNumberConfig)
    ignition: IgnitionConfig = Field(default_factory=IgnitionConfig)
    stop_hunt: StopHuntConfig = Field(default_factory=StopHuntConfig)


class VolumeConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    base_volume: dict[VolatilityPhase, float] = Field(default_factory=lambda: dict(BASE_VOLUME))
    change_sensitivity: float = Field(default=VOLUME_DYNAMICS["change_sensitivity"], gt=0)
    max_change_mult: float = Field(default=VOLUME_DYNAMICS["max_change_mult"], ge=1)
    ignition_mult: float = Field(default=VOLUME_DYNAMICS["ignition_mult"], ge=0)
    sticky_mult: float = Field(default=VOLUME_DYNAMICS["sticky_mult"], ge=0)

    @field_validator("base_volume")
    @classmethod
    def check_base_volume(cls, v: dict[VolatilityPhase, float]) -> dict[VolatilityPhase, float]:
        if set(v) != set(VolatilityPhase):
            raise ValueError("base_volume must be defined for every volatility phase")
        if any(vol < 0 for vol in v.values()):
            raise ValueError("base_volume must be non-negative")
        return v


class MarketConfig(BaseModel):
    """Complete engine configuration. Every section defaults to the built-in tables."""
    model_config = ConfigDict(frozen=True)

    open_price: float = Field(default=30000.0, gt=0)
    phase: PhaseConfig = Field(default_factory=PhaseConfig)
    regime: RegimeConfig = Field(default_factory=RegimeConfig)
    price_move: PriceMoveConfig = Field(default_factory=PriceMoveConfig)
    order_flow: OrderFlowConfig = Field(default_factory=OrderFlowConfig)
    volume: VolumeConfig = Field(default_factory=VolumeConfig)
    extreme_event: ExtremeEventConfig = Field(default_factory=ExtremeEventConfig)
    intraday: IntradayConfig = Field(default_factory=IntradayConfig)
    microstructure: MicrostructureConfig = Field(default_factory=MicrostructureConfig)


# ── Engine output and state ────────────────────────────────────────────

class Tick(BaseModel):
    """One emitted market tick."""
    price: float
    high: float
    low: float
    volume: float
    timestamp: float  # session minutes since midnight
    interval_ms: float  # wait until the next tick
    phase: VolatilityPhase
    regime: Regime
    time_zone: TimeZone
    pattern: Optional[PatternType] = None  # order-flow pattern that set the volume
    session_event: Optional[SessionEvent] = None


class ExtremeEventState(BaseModel):
    kind: str  # "crash" or "melt_up"
    stage: str  # "active" or "recovery"
    ticks_remaining: float
    force: float  # price units per reference step
    total_displacement: float = 0.0


class IgnitionState(BaseModel):
    direction: int
    ticks_remaining: float
    total_duration: float
    force: float


class StopHuntState(BaseModel):
    stage: str  # "pierce" or "reversal"
    direction: int
    ticks_remaining: float
    force: float


class MicrostructureState(BaseModel):
    pending_pressure: float = 0.0
    sticky_counter: int = 0
    session_high: float
    session_low: float
    ignition: Optional[IgnitionState] = None
    stop_hunt: Optional[StopHuntState] = None


class ActivePatternState(BaseModel):
    type: PatternType
    ticks_remaining: int = Field(gt=0)
    base_volume: float = Field(ge=0)


class RegimeHistoryEntry(BaseModel):
    session: int
    regime: Regime


class RegimeState(BaseModel):
    current_regime: Optional[Regime] = None
    session_index: int = 0
    history: list[RegimeHistoryEntry] = []


class RngStates(BaseModel):
    price: int = Field(ge=0, lt=2 ** 32)
    volume: int = Field(ge=0, lt=2 ** 32)
    micro: int = Field(ge=0, lt=2 ** 32)
    order_flow: int = Field(ge=0, lt=2 ** 32)
    regime: int = Field(ge=0, lt=2 ** 32)


class EngineSnapshot(BaseModel):
    """Everything needed to resume a session with identical future ticks."""
    seed: int
    config: MarketConfig
    rng: RngStates
    phase: VolatilityPhase
    regime: RegimeState
    month: int = Field(ge=1, le=12)
    price: float = Field(gt=0)
    open_price: float = Field(gt=0)
    momentum: float
    external_force: float = 0.0
    clock_minutes: float
    lunch_break: bool = False
    next_interval_ms: float = Field(gt=0)
    tick_count: int = 0
    scenario: Optional[str] = None
    extreme_event: Optional[ExtremeEventState] = None
    microstructure: Optional[MicrostructureState] = None
    active_pattern: Optional[ActivePatternState] = None


class RegimeOutlook(BaseModel):
    regime: Regime
    outlook: str  # "rising", "falling", "sideways"
    volatility: str  # "high", "normal", "low"


class RegimePreviewEntry(BaseModel):
    session: int
    regime: Regime
    drift: float
    vol_mult: float


# ── API bodies ─────────────────────────────────────────────────────────

class SessionCreate(BaseModel):
    seed: Optional[int] = Field(default=None, ge=0, lt=2 ** 32)
    month: int = Field(default=1, ge=1, le=12)
    open_price: Optional[float] = Field(default=None, gt=0)
    config: Optional[dict[str, Any]] = None


class AdvanceRequest(BaseModel):
    dt: float = 1.0
    activity_mult: float = Field(default=1.0, ge=0)
    steps: int = Field(default=1, ge=1, le=1000)
    time_zone: Optional[TimeZone] = None


class NextSessionRequest(BaseModel):
    month: Optional[int] = Field(default=None, ge=1, le=12)
    open_price: Optional[float] = Field(default=None, gt=0)


class ExternalForceRequest(BaseModel):
    force: float


class SessionState(BaseModel):
    """Current view of a hosted market session."""
    id: UUID
    seed: int
    month: int
    session_index: int
    clock: str  # HH:MM
    session_closed: bool
    current_price: float
    phase: VolatilityPhase
    regime: Regime
    scenario: Optional[str] = None
    tick_count: int
    ticks: list[Tick] = []
