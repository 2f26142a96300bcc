"""
Market engine parameter tables.

Every default the engine consumes lives here as immutable rows keyed by enum.
Runtime overrides go through ``schemas.market.MarketConfig``, which validates
them against the same shapes.
"""
from __future__ import annotations
from enum import Enum
from types import MappingProxyType
from typing import NamedTuple, Optional


class MarketConfigError(ValueError):
    """Malformed engine configuration, rejected at construction time."""


class InvalidStepError(ValueError):
    """A step was requested with inputs outside the engine contract."""


# ── Enumerations ───────────────────────────────────────────────────────

class VolatilityPhase(str, Enum):
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


class Regime(str, Enum):
    BULLISH = "bullish"
    BEARISH = "bearish"
    RANGE = "range"
    TURBULENT = "turbulent"
    BUBBLE = "bubble"
    CRASH = "crash"


class TimeZone(str, Enum):
    OPEN = "open"
    MORNING = "morning"
    LUNCH = "lunch"
    AFTERNOON = "afternoon"
    CLOSE = "close"


class PatternType(str, Enum):
    TWAP = "twap"
    ICEBERG = "iceberg"
    HFT = "hft"


# Matrix columns follow this order
REGIME_ORDER: tuple[Regime, ...] = tuple(Regime)

INITIAL_REGIMES: tuple[Regime, ...] = (Regime.BULLISH, Regime.BEARISH, Regime.RANGE)


# ── Row types ──────────────────────────────────────────────────────────

class IntervalParams(NamedTuple):
    mean: float
    sd: float


class RegimeParams(NamedTuple):
    drift: float
    vol_mult: float


class MonthAnomaly(NamedTuple):
    drift_bias: float
    vol_bias: float
    tendency: str = ""


class TimeOfDayParams(NamedTuple):
    vol_mult: float
    phase_bias: VolatilityPhase


class ScenarioPhase(NamedTuple):
    start_minute: float
    drift_override: Optional[float]
    vol_mult: float
    mean_rev_strength: float


class IntradayScenario(NamedTuple):
    weight: float
    phases: tuple[ScenarioPhase, ...]


class SessionEvent(str, Enum):
    LUNCH_BREAK = "lunch_break"
    LUNCH_RESUME = "lunch_resume"


# ── Volatility phase ───────────────────────────────────────────────────

TICK_INTERVAL = MappingProxyType({
    VolatilityPhase.HIGH: IntervalParams(mean=80.0, sd=40.0),
    VolatilityPhase.NORMAL: IntervalParams(mean=200.0, sd=80.0),
    VolatilityPhase.LOW: IntervalParams(mean=480.0, sd=150.0),
})

# Floor for sampled tick intervals (ms)
MIN_TICK_INTERVAL = 20.0

PHASE_VOL_SCALE = MappingProxyType({
    VolatilityPhase.HIGH: 1.4,
    VolatilityPhase.NORMAL: 1.0,
    VolatilityPhase.LOW: 0.6,
})

VOL_TRANSITION = MappingProxyType({
    "high_to_normal": 0.18,
    "high_to_low": 0.02,
    "normal_to_high": 0.12,
    "normal_to_low": 0.08,
    "low_to_normal": 0.06,
    "low_to_high": 0.01,
})

# Multipliers applied when a phase bias is active
BIAS_TOWARD = 1.5
BIAS_AWAY = 0.5


# ── Price move and momentum ────────────────────────────────────────────

PRICE_MOVE = MappingProxyType({
    "sd": 12.5,
    "kurtosis": 4.2,
    "fat_tail_p": 0.021,
})

MOMENTUM = MappingProxyType({
    "decay": 0.72,
    "max_abs": 16.0,
})

PRICE_FLOOR = 0.01

EXTERNAL_FORCE_DECAY = 0.7
EXTERNAL_FORCE_EPS = 1e-5

# Durations below are counted in reference steps (dt = 1)
EXTREME_EVENT = MappingProxyType({
    "trigger_prob": 0.0003,
    "active_ticks_min": 10,
    "active_ticks_max": 30,
    "recovery_ticks_min": 20,
    "recovery_ticks_max": 60,
    "crash_force_pct": -0.002,
    "melt_up_force_pct": 0.0015,
    "recovery_ratio": 0.5,
    "active_jitter": 0.6,
    "recovery_jitter": 0.4,
})


# ── Intraday scenarios ─────────────────────────────────────────────────

INTRADAY_SCENARIOS = MappingProxyType({
    "trend_day": IntradayScenario(1.0, (
        ScenarioPhase(540, None, 1.1, 0.0),
    )),
    "quiet_range": IntradayScenario(1.0, (
        ScenarioPhase(540, None, 0.9, 0.6),
        ScenarioPhase(750, None, 0.8, 0.8),
    )),
    "morning_reversal": IntradayScenario(0.8, (
        ScenarioPhase(540, None, 1.2, 0.0),
        ScenarioPhase(600, None, 1.0, 1.0),
        ScenarioPhase(750, None, 1.0, 0.3),
    )),
    "afternoon_breakout": IntradayScenario(0.7, (
        ScenarioPhase(540, None, 0.8, 0.5),
        ScenarioPhase(780, None, 1.3, 0.0),
    )),
    "selloff_into_close": IntradayScenario(0.5, (
        ScenarioPhase(540, None, 1.0, 0.2),
        ScenarioPhase(840, -0.0006, 1.3, 0.0),
    )),
    "rally_into_close": IntradayScenario(0.5, (
        ScenarioPhase(540, None, 1.0, 0.2),
        ScenarioPhase(840, 0.0006, 1.3, 0.0),
    )),
})

# Weight multipliers per regime; unlisted scenarios keep weight x1
SCENARIO_REGIME_BIAS = MappingProxyType({
    Regime.BULLISH: {"rally_into_close": 1.8, "selloff_into_close": 0.5, "trend_day": 1.3},
    Regime.BEARISH: {"selloff_into_close": 1.8, "rally_into_close": 0.5, "trend_day": 1.3},
    Regime.RANGE: {"quiet_range": 2.0, "trend_day": 0.5},
    Regime.TURBULENT: {"morning_reversal": 1.5, "afternoon_breakout": 1.5, "quiet_range": 0.5},
    Regime.BUBBLE: {"rally_into_close": 2.0, "trend_day": 1.5},
    Regime.CRASH: {"selloff_into_close": 2.0, "trend_day": 1.5},
})

MEAN_REVERSION = MappingProxyType({
    "threshold": 0.005,
    "scale": 0.05,
    "max_force_pct": 0.0005,
})


# ── Microstructure ─────────────────────────────────────────────────────

STICKY_PRICE = MappingProxyType({
    "release_mult_min": 0.6,
    "release_mult_max": 1.4,
    "max_accumulation_mult": 5.0,
    "release_hazard_rate": {VolatilityPhase.HIGH: 0.5, VolatilityPhase.NORMAL: 0.3, VolatilityPhase.LOW: 0.15},
    "emergency_max_ticks": {VolatilityPhase.HIGH: 3, VolatilityPhase.NORMAL: 6, VolatilityPhase.LOW: 12},
})

ROUND_NUMBER = MappingProxyType({
    "attraction_zone": 0.001,
    "force_scale": 0.0001,
    "breakaway_boost": 0.0001,
})

# (unit, strength), smallest unit first
ROUND_NUMBER_LEVELS: tuple[tuple[float, float], ...] = ((100.0, 0.3), (500.0, 0.6), (1000.0, 1.0))

IGNITION = MappingProxyType({
    "trigger_prob": 0.004,
    "duration_min": 5,
    "duration_max": 15,
    "force_pct": 0.0004,
    "phase_mult": {VolatilityPhase.HIGH: 2.0, VolatilityPhase.NORMAL: 1.0, VolatilityPhase.LOW: 0.3},
    "reversal_prob": 0.2,
    "momentum_follow_prob": 0.6,
})

STOP_HUNT = MappingProxyType({
    "proximity_zone": 0.001,
    "trigger_prob": 0.02,
    "pierce_ticks_min": 2,
    "pierce_ticks_max": 5,
    "pierce_force_pct": 0.0004,
    "reversal_ticks_min": 4,
    "reversal_ticks_max": 10,
    "reversal_force_pct": 0.0003,
})

# Exchange price grid: (upper bound inclusive, tick size)
PRICE_GRID: tuple[tuple[float, float], ...] = (
    (3_000, 1),
    (5_000, 5),
    (30_000, 10),
    (50_000, 50),
    (100_000, 100),
    (300_000, 500),
)
PRICE_GRID_MAX_TICK = 1_000
MIN_GRID_PRICE = 10.0


# ── Macro regime ───────────────────────────────────────────────────────

REGIME_PARAMS = MappingProxyType({
    Regime.BULLISH: RegimeParams(drift=0.0004, vol_mult=1.0),
    Regime.BEARISH: RegimeParams(drift=-0.0003, vol_mult=1.2),
    Regime.RANGE: RegimeParams(drift=0.0, vol_mult=0.7),
    Regime.TURBULENT: RegimeParams(drift=0.0, vol_mult=1.8),
    Regime.BUBBLE: RegimeParams(drift=0.0008, vol_mult=1.5),
    Regime.CRASH: RegimeParams(drift=-0.0010, vol_mult=2.5),
})

MARKOV_MATRIX = MappingProxyType({
    Regime.BULLISH: (0.40, 0.10, 0.25, 0.15, 0.08, 0.02),
    Regime.BEARISH: (0.10, 0.40, 0.25, 0.15, 0.02, 0.08),
    Regime.RANGE: (0.20, 0.20, 0.30, 0.20, 0.05, 0.05),
    Regime.TURBULENT: (0.15, 0.15, 0.20, 0.30, 0.10, 0.10),
    Regime.BUBBLE: (0.25, 0.05, 0.15, 0.20, 0.25, 0.10),
    Regime.CRASH: (0.05, 0.25, 0.15, 0.20, 0.10, 0.25),
})

ROW_SUM_TOLERANCE = 1e-9


# ── Calendar ───────────────────────────────────────────────────────────

NEUTRAL_MONTH = MonthAnomaly(drift_bias=0.0, vol_bias=1.0)

# Unlisted months are neutral
MONTHLY_ANOMALY = MappingProxyType({
    1: MonthAnomaly(0.0002, 1.0, "new-year rally"),
    3: MonthAnomaly(0.0, 1.3, "fiscal year-end rebalancing"),
    5: MonthAnomaly(-0.0002, 1.0, "sell in May"),
    8: MonthAnomaly(0.0, 0.7, "summer lull"),
    9: MonthAnomaly(0.0, 1.3, "quarterly futures expiry"),
    12: MonthAnomaly(0.0002, 1.0, "year-end rally"),
})

TIME_OF_DAY = MappingProxyType({
    TimeZone.OPEN: TimeOfDayParams(2.2, VolatilityPhase.HIGH),
    TimeZone.MORNING: TimeOfDayParams(1.0, VolatilityPhase.NORMAL),
    TimeZone.LUNCH: TimeOfDayParams(0.2, VolatilityPhase.LOW),
    TimeZone.AFTERNOON: TimeOfDayParams(1.1, VolatilityPhase.NORMAL),
    TimeZone.CLOSE: TimeOfDayParams(1.8, VolatilityPhase.HIGH),
})

# Session clock, minutes since midnight
SESSION_START_MINUTES = 540   # 09:00
OPEN_END_MINUTES = 570        # 09:30
LUNCH_START_MINUTES = 690     # 11:30
LUNCH_END_MINUTES = 750       # 12:30
CLOSE_START_MINUTES = 870     # 14:30
SESSION_END_MINUTES = 930     # 15:30

# 330 trading minutes compressed into a 174.75 s session
GAME_MINUTES_PER_MS = 330 / 174750


# ── Volume and order flow ──────────────────────────────────────────────

BASE_VOLUME = MappingProxyType({
    VolatilityPhase.HIGH: 1500.0,
    VolatilityPhase.NORMAL: 800.0,
    VolatilityPhase.LOW: 300.0,
})

VOLUME_DYNAMICS = MappingProxyType({
    "change_sensitivity": 0.001,
    "max_change_mult": 4.0,
    "ignition_mult": 2.5,
    "sticky_mult": 0.4,
})

ALGO_PATTERN = MappingProxyType({
    PatternType.HFT: MappingProxyType({
        "trigger_prob": 0.002,
        "ticks_min": 3,
        "ticks_max": 8,
        "volume_mult_min": 2.0,
        "volume_mult_max": 4.0,
    }),
    PatternType.ICEBERG: MappingProxyType({
        "trigger_prob": 0.003,
        "ticks_min": 8,
        "ticks_max": 20,
        "volume_min": 1200.0,
        "volume_max": 2500.0,
        "tick_variation": 0.10,
    }),
    PatternType.TWAP: MappingProxyType({
        "trigger_prob": 0.004,
        "ticks_min": 15,
        "ticks_max": 40,
        "volume_min": 600.0,
        "volume_max": 1200.0,
        "tick_variation": 0.20,
    }),
})

# Trigger evaluation order
PATTERN_PRIORITY: tuple[PatternType, ...] = (PatternType.HFT, PatternType.ICEBERG, PatternType.TWAP)


# ── Time compensation ──────────────────────────────────────────────────

def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def scale_prob(prob: float, dt: float) -> float:
    """Per-step probability for a step of length dt (independent-trials composition).

    A reference step (dt=1) keeps ``prob`` unchanged; dt <= 0 never fires.
    """
    if dt <= 0:
        return 0.0
    p = clamp(prob, 0.0, 1.0)
    if p >= 1.0:
        return 1.0
    return 1.0 - (1.0 - p) ** dt


def scale_decay(decay: float, dt: float) -> float:
    """Geometric decay factor for a step of length dt."""
    if dt <= 0:
        return 1.0
    return decay ** dt
