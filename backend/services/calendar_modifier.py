"""
Calendar and time-of-day modifiers, plus the in-game session clock.

Stateless lookups except for ``SessionClock``. Month effects are seasonal
anomalies; time-of-day effects reproduce the open/close volatility spikes and
the lunch lull. When both carry a phase bias, the time-of-day bias wins.
"""
from __future__ import annotations
from typing import NamedTuple, Optional

from services.market_params import (
    CLOSE_START_MINUTES,
    GAME_MINUTES_PER_MS,
    LUNCH_END_MINUTES,
    LUNCH_START_MINUTES,
    MONTHLY_ANOMALY,
    NEUTRAL_MONTH,
    OPEN_END_MINUTES,
    SESSION_END_MINUTES,
    SESSION_START_MINUTES,
    TIME_OF_DAY,
    MarketConfigError,
    TimeZone,
    VolatilityPhase,
)


class MonthModifier(NamedTuple):
    drift_bias: float
    vol_bias: float
    phase_bias: Optional[VolatilityPhase]
    tendency: str = ""


class TimeOfDayModifier(NamedTuple):
    vol_mult: float
    phase_bias: VolatilityPhase


def month_modifier(month: int) -> MonthModifier:
    if not 1 <= month <= 12:
        raise MarketConfigError(f"month must be within 1..12, got {month}")
    anomaly = MONTHLY_ANOMALY.get(month, NEUTRAL_MONTH)
    if anomaly.vol_bias > 1.0:
        bias = VolatilityPhase.HIGH
    elif anomaly.vol_bias < 1.0:
        bias = VolatilityPhase.LOW
    else:
        bias = None
    return MonthModifier(anomaly.drift_bias, anomaly.vol_bias, bias, anomaly.tendency)


def time_of_day_modifier(time_zone: TimeZone) -> TimeOfDayModifier:
    params = TIME_OF_DAY[TimeZone(time_zone)]
    return TimeOfDayModifier(params.vol_mult, params.phase_bias)


def resolve_phase_bias(month: int, time_zone: TimeZone | None) -> VolatilityPhase | None:
    """Phase bias for the phase controller; time of day overrides the month."""
    if time_zone is not None:
        return time_of_day_modifier(time_zone).phase_bias
    return month_modifier(month).phase_bias


def time_zone_for(minutes: float) -> TimeZone:
    """Intraday bucket for a session time given in minutes since midnight."""
    if minutes < OPEN_END_MINUTES:
        return TimeZone.OPEN
    if minutes <= LUNCH_START_MINUTES:
        return TimeZone.MORNING
    if minutes < LUNCH_END_MINUTES:
        return TimeZone.LUNCH
    if minutes < CLOSE_START_MINUTES:
        return TimeZone.AFTERNOON
    return TimeZone.CLOSE


class SessionClock:
    """In-game clock, 09:00 to 15:30, driven by sampled tick intervals.

    Reaching 11:30 parks the clock at exactly 11:30 on a lunch break; the
    next ``resume`` jumps it to 12:30. The clock stops at 15:30.
    """

    def __init__(self, minutes: float = SESSION_START_MINUTES, lunch_break: bool = False):
        self.minutes = float(minutes)
        self.lunch_break = lunch_break

    def advance(self, interval_ms: float) -> float:
        if self.lunch_break:
            return self.minutes
        minutes = self.minutes + interval_ms * GAME_MINUTES_PER_MS
        if LUNCH_START_MINUTES <= minutes < LUNCH_END_MINUTES:
            self.minutes = float(LUNCH_START_MINUTES)
            self.lunch_break = True
        else:
            self.minutes = min(SESSION_END_MINUTES, minutes)
        return self.minutes

    def resume(self) -> float:
        """End the lunch break: the afternoon session opens at 12:30."""
        self.minutes = float(LUNCH_END_MINUTES)
        self.lunch_break = False
        return self.minutes

    def reset(self) -> None:
        self.minutes = float(SESSION_START_MINUTES)
        self.lunch_break = False

    @property
    def closed(self) -> bool:
        return self.minutes >= SESSION_END_MINUTES

    @property
    def time_zone(self) -> TimeZone:
        return time_zone_for(self.minutes)

    def formatted(self) -> str:
        hours, minutes = divmod(int(self.minutes), 60)
        return f"{hours:02d}:{minutes:02d}"
