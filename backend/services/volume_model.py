"""
Baseline tick volume: phase base volume scaled by time of day, a random
factor, the size of the executed price move and the tick's microstructure
state (ignition bursts trade heavy, stuck prices trade thin).
"""
from __future__ import annotations

from schemas.market import VolumeConfig, validate_config
from services.calendar_modifier import TimeOfDayModifier
from services.market_params import VolatilityPhase
from services.rng import Rng


class VolumeModel:
    def __init__(self, rng: Rng, config: VolumeConfig | dict | None = None):
        self.config = validate_config(VolumeConfig, config)
        self._rng = rng

    def base_volume(self, phase: VolatilityPhase) -> float:
        return self.config.base_volume[phase]

    def generate(
        self,
        phase: VolatilityPhase,
        time_of_day: TimeOfDayModifier | None,
        price_change: float,
        price: float,
        ignition_active: bool = False,
        price_changed: bool = True,
    ) -> float:
        cfg = self.config
        tod_mult = time_of_day.vol_mult if time_of_day is not None else 1.0
        random_factor = 0.5 + self._rng.next()

        change_mult = 1.0
        if price > 0:
            ratio = abs(price_change) / (price * cfg.change_sensitivity)
            change_mult += min(ratio, cfg.max_change_mult - 1)

        if ignition_active:
            event_mult = cfg.ignition_mult
        elif not price_changed:
            event_mult = cfg.sticky_mult
        else:
            event_mult = 1.0

        volume = self.base_volume(phase) * tod_mult * random_factor * change_mult * event_mult
        return float(max(0, round(volume)))
