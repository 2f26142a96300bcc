"""
Tests for the baseline tick volume model.
"""
import pytest

from services.calendar_modifier import time_of_day_modifier
from services.market_params import TimeZone, VolatilityPhase
from services.rng import Rng
from services.volume_model import VolumeModel


def _average(model, n=5000, **kwargs):
    return sum(model.generate(**kwargs) for _ in range(n)) / n


class TestVolumeModel:
    def setup_method(self):
        self.morning = time_of_day_modifier(TimeZone.MORNING)

    def test_baseline_near_phase_volume(self):
        model = VolumeModel(Rng(1))
        avg = _average(model, phase=VolatilityPhase.NORMAL, time_of_day=self.morning,
                       price_change=0.0, price=30000.0)
        assert 700 < avg < 900

    def test_whole_non_negative_volumes(self):
        model = VolumeModel(Rng(2))
        for _ in range(2000):
            volume = model.generate(VolatilityPhase.LOW, self.morning, 5.0, 30000.0)
            assert volume >= 0
            assert volume == int(volume)

    def test_large_moves_raise_volume(self):
        quiet = _average(VolumeModel(Rng(3)), phase=VolatilityPhase.NORMAL, time_of_day=self.morning,
                         price_change=0.0, price=30000.0)
        busy = _average(VolumeModel(Rng(3)), phase=VolatilityPhase.NORMAL, time_of_day=self.morning,
                        price_change=60.0, price=30000.0)
        assert busy > quiet * 2.5

    def test_change_multiplier_is_capped(self):
        capped = _average(VolumeModel(Rng(4)), phase=VolatilityPhase.NORMAL, time_of_day=self.morning,
                          price_change=1e9, price=30000.0)
        assert capped < 800 * 4.2

    def test_lunch_lull(self):
        lunch = _average(VolumeModel(Rng(5)), phase=VolatilityPhase.NORMAL,
                         time_of_day=time_of_day_modifier(TimeZone.LUNCH), price_change=0.0, price=30000.0)
        opening = _average(VolumeModel(Rng(5)), phase=VolatilityPhase.NORMAL,
                           time_of_day=time_of_day_modifier(TimeZone.OPEN), price_change=0.0, price=30000.0)
        assert lunch < opening / 5

    def test_ignition_bursts_volume(self):
        calm = _average(VolumeModel(Rng(6)), phase=VolatilityPhase.NORMAL, time_of_day=self.morning,
                        price_change=0.0, price=30000.0)
        burst = _average(VolumeModel(Rng(6)), phase=VolatilityPhase.NORMAL, time_of_day=self.morning,
                         price_change=0.0, price=30000.0, ignition_active=True)
        assert burst == pytest.approx(calm * 2.5, rel=0.02)

    def test_sticky_tick_thins_volume(self):
        moved = _average(VolumeModel(Rng(7)), phase=VolatilityPhase.NORMAL, time_of_day=self.morning,
                         price_change=0.0, price=30000.0)
        stuck = _average(VolumeModel(Rng(7)), phase=VolatilityPhase.NORMAL, time_of_day=self.morning,
                         price_change=0.0, price=30000.0, price_changed=False)
        assert stuck == pytest.approx(moved * 0.4, rel=0.02)
