"""
Tests for tick-level price formation: sticky prices, round numbers,
ignition bursts and stop hunts.
"""
import pytest

from schemas.market import MicrostructureState
from services.market_params import VolatilityPhase
from services.microstructure import Microstructure
from services.rng import Rng

NORMAL = VolatilityPhase.NORMAL
QUIET = {"ignition": {"trigger_prob": 0.0}, "stop_hunt": {"trigger_prob": 0.0}}
MANUAL = {
    **QUIET,
    "sticky": {
        "release_mult_min": 5.0,
        "release_mult_max": 5.0,
        "release_hazard_rate": {"high": 0.0, "normal": 0.0, "low": 0.0},
        "emergency_max_ticks": {"high": 100, "normal": 100, "low": 100},
    },
}


def _longest_stuck_run(micro, phase, steps=3000):
    longest = run = 0
    for _ in range(steps):
        result = micro.update(30000.0, 0.5, 1.0, phase, 12.5)
        run = 0 if result.changed else run + 1
        longest = max(longest, run)
    return longest


class TestStickyPrice:
    @pytest.mark.parametrize("phase, limit", [
        (VolatilityPhase.HIGH, 3),
        (VolatilityPhase.NORMAL, 6),
        (VolatilityPhase.LOW, 12),
    ])
    def test_emergency_release(self, phase, limit):
        assert _longest_stuck_run(Microstructure(Rng(4), 30000.0, QUIET), phase) < limit

    def test_stuck_tick_is_flat(self):
        micro = Microstructure(Rng(1), 30000.0, MANUAL)
        result = micro.update(30000.0, 8.0, 1.0, NORMAL, 12.5)
        assert not result.changed
        assert result.price == result.high == result.low == 30000.0

    def test_sign_flip_releases(self):
        micro = Microstructure(Rng(1), 30000.0, MANUAL)
        micro.update(30000.0, 8.0, 1.0, NORMAL, 12.5)
        result = micro.update(30000.0, -20.0, 1.0, NORMAL, 12.5)
        assert result.changed
        assert result.price == 29990.0

    def test_pressure_capped(self):
        micro = Microstructure(Rng(1), 30000.0, MANUAL)
        result = micro.update(30000.0, 1000.0, 1.0, NORMAL, 12.5)
        assert result.changed
        assert result.price == 30050.0
        assert result.low <= result.price < result.high

    def test_session_range_tracks_executed_prices(self):
        micro = Microstructure(Rng(1), 30000.0, MANUAL)
        micro.update(30000.0, 1000.0, 1.0, NORMAL, 12.5)
        micro.update(30050.0, -1000.0, 1.0, NORMAL, 12.5)
        assert micro.session_high == 30050.0
        assert micro.session_low == 30000.0


class TestRoundNumbers:
    def setup_method(self):
        self.micro = Microstructure(Rng(1), 30000.0, QUIET)

    def test_pull_toward_level(self):
        assert self.micro._round_number_force(29990.0, 1.0) > 0
        assert self.micro._round_number_force(30010.0, 1.0) < 0
        assert self.micro._round_number_force(30450.0, 1.0) == 0.0

    def test_pull_scales_with_dt(self):
        one = self.micro._round_number_force(29990.0, 1.0)
        assert self.micro._round_number_force(29990.0, 2.0) == pytest.approx(2 * one)
        assert self.micro._round_number_force(29990.0, 0.0) == 0.0

    def test_breakaway_boost(self):
        assert self.micro._breakaway_boost(30490.0, 30510.0, True) == pytest.approx(0.0001 * 30510.0)
        assert self.micro._breakaway_boost(30510.0, 30490.0, True) < 0
        assert self.micro._breakaway_boost(30490.0, 30510.0, False) == 0.0
        assert self.micro._breakaway_boost(30010.0, 30020.0, True) == 0.0


def _ignition_rate(dt, steps=60_000):
    micro = Microstructure(Rng(17), 30000.0, {"stop_hunt": {"trigger_prob": 0.0}})
    starts = idle = 0
    for _ in range(steps):
        was_active = micro.ignition_active
        micro.update(30000.0, 0.0, dt, NORMAL, 12.5)
        if not was_active:
            idle += 1
            starts += micro.ignition_active
    return starts / (idle * dt)


class TestIgnition:
    CERTAIN = {"ignition": {"trigger_prob": 1.0}, "stop_hunt": {"trigger_prob": 0.0}}

    def test_suppressed_during_extreme_event(self):
        micro = Microstructure(Rng(2), 30000.0, self.CERTAIN)
        micro.update(30000.0, 0.0, 1.0, NORMAL, 12.5, extreme_active=True)
        assert not micro.ignition_active
        result = micro.update(30000.0, 0.0, 1.0, NORMAL, 12.5)
        assert micro.ignition_active
        assert result.ignition_active
        assert result.changed

    def test_burst_runs_out(self):
        micro = Microstructure(Rng(2), 30000.0, self.CERTAIN)
        micro.update(30000.0, 0.0, 1.0, NORMAL, 12.5)
        duration = int(micro.serialize().ignition.total_duration)
        assert 5 <= duration <= 15
        for _ in range(duration - 1):
            micro.update(30000.0, 0.0, 1.0, NORMAL, 12.5)
            assert micro.ignition_active
        micro.update(30000.0, 0.0, 1.0, NORMAL, 12.5)
        assert not micro.ignition_active

    @pytest.mark.parametrize("dt", [1.0, 2.0])
    def test_trigger_rate_per_unit_time(self, dt):
        assert _ignition_rate(dt) == pytest.approx(0.004, rel=0.3)


class TestStopHunt:
    CERTAIN = {"ignition": {"trigger_prob": 0.0}, "stop_hunt": {"trigger_prob": 1.0}}

    def _near_high(self):
        state = MicrostructureState(session_high=30100.0, session_low=29000.0)
        return Microstructure(Rng(3), 30000.0, self.CERTAIN, state=state)

    def test_pierce_then_reversal(self):
        micro = self._near_high()
        micro.update(30090.0, 0.0, 1.0, NORMAL, 12.5)
        stages = []
        for _ in range(30):
            hunt = micro.serialize().stop_hunt
            if hunt is None:
                break
            stages.append((hunt.stage, hunt.direction))
            micro.update(30090.0, 0.0, 1.0, NORMAL, 12.5)
        assert stages[0] == ("pierce", 1)
        assert ("reversal", -1) in stages
        assert stages == sorted(stages, key=lambda s: s[0] == "reversal")
        assert not micro.stop_hunt_active

    def test_far_from_extremes_never_hunts(self):
        micro = self._near_high()
        micro.update(29500.0, 0.0, 1.0, NORMAL, 12.5)
        assert not micro.stop_hunt_active

    def test_suppressed_during_extreme_event(self):
        micro = self._near_high()
        micro.update(30090.0, 0.0, 1.0, NORMAL, 12.5, extreme_active=True)
        assert not micro.stop_hunt_active
