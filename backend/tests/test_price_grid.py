"""
Tests for the exchange price grid.
"""
import pytest

from services.price_grid import round_price, round_to_tick, tick_unit


class TestTickUnit:
    @pytest.mark.parametrize("price, unit", [
        (500.0, 1),
        (3000.0, 1),
        (3000.5, 5),
        (30000.0, 10),
        (30001.0, 50),
        (100000.0, 100),
        (250000.0, 500),
        (400000.0, 1000),
    ])
    def test_bands(self, price, unit):
        assert tick_unit(price) == unit


class TestRounding:
    def test_half_rounds_away_from_zero(self):
        assert round_to_tick(7.5, 5) == 10
        assert round_to_tick(-7.5, 5) == -10
        assert round_to_tick(-7.0, 5) == -5

    def test_round_price_uses_band_of_raw_price(self):
        assert round_price(29996.0) == 30000
        assert round_price(30004.0) == 30000
        assert round_price(30030.0) == 30050

    def test_minimum_grid_price(self):
        assert round_price(3.0) == 10.0
        assert round_price(-50.0) == 10.0
