"""
Exchange price grid: tick sizes by price band and rounding onto the grid.
"""
from __future__ import annotations
import math

from services.market_params import MIN_GRID_PRICE, PRICE_GRID, PRICE_GRID_MAX_TICK


def tick_unit(price: float) -> float:
    for upper, tick in PRICE_GRID:
        if price <= upper:
            return tick
    return PRICE_GRID_MAX_TICK


def round_to_tick(value: float, tick: float) -> float:
    """Nearest multiple of ``tick``, symmetric for negative values."""
    return math.copysign(math.floor(abs(value) / tick + 0.5) * tick, value)


def round_price(price: float) -> float:
    """Round onto the grid for the price's band, never below the minimum grid price."""
    return max(MIN_GRID_PRICE, round_to_tick(price, tick_unit(price)))
