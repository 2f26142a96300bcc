"""
Intraday scenarios and mean reversion.

One scenario is drawn per session, weighted by the active macro regime. A
scenario is a list of phases keyed by session minute; each phase can override
the drift, scale volatility and set how strongly the price is pulled back
toward the session open.
"""
from __future__ import annotations

from schemas.market import IntradayConfig, MeanReversionConfig, ScenarioConfig, ScenarioPhaseConfig
from services.market_params import Regime, clamp
from services.rng import Rng


def scenario_weights(regime: Regime, config: IntradayConfig) -> list[tuple[str, float]]:
    bias = config.regime_bias.get(regime, {})
    return [(name, scenario.weight * bias.get(name, 1.0)) for name, scenario in config.scenarios.items()]


def select_scenario(rng: Rng, regime: Regime, config: IntradayConfig) -> str:
    """Weighted draw over the configured scenarios (one ``next()`` draw)."""
    weighted = scenario_weights(regime, config)
    rand = rng.next() * sum(weight for _, weight in weighted)
    for name, weight in weighted:
        rand -= weight
        if rand <= 0:
            return name
    return weighted[-1][0]


def scenario_phase(scenario: ScenarioConfig, minutes: float) -> ScenarioPhaseConfig:
    """Latest phase whose start minute has been reached; the first phase before that."""
    current = scenario.phases[0]
    for phase in scenario.phases:
        if minutes >= phase.start_minute:
            current = phase
        else:
            break
    return current


def mean_reversion_force(
    price: float,
    open_price: float,
    strength: float,
    dt: float,
    config: MeanReversionConfig,
) -> float:
    """Pull toward the session open once the deviation exceeds the threshold.

    Linear in ``dt`` and capped at ``max_force_pct * price * dt``.
    """
    if strength == 0 or open_price <= 0:
        return 0.0
    deviation = (price - open_price) / open_price
    excess = abs(deviation) - config.threshold
    if excess <= 0:
        return 0.0
    sign = -1.0 if deviation > 0 else 1.0
    force = sign * config.scale * dt * price * excess * strength
    cap = price * config.max_force_pct * dt
    return clamp(force, -cap, cap)
