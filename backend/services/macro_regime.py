"""
Macro regime manager.

Slow layer of the simulation: a six-state Markov chain that moves once per
trading session and sets the drift and volatility multiplier for the whole
session. Tick-level volatility lives in ``volatility_phase``.
"""
from __future__ import annotations
import logging

from schemas.market import (
    RegimeConfig,
    RegimeHistoryEntry,
    RegimeOutlook,
    RegimePreviewEntry,
    RegimeState,
    validate_config,
)
from services.market_params import INITIAL_REGIMES, REGIME_ORDER, Regime, RegimeParams
from services.rng import Rng

logger = logging.getLogger(__name__)


def markov_step(matrix: dict[Regime, list[float]], current: Regime, rand: float) -> Regime:
    """Map one uniform draw onto the cumulative distribution of ``current``'s row."""
    cumulative = 0.0
    for regime, prob in zip(REGIME_ORDER, matrix[current]):
        cumulative += prob
        if rand < cumulative:
            return regime
    # Rounding left the row just short of 1
    return REGIME_ORDER[-1]


class MacroRegimeManager:
    """Tracks the active macro regime, its history and session counter."""

    def __init__(
        self,
        rng: Rng,
        config: RegimeConfig | dict | None = None,
        state: RegimeState | None = None,
    ):
        self.config = validate_config(RegimeConfig, config)
        self._rng = rng
        state = state or RegimeState()
        self._regime: Regime | None = state.current_regime
        self._session = state.session_index
        self._history = [RegimeHistoryEntry(**entry.model_dump()) for entry in state.history]

    @property
    def regime(self) -> Regime:
        if self._regime is None:
            raise RuntimeError("regime not initialized; call initialize() first")
        return self._regime

    @property
    def session_index(self) -> int:
        return self._session

    @property
    def history(self) -> list[RegimeHistoryEntry]:
        return list(self._history)

    @property
    def initialized(self) -> bool:
        return self._regime is not None

    def initialize(self, regime: Regime | None = None) -> Regime:
        """Pick the opening regime (uniform over the calm regimes unless given)."""
        if regime is None:
            regime = INITIAL_REGIMES[self._rng.int_inclusive(0, len(INITIAL_REGIMES) - 1)]
        self._regime = Regime(regime)
        self._session = 1
        self._history = [RegimeHistoryEntry(session=self._session, regime=self._regime)]
        logger.info("Opening regime %s", self._regime.value)
        return self._regime

    def transition(self) -> Regime:
        """Advance the chain by one session."""
        previous = self.regime
        self._regime = markov_step(self.config.matrix, previous, self._rng.next())
        self._session += 1
        self._history.append(RegimeHistoryEntry(session=self._session, regime=self._regime))
        logger.info(
            "Regime transition %s -> %s (session %d)",
            previous.value, self._regime.value, self._session,
        )
        return self._regime

    @property
    def params(self) -> RegimeParams:
        row = self.config.params[self.regime]
        return RegimeParams(drift=row.drift, vol_mult=row.vol_mult)

    def outlook(self) -> RegimeOutlook:
        """Plain-language outlook for the active regime."""
        params = self.params
        if params.drift > 0:
            direction = "rising"
        elif params.drift < 0:
            direction = "falling"
        else:
            direction = "sideways"

        if params.vol_mult >= 1.5:
            volatility = "high"
        elif params.vol_mult >= 1.0:
            volatility = "normal"
        else:
            volatility = "low"

        return RegimeOutlook(regime=self.regime, outlook=direction, volatility=volatility)

    def preview(self, horizon: int = 4) -> list[RegimePreviewEntry]:
        """Simulate the next ``horizon`` transitions without touching the live state."""
        rng = self._rng.clone()
        simulated = self.regime
        entries = []
        for i in range(horizon):
            simulated = markov_step(self.config.matrix, simulated, rng.next())
            row = self.config.params[simulated]
            entries.append(RegimePreviewEntry(
                session=self._session + 1 + i,
                regime=simulated,
                drift=row.drift,
                vol_mult=row.vol_mult,
            ))
        return entries

    def serialize(self) -> RegimeState:
        return RegimeState(
            current_regime=self._regime,
            session_index=self._session,
            history=list(self._history),
        )
