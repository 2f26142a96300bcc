"""
Tests for the six-state macro regime chain.
"""
import math
import pytest

from services.macro_regime import MacroRegimeManager, markov_step
from services.market_params import (
    INITIAL_REGIMES,
    MARKOV_MATRIX,
    REGIME_ORDER,
    MarketConfigError,
    Regime,
)
from services.rng import Rng


def _matrix_payload():
    return {regime.value: list(row) for regime, row in MARKOV_MATRIX.items()}


class TestTransitionMatrix:
    def test_rows_sum_to_one(self):
        manager = MacroRegimeManager(Rng(1))
        for regime in Regime:
            assert abs(math.fsum(manager.config.matrix[regime]) - 1.0) < 1e-9

    def test_rejects_row_not_summing_to_one(self):
        matrix = _matrix_payload()
        matrix["bullish"] = [0.40, 0.10, 0.25, 0.15, 0.08, 0.01]
        with pytest.raises(MarketConfigError):
            MacroRegimeManager(Rng(1), {"matrix": matrix})

    def test_rejects_negative_probability(self):
        matrix = _matrix_payload()
        matrix["range"] = [0.5, 0.5, 0.1, -0.1, 0.0, 0.0]
        with pytest.raises(MarketConfigError):
            MacroRegimeManager(Rng(1), {"matrix": matrix})

    def test_rejects_missing_row(self):
        matrix = _matrix_payload()
        del matrix["crash"]
        with pytest.raises(MarketConfigError):
            MacroRegimeManager(Rng(1), {"matrix": matrix})


class TestMarkovStep:
    def setup_method(self):
        self.matrix = {regime: list(row) for regime, row in MARKOV_MATRIX.items()}

    def test_cumulative_buckets(self):
        # bullish row cumulative: 0.40, 0.50, 0.75, 0.90, 0.98, 1.00
        assert markov_step(self.matrix, Regime.BULLISH, 0.0) == Regime.BULLISH
        assert markov_step(self.matrix, Regime.BULLISH, 0.45) == Regime.BEARISH
        assert markov_step(self.matrix, Regime.BULLISH, 0.60) == Regime.RANGE
        assert markov_step(self.matrix, Regime.BULLISH, 0.85) == Regime.TURBULENT
        assert markov_step(self.matrix, Regime.BULLISH, 0.95) == Regime.BUBBLE
        assert markov_step(self.matrix, Regime.BULLISH, 0.99) == Regime.CRASH

    def test_rounding_shortfall_falls_back_to_last_regime(self):
        matrix = dict(self.matrix)
        matrix[Regime.RANGE] = [0.5, 0.5 - 1e-12, 0.0, 0.0, 0.0, 0.0]
        assert markov_step(matrix, Regime.RANGE, 1 - 1e-13) == REGIME_ORDER[-1]

    def test_empirical_row_frequencies(self):
        rng = Rng(31337)
        n = 20_000
        counts = {regime: 0 for regime in Regime}
        for _ in range(n):
            counts[markov_step(self.matrix, Regime.CRASH, rng.next())] += 1
        for regime, expected in zip(REGIME_ORDER, MARKOV_MATRIX[Regime.CRASH]):
            assert counts[regime] / n == pytest.approx(expected, abs=0.02)


class TestMacroRegimeManager:
    def setup_method(self):
        self.manager = MacroRegimeManager(Rng(42))

    def test_requires_initialization(self):
        assert not self.manager.initialized
        with pytest.raises(RuntimeError):
            _ = self.manager.regime

    def test_initialize_picks_calm_regime(self):
        regime = self.manager.initialize()
        assert regime in INITIAL_REGIMES
        assert self.manager.session_index == 1
        assert len(self.manager.history) == 1

    def test_transition_records_history(self):
        self.manager.initialize(Regime.BULLISH)
        for _ in range(5):
            self.manager.transition()
        history = self.manager.history
        assert self.manager.session_index == 6
        assert [entry.session for entry in history] == [1, 2, 3, 4, 5, 6]
        assert history[-1].regime == self.manager.regime

    def test_params_follow_regime(self):
        self.manager.initialize(Regime.CRASH)
        params = self.manager.params
        assert params.drift == pytest.approx(-0.0010)
        assert params.vol_mult == pytest.approx(2.5)

    def test_preview_does_not_change_state(self):
        self.manager.initialize(Regime.RANGE)
        before = self.manager.serialize()
        preview = self.manager.preview(4)
        assert len(preview) == 4
        assert [entry.session for entry in preview] == [2, 3, 4, 5]
        assert self.manager.serialize() == before

    def test_preview_matches_following_transitions(self):
        self.manager.initialize(Regime.TURBULENT)
        preview = [entry.regime for entry in self.manager.preview(3)]
        actual = [self.manager.transition() for _ in range(3)]
        assert preview == actual

    @pytest.mark.parametrize("regime,outlook,volatility", [
        (Regime.BULLISH, "rising", "normal"),
        (Regime.RANGE, "sideways", "low"),
        (Regime.CRASH, "falling", "high"),
        (Regime.BUBBLE, "rising", "high"),
    ])
    def test_outlook(self, regime, outlook, volatility):
        self.manager.initialize(regime)
        result = self.manager.outlook()
        assert result.outlook == outlook
        assert result.volatility == volatility

    def test_serialize_restore(self):
        self.manager.initialize(Regime.BEARISH)
        self.manager.transition()
        rng_state = Rng(42)
        restored = MacroRegimeManager(rng_state, state=self.manager.serialize())
        assert restored.regime == self.manager.regime
        assert restored.session_index == self.manager.session_index
        assert restored.history == self.manager.history
