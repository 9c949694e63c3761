"""
Unit tests for regime dynamics and calibration.

Tests cover:
- Markov chain construction, stationary distribution, durations
- Regime classification cut points and the recovery rule
- Conservative adjustment, validation and fallback to defaults
- Regime-switching path generation
"""

import logging

import numpy as np
import pytest
from numpy.testing import assert_allclose, assert_array_equal

from bbdsim.defaults import (
    CONSERVATIVE_SURVIVORSHIP_BIAS,
    DEFAULT_REGIME_PARAMS,
    HISTORICAL_SURVIVORSHIP_BIAS,
)
from bbdsim.domain import REGIMES, CalibrationMode, RegimeParams
from bbdsim.errors import CalibrationError, ConfigurationError
from bbdsim.regimes.calibration import (
    apply_conservative_adjustment,
    calibrate_with_validation,
    classify_regimes,
    estimate_regime_params,
    portfolio_regime_params,
    validate_regime_params,
)
from bbdsim.regimes.markov import MarkovChain, create_regime_chain, transition_matrix_for
from bbdsim.regimes.switching import RegimeSwitchingModel, create_regime_model

# -0.10, -0.09, ..., 0.19 in chronological order
THIRTY_YEARS = [round(k / 100 - 0.10, 2) for k in range(30)]


class TestMarkovChain:
    """Tests for MarkovChain."""

    @pytest.mark.parametrize("mode", list(CalibrationMode))
    def test_fixed_matrices_are_stochastic(self, mode: CalibrationMode) -> None:
        """Test that every row of both fixed matrices sums to 1."""
        P = transition_matrix_for(mode)
        assert P.shape == (4, 4)
        assert_allclose(P.sum(axis=1), np.ones(4), atol=1e-10)
        assert np.all(P >= 0)

    def test_stationary_distribution(self) -> None:
        """Test that π P = π and π sums to 1."""
        chain = create_regime_chain()
        pi = chain.stationary_dist
        assert_allclose(pi.sum(), 1.0)
        assert_allclose(pi @ chain.transition_matrix, pi, atol=1e-10)
        assert np.all(pi > 0)

    def test_two_state_stationary(self) -> None:
        """Test the closed form for a two-state chain."""
        P = np.array([[0.9, 0.1], [0.3, 0.7]])
        chain = MarkovChain(P, labels=("up", "down"))
        assert_allclose(chain.stationary_dist, [0.75, 0.25])

    def test_expected_durations(self) -> None:
        """Test 1 / (1 - P_ii)."""
        chain = create_regime_chain()
        assert_allclose(chain.expected_duration(0), 1.0 / (1.0 - 0.92))
        diag = np.diag(chain.transition_matrix)
        assert_allclose(chain.expected_durations(), 1.0 / (1.0 - diag))

    def test_absorbing_state(self) -> None:
        """Test that an absorbing regime has no finite duration."""
        chain = MarkovChain(np.array([[1.0, 0.0], [0.5, 0.5]]), labels=("a", "b"))
        with pytest.raises(ValueError, match="absorbing"):
            chain.expected_duration(0)

    def test_rows_must_sum_to_one(self) -> None:
        """Test row-stochastic validation."""
        with pytest.raises(ValueError, match="sum to 1"):
            MarkovChain(np.array([[0.5, 0.4], [0.5, 0.5]]), labels=("a", "b"))

    def test_must_be_square(self) -> None:
        """Test square validation."""
        with pytest.raises(ValueError, match="square"):
            MarkovChain(np.ones((2, 3)) / 3, labels=("a", "b"))

    def test_labels_must_match(self) -> None:
        """Test that default labels require four regimes."""
        with pytest.raises(ValueError, match="labels"):
            MarkovChain(np.eye(2))

    def test_deterministic_transitions(self) -> None:
        """Test next_regime on a permutation matrix."""
        P = np.array([[0.0, 1.0], [1.0, 0.0]])
        chain = MarkovChain(P, labels=("a", "b"))
        rng = np.random.default_rng(0)
        path = chain.simulate_path(6, rng, initial_regime=0)
        assert_array_equal(path, [0, 1, 0, 1, 0, 1])
        assert chain.next_regime(1, rng) == 0

    def test_probability_by_label(self) -> None:
        """Test label lookup into the transition matrix."""
        chain = create_regime_chain()
        assert chain.probability("bull", "bull") == chain.transition_matrix[0, 0]
        assert chain.probability(2, "recovery") == chain.transition_matrix[2, 3]
        assert_allclose(chain.expected_duration("bull"), chain.expected_duration(0))

    def test_index_of_unknown(self) -> None:
        """Test unknown regime label."""
        with pytest.raises(ValueError, match="Unknown regime"):
            create_regime_chain().index_of("sideways")


class TestClassification:
    """Tests for percentile-based regime classification."""

    def test_cut_points(self) -> None:
        """Test bucket membership on an evenly spaced 30-year series."""
        classified = classify_regimes(THIRTY_YEARS)
        # p10 = -0.071, p30 = -0.013, p85 = 0.1465
        assert classified.crash == [-0.10, -0.09, -0.08]
        assert classified.bear == [-0.07, -0.06, -0.05, -0.04, -0.03, -0.02]
        assert classified.recovery == [0.15, 0.16, 0.17, 0.18, 0.19]
        assert len(classified.bull) == 16
        assert classified.bull[0] == -0.01
        assert classified.bull[-1] == 0.14

    def test_non_negative_after_down_year_is_recovery(self) -> None:
        """Test the recovery rule after a crash."""
        reordered = list(THIRTY_YEARS)
        reordered.remove(0.0)
        reordered.insert(1, 0.0)
        classified = classify_regimes(reordered)
        assert 0.0 in classified.recovery
        assert 0.0 not in classified.bull
        assert classified.counts() == {"bull": 15, "bear": 6, "crash": 3, "recovery": 6}

    def test_insufficient_data(self) -> None:
        """Test that fewer than 10 observations raise."""
        with pytest.raises(CalibrationError, match="Insufficient data"):
            classify_regimes([0.1] * 9)

    def test_calibration_error_is_configuration_error(self) -> None:
        """Test the error hierarchy."""
        with pytest.raises(ConfigurationError):
            calibrate_with_validation([0.05, 0.1])

    def test_sparse_buckets_use_defaults(self) -> None:
        """Test default parameters for regimes with one observation."""
        classified = classify_regimes(THIRTY_YEARS)
        classified.crash = [-0.30]
        params = estimate_regime_params(classified)
        assert params["crash"] == DEFAULT_REGIME_PARAMS["crash"]
        assert_allclose(params["bear"].mean, -0.045)


class TestCalibration:
    """Tests for adjustment, validation and fallback."""

    def test_valid_series_keeps_estimates(self) -> None:
        """Test that sensible estimates are used as-is."""
        result = calibrate_with_validation(THIRTY_YEARS, asset_id="SPY")
        assert result.validation.is_valid
        assert not result.validation.used_fallback
        assert_allclose(result.params["bull"].mean, 0.065)
        assert_allclose(result.params["crash"].mean, -0.09)
        assert result.asset_id == "SPY"

    def test_negative_bull_mean_falls_back(self, caplog: pytest.LogCaptureFixture) -> None:
        """Test fallback to defaults when every return is negative."""
        history = np.linspace(-0.5, -0.05, 20)
        with caplog.at_level(logging.WARNING, logger="bbdsim.regimes.calibration"):
            result = calibrate_with_validation(history)
        assert result.validation.used_fallback
        assert not result.validation.is_valid
        assert any(i.kind == "negative_bull_mean" for i in result.validation.issues)
        assert result.params == DEFAULT_REGIME_PARAMS
        assert "using defaults" in caplog.text

    def test_conservative_fallback_is_adjusted(self) -> None:
        """Test that conservative fallback uses stressed defaults."""
        history = np.linspace(-0.5, -0.05, 20)
        result = calibrate_with_validation(history, CalibrationMode.CONSERVATIVE)
        assert result.validation.used_fallback
        assert result.params == apply_conservative_adjustment(DEFAULT_REGIME_PARAMS)

    def test_conservative_adjustment(self) -> None:
        """Test mean shifts and volatility scaling."""
        adjusted = apply_conservative_adjustment(DEFAULT_REGIME_PARAMS)
        assert_allclose(adjusted["bull"].mean, 0.10 - 0.12)
        assert_allclose(adjusted["bull"].stddev, 0.12 * 1.15)
        assert_allclose(adjusted["bear"].mean, -0.07)
        assert_allclose(adjusted["bear"].stddev, 0.18)
        assert_allclose(adjusted["crash"].mean, -0.28)
        assert_allclose(adjusted["crash"].stddev, 0.375)
        assert_allclose(adjusted["recovery"].mean, 0.13)
        assert_allclose(adjusted["recovery"].stddev, 0.24)

    def test_bull_shift_at_least_one_point(self) -> None:
        """Test the minimum bull shift for a low-volatility bull regime."""
        params = dict(DEFAULT_REGIME_PARAMS)
        params["bull"] = RegimeParams(0.08, 0.005)
        assert_allclose(apply_conservative_adjustment(params)["bull"].mean, 0.07)

    def test_validation_warnings_only(self) -> None:
        """Test that a narrow bull/bear spread is a warning."""
        params = dict(DEFAULT_REGIME_PARAMS)
        params["bear"] = RegimeParams(0.07, 0.15)
        result = validate_regime_params(params)
        assert result.is_valid
        assert [i.kind for i in result.issues] == ["insufficient_spread"]

    def test_extreme_volatility_is_error(self) -> None:
        """Test that bull volatility above 80% is rejected."""
        params = dict(DEFAULT_REGIME_PARAMS)
        params["bull"] = RegimeParams(0.10, 0.9)
        result = validate_regime_params(params)
        assert not result.is_valid
        assert result.issues[0].kind == "extreme_volatility"

    def test_portfolio_aggregation(self) -> None:
        """Test weighted means and sqrt(w' Σ w) volatility."""
        a = dict(DEFAULT_REGIME_PARAMS)
        b = {r: RegimeParams(p.mean / 2, p.stddev / 2) for r, p in DEFAULT_REGIME_PARAMS.items()}
        result = portfolio_regime_params([a, b], [0.5, 0.5], np.eye(2))
        assert_allclose(result["bull"].mean, 0.075)
        assert_allclose(result["bull"].stddev, np.sqrt(0.25 * 0.12 ** 2 + 0.25 * 0.06 ** 2))

    def test_portfolio_aggregation_dimension_mismatch(self) -> None:
        """Test parameter map count validation."""
        with pytest.raises(ValueError, match="parameter maps"):
            portfolio_regime_params([DEFAULT_REGIME_PARAMS], [0.5, 0.5], np.eye(2))


class TestRegimeSwitchingModel:
    """Tests for RegimeSwitchingModel."""

    def test_shapes_and_initial_regime(self) -> None:
        """Test output shapes and that paths start in bull."""
        model = RegimeSwitchingModel([DEFAULT_REGIME_PARAMS] * 3)
        returns, regimes = model.generate(25, np.random.default_rng(0))
        assert returns.shape == (3, 25)
        assert regimes.shape == (25,)
        assert regimes[0] == REGIMES.index("bull")
        assert np.all((regimes >= 0) & (regimes < 4))

    def test_returns_floored(self) -> None:
        """Test the -99% floor under an extreme crash regime."""
        params = {r: RegimeParams(-2.0, 0.01) for r in REGIMES}
        model = RegimeSwitchingModel([params])
        returns, _ = model.generate(10, np.random.default_rng(1))
        assert_allclose(returns, -0.99)

    def test_zero_volatility_subtracts_bias(self) -> None:
        """Test that a deterministic regime returns mean minus bias."""
        params = {r: RegimeParams(0.08, 0.0) for r in REGIMES}
        model = RegimeSwitchingModel([params], survivorship_bias=0.02)
        returns, _ = model.generate(5, np.random.default_rng(2))
        assert_allclose(returns, 0.06)

    def test_mode_selects_bias_and_matrix(self) -> None:
        """Test the factory for both calibration modes."""
        historical = create_regime_model([DEFAULT_REGIME_PARAMS])
        conservative = create_regime_model(
            [DEFAULT_REGIME_PARAMS], mode=CalibrationMode.CONSERVATIVE
        )
        assert historical.survivorship_bias == HISTORICAL_SURVIVORSHIP_BIAS
        assert conservative.survivorship_bias == CONSERVATIVE_SURVIVORSHIP_BIAS
        assert_allclose(
            conservative.chain.transition_matrix,
            transition_matrix_for(CalibrationMode.CONSERVATIVE),
        )

    def test_correlation_shape_validated(self) -> None:
        """Test correlation matrix dimension check."""
        with pytest.raises(ValueError, match="correlation_matrix"):
            RegimeSwitchingModel([DEFAULT_REGIME_PARAMS], correlation_matrix=np.eye(2))

    def test_reproducible(self) -> None:
        """Test same seed, same path."""
        model = RegimeSwitchingModel([DEFAULT_REGIME_PARAMS] * 2)
        a, ra = model.generate(30, np.random.default_rng(9))
        b, rb = model.generate(30, np.random.default_rng(9))
        assert_array_equal(a, b)
        assert_array_equal(ra, rb)
