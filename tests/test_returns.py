"""
Unit tests for return generation.

Tests cover:
- Clamped Cholesky factor and covariance handling
- Simple and block bootstrap, optimal block length
- Student-t variates, skew adjustment and return clamping
- Generator factory and cross-asset correlation
"""

import numpy as np
import pytest
from numpy.testing import assert_allclose, assert_array_almost_equal, assert_array_equal

from bbdsim.config import AssetConfig, SimulationConfig, make_portfolio
from bbdsim.domain import AssetClass, RegimeParams, ReturnMethod
from bbdsim.returns.bootstrap import (
    align_histories,
    block_bootstrap,
    block_bootstrap_indices,
    optimal_block_length,
    simple_bootstrap,
)
from bbdsim.returns.covariance import (
    CovarianceModel,
    clamped_cholesky,
    create_identity_covariance,
)
from bbdsim.returns.generators import (
    BlockBootstrapGenerator,
    FatTailGenerator,
    RegimeSwitchingGenerator,
    SimpleBootstrapGenerator,
    create_return_generator,
)
from bbdsim.returns.student_t import (
    FatTailReturnModel,
    fat_tail_return,
    skew_adjust,
    student_t_variate,
)

SCENARIO_HISTORY = [0.10, -0.05, 0.20, 0.00]

LONG_HISTORY = [
    0.21, -0.09, 0.15, 0.32, -0.37, 0.26, 0.11, 0.05, 0.16, 0.02,
    0.28, -0.12, 0.19, 0.07, -0.22, 0.31, 0.09, 0.13, -0.04, 0.24,
]

FLAT_PARAMS = {
    "bull": RegimeParams(0.10, 0.15),
    "bear": RegimeParams(-0.05, 0.20),
    "crash": RegimeParams(-0.30, 0.25),
    "recovery": RegimeParams(0.20, 0.18),
}


class TestClampedCholesky:
    """Tests for the non-raising Cholesky factor."""

    def test_identity(self) -> None:
        """Test that the identity factors to itself."""
        assert_array_almost_equal(clamped_cholesky(np.eye(3)), np.eye(3))

    def test_reproduces_positive_definite(self) -> None:
        """Test L L^T for a positive definite matrix."""
        corr = np.array([[1.0, 0.5, 0.2], [0.5, 1.0, 0.3], [0.2, 0.3, 1.0]])
        L = clamped_cholesky(corr)
        assert_array_almost_equal(L @ L.T, corr)
        assert_array_almost_equal(L, np.linalg.cholesky(corr))

    def test_perfect_correlation(self) -> None:
        """Test the rank-deficient two-asset case."""
        L = clamped_cholesky(np.array([[1.0, 1.0], [1.0, 1.0]]))
        assert_array_almost_equal(L, np.array([[1.0, 0.0], [1.0, 0.0]]))

    def test_non_psd_input_stays_finite(self) -> None:
        """Test that a slightly invalid matrix still yields a finite factor."""
        corr = np.array([[1.0, 0.9, -0.9], [0.9, 1.0, 0.9], [-0.9, 0.9, 1.0]])
        assert np.all(np.isfinite(clamped_cholesky(corr)))


class TestCovarianceModel:
    """Tests for CovarianceModel."""

    def test_identity_covariance(self) -> None:
        """Test create_identity_covariance."""
        model = create_identity_covariance(3, volatility=0.2)
        assert_allclose(model.covariance, 0.04 * np.eye(3))
        assert model.n_assets == 3

    def test_portfolio_volatility(self) -> None:
        """Test sqrt(w' Σ w) for two uncorrelated assets."""
        model = CovarianceModel(np.eye(2), np.array([0.2, 0.1]))
        expected = np.sqrt(0.5 ** 2 * 0.04 + 0.5 ** 2 * 0.01)
        assert_allclose(model.portfolio_volatility(np.array([0.5, 0.5])), expected)

    def test_negative_volatility_rejected(self) -> None:
        """Test volatility validation."""
        with pytest.raises(ValueError, match="non-negative"):
            CovarianceModel(np.eye(2), np.array([0.1, -0.1]))

    def test_correlated_normals_sample_correlation(self) -> None:
        """Test that draws carry the requested correlation."""
        corr = np.array([[1.0, 0.7], [0.7, 1.0]])
        model = CovarianceModel(corr)
        draws = model.correlated_normals(np.random.default_rng(3), n_steps=20_000)
        assert draws.shape == (2, 20_000)
        assert_allclose(np.corrcoef(draws)[0, 1], 0.7, atol=0.03)

    def test_sample_mvn_shape(self) -> None:
        """Test multivariate normal sampling."""
        model = create_identity_covariance(2, volatility=0.1)
        samples = model.sample_mvn(np.array([0.05, 0.02]), 5_000, np.random.default_rng(4))
        assert samples.shape == (5_000, 2)
        assert_allclose(samples.mean(axis=0), [0.05, 0.02], atol=0.01)


class TestBootstrap:
    """Tests for bootstrap resampling."""

    def test_simple_bootstrap_draws_from_history(self) -> None:
        """Test that a seeded path uses only historical values."""
        path = simple_bootstrap(SCENARIO_HISTORY, 4, np.random.default_rng(42))
        assert path.shape == (4,)
        assert set(path.tolist()) <= set(SCENARIO_HISTORY)

    def test_simple_bootstrap_is_seed_determined(self) -> None:
        """Test that the order follows the seed exactly."""
        expected_idx = np.random.default_rng(42).integers(0, 4, size=4)
        path = simple_bootstrap(SCENARIO_HISTORY, 4, np.random.default_rng(42))
        assert_array_equal(path, np.array(SCENARIO_HISTORY)[expected_idx])

    @pytest.mark.parametrize("n_obs", [1, 2, 5, 30])
    @pytest.mark.parametrize("block_size", [1, 3, 10, 50])
    def test_block_bootstrap_length(self, n_obs: int, block_size: int) -> None:
        """Test that output length always equals the target."""
        history = np.linspace(-0.2, 0.3, n_obs)
        path = block_bootstrap(history, 37, np.random.default_rng(0), block_size=block_size)
        assert path.shape == (37,)
        assert np.all(np.isin(path, history))

    def test_blocks_are_contiguous(self) -> None:
        """Test that each block copies consecutive observations."""
        idx = block_bootstrap_indices(20, 9, 3, np.random.default_rng(5))
        for start in (0, 3, 6):
            assert_array_equal(np.diff(idx[start:start + 3]), [1, 1])

    def test_last_block_truncated(self) -> None:
        """Test a target that is not a multiple of the block size."""
        idx = block_bootstrap_indices(20, 7, 3, np.random.default_rng(6))
        assert idx.shape == (7,)
        assert np.all((idx >= 0) & (idx < 20))

    def test_empty_history_raises(self) -> None:
        """Test bootstrap of nothing."""
        with pytest.raises(ValueError, match="empty"):
            block_bootstrap_indices(0, 5, 3, np.random.default_rng(0))

    @pytest.mark.parametrize("n_obs", [12, 13, 20, 50, 97, 200])
    def test_optimal_block_length_range(self, n_obs: int) -> None:
        """Test that the block length lies in [3, n // 4]."""
        rng = np.random.default_rng(n_obs)
        noise = rng.normal(size=n_obs)
        trending = np.cumsum(noise)
        for series in (noise, trending):
            block = optimal_block_length(series)
            assert 3 <= block <= n_obs // 4

    def test_optimal_block_length_short_series(self) -> None:
        """Test graceful degradation for very short series."""
        assert optimal_block_length([0.1]) == 3
        assert optimal_block_length([0.1, 0.2, 0.3]) >= 3

    def test_align_histories_uses_most_recent(self) -> None:
        """Test alignment of unequal series on their ends."""
        aligned = align_histories([[1.0, 2.0, 3.0, 4.0], [30.0, 40.0]])
        assert_array_equal(aligned, [[3.0, 4.0], [30.0, 40.0]])


class TestStudentT:
    """Tests for fat-tailed draws."""

    def test_invalid_degrees_of_freedom(self) -> None:
        """Test df < 1."""
        with pytest.raises(ValueError, match="degrees_of_freedom"):
            student_t_variate(0, np.random.default_rng(0))

    def test_heavier_tails_than_normal(self) -> None:
        """Test excess kurtosis of df=5 variates."""
        rng = np.random.default_rng(7)
        draws = np.array([student_t_variate(5, rng) for _ in range(20_000)])
        standardized = (draws - draws.mean()) / draws.std()
        assert np.mean(standardized ** 4) > 3.5

    def test_skew_adjust(self) -> None:
        """Test t + s (t² - 1)."""
        assert_allclose(skew_adjust(2.0, 0.5), 3.5)
        assert_allclose(skew_adjust([1.0, -1.0], 0.3), [1.0, -1.0])
        assert_allclose(skew_adjust([0.4, -2.0], 0.0), [0.4, -2.0])

    def test_returns_clamped_for_pathological_history(self) -> None:
        """Test that extreme history cannot escape [-0.99, 10]."""
        model = FatTailReturnModel(
            [[-0.95, 9.0, -0.95, 9.0, 4.0]], [AssetClass.EQUITY_STOCK]
        )
        path = model.generate(2_000, np.random.default_rng(8))
        assert path.min() >= -0.99
        assert path.max() <= 10.0
        assert path.min() == -0.99

    def test_returns_bounded_for_overflowing_history(self) -> None:
        """Test that infinite empirical moments still yield bounded returns."""
        with np.errstate(all="ignore"):
            model = FatTailReturnModel([[1e308, 1e308, -0.5]], [AssetClass.EQUITY_INDEX])
        assert np.isinf(model.stddevs[0])
        path = model.generate(50, np.random.default_rng(0))
        assert np.all(np.isfinite(path))
        assert path.min() >= -0.99
        assert path.max() <= 10.0

    def test_single_asset_helper(self) -> None:
        """Test fat_tail_return bounds."""
        r = fat_tail_return(LONG_HISTORY, AssetClass.BOND, np.random.default_rng(9))
        assert -0.99 <= r <= 10.0

    def test_perfect_correlation_moves_together(self) -> None:
        """Test that perfectly correlated identical assets return the same path."""
        model = FatTailReturnModel(
            [LONG_HISTORY, LONG_HISTORY],
            [AssetClass.COMMODITY, AssetClass.COMMODITY],
            np.array([[1.0, 1.0], [1.0, 1.0]]),
        )
        path = model.generate(50, np.random.default_rng(10))
        assert_allclose(path[0], path[1])
        assert not np.allclose(path[0], path[0, 0])

    def test_dimension_mismatch(self) -> None:
        """Test asset class count validation."""
        with pytest.raises(ValueError, match="asset_classes"):
            FatTailReturnModel([LONG_HISTORY], [AssetClass.BOND, AssetClass.BOND])


class TestGenerators:
    """Tests for the generator factory and shared-index behaviour."""

    def _portfolio(self, **asset_kwargs):
        return make_portfolio([
            AssetConfig("A", 0.6, historical_returns=LONG_HISTORY, **asset_kwargs),
            AssetConfig("B", 0.4, historical_returns=LONG_HISTORY[::-1], **asset_kwargs),
        ])

    @pytest.mark.parametrize("method, expected", [
        (ReturnMethod.SIMPLE, SimpleBootstrapGenerator),
        (ReturnMethod.BLOCK, BlockBootstrapGenerator),
        (ReturnMethod.REGIME, RegimeSwitchingGenerator),
        (ReturnMethod.FAT_TAIL, FatTailGenerator),
    ])
    def test_factory(self, method: ReturnMethod, expected: type) -> None:
        """Test generator selection and output shape."""
        generator = create_return_generator(SimulationConfig(method=method), self._portfolio())
        assert isinstance(generator, expected)
        path = generator.generate(12, np.random.default_rng(0))
        assert path.shape == (2, 12)
        assert generator.describe()["method"] == method.value

    def test_bootstrap_shares_index_across_assets(self) -> None:
        """Test that both assets draw the same historical year."""
        generator = SimpleBootstrapGenerator([LONG_HISTORY, [10 * r for r in LONG_HISTORY]])
        path = generator.generate(15, np.random.default_rng(1))
        assert_allclose(path[1], 10 * path[0])

    def test_block_size_default(self) -> None:
        """Test the default block size comes from the history."""
        generator = BlockBootstrapGenerator([LONG_HISTORY])
        assert 3 <= generator.block_size <= max(3, len(LONG_HISTORY) // 4)
        assert generator.describe()["block_size"] == generator.block_size

    def test_regime_perfect_correlation(self) -> None:
        """Test identical regime returns for perfectly correlated assets."""
        portfolio = make_portfolio(
            [
                AssetConfig("A", 0.5, historical_returns=LONG_HISTORY, regime_params=FLAT_PARAMS),
                AssetConfig("B", 0.5, historical_returns=LONG_HISTORY, regime_params=FLAT_PARAMS),
            ],
            correlation_matrix=[[1.0, 1.0], [1.0, 1.0]],
        )
        generator = create_return_generator(
            SimulationConfig(method=ReturnMethod.REGIME), portfolio
        )
        path = generator.generate(30, np.random.default_rng(2))
        assert_allclose(path[0], path[1])

    def test_regime_frequencies_accumulate(self) -> None:
        """Test that regime counts cover every generated year."""
        generator = create_return_generator(
            SimulationConfig(method=ReturnMethod.REGIME), self._portfolio()
        )
        rng = np.random.default_rng(3)
        for _ in range(10):
            generator.generate(20, rng)
        assert int(generator.regime_counts.sum()) == 200
        assert sum(generator.regime_frequencies().values()) == pytest.approx(1.0)

    def test_same_seed_same_path(self) -> None:
        """Test reproducibility of every method."""
        for method in ReturnMethod:
            config = SimulationConfig(method=method)
            a = create_return_generator(config, self._portfolio()).generate(
                10, np.random.default_rng(11)
            )
            b = create_return_generator(config, self._portfolio()).generate(
                10, np.random.default_rng(11)
            )
            assert_array_equal(a, b)
