"""
Regime-switching return paths.

Every asset shares one regime path. Within a year, returns are drawn from
the current regime's normal distribution with cross-asset correlation,
then the regime transitions:

    z_t ~ N(0, I),    c_t = L z_t
    r_{a,t} = μ_a(s_t) + σ_a(s_t) c_{a,t} - b
    s_{t+1} ~ P(· | s_t)

where L is the Cholesky factor of the correlation matrix and b is the
survivorship-bias adjustment for the calibration mode.
"""

from typing import Optional, Sequence, Tuple

import numpy as np
from numpy.typing import NDArray

from bbdsim.defaults import (
    CONSERVATIVE_SURVIVORSHIP_BIAS,
    HISTORICAL_SURVIVORSHIP_BIAS,
    MIN_ANNUAL_RETURN,
)
from bbdsim.domain import CalibrationMode, RegimeParamsMap
from bbdsim.regimes.markov import MarkovChain, create_regime_chain
from bbdsim.returns.covariance import CovarianceModel


def survivorship_bias_for(mode: CalibrationMode) -> float:
    """Downward return adjustment applied to every regime draw."""
    if CalibrationMode(mode) is CalibrationMode.CONSERVATIVE:
        return CONSERVATIVE_SURVIVORSHIP_BIAS
    return HISTORICAL_SURVIVORSHIP_BIAS


class RegimeSwitchingModel:
    """
    Correlated multi-asset returns driven by a shared regime chain.

    Attributes
    ----------
    n_assets : int
        Number of assets (B)
    means : NDArray[np.float64]
        Regime-conditional means, shape (K, B)
    stddevs : NDArray[np.float64]
        Regime-conditional standard deviations, shape (K, B)
    chain : MarkovChain
        Regime dynamics
    survivorship_bias : float
        Subtracted from every draw
    """

    def __init__(
        self,
        asset_params: Sequence[RegimeParamsMap],
        correlation_matrix: Optional[NDArray[np.float64]] = None,
        chain: Optional[MarkovChain] = None,
        survivorship_bias: float = HISTORICAL_SURVIVORSHIP_BIAS,
        initial_regime: str = "bull",
        validate: bool = True
    ) -> None:
        """
        Initialize regime-switching model.

        Parameters
        ----------
        asset_params : sequence of RegimeParamsMap
            Per-asset parameters for every regime.
        correlation_matrix : NDArray[np.float64], optional
            Correlation matrix, shape (B, B). Default identity.
        chain : MarkovChain, optional
            Regime chain. Default historical four-regime chain.
        survivorship_bias : float, optional
            Downward adjustment on every draw. Default 1.5%.
        initial_regime : str, optional
            Regime of the first simulated year. Default bull.
        validate : bool, optional
            If True, validate dimensions.

        Raises
        ------
        ValueError
            If dimensions disagree.
        """
        self.n_assets = len(asset_params)
        self.chain = chain if chain is not None else create_regime_chain()

        if correlation_matrix is None:
            correlation_matrix = np.eye(self.n_assets)
        self.covariance = CovarianceModel(
            np.asarray(correlation_matrix, dtype=np.float64), validate=False
        )

        self.means = np.array(
            [[p[regime].mean for p in asset_params] for regime in self.chain.labels],
            dtype=np.float64,
        ).reshape(self.chain.n_regimes, self.n_assets)
        self.stddevs = np.array(
            [[p[regime].stddev for p in asset_params] for regime in self.chain.labels],
            dtype=np.float64,
        ).reshape(self.chain.n_regimes, self.n_assets)

        self.survivorship_bias = float(survivorship_bias)
        self.initial_regime = self.chain.index_of(initial_regime)

        if validate:
            self._validate_parameters()

    def _validate_parameters(self) -> None:
        """
        Validate model parameters.

        Checks:
        - At least one asset
        - Correlation matrix shape (B, B)
        - Non-negative standard deviations
        """
        if self.n_assets == 0:
            raise ValueError("At least one asset is required")

        if self.covariance.correlation_matrix.shape != (self.n_assets, self.n_assets):
            raise ValueError(
                f"correlation_matrix must have shape ({self.n_assets}, {self.n_assets}). "
                f"Got {self.covariance.correlation_matrix.shape}"
            )

        if np.any(self.stddevs < 0):
            raise ValueError("Regime standard deviations must be non-negative")

    def generate(
        self,
        n_years: int,
        rng: np.random.Generator
    ) -> Tuple[NDArray[np.float64], NDArray[np.int64]]:
        """
        Generate one path of returns and regimes.

        Parameters
        ----------
        n_years : int
            Path length.
        rng : np.random.Generator
            Random stream. Per year: B normals, then one uniform for the
            transition.

        Returns
        -------
        returns : NDArray[np.float64]
            Shape (B, n_years), floored at -99%.
        regimes : NDArray[np.int64]
            Regime index per year, shape (n_years,).
        """
        returns = np.empty((self.n_assets, n_years), dtype=np.float64)
        regimes = np.empty(n_years, dtype=np.int64)
        regime = self.initial_regime

        for year in range(n_years):
            regimes[year] = regime
            shocks = self.covariance.correlated_normals(rng)
            returns[:, year] = (
                self.means[regime] + self.stddevs[regime] * shocks - self.survivorship_bias
            )
            regime = self.chain.next_regime(regime, rng)

        np.maximum(returns, MIN_ANNUAL_RETURN, out=returns)
        return returns, regimes

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"RegimeSwitchingModel(n_assets={self.n_assets}, "
            f"regimes={self.chain.labels}, bias={self.survivorship_bias})"
        )


def create_regime_model(
    asset_params: Sequence[RegimeParamsMap],
    correlation_matrix: Optional[NDArray[np.float64]] = None,
    mode: CalibrationMode = CalibrationMode.HISTORICAL
) -> RegimeSwitchingModel:
    """
    Regime model with the transition matrix and bias for ``mode``.
    """
    return RegimeSwitchingModel(
        asset_params,
        correlation_matrix=correlation_matrix,
        chain=create_regime_chain(mode),
        survivorship_bias=survivorship_bias_for(mode),
    )
