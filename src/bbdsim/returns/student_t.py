"""
Fat-tailed annual returns from a skewed Student-t distribution.

Each asset draws a standardized Student-t variate

    t = z / sqrt(χ²_ν / ν),    z ~ N(0, 1),    χ²_ν = Σ_{k=1}^{ν} z_k²

applies a skew adjustment

    t' = t + s (t² - 1)

and maps it to a return through the empirical moments of the asset's
history:

    r = μ + t' σ λ + b

where ν, s, λ (volatility scaling) and b (survivorship bias) depend on
the asset class. Returns are clamped to [-0.99, 10] so a single draw can
neither wipe out more than 99% of a holding nor produce absurd gains.

With several assets the skewed variates are correlated through the
Cholesky factor of the correlation matrix before scaling.
"""

from typing import List, Optional, Sequence

import numpy as np
from numpy.typing import ArrayLike, NDArray

from bbdsim.defaults import FAT_TAIL_PARAMS, MAX_ANNUAL_RETURN, MIN_ANNUAL_RETURN
from bbdsim.domain import AssetClass, FatTailParams
from bbdsim.numerics import mean, stddev
from bbdsim.returns.covariance import CovarianceModel


def student_t_variate(
    degrees_of_freedom: int,
    rng: np.random.Generator
) -> float:
    """
    One Student-t variate built from standard normals.

    Parameters
    ----------
    degrees_of_freedom : int
        Number of squared normals in the chi-square term (ν ≥ 1).
    rng : np.random.Generator
        Random stream. Draws ν + 1 normals.

    Returns
    -------
    float
        Student-t distributed value.
    """
    if degrees_of_freedom < 1:
        raise ValueError(
            f"degrees_of_freedom must be at least 1. Got {degrees_of_freedom}"
        )
    chi_square = float(np.sum(rng.standard_normal(degrees_of_freedom) ** 2))
    z = float(rng.standard_normal())
    if chi_square <= 0.0:
        return z
    return z / np.sqrt(chi_square / degrees_of_freedom)


def skew_adjust(t: ArrayLike, skewness: ArrayLike) -> NDArray[np.float64]:
    """Apply ``t + s (t² - 1)``; zero skew returns ``t`` unchanged."""
    t = np.asarray(t, dtype=np.float64)
    return t + np.asarray(skewness, dtype=np.float64) * (t ** 2 - 1.0)


class FatTailReturnModel:
    """
    Correlated skewed Student-t returns for a set of assets.

    Attributes
    ----------
    n_assets : int
        Number of assets (B)
    means : NDArray[np.float64]
        Empirical mean return per asset, shape (B,)
    stddevs : NDArray[np.float64]
        Empirical population standard deviation per asset, shape (B,)
    params : list of FatTailParams
        Shape parameters per asset
    """

    def __init__(
        self,
        historical_returns: Sequence[ArrayLike],
        asset_classes: Sequence[AssetClass],
        correlation_matrix: Optional[NDArray[np.float64]] = None,
        validate: bool = True
    ) -> None:
        """
        Initialize fat-tail model from history.

        Parameters
        ----------
        historical_returns : sequence of array_like
            One historical series per asset.
        asset_classes : sequence of AssetClass
            Asset class per asset, selects the shape parameters.
        correlation_matrix : NDArray[np.float64], optional
            Correlation matrix, shape (B, B). Default identity.
        validate : bool, optional
            If True, check dimensions and non-empty histories.

        Raises
        ------
        ValueError
            If dimensions disagree or a history is empty.
        """
        self.histories: List[NDArray[np.float64]] = [
            np.asarray(h, dtype=np.float64) for h in historical_returns
        ]
        self.asset_classes = [AssetClass(c) for c in asset_classes]
        self.n_assets = len(self.histories)

        if correlation_matrix is None:
            correlation_matrix = np.eye(self.n_assets)
        self.correlation_matrix = np.asarray(correlation_matrix, dtype=np.float64)

        if validate:
            self._validate_parameters()

        self.params: List[FatTailParams] = [
            FAT_TAIL_PARAMS[c] for c in self.asset_classes
        ]
        self.means = np.array([mean(h) for h in self.histories])
        self.stddevs = np.array([stddev(h, sample=False) for h in self.histories])
        self.covariance = CovarianceModel(self.correlation_matrix, validate=False)

    def _validate_parameters(self) -> None:
        """
        Validate dimensions.

        Checks:
        - At least one asset
        - One asset class per history
        - Correlation matrix shape (B, B)
        - No empty history
        """
        if self.n_assets == 0:
            raise ValueError("At least one return history is required")

        if len(self.asset_classes) != self.n_assets:
            raise ValueError(
                f"asset_classes length {len(self.asset_classes)} doesn't match "
                f"number of histories {self.n_assets}"
            )

        if self.correlation_matrix.shape != (self.n_assets, self.n_assets):
            raise ValueError(
                f"correlation_matrix must have shape ({self.n_assets}, {self.n_assets}). "
                f"Got {self.correlation_matrix.shape}"
            )

        for i, history in enumerate(self.histories):
            if history.size == 0:
                raise ValueError(f"Return history {i} is empty")

    def draw(self, rng: np.random.Generator) -> NDArray[np.float64]:
        """
        One year of correlated fat-tailed returns.

        Parameters
        ----------
        rng : np.random.Generator
            Random stream.

        Returns
        -------
        NDArray[np.float64]
            Returns per asset, shape (B,), each in [-0.99, 10].
        """
        raw = np.array([
            student_t_variate(p.degrees_of_freedom, rng) for p in self.params
        ])
        skew = np.array([p.skewness for p in self.params])
        scaling = np.array([p.volatility_scaling for p in self.params])
        bias = np.array([p.survivorship_bias for p in self.params])

        t = self.covariance.correlate(skew_adjust(raw, skew))
        with np.errstate(over="ignore", invalid="ignore"):
            returns = self.means + t * self.stddevs * scaling + bias
        # Overflowing moments give inf - inf; NaN would pass through np.clip.
        returns = np.nan_to_num(
            returns, nan=0.0, posinf=MAX_ANNUAL_RETURN, neginf=MIN_ANNUAL_RETURN
        )
        return np.clip(returns, MIN_ANNUAL_RETURN, MAX_ANNUAL_RETURN)

    def generate(
        self,
        n_years: int,
        rng: np.random.Generator
    ) -> NDArray[np.float64]:
        """
        Return path for every asset.

        Returns
        -------
        NDArray[np.float64]
            Shape (B, n_years).
        """
        path = np.empty((self.n_assets, n_years), dtype=np.float64)
        for year in range(n_years):
            path[:, year] = self.draw(rng)
        return path

    def describe(self) -> List[dict]:
        """Per-asset parameters for diagnostics."""
        return [
            {
                "asset_class": c.value,
                "degrees_of_freedom": p.degrees_of_freedom,
                "skewness": p.skewness,
                "volatility_scaling": p.volatility_scaling,
                "survivorship_bias": p.survivorship_bias,
                "mean": float(m),
                "stddev": float(s),
            }
            for c, p, m, s in zip(self.asset_classes, self.params, self.means, self.stddevs)
        ]

    def __repr__(self) -> str:
        """String representation."""
        return f"FatTailReturnModel(n_assets={self.n_assets})"


def fat_tail_return(
    historical_returns: ArrayLike,
    asset_class: AssetClass,
    rng: np.random.Generator
) -> float:
    """
    Single fat-tailed annual return for one asset.

    Parameters
    ----------
    historical_returns : array_like
        Asset history used for mean and standard deviation.
    asset_class : AssetClass
        Selects the shape parameters.
    rng : np.random.Generator
        Random stream.

    Returns
    -------
    float
        Return in [-0.99, 10].
    """
    model = FatTailReturnModel([historical_returns], [asset_class])
    return float(model.draw(rng)[0])
