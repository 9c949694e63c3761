"""
Correlation handling for multi-asset return generation.

Correlated draws are produced by scaling independent variates with the
lower Cholesky factor L of the correlation matrix Ω:

    x = L z,    Ω = L L^T,    z ~ iid

The factorization here never raises. Diagonal pivots are clamped at zero
so that rank-deficient input (perfectly correlated assets) and slightly
non-positive-semi-definite input both yield a usable factor.

Covariance for portfolio-level aggregation follows:
    Σ = diag(σ) Ω diag(σ)
"""

from typing import Optional

import numpy as np
from numpy.typing import NDArray

from bbdsim.defaults import CHOLESKY_EPSILON


def clamped_cholesky(
    matrix: NDArray[np.float64],
    eps: float = CHOLESKY_EPSILON
) -> NDArray[np.float64]:
    """
    Lower Cholesky factor with clamped diagonal pivots.

    Parameters
    ----------
    matrix : NDArray[np.float64]
        Symmetric matrix, shape (B, B).
    eps : float, optional
        Pivots at or below this value are treated as zero and the
        corresponding column below the diagonal is zeroed.

    Returns
    -------
    NDArray[np.float64]
        Lower triangular L, shape (B, B). For a positive definite input
        L L^T reproduces the matrix.
    """
    matrix = np.asarray(matrix, dtype=np.float64)
    n = matrix.shape[0]
    L = np.zeros((n, n), dtype=np.float64)

    for j in range(n):
        pivot = matrix[j, j] - np.dot(L[j, :j], L[j, :j])
        L[j, j] = np.sqrt(max(0.0, pivot))
        for i in range(j + 1, n):
            if L[j, j] <= eps:
                L[i, j] = 0.0
            else:
                L[i, j] = (matrix[i, j] - np.dot(L[i, :j], L[j, :j])) / L[j, j]

    return L


class CovarianceModel:
    """
    Correlation matrix with optional marginal volatilities.

    Attributes
    ----------
    correlation_matrix : NDArray[np.float64]
        Correlation matrix Ω, shape (B, B).
    volatilities : NDArray[np.float64]
        Marginal volatilities σ, shape (B,). Ones when not given.
    n_assets : int
        Number of assets (B).
    """

    def __init__(
        self,
        correlation_matrix: NDArray[np.float64],
        volatilities: Optional[NDArray[np.float64]] = None,
        validate: bool = True
    ) -> None:
        """
        Initialize covariance model.

        Parameters
        ----------
        correlation_matrix : NDArray[np.float64]
            Correlation matrix Ω, shape (B, B).
        volatilities : NDArray[np.float64], optional
            Marginal volatilities σ, shape (B,). Default all ones.
        validate : bool, optional
            If True, check shapes and non-negative volatilities.

        Raises
        ------
        ValueError
            If shapes are inconsistent or a volatility is negative.
        """
        self.correlation_matrix = np.asarray(correlation_matrix, dtype=np.float64)
        self.n_assets: int = self.correlation_matrix.shape[0]

        if volatilities is None:
            volatilities = np.ones(self.n_assets)
        self.volatilities = np.asarray(volatilities, dtype=np.float64)

        if validate:
            self._validate_parameters()

        self._covariance: Optional[NDArray[np.float64]] = None
        self._cholesky: Optional[NDArray[np.float64]] = None

    def _validate_parameters(self) -> None:
        """
        Validate shapes and volatilities.

        Positive definiteness is not required; see :func:`clamped_cholesky`.
        """
        if self.correlation_matrix.shape != (self.n_assets, self.n_assets):
            raise ValueError(
                f"Correlation matrix must be square. Got shape {self.correlation_matrix.shape}"
            )

        if self.volatilities.shape != (self.n_assets,):
            raise ValueError(
                f"volatilities shape {self.volatilities.shape} doesn't match "
                f"(n_assets={self.n_assets},)"
            )

        if np.any(self.volatilities < 0):
            raise ValueError(
                f"All volatilities must be non-negative. Got {self.volatilities}"
            )

    @property
    def covariance(self) -> NDArray[np.float64]:
        """
        Get covariance matrix (computed lazily).

        Returns
        -------
        NDArray[np.float64]
            Covariance matrix Σ, shape (B, B)
        """
        if self._covariance is None:
            self._covariance = (
                self.correlation_matrix
                * np.outer(self.volatilities, self.volatilities)
            )
        return self._covariance

    @property
    def cholesky(self) -> NDArray[np.float64]:
        """
        Clamped Cholesky factor of the correlation matrix (computed lazily).

        Returns
        -------
        NDArray[np.float64]
            Lower triangular L with Ω ≈ L L^T, shape (B, B)
        """
        if self._cholesky is None:
            self._cholesky = clamped_cholesky(self.correlation_matrix)
        return self._cholesky

    def correlate(self, z: NDArray[np.float64]) -> NDArray[np.float64]:
        """
        Impose the correlation structure on independent variates.

        Parameters
        ----------
        z : NDArray[np.float64]
            Independent draws, shape (B,) or (B, T).

        Returns
        -------
        NDArray[np.float64]
            ``L @ z`` with the same shape as ``z``.
        """
        return self.cholesky @ z

    def correlated_normals(
        self,
        rng: np.random.Generator,
        n_steps: Optional[int] = None
    ) -> NDArray[np.float64]:
        """
        Draw correlated standard normals.

        Parameters
        ----------
        rng : np.random.Generator
            Random stream.
        n_steps : int, optional
            If given, draw ``n_steps`` vectors at once.

        Returns
        -------
        NDArray[np.float64]
            Shape (B,) or (B, n_steps).
        """
        size = self.n_assets if n_steps is None else (self.n_assets, n_steps)
        return self.correlate(rng.standard_normal(size))

    def sample_mvn(
        self,
        mean: NDArray[np.float64],
        n_samples: int,
        rng: np.random.Generator
    ) -> NDArray[np.float64]:
        """
        Sample from multivariate normal with this covariance.

        Parameters
        ----------
        mean : NDArray[np.float64]
            Mean vector, shape (B,)
        n_samples : int
            Number of samples
        rng : np.random.Generator
            Random stream

        Returns
        -------
        NDArray[np.float64]
            Samples, shape (n_samples, B)
        """
        z = rng.standard_normal((n_samples, self.n_assets))
        L = self.cholesky * self.volatilities[:, None]
        return mean + z @ L.T

    def portfolio_volatility(self, weights: NDArray[np.float64]) -> float:
        """
        Volatility of a weighted portfolio, ``sqrt(w^T Σ w)``.

        Negative variance from rounding is floored at zero.
        """
        weights = np.asarray(weights, dtype=np.float64)
        variance = float(weights @ self.covariance @ weights)
        return float(np.sqrt(max(0.0, variance)))

    def __repr__(self) -> str:
        """String representation."""
        return f"CovarianceModel(n_assets={self.n_assets})"


def create_identity_covariance(
    n_assets: int,
    volatility: float = 1.0
) -> CovarianceModel:
    """
    Create covariance model with identity correlation and fixed volatility.

    Parameters
    ----------
    n_assets : int
        Number of assets
    volatility : float
        Marginal volatility for all assets

    Returns
    -------
    CovarianceModel
        Identity correlation, fixed volatility
    """
    corr = np.eye(n_assets)
    vols = np.full(n_assets, volatility)
    return CovarianceModel(corr, vols, validate=False)
