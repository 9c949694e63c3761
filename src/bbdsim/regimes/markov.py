"""
Year-over-year regime transitions.

A simulated path visits the four market regimes. The regime for the next
year depends only on the current one, through a row of the transition
matrix:

    s_t ∈ {bull, bear, crash, recovery}
    P(s_{t+1} = j | s_t = i) = P_{ij},    Σ_j P_{ij} = 1

The next regime is drawn with a single uniform u against the cumulative
row: the first j with u < Σ_{k≤j} P_{ik}. Paths start in bull unless told
otherwise.

Two fixed matrices ship with the package. The historical one reflects
long-run US equity behaviour. The conservative one keeps markets in bear
and crash years for longer.
"""

from typing import Sequence, Tuple, Union

import numpy as np
from numpy.typing import NDArray

from bbdsim.defaults import CONSERVATIVE_TRANSITION_MATRIX, HISTORICAL_TRANSITION_MATRIX
from bbdsim.domain import REGIMES, CalibrationMode

_ROW_TOLERANCE = 1e-10


class MarkovChain:
    """
    Regime transition model.

    Attributes
    ----------
    labels : tuple of str
        Regime names in matrix order.
    n_regimes : int
        Number of regimes K.
    transition_matrix : NDArray[np.float64]
        Row-stochastic matrix of shape (K, K).
    stationary_dist : NDArray[np.float64]
        Long-run share of years spent in each regime.
    """

    def __init__(
        self,
        transition_matrix: NDArray[np.float64],
        labels: Sequence[str] = REGIMES,
        validate: bool = True
    ) -> None:
        """
        Parameters
        ----------
        transition_matrix : NDArray[np.float64]
            Matrix with P[i, j] the probability of moving from regime i to j.
        labels : sequence of str, optional
            Regime names. Default bull, bear, crash, recovery.
        validate : bool, optional
            Check shape, label count and row sums. Default True.

        Raises
        ------
        ValueError
            If the matrix is not a square row-stochastic matrix matching
            the labels.
        """
        self.transition_matrix = np.asarray(transition_matrix, dtype=np.float64)
        self.labels: Tuple[str, ...] = tuple(labels)
        self.n_regimes: int = len(self.labels)

        if validate:
            self._validate_parameters()

        self._cumulative = np.cumsum(self.transition_matrix, axis=1)
        self.stationary_dist = self._solve_stationary()

    def _validate_parameters(self) -> None:
        P = self.transition_matrix
        if P.ndim != 2 or P.shape[0] != P.shape[1]:
            raise ValueError(f"Transition matrix must be square, got shape {P.shape}")
        if P.shape[0] != self.n_regimes:
            raise ValueError(
                f"{P.shape[0]}x{P.shape[0]} matrix needs {P.shape[0]} regime labels, "
                f"got {self.n_regimes}: {self.labels}"
            )
        if np.any(P < 0.0) or np.any(P > 1.0):
            raise ValueError("Transition probabilities must lie in [0, 1]")

        bad_rows = np.flatnonzero(np.abs(P.sum(axis=1) - 1.0) > _ROW_TOLERANCE)
        if bad_rows.size:
            sums = ", ".join(
                f"{self.labels[i]}={P[i].sum():.6f}" for i in bad_rows
            )
            raise ValueError(f"Each transition row must sum to 1, got {sums}")

    def _solve_stationary(self) -> NDArray[np.float64]:
        """
        Solve π (P - I) = 0 subject to Σ π = 1.

        The normalisation replaces one redundant balance equation, which
        keeps the system square.
        """
        K = self.transition_matrix.shape[0]
        A = self.transition_matrix.T - np.eye(K)
        A[-1, :] = 1.0
        b = np.zeros(K)
        b[-1] = 1.0
        try:
            pi = np.linalg.solve(A, b)
        except np.linalg.LinAlgError:
            # Reducible chains have no unique solution; use least squares.
            pi = np.linalg.lstsq(A, b, rcond=None)[0]
        pi = np.clip(pi, 0.0, None)
        return pi / pi.sum()

    def index_of(self, regime: Union[str, int]) -> int:
        """Matrix position of a regime label (indices pass through)."""
        if isinstance(regime, (int, np.integer)):
            if not 0 <= regime < self.n_regimes:
                raise ValueError(f"Regime index {regime} out of range for {self.labels}")
            return int(regime)
        if regime not in self.labels:
            raise ValueError(f"Unknown regime {regime!r}, expected one of {self.labels}")
        return self.labels.index(regime)

    def probability(self, from_regime: Union[str, int], to_regime: Union[str, int]) -> float:
        """P(next = to_regime | current = from_regime)."""
        return float(self.transition_matrix[self.index_of(from_regime), self.index_of(to_regime)])

    def next_regime(self, current: int, rng: np.random.Generator) -> int:
        """
        Draw the regime for the following year.

        Parameters
        ----------
        current : int
            Current regime index.
        rng : np.random.Generator
            Random stream; consumes exactly one uniform.

        Returns
        -------
        int
            Next regime index.
        """
        u = rng.random()
        # Rounding can leave the last cumulative entry a hair below 1.
        return min(
            int(np.searchsorted(self._cumulative[current], u, side="right")),
            self.n_regimes - 1,
        )

    def simulate_path(
        self,
        n_years: int,
        rng: np.random.Generator,
        initial_regime: Union[str, int] = 0
    ) -> NDArray[np.int64]:
        """
        Regime index for each of ``n_years`` years.

        The first year is ``initial_regime`` (bull by default); each later
        year follows from the one before.
        """
        path = np.empty(n_years, dtype=np.int64)
        if n_years == 0:
            return path
        path[0] = self.index_of(initial_regime)
        for year in range(1, n_years):
            path[year] = self.next_regime(int(path[year - 1]), rng)
        return path

    def expected_duration(self, regime: Union[str, int]) -> float:
        """
        Mean spell length in a regime, in years.

        A spell in regime i ends with probability 1 - P_ii each year, so its
        length is geometric with mean 1 / (1 - P_ii).

        Raises
        ------
        ValueError
            If the regime never exits (P_ii = 1).
        """
        i = self.index_of(regime)
        stay = self.transition_matrix[i, i]
        if stay >= 1.0:
            raise ValueError(
                f"Regime {self.labels[i]!r} is absorbing; its spells never end"
            )
        return 1.0 / (1.0 - stay)

    def expected_durations(self) -> NDArray[np.float64]:
        """Mean spell length for every regime, in matrix order."""
        return np.array([self.expected_duration(i) for i in range(self.n_regimes)])

    def __repr__(self) -> str:
        """String representation."""
        shares = ", ".join(
            f"{label}={share:.3f}" for label, share in zip(self.labels, self.stationary_dist)
        )
        return f"MarkovChain({shares})"


def transition_matrix_for(mode: CalibrationMode) -> NDArray[np.float64]:
    """Fixed transition matrix for a calibration mode."""
    if CalibrationMode(mode) is CalibrationMode.CONSERVATIVE:
        return np.array(CONSERVATIVE_TRANSITION_MATRIX, dtype=np.float64)
    return np.array(HISTORICAL_TRANSITION_MATRIX, dtype=np.float64)


def create_regime_chain(mode: CalibrationMode = CalibrationMode.HISTORICAL) -> MarkovChain:
    """
    Four-regime chain for a calibration mode.

    Parameters
    ----------
    mode : CalibrationMode
        ``historical`` or ``conservative``.

    Returns
    -------
    MarkovChain
        Validated chain over bull, bear, crash and recovery.
    """
    return MarkovChain(transition_matrix_for(mode))
