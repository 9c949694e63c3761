"""
Descriptive statistics used throughout the engine.

Percentiles use one convention everywhere: rank ``p`` on the 0-100 scale,
linear interpolation at index ``(p / 100) * (n - 1)`` of the sorted values.
"""

from typing import Sequence

import numpy as np
from numpy.typing import ArrayLike, NDArray


def mean(values: ArrayLike) -> float:
    """Arithmetic mean; 0.0 for empty input."""
    arr = np.asarray(values, dtype=np.float64)
    if arr.size == 0:
        return 0.0
    return float(np.mean(arr))


def variance(values: ArrayLike, sample: bool = True) -> float:
    """
    Variance of a sequence.

    Parameters
    ----------
    values : array_like
        Observations.
    sample : bool, optional
        If True (default), divide by ``n - 1``; otherwise by ``n``.

    Returns
    -------
    float
        Variance, or 0.0 when fewer than two observations are given.
    """
    arr = np.asarray(values, dtype=np.float64)
    if arr.size < 2:
        return 0.0
    return float(np.var(arr, ddof=1 if sample else 0))


def stddev(values: ArrayLike, sample: bool = True) -> float:
    """Standard deviation; see :func:`variance` for conventions."""
    return float(np.sqrt(variance(values, sample=sample)))


def percentile(values: ArrayLike, p: float) -> float:
    """
    Percentile with linear interpolation between order statistics.

    Parameters
    ----------
    values : array_like
        Observations in any order.
    p : float
        Rank on the 0-100 scale. Values outside the range are clamped.

    Returns
    -------
    float
        Interpolated percentile, 0.0 for empty input and the single value
        for one-element input.
    """
    arr = np.asarray(values, dtype=np.float64).ravel()
    if arr.size == 0:
        return 0.0
    if arr.size == 1:
        return float(arr[0])

    rank = min(max(float(p), 0.0), 100.0)
    sorted_values = np.sort(arr)
    index = (rank / 100.0) * (arr.size - 1)
    lower = int(np.floor(index))
    upper = min(lower + 1, arr.size - 1)
    fraction = index - lower
    return float(
        sorted_values[lower] + fraction * (sorted_values[upper] - sorted_values[lower])
    )


def percentiles(
    matrix: ArrayLike,
    ranks: Sequence[float],
    axis: int = 0,
) -> NDArray[np.float64]:
    """
    Percentiles of many columns at once.

    Uses the same interpolation as :func:`percentile`.

    Parameters
    ----------
    matrix : array_like
        2-D array of observations.
    ranks : sequence of float
        Ranks on the 0-100 scale.
    axis : int, optional
        Axis holding the observations. Default 0.

    Returns
    -------
    NDArray[np.float64]
        Array of shape ``(len(ranks), ...)`` with the reduced axis removed.
    """
    arr = np.asarray(matrix, dtype=np.float64)
    clamped = np.clip(np.asarray(ranks, dtype=np.float64), 0.0, 100.0)
    if arr.shape[axis] == 0:
        out_shape = (len(clamped),) + tuple(np.delete(arr.shape, axis))
        return np.zeros(out_shape)
    return np.percentile(arr, clamped, axis=axis, method="linear")


def lag1_autocorrelation(values: ArrayLike) -> float:
    """
    First-order autocorrelation of a series.

    Returns 0.0 for fewer than two observations or a constant series.
    """
    arr = np.asarray(values, dtype=np.float64)
    if arr.size < 2:
        return 0.0
    centered = arr - arr.mean()
    denominator = float(np.dot(centered, centered))
    if denominator == 0.0:
        return 0.0
    return float(np.dot(centered[:-1], centered[1:]) / denominator)
