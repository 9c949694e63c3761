"""
Bootstrap resampling of historical annual returns.

Two schemes are provided:

- Simple bootstrap: each year is an independent uniform draw from the
  historical series.
- Block bootstrap: contiguous blocks are copied from random start
  positions so short-range dependence (momentum, mean reversion) in the
  history carries into the simulated path.

For several assets the same indices are used for every asset, which
preserves the cross-sectional correlation observed in history. Series of
different lengths are aligned on their most recent observations.
"""

import math
from typing import List, Optional, Sequence

import numpy as np
from numpy.typing import ArrayLike, NDArray

from bbdsim.numerics import lag1_autocorrelation

MIN_BLOCK_LENGTH = 3


def optimal_block_length(returns: ArrayLike) -> int:
    """
    Data-driven block length for the block bootstrap.

    Follows the Politis-White style rule::

        g = 2|ρ1| / (1 - ρ1^2)
        b = ceil((1.5 n)^(1/3) * max(g, 0.01)^(1/3))

    where ρ1 is the lag-1 autocorrelation, then clamps ``b`` to
    ``[3, max(3, n // 4)]``.

    Parameters
    ----------
    returns : array_like
        Historical returns, length n.

    Returns
    -------
    int
        Block length, at least 3.
    """
    arr = np.asarray(returns, dtype=np.float64)
    n = arr.size
    upper = max(MIN_BLOCK_LENGTH, n // 4)
    if n < 2:
        return MIN_BLOCK_LENGTH

    rho = min(abs(lag1_autocorrelation(arr)), 0.99)
    g = 2.0 * rho / (1.0 - rho ** 2)
    block = math.ceil((1.5 * n) ** (1.0 / 3.0) * max(g, 0.01) ** (1.0 / 3.0))
    return int(min(max(block, MIN_BLOCK_LENGTH), upper))


def bootstrap_indices(
    n_observations: int,
    target_length: int,
    rng: np.random.Generator
) -> NDArray[np.int64]:
    """Independent uniform indices into a series of ``n_observations``."""
    if n_observations < 1:
        raise ValueError("Cannot bootstrap from an empty series")
    return rng.integers(0, n_observations, size=target_length)


def block_bootstrap_indices(
    n_observations: int,
    target_length: int,
    block_size: int,
    rng: np.random.Generator
) -> NDArray[np.int64]:
    """
    Indices for a block-bootstrapped path.

    Parameters
    ----------
    n_observations : int
        Length of the historical series.
    target_length : int
        Length of the generated path.
    block_size : int
        Requested block length; reduced to ``n_observations`` if larger.
    rng : np.random.Generator
        Random stream. One draw per block.

    Returns
    -------
    NDArray[np.int64]
        Exactly ``target_length`` indices; the last block is truncated.
    """
    if n_observations < 1:
        raise ValueError("Cannot bootstrap from an empty series")
    if block_size < 1:
        raise ValueError(f"block_size must be positive. Got {block_size}")

    block = min(block_size, n_observations)
    indices = np.empty(target_length, dtype=np.int64)
    filled = 0
    while filled < target_length:
        start = int(rng.integers(0, n_observations - block + 1))
        take = min(block, target_length - filled)
        indices[filled:filled + take] = np.arange(start, start + take)
        filled += take
    return indices


def simple_bootstrap(
    returns: ArrayLike,
    target_length: int,
    rng: np.random.Generator
) -> NDArray[np.float64]:
    """
    Resample a series with replacement, one independent draw per year.

    Every value in the output is an element of ``returns``.
    """
    arr = np.asarray(returns, dtype=np.float64)
    return arr[bootstrap_indices(arr.size, target_length, rng)]


def block_bootstrap(
    returns: ArrayLike,
    target_length: int,
    rng: np.random.Generator,
    block_size: Optional[int] = None
) -> NDArray[np.float64]:
    """
    Resample a series in contiguous blocks.

    Parameters
    ----------
    returns : array_like
        Historical returns.
    target_length : int
        Length of the generated path.
    rng : np.random.Generator
        Random stream.
    block_size : int, optional
        Block length. Default :func:`optimal_block_length`.

    Returns
    -------
    NDArray[np.float64]
        Path of exactly ``target_length`` historical values.
    """
    arr = np.asarray(returns, dtype=np.float64)
    if block_size is None:
        block_size = optimal_block_length(arr)
    return arr[block_bootstrap_indices(arr.size, target_length, block_size, rng)]


def align_histories(histories: Sequence[ArrayLike]) -> NDArray[np.float64]:
    """
    Stack histories into one array aligned on the most recent observation.

    Parameters
    ----------
    histories : sequence of array_like
        One return series per asset.

    Returns
    -------
    NDArray[np.float64]
        Shape (B, n) where n is the shortest series length.
    """
    arrays: List[NDArray[np.float64]] = [
        np.asarray(h, dtype=np.float64) for h in histories
    ]
    if not arrays:
        raise ValueError("At least one return history is required")
    n = min(a.size for a in arrays)
    if n == 0:
        raise ValueError("Cannot bootstrap from an empty series")
    return np.vstack([a[a.size - n:] for a in arrays])
