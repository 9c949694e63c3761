"""
Return generators behind a common interface.

Every generator produces, for one iteration, a matrix of annual returns
with one row per asset and one column per simulated year. All randomness
comes from the ``np.random.Generator`` passed to :meth:`generate`, so a
fixed seed and a fixed call order reproduce a run exactly.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
from numpy.typing import ArrayLike, NDArray

from bbdsim.config import PortfolioConfig, SimulationConfig
from bbdsim.domain import CalibrationMode, ReturnMethod
from bbdsim.regimes.calibration import (
    CalibrationResult,
    RegimeValidationResult,
    calibrate_with_validation,
)
from bbdsim.regimes.switching import RegimeSwitchingModel, create_regime_model
from bbdsim.returns.bootstrap import (
    align_histories,
    block_bootstrap_indices,
    bootstrap_indices,
    optimal_block_length,
)
from bbdsim.returns.student_t import FatTailReturnModel

logger = logging.getLogger(__name__)


class ReturnGenerator(ABC):
    """
    Source of per-asset annual return paths.

    Attributes
    ----------
    method : ReturnMethod
        Generation method implemented by the subclass.
    n_assets : int
        Number of assets (rows of each generated path).
    """

    method: ReturnMethod

    def __init__(self, n_assets: int) -> None:
        if n_assets < 1:
            raise ValueError(f"n_assets must be positive. Got {n_assets}")
        self.n_assets = n_assets

    @abstractmethod
    def generate(self, n_years: int, rng: np.random.Generator) -> NDArray[np.float64]:
        """
        Generate one iteration's returns.

        Parameters
        ----------
        n_years : int
            Path length.
        rng : np.random.Generator
            Random stream.

        Returns
        -------
        NDArray[np.float64]
            Shape (n_assets, n_years).
        """

    def describe(self) -> Dict[str, Any]:
        """Parameters worth reporting in run diagnostics."""
        return {"method": self.method.value}

    def __repr__(self) -> str:
        """String representation."""
        return f"{type(self).__name__}(n_assets={self.n_assets})"


class SimpleBootstrapGenerator(ReturnGenerator):
    """
    Independent yearly draws from history, one shared index for all assets.
    """

    method = ReturnMethod.SIMPLE

    def __init__(self, histories: Sequence[ArrayLike]) -> None:
        self.history = align_histories(histories)
        super().__init__(self.history.shape[0])

    def generate(self, n_years: int, rng: np.random.Generator) -> NDArray[np.float64]:
        indices = bootstrap_indices(self.history.shape[1], n_years, rng)
        return self.history[:, indices]


class BlockBootstrapGenerator(ReturnGenerator):
    """
    Contiguous historical blocks, one shared start index for all assets.

    Parameters
    ----------
    histories : sequence of array_like
        One return series per asset.
    block_size : int, optional
        Block length. Default is the optimal length of the equal-weight
        average of the aligned histories.
    """

    method = ReturnMethod.BLOCK

    def __init__(
        self,
        histories: Sequence[ArrayLike],
        block_size: Optional[int] = None
    ) -> None:
        self.history = align_histories(histories)
        super().__init__(self.history.shape[0])
        if block_size is None:
            block_size = optimal_block_length(self.history.mean(axis=0))
        self.block_size = int(block_size)

    def generate(self, n_years: int, rng: np.random.Generator) -> NDArray[np.float64]:
        indices = block_bootstrap_indices(
            self.history.shape[1], n_years, self.block_size, rng
        )
        return self.history[:, indices]

    def describe(self) -> Dict[str, Any]:
        return {"method": self.method.value, "block_size": self.block_size}


class RegimeSwitchingGenerator(ReturnGenerator):
    """
    Regime-switching paths with per-asset calibrated parameters.

    Keeps a running count of simulated years spent in each regime.
    """

    method = ReturnMethod.REGIME

    def __init__(
        self,
        model: RegimeSwitchingModel,
        calibrations: Sequence[CalibrationResult]
    ) -> None:
        super().__init__(model.n_assets)
        self.model = model
        self.calibrations: List[CalibrationResult] = list(calibrations)
        self.regime_counts = np.zeros(model.chain.n_regimes, dtype=np.int64)

    def generate(self, n_years: int, rng: np.random.Generator) -> NDArray[np.float64]:
        returns, regimes = self.model.generate(n_years, rng)
        self.regime_counts += np.bincount(regimes, minlength=self.model.chain.n_regimes)
        return returns

    def regime_frequencies(self) -> Dict[str, float]:
        total = int(self.regime_counts.sum())
        if total == 0:
            return {label: 0.0 for label in self.model.chain.labels}
        return {
            label: float(count) / total
            for label, count in zip(self.model.chain.labels, self.regime_counts)
        }

    def describe(self) -> Dict[str, Any]:
        return {
            "method": self.method.value,
            "survivorship_bias": self.model.survivorship_bias,
            "stationary_distribution": dict(
                zip(self.model.chain.labels, self.model.chain.stationary_dist.tolist())
            ),
            "expected_durations": dict(
                zip(self.model.chain.labels, self.model.chain.expected_durations().tolist())
            ),
        }


class FatTailGenerator(ReturnGenerator):
    """Correlated skewed Student-t returns."""

    method = ReturnMethod.FAT_TAIL

    def __init__(self, model: FatTailReturnModel) -> None:
        super().__init__(model.n_assets)
        self.model = model

    def generate(self, n_years: int, rng: np.random.Generator) -> NDArray[np.float64]:
        return self.model.generate(n_years, rng)

    def describe(self) -> Dict[str, Any]:
        return {"method": self.method.value, "assets": self.model.describe()}


def calibrate_portfolio(
    portfolio: PortfolioConfig,
    mode: CalibrationMode
) -> List[CalibrationResult]:
    """
    Regime parameters for every asset.

    Explicit ``regime_params`` on an asset are used as given; otherwise the
    asset's history is calibrated for ``mode``.

    Raises
    ------
    CalibrationError
        If an asset without explicit parameters has fewer than 10
        historical observations.
    """
    results = []
    for asset in portfolio.assets:
        if asset.regime_params is not None:
            results.append(CalibrationResult(
                params=dict(asset.regime_params),
                validation=RegimeValidationResult(is_valid=True, issues=[]),
                asset_id=asset.asset_id,
            ))
        else:
            results.append(
                calibrate_with_validation(asset.returns_array, mode, asset.asset_id)
            )
    return results


def create_return_generator(
    config: SimulationConfig,
    portfolio: PortfolioConfig
) -> ReturnGenerator:
    """
    Build the generator selected by ``config.method``.

    Parameters
    ----------
    config : SimulationConfig
        Run configuration.
    portfolio : PortfolioConfig
        Assets, histories and correlation.

    Returns
    -------
    ReturnGenerator
        Ready-to-use generator.
    """
    histories = [asset.returns_array for asset in portfolio.assets]
    method = config.method

    if method is ReturnMethod.SIMPLE:
        generator: ReturnGenerator = SimpleBootstrapGenerator(histories)
    elif method is ReturnMethod.BLOCK:
        generator = BlockBootstrapGenerator(histories, config.block_size)
    elif method is ReturnMethod.REGIME:
        calibrations = calibrate_portfolio(portfolio, config.calibration_mode)
        model = create_regime_model(
            [c.params for c in calibrations],
            portfolio.correlation,
            config.calibration_mode,
        )
        generator = RegimeSwitchingGenerator(model, calibrations)
    elif method is ReturnMethod.FAT_TAIL:
        generator = FatTailGenerator(FatTailReturnModel(
            histories,
            [asset.asset_class for asset in portfolio.assets],
            portfolio.correlation,
        ))
    else:
        raise ValueError(f"Unsupported return method {method!r}")

    logger.debug("Created %r for %d assets", generator, portfolio.n_assets)
    return generator
