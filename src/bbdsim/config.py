"""
Configuration objects for portfolios, strategies and simulation runs.

All configurations are frozen dataclasses validated in ``__post_init__``.
Invalid input raises :class:`~bbdsim.errors.ConfigurationError` before any
iteration runs.

Example
-------
>>> portfolio = PortfolioConfig(
...     assets=(AssetConfig("SPY", 1.0, historical_returns=returns),),
...     correlation_matrix=[[1.0]],
... )
>>> config = SimulationConfig(iterations=5000, time_horizon=30,
...                           sbloc=SBLOCConfig(), seed="retire-2040")
"""

import hashlib
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple, Union

import numpy as np
from numpy.typing import ArrayLike, NDArray
from scipy.linalg import eigvalsh

from bbdsim import defaults
from bbdsim.domain import (
    REGIMES,
    AssetClass,
    CalibrationMode,
    RegimeParams,
    ReturnMethod,
    RunMode,
)
from bbdsim.errors import ConfigurationError

logger = logging.getLogger(__name__)

Seed = Union[int, str]


def _require(condition: bool, message: str) -> None:
    if not condition:
        raise ConfigurationError(message)


def _is_rate(value: float) -> bool:
    return bool(np.isfinite(value)) and 0.0 <= value < 1.0


@dataclass(frozen=True)
class AssetConfig:
    """
    One holding in the portfolio.

    Attributes
    ----------
    asset_id : str
        Identifier used in diagnostics and log messages.
    weight : float
        Portfolio weight in [0, 1].
    historical_returns : tuple of float
        Annual returns as decimals (0.12 for 12%). Must not be empty.
    asset_class : AssetClass
        Selects fat-tail parameters. Default equity index.
    regime_params : dict, optional
        Explicit per-regime parameters; skips calibration when given.
    """

    asset_id: str
    weight: float
    historical_returns: Tuple[float, ...]
    asset_class: AssetClass = AssetClass.EQUITY_INDEX
    regime_params: Optional[Dict[str, RegimeParams]] = None

    def __post_init__(self) -> None:
        raw = np.asarray(self.historical_returns, dtype=np.float64).ravel()
        returns = tuple(float(r) for r in raw)
        object.__setattr__(self, "historical_returns", returns)
        object.__setattr__(self, "asset_class", AssetClass(self.asset_class))

        _require(
            len(returns) > 0,
            f"Asset {self.asset_id!r} has an empty historical return series",
        )
        _require(
            bool(np.all(np.isfinite(returns))),
            f"Asset {self.asset_id!r} has non-finite historical returns",
        )
        _require(
            bool(np.all(np.asarray(returns) > -1.0)),
            f"Asset {self.asset_id!r} has a historical return at or below -100%",
        )
        _require(
            np.isfinite(self.weight) and 0.0 <= self.weight <= 1.0,
            f"Asset {self.asset_id!r} weight must be in [0, 1]. Got {self.weight}",
        )

        if self.regime_params is not None:
            missing = [r for r in REGIMES if r not in self.regime_params]
            _require(
                not missing,
                f"Asset {self.asset_id!r} regime_params missing regimes {missing}",
            )
            for regime in REGIMES:
                _require(
                    self.regime_params[regime].stddev >= 0,
                    f"Asset {self.asset_id!r} {regime} stddev must be non-negative",
                )

    @property
    def returns_array(self) -> NDArray[np.float64]:
        """Historical returns as a float array."""
        return np.asarray(self.historical_returns, dtype=np.float64)


@dataclass(frozen=True)
class PortfolioConfig:
    """
    Assets and their correlation structure.

    Weights must sum to 1 and the correlation matrix must be square with
    one row per asset, unit diagonal, symmetric and positive semi-definite.
    """

    assets: Tuple[AssetConfig, ...]
    correlation_matrix: Tuple[Tuple[float, ...], ...]

    def __post_init__(self) -> None:
        assets = tuple(self.assets)
        object.__setattr__(self, "assets", assets)
        _require(len(assets) > 0, "Portfolio must contain at least one asset")

        corr = np.asarray(self.correlation_matrix, dtype=np.float64)
        n = len(assets)
        _require(
            corr.ndim == 2 and corr.shape[0] == corr.shape[1],
            f"Correlation matrix must be square. Got shape {corr.shape}",
        )
        _require(
            corr.shape == (n, n),
            f"Correlation matrix shape {corr.shape} doesn't match "
            f"(n_assets={n}, n_assets={n})",
        )
        _require(bool(np.all(np.isfinite(corr))), "Correlation matrix must be finite")
        _require(
            np.allclose(np.diag(corr), 1.0, atol=defaults.CORRELATION_TOLERANCE),
            f"Correlation matrix diagonal must be 1. Got {np.diag(corr)}",
        )
        _require(
            np.allclose(corr, corr.T, atol=defaults.CORRELATION_TOLERANCE),
            "Correlation matrix must be symmetric",
        )
        _require(
            bool(np.all(np.abs(corr) <= 1.0 + defaults.CORRELATION_TOLERANCE)),
            "Correlation coefficients must be in [-1, 1]",
        )
        min_eigenvalue = float(eigvalsh(corr)[0])
        _require(
            min_eigenvalue >= -defaults.CORRELATION_TOLERANCE * max(1, n),
            f"Correlation matrix must be positive semi-definite. "
            f"Smallest eigenvalue {min_eigenvalue:.3e}",
        )
        object.__setattr__(
            self, "correlation_matrix", tuple(tuple(float(x) for x in row) for row in corr)
        )

        total = sum(a.weight for a in assets)
        _require(
            abs(total - 1.0) <= defaults.WEIGHT_SUM_TOLERANCE,
            f"Asset weights must sum to 1. Got {total}",
        )

        ids = [a.asset_id for a in assets]
        _require(len(set(ids)) == len(ids), f"Asset ids must be unique. Got {ids}")

    @property
    def n_assets(self) -> int:
        return len(self.assets)

    @property
    def weights(self) -> NDArray[np.float64]:
        return np.array([a.weight for a in self.assets], dtype=np.float64)

    @property
    def correlation(self) -> NDArray[np.float64]:
        return np.array(self.correlation_matrix, dtype=np.float64)

    @property
    def asset_ids(self) -> Tuple[str, ...]:
        return tuple(a.asset_id for a in self.assets)


@dataclass(frozen=True)
class SBLOCConfig:
    """
    Securities-backed line of credit terms.

    Attributes
    ----------
    interest_rate : float
        Annual interest rate charged on the outstanding balance.
    max_ltv : float
        Loan-to-value ratio above which collateral is force-sold; also the
        ratio the sale restores.
    maintenance_margin : float
        Loan-to-value ratio at or above which a margin call is flagged.
    liquidation_haircut : float
        Fraction of sale proceeds lost in a forced liquidation.
    annual_withdrawal : float
        Amount borrowed in the first withdrawal year.
    annual_withdrawal_raise : float
        Yearly growth of the withdrawal.
    withdrawal_start_year : int
        Simulation year (0-based) of the first withdrawal.
    initial_loan_balance : float
        Balance already drawn when the simulation starts.
    compounding : str
        ``"annual"`` or ``"monthly"``.
    """

    interest_rate: float = defaults.DEFAULT_SBLOC_INTEREST_RATE
    max_ltv: float = defaults.DEFAULT_MAX_LTV
    maintenance_margin: float = defaults.DEFAULT_MAINTENANCE_MARGIN
    liquidation_haircut: float = defaults.DEFAULT_LIQUIDATION_HAIRCUT
    annual_withdrawal: float = defaults.DEFAULT_ANNUAL_WITHDRAWAL
    annual_withdrawal_raise: float = defaults.DEFAULT_WITHDRAWAL_RAISE
    withdrawal_start_year: int = 0
    initial_loan_balance: float = 0.0
    compounding: str = "annual"

    def __post_init__(self) -> None:
        _require(
            np.isfinite(self.interest_rate) and self.interest_rate >= 0,
            f"interest_rate must be non-negative. Got {self.interest_rate}",
        )
        _require(
            0.0 < self.max_ltv < 1.0,
            f"max_ltv must be in (0, 1). Got {self.max_ltv}",
        )
        _require(
            0.0 < self.maintenance_margin <= self.max_ltv,
            f"maintenance_margin must be in (0, max_ltv]. Got {self.maintenance_margin}",
        )
        _require(
            _is_rate(self.liquidation_haircut),
            f"liquidation_haircut must be in [0, 1). Got {self.liquidation_haircut}",
        )
        _require(
            np.isfinite(self.annual_withdrawal) and self.annual_withdrawal >= 0,
            f"annual_withdrawal must be non-negative. Got {self.annual_withdrawal}",
        )
        _require(
            np.isfinite(self.annual_withdrawal_raise) and self.annual_withdrawal_raise > -1,
            f"annual_withdrawal_raise must exceed -1. Got {self.annual_withdrawal_raise}",
        )
        _require(
            self.withdrawal_start_year >= 0,
            f"withdrawal_start_year must be non-negative. Got {self.withdrawal_start_year}",
        )
        _require(
            np.isfinite(self.initial_loan_balance) and self.initial_loan_balance >= 0,
            f"initial_loan_balance must be non-negative. Got {self.initial_loan_balance}",
        )
        _require(
            self.compounding in ("annual", "monthly"),
            f"compounding must be 'annual' or 'monthly'. Got {self.compounding!r}",
        )

    @property
    def monthly(self) -> bool:
        return self.compounding == "monthly"


@dataclass(frozen=True)
class SellStrategyConfig:
    """
    Baseline strategy that sells holdings to fund each withdrawal.

    The withdrawal schedule is shared with the credit line when one is
    configured; ``annual_withdrawal`` and ``annual_withdrawal_raise``
    override it.
    """

    cost_basis_ratio: float = defaults.DEFAULT_COST_BASIS_RATIO
    capital_gains_rate: float = defaults.DEFAULT_CAPITAL_GAINS_RATE
    dividend_yield: float = defaults.DEFAULT_DIVIDEND_YIELD
    dividend_tax_rate: float = defaults.DEFAULT_DIVIDEND_TAX_RATE
    annual_withdrawal: Optional[float] = None
    annual_withdrawal_raise: Optional[float] = None

    def __post_init__(self) -> None:
        _require(
            np.isfinite(self.cost_basis_ratio) and 0.0 <= self.cost_basis_ratio <= 1.0,
            f"cost_basis_ratio must be in [0, 1]. Got {self.cost_basis_ratio}",
        )
        for name in ("capital_gains_rate", "dividend_yield", "dividend_tax_rate"):
            value = getattr(self, name)
            _require(_is_rate(value), f"{name} must be in [0, 1). Got {value}")
        if self.annual_withdrawal is not None:
            _require(
                self.annual_withdrawal >= 0,
                f"annual_withdrawal must be non-negative. Got {self.annual_withdrawal}",
            )
        if self.annual_withdrawal_raise is not None:
            _require(
                self.annual_withdrawal_raise > -1,
                f"annual_withdrawal_raise must exceed -1. Got {self.annual_withdrawal_raise}",
            )


@dataclass(frozen=True)
class TaxModelingConfig:
    """
    Dividend taxation while borrowing and estate tax assumptions.

    When enabled and the account is taxable, the tax on each year's dividends
    is borrowed on the credit line instead of being paid from holdings.
    """

    enabled: bool = True
    tax_advantaged: bool = False
    dividend_yield: float = defaults.DEFAULT_DIVIDEND_YIELD
    dividend_tax_rate: float = defaults.DEFAULT_DIVIDEND_TAX_RATE
    capital_gains_rate: float = defaults.DEFAULT_CAPITAL_GAINS_RATE

    def __post_init__(self) -> None:
        for name in ("dividend_yield", "dividend_tax_rate", "capital_gains_rate"):
            value = getattr(self, name)
            _require(_is_rate(value), f"{name} must be in [0, 1). Got {value}")

    @property
    def borrows_dividend_tax(self) -> bool:
        return self.enabled and not self.tax_advantaged


@dataclass(frozen=True)
class WithdrawalChapter:
    """A later phase that cuts the withdrawal by ``reduction_percent``."""

    years_after_start: int
    reduction_percent: float

    def __post_init__(self) -> None:
        _require(
            self.years_after_start >= 1,
            f"years_after_start must be at least 1. Got {self.years_after_start}",
        )
        _require(
            0.0 <= self.reduction_percent <= 100.0,
            f"reduction_percent must be in [0, 100]. Got {self.reduction_percent}",
        )


@dataclass(frozen=True)
class WithdrawalChapters:
    """
    Up to two withdrawal reductions, applied cumulatively.

    A 20% cut after 10 years followed by a 25% cut after 20 years leaves
    0.8 * 0.75 = 60% of the scheduled withdrawal.
    """

    chapter2: Optional[WithdrawalChapter] = None
    chapter3: Optional[WithdrawalChapter] = None

    def __post_init__(self) -> None:
        if self.chapter2 is not None and self.chapter3 is not None:
            _require(
                self.chapter3.years_after_start > self.chapter2.years_after_start,
                "chapter3 must start after chapter2",
            )

    def multiplier(self, years_since_start: int) -> float:
        """
        Fraction of the scheduled withdrawal paid after ``years_since_start``.

        Parameters
        ----------
        years_since_start : int
            Years elapsed since the first withdrawal.

        Returns
        -------
        float
            Product of ``1 - reduction/100`` over every chapter reached.
        """
        factor = 1.0
        for chapter in (self.chapter2, self.chapter3):
            if chapter is not None and years_since_start >= chapter.years_after_start:
                factor *= 1.0 - chapter.reduction_percent / 100.0
        return factor


@dataclass(frozen=True)
class SimulationConfig:
    """
    Parameters of one Monte Carlo run.

    The run mode follows from which strategy configs are present: a credit
    line alone gives a leveraged run, a sell strategy alone a baseline run,
    both a comparison, and neither a plain portfolio projection.
    """

    iterations: int = defaults.DEFAULT_ITERATIONS
    time_horizon: int = defaults.DEFAULT_TIME_HORIZON
    initial_value: float = 1_000_000.0
    method: ReturnMethod = ReturnMethod.SIMPLE
    calibration_mode: CalibrationMode = CalibrationMode.HISTORICAL
    block_size: Optional[int] = None
    inflation_rate: float = defaults.DEFAULT_INFLATION_RATE
    inflation_adjusted: bool = False
    seed: Optional[Seed] = None
    batch_size: int = defaults.DEFAULT_BATCH_SIZE
    sbloc: Optional[SBLOCConfig] = None
    sell_strategy: Optional[SellStrategyConfig] = None
    tax_modeling: Optional[TaxModelingConfig] = None
    withdrawal_chapters: Optional[WithdrawalChapters] = None
    progress_bar: bool = False

    def __post_init__(self) -> None:
        try:
            object.__setattr__(self, "method", ReturnMethod(self.method))
            object.__setattr__(
                self, "calibration_mode", CalibrationMode(self.calibration_mode)
            )
        except ValueError as exc:
            raise ConfigurationError(str(exc)) from exc

        _require(self.iterations >= 1, f"iterations must be positive. Got {self.iterations}")
        _require(
            self.time_horizon >= 1,
            f"time_horizon must be positive. Got {self.time_horizon}",
        )
        _require(
            np.isfinite(self.initial_value) and self.initial_value > 0,
            f"initial_value must be positive. Got {self.initial_value}",
        )
        _require(self.batch_size >= 1, f"batch_size must be positive. Got {self.batch_size}")
        if self.block_size is not None:
            _require(
                self.block_size >= 1,
                f"block_size must be positive. Got {self.block_size}",
            )
        _require(
            np.isfinite(self.inflation_rate) and self.inflation_rate > -1,
            f"inflation_rate must exceed -1. Got {self.inflation_rate}",
        )
        _require(
            self.seed is None or isinstance(self.seed, (int, str)),
            f"seed must be an int or str. Got {type(self.seed).__name__}",
        )

    @property
    def run_mode(self) -> RunMode:
        if self.sbloc is not None and self.sell_strategy is not None:
            return RunMode.COMPARISON
        if self.sbloc is not None:
            return RunMode.LEVERAGED
        if self.sell_strategy is not None:
            return RunMode.BASELINE
        return RunMode.PORTFOLIO


def seed_to_int(seed: Seed) -> int:
    """
    Convert a seed to a non-negative integer.

    Strings are hashed with SHA-256 and truncated to 64 bits, so the same
    string always yields the same stream.

    Parameters
    ----------
    seed : int or str
        User-supplied seed.

    Returns
    -------
    int
        Non-negative integer accepted by :func:`numpy.random.default_rng`.
    """
    if isinstance(seed, str):
        digest = hashlib.sha256(seed.encode("utf-8")).digest()
        return int.from_bytes(digest[:8], "big")
    if seed < 0:
        raise ConfigurationError(f"Integer seed must be non-negative. Got {seed}")
    return int(seed)


def create_rng(seed: Optional[Seed]) -> np.random.Generator:
    """
    Create the single random stream for a run.

    Without a seed the generator draws OS entropy; the entropy is logged so
    the run can be reproduced.
    """
    if seed is None:
        seed_sequence = np.random.SeedSequence()
        logger.info("No seed supplied; using entropy %d", seed_sequence.entropy)
        return np.random.default_rng(seed_sequence)
    return np.random.default_rng(seed_to_int(seed))


def make_portfolio(
    assets: Sequence[AssetConfig],
    correlation_matrix: Optional[ArrayLike] = None,
) -> PortfolioConfig:
    """
    Build a portfolio, defaulting to an identity correlation matrix.
    """
    if correlation_matrix is None:
        correlation_matrix = np.eye(len(assets))
    return PortfolioConfig(assets=tuple(assets), correlation_matrix=correlation_matrix)
