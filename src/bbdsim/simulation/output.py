"""
Result records produced by a simulation run.

All records are immutable. Monetary values are in nominal dollars unless
the run was inflation-adjusted, in which case every recorded portfolio,
net-worth and loan value is deflated to today's dollars.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np
from numpy.typing import NDArray

from bbdsim.domain import RunMode

PERCENTILE_RANKS = (10.0, 25.0, 50.0, 75.0, 90.0)


@dataclass(frozen=True)
class PercentileDistribution:
    """The five reported percentiles of one distribution."""

    p10: float
    p25: float
    p50: float
    p75: float
    p90: float


@dataclass(frozen=True)
class YearlyPercentiles:
    """Percentiles across iterations at one year."""

    year: int
    p10: float
    p25: float
    p50: float
    p75: float
    p90: float


@dataclass(frozen=True)
class PercentileCurves:
    """
    Point-wise percentiles across iterations for a sequence of years.

    Attributes
    ----------
    years : NDArray[np.int64]
        Year labels, shape (T,).
    p10, p25, p50, p75, p90 : NDArray[np.float64]
        Percentile at each year, shape (T,). At every year
        ``p10 <= p25 <= p50 <= p75 <= p90``.
    """

    years: NDArray[np.int64]
    p10: NDArray[np.float64]
    p25: NDArray[np.float64]
    p50: NDArray[np.float64]
    p75: NDArray[np.float64]
    p90: NDArray[np.float64]

    def __len__(self) -> int:
        return len(self.years)

    def at(self, index: int) -> YearlyPercentiles:
        return YearlyPercentiles(
            year=int(self.years[index]),
            p10=float(self.p10[index]),
            p25=float(self.p25[index]),
            p50=float(self.p50[index]),
            p75=float(self.p75[index]),
            p90=float(self.p90[index]),
        )

    def rows(self) -> List[YearlyPercentiles]:
        return [self.at(i) for i in range(len(self))]


@dataclass(frozen=True)
class SimulationStatistics:
    """
    Summary of terminal values.

    ``success_rate`` is the percentage (0-100) of iterations whose terminal
    value is strictly greater than the initial value.
    """

    mean: float
    median: float
    stddev: float
    success_rate: float


@dataclass(frozen=True)
class SBLOCTrajectory:
    """
    Credit line balance over time.

    Attributes
    ----------
    loan_balance : PercentileCurves
        Loan percentiles for years 1..T.
    cumulative_withdrawals : NDArray[np.float64]
        Scheduled withdrawals borrowed by the end of each year.
    cumulative_interest : NDArray[np.float64]
        Median loan minus cumulative withdrawals, floored at zero.
    """

    loan_balance: PercentileCurves
    cumulative_withdrawals: NDArray[np.float64]
    cumulative_interest: NDArray[np.float64]


@dataclass(frozen=True)
class MarginCallYearStats:
    """
    First margin calls in one year.

    ``probability`` and ``cumulative_probability`` are percentages of all
    iterations.
    """

    year: int
    count: int
    probability: float
    cumulative_probability: float


@dataclass(frozen=True)
class EstateAnalysis:
    """
    Simplified comparison of what heirs receive.

    Attributes
    ----------
    bbd_net_estate : float
        Median net worth of the borrowing strategy (step-up in basis
        erases embedded gains).
    sell_net_estate : float
        Median baseline terminal value when the baseline ran, otherwise
        the median gross portfolio minus tax on its embedded gains.
    bbd_advantage : float
        ``bbd_net_estate - sell_net_estate``.
    embedded_capital_gains : float
        Median gross portfolio minus the initial value, floored at zero.
    taxes_if_sold : float
        Capital-gains tax on ``embedded_capital_gains``.
    median_dividend_taxes_borrowed : float
        Median total dividend tax borrowed per iteration.
    """

    bbd_net_estate: float
    sell_net_estate: float
    bbd_advantage: float
    embedded_capital_gains: float
    taxes_if_sold: float
    median_dividend_taxes_borrowed: float


@dataclass(frozen=True)
class SellTaxSummary:
    median_capital_gains: float
    median_dividend: float
    median_total: float


@dataclass(frozen=True)
class SellStrategyOutput:
    """
    Baseline results over the same return paths.

    ``success_rate`` and ``depletion_probability`` are percentages.
    """

    terminal_values: NDArray[np.float64]
    success_rate: float
    depletion_probability: float
    percentiles: PercentileDistribution
    taxes: SellTaxSummary
    yearly_percentiles: PercentileCurves


@dataclass(frozen=True)
class MarginCallDistribution:
    """How many iterations saw 0, 1, 2 or 3+ margin-call years."""

    zero: int
    one: int
    two: int
    three_or_more: int
    max_calls: int


@dataclass(frozen=True)
class LeverageDiagnostics:
    margin_calls: MarginCallDistribution
    median_haircut_loss: float
    mean_haircut_loss: float
    median_interest: float
    mean_interest: float
    median_dividend_taxes_borrowed: float
    median_final_gross_portfolio: float
    failure_count: int
    failure_rate: float
    median_first_failure_year: Optional[float]


@dataclass(frozen=True)
class ReturnDiagnostics:
    """
    Distribution of generated portfolio returns.

    ``cumulative_*`` describe the total return per iteration over the
    horizon; ``annual_skewness`` and ``annual_excess_kurtosis`` describe
    all simulated annual returns pooled together.
    """

    cumulative_median: float
    cumulative_mean: float
    cumulative_p10: float
    cumulative_p90: float
    annual_mean: float
    annual_stddev: float
    annual_skewness: float
    annual_excess_kurtosis: float


@dataclass(frozen=True)
class SimulationDiagnostics:
    """
    Internal detail useful for validating a run.

    ``path_coherent_indices`` maps a percentile rank to the iteration whose
    terminal value sits at that rank, so a whole path can be inspected
    rather than a point-wise curve.
    """

    generator: Dict[str, Any]
    returns: ReturnDiagnostics
    path_coherent_indices: Dict[int, int]
    negative_terminal_count: int
    leverage: Optional[LeverageDiagnostics] = None
    regime_calibrations: List[Dict[str, Any]] = field(default_factory=list)
    regime_frequencies: Dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class SimulationOutput:
    """
    Everything a run produces.

    Attributes
    ----------
    run_mode : RunMode
        Which strategies were simulated.
    terminal_values : NDArray[np.float64]
        Net worth per iteration at the horizon, shape (iterations,).
    yearly_percentiles : PercentileCurves
        Point-wise net-worth percentiles for years 1..T.
    statistics : SimulationStatistics
        Summary of ``terminal_values``.
    sbloc_trajectory, margin_call_stats, estate_analysis
        Present for leveraged and comparison runs.
    sell_strategy
        Present for baseline and comparison runs.
    diagnostics
        Always present.
    """

    run_mode: RunMode
    iterations: int
    time_horizon: int
    initial_value: float
    terminal_values: NDArray[np.float64]
    yearly_percentiles: PercentileCurves
    statistics: SimulationStatistics
    diagnostics: SimulationDiagnostics
    sbloc_trajectory: Optional[SBLOCTrajectory] = None
    margin_call_stats: Optional[List[MarginCallYearStats]] = None
    estate_analysis: Optional[EstateAnalysis] = None
    sell_strategy: Optional[SellStrategyOutput] = None
