"""
Statistics over the full set of iterations.

Every percentile here goes through :mod:`bbdsim.numerics`, rank 0-100 with
linear interpolation, so terminal values, yearly curves, loan trajectories
and baseline results are all directly comparable.
"""

import logging
from typing import Dict, List, Optional, Sequence

import numpy as np
from numpy.typing import ArrayLike, NDArray
from scipy import stats

from bbdsim import metrics
from bbdsim.numerics import mean, percentile, percentiles, stddev
from bbdsim.simulation.output import (
    PERCENTILE_RANKS,
    EstateAnalysis,
    LeverageDiagnostics,
    MarginCallDistribution,
    MarginCallYearStats,
    PercentileCurves,
    PercentileDistribution,
    ReturnDiagnostics,
    SBLOCTrajectory,
    SellStrategyOutput,
    SellTaxSummary,
    SimulationStatistics,
)

logger = logging.getLogger(__name__)

PATH_COHERENT_RANKS = (10, 25, 50, 75, 90)


def compute_statistics(terminal_values: ArrayLike, initial_value: float) -> SimulationStatistics:
    """
    Mean, median, sample standard deviation and success rate.

    Parameters
    ----------
    terminal_values : array_like
        Net worth per iteration at the horizon.
    initial_value : float
        Starting portfolio value.

    Returns
    -------
    SimulationStatistics
        Summary; ``success_rate`` is a percentage.
    """
    values = np.asarray(terminal_values, dtype=np.float64)
    return SimulationStatistics(
        mean=mean(values),
        median=percentile(values, 50),
        stddev=stddev(values),
        success_rate=metrics.success_rate(values, initial_value),
    )


def percentile_distribution(values: ArrayLike) -> PercentileDistribution:
    return metrics.extract_percentiles(values)


def percentile_curves(
    values: ArrayLike,
    years: Optional[Sequence[int]] = None
) -> PercentileCurves:
    """
    Point-wise percentiles for each column of an (iterations, years) matrix.

    Parameters
    ----------
    values : array_like
        Shape (iterations, T).
    years : sequence of int, optional
        Labels for the columns. Default ``1..T``.

    Returns
    -------
    PercentileCurves
        Five curves of length T.
    """
    matrix = np.asarray(values, dtype=np.float64)
    n_years = matrix.shape[1]
    if years is None:
        years = range(1, n_years + 1)
    bands = percentiles(matrix, PERCENTILE_RANKS, axis=0)
    return PercentileCurves(
        years=np.asarray(list(years), dtype=np.int64),
        p10=bands[0],
        p25=bands[1],
        p50=bands[2],
        p75=bands[3],
        p90=bands[4],
    )


def path_coherent_indices(terminal_values: ArrayLike) -> Dict[int, int]:
    """
    Iteration whose terminal value sits at each diagnostic rank.

    Non-finite terminal values are skipped. Among the ``n`` that remain,
    sorted by terminal value, rank ``p`` picks position
    ``min(floor(p / 100 · n), n - 1)``.
    """
    values = np.asarray(terminal_values, dtype=np.float64)
    finite = np.flatnonzero(np.isfinite(values))
    n = finite.size
    if n == 0:
        return {}
    order = finite[np.argsort(values[finite], kind="stable")]
    return {
        rank: int(order[min(int(np.floor(rank / 100.0 * n)), n - 1)])
        for rank in PATH_COHERENT_RANKS
    }


def margin_call_statistics(
    first_margin_call_year: ArrayLike,
    time_horizon: int
) -> List[MarginCallYearStats]:
    """
    Histogram of first margin calls by year.

    Parameters
    ----------
    first_margin_call_year : array_like
        Per iteration, the 1-based year of the first margin call or -1.
    time_horizon : int
        Number of simulated years.

    Returns
    -------
    list of MarginCallYearStats
        One entry per year 1..T. Probabilities are percentages of all
        iterations, the cumulative one never decreasing.
    """
    first = np.asarray(first_margin_call_year, dtype=np.int64)
    n = max(first.size, 1)
    counts = np.bincount(first[first > 0], minlength=time_horizon + 1)[1:time_horizon + 1]
    cumulative = np.cumsum(counts)
    return [
        MarginCallYearStats(
            year=year + 1,
            count=int(counts[year]),
            probability=float(counts[year]) / n * 100.0,
            cumulative_probability=float(cumulative[year]) / n * 100.0,
        )
        for year in range(time_horizon)
    ]


def sbloc_trajectory(
    loan_balances: ArrayLike,
    cumulative_withdrawals: ArrayLike
) -> SBLOCTrajectory:
    """
    Loan percentile curves and the interest share of the median loan.

    Parameters
    ----------
    loan_balances : array_like
        Year-end loan per iteration, shape (iterations, T).
    cumulative_withdrawals : array_like
        Scheduled withdrawals borrowed by the end of each year, shape (T,).
    """
    loans = percentile_curves(loan_balances)
    withdrawn = np.asarray(cumulative_withdrawals, dtype=np.float64)
    return SBLOCTrajectory(
        loan_balance=loans,
        cumulative_withdrawals=withdrawn,
        cumulative_interest=np.maximum(loans.p50 - withdrawn, 0.0),
    )


def estate_analysis(
    net_terminal_values: ArrayLike,
    final_loan_balances: ArrayLike,
    dividend_taxes_borrowed: ArrayLike,
    initial_value: float,
    capital_gains_rate: float,
    sell_terminal_values: Optional[ArrayLike] = None
) -> EstateAnalysis:
    """
    Compare the median borrowing estate with a selling alternative.

    The borrowing estate is the median net worth. The selling estate is
    the baseline's median terminal value when the baseline ran; otherwise
    it is the median gross portfolio (median net worth plus median loan)
    less capital-gains tax on its gain over ``initial_value``.
    """
    median_net = percentile(net_terminal_values, 50)
    median_loan = percentile(final_loan_balances, 50)
    median_gross = median_net + median_loan

    gains = metrics.embedded_capital_gains(median_gross, initial_value)
    taxes = metrics.tax_if_sold(median_gross, initial_value, capital_gains_rate)
    if sell_terminal_values is not None:
        sell_estate = percentile(sell_terminal_values, 50)
    else:
        sell_estate = median_gross - taxes

    return EstateAnalysis(
        bbd_net_estate=median_net,
        sell_net_estate=sell_estate,
        bbd_advantage=median_net - sell_estate,
        embedded_capital_gains=gains,
        taxes_if_sold=taxes,
        median_dividend_taxes_borrowed=percentile(dividend_taxes_borrowed, 50),
    )


def sell_strategy_output(
    terminal_values: ArrayLike,
    depletion_years: ArrayLike,
    capital_gains_taxes: ArrayLike,
    dividend_taxes: ArrayLike,
    yearly_values: ArrayLike,
    initial_value: float
) -> SellStrategyOutput:
    """
    Summarize the baseline strategy.

    Parameters
    ----------
    terminal_values : array_like
        Baseline value per iteration at the horizon.
    depletion_years : array_like
        1-based depletion year per iteration, -1 if never depleted.
    capital_gains_taxes, dividend_taxes : array_like
        Tax totals per iteration.
    yearly_values : array_like
        Shape (iterations, T + 1), starting with the initial value.
    initial_value : float
        Starting portfolio value.
    """
    terminal = np.asarray(terminal_values, dtype=np.float64)
    depleted = np.asarray(depletion_years, dtype=np.int64) > 0
    cg = np.asarray(capital_gains_taxes, dtype=np.float64)
    div = np.asarray(dividend_taxes, dtype=np.float64)
    n = max(terminal.size, 1)

    yearly = np.asarray(yearly_values, dtype=np.float64)
    return SellStrategyOutput(
        terminal_values=terminal,
        success_rate=metrics.success_rate(terminal, initial_value),
        depletion_probability=float(np.count_nonzero(depleted)) / n * 100.0,
        percentiles=percentile_distribution(terminal),
        taxes=SellTaxSummary(
            median_capital_gains=percentile(cg, 50),
            median_dividend=percentile(div, 50),
            median_total=percentile(cg + div, 50),
        ),
        yearly_percentiles=percentile_curves(yearly, years=range(yearly.shape[1])),
    )


def margin_call_distribution(margin_call_counts: ArrayLike) -> MarginCallDistribution:
    counts = np.asarray(margin_call_counts, dtype=np.int64)
    return MarginCallDistribution(
        zero=int(np.count_nonzero(counts == 0)),
        one=int(np.count_nonzero(counts == 1)),
        two=int(np.count_nonzero(counts == 2)),
        three_or_more=int(np.count_nonzero(counts >= 3)),
        max_calls=int(counts.max()) if counts.size else 0,
    )


def leverage_diagnostics(
    margin_call_counts: ArrayLike,
    haircut_losses: ArrayLike,
    interest_charged: ArrayLike,
    dividend_taxes_borrowed: ArrayLike,
    final_gross_values: ArrayLike,
    first_failure_year: ArrayLike
) -> LeverageDiagnostics:
    """
    Per-run summary of credit line behaviour.

    ``first_failure_year`` holds the 1-based year net worth first reached
    zero, or -1.
    """
    failures = np.asarray(first_failure_year, dtype=np.int64)
    failed = failures[failures > 0]
    n = max(failures.size, 1)
    haircuts = np.asarray(haircut_losses, dtype=np.float64)
    interest = np.asarray(interest_charged, dtype=np.float64)
    return LeverageDiagnostics(
        margin_calls=margin_call_distribution(margin_call_counts),
        median_haircut_loss=percentile(haircuts, 50),
        mean_haircut_loss=mean(haircuts),
        median_interest=percentile(interest, 50),
        mean_interest=mean(interest),
        median_dividend_taxes_borrowed=percentile(dividend_taxes_borrowed, 50),
        median_final_gross_portfolio=percentile(final_gross_values, 50),
        failure_count=int(failed.size),
        failure_rate=float(failed.size) / n * 100.0,
        median_first_failure_year=percentile(failed, 50) if failed.size else None,
    )


def return_diagnostics(portfolio_returns: ArrayLike) -> ReturnDiagnostics:
    """
    Describe the generated portfolio return paths.

    Parameters
    ----------
    portfolio_returns : array_like
        Weighted annual portfolio return, shape (iterations, T).

    Returns
    -------
    ReturnDiagnostics
        Cumulative return percentiles per iteration and moments of the
        pooled annual returns. Skewness and kurtosis are 0.0 for a
        constant sample.
    """
    returns = np.asarray(portfolio_returns, dtype=np.float64)
    growth = np.maximum(1.0 + returns, 0.0)
    cumulative = np.prod(growth, axis=1) - 1.0
    pooled = returns.ravel()

    if pooled.size > 1 and np.ptp(pooled) > 0:
        skewness = float(stats.skew(pooled))
        kurtosis = float(stats.kurtosis(pooled, fisher=True))
    else:
        skewness = 0.0
        kurtosis = 0.0

    return ReturnDiagnostics(
        cumulative_median=percentile(cumulative, 50),
        cumulative_mean=mean(cumulative),
        cumulative_p10=percentile(cumulative, 10),
        cumulative_p90=percentile(cumulative, 90),
        annual_mean=mean(pooled),
        annual_stddev=stddev(pooled),
        annual_skewness=skewness,
        annual_excess_kurtosis=kurtosis,
    )


def count_negative(values: ArrayLike) -> int:
    """Number of negative values, logged when non-zero."""
    arr = np.asarray(values, dtype=np.float64)
    negative = int(np.count_nonzero(arr < 0))
    if negative:
        logger.warning(
            "%d of %d terminal net worth values are negative (min %.0f)",
            negative, arr.size, float(arr.min()),
        )
    return negative


def deflate(values: NDArray[np.float64], deflators: NDArray[np.float64]) -> NDArray[np.float64]:
    """Divide each year column by its price level, broadcasting over rows."""
    return values / deflators
