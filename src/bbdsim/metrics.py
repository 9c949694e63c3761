"""
Summary metrics derived from simulated terminal values.

Growth is reported as compound annual growth rate,

    CAGR = (V_T / V_0)^(1/T) - 1

floored at -100% when the terminal value is not positive. Estate helpers
compare handing down an appreciated, leveraged portfolio (cost basis steps
up at death) against selling it and paying capital-gains tax.
"""

from dataclasses import dataclass

import numpy as np
from numpy.typing import ArrayLike, NDArray

from bbdsim.defaults import DEFAULT_CAPITAL_GAINS_RATE, DEFAULT_ESTATE_EXEMPTION
from bbdsim.numerics import mean, percentile, stddev
from bbdsim.simulation.output import PERCENTILE_RANKS, PercentileDistribution, SimulationOutput


def calculate_cagr(start_value: float, end_value: float, years: float) -> float:
    """
    Compound annual growth rate.

    Parameters
    ----------
    start_value : float
        Initial value.
    end_value : float
        Value after ``years``.
    years : float
        Holding period.

    Returns
    -------
    float
        NaN for a non-positive period or start value, -1.0 when the end
        value is zero or negative, otherwise the annualized rate.
    """
    if years <= 0 or start_value <= 0:
        return float("nan")
    if end_value <= 0:
        return -1.0
    return float((end_value / start_value) ** (1.0 / years) - 1.0)


def calculate_mean_cagr(start_value: float, terminal_values: ArrayLike, years: float) -> float:
    """CAGR of the mean terminal value; NaN when there are no values."""
    values = np.asarray(terminal_values, dtype=np.float64)
    if values.size == 0:
        return float("nan")
    return calculate_cagr(start_value, mean(values), years)


def annualized_returns(
    terminal_values: ArrayLike,
    initial_value: float,
    years: float
) -> NDArray[np.float64]:
    """Per-iteration CAGR, -1.0 for iterations that ended at or below zero."""
    values = np.asarray(terminal_values, dtype=np.float64)
    return np.array(
        [calculate_cagr(initial_value, v, years) for v in values], dtype=np.float64
    )


def calculate_annualized_volatility(returns: ArrayLike) -> float:
    """Sample standard deviation of annualized returns; 0.0 below two values."""
    return stddev(returns)


def success_rate(terminal_values: ArrayLike, initial_value: float) -> float:
    """Percentage of iterations ending strictly above ``initial_value``."""
    values = np.asarray(terminal_values, dtype=np.float64)
    if values.size == 0:
        return 0.0
    return float(np.count_nonzero(values > initial_value)) / values.size * 100.0


def extract_percentiles(values: ArrayLike) -> PercentileDistribution:
    """The 10/25/50/75/90th percentiles; all zero for empty input."""
    arr = np.asarray(values, dtype=np.float64)
    p10, p25, p50, p75, p90 = (percentile(arr, rank) for rank in PERCENTILE_RANKS)
    return PercentileDistribution(p10=p10, p25=p25, p50=p50, p75=p75, p90=p90)


@dataclass(frozen=True)
class MetricsSummary:
    """
    Headline numbers for a run.

    ``cagr`` is the growth rate of the median terminal value and
    ``annualized_volatility`` the dispersion of per-iteration CAGRs.
    """

    cagr: float
    annualized_volatility: float
    success_rate: float
    percentiles: PercentileDistribution


def summarize(output: SimulationOutput) -> MetricsSummary:
    """
    Compute headline metrics from a finished run.

    Parameters
    ----------
    output : SimulationOutput
        Result of :func:`bbdsim.run_simulation`.

    Returns
    -------
    MetricsSummary
        CAGR of the median, volatility of annualized returns, success rate
        and terminal percentiles.
    """
    distribution = extract_percentiles(output.terminal_values)
    per_iteration = annualized_returns(
        output.terminal_values, output.initial_value, output.time_horizon
    )
    return MetricsSummary(
        cagr=calculate_cagr(output.initial_value, distribution.p50, output.time_horizon),
        annualized_volatility=calculate_annualized_volatility(per_iteration),
        success_rate=output.statistics.success_rate,
        percentiles=distribution,
    )


@dataclass(frozen=True)
class SalaryEquivalent:
    """Pre-tax salary that nets the same cash as a tax-free loan draw."""

    annual_withdrawal: float
    salary_equivalent: float
    effective_tax_rate: float
    tax_savings: float


def salary_equivalent(annual_withdrawal: float, effective_tax_rate: float) -> SalaryEquivalent:
    """
    Gross salary needed to match ``annual_withdrawal`` of borrowed income.

    Parameters
    ----------
    annual_withdrawal : float
        Cash drawn from the credit line per year.
    effective_tax_rate : float
        Income tax rate on the salary alternative.

    Returns
    -------
    SalaryEquivalent
        ``W / (1 - rate)`` and the implied tax saving. A zero or negative
        withdrawal yields zeros; a rate of 100% or more yields infinity.
    """
    if annual_withdrawal <= 0:
        return SalaryEquivalent(0.0, 0.0, effective_tax_rate, 0.0)
    if effective_tax_rate <= 0:
        return SalaryEquivalent(annual_withdrawal, annual_withdrawal, 0.0, 0.0)
    if effective_tax_rate >= 1:
        return SalaryEquivalent(annual_withdrawal, np.inf, effective_tax_rate, np.inf)

    salary = annual_withdrawal / (1.0 - effective_tax_rate)
    return SalaryEquivalent(
        annual_withdrawal=annual_withdrawal,
        salary_equivalent=salary,
        effective_tax_rate=effective_tax_rate,
        tax_savings=salary - annual_withdrawal,
    )


def embedded_capital_gains(portfolio_value: float, cost_basis: float) -> float:
    return max(0.0, portfolio_value - cost_basis)


def tax_if_sold(
    portfolio_value: float,
    cost_basis: float,
    capital_gains_rate: float = DEFAULT_CAPITAL_GAINS_RATE
) -> float:
    """Capital-gains tax due if the whole portfolio were sold."""
    return embedded_capital_gains(portfolio_value, cost_basis) * capital_gains_rate


@dataclass(frozen=True)
class EstateBreakdown:
    """
    What a leveraged estate is worth to heirs.

    Attributes
    ----------
    net_estate : float
        Portfolio value minus the outstanding loan.
    embedded_capital_gains : float
        Unrealized gain erased by the step-up in basis.
    stepped_up_basis_savings : float
        Tax avoided on ``embedded_capital_gains``.
    estate_tax_exemption : float
        Exemption assumed for reporting; estate tax itself is not modeled.
    """

    terminal_portfolio_value: float
    terminal_loan_balance: float
    net_estate: float
    embedded_capital_gains: float
    stepped_up_basis_savings: float
    estate_tax_exemption: float


def estate_breakdown(
    portfolio_value: float,
    loan_balance: float,
    cost_basis: float,
    capital_gains_rate: float = DEFAULT_CAPITAL_GAINS_RATE,
    estate_tax_exemption: float = DEFAULT_ESTATE_EXEMPTION
) -> EstateBreakdown:
    gains = embedded_capital_gains(portfolio_value, cost_basis)
    return EstateBreakdown(
        terminal_portfolio_value=portfolio_value,
        terminal_loan_balance=loan_balance,
        net_estate=portfolio_value - loan_balance,
        embedded_capital_gains=gains,
        stepped_up_basis_savings=gains * capital_gains_rate,
        estate_tax_exemption=estate_tax_exemption,
    )


@dataclass(frozen=True)
class BBDComparison:
    bbd_net_estate: float
    sell_net_estate: float
    bbd_advantage: float
    taxes_paid_if_sold: float


def compare_estate(
    portfolio_value: float,
    loan_balance: float,
    cost_basis: float,
    capital_gains_rate: float = DEFAULT_CAPITAL_GAINS_RATE
) -> BBDComparison:
    """
    Heirs' value of holding to death versus selling the same portfolio.

    Holding leaves ``portfolio - loan``; selling leaves ``portfolio - tax``
    on the embedded gain. The advantage is the difference.
    """
    taxes = tax_if_sold(portfolio_value, cost_basis, capital_gains_rate)
    bbd = portfolio_value - loan_balance
    sell = portfolio_value - taxes
    return BBDComparison(
        bbd_net_estate=bbd,
        sell_net_estate=sell,
        bbd_advantage=bbd - sell,
        taxes_paid_if_sold=taxes,
    )
