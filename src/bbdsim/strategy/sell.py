"""
Baseline strategy: fund spending by selling holdings.

The baseline consumes exactly the same portfolio returns as the borrowing
strategy so the two can be compared path by path. Each year it

1. pays tax on the year's dividends by selling holdings,
2. sells enough to net the withdrawal after capital-gains tax,
3. applies the market return to what remains.

The capital-gains gross-up uses the embedded gain fraction of the
portfolio, ``g = 1 - basis / value``:

    gross sale = withdrawal / (1 - g · rate)

and cost basis is reduced in proportion to the value sold.
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np
from numpy.typing import ArrayLike, NDArray

from bbdsim.config import SellStrategyConfig
from bbdsim.withdrawals import WithdrawalSchedule


@dataclass(frozen=True)
class SellIterationResult:
    """
    Outcome of the baseline for one return path.

    Attributes
    ----------
    terminal_value : float
        Portfolio value after the last year.
    depleted : bool
        The balance reached zero before the horizon ended.
    depletion_year : int
        First year (1-based) ending with a zero balance; -1 if never.
    capital_gains_taxes : float
        Total capital-gains tax paid.
    dividend_taxes : float
        Total dividend tax paid.
    yearly_values : NDArray[np.float64]
        Value at the end of each year, shape (horizon + 1,), starting
        with the initial value.
    """

    terminal_value: float
    depleted: bool
    depletion_year: int
    capital_gains_taxes: float
    dividend_taxes: float
    yearly_values: NDArray[np.float64]

    @property
    def total_taxes(self) -> float:
        return self.capital_gains_taxes + self.dividend_taxes


def gross_up_sale(
    net_amount: float,
    portfolio_value: float,
    cost_basis: float,
    capital_gains_rate: float
) -> float:
    """
    Sale needed to receive ``net_amount`` after capital-gains tax.

    Parameters
    ----------
    net_amount : float
        Cash wanted after tax.
    portfolio_value : float
        Market value before the sale, must be positive.
    cost_basis : float
        Remaining cost basis of the portfolio.
    capital_gains_rate : float
        Tax rate on realized gains.

    Returns
    -------
    float
        Gross sale amount. Equals ``net_amount`` when the portfolio has no
        embedded gain.
    """
    gain_fraction = max(0.0, 1.0 - cost_basis / portfolio_value)
    return net_amount / (1.0 - gain_fraction * capital_gains_rate)


class SellStrategy:
    """
    Simulates the liquidation baseline over a return path.

    Parameters
    ----------
    config : SellStrategyConfig
        Tax and cost-basis assumptions.
    schedule : WithdrawalSchedule
        Yearly net withdrawals, shared with the borrowing strategy.
    """

    def __init__(self, config: SellStrategyConfig, schedule: WithdrawalSchedule) -> None:
        self.config = config
        self.schedule = schedule

    def run(
        self,
        portfolio_returns: ArrayLike,
        initial_value: float,
        out: Optional[NDArray[np.float64]] = None
    ) -> SellIterationResult:
        """
        Apply the strategy to one path of annual portfolio returns.

        Parameters
        ----------
        portfolio_returns : array_like
            Weighted portfolio return per year, shape (horizon,).
        initial_value : float
            Starting portfolio value.
        out : NDArray[np.float64], optional
            Buffer of shape (horizon + 1,) receiving the yearly values.

        Returns
        -------
        SellIterationResult
            Terminal value, depletion flag and tax totals.
        """
        returns = np.asarray(portfolio_returns, dtype=np.float64)
        horizon = returns.size
        values = out if out is not None else np.empty(horizon + 1, dtype=np.float64)
        values[0] = initial_value

        cfg = self.config
        value = float(initial_value)
        basis = value * cfg.cost_basis_ratio
        capital_gains_taxes = 0.0
        dividend_taxes = 0.0
        depletion_year = -1

        for year in range(horizon):
            if value > 0 and cfg.dividend_yield > 0 and cfg.dividend_tax_rate > 0:
                tax = value * cfg.dividend_yield * cfg.dividend_tax_rate
                dividend_taxes += min(tax, value)
                if tax >= value:
                    value = 0.0
                else:
                    basis *= 1.0 - tax / value
                    value -= tax

            withdrawal = self.schedule.amount(year)
            if value > 0 and withdrawal > 0:
                gross = gross_up_sale(withdrawal, value, basis, cfg.capital_gains_rate)
                if gross >= value:
                    gain_fraction = max(0.0, 1.0 - basis / value)
                    capital_gains_taxes += value * gain_fraction * cfg.capital_gains_rate
                    value = 0.0
                    basis = 0.0
                else:
                    capital_gains_taxes += gross - withdrawal
                    basis *= 1.0 - gross / value
                    value -= gross

            if value > 0:
                value = max(0.0, value * (1.0 + returns[year]))

            if value <= 0:
                value = 0.0
                if depletion_year < 0:
                    depletion_year = year + 1
            values[year + 1] = value

        return SellIterationResult(
            terminal_value=value,
            depleted=depletion_year >= 0,
            depletion_year=depletion_year,
            capital_gains_taxes=capital_gains_taxes,
            dividend_taxes=dividend_taxes,
            yearly_values=values,
        )

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"SellStrategy(cost_basis_ratio={self.config.cost_basis_ratio}, "
            f"capital_gains_rate={self.config.capital_gains_rate})"
        )
