"""
Withdrawal schedule shared by the borrowing and selling strategies.

The amount for simulation year ``y`` (0-based) is

    0                                           y < start
    W (1 + g)^(y - start) · m(y - start)        otherwise

where ``m`` is the cumulative multiplier of any withdrawal chapters
reached after the first withdrawal.
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np
from numpy.typing import NDArray

from bbdsim.config import SBLOCConfig, SellStrategyConfig, WithdrawalChapters
from bbdsim.defaults import DEFAULT_ANNUAL_WITHDRAWAL


@dataclass(frozen=True)
class WithdrawalSchedule:
    """
    Yearly spending plan.

    Attributes
    ----------
    base_amount : float
        Withdrawal in the first withdrawal year.
    growth_rate : float
        Yearly raise.
    start_year : int
        First simulation year with a withdrawal.
    chapters : WithdrawalChapters, optional
        Later reductions.
    """

    base_amount: float
    growth_rate: float = 0.0
    start_year: int = 0
    chapters: Optional[WithdrawalChapters] = None

    def amount(self, year: int) -> float:
        """Withdrawal for simulation year ``year``."""
        if year < self.start_year:
            return 0.0
        elapsed = year - self.start_year
        value = self.base_amount * (1.0 + self.growth_rate) ** elapsed
        if self.chapters is not None:
            value *= self.chapters.multiplier(elapsed)
        return value

    def amounts(self, n_years: int) -> NDArray[np.float64]:
        return np.array([self.amount(year) for year in range(n_years)], dtype=np.float64)

    def cumulative(self, n_years: int) -> NDArray[np.float64]:
        """Running total of withdrawals at the end of each year."""
        return np.cumsum(self.amounts(n_years))


def leverage_schedule(
    sbloc: SBLOCConfig,
    chapters: Optional[WithdrawalChapters] = None
) -> WithdrawalSchedule:
    return WithdrawalSchedule(
        base_amount=sbloc.annual_withdrawal,
        growth_rate=sbloc.annual_withdrawal_raise,
        start_year=sbloc.withdrawal_start_year,
        chapters=chapters,
    )


def baseline_schedule(
    sell: SellStrategyConfig,
    sbloc: Optional[SBLOCConfig] = None,
    chapters: Optional[WithdrawalChapters] = None
) -> WithdrawalSchedule:
    """
    Schedule for the selling strategy.

    Mirrors the credit line's schedule when one is configured so both
    strategies fund the same spending; explicit amounts on ``sell`` win.
    """
    base = DEFAULT_ANNUAL_WITHDRAWAL if sbloc is None else sbloc.annual_withdrawal
    growth = 0.0 if sbloc is None else sbloc.annual_withdrawal_raise
    start = 0 if sbloc is None else sbloc.withdrawal_start_year

    if sell.annual_withdrawal is not None:
        base = sell.annual_withdrawal
    if sell.annual_withdrawal_raise is not None:
        growth = sell.annual_withdrawal_raise

    return WithdrawalSchedule(
        base_amount=base, growth_rate=growth, start_year=start, chapters=chapters
    )
