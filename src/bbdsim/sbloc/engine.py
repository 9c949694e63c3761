"""
Year-by-year state machine for a securities-backed line of credit.

Each simulated year the engine, in order:

1. borrows the tax on the year's dividends (taxable accounts only),
2. borrows the scheduled withdrawal,
3. charges interest on the resulting balance,
4. applies the portfolio's market return to the collateral,
5. recomputes the loan-to-value ratio,
6. flags a margin call at or above the maintenance margin and force-sells
   collateral above the max LTV,
7. reports net worth and whether it has reached zero.

With monthly compounding the same sequence runs twelve times per year on
one twelfth of the withdrawal, dividend yield and interest rate, using the
geometric monthly equivalent of the annual return. The year's ``margin_call``
reflects the last month; calls in earlier months show up in
``intra_year_margin_call``.

A portfolio whose net worth reaches zero is reported as failed but keeps
being stepped; the caller decides how to count it.
"""

from dataclasses import dataclass, replace
from typing import List, Optional, Tuple

from bbdsim.config import SBLOCConfig, WithdrawalChapters
from bbdsim.sbloc.liquidation import LiquidationEvent, execute_forced_liquidation
from bbdsim.sbloc.ltv import calculate_ltv, is_in_warning_zone, is_margin_call
from bbdsim.sbloc.state import SBLOCState, validate_state
from bbdsim.withdrawals import WithdrawalSchedule, leverage_schedule


MONTHS_PER_YEAR = 12


@dataclass(frozen=True)
class SBLOCStepResult:
    """
    Outcome of one simulated year.

    Attributes
    ----------
    state : SBLOCState
        State at year end, after any forced sale.
    margin_call : bool
        True if the ratio of the year's last period, before any forced
        sale, is at or above the maintenance margin.
    intra_year_margin_call : bool
        True if any period of the year reached the maintenance margin.
        Equals ``margin_call`` with annual compounding.
    trigger_ltv : float
        Highest pre-liquidation ratio seen during the year.
    liquidations : tuple of LiquidationEvent
        Forced sales, at most one per period.
    portfolio_failed : bool
        Net worth at year end is zero or negative.
    withdrawal : float
        Amount borrowed for spending.
    interest_charged : float
        Interest added to the balance.
    dividend_tax_borrowed : float
        Dividend tax added to the balance.
    """

    state: SBLOCState
    margin_call: bool
    trigger_ltv: float
    liquidations: Tuple[LiquidationEvent, ...]
    portfolio_failed: bool
    withdrawal: float
    interest_charged: float
    dividend_tax_borrowed: float
    intra_year_margin_call: bool = False

    @property
    def liquidated(self) -> bool:
        return len(self.liquidations) > 0

    @property
    def haircut_loss(self) -> float:
        return sum(event.haircut_loss for event in self.liquidations)


class SBLOCEngine:
    """
    Applies the yearly credit line rules.

    Parameters
    ----------
    config : SBLOCConfig
        Credit line terms and withdrawal plan.
    dividend_yield : float, optional
        Dividend yield of the collateral. Default 0 (no dividend tax).
    dividend_tax_rate : float, optional
        Tax rate on dividends, borrowed each year. Default 0.
    chapters : WithdrawalChapters, optional
        Later withdrawal reductions.
    """

    def __init__(
        self,
        config: SBLOCConfig,
        dividend_yield: float = 0.0,
        dividend_tax_rate: float = 0.0,
        chapters: Optional[WithdrawalChapters] = None
    ) -> None:
        self.config = config
        self.dividend_yield = dividend_yield
        self.dividend_tax_rate = dividend_tax_rate
        self.schedule: WithdrawalSchedule = leverage_schedule(config, chapters)

    @property
    def borrows_dividend_tax(self) -> bool:
        return self.dividend_yield > 0 and self.dividend_tax_rate > 0

    def initial_state(self, portfolio_value: float) -> SBLOCState:
        """
        State before the first simulated year.

        Raises
        ------
        SBLOCStateError
            If the portfolio value or initial loan is invalid.
        """
        loan = self.config.initial_loan_balance
        ltv = calculate_ltv(loan, portfolio_value)
        state = SBLOCState(
            loan_balance=loan,
            portfolio_value=portfolio_value,
            current_ltv=ltv,
            in_warning_zone=is_in_warning_zone(ltv, self.config),
            years_since_start=0,
        )
        validate_state(state)
        return state

    def step(self, state: SBLOCState, market_return: float, year: int) -> SBLOCStepResult:
        """
        Advance the credit line by one year.

        Parameters
        ----------
        state : SBLOCState
            State at the start of the year.
        market_return : float
            Portfolio return for the year.
        year : int
            Simulation year (0-based), used for the withdrawal schedule.

        Returns
        -------
        SBLOCStepResult
            New state and the year's cash flows.
        """
        withdrawal = self.schedule.amount(year)
        if self.config.monthly:
            periods = MONTHS_PER_YEAR
            growth = max(1.0 + market_return, 0.0)
            period_return = growth ** (1.0 / MONTHS_PER_YEAR) - 1.0
        else:
            periods = 1
            period_return = market_return

        loan = state.loan_balance
        value = state.portfolio_value
        margin_call = False
        intra_year_margin_call = False
        trigger_ltv = 0.0
        interest_total = 0.0
        dividend_total = 0.0
        liquidations: List[LiquidationEvent] = []

        for _ in range(periods):
            if value > 0 and self.borrows_dividend_tax:
                tax = value * (self.dividend_yield / periods) * self.dividend_tax_rate
                loan += tax
                dividend_total += tax

            loan += withdrawal / periods

            if loan > 0:
                interest = loan * self.config.interest_rate / periods
                loan += interest
                interest_total += interest

            value = max(0.0, value * (1.0 + period_return))

            ltv = calculate_ltv(loan, value)
            trigger_ltv = max(trigger_ltv, ltv)
            margin_call = is_margin_call(ltv, self.config)
            intra_year_margin_call = intra_year_margin_call or margin_call

            if ltv > self.config.max_ltv and value > 0:
                event = execute_forced_liquidation(
                    loan, value, self.config.max_ltv, self.config.liquidation_haircut
                )
                liquidations.append(event)
                loan, value = event.loan_balance, event.portfolio_value

        ltv = calculate_ltv(loan, value)
        new_state = replace(
            state,
            loan_balance=loan,
            portfolio_value=value,
            current_ltv=ltv,
            in_warning_zone=is_in_warning_zone(ltv, self.config),
            years_since_start=state.years_since_start + 1,
        )

        return SBLOCStepResult(
            state=new_state,
            margin_call=margin_call,
            trigger_ltv=trigger_ltv,
            liquidations=tuple(liquidations),
            portfolio_failed=new_state.net_worth <= 0,
            withdrawal=withdrawal,
            interest_charged=interest_total,
            dividend_tax_borrowed=dividend_total,
            intra_year_margin_call=intra_year_margin_call,
        )

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"SBLOCEngine(rate={self.config.interest_rate}, max_ltv={self.config.max_ltv}, "
            f"maintenance={self.config.maintenance_margin}, "
            f"compounding={self.config.compounding!r})"
        )


def step_sbloc(
    state: SBLOCState,
    config: SBLOCConfig,
    market_return: float,
    year: int
) -> SBLOCStepResult:
    """One-off annual step without dividend tax or chapters."""
    return SBLOCEngine(config).step(state, market_return, year)
