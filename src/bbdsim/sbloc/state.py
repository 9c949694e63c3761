"""
Credit line state carried from one simulated year to the next.
"""

import math
from dataclasses import dataclass

from bbdsim.errors import ConfigurationError


class SBLOCStateError(ConfigurationError):
    """
    Raised when a credit line state holds impossible values.

    Attributes
    ----------
    field_name : str
        Name of the offending field.
    """

    def __init__(self, message: str, field_name: str) -> None:
        self.field_name = field_name
        super().__init__(f"Invalid credit line state: {message}")


@dataclass(frozen=True)
class SBLOCState:
    """
    Loan and collateral after a simulated year.

    Attributes
    ----------
    loan_balance : float
        Outstanding balance including capitalized interest.
    portfolio_value : float
        Market value of the pledged portfolio.
    current_ltv : float
        ``loan_balance / portfolio_value``; infinite when the portfolio is
        empty and a balance remains.
    in_warning_zone : bool
        Maintenance margin ≤ LTV < max LTV.
    years_since_start : int
        Years simulated so far.
    """

    loan_balance: float
    portfolio_value: float
    current_ltv: float = 0.0
    in_warning_zone: bool = False
    years_since_start: int = 0

    @property
    def net_worth(self) -> float:
        return self.portfolio_value - self.loan_balance


def validate_ltv(ltv: float, portfolio_value: float, loan_balance: float) -> None:
    """
    Check a loan-to-value ratio against its inputs.

    Infinity is accepted only for an empty portfolio with a positive
    balance.

    Raises
    ------
    SBLOCStateError
        If the ratio is NaN, negative or unexpectedly infinite.
    """
    if math.isnan(ltv):
        raise SBLOCStateError("LTV is NaN", "current_ltv")
    if ltv == math.inf:
        if portfolio_value == 0 and loan_balance > 0:
            return
        raise SBLOCStateError(
            "unexpected infinite LTV (portfolio > 0 or loan = 0)", "current_ltv"
        )
    if ltv < 0:
        raise SBLOCStateError("LTV cannot be negative", "current_ltv")


def validate_state(state: SBLOCState) -> None:
    """
    Reject NaN or negative balances, bad ratios and a negative year count.

    Raises
    ------
    SBLOCStateError
        Naming the first offending field.
    """
    for name in ("portfolio_value", "loan_balance"):
        value = getattr(state, name)
        if math.isnan(value):
            raise SBLOCStateError(f"{name} is NaN", name)
        if value < 0:
            raise SBLOCStateError(f"{name} cannot be negative", name)

    validate_ltv(state.current_ltv, state.portfolio_value, state.loan_balance)

    if state.years_since_start < 0:
        raise SBLOCStateError(
            "years_since_start must be non-negative", "years_since_start"
        )
