"""
Loan-to-value arithmetic for a securities-backed line of credit.

All functions are pure. Ratios follow:

    LTV = loan / collateral          (0 with no loan, ∞ with no collateral)
    warning zone:  maintenance ≤ LTV < max LTV
"""

import math
from dataclasses import dataclass

from bbdsim.config import SBLOCConfig
from bbdsim.sbloc.state import SBLOCState


def calculate_ltv(loan_balance: float, collateral_value: float) -> float:
    """
    Loan-to-value ratio.

    Parameters
    ----------
    loan_balance : float
        Outstanding loan.
    collateral_value : float
        Market value of pledged assets.

    Returns
    -------
    float
        0.0 when there is no loan, ``inf`` when there is a loan but no
        collateral, otherwise ``loan_balance / collateral_value``.
    """
    if loan_balance == 0:
        return 0.0
    if collateral_value <= 0:
        return math.inf
    return loan_balance / collateral_value


def calculate_max_borrowing(collateral_value: float, max_ltv: float) -> float:
    """Largest balance the collateral supports; 0 for empty collateral."""
    if collateral_value <= 0 or max_ltv <= 0:
        return 0.0
    return collateral_value * max_ltv


def calculate_available_credit(state: SBLOCState, config: SBLOCConfig) -> float:
    """Unused borrowing capacity, floored at zero."""
    available = calculate_max_borrowing(state.portfolio_value, config.max_ltv) - state.loan_balance
    return max(0.0, available)


def is_within_borrowing_limit(state: SBLOCState, config: SBLOCConfig) -> bool:
    """True while the ratio is strictly below max LTV; at the limit no more can be drawn."""
    return state.current_ltv < config.max_ltv


def is_in_warning_zone(ltv: float, config: SBLOCConfig) -> bool:
    """True when maintenance margin ≤ ``ltv`` < max LTV."""
    return config.maintenance_margin <= ltv < config.max_ltv


def is_margin_call(ltv: float, config: SBLOCConfig) -> bool:
    """True when ``ltv`` reaches the maintenance margin."""
    return ltv >= config.maintenance_margin


@dataclass(frozen=True)
class MarginBuffer:
    """
    Distance from the current position to the two thresholds.

    Attributes
    ----------
    dollars_until_warning : float
        Portfolio value that can be lost before entering the warning zone.
        Negative when already past it.
    dollars_until_margin_call : float
        Portfolio value that can be lost before reaching max LTV.
    percent_until_margin_call : float
        ``1 - LTV / max LTV``: 1 with no loan, 0 at the limit.
    """

    dollars_until_warning: float
    dollars_until_margin_call: float
    percent_until_margin_call: float


def calculate_margin_buffer(state: SBLOCState, config: SBLOCConfig) -> MarginBuffer:
    ltv = calculate_ltv(state.loan_balance, state.portfolio_value)
    warning_threshold = state.loan_balance / config.maintenance_margin
    margin_call_threshold = state.loan_balance / config.max_ltv
    return MarginBuffer(
        dollars_until_warning=state.portfolio_value - warning_threshold,
        dollars_until_margin_call=state.portfolio_value - margin_call_threshold,
        percent_until_margin_call=1.0 - ltv / config.max_ltv,
    )


def calculate_drop_to_margin_call(state: SBLOCState, config: SBLOCConfig) -> float:
    """
    Fractional portfolio decline that would push LTV to the max.

    Returns
    -------
    float
        1.0 with no loan, ``-inf`` with no collateral, otherwise
        ``1 - LTV / max LTV``.
    """
    ltv = calculate_ltv(state.loan_balance, state.portfolio_value)
    if ltv == 0:
        return 1.0
    if math.isinf(ltv):
        return -math.inf
    return 1.0 - ltv / config.max_ltv


def can_recover_from_margin_call(state: SBLOCState, config: SBLOCConfig) -> bool:
    """
    Whether selling the whole portfolio would repay the loan.

    Sale proceeds are reduced by the liquidation haircut.
    """
    max_proceeds = state.portfolio_value * (1.0 - config.liquidation_haircut)
    return max_proceeds >= state.loan_balance
