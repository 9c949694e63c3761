"""
Forced sale of collateral when the loan-to-value ratio exceeds its limit.

Selling S dollars of a portfolio worth V with haircut h repays S(1 - h) of
the loan L. The sale that brings the ratio back exactly to the target T
solves

    (L - S(1 - h)) / (V - S) = T   =>   S = (L - T V) / ((1 - h) - T)

When ``1 - h ≤ T`` no partial sale can restore the ratio and the whole
portfolio is sold. The sale is always capped at V.
"""

from dataclasses import dataclass

from bbdsim.sbloc.ltv import calculate_ltv


@dataclass(frozen=True)
class LiquidationEvent:
    """
    Outcome of one forced sale.

    Attributes
    ----------
    assets_sold : float
        Market value of collateral sold.
    haircut_loss : float
        Portion of the sale lost to the haircut, ``assets_sold * h``.
    loan_repaid : float
        Proceeds applied to the loan.
    loan_balance : float
        Balance after repayment.
    portfolio_value : float
        Collateral remaining after the sale.
    """

    assets_sold: float
    haircut_loss: float
    loan_repaid: float
    loan_balance: float
    portfolio_value: float

    @property
    def ltv(self) -> float:
        return calculate_ltv(self.loan_balance, self.portfolio_value)


def required_sale(
    loan_balance: float,
    portfolio_value: float,
    target_ltv: float,
    haircut: float
) -> float:
    """
    Collateral value that must be sold to restore ``target_ltv``.

    Returns 0.0 when the ratio is already at or below the target.
    """
    if portfolio_value <= 0:
        return 0.0
    if calculate_ltv(loan_balance, portfolio_value) <= target_ltv:
        return 0.0

    net_fraction = 1.0 - haircut
    if net_fraction <= target_ltv:
        return portfolio_value

    sale = (loan_balance - target_ltv * portfolio_value) / (net_fraction - target_ltv)
    return min(max(sale, 0.0), portfolio_value)


def execute_forced_liquidation(
    loan_balance: float,
    portfolio_value: float,
    target_ltv: float,
    haircut: float
) -> LiquidationEvent:
    """
    Sell collateral to bring the loan-to-value ratio back to ``target_ltv``.

    Parameters
    ----------
    loan_balance : float
        Balance before the sale.
    portfolio_value : float
        Collateral before the sale.
    target_ltv : float
        Ratio the sale restores (the max LTV).
    haircut : float
        Fraction of each sold dollar lost.

    Returns
    -------
    LiquidationEvent
        Sale details. If the whole portfolio cannot cover the loan the
        residual balance remains outstanding.
    """
    sale = required_sale(loan_balance, portfolio_value, target_ltv, haircut)
    proceeds = sale * (1.0 - haircut)
    repaid = min(proceeds, loan_balance)
    remaining_value = portfolio_value - sale
    if sale >= portfolio_value:
        remaining_value = 0.0

    return LiquidationEvent(
        assets_sold=sale,
        haircut_loss=sale * haircut,
        loan_repaid=repaid,
        loan_balance=max(0.0, loan_balance - repaid),
        portfolio_value=remaining_value,
    )
