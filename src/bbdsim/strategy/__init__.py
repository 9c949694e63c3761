"""Baseline strategies simulated alongside borrowing."""

from bbdsim.strategy.sell import SellIterationResult, SellStrategy, gross_up_sale

__all__ = [
    "SellStrategy",
    "SellIterationResult",
    "gross_up_sale",
]
