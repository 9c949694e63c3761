"""
Enumerations and small value types shared across the engine.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Tuple


class ReturnMethod(str, Enum):
    """Annual return generation method."""

    SIMPLE = "simple"
    BLOCK = "block"
    REGIME = "regime"
    FAT_TAIL = "fat-tail"


class CalibrationMode(str, Enum):
    """How regime parameters are derived from history."""

    HISTORICAL = "historical"
    CONSERVATIVE = "conservative"


class AssetClass(str, Enum):
    """Asset classes with distinct fat-tail parameters."""

    EQUITY_INDEX = "equity_index"
    EQUITY_STOCK = "equity_stock"
    BOND = "bond"
    COMMODITY = "commodity"
    CASH = "cash"


class RunMode(str, Enum):
    """Which strategies a run evaluates."""

    PORTFOLIO = "portfolio"
    LEVERAGED = "leveraged"
    BASELINE = "baseline"
    COMPARISON = "comparison"


# Regime order used by transition matrices and parameter arrays.
REGIMES: Tuple[str, ...] = ("bull", "bear", "crash", "recovery")


@dataclass(frozen=True)
class RegimeParams:
    """Mean and standard deviation of annual returns within one regime."""

    mean: float
    stddev: float


RegimeParamsMap = Dict[str, RegimeParams]


@dataclass(frozen=True)
class FatTailParams:
    """
    Student-t shape parameters for one asset class.

    Attributes
    ----------
    degrees_of_freedom : int
        Number of squared normals in the chi-square denominator.
    skewness : float
        Coefficient on (t^2 - 1) added to the raw t variate.
    volatility_scaling : float
        Multiplier applied to the historical standard deviation.
    survivorship_bias : float
        Additive mean adjustment applied to every draw.
    """

    degrees_of_freedom: int
    skewness: float
    volatility_scaling: float
    survivorship_bias: float
