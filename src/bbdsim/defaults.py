"""
Default parameters for simulations, leverage and tax modeling.

Values here are used when a configuration omits a field and by the
regime calibrator when estimation from history fails.
"""

from typing import Dict, Tuple

from bbdsim.domain import AssetClass, FatTailParams, RegimeParams, RegimeParamsMap

# Simulation
DEFAULT_ITERATIONS = 10_000
DEFAULT_TIME_HORIZON = 30
DEFAULT_BATCH_SIZE = 1_000
DEFAULT_INFLATION_RATE = 0.03

# Securities-backed line of credit
DEFAULT_SBLOC_INTEREST_RATE = 0.074
DEFAULT_MAX_LTV = 0.65
DEFAULT_MAINTENANCE_MARGIN = 0.50
DEFAULT_LIQUIDATION_HAIRCUT = 0.05
DEFAULT_ANNUAL_WITHDRAWAL = 50_000.0
DEFAULT_WITHDRAWAL_RAISE = 0.03

# Taxes
DEFAULT_COST_BASIS_RATIO = 0.4
DEFAULT_CAPITAL_GAINS_RATE = 0.238
DEFAULT_DIVIDEND_YIELD = 0.02
DEFAULT_DIVIDEND_TAX_RATE = 0.238
DEFAULT_ESTATE_EXEMPTION = 13_990_000.0

# Regime calibration
MIN_CALIBRATION_OBSERVATIONS = 10
MIN_REGIME_OBSERVATIONS = 2

DEFAULT_REGIME_PARAMS: RegimeParamsMap = {
    "bull": RegimeParams(mean=0.10, stddev=0.12),
    "bear": RegimeParams(mean=-0.05, stddev=0.15),
    "crash": RegimeParams(mean=-0.25, stddev=0.30),
    "recovery": RegimeParams(mean=0.15, stddev=0.20),
}

# Rows and columns ordered bull, bear, crash, recovery.
HISTORICAL_TRANSITION_MATRIX: Tuple[Tuple[float, ...], ...] = (
    (0.92, 0.05, 0.02, 0.01),
    (0.15, 0.60, 0.10, 0.15),
    (0.05, 0.25, 0.20, 0.50),
    (0.60, 0.10, 0.05, 0.25),
)

CONSERVATIVE_TRANSITION_MATRIX: Tuple[Tuple[float, ...], ...] = (
    (0.88, 0.08, 0.03, 0.01),
    (0.10, 0.65, 0.13, 0.12),
    (0.03, 0.32, 0.25, 0.40),
    (0.50, 0.17, 0.08, 0.25),
)

HISTORICAL_SURVIVORSHIP_BIAS = 0.015
CONSERVATIVE_SURVIVORSHIP_BIAS = 0.020

# Conservative adjustment per regime: (mean shift, stddev multiplier).
# The bull shift is at least one percentage point or one stddev.
CONSERVATIVE_ADJUSTMENTS: Dict[str, Tuple[float, float]] = {
    "bull": (-0.01, 1.15),
    "bear": (-0.02, 1.20),
    "crash": (-0.03, 1.25),
    "recovery": (-0.02, 1.20),
}

# Fat-tail generation
FAT_TAIL_PARAMS: Dict[AssetClass, FatTailParams] = {
    AssetClass.EQUITY_INDEX: FatTailParams(5, -0.02, 1.0, 0.005),
    AssetClass.EQUITY_STOCK: FatTailParams(4, -0.03, 1.1, 0.01),
    AssetClass.BOND: FatTailParams(8, -0.01, 1.0, 0.0),
    AssetClass.COMMODITY: FatTailParams(4, 0.0, 1.1, 0.0),
    AssetClass.CASH: FatTailParams(30, 0.0, 1.0, 0.0),
}

MIN_ANNUAL_RETURN = -0.99
MAX_ANNUAL_RETURN = 10.0

# Tolerances
WEIGHT_SUM_TOLERANCE = 1e-6
CORRELATION_TOLERANCE = 1e-8
CHOLESKY_EPSILON = 1e-12
