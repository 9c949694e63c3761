"""
Market regimes: Markov dynamics, calibration and regime-switching returns.

**Markov Chains (markov.py):**
- Four-regime transition matrices (historical and conservative)
- Stationary distribution and expected durations

**Calibration (calibration.py):**
- Percentile classification of historical returns
- Per-regime mean and volatility, conservative adjustment
- Sanity checks with fallback to default parameters

**Switching (switching.py):**
- Correlated multi-asset returns driven by one shared regime path
"""

from bbdsim.regimes.calibration import (
    CalibrationResult,
    RegimeValidationResult,
    calibrate_regime_model,
    calibrate_with_validation,
    classify_regimes,
    validate_regime_params,
)
from bbdsim.regimes.markov import MarkovChain, create_regime_chain
from bbdsim.regimes.switching import RegimeSwitchingModel, create_regime_model

__all__ = [
    # Markov chain
    "MarkovChain",
    "create_regime_chain",
    # Calibration
    "CalibrationResult",
    "RegimeValidationResult",
    "classify_regimes",
    "calibrate_regime_model",
    "calibrate_with_validation",
    "validate_regime_params",
    # Switching
    "RegimeSwitchingModel",
    "create_regime_model",
]
