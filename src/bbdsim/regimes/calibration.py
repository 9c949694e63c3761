"""
Regime parameters estimated from an asset's return history.

Observations are classified by percentile thresholds of the series:

    crash     r < p10
    bear      p10 ≤ r < p30
    recovery  r ≥ p85, or r ≥ 0 right after a crash or bear year
    bull      everything else

and each regime's mean and sample standard deviation are computed from
its bucket. Buckets with fewer than two observations use the default
parameters. A conservative mode shifts means down and widens standard
deviations, and a validation pass replaces nonsensical estimates (for
example a negative bull mean) with defaults rather than letting them
reach the simulation.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import numpy as np
from numpy.typing import ArrayLike, NDArray

from bbdsim.defaults import (
    CONSERVATIVE_ADJUSTMENTS,
    DEFAULT_REGIME_PARAMS,
    MIN_CALIBRATION_OBSERVATIONS,
    MIN_REGIME_OBSERVATIONS,
)
from bbdsim.domain import REGIMES, CalibrationMode, RegimeParams, RegimeParamsMap
from bbdsim.errors import CalibrationError
from bbdsim.numerics import mean, percentile, stddev
from bbdsim.returns.covariance import CovarianceModel

logger = logging.getLogger(__name__)

CRASH_PERCENTILE = 10.0
BEAR_PERCENTILE = 30.0
RECOVERY_PERCENTILE = 85.0

MAX_REASONABLE_STDDEV = 0.80
MIN_BULL_BEAR_SPREAD = 0.05


@dataclass
class ClassifiedReturns:
    """Historical observations grouped by regime, in original order."""

    bull: List[float] = field(default_factory=list)
    bear: List[float] = field(default_factory=list)
    crash: List[float] = field(default_factory=list)
    recovery: List[float] = field(default_factory=list)

    def bucket(self, regime: str) -> List[float]:
        return getattr(self, regime)

    def counts(self) -> Dict[str, int]:
        return {regime: len(self.bucket(regime)) for regime in REGIMES}


@dataclass(frozen=True)
class RegimeValidationIssue:
    """
    One problem found in a set of regime parameters.

    ``severity`` is ``"error"`` (triggers fallback) or ``"warning"``.
    """

    kind: str
    message: str
    severity: str


@dataclass
class RegimeValidationResult:
    is_valid: bool
    issues: List[RegimeValidationIssue]
    used_fallback: bool = False


@dataclass
class CalibrationResult:
    """Parameters actually used for an asset together with validation info."""

    params: RegimeParamsMap
    validation: RegimeValidationResult
    asset_id: Optional[str] = None


def classify_regimes(returns: ArrayLike) -> ClassifiedReturns:
    """
    Classify each observation into a regime.

    Parameters
    ----------
    returns : array_like
        Annual returns in chronological order.

    Returns
    -------
    ClassifiedReturns
        Observations grouped by regime.

    Raises
    ------
    CalibrationError
        If fewer than 10 observations are given.
    """
    arr = np.asarray(returns, dtype=np.float64)
    if arr.size < MIN_CALIBRATION_OBSERVATIONS:
        raise CalibrationError(
            f"Insufficient data for regime classification: {arr.size} observations, "
            f"minimum {MIN_CALIBRATION_OBSERVATIONS}"
        )

    crash_threshold = percentile(arr, CRASH_PERCENTILE)
    bear_threshold = percentile(arr, BEAR_PERCENTILE)
    recovery_threshold = percentile(arr, RECOVERY_PERCENTILE)

    classified = ClassifiedReturns()
    previous_was_down = False

    for r in arr:
        r = float(r)
        if r < crash_threshold:
            classified.crash.append(r)
            previous_was_down = True
        elif r < bear_threshold:
            classified.bear.append(r)
            previous_was_down = True
        elif r >= recovery_threshold or (r >= 0 and previous_was_down):
            classified.recovery.append(r)
            previous_was_down = False
        else:
            classified.bull.append(r)
            previous_was_down = False

    return classified


def estimate_regime_params(classified: ClassifiedReturns) -> RegimeParamsMap:
    """
    Mean and sample standard deviation per regime.

    Regimes with fewer than two observations take the default parameters.
    """
    params: RegimeParamsMap = {}
    for regime in REGIMES:
        bucket = classified.bucket(regime)
        if len(bucket) >= MIN_REGIME_OBSERVATIONS:
            params[regime] = RegimeParams(mean=mean(bucket), stddev=stddev(bucket))
        else:
            params[regime] = DEFAULT_REGIME_PARAMS[regime]
    return params


def calibrate_regime_model(returns: ArrayLike) -> RegimeParamsMap:
    """Classify ``returns`` and estimate per-regime parameters."""
    return estimate_regime_params(classify_regimes(returns))


def apply_conservative_adjustment(params: RegimeParamsMap) -> RegimeParamsMap:
    """
    Stress-adjust regime parameters.

    Means shift down (bull by one standard deviation, at least one
    percentage point; bear 2pp; crash 3pp; recovery 2pp) and standard
    deviations scale up by 15%, 20%, 25% and 20%.

    Parameters
    ----------
    params : RegimeParamsMap
        Historical parameters.

    Returns
    -------
    RegimeParamsMap
        Adjusted parameters; the input is not modified.
    """
    adjusted: RegimeParamsMap = {}
    for regime in REGIMES:
        shift, scale = CONSERVATIVE_ADJUSTMENTS[regime]
        current = params[regime]
        if regime == "bull":
            shift = -max(-shift, current.stddev)
        adjusted[regime] = RegimeParams(
            mean=current.mean + shift,
            stddev=current.stddev * scale,
        )
    return adjusted


def validate_regime_params(params: RegimeParamsMap) -> RegimeValidationResult:
    """
    Sanity-check regime parameters.

    Errors: negative bull mean, bull mean not above bear mean, bull or
    crash standard deviation above 80%. Warnings: bear mean not above
    crash mean, bull/bear spread under 5pp, bear standard deviation above
    80%.

    Returns
    -------
    RegimeValidationResult
        ``is_valid`` is False when any error-severity issue was found.
    """
    issues: List[RegimeValidationIssue] = []
    bull, bear, crash = params["bull"], params["bear"], params["crash"]

    if bull.mean < 0:
        issues.append(RegimeValidationIssue(
            "negative_bull_mean",
            f"Bull mean is negative ({bull.mean:.1%})",
            "error",
        ))
    if bull.mean <= bear.mean:
        issues.append(RegimeValidationIssue(
            "inverted_hierarchy",
            f"Bull mean ({bull.mean:.1%}) <= bear mean ({bear.mean:.1%})",
            "error",
        ))
    if bear.mean <= crash.mean:
        issues.append(RegimeValidationIssue(
            "inverted_hierarchy",
            f"Bear mean ({bear.mean:.1%}) <= crash mean ({crash.mean:.1%})",
            "warning",
        ))

    for regime, severity in (("bull", "error"), ("crash", "error"), ("bear", "warning")):
        sd = params[regime].stddev
        if sd > MAX_REASONABLE_STDDEV:
            issues.append(RegimeValidationIssue(
                "extreme_volatility",
                f"{regime.capitalize()} stddev is extreme ({sd:.1%} > 80%)",
                severity,
            ))

    spread = bull.mean - bear.mean
    if spread < MIN_BULL_BEAR_SPREAD:
        issues.append(RegimeValidationIssue(
            "insufficient_spread",
            f"Bull/bear spread is only {spread:.1%}",
            "warning",
        ))

    has_errors = any(issue.severity == "error" for issue in issues)
    return RegimeValidationResult(is_valid=not has_errors, issues=issues)


def default_params_for(mode: CalibrationMode) -> RegimeParamsMap:
    """Default parameters, stress-adjusted in conservative mode."""
    if CalibrationMode(mode) is CalibrationMode.CONSERVATIVE:
        return apply_conservative_adjustment(DEFAULT_REGIME_PARAMS)
    return dict(DEFAULT_REGIME_PARAMS)


def calibrate_with_validation(
    returns: ArrayLike,
    mode: CalibrationMode = CalibrationMode.HISTORICAL,
    asset_id: Optional[str] = None
) -> CalibrationResult:
    """
    Calibrate, adjust for the mode, validate and fall back if needed.

    Parameters
    ----------
    returns : array_like
        Historical annual returns, at least 10.
    mode : CalibrationMode
        ``historical`` uses the estimates as-is; ``conservative`` applies
        :func:`apply_conservative_adjustment`.
    asset_id : str, optional
        Used in log messages.

    Returns
    -------
    CalibrationResult
        Parameters to simulate with. ``validation.used_fallback`` is True
        when the estimates were rejected.

    Raises
    ------
    CalibrationError
        If fewer than 10 observations are given.
    """
    mode = CalibrationMode(mode)
    label = asset_id or "asset"

    params = calibrate_regime_model(returns)
    if mode is CalibrationMode.CONSERVATIVE:
        params = apply_conservative_adjustment(params)

    validation = validate_regime_params(params)

    if not validation.is_valid:
        logger.warning(
            "Regime calibration for %s produced degenerate parameters, using defaults: %s",
            label,
            "; ".join(issue.message for issue in validation.issues),
        )
        validation.used_fallback = True
        return CalibrationResult(default_params_for(mode), validation, asset_id)

    for issue in validation.issues:
        logger.warning("Regime calibration for %s: %s", label, issue.message)

    logger.debug(
        "Calibrated %s (%s): %s",
        label,
        mode.value,
        {r: (round(p.mean, 4), round(p.stddev, 4)) for r, p in params.items()},
    )
    return CalibrationResult(params, validation, asset_id)


def portfolio_regime_params(
    asset_params: Sequence[RegimeParamsMap],
    weights: ArrayLike,
    correlation_matrix: NDArray[np.float64]
) -> RegimeParamsMap:
    """
    Aggregate per-asset regime parameters to the portfolio level.

    For each regime the mean is the weighted mean and the standard
    deviation is ``sqrt(w^T Σ w)`` with ``Σ = diag(σ) Ω diag(σ)``.

    Parameters
    ----------
    asset_params : sequence of RegimeParamsMap
        One map per asset.
    weights : array_like
        Portfolio weights, shape (B,).
    correlation_matrix : NDArray[np.float64]
        Correlation matrix Ω, shape (B, B).

    Returns
    -------
    RegimeParamsMap
        Portfolio-level parameters.
    """
    weights = np.asarray(weights, dtype=np.float64)
    if len(asset_params) != weights.size:
        raise ValueError(
            f"Got {len(asset_params)} parameter maps for {weights.size} weights"
        )

    result: RegimeParamsMap = {}
    for regime in REGIMES:
        means = np.array([p[regime].mean for p in asset_params])
        vols = np.array([p[regime].stddev for p in asset_params])
        model = CovarianceModel(correlation_matrix, vols)
        result[regime] = RegimeParams(
            mean=float(weights @ means),
            stddev=model.portfolio_volatility(weights),
        )
    return result
