"""
Return models: covariance handling, bootstrap resampling and Student-t draws.

**Covariance (covariance.py):**
- Clamped Cholesky factor for near-singular correlation matrices
- Correlated standard normals

**Bootstrap (bootstrap.py):**
- Independent and block resampling of aligned histories
- Autocorrelation-based block length

**Fat tails (student_t.py):**
- Student-t variates with per-asset-class skew and scaling

The generators that combine these with regime calibration live in
:mod:`bbdsim.returns.generators`.
"""

from bbdsim.returns.bootstrap import (
    block_bootstrap,
    optimal_block_length,
    simple_bootstrap,
)
from bbdsim.returns.covariance import (
    CovarianceModel,
    clamped_cholesky,
    create_identity_covariance,
)
from bbdsim.returns.student_t import FatTailReturnModel, fat_tail_return, student_t_variate

__all__ = [
    # Covariance
    "CovarianceModel",
    "clamped_cholesky",
    "create_identity_covariance",
    # Bootstrap
    "simple_bootstrap",
    "block_bootstrap",
    "optimal_block_length",
    # Fat tails
    "FatTailReturnModel",
    "fat_tail_return",
    "student_t_variate",
]
