"""
Securities-backed line of credit: state, loan-to-value rules and forced sales.

**State (state.py):**
- Loan and collateral carried between years, with validation

**Ratios (ltv.py):**
- Loan-to-value, warning zone, margin call and buffer arithmetic

**Liquidation (liquidation.py):**
- Sale size that restores the max LTV after haircut

**Engine (engine.py):**
- Yearly step: dividend tax, withdrawal, interest, return, margin call
"""

from bbdsim.sbloc.engine import SBLOCEngine, SBLOCStepResult, step_sbloc
from bbdsim.sbloc.liquidation import (
    LiquidationEvent,
    execute_forced_liquidation,
    required_sale,
)
from bbdsim.sbloc.ltv import (
    MarginBuffer,
    calculate_available_credit,
    calculate_drop_to_margin_call,
    calculate_ltv,
    calculate_margin_buffer,
    calculate_max_borrowing,
    can_recover_from_margin_call,
    is_in_warning_zone,
    is_margin_call,
    is_within_borrowing_limit,
)
from bbdsim.sbloc.state import SBLOCState, SBLOCStateError, validate_ltv, validate_state

__all__ = [
    # State
    "SBLOCState",
    "SBLOCStateError",
    "validate_ltv",
    "validate_state",
    # Ratios
    "MarginBuffer",
    "calculate_ltv",
    "calculate_max_borrowing",
    "calculate_available_credit",
    "calculate_margin_buffer",
    "calculate_drop_to_margin_call",
    "can_recover_from_margin_call",
    "is_in_warning_zone",
    "is_margin_call",
    "is_within_borrowing_limit",
    # Liquidation
    "LiquidationEvent",
    "execute_forced_liquidation",
    "required_sale",
    # Engine
    "SBLOCEngine",
    "SBLOCStepResult",
    "step_sbloc",
]
