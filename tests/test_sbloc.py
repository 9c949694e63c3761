"""
Unit tests for the securities-backed line of credit.

Tests cover:
- Loan-to-value arithmetic, warning zone and margin buffers
- State validation
- Forced liquidation sizing
- Yearly engine steps: interest, withdrawals, margin calls, monthly mode
"""

import math

import pytest
from numpy.testing import assert_allclose

from bbdsim.config import SBLOCConfig, WithdrawalChapter, WithdrawalChapters
from bbdsim.sbloc import (
    SBLOCEngine,
    SBLOCState,
    SBLOCStateError,
    calculate_available_credit,
    calculate_drop_to_margin_call,
    calculate_ltv,
    calculate_margin_buffer,
    calculate_max_borrowing,
    can_recover_from_margin_call,
    execute_forced_liquidation,
    is_in_warning_zone,
    is_margin_call,
    is_within_borrowing_limit,
    required_sale,
    step_sbloc,
    validate_state,
)


def config(**kwargs) -> SBLOCConfig:
    base = dict(
        interest_rate=0.07,
        max_ltv=0.65,
        maintenance_margin=0.50,
        liquidation_haircut=0.05,
        annual_withdrawal=50_000.0,
        annual_withdrawal_raise=0.0,
    )
    base.update(kwargs)
    return SBLOCConfig(**base)


class TestLTV:
    """Tests for loan-to-value helpers."""

    def test_ratio(self) -> None:
        """Test plain division and the two edge cases."""
        assert calculate_ltv(250.0, 1000.0) == 0.25
        assert calculate_ltv(0.0, 0.0) == 0.0
        assert calculate_ltv(0.0, 1000.0) == 0.0
        assert calculate_ltv(10.0, 0.0) == math.inf

    def test_max_borrowing(self) -> None:
        """Test capacity and empty collateral."""
        assert_allclose(calculate_max_borrowing(1_000_000.0, 0.65), 650_000.0)
        assert calculate_max_borrowing(0.0, 0.65) == 0.0

    def test_available_credit(self) -> None:
        """Test unused capacity, floored at zero."""
        cfg = config()
        assert_allclose(
            calculate_available_credit(SBLOCState(400_000.0, 1_000_000.0, 0.4), cfg), 250_000.0
        )
        assert calculate_available_credit(SBLOCState(700_000.0, 1_000_000.0, 0.7), cfg) == 0.0

    def test_thresholds(self) -> None:
        """Test warning zone and margin call boundaries."""
        cfg = config()
        assert not is_in_warning_zone(0.49, cfg)
        assert is_in_warning_zone(0.50, cfg)
        assert is_in_warning_zone(0.64, cfg)
        assert not is_in_warning_zone(0.65, cfg)
        assert not is_margin_call(0.4999, cfg)
        assert is_margin_call(0.50, cfg)
        assert is_margin_call(math.inf, cfg)

    def test_borrowing_limit_boundary(self) -> None:
        """Test that reaching max LTV exactly is outside the limit."""
        cfg = config()
        assert is_within_borrowing_limit(SBLOCState(400_000.0, 1_000_000.0, 0.4), cfg)
        assert not is_within_borrowing_limit(SBLOCState(650_000.0, 1_000_000.0, 0.65), cfg)
        assert not is_within_borrowing_limit(SBLOCState(700_000.0, 1_000_000.0, 0.7), cfg)
        assert not is_within_borrowing_limit(SBLOCState(10.0, 0.0, math.inf), cfg)

    def test_margin_buffer(self) -> None:
        """Test distances to both thresholds."""
        buffer = calculate_margin_buffer(SBLOCState(250_000.0, 1_000_000.0, 0.25), config())
        assert_allclose(buffer.dollars_until_warning, 500_000.0)
        assert_allclose(buffer.dollars_until_margin_call, 1_000_000.0 - 250_000.0 / 0.65)
        assert_allclose(buffer.percent_until_margin_call, 1.0 - 0.25 / 0.65)

    def test_drop_to_margin_call(self) -> None:
        """Test decline to max LTV with and without a loan."""
        cfg = config()
        assert calculate_drop_to_margin_call(SBLOCState(0.0, 100.0), cfg) == 1.0
        assert calculate_drop_to_margin_call(SBLOCState(10.0, 0.0, math.inf), cfg) == -math.inf
        assert_allclose(
            calculate_drop_to_margin_call(SBLOCState(325.0, 1000.0, 0.325), cfg), 0.5
        )

    def test_can_recover(self) -> None:
        """Test whether a full sale covers the loan after haircut."""
        cfg = config()
        assert can_recover_from_margin_call(SBLOCState(94.0, 100.0, 0.94), cfg)
        assert not can_recover_from_margin_call(SBLOCState(96.0, 100.0, 0.96), cfg)


class TestState:
    """Tests for state validation."""

    def test_valid_states(self) -> None:
        """Test ordinary and empty-collateral states."""
        validate_state(SBLOCState(100.0, 1000.0, 0.1))
        validate_state(SBLOCState(100.0, 0.0, math.inf))
        assert SBLOCState(100.0, 1000.0).net_worth == 900.0

    def test_negative_value(self) -> None:
        """Test negative portfolio value."""
        with pytest.raises(SBLOCStateError, match="portfolio_value") as exc:
            validate_state(SBLOCState(0.0, -1.0))
        assert exc.value.field_name == "portfolio_value"

    def test_nan_loan(self) -> None:
        """Test NaN loan balance."""
        with pytest.raises(SBLOCStateError, match="NaN"):
            validate_state(SBLOCState(float("nan"), 10.0))

    def test_unexpected_infinite_ltv(self) -> None:
        """Test infinite ratio with collateral present."""
        with pytest.raises(SBLOCStateError, match="infinite"):
            validate_state(SBLOCState(10.0, 100.0, math.inf))

    def test_negative_year(self) -> None:
        """Test negative year count."""
        with pytest.raises(SBLOCStateError, match="years_since_start"):
            validate_state(SBLOCState(0.0, 10.0, 0.0, False, -1))


class TestLiquidation:
    """Tests for forced sales."""

    def test_restores_target_exactly(self) -> None:
        """Test that the sale brings the ratio back to max LTV."""
        event = execute_forced_liquidation(600.0, 800.0, 0.65, 0.05)
        assert_allclose(event.assets_sold, 80.0 / 0.30)
        assert_allclose(event.ltv, 0.65)
        assert_allclose(event.haircut_loss, event.assets_sold * 0.05)
        assert_allclose(event.loan_repaid, event.assets_sold * 0.95)

    def test_no_sale_below_target(self) -> None:
        """Test that nothing is sold within the limit."""
        assert required_sale(500.0, 1000.0, 0.65, 0.05) == 0.0
        event = execute_forced_liquidation(500.0, 1000.0, 0.65, 0.05)
        assert event.assets_sold == 0.0
        assert event.loan_balance == 500.0

    def test_sells_everything_when_haircut_too_large(self) -> None:
        """Test the full sale when 1 - h ≤ target."""
        event = execute_forced_liquidation(600.0, 800.0, 0.65, 0.40)
        assert event.assets_sold == 800.0
        assert event.portfolio_value == 0.0
        assert_allclose(event.loan_balance, 600.0 - 480.0)
        assert event.ltv == math.inf

    def test_underwater_sale_capped(self) -> None:
        """Test that a sale never exceeds the portfolio."""
        event = execute_forced_liquidation(1000.0, 500.0, 0.65, 0.05)
        assert event.assets_sold == 500.0
        assert event.portfolio_value == 0.0
        assert_allclose(event.loan_balance, 1000.0 - 475.0)


class TestEngine:
    """Tests for SBLOCEngine.step."""

    def test_first_year_crash_without_loan(self) -> None:
        """Test a -50% year with a 50k withdrawal at 7% from no loan."""
        engine = SBLOCEngine(config())
        result = engine.step(engine.initial_state(1_000_000.0), -0.5, 0)
        assert_allclose(result.state.loan_balance, 53_500.0)
        assert_allclose(result.state.portfolio_value, 500_000.0)
        assert_allclose(result.state.current_ltv, 0.107)
        assert_allclose(result.interest_charged, 3_500.0)
        assert result.withdrawal == 50_000.0
        assert not result.margin_call
        assert not result.liquidated
        assert not result.portfolio_failed
        assert result.state.years_since_start == 1

    def test_crash_with_existing_loan_liquidates(self) -> None:
        """Test margin call and forced sale back to max LTV."""
        engine = SBLOCEngine(config(initial_loan_balance=300_000.0))
        state = engine.initial_state(1_000_000.0)
        result = engine.step(state, -0.5, 0)
        assert result.margin_call
        assert_allclose(result.trigger_ltv, 374_500.0 / 500_000.0)
        assert len(result.liquidations) == 1
        event = result.liquidations[0]
        assert_allclose(event.assets_sold, 165_000.0)
        assert_allclose(result.haircut_loss, 8_250.0)
        assert_allclose(result.state.loan_balance, 217_750.0)
        assert_allclose(result.state.portfolio_value, 335_000.0)
        assert_allclose(result.state.current_ltv, 0.65)

    def test_margin_call_in_warning_zone(self) -> None:
        """Test a margin call without liquidation."""
        engine = SBLOCEngine(config(initial_loan_balance=500_000.0, annual_withdrawal=0.0,
                                    interest_rate=0.0))
        result = engine.step(engine.initial_state(1_000_000.0), -0.1, 0)
        assert_allclose(result.state.current_ltv, 500_000.0 / 900_000.0)
        assert result.margin_call
        assert not result.liquidated
        assert result.state.in_warning_zone

    def test_withdrawal_start_year(self) -> None:
        """Test that nothing is borrowed before the start year."""
        engine = SBLOCEngine(config(withdrawal_start_year=2))
        state = engine.initial_state(1_000_000.0)
        result = engine.step(state, 0.0, 1)
        assert result.withdrawal == 0.0
        assert result.state.loan_balance == 0.0
        assert result.interest_charged == 0.0

    def test_withdrawal_growth_and_chapters(self) -> None:
        """Test raises and a later reduction."""
        chapters = WithdrawalChapters(chapter2=WithdrawalChapter(2, 50.0))
        engine = SBLOCEngine(config(annual_withdrawal_raise=0.10), chapters=chapters)
        assert_allclose(engine.schedule.amounts(3), [50_000.0, 55_000.0, 30_250.0])

    def test_dividend_tax_borrowed(self) -> None:
        """Test the dividend tax added to the loan."""
        engine = SBLOCEngine(
            config(annual_withdrawal=0.0, interest_rate=0.0),
            dividend_yield=0.02,
            dividend_tax_rate=0.238,
        )
        result = engine.step(engine.initial_state(1_000_000.0), 0.0, 0)
        assert_allclose(result.dividend_tax_borrowed, 4_760.0)
        assert_allclose(result.state.loan_balance, 4_760.0)

    def test_monthly_compounding(self) -> None:
        """Test twelve sub-steps with the geometric monthly return."""
        engine = SBLOCEngine(
            config(compounding="monthly", interest_rate=0.12, annual_withdrawal=12_000.0)
        )
        result = engine.step(engine.initial_state(1_000_000.0), 0.21, 0)
        expected_loan = sum(1_000.0 * 1.01 ** k for k in range(1, 13))
        assert_allclose(result.state.loan_balance, expected_loan)
        assert_allclose(result.interest_charged, expected_loan - 12_000.0)
        assert_allclose(result.state.portfolio_value, 1_210_000.0)

    def test_monthly_call_recovered_by_year_end(self) -> None:
        """Test that an early-month call does not flag a year ending below maintenance."""
        engine = SBLOCEngine(
            config(compounding="monthly", initial_loan_balance=510_000.0,
                   annual_withdrawal=0.0, interest_rate=0.0)
        )
        result = engine.step(engine.initial_state(1_000_000.0), 0.21, 0)
        assert_allclose(result.state.current_ltv, 510_000.0 / 1_210_000.0)
        assert result.state.current_ltv < 0.5
        assert not result.margin_call
        assert result.intra_year_margin_call
        assert not result.liquidated
        assert_allclose(result.trigger_ltv, 510_000.0 / (1_000_000.0 * 1.21 ** (1 / 12)))

    def test_annual_flags_agree(self) -> None:
        """Test that both flags match with annual compounding."""
        engine = SBLOCEngine(config(initial_loan_balance=300_000.0))
        result = engine.step(engine.initial_state(1_000_000.0), -0.5, 0)
        assert result.margin_call
        assert result.intra_year_margin_call

    def test_empty_collateral_does_not_crash(self) -> None:
        """Test an infinite ratio with a remaining loan."""
        engine = SBLOCEngine(config(initial_loan_balance=100.0))
        state = engine.initial_state(0.0)
        assert state.current_ltv == math.inf
        result = engine.step(state, 0.1, 0)
        assert result.state.current_ltv == math.inf
        assert result.margin_call
        assert not result.liquidated
        assert result.portfolio_failed

    def test_step_function(self) -> None:
        """Test the one-off helper."""
        result = step_sbloc(SBLOCState(0.0, 1_000_000.0), config(), 0.0, 0)
        assert_allclose(result.state.loan_balance, 53_500.0)
