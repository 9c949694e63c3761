"""
Monte Carlo orchestrator.

A run draws every iteration's returns from one seeded random stream, in
iteration order, so a given seed and configuration always reproduce the
same output. Iterations are processed in fixed-size batches; cancellation
is polled before each batch and progress reported after it. Cancelling
discards all completed work.

Per iteration the orchestrator

1. draws an (assets, years) return path from the configured generator,
2. collapses it to weighted portfolio returns,
3. steps the credit line and/or compounds the plain portfolio year by year,
4. runs the selling baseline over the same portfolio returns,

writing results into buffers allocated once per run and indexed by
iteration.
"""

import asyncio
import logging
from typing import Any, Dict, Iterator, List, Optional

import numpy as np
from numpy.typing import NDArray
from tqdm import tqdm

from bbdsim.config import PortfolioConfig, SimulationConfig, create_rng
from bbdsim.defaults import DEFAULT_CAPITAL_GAINS_RATE
from bbdsim.errors import SimulationCancelledError
from bbdsim.returns.generators import (
    RegimeSwitchingGenerator,
    ReturnGenerator,
    create_return_generator,
)
from bbdsim.sbloc.engine import SBLOCEngine
from bbdsim.simulation import aggregate
from bbdsim.simulation.events import (
    BATCH_COMPLETE,
    CALIBRATION_FALLBACK,
    DIAGNOSTIC_SUMMARY,
    RUN_COMPLETE,
    RUN_STARTED,
    BatchProgress,
    CancellationHandle,
    EventSink,
    ProgressCallback,
    emit,
    is_cancelled,
)
from bbdsim.simulation.output import LeverageDiagnostics, SimulationDiagnostics, SimulationOutput
from bbdsim.strategy.sell import SellStrategy
from bbdsim.withdrawals import baseline_schedule

logger = logging.getLogger(__name__)


class _LeverageBuffers:
    """Per-iteration credit line results."""

    def __init__(self, iterations: int, horizon: int) -> None:
        self.loan_balances = np.zeros((iterations, horizon), dtype=np.float64)
        self.final_gross = np.zeros(iterations, dtype=np.float64)
        self.margin_call_counts = np.zeros(iterations, dtype=np.int64)
        self.first_margin_call_year = np.full(iterations, -1, dtype=np.int64)
        self.first_failure_year = np.full(iterations, -1, dtype=np.int64)
        self.haircut_losses = np.zeros(iterations, dtype=np.float64)
        self.interest_charged = np.zeros(iterations, dtype=np.float64)
        self.dividend_taxes_borrowed = np.zeros(iterations, dtype=np.float64)


class _BaselineBuffers:
    """Per-iteration selling strategy results."""

    def __init__(self, iterations: int, horizon: int) -> None:
        self.terminal_values = np.zeros(iterations, dtype=np.float64)
        self.yearly_values = np.zeros((iterations, horizon + 1), dtype=np.float64)
        self.depletion_years = np.full(iterations, -1, dtype=np.int64)
        self.capital_gains_taxes = np.zeros(iterations, dtype=np.float64)
        self.dividend_taxes = np.zeros(iterations, dtype=np.float64)


class _RunState:
    """Everything owned by one run: random stream, engines and buffers."""

    def __init__(self, config: SimulationConfig, portfolio: PortfolioConfig) -> None:
        iterations, horizon = config.iterations, config.time_horizon
        self.rng = create_rng(config.seed)
        self.generator: ReturnGenerator = create_return_generator(config, portfolio)
        self.weights = portfolio.weights

        self.portfolio_returns = np.zeros((iterations, horizon), dtype=np.float64)
        self.net_values = np.zeros((iterations, horizon), dtype=np.float64)
        self.terminal_values = np.zeros(iterations, dtype=np.float64)

        self.engine: Optional[SBLOCEngine] = None
        self.leverage: Optional[_LeverageBuffers] = None
        if config.sbloc is not None:
            tax = config.tax_modeling
            if tax is not None and tax.borrows_dividend_tax:
                dividend_yield, dividend_tax_rate = tax.dividend_yield, tax.dividend_tax_rate
            else:
                dividend_yield, dividend_tax_rate = 0.0, 0.0
            self.engine = SBLOCEngine(
                config.sbloc,
                dividend_yield=dividend_yield,
                dividend_tax_rate=dividend_tax_rate,
                chapters=config.withdrawal_chapters,
            )
            self.leverage = _LeverageBuffers(iterations, horizon)

        self.sell: Optional[SellStrategy] = None
        self.baseline: Optional[_BaselineBuffers] = None
        if config.sell_strategy is not None:
            self.sell = SellStrategy(
                config.sell_strategy,
                baseline_schedule(
                    config.sell_strategy, config.sbloc, config.withdrawal_chapters
                ),
            )
            self.baseline = _BaselineBuffers(iterations, horizon)


class MonteCarloSimulator:
    """
    Runs a Buy-Borrow-Die Monte Carlo simulation.

    Parameters
    ----------
    config : SimulationConfig
        Run parameters; never mutated.
    portfolio : PortfolioConfig
        Assets, weights, histories and correlation; never mutated.
    on_event : callable, optional
        Receives a :class:`~bbdsim.simulation.events.SimulationEvent` at
        run start, after each batch, on calibration fallback, with the
        diagnostic summary and at completion.

    Examples
    --------
    >>> simulator = MonteCarloSimulator(config, portfolio)
    >>> output = simulator.run(on_progress=print)

    Cooperative use, one batch at a time:

    >>> for progress in simulator.iter_batches():
    ...     if progress.percent > 50:
    ...         pass
    >>> output = simulator.output
    """

    def __init__(
        self,
        config: SimulationConfig,
        portfolio: PortfolioConfig,
        on_event: Optional[EventSink] = None
    ) -> None:
        self.config = config
        self.portfolio = portfolio
        self.on_event = on_event
        self.output: Optional[SimulationOutput] = None
        self._state: Optional[_RunState] = None

    @property
    def generator(self) -> Optional[ReturnGenerator]:
        return self._state.generator if self._state is not None else None

    def run(
        self,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[CancellationHandle] = None
    ) -> SimulationOutput:
        """
        Run every iteration and aggregate the results.

        Parameters
        ----------
        on_progress : callable, optional
            Called with the completed percentage (0-100) after each batch.
        cancel_event : object with ``is_set()``, optional
            Checked before each batch.

        Returns
        -------
        SimulationOutput
            Complete results.

        Raises
        ------
        ConfigurationError
            If the portfolio cannot be simulated, e.g. too little history
            for regime calibration.
        SimulationCancelledError
            If ``cancel_event`` is set before a batch.
        """
        bar = self._progress_bar()
        try:
            for progress in self.iter_batches(cancel_event):
                if bar is not None:
                    bar.update(progress.completed - bar.n)
                if on_progress is not None:
                    on_progress(progress.percent)
        finally:
            if bar is not None:
                bar.close()
        return self._finished_output()

    async def run_async(
        self,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[CancellationHandle] = None
    ) -> SimulationOutput:
        """
        Like :meth:`run`, yielding to the event loop after every batch.
        """
        bar = self._progress_bar()
        try:
            for progress in self.iter_batches(cancel_event):
                if bar is not None:
                    bar.update(progress.completed - bar.n)
                if on_progress is not None:
                    on_progress(progress.percent)
                await asyncio.sleep(0)
        finally:
            if bar is not None:
                bar.close()
        return self._finished_output()

    def _finished_output(self) -> SimulationOutput:
        if self.output is None:
            raise RuntimeError("Batch loop ended without producing output")
        return self.output

    def iter_batches(
        self,
        cancel_event: Optional[CancellationHandle] = None
    ) -> Iterator[BatchProgress]:
        """
        Run the simulation one batch per step.

        Yields a :class:`BatchProgress` after each batch. When the iterator
        is exhausted the aggregated result is available as :attr:`output`.

        Raises
        ------
        SimulationCancelledError
            If ``cancel_event`` is set when the next batch is due.
        """
        config = self.config
        total = config.iterations
        self.output = None
        self._state = state = _RunState(config, self.portfolio)

        logger.info(
            "Starting %s run: method=%s, iterations=%d, horizon=%d, seed=%r",
            config.run_mode.value, config.method.value, total,
            config.time_horizon, config.seed,
        )
        emit(
            self.on_event, RUN_STARTED,
            run_mode=config.run_mode.value, method=config.method.value,
            iterations=total, time_horizon=config.time_horizon, seed=config.seed,
        )
        self._report_calibration(state)

        completed = 0
        while completed < total:
            if is_cancelled(cancel_event):
                logger.info("Cancellation requested at iteration %d/%d", completed, total)
                self._state = None
                raise SimulationCancelledError(completed, total)

            end = min(completed + config.batch_size, total)
            for iteration in range(completed, end):
                self._simulate_iteration(state, iteration)
            completed = end

            logger.debug("Completed %d/%d iterations", completed, total)
            emit(self.on_event, BATCH_COMPLETE, completed=completed, total=total)
            yield BatchProgress(completed=completed, total=total)

        self.output = self._aggregate(state)
        logger.info(
            "Run complete: median terminal %.0f, success rate %.1f%%",
            self.output.statistics.median, self.output.statistics.success_rate,
        )
        emit(
            self.on_event, RUN_COMPLETE,
            iterations=total, median=self.output.statistics.median,
            success_rate=self.output.statistics.success_rate,
        )

    def _progress_bar(self) -> Optional[tqdm]:
        if not self.config.progress_bar:
            return None
        return tqdm(total=self.config.iterations, desc="Running simulations", unit="iter")

    def _report_calibration(self, state: _RunState) -> None:
        generator = state.generator
        if not isinstance(generator, RegimeSwitchingGenerator):
            return
        for calibration in generator.calibrations:
            if calibration.validation.used_fallback:
                emit(
                    self.on_event, CALIBRATION_FALLBACK,
                    asset_id=calibration.asset_id,
                    issues=[issue.message for issue in calibration.validation.issues],
                )

    def _simulate_iteration(self, state: _RunState, i: int) -> None:
        config = self.config
        horizon = config.time_horizon
        initial_value = config.initial_value

        asset_returns = state.generator.generate(horizon, state.rng)
        returns = state.weights @ asset_returns
        state.portfolio_returns[i] = returns

        if state.engine is not None and state.leverage is not None:
            buffers = state.leverage
            sbloc_state = state.engine.initial_state(initial_value)
            for year in range(horizon):
                step = state.engine.step(sbloc_state, float(returns[year]), year)
                sbloc_state = step.state

                if step.intra_year_margin_call:
                    buffers.margin_call_counts[i] += 1
                    if buffers.first_margin_call_year[i] < 0:
                        buffers.first_margin_call_year[i] = year + 1
                if step.portfolio_failed and buffers.first_failure_year[i] < 0:
                    buffers.first_failure_year[i] = year + 1
                buffers.haircut_losses[i] += step.haircut_loss
                buffers.interest_charged[i] += step.interest_charged
                buffers.dividend_taxes_borrowed[i] += step.dividend_tax_borrowed
                buffers.loan_balances[i, year] = sbloc_state.loan_balance
                state.net_values[i, year] = sbloc_state.net_worth

            buffers.final_gross[i] = sbloc_state.portfolio_value
        else:
            value = initial_value
            for year in range(horizon):
                value = max(0.0, value * (1.0 + returns[year]))
                state.net_values[i, year] = value
            state.terminal_values[i] = value

        if state.sell is not None and state.baseline is not None:
            result = state.sell.run(
                returns, initial_value, out=state.baseline.yearly_values[i]
            )
            state.baseline.terminal_values[i] = result.terminal_value
            state.baseline.depletion_years[i] = result.depletion_year
            state.baseline.capital_gains_taxes[i] = result.capital_gains_taxes
            state.baseline.dividend_taxes[i] = result.dividend_taxes

    def _deflators(self) -> NDArray[np.float64]:
        """Price level at the end of each year, all ones for nominal runs."""
        years = np.arange(1, self.config.time_horizon + 1, dtype=np.float64)
        if not self.config.inflation_adjusted:
            return np.ones_like(years)
        return (1.0 + self.config.inflation_rate) ** years

    def _estate_capital_gains_rate(self) -> float:
        if self.config.tax_modeling is not None:
            return self.config.tax_modeling.capital_gains_rate
        if self.config.sell_strategy is not None:
            return self.config.sell_strategy.capital_gains_rate
        return DEFAULT_CAPITAL_GAINS_RATE

    def _aggregate(self, state: _RunState) -> SimulationOutput:
        config = self.config
        deflators = self._deflators()
        final_deflator = deflators[-1]

        if state.leverage is not None:
            final_loans = state.leverage.loan_balances[:, -1]
            state.terminal_values[:] = state.leverage.final_gross - final_loans

        terminal = state.terminal_values / final_deflator
        net_values = aggregate.deflate(state.net_values, deflators)
        statistics = aggregate.compute_statistics(terminal, config.initial_value)
        negative = aggregate.count_negative(terminal)

        output_fields: Dict[str, Any] = {}
        leverage_diagnostics = None
        if state.leverage is not None and state.engine is not None:
            buffers = state.leverage
            loans = aggregate.deflate(buffers.loan_balances, deflators)
            withdrawals = state.engine.schedule.cumulative(config.time_horizon)
            output_fields["sbloc_trajectory"] = aggregate.sbloc_trajectory(
                loans, withdrawals / deflators
            )
            output_fields["margin_call_stats"] = aggregate.margin_call_statistics(
                buffers.first_margin_call_year, config.time_horizon
            )
            leverage_diagnostics = aggregate.leverage_diagnostics(
                buffers.margin_call_counts,
                buffers.haircut_losses,
                buffers.interest_charged,
                buffers.dividend_taxes_borrowed,
                buffers.final_gross / final_deflator,
                buffers.first_failure_year,
            )

        if state.baseline is not None:
            baseline = state.baseline
            yearly = aggregate.deflate(
                baseline.yearly_values, np.concatenate(([1.0], deflators))
            )
            output_fields["sell_strategy"] = aggregate.sell_strategy_output(
                baseline.terminal_values / final_deflator,
                baseline.depletion_years,
                baseline.capital_gains_taxes,
                baseline.dividend_taxes,
                yearly,
                config.initial_value,
            )

        if state.leverage is not None:
            sell_output = output_fields.get("sell_strategy")
            output_fields["estate_analysis"] = aggregate.estate_analysis(
                terminal,
                state.leverage.loan_balances[:, -1] / final_deflator,
                state.leverage.dividend_taxes_borrowed,
                config.initial_value,
                self._estate_capital_gains_rate(),
                sell_terminal_values=(
                    sell_output.terminal_values if sell_output is not None else None
                ),
            )

        diagnostics = self._diagnostics(state, terminal, negative, leverage_diagnostics)
        emit(
            self.on_event, DIAGNOSTIC_SUMMARY,
            negative_terminal_count=negative,
            failure_count=(
                leverage_diagnostics.failure_count if leverage_diagnostics is not None else 0
            ),
            margin_call_free=(
                leverage_diagnostics.margin_calls.zero
                if leverage_diagnostics is not None else config.iterations
            ),
            cumulative_return_median=diagnostics.returns.cumulative_median,
        )

        return SimulationOutput(
            run_mode=config.run_mode,
            iterations=config.iterations,
            time_horizon=config.time_horizon,
            initial_value=config.initial_value,
            terminal_values=terminal,
            yearly_percentiles=aggregate.percentile_curves(net_values),
            statistics=statistics,
            diagnostics=diagnostics,
            **output_fields,
        )

    def _diagnostics(
        self,
        state: _RunState,
        terminal: NDArray[np.float64],
        negative: int,
        leverage_diagnostics: Optional[LeverageDiagnostics]
    ) -> SimulationDiagnostics:
        generator = state.generator
        calibrations: List[Dict[str, Any]] = []
        frequencies: Dict[str, float] = {}
        if isinstance(generator, RegimeSwitchingGenerator):
            frequencies = generator.regime_frequencies()
            for calibration in generator.calibrations:
                calibrations.append({
                    "asset_id": calibration.asset_id,
                    "params": {
                        regime: {"mean": p.mean, "stddev": p.stddev}
                        for regime, p in calibration.params.items()
                    },
                    "used_fallback": calibration.validation.used_fallback,
                    "issues": [issue.message for issue in calibration.validation.issues],
                })

        return SimulationDiagnostics(
            generator=generator.describe(),
            returns=aggregate.return_diagnostics(state.portfolio_returns),
            path_coherent_indices=aggregate.path_coherent_indices(terminal),
            negative_terminal_count=negative,
            leverage=leverage_diagnostics,
            regime_calibrations=calibrations,
            regime_frequencies=frequencies,
        )

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"MonteCarloSimulator(mode={self.config.run_mode.value}, "
            f"method={self.config.method.value}, iterations={self.config.iterations}, "
            f"assets={self.portfolio.n_assets})"
        )


def run_simulation(
    config: SimulationConfig,
    portfolio: PortfolioConfig,
    on_progress: Optional[ProgressCallback] = None,
    cancel_event: Optional[CancellationHandle] = None,
    on_event: Optional[EventSink] = None
) -> SimulationOutput:
    """
    Run a full simulation.

    Parameters
    ----------
    config : SimulationConfig
        Run parameters.
    portfolio : PortfolioConfig
        Assets and correlation.
    on_progress : callable, optional
        Receives the completed percentage after each batch.
    cancel_event : object with ``is_set()``, optional
        Polled before each batch.
    on_event : callable, optional
        Structured event sink.

    Returns
    -------
    SimulationOutput
        Aggregated results.

    Raises
    ------
    ConfigurationError
        If the inputs cannot be simulated.
    SimulationCancelledError
        If cancelled; no partial output is produced.
    """
    simulator = MonteCarloSimulator(config, portfolio, on_event=on_event)
    return simulator.run(on_progress=on_progress, cancel_event=cancel_event)


async def run_simulation_async(
    config: SimulationConfig,
    portfolio: PortfolioConfig,
    on_progress: Optional[ProgressCallback] = None,
    cancel_event: Optional[CancellationHandle] = None,
    on_event: Optional[EventSink] = None
) -> SimulationOutput:
    """Coroutine version of :func:`run_simulation`."""
    simulator = MonteCarloSimulator(config, portfolio, on_event=on_event)
    return await simulator.run_async(on_progress=on_progress, cancel_event=cancel_event)
