"""
bbdsim: Monte Carlo simulation of the Buy-Borrow-Die strategy.

Compares living off a securities-backed line of credit against selling
holdings, over return paths drawn by bootstrap resampling, regime
switching or fat-tailed Student-t models.
"""

from bbdsim.config import (
    AssetConfig,
    PortfolioConfig,
    SBLOCConfig,
    SellStrategyConfig,
    SimulationConfig,
    TaxModelingConfig,
    WithdrawalChapter,
    WithdrawalChapters,
    make_portfolio,
)
from bbdsim.domain import AssetClass, CalibrationMode, ReturnMethod, RunMode
from bbdsim.errors import CalibrationError, ConfigurationError, SimulationCancelledError
from bbdsim.simulation import (
    MonteCarloSimulator,
    SimulationOutput,
    run_simulation,
    run_simulation_async,
)

__version__ = "0.1.0"

__all__ = [
    # Configuration
    "AssetConfig",
    "PortfolioConfig",
    "SBLOCConfig",
    "SellStrategyConfig",
    "SimulationConfig",
    "TaxModelingConfig",
    "WithdrawalChapter",
    "WithdrawalChapters",
    "make_portfolio",
    "AssetClass",
    "CalibrationMode",
    "ReturnMethod",
    "RunMode",
    # Errors
    "ConfigurationError",
    "CalibrationError",
    "SimulationCancelledError",
    # Simulation
    "MonteCarloSimulator",
    "SimulationOutput",
    "run_simulation",
    "run_simulation_async",
]
