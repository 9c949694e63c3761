"""
Exception types raised by the simulation engine.

Configuration problems are reported before any iteration runs, so callers
can distinguish a rejected request from a run that was stopped midway.
"""


class ConfigurationError(ValueError):
    """Raised when a portfolio, simulation or strategy configuration is invalid."""


class CalibrationError(ConfigurationError):
    """Raised when regime parameters cannot be estimated from a return series."""


class SimulationCancelledError(RuntimeError):
    """
    Raised when a run is cancelled between batches.

    Parameters
    ----------
    completed : int
        Number of iterations finished before cancellation was observed.
    total : int
        Number of iterations requested.
    """

    def __init__(self, completed: int, total: int) -> None:
        self.completed = completed
        self.total = total
        super().__init__(
            f"Simulation cancelled after {completed} of {total} iterations"
        )
