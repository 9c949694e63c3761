"""
Monte Carlo orchestration and result aggregation.

**Usage:**
```python
from bbdsim import SimulationConfig, SBLOCConfig, run_simulation

config = SimulationConfig(iterations=10_000, time_horizon=30, seed="demo",
                          sbloc=SBLOCConfig())
output = run_simulation(config, portfolio, on_progress=print)
output.statistics.median
```
"""

from bbdsim.simulation.events import BatchProgress, SimulationEvent
from bbdsim.simulation.output import SimulationOutput
from bbdsim.simulation.runner import (
    MonteCarloSimulator,
    run_simulation,
    run_simulation_async,
)

__all__ = [
    "MonteCarloSimulator",
    "run_simulation",
    "run_simulation_async",
    "SimulationOutput",
    "SimulationEvent",
    "BatchProgress",
]
