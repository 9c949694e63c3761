"""
Progress reporting, cancellation and the structured event sink.

The runner reports to three optional collaborators:

- a progress callback receiving the completed percentage after every batch,
- a cancellation handle (anything with ``is_set()``, such as
  :class:`threading.Event` or :class:`asyncio.Event`) polled before every
  batch,
- an event sink receiving :class:`SimulationEvent` records at fixed
  checkpoints.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Protocol


RUN_STARTED = "run_started"
BATCH_COMPLETE = "batch_complete"
CALIBRATION_FALLBACK = "calibration_fallback"
DIAGNOSTIC_SUMMARY = "diagnostic_summary"
RUN_COMPLETE = "run_complete"

EVENT_KINDS = (
    RUN_STARTED,
    BATCH_COMPLETE,
    CALIBRATION_FALLBACK,
    DIAGNOSTIC_SUMMARY,
    RUN_COMPLETE,
)


class CancellationHandle(Protocol):
    def is_set(self) -> bool:
        ...


@dataclass(frozen=True)
class SimulationEvent:
    """A checkpoint reached by the runner."""

    kind: str
    payload: Dict[str, Any] = field(default_factory=dict)


ProgressCallback = Callable[[float], None]
EventSink = Callable[[SimulationEvent], None]


@dataclass(frozen=True)
class BatchProgress:
    """
    Control point yielded after each batch.

    Attributes
    ----------
    completed : int
        Iterations finished so far.
    total : int
        Iterations requested.
    """

    completed: int
    total: int

    @property
    def percent(self) -> float:
        return 100.0 * self.completed / self.total

    @property
    def done(self) -> bool:
        return self.completed >= self.total


def emit(sink: Optional[EventSink], kind: str, **payload: Any) -> None:
    """Send an event to ``sink`` if one is configured."""
    if sink is None:
        return
    sink(SimulationEvent(kind=kind, payload=payload))


def is_cancelled(handle: Optional[CancellationHandle]) -> bool:
    return handle is not None and handle.is_set()
