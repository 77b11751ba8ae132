"""Per-invocation time budgets.

Each call into the chunk engine gets its own wall-clock budget,
independent of how old the job is. The engine never interrupts a chunk
mid-way: it checks the budget after each committed chunk and pauses the
job once the budget is spent. A job may run for hours across many
paused and resumed invocations.

Example:
    >>> budget = TimeBudget(90.0)
    >>> process_one_chunk()
    >>> if budget.exhausted:
    ...     pause_job()
"""

import time
from dataclasses import dataclass, field


def monotonic() -> float:
    """Clock used by time budgets (patched in tests)."""
    return time.monotonic()


@dataclass
class TimeBudget:
    """Wall-clock budget for one engine invocation.

    Attributes:
        seconds: Budget length in seconds
        start_time: Monotonic timestamp the budget started at
    """

    seconds: float
    start_time: float = field(default=0.0)

    def __post_init__(self):
        if not self.start_time:
            self.start_time = monotonic()

    @property
    def elapsed(self) -> float:
        return monotonic() - self.start_time

    @property
    def remaining(self) -> float:
        """Seconds left; negative once the budget is spent."""
        return self.seconds - self.elapsed

    @property
    def exhausted(self) -> bool:
        return self.elapsed > self.seconds
