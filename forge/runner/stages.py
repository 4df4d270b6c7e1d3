"""
Phase execution framework.

Wraps a single phase step with timing, run-log entries and error
classification. Recoverable phase errors are captured in the PhaseOutcome;
anything else propagates.
"""

import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from forge.document.model import MissingDependencyError
from forge.lib.constants import PHASE_COMPLETED
from forge.lib.validate import ValidationError
from forge.runner.context import RunContext


@dataclass
class ProducerExecutionError(Exception):
    """A producer raised or reported failure."""
    phase: str
    message: str
    details: Optional[dict] = None

    def __str__(self):
        return f"[{self.phase}] {self.message}"


class PhaseFailed(Exception):
    """Pipeline aborted on a failed phase.

    Carries the underlying error and the summary of the run up to the abort.
    """

    def __init__(self, phase: str, error: Exception, summary=None):
        self.phase = phase
        self.error = error
        self.summary = summary
        super().__init__(f"Phase {phase} failed: {error}")


RECOVERABLE = (MissingDependencyError, ValidationError, ProducerExecutionError)


@dataclass
class PhaseOutcome:
    phase: str
    status: str
    duration_ms: int = 0
    error: Optional[Exception] = None
    warnings: list[str] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return self.status != PHASE_COMPLETED

    def to_dict(self) -> dict:
        return {
            "phase": self.phase,
            "status": self.status,
            "durationMs": self.duration_ms,
            "error": str(self.error) if self.error else None,
            "warnings": self.warnings,
        }


def elapsed_ms(start: float) -> int:
    return int(round((time.monotonic() - start) * 1000))


async def run_phase(
    ctx: RunContext,
    phase_id: str,
    phase_fn: Callable[[], Awaitable[list[str]]],
    on_error: Callable[[Exception], str],
) -> PhaseOutcome:
    """
    Run a single phase step with timing and error handling.

    phase_fn returns the validation warnings on success. on_error records the
    failure in the document and returns the status the phase was left in.
    """
    ctx.log(f"Starting phase: {phase_id}")
    start = time.monotonic()

    try:
        warnings = await phase_fn()
    except RECOVERABLE as e:
        duration = elapsed_ms(start)
        status = on_error(e)
        ctx.record_phase(phase_id, status, duration / 1000, str(e))
        ctx.log(f"Phase {phase_id} failed ({type(e).__name__}): {e}")
        return PhaseOutcome(phase_id, status, duration, error=e)

    duration = elapsed_ms(start)
    ctx.record_phase(phase_id, PHASE_COMPLETED, duration / 1000, "; ".join(warnings))
    ctx.log(f"Phase {phase_id} completed ({duration}ms)")
    return PhaseOutcome(phase_id, PHASE_COMPLETED, duration, warnings=warnings)
