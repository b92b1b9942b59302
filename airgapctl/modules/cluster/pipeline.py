"""Check-then-act step pipeline.

Every remote change goes through a Step: `check()` reports whether the node
already is in the desired state, `action()` converges it. The pipeline runs
steps in order and stops at the first failure. Nothing is retried here;
re-running the whole pipeline is cheap because satisfied steps are skipped.
"""
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple

from airgapctl.modules.errors import StepError

logger = logging.getLogger("airgapctl.cluster.pipeline")


@dataclass(frozen=True)
class Step:
    """A named unit of remote convergence.

    `check` must not change cluster state. After a successful `action`,
    `check` must return True.
    """
    name: str
    check: Callable[[], bool]
    action: Callable[[], None]


class StepOutcome(str, Enum):
    SKIPPED = "skipped"
    WOULD_EXECUTE = "would execute"
    EXECUTED = "executed"


class PipelineObserver:
    """Receives pipeline events. The base class ignores them."""

    def step_started(self, prefix: str, step: Step) -> None:
        pass

    def step_skipped(self, prefix: str, step: Step, elapsed: float) -> None:
        pass

    def step_would_execute(self, prefix: str, step: Step, elapsed: float) -> None:
        pass

    def step_done(self, prefix: str, step: Step, elapsed: float) -> None:
        pass

    def step_failed(self, prefix: str, step: Step, phase: str, elapsed: float, error: BaseException) -> None:
        pass


class LoggingObserver(PipelineObserver):
    """Writes pipeline events to the log."""

    def __init__(self, log: Optional[logging.Logger] = None):
        self.log = log or logger

    def step_started(self, prefix, step):
        self.log.info(f"{prefix}[STEP] {step.name} ...")

    def step_skipped(self, prefix, step, elapsed):
        self.log.info(f"{prefix}  └─ ✅ already satisfied, skipped")

    def step_would_execute(self, prefix, step, elapsed):
        self.log.info(f"{prefix}  └─ 🔎 would execute (dry run, {elapsed:.2f}s)")

    def step_done(self, prefix, step, elapsed):
        self.log.info(f"{prefix}  └─ ✅ done ({elapsed:.2f}s)")

    def step_failed(self, prefix, step, phase, elapsed, error):
        self.log.error(f"{prefix}  └─ ❌ {phase} failed after {elapsed:.2f}s: {error}")


def run_step(
    step: Step,
    prefix: str = "",
    dry_run: bool = False,
    observer: Optional[PipelineObserver] = None,
) -> StepOutcome:
    """Run one step. Raises StepError if its check or action fails."""
    observer = observer or LoggingObserver()
    start = time.monotonic()
    observer.step_started(prefix, step)

    try:
        satisfied = step.check()
    except Exception as e:
        elapsed = time.monotonic() - start
        observer.step_failed(prefix, step, "check", elapsed, e)
        raise StepError(step.name, "check", elapsed, e) from e

    if satisfied:
        observer.step_skipped(prefix, step, time.monotonic() - start)
        return StepOutcome.SKIPPED

    if dry_run:
        observer.step_would_execute(prefix, step, time.monotonic() - start)
        return StepOutcome.WOULD_EXECUTE

    try:
        step.action()
    except Exception as e:
        elapsed = time.monotonic() - start
        observer.step_failed(prefix, step, "action", elapsed, e)
        raise StepError(step.name, "action", elapsed, e) from e

    observer.step_done(prefix, step, time.monotonic() - start)
    return StepOutcome.EXECUTED


def run_pipeline(
    steps: Sequence[Step],
    prefix: str = "",
    dry_run: bool = False,
    observer: Optional[PipelineObserver] = None,
) -> List[Tuple[str, StepOutcome]]:
    """Run steps in order, stopping at the first failure.

    Args:
        steps: Steps to run
        prefix: Prepended to every log line, usually "[<node ip>] "
        dry_run: Report steps that would run instead of running their actions
        observer: Receives step events (defaults to logging)

    Returns:
        (step name, outcome) for every step, in order

    Raises:
        StepError: wrapping the first check or action failure
    """
    observer = observer or LoggingObserver()
    return [(step.name, run_step(step, prefix, dry_run, observer)) for step in steps]
