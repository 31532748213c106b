from __future__ import annotations

import contextlib
import logging
import signal
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Optional, Protocol, Sequence

from .errors import TaskError, TaskExecutionError
from .graph import ComponentGraph
from .progress import ProgressSink
from .status import TaskStatus
from .tasks import TaskRunner

logger = logging.getLogger(__name__)


class StateStore(Protocol):
    def is_done(self, component_id: str) -> bool:
        ...

    def mark_done(self, component_id: str) -> None:
        ...


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    backoff_seconds: float = 5.0

    def delay_before(self, attempt: int) -> float:
        """Seconds to wait before the given 1-based attempt; grows with each retry."""
        if attempt <= 1:
            return 0.0
        return self.backoff_seconds * attempt


class CancelToken:
    """Set from a signal handler; checked by the executor between tasks."""

    def __init__(self) -> None:
        self.cancelled = False
        self.signum: Optional[int] = None

    def cancel(self, signum: Optional[int] = None) -> None:
        self.cancelled = True
        self.signum = signum


@contextlib.contextmanager
def interrupt_guard(
    token: CancelToken, signals: Sequence[int] = (signal.SIGINT, signal.SIGTERM)
) -> Iterator[CancelToken]:
    """Turn SIGINT/SIGTERM into a cancellation request for the duration of the block."""

    def _handler(signum: int, frame: object) -> None:
        if not token.cancelled:
            logger.warning(
                "Interrupt received (%s); stopping after the current task",
                signal.Signals(signum).name,
            )
        token.cancel(signum)

    previous = {}
    for sig in signals:
        previous[sig] = signal.signal(sig, _handler)
    try:
        yield token
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


@dataclass
class TaskResult:
    component_id: str
    status: TaskStatus = TaskStatus.PENDING
    attempts: int = 0
    resumed: bool = False
    error: Optional[str] = None
    blocked_by: Optional[str] = None


@dataclass
class ExecutionReport:
    plan: List[str]
    results: Dict[str, TaskResult] = field(default_factory=dict)
    cancelled: bool = False
    dry_run: bool = False

    def _with_status(self, status: TaskStatus) -> List[str]:
        return [cid for cid, r in self.results.items() if r.status == status]

    @property
    def succeeded(self) -> List[str]:
        return self._with_status(TaskStatus.SUCCEEDED)

    @property
    def failed(self) -> List[str]:
        return self._with_status(TaskStatus.FAILED)

    @property
    def skipped(self) -> List[str]:
        return self._with_status(TaskStatus.SKIPPED)

    @property
    def resumed(self) -> List[str]:
        return [cid for cid, r in self.results.items() if r.resumed]

    @property
    def not_reached(self) -> List[str]:
        return [cid for cid in self.plan if not self.results[cid].status.terminal]

    @property
    def exit_code(self) -> int:
        if self.cancelled:
            return 130
        if self.failed or self.skipped:
            return 1
        return 0

    def summary(self) -> Dict[str, int]:
        return {
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
            "skipped": len(self.skipped),
        }


def _run_with_retries(
    *,
    cid: str,
    graph: ComponentGraph,
    runner: TaskRunner,
    policy: RetryPolicy,
    timeout: Optional[float],
    cancel: CancelToken,
    result: TaskResult,
    sleep: Callable[[float], None],
) -> TaskStatus:
    component = graph[cid]

    for attempt in range(1, policy.max_attempts + 1):
        if attempt > 1:
            if cancel.cancelled:
                logger.warning("Not retrying %s: run cancelled", cid)
                return TaskStatus.FAILED
            delay = policy.delay_before(attempt)
            logger.info("Retry attempt %d/%d for %s in %.1fs", attempt, policy.max_attempts, cid, delay)
            sleep(delay)

        result.attempts = attempt
        try:
            runner(component, timeout=timeout)
        except TaskError as e:
            result.error = str(e)
            logger.warning("Attempt %d/%d failed for %s: %s", attempt, policy.max_attempts, cid, e)
            if isinstance(e, TaskExecutionError) and not e.retryable:
                return TaskStatus.FAILED
            continue

        result.error = None
        return TaskStatus.SUCCEEDED

    logger.error("Failed to install %s after %d attempt(s)", cid, result.attempts)
    return TaskStatus.FAILED


def run_plan(
    *,
    graph: ComponentGraph,
    plan: Sequence[str],
    store: StateStore,
    runner: TaskRunner,
    sink: ProgressSink,
    policy: RetryPolicy = RetryPolicy(),
    timeout: Optional[float] = None,
    resume: bool = False,
    dry_run: bool = False,
    cancel: Optional[CancelToken] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> ExecutionReport:
    """Run a resolved plan in order, one task at a time.

    - resume: ids already recorded in the store count as SUCCEEDED without running.
    - A FAILED or SKIPPED requirement makes an id SKIPPED; since the plan is
      dependency ordered, this propagates transitively.
    - Successful ids are persisted via store.mark_done before the next task
      starts. Store failures propagate and abort the run.
    - dry_run invokes nothing and writes nothing.
    """

    cancel = cancel or CancelToken()
    report = ExecutionReport(
        plan=list(plan),
        results={cid: TaskResult(component_id=cid) for cid in plan},
        dry_run=dry_run,
    )
    total = len(plan)

    for index, cid in enumerate(plan, start=1):
        if cancel.cancelled:
            report.cancelled = True
            logger.warning("Run cancelled before %s; %d task(s) not started", cid, total - index + 1)
            break

        result = report.results[cid]

        if resume and store.is_done(cid):
            logger.info("Skipping %s (already completed)", cid)
            result.status = TaskStatus.SUCCEEDED
            result.resumed = True
            sink.report(index, total, cid, result.status)
            continue

        blocked_by = next(
            (dep for dep in graph[cid].requires if report.results[dep].status.blocks_dependents),
            None,
        )
        if blocked_by is not None:
            logger.warning("Skipping %s: requirement %s did not succeed", cid, blocked_by)
            result.status = TaskStatus.SKIPPED
            result.blocked_by = blocked_by
            sink.report(index, total, cid, result.status)
            continue

        result.status = TaskStatus.RUNNING
        sink.report(index, total, cid, result.status)

        if dry_run:
            logger.info("DRY RUN: would execute %s for %s", graph[cid].task, cid)
            status = TaskStatus.SUCCEEDED
        else:
            logger.info("Running %s (%s)", cid, graph[cid].description)
            status = _run_with_retries(
                cid=cid,
                graph=graph,
                runner=runner,
                policy=policy,
                timeout=timeout,
                cancel=cancel,
                result=result,
                sleep=sleep,
            )
            if status == TaskStatus.SUCCEEDED:
                store.mark_done(cid)

        result.status = status
        sink.report(index, total, cid, result.status)

    summary = report.summary()
    log = logger.warning if report.exit_code else logger.info
    log(
        "Installation summary: %d succeeded, %d failed, %d skipped%s",
        summary["succeeded"],
        summary["failed"],
        summary["skipped"],
        " (cancelled)" if report.cancelled else "",
    )
    return report
