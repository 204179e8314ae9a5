"""Idempotent step execution for bootstrap workflows.

A workflow is a fixed list of :class:`ProvisioningStep` objects. Each step may
carry an existence predicate; when the predicate holds the creating action is
skipped and ``on_existing`` imports whatever facts the action would have
produced. Every step outcome is captured as a :class:`StepResult` and the
executor alone decides whether to continue, so a failure stops the run at the
step that failed and leaves later resources untouched.

Examples
--------
>>> from eks_bootstrap._run_context import RunContext
>>> ctx = RunContext({"name": "demo"})
>>> steps = [
...     ProvisioningStep(
...         name="greeting",
...         action=lambda c: c.set("greeting", f"hello {c.require('name')}"),
...         reads=("name",),
...         writes=("greeting",),
...     )
... ]
>>> report = execute_steps(steps, ctx, announce=lambda _: None)
>>> report.succeeded, ctx.require("greeting")
(True, 'hello demo')
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field

from ._errors import BootstrapError, StepOrderError
from ._run_context import RunContext

logger = logging.getLogger(__name__)

StepAction = Callable[[RunContext], None]
StepPredicate = Callable[[RunContext], bool]


class StepStatus(enum.StrEnum):
    """Outcome of a single step."""

    APPLIED = "applied"
    SATISFIED = "satisfied"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class ProvisioningStep:
    """A named unit of idempotent work.

    Attributes
    ----------
    name
        Identifier printed in progress output and reports.
    action
        Creating (or otherwise mutating) action, run when ``exists`` is
        absent or returns ``False``.
    exists
        Existence predicate against the remote system.
    on_existing
        Import path run instead of ``action`` when ``exists`` holds.
    reads
        Run context keys the step consumes.
    writes
        Run context keys the step guarantees to produce on success.
    """

    name: str
    action: StepAction
    exists: StepPredicate | None = None
    on_existing: StepAction | None = None
    reads: tuple[str, ...] = ()
    writes: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class StepResult:
    """Outcome of running one step."""

    name: str
    status: StepStatus
    error: BootstrapError | None = None


@dataclass(slots=True)
class ExecutionReport:
    """Ordered step results of one workflow run."""

    results: list[StepResult] = field(default_factory=list)

    @property
    def failure(self) -> StepResult | None:
        return next(
            (result for result in self.results if result.status is StepStatus.FAILED),
            None,
        )

    @property
    def succeeded(self) -> bool:
        return self.failure is None

    def names_with(self, status: StepStatus) -> list[str]:
        return [result.name for result in self.results if result.status is status]

    def raise_for_failure(self) -> None:
        """Re-raise the error of the failed step, if any."""
        failure = self.failure
        if failure is not None and failure.error is not None:
            raise failure.error


def validate_step_order(steps: Sequence[ProvisioningStep], available: Iterable[str]) -> None:
    """Check that every key a step reads is produced before that step runs.

    Parameters
    ----------
    steps
        Steps in execution order.
    available
        Keys already present in the run context before the first step.

    Raises
    ------
    StepOrderError
        On the first step that reads an unproduced key, or on duplicate
        step names.

    Examples
    --------
    >>> noop = lambda _ctx: None
    >>> validate_step_order([ProvisioningStep("a", noop, reads=("x",))], available=[])
    Traceback (most recent call last):
    ...
    eks_bootstrap._errors.StepOrderError: Step 'a' reads 'x' before any earlier step writes it
    """

    produced = set(available)
    seen: set[str] = set()
    for step in steps:
        if step.name in seen:
            msg = f"Duplicate step name {step.name!r}"
            raise StepOrderError(msg)
        seen.add(step.name)
        for key in step.reads:
            if key not in produced:
                msg = f"Step {step.name!r} reads {key!r} before any earlier step writes it"
                raise StepOrderError(msg)
        produced.update(step.writes)


def _check_writes(step: ProvisioningStep, context: RunContext) -> None:
    missing = [key for key in step.writes if key not in context]
    if missing:
        msg = f"Step {step.name!r} did not produce {', '.join(missing)}"
        raise StepOrderError(msg)


def _run_step(step: ProvisioningStep, context: RunContext) -> StepResult:
    try:
        if step.exists is not None and step.exists(context):
            if step.on_existing is not None:
                step.on_existing(context)
            status = StepStatus.SATISFIED
        else:
            step.action(context)
            status = StepStatus.APPLIED
        _check_writes(step, context)
    except BootstrapError as exc:
        return StepResult(step.name, StepStatus.FAILED, exc)
    return StepResult(step.name, status)


def execute_steps(
    steps: Sequence[ProvisioningStep],
    context: RunContext,
    *,
    announce: Callable[[str], object] = print,
) -> ExecutionReport:
    """Run *steps* in order against *context*, stopping at the first failure.

    The declared read/write ordering is validated before any step runs, so an
    ordering mistake aborts without touching the remote system.
    """

    validate_step_order(steps, context.keys())
    report = ExecutionReport()
    for step in steps:
        announce(f"--- {step.name} ---")
        result = _run_step(step, context)
        report.results.append(result)
        if result.status is StepStatus.FAILED:
            logger.error("step %s failed: %s", step.name, result.error)
            break
        if result.status is StepStatus.SATISFIED:
            announce(f"{step.name}: already satisfied")
    return report
