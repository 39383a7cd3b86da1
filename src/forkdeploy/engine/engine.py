"""
Orchestration engine: drives a Plan phase by phase, step by step.

Per phase: NOT_STARTED -> RUNNING -> COMPLETED | ABORTED. The first aborted
phase ends the run. Steps run strictly sequentially: later arguments depend
on earlier addresses, and every mutating call goes through one signing
identity whose operation counter must not be interleaved.
"""

from __future__ import annotations

import copy
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

import structlog

from forkdeploy.core.errors import (
    ForkDeployError,
    LedgerCorruptionError,
    RunCancelledError,
    StepExecutionError,
    UnresolvedDependencyError,
)
from forkdeploy.engine.backend import ResourceBackend
from forkdeploy.engine.events import EventSink, LoggingSink, PhaseEvent, StepEvent
from forkdeploy.engine.executor import RetryPolicy, StepExecutor
from forkdeploy.engine.hashing import compute_input_hash
from forkdeploy.engine.ledger import DeploymentLedger, LedgerEntry, LedgerStatus, utc_now
from forkdeploy.engine.models import (
    Phase,
    PhaseState,
    Plan,
    Resource,
    ResourceStatus,
    Step,
    StepResult,
    resolve_references,
)
from forkdeploy.engine.results import RunCollector, RunResult, RunStatus

logger = structlog.get_logger()


class CancellationToken:
    """Cooperative stop request, honored only between steps."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


@dataclass
class EngineContext:
    """Everything a run touches: backend, ledger, event sink and stop token."""

    backend: ResourceBackend
    ledger: DeploymentLedger
    sink: EventSink = field(default_factory=LoggingSink)
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    cancel_token: CancellationToken = field(default_factory=CancellationToken)
    sleep: Callable[[float], None] = time.sleep


class _PhaseAborted(Exception):
    pass


class OrchestrationEngine:
    """Walks a validated plan, consulting and updating the ledger around each step."""

    def __init__(self, ctx: EngineContext, executor: Optional[StepExecutor] = None) -> None:
        self._ctx = ctx
        self._executor = executor or StepExecutor(
            ctx.backend, retry_policy=ctx.retry_policy, sleep=ctx.sleep
        )

    def run(self, plan: Plan) -> RunResult:
        """
        Execute the plan.

        Step failures abort the current and all later phases and are
        reported on the returned RunResult together with the ledger state.

        Raises:
            LedgerCorruptionError: the ledger cannot be read; nothing runs
        """
        started = time.monotonic()
        run_id = uuid.uuid4().hex[:12]
        ledger = self._ctx.ledger
        ledger.load()

        resources: Dict[str, Resource] = copy.deepcopy(dict(plan.resources))
        collector = RunCollector(run_id, resources)
        for phase in plan.phases:
            collector.set_phase(phase.name, PhaseState.NOT_STARTED)

        log = logger.bind(run_id=run_id)
        log.info("run_started", phases=len(plan.phases), steps=len(plan.steps))

        for phase in plan.phases:
            try:
                self._run_phase(run_id, phase, resources, collector)
            except _PhaseAborted:
                break

        result = collector.finalize(ledger.latest(), time.monotonic() - started)
        log.info(
            "run_finished",
            status=result.status.value,
            executed=len(result.executed),
            skipped=len(result.skipped),
            failed_step_id=result.failed_step_id,
            duration_seconds=round(result.duration_seconds, 3),
        )
        return result

    def _run_phase(
        self,
        run_id: str,
        phase: Phase,
        resources: Dict[str, Resource],
        collector: RunCollector,
    ) -> None:
        log = logger.bind(run_id=run_id, phase=phase.name)
        self._transition(run_id, phase, PhaseState.RUNNING, collector)

        for step in phase.steps:
            if self._ctx.cancel_token.cancelled:
                log.warning("run_cancelled", next_step=step.step_id)
                error = RunCancelledError(
                    f"Run cancelled before {step.step_id}",
                    details={"step_id": step.step_id},
                )
                collector.record_failure(phase.name, error, step.step_id, RunStatus.CANCELLED)
                self._abort(run_id, phase, collector)

            try:
                self._run_step(run_id, phase, step, resources, collector)
            except ForkDeployError as e:
                log.error(
                    "phase_aborted",
                    step_id=step.step_id,
                    error_type=type(e).__name__,
                    error=e.message,
                )
                collector.record_failure(phase.name, e, step.step_id)
                self._abort(run_id, phase, collector)

        self._transition(run_id, phase, PhaseState.COMPLETED, collector)

    def _run_step(
        self,
        run_id: str,
        phase: Phase,
        step: Step,
        resources: Dict[str, Resource],
        collector: RunCollector,
    ) -> None:
        ledger = self._ctx.ledger
        resource = resources[step.resource_id]
        addresses = {rid: r.address for rid, r in resources.items()}

        resolved_args = resolve_references(step.args, addresses)
        handle: Optional[str] = None
        if not step.is_provision:
            handle = addresses.get(step.resource_id)
            if not handle:
                raise UnresolvedDependencyError(
                    f"Target resource '{step.resource_id}' of {step.step_id} has no address",
                    details={"step_id": step.step_id},
                )

        input_hash = compute_input_hash(
            step, resolved_args, kind=resource.kind, target_address=handle
        )

        completed = ledger.completed_entry(step.step_id, input_hash)
        if completed is not None:
            self._restore(step, completed, resource, collector)
            collector.record_skipped(step.step_id)
            self._emit_step(run_id, phase, step, "skipped", result=completed.result)
            return

        self._emit_step(run_id, phase, step, "started")
        try:
            outcome = self._executor.execute(
                step, resolved_args, kind=resource.kind, handle=handle
            )
        except StepExecutionError as e:
            if step.is_provision:
                resource.status = ResourceStatus.FAILED
            ledger.record(
                LedgerEntry(
                    step_id=step.step_id,
                    input_hash=input_hash,
                    status=LedgerStatus.FAILED,
                    error=e.message,
                    attempts=e.attempts,
                    timestamp=utc_now(),
                )
            )
            ledger.persist()
            self._emit_step(
                run_id, phase, step, "failed", error=e.message, attempts=e.attempts
            )
            raise

        self._apply(step, outcome, resource, collector)
        ledger.record(
            LedgerEntry(
                step_id=step.step_id,
                input_hash=input_hash,
                status=LedgerStatus.SUCCESS,
                result=outcome.summary(),
                attempts=outcome.attempts,
                timestamp=utc_now(),
            )
        )
        ledger.persist()
        collector.record_executed(step.step_id)
        self._emit_step(
            run_id, phase, step, "succeeded", result=outcome.summary(), attempts=outcome.attempts
        )

    def _apply(
        self, step: Step, outcome: StepResult, resource: Resource, collector: RunCollector
    ) -> None:
        if step.is_provision:
            resource.address = outcome.address
            resource.status = ResourceStatus.PROVISIONED
        elif step.grant is not None:
            collector.record_grant(step.grant)

    def _restore(
        self, step: Step, entry: LedgerEntry, resource: Resource, collector: RunCollector
    ) -> None:
        if step.is_provision:
            if not entry.address:
                raise LedgerCorruptionError(
                    f"Ledger entry for {step.step_id} carries no address",
                    details={"step_id": step.step_id},
                )
            resource.address = entry.address
            resource.status = ResourceStatus.PROVISIONED
        elif step.grant is not None:
            collector.record_grant(step.grant)

    def _abort(self, run_id: str, phase: Phase, collector: RunCollector) -> None:
        self._transition(run_id, phase, PhaseState.ABORTED, collector)
        raise _PhaseAborted(phase.name)

    def _transition(
        self, run_id: str, phase: Phase, state: PhaseState, collector: RunCollector
    ) -> None:
        collector.set_phase(phase.name, state)
        self._ctx.sink.emit(
            PhaseEvent(run_id=run_id, phase=phase.name, index=phase.index, state=state.value)
        )

    def _emit_step(
        self,
        run_id: str,
        phase: Phase,
        step: Step,
        status: str,
        result: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
        attempts: int = 0,
    ) -> None:
        self._ctx.sink.emit(
            StepEvent(
                run_id=run_id,
                step_id=step.step_id,
                phase=phase.name,
                kind=step.kind.value,
                status=status,
                result=result,
                error=error,
                attempts=attempts,
            )
        )
