"""
CLI commands: validate, plan, deploy and status.

Each command returns a process exit code; errors raised by the library are
translated by `main_with_error_handling`.
"""

from __future__ import annotations

import json
import signal
from pathlib import Path
from typing import Any, Optional

from rich.markup import escape

from forkdeploy.blueprint import build_plan
from forkdeploy.cli.ux import console, error, header, info, print_table, success, warning
from forkdeploy.config import get_settings, load_deployment_config
from forkdeploy.core.errors import ConfigValidationError, ExitCode, main_with_error_handling
from forkdeploy.engine import (
    CancellationToken,
    DeploymentLedger,
    EngineContext,
    FanoutSink,
    LoggingSink,
    OrchestrationEngine,
    RetryPolicy,
    RunResult,
    RunStatus,
    StepEvent,
    create_backend,
)
from forkdeploy.engine.events import EngineEvent
from forkdeploy.logging import bind_context
from forkdeploy.reporting import Reporter, write_summary

STATUS_STYLE = {
    "succeeded": "[green]✓[/green]",
    "skipped": "[dim]↷[/dim]",
    "failed": "[red]✗[/red]",
}


class ConsoleSink:
    """Prints one line per finished step."""

    def emit(self, event: EngineEvent) -> None:
        if not isinstance(event, StepEvent) or event.status not in STATUS_STYLE:
            return
        detail = ""
        if event.result and "address" in event.result:
            detail = f" [cyan]{escape(str(event.result['address']))}[/cyan]"
        elif event.error:
            detail = f" [dim]{escape(event.error)}[/dim]"
        console.print(f"  {STATUS_STYLE[event.status]} {escape(event.step_id)}{detail}")


@main_with_error_handling()
def validate_command(config_path: Optional[str] = None) -> int:
    """Validate the deployment configuration and the plan derived from it."""
    try:
        config = load_deployment_config(config_path)
    except ConfigValidationError as e:
        error(escape(e.message) if not e.problems else "Invalid deployment configuration")
        for problem in e.problems:
            console.print(f"  [dim]•[/dim] {escape(str(problem))}")
        return int(e.exit_code)

    plan = build_plan(config)
    success(
        f"{config.project.name}: configuration valid, "
        f"{len(plan.phases)} phases, {len(plan.steps)} steps"
    )
    return 0


@main_with_error_handling()
def plan_command(
    config_path: Optional[str] = None,
    output_format: str = "text",
    verbose: bool = False,
) -> int:
    """Show the deployment plan without touching a backend."""
    config = load_deployment_config(config_path)
    plan = build_plan(config)

    if output_format == "json":
        print(json.dumps(plan.to_dict(), indent=2))
        return 0

    header(f"Deployment plan: {config.project.name} on {config.network.name}")
    for phase in plan.phases:
        console.print(f"\n[bold]{phase.index}. {phase.name}[/bold] [dim]{phase.description}[/dim]")
        for step in phase.steps:
            marker = "[highlight]+[/highlight]" if step.is_provision else "[info]~[/info]"
            line = f"  {marker} {step.step_id}"
            if verbose and step.depends_on:
                line += f" [dim](after {len(step.depends_on)})[/dim]"
            console.print(line)

    console.print()
    info(
        f"{len(plan.steps)} steps, {len(plan.resources)} resources, "
        f"{len(plan.declared_grants)} grants"
    )
    return 0


@main_with_error_handling()
def deploy_command(
    config_path: Optional[str] = None,
    ledger_path: Optional[str] = None,
    output_dir: Optional[str] = None,
    backend: Optional[str] = None,
    max_attempts: Optional[int] = None,
    output_format: str = "text",
) -> int:
    """
    Run the deployment, resuming from the ledger.

    Returns:
        0 on success, otherwise the exit code of the error that stopped the run
    """
    if max_attempts is not None and max_attempts < 1:
        raise ConfigValidationError(
            "--max-attempts must be at least 1", details={"max_attempts": max_attempts}
        )

    settings = get_settings()
    config = load_deployment_config(config_path)
    plan = build_plan(config)

    out_dir = Path(output_dir) if output_dir else settings.output_dir
    ledger = DeploymentLedger(ledger_path or settings.ledger_path)
    retry_policy = RetryPolicy(
        max_attempts=max_attempts if max_attempts is not None else settings.max_attempts,
        backoff_multiplier=settings.backoff_multiplier,
        backoff_max_seconds=settings.backoff_max_seconds,
    )

    sinks: list[Any] = [LoggingSink(), Reporter(out_dir)]
    if output_format == "text":
        sinks.append(ConsoleSink())
        header(f"Deploying {config.project.name} to {config.network.name}")

    backend_name = backend or settings.backend
    log = bind_context(project=config.project.name, network=config.network.name)
    log.info("deploy_started", steps=len(plan.steps), backend=backend_name, ledger=str(ledger.path))

    token = CancellationToken()
    ctx = EngineContext(
        backend=create_backend(backend_name),
        ledger=ledger,
        sink=FanoutSink(*sinks),
        retry_policy=retry_policy,
        cancel_token=token,
    )

    previous = signal.signal(signal.SIGINT, lambda signum, frame: token.cancel())
    try:
        result = OrchestrationEngine(ctx).run(plan)
    finally:
        signal.signal(signal.SIGINT, previous)

    write_summary(config, result, out_dir)

    if output_format == "json":
        print(json.dumps(result.to_dict(), indent=2))
    else:
        print_run_summary(result, out_dir)

    if result.success:
        return 0
    return int(result.error.exit_code) if result.error else int(ExitCode.RUN_FAILED)


def print_run_summary(result: RunResult, output_dir: Path) -> None:
    console.print()
    duration = f" in {result.duration_seconds:.1f}s"
    counts = f"{len(result.executed)} executed, {len(result.skipped)} skipped"
    if result.success:
        success(f"Deployment complete: {counts}{duration} → {output_dir}/")
    elif result.status is RunStatus.CANCELLED:
        warning(f"Deployment cancelled before {result.failed_step_id}: {counts}")
    else:
        error(f"Deployment failed at {result.failed_step_id} ({result.failed_phase}): {counts}")
        if result.error:
            console.print(f"  [dim]•[/dim] {escape(result.error.message)}")
        info("Re-run deploy to resume from the ledger")


@main_with_error_handling()
def status_command(ledger_path: Optional[str] = None, output_format: str = "text") -> int:
    """Show the latest ledger entry for every step."""
    ledger = DeploymentLedger(ledger_path or get_settings().ledger_path)
    latest = ledger.load()

    if output_format == "json":
        print(json.dumps({sid: e.model_dump(mode="json") for sid, e in latest.items()}, indent=2))
        return 0

    if not latest:
        info(f"No ledger entries in {ledger.path}")
        return 0

    rows = [
        [
            entry.step_id,
            entry.status.value,
            escape(entry.address or entry.error or ""),
            str(entry.attempts),
            entry.timestamp.isoformat(timespec="seconds"),
        ]
        for entry in sorted(latest.values(), key=lambda e: e.step_id)
    ]
    print_table(f"Ledger {ledger.path}", ["Step", "Status", "Result", "Attempts", "When"], rows)
    failed = sum(1 for e in latest.values() if not e.succeeded)
    if failed:
        warning(f"{failed} step(s) failed on their last attempt")
    return 0
