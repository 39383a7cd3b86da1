"""Engine package - dependency-ordered provisioning with a resumable ledger."""

from forkdeploy.engine.backend import (
    BackendCall,
    BackendRegistry,
    ResourceBackend,
    SimulatedBackend,
    backend_registry,
    create_backend,
)
from forkdeploy.engine.engine import CancellationToken, EngineContext, OrchestrationEngine
from forkdeploy.engine.events import (
    CollectingSink,
    EventSink,
    FanoutSink,
    LoggingSink,
    PhaseEvent,
    StepEvent,
)
from forkdeploy.engine.executor import RetryPolicy, StepExecutor
from forkdeploy.engine.ledger import DeploymentLedger, LedgerEntry, LedgerStatus
from forkdeploy.engine.models import (
    CapabilityGrant,
    Phase,
    PhaseState,
    Plan,
    Resource,
    ResourceRef,
    ResourceStatus,
    Step,
    StepKind,
    StepResult,
    ref,
)
from forkdeploy.engine.plan_builder import (
    ConfigureSpec,
    GrantSpec,
    PhaseSpec,
    PlanBuilder,
    ProvisionSpec,
    configure,
    grant,
    phase,
    provision,
)
from forkdeploy.engine.results import RunResult, RunStatus

__all__ = [
    "BackendCall",
    "BackendRegistry",
    "CancellationToken",
    "CapabilityGrant",
    "CollectingSink",
    "ConfigureSpec",
    "DeploymentLedger",
    "EngineContext",
    "EventSink",
    "FanoutSink",
    "GrantSpec",
    "LedgerEntry",
    "LedgerStatus",
    "LoggingSink",
    "OrchestrationEngine",
    "Phase",
    "PhaseEvent",
    "PhaseSpec",
    "PhaseState",
    "Plan",
    "PlanBuilder",
    "ProvisionSpec",
    "Resource",
    "ResourceBackend",
    "ResourceRef",
    "ResourceStatus",
    "RetryPolicy",
    "RunResult",
    "RunStatus",
    "SimulatedBackend",
    "Step",
    "StepEvent",
    "StepExecutor",
    "StepKind",
    "StepResult",
    "backend_registry",
    "configure",
    "create_backend",
    "grant",
    "phase",
    "provision",
    "ref",
]
