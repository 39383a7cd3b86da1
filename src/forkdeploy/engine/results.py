"""Result types for orchestration runs."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from forkdeploy.core.errors import ForkDeployError
from forkdeploy.engine.ledger import LedgerEntry
from forkdeploy.engine.models import CapabilityGrant, PhaseState, Resource


class RunStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class RunResult:
    """Outcome of one engine run."""

    run_id: str
    status: RunStatus = RunStatus.SUCCEEDED
    phase_states: Dict[str, PhaseState] = field(default_factory=dict)
    resources: Dict[str, Resource] = field(default_factory=dict)
    grants: List[CapabilityGrant] = field(default_factory=list)
    executed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed_step_id: Optional[str] = None
    failed_phase: Optional[str] = None
    error: Optional[ForkDeployError] = None
    ledger: Dict[str, LedgerEntry] = field(default_factory=dict)
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return self.status is RunStatus.SUCCEEDED

    @property
    def addresses(self) -> Dict[str, Optional[str]]:
        return {rid: resource.address for rid, resource in self.resources.items()}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "status": self.status.value,
            "phases": {name: state.value for name, state in self.phase_states.items()},
            "addresses": self.addresses,
            "grants": [g.to_dict() for g in self.grants],
            "executed": len(self.executed),
            "skipped": len(self.skipped),
            "failed_step_id": self.failed_step_id,
            "failed_phase": self.failed_phase,
            "error": self.error.message if self.error else None,
            "duration_seconds": round(self.duration_seconds, 3),
        }


class RunCollector:
    """Aggregates step outcomes during a run."""

    def __init__(self, run_id: str, resources: Dict[str, Resource]) -> None:
        self._result = RunResult(run_id=run_id, resources=resources)

    @property
    def result(self) -> RunResult:
        return self._result

    def set_phase(self, name: str, state: PhaseState) -> None:
        self._result.phase_states[name] = state

    def record_executed(self, step_id: str) -> None:
        self._result.executed.append(step_id)

    def record_skipped(self, step_id: str) -> None:
        self._result.skipped.append(step_id)

    def record_grant(self, capability: CapabilityGrant) -> None:
        self._result.grants.append(capability)

    def record_failure(
        self,
        phase_name: str,
        error: ForkDeployError,
        step_id: Optional[str] = None,
        status: RunStatus = RunStatus.FAILED,
    ) -> None:
        self._result.status = status
        self._result.failed_phase = phase_name
        self._result.failed_step_id = step_id
        self._result.error = error

    def finalize(self, ledger: Dict[str, LedgerEntry], duration: float) -> RunResult:
        """Return the final result with the ledger snapshot and duration set."""
        self._result.ledger = ledger
        self._result.duration_seconds = duration
        return self._result
