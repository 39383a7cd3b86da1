"""Plan data model: resources, steps, phases, grants and step results."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

from forkdeploy.core.errors import UnresolvedDependencyError


class ResourceStatus(str, Enum):
    PENDING = "pending"
    PROVISIONED = "provisioned"
    FAILED = "failed"


class StepKind(str, Enum):
    PROVISION = "provision"
    CONFIGURE = "configure"


class PhaseState(str, Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"


@dataclass(frozen=True)
class ResourceRef:
    """Placeholder for another resource's address inside step arguments."""

    resource_id: str

    def __repr__(self) -> str:
        return f"ref({self.resource_id})"


def ref(resource_id: str) -> ResourceRef:
    return ResourceRef(resource_id)


@dataclass
class Resource:
    """A provisioned entity tracked by logical id, kind tag and address."""

    id: str
    kind: str
    constructor_args: Tuple[Any, ...] = ()
    role: Optional[str] = None
    address: Optional[str] = None
    status: ResourceStatus = ResourceStatus.PENDING

    def references(self) -> List[str]:
        """Resource ids referenced by the constructor arguments."""
        return list(iter_references(self.constructor_args))


@dataclass(frozen=True)
class CapabilityGrant:
    """Directed authorization edge: grantor lets grantee act with `role`."""

    grantor: str
    grantee: str
    role: str

    def to_dict(self) -> Dict[str, str]:
        return {"grantor": self.grantor, "grantee": self.grantee, "role": self.role}


@dataclass(frozen=True)
class Step:
    """An atomic Provision or Configure action. Immutable once planned."""

    step_id: str
    phase: int
    index: int
    kind: StepKind
    resource_id: str
    label: str
    args: Tuple[Any, ...] = ()
    method: Optional[str] = None
    depends_on: frozenset = frozenset()
    grant: Optional[CapabilityGrant] = None

    @property
    def position(self) -> Tuple[int, int]:
        return (self.phase, self.index)

    @property
    def is_provision(self) -> bool:
        return self.kind is StepKind.PROVISION

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step_id": self.step_id,
            "kind": self.kind.value,
            "resource": self.resource_id,
            "method": self.method,
            "args": [_describe_arg(a) for a in self.args],
            "depends_on": sorted(self.depends_on),
            "grant": self.grant.to_dict() if self.grant else None,
        }


@dataclass(frozen=True)
class Phase:
    """An ordered group of steps; phases run strictly in sequence."""

    index: int
    name: str
    steps: Tuple[Step, ...]
    description: str = ""


@dataclass(frozen=True)
class Plan:
    """The validated, ordered phase/step graph for one run."""

    phases: Tuple[Phase, ...]
    resources: Mapping[str, Resource]

    @property
    def steps(self) -> List[Step]:
        return [step for phase in self.phases for step in phase.steps]

    def step(self, step_id: str) -> Step:
        for candidate in self.steps:
            if candidate.step_id == step_id:
                return candidate
        raise KeyError(step_id)

    def provision_step(self, resource_id: str) -> Step:
        for candidate in self.steps:
            if candidate.is_provision and candidate.resource_id == resource_id:
                return candidate
        raise KeyError(resource_id)

    @property
    def declared_grants(self) -> List[CapabilityGrant]:
        return [step.grant for step in self.steps if step.grant is not None]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phases": [
                {
                    "index": phase.index,
                    "name": phase.name,
                    "description": phase.description,
                    "steps": [step.to_dict() for step in phase.steps],
                }
                for phase in self.phases
            ],
            "resources": {
                rid: {
                    "kind": r.kind,
                    "role": r.role,
                    "constructor_args": [_describe_arg(a) for a in r.constructor_args],
                }
                for rid, r in self.resources.items()
            },
            "grants": [g.to_dict() for g in self.declared_grants],
            "total_steps": len(self.steps),
        }


@dataclass
class StepResult:
    """Outcome of one executed step: an address (Provision) or a receipt (Configure)."""

    step_id: str
    address: Optional[str] = None
    receipt: Dict[str, Any] = field(default_factory=dict)
    attempts: int = 1

    def summary(self) -> Dict[str, Any]:
        if self.address is not None:
            return {"address": self.address}
        return {"receipt": self.receipt}


def iter_references(value: Any) -> Iterator[str]:
    """Yield every resource id referenced anywhere inside `value`."""
    if isinstance(value, ResourceRef):
        yield value.resource_id
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from iter_references(item)
    elif isinstance(value, dict):
        for item in value.values():
            yield from iter_references(item)


def resolve_references(value: Any, addresses: Mapping[str, Optional[str]]) -> Any:
    """Substitute every ResourceRef inside `value` with the referenced address.

    Raises:
        UnresolvedDependencyError: a referenced resource has no address yet
    """
    if isinstance(value, ResourceRef):
        address = addresses.get(value.resource_id)
        if not address:
            raise UnresolvedDependencyError(
                f"Resource '{value.resource_id}' has no address yet",
                details={"resource": value.resource_id},
            )
        return address
    if isinstance(value, tuple):
        return [resolve_references(item, addresses) for item in value]
    if isinstance(value, list):
        return [resolve_references(item, addresses) for item in value]
    if isinstance(value, dict):
        return {key: resolve_references(item, addresses) for key, item in value.items()}
    return value


def _describe_arg(value: Any) -> Any:
    if isinstance(value, ResourceRef):
        return f"@{value.resource_id}"
    if isinstance(value, (list, tuple)):
        return [_describe_arg(item) for item in value]
    if isinstance(value, dict):
        return {key: _describe_arg(item) for key, item in value.items()}
    if isinstance(value, int) and not isinstance(value, bool) and abs(value) >= 2**53:
        return str(value)
    return value
