"""
Plan builder: turns a declarative phase/step description into a validated Plan.

Validation happens before anything touches a backend:

- phases and their step lists must be non-empty
- resource ids and step labels must be unique
- every referenced resource and step label must be declared
- dependencies must never point forward (same phase earlier index, or an
  earlier phase)
- the step graph must be acyclic (Kahn's algorithm)

Dependencies are derived rather than hand-written: a step depends on the
provision step of its target resource, the provision steps of every resource
referenced in its arguments, its explicit `after` labels, and, for capability
grants, every grant whose grantee is this grant's grantor (grant chains run in
chain order).
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import structlog

from forkdeploy.core.errors import PlanValidationError
from forkdeploy.engine.models import (
    CapabilityGrant,
    Phase,
    Plan,
    Resource,
    ResourceRef,
    Step,
    StepKind,
    iter_references,
)

logger = structlog.get_logger()


@dataclass(frozen=True)
class ProvisionSpec:
    """Declares a resource and the step that creates it."""

    resource_id: str
    kind: str
    args: Tuple[Any, ...] = ()
    role: Optional[str] = None
    after: Tuple[str, ...] = ()

    @property
    def label(self) -> str:
        return self.resource_id


@dataclass(frozen=True)
class GrantSpec:
    grantee: str
    role: str


@dataclass(frozen=True)
class ConfigureSpec:
    """Declares one method invocation on an already provisioned resource."""

    resource_id: str
    method: str
    args: Tuple[Any, ...] = ()
    grant: Optional[GrantSpec] = None
    label_override: Optional[str] = None
    after: Tuple[str, ...] = ()

    @property
    def label(self) -> str:
        if self.label_override:
            return self.label_override
        if self.grant is not None:
            return f"{self.resource_id}.{self.method}({self.grant.grantee})"
        return f"{self.resource_id}.{self.method}"


StepSpec = Union[ProvisionSpec, ConfigureSpec]


@dataclass(frozen=True)
class PhaseSpec:
    name: str
    steps: Tuple[StepSpec, ...]
    description: str = ""


def provision(
    resource_id: str,
    kind: str,
    args: Sequence[Any] = (),
    *,
    role: Optional[str] = None,
    after: Sequence[str] = (),
) -> ProvisionSpec:
    return ProvisionSpec(resource_id, kind, tuple(args), role=role, after=tuple(after))


def configure(
    resource_id: str,
    method: str,
    args: Sequence[Any] = (),
    *,
    label: Optional[str] = None,
    after: Sequence[str] = (),
) -> ConfigureSpec:
    return ConfigureSpec(
        resource_id, method, tuple(args), label_override=label, after=tuple(after)
    )


def grant(
    resource_id: str,
    method: str,
    grantee: str,
    role: str,
    args: Optional[Sequence[Any]] = None,
    *,
    label: Optional[str] = None,
) -> ConfigureSpec:
    """Declare a capability grant; args default to `(grantee, True)`."""
    call_args = tuple(args) if args is not None else (ResourceRef(grantee), True)
    return ConfigureSpec(
        resource_id,
        method,
        call_args,
        grant=GrantSpec(grantee=grantee, role=role),
        label_override=label,
    )


def phase(name: str, *steps: StepSpec, description: str = "") -> PhaseSpec:
    return PhaseSpec(name=name, steps=tuple(steps), description=description)


def make_step_id(phase_index: int, step_index: int, kind: StepKind, label: str) -> str:
    """Stable step id derived from phase number, step number, kind and label."""
    return f"p{phase_index:02d}.s{step_index:02d}.{kind.value}.{label}"


@dataclass
class _Draft:
    spec: StepSpec
    step_id: str
    phase: int
    index: int
    kind: StepKind

    @property
    def position(self) -> Tuple[int, int]:
        return (self.phase, self.index)


class PlanBuilder:
    """Builds and validates a Plan from phase declarations."""

    def build(self, phases: Sequence[PhaseSpec]) -> Plan:
        """
        Build a validated plan.

        Raises:
            PlanValidationError: listing every problem found; no partial plan
        """
        problems: List[str] = []

        if not phases:
            raise PlanValidationError("Plan declares no phases", problems=["no phases"])

        drafts = self._number(phases, problems)
        resources = self._collect_resources(drafts, problems)
        by_label = self._index_labels(drafts, problems)
        provision_ids = {
            d.spec.resource_id: d.step_id for d in drafts if d.kind is StepKind.PROVISION
        }

        dependencies: Dict[str, set] = {}
        for draft in drafts:
            dependencies[draft.step_id] = self._dependencies(
                draft, drafts, provision_ids, by_label, problems
            )

        cycle = _find_cycle([d.step_id for d in drafts], dependencies)
        if cycle:
            problems.append(f"dependency cycle between steps: {', '.join(cycle)}")

        positions = {d.step_id: d.position for d in drafts}
        for draft in drafts:
            for dep in sorted(dependencies[draft.step_id]):
                if dep in positions and positions[dep] >= draft.position:
                    problems.append(
                        f"forward dependency: {draft.step_id} depends on later step {dep}"
                    )

        if problems:
            logger.warning("plan_validation_failed", problem_count=len(problems))
            raise PlanValidationError(
                f"Plan validation failed with {len(problems)} problem(s): {problems[0]}",
                problems=problems,
            )

        plan = Plan(
            phases=self._assemble(phases, drafts, dependencies),
            resources=resources,
        )
        logger.debug("plan_built", phases=len(plan.phases), steps=len(plan.steps))
        return plan

    def _number(self, phases: Sequence[PhaseSpec], problems: List[str]) -> List[_Draft]:
        drafts: List[_Draft] = []
        seen_names: set = set()
        for phase_index, phase_spec in enumerate(phases, 1):
            if phase_spec.name in seen_names:
                problems.append(f"duplicate phase name '{phase_spec.name}'")
            seen_names.add(phase_spec.name)
            if not phase_spec.steps:
                problems.append(f"phase {phase_index} '{phase_spec.name}' declares no steps")
            for step_index, spec in enumerate(phase_spec.steps, 1):
                kind = StepKind.PROVISION if isinstance(spec, ProvisionSpec) else StepKind.CONFIGURE
                drafts.append(
                    _Draft(
                        spec=spec,
                        step_id=make_step_id(phase_index, step_index, kind, spec.label),
                        phase=phase_index,
                        index=step_index,
                        kind=kind,
                    )
                )
        return drafts

    def _collect_resources(self, drafts: List[_Draft], problems: List[str]) -> Dict[str, Resource]:
        resources: Dict[str, Resource] = {}
        for draft in drafts:
            spec = draft.spec
            if not isinstance(spec, ProvisionSpec):
                continue
            if spec.resource_id in resources:
                problems.append(f"resource '{spec.resource_id}' is provisioned more than once")
                continue
            resources[spec.resource_id] = Resource(
                id=spec.resource_id,
                kind=spec.kind,
                constructor_args=spec.args,
                role=spec.role,
            )
        return resources

    def _index_labels(self, drafts: List[_Draft], problems: List[str]) -> Dict[str, str]:
        by_label: Dict[str, str] = {}
        for draft in drafts:
            label = draft.spec.label
            if label in by_label:
                problems.append(f"duplicate step label '{label}'")
                continue
            by_label[label] = draft.step_id
        return by_label

    def _dependencies(
        self,
        draft: _Draft,
        drafts: List[_Draft],
        provision_ids: Dict[str, str],
        by_label: Dict[str, str],
        problems: List[str],
    ) -> set:
        spec = draft.spec
        deps: set = set()

        referenced = list(iter_references(spec.args))
        if isinstance(spec, ConfigureSpec):
            referenced.insert(0, spec.resource_id)
            if spec.grant is not None:
                referenced.append(spec.grant.grantee)

        for resource_id in referenced:
            target = provision_ids.get(resource_id)
            if target is None:
                problems.append(f"{draft.step_id} references undeclared resource '{resource_id}'")
            elif target != draft.step_id:
                deps.add(target)
            else:
                problems.append(f"{draft.step_id} references its own address")

        for label in spec.after:
            target = by_label.get(label)
            if target is None:
                problems.append(f"{draft.step_id} depends on undeclared step '{label}'")
            else:
                deps.add(target)

        if isinstance(spec, ConfigureSpec) and spec.grant is not None:
            grantor = spec.resource_id
            for other in drafts:
                other_spec = other.spec
                if (
                    other is not draft
                    and isinstance(other_spec, ConfigureSpec)
                    and other_spec.grant is not None
                    and other_spec.grant.grantee == grantor
                    and other_spec.resource_id != grantor
                ):
                    deps.add(other.step_id)

        return deps

    def _assemble(
        self,
        phases: Sequence[PhaseSpec],
        drafts: List[_Draft],
        dependencies: Dict[str, set],
    ) -> Tuple[Phase, ...]:
        grouped: Dict[int, List[Step]] = {}
        for draft in drafts:
            spec = draft.spec
            if isinstance(spec, ProvisionSpec):
                step = Step(
                    step_id=draft.step_id,
                    phase=draft.phase,
                    index=draft.index,
                    kind=StepKind.PROVISION,
                    resource_id=spec.resource_id,
                    label=spec.label,
                    args=spec.args,
                    depends_on=frozenset(dependencies[draft.step_id]),
                )
            else:
                capability = (
                    CapabilityGrant(
                        grantor=spec.resource_id,
                        grantee=spec.grant.grantee,
                        role=spec.grant.role,
                    )
                    if spec.grant is not None
                    else None
                )
                step = Step(
                    step_id=draft.step_id,
                    phase=draft.phase,
                    index=draft.index,
                    kind=StepKind.CONFIGURE,
                    resource_id=spec.resource_id,
                    label=spec.label,
                    args=spec.args,
                    method=spec.method,
                    depends_on=frozenset(dependencies[draft.step_id]),
                    grant=capability,
                )
            grouped.setdefault(draft.phase, []).append(step)

        return tuple(
            Phase(
                index=phase_index,
                name=phase_spec.name,
                steps=tuple(grouped.get(phase_index, [])),
                description=phase_spec.description,
            )
            for phase_index, phase_spec in enumerate(phases, 1)
        )


def _find_cycle(nodes: List[str], dependencies: Dict[str, set]) -> List[str]:
    """Topologically sort; return the steps that could not be ordered (empty if acyclic)."""
    known = set(nodes)
    indegree = {node: 0 for node in nodes}
    dependents: Dict[str, List[str]] = {node: [] for node in nodes}
    for node in nodes:
        for dep in dependencies.get(node, ()):
            if dep in known:
                indegree[node] += 1
                dependents[dep].append(node)

    ready = deque(node for node in nodes if indegree[node] == 0)
    visited = 0
    while ready:
        node = ready.popleft()
        visited += 1
        for dependent in dependents[node]:
            indegree[dependent] -= 1
            if indegree[dependent] == 0:
                ready.append(dependent)

    if visited == len(nodes):
        return []
    return [node for node in nodes if indegree[node] > 0]
