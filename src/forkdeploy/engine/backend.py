"""
Resource backend contract, the simulated backend and the backend registry.

A backend performs exactly two operations against the target system:
`create(kind, args)` returns the new resource's address, and
`invoke(handle, method, args)` returns once the operation is acknowledged,
with a receipt summary. Transport, signing and fee estimation live entirely
inside concrete backends.
"""

from __future__ import annotations

import hashlib
import importlib
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

from forkdeploy.core.errors import BackendError, FatalBackendError

BackendFactory = Callable[..., Any]


class ResourceBackend(Protocol):
    """Contract for resource backends."""

    def create(self, kind: str, args: Sequence[Any]) -> str:
        """Create a resource and return its address."""
        ...

    def invoke(self, handle: str, method: str, args: Sequence[Any]) -> Dict[str, Any]:
        """Invoke a method on a resource; return the acknowledgment receipt."""
        ...


@dataclass(frozen=True)
class BackendCall:
    """A recorded create/invoke call."""

    operation: str
    name: str
    args: tuple
    handle: Optional[str] = None


@dataclass
class _ScriptedFailure:
    operation: str
    name: str
    error: BaseException
    remaining: Optional[int]


@dataclass
class SimulatedBackend:
    """
    In-process backend for dry runs and tests.

    Addresses are derived deterministically from the kind, arguments and
    creation order; every call is recorded. Failures can be scripted per
    kind (create) or method (invoke). A strict backend rejects invocations
    on handles it did not create itself.
    """

    calls: List[BackendCall] = field(default_factory=list)
    deployed: Dict[str, str] = field(default_factory=dict)
    strict: bool = True
    _failures: List[_ScriptedFailure] = field(default_factory=list)
    _counter: int = 0

    def create(self, kind: str, args: Sequence[Any]) -> str:
        self.calls.append(BackendCall("create", kind, tuple(args)))
        self._maybe_fail("create", kind)
        self._counter += 1
        digest = hashlib.sha256(f"{kind}:{self._counter}:{list(args)!r}".encode()).hexdigest()
        address = "0x" + digest[:40]
        self.deployed[address] = kind
        return address

    def invoke(self, handle: str, method: str, args: Sequence[Any]) -> Dict[str, Any]:
        self.calls.append(BackendCall("invoke", method, tuple(args), handle=handle))
        self._maybe_fail("invoke", method)
        if self.strict and handle not in self.deployed:
            raise FatalBackendError(
                f"No resource at {handle}", details={"handle": handle, "method": method}
            )
        digest = hashlib.sha256(f"{handle}:{method}:{len(self.calls)}".encode()).hexdigest()
        return {"tx_hash": "0x" + digest, "status": 1}

    def fail_on(
        self,
        name: str,
        error: BaseException,
        *,
        operation: str = "invoke",
        times: Optional[int] = None,
    ) -> None:
        """Raise `error` on calls matching `name`; `times=None` means always."""
        self._failures.append(_ScriptedFailure(operation, name, error, times))

    def clear_failures(self) -> None:
        self._failures.clear()

    def count(self, operation: Optional[str] = None) -> int:
        if operation is None:
            return len(self.calls)
        return sum(1 for call in self.calls if call.operation == operation)

    def _maybe_fail(self, operation: str, name: str) -> None:
        for failure in self._failures:
            if failure.operation != operation or failure.name != name:
                continue
            if failure.remaining is not None:
                if failure.remaining <= 0:
                    continue
                failure.remaining -= 1
            raise failure.error


@dataclass(frozen=True)
class BackendSpec:
    """Metadata describing a registered backend."""

    name: str
    factory: BackendFactory
    description: str | None = None


class BackendRegistry:
    """In-memory registry of backend factories."""

    def __init__(self) -> None:
        self._backends: Dict[str, BackendSpec] = {}

    def register(
        self,
        name: str,
        factory: BackendFactory,
        *,
        description: str | None = None,
    ) -> None:
        if not name:
            raise ValueError("Backend name is required")
        self._backends[name] = BackendSpec(name=name, factory=factory, description=description)

    def create(self, name: str, **kwargs: Any) -> ResourceBackend:
        """Create a registered backend, or import one given as `module:attribute`."""
        spec = self._backends.get(name)
        if spec is not None:
            return spec.factory(**kwargs)
        if ":" in name:
            return _import_factory(name)(**kwargs)
        raise BackendError(
            f"Backend '{name}' is not registered",
            details={"available": ", ".join(sorted(self._backends))},
        )

    def list(self) -> List[BackendSpec]:
        return list(self._backends.values())


def _import_factory(path: str) -> BackendFactory:
    module_name, _, attribute = path.partition(":")
    try:
        module = importlib.import_module(module_name)
        return getattr(module, attribute)
    except (ImportError, AttributeError) as e:
        raise BackendError(f"Cannot load backend '{path}': {e}") from e


def _simulated_factory(**kwargs: Any) -> SimulatedBackend:
    # Resumed runs invoke resources created by an earlier process.
    kwargs.setdefault("strict", False)
    return SimulatedBackend(**kwargs)


backend_registry = BackendRegistry()
backend_registry.register(
    "simulated",
    _simulated_factory,
    description="Deterministic in-process backend for dry runs",
)


def create_backend(name: str, **kwargs: Any) -> ResourceBackend:
    return backend_registry.create(name, **kwargs)
