"""Input hashing for idempotence comparison against the ledger."""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from forkdeploy.engine.models import Step


def _default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    raise TypeError(f"Cannot hash value of type {type(value).__name__}")


def canonical_json(value: Any) -> str:
    """Serialize with sorted keys and compact separators."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=_default)


def compute_input_hash(
    step: Step,
    resolved_args: Any,
    kind: Optional[str] = None,
    target_address: Optional[str] = None,
) -> str:
    """
    Hash what a step will actually send to the backend.

    Provision steps cover the resource kind and resolved constructor args;
    configure steps cover the target address, method and resolved args.
    """
    if step.is_provision:
        payload = {"op": "create", "kind": kind, "args": resolved_args}
    else:
        payload = {
            "op": "invoke",
            "target": target_address,
            "method": step.method,
            "args": resolved_args,
        }
    return hashlib.sha256(canonical_json(payload).encode("utf-8")).hexdigest()
