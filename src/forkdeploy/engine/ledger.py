"""
Deployment ledger: durable, append-only record of step outcomes.

The ledger file is JSON::

    {"version": 1, "entries": [{"step_id": ..., "input_hash": ..., "status": ...}, ...]}

Entries are never rewritten. `load()` exposes the latest entry per step id, and
only that entry decides whether a step has completed. A missing or empty file
means nothing has completed yet. Anything unreadable is refused with
LedgerCorruptionError rather than guessed at.
"""

from __future__ import annotations

import json
import os
import tempfile
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from forkdeploy.core.errors import LedgerCorruptionError

logger = structlog.get_logger()

LEDGER_VERSION = 1
DEFAULT_LEDGER_PATH = Path("deployment/output/ledger.json")


class LedgerStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class LedgerEntry(BaseModel):
    """Persisted outcome of one step execution."""

    model_config = ConfigDict(frozen=True)

    step_id: str = Field(..., min_length=1)
    input_hash: str = Field(..., min_length=1)
    status: LedgerStatus
    result: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None
    attempts: int = Field(1, ge=0)
    timestamp: datetime = Field(default_factory=utc_now)

    @property
    def succeeded(self) -> bool:
        return self.status is LedgerStatus.SUCCESS

    @property
    def address(self) -> Optional[str]:
        return self.result.get("address")


class DeploymentLedger:
    """File-backed ledger consulted before and updated after every step."""

    def __init__(self, path: Path | str | None = None) -> None:
        self.path = Path(path) if path else DEFAULT_LEDGER_PATH
        self._entries: List[LedgerEntry] = []
        self._latest: Dict[str, LedgerEntry] = {}
        self._loaded = False

    def load(self) -> Dict[str, LedgerEntry]:
        """
        Read the ledger file and return the latest entry per step id.

        Raises:
            LedgerCorruptionError: if the file cannot be parsed or validated
        """
        self._entries = self._read()
        self._latest = {}
        for entry in self._entries:
            self._latest[entry.step_id] = entry
        self._loaded = True
        logger.debug("ledger_loaded", path=str(self.path), entries=len(self._entries))
        return self.latest()

    def has_completed(self, step_id: str, input_hash: str) -> bool:
        """Whether the latest entry for this step is a Success with a matching input hash."""
        return self.completed_entry(step_id, input_hash) is not None

    def completed_entry(self, step_id: str, input_hash: str) -> Optional[LedgerEntry]:
        self._ensure_loaded()
        entry = self._latest.get(step_id)
        if entry is None or not entry.succeeded or entry.input_hash != input_hash:
            return None
        return entry

    def record(self, entry: LedgerEntry) -> None:
        """Append an entry in memory; call persist() to make it durable."""
        self._ensure_loaded()
        self._entries.append(entry)
        self._latest[entry.step_id] = entry

    def persist(self) -> None:
        """Atomically write the full history to disk."""
        self._ensure_loaded()
        payload = {
            "version": LEDGER_VERSION,
            "entries": [entry.model_dump(mode="json") for entry in self._entries],
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent)
        )
        try:
            with os.fdopen(fd, "w") as f:
                f.write(json.dumps(payload, indent=2, sort_keys=True) + "\n")
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
        logger.debug("ledger_persisted", path=str(self.path), entries=len(self._entries))

    @property
    def entries(self) -> List[LedgerEntry]:
        """Full history in write order."""
        return list(self._entries)

    def latest(self) -> Dict[str, LedgerEntry]:
        return dict(self._latest)

    def _ensure_loaded(self) -> None:
        if not self._loaded:
            self.load()

    def _read(self) -> List[LedgerEntry]:
        if not self.path.exists():
            return []

        try:
            text = self.path.read_text()
        except OSError as e:
            raise LedgerCorruptionError(
                f"Cannot read ledger {self.path}: {e}", details={"path": str(self.path)}
            ) from e

        if not text.strip():
            return []

        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise LedgerCorruptionError(
                f"Ledger {self.path} is not valid JSON: {e.msg} at line {e.lineno}",
                details={"path": str(self.path)},
            ) from e

        if not isinstance(data, dict) or not isinstance(data.get("entries"), list):
            raise LedgerCorruptionError(
                f"Ledger {self.path} has no entries list", details={"path": str(self.path)}
            )
        if data.get("version") != LEDGER_VERSION:
            raise LedgerCorruptionError(
                f"Unsupported ledger version {data.get('version')!r} in {self.path}",
                details={"path": str(self.path)},
            )

        entries: List[LedgerEntry] = []
        for position, raw in enumerate(data["entries"]):
            try:
                entries.append(LedgerEntry.model_validate(raw))
            except ValidationError as e:
                raise LedgerCorruptionError(
                    f"Ledger {self.path} entry {position} is invalid: {e.error_count()} error(s)",
                    details={"path": str(self.path), "entry": position},
                ) from e
        return entries
