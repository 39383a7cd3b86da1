"""Engine events - StepEvent, PhaseEvent and event sinks."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Union

import structlog


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class StepEvent:
    """Structured per-step event: started, succeeded, skipped or failed."""

    run_id: str
    step_id: str
    phase: str
    kind: str
    status: str
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    attempts: int = 0
    timestamp: datetime = field(default_factory=_utc_now)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["event"] = "step"
        data["timestamp"] = self.timestamp.isoformat()
        return data


@dataclass
class PhaseEvent:
    """Phase state transition."""

    run_id: str
    phase: str
    index: int
    state: str
    timestamp: datetime = field(default_factory=_utc_now)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["event"] = "phase"
        data["timestamp"] = self.timestamp.isoformat()
        return data


EngineEvent = Union[StepEvent, PhaseEvent]


class EventSink(Protocol):
    """Consumer of engine events."""

    def emit(self, event: EngineEvent) -> None:
        ...


class CollectingSink:
    """Keeps every event in memory."""

    def __init__(self) -> None:
        self.events: List[EngineEvent] = []

    def emit(self, event: EngineEvent) -> None:
        self.events.append(event)

    @property
    def step_events(self) -> List[StepEvent]:
        return [e for e in self.events if isinstance(e, StepEvent)]

    def statuses(self, status: str) -> List[str]:
        return [e.step_id for e in self.step_events if e.status == status]


class LoggingSink:
    """Forwards events to structlog."""

    def __init__(self) -> None:
        self._logger = structlog.get_logger("forkdeploy.events")

    def emit(self, event: EngineEvent) -> None:
        if isinstance(event, StepEvent):
            log = self._logger.warning if event.status == "failed" else self._logger.info
            log(
                f"step_{event.status}",
                run_id=event.run_id,
                step_id=event.step_id,
                phase=event.phase,
                kind=event.kind,
                attempts=event.attempts,
                error=event.error,
            )
        else:
            self._logger.info(
                f"phase_{event.state}",
                run_id=event.run_id,
                phase=event.phase,
                index=event.index,
            )


class FanoutSink:
    """Delivers each event to several sinks in order."""

    def __init__(self, *sinks: EventSink) -> None:
        self._sinks = list(sinks)

    def emit(self, event: EngineEvent) -> None:
        for sink in self._sinks:
            sink.emit(event)
