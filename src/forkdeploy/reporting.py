"""
Deployment artifacts: the event stream and the deployment summary.

`events.jsonl` gets one JSON object per engine event, appended as the run
progresses. `deployment-summary.json` is written once the run returns.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List

import structlog

from forkdeploy.config.models import DeploymentConfig
from forkdeploy.engine.events import EngineEvent
from forkdeploy.engine.results import RunResult

logger = structlog.get_logger()

EVENTS_FILENAME = "events.jsonl"
SUMMARY_FILENAME = "deployment-summary.json"


class Reporter:
    """Event sink that appends every event to `events.jsonl`."""

    def __init__(self, output_dir: Path | str) -> None:
        self.output_dir = Path(output_dir)
        self.events_path = self.output_dir / EVENTS_FILENAME
        self.count = 0

    def emit(self, event: EngineEvent) -> None:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        with open(self.events_path, "a") as f:
            f.write(json.dumps(event.to_dict(), sort_keys=True, default=str) + "\n")
        self.count += 1


def read_events(path: Path | str) -> List[Dict[str, Any]]:
    events_path = Path(path)
    if not events_path.exists():
        return []
    return [json.loads(line) for line in events_path.read_text().splitlines() if line.strip()]


def build_summary(config: DeploymentConfig, result: RunResult) -> Dict[str, Any]:
    """Summary document of one run: addresses, grants, settings and status."""
    return {
        "project": config.project.name,
        "network": {
            "name": config.network.name,
            "chainId": config.network.chain_id,
        },
        "run": result.to_dict(),
        "contracts": {
            rid: {"kind": resource.kind, "address": resource.address, "status": resource.status.value}
            for rid, resource in result.resources.items()
        },
        "grants": [g.to_dict() for g in result.grants],
        "settings": config.settings.model_dump(mode="json", by_alias=True),
        "fees": config.fees.model_dump(mode="json", by_alias=True),
        "supportedTokens": [t.symbol for t in config.supported_tokens],
    }


def write_summary(config: DeploymentConfig, result: RunResult, output_dir: Path | str) -> Path:
    path = Path(output_dir) / SUMMARY_FILENAME
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = build_summary(config, result)
    path.write_text(json.dumps(payload, indent=2, sort_keys=True) + "\n")
    logger.info("summary_written", path=str(path), status=result.status.value)
    return path
