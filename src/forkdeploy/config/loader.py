"""
Deployment configuration file loading.

Search order:
1. Explicit path (CLI argument)
2. FORKDEPLOY_CONFIG_PATH / settings.config_path
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import ValidationError

from forkdeploy.config.models import DeploymentConfig
from forkdeploy.config.settings import get_settings
from forkdeploy.core.errors import ConfigValidationError

logger = structlog.get_logger()


def get_config_path(explicit_path: str | Path | None = None) -> Path:
    """Resolve which deployment configuration file to use."""
    if explicit_path:
        return Path(explicit_path)
    return get_settings().config_path


def parse_deployment_config(data: Any, source: str = "<memory>") -> DeploymentConfig:
    """
    Validate raw configuration data.

    Raises:
        ConfigValidationError: listing every failing field path
    """
    if not isinstance(data, dict):
        raise ConfigValidationError(
            f"Configuration in {source} must be a mapping",
            details={"source": source},
        )
    try:
        return DeploymentConfig.model_validate(data)
    except ValidationError as e:
        problems = [_format_problem(err) for err in e.errors()]
        raise ConfigValidationError(
            f"Invalid deployment configuration in {source}: {'; '.join(problems)}",
            problems=problems,
            details={"source": source, "error_count": len(problems)},
        ) from e


def load_deployment_config(path: str | Path | None = None) -> DeploymentConfig:
    """
    Load and validate a YAML or JSON deployment configuration file.

    Raises:
        ConfigValidationError: if the file is missing, unparsable or invalid
    """
    config_path = get_config_path(path)
    if not config_path.exists():
        raise ConfigValidationError(
            f"Configuration file not found: {config_path}",
            details={"source": str(config_path)},
        )

    try:
        with open(config_path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigValidationError(
            f"Failed to parse {config_path}: {e}",
            details={"source": str(config_path)},
        ) from e

    config = parse_deployment_config(data or {}, source=str(config_path))
    logger.debug("loaded_config", path=str(config_path), project=config.project.name)
    return config


def _format_problem(err: dict[str, Any]) -> str:
    location = ".".join(str(part) for part in err.get("loc", ())) or "<root>"
    return f"{location}: {err.get('msg', 'invalid')}"
