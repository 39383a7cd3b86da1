"""
forkdeploy configuration.

Provides:
- Pydantic-validated deployment parameters (tokens, settings, fees, network)
- YAML/JSON configuration file loading
- Environment-based runtime settings (FORKDEPLOY_ prefix, .env files)
"""

from forkdeploy.config.loader import (
    get_config_path,
    load_deployment_config,
    parse_deployment_config,
)
from forkdeploy.config.models import (
    DeploymentConfig,
    DeploymentSettings,
    FeeConfig,
    GovernanceConfig,
    NetworkConfig,
    SupportedToken,
    TokenConfig,
    to_usd,
)
from forkdeploy.config.settings import Settings, get_settings

__all__ = [
    "DeploymentConfig",
    "DeploymentSettings",
    "FeeConfig",
    "GovernanceConfig",
    "NetworkConfig",
    "Settings",
    "SupportedToken",
    "TokenConfig",
    "get_config_path",
    "get_settings",
    "load_deployment_config",
    "parse_deployment_config",
    "to_usd",
]
