"""Core modules for forkdeploy - centralized definitions and utilities."""

from forkdeploy.core.errors import (
    BackendError,
    ConfigValidationError,
    ExitCode,
    FatalBackendError,
    FatalStepError,
    ForkDeployError,
    LedgerCorruptionError,
    PlanValidationError,
    RunCancelledError,
    StepExecutionError,
    TransientBackendError,
    TransientStepError,
    UnresolvedDependencyError,
    format_error_message,
    main_with_error_handling,
)

__all__ = [
    "BackendError",
    "ConfigValidationError",
    "ExitCode",
    "FatalBackendError",
    "FatalStepError",
    "ForkDeployError",
    "LedgerCorruptionError",
    "PlanValidationError",
    "RunCancelledError",
    "StepExecutionError",
    "TransientBackendError",
    "TransientStepError",
    "UnresolvedDependencyError",
    "format_error_message",
    "main_with_error_handling",
]
