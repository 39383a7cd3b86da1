"""
Unified error handling for forkdeploy.

This module provides the error taxonomy of the provisioning engine, the
standardized exit codes, and the CLI error-handling decorator.

Exit Codes:
- 0: Success
- 1: Run failed (a step failed after exhausting its attempts)
- 2: Run cancelled between steps
- 10: Configuration error
- 11: Backend error (external resource backend failure outside a step)
- 12: Plan validation error
- 13: Ledger corruption
- 14: Internal invariant violation
- 127: Unknown/internal error
"""

from __future__ import annotations

import functools
import sys
import traceback
from enum import IntEnum
from typing import Any, Callable, TypeVar

import structlog

logger = structlog.get_logger()


class ExitCode(IntEnum):
    """Standardized exit codes for CLI commands."""

    SUCCESS = 0
    RUN_FAILED = 1
    CANCELLED = 2
    CONFIG_ERROR = 10
    BACKEND_ERROR = 11
    VALIDATION_ERROR = 12
    LEDGER_ERROR = 13
    INTERNAL_ERROR = 14
    UNKNOWN_ERROR = 127


class ForkDeployError(Exception):
    """Base exception for forkdeploy errors with exit code support."""

    exit_code: ExitCode = ExitCode.UNKNOWN_ERROR
    show_traceback: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigValidationError(ForkDeployError):
    """Raised when deployment configuration is missing or invalid."""

    exit_code = ExitCode.CONFIG_ERROR

    def __init__(
        self,
        message: str,
        problems: list[str] | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.problems = problems or []


class PlanValidationError(ForkDeployError):
    """Raised when a plan has cycles, forward or undeclared dependencies."""

    exit_code = ExitCode.VALIDATION_ERROR

    def __init__(
        self,
        message: str,
        problems: list[str] | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.problems = problems or []


class UnresolvedDependencyError(ForkDeployError):
    """Raised when a step references a resource that has no address yet.

    Never expected against a validated plan.
    """

    exit_code = ExitCode.INTERNAL_ERROR
    show_traceback = True


class StepExecutionError(ForkDeployError):
    """Raised when a step fails against the resource backend."""

    exit_code = ExitCode.RUN_FAILED

    def __init__(
        self,
        message: str,
        step_id: str,
        attempts: int = 1,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.step_id = step_id
        self.attempts = attempts


class TransientStepError(StepExecutionError):
    """Step failed transiently on every allowed attempt."""


class FatalStepError(StepExecutionError):
    """Step was rejected outright; not retried."""


class LedgerCorruptionError(ForkDeployError):
    """Raised when the persisted ledger cannot be read back safely."""

    exit_code = ExitCode.LEDGER_ERROR


class RunCancelledError(ForkDeployError):
    """Raised when a stop request was honored between steps."""

    exit_code = ExitCode.CANCELLED


class BackendError(ForkDeployError):
    """Raised by resource backends when an operation fails."""

    exit_code = ExitCode.BACKEND_ERROR


class TransientBackendError(BackendError):
    """Backend failure that may succeed on retry (network, timeout)."""


class FatalBackendError(BackendError):
    """Backend rejected the operation (invalid arguments, revert)."""


# Type variable for decorated functions
F = TypeVar("F", bound=Callable[..., int])


def main_with_error_handling(
    *,
    show_traceback: bool = False,
    log_errors: bool = True,
) -> Callable[[F], F]:
    """
    Decorator for CLI command functions that provides unified error handling.

    Catches exceptions and converts them to appropriate exit codes with
    consistent error reporting.

    Args:
        show_traceback: If True, show full traceback for unexpected errors
        log_errors: If True, log errors to structlog

    Exit codes:
        - ForkDeployError subclasses: Uses the error's exit_code
        - KeyboardInterrupt: Returns 130 (standard for SIGINT)
        - Other exceptions: Returns 127 (unknown error)
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> int:
            try:
                return func(*args, **kwargs)
            except ForkDeployError as e:
                if log_errors:
                    logger.error(
                        "command_error",
                        error_type=type(e).__name__,
                        message=e.message,
                        exit_code=int(e.exit_code),
                        **e.details,
                    )
                if e.show_traceback or show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return int(e.exit_code)
            except KeyboardInterrupt:
                if log_errors:
                    logger.info("command_interrupted")
                return 130  # Standard exit code for SIGINT
            except Exception as e:
                if log_errors:
                    logger.error(
                        "unexpected_error",
                        error_type=type(e).__name__,
                        message=str(e),
                        exit_code=int(ExitCode.UNKNOWN_ERROR),
                    )
                if show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return int(ExitCode.UNKNOWN_ERROR)

        return wrapper  # type: ignore[return-value]

    return decorator


def format_error_message(error: ForkDeployError) -> str:
    """Format an error message for display to users."""
    msg = error.message
    if error.details:
        detail_str = ", ".join(f"{k}={v}" for k, v in error.details.items())
        msg = f"{msg} ({detail_str})"
    return msg
