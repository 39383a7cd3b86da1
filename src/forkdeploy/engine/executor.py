"""Step executor: runs one step against the backend with bounded retry."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence

import structlog
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from forkdeploy.core.errors import (
    FatalBackendError,
    FatalStepError,
    TransientBackendError,
    TransientStepError,
)
from forkdeploy.engine.backend import ResourceBackend
from forkdeploy.engine.models import Step, StepResult

logger = structlog.get_logger()

# Failures eligible for retry; everything else is fatal for the step.
TRANSIENT_ERRORS = (TransientBackendError, TimeoutError, ConnectionError)


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff for transient backend failures."""

    max_attempts: int = 3
    backoff_multiplier: float = 2.0
    backoff_min_seconds: float = 1.0
    backoff_max_seconds: float = 30.0


class StepExecutor:
    """Executes provision and configure steps against a ResourceBackend."""

    def __init__(
        self,
        backend: ResourceBackend,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._backend = backend
        self._policy = retry_policy or RetryPolicy()
        self._sleep = sleep

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._policy

    def execute(
        self,
        step: Step,
        resolved_args: Sequence[Any],
        kind: Optional[str] = None,
        handle: Optional[str] = None,
    ) -> StepResult:
        """
        Execute a step.

        Args:
            step: Step to execute
            resolved_args: Arguments with every resource reference substituted
            kind: Resource kind (provision steps)
            handle: Target resource address (configure steps)

        Raises:
            TransientStepError: transient failure on every allowed attempt
            FatalStepError: backend rejected the step; not retried
        """
        retrying = Retrying(
            stop=stop_after_attempt(self._policy.max_attempts),
            wait=wait_exponential(
                multiplier=self._policy.backoff_multiplier,
                min=self._policy.backoff_min_seconds,
                max=self._policy.backoff_max_seconds,
            ),
            retry=retry_if_exception_type(TRANSIENT_ERRORS),
            before_sleep=self._log_retry(step),
            sleep=self._sleep,
            reraise=True,
        )

        attempts = 0
        try:
            for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    outcome = self._call_backend(step, resolved_args, kind, handle)
        except TRANSIENT_ERRORS as e:
            logger.error(
                "step_retries_exhausted",
                step_id=step.step_id,
                attempts=attempts,
                error=str(e),
            )
            raise TransientStepError(
                f"{step.label} failed after {attempts} attempt(s): {e}",
                step_id=step.step_id,
                attempts=attempts,
            ) from e
        except Exception as e:
            logger.error(
                "step_rejected",
                step_id=step.step_id,
                error_type=type(e).__name__,
                error=str(e),
            )
            raise FatalStepError(
                f"{step.label} rejected: {e}",
                step_id=step.step_id,
                attempts=attempts,
            ) from e

        if step.is_provision:
            return StepResult(step_id=step.step_id, address=outcome, attempts=attempts)
        return StepResult(step_id=step.step_id, receipt=outcome, attempts=attempts)

    def _call_backend(
        self,
        step: Step,
        resolved_args: Sequence[Any],
        kind: Optional[str],
        handle: Optional[str],
    ) -> Any:
        if step.is_provision:
            address = self._backend.create(kind or "", list(resolved_args))
            if not address:
                raise FatalBackendError(f"Backend returned no address for {kind}")
            return address

        receipt = self._backend.invoke(handle or "", step.method or "", list(resolved_args))
        receipt = dict(receipt or {})
        if receipt.get("status") in (0, False):
            raise FatalBackendError(
                f"{step.method} was not acknowledged successfully",
                details={"receipt": receipt},
            )
        return receipt

    def _log_retry(self, step: Step) -> Callable[[RetryCallState], None]:
        def before_sleep(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                "step_attempt_failed",
                step_id=step.step_id,
                attempt=retry_state.attempt_number,
                max_attempts=self._policy.max_attempts,
                error=str(error),
            )

        return before_sleep
