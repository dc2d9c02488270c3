"""Custom exception classes for PrivacyKit.

Includes:
- Base exception carrying an error code and structured context
- Selection errors (no candidate, estimation failure)
- Pipeline errors annotated with step index and kind
- Retry configuration and decorator
"""

import asyncio
import functools
import inspect
import logging
import random
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, TypeVar

logger = logging.getLogger(__name__)
F = TypeVar("F", bound=Callable[..., Any])


class PrivacyKitError(Exception):
    """Base exception for all PrivacyKit errors."""

    def __init__(
        self,
        detail: str,
        error_code: str = "INTERNAL_ERROR",
        context: dict[str, Any] | None = None,
        original_error: BaseException | None = None,
        retryable: bool = False,
    ):
        self.detail = detail
        self.error_code = error_code
        self.context = context or {}
        self.original_error = original_error
        self.retryable = retryable
        self.timestamp = datetime.now(UTC).isoformat()
        super().__init__(detail)

    def to_dict(self):
        """Convert exception to a JSON-safe dictionary."""
        data = {
            "error": self.error_code,
            "detail": self.detail,
            "retryable": self.retryable,
            "context": self.context,
            "timestamp": self.timestamp,
        }
        if self.original_error is not None:
            data["cause"] = f"{type(self.original_error).__name__}: {self.original_error}"
        return data


# =============================================================================
# PROVIDER EXCEPTIONS
# =============================================================================


class ProviderNotFoundError(PrivacyKitError):
    """Raised when an operation names a provider that is not registered."""

    def __init__(
        self,
        provider_id: str,
        step_index: int | None = None,
        step_type: str | None = None,
    ):
        self.provider_id = provider_id
        self.step_index = step_index
        self.step_type = step_type
        context: dict[str, Any] = {"provider_id": provider_id}
        detail = f"Provider {provider_id} is not registered"
        if step_index is not None:
            context.update(step_index=step_index, step_type=step_type)
            detail = f"Step {step_index} ({step_type}): {detail}"
        super().__init__(
            detail=detail, error_code="PROVIDER_NOT_FOUND", context=context
        )


class ProviderNotReadyError(PrivacyKitError):
    """Raised when a provider is used before it finished initializing."""

    def __init__(self, provider_id: str, original_error: BaseException | None = None):
        self.provider_id = provider_id
        super().__init__(
            detail=f"Provider {provider_id} is not available or not initialized",
            error_code="PROVIDER_NOT_READY",
            context={"provider_id": provider_id},
            original_error=original_error,
            retryable=True,
        )


class NoProvidersAvailableError(PrivacyKitError):
    """Raised when no provider could be initialized or none is registered."""

    def __init__(self, detail: str = "No providers available"):
        super().__init__(detail=detail, error_code="NO_PROVIDERS_AVAILABLE")


class UnsupportedOperationError(PrivacyKitError):
    """Raised when a provider is asked for an operation it does not declare."""

    def __init__(
        self,
        provider_id: str,
        operation: str,
        step_index: int | None = None,
        step_type: str | None = None,
    ):
        self.provider_id = provider_id
        self.operation = operation
        self.step_index = step_index
        self.step_type = step_type
        context: dict[str, Any] = {"provider_id": provider_id, "operation": operation}
        if step_index is not None:
            context.update(step_index=step_index, step_type=step_type)
        super().__init__(
            detail=f"Provider {provider_id} does not support operation {operation}",
            error_code="UNSUPPORTED_OPERATION",
            context=context,
        )

    def annotate(self, step_index: int, step_type: str) -> "UnsupportedOperationError":
        return UnsupportedOperationError(
            self.provider_id, self.operation, step_index=step_index, step_type=step_type
        )


class ProviderOperationError(PrivacyKitError):
    """Raised when a direct provider operation fails."""

    def __init__(self, operation: str, provider_id: str, original_error: BaseException):
        self.operation = operation
        self.provider_id = provider_id
        super().__init__(
            detail=f"{operation} failed on provider {provider_id}: {original_error}",
            error_code=f"{operation.upper()}_FAILED",
            context={"operation": operation, "provider_id": provider_id},
            original_error=original_error,
        )


# =============================================================================
# SELECTION EXCEPTIONS
# =============================================================================


class NoCandidateAvailableError(PrivacyKitError):
    """Raised when filtering removes every registered provider."""

    def __init__(
        self,
        privacy_level: str,
        token: str,
        rejections: list[Any] | None = None,
    ):
        self.privacy_level = privacy_level
        self.token = token
        self.rejections = list(rejections or [])
        super().__init__(
            detail=(
                f"No available provider supports {privacy_level} privacy for "
                f"{token} under the requested constraints"
            ),
            error_code="NO_CANDIDATE_AVAILABLE",
            context={
                "privacy_level": privacy_level,
                "token": token,
                "rejected": {r.provider_id: r.reason for r in self.rejections},
            },
        )


class EstimationError(PrivacyKitError):
    """Raised when a provider's cost query itself fails."""

    def __init__(self, provider_id: str, original_error: BaseException):
        self.provider_id = provider_id
        super().__init__(
            detail=f"Cost estimation failed on provider {provider_id}: {original_error}",
            error_code="ESTIMATION_FAILED",
            context={"provider_id": provider_id},
            original_error=original_error,
            retryable=True,
        )


# =============================================================================
# PIPELINE EXCEPTIONS
# =============================================================================


class StepExecutionError(PrivacyKitError):
    """A provider operation failed inside a pipeline step."""

    def __init__(
        self,
        step_index: int,
        step_type: str,
        provider_id: str | None,
        original_error: BaseException,
    ):
        self.step_index = step_index
        self.step_type = step_type
        self.provider_id = provider_id
        super().__init__(
            detail=f"Step {step_index} ({step_type}) failed: {original_error}",
            error_code=f"PIPELINE_{step_type.upper()}_ERROR",
            context={
                "step_index": step_index,
                "step_type": step_type,
                "provider_id": provider_id,
            },
            original_error=original_error,
        )


# =============================================================================
# RETRY
# =============================================================================


@dataclass
class RetryConfig:
    """Exponential backoff for provider initialization."""

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: bool = True
    jitter_factor: float = 0.25
    # Raised immediately, never retried.
    fatal_exceptions: tuple[type[BaseException], ...] = field(
        default_factory=lambda: (ValueError, TypeError, KeyError, UnsupportedOperationError)
    )

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed ``attempt`` (1-based)."""
        base = min(self.initial_delay * self.exponential_base ** (attempt - 1), self.max_delay)
        if not self.jitter:
            return base
        return base * (1 + self.jitter_factor * random.random())

    def is_retryable(self, exc: BaseException) -> bool:
        if isinstance(exc, self.fatal_exceptions):
            return False
        if isinstance(exc, PrivacyKitError):
            return exc.retryable
        return True


def with_retry(
    config: RetryConfig | None = None,
    on_retry: Callable[[int, Exception, float], None] | None = None,
    exception_wrapper: Callable[[Exception], PrivacyKitError] | None = None,
) -> Callable[[F], F]:
    """
    Retry an async callable with exponential backoff.

    ``on_retry(attempt, exc, delay)`` runs before each sleep. When attempts
    run out, or the error is not retryable, the last error is raised, passed
    through ``exception_wrapper`` if one is given.

        initialize = with_retry(config=RetryConfig(max_attempts=5))(provider.initialize)
        await initialize()
    """
    cfg = config or RetryConfig()

    def decorator(func: F) -> F:
        if not inspect.iscoroutinefunction(func):
            raise TypeError(f"with_retry expects a coroutine function, got {func!r}")

        @functools.wraps(func)
        async def retrying(*args: Any, **kwargs: Any) -> Any:
            attempt = 0
            while True:
                attempt += 1
                try:
                    return await func(*args, **kwargs)
                except Exception as exc:
                    if attempt >= cfg.max_attempts or not cfg.is_retryable(exc):
                        logger.debug(
                            "giving up on %s after %d attempt(s): %s",
                            func.__qualname__, attempt, exc,
                        )
                        if exception_wrapper:
                            raise exception_wrapper(exc) from exc
                        raise
                    delay = cfg.delay_for(attempt)
                    if on_retry:
                        on_retry(attempt, exc, delay)
                    await asyncio.sleep(delay)

        return retrying  # type: ignore[return-value]

    return decorator
