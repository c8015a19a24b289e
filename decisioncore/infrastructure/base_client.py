"""
Decision Core Base Collaborator Client

Provides a base class for clients of external collaborators (procedure
store, AI planner, trace sink) with structured logging, retry logic and a
circuit breaker.
"""

import asyncio
import inspect
import time
from abc import ABC
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, TypeVar

from decisioncore.exceptions import CircuitBreakerError
from decisioncore.infrastructure.logging.config import get_logger
from decisioncore.infrastructure.observability.metrics import record_collaborator_call


T = TypeVar("T")


class CircuitBreaker:
    """
    Simple circuit breaker for collaborator calls.

    Opens after ``failure_threshold`` consecutive failures, lets one trial
    call through after ``recovery_timeout`` seconds (half-open) and closes
    again on success.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: int = 60,
        expected_exception: type = Exception
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exception = expected_exception

        self.failure_count = 0
        self.last_failure_time: Optional[datetime] = None
        self.state = "closed"  # closed, open, half-open

    def can_execute(self) -> bool:
        """Check if circuit allows execution."""
        if self.state == "closed":
            return True

        if self.state == "open":
            if (self.last_failure_time and
                    datetime.now(timezone.utc) - self.last_failure_time > timedelta(seconds=self.recovery_timeout)):
                self.state = "half-open"
                return True
            return False

        return True

    def record_success(self) -> None:
        self.failure_count = 0
        self.state = "closed"

    def record_failure(self, exception: BaseException) -> None:
        if isinstance(exception, self.expected_exception):
            self.failure_count += 1
            self.last_failure_time = datetime.now(timezone.utc)

            if self.failure_count >= self.failure_threshold:
                self.state = "open"
            elif self.state == "half-open":
                self.state = "open"


class BaseExternalClient(ABC):
    """
    Base class for all collaborator clients.

    Attributes:
        client_name: Name of the client
        service_name: Name of the collaborator being accessed
        logger: structlog logger bound to the client
        circuit_breaker: Circuit breaker for collaborator protection
    """

    def __init__(
        self,
        client_name: str,
        service_name: str,
        enable_circuit_breaker: bool = True,
        circuit_breaker_threshold: int = 5,
        circuit_breaker_timeout: int = 60
    ):
        """
        Initialize base client with logging and circuit breaker.

        Args:
            client_name: Name of the client (e.g., "planner_gateway")
            service_name: Name of the collaborator (e.g., "AgentPlanner")
            enable_circuit_breaker: Whether to enable circuit breaker protection
            circuit_breaker_threshold: Failures before opening circuit
            circuit_breaker_timeout: Seconds to wait before retry
        """
        self.client_name = client_name
        self.service_name = service_name
        self.logger = get_logger(f"decisioncore.infrastructure.{client_name}").bind(
            client=client_name, service=service_name
        )

        if enable_circuit_breaker:
            self.circuit_breaker: Optional[CircuitBreaker] = CircuitBreaker(
                failure_threshold=circuit_breaker_threshold,
                recovery_timeout=circuit_breaker_timeout
            )
        else:
            self.circuit_breaker = None

        self.connection_metrics: Dict[str, Any] = {
            "total_calls": 0,
            "successful_calls": 0,
            "failed_calls": 0,
            "circuit_breaker_trips": 0,
            "last_success_time": None,
            "last_failure_time": None
        }

    def _record_failure(self, operation_name: str, started: float) -> None:
        self.connection_metrics["failed_calls"] += 1
        self.connection_metrics["last_failure_time"] = datetime.now(timezone.utc).isoformat()
        record_collaborator_call(self.client_name, operation_name, "error", time.monotonic() - started)

    async def call_external(
        self,
        operation_name: str,
        call_func: Callable[..., Any],
        *args,
        timeout: Optional[float] = None,
        retries: int = 0,
        retry_delay: float = 1.0,
        validate_response: Optional[Callable[[Any], bool]] = None,
        **kwargs
    ) -> Any:
        """
        Execute a collaborator call with circuit breaker, timeout and retries.

        Timeouts fail fast without retrying. Other failures are retried with
        exponential backoff and the last error is re-raised. Cancellation is
        never retried or converted.

        Args:
            operation_name: Name of the operation (e.g., "plan", "save_trace")
            call_func: The function to call (sync or async)
            *args: Arguments to pass to the call function
            timeout: Optional timeout in seconds for async calls
            retries: Number of retry attempts on failure
            retry_delay: Base delay between retries
            validate_response: Optional predicate; a falsy result is a failure
            **kwargs: Keyword arguments to pass to the call function

        Returns:
            Result of the call

        Raises:
            CircuitBreakerError: If circuit breaker is open
            asyncio.TimeoutError: If the operation times out
        """
        if self.circuit_breaker and not self.circuit_breaker.can_execute():
            self.connection_metrics["circuit_breaker_trips"] += 1
            self.logger.warning("circuit_breaker_open", operation=operation_name)
            raise CircuitBreakerError(
                f"Circuit breaker is open for {self.service_name}",
                details={"service": self.service_name, "operation": operation_name},
            )

        self.connection_metrics["total_calls"] += 1
        last_exception: Optional[Exception] = None

        for attempt in range(retries + 1):
            if attempt > 0:
                delay = retry_delay * (2 ** (attempt - 1))
                self.logger.info(
                    "external_call_retry",
                    operation=operation_name,
                    attempt=attempt + 1,
                    max_attempts=retries + 1,
                    previous_error=type(last_exception).__name__,
                )
                await asyncio.sleep(delay)

            start_time = time.monotonic()
            try:
                result = call_func(*args, **kwargs)
                if inspect.isawaitable(result):
                    if timeout:
                        result = await asyncio.wait_for(result, timeout=timeout)
                    else:
                        result = await result

                if validate_response and not validate_response(result):
                    raise ValueError(f"Response validation failed for {self.service_name}.{operation_name}")

            except asyncio.TimeoutError as timeout_error:
                self._record_failure(operation_name, start_time)
                if self.circuit_breaker:
                    self.circuit_breaker.record_failure(timeout_error)
                self.logger.error("external_call_timeout", operation=operation_name, timeout=timeout)
                raise

            except Exception as e:
                last_exception = e
                self._record_failure(operation_name, start_time)
                self.logger.warning(
                    "external_call_failed",
                    operation=operation_name,
                    attempt=attempt + 1,
                    error_type=type(e).__name__,
                )
                continue

            call_duration = time.monotonic() - start_time
            self.connection_metrics["successful_calls"] += 1
            self.connection_metrics["last_success_time"] = datetime.now(timezone.utc).isoformat()
            if self.circuit_breaker:
                self.circuit_breaker.record_success()
            record_collaborator_call(self.client_name, operation_name, "success", call_duration)
            self.logger.debug(
                "external_call_success",
                operation=operation_name,
                duration=call_duration,
                attempts=attempt + 1,
            )
            return result

        # one breaker failure per call, however many attempts it took
        if self.circuit_breaker:
            self.circuit_breaker.record_failure(last_exception)
        self.logger.error(
            "external_call_exhausted",
            operation=operation_name,
            attempts=retries + 1,
            error_type=type(last_exception).__name__,
        )
        raise last_exception

    async def health_check(self) -> Dict[str, Any]:
        """Report circuit breaker state and call metrics."""
        status = "healthy"
        if self.circuit_breaker and self.circuit_breaker.state == "open":
            status = "unhealthy"
        elif self.circuit_breaker and self.circuit_breaker.state == "half-open":
            status = "degraded"
        return {
            "client_name": self.client_name,
            "service_name": self.service_name,
            "status": status,
            "circuit_breaker_state": self.circuit_breaker.state if self.circuit_breaker else None,
            "metrics": dict(self.connection_metrics),
        }
