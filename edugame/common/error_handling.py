"""
Error Handling System for the game engine

This module provides the error handling framework shared by every component:
1. Custom exception hierarchy for the engine's failure categories
2. Retry mechanism with backoff for transient collaborator failures
3. Structured error logging
"""

import time
import logging
import traceback
import asyncio
import random
import functools
import json
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Type, TypeVar, Union, cast
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field, field_validator

# Type variables
T = TypeVar('T')
F = TypeVar('F', bound=Callable)

logger = logging.getLogger("edugame.errors")


class ErrorSeverity(Enum):
    """Severity levels for errors"""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCode(Enum):
    """Standard error codes for the engine"""
    # General errors
    UNKNOWN_ERROR = "unknown_error"
    VALIDATION_ERROR = "validation_error"
    NOT_FOUND_ERROR = "not_found_error"
    CONFIGURATION_ERROR = "configuration_error"
    TIMEOUT_ERROR = "timeout_error"

    # Gameplay preconditions
    PRECONDITION_FAILED = "precondition_failed"
    NOT_INITIALIZED = "not_initialized"
    GAME_COMPLETED = "game_completed"
    GAME_NOT_RUNNING = "game_not_running"
    SESSION_CLOSED = "session_closed"
    INVALID_TRANSITION = "invalid_transition"

    # Lookups
    SESSION_NOT_FOUND = "session_not_found"
    GAME_NOT_FOUND = "game_not_found"
    GAME_TYPE_NOT_REGISTERED = "game_type_not_registered"

    # Data errors
    DATA_INTEGRITY_ERROR = "data_integrity_error"

    # Collaborators
    EXTERNAL_SERVICE_ERROR = "external_service_error"
    EXTERNAL_SERVICE_TIMEOUT = "external_service_timeout"
    PERSISTENCE_ERROR = "persistence_error"
    STALE_WRITE = "stale_write"
    EVENT_TIMEOUT = "event_timeout"


class ErrorInfo(BaseModel):
    """Structured information about an error"""
    model_config = ConfigDict(use_enum_values=True)

    code: ErrorCode
    message: str
    timestamp: datetime = Field(default_factory=datetime.now)
    severity: ErrorSeverity = ErrorSeverity.ERROR
    details: Optional[Dict[str, Any]] = None
    exception_type: Optional[str] = None
    exception_message: Optional[str] = None
    stack_trace: Optional[List[str]] = None
    context: Optional[Dict[str, Any]] = None

    @field_validator('stack_trace', mode='before')
    @classmethod
    def validate_stack_trace(cls, v):
        """Format stack trace if it's a string"""
        if isinstance(v, str):
            return v.splitlines()
        return v


class EduGameError(Exception):
    """Base exception class for all engine errors"""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.severity = severity
        self.details = details or {}
        self.cause = cause
        self.context = context or {}
        self.timestamp = datetime.now()

    def _cause_summary(self) -> Optional[Dict[str, str]]:
        if self.cause is None:
            return None
        return {"type": type(self.cause).__name__, "message": str(self.cause)}

    def to_error_info(self, include_stack_trace: bool = False) -> ErrorInfo:
        """Structured view of the error, e.g. for event payloads and logs."""
        details = dict(self.details)
        cause = self._cause_summary()
        if cause:
            details["cause"] = cause

        return ErrorInfo(
            code=self.code,
            message=self.message,
            timestamp=self.timestamp,
            severity=self.severity,
            details=details,
            exception_type=type(self).__name__,
            exception_message=str(self),
            stack_trace=traceback.format_exc().splitlines() if include_stack_trace else None,
            context=self.context
        )

    def to_dict(self, include_stack_trace: bool = False) -> Dict[str, Any]:
        return self.to_error_info(include_stack_trace).model_dump(mode="json")

    def to_json(self, include_stack_trace: bool = False) -> str:
        return json.dumps(self.to_dict(include_stack_trace))

    def __str__(self) -> str:
        parts = [f"{self.code.value}: {self.message}"]
        if self.details:
            parts.append(f"(details: {self.details})")
        cause = self._cause_summary()
        if cause:
            parts.append(f"caused by {cause['type']}: {cause['message']}")
        return " ".join(parts)


class ValidationError(EduGameError):
    """Error raised when input validation fails"""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None
    ):
        details = details or {}
        if field:
            details["field"] = field
        super().__init__(
            message=message,
            code=ErrorCode.VALIDATION_ERROR,
            severity=ErrorSeverity.WARNING,
            details=details,
            cause=cause
        )


class ConfigurationError(EduGameError):
    """Error raised for invalid engine, plugin or game configuration"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            code=ErrorCode.CONFIGURATION_ERROR,
            severity=ErrorSeverity.CRITICAL,
            details=details
        )


#------------------------------------------------------------------------------
# Gameplay preconditions
#------------------------------------------------------------------------------

class PreconditionError(EduGameError):
    """Base class for operations attempted in a state that forbids them"""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.PRECONDITION_FAILED,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            code=code,
            severity=ErrorSeverity.WARNING,
            details=details
        )


class NotInitializedError(PreconditionError):
    """Error raised when a game is driven before initialize() completed"""

    def __init__(self, game_id: str, operation: str):
        super().__init__(
            f"Game {game_id} must be initialized before {operation}",
            code=ErrorCode.NOT_INITIALIZED,
            details={"game_id": game_id, "operation": operation}
        )


class GameCompletedError(PreconditionError):
    """Error raised when a completed game receives gameplay input"""

    def __init__(self, game_id: str, operation: str):
        super().__init__(
            f"Game {game_id} is already completed; cannot {operation}",
            code=ErrorCode.GAME_COMPLETED,
            details={"game_id": game_id, "operation": operation}
        )


class GameNotRunningError(PreconditionError):
    """Error raised when a game that is paused or not started receives input"""

    def __init__(self, game_id: str, operation: str, reason: str):
        super().__init__(
            f"Game {game_id} is not running ({reason}); cannot {operation}",
            code=ErrorCode.GAME_NOT_RUNNING,
            details={"game_id": game_id, "operation": operation, "reason": reason}
        )


class SessionClosedError(PreconditionError):
    """Error raised when a completed or abandoned session is mutated"""

    def __init__(self, session_id: str, status: str, operation: str):
        super().__init__(
            f"Session {session_id} is {status}; cannot {operation}",
            code=ErrorCode.SESSION_CLOSED,
            details={"session_id": session_id, "status": status, "operation": operation}
        )


class InvalidTransitionError(PreconditionError):
    """Error raised when a lifecycle transition is not in the transition table"""

    def __init__(self, instance_id: str, current: str, target: str):
        super().__init__(
            f"Invalid state transition: {current} -> {target} for game {instance_id}",
            code=ErrorCode.INVALID_TRANSITION,
            details={"instance_id": instance_id, "current": current, "target": target}
        )
        self.instance_id = instance_id
        self.current = current
        self.target = target


#------------------------------------------------------------------------------
# Lookups
#------------------------------------------------------------------------------

class NotFoundError(EduGameError):
    """Error raised when a resource is not found"""

    def __init__(
        self,
        resource_type: str,
        resource_id: Any,
        code: ErrorCode = ErrorCode.NOT_FOUND_ERROR
    ):
        super().__init__(
            message=f"{resource_type} with ID {resource_id} not found",
            code=code,
            severity=ErrorSeverity.WARNING,
            details={"resource_type": resource_type, "resource_id": resource_id}
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class SessionNotFoundError(NotFoundError):
    """Error raised when no active or persisted session matches an ID"""

    def __init__(self, session_id: str):
        super().__init__("Session", session_id, ErrorCode.SESSION_NOT_FOUND)


class GameNotFoundError(NotFoundError):
    """Error raised when no game definition matches an ID"""

    def __init__(self, game_id: str):
        super().__init__("Game", game_id, ErrorCode.GAME_NOT_FOUND)


class GameTypeNotRegisteredError(NotFoundError):
    """Error raised when a game definition names an unknown game type"""

    def __init__(self, type_id: str):
        super().__init__("Game type", type_id, ErrorCode.GAME_TYPE_NOT_REGISTERED)


#------------------------------------------------------------------------------
# Data and collaborator errors
#------------------------------------------------------------------------------

class DataIntegrityError(EduGameError):
    """Error raised when data integrity is violated"""

    def __init__(
        self,
        data_type: str,
        integrity_issue: str,
        details: Optional[Dict[str, Any]] = None
    ):
        details = details or {}
        details["data_type"] = data_type
        details["integrity_issue"] = integrity_issue

        super().__init__(
            message=f"Data integrity violation for {data_type}: {integrity_issue}",
            code=ErrorCode.DATA_INTEGRITY_ERROR,
            severity=ErrorSeverity.ERROR,
            details=details
        )


class ExternalServiceError(EduGameError):
    """Error raised when an external service call fails"""

    def __init__(
        self,
        service_name: str,
        message: str,
        cause: Optional[Exception] = None,
        code: ErrorCode = ErrorCode.EXTERNAL_SERVICE_ERROR
    ):
        super().__init__(
            message=f"{service_name}: {message}",
            code=code,
            severity=ErrorSeverity.WARNING,
            details={"service_name": service_name},
            cause=cause
        )
        self.service_name = service_name


class ExternalServiceTimeoutError(ExternalServiceError):
    """Error raised when an external service exceeds its time budget"""

    def __init__(self, service_name: str, timeout_seconds: float):
        super().__init__(
            service_name,
            f"timed out after {timeout_seconds}s",
            code=ErrorCode.EXTERNAL_SERVICE_TIMEOUT
        )
        self.timeout_seconds = timeout_seconds


class PersistenceError(EduGameError):
    """Error raised when the persistence layer fails"""

    def __init__(
        self,
        message: str,
        cause: Optional[Exception] = None,
        code: ErrorCode = ErrorCode.PERSISTENCE_ERROR,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            code=code,
            severity=ErrorSeverity.ERROR,
            details=details,
            cause=cause
        )


class StaleWriteError(PersistenceError):
    """Error raised when a save is based on an outdated version of a record"""

    def __init__(self, record_type: str, record_id: str, expected: int, actual: int):
        super().__init__(
            f"{record_type} {record_id} was modified concurrently "
            f"(expected version {expected}, found {actual})",
            code=ErrorCode.STALE_WRITE,
            details={
                "record_type": record_type,
                "record_id": record_id,
                "expected_version": expected,
                "actual_version": actual
            }
        )


class EventTimeoutError(EduGameError):
    """Error raised when waiting for an event exceeds its timeout"""

    def __init__(self, event_name: str, timeout_ms: float):
        super().__init__(
            message=f"Timeout waiting for event: {event_name}",
            code=ErrorCode.EVENT_TIMEOUT,
            severity=ErrorSeverity.WARNING,
            details={"event_name": event_name, "timeout_ms": timeout_ms}
        )
        self.event_name = event_name


def convert_exception(
    exception: Exception,
    default_message: str = "An unexpected error occurred",
    default_code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
    context: Optional[Dict[str, Any]] = None
) -> EduGameError:
    """
    Wrap an arbitrary exception in an EduGameError.

    Engine errors are returned as they are, with ``context`` merged into
    their own context.
    """
    if isinstance(exception, EduGameError):
        exception.context.update(context or {})
        return exception

    return EduGameError(
        message=str(exception) or default_message,
        code=default_code,
        cause=exception,
        context=context
    )


def _backoff(retry_delay: float, backoff_factor: float, jitter: float):
    """Yield successive retry delays with multiplicative jitter."""
    delay = retry_delay
    while True:
        yield delay * (1 + random.uniform(-jitter, jitter))
        delay *= backoff_factor


def retry(
    max_retries: int = 3,
    retry_delay: float = 1.0,
    backoff_factor: float = 2.0,
    jitter: float = 0.1,
    retry_exceptions: Tuple[Type[Exception], ...] = (Exception,),
    ignore_exceptions: Tuple[Type[Exception], ...] = (),
    on_retry: Optional[Callable[[int, Exception, float], None]] = None
):
    """
    Retry a function (plain or coroutine) with exponential backoff.

    Args:
        max_retries: Retries after the first attempt; 0 disables retrying
        retry_delay: Delay before the first retry, in seconds
        backoff_factor: Multiplier applied to the delay after each retry
        jitter: Relative random variation applied to every delay
        retry_exceptions: Exception types that trigger a retry
        ignore_exceptions: Exception types that are raised immediately
        on_retry: Callback ``(attempt, error, delay)`` invoked before sleeping

    Returns:
        Decorated function
    """
    def decorator(func: F) -> F:
        def next_delay(attempt: int, error: Exception, delays) -> Optional[float]:
            """Delay before the next attempt, or None once retries are exhausted."""
            if isinstance(error, ignore_exceptions) or not isinstance(error, retry_exceptions):
                return None
            if attempt > max_retries:
                return None
            delay = next(delays)
            if on_retry:
                on_retry(attempt, error, delay)
            logger.warning(
                f"Retry {attempt}/{max_retries} for {func.__name__} "
                f"after {delay:.2f}s due to {type(error).__name__}: {error}"
            )
            return delay

        if asyncio.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                delays = _backoff(retry_delay, backoff_factor, jitter)
                attempt = 0
                while True:
                    try:
                        return await func(*args, **kwargs)
                    except Exception as e:
                        attempt += 1
                        delay = next_delay(attempt, e, delays)
                        if delay is None:
                            raise
                    await asyncio.sleep(delay)

            return cast(F, async_wrapper)

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            delays = _backoff(retry_delay, backoff_factor, jitter)
            attempt = 0
            while True:
                try:
                    return func(*args, **kwargs)
                except Exception as e:
                    attempt += 1
                    delay = next_delay(attempt, e, delays)
                    if delay is None:
                        raise
                time.sleep(delay)

        return cast(F, sync_wrapper)

    return decorator


def log_error(
    error: Union[EduGameError, Exception],
    level: int = logging.ERROR,
    include_stack_trace: bool = True,
    context: Optional[Dict[str, Any]] = None,
    log: Optional[logging.Logger] = None
) -> None:
    """
    Log an error as one line: code, message, context and cause.

    Args:
        error: The error to log
        level: Logging level
        include_stack_trace: Attach the active exception's traceback
        context: Extra key/values merged into the error's context
        log: Logger to write to (defaults to ``edugame.errors``)
    """
    error = convert_exception(error, context=context)

    parts = [f"ERROR [{error.code.value}]: {error.message}"]
    if error.context:
        parts.append("(context: " + ", ".join(f"{k}={v}" for k, v in error.context.items()) + ")")
    if error.cause:
        parts.append(f"caused by {type(error.cause).__name__}: {error.cause}")

    (log or logger).log(level, " ".join(parts), exc_info=include_stack_trace)
