"""
Exception hierarchy for the Keel engine.

Every error raised by the engine derives from :class:`KeelError`. Each
one carries an :class:`ErrorCode`, a details mapping and the underlying
cause, so the turn loop can report a failure as an event and the CLI can
print it without knowing the concrete type.
"""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Error codes for categorizing exceptions."""

    UNKNOWN = "UNKNOWN"
    CONFIGURATION = "CONFIGURATION"
    TRANSPORT = "TRANSPORT"
    API = "API"
    VALIDATION = "VALIDATION"
    STREAM = "STREAM"
    RATE_LIMIT = "RATE_LIMIT"
    TIMEOUT = "TIMEOUT"
    CANCELLED = "CANCELLED"
    STATE = "STATE"


def _with_details(details: dict[str, Any] | None, **extra: Any) -> dict[str, Any]:
    merged: dict[str, Any] = dict(details or {})
    merged.update({key: value for key, value in extra.items() if value is not None})
    return merged


class KeelError(Exception):
    """
    Base class of every Keel error.

    Parameters
    ----------
    message : str
        Human-readable error message.
    error_code : ErrorCode, default=ErrorCode.UNKNOWN
        Category of the failure.
    details : dict[str, Any] | None, optional
        Structured context, rendered by ``__str__`` and ``to_dict``.
    cause : Exception | None, optional
        Exception this one wraps.

    Examples
    --------
    >>> error = KeelError("Stream closed early", ErrorCode.STREAM, details={"bytes_read": 120})
    >>> str(error)
    '[STREAM] Stream closed early | Details: bytes_read=120'
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.UNKNOWN,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.message: str = message
        self.error_code: ErrorCode = error_code
        self.details: dict[str, Any] = details or {}
        self.cause: Exception | None = cause

    def __str__(self) -> str:
        parts: list[str] = [f"[{self.error_code.value}] {self.message}"]
        if self.details:
            parts.append("Details: " + ", ".join(f"{k}={v}" for k, v in self.details.items()))
        if self.cause:
            parts.append(f"Caused by: {type(self.cause).__name__}: {self.cause}")
        return " | ".join(parts)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(message={self.message!r}, "
            f"error_code={self.error_code.value!r}, details={self.details!r}, "
            f"cause={self.cause!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """
        Serialize the error for an ``agent_error`` event.

        Returns
        -------
        dict[str, Any]
            ``type``, ``error_code``, ``message`` and ``details``, plus
            ``cause`` when the error wraps another exception.
        """
        result: dict[str, Any] = {
            "type": self.__class__.__name__,
            "error_code": self.error_code.value,
            "message": self.message,
            "details": self.details,
        }
        if self.cause:
            result["cause"] = {"type": type(self.cause).__name__, "message": str(self.cause)}
        return result


class ConfigurationError(KeelError):
    """
    A configuration file could not be read, parsed or validated.

    Parameters
    ----------
    message : str
        Human-readable error message.
    config_key : str | None, optional
        Offending key, when known.
    config_file : str | None, optional
        File the error came from.
    """

    def __init__(
        self,
        message: str,
        config_key: str | None = None,
        config_file: str | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(
            message,
            ErrorCode.CONFIGURATION,
            _with_details(details, config_key=config_key, config_file=config_file),
            cause,
        )
        self.config_key: str | None = config_key
        self.config_file: str | None = config_file


class TransportError(KeelError):
    """
    The model endpoint could not be reached, or the body failed mid-read.

    Examples
    --------
    >>> raise TransportError("Connection reset", endpoint="https://api.example.com/v1")
    """

    def __init__(
        self,
        message: str,
        endpoint: str | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message, ErrorCode.TRANSPORT, _with_details(details, endpoint=endpoint), cause)
        self.endpoint: str | None = endpoint


class APIError(KeelError):
    """The endpoint answered the request with an error status."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message, ErrorCode.API, _with_details(details, status_code=status_code), cause)
        self.status_code: int | None = status_code


class RateLimitError(APIError):
    """
    The endpoint kept rate-limiting after every retry.

    Parameters
    ----------
    retry_after : float | None, optional
        Seconds the last backoff would have waited.
    """

    def __init__(
        self,
        message: str,
        retry_after: float | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message, 429, _with_details(details, retry_after=retry_after), cause)
        self.error_code = ErrorCode.RATE_LIMIT
        self.retry_after: float | None = retry_after


class ValidationError(KeelError):
    """
    A configuration value failed a cross-field or range check.

    Examples
    --------
    >>> raise ValidationError("Temperature must be between 0.0 and 2.0", field="temperature")
    """

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message, ErrorCode.VALIDATION, _with_details(details, field=field), cause)
        self.field: str | None = field


class StreamError(KeelError):
    """A response stream could not be interpreted."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message, ErrorCode.STREAM, details, cause)


class ModelTimeoutError(KeelError):
    """One whole streaming model call exceeded its time ceiling."""

    def __init__(
        self,
        message: str,
        timeout_sec: float | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message, ErrorCode.TIMEOUT, _with_details(details, timeout_sec=timeout_sec), cause)
        self.timeout_sec: float | None = timeout_sec


class OperationCancelled(KeelError):
    """
    Raised at a suspension point once the run's cancellation token fired.

    The turn loop catches it and finishes the run in the aborted state.
    """

    def __init__(self, message: str = "Operation cancelled") -> None:
        super().__init__(message, ErrorCode.CANCELLED)


class StateTransitionError(KeelError):
    """An action was moved to a status it cannot reach from its current one."""

    def __init__(self, current: str, target: str) -> None:
        super().__init__(
            f"Cannot transition action from {current!r} to {target!r}",
            ErrorCode.STATE,
            {"current": current, "target": target},
        )
        self.current: str = current
        self.target: str = target
