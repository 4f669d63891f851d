"""
FeedRelay Custom Exceptions
===========================

Exception hierarchy for FeedRelay with error codes, context information,
and user-facing error messages.
"""

from typing import Optional, Dict, Any
from enum import Enum


class ErrorCode(str, Enum):
    """Error codes for categorizing exceptions."""

    # Configuration errors (C001-C099)
    CONFIG_INVALID = "C001"
    CONFIG_MISSING = "C002"

    # Database errors (D001-D099)
    DATABASE_CONNECTION = "D001"
    DATABASE_SCHEMA = "D002"
    DATABASE_CONSTRAINT = "D003"
    DATABASE_ERROR = "D006"

    # Feed fetch/parse errors (F001-F099)
    FEED_INVALID_URL = "F001"
    FEED_FETCH_TIMEOUT = "F002"
    FEED_PARSE_ERROR = "F003"
    FEED_NETWORK_ERROR = "F004"
    FEED_ACCESS_DENIED = "F005"
    FEED_HTTP_ERROR = "F006"

    # Notification errors (N001-N099)
    NOTIFY_REJECTED = "N001"
    NOTIFY_UNREACHABLE = "N002"
    NOTIFY_MISCONFIGURED = "N003"

    # Validation errors (V001-V099)
    VALIDATION_REQUIRED_FIELD = "V001"
    VALIDATION_INVALID_FORMAT = "V002"
    VALIDATION_OUT_OF_RANGE = "V003"
    VALIDATION_INVALID_PATTERN = "V004"

    # Resource errors (R001-R099)
    RESOURCE_NOT_FOUND = "R002"


class FeedRelayError(Exception):
    """Base exception for all FeedRelay errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[ErrorCode] = None,
        context: Optional[Dict[str, Any]] = None,
        user_message: Optional[str] = None,
        recoverable: bool = False,
    ):
        """Initialize FeedRelay error.

        Args:
            message: Technical error message for logging
            error_code: Categorized error code
            context: Additional context information
            user_message: User-friendly error message
            recoverable: Whether the error is recoverable
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.context = context or {}
        self.user_message = user_message or message
        self.recoverable = recoverable

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code.value if self.error_code else None,
            "error_message": self.message,
            "user_message": self.user_message,
            "context": self.context,
            "recoverable": self.recoverable,
        }

    def __str__(self) -> str:
        """String representation with error code."""
        if self.error_code:
            return f"[{self.error_code.value}] {super().__str__()}"
        return super().__str__()


def _passthrough(kwargs: Dict[str, Any], *consumed: str) -> Dict[str, Any]:
    return {k: v for k, v in kwargs.items() if k not in consumed}


class ConfigurationError(FeedRelayError):
    """Configuration-related errors."""

    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs):
        context = kwargs.get("context", {})
        if config_key:
            context["config_key"] = config_key

        super().__init__(
            message=message,
            error_code=kwargs.get("error_code", ErrorCode.CONFIG_INVALID),
            context=context,
            user_message=kwargs.get("user_message", f"Configuration error: {message}"),
            **_passthrough(kwargs, "context", "error_code", "user_message"),
        )


class DatabaseError(FeedRelayError):
    """Database-related errors."""

    def __init__(self, message: str, query: Optional[str] = None, **kwargs):
        context = kwargs.get("context", {})
        if query:
            context["query"] = query

        super().__init__(
            message=message,
            error_code=kwargs.get("error_code", ErrorCode.DATABASE_CONNECTION),
            context=context,
            user_message=kwargs.get("user_message", "Database operation failed"),
            recoverable=kwargs.get("recoverable", True),
            **_passthrough(kwargs, "context", "error_code", "user_message", "recoverable"),
        )


class FetchError(FeedRelayError):
    """Network or transport failure while fetching a feed."""

    def __init__(self, message: str, feed_url: Optional[str] = None, **kwargs):
        """Initialize fetch error.

        Args:
            message: Error message
            feed_url: Feed URL that caused the error
            **kwargs: Additional arguments for FeedRelayError
        """
        context = kwargs.get("context", {})
        if feed_url:
            context["feed_url"] = feed_url

        super().__init__(
            message=message,
            error_code=kwargs.get("error_code", ErrorCode.FEED_NETWORK_ERROR),
            context=context,
            user_message=kwargs.get("user_message", f"Feed fetch failed: {message}"),
            recoverable=kwargs.get("recoverable", True),
            **_passthrough(kwargs, "context", "error_code", "user_message", "recoverable"),
        )


class ParseError(FeedRelayError):
    """The fetched document could not be parsed as a feed."""

    def __init__(self, message: str, feed_url: Optional[str] = None, **kwargs):
        context = kwargs.get("context", {})
        if feed_url:
            context["feed_url"] = feed_url

        super().__init__(
            message=message,
            error_code=kwargs.get("error_code", ErrorCode.FEED_PARSE_ERROR),
            context=context,
            user_message=kwargs.get("user_message", f"Feed could not be parsed: {message}"),
            recoverable=kwargs.get("recoverable", True),
            **_passthrough(kwargs, "context", "error_code", "user_message", "recoverable"),
        )


class NotifyError(FeedRelayError):
    """Outbound channel rejected the notification or was unreachable."""

    def __init__(
        self,
        message: str,
        integration_id: Optional[str] = None,
        channel_type: Optional[str] = None,
        **kwargs,
    ):
        """Initialize notify error.

        Args:
            message: Error message
            integration_id: Integration the notification was addressed to
            channel_type: Channel type (discord, telegram)
            **kwargs: Additional arguments for FeedRelayError
        """
        context = kwargs.get("context", {})
        if integration_id:
            context["integration_id"] = integration_id
        if channel_type:
            context["channel_type"] = channel_type

        super().__init__(
            message=message,
            error_code=kwargs.get("error_code", ErrorCode.NOTIFY_REJECTED),
            context=context,
            user_message=kwargs.get("user_message", "Notification delivery failed"),
            recoverable=kwargs.get("recoverable", False),
            **_passthrough(kwargs, "context", "error_code", "user_message", "recoverable"),
        )


class ValidationError(FeedRelayError):
    """Data validation errors."""

    def __init__(self, message: str, field_name: Optional[str] = None, **kwargs):
        """Initialize validation error.

        Args:
            message: Error message
            field_name: Field name that failed validation
            **kwargs: Additional arguments for FeedRelayError
        """
        context = kwargs.get("context", {})
        if field_name:
            context["field_name"] = field_name

        super().__init__(
            message=message,
            error_code=kwargs.get("error_code", ErrorCode.VALIDATION_INVALID_FORMAT),
            context=context,
            user_message=kwargs.get(
                "user_message", f"Invalid {field_name or 'input'}: {message}"
            ),
            recoverable=kwargs.get("recoverable", False),
            **_passthrough(kwargs, "context", "error_code", "user_message", "recoverable"),
        )


class NotFoundError(FeedRelayError):
    """Operation referenced an unknown feed, integration or route id."""

    def __init__(self, resource: str, resource_id: Any, **kwargs):
        context = kwargs.get("context", {})
        context.update({"resource": resource, "resource_id": resource_id})
        self.resource = resource
        self.resource_id = resource_id

        super().__init__(
            message=f"{resource} '{resource_id}' not found",
            error_code=kwargs.get("error_code", ErrorCode.RESOURCE_NOT_FOUND),
            context=context,
            user_message=kwargs.get("user_message", f"{resource.capitalize()} not found"),
            recoverable=False,
        )


# Exception handling utilities


def handle_exception(
    exception: Exception,
    logger,
    operation: str,
    context: Optional[Dict[str, Any]] = None,
) -> FeedRelayError:
    """Convert generic exceptions to FeedRelay exceptions with logging.

    Args:
        exception: Original exception
        logger: Logger instance for error logging
        operation: Operation that was being performed
        context: Additional context information

    Returns:
        FeedRelay exception with proper categorization
    """
    context = context or {}
    context["operation"] = operation
    context["original_exception_type"] = type(exception).__name__

    if isinstance(exception, FeedRelayError):
        logger.error(f"Operation '{operation}' failed", extra=exception.to_dict())
        return exception

    if isinstance(exception, (ConnectionError, TimeoutError)):
        error = FetchError(
            f"Network error during {operation}: {exception}",
            context=context,
        )
    else:
        error = FeedRelayError(
            message=f"Unexpected error during {operation}: {exception}",
            context=context,
            user_message="An unexpected error occurred",
            recoverable=True,
        )

    logger.error(f"Operation '{operation}' failed", extra=error.to_dict())
    return error


def get_user_friendly_message(exception: Exception) -> str:
    """Get user-friendly error message for any exception."""
    if isinstance(exception, FeedRelayError):
        return exception.user_message

    return "An unexpected error occurred. Please try again later."
