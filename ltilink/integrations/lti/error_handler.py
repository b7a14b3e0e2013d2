"""
Error classification and diagnostic logging for LTI service calls.
"""

import logging
import traceback
from datetime import datetime
from typing import Dict, Any, List, Optional, Union

from ltilink.core.config import settings


# LTI service logger
lti_logger = logging.getLogger('lti_integration')


class LTIErrorSeverity:
    """Error severity levels for LTI service calls."""
    LOW = "low"           # Expected fall-through, another tier may succeed
    MEDIUM = "medium"     # Call failed, caller receives a failure result
    HIGH = "high"         # Credentials or configuration are unusable


class LTIErrorCategory:
    """Error categories matching the failure classes of a service call."""
    UNAVAILABLE = "unavailable"
    TRANSPORT = "transport"
    MALFORMED_RESPONSE = "malformed_response"
    VALUE_TYPE = "value_type"
    AUTHENTICATION = "authentication"
    CONFIGURATION = "configuration"
    RECONCILIATION = "reconciliation"
    UNKNOWN = "unknown"


class LTIError(Exception):
    """Base exception for LTI service errors with diagnostic metadata."""

    def __init__(
        self,
        message: str,
        category: str = LTIErrorCategory.UNKNOWN,
        severity: str = LTIErrorSeverity.MEDIUM,
        platform_key: Optional[str] = None,
        operation_type: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        retryable: bool = False,
        original_exception: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.severity = severity
        self.platform_key = platform_key
        self.operation_type = operation_type
        self.details = details or {}
        self.retryable = retryable
        self.original_exception = original_exception
        self.timestamp = datetime.utcnow()

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging."""
        return {
            'message': self.message,
            'category': self.category,
            'severity': self.severity,
            'platform_key': self.platform_key,
            'operation_type': self.operation_type,
            'details': self.details,
            'retryable': self.retryable,
            'timestamp': self.timestamp.isoformat(),
            'traceback': ''.join(traceback.format_exception(
                type(self.original_exception),
                self.original_exception,
                self.original_exception.__traceback__
            )) if self.original_exception else None
        }


class LTITransportError(LTIError):
    """Network failure or non-success HTTP status."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=LTIErrorCategory.TRANSPORT,
            severity=LTIErrorSeverity.MEDIUM,
            retryable=True,
            **kwargs
        )


class LTIResponseParseError(LTIError):
    """Response body could not be parsed."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=LTIErrorCategory.MALFORMED_RESPONSE,
            severity=LTIErrorSeverity.MEDIUM,
            retryable=False,
            **kwargs
        )


class LTIAuthenticationError(LTIError):
    """Access token could not be obtained."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=LTIErrorCategory.AUTHENTICATION,
            severity=LTIErrorSeverity.HIGH,
            retryable=True,
            **kwargs
        )


class LTIConfigurationError(LTIError):
    """Platform or tool configuration is incomplete."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=LTIErrorCategory.CONFIGURATION,
            severity=LTIErrorSeverity.HIGH,
            retryable=False,
            **kwargs
        )


class LTIValueTypeError(LTIError):
    """Outcome value cannot be expressed in a type accepted by the service."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=LTIErrorCategory.VALUE_TYPE,
            severity=LTIErrorSeverity.LOW,
            retryable=False,
            **kwargs
        )


class LTIErrorHandler:
    """Diagnostic sink keeping the most recent LTI errors in memory."""

    def __init__(self, max_entries: Optional[int] = None):
        self._error_log: List[Dict[str, Any]] = []
        self._max_log_entries = max_entries or settings.ERROR_LOG_MAX_ENTRIES

    def log_error(
        self,
        error: Union[LTIError, Exception],
        context: Optional[Dict[str, Any]] = None
    ) -> None:
        """
        Log an error with full context.

        Args:
            error: The error to log
            context: Additional context information
        """
        if isinstance(error, LTIError):
            error_dict = error.to_dict()
        else:
            error_dict = {
                'message': str(error),
                'category': LTIErrorCategory.UNKNOWN,
                'severity': LTIErrorSeverity.MEDIUM,
                'timestamp': datetime.utcnow().isoformat(),
                'traceback': None
            }

        if context:
            error_dict.update(context)

        severity = error_dict.get('severity', LTIErrorSeverity.MEDIUM)
        log_message = f"LTI Error [{severity.upper()}]: {error_dict['message']}"

        if severity == LTIErrorSeverity.HIGH:
            lti_logger.error(log_message)
        elif severity == LTIErrorSeverity.MEDIUM:
            lti_logger.warning(log_message)
        else:
            lti_logger.info(log_message)

        self._error_log.append(error_dict)
        if len(self._error_log) > self._max_log_entries:
            self._error_log.pop(0)

    def get_recent_errors(
        self,
        limit: int = 50,
        severity_filter: Optional[str] = None,
        category_filter: Optional[str] = None,
        platform_filter: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Get recent errors with optional filtering."""
        filtered_errors = self._error_log.copy()

        if severity_filter:
            filtered_errors = [e for e in filtered_errors if e.get('severity') == severity_filter]

        if category_filter:
            filtered_errors = [e for e in filtered_errors if e.get('category') == category_filter]

        if platform_filter:
            filtered_errors = [e for e in filtered_errors if e.get('platform_key') == platform_filter]

        return filtered_errors[-limit:]

    def clear(self) -> None:
        """Forget all recorded errors."""
        self._error_log.clear()


# Global error handler instance
lti_error_handler = LTIErrorHandler()
