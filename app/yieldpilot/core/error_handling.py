"""
Error taxonomy for the yield pilot.

Collaborator failures are wrapped in structured errors carrying an
ErrorContext, logged at a level matching their severity, and counted so
the controller can report them. None of them stop the control loop.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Deque, Dict, Optional
from uuid import uuid4


logger = logging.getLogger(__name__)


class ErrorSeverity(Enum):
    """Error severity levels for categorizing failures."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Categories of errors in the control loop."""
    DATA_FETCH = "data_fetch"
    EXECUTION = "execution"
    CONFIGURATION = "configuration"
    AUDIT = "audit"
    EVENT_DELIVERY = "event_delivery"


@dataclass
class ErrorContext:
    """Rich context information for errors."""
    error_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    category: ErrorCategory = ErrorCategory.EXECUTION
    severity: ErrorSeverity = ErrorSeverity.MEDIUM
    component: str = ""
    operation: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)


class YieldPilotError(Exception):
    """Base exception for all yield pilot errors."""

    def __init__(
        self,
        message: str,
        context: Optional[ErrorContext] = None,
        cause: Optional[BaseException] = None
    ):
        super().__init__(message)
        self.message = message
        self.context = context or ErrorContext()
        self.cause = cause


class DataFetchError(YieldPilotError):
    """Yield or portfolio source unavailable."""

    def __init__(self, message: str, source: Optional[str] = None, **kwargs):
        context = kwargs.get('context') or ErrorContext()
        context.category = ErrorCategory.DATA_FETCH
        if source:
            context.metadata['source'] = source
        super().__init__(message, context, kwargs.get('cause'))


class ExecutionError(YieldPilotError):
    """Executor failed to carry out a trade."""

    def __init__(self, message: str, trade_id: Optional[str] = None, **kwargs):
        context = kwargs.get('context') or ErrorContext()
        context.category = ErrorCategory.EXECUTION
        context.severity = ErrorSeverity.HIGH
        if trade_id:
            context.metadata['trade_id'] = trade_id
        super().__init__(message, context, kwargs.get('cause'))


class ConfigError(YieldPilotError):
    """Invalid mode or limits, rejected before any state mutation."""

    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs):
        context = kwargs.get('context') or ErrorContext()
        context.category = ErrorCategory.CONFIGURATION
        context.severity = ErrorSeverity.HIGH
        if config_key:
            context.metadata['config_key'] = config_key
        super().__init__(message, context, kwargs.get('cause'))


class AuditError(YieldPilotError):
    """Audit store could not record a decision."""

    def __init__(self, message: str, **kwargs):
        context = kwargs.get('context') or ErrorContext()
        context.category = ErrorCategory.AUDIT
        context.severity = ErrorSeverity.LOW
        super().__init__(message, context, kwargs.get('cause'))


def create_error_context(
    category: ErrorCategory,
    severity: ErrorSeverity = ErrorSeverity.MEDIUM,
    component: str = "",
    operation: str = "",
    **metadata
) -> ErrorContext:
    """Create an error context with the specified parameters."""
    return ErrorContext(
        category=category,
        severity=severity,
        component=component,
        operation=operation,
        metadata=metadata
    )


@dataclass
class ErrorStats:
    """Statistics for error tracking."""
    total_errors: int = 0
    errors_by_category: Dict[ErrorCategory, int] = field(default_factory=dict)
    recent_errors: Deque[ErrorContext] = field(default_factory=lambda: deque(maxlen=100))


class ErrorTracker:
    """Logs structured errors and keeps per-category counts."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self._logger = logger or logging.getLogger(__name__)
        self._stats = ErrorStats()

    def handle(self, error: YieldPilotError) -> None:
        """Log error with structured context and count it."""
        log_data = {
            'error_id': error.context.error_id,
            'category': error.context.category.value,
            'severity': error.context.severity.value,
            'component': error.context.component,
            'operation': error.context.operation,
            'error_message': error.message,
            'metadata': error.context.metadata,
        }
        if error.cause:
            log_data['cause'] = str(error.cause)
            log_data['cause_type'] = type(error.cause).__name__

        if error.context.severity == ErrorSeverity.CRITICAL:
            self._logger.critical(f"{error.context.component}: {error.message}", extra=log_data)
        elif error.context.severity == ErrorSeverity.HIGH:
            self._logger.error(f"{error.context.component}: {error.message}", extra=log_data)
        elif error.context.severity == ErrorSeverity.MEDIUM:
            self._logger.warning(f"{error.context.component}: {error.message}", extra=log_data)
        else:
            self._logger.info(f"{error.context.component}: {error.message}", extra=log_data)

        category = error.context.category
        self._stats.total_errors += 1
        self._stats.errors_by_category[category] = self._stats.errors_by_category.get(category, 0) + 1
        self._stats.recent_errors.append(error.context)

    @property
    def total_errors(self) -> int:
        return self._stats.total_errors

    def count(self, category: ErrorCategory) -> int:
        return self._stats.errors_by_category.get(category, 0)

    def snapshot(self) -> Dict[str, Any]:
        return {
            'total_errors': self._stats.total_errors,
            'by_category': {c.value: n for c, n in self._stats.errors_by_category.items()},
        }

    def reset(self) -> None:
        self._stats = ErrorStats()
