"""
Error classification and the one-shot credentials alert.

Every failure seen by the schedulers goes through ``ErrorHandler.record``,
which sorts it into one of four categories and keeps per-category counts
for the health endpoint. Authentication failures additionally trip the
``CredentialsAlert`` latch, which sends a single CREDENTIALS_EXPIRED alert
per episode and stays silent until the credentials are updated.
"""
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from .veepee_client import AuthenticationError, MalformedResponseError
from .notification_service import AlertEvent
from ..models.interfaces import INotifier


AUTH_KEYWORDS = ('unauthorized', '401', '403', 'token', 'auth', 'expired', 'invalid')


class ErrorCategory(Enum):
    """Error categories for classification and handling."""
    TRANSIENT = "transient"
    AUTHENTICATION = "authentication"
    MALFORMED = "malformed"
    VALIDATION = "validation"


class ErrorHandler:
    """Centralized error classification."""

    def __init__(self):
        """Initialize error handler."""
        self.logger = logging.getLogger(__name__)
        self._error_counts: Dict[str, int] = {category.value: 0 for category in ErrorCategory}
        self._last_errors: Dict[str, Dict[str, Any]] = {}

    @staticmethod
    def is_auth_failure(error: Exception) -> bool:
        """Whether an error means the credentials were rejected."""
        if isinstance(error, AuthenticationError):
            return True
        if isinstance(error, MalformedResponseError):
            return False
        message = str(error).lower()
        return any(keyword in message for keyword in AUTH_KEYWORDS)

    def categorize(self, error: Exception) -> ErrorCategory:
        """Map an error to its category."""
        if self.is_auth_failure(error):
            return ErrorCategory.AUTHENTICATION
        if isinstance(error, MalformedResponseError):
            return ErrorCategory.MALFORMED
        if isinstance(error, (ValueError, KeyError, TypeError)):
            return ErrorCategory.VALIDATION
        return ErrorCategory.TRANSIENT

    def record(self, error: Exception, context: Optional[Dict[str, Any]] = None) -> ErrorCategory:
        """Log an error with its category and update the counters."""
        category = self.categorize(error)
        self._error_counts[category.value] += 1
        self._last_errors[category.value] = {
            'timestamp': datetime.utcnow().isoformat(),
            'error_type': error.__class__.__name__,
            'error_message': str(error),
            'context': {k: str(v) for k, v in (context or {}).items()}
        }

        where = (context or {}).get('operation', 'unknown')
        if category == ErrorCategory.TRANSIENT:
            self.logger.warning(f"[{category.value}] {where}: {error}")
        else:
            self.logger.error(f"[{category.value}] {where}: {error}")
        return category

    def get_error_summary(self) -> Dict[str, Any]:
        """Counts and last error per category."""
        return {
            'counts': dict(self._error_counts),
            'last_errors': dict(self._last_errors)
        }


class CredentialsAlert:
    """Latch that lets the credentials-expired alert fire once per episode."""

    def __init__(self, notifier: INotifier):
        self.notifier = notifier
        self.logger = logging.getLogger(__name__)
        self._tripped = False

    @property
    def is_tripped(self) -> bool:
        return self._tripped

    def trigger(self, message: str) -> bool:
        """Send the alert unless it was already sent. Returns True if sent."""
        if self._tripped:
            self.logger.debug("Credentials alert already sent, suppressing")
            return False

        self._tripped = True
        self.logger.warning(f"Credentials expired - alerting: {message}")
        self.notifier.notify(AlertEvent.CREDENTIALS_EXPIRED, {'error': message})
        return True

    def reset(self) -> None:
        """Re-arm the latch after the credentials were updated."""
        if self._tripped:
            self.logger.info("Credentials alert re-armed")
        self._tripped = False
