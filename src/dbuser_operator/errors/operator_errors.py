"""
Operator error hierarchy with categorization and retry logic.

This module defines the error types used throughout the database user
operator, providing clear categorization and integration with kopf's retry
mechanisms.
"""

import kopf


class OperatorError(Exception):
    """
    Base error class for all operator-related exceptions.

    Provides categorization, retry behavior, and user guidance for resolution.
    """

    def __init__(
        self,
        message: str,
        category: str,
        retryable: bool = True,
        delay: float = 30,
        user_action: str | None = None,
        cause: Exception | None = None,
    ):
        """
        Initialize operator error.

        Args:
            message: Human-readable error description
            category: Error category (validation, external, configuration, ...)
            retryable: Whether kopf should retry this operation
            delay: Suggested retry delay in seconds
            user_action: What user should do to resolve the issue
            cause: Underlying exception that caused this error
        """
        super().__init__(message)
        self.message = message
        self.category = category
        self.retryable = retryable
        self.delay = delay
        self.user_action = user_action
        self.cause = cause

    def as_kopf_error(self):
        """Convert to appropriate kopf exception type."""
        if self.retryable:
            return kopf.TemporaryError(str(self), delay=self.delay)
        else:
            return kopf.PermanentError(str(self))

    def __str__(self) -> str:
        """Enhanced string representation with user guidance."""
        base_msg = super().__str__()
        if self.user_action:
            return f"{base_msg}\nAction required: {self.user_action}"
        return base_msg


class ValidationError(OperatorError):
    """Error in resource specification validation."""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        user_action: str | None = None,
        retryable: bool = False,
    ):
        action = user_action or "Check resource specification and fix validation errors"
        if field:
            message = f"Validation error in field '{field}': {message}"
        super().__init__(
            message=message,
            category="validation",
            retryable=retryable,
            user_action=action,
        )


class DateFormatError(ValidationError):
    """A date string matches none of the accepted ISO8601 layouts."""

    def __init__(self, value: str):
        super().__init__(
            message=f"'{value}' is not a valid ISO8601 date",
            user_action="Use a date such as 2025-01-31 or 2025-01-31T10:00:00Z",
        )
        self.value = value


class PasswordSecretError(ValidationError):
    """The referenced password secret is missing or unusable."""

    def __init__(self, message: str):
        # The secret may be created or fixed later, keep retrying
        super().__init__(
            message=message,
            user_action="Create the password secret with a non-empty 'password' key",
            retryable=True,
        )


class TemporaryError(OperatorError):
    """Temporary error that should be retried."""

    def __init__(self, message: str, delay: float = 30, user_action: str | None = None):
        super().__init__(
            message=message,
            category="temporary",
            retryable=True,
            delay=delay,
            user_action=user_action
            or "Wait for automatic retry or check system status",
        )


class ExternalServiceError(OperatorError):
    """Error communicating with external services."""

    def __init__(
        self,
        service: str,
        message: str,
        retryable: bool = True,
        delay: int = 60,
        user_action: str | None = None,
    ):
        action = user_action or f"Check {service} connectivity and credentials"
        super().__init__(
            message=f"{service} error: {message}",
            category="external",
            retryable=retryable,
            delay=delay,
            user_action=action,
        )


class ReconciliationError(OperatorError):
    """Error raised when reconciliation cannot be completed."""

    def __init__(
        self,
        message: str,
        retryable: bool = True,
        delay: int = 60,
        user_action: str | None = None,
    ):
        super().__init__(
            message=message,
            category="reconciliation",
            retryable=retryable,
            delay=delay,
            user_action=user_action
            or "Inspect operator logs and resource specification for issues",
        )


class RemoteAPIError(ExternalServiceError):
    """Error communicating with the remote database service admin API."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
        retryable: bool = True,
    ):
        self.status_code = status_code
        self.response_body = response_body
        if status_code:
            message = f"HTTP {status_code}: {message}"

        # 4xx errors are client errors, except throttling
        if status_code and 400 <= status_code < 500 and status_code != 429:
            retryable = False

        super().__init__(
            service="Remote API",
            message=message,
            retryable=retryable,
            user_action="Check remote API keys, project access and network connectivity",
        )

    def body_preview(self, limit: int = 2048) -> str | None:
        """Return a truncated preview of the response body for logging."""
        if self.response_body is None:
            return None

        if len(self.response_body) <= limit:
            return self.response_body

        return f"{self.response_body[:limit]}...<truncated>"


class RemoteNotFoundError(RemoteAPIError):
    """The addressed remote object does not exist."""

    def __init__(self, message: str, response_body: str | None = None):
        super().__init__(message, status_code=404, response_body=response_body)


class KubernetesAPIError(ExternalServiceError):
    """Error communicating with Kubernetes API."""

    def __init__(
        self,
        message: str,
        reason: str | None = None,
        retryable: bool = True,
        status: int | None = None,
    ):
        self.reason = reason
        self.status = status
        if reason:
            message = f"{message} (reason: {reason})"

        # Some K8s errors are not retryable
        non_retryable_reasons = {"Forbidden", "Unauthorized", "Invalid"}
        if reason in non_retryable_reasons:
            retryable = False

        super().__init__(
            service="Kubernetes API",
            message=message,
            retryable=retryable,
            user_action="Check RBAC permissions and cluster connectivity",
        )


class ResourceNotFoundError(KubernetesAPIError):
    """The requested Kubernetes object does not exist."""

    def __init__(self, message: str):
        super().__init__(message, reason="NotFound", retryable=False, status=404)


class ConfigurationError(OperatorError):
    """Error in operator or resource configuration."""

    def __init__(
        self, message: str, retryable: bool = False, user_action: str | None = None
    ):
        super().__init__(
            message=message,
            category="configuration",
            retryable=retryable,
            user_action=user_action or "Review and correct configuration",
        )
