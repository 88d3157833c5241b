"""
Error handling module for the database user operator.

This module provides a comprehensive error hierarchy that integrates with kopf
and provides clear categorization for different types of failures.
"""

from .operator_errors import (
    ConfigurationError,
    DateFormatError,
    ExternalServiceError,
    KubernetesAPIError,
    OperatorError,
    PasswordSecretError,
    ReconciliationError,
    RemoteAPIError,
    RemoteNotFoundError,
    ResourceNotFoundError,
    TemporaryError,
    ValidationError,
)

__all__ = [
    "OperatorError",
    "ValidationError",
    "DateFormatError",
    "PasswordSecretError",
    "TemporaryError",
    "ExternalServiceError",
    "RemoteAPIError",
    "RemoteNotFoundError",
    "KubernetesAPIError",
    "ResourceNotFoundError",
    "ConfigurationError",
    "ReconciliationError",
]
