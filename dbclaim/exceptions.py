"""
Custom exceptions for the database claim controller.

This module defines all custom exceptions used throughout the controller
for consistent error handling and status reporting.
"""
from typing import Optional, Dict, Any


class DBClaimException(Exception):
    """
    Base exception for all claim controller errors.

    All custom exceptions should inherit from this base class.
    """

    #: Whether the reconciliation controller may retry after this error
    retryable: bool = True
    #: Short category string recorded on claim status and metrics
    category: str = "internal error"

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ProvisioningError(DBClaimException):
    """
    Raised when a provisioning operation against the database server fails.

    The category identifies the failing step ("read error", "create error",
    "grant error", "alter error", ...) so operators can tell them apart from
    claim status alone.
    """

    def __init__(
        self,
        message: str,
        category: str = "provisioning error",
        details: Optional[Dict[str, Any]] = None,
    ):
        self.category = category
        super().__init__(message=message, details=details)


class TransientBackendError(ProvisioningError):
    """
    Raised on connectivity failures, timeouts and transient SQL errors.

    Always retried with backoff.
    """

    def __init__(
        self,
        message: str,
        category: str = "connection error",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=f"Transient backend error: {message}", category=category, details=details)


class PolicyViolationError(DBClaimException):
    """
    Raised when a password policy cannot be satisfied.

    Terminal: the claim is marked failed until its spec changes.
    """

    retryable = False
    category = "policy violation"


class InvalidCredentialError(DBClaimException):
    """
    Raised when an invalid credential (e.g. an empty password) is supplied.

    Terminal for the action that received it.
    """

    retryable = False
    category = "empty password"

    def __init__(self, message: str = "an empty password", details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, details=details)


class UserConflictError(DBClaimException):
    """
    Raised when a rename target already exists as a separate role.

    Terminal: an operator has to remove or adopt one of the two roles.
    """

    retryable = False
    category = "user conflict"


class SecretStoreError(DBClaimException):
    """
    Raised when a minted credential cannot be persisted.

    The claim is not marked ready; the next pass mints a fresh credential.
    """

    category = "secret write error"


class ConfigurationError(DBClaimException):
    """Raised when controller configuration or a claim manifest is malformed."""

    retryable = False
    category = "configuration error"


# Export all exceptions
__all__ = [
    "DBClaimException",
    "ProvisioningError",
    "TransientBackendError",
    "PolicyViolationError",
    "InvalidCredentialError",
    "UserConflictError",
    "SecretStoreError",
    "ConfigurationError",
]
