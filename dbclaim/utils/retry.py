"""
Retry utilities for the reconciliation controller.

Provisioning clients never retry; the controller requeues a claim with an
exponential backoff computed here from the claim's consecutive failure count.
"""
from kubernetes_asyncio.client.rest import ApiException

from dbclaim.exceptions import DBClaimException

# HTTP status codes that are retryable
RETRYABLE_K8S_STATUS_CODES = {
    408,  # Request Timeout
    429,  # Too Many Requests (rate limiting)
    500,  # Internal Server Error
    502,  # Bad Gateway
    503,  # Service Unavailable
    504,  # Gateway Timeout
}


def is_retryable_k8s_error(exception: BaseException) -> bool:
    """
    Determine if a Kubernetes API exception should trigger a retry.

    Args:
        exception: The exception to check

    Returns:
        True if the exception is retryable, False otherwise
    """
    if isinstance(exception, (ConnectionError, TimeoutError)):
        return True
    if not isinstance(exception, ApiException):
        return False
    return exception.status in RETRYABLE_K8S_STATUS_CODES


def is_retryable_error(exception: Exception) -> bool:
    """
    Determine if an exception should lead to a requeue.

    Controller exceptions carry their own ``retryable`` flag. Anything else
    is unexpected and treated as transient so the claim is never stranded.

    Args:
        exception: The exception to check

    Returns:
        True if the claim should be requeued, False if it is terminal
    """
    if isinstance(exception, DBClaimException):
        return exception.retryable
    return True


def error_category(exception: Exception) -> str:
    """Short category string for claim status and metrics."""
    if isinstance(exception, DBClaimException):
        return exception.category
    return "internal error"


def backoff_delay(
    failures: int,
    initial_delay: float = 1.0,
    max_delay: float = 300.0,
    exponential_base: float = 2.0,
) -> float:
    """
    Delay before the next attempt after ``failures`` consecutive failures.

    Example:
        >>> [backoff_delay(n, initial_delay=1.0, max_delay=10.0) for n in range(1, 6)]
        [1.0, 2.0, 4.0, 8.0, 10.0]
    """
    attempt = max(failures, 1) - 1
    return min(initial_delay * (exponential_base ** attempt), max_delay)
