"""
Tests for retry classification and backoff.
"""
import pytest
from kubernetes_asyncio.client.rest import ApiException

from dbclaim.exceptions import (
    ConfigurationError,
    PolicyViolationError,
    ProvisioningError,
    SecretStoreError,
    TransientBackendError,
)
from dbclaim.utils.retry import backoff_delay, error_category, is_retryable_error, is_retryable_k8s_error


@pytest.mark.parametrize("status, expected", [(408, True), (429, True), (503, True), (403, False), (404, False)])
def test_is_retryable_k8s_error(status, expected):
    assert is_retryable_k8s_error(ApiException(status=status)) is expected


def test_connection_errors_are_retryable():
    assert is_retryable_k8s_error(ConnectionError())
    assert is_retryable_k8s_error(TimeoutError())
    assert not is_retryable_k8s_error(ValueError())


@pytest.mark.parametrize(
    "exc, retryable, category",
    [
        (TransientBackendError("timeout"), True, "connection error"),
        (ProvisioningError("nope", category="grant error"), True, "grant error"),
        (SecretStoreError("nope"), True, "secret write error"),
        (PolicyViolationError("too short"), False, "policy violation"),
        (ConfigurationError("bad yaml"), False, "configuration error"),
        (KeyError("surprise"), True, "internal error"),
    ],
)
def test_classification(exc, retryable, category):
    assert is_retryable_error(exc) is retryable
    assert error_category(exc) == category


def test_transient_message_prefix():
    assert str(TransientBackendError("timeout")) == "Transient backend error: timeout"


def test_backoff_delay():
    assert [backoff_delay(n, initial_delay=1.0, max_delay=10.0) for n in range(1, 6)] == [1.0, 2.0, 4.0, 8.0, 10.0]
    assert backoff_delay(0) == 1.0
    assert backoff_delay(100, max_delay=300.0) == 300.0
