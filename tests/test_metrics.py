"""
Tests for provisioning metrics.
"""
from prometheus_client import CollectorRegistry

from dbclaim.services.metrics import ProvisioningMetrics


def test_metrics_are_isolated_per_registry():
    first = ProvisioningMetrics(registry=CollectorRegistry())
    second_registry = CollectorRegistry()
    second = ProvisioningMetrics(registry=second_registry)

    first.record_database_created()

    assert second_registry.get_sample_value("dbclaim_databases_created_total") == 0.0
    second.record_database_created()
    assert second_registry.get_sample_value("dbclaim_databases_created_total") == 1.0


def test_durations_are_observed(metrics, registry):
    metrics.record_user_created(0.2)
    metrics.record_user_updated(0.3)
    metrics.record_password_rotated(0.4)

    assert registry.get_sample_value("dbclaim_users_create_duration_seconds_count") == 1.0
    assert registry.get_sample_value("dbclaim_users_update_duration_seconds_sum") == 0.3
    assert registry.get_sample_value("dbclaim_password_rotate_duration_seconds_count") == 1.0
    assert registry.get_sample_value("dbclaim_passwords_rotated_total") == 1.0


def test_error_reasons_are_labelled(metrics, registry):
    metrics.record_database_error("extension error")
    metrics.record_user_create_error("grant error")
    metrics.record_user_update_error("alter error")
    metrics.record_password_rotate_error("empty password")
    metrics.record_reconcile("error", "create_user")

    assert registry.get_sample_value(
        "dbclaim_database_provisioning_errors_total", {"reason": "extension error"}
    ) == 1.0
    assert registry.get_sample_value("dbclaim_users_created_errors_total", {"reason": "grant error"}) == 1.0
    assert registry.get_sample_value("dbclaim_users_updated_errors_total", {"reason": "alter error"}) == 1.0
    assert registry.get_sample_value(
        "dbclaim_password_rotated_errors_total", {"reason": "empty password"}
    ) == 1.0
    assert registry.get_sample_value(
        "dbclaim_reconcile_total", {"result": "error", "action": "create_user"}
    ) == 1.0
