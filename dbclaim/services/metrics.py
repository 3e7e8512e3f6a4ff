"""
Prometheus metrics for provisioning operations and reconcile passes.

Metrics live on an injected ``ProvisioningMetrics`` instance bound to a
collector registry, so tests and multiple controllers never share counters
by accident. prometheus_client metrics are safe for concurrent use.
"""
from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Histogram, REGISTRY

# Provisioning calls are SQL round-trips: sub-second to tens of seconds
DURATION_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30)


class ProvisioningMetrics:
    """Counters and histograms emitted by provisioning clients and the controller."""

    def __init__(self, registry: Optional[CollectorRegistry] = None, namespace: str = "dbclaim"):
        registry = registry if registry is not None else REGISTRY

        # Database metrics
        self.databases_created = Counter(
            "databases_created",
            "Total number of databases created",
            namespace=namespace,
            registry=registry,
        )
        self.database_provisioning_errors = Counter(
            "database_provisioning_errors",
            "Total database provisioning errors",
            ["reason"],
            namespace=namespace,
            registry=registry,
        )

        # User and role metrics
        self.users_created = Counter(
            "users_created",
            "Total number of users and roles created",
            namespace=namespace,
            registry=registry,
        )
        self.users_created_errors = Counter(
            "users_created_errors",
            "Total errors creating users and roles",
            ["reason"],
            namespace=namespace,
            registry=registry,
        )
        self.users_create_time = Histogram(
            "users_create_duration_seconds",
            "Time spent creating a user or role",
            namespace=namespace,
            registry=registry,
            buckets=DURATION_BUCKETS,
        )
        self.users_updated = Counter(
            "users_updated",
            "Total number of users renamed and regrouped",
            namespace=namespace,
            registry=registry,
        )
        self.users_updated_errors = Counter(
            "users_updated_errors",
            "Total errors updating users",
            ["reason"],
            namespace=namespace,
            registry=registry,
        )
        self.users_update_time = Histogram(
            "users_update_duration_seconds",
            "Time spent updating a user",
            namespace=namespace,
            registry=registry,
            buckets=DURATION_BUCKETS,
        )

        # Password metrics
        self.passwords_rotated = Counter(
            "passwords_rotated",
            "Total number of passwords rotated",
            namespace=namespace,
            registry=registry,
        )
        self.password_rotated_errors = Counter(
            "password_rotated_errors",
            "Total errors rotating passwords",
            ["reason"],
            namespace=namespace,
            registry=registry,
        )
        self.password_rotate_time = Histogram(
            "password_rotate_duration_seconds",
            "Time spent rotating a password",
            namespace=namespace,
            registry=registry,
            buckets=DURATION_BUCKETS,
        )

        # Reconcile metrics
        self.reconcile_total = Counter(
            "reconcile",
            "Total reconcile passes by result and action",
            ["result", "action"],
            namespace=namespace,
            registry=registry,
        )

    def record_database_created(self):
        """Record database created."""
        self.databases_created.inc()

    def record_database_error(self, reason: str):
        """Record database provisioning error."""
        self.database_provisioning_errors.labels(reason=reason).inc()

    def record_user_created(self, duration_seconds: float):
        """Record user or role created."""
        self.users_created.inc()
        self.users_create_time.observe(duration_seconds)

    def record_user_create_error(self, reason: str):
        """Record user or role creation error."""
        self.users_created_errors.labels(reason=reason).inc()

    def record_user_updated(self, duration_seconds: float):
        """Record user updated."""
        self.users_updated.inc()
        self.users_update_time.observe(duration_seconds)

    def record_user_update_error(self, reason: str):
        """Record user update error."""
        self.users_updated_errors.labels(reason=reason).inc()

    def record_password_rotated(self, duration_seconds: float):
        """Record password rotated."""
        self.passwords_rotated.inc()
        self.password_rotate_time.observe(duration_seconds)

    def record_password_rotate_error(self, reason: str):
        """Record password rotation error."""
        self.password_rotated_errors.labels(reason=reason).inc()

    def record_reconcile(self, result: str, action: str):
        """Record a reconcile pass outcome."""
        self.reconcile_total.labels(result=result, action=action).inc()
