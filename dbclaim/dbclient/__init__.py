"""
Database provisioning clients.

Usage:
    >>> from dbclaim.dbclient import client_factory
    >>> client = client_factory("postgres", "db.local", 5432, "admin", "secret", metrics)
    >>> with client:
    ...     client.create_database("tenant1")
"""
from dbclaim.dbclient.base import DBClient
from dbclaim.dbclient.postgres import POSTGRES_TYPE, PostgresClient
from dbclaim.services.metrics import ProvisioningMetrics

# Engine name -> client implementation
CLIENTS = {
    POSTGRES_TYPE: PostgresClient,
}


def client_factory(
    engine: str,
    host: str,
    port,
    user: str,
    password: str,
    metrics: ProvisioningMetrics,
    sslmode: str = "require",
    timeout: int = 10,
) -> DBClient:
    """
    Build the provisioning client for an engine.

    Postgres is the only engine today and also the fallback for unknown
    engine names.
    """
    client_cls = CLIENTS.get(engine, PostgresClient)
    return client_cls(host, port, user, password, metrics, sslmode=sslmode, timeout=timeout)


__all__ = ["DBClient", "PostgresClient", "client_factory"]
