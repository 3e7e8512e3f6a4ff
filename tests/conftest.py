"""
Pytest configuration and fixtures.
"""
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Set

import pytest
from prometheus_client import CollectorRegistry

from dbclaim.dbclient.base import DBClient
from dbclaim.exceptions import InvalidCredentialError, SecretStoreError, UserConflictError
from dbclaim.models.claim import ClaimSpec, Credential, DatabaseClaim, PasswordConfig
from dbclaim.services.claim_store import InMemoryClaimStore
from dbclaim.services.metrics import ProvisioningMetrics
from dbclaim.services.secret_store import SecretStore


class FakeDBClient(DBClient):
    """In-memory database server with the same idempotence rules as PostgresClient."""

    def __init__(self):
        self.databases: Set[str] = set()
        self.extensions: Dict[str, Set[str]] = {}
        # role name -> databases it holds privileges on
        self.roles: Dict[str, Set[str]] = {}
        # login user -> {"password": ..., "role": ...}
        self.users: Dict[str, Dict[str, str]] = {}
        self.calls: List[str] = []
        self.failures: Dict[str, Exception] = {}
        self._connected = False
        self.connect_count = 0

    def fail(self, method: str, exc: Exception) -> None:
        """Make every call to method raise exc until cleared."""
        self.failures[method] = exc

    def clear_failures(self) -> None:
        self.failures.clear()

    def _call(self, method: str) -> None:
        self.calls.append(method)
        if method in self.failures:
            raise self.failures[method]

    def connect(self) -> None:
        self._call("connect")
        self.connect_count += 1
        self._connected = True

    @property
    def connected(self) -> bool:
        return self._connected

    def database_exists(self, db_name: str) -> bool:
        self._call("database_exists")
        return db_name in self.databases

    def role_exists(self, role_name: str) -> bool:
        self._call("role_exists")
        return role_name in self.roles or role_name in self.users

    def user_exists(self, username: str) -> bool:
        self._call("user_exists")
        return username in self.users

    def group_ready(self, db_name: str, role_name: str) -> bool:
        self._call("group_ready")
        return db_name in self.roles.get(role_name, set())

    def create_database(self, db_name: str) -> bool:
        self._call("create_database")
        created = db_name not in self.databases
        self.databases.add(db_name)
        self.extensions[db_name] = {"citext", "uuid-ossp", "pgcrypto"}
        return created

    def create_group(self, db_name: str, role_name: str) -> bool:
        self._call("create_group")
        created = role_name not in self.roles
        self.roles.setdefault(role_name, set()).add(db_name)
        return created

    def create_user(self, username: str, role_name: str, password: str) -> bool:
        self._call("create_user")
        if not password:
            raise InvalidCredentialError()
        if username in self.users:
            return False
        self.users[username] = {"password": password, "role": role_name}
        return True

    def rename_user(self, old_username: str, new_username: str) -> bool:
        self._call("rename_user")
        if old_username not in self.users:
            return False
        self.users[new_username] = self.users.pop(old_username)
        return True

    def update_user(self, old_username: str, new_username: str, role_name: str, password: str) -> bool:
        self._call("update_user")
        if not password:
            raise InvalidCredentialError()
        if old_username not in self.users and new_username not in self.users:
            return False
        if old_username != new_username and old_username in self.users and new_username in self.users:
            raise UserConflictError(f"role {new_username} already exists")
        if old_username in self.users and old_username != new_username:
            self.rename_user(old_username, new_username)
        self.users[new_username]["role"] = role_name
        return self.update_password(new_username, password)

    def update_password(self, username: str, password: str) -> bool:
        self._call("update_password")
        if not password:
            raise InvalidCredentialError()
        self.users[username]["password"] = password
        return True

    def close(self) -> None:
        self._call("close")
        self._connected = False


class FakeSecretStore(SecretStore):
    """Records every credential written; can be told to fail."""

    def __init__(self):
        self.writes: List[Credential] = []
        self.error: Optional[Exception] = None

    async def write(self, claim: DatabaseClaim, credential: Credential) -> None:
        if self.error is not None:
            raise self.error
        self.writes.append(credential)

    @property
    def latest(self) -> Optional[Credential]:
        return self.writes[-1] if self.writes else None

    def fail_with(self, message: str = "could not write secret") -> None:
        self.error = SecretStoreError(message)


class Clock:
    """Controllable clock for rotation deadlines."""

    def __init__(self, now: Optional[datetime] = None):
        self.now = now or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def registry():
    """Isolated Prometheus registry per test."""
    return CollectorRegistry()


@pytest.fixture
def metrics(registry):
    return ProvisioningMetrics(registry=registry)


@pytest.fixture
def fake_db():
    return FakeDBClient()


@pytest.fixture
def secret_store():
    return FakeSecretStore()


@pytest.fixture
def claim_store():
    return InMemoryClaimStore()


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def complexity_enabled():
    return PasswordConfig(
        passwordComplexity="enabled",
        minPasswordLength="15",
        passwordRotationPeriod="60",
    )


def build_claim(
    name: str = "tenant1",
    namespace: str = "team-a",
    generation: int = 1,
    **spec_overrides,
) -> DatabaseClaim:
    """Claim for tenant database tenant1 owned by app1 in role app1_role."""
    spec = {
        "type": "postgres",
        "host": "pg.internal",
        "port": 5432,
        "databaseName": "tenant1",
        "username": "app1",
        "role": "app1_role",
    }
    spec.update(spec_overrides)
    return DatabaseClaim(
        name=name,
        namespace=namespace,
        generation=generation,
        spec=ClaimSpec.model_validate(spec),
    )


@pytest.fixture
def make_claim():
    return build_claim
