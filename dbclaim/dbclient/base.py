"""
Provisioning client capability interface.

One implementation per database engine. Every mutating operation is
check-then-act so it can be re-run against state that already reflects its
effect. Clients never retry: errors are raised to the reconciliation
controller, which owns retry and backoff policy.
"""
from abc import ABC, abstractmethod


class DBClient(ABC):
    """Idempotent provisioning operations against one database server."""

    @abstractmethod
    def connect(self) -> None:
        """Establish the server connection."""

    @property
    @abstractmethod
    def connected(self) -> bool:
        """Whether a connection is currently held."""

    # Query surface

    @abstractmethod
    def database_exists(self, db_name: str) -> bool:
        ...

    @abstractmethod
    def role_exists(self, role_name: str) -> bool:
        ...

    @abstractmethod
    def user_exists(self, username: str) -> bool:
        ...

    @abstractmethod
    def group_ready(self, db_name: str, role_name: str) -> bool:
        """Whether role_name exists and holds its privileges on db_name."""

    # Mutations

    @abstractmethod
    def create_database(self, db_name: str) -> bool:
        """Create the database if absent and ensure required extensions exist on it."""

    @abstractmethod
    def create_group(self, db_name: str, role_name: str) -> bool:
        """Create a non-login role with full privileges on the database if absent."""

    @abstractmethod
    def create_user(self, username: str, role_name: str, password: str) -> bool:
        """Create a login user bound into role_name if absent. Never changes an existing password."""

    @abstractmethod
    def rename_user(self, old_username: str, new_username: str) -> bool:
        """Rename old_username if it exists; a missing old_username is a no-op."""

    @abstractmethod
    def update_user(self, old_username: str, new_username: str, role_name: str, password: str) -> bool:
        """Rename, then regroup, then rotate the password, in that order."""

    @abstractmethod
    def update_password(self, username: str, password: str) -> bool:
        """Set the user's password. An empty password raises InvalidCredentialError."""

    @abstractmethod
    def close(self) -> None:
        """Release the connection. Raises if no connection was established."""

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb):
        if self.connected:
            self.close()
        return False
