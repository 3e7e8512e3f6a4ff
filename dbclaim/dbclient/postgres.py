"""
Postgres provisioning client built on psycopg2.

Every statement runs in autocommit mode: CREATE DATABASE cannot run inside a
transaction block, and role/database DDL is not wrapped in a cross-statement
transaction. Idempotence is enforced per operation by checking the catalog
before acting.
"""
import time
from typing import Optional

import psycopg2
import psycopg2.errors
from psycopg2 import sql

from dbclaim.config.logging import get_logger
from dbclaim.dbclient.base import DBClient
from dbclaim.dbclient.dsn import postgres_connection_string
from dbclaim.exceptions import (
    InvalidCredentialError,
    ProvisioningError,
    TransientBackendError,
    UserConflictError,
)
from dbclaim.services.metrics import ProvisioningMetrics

logger = get_logger(__name__)

POSTGRES_TYPE = "postgres"

# Installed on every tenant database
EXTENSIONS = ("citext", "uuid-ossp", "pgcrypto")

DATABASE_EXISTS_QUERY = "SELECT EXISTS(SELECT datname FROM pg_catalog.pg_database WHERE datname = %s)"
ROLE_EXISTS_QUERY = "SELECT EXISTS(SELECT rolname FROM pg_catalog.pg_roles WHERE rolname = %s)"
USER_EXISTS_QUERY = "SELECT EXISTS(SELECT usename FROM pg_catalog.pg_user WHERE usename = %s)"
GROUP_READY_QUERY = (
    "SELECT EXISTS(SELECT 1 FROM pg_catalog.pg_roles "
    "WHERE rolname = %s AND has_database_privilege(oid, %s, 'CREATE'))"
)


def wrap_error(exc: psycopg2.Error, message: str, category: str) -> ProvisioningError:
    """
    Map a psycopg2 error to the controller's error taxonomy.

    Connection failures, statement timeouts (QueryCanceled), serialization
    failures and deadlocks are all OperationalError subclasses and are
    transient; everything else is a provisioning error for the step that
    raised it.
    """
    details = {"pgcode": getattr(exc, "pgcode", None)}
    if isinstance(exc, (psycopg2.OperationalError, psycopg2.InterfaceError)):
        return TransientBackendError(f"{message}: {exc}", category=category, details=details)
    return ProvisioningError(f"{message}: {exc}", category=category, details=details)


class PostgresClient(DBClient):
    """
    Provisioning client for one Postgres server.

    The connection is opened by connect() and held exclusively by this
    instance until close(). Blocking calls are bounded by ``timeout``
    seconds: libpq connect_timeout for connecting and the server-side
    statement_timeout for every statement.
    """

    def __init__(
        self,
        host: str,
        port,
        user: str,
        password: str,
        metrics: ProvisioningMetrics,
        sslmode: str = "require",
        timeout: int = 10,
        dbname: str = "postgres",
    ):
        self.host = host
        self.port = port
        self.user = user
        self._password = password
        self.sslmode = sslmode
        self.timeout = timeout
        self.dbname = dbname
        self.metrics = metrics
        self._conn: Optional["psycopg2.extensions.connection"] = None
        self.log = logger.bind(host=host, port=str(port))

    def _open(self, dbname: str):
        dsn = postgres_connection_string(
            self.host, self.port, self.user, self._password, dbname, self.sslmode
        )
        try:
            conn = psycopg2.connect(
                dsn,
                connect_timeout=self.timeout,
                options=f"-c statement_timeout={int(self.timeout * 1000)}",
            )
        except psycopg2.Error as e:
            self.log.error("database_connection_failed", database=dbname, error=str(e))
            raise wrap_error(e, f"could not connect to database {dbname}", "connection error")
        conn.autocommit = True
        return conn

    def connect(self) -> None:
        if self._conn is not None:
            return
        self._conn = self._open(self.dbname)
        self.log.debug("database_connected", database=self.dbname)

    @property
    def connected(self) -> bool:
        return self._conn is not None

    def _cursor(self):
        if self._conn is None:
            raise ProvisioningError("no database connection established", category="connection error")
        return self._conn.cursor()

    def _fetch_exists(self, query: str, *params) -> bool:
        with self._cursor() as cur:
            cur.execute(query, params)
            row = cur.fetchone()
        return bool(row and row[0])

    def _execute(self, statement, params=None) -> None:
        with self._cursor() as cur:
            cur.execute(statement, params)

    # Query surface

    def _exists(self, query: str, *params) -> bool:
        try:
            return self._fetch_exists(query, *params)
        except psycopg2.Error as e:
            self.log.error("catalog_query_failed", error=str(e))
            raise wrap_error(e, "could not query catalog", "read error")

    def database_exists(self, db_name: str) -> bool:
        return self._exists(DATABASE_EXISTS_QUERY, db_name)

    def role_exists(self, role_name: str) -> bool:
        return self._exists(ROLE_EXISTS_QUERY, role_name)

    def user_exists(self, username: str) -> bool:
        return self._exists(USER_EXISTS_QUERY, username)

    def group_ready(self, db_name: str, role_name: str) -> bool:
        """Whether role_name exists and holds CREATE on db_name."""
        return self._exists(GROUP_READY_QUERY, role_name, db_name)

    # Mutations

    def create_database(self, db_name: str) -> bool:
        created = False
        try:
            exists = self._fetch_exists(DATABASE_EXISTS_QUERY, db_name)
        except psycopg2.Error as e:
            self.log.error("database_lookup_failed", database=db_name, error=str(e))
            self.metrics.record_database_error("read error")
            raise wrap_error(e, "could not query for database name", "read error")

        if not exists:
            self.log.info("creating_database", database=db_name)
            try:
                self._execute(sql.SQL("CREATE DATABASE {}").format(sql.Identifier(db_name)))
                created = True
            except psycopg2.errors.DuplicateDatabase:
                # Created by someone else between the check and the create
                self.log.info("database_already_exists", database=db_name)
            except psycopg2.Error as e:
                self.log.error("database_create_failed", database=db_name, error=str(e))
                self.metrics.record_database_error("create error")
                raise wrap_error(e, f"could not create database {db_name}", "create error")

            if created:
                self.log.info("database_created", database=db_name)
                self.metrics.record_database_created()

        self._ensure_extensions(db_name)
        return created

    def _ensure_extensions(self, db_name: str) -> None:
        conn = self._open(db_name)
        try:
            with conn.cursor() as cur:
                for extension in EXTENSIONS:
                    try:
                        cur.execute(
                            sql.SQL("CREATE EXTENSION IF NOT EXISTS {}").format(sql.Identifier(extension))
                        )
                    except psycopg2.Error as e:
                        self.log.error(
                            "extension_create_failed",
                            database=db_name,
                            extension=extension,
                            error=str(e),
                        )
                        self.metrics.record_database_error("extension error")
                        raise wrap_error(e, f"could not create extension {extension}", "extension error")
                    self.log.debug("extension_ensured", database=db_name, extension=extension)
        finally:
            conn.close()

    def create_group(self, db_name: str, role_name: str) -> bool:
        start = time.monotonic()
        created = False
        try:
            exists = self._fetch_exists(ROLE_EXISTS_QUERY, role_name)
        except psycopg2.Error as e:
            self.log.error("role_lookup_failed", role=role_name, error=str(e))
            self.metrics.record_user_create_error("read error")
            raise wrap_error(e, "could not query for role", "read error")

        if not exists:
            self.log.info("creating_role", role=role_name)
            try:
                self._execute(sql.SQL("CREATE ROLE {} WITH NOLOGIN").format(sql.Identifier(role_name)))
                created = True
            except psycopg2.errors.DuplicateObject:
                self.log.info("role_already_exists", role=role_name)
            except psycopg2.Error as e:
                self.log.error("role_create_failed", role=role_name, error=str(e))
                self.metrics.record_user_create_error("create error")
                raise wrap_error(e, f"could not create role {role_name}", "create error")

        # GRANT is idempotent; re-applied so a pass interrupted after CREATE ROLE still converges
        try:
            self._execute(
                sql.SQL("GRANT ALL PRIVILEGES ON DATABASE {} TO {}").format(
                    sql.Identifier(db_name), sql.Identifier(role_name)
                )
            )
        except psycopg2.Error as e:
            self.log.error("role_grant_failed", role=role_name, database=db_name, error=str(e))
            self.metrics.record_user_create_error("grant error")
            raise wrap_error(e, f"could not set permissions to role {role_name}", "grant error")

        if created:
            self.log.info("role_created", role=role_name, database=db_name)
            self.metrics.record_user_created(time.monotonic() - start)
        return created

    def _set_group(self, username: str, role_name: str) -> None:
        self._execute(
            sql.SQL("ALTER ROLE {} SET ROLE TO {}").format(
                sql.Identifier(username), sql.Identifier(role_name)
            )
        )

    def create_user(self, username: str, role_name: str, password: str) -> bool:
        start = time.monotonic()
        if not password:
            self.metrics.record_user_create_error("empty password")
            raise InvalidCredentialError()

        try:
            exists = self._fetch_exists(USER_EXISTS_QUERY, username)
        except psycopg2.Error as e:
            self.log.error("user_lookup_failed", user=username, error=str(e))
            self.metrics.record_user_create_error("read error")
            raise wrap_error(e, "could not query for user name", "read error")

        if exists:
            return False

        self.log.info("creating_user", user=username, role=role_name)
        try:
            self._execute(
                sql.SQL("CREATE ROLE {} WITH ENCRYPTED PASSWORD {} LOGIN IN ROLE {}").format(
                    sql.Identifier(username), sql.Literal(password), sql.Identifier(role_name)
                )
            )
        except psycopg2.Error as e:
            self.log.error("user_create_failed", user=username, error=str(e))
            self.metrics.record_user_create_error("create error")
            raise wrap_error(e, f"could not create user {username}", "create error")

        try:
            self._set_group(username, role_name)
        except psycopg2.Error as e:
            self.log.error("user_set_role_failed", user=username, role=role_name, error=str(e))
            self.metrics.record_user_create_error("grant error")
            raise wrap_error(e, f"could not set role {role_name} to user {username}", "grant error")

        self.log.info("user_created", user=username, role=role_name)
        self.metrics.record_user_created(time.monotonic() - start)
        return True

    def rename_user(self, old_username: str, new_username: str) -> bool:
        try:
            exists = self._fetch_exists(ROLE_EXISTS_QUERY, old_username)
        except psycopg2.Error as e:
            self.log.error("user_lookup_failed", user=old_username, error=str(e))
            raise wrap_error(e, "could not query for user name", "read error")

        if not exists:
            return False

        self.log.info("renaming_user", old_user=old_username, new_user=new_username)
        try:
            self._execute(
                sql.SQL("ALTER USER {} RENAME TO {}").format(
                    sql.Identifier(old_username), sql.Identifier(new_username)
                )
            )
        except psycopg2.Error as e:
            self.log.error("user_rename_failed", user=old_username, error=str(e))
            raise wrap_error(e, f"could not rename user {old_username}", "alter error")
        return True

    def update_user(self, old_username: str, new_username: str, role_name: str, password: str) -> bool:
        start = time.monotonic()
        if not password:
            self.metrics.record_user_update_error("empty password")
            raise InvalidCredentialError()

        renaming = old_username != new_username
        try:
            old_exists = self._fetch_exists(ROLE_EXISTS_QUERY, old_username)
            # A previous pass may have renamed the user and stopped before the password step
            new_exists = self._fetch_exists(ROLE_EXISTS_QUERY, new_username) if renaming else old_exists
        except psycopg2.Error as e:
            self.log.error("user_lookup_failed", user=old_username, error=str(e))
            self.metrics.record_user_update_error("read error")
            raise wrap_error(e, "could not query for user name", "read error")

        if renaming and old_exists and new_exists:
            self.log.error("user_rename_conflict", old_user=old_username, new_user=new_username)
            self.metrics.record_user_update_error("user conflict")
            raise UserConflictError(
                f"cannot rename user {old_username} to {new_username}: role {new_username} already exists",
                details={"old_username": old_username, "new_username": new_username},
            )

        if not (old_exists or new_exists):
            return False

        self.log.info("updating_user", old_user=old_username, new_user=new_username)
        if old_exists and renaming:
            try:
                self.rename_user(old_username, new_username)
            except ProvisioningError as e:
                self.metrics.record_user_update_error(e.category)
                raise

        try:
            self._set_group(new_username, role_name)
        except psycopg2.Error as e:
            self.log.error("user_set_role_failed", user=new_username, role=role_name, error=str(e))
            self.metrics.record_user_update_error("grant error")
            raise wrap_error(e, f"could not set role {role_name} to user {new_username}", "grant error")

        self.update_password(new_username, password)

        self.log.info("user_updated", user=new_username, role=role_name)
        self.metrics.record_user_updated(time.monotonic() - start)
        return True

    def update_password(self, username: str, password: str) -> bool:
        start = time.monotonic()
        if not password:
            self.log.error("empty_password_rejected", user=username)
            self.metrics.record_password_rotate_error("empty password")
            raise InvalidCredentialError()

        self.log.info("updating_user_password", user=username)
        try:
            self._execute(
                sql.SQL("ALTER ROLE {} WITH ENCRYPTED PASSWORD {}").format(
                    sql.Identifier(username), sql.Literal(password)
                )
            )
        except psycopg2.errors.DuplicateObject:
            # SQLSTATE 42710: the desired end state is already in place
            self.log.info("password_already_set", user=username)
        except psycopg2.Error as e:
            self.log.error("password_alter_failed", user=username, error=str(e))
            self.metrics.record_password_rotate_error("alter error")
            raise wrap_error(e, f"could not alter user {username}", "alter error")

        self.metrics.record_password_rotated(time.monotonic() - start)
        return True

    def close(self) -> None:
        if self._conn is None:
            raise ProvisioningError("can't close nil database connection", category="connection error")
        try:
            self._conn.close()
        finally:
            self._conn = None
