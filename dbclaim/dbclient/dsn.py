"""
Connection locator construction for Postgres.

``postgres_connection_string`` produces a libpq keyword/value string. Values
are single-quoted; inside user, password and dbname every space, backslash
and single quote is prefixed with one backslash, which libpq strips again
when parsing.
"""
from urllib.parse import quote

_ESCAPED = {" ", "\\", "'"}


def escape_value(value: str) -> str:
    """Backslash-escape libpq delimiters (space, backslash, single quote)."""
    return "".join("\\" + c if c in _ESCAPED else c for c in value)


def postgres_connection_string(
    host: str,
    port,
    user: str,
    password: str,
    dbname: str,
    sslmode: str,
) -> str:
    """Build a libpq keyword/value connection string."""
    return (
        f"host='{host}' port='{port}' user='{escape_value(user)}' "
        f"password='{escape_value(password)}' dbname='{escape_value(dbname)}' "
        f"sslmode='{sslmode}'"
    )


def postgres_uri(
    host: str,
    port,
    user: str,
    password: str,
    dbname: str,
    sslmode: str,
) -> str:
    """Build a postgres:// URI with percent-encoded credentials."""
    return (
        f"postgres://{quote(user, safe='')}:{quote(password, safe='')}"
        f"@{host}:{port}/{quote(dbname, safe='')}?sslmode={quote(sslmode, safe='')}"
    )
