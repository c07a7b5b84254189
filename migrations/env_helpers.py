"""Database URL resolution for Alembic.

Kept apart from env.py so it can be imported (and tested) without an active
alembic context.

DATABASE_URL may be a URL (postgres://, postgresql://) or a libpq key=value
DSN; both become a SQLAlchemy psycopg2 URL. DB_PASSWORD fills in a missing
password.
"""

from __future__ import annotations

import os
import shlex
from urllib.parse import quote_plus, urlsplit, urlunsplit

DRIVER_SCHEME = "postgresql+psycopg2"


def parse_keyword_dsn(dsn: str) -> dict[str, str]:
    """Parse ``key=value`` pairs; single-quoted values may contain spaces."""
    pairs: dict[str, str] = {}
    for token in shlex.split(dsn, posix=True):
        key, sep, value = token.partition("=")
        if sep:
            pairs[key.strip()] = value
    return pairs


def keyword_dsn_to_url(dsn: str) -> str:
    """Build a SQLAlchemy URL from a libpq keyword DSN.

    A host starting with "/" is a unix socket directory and is passed as the
    ``host`` query parameter.
    """
    params = parse_keyword_dsn(dsn)
    password = params.get("password") or os.environ.get("DB_PASSWORD", "")

    auth = quote_plus(params.get("user", ""))
    if password:
        auth += ":" + quote_plus(password)
    dbname = quote_plus(params.get("dbname", ""))
    host = params.get("host", "localhost")

    if host.startswith("/"):
        return f"{DRIVER_SCHEME}://{auth}@/{dbname}?host={quote_plus(host)}"
    return f"{DRIVER_SCHEME}://{auth}@{host}:{params.get('port', '5432')}/{dbname}"


def _with_driver(url: str) -> str:
    scheme, _, rest = url.partition("://")
    if scheme in ("postgres", "postgresql"):
        return f"{DRIVER_SCHEME}://{rest}"
    return url


def _with_password(url: str, password: str) -> str:
    parts = urlsplit(url)
    if parts.password or not password:
        return url
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    netloc = f"{quote_plus(parts.username or '')}:{quote_plus(password)}@{host}"
    return urlunsplit(parts._replace(netloc=netloc))


def get_database_url() -> str:
    """Resolve DATABASE_URL into a SQLAlchemy URL.

    Raises:
        RuntimeError: If DATABASE_URL is not set.
    """
    raw = os.environ.get("DATABASE_URL")
    if not raw:
        raise RuntimeError("DATABASE_URL is required to run migrations")
    if "://" not in raw:
        return keyword_dsn_to_url(raw)
    return _with_password(_with_driver(raw), os.environ.get("DB_PASSWORD", ""))
