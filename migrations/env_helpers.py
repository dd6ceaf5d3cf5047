"""Database URL helpers for Alembic migrations.

Kept apart from env.py so they can be tested without an alembic context.
"""

from __future__ import annotations

import os
import re
from urllib.parse import quote_plus, urlparse, urlunparse

# key=value or key='quoted value' (backslash escapes inside quotes)
_DSN_TOKEN = re.compile(r"(\w+)\s*=\s*('(?:[^'\\]|\\.)*'|\S+)")

_DRIVER_PREFIX = "postgresql+psycopg2://"


def parse_libpq_dsn(dsn: str) -> dict[str, str]:
    """Parse a libpq key=value DSN into a dict."""
    tokens: dict[str, str] = {}
    for key, raw in _DSN_TOKEN.findall(dsn):
        if raw.startswith("'") and raw.endswith("'"):
            raw = re.sub(r"\\(.)", r"\1", raw[1:-1])
        tokens[key] = raw
    return tokens


def libpq_dsn_to_url(dsn: str) -> str:
    """Convert a libpq key=value DSN to a SQLAlchemy URL.

    Unix-socket hosts (Cloud SQL) go into the ``host`` query parameter;
    TCP hosts become HOST:PORT.
    """
    tokens = parse_libpq_dsn(dsn)
    password = tokens.get("password") or os.environ.get("DB_PASSWORD", "")

    user = quote_plus(tokens.get("user", ""))
    dbname = quote_plus(tokens.get("dbname", ""))
    credentials = f"{user}:{quote_plus(password)}"
    host = tokens.get("host", "localhost")

    if host.startswith("/"):
        return f"{_DRIVER_PREFIX}{credentials}@/{dbname}?host={quote_plus(host)}"
    return f"{_DRIVER_PREFIX}{credentials}@{host}:{tokens.get('port', '5432')}/{dbname}"


def _inject_password(url: str, password: str) -> str:
    parsed = urlparse(url)
    if parsed.password or not password:
        return url
    netloc = f"{quote_plus(parsed.username or '')}:{quote_plus(password)}@{parsed.hostname}"
    if parsed.port:
        netloc += f":{parsed.port}"
    return urlunparse(parsed._replace(netloc=netloc))


def get_database_url() -> str:
    """Resolve DATABASE_URL (URL or libpq DSN) into a psycopg2 SQLAlchemy URL."""
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is required to run migrations")
    if "://" not in url:
        return libpq_dsn_to_url(url)

    for scheme in ("postgres://", "postgresql://"):
        if url.startswith(scheme):
            url = _DRIVER_PREFIX + url[len(scheme):]
            break
    return _inject_password(url, os.environ.get("DB_PASSWORD", ""))
