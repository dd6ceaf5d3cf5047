"""Database access layer using psycopg2.

Provides:
- get_conn(): Get a database connection from DATABASE_URL
- txn(): Context manager for one ledger transaction
- for_update(): SELECT ... FOR UPDATE helper (per-folio serialization)
- lock_rows(): Lock many rows in a deterministic order
"""

import os
from contextlib import contextmanager
from typing import Any, Iterator, Sequence
from urllib.parse import urlparse

import psycopg2
from psycopg2.extensions import connection as PgConnection, cursor as PgCursor


def _dsn_has_password(dsn: str) -> bool:
    if "://" in dsn:
        return bool(urlparse(dsn).password)
    return any(part.startswith("password=") for part in dsn.split())


def get_conn() -> PgConnection:
    """Get a new database connection from DATABASE_URL.

    DB_PASSWORD is used as the password when the DSN carries none
    (secret-manager deployments keep the password out of the URL).

    Raises:
        RuntimeError: If DATABASE_URL is not set.
        psycopg2.Error: On connection failure.
    """
    dsn = os.environ.get("DATABASE_URL")
    if not dsn:
        raise RuntimeError("DATABASE_URL environment variable not set")

    db_password = os.environ.get("DB_PASSWORD")
    if db_password and not _dsn_has_password(dsn):
        return psycopg2.connect(dsn, password=db_password)
    return psycopg2.connect(dsn)


@contextmanager
def txn(conn: PgConnection | None = None) -> Iterator[PgCursor]:
    """Context manager for a short, safe transaction.

    If conn is None, creates a new connection that is closed on exit.
    Commits on successful exit, rolls back on exception, so a ledger
    operation either lands completely or not at all.

    Example:
        with txn() as cur:
            post_charge(cur, property_id=..., folio_id=..., item=...)
    """
    owns_conn = conn is None
    if owns_conn:
        conn = get_conn()

    try:
        with conn.cursor() as cur:
            yield cur
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        if owns_conn:
            conn.close()


def for_update(
    cur: PgCursor,
    query: str,
    params: Sequence[Any] | None = None,
    *,
    nowait: bool = False,
    skip_locked: bool = False,
) -> tuple[Any, ...] | None:
    """Execute SELECT ... FOR UPDATE and fetch one row.

    Appends the FOR UPDATE clause to the query. Use within a transaction
    to hold the row lock until commit/rollback.

    Raises:
        ValueError: If both nowait and skip_locked are True.
    """
    if nowait and skip_locked:
        raise ValueError("Cannot use both nowait and skip_locked")

    suffix = " FOR UPDATE"
    if nowait:
        suffix += " NOWAIT"
    elif skip_locked:
        suffix += " SKIP LOCKED"

    full_query = query.rstrip().rstrip(";") + suffix
    cur.execute(full_query, params)
    return cur.fetchone()


def lock_rows(
    cur: PgCursor,
    table: str,
    ids: Sequence[str],
    *,
    property_id: str,
) -> list[str]:
    """Lock rows of a property-scoped table in ascending id order.

    Batches that touch several folios lock them in the same order so two
    concurrent batches cannot deadlock each other.

    Args:
        cur: Database cursor (inside a transaction).
        table: Trusted table name (never user input).
        ids: Row ids to lock.
        property_id: Tenant scope.

    Returns:
        The ids that exist and were locked, in lock order.
    """
    if not ids:
        return []
    cur.execute(
        f"""
        SELECT id FROM {table}
        WHERE property_id = %s AND id = ANY(%s::uuid[])
        ORDER BY id
        FOR UPDATE
        """,
        (property_id, sorted(set(ids))),
    )
    return [str(row[0]) for row in cur.fetchall()]
