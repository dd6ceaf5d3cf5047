"""Tests for the Alembic database URL helpers."""

import os
from unittest.mock import patch

import pytest

from migrations.env_helpers import get_database_url, libpq_dsn_to_url, parse_libpq_dsn


class TestParseLibpqDsn:
    def test_plain_tokens(self):
        assert parse_libpq_dsn("dbname=ledger user=app host=db port=6432") == {
            "dbname": "ledger",
            "user": "app",
            "host": "db",
            "port": "6432",
        }

    def test_quoted_value_with_spaces_and_escapes(self):
        tokens = parse_libpq_dsn(r"user=app password='s3 cr\'et'")
        assert tokens["password"] == "s3 cr'et"


class TestLibpqDsnToUrl:
    def test_tcp_host(self):
        with patch.dict(os.environ, {}, clear=True):
            url = libpq_dsn_to_url("dbname=ledger user=app password=pw host=db port=6432")
        assert url == "postgresql+psycopg2://app:pw@db:6432/ledger"

    def test_unix_socket_host(self):
        with patch.dict(os.environ, {}, clear=True):
            url = libpq_dsn_to_url("dbname=ledger user=app password=pw host=/cloudsql/proj:region:inst")
        assert url.startswith("postgresql+psycopg2://app:pw@/ledger?host=")
        assert "%2Fcloudsql%2F" in url

    def test_db_password_fallback(self):
        with patch.dict(os.environ, {"DB_PASSWORD": "p@ss"}, clear=True):
            url = libpq_dsn_to_url("dbname=ledger user=app host=db")
        assert url == "postgresql+psycopg2://app:p%40ss@db:5432/ledger"


class TestGetDatabaseUrl:
    def test_missing(self):
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(RuntimeError):
                get_database_url()

    @pytest.mark.parametrize("scheme", ["postgres://", "postgresql://"])
    def test_scheme_rewritten(self, scheme):
        with patch.dict(os.environ, {"DATABASE_URL": f"{scheme}u:p@h:5432/db"}, clear=True):
            assert get_database_url() == "postgresql+psycopg2://u:p@h:5432/db"

    def test_password_injected_into_url(self):
        env = {"DATABASE_URL": "postgresql://u@h:5432/db", "DB_PASSWORD": "secret"}
        with patch.dict(os.environ, env, clear=True):
            assert get_database_url() == "postgresql+psycopg2://u:secret@h:5432/db"

    def test_dsn_form(self):
        with patch.dict(os.environ, {"DATABASE_URL": "dbname=db user=u password=p host=h"}, clear=True):
            assert get_database_url() == "postgresql+psycopg2://u:p@h:5432/db"
