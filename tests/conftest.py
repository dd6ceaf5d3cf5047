"""Shared pytest fixtures for staybook tests."""
import sys
sys.dont_write_bytecode = True

import pytest  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_oidc_jwks_cache():
    """Clear the process-wide JWKS cache around every test.

    A key set cached by one test would otherwise be used to verify tokens
    signed with another test's keys.
    """
    from staybook.api.auth import _jwks

    _jwks.clear()
    yield
    _jwks.clear()


@pytest.fixture
def oidc_env(monkeypatch):
    monkeypatch.setenv("OIDC_ISSUER", "https://issuer.example.com")
    monkeypatch.setenv("OIDC_AUDIENCE", "staybook-api")
    monkeypatch.setenv("OIDC_JWKS_URL", "https://issuer.example.com/.well-known/jwks.json")
    monkeypatch.delenv("OIDC_AUTHORIZED_PARTIES", raising=False)
