"""Shared test helpers (plain functions, not fixtures)."""

from __future__ import annotations

import base64
import time
from contextlib import contextmanager
from typing import Any
from unittest.mock import MagicMock, patch

import jwt
from cryptography.hazmat.primitives.asymmetric import rsa

from staybook.api.auth import CurrentUser

ISSUER = "https://issuer.example.com"
AUDIENCE = "staybook-api"
PROPERTY_ID = "prop-1"


def generate_rsa_keypair():
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return private_key, private_key.public_key()


def create_jwks(public_key, kid: str = "test-key-1") -> dict:
    """JWKS document exposing public_key under kid."""
    public_numbers = public_key.public_numbers()

    def int_to_base64(n: int) -> str:
        byte_length = (n.bit_length() + 7) // 8
        return base64.urlsafe_b64encode(n.to_bytes(byte_length, "big")).rstrip(b"=").decode()

    return {
        "keys": [
            {
                "kty": "RSA",
                "use": "sig",
                "alg": "RS256",
                "kid": kid,
                "n": int_to_base64(public_numbers.n),
                "e": int_to_base64(public_numbers.e),
            }
        ]
    }


def create_token(
    private_key,
    kid: str = "test-key-1",
    sub: str = "user-123",
    iss: str = ISSUER,
    aud: str = AUDIENCE,
    exp: int | None = None,
    azp: str | None = None,
) -> str:
    now = int(time.time())
    payload: dict[str, Any] = {
        "sub": sub,
        "iss": iss,
        "aud": aud,
        "exp": exp if exp is not None else now + 3600,
        "iat": now,
    }
    if azp:
        payload["azp"] = azp
    return jwt.encode(payload, private_key, algorithm="RS256", headers={"kid": kid})


def make_user(user_id: str = "user-1") -> CurrentUser:
    return CurrentUser(id=user_id, external_subject=f"sub-{user_id}", email="staff@example.com", name="Staff")


@contextmanager
def as_role(app, role: str | None, user: CurrentUser | None = None):
    """Authenticate every request as user holding role on any property."""
    from staybook.api.auth import get_current_user

    user = user or make_user()
    app.dependency_overrides[get_current_user] = lambda: user
    try:
        with patch("staybook.api.rbac._get_user_role_for_property", return_value=role):
            yield user
    finally:
        app.dependency_overrides.pop(get_current_user, None)


def bind_cursor(mock_txn_obj: MagicMock, cur: MagicMock) -> None:
    mock_txn_obj.return_value.__enter__.return_value = cur
    mock_txn_obj.return_value.__exit__.return_value = False
