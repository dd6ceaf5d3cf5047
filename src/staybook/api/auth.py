"""OIDC bearer-token authentication for staff users.

Provides:
- verify_token(): validates an RS256 JWT against the issuer's JWKS, returns sub
- get_current_user(): FastAPI dependency resolving sub to a users row
"""

from __future__ import annotations

import os
import threading
import time
from dataclasses import dataclass
from typing import Any

import jwt
import requests
from fastapi import HTTPException, Request

_JWKS_TTL_SECONDS = 600


@dataclass
class CurrentUser:
    """Authenticated staff user."""

    id: str
    external_subject: str
    email: str | None
    name: str | None


@dataclass(frozen=True)
class OidcSettings:
    issuer: str | None
    audience: str | None
    jwks_url: str | None
    authorized_parties: tuple[str, ...] = ()

    @classmethod
    def from_env(cls) -> "OidcSettings":
        parties = os.environ.get("OIDC_AUTHORIZED_PARTIES", "")
        return cls(
            issuer=os.environ.get("OIDC_ISSUER"),
            audience=os.environ.get("OIDC_AUDIENCE"),
            jwks_url=os.environ.get("OIDC_JWKS_URL"),
            authorized_parties=tuple(p.strip() for p in parties.split(",") if p.strip()),
        )

    @property
    def configured(self) -> bool:
        return bool(self.issuer and self.audience and self.jwks_url)


def _fetch_jwks(jwks_url: str) -> dict[str, Any]:
    resp = requests.get(jwks_url, timeout=10)
    resp.raise_for_status()
    return resp.json()


class JwksCache:
    """Process-wide JWKS cache with a TTL and forced refresh on key rotation."""

    def __init__(self, ttl: float = _JWKS_TTL_SECONDS):
        self.ttl = ttl
        self._keys: dict[str, Any] | None = None
        self._fetched_at: float = 0
        self._lock = threading.Lock()

    def clear(self) -> None:
        with self._lock:
            self._keys = None
            self._fetched_at = 0

    def get(self, jwks_url: str, *, refresh: bool = False) -> dict[str, Any]:
        with self._lock:
            fresh = self._keys is not None and (time.time() - self._fetched_at) < self.ttl
            if fresh and not refresh:
                return self._keys  # type: ignore[return-value]
            try:
                self._keys = _fetch_jwks(jwks_url)
            except requests.RequestException:
                raise HTTPException(status_code=503, detail="Auth temporarily unavailable")
            self._fetched_at = time.time()
            return self._keys

    def find(self, jwks_url: str, kid: str, *, force_refresh: bool = False) -> dict[str, Any] | None:
        """Key for kid; refetches once when the cached set does not have it."""
        for refresh in ((True,) if force_refresh else (False, True)):
            for key in self.get(jwks_url, refresh=refresh).get("keys", []):
                if key.get("kid") == kid:
                    return key
        return None


_jwks = JwksCache()


def _invalid(detail: str = "Invalid token") -> HTTPException:
    return HTTPException(status_code=401, detail=detail)


def _decode(token: str, key_data: dict[str, Any], settings: OidcSettings) -> dict[str, Any]:
    try:
        public_key = jwt.PyJWK(key_data).key
    except (jwt.PyJWKError, jwt.InvalidKeyError):
        raise _invalid()
    return jwt.decode(
        token,
        public_key,
        algorithms=["RS256"],
        issuer=settings.issuer,
        audience=settings.audience,
        options={"require": ["exp", "iss", "aud", "sub"]},
    )


def verify_token(token: str) -> str:
    """Verify a bearer JWT and return its subject.

    Raises:
        HTTPException: 401 for any invalid token, 503 if the JWKS is unreachable.
    """
    settings = OidcSettings.from_env()
    if not settings.configured:
        raise _invalid("OIDC not configured")

    try:
        kid = jwt.get_unverified_header(token).get("kid")
    except jwt.DecodeError:
        raise _invalid()
    if not kid:
        raise _invalid()

    key_data = _jwks.find(settings.jwks_url, kid)  # type: ignore[arg-type]
    if key_data is None:
        raise _invalid()

    try:
        try:
            claims = _decode(token, key_data, settings)
        except jwt.InvalidSignatureError:
            # keys may have rotated under the same kid
            key_data = _jwks.find(settings.jwks_url, kid, force_refresh=True)  # type: ignore[arg-type]
            if key_data is None:
                raise _invalid()
            claims = _decode(token, key_data, settings)
    except jwt.ExpiredSignatureError:
        raise _invalid("Token expired")
    except jwt.InvalidTokenError:
        raise _invalid()

    if settings.authorized_parties and "azp" in claims:
        if claims["azp"] not in settings.authorized_parties:
            raise _invalid()

    sub = claims.get("sub")
    if not sub:
        raise _invalid()
    return sub


def _bearer_token(request: Request) -> str:
    header = request.headers.get("Authorization")
    if not header:
        raise _invalid("Missing authorization header")

    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token or " " in token.strip():
        raise _invalid("Invalid authorization header")
    return token.strip()


def _get_user_from_db(external_subject: str) -> CurrentUser | None:
    from staybook.infra.db import txn

    with txn() as cur:
        cur.execute(
            "SELECT id, external_subject, email, name FROM users WHERE external_subject = %s",
            (external_subject,),
        )
        row = cur.fetchone()
    if row is None:
        return None
    return CurrentUser(id=str(row[0]), external_subject=row[1], email=row[2], name=row[3])


def get_current_user(request: Request) -> CurrentUser:
    """FastAPI dependency: the authenticated staff user.

    Raises:
        HTTPException: 401 if the token is missing or invalid, 403 if the
            subject has no users row.
    """
    sub = verify_token(_bearer_token(request))
    user = _get_user_from_db(sub)
    if user is None:
        raise HTTPException(status_code=403, detail="User not found")
    return user

