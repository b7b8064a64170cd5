"""Token verification shared by the HTTP API and the socket handshake.

Tokens are HS256 JWTs issued by the identity provider. The claims we rely on:

- ``sub``: user id (required)
- ``email``
- ``user_metadata.full_name`` (falls back to ``name``)

When no secret is configured the verifier refuses everything, unless
``ALLOW_ANON`` is set, in which case every caller becomes the fixed
anonymous development principal.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Any
from urllib.parse import parse_qs

import jwt

from collab.core.config import Settings, get_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    id: str
    email: str
    full_name: str | None = None

    @property
    def display_name(self) -> str:
        if self.full_name:
            return self.full_name
        if self.email:
            return self.email.split("@")[0]
        return self.id


ANONYMOUS_PRINCIPAL = Principal(
    id="00000000-0000-0000-0000-000000000001",
    email="anon@example.com",
    full_name="Anonymous Dev",
)


class AuthenticationError(Exception):
    """Raised by the verifier; ``reason`` is the string sent back to clients."""

    def __init__(self, reason: str = "unauthorized") -> None:
        super().__init__(reason)
        self.reason = reason


def principal_from_claims(claims: dict[str, Any]) -> Principal:
    metadata = claims.get("user_metadata") or {}
    full_name = metadata.get("full_name") if isinstance(metadata, dict) else None
    return Principal(
        id=str(claims["sub"]),
        email=str(claims.get("email") or ""),
        full_name=full_name or claims.get("name"),
    )


class TokenVerifier:
    def __init__(
        self,
        secret: str | None,
        algorithm: str = "HS256",
        audience: str | None = None,
        allow_anon: bool = False,
    ) -> None:
        self.secret = secret
        self.algorithm = algorithm
        self.audience = audience
        self.allow_anon = allow_anon

    @classmethod
    def from_settings(cls, settings: Settings) -> TokenVerifier:
        return cls(
            secret=settings.jwt_secret,
            algorithm=settings.jwt_algorithm,
            audience=settings.jwt_audience,
            allow_anon=settings.allow_anon,
        )

    def verify(self, token: str | None) -> Principal:
        if not self.secret:
            if self.allow_anon:
                return ANONYMOUS_PRINCIPAL
            logger.warning("Token rejected: JWT_SECRET is not configured and ALLOW_ANON is off")
            raise AuthenticationError()

        if not token:
            raise AuthenticationError()

        try:
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                audience=self.audience,
                options={"require": ["sub"], "verify_aud": self.audience is not None},
            )
        except jwt.ExpiredSignatureError as exc:
            raise AuthenticationError("jwt_expired") from exc
        except jwt.InvalidTokenError as exc:
            raise AuthenticationError() from exc

        return principal_from_claims(claims)


@lru_cache(maxsize=1)
def get_token_verifier() -> TokenVerifier:
    return TokenVerifier.from_settings(get_settings())


def bearer_token(header: str | None) -> str | None:
    if not header:
        return None
    scheme, _, value = header.partition(" ")
    if scheme.lower() != "bearer" or not value.strip():
        return None
    return value.strip()


def extract_handshake_token(environ: dict[str, Any], auth: Any | None) -> str | None:
    """Extract the token from a Socket.IO handshake.

    Clients send ``auth: { token }``; a ``?token=`` query parameter is
    accepted as fallback. python-socketio passes different environ shapes
    depending on the server, so both ASGI and WSGI keys are checked.
    """

    if isinstance(auth, dict):
        auth_token = auth.get("token")
        if isinstance(auth_token, str) and auth_token:
            return auth_token

    scope: Any = environ
    if isinstance(environ, dict) and "asgi.scope" in environ:
        inner = environ.get("asgi.scope")
        if isinstance(inner, dict):
            scope = inner

    query_string: str | bytes = ""
    if isinstance(scope, dict) and "query_string" in scope:
        query_string = scope.get("query_string", b"")
    elif isinstance(scope, dict) and "QUERY_STRING" in scope:
        query_string = scope.get("QUERY_STRING", "")

    if isinstance(query_string, (bytes, bytearray)):
        query_string = query_string.decode(errors="ignore")

    token = parse_qs(str(query_string)).get("token", [None])[0]
    if isinstance(token, str) and token:
        return token

    return None
