"""Bearer token verification.

Tokens are OAuth access tokens issued by the Carbon Voice authorization
server. They are decoded (not signature-checked; the upstream API validates
them on every call) and their claims mapped to an AuthInfo.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable, Mapping

import jwt
from pydantic import BaseModel, Field

from .utils import remove_last_chars

logger = logging.getLogger(__name__)


class InvalidTokenError(Exception):
    """Missing, malformed or expired access token (HTTP 401)."""

    code = "invalid_token"


class InsufficientScopeError(Exception):
    """Token lacks a required scope (HTTP 403)."""

    code = "insufficient_scope"


class AuthInfo(BaseModel):
    """Authenticated identity resolved from a bearer token."""

    token: str
    client_id: str
    scopes: list[str] = Field(default_factory=list)
    expires_at: int | None = None
    user_id: str | None = None


def extract_bearer_token(headers: Mapping[str, str]) -> str:
    """Return the token from an ``Authorization: Bearer`` header.

    Raises:
        InvalidTokenError: If the header is missing or not a bearer credential
    """
    authorization = headers.get("authorization")
    if not authorization:
        raise InvalidTokenError("Missing Authorization header")

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise InvalidTokenError("Invalid Authorization header format, expected 'Bearer TOKEN'")
    return token.strip()


class TokenVerifier:
    """Maps access tokens to AuthInfo.

    Args:
        issuer: Expected ``iss`` claim; skipped when None
        leeway: Seconds of clock skew tolerated on ``exp``
    """

    def __init__(self, issuer: str | None = None, leeway: int = 0) -> None:
        self._issuer = issuer.rstrip("/") if issuer else None
        self._leeway = leeway

    async def verify_access_token(self, token: str) -> AuthInfo:
        """Decode a token and validate its claims.

        Raises:
            InvalidTokenError: If the token cannot be decoded or fails a check
        """
        if not token:
            raise InvalidTokenError("No token provided")

        try:
            claims = jwt.decode(
                token,
                options={"verify_signature": False, "verify_exp": False},
            )
            return self._to_auth_info(token, claims)
        except InvalidTokenError as e:
            logger.error(f"Error verifying access token {remove_last_chars(token)}: {e}")
            raise
        except jwt.PyJWTError as e:
            logger.error(f"Error verifying access token {remove_last_chars(token)}: {e}")
            raise InvalidTokenError("Invalid token format") from e

    def _to_auth_info(self, token: str, claims: dict) -> AuthInfo:
        if not claims:
            raise InvalidTokenError("Invalid token format")
        if not claims.get("sub") or not claims.get("client_id"):
            raise InvalidTokenError("Token missing required claims")

        expires_at = claims.get("exp")
        if expires_at is not None and expires_at + self._leeway < time.time():
            raise InvalidTokenError("Token has expired")

        if self._issuer and str(claims.get("iss", "")).rstrip("/") != self._issuer:
            raise InvalidTokenError("Invalid token issuer")

        scope = claims.get("scope") or ""
        return AuthInfo(
            token=token,
            client_id=str(claims["client_id"]),
            scopes=scope.split() if isinstance(scope, str) else list(scope),
            expires_at=int(expires_at) if expires_at is not None else None,
            user_id=str(claims["sub"]),
        )


def require_scopes(auth: AuthInfo, required: Iterable[str]) -> None:
    """Raise InsufficientScopeError unless every required scope is granted."""
    missing = [scope for scope in required if scope not in auth.scopes]
    if missing:
        raise InsufficientScopeError(f"Insufficient scope, missing: {' '.join(missing)}")
