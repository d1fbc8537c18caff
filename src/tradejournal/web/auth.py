# === MODULE PURPOSE ===
# Bearer token authentication for the REST API and the push server.
# Resolves a signed JWT to the user identity it was issued for.

# === DEPENDENCIES ===
# - PyJWT: HS256 token decoding and issuing

# === KEY CONCEPTS ===
# - user_id claim: UUID string identifying the user
# - resolve(): Returns None for anything invalid, never raises
# - require_user: FastAPI dependency raising 401

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Sequence

import jwt
from fastapi import HTTPException, Request

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_TTL = timedelta(hours=24)


class TokenAuthenticator:
    """
    Validates signed session tokens and extracts the user identity.

    Usage:
        auth = TokenAuthenticator(secret)
        token = auth.issue("0b6f7c1e-...")
        user_id = auth.resolve(token)  # "0b6f7c1e-..." or None
    """

    def __init__(self, secret: str, algorithms: Sequence[str] = ("HS256",)):
        """
        Initialize authenticator.

        Args:
            secret: Shared signing secret.
            algorithms: Accepted JWT algorithms; the first one signs new tokens.
        """
        if not secret:
            raise ValueError("Token secret must not be empty")
        self._secret = secret
        self._algorithms = list(algorithms)

    def decode(self, token: str) -> dict[str, Any] | None:
        """
        Decode and validate a token.

        Returns:
            Claims dictionary, or None if the token is invalid or expired.
        """
        if not token:
            return None

        try:
            return jwt.decode(token, self._secret, algorithms=self._algorithms)
        except jwt.ExpiredSignatureError:
            logger.debug("Rejected expired token")
            return None
        except jwt.InvalidTokenError as e:
            logger.debug(f"Rejected invalid token: {e}")
            return None

    def resolve(self, token: str | None) -> str | None:
        """
        Resolve a token to its user identity.

        Returns:
            Canonical UUID string from the user_id claim, or None.
        """
        claims = self.decode(token or "")
        if not claims:
            return None

        raw_user_id = claims.get("user_id")
        if not isinstance(raw_user_id, str):
            return None
        try:
            return str(uuid.UUID(raw_user_id))
        except ValueError:
            return None

    def issue(self, user_id: Any, expires_in: timedelta = DEFAULT_TOKEN_TTL) -> str:
        """Issue a signed token for a user."""
        now = datetime.now(timezone.utc)
        payload = {
            "user_id": str(user_id),
            "iat": now,
            "exp": now + expires_in,
        }
        return jwt.encode(payload, self._secret, algorithm=self._algorithms[0])


def extract_bearer_token(authorization: str | None) -> str | None:
    """Extract the token from an 'Authorization: Bearer <token>' header."""
    if not authorization:
        return None
    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer":
        return None
    return parts[1]


def require_user(request: Request) -> str:
    """
    FastAPI dependency resolving the authenticated user.

    Raises:
        HTTPException: 401 if the header is missing, malformed or invalid.
    """
    authenticator: TokenAuthenticator = request.app.state.authenticator

    header = request.headers.get("Authorization")
    if not header:
        raise HTTPException(status_code=401, detail="Missing authorization header")

    token = extract_bearer_token(header)
    if token is None:
        raise HTTPException(status_code=401, detail="Invalid authorization header format")

    user_id = authenticator.resolve(token)
    if user_id is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    return user_id
