"""JWT Identity Provider: verifies bearer tokens and yields the caller's user id.

Invariants:
    - verify() returns the `sub` claim, or raises AuthError; it never returns an empty id
    - Expired, malformed and wrongly-signed tokens are indistinguishable to the caller
      (all AuthError, detail only in logs)

Design Decisions:
    - PyJWT HS256 with a shared secret: the identity service issues, we only verify
    - issue_token() exists for local tooling and tests; production tokens come from upstream
"""

import logging
from datetime import datetime, timedelta, timezone

import jwt

from karmafarm.core.domain_types import UserId
from karmafarm.core.errors import AuthError

logger = logging.getLogger(__name__)


class JwtIdentityProvider:
    """IdentityProvider backed by PyJWT."""

    def __init__(self, secret: str, algorithm: str = "HS256"):
        self.secret = secret
        self.algorithm = algorithm

    def verify(self, token: str) -> UserId:
        try:
            payload = jwt.decode(
                token, self.secret, algorithms=[self.algorithm],
                options={"require": ["sub"]},
            )
        except jwt.ExpiredSignatureError:
            logger.info("Rejected expired token")
            raise AuthError("Token expired")
        except jwt.InvalidTokenError as e:
            logger.info(f"Rejected invalid token: {e}")
            raise AuthError("Invalid token")
        sub = payload.get("sub")
        if not isinstance(sub, str) or not sub:
            raise AuthError("Invalid token")
        return UserId(sub)

    def issue_token(self, user_id: str, ttl_seconds: int = 3600) -> str:
        now = datetime.now(timezone.utc)
        return jwt.encode(
            {"sub": user_id, "iat": now, "exp": now + timedelta(seconds=ttl_seconds)},
            self.secret,
            algorithm=self.algorithm,
        )


def parse_bearer(header: str | None) -> str:
    """Extract the token from an `Authorization: Bearer <token>` header."""
    if not header:
        raise AuthError()
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthError("Malformed authorization header")
    return token.strip()
