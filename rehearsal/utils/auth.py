"""Admin bearer tokens.

The admin password is exchanged once for a short-lived HS256 JWT whose ``sub``
is ``ADMIN_SUBJECT``; every admin route checks that token instead of the password.
"""

from datetime import datetime, timedelta, timezone
from typing import Sequence

import jwt
from jwt import InvalidTokenError

ADMIN_SUBJECT = "admin"
ADMIN_TOKEN_TTL = timedelta(hours=8)


def create_access_token(
    *,
    subject: str,
    secret: str,
    algorithm: str = "HS256",
    expires_delta: timedelta | None = None,
) -> str:
    issued_at = datetime.now(timezone.utc)
    claims = {
        "sub": subject,
        "iat": issued_at,
        "exp": issued_at + (expires_delta or ADMIN_TOKEN_TTL),
    }
    return jwt.encode(claims, secret, algorithm=algorithm)


def decode_access_token(token: str, *, secret: str, algorithms: Sequence[str]) -> str:
    """Return the token subject. Raises ValueError for bad, expired or subject-less tokens."""
    try:
        claims = jwt.decode(token, secret, algorithms=list(algorithms), options={"require": ["exp", "sub"]})
    except InvalidTokenError as exc:
        raise ValueError("invalid token") from exc

    subject = claims["sub"]
    if not isinstance(subject, str) or not subject:
        raise ValueError("token subject must be a non-empty string")
    return subject
