from __future__ import annotations
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from jobfeed.core.config import settings

TOKEN_AUDIENCE = "jobfeed-admin"


def token_lifetime() -> timedelta:
    return timedelta(minutes=settings.jwt_expire_minutes)


def create_access_token(subject: str) -> str:
    claims = {
        "sub": subject,
        "aud": TOKEN_AUDIENCE,
        "iat": datetime.now(timezone.utc),
        "exp": datetime.now(timezone.utc) + token_lifetime(),
    }
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_access_token(token: str) -> str | None:
    """Subject of a valid, unexpired admin token, else None."""
    try:
        claims = jwt.decode(
            token, settings.jwt_secret, algorithms=[settings.jwt_algorithm], audience=TOKEN_AUDIENCE
        )
    except JWTError:
        return None
    return claims.get("sub")
