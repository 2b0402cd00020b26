from __future__ import annotations
import hmac

from fastapi import Depends, HTTPException, Request
from fastapi.security import OAuth2PasswordBearer

from jobfeed.core.config import settings
from jobfeed.services.crawl_service import AggregationService
from jobfeed.utils.auth import verify_access_token

oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{settings.api_prefix}/auth/login")


def require_user(token: str = Depends(oauth2_scheme)) -> str:
    subject = verify_access_token(token)
    if not subject:
        raise HTTPException(status_code=401, detail="Invalid token")
    return subject


def verify_login(username: str, password: str) -> bool:
    return hmac.compare_digest(username, settings.auth_username) and hmac.compare_digest(
        password, settings.auth_password
    )


def get_service(request: Request) -> AggregationService:
    """The process-wide aggregator created at startup."""
    service = getattr(request.app.state, "aggregator", None)
    if service is None:
        raise HTTPException(status_code=503, detail="aggregator not started")
    return service
