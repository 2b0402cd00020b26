from __future__ import annotations
import logging

from fastapi import APIRouter, HTTPException

from jobfeed.api.deps import verify_login
from jobfeed.schemas.auth import LoginRequest, TokenResponse
from jobfeed.utils.auth import create_access_token, token_lifetime

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=TokenResponse)
def login(req: LoginRequest):
    if not verify_login(req.username, req.password):
        logger.warning("[auth] rejected login for %r", req.username)
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return TokenResponse(
        access_token=create_access_token(req.username),
        expires_in=int(token_lifetime().total_seconds()),
    )
