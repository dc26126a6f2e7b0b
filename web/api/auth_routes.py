"""Auth API routes: trainer login and the current user."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel
from slowapi import Limiter
from slowapi.util import get_remote_address

import config
from sideout.models import User
from web.auth import authenticate, issue_token, require_user

logger = logging.getLogger("sideout.api")

# Keyed by client address; in-memory, per process
limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")

router = APIRouter(prefix="/api/auth", tags=["auth"])


class LoginRequest(BaseModel):
    username: str
    password: str


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    username: str
    role: str


class UserResponse(BaseModel):
    username: str
    role: str


@router.post("/login", response_model=LoginResponse)
@limiter.limit(config.LOGIN_RATE_LIMIT)
async def login(request: Request, body: LoginRequest):
    """Exchange trainer credentials for a JWT."""
    user = await authenticate(body.username, body.password)
    if user is None:
        logger.info("Failed login for %r from %s", body.username, get_remote_address(request))
        raise HTTPException(status_code=401, detail="Invalid username or password")
    return LoginResponse(access_token=issue_token(user), username=user.username, role=user.role)


@router.get("/me", response_model=UserResponse)
async def get_me(user: User = Depends(require_user)):
    return UserResponse(username=user.username, role=user.role)
