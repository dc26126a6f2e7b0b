"""Trainer authentication for the API.

Trainers log in with a username and password and get a JWT. Session
management, waitlist and attendance routes depend on ``require_trainer_user``;
the public share and cancel links need no login. The first admin account is
created on the first login with INITIAL_ADMIN_PASSWORD.
"""
from __future__ import annotations

import hashlib
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.context import CryptContext
from sqlalchemy import select

import config
from sideout.models import User
from sideout.models.base import async_session_factory

logger = logging.getLogger("sideout.api")

TRAINER_ROLES = ("trainer", "admin")

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
bearer = HTTPBearer(auto_error=False)


def _prehash(password: str) -> str:
    # bcrypt reads at most 72 bytes
    encoded = password.encode("utf-8")
    return hashlib.sha256(encoded).hexdigest() if len(encoded) > 72 else password


def hash_password(password: str) -> str:
    return pwd_context.hash(_prehash(password))


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(_prehash(plain), hashed)


def issue_token(user: User) -> str:
    claims = {
        "sub": user.username,
        "role": user.role,
        "exp": datetime.now(timezone.utc) + timedelta(days=config.JWT_EXPIRE_DAYS),
    }
    return jwt.encode(claims, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def username_from_token(token: str) -> Optional[str]:
    """Subject of a valid, unexpired token; None otherwise."""
    try:
        claims = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except jwt.InvalidTokenError:
        return None
    return claims.get("sub") or None


async def _find_user(db, username: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.username == username))
    return result.scalar_one_or_none()


async def authenticate(username: str, password: str) -> Optional[User]:
    """User for valid credentials, creating the initial admin on its first login."""
    async with async_session_factory() as session:
        user = await _find_user(session, username)
        if user is not None:
            return user if verify_password(password, user.password_hash) else None
        if not (
            config.INITIAL_ADMIN_PASSWORD
            and username == config.INITIAL_ADMIN_USERNAME
            and password == config.INITIAL_ADMIN_PASSWORD
        ):
            return None
        user = User(username=username, password_hash=hash_password(password), role="admin")
        session.add(user)
        await session.commit()
        await session.refresh(user)
    logger.info("Initial admin %r created", user.username)
    return user


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
) -> Optional[User]:
    """Logged-in user from the Bearer token, or None."""
    if credentials is None or not credentials.credentials:
        return None
    username = username_from_token(credentials.credentials)
    if username is None:
        return None
    async with async_session_factory() as session:
        return await _find_user(session, username)


async def require_user(user: Optional[User] = Depends(get_current_user)) -> User:
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


async def require_trainer_user(user: User = Depends(require_user)) -> User:
    """Dependency: sessions, waitlists and attendance are managed by trainers (and admins)."""
    if user.role not in TRAINER_ROLES:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Trainer access required")
    return user
