"""
Member Portal Workflow - API Dependencies
=========================================

Shared dependencies for FastAPI endpoints: bearer-token identity,
database session and the workflow service.
"""

import secrets
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Annotated, Optional
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import settings
from src.core.database import get_db
from src.core.models import User, UserRole
from src.core.workflow import WorkflowNotifier, WorkflowService


# ==========================================================================
# Security
# ==========================================================================

security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


# ==========================================================================
# Token Utilities
# ==========================================================================

def create_access_token(
    user_id: UUID,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a new access token.

    Args:
        user_id: User's UUID
        expires_delta: Optional custom expiration time

    Returns:
        Encoded JWT token
    """
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "exp": now + expires_delta,
        "iat": now,
        "type": "access",
        "jti": secrets.token_hex(16),
    }

    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str) -> dict:
    """
    Decode and validate a JWT token.

    Raises:
        HTTPException: If token is invalid or expired
    """
    try:
        return jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM],
        )
    except JWTError as e:
        raise _unauthorized("Invalid or expired token") from e


# ==========================================================================
# User Dependencies
# ==========================================================================

async def get_current_user(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """
    Resolve the bearer token to an active user.

    Raises:
        HTTPException: 401 if not authenticated or the user is unknown/inactive
    """
    if credentials is None:
        raise _unauthorized("Not authenticated")

    payload = decode_token(credentials.credentials)

    if payload.get("type") != "access":
        raise _unauthorized("Invalid token type")

    user_id_str = payload.get("sub")
    if user_id_str is None:
        raise _unauthorized("Invalid token payload")

    try:
        user_id = UUID(user_id_str)
    except ValueError as e:
        raise _unauthorized("Invalid user ID in token") from e

    user = await db.get(User, user_id)

    if user is None:
        raise _unauthorized("User not found")

    if not user.is_active:
        raise _unauthorized("User account is deactivated")

    return user


async def get_current_admin_user(
    current_user: Annotated[User, Depends(get_current_user)],
) -> User:
    """Current user, required to be an admin."""
    if current_user.role != UserRole.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return current_user


# ==========================================================================
# Workflow Service
# ==========================================================================

@lru_cache
def get_notifier() -> WorkflowNotifier:
    """Notifier built from settings, shared across requests."""
    return WorkflowNotifier()


async def get_workflow_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    notifier: Annotated[WorkflowNotifier, Depends(get_notifier)],
) -> WorkflowService:
    return WorkflowService(db, notifier=notifier)


# ==========================================================================
# Type Aliases for Dependency Injection
# ==========================================================================

CurrentUser = Annotated[User, Depends(get_current_user)]
CurrentAdminUser = Annotated[User, Depends(get_current_admin_user)]
DbSession = Annotated[AsyncSession, Depends(get_db)]
Workflows = Annotated[WorkflowService, Depends(get_workflow_service)]
