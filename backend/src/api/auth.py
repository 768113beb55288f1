"""
Member Portal Workflow - Authentication API
===========================================

Member registration, login and the current-user lookup. Tokens are
stateless JWTs; see src.api.deps for how they are resolved.
"""

from datetime import datetime, timezone
from uuid import uuid4

import structlog
from fastapi import APIRouter, HTTPException, status
from passlib.hash import bcrypt
from sqlalchemy import select

from src.api.deps import CurrentUser, DbSession, create_access_token
from src.core.config import settings
from src.core.models import User, UserRole
from src.core.schemas import TokenResponse, UserCreate, UserLogin, UserResponse

router = APIRouter(prefix="/auth", tags=["Authentication"])

logger = structlog.get_logger()


def hash_password(password: str) -> str:
    return bcrypt.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return bcrypt.verify(password, password_hash)


@router.post(
    "/register",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register member",
    responses={
        201: {"description": "Member registered"},
        400: {"description": "Email already registered or invalid data"},
    },
)
async def register(
    data: UserCreate,
    db: DbSession,
) -> UserResponse:
    """
    Register a new portal member.

    Emails are stored lower-cased and must be unique.
    """
    email = data.email.lower()
    result = await db.execute(select(User).where(User.email == email))
    if result.scalar_one_or_none() is not None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email already registered",
        )

    user = User(
        id=uuid4(),
        email=email,
        password_hash=hash_password(data.password),
        name=data.name,
        role=UserRole.MEMBER,
        is_active=True,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)

    logger.info("user_registered", user_id=str(user.id))
    return UserResponse.model_validate(user)


@router.post(
    "/login",
    response_model=TokenResponse,
    summary="Login",
    responses={
        200: {"description": "Access token"},
        401: {"description": "Invalid credentials"},
    },
)
async def login(
    data: UserLogin,
    db: DbSession,
) -> TokenResponse:
    """
    Authenticate and return an access token.

    Unknown email, wrong password and inactive account all return the
    same 401.
    """
    result = await db.execute(
        select(User).where(User.email == data.email.lower())
    )
    user = result.scalar_one_or_none()

    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid credentials",
    )

    if user is None or not verify_password(data.password, user.password_hash):
        raise credentials_exception
    if not user.is_active:
        raise credentials_exception

    user.last_login = datetime.now(timezone.utc)
    await db.commit()

    logger.info("user_logged_in", user_id=str(user.id))
    return TokenResponse(
        access_token=create_access_token(user.id),
        token_type="bearer",
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )


@router.get(
    "/me",
    response_model=UserResponse,
    summary="Current user",
    responses={
        200: {"description": "Current user"},
        401: {"description": "Not authenticated"},
    },
)
async def get_me(current_user: CurrentUser) -> UserResponse:
    """Return the authenticated user."""
    return UserResponse.model_validate(current_user)
