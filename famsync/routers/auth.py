"""Authentication router.

Endpoints for registration, login and the current user.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from famsync.core.dependencies import get_current_user
from famsync.core.exceptions import ResourceAlreadyExists, Unauthorized
from famsync.core.rate_limit import LOGIN_LIMIT, REGISTER_LIMIT, limiter
from famsync.core.security import create_access_token, get_password_hash, verify_password
from famsync.database import get_db
from famsync.models.user import User
from famsync.schemas.auth import LoginRequest, RegisterRequest, TokenResponse
from famsync.schemas.common import ApiResponse
from famsync.schemas.user import UserResponse

router = APIRouter(prefix="/auth", tags=["Auth"])


def _token_for(user: User) -> TokenResponse:
    return TokenResponse(access_token=create_access_token(data={"sub": str(user.id)}))


@router.get("/me", response_model=ApiResponse[UserResponse])
async def get_me(current_user: User = Depends(get_current_user)):
    """Return the currently authenticated user."""
    return ApiResponse(data=UserResponse.model_validate(current_user))


@router.post("/login", response_model=ApiResponse[TokenResponse])
@limiter.limit(LOGIN_LIMIT)
async def login(
    request: Request,
    body: LoginRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Authenticate with email + password and return an access token."""
    result = await db.execute(select(User).where(User.email == body.email))
    user = result.scalar_one_or_none()

    # Virtual members have no password and can never log in
    if user is None or user.password_hash is None:
        raise Unauthorized("Invalid email or password")
    if not verify_password(body.password, user.password_hash):
        raise Unauthorized("Invalid email or password")

    return ApiResponse(data=_token_for(user))


@router.post(
    "/register",
    response_model=ApiResponse[TokenResponse],
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit(REGISTER_LIMIT)
async def register(
    request: Request,
    body: RegisterRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Register a new user account. Families are created separately."""
    existing = await db.execute(select(User).where(User.email == body.email))
    if existing.scalar_one_or_none() is not None:
        raise ResourceAlreadyExists("Email already registered")

    user = User(
        email=body.email,
        name=body.name.strip(),
        password_hash=get_password_hash(body.password),
    )
    db.add(user)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise ResourceAlreadyExists("Email already registered")
    await db.commit()

    return ApiResponse(message="Registration successful", data=_token_for(user))
