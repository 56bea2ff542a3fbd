from typing import Annotated
from uuid import UUID

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from famsync.core.exceptions import Unauthorized
from famsync.core.security import decode_token
from famsync.database import async_session, get_db
from famsync.models.user import User
from famsync.services.family_service import FamilyService
from famsync.services.notifier import RealtimeNotifier, notifier
from famsync.services.socket_auth import ConnectionAuthenticator

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login")


async def get_current_user(
    token: Annotated[str, Depends(oauth2_scheme)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """Extract and validate the JWT from the Authorization header.

    Returns the User ORM instance for the authenticated user.

    Raises:
        Unauthorized: If the token is invalid, expired, not an access
            token, or the user does not exist.
    """
    try:
        payload = decode_token(token)
        subject: str | None = payload.get("sub")
        token_type: str | None = payload.get("type")
        if subject is None or token_type != "access":
            raise Unauthorized()
        user_id = UUID(subject)
    except (JWTError, ValueError):
        raise Unauthorized()

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if user is None:
        raise Unauthorized()

    return user


def get_notifier() -> RealtimeNotifier:
    return notifier


def get_connection_authenticator() -> ConnectionAuthenticator:
    return ConnectionAuthenticator(async_session)


async def get_family_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    realtime: Annotated[RealtimeNotifier, Depends(get_notifier)],
) -> FamilyService:
    return FamilyService(db, realtime)
