"""Realtime connection authentication.

A connection presents its access token in the handshake (``?token=``).
The token is verified and the user resolved before the connection may
join any family channel. The resulting identity is fixed for the
lifetime of the connection.
"""

import logging
import uuid
from dataclasses import dataclass

from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from famsync.core.exceptions import Unauthorized
from famsync.core.security import decode_token
from famsync.models.user import User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConnectionIdentity:
    user_id: uuid.UUID
    email: str | None


class ConnectionAuthenticator:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def authenticate(self, token: str | None) -> ConnectionIdentity:
        """Resolve a handshake token to a connection identity.

        Raises:
            Unauthorized: If the token is missing, invalid, expired, not an
                access token, or the user no longer exists.
        """
        if not token:
            raise Unauthorized("No authentication token provided")

        try:
            payload = decode_token(token)
        except JWTError:
            logger.info("Realtime connection rejected: invalid token")
            raise Unauthorized("Invalid authentication token")

        subject = payload.get("sub")
        if subject is None or payload.get("type") != "access":
            raise Unauthorized("Invalid authentication token")

        try:
            user_id = uuid.UUID(subject)
        except ValueError:
            raise Unauthorized("Invalid authentication token")

        async with self._session_factory() as db:
            result = await db.execute(select(User).where(User.id == user_id))
            user = result.scalar_one_or_none()

        if user is None:
            logger.info("Realtime connection rejected: user %s not found", user_id)
            raise Unauthorized("User not found")

        return ConnectionIdentity(user_id=user.id, email=user.email)
