"""WebSocket Connection Manager.

Process-local registry of live realtime connections: one entry per user id
(the newest connection wins) plus one broadcast channel per family.
State lives only in memory and is rebuilt as clients reconnect.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass

from fastapi import WebSocket

from famsync.services.socket_auth import ConnectionIdentity

logger = logging.getLogger(__name__)


@dataclass
class ConnectedUser:
    websocket: WebSocket
    email: str | None


class ConnectionManager:
    """Tracks connected users and their family channel subscriptions."""

    def __init__(self) -> None:
        self._users: dict[uuid.UUID, ConnectedUser] = {}
        self._identities: dict[WebSocket, ConnectionIdentity] = {}
        self._channels: dict[uuid.UUID, set[WebSocket]] = {}  # family_id → WebSockets
        self._socket_channels: dict[WebSocket, set[uuid.UUID]] = {}  # WebSocket → family_ids
        self._lock = asyncio.Lock()

    async def connect(self, identity: ConnectionIdentity, websocket: WebSocket) -> None:
        """Register an authenticated connection.

        A second connection for the same user replaces the first in the user
        registry; the older socket keeps its channel subscriptions until it
        disconnects.
        """
        async with self._lock:
            previous = self._users.get(identity.user_id)
            self._users[identity.user_id] = ConnectedUser(websocket=websocket, email=identity.email)
            self._identities[websocket] = identity
            self._socket_channels.setdefault(websocket, set())
        if previous is not None and previous.websocket is not websocket:
            logger.info("User %s reconnected, newest connection receives direct events", identity.user_id)
        logger.info("User %s connected", identity.email or identity.user_id)

    async def disconnect(self, websocket: WebSocket) -> None:
        """Drop a connection from the user registry and all channels."""
        async with self._lock:
            identity = self._identities.pop(websocket, None)
            for family_id in self._socket_channels.pop(websocket, set()):
                self._discard_from_channel(family_id, websocket)
            if identity is not None:
                current = self._users.get(identity.user_id)
                if current is not None and current.websocket is websocket:
                    del self._users[identity.user_id]
        if identity is not None:
            logger.info("User %s disconnected", identity.email or identity.user_id)

    def _discard_from_channel(self, family_id: uuid.UUID, websocket: WebSocket) -> None:
        sockets = self._channels.get(family_id)
        if sockets is None:
            return
        sockets.discard(websocket)
        if not sockets:
            del self._channels[family_id]

    # -- Channels -------------------------------------------------------------

    async def join_family(self, websocket: WebSocket, family_id: uuid.UUID) -> None:
        async with self._lock:
            if websocket not in self._identities:
                return
            self._channels.setdefault(family_id, set()).add(websocket)
            self._socket_channels[websocket].add(family_id)
        logger.info("Connection joined family channel %s", family_id)

    async def leave_family(self, websocket: WebSocket, family_id: uuid.UUID) -> None:
        async with self._lock:
            self._discard_from_channel(family_id, websocket)
            if websocket in self._socket_channels:
                self._socket_channels[websocket].discard(family_id)
        logger.info("Connection left family channel %s", family_id)

    async def join_user_to_family(self, user_id: uuid.UUID, family_id: uuid.UUID) -> bool:
        """Subscribe the user's current connection to a family channel."""
        connected = self._users.get(user_id)
        if connected is None:
            return False
        await self.join_family(connected.websocket, family_id)
        return True

    async def remove_user_from_family(self, user_id: uuid.UUID, family_id: uuid.UUID) -> int:
        """Unsubscribe every connection of a user from a family channel."""
        async with self._lock:
            sockets = [
                ws for ws in self._channels.get(family_id, set())
                if self._identities.get(ws) is not None
                and self._identities[ws].user_id == user_id
            ]
            for ws in sockets:
                self._discard_from_channel(family_id, ws)
                self._socket_channels[ws].discard(family_id)
        return len(sockets)

    async def close_family_channel(self, family_id: uuid.UUID) -> None:
        async with self._lock:
            for ws in self._channels.pop(family_id, set()):
                if ws in self._socket_channels:
                    self._socket_channels[ws].discard(family_id)

    # -- Delivery -------------------------------------------------------------

    async def send(self, websocket: WebSocket, event: str, payload: dict) -> bool:
        """Send one event frame. Stale connections are dropped on failure."""
        try:
            await websocket.send_json({"event": event, "data": payload})
            return True
        except Exception:
            logger.warning("Failed to send %s, dropping connection", event)
            await self.disconnect(websocket)
            return False

    async def send_to_user(self, user_id: uuid.UUID, event: str, payload: dict) -> bool:
        """Deliver to the user's live connection. Offline users are skipped."""
        connected = self._users.get(user_id)
        if connected is None:
            return False
        return await self.send(connected.websocket, event, payload)

    async def send_to_family(self, family_id: uuid.UUID, event: str, payload: dict) -> int:
        """Broadcast to every connection in a family channel.

        Returns the count of connections successfully notified.
        """
        sockets = self._channels.get(family_id, set()).copy()
        count = 0
        for ws in sockets:
            if await self.send(ws, event, payload):
                count += 1
        logger.debug("Sent %s to family channel %s (%d clients)", event, family_id, count)
        return count

    # -- Introspection --------------------------------------------------------

    async def is_user_connected(self, user_id: uuid.UUID) -> bool:
        return user_id in self._users

    async def get_connected_users_count(self) -> int:
        return len(self._users)

    async def get_family_channel_size(self, family_id: uuid.UUID) -> int:
        return len(self._channels.get(family_id, set()))

    async def get_channels(self, websocket: WebSocket) -> set[uuid.UUID]:
        return set(self._socket_channels.get(websocket, set()))


# Singleton instance
connection_manager = ConnectionManager()
