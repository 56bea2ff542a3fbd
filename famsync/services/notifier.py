"""Realtime notifier.

Domain-level events pushed to connected clients over the family channels.
Delivery is best-effort: nothing here raises into the caller, so a failed
push never rolls back or fails the HTTP operation that triggered it.

Wire frames are ``{"event": <name>, "data": <payload>}``. Every payload
carries ``type`` (the event name) and, when family-scoped, ``familyId``.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Any

from fastapi import WebSocket
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from famsync.database import async_session, utcnow
from famsync.models.family import FamilyMember, FamilyRole
from famsync.services.connection_manager import ConnectionManager, connection_manager
from famsync.services.socket_auth import ConnectionIdentity

logger = logging.getLogger(__name__)


@dataclass
class TaskReassignment:
    task_id: uuid.UUID
    task_name: str
    date: str
    original_member_id: uuid.UUID
    new_member_id: uuid.UUID
    admin_user_id: uuid.UUID
    admin_name: str
    task_icon: str | None = None
    original_member_name: str | None = None
    new_member_name: str | None = None


class RealtimeNotifier:
    def __init__(
        self,
        manager: ConnectionManager,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        self.manager = manager
        self._session_factory = session_factory

    # -- Delivery primitives --------------------------------------------------

    async def send_to_user(self, user_id: uuid.UUID, event: str, payload: dict) -> bool:
        try:
            return await self.manager.send_to_user(user_id, event, payload)
        except Exception:
            logger.exception("Failed to deliver %s to user %s", event, user_id)
            return False

    async def send_to_family(self, family_id: uuid.UUID, event: str, payload: dict) -> int:
        try:
            return await self.manager.send_to_family(family_id, event, payload)
        except Exception:
            logger.exception("Failed to broadcast %s to family %s", event, family_id)
            return 0

    async def send_to_family_admins(self, family_id: uuid.UUID, event: str, payload: dict) -> int:
        """Deliver to each connected admin of the family individually."""
        try:
            admin_ids = await self._get_admin_ids(family_id)
        except Exception:
            logger.exception("Failed to look up admins of family %s", family_id)
            return 0

        count = 0
        for admin_id in admin_ids:
            if await self.send_to_user(admin_id, event, payload):
                count += 1
        return count

    async def _get_admin_ids(self, family_id: uuid.UUID) -> list[uuid.UUID]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(FamilyMember.user_id).where(
                    FamilyMember.family_id == family_id,
                    FamilyMember.role == FamilyRole.ADMIN.value,
                )
            )
            return list(result.scalars().all())

    async def _get_family_ids(self, user_id: uuid.UUID) -> list[uuid.UUID]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(FamilyMember.family_id).where(FamilyMember.user_id == user_id)
            )
            return list(result.scalars().all())

    async def _is_member(self, user_id: uuid.UUID, family_id: uuid.UUID) -> bool:
        async with self._session_factory() as db:
            result = await db.execute(
                select(FamilyMember.id).where(
                    FamilyMember.user_id == user_id,
                    FamilyMember.family_id == family_id,
                )
            )
            return result.scalar_one_or_none() is not None

    # -- Channel membership ---------------------------------------------------

    async def subscribe_user_families(
        self, websocket: WebSocket, identity: ConnectionIdentity,
    ) -> list[uuid.UUID]:
        """Join a freshly authenticated connection to all of its families."""
        try:
            family_ids = await self._get_family_ids(identity.user_id)
        except Exception:
            logger.exception("Failed to load families for user %s", identity.user_id)
            return []
        for family_id in family_ids:
            await self.manager.join_family(websocket, family_id)
        return family_ids

    async def join_family_channel(
        self, websocket: WebSocket, identity: ConnectionIdentity, family_id: uuid.UUID,
    ) -> bool:
        """Subscribe on client request, only if the user is a member."""
        try:
            allowed = await self._is_member(identity.user_id, family_id)
        except Exception:
            logger.exception("Membership check failed for user %s", identity.user_id)
            return False
        if not allowed:
            logger.warning(
                "User %s tried to join family channel %s without membership",
                identity.user_id, family_id,
            )
            return False
        await self.manager.join_family(websocket, family_id)
        return True

    async def remove_user_from_family_channel(self, user_id: uuid.UUID, family_id: uuid.UUID) -> None:
        try:
            await self.manager.remove_user_from_family(user_id, family_id)
        except Exception:
            logger.exception("Failed to unsubscribe user %s from family %s", user_id, family_id)

    async def close_family_channel(self, family_id: uuid.UUID) -> None:
        try:
            await self.manager.close_family_channel(family_id)
        except Exception:
            logger.exception("Failed to close family channel %s", family_id)

    async def handle_client_event(
        self, websocket: WebSocket, identity: ConnectionIdentity, message: Any,
    ) -> None:
        """Dispatch one client frame. Unknown or malformed frames are ignored."""
        if not isinstance(message, dict):
            logger.debug("Ignoring non-object frame from user %s", identity.user_id)
            return

        event = message.get("event")
        data = message.get("data") or {}

        if event == "ping":
            await self.manager.send(websocket, "pong", {"timestamp": utcnow().isoformat()})
            return

        if event in ("join-family", "leave-family"):
            try:
                family_id = uuid.UUID(str(data.get("familyId")))
            except (AttributeError, ValueError):
                logger.debug("Ignoring %s without a valid familyId", event)
                return

            if event == "join-family":
                if await self.join_family_channel(websocket, identity, family_id):
                    await self.manager.send(websocket, "family-joined", {"familyId": str(family_id)})
                else:
                    await self.manager.send(
                        websocket, "error",
                        {"message": "Not a member of this family", "familyId": str(family_id)},
                    )
            else:
                await self.manager.leave_family(websocket, family_id)
                await self.manager.send(websocket, "family-left", {"familyId": str(family_id)})
            return

        logger.debug("Ignoring unknown client event %r from user %s", event, identity.user_id)

    # -- Domain events --------------------------------------------------------

    async def notify_join_request_created(self, family_id: uuid.UUID, join_request: dict) -> None:
        await self.send_to_family_admins(family_id, "join-request-created", {
            "type": "join-request-created",
            "familyId": str(family_id),
            "joinRequest": join_request,
        })

    async def notify_join_request_approved(
        self, user_id: uuid.UUID, family_id: uuid.UUID, family_name: str,
    ) -> None:
        await self.send_to_user(user_id, "join-request-approved", {
            "type": "join-request-approved",
            "familyId": str(family_id),
            "familyName": family_name,
            "message": f"Your request to join {family_name} has been approved",
        })
        # The new member's live connection follows the family from now on
        try:
            await self.manager.join_user_to_family(user_id, family_id)
        except Exception:
            logger.exception("Failed to subscribe user %s to family %s", user_id, family_id)
        await self.send_to_family(family_id, "member-joined", {
            "type": "member-joined",
            "familyId": str(family_id),
            "userId": str(user_id),
        })

    async def notify_join_request_rejected(
        self, user_id: uuid.UUID, family_id: uuid.UUID, family_name: str,
    ) -> None:
        await self.send_to_user(user_id, "join-request-rejected", {
            "type": "join-request-rejected",
            "familyId": str(family_id),
            "familyName": family_name,
            "message": f"Your request to join {family_name} has been rejected",
        })

    async def notify_family_updated(self, family_id: uuid.UUID, update_type: str, data: dict) -> None:
        await self.send_to_family(family_id, "family-updated", {
            "type": "family-updated",
            "familyId": str(family_id),
            "updateType": update_type,
            "data": data,
        })

    async def notify_member_role_changed(
        self, family_id: uuid.UUID, user_id: uuid.UUID, new_role: str,
    ) -> None:
        await self.send_to_family(family_id, "member-role-changed", {
            "type": "member-role-changed",
            "familyId": str(family_id),
            "userId": str(user_id),
            "newRole": new_role,
        })

    async def notify_task_reassigned(self, family_id: uuid.UUID, reassignment: TaskReassignment) -> None:
        """Tell both members about a reassignment, then refresh the family schedule."""
        task = {
            "taskId": str(reassignment.task_id),
            "taskName": reassignment.task_name,
            "taskIcon": reassignment.task_icon,
            "date": reassignment.date,
        }
        admin = {"id": str(reassignment.admin_user_id), "name": reassignment.admin_name}

        await self.send_to_user(reassignment.original_member_id, "task-unassigned", {
            "type": "task-unassigned",
            "familyId": str(family_id),
            **task,
            "reassignedTo": {
                "id": str(reassignment.new_member_id),
                "name": reassignment.new_member_name,
            },
            "reassignedBy": admin,
        })
        await self.send_to_user(reassignment.new_member_id, "task-assigned", {
            "type": "task-assigned",
            "familyId": str(family_id),
            **task,
            "reassignedFrom": {
                "id": str(reassignment.original_member_id),
                "name": reassignment.original_member_name,
            },
            "reassignedBy": admin,
        })
        await self.send_to_family(family_id, "task-schedule-updated", {
            "type": "task-schedule-updated",
            "familyId": str(family_id),
            "date": reassignment.date,
            "taskId": str(reassignment.task_id),
        })


# Singleton instance
notifier = RealtimeNotifier(connection_manager, async_session)
