"""Realtime WebSocket router.

Protocol:
1. Client connects to ``/realtime/ws?token=<access token>``
2. Server authenticates before anything else; failure sends ``auth-error``
   and closes with code 4001
3. On success the connection joins every family channel of the user and
   receives ``connected``
4. Client frames: ``join-family``, ``leave-family``, ``ping``
5. Server pushes domain events as ``{"event": ..., "data": ...}``
"""

import json
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from famsync.core.dependencies import get_connection_authenticator, get_notifier
from famsync.core.exceptions import Unauthorized
from famsync.services.notifier import RealtimeNotifier
from famsync.services.socket_auth import ConnectionAuthenticator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/realtime", tags=["Realtime"])

AUTH_FAILED_CLOSE_CODE = 4001


async def _reject(websocket: WebSocket, message: str) -> None:
    await websocket.send_json({"event": "auth-error", "data": {"message": message}})
    await websocket.close(code=AUTH_FAILED_CLOSE_CODE)


@router.websocket("/ws")
async def realtime_websocket(
    websocket: WebSocket,
    token: str | None = None,
    notifier: RealtimeNotifier = Depends(get_notifier),
    authenticator: ConnectionAuthenticator = Depends(get_connection_authenticator),
):
    await websocket.accept()

    try:
        identity = await authenticator.authenticate(token)
    except Unauthorized as exc:
        logger.info("Realtime connection rejected: %s", exc.message)
        await _reject(websocket, exc.message)
        return
    except Exception:
        logger.exception("Realtime authentication failed")
        await _reject(websocket, "Authentication failed")
        return

    manager = notifier.manager
    await manager.connect(identity, websocket)

    try:
        family_ids = await notifier.subscribe_user_families(websocket, identity)
        await websocket.send_json({
            "event": "connected",
            "data": {
                "userId": str(identity.user_id),
                "familyIds": [str(family_id) for family_id in family_ids],
            },
        })

        # Message loop
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(frame.get("code", 1000))
            text = frame.get("text")
            if text is None:
                logger.debug("Ignoring binary frame from user %s", identity.user_id)
                continue
            if text == "ping":
                await notifier.handle_client_event(websocket, identity, {"event": "ping"})
                continue
            try:
                message = json.loads(text)
            except ValueError:
                logger.debug("Ignoring malformed frame from user %s", identity.user_id)
                continue
            await notifier.handle_client_event(websocket, identity, message)

    except WebSocketDisconnect:
        pass
    except Exception:
        logger.exception("Realtime connection error for user %s", identity.user_id)
        try:
            await websocket.close(code=1011)
        except RuntimeError:
            pass
    finally:
        await manager.disconnect(websocket)
