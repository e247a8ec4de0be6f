"""WebSocket endpoint — joins a client to its conversation's chat room.

Learn: Each client connects to /ws/chat?id=<chat_id>&token=<JWT>. The
handler:
1. Authenticates via the JWT query param (required outside development;
   in development ?user_id= is accepted instead)
2. Validates the chat id (a UUID)
3. Registers a Client with the hub, then accepts the socket
4. Runs the client's read and write pumps until both have finished

Registering before accept() means any broadcast the coordinator handles
after this point is buffered in the client's outbox, even if the socket
handshake is still completing.
"""

import asyncio
import uuid
from typing import Optional

import structlog
from fastapi import APIRouter, WebSocket

from findme.auth.jwt import TokenError, verify_token
from findme.config import settings
from findme.realtime.chat_hub import ChatHub, Client, Outbox

logger = structlog.get_logger()
router = APIRouter()


def _resolve_user_id(websocket: WebSocket) -> Optional[str]:
    token = websocket.query_params.get("token")
    if token:
        try:
            return verify_token(token)["sub"]
        except TokenError as e:
            logger.info("chat.auth_failed", error=str(e))
            return None

    if settings.environment == "development":
        return websocket.query_params.get("user_id") or None
    return None


def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


@router.websocket("/ws/chat")
async def chat_websocket(websocket: WebSocket):
    """WebSocket endpoint for real-time chat within one conversation."""
    # ── Authentication ──────────────────────────────────────
    user_id = _resolve_user_id(websocket)
    if user_id is None:
        await websocket.close(code=4001, reason="Authentication required")
        return

    chat_id = websocket.query_params.get("id", "")
    if not _is_uuid(chat_id):
        await websocket.close(code=4400, reason="Invalid chat id")
        return

    # ── Join the room ───────────────────────────────────────
    hub: ChatHub = websocket.app.state.chat_hub
    client = Client(
        connection=websocket,
        user_id=user_id,
        chat_id=chat_id,
        outbox=Outbox(settings.chat.client_buffer),
    )
    await hub.register(client)
    try:
        await websocket.accept()
    except Exception as e:
        # Peer went away mid-handshake; no pump will ever unregister it
        logger.info("chat.accept_failed", user_id=user_id, chat_id=chat_id, error=str(e))
        await hub.unregister(client)
        raise
    logger.info("chat.client_connected", user_id=user_id, chat_id=chat_id)

    # read_pump unregisters on exit, which closes the outbox and ends
    # write_pump; a failed write closes the socket, which ends read_pump.
    await asyncio.gather(client.read_pump(hub), client.write_pump())
