"""Chat hub — in-memory rooms of websocket clients, one per conversation.

Learn: A single coordinator task owns the room map. Everything else talks
to it through three queues, the same way the websocket handler would:

    register(client)    ─┐
    unregister(client)  ─┼─► coordinator ─► rooms[chat_id] = {client, ...}
    broadcast(envelope) ─┘          │
                                    └─► client.outbox.offer(message)

Membership changes are drained before every broadcast, so a client whose
register() was queued before a broadcast() always sees that broadcast.

Broadcast never blocks: each client has a small Outbox. If it is full the
client is a slow consumer; the hub closes its outbox and drops it from
the room. The outbox is closed exactly once, always by the coordinator
(on unregister or eviction). Rooms are deleted when their last client
leaves. Nothing is persisted; a message sent while nobody is connected
is simply gone.

Each Client runs two pumps, started by the websocket endpoint:
- read_pump: frames from the socket → broadcast(); on error → unregister
- write_pump: outbox → socket; ends when the outbox is closed
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import structlog
from starlette.websockets import WebSocketDisconnect

from findme.schemas.message import ChatMessage

logger = structlog.get_logger()


class OutboxClosedError(Exception):
    """Raised when a client's outbound buffer is closed a second time."""


class Connection(Protocol):
    """The subset of starlette's WebSocket the pumps rely on."""

    async def receive_json(self) -> Any: ...

    async def send_json(self, data: Any) -> None: ...

    async def close(self, code: int = 1000) -> None: ...


_CLOSED = object()


class Outbox:
    """Bounded single-producer (hub) single-consumer (write_pump) buffer.

    offer() never blocks. Iterating yields messages until the outbox is
    closed and whatever was buffered before the close has been drained.
    """

    def __init__(self, maxsize: int):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    def offer(self, message: ChatMessage) -> bool:
        if self.closed:
            return False
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            return False
        return True

    def close(self) -> None:
        if self.closed:
            raise OutboxClosedError("outbox already closed")
        self.closed = True
        # Wakes a reader parked on an empty queue. If the queue is full the
        # reader is not parked, and it stops once the backlog is drained.
        try:
            self._queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            pass

    def qsize(self) -> int:
        return self._queue.qsize()

    def __aiter__(self):
        return self

    async def __anext__(self) -> ChatMessage:
        if self.closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item


@dataclass
class BroadcastEnvelope:
    chat_id: str
    message: ChatMessage


@dataclass(eq=False)
class Client:
    """One websocket bound to one conversation.

    Holds only the chat_id of its room, never the room itself; membership
    lives in the hub. eq=False keeps identity hashing, so two clients of
    the same user in the same chat are distinct room members.
    """

    connection: Connection
    user_id: str
    chat_id: str
    outbox: Outbox

    async def read_pump(self, hub: "ChatHub") -> None:
        """Forward inbound frames to the room until the socket fails."""
        log = logger.bind(user_id=self.user_id, chat_id=self.chat_id)
        try:
            while True:
                frame = await self.connection.receive_json()
                message = ChatMessage.from_frame(frame, user_id=self.user_id)
                await hub.broadcast(BroadcastEnvelope(self.chat_id, message))
        except WebSocketDisconnect:
            log.debug("chat.client_disconnected")
        except (ValueError, KeyError, RuntimeError) as e:
            # Malformed JSON, binary or invalid frame, or socket already closed
            log.info("chat.read_failed", error=str(e))
        finally:
            await hub.unregister(self)
            await self.close_connection()

    async def write_pump(self) -> None:
        """Write outbox messages to the socket until the outbox closes."""
        try:
            async for message in self.outbox:
                await self.connection.send_json(message.to_frame())
        except (WebSocketDisconnect, RuntimeError, OSError) as e:
            logger.info(
                "chat.write_failed",
                user_id=self.user_id,
                chat_id=self.chat_id,
                error=str(e),
            )
        finally:
            await self.close_connection()

    async def close_connection(self) -> None:
        try:
            await self.connection.close()
        except (WebSocketDisconnect, RuntimeError):
            # The other pump (or the peer) closed it first
            pass


@dataclass
class ChatStats:
    registered: int = 0
    unregistered: int = 0
    delivered: int = 0
    evicted: int = 0


class ChatHub:
    """Single-coordinator router of broadcasts into per-chat rooms."""

    def __init__(self, broadcast_buffer: int = 1000):
        self.rooms: dict[str, set[Client]] = {}
        self.stats = ChatStats()
        self._register: asyncio.Queue[Client] = asyncio.Queue()
        self._unregister: asyncio.Queue[Client] = asyncio.Queue()
        self._broadcast: asyncio.Queue[BroadcastEnvelope] = asyncio.Queue(
            maxsize=broadcast_buffer
        )
        self._wakeup = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    # ─── Inbound channels ─────────────────────────────────

    async def register(self, client: Client) -> None:
        await self._register.put(client)
        self._wakeup.set()

    async def unregister(self, client: Client) -> None:
        await self._unregister.put(client)
        self._wakeup.set()

    async def broadcast(self, envelope: BroadcastEnvelope) -> None:
        """Queue a message for a room. Blocks only if the intake is full."""
        await self._broadcast.put(envelope)
        self._wakeup.set()

    # ─── Lifecycle ────────────────────────────────────────

    def run(self) -> None:
        self._task = asyncio.create_task(self._coordinate(), name="chat-hub")
        logger.info("chat_hub.started", broadcast_buffer=self._broadcast.maxsize)

    async def stop(self) -> None:
        """Stop the coordinator and close every remaining client's outbox."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        # The coordinator is gone, so the room map is ours now
        for room in self.rooms.values():
            for client in room:
                client.outbox.close()
        self.rooms.clear()
        logger.info("chat_hub.stopped")

    def snapshot(self) -> dict:
        return {
            "rooms": len(self.rooms),
            "clients": sum(len(room) for room in self.rooms.values()),
            "registered": self.stats.registered,
            "unregistered": self.stats.unregistered,
            "delivered": self.stats.delivered,
            "evicted": self.stats.evicted,
        }

    # ─── Coordinator ──────────────────────────────────────

    async def _coordinate(self) -> None:
        while True:
            await self._wakeup.wait()
            self._wakeup.clear()

            self._apply_membership()
            while not self._broadcast.empty():
                self._deliver(self._broadcast.get_nowait())
                self._apply_membership()
                # Let client writers drain between broadcasts
                await asyncio.sleep(0)

    def _apply_membership(self) -> None:
        while not self._register.empty():
            self._add(self._register.get_nowait())
        while not self._unregister.empty():
            self._remove(self._unregister.get_nowait())

    def _add(self, client: Client) -> None:
        room = self.rooms.setdefault(client.chat_id, set())
        if client not in room:
            room.add(client)
            self.stats.registered += 1
            logger.debug(
                "chat.client_registered",
                user_id=client.user_id,
                chat_id=client.chat_id,
                room_size=len(room),
            )

    def _remove(self, client: Client) -> None:
        room = self.rooms.get(client.chat_id)
        if not room or client not in room:
            # Already evicted; its outbox is closed
            return
        room.discard(client)
        client.outbox.close()
        self.stats.unregistered += 1
        if not room:
            del self.rooms[client.chat_id]
        logger.debug(
            "chat.client_unregistered",
            user_id=client.user_id,
            chat_id=client.chat_id,
        )

    def _deliver(self, envelope: BroadcastEnvelope) -> None:
        room = self.rooms.get(envelope.chat_id)
        if not room:
            return

        for client in list(room):
            if client.outbox.offer(envelope.message):
                self.stats.delivered += 1
                continue
            room.discard(client)
            client.outbox.close()
            self.stats.evicted += 1
            logger.warning(
                "chat.client_evicted",
                user_id=client.user_id,
                chat_id=client.chat_id,
                buffered=client.outbox.qsize(),
            )

        if not room:
            del self.rooms[envelope.chat_id]
