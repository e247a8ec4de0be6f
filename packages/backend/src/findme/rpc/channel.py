"""Lazily-opened gRPC channel shared by the service clients.

Learn: grpc.aio channels connect on first use, so building one is cheap.
We still defer construction until the first call so that a hub can be
created (and its workers started) before the ML services are reachable.
reconnect() throws the channel away; the next call opens a fresh one.
"""

from typing import Any, Optional

import grpc
import structlog

logger = structlog.get_logger()


def is_unavailable(error: BaseException) -> bool:
    """True when an RPC failed because the transport is down."""
    code = getattr(error, "code", None)
    return (
        isinstance(error, grpc.RpcError)
        and callable(code)
        and code() == grpc.StatusCode.UNAVAILABLE
    )


class ServiceChannel:
    """One insecure grpc.aio channel plus a cache of unary-unary callables."""

    def __init__(self, address: str, timeout: float = 30.0):
        self.address = address
        self.timeout = timeout
        self._channel: Optional[grpc.aio.Channel] = None
        self._callables: dict[str, Any] = {}

    async def call(self, path: str, request, response_cls):
        """Invoke a unary method, bounded by the per-call deadline."""
        if self._channel is None:
            self._channel = grpc.aio.insecure_channel(self.address)
            self._callables = {}

        method = self._callables.get(path)
        if method is None:
            method = self._channel.unary_unary(
                path,
                request_serializer=type(request).SerializeToString,
                response_deserializer=response_cls.FromString,
            )
            self._callables[path] = method

        return await method(request, timeout=self.timeout)

    async def reconnect(self) -> None:
        """Drop the current channel; the next call dials again."""
        logger.info("rpc.reconnect", address=self.address)
        await self.close()

    async def close(self) -> None:
        if self._channel is not None:
            channel, self._channel = self._channel, None
            self._callables = {}
            await channel.close()
