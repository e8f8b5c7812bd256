"""
Caller-owned cache of queue clients keyed by queue name.
"""

from __future__ import annotations

import asyncio
from typing import Callable

from .base import QueueClient

QueueClientFactory = Callable[[str], QueueClient]


class QueueRegistry:
    """
    Lazily creates, sets up and caches one `QueueClient` per queue name.

    The registry has an explicit lifecycle: whoever creates it closes it,
    directly or through `async with`. Closing closes every cached client.
    """

    def __init__(self, factory: QueueClientFactory | None = None) -> None:
        self._factory = factory or _default_factory
        self._clients: dict[str, QueueClient] = {}
        self._lock = asyncio.Lock()
        self._closed = False

    async def get(self, name: str) -> QueueClient:
        """
        Return the client for `name`, creating it on first use.

        Raises:
            RuntimeError: If the registry was closed.
        """
        if self._closed:
            raise RuntimeError("QueueRegistry is closed")
        client = self._clients.get(name)
        if client is not None:
            return client
        async with self._lock:
            client = self._clients.get(name)
            if client is None:
                client = self._factory(name)
                await client.setup()
                self._clients[name] = client
            return client

    def names(self) -> list[str]:
        return list(self._clients)

    async def close(self) -> None:
        clients = list(self._clients.values())
        self._clients.clear()
        self._closed = True
        for client in clients:
            await client.close()

    async def __aenter__(self) -> "QueueRegistry":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


def _default_factory(name: str) -> QueueClient:
    from .factory import create_queue_client_from_env

    return create_queue_client_from_env(name)
