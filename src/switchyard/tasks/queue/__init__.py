"""Queue client implementations, base contract and per-name registry."""

from .base import QueueClient
from .factory import create_queue_client_from_env
from .in_memory import InMemoryQueueClient
from .registry import QueueClientFactory, QueueRegistry


def __getattr__(name: str):
    if name == "RedisQueueClient":
        from .redis import RedisQueueClient

        return RedisQueueClient
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "QueueClient",
    "QueueClientFactory",
    "QueueRegistry",
    "InMemoryQueueClient",
    "RedisQueueClient",
    "create_queue_client_from_env",
]
