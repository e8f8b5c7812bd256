"""Key-value store implementations and base contract."""

from .base import KeyValueStore
from .in_memory import InMemoryKeyValueStore


def __getattr__(name: str):
    if name == "RedisKeyValueStore":
        from .redis import RedisKeyValueStore

        return RedisKeyValueStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "KeyValueStore",
    "InMemoryKeyValueStore",
    "RedisKeyValueStore",
]
