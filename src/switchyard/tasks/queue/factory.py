from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

This module provides a factory for queue clients based on environment variables.
"""

import os

from ...storage.factory import _redis_url_from_env
from .base import QueueClient
from .in_memory import InMemoryQueueClient


def create_queue_client_from_env(name: str) -> QueueClient:
    """Create a queue client for `name` based on `SWITCHYARD_QUEUE_BACKEND`."""
    backend = os.getenv("SWITCHYARD_QUEUE_BACKEND", "memory").strip().lower()

    if backend in ("mem", "memory", "inmemory", "in_memory"):
        return InMemoryQueueClient(name)

    if backend in ("redis",):
        from .redis import RedisQueueClient

        prefix = os.getenv("SWITCHYARD_QUEUE_PREFIX", "switchyard:queue")
        return RedisQueueClient(name, url=_redis_url_from_env(), prefix=prefix)

    raise ValueError(f"Unknown SWITCHYARD_QUEUE_BACKEND: {backend}")
