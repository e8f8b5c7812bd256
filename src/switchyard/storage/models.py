from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

This module defines JSON helpers and id/time utilities shared by storage backends.
"""

import json
import time
import uuid
from typing import Any, TypeAlias, cast

JsonPrimitive: TypeAlias = str | int | float | bool | None
JsonValue: TypeAlias = JsonPrimitive | list["JsonValue"] | dict[str, "JsonValue"]
JsonObject: TypeAlias = dict[str, JsonValue]


def now_ms() -> int:
    return int(time.time() * 1000)


def new_id(prefix: str = "id") -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


def json_dumps(obj: JsonValue | dict[str, Any] | list[Any] | Any) -> str:
    return json.dumps(obj, ensure_ascii=False, separators=(",", ":"))


def json_loads(s: str) -> JsonValue:
    return cast(JsonValue, json.loads(s))


def merge_json(base: JsonObject, partial: dict[str, Any]) -> JsonObject:
    """Shallow-merge `partial` onto `base` (top-level keys replace)."""
    merged: JsonObject = dict(base)
    for key, value in partial.items():
        merged[str(key)] = value
    return merged
