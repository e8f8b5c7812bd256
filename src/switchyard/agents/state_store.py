"""
Key-value persistence for `AgentState` records.
"""

from __future__ import annotations

import dataclasses

from ..storage.kv import KeyValueStore
from ..storage.models import now_ms
from .errors import AgentStateCorruptionError, AgentStateNotFoundError
from .state import AgentState
from .versioning import migrate_agent_state_record

AGENT_STATE_KEY_PREFIX = "switchyard:agent-state:"


def agent_state_key(state_id: str) -> str:
    return f"{AGENT_STATE_KEY_PREFIX}{state_id}"


class AgentStateStore:
    """
    Stores agent states as JSON in a key-value store with a per-key TTL.

    Every `save` refreshes the TTL, so a state expires `ttl_s` seconds after
    its last write.
    """

    def __init__(self, kv: KeyValueStore, *, ttl_s: float) -> None:
        self.kv = kv
        self.ttl_s = ttl_s

    async def save(self, state: AgentState) -> AgentState:
        stamped = dataclasses.replace(state, updated_at_ms=now_ms())
        await self.kv.set(agent_state_key(stamped.id), stamped.to_dict(), ttl_s=self.ttl_s)
        return stamped

    async def load(self, state_id: str) -> AgentState | None:
        """
        Load and migrate one state.

        Raises:
            AgentStateCorruptionError: If the stored record cannot be decoded.
        """
        raw = await self.kv.get(agent_state_key(state_id))
        if raw is None:
            return None
        if not isinstance(raw, dict):
            raise AgentStateCorruptionError(f"Agent state '{state_id}' is not an object")
        try:
            migrated = migrate_agent_state_record(raw).migrated
        except ValueError as e:
            raise AgentStateCorruptionError(str(e)) from e
        return AgentState.from_dict(migrated)

    async def require(self, state_id: str) -> AgentState:
        state = await self.load(state_id)
        if state is None:
            raise AgentStateNotFoundError(f"Agent state not found: {state_id}")
        return state

    async def delete(self, state_id: str) -> bool:
        return await self.kv.delete(agent_state_key(state_id))
