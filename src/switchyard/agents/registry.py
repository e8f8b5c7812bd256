"""
Manifest registry keyed by `id:version`.
"""

from __future__ import annotations

from .errors import AgentConfigurationError, ManifestNotFoundError
from .hooks import AgentHooks
from .manifest import AgentManifest, SubAgentRef, manifest_key


class ManifestRegistry:
    """
    Resolves manifest identifiers to immutable manifests and their hooks.

    The registry is caller-owned; build one at startup, register every
    manifest, then call `validate_references()` before running agents.
    """

    def __init__(self) -> None:
        self._manifests: dict[str, AgentManifest] = {}
        self._hooks: dict[str, AgentHooks] = {}

    def register(self, manifest: AgentManifest, *, hooks: AgentHooks | None = None) -> None:
        """
        Register a manifest and optional lifecycle hooks.

        Raises:
            AgentConfigurationError: If the `id:version` key is already taken.
        """
        if manifest.key in self._manifests:
            raise AgentConfigurationError(f"Manifest already registered: {manifest.key}")
        self._manifests[manifest.key] = manifest
        if hooks is not None:
            self._hooks[manifest.key] = hooks

    def get(self, manifest_id: str, version: str) -> AgentManifest:
        key = manifest_key(manifest_id, version)
        try:
            return self._manifests[key]
        except KeyError as e:
            raise ManifestNotFoundError(f"Manifest not found: {key}") from e

    def resolve(self, ref: SubAgentRef) -> AgentManifest:
        return self.get(ref.manifest_id, ref.manifest_version)

    def has(self, manifest_id: str, version: str) -> bool:
        return manifest_key(manifest_id, version) in self._manifests

    def list(self) -> list[AgentManifest]:
        return list(self._manifests.values())

    def hooks_for(self, manifest: AgentManifest) -> AgentHooks:
        """Return registered hooks, or an empty registry when none were given."""
        return self._hooks.get(manifest.key) or AgentHooks()

    def validate_references(self) -> None:
        """
        Check that the sub-agent graph is resolvable and acyclic.

        Raises:
            ManifestNotFoundError: If a sub-agent reference does not resolve.
            AgentConfigurationError: If sub-agent references form a cycle.
        """
        for manifest in self._manifests.values():
            for ref in manifest.sub_agents:
                if ref.key not in self._manifests:
                    raise ManifestNotFoundError(
                        f"Manifest '{manifest.key}' references unknown sub-agent '{ref.key}'"
                    )

        visited: set[str] = set()
        on_stack: list[str] = []

        def _visit(key: str) -> None:
            if key in on_stack:
                cycle = on_stack[on_stack.index(key):] + [key]
                raise AgentConfigurationError(
                    f"Circular sub-agent reference: {' -> '.join(cycle)}"
                )
            if key in visited:
                return
            on_stack.append(key)
            for ref in self._manifests[key].sub_agents:
                _visit(ref.key)
            on_stack.pop()
            visited.add(key)

        for key in self._manifests:
            _visit(key)
