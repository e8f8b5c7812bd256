"""
Suspension model for human-in-the-loop pauses.

When an agent asks for tool approval it suspends. If that agent is a
sub-agent, each ancestor prepends its own entry to the stack as the
suspension bubbles upward, so the root caller always sees one flattened
`SuspensionStack`:

    entries: [root (pending call -> mid), mid (pending call -> leaf)]
    leaf:    the agent that actually asked for approval
    leaf_suspensions: the approval requests of the leaf's step
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Mapping, Sequence

from ..llms.types import JSONObject
from .errors import AgentStateCorruptionError, SuspensionValidationError


@dataclass(frozen=True, slots=True)
class ToolApprovalSuspension:
    """
    Pending approval for one tool call.

    Attributes:
        approval_id: Identifier the approver must answer.
        tool_call_id: Tool call awaiting approval.
        tool_name: Name of the tool to run.
        tool_args: Arguments proposed by the model.
        description: Optional human-readable explanation.
    """

    approval_id: str
    tool_call_id: str
    tool_name: str
    tool_args: JSONObject = field(default_factory=dict)
    description: str | None = None
    type: Literal["tool-approval"] = "tool-approval"

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "approval_id": self.approval_id,
            "tool_call_id": self.tool_call_id,
            "tool_name": self.tool_name,
            "tool_args": dict(self.tool_args),
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, value: Mapping[str, Any]) -> "ToolApprovalSuspension":
        if value.get("type") != "tool-approval":
            raise AgentStateCorruptionError(
                f"Unsupported suspension type: {value.get('type')!r}"
            )
        return cls(
            approval_id=str(value["approval_id"]),
            tool_call_id=str(value["tool_call_id"]),
            tool_name=str(value["tool_name"]),
            tool_args=dict(value.get("tool_args") or {}),
            description=value.get("description"),
        )


Suspension = ToolApprovalSuspension


@dataclass(frozen=True, slots=True)
class SuspensionStackEntry:
    """
    One agent in the suspension chain.

    `pending_tool_call_id` is the tool call in this agent that waits for its
    child's result. It is `None` only for the leaf.
    """

    manifest_id: str
    manifest_version: str
    state_id: str
    pending_tool_call_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "manifest_id": self.manifest_id,
            "manifest_version": self.manifest_version,
            "state_id": self.state_id,
            "pending_tool_call_id": self.pending_tool_call_id,
        }

    @classmethod
    def from_dict(cls, value: Mapping[str, Any]) -> "SuspensionStackEntry":
        return cls(
            manifest_id=str(value["manifest_id"]),
            manifest_version=str(value["manifest_version"]),
            state_id=str(value["state_id"]),
            pending_tool_call_id=value.get("pending_tool_call_id"),
        )


@dataclass(frozen=True, slots=True)
class SuspensionStack:
    """
    Flattened chain from the root agent down to the suspended leaf.

    `len(stack)` equals the sub-agent call depth at suspension time: a leaf
    suspending on its own has an empty `entries` tuple.
    """

    entries: tuple[SuspensionStackEntry, ...]
    leaf: SuspensionStackEntry
    leaf_suspensions: tuple[ToolApprovalSuspension, ...]

    def __post_init__(self) -> None:
        if not self.leaf_suspensions:
            raise ValueError("SuspensionStack requires at least one leaf suspension")
        if self.leaf.pending_tool_call_id is not None:
            raise ValueError("Leaf entry cannot have a pending tool call")
        if any(entry.pending_tool_call_id is None for entry in self.entries):
            raise ValueError("Ancestor entries must carry a pending tool call id")

    @classmethod
    def for_leaf(
        cls,
        leaf: SuspensionStackEntry,
        suspensions: Sequence[ToolApprovalSuspension],
    ) -> "SuspensionStack":
        return cls(entries=(), leaf=leaf, leaf_suspensions=tuple(suspensions))

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def depth(self) -> int:
        return len(self.entries)

    @property
    def leaf_suspension(self) -> ToolApprovalSuspension:
        return self.leaf_suspensions[0]

    @property
    def root(self) -> SuspensionStackEntry:
        return self.entries[0] if self.entries else self.leaf

    def approval_ids(self) -> list[str]:
        return [s.approval_id for s in self.leaf_suspensions]

    def prepend(self, entry: SuspensionStackEntry) -> "SuspensionStack":
        """Return a new stack with a parent entry placed in front."""
        if entry.pending_tool_call_id is None:
            raise ValueError("Prepended parent entry must carry a pending tool call id")
        return SuspensionStack(
            entries=(entry, *self.entries),
            leaf=self.leaf,
            leaf_suspensions=self.leaf_suspensions,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "entries": [e.to_dict() for e in self.entries],
            "leaf": self.leaf.to_dict(),
            "leaf_suspensions": [s.to_dict() for s in self.leaf_suspensions],
        }

    @classmethod
    def from_dict(cls, value: Mapping[str, Any]) -> "SuspensionStack":
        try:
            return cls(
                entries=tuple(SuspensionStackEntry.from_dict(e) for e in value["entries"]),
                leaf=SuspensionStackEntry.from_dict(value["leaf"]),
                leaf_suspensions=tuple(
                    ToolApprovalSuspension.from_dict(s) for s in value["leaf_suspensions"]
                ),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise AgentStateCorruptionError(f"Invalid suspension stack: {e}") from e


@dataclass(frozen=True, slots=True)
class ApprovalResolution:
    """Human decision for one pending approval."""

    approval_id: str
    approved: bool
    reason: str | None = None


def validate_resolutions(
    stack: SuspensionStack,
    resolutions: Sequence[ApprovalResolution],
) -> dict[str, ApprovalResolution]:
    """
    Check resolutions against the leaf's pending approvals.

    Args:
        stack: Suspension stack of the state being resumed.
        resolutions: Decisions supplied by the caller.

    Returns:
        Resolutions keyed by approval id.

    Raises:
        SuspensionValidationError: If an approval is left unresolved, an id is
            unknown, or an id is resolved twice.
    """
    expected = stack.approval_ids()
    by_id: dict[str, ApprovalResolution] = {}
    for resolution in resolutions:
        if resolution.approval_id in by_id:
            raise SuspensionValidationError(
                f"Approval '{resolution.approval_id}' resolved more than once"
            )
        by_id[resolution.approval_id] = resolution

    unknown = sorted(set(by_id) - set(expected))
    if unknown:
        raise SuspensionValidationError(
            f"Unknown approval ids: {unknown}",
            metadata={"unknown": unknown},
        )
    missing = [approval_id for approval_id in expected if approval_id not in by_id]
    if missing:
        raise SuspensionValidationError(
            f"Unresolved approval ids: {missing}",
            metadata={"missing": missing},
        )
    return by_id
