from __future__ import annotations

import pytest

from switchyard.agents import (
    AgentStateCorruptionError,
    ApprovalResolution,
    SuspensionStack,
    SuspensionStackEntry,
    SuspensionValidationError,
    ToolApprovalSuspension,
    validate_resolutions,
)


def entry(state_id: str, manifest_id: str = "m", pending: str | None = None) -> SuspensionStackEntry:
    return SuspensionStackEntry(
        manifest_id=manifest_id,
        manifest_version="1",
        state_id=state_id,
        pending_tool_call_id=pending,
    )


def approval(approval_id: str, call_id: str = "call_1") -> ToolApprovalSuspension:
    return ToolApprovalSuspension(
        approval_id=approval_id,
        tool_call_id=call_id,
        tool_name="delete_file",
        tool_args={"path": "/tmp/a"},
    )


def test_leaf_only_stack_has_depth_zero():
    stack = SuspensionStack.for_leaf(entry("leaf"), [approval("a1")])
    assert len(stack) == 0
    assert stack.depth == 0
    assert stack.root == stack.leaf
    assert stack.leaf_suspension.approval_id == "a1"


def test_prepend_builds_root_to_leaf_order():
    stack = SuspensionStack.for_leaf(entry("leaf", "worker"), [approval("a1"), approval("a2", "call_2")])
    stack = stack.prepend(entry("mid", "middle", "call_mid"))
    stack = stack.prepend(entry("root", "top", "call_root"))

    assert stack.depth == 2
    assert [e.state_id for e in stack.entries] == ["root", "mid"]
    assert stack.root.state_id == "root"
    assert stack.leaf.state_id == "leaf"
    assert stack.approval_ids() == ["a1", "a2"]


def test_stack_invariants_are_enforced():
    with pytest.raises(ValueError):
        SuspensionStack.for_leaf(entry("leaf"), [])
    with pytest.raises(ValueError):
        SuspensionStack.for_leaf(entry("leaf", pending="call_x"), [approval("a1")])
    stack = SuspensionStack.for_leaf(entry("leaf"), [approval("a1")])
    with pytest.raises(ValueError):
        stack.prepend(entry("root"))


def test_stack_dict_form_survives_json_storage():
    stack = SuspensionStack.for_leaf(entry("leaf"), [approval("a1")]).prepend(
        entry("root", "top", "call_root")
    )
    restored = SuspensionStack.from_dict(stack.to_dict())
    assert restored == stack
    assert restored.to_dict()["leaf_suspensions"][0]["type"] == "tool-approval"


def test_malformed_stack_is_reported_as_corruption():
    with pytest.raises(AgentStateCorruptionError):
        SuspensionStack.from_dict({"entries": [], "leaf": {"state_id": "x"}})
    with pytest.raises(AgentStateCorruptionError):
        ToolApprovalSuspension.from_dict({"type": "input-request", "approval_id": "a"})


def test_validate_resolutions_accepts_exact_cover():
    stack = SuspensionStack.for_leaf(entry("leaf"), [approval("a1"), approval("a2", "call_2")])
    by_id = validate_resolutions(
        stack,
        [
            ApprovalResolution(approval_id="a2", approved=False, reason="no"),
            ApprovalResolution(approval_id="a1", approved=True),
        ],
    )
    assert set(by_id) == {"a1", "a2"}
    assert by_id["a2"].reason == "no"


def test_validate_resolutions_rejects_missing_unknown_and_duplicates():
    stack = SuspensionStack.for_leaf(entry("leaf"), [approval("a1"), approval("a2", "call_2")])

    with pytest.raises(SuspensionValidationError) as missing:
        validate_resolutions(stack, [ApprovalResolution(approval_id="a1", approved=True)])
    assert missing.value.metadata["missing"] == ["a2"]

    with pytest.raises(SuspensionValidationError) as unknown:
        validate_resolutions(
            stack,
            [
                ApprovalResolution(approval_id="a1", approved=True),
                ApprovalResolution(approval_id="a2", approved=True),
                ApprovalResolution(approval_id="zz", approved=True),
            ],
        )
    assert unknown.value.metadata["unknown"] == ["zz"]

    with pytest.raises(SuspensionValidationError, match="more than once"):
        validate_resolutions(
            stack,
            [
                ApprovalResolution(approval_id="a1", approved=True),
                ApprovalResolution(approval_id="a1", approved=True),
            ],
        )
