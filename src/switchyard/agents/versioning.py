"""
Schema versioning helpers for persisted agent state and task records.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping


AGENT_STATE_SCHEMA_VERSION = "v1"
TASK_RECORD_SCHEMA_VERSION = "v1"
SUPPORTED_AGENT_STATE_SCHEMA_VERSIONS = frozenset({AGENT_STATE_SCHEMA_VERSION})
SUPPORTED_TASK_RECORD_SCHEMA_VERSIONS = frozenset({TASK_RECORD_SCHEMA_VERSION})

# Records written by older producers used camelCase keys.
_LEGACY_AGENT_STATE_KEYS: dict[str, str] = {
    "rootManifestId": "root_manifest_id",
    "manifestId": "manifest_id",
    "manifestVersion": "manifest_version",
    "stepNumber": "step_number",
    "suspensionStack": "suspension_stack",
    "parentContext": "parent_context",
    "childStateIds": "child_state_ids",
    "createdAt": "created_at_ms",
    "updatedAt": "updated_at_ms",
}
_LEGACY_TASK_RECORD_KEYS: dict[str, str] = {
    "taskName": "task_name",
    "queueName": "queue_name",
    "maxAttempts": "max_attempts",
    "enqueuedAt": "enqueued_at_ms",
    "delayUntil": "delay_until_ms",
    "startedAt": "started_at_ms",
    "completedAt": "completed_at_ms",
    "failedAt": "failed_at_ms",
    "userId": "user_id",
    "externalId": "external_id",
    "createdAt": "created_at_ms",
    "updatedAt": "updated_at_ms",
}


@dataclass(frozen=True, slots=True)
class VersionCheckResult:
    """
    Compatibility result for a schema version check.

    Attributes:
        compatible: Whether supplied version is supported.
        expected: Current schema version expected by runtime.
        received: Supplied schema version value.
        message: Human-readable status.
    """

    compatible: bool
    expected: str
    received: str | None
    message: str


@dataclass(frozen=True, slots=True)
class MigrationResult:
    """
    Migration result payload for legacy records.

    Attributes:
        migrated: Migrated normalized record payload.
        from_version: Source schema version, when known.
        to_version: Target schema version.
        applied: Ordered list of migration transforms applied.
    """

    migrated: dict[str, Any]
    from_version: str | None
    to_version: str
    applied: list[str]


def _check(
    version: str | None, *, supported: frozenset[str], expected: str, label: str
) -> VersionCheckResult:
    if version in supported:
        return VersionCheckResult(
            compatible=True, expected=expected, received=version, message="ok"
        )
    return VersionCheckResult(
        compatible=False,
        expected=expected,
        received=version,
        message=f"{label} schema version mismatch",
    )


def check_agent_state_schema_version(version: str | None) -> VersionCheckResult:
    """
    Validate agent state schema version compatibility.

    Args:
        version: Version value from stored agent state.

    Returns:
        Compatibility result for agent state schema.
    """
    return _check(
        version,
        supported=SUPPORTED_AGENT_STATE_SCHEMA_VERSIONS,
        expected=AGENT_STATE_SCHEMA_VERSION,
        label="Agent state",
    )


def check_task_record_schema_version(version: str | None) -> VersionCheckResult:
    """
    Validate task record schema version compatibility.

    Args:
        version: Version value from stored task record.

    Returns:
        Compatibility result for task record schema.
    """
    return _check(
        version,
        supported=SUPPORTED_TASK_RECORD_SCHEMA_VERSIONS,
        expected=TASK_RECORD_SCHEMA_VERSION,
        label="Task record",
    )


def _migrate(
    record: Mapping[str, Any],
    *,
    legacy_keys: Mapping[str, str],
    current_version: str,
) -> tuple[dict[str, Any], list[str], str | None]:
    migrated = dict(record)
    applied: list[str] = []

    from_version: str | None = None
    if isinstance(record.get("schema_version"), str):
        from_version = record["schema_version"]
    elif isinstance(record.get("schemaVersion"), str):
        from_version = record["schemaVersion"]

    if "schema_version" not in migrated:
        legacy_version = migrated.pop("schemaVersion", None)
        if isinstance(legacy_version, str):
            migrated["schema_version"] = legacy_version
            applied.append("schemaVersion->schema_version")
        else:
            migrated["schema_version"] = current_version
            applied.append("default_schema_version")

    for old, new in legacy_keys.items():
        if old in migrated and new not in migrated:
            migrated[new] = migrated.pop(old)
            applied.append(f"{old}->{new}")

    return migrated, applied, from_version


def migrate_agent_state_record(record: Mapping[str, Any]) -> MigrationResult:
    """
    Migrate legacy agent state records into the current schema.

    Args:
        record: Raw persisted agent state.

    Returns:
        Migration result containing the normalized record.

    Raises:
        ValueError: If resulting schema version is unsupported.
    """
    migrated, applied, from_version = _migrate(
        record,
        legacy_keys=_LEGACY_AGENT_STATE_KEYS,
        current_version=AGENT_STATE_SCHEMA_VERSION,
    )
    version = migrated.get("schema_version")
    check = check_agent_state_schema_version(version if isinstance(version, str) else None)
    if not check.compatible:
        raise ValueError(check.message)
    return MigrationResult(
        migrated=migrated,
        from_version=from_version,
        to_version=AGENT_STATE_SCHEMA_VERSION,
        applied=applied,
    )


def migrate_task_record(record: Mapping[str, Any]) -> MigrationResult:
    """
    Migrate legacy task records into the current schema.

    Args:
        record: Raw persisted task record.

    Returns:
        Migration result containing the normalized record.

    Raises:
        ValueError: If resulting schema version is unsupported.
    """
    migrated, applied, from_version = _migrate(
        record,
        legacy_keys=_LEGACY_TASK_RECORD_KEYS,
        current_version=TASK_RECORD_SCHEMA_VERSION,
    )
    version = migrated.get("schema_version")
    check = check_task_record_schema_version(version if isinstance(version, str) else None)
    if not check.compatible:
        raise ValueError(check.message)
    return MigrationResult(
        migrated=migrated,
        from_version=from_version,
        to_version=TASK_RECORD_SCHEMA_VERSION,
        applied=applied,
    )
