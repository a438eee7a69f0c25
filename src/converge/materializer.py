"""Output materialization and the per-run report."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel

from .errors import DeclarationError
from .secret import SecretSealer
from .serde import serialize
from .state import LogicalPath, PendingDeletion, ResourceRecord


@dataclass
class RunReport:
    """Result of one run over a scope tree."""

    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    applied: list[str] = field(default_factory=list)
    failed: dict[str, BaseException] = field(default_factory=dict)
    deleted: list[str] = field(default_factory=list)
    delete_failures: dict[str, BaseException] = field(default_factory=dict)

    @property
    def duration_seconds(self) -> float:
        """Calculate duration in seconds."""
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def success(self) -> bool:
        """Check if every declared resource and every orphan deletion succeeded."""
        return not self.failed and not self.delete_failures

    def record_applied(self, key: str) -> None:
        self.failed.pop(key, None)
        if key not in self.applied:
            self.applied.append(key)

    def record_failed(self, key: str, error: BaseException) -> None:
        self.failed[key] = error

    def record_deleted(self, key: str) -> None:
        self.delete_failures.pop(key, None)
        if key not in self.deleted:
            self.deleted.append(key)

    def record_delete_failed(self, key: str, error: BaseException) -> None:
        self.delete_failures[key] = error


def materialize(kind: str, resource_id: str, result: Any) -> dict[str, Any]:
    """Normalize a handler's return value into a flat output record.

    ``id`` and ``type`` are filled in when missing and must otherwise
    match the resource being reconciled.

    Raises:
        DeclarationError: If the value is not a record or contradicts id/type.
    """
    if isinstance(result, BaseModel):
        output = result.model_dump()
    elif isinstance(result, Mapping):
        output = dict(result)
    else:
        raise DeclarationError(
            f"Handler for {kind} '{resource_id}' returned {type(result).__name__}, expected a record"
        )

    if output.setdefault("id", resource_id) != resource_id:
        raise DeclarationError(
            f"Handler for {kind} '{resource_id}' returned output for id '{output['id']}'"
        )
    if output.setdefault("type", kind) != kind:
        raise DeclarationError(
            f"Handler for {kind} '{resource_id}' returned output of type '{output['type']}'"
        )
    return output


def build_record(
    path: LogicalPath,
    kind: str,
    props: Mapping[str, Any],
    output: Mapping[str, Any],
    *,
    sealer: SecretSealer | None = None,
    created_at: datetime | None = None,
    pending_deletions: list[PendingDeletion] | None = None,
) -> ResourceRecord:
    """Serialize props and output into the record persisted for a path.

    Raises:
        DeclarationError: If props or output contain unserializable values.
    """
    try:
        serialized_props = serialize(props, sealer)
        serialized_output = serialize(output, sealer)
    except TypeError as e:
        raise DeclarationError(f"Cannot persist state for {kind} '{path}': {e}") from e

    now = datetime.now(UTC)
    return ResourceRecord(
        logical_path=list(path.parts),
        kind=kind,
        props=serialized_props,
        output=serialized_output,
        pending_deletions=pending_deletions or [],
        created_at=created_at or now,
        updated_at=now,
    )
