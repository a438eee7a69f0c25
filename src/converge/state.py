"""Persisted resource state.

The StateStore is consumed through a narrow async interface; durable
backends live outside this package. InMemoryStateStore is the reference
implementation used for local runs and tests.

INVARIANTS:
- Exactly one ResourceRecord per LogicalPath.
- Records only hold serialized data (secrets sealed, see serde.py).
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Protocol

from pydantic import BaseModel, Field

from .errors import DeclarationError

PATH_SEPARATOR = "/"

# Resource ids and scope names become path segments
VALID_SEGMENT_PATTERN = r"^[^/\s][^/]*$"


def validate_segment(value: str, what: str) -> str:
    """Check that a value can be used as one segment of a logical path."""
    if not value or not re.match(VALID_SEGMENT_PATTERN, value):
        raise DeclarationError(
            f"Invalid {what} '{value}': must be non-empty, not start with whitespace "
            f"and not contain '{PATH_SEPARATOR}'"
        )
    return value


@dataclass(frozen=True)
class LogicalPath:
    """Stable identity of one resource declaration."""

    app: str
    stage: str
    scopes: tuple[str, ...]
    id: str

    @property
    def parts(self) -> tuple[str, ...]:
        return (self.app, self.stage, *self.scopes, self.id)

    @property
    def key(self) -> str:
        return PATH_SEPARATOR.join(self.parts)

    def is_within(self, prefix: tuple[str, ...]) -> bool:
        """Check whether this path lives in the subtree named by prefix."""
        return self.parts[: len(prefix)] == prefix

    @classmethod
    def from_parts(cls, parts: list[str] | tuple[str, ...]) -> LogicalPath:
        if len(parts) < 3:
            raise ValueError(f"Logical path needs app, stage and id: {parts}")
        return cls(app=parts[0], stage=parts[1], scopes=tuple(parts[2:-1]), id=parts[-1])

    def __str__(self) -> str:
        return self.key


class PendingDeletion(BaseModel):
    """A replaced provider resource that still has to be deleted."""

    props: dict[str, Any] = Field(default_factory=dict)
    output: dict[str, Any] = Field(default_factory=dict)


class ResourceRecord(BaseModel):
    """Last applied state of one logical resource."""

    model_config = {"extra": "ignore"}

    logical_path: list[str]
    kind: str
    props: dict[str, Any] = Field(default_factory=dict)
    output: dict[str, Any] = Field(default_factory=dict)
    pending_deletions: list[PendingDeletion] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def path(self) -> LogicalPath:
        return LogicalPath.from_parts(self.logical_path)


class StateStore(Protocol):
    """Durable mapping from logical path to the last applied record."""

    async def get(self, path: LogicalPath) -> ResourceRecord | None: ...

    async def put(self, path: LogicalPath, record: ResourceRecord) -> None: ...

    async def delete(self, path: LogicalPath) -> None: ...

    async def list(self, prefix: tuple[str, ...] = ()) -> list[ResourceRecord]: ...


class InMemoryStateStore:
    """Process-local StateStore.

    Records are deep-copied on the way in and out so callers can never
    mutate persisted state without going through put().
    """

    def __init__(self, records: list[ResourceRecord] | None = None) -> None:
        self._records: dict[str, ResourceRecord] = {}
        self._lock = asyncio.Lock()
        for record in records or []:
            self._records[record.path.key] = record.model_copy(deep=True)

    async def get(self, path: LogicalPath) -> ResourceRecord | None:
        record = self._records.get(path.key)
        return record.model_copy(deep=True) if record else None

    async def put(self, path: LogicalPath, record: ResourceRecord) -> None:
        if record.path != path:
            raise ValueError(f"Record for {record.path} cannot be stored at {path}")
        async with self._lock:
            self._records[path.key] = record.model_copy(deep=True)

    async def delete(self, path: LogicalPath) -> None:
        async with self._lock:
            self._records.pop(path.key, None)

    async def list(self, prefix: tuple[str, ...] = ()) -> list[ResourceRecord]:
        return [
            record.model_copy(deep=True)
            for record in self._records.values()
            if record.path.is_within(prefix)
        ]

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, path: object) -> bool:
        return isinstance(path, LogicalPath) and path.key in self._records
