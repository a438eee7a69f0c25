"""Reconciliation phases and handler outcomes."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Phase(str, Enum):
    """Lifecycle phase handed to a handler."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


def resolve_phase(*, prior_exists: bool, deleting: bool) -> Phase:
    """Map (prior state present?, deletion requested?) to a phase.

    Deletion wins over everything; otherwise the presence of a prior
    record decides between create and update.
    """
    if deleting:
        return Phase.DELETE
    if not prior_exists:
        return Phase.CREATE
    return Phase.UPDATE


@dataclass(frozen=True)
class Applied:
    """Handler produced a new output (a mapping or a pydantic model)."""

    output: Any = field(default_factory=dict)


@dataclass(frozen=True)
class Destroyed:
    """Handler finished deleting the provider resource."""


@dataclass(frozen=True)
class ReplaceRequested:
    """Handler found an immutable change and asks for delete + create.

    delete_first=False creates the new resource before deleting the old one;
    only valid where the provider allows both to exist at the same time.
    """

    delete_first: bool = True


Outcome = Applied | Destroyed | ReplaceRequested
Decision = Destroyed | ReplaceRequested
