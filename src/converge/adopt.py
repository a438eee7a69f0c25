"""Conflict/adopt handling around provider-side create and delete calls.

Handlers call these helpers; the engine itself never does. The sequence
create -> conflict -> fetch -> update is not transactional. A crash after
the fetch leaves the resource adopted but not yet reconciled, and a retry
of the whole invocation converges it. Two concurrent adopters of the same
name are not coordinated: the last update wins.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from azure.core.exceptions import AzureError

from .errors import ConflictError, is_conflict_error, is_not_found_error, provider_error

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Provisioned(Generic[T]):
    """Provider response for a create, and whether it came from adoption."""

    resource: T
    adopted: bool = False


def conflict_message(kind: str, name: str) -> str:
    return f'{kind} "{name}" already exists. Use adopt: true to adopt it.'


async def create_or_adopt(
    *,
    kind: str,
    name: str,
    adopt: bool,
    create: Callable[[], Awaitable[T]],
    fetch: Callable[[], Awaitable[Any]],
    update: Callable[[Any], Awaitable[T]],
) -> Provisioned[T]:
    """Create a provider resource, adopting an existing one if permitted.

    Args:
        kind: Resource kind, used in messages.
        name: Physical name of the resource.
        adopt: Effective adopt flag.
        create: Create call; must fail with a conflict if the name is taken.
        fetch: Reads the existing resource.
        update: Idempotent update applying the desired configuration to
            the fetched resource.

    Raises:
        ConflictError: The name is taken and adopt is false.
        ProviderError: Any other provider failure.
    """
    try:
        return Provisioned(await create())
    except AzureError as e:
        if not is_conflict_error(e):
            raise provider_error(f'Failed to create {kind} "{name}"', e) from e
        conflict = e

    if not adopt:
        raise ConflictError(conflict_message(kind, name)) from conflict

    logger.info("Adopting existing resource", extra={"kind": kind, "name": name})

    try:
        existing = await fetch()
    except AzureError as e:
        if not is_not_found_error(e):
            raise provider_error(
                f'{kind} "{name}" failed to create due to name conflict and could not be '
                "found for adoption",
                e,
            ) from e
        # Deleted between the conflict and the fetch: create it after all
        logger.info("Resource vanished before adoption, creating", extra={"kind": kind, "name": name})
        try:
            return Provisioned(await create())
        except AzureError as retry_error:
            raise provider_error(f'Failed to create {kind} "{name}"', retry_error) from retry_error

    try:
        return Provisioned(await update(existing), adopted=True)
    except AzureError as e:
        raise provider_error(
            f'{kind} "{name}" failed to create due to name conflict and could not be adopted', e
        ) from e


async def delete_if_exists(
    *,
    kind: str,
    name: str,
    delete: Callable[[], Awaitable[Any]],
) -> bool:
    """Run a provider delete, treating "not found" as success.

    Returns:
        True if the provider deleted something, False if it was already gone.

    Raises:
        ProviderError: Any failure other than not found.
    """
    try:
        await delete()
    except AzureError as e:
        if is_not_found_error(e):
            logger.info("Resource already absent", extra={"kind": kind, "name": name})
            return False
        raise provider_error(f'Failed to delete {kind} "{name}"', e) from e
    return True
