"""Handler registry and the callable factories users declare resources with.

Usage:
    ResourceGroup = register("azure::ResourceGroup", resource_group_handler)

    async with create_scope("my-app", stage="dev") as app:
        rg = await ResourceGroup(app, "main", location="eastus")
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from .context import Context
from .errors import DeclarationError

if TYPE_CHECKING:
    from .scope import Scope

logger = logging.getLogger(__name__)

Handler = Callable[[Context, str, dict[str, Any]], Awaitable[Any]]


@dataclass(frozen=True)
class Registration:
    """A resource kind bound to its handler and optional local synthesizer."""

    kind: str
    handler: Handler
    local: Handler | None = None


class HandlerRegistry:
    """Maps resource kinds to handlers."""

    def __init__(self) -> None:
        self._registrations: dict[str, Registration] = {}

    def register(
        self,
        kind: str,
        handler: Handler,
        *,
        local: Handler | None = None,
    ) -> ResourceFactory:
        """Register a handler for a kind and return its factory.

        Raises:
            ValueError: If the kind is empty or already bound to another handler.
        """
        if not kind or not kind.strip():
            raise ValueError("Resource kind cannot be empty")

        existing = self._registrations.get(kind)
        if existing is not None and existing.handler is not handler:
            raise ValueError(f"Resource kind '{kind}' is already registered")

        registration = Registration(kind=kind, handler=handler, local=local)
        self._registrations[kind] = registration
        logger.debug("Registered resource kind", extra={"kind": kind})
        return ResourceFactory(registration)

    def get(self, kind: str) -> Registration:
        """Look up the registration for a kind.

        Raises:
            DeclarationError: If nothing is registered for the kind.
        """
        registration = self._registrations.get(kind)
        if registration is None:
            raise DeclarationError(f"No handler registered for resource kind '{kind}'")
        return registration

    def __contains__(self, kind: object) -> bool:
        return kind in self._registrations

    def kinds(self) -> list[str]:
        return sorted(self._registrations)


# Registry used by the built-in resource modules
default_registry = HandlerRegistry()


def register(
    kind: str,
    handler: Handler,
    *,
    local: Handler | None = None,
    registry: HandlerRegistry | None = None,
) -> ResourceFactory:
    """Register a handler on the default (or given) registry."""
    return (registry or default_registry).register(kind, handler, local=local)


def normalize_props(props: Mapping[str, Any] | BaseModel | None, overrides: dict[str, Any]) -> dict[str, Any]:
    """Merge positional props and keyword props into one plain dict."""
    if props is None:
        merged: dict[str, Any] = {}
    elif isinstance(props, BaseModel):
        merged = props.model_dump(exclude_unset=True)
    elif isinstance(props, Mapping):
        merged = dict(props)
    else:
        raise DeclarationError(f"Props must be a mapping or a pydantic model, got {type(props).__name__}")
    merged.update(overrides)
    return merged


class ResourceFactory:
    """Callable surface for one resource kind.

    ``await Factory(scope, id, props)`` reconciles the declaration and
    returns the materialized output.
    """

    def __init__(self, registration: Registration) -> None:
        self._registration = registration

    @property
    def kind(self) -> str:
        return self._registration.kind

    @property
    def registration(self) -> Registration:
        return self._registration

    async def __call__(
        self,
        scope: Scope,
        resource_id: str,
        props: Mapping[str, Any] | BaseModel | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        merged = normalize_props(props, kwargs)
        return await scope.reconciler.apply(scope, self._registration, resource_id, merged)

    async def delete(self, scope: Scope, resource_id: str) -> bool:
        """Delete a declared resource; returns False if it had no record."""
        return await scope.reconciler.delete(
            scope, scope.logical_path(resource_id), registration=self._registration
        )

    def __repr__(self) -> str:
        return f"ResourceFactory({self.kind!r})"
