"""Scope tree: inherited defaults, naming, and the root run lifecycle.

A root scope is one (app, stage) run. Nested scopes group declarations
and inherit every flag unless overridden. Scopes are passed explicitly
to every factory call; there is no ambient "current scope".
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from typing import Any, Protocol

from .materializer import RunReport
from .reconciler import Reconciler
from .registry import HandlerRegistry, default_registry
from .secret import SecretSealer
from .state import InMemoryStateStore, LogicalPath, StateStore, validate_segment

logger = logging.getLogger(__name__)

DEFAULT_NAME_DELIMITER = "-"


class ClientFactory(Protocol):
    """Builds the provider SDK clients handlers talk to."""

    def create(self) -> Any: ...


class Scope:
    """Tree node carrying defaults and the state store for its subtree."""

    def __init__(
        self,
        *,
        app_name: str,
        stage: str,
        reconciler: Reconciler,
        state_store: StateStore,
        name: str | None = None,
        parent: Scope | None = None,
        local: bool = False,
        adopt: bool = False,
        client_factory: ClientFactory | None = None,
        sealer: SecretSealer | None = None,
    ) -> None:
        self.app_name = validate_segment(app_name, "app name")
        self.stage = validate_segment(stage, "stage")
        self.name = validate_segment(name, "scope name") if name is not None else None
        self.parent = parent
        self.local = local
        self.adopt = adopt
        self.state_store = state_store
        self.client_factory = client_factory
        self.sealer = sealer
        self.reconciler = reconciler

    @property
    def is_root(self) -> bool:
        return self.parent is None

    @property
    def root(self) -> Scope:
        scope = self
        while scope.parent is not None:
            scope = scope.parent
        return scope

    @property
    def chain(self) -> tuple[str, ...]:
        """Names of the nested scopes from the root down to this one."""
        names: list[str] = []
        scope: Scope | None = self
        while scope is not None and scope.name is not None:
            names.append(scope.name)
            scope = scope.parent
        return tuple(reversed(names))

    @property
    def prefix(self) -> tuple[str, ...]:
        return (self.app_name, self.stage, *self.chain)

    @property
    def report(self) -> RunReport:
        return self.reconciler.report

    def child(
        self,
        name: str,
        *,
        local: bool | None = None,
        adopt: bool | None = None,
    ) -> Scope:
        """Open a nested scope that inherits this scope's flags."""
        return Scope(
            app_name=self.app_name,
            stage=self.stage,
            reconciler=self.reconciler,
            state_store=self.state_store,
            name=name,
            parent=self,
            local=self.local if local is None else local,
            adopt=self.adopt if adopt is None else adopt,
            client_factory=self.client_factory,
            sealer=self.sealer,
        )

    def logical_path(self, resource_id: str) -> LogicalPath:
        validate_segment(resource_id, "resource id")
        return LogicalPath(
            app=self.app_name,
            stage=self.stage,
            scopes=self.chain,
            id=resource_id,
        )

    def create_physical_name(self, resource_id: str, delimiter: str = DEFAULT_NAME_DELIMITER) -> str:
        """Deterministic provider-facing name for a resource id.

        The result is unconstrained; handlers apply their provider's
        character set and length rules.
        """
        return delimiter.join([self.app_name, self.stage, *self.chain, resource_id])

    def resolve_adopt(self, explicit: bool | None = None) -> bool:
        return self.adopt if explicit is None else explicit

    async def gather(self, *declarations: Awaitable[Any]) -> list[Any]:
        """Run declarations concurrently.

        Failures are returned in place of outputs instead of cancelling
        unrelated declarations; they are also recorded on the run report.
        """
        return list(await asyncio.gather(*declarations, return_exceptions=True))

    async def finalize(self) -> RunReport:
        """Delete resources in this subtree that were not declared in this run."""
        return await self.reconciler.finalize(self)

    async def destroy(self) -> RunReport:
        """Delete every resource recorded in this subtree."""
        return await self.reconciler.destroy(self)

    async def __aenter__(self) -> Scope:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if not self.is_root:
            return
        if exc_type is not None:
            logger.warning(
                "Run aborted, skipping orphan cleanup",
                extra={"scope": "/".join(self.prefix), "error": str(exc_val)},
            )
            return
        await self.finalize()

    def __repr__(self) -> str:
        return f"Scope({'/'.join(self.prefix)!r}, local={self.local}, adopt={self.adopt})"


def create_scope(
    app_name: str,
    *,
    stage: str = "dev",
    local: bool = False,
    adopt: bool = False,
    state_store: StateStore | None = None,
    client_factory: ClientFactory | None = None,
    sealer: SecretSealer | None = None,
    registry: HandlerRegistry | None = None,
) -> Scope:
    """Create the root scope of a run."""
    return Scope(
        app_name=app_name,
        stage=stage,
        reconciler=Reconciler(registry or default_registry),
        state_store=state_store if state_store is not None else InMemoryStateStore(),
        local=local,
        adopt=adopt,
        client_factory=client_factory,
        sealer=sealer,
    )
