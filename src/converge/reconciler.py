"""Generic resource reconciliation engine.

For every declared resource the reconciler:
1. Serializes work per logical path (one lock per path, unrelated paths run freely)
2. Loads the prior record and drains deletions left over from an interrupted replace
3. Resolves the phase and invokes the handler (or its local synthesizer)
4. Materializes the outcome: persist output, delete record, or replace

Only fully completed phases are persisted. A crash between provider call
and commit leaves the previous record in place, and the next run converges
from it through idempotent handler calls.

ORDERING:
Dependencies are implied by data flow: a declaration that takes another
resource's output as a prop cannot start before that output exists.
Orphans (recorded but not declared in this run) are only deleted from
finalize(), after every live declaration has been applied, newest first.
The old halves of create-first replaces are deleted there as well, after
the orphans, so nothing declared later in the run loses them mid-apply.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from azure.core.exceptions import AzureError

from .context import Context
from .errors import DeclarationError, EngineError, provider_error
from .lifecycle import Applied, Destroyed, Outcome, Phase, ReplaceRequested, resolve_phase
from .materializer import RunReport, build_record, materialize
from .registry import HandlerRegistry, Registration
from .serde import deserialize
from .state import LogicalPath, PendingDeletion, ResourceRecord

if TYPE_CHECKING:
    from .scope import Scope

logger = logging.getLogger(__name__)


async def _echo_props(ctx: Context, resource_id: str, props: dict[str, Any]) -> dict[str, Any]:
    """Local output for kinds registered without a synthesizer."""
    return {**props, "id": resource_id, "type": ctx.kind}


class Reconciler:
    """Drives handlers for one run and keeps the state store consistent."""

    def __init__(self, registry: HandlerRegistry) -> None:
        self._registry = registry
        self._locks: dict[str, asyncio.Lock] = {}
        self._declared: set[str] = set()
        self._report = RunReport()

    @property
    def registry(self) -> HandlerRegistry:
        return self._registry

    @property
    def report(self) -> RunReport:
        return self._report

    @property
    def declared(self) -> frozenset[str]:
        """Logical path keys declared so far in this run."""
        return frozenset(self._declared)

    def _lock_for(self, path: LogicalPath) -> asyncio.Lock:
        return self._locks.setdefault(path.key, asyncio.Lock())

    # =========================================================================
    # Apply
    # =========================================================================

    async def apply(
        self,
        scope: Scope,
        registration: Registration,
        resource_id: str,
        props: dict[str, Any],
    ) -> dict[str, Any]:
        """Reconcile one declaration and return its output.

        Raises:
            EngineError: Any failure of this invocation; also recorded on the report.
        """
        path = scope.logical_path(resource_id)
        key = path.key
        # Mark as declared before anything can fail so finalize never treats
        # a failed declaration as an orphan.
        self._declared.add(key)

        try:
            async with self._lock_for(path):
                output = await self._apply_locked(scope, registration, path, props)
        except Exception as e:
            self._report.record_failed(key, e)
            logger.error(
                "Resource reconciliation failed",
                extra={"path": key, "kind": registration.kind, "error": str(e)},
            )
            raise

        self._report.record_applied(key)
        return output

    async def _apply_locked(
        self,
        scope: Scope,
        registration: Registration,
        path: LogicalPath,
        props: dict[str, Any],
    ) -> dict[str, Any]:
        kind = registration.kind
        # finalize() and destroy() look handlers up by kind in this registry
        if kind not in self._registry or self._registry.get(kind) != registration:
            raise DeclarationError(
                f"{kind} is not registered on this run's registry; "
                "pass the registry it was registered on to create_scope(registry=...)"
            )

        record = await scope.state_store.get(path)

        if record is not None and record.kind != kind:
            raise DeclarationError(
                f"'{path}' is already a {record.kind}, cannot declare it as {kind}"
            )

        if record is not None and record.pending_deletions:
            record = await self._drain_pending_deletions(scope, registration, record)

        prior_output = deserialize(record.output, scope.sealer) if record else None
        phase = resolve_phase(prior_exists=record is not None, deleting=False)
        ctx = Context(kind=kind, path=path, phase=phase, scope=scope, prior_output=prior_output)

        logger.debug(
            "Invoking handler",
            extra={"path": path.key, "kind": kind, "phase": phase.value, "local": scope.local},
        )
        outcome = await self._invoke(registration, ctx, props)

        match outcome:
            case Applied(output=result):
                output = materialize(kind, path.id, result)
                await scope.state_store.put(
                    path,
                    build_record(
                        path,
                        kind,
                        props,
                        output,
                        sealer=scope.sealer,
                        created_at=record.created_at if record else None,
                    ),
                )
                logger.info(
                    "Resource applied",
                    extra={"path": path.key, "kind": kind, "phase": phase.value},
                )
                return output
            case ReplaceRequested(delete_first=delete_first) if record is not None:
                return await self._replace(scope, registration, record, props, delete_first)
            case _:
                raise DeclarationError(
                    f"{kind} '{path}' returned {type(outcome).__name__} during {phase.value}"
                )

    async def _invoke(self, registration: Registration, ctx: Context, props: dict[str, Any]) -> Outcome:
        """Call the handler (or local synthesizer) and tag its result."""
        handler = registration.handler
        if ctx.scope.local:
            handler = registration.local or _echo_props

        try:
            result = await handler(ctx, ctx.id, props)
        except EngineError:
            raise
        except AzureError as e:
            raise provider_error(f"{ctx.kind} '{ctx.path}' failed during {ctx.phase.value}", e) from e

        if ctx.decision is not None:
            return ctx.decision
        if isinstance(result, (Destroyed, ReplaceRequested)):
            raise DeclarationError(
                f"{ctx.kind} '{ctx.path}' must decide through ctx.destroy() or ctx.replace()"
            )
        return Applied(result)

    # =========================================================================
    # Replace
    # =========================================================================

    async def _replace(
        self,
        scope: Scope,
        registration: Registration,
        record: ResourceRecord,
        props: dict[str, Any],
        delete_first: bool,
    ) -> dict[str, Any]:
        path = record.path
        kind = registration.kind
        store = scope.state_store
        logger.info(
            "Replacing resource",
            extra={
                "path": path.key,
                "kind": kind,
                "strategy": "delete-first" if delete_first else "create-first",
            },
        )

        if delete_first:
            # The old record stays until the new resource exists; a crash in
            # between is retried as another replace (delete tolerates 404).
            await self._invoke_delete(scope, registration, path, record.props, record.output)
            output = await self._invoke_create(scope, registration, path, props)
            await store.put(path, build_record(path, kind, props, output, sealer=scope.sealer))
            return output

        output = await self._invoke_create(scope, registration, path, props)
        pending = [
            PendingDeletion(props=record.props, output=record.output),
            *record.pending_deletions,
        ]
        await store.put(
            path, build_record(path, kind, props, output, sealer=scope.sealer, pending_deletions=pending)
        )
        # The old resource is deleted from finalize(), once every declaration
        # of this run has been applied against the new one.
        return output

    async def _invoke_create(
        self,
        scope: Scope,
        registration: Registration,
        path: LogicalPath,
        props: dict[str, Any],
    ) -> dict[str, Any]:
        ctx = Context(
            kind=registration.kind,
            path=path,
            phase=Phase.CREATE,
            scope=scope,
            prior_output=None,
            replacing=True,
        )
        outcome = await self._invoke(registration, ctx, props)
        if not isinstance(outcome, Applied):
            raise DeclarationError(
                f"{registration.kind} '{path}' returned {type(outcome).__name__} while being replaced"
            )
        return materialize(registration.kind, path.id, outcome.output)

    # =========================================================================
    # Delete
    # =========================================================================

    async def _invoke_delete(
        self,
        scope: Scope,
        registration: Registration,
        path: LogicalPath,
        props: Mapping[str, Any],
        output: Mapping[str, Any],
    ) -> None:
        """Run the handler's delete phase against one stored props/output pair."""
        if scope.local:
            return

        ctx = Context(
            kind=registration.kind,
            path=path,
            phase=resolve_phase(prior_exists=True, deleting=True),
            scope=scope,
            prior_output=deserialize(dict(output), scope.sealer),
        )
        outcome = await self._invoke(registration, ctx, deserialize(dict(props), scope.sealer))
        if not isinstance(outcome, Destroyed):
            raise DeclarationError(
                f"{registration.kind} '{path}' must return ctx.destroy() during delete"
            )

    async def _drain_pending_deletions(
        self,
        scope: Scope,
        registration: Registration,
        record: ResourceRecord,
    ) -> ResourceRecord:
        """Delete replaced provider resources still listed on a record."""
        remaining = list(record.pending_deletions)
        while remaining:
            pending = remaining[0]
            await self._invoke_delete(scope, registration, record.path, pending.props, pending.output)
            remaining.pop(0)
            record = record.model_copy(
                update={"pending_deletions": list(remaining), "updated_at": datetime.now(UTC)}
            )
            await scope.state_store.put(record.path, record)
            logger.info(
                "Deleted replaced resource",
                extra={"path": record.path.key, "kind": record.kind, "remaining": len(remaining)},
            )
        return record

    async def delete(
        self,
        scope: Scope,
        path: LogicalPath,
        registration: Registration | None = None,
    ) -> bool:
        """Delete one recorded resource.

        Returns:
            True if a record was deleted, False if there was nothing to delete.
        """
        key = path.key
        try:
            async with self._lock_for(path):
                record = await scope.state_store.get(path)
                if record is None:
                    logger.info("No record to delete", extra={"path": key})
                    return False

                if registration is None:
                    registration = self._registry.get(record.kind)
                elif registration.kind != record.kind:
                    raise DeclarationError(
                        f"'{path}' is a {record.kind}, not a {registration.kind}"
                    )

                if record.pending_deletions:
                    record = await self._drain_pending_deletions(scope, registration, record)

                await self._invoke_delete(scope, registration, path, record.props, record.output)
                await scope.state_store.delete(path)
        except Exception as e:
            self._report.record_delete_failed(key, e)
            logger.error(
                "Resource deletion failed",
                extra={"path": key, "error": str(e)},
            )
            raise

        self._declared.discard(key)
        self._report.record_deleted(key)
        logger.info("Resource deleted", extra={"path": key, "kind": record.kind})
        return True

    # =========================================================================
    # Finalize / destroy
    # =========================================================================

    async def finalize(self, scope: Scope) -> RunReport:
        """Delete orphans under a scope, then the resources replaced in this run.

        Orphans are recorded but not declared in this run. Replaced resources
        are the old halves of create-first replaces, still listed as pending
        deletions on their declared record.
        """
        records = await scope.state_store.list(scope.prefix)
        orphans = [record for record in records if record.path.key not in self._declared]
        replaced = [
            record
            for record in records
            if record.path.key in self._declared and record.pending_deletions
        ]
        logger.info(
            "Finalizing scope",
            extra={
                "scope": "/".join(scope.prefix),
                "orphans": len(orphans),
                "replaced": len(replaced),
            },
        )
        await self._delete_all(scope, orphans)
        for record in reversed(sorted(replaced, key=lambda r: r.created_at)):
            await self._finish_replace(scope, record.path)
        return self._complete()

    async def _finish_replace(self, scope: Scope, path: LogicalPath) -> None:
        """Drain the pending deletions of one declared record.

        Failures are recorded on the report; the record keeps what is left
        and the next apply, delete or finalize retries it.
        """
        key = path.key
        try:
            async with self._lock_for(path):
                record = await scope.state_store.get(path)
                if record is None or not record.pending_deletions:
                    return
                await self._drain_pending_deletions(scope, self._registry.get(record.kind), record)
        except Exception as e:
            self._report.record_delete_failed(key, e)
            logger.error(
                "Replaced resource deletion failed",
                extra={"path": key, "error": str(e)},
            )

    async def destroy(self, scope: Scope) -> RunReport:
        """Delete every resource recorded under a scope."""
        records = await scope.state_store.list(scope.prefix)
        logger.info(
            "Destroying scope",
            extra={"scope": "/".join(scope.prefix), "resources": len(records)},
        )
        await self._delete_all(scope, records)
        return self._complete()

    async def _delete_all(self, scope: Scope, records: list[ResourceRecord]) -> None:
        # Newest first: dependents are always created after what they depend on.
        # Ties keep the reversed store order, which is insertion order.
        for record in reversed(sorted(records, key=lambda r: r.created_at)):
            try:
                await self.delete(scope, record.path)
            except Exception:
                # Already recorded on the report; keep deleting the rest
                continue

    def _complete(self) -> RunReport:
        self._report.end_time = datetime.now(UTC)
        self._log_report(self._report)
        return self._report

    def _log_report(self, report: RunReport) -> None:
        """Log run result with structured data."""
        extra: dict[str, Any] = {
            "duration_seconds": report.duration_seconds,
            "applied": len(report.applied),
            "failed": len(report.failed),
            "deleted": len(report.deleted),
            "delete_failures": len(report.delete_failures),
        }
        if report.success:
            logger.info("Run result", extra=extra)
        else:
            extra["failed_paths"] = sorted([*report.failed, *report.delete_failures])
            logger.error("Run failed", extra=extra)
