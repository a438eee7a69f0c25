"""Per-invocation reconciliation context handed to every handler."""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .errors import DeclarationError, ValidationError
from .lifecycle import Decision, Destroyed, Phase, ReplaceRequested
from .state import LogicalPath

if TYPE_CHECKING:
    from .scope import Scope

PropsModel = TypeVar("PropsModel", bound=BaseModel)


class Context:
    """Everything a handler may know about one invocation.

    A handler decides exactly once: it returns an output, or returns
    ctx.destroy() (delete phase) or ctx.replace() (update phase).
    """

    def __init__(
        self,
        *,
        kind: str,
        path: LogicalPath,
        phase: Phase,
        scope: Scope,
        prior_output: dict[str, Any] | None = None,
        replacing: bool = False,
    ) -> None:
        self.kind = kind
        self.path = path
        self.phase = phase
        self.scope = scope
        self.prior_output = prior_output
        self.replacing = replacing
        self._decision: Decision | None = None

    @property
    def id(self) -> str:
        return self.path.id

    @property
    def decision(self) -> Decision | None:
        return self._decision

    def destroy(self) -> Destroyed:
        """Signal that the provider resource is gone."""
        if self.phase is not Phase.DELETE:
            raise DeclarationError(
                f"{self.kind} '{self.path}' called destroy() during {self.phase.value}"
            )
        return self._decide(Destroyed())

    def replace(self, *, delete_first: bool = True) -> ReplaceRequested:
        """Ask the engine to delete and recreate this resource."""
        if self.phase is not Phase.UPDATE or self.replacing:
            raise DeclarationError(
                f"{self.kind} '{self.path}' called replace() during {self.phase.value}"
            )
        return self._decide(ReplaceRequested(delete_first=delete_first))

    def _decide(self, decision: Any) -> Any:
        if self._decision is not None:
            raise DeclarationError(f"{self.kind} '{self.path}' already decided {self._decision}")
        self._decision = decision
        return decision

    def resolve_adopt(self, explicit: bool | None = None) -> bool:
        return self.scope.resolve_adopt(explicit)

    def create_physical_name(self) -> str:
        return self.scope.create_physical_name(self.id)

    def clients(self) -> Any:
        """Return the provider clients for this scope.

        Raises:
            DeclarationError: In local mode, or when no client factory is set.
        """
        if self.scope.local:
            raise DeclarationError(
                f"{self.kind} '{self.path}' requested provider clients in local mode"
            )
        factory = self.scope.client_factory
        if factory is None:
            raise DeclarationError(f"No provider client factory configured for '{self.path}'")
        return factory.create()

    def validate_props(self, model: type[PropsModel], props: Mapping[str, Any]) -> PropsModel:
        """Parse props into a model, raising ValidationError on bad input.

        During delete only the fields needed to address the resource matter,
        so props are taken as stored without validation.
        """
        if self.phase is Phase.DELETE:
            known = {key: value for key, value in props.items() if key in model.model_fields}
            return model.model_construct(**known)

        try:
            return model.model_validate(dict(props))
        except PydanticValidationError as e:
            errors = []
            for error in e.errors():
                loc = ".".join(str(x) for x in error["loc"])
                errors.append(f"  - {loc}: {error['msg']}")
            error_list = "\n".join(errors)
            raise ValidationError(f"Invalid props for {self.kind} '{self.id}':\n{error_list}") from e
