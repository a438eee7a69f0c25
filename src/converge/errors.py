"""Error taxonomy for resource reconciliation.

Handlers raise these to report what went wrong with a single resource
invocation. The engine never retries; every error aborts the invocation
that raised it and any declaration that was waiting on its output.

Azure SDK exceptions are classified here so handlers and the adopt
resolver agree on what "already exists" and "not found" mean.
"""

from __future__ import annotations

from azure.core.exceptions import (
    AzureError,
    HttpResponseError,
    ResourceExistsError,
    ResourceNotFoundError,
)

# Azure error codes observed for missing resources
NOT_FOUND_ERROR_CODES: frozenset[str] = frozenset(
    {
        "ResourceNotFound",
        "ResourceGroupNotFound",
        "NotFound",
    }
)

# Azure error codes observed for name collisions
CONFLICT_ERROR_CODES: frozenset[str] = frozenset(
    {
        "ResourceAlreadyExists",
        "ResourceGroupAlreadyExists",
        "WebsiteAlreadyExists",
        "Conflict",
    }
)


class EngineError(Exception):
    """Base class for all reconciliation errors."""

    pass


class ValidationError(EngineError):
    """Declared props are structurally invalid.

    Raised before any network call. Never retried automatically.
    """

    pass


class ConflictError(EngineError):
    """The provider resource already exists and adoption was not permitted."""

    pass


class NotFoundError(EngineError):
    """The provider resource does not exist."""

    pass


class ImmutableFieldError(EngineError):
    """An immutable field was changed without going through replace()."""

    pass


class DeclarationError(EngineError):
    """A declaration or handler broke the engine contract.

    Examples: a logical path re-declared with a different kind, or a handler
    calling destroy() outside the delete phase.
    """

    pass


class SecretError(EngineError):
    """A secret could not be unwrapped."""

    pass


class ProviderError(EngineError):
    """Any other provider SDK or transport failure.

    The original exception is kept on ``cause`` and chained via ``__cause__``.
    """

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause
        self.status_code = _status_code(cause)
        self.error_code = _error_code(cause)


def _status_code(error: BaseException | None) -> int | None:
    status = getattr(error, "status_code", None)
    return status if isinstance(status, int) else None


def _error_code(error: BaseException | None) -> str | None:
    if isinstance(error, HttpResponseError) and error.error is not None:
        return error.error.code
    code = getattr(error, "code", None)
    return code if isinstance(code, str) else None


def is_azure_error(error: BaseException) -> bool:
    """Check whether an exception came from the Azure SDK."""
    return isinstance(error, AzureError)


def is_not_found_error(error: BaseException) -> bool:
    """Check if a provider error means the target resource is missing."""
    if isinstance(error, (ResourceNotFoundError, NotFoundError)):
        return True
    if not is_azure_error(error):
        return False
    return _status_code(error) == 404 or _error_code(error) in NOT_FOUND_ERROR_CODES


def is_conflict_error(error: BaseException) -> bool:
    """Check if a provider error means the resource already exists."""
    if isinstance(error, ResourceExistsError):
        return True
    if not is_azure_error(error):
        return False
    if _status_code(error) == 409 or _error_code(error) in CONFLICT_ERROR_CODES:
        return True
    return "already exists" in str(error).lower()


def provider_error(message: str, error: BaseException) -> ProviderError:
    """Build a ProviderError that keeps the SDK exception attached."""
    wrapped = ProviderError(f"{message}: {error}", cause=error)
    wrapped.__cause__ = error
    return wrapped
