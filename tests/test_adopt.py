"""Tests for the conflict/adopt resolver."""

from typing import Any
from unittest.mock import AsyncMock

import pytest
from azure.core.exceptions import HttpResponseError, ResourceExistsError, ResourceNotFoundError

from converge.adopt import Provisioned, conflict_message, create_or_adopt, delete_if_exists
from converge.errors import ConflictError, ProviderError


def conflict() -> ResourceExistsError:
    return ResourceExistsError(message="Website 'app' already exists")


async def run(adopt: bool, create: Any, fetch: Any = None, update: Any = None) -> Provisioned[Any]:
    return await create_or_adopt(
        kind="App service",
        name="app",
        adopt=adopt,
        create=create,
        fetch=fetch or AsyncMock(return_value={"uid": "existing"}),
        update=update or AsyncMock(return_value={"uid": "existing", "updated": True}),
    )


class TestCreateOrAdopt:
    """Tests for create_or_adopt()."""

    @pytest.mark.asyncio
    async def test_create_succeeds(self) -> None:
        fetch = AsyncMock()
        result = await run(False, AsyncMock(return_value={"uid": "new"}), fetch=fetch)

        assert result == Provisioned({"uid": "new"}, adopted=False)
        fetch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_conflict_without_adopt(self) -> None:
        """Test that a conflict names the remediation."""
        with pytest.raises(ConflictError) as exc_info:
            await run(False, AsyncMock(side_effect=conflict()))

        assert "adopt: true" in str(exc_info.value)
        assert str(exc_info.value) == conflict_message("App service", "app")
        assert isinstance(exc_info.value.__cause__, ResourceExistsError)

    @pytest.mark.asyncio
    async def test_conflict_with_adopt_fetches_then_updates(self) -> None:
        fetch = AsyncMock(return_value={"uid": "existing"})
        update = AsyncMock(return_value={"uid": "existing", "updated": True})

        result = await run(True, AsyncMock(side_effect=conflict()), fetch=fetch, update=update)

        assert result.adopted is True
        assert result.resource == {"uid": "existing", "updated": True}
        update.assert_awaited_once_with({"uid": "existing"})

    @pytest.mark.asyncio
    async def test_conflict_detected_by_message(self) -> None:
        """Test that a generic 'already exists' response counts as a conflict."""
        create = AsyncMock(
            side_effect=HttpResponseError(message="Name 'app' already exists in another subscription")
        )
        with pytest.raises(ConflictError):
            await run(False, create)

    @pytest.mark.asyncio
    async def test_vanished_before_fetch_creates_again(self) -> None:
        create = AsyncMock(side_effect=[conflict(), {"uid": "fresh"}])
        fetch = AsyncMock(side_effect=ResourceNotFoundError(message="gone"))

        result = await run(True, create, fetch=fetch)

        assert result == Provisioned({"uid": "fresh"}, adopted=False)
        assert create.await_count == 2

    @pytest.mark.asyncio
    async def test_other_create_error_is_provider_error(self) -> None:
        create = AsyncMock(side_effect=HttpResponseError(message="quota exceeded"))

        with pytest.raises(ProviderError) as exc_info:
            await run(True, create)

        assert "quota exceeded" in str(exc_info.value)
        assert isinstance(exc_info.value.cause, HttpResponseError)

    @pytest.mark.asyncio
    async def test_update_failure_during_adoption(self) -> None:
        update = AsyncMock(side_effect=HttpResponseError(message="forbidden"))

        with pytest.raises(ProviderError, match="could not be adopted"):
            await run(True, AsyncMock(side_effect=conflict()), update=update)


class TestDeleteIfExists:
    """Tests for delete_if_exists()."""

    @pytest.mark.asyncio
    async def test_deleted(self) -> None:
        assert await delete_if_exists(kind="Site", name="s", delete=AsyncMock()) is True

    @pytest.mark.asyncio
    async def test_not_found_is_success(self) -> None:
        delete = AsyncMock(side_effect=ResourceNotFoundError(message="gone"))
        assert await delete_if_exists(kind="Site", name="s", delete=delete) is False

    @pytest.mark.asyncio
    async def test_other_errors_propagate(self) -> None:
        delete = AsyncMock(side_effect=HttpResponseError(message="locked"))
        with pytest.raises(ProviderError, match="Failed to delete Site"):
            await delete_if_exists(kind="Site", name="s", delete=delete)
