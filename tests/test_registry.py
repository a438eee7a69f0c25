"""Tests for handler registration and resource factories."""

from typing import Any

import pytest
from pydantic import BaseModel

from converge.context import Context
from converge.errors import DeclarationError
from converge.registry import HandlerRegistry, normalize_props
from converge.scope import create_scope


async def echo_handler(ctx: Context, resource_id: str, props: dict[str, Any]) -> dict[str, Any]:
    return {"phase": ctx.phase.value, **props}


async def other_handler(ctx: Context, resource_id: str, props: dict[str, Any]) -> dict[str, Any]:
    return {}


class TestHandlerRegistry:
    """Tests for HandlerRegistry."""

    def test_register_and_get(self, registry: HandlerRegistry) -> None:
        factory = registry.register("test::Echo", echo_handler)

        assert factory.kind == "test::Echo"
        assert registry.get("test::Echo").handler is echo_handler
        assert "test::Echo" in registry
        assert registry.kinds() == ["test::Echo"]

    def test_reregistering_same_handler_is_allowed(self, registry: HandlerRegistry) -> None:
        registry.register("test::Echo", echo_handler)
        registry.register("test::Echo", echo_handler)

    def test_kind_bound_to_one_handler(self, registry: HandlerRegistry) -> None:
        registry.register("test::Echo", echo_handler)
        with pytest.raises(ValueError, match="already registered"):
            registry.register("test::Echo", other_handler)

    def test_empty_kind(self, registry: HandlerRegistry) -> None:
        with pytest.raises(ValueError):
            registry.register("  ", echo_handler)

    def test_unknown_kind(self, registry: HandlerRegistry) -> None:
        with pytest.raises(DeclarationError, match="test::Missing"):
            registry.get("test::Missing")

    def test_default_registry_has_azure_kinds(self) -> None:
        from converge import app_service, resource_group  # noqa: F401
        from converge.registry import default_registry

        assert "azure::ResourceGroup" in default_registry
        assert "azure::AppService" in default_registry


class TestNormalizeProps:
    """Tests for normalize_props()."""

    def test_sources_merge(self) -> None:
        assert normalize_props(None, {"a": 1}) == {"a": 1}
        assert normalize_props({"a": 1, "b": 2}, {"b": 3}) == {"a": 1, "b": 3}

    def test_model_only_keeps_set_fields(self) -> None:
        class Props(BaseModel):
            location: str
            tags: dict[str, str] = {}

        assert normalize_props(Props(location="eastus"), {}) == {"location": "eastus"}

    def test_rejects_other_types(self) -> None:
        with pytest.raises(DeclarationError):
            normalize_props(["location"], {})  # type: ignore[arg-type]


class TestResourceFactory:
    """Tests for calling a factory."""

    @pytest.mark.asyncio
    async def test_call_returns_output(self, registry: HandlerRegistry) -> None:
        Echo = registry.register("test::Echo", echo_handler)
        scope = create_scope("shop", registry=registry)

        output = await Echo(scope, "e1", {"size": 1}, color="red")

        assert output == {"id": "e1", "type": "test::Echo", "phase": "create", "size": 1, "color": "red"}

    @pytest.mark.asyncio
    async def test_delete(self, registry: HandlerRegistry) -> None:
        Echo = registry.register("test::Echo", echo_handler, local=echo_handler)
        scope = create_scope("shop", registry=registry, local=True)

        await Echo(scope, "e1")
        assert await Echo.delete(scope, "e1") is True
        assert await Echo.delete(scope, "e1") is False
