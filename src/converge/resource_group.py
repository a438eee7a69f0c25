"""azure::ResourceGroup handler.

Resource groups are created if absent, adopted on conflict when permitted,
and replaced when their location changes.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from azure.core.exceptions import ResourceExistsError
from azure.mgmt.resource.resources.models import ResourceGroup as ResourceGroupParameters
from pydantic import BaseModel, Field, field_validator

from .adopt import create_or_adopt, delete_if_exists
from .clients import AzureClients
from .context import Context
from .errors import ValidationError
from .lifecycle import Phase
from .registry import register

logger = logging.getLogger(__name__)

KIND = "azure::ResourceGroup"

VALID_RESOURCE_GROUP_NAME_PATTERN = r"^[\w\-.()]{1,90}$"
MAX_RESOURCE_GROUP_NAME_LENGTH = 90


class ResourceGroupProps(BaseModel):
    """Declared props of a resource group."""

    model_config = {"extra": "ignore"}

    name: str | None = None
    location: str
    tags: dict[str, str] = Field(default_factory=dict)
    adopt: bool | None = None
    delete: bool = True
    resource_group_id: str | None = None

    @field_validator("location")
    @classmethod
    def validate_location(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("location cannot be empty")
        return v


def validate_resource_group_name(name: str) -> str:
    """Raise ValidationError unless ``name`` is a legal resource group name."""
    if not re.match(VALID_RESOURCE_GROUP_NAME_PATTERN, name):
        raise ValidationError(
            f'Resource group name "{name}" is invalid. Must be 1-{MAX_RESOURCE_GROUP_NAME_LENGTH} '
            "characters and contain only alphanumeric characters, underscores, hyphens, "
            "periods, and parentheses."
        )
    # Azure rejects names ending in a period
    if name.endswith("."):
        raise ValidationError(f'Resource group name "{name}" cannot end with a period')
    return name


def _resolve_name(ctx: Context, spec: ResourceGroupProps) -> str:
    prior = ctx.prior_output or {}
    return spec.name or prior.get("name") or ctx.create_physical_name()


def _to_output(resource_id: str, group: Any) -> dict[str, Any]:
    properties = getattr(group, "properties", None)
    return {
        "id": resource_id,
        "type": KIND,
        "name": group.name,
        "resource_group_id": group.id,
        "location": group.location,
        "tags": dict(group.tags or {}),
        "provisioning_state": getattr(properties, "provisioning_state", None),
    }


async def resource_group_handler(ctx: Context, resource_id: str, props: dict[str, Any]) -> Any:
    spec = ctx.validate_props(ResourceGroupProps, props)
    name = _resolve_name(ctx, spec)

    if ctx.phase is Phase.DELETE:
        if spec.delete is False:
            logger.info("Leaving resource group in place", extra={"name": name})
            return ctx.destroy()
        validate_resource_group_name(name)
        clients: AzureClients = ctx.clients()
        await delete_if_exists(
            kind="Resource group",
            name=name,
            delete=lambda: clients.call(
                lambda: clients.resources.resource_groups.begin_delete(resource_group_name=name),
                operation_name=f"Delete resource group '{name}'",
            ),
        )
        return ctx.destroy()

    validate_resource_group_name(name)

    if ctx.phase is Phase.UPDATE and ctx.prior_output is not None:
        prior = ctx.prior_output
        if prior.get("location") != spec.location or prior.get("name") != name:
            logger.info(
                "Resource group identity changed, replacing",
                extra={"name": name, "location": spec.location, "prior_location": prior.get("location")},
            )
            return ctx.replace()

    clients = ctx.clients()
    groups = clients.resources.resource_groups
    parameters = ResourceGroupParameters(location=spec.location, tags=spec.tags or None)

    async def update(_existing: Any = None) -> Any:
        return await clients.call(
            lambda: groups.create_or_update(resource_group_name=name, parameters=parameters),
            operation_name=f"Update resource group '{name}'",
        )

    if ctx.phase is Phase.UPDATE:
        return _to_output(resource_id, await update())

    async def create() -> Any:
        exists = await clients.call(
            lambda: groups.check_existence(resource_group_name=name),
            operation_name=f"Check resource group '{name}'",
        )
        if exists:
            raise ResourceExistsError(message=f"Resource group '{name}' already exists")
        return await update()

    provisioned = await create_or_adopt(
        kind="Resource group",
        name=name,
        adopt=ctx.resolve_adopt(spec.adopt),
        create=create,
        fetch=lambda: clients.call(
            lambda: groups.get(resource_group_name=name),
            operation_name=f"Get resource group '{name}'",
        ),
        update=update,
    )
    logger.info(
        f"Resource group '{name}' ensured in {spec.location}",
        extra={"adopted": provisioned.adopted},
    )
    return _to_output(resource_id, provisioned.resource)


async def local_resource_group(ctx: Context, resource_id: str, props: dict[str, Any]) -> dict[str, Any]:
    """Synthetic output mirroring what Azure would return."""
    spec = ctx.validate_props(ResourceGroupProps, props)
    name = validate_resource_group_name(_resolve_name(ctx, spec))
    return {
        "id": resource_id,
        "type": KIND,
        "name": name,
        "resource_group_id": spec.resource_group_id or f"/subscriptions/local/resourceGroups/{name}",
        "location": spec.location,
        "tags": dict(spec.tags),
        "provisioning_state": "Succeeded",
    }


ResourceGroup = register(KIND, resource_group_handler, local=local_resource_group)
