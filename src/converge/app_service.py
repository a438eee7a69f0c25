"""azure::AppService handler.

Each app service owns a dedicated App Service plan named "{name}-plan".
Both are managed through the generic ARM resource API so that no
Microsoft.Web SDK is needed.

IMMUTABLE FIELDS:
- name and location: changing either replaces the app (and its plan)
- os: Azure cannot convert a plan between Linux and Windows, and a replace
  would drop everything deployed to the app, so this is rejected outright
"""

from __future__ import annotations

import logging
import re
from typing import Any, Literal

from azure.core.exceptions import ResourceExistsError
from azure.mgmt.resource.resources.models import GenericResource, Sku
from pydantic import BaseModel, Field

from .adopt import create_or_adopt, delete_if_exists
from .clients import AzureClients
from .context import Context
from .errors import ImmutableFieldError, ValidationError
from .lifecycle import Phase
from .registry import register
from .resource_group import validate_resource_group_name
from .secret import Secret

logger = logging.getLogger(__name__)

KIND = "azure::AppService"

WEB_API_VERSION = "2023-12-01"
MIN_APP_SERVICE_NAME_LENGTH = 2
MAX_APP_SERVICE_NAME_LENGTH = 60
VALID_APP_SERVICE_NAME_PATTERN = r"^[a-z0-9-]+$"
DEFAULT_HOSTNAME_SUFFIX = "azurewebsites.net"

AppServiceSku = Literal[
    "F1", "D1", "B1", "B2", "B3", "S1", "S2", "S3", "P1V2", "P2V2", "P3V2", "P1V3", "P2V3", "P3V3"
]
Runtime = Literal["node", "python", "dotnet", "java", "php", "ruby"]

LINUX_RUNTIME_STACKS: dict[str, str] = {
    "node": "NODE",
    "python": "PYTHON",
    "dotnet": "DOTNETCORE",
    "java": "JAVA",
    "php": "PHP",
    "ruby": "RUBY",
}


class AppServiceProps(BaseModel):
    """Declared props of an app service."""

    model_config = {"extra": "ignore", "arbitrary_types_allowed": True}

    name: str | None = None
    resource_group: str | dict[str, Any]
    location: str | None = None
    sku: AppServiceSku = "B1"
    runtime: Runtime = "node"
    runtime_version: str = "20"
    os: Literal["linux", "windows"] = "linux"
    app_settings: dict[str, str | Secret] = Field(default_factory=dict)
    https_only: bool = True
    always_on: bool | None = None
    local_my_sql_enabled: bool = False
    ftps_state: Literal["AllAllowed", "FtpsOnly", "Disabled"] = "Disabled"
    min_tls_version: Literal["1.0", "1.1", "1.2", "1.3"] = "1.2"
    tags: dict[str, str] = Field(default_factory=dict)
    adopt: bool | None = None
    delete: bool = True
    app_service_id: str | None = None

    @property
    def resource_group_name(self) -> str | None:
        if isinstance(self.resource_group, str):
            return self.resource_group
        return self.resource_group.get("name")

    @property
    def resource_group_location(self) -> str | None:
        if isinstance(self.resource_group, str):
            return None
        return self.resource_group.get("location")

    @property
    def effective_always_on(self) -> bool:
        # Always On is not available on the Free tier
        if self.always_on is not None:
            return self.always_on
        return self.sku != "F1"


def default_app_service_name(physical_name: str) -> str:
    return re.sub(r"[^a-z0-9-]", "", physical_name.lower())


def validate_app_service_name(name: str) -> str:
    """Raise ValidationError unless ``name`` is a legal app service name."""
    if not MIN_APP_SERVICE_NAME_LENGTH <= len(name) <= MAX_APP_SERVICE_NAME_LENGTH:
        raise ValidationError(
            f'App service name "{name}" must be between {MIN_APP_SERVICE_NAME_LENGTH} '
            f"and {MAX_APP_SERVICE_NAME_LENGTH} characters"
        )
    if not re.match(VALID_APP_SERVICE_NAME_PATTERN, name):
        raise ValidationError(
            f'App service name "{name}" must contain only lowercase letters, numbers, and hyphens'
        )
    if name.startswith("-") or name.endswith("-"):
        raise ValidationError(f'App service name "{name}" cannot start or end with a hyphen')
    return name


def site_resource_id(subscription_id: str, resource_group: str, name: str) -> str:
    return (
        f"/subscriptions/{subscription_id}/resourceGroups/{resource_group}"
        f"/providers/Microsoft.Web/sites/{name}"
    )


def plan_resource_id(subscription_id: str, resource_group: str, name: str) -> str:
    return (
        f"/subscriptions/{subscription_id}/resourceGroups/{resource_group}"
        f"/providers/Microsoft.Web/serverfarms/{name}-plan"
    )


def build_site_config(spec: AppServiceProps) -> dict[str, Any]:
    """Site configuration sent to ARM; secret app settings are unwrapped here only."""
    site_config: dict[str, Any] = {
        "appSettings": [
            {"name": key, "value": Secret.unwrap(value)} for key, value in spec.app_settings.items()
        ],
        "alwaysOn": spec.effective_always_on,
        "ftpsState": spec.ftps_state,
        "minTlsVersion": spec.min_tls_version,
        "localMySqlEnabled": spec.local_my_sql_enabled,
    }

    if spec.os == "linux":
        site_config["linuxFxVersion"] = f"{LINUX_RUNTIME_STACKS[spec.runtime]}|{spec.runtime_version}"
    else:
        match spec.runtime:
            case "node":
                site_config["nodeVersion"] = f"~{spec.runtime_version}"
            case "python":
                site_config["pythonVersion"] = spec.runtime_version
            case "dotnet":
                site_config["netFrameworkVersion"] = f"v{spec.runtime_version}"
            case "php":
                site_config["phpVersion"] = spec.runtime_version
            case "java":
                site_config["javaVersion"] = spec.runtime_version
            case _:
                raise ValidationError(f"Runtime '{spec.runtime}' is not supported on windows")
    return site_config


def _resolve_name(ctx: Context, spec: AppServiceProps) -> str:
    prior = ctx.prior_output or {}
    return spec.name or prior.get("name") or default_app_service_name(ctx.create_physical_name())


def _resolve_location(ctx: Context, spec: AppServiceProps) -> str:
    prior = ctx.prior_output or {}
    location = spec.location or spec.resource_group_location or prior.get("location")
    if not location:
        raise ValidationError(
            f"Location is required for {KIND} '{ctx.id}' when resource_group is given as a name. "
            "Either pass the ResourceGroup output or specify location explicitly."
        )
    return location


def _require_resource_group(ctx: Context, spec: AppServiceProps) -> str:
    resource_group = spec.resource_group_name
    if not resource_group:
        raise ValidationError(f"{KIND} '{ctx.id}' requires a resource group name")
    return resource_group


def _common_output(
    resource_id: str,
    spec: AppServiceProps,
    *,
    name: str,
    resource_group: str,
    location: str,
    default_hostname: str,
) -> dict[str, Any]:
    return {
        "id": resource_id,
        "type": KIND,
        "name": name,
        "resource_group": resource_group,
        "location": location,
        "default_hostname": default_hostname,
        "url": f"https://{default_hostname}",
        "runtime": spec.runtime,
        "runtime_version": spec.runtime_version,
        "os": spec.os,
        "sku": spec.sku,
        "https_only": spec.https_only,
        "always_on": spec.effective_always_on,
        "ftps_state": spec.ftps_state,
        "min_tls_version": spec.min_tls_version,
        "local_my_sql_enabled": spec.local_my_sql_enabled,
        "app_settings": dict(spec.app_settings),
        "tags": dict(spec.tags),
    }


async def _delete_app_service(ctx: Context, spec: AppServiceProps, name: str) -> None:
    prior = ctx.prior_output or {}
    resource_group = prior.get("resource_group") or spec.resource_group_name
    validate_app_service_name(name)
    if resource_group:
        validate_resource_group_name(resource_group)

    clients: AzureClients = ctx.clients()

    site_id = spec.app_service_id or prior.get("app_service_id")
    plan_id = prior.get("app_service_plan_id")
    if resource_group:
        site_id = site_id or site_resource_id(clients.subscription_id, resource_group, name)
        plan_id = plan_id or plan_resource_id(clients.subscription_id, resource_group, name)

    if not site_id:
        logger.warning(f"No app service id found for '{ctx.id}', skipping delete")
        return

    resources = clients.resources.resources
    await delete_if_exists(
        kind="App service",
        name=name,
        delete=lambda: clients.call(
            lambda: resources.begin_delete_by_id(site_id, WEB_API_VERSION),
            operation_name=f"Delete app service '{name}'",
        ),
    )
    if plan_id:
        await delete_if_exists(
            kind="App service plan",
            name=f"{name}-plan",
            delete=lambda: clients.call(
                lambda: resources.begin_delete_by_id(plan_id, WEB_API_VERSION),
                operation_name=f"Delete app service plan '{name}-plan'",
            ),
        )


async def app_service_handler(ctx: Context, resource_id: str, props: dict[str, Any]) -> Any:
    spec = ctx.validate_props(AppServiceProps, props)
    name = _resolve_name(ctx, spec)

    if ctx.phase is Phase.DELETE:
        if spec.delete is False:
            logger.info("Leaving app service in place", extra={"name": name})
        else:
            await _delete_app_service(ctx, spec, name)
        return ctx.destroy()

    validate_app_service_name(name)
    resource_group = _require_resource_group(ctx, spec)
    location = _resolve_location(ctx, spec)

    if ctx.phase is Phase.UPDATE and ctx.prior_output is not None:
        prior = ctx.prior_output
        if prior.get("os") not in (None, spec.os):
            raise ImmutableFieldError(
                f'App service "{name}" cannot change os from {prior["os"]} to {spec.os} in place; '
                "declare it under a new id to recreate it"
            )
        if prior.get("location") != location or prior.get("name") != name:
            logger.info(
                "App service identity changed, replacing",
                extra={"name": name, "location": location, "prior_location": prior.get("location")},
            )
            return ctx.replace()

    clients: AzureClients = ctx.clients()
    resources = clients.resources.resources
    site_id = site_resource_id(clients.subscription_id, resource_group, name)
    plan_id = plan_resource_id(clients.subscription_id, resource_group, name)
    linux = spec.os == "linux"

    plan = GenericResource(
        location=location,
        tags=spec.tags or None,
        kind="linux" if linux else "app",
        sku=Sku(name=spec.sku),
        properties={"reserved": linux},
    )
    site = GenericResource(
        location=location,
        tags=spec.tags or None,
        kind="app,linux" if linux else "app",
        properties={
            "serverFarmId": plan_id,
            "reserved": linux,
            "httpsOnly": spec.https_only,
            "siteConfig": build_site_config(spec),
        },
    )

    async def update(_existing: Any = None) -> Any:
        await clients.call(
            lambda: resources.begin_create_or_update_by_id(plan_id, WEB_API_VERSION, plan),
            operation_name=f"Deploy app service plan '{name}-plan'",
        )
        return await clients.call(
            lambda: resources.begin_create_or_update_by_id(site_id, WEB_API_VERSION, site),
            operation_name=f"Deploy app service '{name}'",
        )

    if ctx.phase is Phase.UPDATE:
        result = await update()
    else:

        async def create() -> Any:
            exists = await clients.call(
                lambda: resources.check_existence_by_id(site_id, WEB_API_VERSION),
                operation_name=f"Check app service '{name}'",
            )
            if exists:
                raise ResourceExistsError(message=f"Website '{name}' already exists")
            return await update()

        provisioned = await create_or_adopt(
            kind="App service",
            name=name,
            adopt=ctx.resolve_adopt(spec.adopt),
            create=create,
            fetch=lambda: clients.call(
                lambda: resources.get_by_id(site_id, WEB_API_VERSION),
                operation_name=f"Get app service '{name}'",
            ),
            update=update,
        )
        result = provisioned.resource

    properties = dict(result.properties or {})
    default_hostname = properties.get("defaultHostName") or f"{name}.{DEFAULT_HOSTNAME_SUFFIX}"
    output = _common_output(
        resource_id,
        spec,
        name=result.name or name,
        resource_group=resource_group,
        location=result.location or location,
        default_hostname=default_hostname,
    )
    output.update(
        {
            "outbound_ip_addresses": properties.get("outboundIpAddresses"),
            "possible_outbound_ip_addresses": properties.get("possibleOutboundIpAddresses"),
            "app_service_id": result.id or site_id,
            "app_service_plan_id": plan_id,
        }
    )
    logger.info(f"App service '{name}' deployed", extra={"url": output["url"]})
    return output


async def local_app_service(ctx: Context, resource_id: str, props: dict[str, Any]) -> dict[str, Any]:
    """Synthetic output: the hostname Azure would assign, no ids from Azure."""
    spec = ctx.validate_props(AppServiceProps, props)
    name = validate_app_service_name(_resolve_name(ctx, spec))
    resource_group = _require_resource_group(ctx, spec)
    location = _resolve_location(ctx, spec)
    build_site_config(spec)  # rejects runtimes the os cannot host

    output = _common_output(
        resource_id,
        spec,
        name=name,
        resource_group=resource_group,
        location=location,
        default_hostname=f"{name}.{DEFAULT_HOSTNAME_SUFFIX}",
    )
    output["app_service_id"] = site_resource_id("local", resource_group, name)
    return output


AppService = register(KIND, app_service_handler, local=local_app_service)
