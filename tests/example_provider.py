"""examplecloud: a synthetic provider for engine tests.

Objects live in per-region namespaces keyed by (kind, location, name).
Every create assigns a fresh uuid, so tests can tell an updated object
from a replaced one.

Kinds:
- examplecloud::Group  location is immutable, replaced delete-first
- examplecloud::Site   location is immutable, replaced create-first;
                       location defaults to the group's location
"""

from __future__ import annotations

import copy
import uuid
from typing import Any

from azure.core.exceptions import ResourceExistsError, ResourceNotFoundError

from converge.adopt import create_or_adopt, delete_if_exists
from converge.context import Context
from converge.lifecycle import Phase
from converge.registry import HandlerRegistry, ResourceFactory

GROUP_KIND = "examplecloud::Group"
SITE_KIND = "examplecloud::Site"
HOSTNAME_SUFFIX = "examplecloud.net"


class ExampleCloud:
    """In-memory provider state with call recording and error injection."""

    def __init__(self) -> None:
        self.objects: dict[tuple[str, str, str], dict[str, Any]] = {}
        self.calls: list[tuple[str, str]] = []
        self._failures: dict[str, list[Exception]] = {}

    def fail(self, operation: str, error: Exception, *, times: int = 1) -> None:
        self._failures.setdefault(operation, []).extend([error] * times)

    def count(self, operation: str) -> int:
        return sum(1 for op, _ in self.calls if op == operation)

    def _record(self, operation: str, name: str) -> None:
        self.calls.append((operation, name))
        pending = self._failures.get(operation)
        if pending:
            raise pending.pop(0)

    def seed(self, kind: str, location: str, name: str, **fields: Any) -> dict[str, Any]:
        """Create an object directly, as if made outside the engine."""
        obj = {"uid": str(uuid.uuid4()), "name": name, "location": location, **fields}
        self.objects[(kind, location, name)] = obj
        return copy.deepcopy(obj)

    def find(self, kind: str, name: str) -> list[dict[str, Any]]:
        return [copy.deepcopy(o) for (k, _, n), o in self.objects.items() if k == kind and n == name]

    async def create(self, kind: str, location: str, name: str, **fields: Any) -> dict[str, Any]:
        self._record("create", name)
        if (kind, location, name) in self.objects:
            raise ResourceExistsError(message=f"{name} already exists")
        return self.seed(kind, location, name, **fields)

    async def get(self, kind: str, location: str, name: str) -> dict[str, Any]:
        self._record("get", name)
        obj = self.objects.get((kind, location, name))
        if obj is None:
            raise ResourceNotFoundError(message=f"{name} not found")
        return copy.deepcopy(obj)

    async def update(self, kind: str, location: str, name: str, **fields: Any) -> dict[str, Any]:
        self._record("update", name)
        obj = self.objects.get((kind, location, name))
        if obj is None:
            raise ResourceNotFoundError(message=f"{name} not found")
        obj.update(fields)
        return copy.deepcopy(obj)

    async def delete(self, kind: str, location: str, name: str) -> None:
        self._record("delete", name)
        if self.objects.pop((kind, location, name), None) is None:
            raise ResourceNotFoundError(message=f"{name} not found")


class ExampleClientFactory:
    """Client factory handing out one ExampleCloud."""

    def __init__(self, cloud: ExampleCloud) -> None:
        self.cloud = cloud
        self.created = 0

    def create(self) -> ExampleCloud:
        self.created += 1
        return self.cloud


def _name(ctx: Context, props: dict[str, Any]) -> str:
    prior = ctx.prior_output or {}
    return props.get("name") or prior.get("name") or ctx.create_physical_name()


async def group_handler(ctx: Context, resource_id: str, props: dict[str, Any]) -> Any:
    name = _name(ctx, props)
    prior = ctx.prior_output or {}

    if ctx.phase is Phase.DELETE:
        cloud: ExampleCloud = ctx.clients()
        await delete_if_exists(
            kind="Group", name=name, delete=lambda: cloud.delete(GROUP_KIND, prior["location"], name)
        )
        return ctx.destroy()

    location = props["location"]
    tags = dict(props.get("tags") or {})

    if ctx.phase is Phase.UPDATE:
        if prior["location"] != location:
            return ctx.replace()
        if prior.get("tags") == tags:
            return prior
        cloud = ctx.clients()
        obj = await cloud.update(GROUP_KIND, location, name, tags=tags)
        return {**prior, "tags": obj["tags"]}

    cloud = ctx.clients()
    provisioned = await create_or_adopt(
        kind="Group",
        name=name,
        adopt=ctx.resolve_adopt(props.get("adopt")),
        create=lambda: cloud.create(GROUP_KIND, location, name, tags=tags),
        fetch=lambda: cloud.get(GROUP_KIND, location, name),
        update=lambda existing: cloud.update(GROUP_KIND, location, name, tags=tags),
    )
    obj = provisioned.resource
    return {"name": name, "location": obj["location"], "tags": obj["tags"], "uid": obj["uid"]}


async def local_group(ctx: Context, resource_id: str, props: dict[str, Any]) -> dict[str, Any]:
    return {
        "name": _name(ctx, props),
        "location": props["location"],
        "tags": dict(props.get("tags") or {}),
        "uid": None,
    }


def _site_location(props: dict[str, Any]) -> str:
    return props.get("location") or props["group"]["location"]


def _site_output(name: str, location: str, props: dict[str, Any], uid: str | None) -> dict[str, Any]:
    return {
        "name": name,
        "group": props["group"]["name"],
        "location": location,
        "sku": props.get("sku", "B1"),
        "url": f"https://{name}.{HOSTNAME_SUFFIX}",
        "uid": uid,
    }


async def site_handler(ctx: Context, resource_id: str, props: dict[str, Any]) -> Any:
    name = _name(ctx, props)
    prior = ctx.prior_output or {}

    if ctx.phase is Phase.DELETE:
        cloud: ExampleCloud = ctx.clients()
        await delete_if_exists(
            kind="Site", name=name, delete=lambda: cloud.delete(SITE_KIND, prior["location"], name)
        )
        return ctx.destroy()

    location = _site_location(props)
    sku = props.get("sku", "B1")

    if ctx.phase is Phase.UPDATE:
        if prior["location"] != location:
            return ctx.replace(delete_first=False)
        if prior.get("sku") == sku:
            return prior
        cloud = ctx.clients()
        obj = await cloud.update(SITE_KIND, location, name, sku=sku)
        return _site_output(name, location, props, obj["uid"])

    cloud = ctx.clients()
    provisioned = await create_or_adopt(
        kind="Site",
        name=name,
        adopt=ctx.resolve_adopt(props.get("adopt")),
        create=lambda: cloud.create(SITE_KIND, location, name, sku=sku),
        fetch=lambda: cloud.get(SITE_KIND, location, name),
        update=lambda existing: cloud.update(SITE_KIND, location, name, sku=sku),
    )
    return _site_output(name, location, props, provisioned.resource["uid"])


async def local_site(ctx: Context, resource_id: str, props: dict[str, Any]) -> dict[str, Any]:
    return _site_output(_name(ctx, props), _site_location(props), props, None)


def register_example_provider(registry: HandlerRegistry) -> tuple[ResourceFactory, ResourceFactory]:
    """Register the examplecloud kinds and return (Group, Site)."""
    group = registry.register(GROUP_KIND, group_handler, local=local_group)
    site = registry.register(SITE_KIND, site_handler, local=local_site)
    return group, site
