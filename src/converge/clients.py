"""Azure provider clients handed to handlers.

Credential resolution is not done here: the factory is given a resolved
credential, or falls back to a managed identity credential. Handlers only
ever see AzureClients through ctx.clients().

SECURITY: Every provider call runs with a timeout to prevent indefinite hangs.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from azure.core.credentials import TokenCredential
from azure.identity import ManagedIdentityCredential
from azure.mgmt.resource import ResourceManagementClient

from .errors import provider_error
from .secret import Secret

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER_TIMEOUT_SECONDS = 1800


def get_managed_identity_credential(
    client_id: str | Secret | None = None,
) -> ManagedIdentityCredential:
    """Get a ManagedIdentityCredential.

    Args:
        client_id: Optional client ID for user-assigned managed identity.
                   If None, uses system-assigned managed identity.
    """
    if client_id:
        raw_client_id = Secret.unwrap(client_id)
        logger.info(
            "Using user-assigned managed identity",
            extra={"client_id": raw_client_id[:8] + "..." if len(raw_client_id) > 8 else raw_client_id},
        )
        return ManagedIdentityCredential(client_id=raw_client_id)

    logger.info("Using system-assigned managed identity")
    return ManagedIdentityCredential()


def _is_poller(value: Any) -> bool:
    return callable(getattr(value, "result", None)) and callable(getattr(value, "done", None))


@dataclass
class AzureClients:
    """SDK clients for one subscription."""

    resources: ResourceManagementClient
    subscription_id: str
    timeout_seconds: int = DEFAULT_PROVIDER_TIMEOUT_SECONDS

    async def call(self, operation: Callable[[], Any], *, operation_name: str) -> Any:
        """Run a blocking SDK call off the event loop.

        Long-running operations return a poller; its result is awaited
        with the configured timeout.

        Raises:
            ProviderError: If the operation exceeds the timeout.
            AzureError: Whatever the SDK raised.
        """
        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(None, operation)
        if not _is_poller(result):
            return result

        try:
            return await asyncio.wait_for(
                loop.run_in_executor(None, result.result),
                timeout=self.timeout_seconds,
            )
        except TimeoutError as e:
            logger.error(
                f"{operation_name} timed out",
                extra={"timeout_seconds": self.timeout_seconds},
            )
            raise provider_error(f"{operation_name} timed out", e) from e


class AzureClientFactory:
    """Builds AzureClients once per factory."""

    def __init__(
        self,
        subscription_id: str,
        *,
        credential: TokenCredential | None = None,
        client_id: str | Secret | None = None,
        timeout_seconds: int = DEFAULT_PROVIDER_TIMEOUT_SECONDS,
    ) -> None:
        if not subscription_id:
            raise ValueError("Azure subscription ID is required")
        self._subscription_id = subscription_id
        self._credential = credential
        self._client_id = client_id
        self._timeout_seconds = timeout_seconds
        self._clients: AzureClients | None = None

    @property
    def subscription_id(self) -> str:
        return self._subscription_id

    def create(self) -> AzureClients:
        if self._clients is None:
            credential = self._credential or get_managed_identity_credential(self._client_id)
            self._clients = AzureClients(
                resources=ResourceManagementClient(
                    credential=credential,
                    subscription_id=self._subscription_id,
                ),
                subscription_id=self._subscription_id,
                timeout_seconds=self._timeout_seconds,
            )
        return self._clients
