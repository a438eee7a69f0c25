"""Azure API Mock for handler tests.

In-memory implementation of the Azure Resource Manager operations the
built-in handlers call, so they can be tested without Azure connectivity.

Key Features:
- In-memory state for resource groups and generic ARM resources
- Cascading resource group deletion
- Call recording for asserting which operations ran
- Error injection for testing failure scenarios
- Managed Identity simulation

Usage:
    from azure_mock import MockAzureContext

    with MockAzureContext() as azure:
        factory = AzureClientFactory(azure.subscription_id)
        ...
        assert azure.state.call_count("resource_groups.begin_delete") == 1
"""

from .context import DEFAULT_SUBSCRIPTION_ID, MockAzureContext, mock_azure_context
from .credential import MockManagedIdentityCredential, create_mock_credential
from .resources import MockResource, MockResourceClient, MockResourceState

__all__ = [
    "DEFAULT_SUBSCRIPTION_ID",
    "MockAzureContext",
    "MockManagedIdentityCredential",
    "MockResource",
    "MockResourceClient",
    "MockResourceState",
    "create_mock_credential",
    "mock_azure_context",
]
