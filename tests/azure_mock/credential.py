"""Mock managed identity credential.

Hands out fake tokens without Azure connectivity. The mock ARM client
never asks for a token; tests assert on how the credential was built.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

from azure.core.credentials import AccessToken
from azure.core.exceptions import ClientAuthenticationError

# Token validity duration
TOKEN_VALIDITY_HOURS = 1


class MockManagedIdentityCredential:
    """Stand-in for azure.identity.ManagedIdentityCredential."""

    def __init__(self, client_id: str | None = None, **_kwargs: Any) -> None:
        self.client_id = client_id
        self.get_token_call_count = 0
        self._failure_message: str | None = None

    def set_failure(self, message: str | None = "Authentication failed") -> None:
        """Make every later get_token call fail (None resets)."""
        self._failure_message = message

    def get_token(self, *scopes: str, **_kwargs: Any) -> AccessToken:
        self.get_token_call_count += 1
        if self._failure_message:
            raise ClientAuthenticationError(message=self._failure_message)
        identity_part = self.client_id or "system-assigned"
        expires_on = datetime.now(UTC) + timedelta(hours=TOKEN_VALIDITY_HOURS)
        return AccessToken(
            f"mock-token-{self.get_token_call_count}-{identity_part}",
            int(expires_on.timestamp()),
        )

    def close(self) -> None:
        pass


def create_mock_credential(client_id: str | None = None) -> MockManagedIdentityCredential:
    return MockManagedIdentityCredential(client_id=client_id)
