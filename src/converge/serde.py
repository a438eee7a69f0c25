"""State-safe serialization of props and outputs.

Everything written to a StateStore passes through serialize(), which turns
Secrets into sealed markers and rejects values that cannot be represented
as JSON. deserialize() is the inverse.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel

from .secret import Secret, SecretSealer

SECRET_KEY = "@secret"
FINGERPRINT_KEY = "@fingerprint"
NAME_KEY = "@name"


def serialize(value: Any, sealer: SecretSealer | None = None) -> Any:
    """Convert a value into JSON-compatible data with secrets sealed.

    Raises:
        TypeError: If the value contains something that is not serializable.
    """
    if value is None or isinstance(value, (bool, int, float, str)):
        return value

    if isinstance(value, Secret):
        marker: dict[str, Any] = {
            SECRET_KEY: sealer.seal(value.reveal()) if sealer and not value.is_redacted else None,
            FINGERPRINT_KEY: value.fingerprint,
        }
        if value.name:
            marker[NAME_KEY] = value.name
        return marker

    if isinstance(value, BaseModel):
        return serialize(value.model_dump(), sealer)

    if isinstance(value, Mapping):
        result: dict[str, Any] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise TypeError(f"Mapping keys must be strings, got {type(key).__name__}")
            result[key] = serialize(item, sealer)
        return result

    if isinstance(value, (list, tuple)):
        return [serialize(item, sealer) for item in value]

    raise TypeError(f"Value of type {type(value).__name__} is not serializable")


def deserialize(data: Any, sealer: SecretSealer | None = None) -> Any:
    """Rebuild values written by serialize()."""
    if isinstance(data, dict):
        if SECRET_KEY in data:
            name = data.get(NAME_KEY)
            token = data[SECRET_KEY]
            if token is not None and sealer is not None:
                return Secret(sealer.unseal(token), name=name)
            return Secret.redacted(data.get(FINGERPRINT_KEY, ""), name=name)
        return {key: deserialize(item, sealer) for key, item in data.items()}

    if isinstance(data, list):
        return [deserialize(item, sealer) for item in data]

    return data
