"""Opaque holder for sensitive values.

A Secret is unwrapped only at the moment a value is handed to a provider
call. It masks itself in repr/str so it never reaches logs, and the
serializer in serde.py persists it sealed (or as a salted fingerprint
only), never in cleartext.
"""

from __future__ import annotations

import hashlib
import hmac
import os
from typing import Any, Protocol

from .errors import SecretError

MASK = "******"

FINGERPRINT_SCHEME = "pbkdf2_sha256"
FINGERPRINT_ITERATIONS = 100_000
SALT_BYTES = 16


class SecretSealer(Protocol):
    """Encrypts secrets for persistence.

    Encryption at rest is provided by the caller; the engine only calls
    seal() before writing state and unseal() after reading it.
    """

    def seal(self, plaintext: str) -> str: ...

    def unseal(self, token: str) -> str: ...


class Secret:
    """Sensitive value wrapper.

    A redacted secret (loaded from state written without a sealer) carries
    only the salted fingerprint of the original value and cannot be
    unwrapped. Two secrets are equal when their values match; a live secret
    equals a redacted one when its value verifies against the fingerprint.
    """

    __slots__ = ("_value", "_fingerprint", "name")

    def __init__(self, value: str, name: str | None = None) -> None:
        if not isinstance(value, str):
            raise TypeError(f"Secret value must be a string, got {type(value).__name__}")
        self._value: str | None = value
        self._fingerprint: str | None = None
        self.name = name

    @classmethod
    def wrap(cls, value: str | Secret, name: str | None = None) -> Secret:
        """Wrap a raw value; an existing Secret is returned as-is."""
        if isinstance(value, Secret):
            return value
        return cls(value, name=name)

    @classmethod
    def redacted(cls, fingerprint_value: str, name: str | None = None) -> Secret:
        secret = cls.__new__(cls)
        secret._value = None
        secret._fingerprint = fingerprint_value
        secret.name = name
        return secret

    @staticmethod
    def unwrap(value: str | Secret) -> str:
        """Return the raw value of a Secret, or a plain string unchanged.

        Raises:
            SecretError: If the secret was redacted.
        """
        if isinstance(value, Secret):
            return value.reveal()
        return value

    def reveal(self) -> str:
        if self._value is None:
            label = f" '{self.name}'" if self.name else ""
            raise SecretError(
                f"Secret{label} was persisted without a sealer and cannot be unwrapped"
            )
        return self._value

    @property
    def fingerprint(self) -> str:
        """Salted digest of the value, computed once per instance."""
        if self._fingerprint is None:
            self._fingerprint = fingerprint(self.reveal())
        return self._fingerprint

    @property
    def is_redacted(self) -> bool:
        return self._value is None

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, Secret):
            return NotImplemented
        if self._value is not None and other._value is not None:
            return hmac.compare_digest(self._value.encode("utf-8"), other._value.encode("utf-8"))
        if self._value is not None:
            return verify_fingerprint(self._value, other.fingerprint)
        if other._value is not None:
            return verify_fingerprint(other._value, self.fingerprint)
        return hmac.compare_digest(self.fingerprint, other.fingerprint)

    # Equal secrets carry different salts, so there is no stable hash
    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"Secret({MASK})"

    def __str__(self) -> str:
        return MASK


def _digest(value: str, salt: bytes, iterations: int) -> bytes:
    return hashlib.pbkdf2_hmac("sha256", value.encode("utf-8"), salt, iterations)


def fingerprint(value: str, salt: bytes | None = None) -> str:
    """One-way salted digest used to compare secrets without revealing them.

    Format: ``pbkdf2_sha256$<iterations>$<salt hex>$<digest hex>``. A fresh
    random salt is drawn unless one is given.
    """
    if salt is None:
        salt = os.urandom(SALT_BYTES)
    digest = _digest(value, salt, FINGERPRINT_ITERATIONS)
    return f"{FINGERPRINT_SCHEME}${FINGERPRINT_ITERATIONS}${salt.hex()}${digest.hex()}"


def verify_fingerprint(value: str, fingerprint_value: str) -> bool:
    """Check a raw value against a stored fingerprint.

    Malformed or foreign fingerprints never match.
    """
    try:
        scheme, iterations, salt_hex, digest_hex = fingerprint_value.split("$")
        if scheme != FINGERPRINT_SCHEME:
            return False
        salt = bytes.fromhex(salt_hex)
        expected = bytes.fromhex(digest_hex)
        rounds = int(iterations)
    except ValueError:
        return False
    if rounds <= 0:
        return False
    return hmac.compare_digest(_digest(value, salt, rounds), expected)


def is_secret(value: Any) -> bool:
    return isinstance(value, Secret)
