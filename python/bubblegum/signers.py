"""Signer for the fee payer and other required accounts.

A ``KeypairSigner`` wraps secret key material for the duration of a signing
operation. It cannot be copied or pickled, never prints its secret, and
drops its keypair when released (or when used as a context manager).
"""

import json
from typing import Any

import base58
from solders.keypair import Keypair  # type: ignore
from solders.pubkey import Pubkey  # type: ignore

from .errors import InvalidKeypairError


class KeypairSigner:
    """Scoped credential around a solders ``Keypair``."""

    def __init__(self, keypair: Keypair):
        self._keypair: Keypair | None = keypair
        self._pubkey = keypair.pubkey()

    @classmethod
    def from_base58(cls, secret_key: str) -> "KeypairSigner":
        """Create a signer from a base58 64-byte secret key (or 32-byte seed)."""
        try:
            raw = base58.b58decode(secret_key.strip())
        except ValueError as e:
            raise InvalidKeypairError("Invalid secret key encoding") from e
        return cls.from_bytes(raw)

    @classmethod
    def from_bytes(cls, secret_key: bytes) -> "KeypairSigner":
        if len(secret_key) not in (32, 64):
            raise InvalidKeypairError(f"Secret key must be 32 or 64 bytes, got {len(secret_key)}")
        try:
            if len(secret_key) == 32:
                return cls(Keypair.from_seed(bytes(secret_key)))
            return cls(Keypair.from_bytes(bytes(secret_key)))
        except (ValueError, TypeError) as e:
            raise InvalidKeypairError("Invalid secret key") from e

    @classmethod
    def from_json(cls, secret_key: str) -> "KeypairSigner":
        """Create a signer from a solana-keygen JSON array."""
        try:
            values = json.loads(secret_key)
            raw = bytes(values)
        except (ValueError, TypeError) as e:
            raise InvalidKeypairError("Invalid keypair JSON") from e
        return cls.from_bytes(raw)

    @classmethod
    def load(cls, secret: "str | bytes | Keypair | KeypairSigner") -> "KeypairSigner":
        """Accept any supported secret representation."""
        if isinstance(secret, KeypairSigner):
            return secret
        if isinstance(secret, Keypair):
            return cls(secret)
        if isinstance(secret, (bytes, bytearray)):
            return cls.from_bytes(bytes(secret))
        if isinstance(secret, str):
            if secret.lstrip().startswith("["):
                return cls.from_json(secret)
            return cls.from_base58(secret)
        raise InvalidKeypairError(f"Unsupported secret key type: {type(secret).__name__}")

    @property
    def pubkey(self) -> Pubkey:
        return self._pubkey

    @property
    def address(self) -> str:
        return str(self._pubkey)

    @property
    def keypair(self) -> Keypair:
        if self._keypair is None:
            raise InvalidKeypairError(f"Signer for {self.address} has been released")
        return self._keypair

    @property
    def released(self) -> bool:
        return self._keypair is None

    def release(self) -> None:
        self._keypair = None

    def __enter__(self) -> "KeypairSigner":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.release()

    def __copy__(self) -> "KeypairSigner":
        raise TypeError("KeypairSigner cannot be copied")

    def __deepcopy__(self, memo: dict) -> "KeypairSigner":
        raise TypeError("KeypairSigner cannot be copied")

    def __reduce__(self) -> Any:
        raise TypeError("KeypairSigner cannot be pickled")

    def __repr__(self) -> str:
        return f"KeypairSigner(address={self.address})"

    __str__ = __repr__
