"""Utility functions for the Bubblegum pipeline."""

import base64
import binascii

import base58
from solders.pubkey import Pubkey  # type: ignore

from .constants import NETWORK_ALIASES, NETWORK_CONFIGS
from .errors import InvalidPubkeyError


def parse_pubkey(value: "str | bytes | Pubkey", field: str = "address") -> Pubkey:
    """Parse a base58 string (or raw 32 bytes) into a Pubkey.

    Raises:
        InvalidPubkeyError: If the value is not a valid Solana address.
    """
    if isinstance(value, Pubkey):
        return value
    try:
        if isinstance(value, (bytes, bytearray)):
            return Pubkey.from_bytes(bytes(value))
        return Pubkey.from_string(value)
    except (ValueError, TypeError) as e:
        raise InvalidPubkeyError(f"Invalid {field}: {value!r} ({e})") from e


def normalize_network(network: str) -> str:
    """Normalize a network name to its CAIP-2 identifier."""
    if network in NETWORK_CONFIGS:
        return network
    caip2 = NETWORK_ALIASES.get(network.lower())
    if caip2 is None:
        raise ValueError(f"Not a Solana network: {network}")
    return caip2


def get_network_config(network: str) -> dict[str, str]:
    return NETWORK_CONFIGS[normalize_network(network)]


def get_rpc_url(network: str, custom_url: str | None = None) -> str:
    """Get the RPC URL for a Solana network, preferring a custom URL."""
    if custom_url:
        return custom_url
    return get_network_config(network)["rpc_url"]


def to_bytes32(value: "bytes | str | Pubkey", field: str = "value") -> bytes:
    """Coerce a 32-byte node given as bytes, hex or base58 text, or Pubkey."""
    if isinstance(value, Pubkey):
        return bytes(value)
    if isinstance(value, str):
        try:
            raw = bytes.fromhex(value.removeprefix("0x"))
        except ValueError:
            raw = base58.b58decode(value)
    else:
        raw = bytes(value)
    if len(raw) != 32:
        raise ValueError(f"{field} must be 32 bytes, got {len(raw)}")
    return raw


def b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode()


def b64decode(data: str) -> bytes:
    try:
        return base64.b64decode(data, validate=True)
    except binascii.Error as e:
        raise ValueError(f"Invalid base64 payload: {e}") from e
