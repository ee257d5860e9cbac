"""Error taxonomy for the compressed-NFT pipeline.

Every layer fails into one of the classes below. Local validation errors
(derivation, metadata, tree parameters, proof shape, signers, malformed keys)
are raised before any network I/O and are deterministic for the same inputs.
Transport, rejection and expiry errors come from the submission client.
"""

from typing import Any

import httpx
from solana.exceptions import SolanaRpcException  # type: ignore
from solana.rpc.core import RPCException  # type: ignore

from .constants import STALE_BLOCKHASH_MARKERS

# Error codes
ERR_DERIVATION_EXHAUSTED = "derivation_exhausted"
ERR_INVALID_METADATA = "invalid_metadata"
ERR_UNSUPPORTED_TREE_PARAMETERS = "unsupported_tree_parameters"
ERR_MALFORMED_PROOF = "malformed_proof"
ERR_MISSING_SIGNER = "missing_signer"
ERR_TRANSPORT = "transport_error"
ERR_REJECTED = "rejected"
ERR_EXPIRED = "expired"
ERR_INVALID_PUBKEY = "invalid_pubkey"
ERR_INVALID_KEYPAIR = "invalid_keypair"


class BubblegumError(Exception):
    """Base class for every error surfaced by this package."""

    code = "bubblegum_error"
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message}


class DerivationExhaustedError(BubblegumError):
    code = ERR_DERIVATION_EXHAUSTED


class InvalidMetadataError(BubblegumError):
    code = ERR_INVALID_METADATA


class UnsupportedTreeParametersError(BubblegumError):
    code = ERR_UNSUPPORTED_TREE_PARAMETERS

    def __init__(self, max_depth: int, max_buffer_size: int):
        super().__init__(
            f"Unsupported tree parameters: max_depth={max_depth}, max_buffer_size={max_buffer_size}"
        )
        self.max_depth = max_depth
        self.max_buffer_size = max_buffer_size


class MalformedProofError(BubblegumError):
    code = ERR_MALFORMED_PROOF


class MissingSignerError(BubblegumError):
    code = ERR_MISSING_SIGNER

    def __init__(self, missing: list[str]):
        super().__init__(f"Missing signer for: {', '.join(missing)}")
        self.missing = missing

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "missing": list(self.missing)}


class InvalidPubkeyError(BubblegumError):
    code = ERR_INVALID_PUBKEY


class InvalidKeypairError(BubblegumError):
    code = ERR_INVALID_KEYPAIR


class TransportError(BubblegumError):
    """Network failure before the node acknowledged the transaction."""

    code = ERR_TRANSPORT
    retryable = True

    def __init__(self, message: str, attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "attempts": self.attempts}


class RejectedError(BubblegumError):
    """The node evaluated the transaction and reported a failure."""

    code = ERR_REJECTED

    def __init__(self, detail: str, logs: list[str] | None = None):
        super().__init__(f"Transaction rejected: {detail}")
        self.detail = detail
        self.logs = logs or []

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "detail": self.detail, "logs": list(self.logs)}


class ExpiredError(BubblegumError):
    """No terminal status was observed in time.

    Not necessarily an execution failure: unless ``stale`` is set, the
    transaction may still have landed and its status must be queried before
    building a replacement.
    """

    code = ERR_EXPIRED

    def __init__(self, message: str, stale: bool = False, cancelled: bool = False):
        super().__init__(message)
        self.stale = stale
        self.cancelled = cancelled

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "stale": self.stale, "cancelled": self.cancelled}


def rpc_error_message(exc: RPCException) -> str:
    err = exc.args[0] if exc.args else exc
    message = getattr(err, "message", None)
    return str(message) if message else str(err)


def rpc_error_logs(exc: RPCException) -> list[str]:
    err = exc.args[0] if exc.args else None
    data = getattr(err, "data", None)
    logs = getattr(data, "logs", None)
    return list(logs) if logs else []


def transport_detail(exc: BaseException) -> str:
    """Describe a transport failure; solana-py keeps its text in ``error_msg``."""
    return getattr(exc, "error_msg", None) or str(exc) or type(exc).__name__


def is_stale_blockhash(message: str) -> bool:
    lowered = message.lower()
    return any(marker.lower() in lowered for marker in STALE_BLOCKHASH_MARKERS)


def map_exception(exc: BaseException, attempts: int = 0) -> BubblegumError | None:
    """Normalize an exception from any layer into the taxonomy.

    Args:
        exc: The exception to map.
        attempts: Send attempts made so far, recorded on transport errors.

    Returns:
        The mapped error, or None if the exception is not one this package
        knows how to classify.
    """
    if isinstance(exc, BubblegumError):
        return exc
    if isinstance(exc, RPCException):
        message = rpc_error_message(exc)
        if is_stale_blockhash(message):
            return ExpiredError(f"Blockhash expired before execution: {message}", stale=True)
        return RejectedError(message, logs=rpc_error_logs(exc))
    if isinstance(exc, (SolanaRpcException, httpx.HTTPError)):
        return TransportError(f"Transport failure: {transport_detail(exc)}", attempts=attempts)
    return None


def render_error(error: BubblegumError) -> str:
    """Render an error as a single ``code: message`` line."""
    return f"{error.code}: {error.message}"
