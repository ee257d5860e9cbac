"""Types for the Bubblegum compressed-NFT pipeline."""

import time
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any

from solders.hash import Hash  # type: ignore
from solders.pubkey import Pubkey  # type: ignore

from .constants import (
    DEFAULT_COMMITMENT,
    DEFAULT_CONFIRMATION_TIMEOUT_SECONDS,
    DEFAULT_MAX_REBUILDS,
    DEFAULT_MAX_RETRIES,
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_RETRY_BACKOFF_SECONDS,
    MAX_CREATOR_LIMIT,
    MAX_NAME_LENGTH,
    MAX_SELLER_FEE_BASIS_POINTS,
    MAX_SYMBOL_LENGTH,
    MAX_URI_LENGTH,
)
from .errors import BubblegumError, InvalidMetadataError

# --- Metadata ---


class TokenStandard(IntEnum):
    NON_FUNGIBLE = 0
    FUNGIBLE_ASSET = 1
    FUNGIBLE = 2
    NON_FUNGIBLE_EDITION = 3


class UseMethod(IntEnum):
    BURN = 0
    MULTIPLE = 1
    SINGLE = 2


class TokenProgramVersion(IntEnum):
    ORIGINAL = 0
    TOKEN_2022 = 1


@dataclass
class Creator:
    """A creator entry with its royalty share (percent)."""

    address: Pubkey
    verified: bool
    share: int  # 0-100

    def validate(self) -> None:
        if self.share < 0 or self.share > 100:
            raise InvalidMetadataError(f"Creator share must be 0-100, got {self.share}")


@dataclass
class Collection:
    verified: bool
    key: Pubkey


@dataclass
class Uses:
    use_method: UseMethod
    remaining: int
    total: int


@dataclass
class NftMetadata:
    """Metadata of a compressed NFT, in the protocol's MetadataArgs shape."""

    name: str
    symbol: str
    uri: str
    seller_fee_basis_points: int
    creators: list[Creator] = field(default_factory=list)
    primary_sale_happened: bool = False
    is_mutable: bool = True
    edition_nonce: int | None = None
    token_standard: TokenStandard | None = TokenStandard.NON_FUNGIBLE
    collection: Collection | None = None
    uses: Uses | None = None
    token_program_version: TokenProgramVersion = TokenProgramVersion.ORIGINAL

    def validate(self) -> None:
        """Check protocol invariants.

        Raises:
            InvalidMetadataError: On the first violated invariant.
        """
        if not self.name:
            raise InvalidMetadataError("Metadata name cannot be empty")
        if not self.uri:
            raise InvalidMetadataError("Metadata uri cannot be empty")
        _check_length("name", self.name, MAX_NAME_LENGTH)
        _check_length("symbol", self.symbol, MAX_SYMBOL_LENGTH)
        _check_length("uri", self.uri, MAX_URI_LENGTH)

        if not 0 <= self.seller_fee_basis_points <= MAX_SELLER_FEE_BASIS_POINTS:
            raise InvalidMetadataError(
                f"seller_fee_basis_points must be 0-{MAX_SELLER_FEE_BASIS_POINTS}, "
                f"got {self.seller_fee_basis_points}"
            )
        if self.edition_nonce is not None and not 0 <= self.edition_nonce <= 255:
            raise InvalidMetadataError(f"edition_nonce must fit in u8, got {self.edition_nonce}")

        if len(self.creators) > MAX_CREATOR_LIMIT:
            raise InvalidMetadataError(
                f"At most {MAX_CREATOR_LIMIT} creators allowed, got {len(self.creators)}"
            )
        for creator in self.creators:
            creator.validate()
        if self.creators:
            total_share = sum(c.share for c in self.creators)
            if total_share != 100:
                raise InvalidMetadataError(f"Creator shares must sum to 100, got {total_share}")
        if len({bytes(c.address) for c in self.creators}) != len(self.creators):
            raise InvalidMetadataError("Duplicate creator address")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "NftMetadata":
        from .metadata import metadata_from_dict

        return metadata_from_dict(data)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "symbol": self.symbol,
            "uri": self.uri,
            "seller_fee_basis_points": self.seller_fee_basis_points,
            "creators": [
                {"address": str(c.address), "verified": c.verified, "share": c.share}
                for c in self.creators
            ],
            "primary_sale_happened": self.primary_sale_happened,
            "is_mutable": self.is_mutable,
            "edition_nonce": self.edition_nonce,
            "token_standard": self.token_standard.name.lower() if self.token_standard is not None else None,
            "collection": (
                {"verified": self.collection.verified, "key": str(self.collection.key)}
                if self.collection
                else None
            ),
            "uses": (
                {
                    "use_method": self.uses.use_method.name.lower(),
                    "remaining": self.uses.remaining,
                    "total": self.uses.total,
                }
                if self.uses
                else None
            ),
            "token_program_version": self.token_program_version.name.lower(),
        }


def _check_length(field_name: str, value: str, limit: int) -> None:
    size = len(value.encode("utf-8"))
    if size > limit:
        raise InvalidMetadataError(f"Metadata {field_name} exceeds {limit} bytes ({size})")


# --- Trees and proofs ---


@dataclass
class TreeConfig:
    """Identity and shape of a Bubblegum merkle tree."""

    tree: Pubkey
    tree_authority: Pubkey
    tree_creator: Pubkey
    max_depth: int
    max_buffer_size: int
    canopy_depth: int = 0
    public: bool | None = None

    @property
    def capacity(self) -> int:
        return 2**self.max_depth

    @property
    def proof_length(self) -> int:
        return self.max_depth - self.canopy_depth

    def to_dict(self) -> dict[str, Any]:
        return {
            "tree": str(self.tree),
            "tree_authority": str(self.tree_authority),
            "tree_creator": str(self.tree_creator),
            "max_depth": self.max_depth,
            "max_buffer_size": self.max_buffer_size,
            "canopy_depth": self.canopy_depth,
            "public": self.public,
        }


@dataclass
class LeafProof:
    """Current state of a leaf plus the sibling path to the tree root.

    ``nonce`` is the leaf's mint nonce, which equals its index for trees that
    have only ever been appended to.
    """

    root: bytes
    data_hash: bytes
    creator_hash: bytes
    proof: list[bytes]
    nonce: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LeafProof":
        """Build from a proof record (hex/base58 node strings accepted)."""
        from .utils import to_bytes32

        nonce = data.get("nonce")
        return cls(
            root=to_bytes32(data["root"], "root"),
            data_hash=to_bytes32(data["data_hash"], "data_hash"),
            creator_hash=to_bytes32(data["creator_hash"], "creator_hash"),
            proof=[to_bytes32(node, "proof node") for node in data.get("proof", [])],
            nonce=int(nonce) if nonce is not None else None,
        )


# --- Submission ---


@dataclass
class Checkpoint:
    """Recent blockhash a transaction is bound to, with its expiry height."""

    blockhash: Hash
    last_valid_block_height: int | None = None


@dataclass
class SubmitPolicy:
    """Retry, polling and timeout policy for one submission."""

    max_retries: int = DEFAULT_MAX_RETRIES
    retry_backoff: float = DEFAULT_RETRY_BACKOFF_SECONDS
    confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT_SECONDS
    poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS
    commitment: str = DEFAULT_COMMITMENT  # processed | confirmed | finalized
    timeout: float | None = None  # bound on total wall-clock time
    skip_preflight: bool = False
    max_rebuilds: int = DEFAULT_MAX_REBUILDS

    def validate(self) -> None:
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.retry_backoff < 0:
            raise ValueError(f"retry_backoff must be >= 0, got {self.retry_backoff}")
        if self.confirmation_timeout <= 0:
            raise ValueError(f"confirmation_timeout must be > 0, got {self.confirmation_timeout}")
        if self.poll_interval < 0:
            raise ValueError(f"poll_interval must be >= 0, got {self.poll_interval}")
        if self.commitment not in ("processed", "confirmed", "finalized"):
            raise ValueError(f"Unknown commitment: {self.commitment}")
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError(f"timeout must be > 0, got {self.timeout}")

    def deadline(self) -> float | None:
        """Monotonic instant by which the whole call must finish, if bounded."""
        if self.timeout is None:
            return None
        return time.monotonic() + self.timeout


class SubmissionState(str, Enum):
    BUILT = "built"
    SENT = "sent"
    CONFIRMED = "confirmed"
    EXPIRED = "expired"
    REJECTED = "rejected"


@dataclass
class SubmissionResult:
    """Terminal outcome of a submission.

    Either ``signature`` is set with state CONFIRMED, or ``error`` holds the
    typed failure. A signature may also be present on EXPIRED/REJECTED
    results when the node acknowledged the transaction.
    """

    state: SubmissionState
    signature: str | None = None
    error: BubblegumError | None = None
    attempts: int = 0
    slot: int | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.state == SubmissionState.CONFIRMED and self.error is None

    def unwrap(self) -> str:
        """Return the signature, raising the carried error on failure."""
        if self.error is not None:
            raise self.error
        if self.signature is None:
            raise RuntimeError(f"Submission ended in state {self.state.value} without a signature")
        return self.signature

    @classmethod
    def failure(
        cls,
        error: BubblegumError,
        state: SubmissionState = SubmissionState.BUILT,
        **kwargs: Any,
    ) -> "SubmissionResult":
        return cls(state=state, error=error, **kwargs)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.ok,
            "state": self.state.value,
            "signature": self.signature or "",
            "attempts": self.attempts,
            "slot": self.slot,
            "error": self.error.to_dict() if self.error else None,
            "extra": dict(self.extra),
        }
