"""Compressed-NFT (Bubblegum) transaction pipeline for Solana.

Builds, signs and submits CreateTreeConfig, MintV1 and Transfer
transactions, and encodes NFT metadata in the program's wire format.
"""

from bubblegum.client import SubmissionClient
from bubblegum.config import Settings
from bubblegum.errors import (
    BubblegumError,
    DerivationExhaustedError,
    ExpiredError,
    InvalidKeypairError,
    InvalidMetadataError,
    InvalidPubkeyError,
    MalformedProofError,
    MissingSignerError,
    RejectedError,
    TransportError,
    UnsupportedTreeParametersError,
    map_exception,
)
from bubblegum.instructions import (
    build_allocate_tree,
    build_create_tree_config,
    build_mint_v1,
    build_transfer,
)
from bubblegum.merkle import MerkleTree, hash_leaf, verify_proof
from bubblegum.metadata import decode, encode, hash_metadata, metadata_from_json
from bubblegum.operations import create_tree_config, mint_v1, serialize_metadata, transfer
from bubblegum.pda import derive, find_asset_id, find_bubblegum_signer, find_tree_authority
from bubblegum.signers import KeypairSigner
from bubblegum.transaction import SignedTransaction, UnsignedTransaction, assemble, sign
from bubblegum.types import (
    Checkpoint,
    Collection,
    Creator,
    LeafProof,
    NftMetadata,
    SubmissionResult,
    SubmissionState,
    SubmitPolicy,
    TokenProgramVersion,
    TokenStandard,
    TreeConfig,
    UseMethod,
    Uses,
)

__all__ = [
    # Operations
    "create_tree_config",
    "serialize_metadata",
    "mint_v1",
    "transfer",
    # Types
    "Checkpoint",
    "Collection",
    "Creator",
    "LeafProof",
    "NftMetadata",
    "SubmissionResult",
    "SubmissionState",
    "SubmitPolicy",
    "TokenProgramVersion",
    "TokenStandard",
    "TreeConfig",
    "UseMethod",
    "Uses",
    # Components
    "derive",
    "find_tree_authority",
    "find_bubblegum_signer",
    "find_asset_id",
    "encode",
    "decode",
    "hash_metadata",
    "metadata_from_json",
    "build_allocate_tree",
    "build_create_tree_config",
    "build_mint_v1",
    "build_transfer",
    "assemble",
    "sign",
    "UnsignedTransaction",
    "SignedTransaction",
    "KeypairSigner",
    "SubmissionClient",
    "MerkleTree",
    "hash_leaf",
    "verify_proof",
    "Settings",
    # Errors
    "BubblegumError",
    "DerivationExhaustedError",
    "InvalidMetadataError",
    "UnsupportedTreeParametersError",
    "MalformedProofError",
    "MissingSignerError",
    "InvalidPubkeyError",
    "InvalidKeypairError",
    "TransportError",
    "RejectedError",
    "ExpiredError",
    "map_exception",
]
