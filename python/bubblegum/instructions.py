"""Instruction builders for the Bubblegum program.

Builders are pure: they derive the accounts they need, validate their inputs
and return an immutable ``solders`` Instruction. Account order matches the
deployed program.
"""

import hashlib

from borsh_construct import Bool, CStruct, Option, U8, U32, U64
from solders.instruction import AccountMeta, Instruction  # type: ignore
from solders.pubkey import Pubkey  # type: ignore
from solders.system_program import CreateAccountParams, create_account  # type: ignore

from .constants import (
    ACCOUNT_COMPRESSION_PROGRAM_ID,
    ALL_DEPTH_SIZE_PAIRS,
    BUBBLEGUM_PROGRAM_ID,
    NOOP_PROGRAM_ID,
    NODE_SIZE,
    SYSTEM_PROGRAM_ID,
)
from .errors import MalformedProofError, UnsupportedTreeParametersError
from .merkle import get_tree_account_size
from .metadata import decode, encode
from .pda import find_tree_authority
from .types import LeafProof, NftMetadata


def sighash(name: str) -> bytes:
    return hashlib.sha256(f"global:{name}".encode()).digest()[:8]


CREATE_TREE_DISCRIMINATOR = sighash("create_tree")
MINT_V1_DISCRIMINATOR = sighash("mint_v1")
TRANSFER_DISCRIMINATOR = sighash("transfer")

CreateTreeArgsLayout = CStruct(
    "max_depth" / U32,
    "max_buffer_size" / U32,
    "public" / Option(Bool),
)
TransferArgsLayout = CStruct(
    "root" / U8[32],
    "data_hash" / U8[32],
    "creator_hash" / U8[32],
    "nonce" / U64,
    "index" / U32,
)


def validate_tree_parameters(max_depth: int, max_buffer_size: int, canopy_depth: int = 0) -> None:
    """Check a depth/buffer pair against the account-compression table.

    Raises:
        UnsupportedTreeParametersError: If the pair is not in the table.
        ValueError: If the canopy does not fit in the tree.
    """
    if (max_depth, max_buffer_size) not in ALL_DEPTH_SIZE_PAIRS:
        raise UnsupportedTreeParametersError(max_depth, max_buffer_size)
    if canopy_depth < 0 or canopy_depth >= max_depth:
        raise ValueError(f"canopy_depth must be in [0, {max_depth}), got {canopy_depth}")


def build_allocate_tree(
    payer: Pubkey,
    tree: Pubkey,
    max_depth: int,
    max_buffer_size: int,
    lamports: int,
    canopy_depth: int = 0,
) -> Instruction:
    """Build the system instruction that allocates the merkle tree account.

    The tree account must sign this instruction alongside the payer.
    """
    validate_tree_parameters(max_depth, max_buffer_size, canopy_depth)
    return create_account(
        CreateAccountParams(
            from_pubkey=payer,
            to_pubkey=tree,
            lamports=lamports,
            space=get_tree_account_size(max_depth, max_buffer_size, canopy_depth),
            owner=ACCOUNT_COMPRESSION_PROGRAM_ID,
        )
    )


def build_create_tree_config(
    tree: Pubkey,
    tree_creator: Pubkey,
    payer: Pubkey,
    max_depth: int,
    max_buffer_size: int,
    tree_authority: Pubkey | None = None,
    public: bool | None = None,
) -> Instruction:
    """Build a CreateTreeConfig instruction.

    Args:
        tree: Merkle tree account (already allocated, or allocated earlier in
            the same transaction).
        tree_creator: Authority recorded on the tree config; must sign.
        payer: Pays rent for the tree config account; must sign.
        max_depth: Tree depth.
        max_buffer_size: Concurrent changelog size.
        tree_authority: Tree config PDA; derived from ``tree`` when omitted.
        public: Whether anyone may mint into the tree.

    Raises:
        UnsupportedTreeParametersError: If the depth/buffer pair is invalid.
    """
    validate_tree_parameters(max_depth, max_buffer_size)
    if tree_authority is None:
        tree_authority, _ = find_tree_authority(tree)

    data = CREATE_TREE_DISCRIMINATOR + CreateTreeArgsLayout.build(
        {"max_depth": max_depth, "max_buffer_size": max_buffer_size, "public": public}
    )
    accounts = [
        AccountMeta(pubkey=tree_authority, is_signer=False, is_writable=True),
        AccountMeta(pubkey=tree, is_signer=False, is_writable=True),
        AccountMeta(pubkey=payer, is_signer=True, is_writable=True),
        AccountMeta(pubkey=tree_creator, is_signer=True, is_writable=False),
        AccountMeta(pubkey=NOOP_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=ACCOUNT_COMPRESSION_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    return Instruction(BUBBLEGUM_PROGRAM_ID, data, accounts)


def build_mint_v1(
    tree: Pubkey,
    leaf_owner: Pubkey,
    payer: Pubkey,
    metadata: "bytes | NftMetadata",
    leaf_delegate: Pubkey | None = None,
    tree_creator_or_delegate: Pubkey | None = None,
) -> Instruction:
    """Build a MintV1 instruction.

    ``leaf_delegate`` defaults to the owner and ``tree_creator_or_delegate``
    to the payer.

    Raises:
        InvalidMetadataError: If the metadata bytes do not decode.
    """
    if isinstance(metadata, NftMetadata):
        metadata_bytes = encode(metadata)
    else:
        metadata_bytes = bytes(metadata)
        decode(metadata_bytes)

    tree_authority, _ = find_tree_authority(tree)
    accounts = [
        AccountMeta(pubkey=tree_authority, is_signer=False, is_writable=True),
        AccountMeta(pubkey=leaf_owner, is_signer=False, is_writable=False),
        AccountMeta(pubkey=leaf_delegate or leaf_owner, is_signer=False, is_writable=False),
        AccountMeta(pubkey=tree, is_signer=False, is_writable=True),
        AccountMeta(pubkey=payer, is_signer=True, is_writable=False),
        AccountMeta(pubkey=tree_creator_or_delegate or payer, is_signer=True, is_writable=False),
        AccountMeta(pubkey=NOOP_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=ACCOUNT_COMPRESSION_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    return Instruction(BUBBLEGUM_PROGRAM_ID, MINT_V1_DISCRIMINATOR + metadata_bytes, accounts)


def validate_proof(proof: LeafProof, leaf_index: int, max_depth: int, canopy_depth: int = 0) -> None:
    """Shape-check a leaf proof against the tree it targets.

    Raises:
        MalformedProofError: On a wrong node count, a node that is not 32
            bytes, or a leaf index outside the tree.
    """
    expected = max_depth - canopy_depth
    if len(proof.proof) != expected:
        raise MalformedProofError(
            f"Proof has {len(proof.proof)} nodes, tree of depth {max_depth} "
            f"with canopy {canopy_depth} needs {expected}"
        )
    for i, node in enumerate(proof.proof):
        if len(node) != NODE_SIZE:
            raise MalformedProofError(f"Proof node {i} is {len(node)} bytes, expected {NODE_SIZE}")
    for name in ("root", "data_hash", "creator_hash"):
        value = getattr(proof, name)
        if len(value) != NODE_SIZE:
            raise MalformedProofError(f"{name} is {len(value)} bytes, expected {NODE_SIZE}")
    if not 0 <= leaf_index < 2**max_depth:
        raise MalformedProofError(f"Leaf index {leaf_index} outside tree of depth {max_depth}")


def build_transfer(
    tree: Pubkey,
    current_owner: Pubkey,
    new_owner: Pubkey,
    leaf_index: int,
    payer: Pubkey,
    proof: LeafProof,
    max_depth: int,
    current_leaf_delegate: Pubkey | None = None,
    canopy_depth: int = 0,
) -> Instruction:
    """Build a Transfer instruction moving leaf ``leaf_index`` to ``new_owner``.

    The owner authorizes the transfer, unless the payer is the leaf delegate
    (and not the owner), in which case the delegate signs instead. Proof
    nodes are appended as read-only remaining accounts.

    Raises:
        MalformedProofError: If the proof does not fit the tree shape.
    """
    validate_proof(proof, leaf_index, max_depth, canopy_depth)

    delegate = current_leaf_delegate or current_owner
    delegate_signs = payer == delegate and payer != current_owner
    tree_authority, _ = find_tree_authority(tree)
    nonce = proof.nonce if proof.nonce is not None else leaf_index

    data = TRANSFER_DISCRIMINATOR + TransferArgsLayout.build(
        {
            "root": proof.root,
            "data_hash": proof.data_hash,
            "creator_hash": proof.creator_hash,
            "nonce": nonce,
            "index": leaf_index,
        }
    )
    accounts = [
        AccountMeta(pubkey=tree_authority, is_signer=False, is_writable=False),
        AccountMeta(pubkey=current_owner, is_signer=not delegate_signs, is_writable=False),
        AccountMeta(pubkey=delegate, is_signer=delegate_signs, is_writable=False),
        AccountMeta(pubkey=new_owner, is_signer=False, is_writable=False),
        AccountMeta(pubkey=tree, is_signer=False, is_writable=True),
        AccountMeta(pubkey=NOOP_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=ACCOUNT_COMPRESSION_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    accounts.extend(
        AccountMeta(pubkey=Pubkey.from_bytes(node), is_signer=False, is_writable=False)
        for node in proof.proof
    )
    return Instruction(BUBBLEGUM_PROGRAM_ID, data, accounts)
