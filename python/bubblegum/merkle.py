"""Leaf hashing and proof helpers for concurrent merkle trees.

Node hashing matches spl-account-compression: keccak-256 of the two children,
with the empty leaf being 32 zero bytes.
"""

from functools import lru_cache

from eth_hash.auto import keccak
from solders.pubkey import Pubkey  # type: ignore

from .constants import (
    CONCURRENT_MERKLE_TREE_HEADER_SIZE_V1,
    LEAF_SCHEMA_VERSION_V1,
    NODE_SIZE,
)

EMPTY_NODE = bytes(NODE_SIZE)


def keccak256(data: bytes) -> bytes:
    return keccak(data)


def hash_pair(left: bytes, right: bytes) -> bytes:
    return keccak256(left + right)


@lru_cache(maxsize=64)
def empty_node(level: int) -> bytes:
    """Root of an empty subtree of the given height."""
    if level == 0:
        return EMPTY_NODE
    child = empty_node(level - 1)
    return hash_pair(child, child)


def hash_leaf(
    asset_id: Pubkey,
    owner: Pubkey,
    delegate: Pubkey,
    nonce: int,
    data_hash: bytes,
    creator_hash: bytes,
) -> bytes:
    """Hash of a V1 leaf schema entry."""
    return keccak256(
        bytes([LEAF_SCHEMA_VERSION_V1])
        + bytes(asset_id)
        + bytes(owner)
        + bytes(delegate)
        + nonce.to_bytes(8, "little")
        + data_hash
        + creator_hash
    )


def recompute_root(leaf: bytes, proof: list[bytes], index: int) -> bytes:
    node = leaf
    for level, sibling in enumerate(proof):
        if (index >> level) & 1:
            node = hash_pair(sibling, node)
        else:
            node = hash_pair(node, sibling)
    return node


def verify_proof(root: bytes, leaf: bytes, proof: list[bytes], index: int) -> bool:
    return recompute_root(leaf, proof, index) == root


def get_tree_account_size(max_depth: int, max_buffer_size: int, canopy_depth: int = 0) -> int:
    """Bytes needed by a concurrent merkle tree account.

    Header, then sequence number, active index and buffer size (u64 each),
    the changelog ring buffer, the rightmost path and the canopy.
    """
    changelog = NODE_SIZE + NODE_SIZE * max_depth + 4 + 4
    rightmost_path = NODE_SIZE * max_depth + NODE_SIZE + 4 + 4
    tree = 8 + 8 + 8 + max_buffer_size * changelog + rightmost_path
    canopy = max((1 << (canopy_depth + 1)) - 2, 0) * NODE_SIZE
    return CONCURRENT_MERKLE_TREE_HEADER_SIZE_V1 + tree + canopy


class MerkleTree:
    """Sparse in-memory mirror of a concurrent merkle tree.

    Only non-empty nodes are stored, so updates and proofs cost O(depth).
    """

    def __init__(self, max_depth: int):
        self.max_depth = max_depth
        self.num_leaves = 0
        self._nodes: dict[tuple[int, int], bytes] = {}

    @property
    def root(self) -> bytes:
        return self.get_node(self.max_depth, 0)

    def get_node(self, level: int, index: int) -> bytes:
        return self._nodes.get((level, index), empty_node(level))

    def get_leaf(self, index: int) -> bytes:
        return self.get_node(0, index)

    def set_leaf(self, index: int, leaf: bytes) -> None:
        if not 0 <= index < 2**self.max_depth:
            raise IndexError(f"Leaf index {index} outside tree of depth {self.max_depth}")
        self._nodes[(0, index)] = leaf
        node_index = index
        for level in range(1, self.max_depth + 1):
            node_index >>= 1
            left = self.get_node(level - 1, node_index * 2)
            right = self.get_node(level - 1, node_index * 2 + 1)
            self._nodes[(level, node_index)] = hash_pair(left, right)
        self.num_leaves = max(self.num_leaves, index + 1)

    def append(self, leaf: bytes) -> int:
        index = self.num_leaves
        self.set_leaf(index, leaf)
        return index

    def get_proof(self, index: int, canopy_depth: int = 0) -> list[bytes]:
        """Sibling path from leaf ``index`` upward, minus the canopy levels."""
        return [
            self.get_node(level, (index >> level) ^ 1)
            for level in range(self.max_depth - canopy_depth)
        ]


class TreeHeader:
    """Fields of a concurrent merkle tree account header (V1)."""

    __slots__ = ("max_buffer_size", "max_depth", "authority", "creation_slot")

    def __init__(self, max_buffer_size: int, max_depth: int, authority: Pubkey, creation_slot: int):
        self.max_buffer_size = max_buffer_size
        self.max_depth = max_depth
        self.authority = authority
        self.creation_slot = creation_slot

    @classmethod
    def from_account_data(cls, data: bytes) -> "TreeHeader":
        """Parse the header at the start of a tree account's data.

        Layout: account type (u8), header version (u8), then max_buffer_size
        (u32), max_depth (u32), authority (32 bytes) and creation_slot (u64).
        """
        if len(data) < CONCURRENT_MERKLE_TREE_HEADER_SIZE_V1:
            raise ValueError(f"Tree account data too short: {len(data)} bytes")
        if data[0] != 1:
            raise ValueError(f"Not a concurrent merkle tree account (type {data[0]})")
        return cls(
            max_buffer_size=int.from_bytes(data[2:6], "little"),
            max_depth=int.from_bytes(data[6:10], "little"),
            authority=Pubkey.from_bytes(data[10:42]),
            creation_slot=int.from_bytes(data[42:50], "little"),
        )

    def canopy_depth(self, account_size: int) -> int:
        """Infer the canopy depth from the total account size."""
        base = get_tree_account_size(self.max_depth, self.max_buffer_size, 0)
        canopy_nodes = (account_size - base) // NODE_SIZE
        depth = 0
        while (1 << (depth + 2)) - 2 <= canopy_nodes:
            depth += 1
        return depth
