"""Shared fixtures: an in-memory RPC node that executes Bubblegum transactions."""

import copy
from dataclasses import dataclass
from types import SimpleNamespace
from typing import Any

import httpx
import pytest
from solana.exceptions import SolanaRpcException
from solana.rpc.core import RPCException
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import Transaction
from solders.transaction_status import TransactionConfirmationStatus

from bubblegum.constants import ACCOUNT_COMPRESSION_PROGRAM_ID, BUBBLEGUM_PROGRAM_ID, SYSTEM_PROGRAM_ID
from bubblegum.instructions import (
    CREATE_TREE_DISCRIMINATOR,
    MINT_V1_DISCRIMINATOR,
    TRANSFER_DISCRIMINATOR,
    CreateTreeArgsLayout,
    TransferArgsLayout,
)
from bubblegum.merkle import MerkleTree, hash_leaf, recompute_root
from bubblegum.metadata import decode, hash_metadata
from bubblegum.pda import find_asset_id, find_tree_authority
from bubblegum.types import Creator, LeafProof, NftMetadata, SubmitPolicy

LAST_VALID_OFFSET = 150


def transport_failure(message: str) -> SolanaRpcException:
    """What solana-py raises when the HTTP request itself fails."""
    return SolanaRpcException(httpx.ConnectError(message), None, None, None)


class ExecutionError(Exception):
    """A transaction failed while being executed by the fake node."""


@dataclass
class LeafRecord:
    owner: str
    delegate: str
    nonce: int
    data_hash: bytes
    creator_hash: bytes


@dataclass
class TreeState:
    tree: MerkleTree
    creator: str
    num_minted: int
    leaves: dict[int, LeafRecord]


class FakeRpc:
    """Stand-in for ``solana.rpc.api.Client`` backed by an in-memory ledger.

    Sent transactions are signature-checked and executed: system
    ``create_account`` plus Bubblegum create_tree, mint_v1 and transfer,
    replayed against a ``MerkleTree``. Failure modes are scripted through
    the public attributes.
    """

    def __init__(self):
        self.accounts: dict[str, SimpleNamespace] = {}
        self.trees: dict[str, TreeState] = {}
        self.statuses: dict[str, SimpleNamespace] = {}
        self.blockhashes: set[str] = set()
        self.slot = 1000
        self.block_height = 900

        # Scripted behaviour
        self.send_failures = 0
        self.stale_preflights = 0
        self.land = True
        self.pending_polls = 0
        self.confirmation_status = TransactionConfirmationStatus.Confirmed
        self.status_poll_failures = 0
        self.lagging_status_polls = 0
        self.lagging_height_polls = 0

        # Observations
        self.send_calls = 0
        self.sent: list[str] = []
        self.polls = 0

    # --- Client surface ---

    def get_latest_blockhash(self, commitment: Any = None) -> SimpleNamespace:
        blockhash = Hash.new_unique()
        self.blockhashes.add(str(blockhash))
        return SimpleNamespace(
            value=SimpleNamespace(
                blockhash=blockhash,
                last_valid_block_height=self.block_height + LAST_VALID_OFFSET,
            )
        )

    def get_minimum_balance_for_rent_exemption(self, space: int, commitment: Any = None) -> SimpleNamespace:
        return SimpleNamespace(value=(space + 128) * 6960)

    def get_block_height(self, commitment: Any = None) -> SimpleNamespace:
        if self.lagging_height_polls > 0:
            self.lagging_height_polls -= 1
            raise _node_behind()
        return SimpleNamespace(value=self.block_height)

    def get_account_info(self, pubkey: Pubkey, commitment: Any = None) -> SimpleNamespace:
        return SimpleNamespace(value=self.accounts.get(str(pubkey)))

    def send_raw_transaction(self, txn: bytes, opts: Any = None) -> SimpleNamespace:
        self.send_calls += 1
        if self.send_failures > 0:
            self.send_failures -= 1
            raise transport_failure("connection reset by peer")

        tx = Transaction.from_bytes(txn)
        signature = str(tx.signatures[0])
        if not all(tx.verify_with_results()):
            raise _preflight_error("Transaction signature verification failure")

        blockhash = str(tx.message.recent_blockhash)
        if self.stale_preflights > 0 or blockhash not in self.blockhashes:
            self.stale_preflights = max(self.stale_preflights - 1, 0)
            self.blockhashes.discard(blockhash)
            raise _preflight_error("Transaction simulation failed: Blockhash not found")

        self.sent.append(signature)
        if not self.land:
            return SimpleNamespace(value=tx.signatures[0])

        skip_preflight = bool(opts is not None and opts.skip_preflight)
        try:
            self._execute(tx)
        except ExecutionError as e:
            if not skip_preflight:
                self.sent.pop()
                raise _preflight_error(f"Transaction simulation failed: {e}", logs=[str(e)]) from e
            self._record_status(signature, err=str(e))
        else:
            self._record_status(signature, err=None)
        return SimpleNamespace(value=tx.signatures[0])

    def get_signature_statuses(self, signatures: list, search_transaction_history: bool = False) -> SimpleNamespace:
        self.polls += 1
        if self.status_poll_failures > 0:
            self.status_poll_failures -= 1
            raise transport_failure("read timed out")
        if self.lagging_status_polls > 0:
            self.lagging_status_polls -= 1
            raise _node_behind()
        if self.pending_polls > 0:
            self.pending_polls -= 1
            return SimpleNamespace(value=[None for _ in signatures])
        return SimpleNamespace(value=[self.statuses.get(str(sig)) for sig in signatures])

    # --- Ledger helpers for tests ---

    def leaf(self, tree: "str | Pubkey", index: int) -> LeafRecord:
        return self.trees[str(tree)].leaves[index]

    def proof(self, tree: "str | Pubkey", index: int, canopy_depth: int = 0) -> LeafProof:
        state = self.trees[str(tree)]
        record = state.leaves[index]
        return LeafProof(
            root=state.tree.root,
            data_hash=record.data_hash,
            creator_hash=record.creator_hash,
            proof=state.tree.get_proof(index, canopy_depth),
            nonce=record.nonce,
        )

    # --- Execution ---

    def _record_status(self, signature: str, err: Any) -> None:
        self.slot += 1
        self.statuses[signature] = SimpleNamespace(
            slot=self.slot,
            confirmations=1,
            err=err,
            confirmation_status=self.confirmation_status,
        )

    def _execute(self, tx: Transaction) -> None:
        message = tx.message
        keys = list(message.account_keys)
        num_signers = message.header.num_required_signatures
        accounts = copy.deepcopy(self.accounts)
        trees = copy.deepcopy(self.trees)

        for ix in message.instructions:
            program_id = keys[ix.program_id_index]
            ix_accounts = [keys[i] for i in ix.accounts]
            signed = {str(keys[i]) for i in ix.accounts if i < num_signers}
            data = bytes(ix.data)
            if program_id == SYSTEM_PROGRAM_ID:
                _create_account(accounts, ix_accounts, signed, data)
            elif program_id == BUBBLEGUM_PROGRAM_ID:
                _bubblegum(accounts, trees, ix_accounts, signed, data, self.slot)
            else:
                raise ExecutionError(f"Unknown program {program_id}")

        self.accounts = accounts
        self.trees = trees


def _preflight_error(message: str, logs: list[str] | None = None) -> RPCException:
    return RPCException(SimpleNamespace(message=message, data=SimpleNamespace(logs=logs or [])))


def _node_behind() -> RPCException:
    return RPCException(SimpleNamespace(message="Node is behind by 42 slots", data=None))


def _create_account(accounts: dict, ix_accounts: list[Pubkey], signed: set[str], data: bytes) -> None:
    if int.from_bytes(data[0:4], "little") != 0:
        raise ExecutionError("Unsupported system instruction")
    payer, new_account = ix_accounts[0], ix_accounts[1]
    if str(payer) not in signed or str(new_account) not in signed:
        raise ExecutionError("create_account requires payer and new account signatures")
    if str(new_account) in accounts:
        raise ExecutionError(f"Account {new_account} already in use")
    lamports = int.from_bytes(data[4:12], "little")
    space = int.from_bytes(data[12:20], "little")
    owner = str(Pubkey.from_bytes(data[20:52]))
    accounts[str(new_account)] = SimpleNamespace(data=bytes(space), owner=owner, lamports=lamports)


def _bubblegum(
    accounts: dict,
    trees: dict,
    ix_accounts: list[Pubkey],
    signed: set[str],
    data: bytes,
    slot: int,
) -> None:
    discriminator, args = data[:8], data[8:]
    if discriminator == CREATE_TREE_DISCRIMINATOR:
        tree_authority, tree, payer, creator = ix_accounts[:4]
        parsed = CreateTreeArgsLayout.parse(args)
        account = accounts.get(str(tree))
        if account is None or account.owner != str(ACCOUNT_COMPRESSION_PROGRAM_ID):
            raise ExecutionError("Merkle tree account is not allocated")
        if tree_authority != find_tree_authority(tree)[0]:
            raise ExecutionError("ConstraintSeeds: tree_authority")
        if str(creator) not in signed or str(payer) not in signed:
            raise ExecutionError("Missing tree creator signature")
        if str(tree) in trees:
            raise ExecutionError("Tree already initialized")
        header = bytearray(account.data)
        header[0] = 1
        header[2:6] = parsed.max_buffer_size.to_bytes(4, "little")
        header[6:10] = parsed.max_depth.to_bytes(4, "little")
        header[10:42] = bytes(tree_authority)
        header[42:50] = slot.to_bytes(8, "little")
        account.data = bytes(header)
        trees[str(tree)] = TreeState(
            tree=MerkleTree(parsed.max_depth), creator=str(creator), num_minted=0, leaves={}
        )
    elif discriminator == MINT_V1_DISCRIMINATOR:
        _, owner, delegate, tree, payer, tree_delegate = ix_accounts[:6]
        state = trees.get(str(tree))
        if state is None:
            raise ExecutionError("Tree config not initialized")
        if str(tree_delegate) not in signed or str(tree_delegate) != state.creator:
            raise ExecutionError("Tree creator or delegate must sign")
        metadata = decode(args)
        nonce = state.num_minted
        asset_id, _ = find_asset_id(tree, nonce)
        data_hash, creator_hash = hash_metadata(metadata)
        state.tree.append(hash_leaf(asset_id, owner, delegate, nonce, data_hash, creator_hash))
        state.leaves[nonce] = LeafRecord(str(owner), str(delegate), nonce, data_hash, creator_hash)
        state.num_minted += 1
    elif discriminator == TRANSFER_DISCRIMINATOR:
        _, owner, delegate, new_owner, tree = ix_accounts[:5]
        proof = [bytes(node) for node in ix_accounts[8:]]
        parsed = TransferArgsLayout.parse(args)
        state = trees.get(str(tree))
        if state is None:
            raise ExecutionError("Tree config not initialized")
        if str(owner) not in signed and str(delegate) not in signed:
            raise ExecutionError("Leaf owner or delegate must sign")
        if bytes(parsed.root) != state.tree.root:
            raise ExecutionError("Invalid root recomputed from proof")
        asset_id, _ = find_asset_id(tree, parsed.nonce)
        leaf = hash_leaf(
            asset_id, owner, delegate, parsed.nonce, bytes(parsed.data_hash), bytes(parsed.creator_hash)
        )
        full_proof = proof + [
            state.tree.get_node(level, (parsed.index >> level) ^ 1)
            for level in range(len(proof), state.tree.max_depth)
        ]
        if recompute_root(leaf, full_proof, parsed.index) != state.tree.root:
            raise ExecutionError("Invalid root recomputed from proof")
        state.tree.set_leaf(
            parsed.index,
            hash_leaf(
                asset_id,
                new_owner,
                new_owner,
                parsed.nonce,
                bytes(parsed.data_hash),
                bytes(parsed.creator_hash),
            ),
        )
        record = state.leaves[parsed.index]
        record.owner = str(new_owner)
        record.delegate = str(new_owner)
    else:
        raise ExecutionError("Unknown Bubblegum instruction")


@pytest.fixture
def rpc() -> FakeRpc:
    return FakeRpc()


@pytest.fixture
def connection_error():
    """Factory for the transport exception solana-py raises."""
    return transport_failure


@pytest.fixture
def fast_policy() -> SubmitPolicy:
    """Policy with no real sleeping."""
    return SubmitPolicy(
        max_retries=3,
        retry_backoff=0,
        confirmation_timeout=0.2,
        poll_interval=0,
    )


@pytest.fixture
def payer() -> Keypair:
    return Keypair()


@pytest.fixture
def sample_metadata() -> NftMetadata:
    creator = Keypair().pubkey()
    return NftMetadata(
        name="Test",
        symbol="TNFT",
        uri="https://example.com/t.json",
        seller_fee_basis_points=500,
        creators=[Creator(address=creator, verified=False, share=100)],
        primary_sale_happened=False,
        is_mutable=True,
    )
