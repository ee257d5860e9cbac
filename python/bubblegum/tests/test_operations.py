"""End-to-end tests for the boundary operations against the in-memory node."""

import json
import threading
import time
from dataclasses import replace

import pytest
from solders.keypair import Keypair

from bubblegum import operations
from bubblegum.client import SubmissionClient
from bubblegum.errors import (
    ExpiredError,
    InvalidKeypairError,
    InvalidMetadataError,
    InvalidPubkeyError,
    MalformedProofError,
    MissingSignerError,
    RejectedError,
    TransportError,
    UnsupportedTreeParametersError,
)
from bubblegum.metadata import decode
from bubblegum.pda import find_tree_authority
from bubblegum.signers import KeypairSigner
from bubblegum.types import SubmissionState


@pytest.fixture
def owner() -> Keypair:
    return Keypair()


@pytest.fixture
def nft_record(owner) -> dict:
    return {
        "name": "Test",
        "symbol": "TNFT",
        "uri": "https://example.com/t.json",
        "seller_fee_basis_points": 500,
        "creators": [{"address": str(owner.pubkey()), "verified": False, "share": 100}],
        "primary_sale_happened": False,
        "is_mutable": True,
    }


def _create_tree(rpc, payer, policy, **kwargs):
    result = operations.create_tree_config(rpc, payer, 14, 2048, policy=policy, **kwargs)
    assert result.ok, result.error
    return result


class TestEndToEnd:
    """Create a tree, mint into it and transfer the leaf."""

    def test_create_mint_transfer(self, rpc, payer, owner, nft_record, fast_policy):
        new_owner = Keypair().pubkey()

        created = _create_tree(rpc, payer, fast_policy)
        tree = created.extra["tree"]

        encoded = operations.serialize_metadata(nft_record)
        minted = operations.mint_v1(rpc, tree, owner.pubkey(), encoded, payer, policy=fast_policy)
        assert minted.ok, minted.error
        assert rpc.leaf(tree, 0).owner == str(owner.pubkey())

        moved = operations.transfer(
            rpc,
            tree,
            owner.pubkey(),
            new_owner,
            0,
            rpc.proof(tree, 0),
            max_depth=14,
            payer_key=payer,
            owner_key=owner,
            policy=fast_policy,
        )
        assert moved.ok, moved.error

        signatures = {created.signature, minted.signature, moved.signature}
        assert len(signatures) == 3
        assert all(
            r.state == SubmissionState.CONFIRMED for r in (created, minted, moved)
        )
        assert rpc.leaf(tree, 0).owner == str(new_owner)

    def test_second_transfer_uses_updated_proof(self, rpc, payer, owner, nft_record, fast_policy):
        """The new owner can move the leaf on with a fresh proof."""
        middle, final = Keypair(), Keypair().pubkey()
        tree = _create_tree(rpc, payer, fast_policy).extra["tree"]
        operations.mint_v1(
            rpc, tree, owner.pubkey(), operations.serialize_metadata(nft_record), payer, policy=fast_policy
        )

        first = operations.transfer(
            rpc, tree, owner.pubkey(), middle.pubkey(), 0, rpc.proof(tree, 0), 14, payer, owner_key=owner,
            policy=fast_policy,
        )
        second = operations.transfer(
            rpc, tree, middle.pubkey(), final, 0, rpc.proof(tree, 0), 14, payer, owner_key=middle,
            policy=fast_policy,
        )

        assert first.ok and second.ok
        assert rpc.leaf(tree, 0).owner == str(final)

    def test_stale_proof_is_rejected(self, rpc, payer, owner, nft_record, fast_policy):
        tree = _create_tree(rpc, payer, fast_policy).extra["tree"]
        encoded = operations.serialize_metadata(nft_record, encoding="raw")
        operations.mint_v1(rpc, tree, owner.pubkey(), encoded, payer, policy=fast_policy)
        stale = rpc.proof(tree, 0)
        operations.mint_v1(rpc, tree, owner.pubkey(), encoded, payer, policy=fast_policy)

        result = operations.transfer(
            rpc, tree, owner.pubkey(), Keypair().pubkey(), 0, stale, 14, payer, owner_key=owner,
            policy=fast_policy,
        )

        assert result.state == SubmissionState.REJECTED
        assert isinstance(result.error, RejectedError)

    def test_payer_owned_leaf_needs_no_owner_key(self, rpc, payer, nft_record, fast_policy):
        tree = _create_tree(rpc, payer, fast_policy).extra["tree"]
        operations.mint_v1(
            rpc, tree, payer.pubkey(), operations.serialize_metadata(nft_record), payer, policy=fast_policy
        )

        result = operations.transfer(
            rpc, tree, payer.pubkey(), Keypair().pubkey(), 0, rpc.proof(tree, 0), 14, payer,
            policy=fast_policy,
        )

        assert result.ok


class TestCreateTreeConfig:
    def test_extra_describes_tree(self, rpc, payer, fast_policy):
        tree = Keypair()

        result = _create_tree(rpc, payer, fast_policy, tree_key=tree, canopy_depth=2)

        assert result.extra["tree"] == str(tree.pubkey())
        assert result.extra["tree_authority"] == str(find_tree_authority(tree.pubkey())[0])
        assert result.extra["tree_creator"] == str(payer.pubkey())

    def test_tree_header_readable(self, rpc, payer, fast_policy):
        tree = _create_tree(rpc, payer, fast_policy, canopy_depth=3).extra["tree"]

        header, canopy_depth = SubmissionClient(rpc).get_tree_header(tree)

        assert header.max_depth == 14
        assert header.max_buffer_size == 2048
        assert canopy_depth == 3

    def test_unsupported_parameters_fail_before_io(self, rpc, payer, fast_policy):
        result = operations.create_tree_config(rpc, payer, 3, 7, policy=fast_policy)

        assert result.state == SubmissionState.BUILT
        assert isinstance(result.error, UnsupportedTreeParametersError)
        assert rpc.send_calls == 0

    def test_separate_creator_must_sign(self, rpc, payer, fast_policy):
        creator = Keypair()

        result = operations.create_tree_config(
            rpc, payer, 14, 2048, tree_creator=creator.pubkey(), policy=fast_policy
        )

        assert isinstance(result.error, MissingSignerError)
        assert result.error.missing == [str(creator.pubkey())]
        assert rpc.send_calls == 0

    def test_separate_creator_with_key(self, rpc, payer, fast_policy):
        creator = Keypair()

        result = _create_tree(rpc, payer, fast_policy, creator_key=creator)

        assert result.extra["tree_creator"] == str(creator.pubkey())

    def test_bad_payer_key(self, rpc, fast_policy):
        result = operations.create_tree_config(rpc, "not a key", 14, 2048, policy=fast_policy)

        assert isinstance(result.error, InvalidKeypairError)

    def test_caller_signer_is_not_released(self, rpc, payer, fast_policy):
        signer = KeypairSigner(payer)

        _create_tree(rpc, signer, fast_policy)

        assert not signer.released

    def test_transport_failure_is_reported(self, rpc, payer, fast_policy):
        rpc.send_failures = 10

        result = operations.create_tree_config(rpc, payer, 14, 2048, policy=fast_policy)

        assert isinstance(result.error, TransportError)
        assert result.error.attempts == 4

    def test_stale_preflight_is_rebuilt(self, rpc, payer, fast_policy):
        rpc.stale_preflights = 1

        result = operations.create_tree_config(rpc, payer, 14, 2048, policy=fast_policy)

        assert result.ok
        assert result.extra["rebuilds"] == 1
        assert rpc.send_calls == 2

    def test_rebuilds_are_bounded(self, rpc, payer, fast_policy):
        rpc.stale_preflights = 5

        result = operations.create_tree_config(
            rpc, payer, 14, 2048, policy=replace(fast_policy, max_rebuilds=2)
        )

        assert result.state == SubmissionState.EXPIRED
        assert result.error.stale
        assert rpc.send_calls == 3

    def test_lagging_node_keeps_signature(self, rpc, payer, fast_policy):
        """A node that errors on every status poll must not hide a sent transaction."""
        rpc.lagging_status_polls = 10_000

        result = operations.create_tree_config(
            rpc, payer, 14, 2048, policy=replace(fast_policy, confirmation_timeout=0.05)
        )

        assert result.state == SubmissionState.EXPIRED
        assert isinstance(result.error, ExpiredError)
        assert result.signature == rpc.sent[0]
        assert len(rpc.sent) == 1

    def test_timeout_bounds_checkpoint_retries(self, rpc, payer, fast_policy, connection_error):
        def down(commitment=None):
            raise connection_error("connection refused")

        rpc.get_latest_blockhash = down
        started = time.monotonic()

        result = operations.create_tree_config(
            rpc, payer, 14, 2048, policy=replace(fast_policy, retry_backoff=0.75, timeout=0.3)
        )

        assert time.monotonic() - started <= 0.4
        assert isinstance(result.error, TransportError)
        assert rpc.send_calls == 0

    def test_rebuilds_share_one_deadline(self, rpc, payer, fast_policy):
        send = rpc.send_raw_transaction

        def slow_send(txn, opts=None):
            time.sleep(0.05)
            return send(txn, opts)

        rpc.send_raw_transaction = slow_send
        rpc.stale_preflights = 10

        result = operations.create_tree_config(
            rpc, payer, 14, 2048, policy=replace(fast_policy, max_rebuilds=10, timeout=0.12)
        )

        assert result.state == SubmissionState.EXPIRED
        assert rpc.send_calls <= 3

    def test_cancelled_before_checkpoint(self, rpc, payer, fast_policy):
        cancel = threading.Event()
        cancel.set()

        result = operations.create_tree_config(rpc, payer, 14, 2048, policy=fast_policy, cancel=cancel)

        assert result.state == SubmissionState.EXPIRED
        assert result.error.cancelled
        assert result.extra["sent"] is False
        assert rpc.send_calls == 0


class TestSerializeMetadata:
    def test_accepts_json(self, nft_record):
        encoded = operations.serialize_metadata(json.dumps(nft_record), encoding="raw")

        assert decode(encoded).name == "Test"

    def test_accepts_metadata(self, sample_metadata):
        assert isinstance(operations.serialize_metadata(sample_metadata), str)

    def test_invalid_shares(self, nft_record):
        nft_record["creators"][0]["share"] = 90

        with pytest.raises(InvalidMetadataError):
            operations.serialize_metadata(nft_record)


class TestMintV1:
    def test_bad_base64(self, rpc, payer, fast_policy):
        tree = _create_tree(rpc, payer, fast_policy).extra["tree"]

        result = operations.mint_v1(rpc, tree, payer.pubkey(), "!!not base64!!", payer, policy=fast_policy)

        assert isinstance(result.error, InvalidMetadataError)

    def test_bad_owner_address(self, rpc, payer, sample_metadata, fast_policy):
        result = operations.mint_v1(
            rpc,
            "11111111111111111111111111111111",
            "bogus",
            operations.serialize_metadata(sample_metadata),
            payer,
            policy=fast_policy,
        )

        assert isinstance(result.error, InvalidPubkeyError)
        assert rpc.send_calls == 0

    def test_wrong_tree_delegate_is_rejected(self, rpc, payer, sample_metadata, fast_policy):
        tree = _create_tree(rpc, payer, fast_policy).extra["tree"]

        result = operations.mint_v1(
            rpc,
            tree,
            payer.pubkey(),
            operations.serialize_metadata(sample_metadata),
            payer,
            tree_delegate_key=Keypair(),
            policy=fast_policy,
        )

        assert result.state == SubmissionState.REJECTED

    def test_leaf_delegate_recorded(self, rpc, payer, owner, sample_metadata, fast_policy):
        delegate = Keypair().pubkey()
        tree = _create_tree(rpc, payer, fast_policy).extra["tree"]

        result = operations.mint_v1(
            rpc,
            tree,
            owner.pubkey(),
            operations.serialize_metadata(sample_metadata),
            payer,
            leaf_delegate=delegate,
            policy=fast_policy,
        )

        assert result.ok
        assert rpc.leaf(tree, 0).delegate == str(delegate)


class TestTransfer:
    def test_wrong_proof_length_fails_before_io(self, rpc, payer, owner, fast_policy):
        proof = {
            "root": "00" * 32,
            "data_hash": "00" * 32,
            "creator_hash": "00" * 32,
            "proof": ["00" * 32] * 13,
        }

        result = operations.transfer(
            rpc,
            "11111111111111111111111111111111",
            owner.pubkey(),
            Keypair().pubkey(),
            0,
            proof,
            max_depth=14,
            payer_key=payer,
            owner_key=owner,
            policy=fast_policy,
        )

        assert result.state == SubmissionState.BUILT
        assert isinstance(result.error, MalformedProofError)
        assert rpc.send_calls == 0

    def test_unparseable_proof_record(self, rpc, payer, owner, fast_policy):
        result = operations.transfer(
            rpc,
            "11111111111111111111111111111111",
            owner.pubkey(),
            Keypair().pubkey(),
            0,
            {"root": "zz"},
            max_depth=14,
            payer_key=payer,
            policy=fast_policy,
        )

        assert isinstance(result.error, MalformedProofError)

    def test_missing_owner_key(self, rpc, payer, owner, nft_record, fast_policy):
        tree = _create_tree(rpc, payer, fast_policy).extra["tree"]
        operations.mint_v1(
            rpc, tree, owner.pubkey(), operations.serialize_metadata(nft_record), payer, policy=fast_policy
        )
        sends = rpc.send_calls

        result = operations.transfer(
            rpc, tree, owner.pubkey(), Keypair().pubkey(), 0, rpc.proof(tree, 0), 14, payer,
            policy=fast_policy,
        )

        assert isinstance(result.error, MissingSignerError)
        assert rpc.send_calls == sends

    def test_delegate_pays_and_signs(self, rpc, payer, owner, nft_record, fast_policy):
        delegate = Keypair()
        tree = _create_tree(rpc, payer, fast_policy).extra["tree"]
        operations.mint_v1(
            rpc,
            tree,
            owner.pubkey(),
            operations.serialize_metadata(nft_record),
            payer,
            leaf_delegate=delegate.pubkey(),
            policy=fast_policy,
        )

        result = operations.transfer(
            rpc,
            tree,
            owner.pubkey(),
            Keypair().pubkey(),
            0,
            rpc.proof(tree, 0),
            14,
            delegate,
            current_leaf_delegate=delegate.pubkey(),
            policy=fast_policy,
        )

        assert result.ok
