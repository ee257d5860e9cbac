"""Boundary operations: build, sign and submit Bubblegum transactions.

Each submitting operation validates its inputs locally, fetches a fresh
checkpoint, assembles and signs the transaction, then hands it to the
``SubmissionClient``. Failures are returned as a ``SubmissionResult``
carrying a typed error rather than raised.
"""

import logging
import threading
import time
from collections.abc import Callable, Iterator, Sequence
from contextlib import ExitStack, contextmanager
from typing import Any

from solders.instruction import Instruction  # type: ignore
from solders.keypair import Keypair  # type: ignore
from solders.pubkey import Pubkey  # type: ignore

from .client import SubmissionClient
from .errors import ExpiredError, InvalidMetadataError, MalformedProofError, map_exception
from .instructions import (
    build_allocate_tree,
    build_create_tree_config,
    build_mint_v1,
    build_transfer,
    validate_proof,
    validate_tree_parameters,
)
from .merkle import get_tree_account_size
from .metadata import metadata_from_dict, metadata_from_json, serialize
from .pda import find_tree_authority
from .signers import KeypairSigner
from .transaction import assemble, sign
from .types import (
    LeafProof,
    NftMetadata,
    SubmissionResult,
    SubmissionState,
    SubmitPolicy,
    TreeConfig,
)
from .utils import b64decode, parse_pubkey

logger = logging.getLogger(__name__)


def _client(endpoint: Any) -> SubmissionClient:
    if isinstance(endpoint, SubmissionClient):
        return endpoint
    return SubmissionClient(endpoint)


@contextmanager
def _load_signers(*secrets: Any) -> Iterator[list[KeypairSigner | None]]:
    """Load secrets into signers, releasing the ones created here on exit."""
    with ExitStack() as stack:
        signers: list[KeypairSigner | None] = []
        for secret in secrets:
            if secret is None:
                signers.append(None)
                continue
            signer = KeypairSigner.load(secret)
            if signer is not secret:
                stack.enter_context(signer)
            signers.append(signer)
        yield signers


def _submit(
    client: SubmissionClient,
    instructions: Sequence[Instruction],
    payer: KeypairSigner,
    signers: Sequence[KeypairSigner],
    policy: SubmitPolicy,
    cancel: threading.Event | None,
    deadline: float | None,
) -> SubmissionResult:
    """Assemble, sign and submit, rebuilding on a stale preflight blockhash.

    Every rebuild shares ``deadline``, so ``policy.timeout`` bounds the whole
    operation rather than each attempt.
    """
    rebuilds = 0
    while True:
        checkpoint = client.get_checkpoint(policy, deadline, cancel)
        unsigned = assemble(instructions, payer.pubkey, checkpoint)
        signed = sign(unsigned, signers)
        result = client.submit(signed, policy, cancel, deadline)

        stale_preflight = (
            isinstance(result.error, ExpiredError)
            and result.error.stale
            and result.extra.get("preflight", False)
        )
        out_of_time = deadline is not None and time.monotonic() >= deadline
        if not stale_preflight or rebuilds >= policy.max_rebuilds or out_of_time:
            if rebuilds:
                result.extra["rebuilds"] = rebuilds
            return result
        rebuilds += 1
        logger.info(
            "Rebuilding %s with a fresh blockhash (%d/%d)",
            result.signature,
            rebuilds,
            policy.max_rebuilds,
        )


def _run(operation: Callable[[], SubmissionResult]) -> SubmissionResult:
    try:
        return operation()
    except Exception as e:
        error = map_exception(e)
        if error is None:
            raise
        logger.warning("Operation failed: %s", error)
        if isinstance(error, ExpiredError) and error.cancelled:
            # Cancelled while fetching a checkpoint; nothing was sent.
            return SubmissionResult.failure(
                error, state=SubmissionState.EXPIRED, extra={"sent": False}
            )
        return SubmissionResult.failure(error, state=SubmissionState.BUILT)


def create_tree_config(
    endpoint: Any,
    payer_key: Any,
    max_depth: int,
    max_buffer_size: int,
    tree_creator: "str | Pubkey | None" = None,
    tree_key: Any = None,
    creator_key: Any = None,
    canopy_depth: int = 0,
    public: bool | None = None,
    policy: SubmitPolicy | None = None,
    cancel: threading.Event | None = None,
) -> SubmissionResult:
    """Allocate a merkle tree account and initialize its tree config.

    Args:
        endpoint: RPC URL, ``solana.rpc.api.Client`` or ``SubmissionClient``.
        payer_key: Fee payer secret; pays rent for both accounts.
        max_depth: Tree depth.
        max_buffer_size: Concurrent changelog size.
        tree_creator: Authority recorded on the tree; defaults to the payer.
        tree_key: Secret for the new tree account; generated when omitted.
        creator_key: Secret for ``tree_creator`` when it is not the payer.
        canopy_depth: Number of upper tree levels cached on chain.
        public: Whether anyone may mint into the tree.
        policy: Submission policy.
        cancel: Event that stops the submission when set.

    Returns:
        SubmissionResult whose ``extra`` holds the ``TreeConfig`` fields,
        including ``tree`` and ``tree_authority``.
    """
    policy = policy or SubmitPolicy()
    policy.validate()

    def operation() -> SubmissionResult:
        deadline = policy.deadline()
        validate_tree_parameters(max_depth, max_buffer_size, canopy_depth)
        with _load_signers(payer_key, tree_key or Keypair(), creator_key) as (payer, tree, creator):
            creator_address = (
                parse_pubkey(tree_creator, "tree_creator")
                if tree_creator is not None
                else (creator.pubkey if creator is not None else payer.pubkey)
            )
            tree_authority, _ = find_tree_authority(tree.pubkey)
            config = TreeConfig(
                tree=tree.pubkey,
                tree_authority=tree_authority,
                tree_creator=creator_address,
                max_depth=max_depth,
                max_buffer_size=max_buffer_size,
                canopy_depth=canopy_depth,
                public=public,
            )
            client = _client(endpoint)
            lamports = client.get_rent_exempt_lamports(
                get_tree_account_size(max_depth, max_buffer_size, canopy_depth),
                policy,
                deadline,
                cancel,
            )
            logger.info(
                "Creating tree %s (depth=%d, buffer=%d, canopy=%d, rent=%d)",
                tree.address,
                max_depth,
                max_buffer_size,
                canopy_depth,
                lamports,
            )
            instructions = [
                build_allocate_tree(
                    payer.pubkey, tree.pubkey, max_depth, max_buffer_size, lamports, canopy_depth
                ),
                build_create_tree_config(
                    tree=tree.pubkey,
                    tree_creator=creator_address,
                    payer=payer.pubkey,
                    max_depth=max_depth,
                    max_buffer_size=max_buffer_size,
                    tree_authority=tree_authority,
                    public=public,
                ),
            ]
            signers = [s for s in (payer, tree, creator) if s is not None]
            result = _submit(client, instructions, payer, signers, policy, cancel, deadline)
            result.extra.update(config.to_dict())
            return result

    return _run(operation)


def serialize_metadata(
    metadata: "NftMetadata | dict[str, Any] | str",
    encoding: str = "base64",
) -> "str | bytes":
    """Encode metadata for ``mint_v1``.

    Args:
        metadata: An ``NftMetadata``, a dict, or a JSON document.
        encoding: ``"base64"`` for text or ``"raw"`` for bytes.

    Raises:
        InvalidMetadataError: If the metadata breaks any field invariant.
    """
    if isinstance(metadata, str):
        metadata = metadata_from_json(metadata)
    elif isinstance(metadata, dict):
        metadata = metadata_from_dict(metadata)
    return serialize(metadata, encoding)


def _metadata_bytes(metadata: "bytes | str | NftMetadata") -> "bytes | NftMetadata":
    if isinstance(metadata, str):
        try:
            return b64decode(metadata)
        except ValueError as e:
            raise InvalidMetadataError(str(e)) from e
    return metadata


def mint_v1(
    endpoint: Any,
    tree: "str | Pubkey",
    leaf_owner: "str | Pubkey",
    metadata: "bytes | str | NftMetadata",
    payer_key: Any,
    leaf_delegate: "str | Pubkey | None" = None,
    tree_delegate_key: Any = None,
    policy: SubmitPolicy | None = None,
    cancel: threading.Event | None = None,
) -> SubmissionResult:
    """Mint a compressed NFT into ``tree``, owned by ``leaf_owner``.

    ``metadata`` is the encoded ``MetadataArgs`` as bytes or base64 text.
    The payer acts as tree delegate unless ``tree_delegate_key`` is given.
    """
    policy = policy or SubmitPolicy()
    policy.validate()

    def operation() -> SubmissionResult:
        deadline = policy.deadline()
        tree_address = parse_pubkey(tree, "tree")
        owner = parse_pubkey(leaf_owner, "leaf_owner")
        delegate = parse_pubkey(leaf_delegate, "leaf_delegate") if leaf_delegate is not None else None
        encoded = _metadata_bytes(metadata)
        with _load_signers(payer_key, tree_delegate_key) as (payer, tree_delegate):
            instruction = build_mint_v1(
                tree=tree_address,
                leaf_owner=owner,
                payer=payer.pubkey,
                metadata=encoded,
                leaf_delegate=delegate,
                tree_creator_or_delegate=tree_delegate.pubkey if tree_delegate else None,
            )
            logger.info("Minting into tree %s for owner %s", tree_address, owner)
            signers = [s for s in (payer, tree_delegate) if s is not None]
            result = _submit(
                _client(endpoint), [instruction], payer, signers, policy, cancel, deadline
            )
            result.extra.update({"tree": str(tree_address), "leaf_owner": str(owner)})
            return result

    return _run(operation)


def _leaf_proof(proof: "LeafProof | dict[str, Any]") -> LeafProof:
    if isinstance(proof, LeafProof):
        return proof
    try:
        return LeafProof.from_dict(proof)
    except (KeyError, ValueError) as e:
        raise MalformedProofError(f"Invalid proof record: {e}") from e


def transfer(
    endpoint: Any,
    tree: "str | Pubkey",
    current_owner: "str | Pubkey",
    new_owner: "str | Pubkey",
    leaf_index: int,
    proof: "LeafProof | dict[str, Any]",
    max_depth: int,
    payer_key: Any,
    owner_key: Any = None,
    current_leaf_delegate: "str | Pubkey | None" = None,
    canopy_depth: int = 0,
    policy: SubmitPolicy | None = None,
    cancel: threading.Event | None = None,
) -> SubmissionResult:
    """Transfer leaf ``leaf_index`` of ``tree`` to ``new_owner``.

    The current owner must sign: pass ``owner_key`` unless the payer is the
    owner, or the payer is the leaf delegate.
    """
    policy = policy or SubmitPolicy()
    policy.validate()

    def operation() -> SubmissionResult:
        deadline = policy.deadline()
        tree_address = parse_pubkey(tree, "tree")
        owner = parse_pubkey(current_owner, "current_owner")
        recipient = parse_pubkey(new_owner, "new_owner")
        delegate = (
            parse_pubkey(current_leaf_delegate, "current_leaf_delegate")
            if current_leaf_delegate is not None
            else None
        )
        leaf_proof = _leaf_proof(proof)
        validate_proof(leaf_proof, leaf_index, max_depth, canopy_depth)
        with _load_signers(payer_key, owner_key) as (payer, owner_signer):
            instruction = build_transfer(
                tree=tree_address,
                current_owner=owner,
                new_owner=recipient,
                leaf_index=leaf_index,
                payer=payer.pubkey,
                proof=leaf_proof,
                max_depth=max_depth,
                current_leaf_delegate=delegate,
                canopy_depth=canopy_depth,
            )
            logger.info(
                "Transferring leaf %d of tree %s from %s to %s", leaf_index, tree_address, owner, recipient
            )
            signers = [s for s in (payer, owner_signer) if s is not None]
            result = _submit(
                _client(endpoint), [instruction], payer, signers, policy, cancel, deadline
            )
            result.extra.update(
                {
                    "tree": str(tree_address),
                    "leaf_index": leaf_index,
                    "new_owner": str(recipient),
                }
            )
            return result

    return _run(operation)
