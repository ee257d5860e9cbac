"""Submission and confirmation client.

Each submission runs the state machine ``BUILT -> SENT -> {CONFIRMED,
EXPIRED, REJECTED}`` and always settles into a terminal, observable state
before returning:

- Transport failures before the node acknowledges the transaction are
  retried with exponential backoff. Once acknowledged, the bytes are never
  sent again.
- A preflight RPC error means the node evaluated the transaction: it is
  reported as rejected (or expired when the blockhash was stale) and never
  retried.
- After acknowledgment the signature status is polled until the configured
  commitment is reached, the node reports an execution error, or the
  confirmation timeout elapses.
"""

import logging
import threading
import time
from collections.abc import Callable
from typing import Any, TypeVar

import httpx
from solana.exceptions import SolanaRpcException  # type: ignore
from solana.rpc.api import Client  # type: ignore
from solana.rpc.commitment import Commitment  # type: ignore
from solana.rpc.core import RPCException  # type: ignore
from solana.rpc.types import TxOpts  # type: ignore
from solders.pubkey import Pubkey  # type: ignore
from solders.signature import Signature  # type: ignore
from solders.transaction_status import TransactionConfirmationStatus  # type: ignore

from .errors import (
    BubblegumError,
    ExpiredError,
    RejectedError,
    TransportError,
    map_exception,
    rpc_error_message,
    transport_detail,
)
from .merkle import TreeHeader
from .transaction import SignedTransaction
from .types import Checkpoint, SubmissionResult, SubmissionState, SubmitPolicy
from .utils import parse_pubkey

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSPORT_ERRORS = (SolanaRpcException, httpx.HTTPError)

COMMITMENT_RANK = {"processed": 0, "confirmed": 1, "finalized": 2}

# Tolerated while polling an acknowledged transaction, including JSON-RPC
# error bodies such as "Node is behind".
POLL_ERRORS = (RPCException, *TRANSPORT_ERRORS)


def _status_rank(status: Any) -> int:
    confirmation_status = getattr(status, "confirmation_status", None)
    if confirmation_status is None:
        # Nodes that omit confirmation_status report rooted transactions
        # with confirmations == None.
        return 2 if status.confirmations is None else 1
    if confirmation_status == TransactionConfirmationStatus.Finalized:
        return 2
    if confirmation_status == TransactionConfirmationStatus.Confirmed:
        return 1
    return 0


def _describe(exc: BaseException) -> str:
    if isinstance(exc, RPCException):
        return rpc_error_message(exc)
    return transport_detail(exc)


def _past(deadline: float | None, delay: float = 0) -> bool:
    """True if waiting ``delay`` more seconds would reach ``deadline``."""
    return deadline is not None and time.monotonic() + delay >= deadline


class SubmissionClient:
    """Sends signed transactions to an RPC node and waits for the outcome."""

    def __init__(self, endpoint: "str | Client", timeout: float = 10):
        if isinstance(endpoint, str):
            self._rpc = Client(endpoint, timeout=timeout)
        else:
            self._rpc = endpoint

    @property
    def rpc(self) -> Client:
        return self._rpc

    # --- Reads ---

    def get_checkpoint(
        self,
        policy: SubmitPolicy | None = None,
        deadline: float | None = None,
        cancel: threading.Event | None = None,
    ) -> Checkpoint:
        """Fetch a fresh blockhash, retrying transport failures per policy.

        Args:
            policy: Retry policy.
            deadline: Monotonic instant after which no retry is attempted.
            cancel: Optional event that stops the retries when set.

        Raises:
            TransportError: If every attempt fails or the deadline is reached.
            ExpiredError: If cancelled, with ``cancelled=True``.
        """
        policy = policy or SubmitPolicy()
        resp = self._call_with_retries(
            lambda: self._rpc.get_latest_blockhash(commitment=Commitment(policy.commitment)),
            policy,
            "get_latest_blockhash",
            deadline,
            cancel,
        )
        return Checkpoint(
            blockhash=resp.value.blockhash,
            last_valid_block_height=resp.value.last_valid_block_height,
        )

    def get_rent_exempt_lamports(
        self,
        space: int,
        policy: SubmitPolicy | None = None,
        deadline: float | None = None,
        cancel: threading.Event | None = None,
    ) -> int:
        policy = policy or SubmitPolicy()
        resp = self._call_with_retries(
            lambda: self._rpc.get_minimum_balance_for_rent_exemption(space),
            policy,
            "get_minimum_balance_for_rent_exemption",
            deadline,
            cancel,
        )
        return resp.value

    def get_tree_header(self, tree: "str | Pubkey") -> tuple[TreeHeader, int]:
        """Read a tree account and return its header and canopy depth.

        Raises:
            TransportError: On network failure.
            ValueError: If the account does not exist or is not a tree.
        """
        tree = parse_pubkey(tree, "tree")
        try:
            resp = self._rpc.get_account_info(tree)
        except TRANSPORT_ERRORS as e:
            raise TransportError(f"Transport failure: {transport_detail(e)}", attempts=1) from e
        if resp.value is None:
            raise ValueError(f"Tree account {tree} not found")
        data = bytes(resp.value.data)
        header = TreeHeader.from_account_data(data)
        return header, header.canopy_depth(len(data))

    def get_status(self, signature: str) -> SubmissionState | None:
        """Look up the final status of a previously sent transaction.

        Returns None when the node has no record of the signature. Intended
        for resolving an EXPIRED submission before building a replacement.
        """
        resp = self._rpc.get_signature_statuses(
            [Signature.from_string(signature)], search_transaction_history=True
        )
        status = resp.value[0]
        if status is None:
            return None
        if status.err is not None:
            return SubmissionState.REJECTED
        return SubmissionState.CONFIRMED

    # --- Submission ---

    def submit(
        self,
        signed: SignedTransaction,
        policy: SubmitPolicy | None = None,
        cancel: threading.Event | None = None,
        deadline: float | None = None,
    ) -> SubmissionResult:
        """Send a signed transaction and wait for a terminal outcome.

        Args:
            signed: The transaction to send. It is sent at most once
                successfully.
            policy: Retry, polling and timeout policy.
            cancel: Optional event; when set, the submission stops waiting
                and settles as EXPIRED.
            deadline: Monotonic instant shared with the caller's other steps;
                defaults to ``policy.timeout`` from now.

        Returns:
            SubmissionResult in state CONFIRMED, EXPIRED, REJECTED, or BUILT
            with a TransportError when the node never acknowledged it.
        """
        policy = policy or SubmitPolicy()
        policy.validate()
        if deadline is None:
            deadline = policy.deadline()
        signature = signed.signature

        # BUILT -> SENT
        attempts = 0
        while True:
            if cancel is not None and cancel.is_set():
                return self._cancelled(signature, attempts, sent=False)
            if _past(deadline):
                logger.warning("Deadline passed before %s was sent", signature)
                return SubmissionResult.failure(
                    ExpiredError(f"Deadline passed before {signature} was sent"),
                    state=SubmissionState.EXPIRED,
                    signature=signature,
                    attempts=attempts,
                    extra={"sent": False},
                )
            attempts += 1
            try:
                resp = self._rpc.send_raw_transaction(
                    signed.to_bytes(),
                    opts=TxOpts(
                        skip_confirmation=True,
                        skip_preflight=policy.skip_preflight,
                        preflight_commitment=Commitment(policy.commitment),
                    ),
                )
                break
            except RPCException as e:
                error = map_exception(e, attempts)
                state = (
                    SubmissionState.EXPIRED
                    if isinstance(error, ExpiredError)
                    else SubmissionState.REJECTED
                )
                logger.warning("Transaction %s not accepted: %s", signature, error)
                return SubmissionResult.failure(
                    error,
                    state=state,
                    signature=signature,
                    attempts=attempts,
                    extra={"preflight": True},
                )
            except TRANSPORT_ERRORS as e:
                detail = transport_detail(e)
                if attempts > policy.max_retries:
                    message = f"Send failed after {attempts} attempt(s): {detail}"
                    logger.error("%s for %s", message, signature)
                    return SubmissionResult.failure(
                        TransportError(message, attempts),
                        signature=signature,
                        attempts=attempts,
                    )
                delay = policy.retry_backoff * 2 ** (attempts - 1)
                if _past(deadline, delay):
                    message = f"Timed out after {attempts} send attempt(s): {detail}"
                    logger.error("%s for %s", message, signature)
                    return SubmissionResult.failure(
                        TransportError(message, attempts),
                        signature=signature,
                        attempts=attempts,
                    )
                logger.warning(
                    "Send attempt %d/%d for %s failed: %s; retrying in %.2fs",
                    attempts,
                    policy.max_retries + 1,
                    signature,
                    detail,
                    delay,
                )
                if self._wait(delay, cancel):
                    return self._cancelled(signature, attempts, sent=False)

        acknowledged = str(resp.value)
        if acknowledged != signature:
            logger.warning("Node acknowledged %s, expected %s", acknowledged, signature)
        logger.info("Sent transaction %s (attempt %d)", signature, attempts)

        # SENT -> {CONFIRMED, EXPIRED, REJECTED}
        return self._await_confirmation(signed, policy, attempts, deadline, cancel)

    def _await_confirmation(
        self,
        signed: SignedTransaction,
        policy: SubmitPolicy,
        attempts: int,
        deadline: float | None,
        cancel: threading.Event | None,
    ) -> SubmissionResult:
        signature = signed.signature
        sig = Signature.from_string(signature)
        target = COMMITMENT_RANK[policy.commitment]
        confirm_deadline = time.monotonic() + policy.confirmation_timeout
        if deadline is not None:
            confirm_deadline = min(confirm_deadline, deadline)

        while True:
            if cancel is not None and cancel.is_set():
                return self._cancelled(signature, attempts, sent=True)

            status = None
            try:
                status = self._rpc.get_signature_statuses([sig]).value[0]
            except POLL_ERRORS as e:
                logger.warning("Status poll for %s failed: %s", signature, _describe(e))

            if status is not None:
                if status.err is not None:
                    logger.warning("Transaction %s failed on-chain: %s", signature, status.err)
                    return SubmissionResult.failure(
                        RejectedError(str(status.err)),
                        state=SubmissionState.REJECTED,
                        signature=signature,
                        attempts=attempts,
                        slot=status.slot,
                    )
                if _status_rank(status) >= target:
                    logger.info(
                        "Transaction %s reached %s at slot %d", signature, policy.commitment, status.slot
                    )
                    return SubmissionResult(
                        state=SubmissionState.CONFIRMED,
                        signature=signature,
                        attempts=attempts,
                        slot=status.slot,
                    )
            elif self._blockhash_expired(signed.checkpoint):
                logger.warning("Blockhash of %s expired before it landed", signature)
                return SubmissionResult.failure(
                    ExpiredError(f"Blockhash expired before {signature} landed", stale=True),
                    state=SubmissionState.EXPIRED,
                    signature=signature,
                    attempts=attempts,
                )

            remaining = confirm_deadline - time.monotonic()
            if remaining <= 0:
                logger.warning("Confirmation of %s timed out", signature)
                return SubmissionResult.failure(
                    ExpiredError(
                        f"No {policy.commitment} status for {signature} within "
                        f"{policy.confirmation_timeout}s; query its status before rebuilding"
                    ),
                    state=SubmissionState.EXPIRED,
                    signature=signature,
                    attempts=attempts,
                )
            if self._wait(min(policy.poll_interval, remaining), cancel):
                return self._cancelled(signature, attempts, sent=True)

    # --- Internal helpers ---

    def _blockhash_expired(self, checkpoint: Checkpoint) -> bool:
        if checkpoint.last_valid_block_height is None:
            return False
        try:
            height = self._rpc.get_block_height().value
        except POLL_ERRORS as e:
            logger.warning("Block height poll failed: %s", _describe(e))
            return False
        return height > checkpoint.last_valid_block_height

    def _call_with_retries(
        self,
        call: Callable[[], T],
        policy: SubmitPolicy,
        name: str,
        deadline: float | None = None,
        cancel: threading.Event | None = None,
    ) -> T:
        attempts = 0
        while True:
            if cancel is not None and cancel.is_set():
                raise ExpiredError(f"{name} cancelled", cancelled=True)
            attempts += 1
            try:
                return call()
            except TRANSPORT_ERRORS as e:
                detail = transport_detail(e)
                if attempts > policy.max_retries:
                    raise TransportError(
                        f"{name} failed after {attempts} attempt(s): {detail}", attempts
                    ) from e
                delay = policy.retry_backoff * 2 ** (attempts - 1)
                if _past(deadline, delay):
                    raise TransportError(
                        f"{name} timed out after {attempts} attempt(s): {detail}", attempts
                    ) from e
                logger.warning(
                    "%s attempt %d failed: %s; retrying in %.2fs", name, attempts, detail, delay
                )
                if self._wait(delay, cancel):
                    raise ExpiredError(f"{name} cancelled", cancelled=True) from e

    @staticmethod
    def _wait(delay: float, cancel: threading.Event | None) -> bool:
        """Sleep for ``delay`` seconds; True if cancelled meanwhile."""
        if cancel is not None:
            return cancel.wait(delay)
        time.sleep(delay)
        return False

    @staticmethod
    def _cancelled(signature: str, attempts: int, sent: bool) -> SubmissionResult:
        logger.info("Submission of %s cancelled (sent=%s)", signature, sent)
        error: BubblegumError = ExpiredError(
            f"Submission of {signature} cancelled", cancelled=True
        )
        return SubmissionResult.failure(
            error,
            state=SubmissionState.EXPIRED,
            signature=signature,
            attempts=attempts,
            extra={"sent": sent},
        )
