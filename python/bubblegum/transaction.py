"""Transaction assembly and signing."""

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from solders.hash import Hash  # type: ignore
from solders.instruction import Instruction  # type: ignore
from solders.keypair import Keypair  # type: ignore
from solders.message import Message  # type: ignore
from solders.pubkey import Pubkey  # type: ignore
from solders.transaction import Transaction  # type: ignore

from .errors import MissingSignerError
from .signers import KeypairSigner
from .types import Checkpoint
from .utils import b64encode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UnsignedTransaction:
    """Compiled message bound to a checkpoint, awaiting signatures."""

    message: Message
    checkpoint: Checkpoint

    @property
    def payer(self) -> Pubkey:
        return self.message.account_keys[0]

    @property
    def required_signers(self) -> list[Pubkey]:
        """Signer accounts, in account-table order."""
        return list(self.message.account_keys[: self.message.header.num_required_signatures])


@dataclass(frozen=True)
class SignedTransaction:
    """Fully signed, single-use transaction."""

    transaction: Transaction
    checkpoint: Checkpoint

    @property
    def signature(self) -> str:
        """Transaction id: the fee payer's signature."""
        return str(self.transaction.signatures[0])

    def to_bytes(self) -> bytes:
        return bytes(self.transaction)

    def to_base64(self) -> str:
        return b64encode(bytes(self.transaction))


def assemble(
    instructions: Sequence[Instruction],
    payer: Pubkey,
    checkpoint: "Checkpoint | Hash",
) -> UnsignedTransaction:
    """Compile instructions into a message paid for by ``payer``.

    Raises:
        ValueError: If no instructions are given.
    """
    if not instructions:
        raise ValueError("At least one instruction is required")
    if isinstance(checkpoint, Hash):
        checkpoint = Checkpoint(blockhash=checkpoint)

    message = Message.new_with_blockhash(list(instructions), payer, checkpoint.blockhash)
    logger.debug(
        "Assembled %d instruction(s), %d account(s), %d signer(s) for payer %s",
        len(instructions),
        len(message.account_keys),
        message.header.num_required_signatures,
        payer,
    )
    return UnsignedTransaction(message=message, checkpoint=checkpoint)


def sign(
    unsigned: UnsignedTransaction,
    signing_keys: Iterable["KeypairSigner | Keypair"],
) -> SignedTransaction:
    """Sign with every required signer.

    Keys for accounts that are not required signers are ignored.

    Raises:
        MissingSignerError: If a required signer has no key.
    """
    keypairs: dict[Pubkey, Keypair] = {}
    for key in signing_keys:
        keypair = key.keypair if isinstance(key, KeypairSigner) else key
        keypairs[keypair.pubkey()] = keypair

    required = unsigned.required_signers
    missing = [str(pubkey) for pubkey in required if pubkey not in keypairs]
    if missing:
        raise MissingSignerError(missing)

    transaction = Transaction(
        [keypairs[pubkey] for pubkey in required],
        unsigned.message,
        unsigned.checkpoint.blockhash,
    )
    return SignedTransaction(transaction=transaction, checkpoint=unsigned.checkpoint)
