"""Program-derived address derivation.

Implements the bump-seed search used by the Solana runtime so that a search
that runs out of candidates surfaces as ``DerivationExhaustedError`` instead
of a panic in native code.
"""

import hashlib
import logging
from collections.abc import Sequence

from solders.pubkey import Pubkey  # type: ignore

from .constants import (
    ASSET_SEED,
    BUBBLEGUM_PROGRAM_ID,
    COLLECTION_CPI_SEED,
    MAX_SEED_LEN,
    MAX_SEEDS,
)
from .errors import DerivationExhaustedError

logger = logging.getLogger(__name__)

PDA_MARKER = b"ProgramDerivedAddress"
MAX_BUMP_ATTEMPTS = 256


def create_program_address(seeds: Sequence[bytes], owner_program: Pubkey) -> Pubkey | None:
    """Hash seeds into a candidate address; None if it lands on the curve."""
    digest = hashlib.sha256(b"".join(seeds) + bytes(owner_program) + PDA_MARKER).digest()
    candidate = Pubkey.from_bytes(digest)
    if candidate.is_on_curve():
        return None
    return candidate


def derive(
    seeds: Sequence[bytes],
    owner_program: Pubkey,
    max_attempts: int = MAX_BUMP_ATTEMPTS,
) -> tuple[Pubkey, int]:
    """Find the program-derived address and bump for ``seeds``.

    Bumps are tried from 255 downwards; the first off-curve candidate wins.

    Args:
        seeds: Ordered seed byte strings (at most 15, each at most 32 bytes).
        owner_program: Program that owns the derived address.
        max_attempts: Size of the bump search space.

    Returns:
        Tuple of (address, bump).

    Raises:
        DerivationExhaustedError: If the seeds are out of bounds or no bump
            within the search space yields a valid address.
    """
    if len(seeds) >= MAX_SEEDS:
        raise DerivationExhaustedError(f"Too many seeds: {len(seeds)} (max {MAX_SEEDS - 1})")
    for seed in seeds:
        if len(seed) > MAX_SEED_LEN:
            raise DerivationExhaustedError(f"Seed longer than {MAX_SEED_LEN} bytes: {len(seed)}")

    for bump in range(255, 255 - min(max_attempts, MAX_BUMP_ATTEMPTS), -1):
        address = create_program_address([*seeds, bytes([bump])], owner_program)
        if address is not None:
            logger.debug("Derived %s (bump %d) under %s", address, bump, owner_program)
            return address, bump

    raise DerivationExhaustedError(
        f"No valid program address for {len(seeds)} seeds under {owner_program}"
    )


def find_tree_authority(tree: Pubkey) -> tuple[Pubkey, int]:
    """Tree config PDA owned by Bubblegum, seeded by the merkle tree address."""
    return derive([bytes(tree)], BUBBLEGUM_PROGRAM_ID)


def find_bubblegum_signer() -> tuple[Pubkey, int]:
    return derive([COLLECTION_CPI_SEED], BUBBLEGUM_PROGRAM_ID)


def find_asset_id(tree: Pubkey, nonce: int) -> tuple[Pubkey, int]:
    """Asset id of the leaf minted with ``nonce`` in ``tree``."""
    return derive([ASSET_SEED, bytes(tree), nonce.to_bytes(8, "little")], BUBBLEGUM_PROGRAM_ID)
