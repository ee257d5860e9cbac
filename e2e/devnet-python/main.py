"""Bubblegum E2E client.

One-shot script that creates a tree, mints a compressed NFT into it and
transfers the leaf to a fresh owner, then prints a structured JSON result
for the e2e test framework to parse.
"""

import json
import os
import sys

from dotenv import load_dotenv

load_dotenv()

# Get environment variables
payer_secret = os.getenv("SVM_PRIVATE_KEY", "")
max_depth = int(os.getenv("TREE_MAX_DEPTH", "14"))
max_buffer_size = int(os.getenv("TREE_MAX_BUFFER_SIZE", "64"))

if not payer_secret:
    result = {
        "success": False,
        "error": "Missing required environment variables: SVM_PRIVATE_KEY",
    }
    print(json.dumps(result))
    sys.exit(1)


def main() -> dict:
    """Run create, mint and transfer. Returns the e2e result dict."""
    from solders.keypair import Keypair

    from bubblegum import LeafProof, MerkleTree, Settings, hash_leaf, operations
    from bubblegum.metadata import hash_metadata, metadata_from_dict
    from bubblegum.pda import find_asset_id
    from bubblegum.utils import parse_pubkey

    settings = Settings.from_env()
    policy = settings.to_policy()
    endpoint = settings.endpoint
    owner = Keypair()
    new_owner = Keypair().pubkey()

    steps = {}

    created = operations.create_tree_config(
        endpoint, payer_secret, max_depth, max_buffer_size, policy=policy
    )
    steps["create_tree_config"] = created.to_dict()
    if not created.ok:
        return {"success": False, "steps": steps}
    tree = created.extra["tree"]

    record = {
        "name": "Test",
        "symbol": "TNFT",
        "uri": "https://example.com/t.json",
        "seller_fee_basis_points": 500,
        "creators": [{"address": str(owner.pubkey()), "verified": False, "share": 100}],
    }
    minted = operations.mint_v1(
        endpoint, tree, owner.pubkey(), operations.serialize_metadata(record), payer_secret, policy=policy
    )
    steps["mint_v1"] = minted.to_dict()
    if not minted.ok:
        return {"success": False, "steps": steps}

    # The tree is fresh, so leaf 0 is the only one and its proof is local
    data_hash, creator_hash = hash_metadata(metadata_from_dict(record))
    asset_id, _ = find_asset_id(parse_pubkey(tree), 0)
    mirror = MerkleTree(max_depth)
    mirror.append(hash_leaf(asset_id, owner.pubkey(), owner.pubkey(), 0, data_hash, creator_hash))
    proof = LeafProof(
        root=mirror.root,
        data_hash=data_hash,
        creator_hash=creator_hash,
        proof=mirror.get_proof(0),
        nonce=0,
    )

    moved = operations.transfer(
        endpoint,
        tree,
        owner.pubkey(),
        new_owner,
        0,
        proof,
        max_depth=max_depth,
        payer_key=payer_secret,
        owner_key=owner,
        policy=policy,
    )
    steps["transfer"] = moved.to_dict()

    return {
        "success": moved.ok,
        "tree": tree,
        "new_owner": str(new_owner),
        "steps": steps,
    }


if __name__ == "__main__":
    try:
        result = main()
        print(json.dumps(result))
        sys.exit(0 if result["success"] else 1)
    except Exception as e:
        print(json.dumps({"success": False, "error": str(e)}))
        sys.exit(1)
