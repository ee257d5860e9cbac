"""Protocol constants for Bubblegum compressed NFTs."""

from solders.pubkey import Pubkey  # type: ignore

# Programs
BUBBLEGUM_PROGRAM_ID = Pubkey.from_string("BGUMAp9Gq7iTEuizy4pqaxsTyUCBK68MDfK752saRPUY")
ACCOUNT_COMPRESSION_PROGRAM_ID = Pubkey.from_string("cmtDvXumGCrqC1Age74AVPhSRVXJMd8PJS91L8KbNCK")
NOOP_PROGRAM_ID = Pubkey.from_string("noopb9bkMVfRPU8AsbpTUg8AQkHtKwMYZiFUjNRtMmV")
SYSTEM_PROGRAM_ID = Pubkey.from_string("11111111111111111111111111111111")

# PDA seeds
ASSET_SEED = b"asset"
COLLECTION_CPI_SEED = b"collection_cpi"

# Derivation limits
MAX_SEEDS = 16
MAX_SEED_LEN = 32

# Metadata limits
MAX_NAME_LENGTH = 32
MAX_SYMBOL_LENGTH = 10
MAX_URI_LENGTH = 200
MAX_CREATOR_LIMIT = 5
MAX_SELLER_FEE_BASIS_POINTS = 10000

# Leaf schema
LEAF_SCHEMA_VERSION_V1 = 1

# Valid (max_depth, max_buffer_size) pairs accepted by spl-account-compression
ALL_DEPTH_SIZE_PAIRS: frozenset[tuple[int, int]] = frozenset(
    {
        (3, 8),
        (5, 8),
        (6, 16),
        (7, 16),
        (8, 16),
        (9, 16),
        (10, 32),
        (11, 32),
        (12, 32),
        (13, 32),
        (14, 64),
        (14, 256),
        (14, 1024),
        (14, 2048),
        (15, 64),
        (16, 64),
        (17, 64),
        (18, 64),
        (19, 64),
        (20, 64),
        (20, 256),
        (20, 1024),
        (20, 2048),
        (24, 64),
        (24, 256),
        (24, 512),
        (24, 1024),
        (24, 2048),
        (26, 512),
        (26, 1024),
        (26, 2048),
        (30, 512),
        (30, 1024),
        (30, 2048),
    }
)

# Concurrent merkle tree account layout
CONCURRENT_MERKLE_TREE_HEADER_SIZE_V1 = 2 + 54
NODE_SIZE = 32

# Networks (CAIP-2)
SOLANA_MAINNET_CAIP2 = "solana:5eykt4UsFv8P8NJdTREpY1vzqKqZKvdp"
SOLANA_DEVNET_CAIP2 = "solana:EtWTRABZaYq6iMfeYKouRu166VU2xqa1"
SOLANA_TESTNET_CAIP2 = "solana:4uhcVJyU9pJkvQyS88uRDiswHXSCkY3z"

NETWORK_CONFIGS: dict[str, dict[str, str]] = {
    SOLANA_MAINNET_CAIP2: {"name": "mainnet-beta", "rpc_url": "https://api.mainnet-beta.solana.com"},
    SOLANA_DEVNET_CAIP2: {"name": "devnet", "rpc_url": "https://api.devnet.solana.com"},
    SOLANA_TESTNET_CAIP2: {"name": "testnet", "rpc_url": "https://api.testnet.solana.com"},
}

# V1 network aliases accepted by normalize_network
NETWORK_ALIASES = {
    "solana": SOLANA_MAINNET_CAIP2,
    "mainnet": SOLANA_MAINNET_CAIP2,
    "mainnet-beta": SOLANA_MAINNET_CAIP2,
    "solana-devnet": SOLANA_DEVNET_CAIP2,
    "devnet": SOLANA_DEVNET_CAIP2,
    "solana-testnet": SOLANA_TESTNET_CAIP2,
    "testnet": SOLANA_TESTNET_CAIP2,
}

# Submission defaults
DEFAULT_COMMITMENT = "confirmed"
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BACKOFF_SECONDS = 0.5
DEFAULT_CONFIRMATION_TIMEOUT_SECONDS = 60.0
DEFAULT_POLL_INTERVAL_SECONDS = 1.0
DEFAULT_MAX_REBUILDS = 1

# RPC error fragments that mean the blockhash is no longer usable
STALE_BLOCKHASH_MARKERS = ("blockhash not found", "BlockhashNotFound")
