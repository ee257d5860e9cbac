"""Environment-driven settings.

Settings are read once, from the process environment and an optional
``.env`` file, and passed explicitly to operations as a ``SubmitPolicy``
plus an RPC endpoint.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

from .constants import (
    DEFAULT_COMMITMENT,
    DEFAULT_CONFIRMATION_TIMEOUT_SECONDS,
    DEFAULT_MAX_REBUILDS,
    DEFAULT_MAX_RETRIES,
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_RETRY_BACKOFF_SECONDS,
    SOLANA_DEVNET_CAIP2,
)
from .types import SubmitPolicy
from .utils import get_rpc_url, normalize_network

ENV_PREFIX = "BUBBLEGUM_"


def _env(name: str, default: str | None = None) -> str | None:
    value = os.getenv(ENV_PREFIX + name)
    return value if value not in (None, "") else default


def _env_float(name: str, default: float | None) -> float | None:
    value = _env(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError as e:
        raise ValueError(f"{ENV_PREFIX}{name} must be a number, got {value!r}") from e


def _env_int(name: str, default: int) -> int:
    value = _env(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError as e:
        raise ValueError(f"{ENV_PREFIX}{name} must be an integer, got {value!r}") from e


@dataclass
class Settings:
    """Network and submission settings."""

    network: str = SOLANA_DEVNET_CAIP2
    rpc_url: str | None = None
    commitment: str = DEFAULT_COMMITMENT
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_backoff: float = DEFAULT_RETRY_BACKOFF_SECONDS
    confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT_SECONDS
    poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS
    timeout: float | None = None
    max_rebuilds: int = DEFAULT_MAX_REBUILDS

    @classmethod
    def from_env(cls, dotenv_path: str | None = None) -> "Settings":
        """Load settings from ``BUBBLEGUM_*`` variables.

        Variables already set in the environment take precedence over the
        ``.env`` file.

        Raises:
            ValueError: If a numeric variable does not parse or the network
                is unknown.
        """
        load_dotenv(dotenv_path)
        settings = cls(
            network=normalize_network(_env("NETWORK", SOLANA_DEVNET_CAIP2)),
            rpc_url=_env("RPC_URL"),
            commitment=_env("COMMITMENT", DEFAULT_COMMITMENT),
            max_retries=_env_int("MAX_RETRIES", DEFAULT_MAX_RETRIES),
            retry_backoff=_env_float("RETRY_BACKOFF", DEFAULT_RETRY_BACKOFF_SECONDS),
            confirmation_timeout=_env_float(
                "CONFIRMATION_TIMEOUT", DEFAULT_CONFIRMATION_TIMEOUT_SECONDS
            ),
            poll_interval=_env_float("POLL_INTERVAL", DEFAULT_POLL_INTERVAL_SECONDS),
            timeout=_env_float("TIMEOUT", None),
            max_rebuilds=_env_int("MAX_REBUILDS", DEFAULT_MAX_REBUILDS),
        )
        settings.to_policy().validate()
        return settings

    @property
    def endpoint(self) -> str:
        return get_rpc_url(self.network, self.rpc_url)

    def to_policy(self) -> SubmitPolicy:
        return SubmitPolicy(
            max_retries=self.max_retries,
            retry_backoff=self.retry_backoff,
            confirmation_timeout=self.confirmation_timeout,
            poll_interval=self.poll_interval,
            commitment=self.commitment,
            timeout=self.timeout,
            max_rebuilds=self.max_rebuilds,
        )
