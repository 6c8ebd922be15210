"""Chain access - RPC client, event scanner and registry reads."""

from agentscore.chain.client import (
    ChainClient,
    ChainClientError,
    RateLimitError,
    RPCError,
    RPCTimeoutError,
)
from agentscore.chain.registry import RegistryReader, ReputationSummary, resolve_wallets
from agentscore.chain.scanner import ChainScanner, RegistrationHandler, ScanResult, WalletCounterHandler

__all__ = [
    "ChainClient",
    "ChainClientError",
    "ChainScanner",
    "RPCError",
    "RPCTimeoutError",
    "RateLimitError",
    "RegistrationHandler",
    "RegistryReader",
    "ReputationSummary",
    "ScanResult",
    "WalletCounterHandler",
    "resolve_wallets",
]
