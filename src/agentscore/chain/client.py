"""EVM JSON-RPC client with timeouts, retries, failover and caching.

This module provides the chain client used by the scanner, the registry
readers and the attestation service:
- Every call is raced against a timeout (public RPCs hang instead of erroring)
- Retry logic with exponential backoff, then failover to a secondary RPC
- Token-bucket rate limiting to respect provider limits
- Optional Redis caching of immutable block data
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from redis.asyncio import Redis
from web3 import AsyncWeb3
from web3.middleware import ExtraDataToPOAMiddleware
from web3.providers import AsyncHTTPProvider

from agentscore.effects import best_effort

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_MAX_REQUESTS_PER_SECOND = 25
DEFAULT_MAX_RETRIES = 2
DEFAULT_RETRY_DELAY_SECONDS = 1.0

# Block headers are immutable once final
BLOCK_CACHE_TTL_SECONDS = 3600

_RATE_LIMIT_MARKERS = ("429", "rate limit", "too many requests", "no backend")


class ChainClientError(Exception):
    """Base exception for chain client errors."""


class RPCError(ChainClientError):
    """Raised when an RPC call fails."""


class RPCTimeoutError(RPCError):
    """Raised when an RPC call does not answer within the timeout."""


class RateLimitError(RPCError):
    """Raised when the provider signals rate limiting."""


def is_retryable(error: BaseException) -> bool:
    """Timeouts and rate-limit signals are worth retrying; other failures are not."""
    return isinstance(error, (RPCTimeoutError, RateLimitError))


def _classify(label: str, error: BaseException) -> RPCError:
    if isinstance(error, RPCError):
        return error
    if isinstance(error, TimeoutError):
        return RPCTimeoutError(f"RPC call {label} timed out")
    message = str(error).lower()
    if any(marker in message for marker in _RATE_LIMIT_MARKERS):
        return RateLimitError(f"RPC call {label} rate limited: {error}")
    return RPCError(f"RPC call {label} failed: {error}")


@dataclass
class RateLimiter:
    """Token bucket rate limiter."""

    max_tokens: float
    refill_rate: float  # tokens per second
    tokens: float
    last_refill: float

    @classmethod
    def create(cls, max_requests_per_second: float) -> RateLimiter:
        """Create a rate limiter with specified max requests per second."""
        return cls(
            max_tokens=max_requests_per_second,
            refill_rate=max_requests_per_second,
            tokens=max_requests_per_second,
            last_refill=time.monotonic(),
        )

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self.last_refill
        self.tokens = min(self.max_tokens, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    async def acquire(self, tokens: float = 1.0) -> None:
        """Acquire tokens, waiting if necessary."""
        while True:
            self._refill()
            if self.tokens >= tokens:
                self.tokens -= tokens
                return
            wait_time = (tokens - self.tokens) / self.refill_rate
            await asyncio.sleep(wait_time)


class ChainClient:
    """Read-only EVM client with timeouts, rate limiting and failover.

    Example:
        ```python
        client = ChainClient(
            "https://mainnet.base.org",
            fallback_rpc_url="https://base.publicnode.com",
        )
        head = await client.block_number()
        logs = await client.get_logs({"address": addr, "fromBlock": 0, "toBlock": 1999})
        await client.aclose()
        ```
    """

    def __init__(
        self,
        rpc_url: str,
        *,
        fallback_rpc_url: str | None = None,
        redis: Redis | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_requests_per_second: float = DEFAULT_MAX_REQUESTS_PER_SECOND,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS,
    ) -> None:
        """Initialize the chain client.

        Args:
            rpc_url: Primary RPC endpoint URL.
            fallback_rpc_url: Optional fallback RPC URL for failover.
            redis: Optional Redis client for caching block timestamps.
            timeout_seconds: Timeout raced against every call.
            max_requests_per_second: Rate limit for RPC calls.
            max_retries: Attempts per endpoint before failing over.
            retry_delay_seconds: Initial delay between retries.
        """
        self._rpc_url = rpc_url
        self._fallback_rpc_url = fallback_rpc_url
        self._redis = redis
        self._timeout = timeout_seconds
        self._max_retries = max(1, max_retries)
        self._retry_delay = retry_delay_seconds

        self._w3 = self._new_web3_client(rpc_url)
        self._w3_fallback: AsyncWeb3[AsyncHTTPProvider] | None = None
        if fallback_rpc_url:
            self._w3_fallback = self._new_web3_client(fallback_rpc_url)

        self._rate_limiter = RateLimiter.create(max_requests_per_second)

        # Track primary RPC health
        self._primary_healthy = True
        self._last_primary_check = 0.0
        self._primary_recovery_interval = 60.0

        self._cache_prefix = "chain:"

    def _new_web3_client(self, rpc_url: str) -> AsyncWeb3[AsyncHTTPProvider]:
        client = AsyncWeb3(AsyncHTTPProvider(rpc_url))
        try:
            client.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        except Exception as e:
            logger.warning("Failed to inject PoA middleware (rpc=%s): %s", rpc_url, e)
        return client

    async def _get_cached(self, key: str) -> str | None:
        if not self._redis:
            return None
        try:
            value = await self._redis.get(key)
            if isinstance(value, bytes):
                return value.decode()
            return str(value) if value is not None else None
        except Exception as e:
            logger.warning("Cache get failed: %s", e)
            return None

    async def _set_cached(self, key: str, value: str, ttl: int) -> None:
        if not self._redis:
            return
        await best_effort(f"cache set {key}", self._redis.set(key, value, ex=ttl))

    def _should_try_primary(self) -> bool:
        if self._primary_healthy:
            return True
        now = time.monotonic()
        if now - self._last_primary_check > self._primary_recovery_interval:
            self._last_primary_check = now
            return True
        return False

    async def _attempt(
        self,
        w3: AsyncWeb3[AsyncHTTPProvider],
        label: str,
        op: Callable[[AsyncWeb3[AsyncHTTPProvider]], Awaitable[Any]],
    ) -> Any:
        await self._rate_limiter.acquire()
        try:
            return await asyncio.wait_for(op(w3), timeout=self._timeout)
        except Exception as e:
            raise _classify(label, e) from e

    async def _execute_with_retry(
        self,
        label: str,
        op: Callable[[AsyncWeb3[AsyncHTTPProvider]], Awaitable[Any]],
    ) -> Any:
        """Execute an RPC operation with timeout, retry and failover.

        Args:
            label: Name used in logs and errors.
            op: Coroutine factory receiving the web3 instance to use.

        Returns:
            Result from the RPC call.

        Raises:
            RPCTimeoutError: If the last attempt timed out.
            RateLimitError: If the last attempt was rate limited.
            RPCError: For any other failure after all retries and failover.
        """
        endpoints: list[tuple[str, AsyncWeb3[AsyncHTTPProvider]]] = []
        if self._should_try_primary():
            endpoints.append(("primary", self._w3))
        if self._w3_fallback is not None:
            endpoints.append(("fallback", self._w3_fallback))
        if not endpoints:
            endpoints.append(("primary", self._w3))

        last_error: RPCError | None = None
        for name, w3 in endpoints:
            delay = self._retry_delay
            for attempt in range(self._max_retries):
                try:
                    result = await self._attempt(w3, label, op)
                    if name == "primary":
                        self._primary_healthy = True
                    else:
                        logger.info("Fallback RPC succeeded for %s", label)
                    return result
                except RPCError as e:
                    last_error = e
                    logger.warning(
                        "%s RPC %s failed (attempt %d/%d): %s",
                        name.capitalize(),
                        label,
                        attempt + 1,
                        self._max_retries,
                        e,
                    )
                    if attempt < self._max_retries - 1:
                        await asyncio.sleep(delay)
                        delay *= 2
            if name == "primary":
                self._primary_healthy = False
                self._last_primary_check = time.monotonic()

        assert last_error is not None
        raise last_error

    async def block_number(self) -> int:
        """Current chain head height."""
        result = await self._execute_with_retry("eth_blockNumber", lambda w3: w3.eth.block_number)
        return int(result)

    async def get_logs(self, filter_params: dict[str, Any]) -> list[dict[str, Any]]:
        """Fetch logs via `eth_getLogs` with timeout/retry/failover semantics."""
        logs = await self._execute_with_retry("eth_getLogs", lambda w3: w3.eth.get_logs(filter_params))
        return [dict(log) for log in logs]

    async def get_block_timestamp(self, block_number: int) -> int:
        """Unix timestamp of a block (cached; blocks are immutable)."""
        cache_key = f"{self._cache_prefix}block_ts:{block_number}"
        cached = await self._get_cached(cache_key)
        if cached is not None:
            return int(cached)

        block = await self._execute_with_retry("eth_getBlockByNumber", lambda w3: w3.eth.get_block(block_number))
        timestamp = int(block["timestamp"])
        await self._set_cached(cache_key, str(timestamp), ttl=BLOCK_CACHE_TTL_SECONDS)
        return timestamp

    async def call_function(
        self,
        contract_address: str,
        abi: list[dict[str, Any]],
        function_name: str,
        *args: Any,
    ) -> Any:
        """Call a view function on a contract."""

        async def _call(w3: AsyncWeb3[AsyncHTTPProvider]) -> Any:
            contract = w3.eth.contract(address=AsyncWeb3.to_checksum_address(contract_address), abi=abi)
            return await getattr(contract.functions, function_name)(*args).call()

        return await self._execute_with_retry(function_name, _call)

    async def health_check(self) -> bool:
        """Check if the client can reach the RPC."""
        try:
            await self.block_number()
            return True
        except RPCError:
            return False

    async def aclose(self) -> None:
        """Close async HTTP provider sessions to avoid leaked aiohttp sessions."""
        providers = [self._w3.provider]
        if self._w3_fallback is not None:
            providers.append(self._w3_fallback.provider)

        for provider in providers:
            disconnect = getattr(provider, "disconnect", None)
            if not callable(disconnect):
                continue
            try:
                result = disconnect()
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.warning("Failed to close RPC provider session: %s", e)
