"""Incremental, checkpointed scanning of contract event logs.

The scanner walks `[from, to]` block windows from the last checkpoint
towards the chain head. For each window it fetches the logs for every
requested topic together, lets a handler fold them into storage, and then
advances the checkpoint inside the same transaction, so the checkpoint is
never ahead of the data it covers.

A window whose RPC calls keep timing out or getting rate limited is retried
with linear backoff and then skipped: the checkpoint is advanced past it and
its events are not replayed.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol

from agentscore.chain.client import ChainClient, ChainClientError, is_retryable
from agentscore.chain.events import (
    REGISTERED_TOPIC,
    decode_string,
    log_topics,
    topic_to_address,
    topic_to_int,
)
from agentscore.storage.database import SessionFactory
from agentscore.storage.repos import (
    RegisteredAgentDTO,
    RegisteredAgentRepository,
    ScanCheckpointRepository,
    WalletMetricsDelta,
    WalletMetricsRepository,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

DEFAULT_BLOCK_CHUNK = 2000
DEFAULT_MAX_WINDOWS_PER_RUN = 500
DEFAULT_WINDOW_DELAY_SECONDS = 0.2
DEFAULT_MAX_RETRIES_PER_WINDOW = 2
DEFAULT_RETRY_BACKOFF_SECONDS = 2.0
PROGRESS_LOG_INTERVAL = 50
TIMESTAMP_BATCH_SIZE = 10


class LogHandler(Protocol):
    """Folds one window of logs into storage."""

    async def fold(self, logs: list[dict[str, Any]]) -> Any:
        """Turn raw logs into a persistable batch (may perform RPC reads)."""
        ...

    async def persist(self, session: AsyncSession, batch: Any) -> int:
        """Write the batch; returns the number of records touched."""
        ...


@dataclass(frozen=True)
class ScanResult:
    """Outcome of one scan invocation for a single source."""

    source_key: str
    from_height: int
    scanned_to: int | None
    new_records: int
    windows_processed: int
    windows_skipped: int
    reached_head: bool

    def to_dict(self) -> dict[str, object]:
        return {
            "source_key": self.source_key,
            "from_height": self.from_height,
            "scanned_to": self.scanned_to,
            "new_records": self.new_records,
            "windows_processed": self.windows_processed,
            "windows_skipped": self.windows_skipped,
            "reached_head": self.reached_head,
        }


class ChainScanner:
    """Checkpointed event-log scanner.

    Example:
        ```python
        scanner = ChainScanner(client, db.get_async_session, start_block=0)
        result = await scanner.scan(
            "tasks:0xabc...",
            [TASK_COMPLETED_TOPIC, TASK_FAILED_TOPIC],
            "0xabc...",
            WalletCounterHandler(client, {TASK_COMPLETED_TOPIC: "tasks_completed", ...}),
        )
        ```
    """

    def __init__(
        self,
        client: ChainClient,
        session_factory: SessionFactory,
        *,
        start_block: int = 0,
        block_chunk: int = DEFAULT_BLOCK_CHUNK,
        max_windows_per_run: int = DEFAULT_MAX_WINDOWS_PER_RUN,
        window_delay_seconds: float = DEFAULT_WINDOW_DELAY_SECONDS,
        max_retries_per_window: int = DEFAULT_MAX_RETRIES_PER_WINDOW,
        retry_backoff_seconds: float = DEFAULT_RETRY_BACKOFF_SECONDS,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ) -> None:
        if block_chunk < 1:
            raise ValueError("block_chunk must be >= 1")
        if max_windows_per_run < 1:
            raise ValueError("max_windows_per_run must be >= 1")
        self._client = client
        self._session_factory = session_factory
        self._start_block = start_block
        self._block_chunk = block_chunk
        self._max_windows = max_windows_per_run
        self._window_delay = window_delay_seconds
        self._max_retries = max_retries_per_window
        self._retry_backoff = retry_backoff_seconds
        self._sleep = sleep

    async def scan(
        self,
        source_key: str,
        topics: Sequence[str],
        contract_address: str,
        handler: LogHandler,
    ) -> ScanResult:
        """Scan from the stored checkpoint towards the current head.

        Returns after reaching the head or after the per-invocation window
        cap; the next call resumes from the persisted checkpoint.
        """
        async with self._session_factory() as session:
            last = await ScanCheckpointRepository(session).get_height(source_key)
        from_height = last + 1 if last is not None else self._start_block

        target = await self._client.block_number()
        if from_height > target:
            logger.info("Scan %s already up to date (checkpoint=%s head=%d)", source_key, last, target)
            return ScanResult(source_key, from_height, last, 0, 0, 0, True)

        logger.info("Scanning %s blocks %d -> %d", source_key, from_height, target)

        new_records = 0
        windows = 0
        skipped = 0
        scanned_to = last
        current = from_height

        while current <= target and windows < self._max_windows:
            window_to = min(current + self._block_chunk - 1, target)
            records = await self._process_window(source_key, topics, contract_address, handler, current, window_to)
            if records is None:
                skipped += 1
            else:
                new_records += records

            scanned_to = window_to
            current = window_to + 1
            windows += 1

            if windows % PROGRESS_LOG_INTERVAL == 0:
                pct = (current - from_height) / (target - from_height + 1) * 100
                logger.info(
                    "Scan %s progress: %d windows, block %d (%.1f%%), %d records",
                    source_key,
                    windows,
                    current,
                    pct,
                    new_records,
                )

            if windows < self._max_windows and current <= target:
                await self._sleep(self._window_delay)

        reached_head = current > target
        logger.info(
            "Scan %s finished: %d records, %d windows (%d skipped), blocks %d -> %s%s",
            source_key,
            new_records,
            windows,
            skipped,
            from_height,
            scanned_to,
            "" if reached_head else " (window cap reached)",
        )
        return ScanResult(source_key, from_height, scanned_to, new_records, windows, skipped, reached_head)

    async def _process_window(
        self,
        source_key: str,
        topics: Sequence[str],
        contract_address: str,
        handler: LogHandler,
        from_block: int,
        to_block: int,
    ) -> int | None:
        """Process one window; returns None when the window was skipped."""
        retries = 0
        while True:
            try:
                logs = await self._fetch_window(topics, contract_address, from_block, to_block)
                batch = await handler.fold(logs)
                break
            except ChainClientError as e:
                if is_retryable(e) and retries < self._max_retries:
                    retries += 1
                    logger.warning(
                        "RPC issue scanning %s at block %d (retry %d/%d): %s",
                        source_key,
                        from_block,
                        retries,
                        self._max_retries,
                        e,
                    )
                    await self._sleep(self._retry_backoff * retries)
                    continue
                if is_retryable(e):
                    logger.warning(
                        "Skipping %s window %d-%d after %d retries: %s",
                        source_key,
                        from_block,
                        to_block,
                        retries,
                        e,
                    )
                else:
                    logger.error("Error scanning %s window %d-%d, skipping: %s", source_key, from_block, to_block, e)
                async with self._session_factory() as session:
                    await ScanCheckpointRepository(session).advance(source_key, to_block)
                return None

        async with self._session_factory() as session:
            records = await handler.persist(session, batch)
            await ScanCheckpointRepository(session).advance(source_key, to_block)
        if records:
            logger.info("Window %s %d-%d: %d logs, %d records", source_key, from_block, to_block, len(logs), records)
        return records

    async def _fetch_window(
        self,
        topics: Sequence[str],
        contract_address: str,
        from_block: int,
        to_block: int,
    ) -> list[dict[str, Any]]:
        requests = [
            self._client.get_logs(
                {
                    "address": contract_address,
                    "topics": [topic],
                    "fromBlock": from_block,
                    "toBlock": to_block,
                }
            )
            for topic in topics
        ]
        results = await asyncio.gather(*requests)
        logs: list[dict[str, Any]] = []
        for chunk in results:
            logs.extend(chunk)
        return logs


class WalletCounterHandler:
    """Counts events per indexed wallet (topic 1) into WalletMetrics.

    Args:
        client: Chain client used to resolve block timestamps.
        topic_fields: Event topic hash -> WalletMetricsDelta counter name.
        track_first_seen: Resolve the earliest event's block timestamp per wallet.
    """

    _FIELDS = ("tasks_completed", "tasks_failed", "disputes", "slashes")

    def __init__(
        self,
        client: ChainClient,
        topic_fields: dict[str, str],
        *,
        track_first_seen: bool = True,
    ) -> None:
        for name in topic_fields.values():
            if name not in self._FIELDS:
                raise ValueError(f"Unknown counter field: {name}")
        self._client = client
        self._topic_fields = {topic.lower(): name for topic, name in topic_fields.items()}
        self._track_first_seen = track_first_seen

    async def fold(self, logs: list[dict[str, Any]]) -> dict[str, WalletMetricsDelta]:
        counts: dict[str, dict[str, int]] = {}
        earliest_block: dict[str, int] = {}

        for log in logs:
            topics = log_topics(log)
            if len(topics) < 2:
                continue
            field_name = self._topic_fields.get(topics[0])
            if field_name is None:
                continue
            wallet = topic_to_address(topics[1])
            if wallet is None:
                logger.warning("Dropping log with malformed wallet topic: %s", topics[1])
                continue
            wallet_counts = counts.setdefault(wallet, dict.fromkeys(self._FIELDS, 0))
            wallet_counts[field_name] += 1

            block_number = int(log.get("blockNumber", 0))
            if wallet not in earliest_block or block_number < earliest_block[wallet]:
                earliest_block[wallet] = block_number

        timestamps: dict[int, int] = {}
        if self._track_first_seen and earliest_block:
            timestamps = await self._block_timestamps(sorted(set(earliest_block.values())))

        deltas: dict[str, WalletMetricsDelta] = {}
        for wallet, wallet_counts in counts.items():
            first_seen: datetime | None = None
            ts = timestamps.get(earliest_block[wallet], 0)
            if ts > 0:
                first_seen = datetime.fromtimestamp(ts, tz=UTC)
            deltas[wallet] = WalletMetricsDelta(first_seen_at=first_seen, **wallet_counts)
        return deltas

    async def persist(self, session: AsyncSession, batch: dict[str, WalletMetricsDelta]) -> int:
        if not batch:
            return 0
        return await WalletMetricsRepository(session).merge_many(batch)

    async def _block_timestamps(self, blocks: list[int]) -> dict[int, int]:
        result: dict[int, int] = {}
        for i in range(0, len(blocks), TIMESTAMP_BATCH_SIZE):
            batch = blocks[i : i + TIMESTAMP_BATCH_SIZE]
            values = await asyncio.gather(*(self._client.get_block_timestamp(b) for b in batch))
            result.update(zip(batch, values, strict=True))
        return result


class RegistrationHandler:
    """Decodes identity-registry `Registered` events into RegisteredAgent rows.

    The owner is recorded as the initial wallet; wallet resolution later
    replaces it with the registry's declared agent wallet.
    """

    async def fold(self, logs: list[dict[str, Any]]) -> list[RegisteredAgentDTO]:
        agents: list[RegisteredAgentDTO] = []
        for log in logs:
            topics = log_topics(log)
            if len(topics) < 3 or topics[0] != REGISTERED_TOPIC:
                continue
            owner = topic_to_address(topics[2])
            if owner is None:
                logger.warning("Dropping Registered event with malformed owner topic")
                continue
            try:
                agent_uri = decode_string(log.get("data", b""))
            except Exception as e:
                logger.warning("Failed to decode Registered agentURI: %s", e)
                agent_uri = None
            agents.append(
                RegisteredAgentDTO(
                    agent_id=topic_to_int(topics[1]),
                    owner_address=owner,
                    wallet_address=owner,
                    agent_uri=agent_uri,
                    registered_block=int(log.get("blockNumber", 0)),
                )
            )
        return agents

    async def persist(self, session: AsyncSession, batch: list[RegisteredAgentDTO]) -> int:
        if not batch:
            return 0
        return await RegisteredAgentRepository(session).upsert_many(batch)
