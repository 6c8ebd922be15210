"""Main pipeline orchestrator for agent reputation scoring.

This module provides the Pipeline class that wires together the discovery,
metrics, scoring and outreach components and runs them once per cycle.

Pipeline flow (per cycle):
    Chain Scanner + Social Crawler -> Metrics Aggregator -> Scoring Engine
    -> ScoredAgent store -> Outreach Engine
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any, TypeVar

from redis.asyncio import Redis
from sqlalchemy.exc import SQLAlchemyError

from agentscore.cache import TTLCache
from agentscore.chain.client import ChainClient
from agentscore.chain.events import (
    DISPUTE_OPENED_TOPIC,
    REGISTERED_TOPIC,
    SLASHED_TOPIC,
    TASK_COMPLETED_TOPIC,
    TASK_FAILED_TOPIC,
)
from agentscore.chain.registry import RegistryReader, resolve_wallets
from agentscore.chain.scanner import ChainScanner, RegistrationHandler, ScanResult, WalletCounterHandler
from agentscore.config import Settings, get_settings
from agentscore.metrics.aggregator import MetricsAggregator
from agentscore.outreach.engine import OutreachEngine
from agentscore.scoring.engine import score_agent
from agentscore.social.client import SocialClient
from agentscore.social.crawler import SocialCrawler
from agentscore.sources.debate import DebateSource
from agentscore.sources.financial import FinancialSource
from agentscore.storage.database import DatabaseManager
from agentscore.storage.repos import (
    DiscoveredAgentDTO,
    DiscoveredAgentRepository,
    RegisteredAgentRepository,
    ScanCheckpointRepository,
    ScoredAgentDTO,
    ScoredAgentRepository,
)

if TYPE_CHECKING:
    from agentscore.storage.database import SessionFactory

logger = logging.getLogger(__name__)

T = TypeVar("T")

WALLET_RESOLUTION_KEY_PREFIX = "identity-wallets:"
WALLET_RESOLUTION_BATCH = 500


class PipelineState(str, Enum):
    """Pipeline lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class PipelineStats:
    """Statistics for the pipeline."""

    started_at: datetime | None = None
    cycles_completed: int = 0
    agents_discovered: int = 0
    agents_scored: int = 0
    chain_records: int = 0
    replies_sent: int = 0
    wallet_requests_sent: int = 0
    wallets_from_replies: int = 0
    errors: int = 0
    last_cycle_at: datetime | None = None
    last_error: str | None = None


@dataclass
class CycleReport:
    """What one cycle did."""

    started_at: datetime
    finished_at: datetime | None = None
    scans: list[ScanResult] = field(default_factory=list)
    discovered: int = 0
    scored: int = 0
    replies_sent: int = 0
    wallet_requests_sent: int = 0
    failed_steps: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "scans": [s.to_dict() for s in self.scans],
            "discovered": self.discovered,
            "scored": self.scored,
            "replies_sent": self.replies_sent,
            "wallet_requests_sent": self.wallet_requests_sent,
            "failed_steps": list(self.failed_steps),
        }


class Pipeline:
    """Scheduled discovery -> metrics -> scoring -> outreach loop.

    A failing step is logged and counted; the cycle carries on with what it
    has. Storage failures are the exception: they abort the cycle, because
    without the checkpoint store nothing downstream is meaningful.

    Example:
        ```python
        from agentscore.config import get_settings
        from agentscore.pipeline import Pipeline

        pipeline = Pipeline(get_settings())
        report = await pipeline.run_once()
        print(report.to_dict())
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        dry_run: bool | None = None,
        db_manager: DatabaseManager | None = None,
        chain_client: ChainClient | None = None,
        social_client: SocialClient | None = None,
        debate_source: DebateSource | None = None,
        financial_source: FinancialSource | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Initialize the pipeline.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            dry_run: If True, outreach decisions are logged but never posted.
            db_manager: Pre-built database manager (otherwise built from settings).
            chain_client: Pre-built chain client (otherwise built when an RPC is set).
            social_client: Pre-built social client.
            debate_source: Pre-built debate source.
            financial_source: Pre-built financial source.
            sleep: Awaitable sleep used for rate-limit pacing.
        """
        self._settings = settings or get_settings()
        self._dry_run = dry_run if dry_run is not None else self._settings.dry_run
        self._sleep = sleep

        self._state = PipelineState.STOPPED
        self._stats = PipelineStats()

        # Components (initialized in start())
        self._redis: Redis | None = None
        self._db_manager = db_manager
        self._chain_client = chain_client
        self._social_client = social_client
        self._debate_source = debate_source
        self._financial_source = financial_source
        self._owned: list[Any] = []
        self._scanner: ChainScanner | None = None
        self._registry: RegistryReader | None = None
        self._crawler: SocialCrawler | None = None
        self._aggregator: MetricsAggregator | None = None
        self._outreach: OutreachEngine | None = None

        # Synchronization
        self._stop_event: asyncio.Event | None = None
        self._loop_task: asyncio.Task[None] | None = None

    @property
    def state(self) -> PipelineState:
        """Current pipeline state."""
        return self._state

    @property
    def stats(self) -> PipelineStats:
        """Current pipeline statistics."""
        return self._stats

    @property
    def is_running(self) -> bool:
        """Check if pipeline is running."""
        return self._state == PipelineState.RUNNING

    @property
    def _session_factory(self) -> SessionFactory:
        if self._db_manager is None:
            raise RuntimeError("Database manager is not initialized")
        return self._db_manager.get_async_session

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self, *, schedule: bool = True) -> None:
        """Initialize components and, if `schedule`, start the cycle loop.

        Raises:
            RuntimeError: If pipeline is already running.
            Exception: If any component fails to initialize.
        """
        if self._state != PipelineState.STOPPED:
            raise RuntimeError(f"Cannot start pipeline in state {self._state}")

        self._state = PipelineState.STARTING
        self._stop_event = asyncio.Event()
        logger.info("Starting pipeline...")

        try:
            await self._initialize_components()
            self._stats.started_at = datetime.now(UTC)
            if schedule:
                self._loop_task = asyncio.create_task(self._run_loop())
            self._state = PipelineState.RUNNING
            logger.info("Pipeline started successfully")
        except Exception as e:
            self._state = PipelineState.ERROR
            self._stats.last_error = str(e)
            logger.error("Failed to start pipeline: %s", e)
            await self._cleanup()
            raise

    async def stop(self) -> None:
        """Stop the pipeline after the current cycle step and release resources."""
        if self._state == PipelineState.STOPPED:
            return

        self._state = PipelineState.STOPPING
        logger.info("Stopping pipeline...")

        if self._stop_event:
            self._stop_event.set()
        if self._loop_task is not None:
            self._loop_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._loop_task
            self._loop_task = None

        await self._cleanup()

        self._state = PipelineState.STOPPED
        logger.info("Pipeline stopped")

    async def _initialize_components(self) -> None:
        """Initialize all pipeline components."""
        settings = self._settings

        if self._db_manager is None:
            logger.debug("Initializing database manager...")
            self._db_manager = DatabaseManager(settings.database.url)
            self._owned.append(self._db_manager)

        if settings.redis.url:
            logger.debug("Initializing Redis connection...")
            self._redis = Redis.from_url(settings.redis.url)

        if self._chain_client is None and settings.chain.enabled:
            logger.debug("Initializing chain client...")
            self._chain_client = ChainClient(
                settings.chain.rpc_url or "",
                fallback_rpc_url=settings.chain.fallback_rpc_url,
                redis=self._redis,
                timeout_seconds=settings.chain.rpc_timeout_seconds,
                max_requests_per_second=settings.chain.requests_per_second,
            )
            self._owned.append(self._chain_client)

        if self._chain_client is not None:
            self._scanner = ChainScanner(
                self._chain_client,
                self._session_factory,
                start_block=settings.chain.start_block,
                block_chunk=settings.chain.block_chunk,
                max_windows_per_run=settings.chain.max_windows_per_run,
                window_delay_seconds=settings.chain.window_delay_seconds,
                max_retries_per_window=settings.chain.max_retries_per_window,
                retry_backoff_seconds=settings.chain.retry_backoff_seconds,
                sleep=self._sleep,
            )
            self._registry = RegistryReader(
                self._chain_client,
                identity_address=settings.chain.identity_address,
                reputation_address=settings.chain.reputation_address,
            )
        else:
            logger.warning("CHAIN_RPC_URL not set; on-chain metrics will be empty")

        if self._social_client is None:
            api_key = settings.social.api_key.get_secret_value() if settings.social.api_key else None
            self._social_client = SocialClient(
                settings.social.base_url,
                api_key,
                timeout_seconds=settings.social.timeout_seconds,
            )
            self._owned.append(self._social_client)
        self._crawler = SocialCrawler(
            self._social_client,
            self._session_factory,
            profile_delay_seconds=settings.social.profile_delay_seconds,
            rate_limit_backoff_seconds=settings.social.rate_limit_backoff_seconds,
            reply_scan_posts=settings.social.reply_scan_posts,
            profile_cache=TTLCache(ttl_seconds=3600, max_entries=5000),
            sleep=self._sleep,
        )

        if self._debate_source is None and settings.debate.base_url:
            self._debate_source = DebateSource(
                settings.debate.base_url,
                leaderboard_limit=settings.debate.leaderboard_limit,
                timeout_seconds=settings.debate.timeout_seconds,
                cache_ttl_seconds=settings.debate.cache_ttl_seconds,
                failure_ttl_seconds=settings.debate.failure_ttl_seconds,
            )
        if self._financial_source is None and settings.financial.enabled:
            api_key = settings.financial.api_key.get_secret_value() if settings.financial.api_key else None
            self._financial_source = FinancialSource(
                settings.financial.base_url,
                api_key,
                poll_interval_seconds=settings.financial.poll_interval_seconds,
                max_poll_attempts=settings.financial.max_poll_attempts,
                timeout_seconds=settings.financial.timeout_seconds,
                cache_ttl_seconds=settings.financial.cache_ttl_seconds,
                sleep=self._sleep,
            )
        self._aggregator = MetricsAggregator(
            self._session_factory,
            debate_source=self._debate_source,
            financial_source=self._financial_source,
        )

        if settings.outreach.enabled:
            self._outreach = OutreachEngine(
                self._social_client,
                self._session_factory,
                leaderboard_url=settings.outreach.leaderboard_url,
                submolt=settings.social.submolt,
                activity_window=timedelta(hours=settings.outreach.activity_window_hours),
                reply_cooldown=timedelta(hours=settings.outreach.reply_cooldown_hours),
                daily_reply_cap=settings.outreach.daily_reply_cap,
                min_score=settings.outreach.min_score,
                jitter_min_seconds=settings.outreach.jitter_min_seconds,
                jitter_max_seconds=settings.outreach.jitter_max_seconds,
                comment_cooldown_seconds=settings.social.comment_cooldown_seconds,
                post_cooldown_seconds=settings.social.post_cooldown_seconds,
                max_cooldown_wait_seconds=settings.outreach.max_cooldown_wait_seconds,
                dry_run=self._dry_run,
                sleep=self._sleep,
            )

    async def _cleanup(self) -> None:
        """Release the resources this pipeline created."""
        for component in reversed(self._owned):
            try:
                if isinstance(component, DatabaseManager):
                    await component.dispose_async()
                else:
                    await component.aclose()
            except Exception as e:
                logger.warning("Failed to close %s: %s", type(component).__name__, e)
        self._owned.clear()
        if self._redis is not None:
            try:
                await self._redis.aclose()
            except Exception as e:
                logger.warning("Failed to close Redis connection: %s", e)
            self._redis = None

    # =========================================================================
    # Cycle
    # =========================================================================

    async def _step(self, report: CycleReport, name: str, op: Callable[[], Awaitable[T]]) -> T | None:
        """Run one cycle step; failures other than storage failures are absorbed."""
        try:
            return await op()
        except SQLAlchemyError:
            raise
        except Exception as e:
            self._stats.errors += 1
            self._stats.last_error = f"{name}: {e}"
            report.failed_steps.append(name)
            logger.exception("Pipeline step %s failed", name)
            return None

    async def run_cycle(self) -> CycleReport:
        """Run one full discovery -> scoring -> outreach pass.

        Raises:
            SQLAlchemyError: If the store is unreachable.
        """
        if self._crawler is None or self._aggregator is None:
            raise RuntimeError("Pipeline components are not initialized")

        settings = self._settings
        report = CycleReport(started_at=datetime.now(UTC))
        logger.info("Cycle started")

        scans = await self._step(report, "chain_scan", self._scan_chain)
        report.scans = scans or []

        agents = await self._step(report, "discover", lambda: self._crawler.discover(settings.pipeline.discover_limit))
        agents = agents or []
        report.discovered = len(agents)

        if self._social_client is not None and self._social_client.authenticated:
            updated = await self._step(report, "wallet_replies", self._crawler.scan_wallet_replies)
            self._stats.wallets_from_replies += updated or 0
            agents = await self._refresh_wallets(agents)

        if self._outreach is not None:
            outcomes = await self._step(
                report,
                "wallet_requests",
                lambda: self._outreach.request_missing_wallets(agents, limit=settings.outreach.wallet_requests_per_cycle),
            )
            report.wallet_requests_sent = sum(1 for o in outcomes or [] if o.sent)

        scored = await self._score_agents(report, agents)
        async with self._session_factory() as session:
            await ScoredAgentRepository(session).upsert_many(scored)
        report.scored = len(scored)

        if self._outreach is not None and scored:
            last_activity = {a.handle: a.last_activity_at for a in agents}
            outcomes = await self._step(
                report,
                "outreach",
                lambda: self._outreach.reply_to_top(
                    scored,
                    last_activity,
                    max_candidates=settings.outreach.max_candidates,
                ),
            )
            report.replies_sent = sum(1 for o in outcomes or [] if o.sent)

        report.finished_at = datetime.now(UTC)
        self._record(report)
        logger.info(
            "Cycle done: discovered=%d scored=%d replies=%d wallet_requests=%d failed_steps=%s",
            report.discovered,
            report.scored,
            report.replies_sent,
            report.wallet_requests_sent,
            ",".join(report.failed_steps) or "-",
        )
        return report

    def _record(self, report: CycleReport) -> None:
        self._stats.cycles_completed += 1
        self._stats.agents_discovered += report.discovered
        self._stats.agents_scored += report.scored
        self._stats.chain_records += sum(s.new_records for s in report.scans)
        self._stats.replies_sent += report.replies_sent
        self._stats.wallet_requests_sent += report.wallet_requests_sent
        self._stats.last_cycle_at = report.finished_at

    async def _scan_chain(self) -> list[ScanResult]:
        if self._scanner is None or self._chain_client is None:
            return []
        chain = self._settings.chain
        client = self._chain_client
        results: list[ScanResult] = []

        if chain.tasks_address:
            results.append(
                await self._scanner.scan(
                    f"tasks:{chain.tasks_address.lower()}",
                    [TASK_COMPLETED_TOPIC, TASK_FAILED_TOPIC],
                    chain.tasks_address,
                    WalletCounterHandler(
                        client,
                        {TASK_COMPLETED_TOPIC: "tasks_completed", TASK_FAILED_TOPIC: "tasks_failed"},
                    ),
                )
            )
        if chain.disputes_address:
            results.append(
                await self._scanner.scan(
                    f"disputes:{chain.disputes_address.lower()}",
                    [DISPUTE_OPENED_TOPIC, SLASHED_TOPIC],
                    chain.disputes_address,
                    WalletCounterHandler(
                        client,
                        {DISPUTE_OPENED_TOPIC: "disputes", SLASHED_TOPIC: "slashes"},
                    ),
                )
            )
        results.append(
            await self._scanner.scan(
                f"identity:{chain.identity_address.lower()}",
                [REGISTERED_TOPIC],
                chain.identity_address,
                RegistrationHandler(),
            )
        )
        await self._resolve_new_wallets()
        return results

    async def _resolve_new_wallets(self) -> int:
        """Resolve declared wallets for registrations not yet looked at."""
        if self._registry is None:
            return 0
        key = f"{WALLET_RESOLUTION_KEY_PREFIX}{self._settings.chain.identity_address.lower()}"
        async with self._session_factory() as session:
            last_id = await ScanCheckpointRepository(session).get_height(key)
            agent_ids = await RegisteredAgentRepository(session).list_ids_after(
                -1 if last_id is None else last_id, WALLET_RESOLUTION_BATCH
            )
        if not agent_ids:
            return 0
        updated = await resolve_wallets(
            self._registry,
            self._session_factory,
            agent_ids,
            batch_size=self._settings.chain.wallet_batch_size,
            batch_delay_seconds=self._settings.chain.window_delay_seconds,
            sleep=self._sleep,
        )
        async with self._session_factory() as session:
            await ScanCheckpointRepository(session).advance(key, agent_ids[-1])
        return updated

    async def _refresh_wallets(self, agents: list[DiscoveredAgentDTO]) -> list[DiscoveredAgentDTO]:
        async with self._session_factory() as session:
            wallets = await DiscoveredAgentRepository(session).get_wallets([a.handle for a in agents])
        for agent in agents:
            if not agent.wallet_address and agent.handle in wallets:
                agent.wallet_address = wallets[agent.handle]
        return agents

    async def _score_agents(self, report: CycleReport, agents: list[DiscoveredAgentDTO]) -> list[ScoredAgentDTO]:
        assert self._aggregator is not None
        mode = self._settings.pipeline.scoring_mode
        scored: list[ScoredAgentDTO] = []
        for agent in agents:
            try:
                metrics = await self._aggregator.aggregate(
                    agent.handle,
                    agent.wallet_address,
                    last_activity_at=agent.last_activity_at,
                    post_count=agent.post_count,
                )
                scored.append(score_agent(metrics, mode))
            except SQLAlchemyError:
                raise
            except Exception as e:
                self._stats.errors += 1
                self._stats.last_error = f"score {agent.handle}: {e}"
                logger.warning("Scoring failed for %s: %s", agent.handle, e)
        if len(scored) < len(agents):
            report.failed_steps.append("score")
        return scored

    # =========================================================================
    # Entry points
    # =========================================================================

    async def _run_loop(self) -> None:
        interval = self._settings.pipeline.interval_seconds
        while self._stop_event is not None and not self._stop_event.is_set():
            try:
                await self.run_cycle()
            except Exception as e:
                self._stats.errors += 1
                self._stats.last_error = str(e)
                logger.exception("Cycle failed")
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)

    async def run_once(self) -> CycleReport:
        """Initialize, run exactly one cycle, and shut down.

        Raises:
            Exception: Whatever escaped the cycle (storage failures).
        """
        await self.start(schedule=False)
        try:
            return await self.run_cycle()
        finally:
            await self.stop()

    async def run(self) -> None:
        """Start the pipeline and run cycles until interrupted.

        Example:
            ```python
            pipeline = Pipeline()
            try:
                await pipeline.run()
            except KeyboardInterrupt:
                pass
            ```
        """
        await self.start()

        try:
            if self._stop_event:
                await self._stop_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    async def __aenter__(self) -> Pipeline:
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.stop()
