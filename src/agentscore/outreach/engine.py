"""Rate-limited outreach to scored agents.

Two flows share one engine instance:

- score replies: a public post telling an agent its score, gated by
  `check_eligibility` (recent activity, per-handle cooldown, task history,
  minimum score, global daily cap);
- wallet requests: a one-shot post asking a wallet-less agent for its
  address. The "asked" flag is persisted before the send is attempted, so an
  agent is asked at most once whatever the outcome.

Provider cooldowns (comment and post spacing) are fields on the engine,
driven by an injected clock, so they can be tested without real time.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from agentscore.social.client import PublishResult, SocialClient, SocialClientError
from agentscore.storage.database import SessionFactory
from agentscore.storage.repos import (
    DiscoveredAgentDTO,
    DiscoveredAgentRepository,
    ReplyRecordRepository,
    ScoredAgentDTO,
)

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_ACTIVITY_WINDOW = timedelta(hours=6)
DEFAULT_REPLY_COOLDOWN = timedelta(hours=24)
DEFAULT_DAILY_REPLY_CAP = 20
DEFAULT_MIN_SCORE = 600
DEFAULT_COMMENT_COOLDOWN_SECONDS = 21.0
DEFAULT_POST_COOLDOWN_SECONDS = 31 * 60.0
DEFAULT_MAX_COOLDOWN_WAIT_SECONDS = 60.0

DAILY_WINDOW = timedelta(hours=24)


class SkipReason:
    """Named reasons a score reply is not sent, in evaluation order."""

    NO_POST_TIME = "no post time"
    INACTIVE = "posted more than 6 hours ago"
    RECENTLY_REPLIED = "replied in last 24h"
    NO_COMPLETED_TASKS = "no completed tasks"
    ZERO_COMPLETION_RATE = "completion rate 0"
    SCORE_TOO_LOW = "score below 600"
    DAILY_CAP_REACHED = "daily reply cap reached"
    # Send-time reasons
    ALREADY_ASKED = "wallet already requested"
    COOLDOWN = "provider cooldown active"
    DRY_RUN = "dry run"
    PUBLISH_FAILED = "publish failed"


@dataclass(frozen=True)
class Eligibility:
    eligible: bool
    reason: str | None = None


def check_eligibility(
    *,
    now: datetime,
    last_activity_at: datetime | None,
    last_reply_at: datetime | None,
    tasks_completed: int,
    completion_rate: float,
    score: int,
    daily_count: int,
    activity_window: timedelta = DEFAULT_ACTIVITY_WINDOW,
    reply_cooldown: timedelta = DEFAULT_REPLY_COOLDOWN,
    min_score: int = DEFAULT_MIN_SCORE,
    daily_cap: int = DEFAULT_DAILY_REPLY_CAP,
) -> Eligibility:
    """Decide whether a score reply may be sent now.

    Checks run in a fixed order and the first failing one names the reason.
    """
    if last_activity_at is None:
        return Eligibility(False, SkipReason.NO_POST_TIME)
    if now - last_activity_at > activity_window:
        return Eligibility(False, SkipReason.INACTIVE)
    if last_reply_at is not None and now - last_reply_at < reply_cooldown:
        return Eligibility(False, SkipReason.RECENTLY_REPLIED)
    if tasks_completed < 1:
        return Eligibility(False, SkipReason.NO_COMPLETED_TASKS)
    if completion_rate <= 0:
        return Eligibility(False, SkipReason.ZERO_COMPLETION_RATE)
    if score < min_score:
        return Eligibility(False, SkipReason.SCORE_TOO_LOW)
    if daily_count >= daily_cap:
        return Eligibility(False, SkipReason.DAILY_CAP_REACHED)
    return Eligibility(True)


def build_score_message(handle: str, scored: ScoredAgentDTO, leaderboard_url: str) -> str:
    pct = int(scored.completion_rate * 100 + 0.5)
    return "\n".join(
        [
            f"@{handle} Your reputation score is **{scored.score}** ({scored.tier}).",
            f"Completion: {pct}%",
            f"Disputes: {scored.disputes}",
            f"Slashes: {scored.slashes}",
            "",
            f"View full leaderboard: {leaderboard_url}",
        ]
    )


def build_wallet_request(handle: str) -> str:
    return f"@{handle} To calculate your reputation score, please reply with your wallet address."


@dataclass(frozen=True)
class OutreachOutcome:
    handle: str
    sent: bool
    reason: str | None = None
    item_id: str | None = None


class OutreachEngine:
    """Sends score replies and wallet requests under provider rate limits."""

    def __init__(
        self,
        client: SocialClient,
        session_factory: SessionFactory,
        *,
        leaderboard_url: str,
        submolt: str = "general",
        activity_window: timedelta = DEFAULT_ACTIVITY_WINDOW,
        reply_cooldown: timedelta = DEFAULT_REPLY_COOLDOWN,
        daily_reply_cap: int = DEFAULT_DAILY_REPLY_CAP,
        min_score: int = DEFAULT_MIN_SCORE,
        jitter_min_seconds: float = 2.0,
        jitter_max_seconds: float = 5.0,
        comment_cooldown_seconds: float = DEFAULT_COMMENT_COOLDOWN_SECONDS,
        post_cooldown_seconds: float = DEFAULT_POST_COOLDOWN_SECONDS,
        max_cooldown_wait_seconds: float = DEFAULT_MAX_COOLDOWN_WAIT_SECONDS,
        dry_run: bool = False,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self._client = client
        self._session_factory = session_factory
        self._leaderboard_url = leaderboard_url
        self._submolt = submolt
        self._activity_window = activity_window
        self._reply_cooldown = reply_cooldown
        self._daily_cap = daily_reply_cap
        self._min_score = min_score
        self._jitter = (jitter_min_seconds, max(jitter_min_seconds, jitter_max_seconds))
        self.comment_cooldown = timedelta(seconds=comment_cooldown_seconds)
        self.post_cooldown = timedelta(seconds=post_cooldown_seconds)
        self._max_wait = max_cooldown_wait_seconds
        self._dry_run = dry_run
        self._clock = clock or (lambda: datetime.now(UTC))
        self._sleep = sleep
        self._rng = rng or random.Random()

        self.last_comment_at: datetime | None = None
        self.last_post_at: datetime | None = None

    # =========================================================================
    # Provider cooldowns
    # =========================================================================

    def _cooldown_remaining(self, last: datetime | None, cooldown: timedelta) -> float:
        if last is None:
            return 0.0
        return max(0.0, (cooldown - (self._clock() - last)).total_seconds())

    async def _wait_for(self, last: datetime | None, cooldown: timedelta, kind: str) -> bool:
        """Wait out a short cooldown; False when it is too long to wait this cycle."""
        remaining = self._cooldown_remaining(last, cooldown)
        if remaining <= 0:
            return True
        if remaining > self._max_wait:
            logger.info("%s cooldown: %.0fs remaining, deferring", kind.capitalize(), remaining)
            return False
        logger.info("%s cooldown: waiting %.0fs", kind.capitalize(), remaining)
        await self._sleep(remaining)
        return True

    async def send(self, handle: str, content: str, *, title: str, reply_to: str | None = None) -> PublishResult:
        """Publish a mention, as a comment under `reply_to` or as a new post.

        Returns a failed `PublishResult` (never raises) when the provider
        cooldown is too long to wait or the request fails.
        """
        if reply_to is not None:
            if not await self._wait_for(self.last_comment_at, self.comment_cooldown, "comment"):
                return PublishResult(success=False, error=SkipReason.COOLDOWN)
            try:
                result = await self._client.create_comment(reply_to, content)
            except SocialClientError as e:
                logger.warning("Comment for %s failed: %s", handle, e)
                return PublishResult(success=False, error=str(e))
            if result.success:
                self.last_comment_at = self._clock()
            return result

        if not await self._wait_for(self.last_post_at, self.post_cooldown, "post"):
            return PublishResult(success=False, error=SkipReason.COOLDOWN)
        try:
            result = await self._client.create_post(title=title, content=content, submolt=self._submolt)
        except SocialClientError as e:
            logger.warning("Post for %s failed: %s", handle, e)
            return PublishResult(success=False, error=str(e))
        if result.success:
            self.last_post_at = self._clock()
        return result

    # =========================================================================
    # Score replies
    # =========================================================================

    async def evaluate(self, scored: ScoredAgentDTO, last_activity_at: datetime | None) -> Eligibility:
        async with self._session_factory() as session:
            repo = ReplyRecordRepository(session)
            now = self._clock()
            last_reply_at = await repo.last_reply_at(scored.handle)
            daily_count = await repo.count_since(now - DAILY_WINDOW)
        return check_eligibility(
            now=now,
            last_activity_at=last_activity_at,
            last_reply_at=last_reply_at,
            tasks_completed=scored.tasks_completed,
            completion_rate=scored.completion_rate,
            score=scored.score,
            daily_count=daily_count,
            activity_window=self._activity_window,
            reply_cooldown=self._reply_cooldown,
            min_score=self._min_score,
            daily_cap=self._daily_cap,
        )

    async def reply_with_score(self, scored: ScoredAgentDTO, last_activity_at: datetime | None) -> OutreachOutcome:
        handle = scored.handle
        decision = await self.evaluate(scored, last_activity_at)
        if not decision.eligible:
            logger.info("Skipping %s: %s", handle, decision.reason)
            return OutreachOutcome(handle, sent=False, reason=decision.reason)

        content = build_score_message(handle, scored, self._leaderboard_url)
        if self._dry_run:
            logger.info("Dry run: would reply to %s (score=%d)", handle, scored.score)
            return OutreachOutcome(handle, sent=False, reason=SkipReason.DRY_RUN)

        await self._sleep(self._rng.uniform(*self._jitter))
        result = await self.send(handle, content, title=f"Reputation score for {handle}")
        if not result.success:
            if result.error == SkipReason.COOLDOWN:
                return OutreachOutcome(handle, sent=False, reason=SkipReason.COOLDOWN)
            logger.warning("Reply to %s failed: %s", handle, result.error)
            return OutreachOutcome(handle, sent=False, reason=SkipReason.PUBLISH_FAILED)

        async with self._session_factory() as session:
            await ReplyRecordRepository(session).record(handle, self._clock(), post_id=result.item_id)
        logger.info("Replied to %s (score=%d)", handle, scored.score)
        return OutreachOutcome(handle, sent=True, item_id=result.item_id)

    async def reply_to_top(
        self,
        scored: Sequence[ScoredAgentDTO],
        last_activity: Mapping[str, datetime | None],
        *,
        max_candidates: int,
    ) -> list[OutreachOutcome]:
        """Reply to the highest-scored agents of this cycle, best first."""
        ranked = sorted(scored, key=lambda s: s.score, reverse=True)
        candidates = [s for s in ranked if s.score >= self._min_score][:max_candidates]
        outcomes = []
        for candidate in candidates:
            outcome = await self.reply_with_score(candidate, last_activity.get(candidate.handle))
            outcomes.append(outcome)
            if outcome.reason == SkipReason.COOLDOWN:
                break
        return outcomes

    # =========================================================================
    # Wallet requests
    # =========================================================================

    async def request_wallet(self, handle: str) -> OutreachOutcome:
        """Ask an agent for its wallet, at most once per handle.

        Only the post cooldown paces wallet requests; no reply jitter is applied.
        """
        async with self._session_factory() as session:
            repo = DiscoveredAgentRepository(session)
            agent = await repo.get(handle)
            if agent is not None and (agent.wallet_requested or agent.wallet_address):
                return OutreachOutcome(handle, sent=False, reason=SkipReason.ALREADY_ASKED)
            if agent is None:
                await repo.seed(handle)
            if self._dry_run:
                logger.info("Dry run: would request wallet from %s", handle)
                return OutreachOutcome(handle, sent=False, reason=SkipReason.DRY_RUN)
            if self._cooldown_remaining(self.last_post_at, self.post_cooldown) > self._max_wait:
                return OutreachOutcome(handle, sent=False, reason=SkipReason.COOLDOWN)
            await repo.mark_wallet_requested(handle)

        result = await self.send(handle, build_wallet_request(handle), title=f"Wallet request for {handle}")
        if not result.success:
            logger.warning("Wallet request to %s failed: %s", handle, result.error)
            return OutreachOutcome(handle, sent=False, reason=result.error)
        logger.info("Requested wallet from %s", handle)
        return OutreachOutcome(handle, sent=True, item_id=result.item_id)

    async def request_missing_wallets(self, agents: Sequence[DiscoveredAgentDTO], *, limit: int) -> list[OutreachOutcome]:
        pending = [a for a in agents if not a.wallet_address and not a.wallet_requested]
        return [await self.request_wallet(agent.handle) for agent in pending[:limit]]
