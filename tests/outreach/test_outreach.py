"""Tests for eligibility rules and the outreach engine."""

import random
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from agentscore.outreach.engine import (
    OutreachEngine,
    SkipReason,
    build_score_message,
    build_wallet_request,
    check_eligibility,
)
from agentscore.social.client import PublishResult, SocialClientError
from agentscore.storage.repos import (
    DiscoveredAgentDTO,
    DiscoveredAgentRepository,
    ReplyRecordRepository,
    ScoredAgentDTO,
)

NOW = datetime(2026, 6, 1, 12, tzinfo=UTC)
WALLET = "0x" + "ab" * 20


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def scored(handle="alpha", score=800, tasks_completed=5, completion_rate=1.0):
    return ScoredAgentDTO(
        handle=handle,
        score=score,
        tier="AA",
        wallet_address=WALLET,
        completion_rate=completion_rate,
        tasks_completed=tasks_completed,
        disputes=1,
        slashes=0,
    )


@pytest.fixture
def client():
    mock = MagicMock()
    mock.create_post = AsyncMock(return_value=PublishResult(success=True, item_id="p-1"))
    mock.create_comment = AsyncMock(return_value=PublishResult(success=True, item_id="c-1"))
    return mock


@pytest.fixture
def clock():
    return FakeClock(NOW)


@pytest.fixture
def make_engine(client, session_factory, clock, no_sleep):
    def _make(**kwargs):
        return OutreachEngine(
            client,
            session_factory,
            leaderboard_url="https://scores.test/leaderboard",
            clock=clock,
            sleep=no_sleep,
            rng=random.Random(7),
            **kwargs,
        )

    return _make


# ============================================================================
# Eligibility
# ============================================================================


class TestCheckEligibility:
    """Tests for the ordered eligibility rules."""

    BASE = dict(
        now=NOW,
        last_activity_at=NOW - timedelta(hours=1),
        last_reply_at=None,
        tasks_completed=5,
        completion_rate=0.8,
        score=700,
        daily_count=0,
    )

    def test_eligible(self):
        assert check_eligibility(**self.BASE).eligible is True

    @pytest.mark.parametrize(
        ("overrides", "reason"),
        [
            ({"last_activity_at": None}, SkipReason.NO_POST_TIME),
            ({"last_activity_at": NOW - timedelta(hours=7)}, SkipReason.INACTIVE),
            ({"last_reply_at": NOW - timedelta(hours=23)}, SkipReason.RECENTLY_REPLIED),
            ({"tasks_completed": 0}, SkipReason.NO_COMPLETED_TASKS),
            ({"completion_rate": 0.0}, SkipReason.ZERO_COMPLETION_RATE),
            ({"score": 599}, SkipReason.SCORE_TOO_LOW),
            ({"daily_count": 20}, SkipReason.DAILY_CAP_REACHED),
        ],
    )
    def test_skip_reasons(self, overrides, reason):
        decision = check_eligibility(**{**self.BASE, **overrides})

        assert decision.eligible is False
        assert decision.reason == reason

    def test_first_failing_check_wins(self):
        decision = check_eligibility(**{**self.BASE, "last_activity_at": None, "score": 100})
        assert decision.reason == SkipReason.NO_POST_TIME

    def test_old_reply_does_not_block(self):
        decision = check_eligibility(**{**self.BASE, "last_reply_at": NOW - timedelta(hours=25)})
        assert decision.eligible is True


class TestMessages:
    def test_score_message(self):
        message = build_score_message("alpha", scored(completion_rate=0.666), "https://scores.test/lb")

        assert message.startswith("@alpha Your reputation score is **800** (AA).")
        assert "Completion: 67%" in message
        assert "Disputes: 1" in message
        assert message.endswith("View full leaderboard: https://scores.test/lb")

    def test_wallet_request(self):
        assert build_wallet_request("alpha").startswith("@alpha ")


# ============================================================================
# Score replies
# ============================================================================


class TestReplyWithScore:
    """Tests for OutreachEngine.reply_with_score."""

    @pytest.mark.asyncio
    async def test_sends_and_records(self, make_engine, client, session_factory, no_sleep):
        engine = make_engine()

        outcome = await engine.reply_with_score(scored(), NOW - timedelta(hours=1))

        assert outcome.sent is True
        assert outcome.item_id == "p-1"
        client.create_post.assert_awaited_once()
        assert client.create_post.await_args.kwargs["submolt"] == "general"
        assert 2.0 <= no_sleep.calls[0] <= 5.0
        assert engine.last_post_at == NOW
        async with session_factory() as session:
            assert await ReplyRecordRepository(session).last_reply_at("alpha") == NOW

    @pytest.mark.asyncio
    async def test_reply_cooldown_per_handle(self, make_engine, clock):
        engine = make_engine(post_cooldown_seconds=0)
        await engine.reply_with_score(scored(), NOW - timedelta(hours=1))

        clock.advance(hours=2)
        outcome = await engine.reply_with_score(scored(), clock() - timedelta(minutes=5))

        assert outcome.sent is False
        assert outcome.reason == SkipReason.RECENTLY_REPLIED

    @pytest.mark.asyncio
    async def test_dry_run_sends_nothing(self, make_engine, client, session_factory):
        engine = make_engine(dry_run=True)

        outcome = await engine.reply_with_score(scored(), NOW - timedelta(hours=1))

        assert outcome.reason == SkipReason.DRY_RUN
        client.create_post.assert_not_awaited()
        async with session_factory() as session:
            assert await ReplyRecordRepository(session).count_since(NOW - timedelta(days=1)) == 0

    @pytest.mark.asyncio
    async def test_publish_failure(self, make_engine, client):
        client.create_post.return_value = PublishResult(success=False, error="HTTP 500")
        engine = make_engine()

        outcome = await engine.reply_with_score(scored(), NOW - timedelta(hours=1))

        assert outcome.reason == SkipReason.PUBLISH_FAILED
        assert engine.last_post_at is None

    @pytest.mark.asyncio
    async def test_ineligible_is_not_sent(self, make_engine, client):
        outcome = await make_engine().reply_with_score(scored(score=500), NOW - timedelta(hours=1))

        assert outcome.reason == SkipReason.SCORE_TOO_LOW
        client.create_post.assert_not_awaited()


class TestProviderCooldowns:
    """Tests for comment and post spacing."""

    @pytest.mark.asyncio
    async def test_short_comment_cooldown_is_waited(self, make_engine, client, no_sleep):
        engine = make_engine(comment_cooldown_seconds=21)

        await engine.send("alpha", "hi", title="t", reply_to="p-1")
        result = await engine.send("beta", "hi", title="t", reply_to="p-2")

        assert result.success is True
        assert no_sleep.calls == [21.0]
        assert client.create_comment.await_count == 2

    @pytest.mark.asyncio
    async def test_long_post_cooldown_defers(self, make_engine, client, clock):
        engine = make_engine()
        await engine.send("alpha", "hi", title="t")

        clock.advance(minutes=10)
        result = await engine.send("beta", "hi", title="t")

        assert result.success is False
        assert result.error == SkipReason.COOLDOWN
        assert client.create_post.await_count == 1

        clock.advance(minutes=21)
        assert (await engine.send("beta", "hi", title="t")).success is True

    @pytest.mark.asyncio
    async def test_client_error_becomes_failed_result(self, make_engine, client):
        client.create_comment.side_effect = SocialClientError("down")
        engine = make_engine()

        result = await engine.send("alpha", "hi", title="t", reply_to="p-1")

        assert result.success is False
        assert engine.last_comment_at is None

    @pytest.mark.asyncio
    async def test_reply_to_top_stops_at_cooldown(self, make_engine, client):
        engine = make_engine()
        recent = NOW - timedelta(hours=1)
        agents = [scored("low", score=650), scored("top", score=900), scored("mid", score=800), scored("weak", score=400)]

        outcomes = await engine.reply_to_top(
            agents,
            {"top": recent, "mid": recent, "low": recent},
            max_candidates=5,
        )

        assert [o.handle for o in outcomes] == ["top", "mid"]
        assert outcomes[0].sent is True
        assert outcomes[1].reason == SkipReason.COOLDOWN
        assert client.create_post.await_count == 1


# ============================================================================
# Wallet requests
# ============================================================================


class TestRequestWallet:
    """Tests for one-shot wallet requests."""

    @pytest.mark.asyncio
    async def test_asks_once(self, make_engine, client, session_factory, clock):
        engine = make_engine()

        first = await engine.request_wallet("alpha")
        clock.advance(hours=1)
        second = await engine.request_wallet("alpha")

        assert first.sent is True
        assert second.reason == SkipReason.ALREADY_ASKED
        assert client.create_post.await_count == 1
        async with session_factory() as session:
            agent = await DiscoveredAgentRepository(session).get("alpha")
        assert agent.wallet_requested is True
        assert agent.source == "intake"

    @pytest.mark.asyncio
    async def test_paced_only_by_post_cooldown(self, make_engine, client, clock, no_sleep):
        engine = make_engine()

        await engine.request_wallet("alpha")
        assert no_sleep.calls == []

        clock.advance(seconds=1830)
        await engine.request_wallet("beta")

        assert no_sleep.calls == [30.0]
        assert client.create_post.await_count == 2

    @pytest.mark.asyncio
    async def test_failed_send_still_counts_as_asked(self, make_engine, client):
        client.create_post.return_value = PublishResult(success=False, error="HTTP 500")
        engine = make_engine()

        first = await engine.request_wallet("alpha")
        second = await engine.request_wallet("alpha")

        assert first.sent is False
        assert second.reason == SkipReason.ALREADY_ASKED

    @pytest.mark.asyncio
    async def test_agent_with_wallet_is_not_asked(self, make_engine, client, session_factory):
        async with session_factory() as session:
            await DiscoveredAgentRepository(session).upsert(DiscoveredAgentDTO(handle="alpha", wallet_address=WALLET))

        outcome = await make_engine().request_wallet("alpha")

        assert outcome.reason == SkipReason.ALREADY_ASKED
        client.create_post.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_dry_run_does_not_mark(self, make_engine, client, session_factory):
        outcome = await make_engine(dry_run=True).request_wallet("alpha")

        assert outcome.reason == SkipReason.DRY_RUN
        client.create_post.assert_not_awaited()
        async with session_factory() as session:
            assert (await DiscoveredAgentRepository(session).get("alpha")).wallet_requested is False

    @pytest.mark.asyncio
    async def test_cooldown_defers_without_marking(self, make_engine, client, session_factory):
        engine = make_engine()
        engine.last_post_at = NOW

        outcome = await engine.request_wallet("alpha")

        assert outcome.reason == SkipReason.COOLDOWN
        async with session_factory() as session:
            assert (await DiscoveredAgentRepository(session).get("alpha")).wallet_requested is False

    @pytest.mark.asyncio
    async def test_request_missing_wallets_filters_and_limits(self, make_engine, client):
        engine = make_engine(post_cooldown_seconds=0)
        agents = [
            DiscoveredAgentDTO(handle="has-wallet", wallet_address=WALLET),
            DiscoveredAgentDTO(handle="asked", wallet_requested=True),
            DiscoveredAgentDTO(handle="a"),
            DiscoveredAgentDTO(handle="b"),
            DiscoveredAgentDTO(handle="c"),
        ]

        outcomes = await engine.request_missing_wallets(agents, limit=2)

        assert [o.handle for o in outcomes] == ["a", "b"]
        assert all(o.sent for o in outcomes)
