"""Tests for feed discovery and wallet-reply scanning."""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from agentscore.social.client import SocialClientError, SocialRateLimitError
from agentscore.social.crawler import SocialCrawler
from agentscore.social.parsing import FeedPost, Reply
from agentscore.storage.repos import DiscoveredAgentDTO, DiscoveredAgentRepository

WALLET = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"
T1 = datetime(2026, 5, 1, 10, tzinfo=UTC)
T2 = datetime(2026, 5, 1, 12, tzinfo=UTC)


@pytest.fixture
def client():
    mock = MagicMock()
    mock.get_feed = AsyncMock(return_value=[])
    mock.get_profile_wallet = AsyncMock(return_value=None)
    mock.list_own_post_ids = AsyncMock(return_value=[])
    mock.list_replies = AsyncMock(return_value=[])
    return mock


@pytest.fixture
def crawler(client, session_factory, no_sleep):
    return SocialCrawler(
        client,
        session_factory,
        profile_delay_seconds=2.0,
        rate_limit_backoff_seconds=60.0,
        sleep=no_sleep,
    )


# ============================================================================
# Discovery
# ============================================================================


class TestDiscover:
    """Tests for SocialCrawler.discover."""

    @pytest.mark.asyncio
    async def test_groups_posts_by_author(self, crawler, client, session_factory, no_sleep):
        client.get_feed.return_value = [
            FeedPost(author="alpha", created_at=T1),
            FeedPost(author="alpha", created_at=T2),
            FeedPost(author="beta", created_at=None),
        ]
        client.get_profile_wallet.side_effect = lambda handle: WALLET if handle == "alpha" else None

        agents = await crawler.discover(50)

        by_handle = {a.handle: a for a in agents}
        assert by_handle["alpha"].post_count == 2
        assert by_handle["alpha"].last_activity_at == T2
        assert by_handle["alpha"].wallet_address == WALLET
        assert by_handle["beta"].wallet_address is None
        assert by_handle["beta"].last_activity_at is None
        # one spacing delay per profile lookup
        assert no_sleep.calls == [2.0, 2.0]

        async with session_factory() as session:
            stored = await DiscoveredAgentRepository(session).get("alpha")
        assert stored.wallet_address == WALLET.lower()
        assert stored.post_count == 2

    @pytest.mark.asyncio
    async def test_known_wallet_skips_profile_lookup(self, crawler, client, session_factory):
        async with session_factory() as session:
            await DiscoveredAgentRepository(session).upsert(DiscoveredAgentDTO(handle="alpha", wallet_address=WALLET))
        client.get_feed.return_value = [FeedPost(author="alpha", created_at=T1)]

        agents = await crawler.discover(50)

        assert agents[0].wallet_address == WALLET.lower()
        client.get_profile_wallet.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_profile_results_are_cached(self, crawler, client):
        client.get_feed.return_value = [FeedPost(author="beta", created_at=T1)]

        await crawler.discover(50)
        await crawler.discover(50)

        assert client.get_profile_wallet.await_count == 1

    @pytest.mark.asyncio
    async def test_rate_limit_backs_off_and_retries(self, crawler, client, no_sleep):
        client.get_feed.return_value = [FeedPost(author="alpha", created_at=T1)]
        client.get_profile_wallet.side_effect = [SocialRateLimitError("429"), WALLET]

        agents = await crawler.discover(50)

        assert agents[0].wallet_address == WALLET
        assert no_sleep.calls == [2.0, 60.0]

    @pytest.mark.asyncio
    async def test_second_rate_limit_keeps_agent_without_wallet(self, crawler, client):
        client.get_feed.return_value = [FeedPost(author="alpha", created_at=T1)]
        client.get_profile_wallet.side_effect = SocialRateLimitError("429")

        agents = await crawler.discover(50)

        assert [a.handle for a in agents] == ["alpha"]
        assert agents[0].wallet_address is None
        assert client.get_profile_wallet.await_count == 2

    @pytest.mark.asyncio
    async def test_feed_failure_yields_empty(self, crawler, client):
        client.get_feed.side_effect = SocialClientError("down")

        assert await crawler.discover(50) == []


# ============================================================================
# Wallet replies
# ============================================================================


class TestScanWalletReplies:
    """Tests for SocialCrawler.scan_wallet_replies."""

    @pytest.mark.asyncio
    async def test_applies_wallets_from_replies(self, crawler, client, session_factory):
        async with session_factory() as session:
            repo = DiscoveredAgentRepository(session)
            await repo.seed("alpha")
            await repo.mark_wallet_requested("alpha")
        client.list_own_post_ids.return_value = ["p-1", "p-2"]
        client.list_replies.side_effect = [
            [Reply(author="alpha", content=f"here you go: {WALLET}")],
            SocialClientError("boom"),
        ]

        updated = await crawler.scan_wallet_replies()

        assert updated == 1
        async with session_factory() as session:
            stored = await DiscoveredAgentRepository(session).get("alpha")
        assert stored.wallet_address == WALLET.lower()
        assert stored.wallet_requested is False

    @pytest.mark.asyncio
    async def test_replies_without_wallet_are_ignored(self, crawler, client):
        client.list_own_post_ids.return_value = ["p-1"]
        client.list_replies.return_value = [Reply(author="alpha", content="no thanks")]

        assert await crawler.scan_wallet_replies() == 0

    @pytest.mark.asyncio
    async def test_listing_failure(self, crawler, client):
        client.list_own_post_ids.side_effect = SocialClientError("down")

        assert await crawler.scan_wallet_replies() == 0
