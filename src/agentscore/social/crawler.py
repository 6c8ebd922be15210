"""Discovery of active agents from the social feed.

The crawler reads the newest feed posts, groups them by author, and looks
up a wallet for authors the pipeline does not know a wallet for yet.
Profile lookups are serialized and spaced out; an HTTP 429 triggers one
backoff-and-retry, after which the agent is kept without a wallet.

A second pass reads replies to our own posts and picks up wallet addresses
that agents sent in response to a wallet request.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from agentscore.cache import TTLCache
from agentscore.social.client import SocialClient, SocialClientError, SocialRateLimitError
from agentscore.social.parsing import extract_wallet
from agentscore.storage.database import SessionFactory
from agentscore.storage.repos import DiscoveredAgentDTO, DiscoveredAgentRepository

logger = logging.getLogger(__name__)

DEFAULT_PROFILE_DELAY_SECONDS = 2.0
DEFAULT_RATE_LIMIT_BACKOFF_SECONDS = 60.0
DEFAULT_REPLY_SCAN_POSTS = 20
# "" marks a profile that was checked and had no wallet
_NO_WALLET = ""


class SocialCrawler:
    """Feed crawler and wallet-reply scanner."""

    def __init__(
        self,
        client: SocialClient,
        session_factory: SessionFactory,
        *,
        profile_delay_seconds: float = DEFAULT_PROFILE_DELAY_SECONDS,
        rate_limit_backoff_seconds: float = DEFAULT_RATE_LIMIT_BACKOFF_SECONDS,
        reply_scan_posts: int = DEFAULT_REPLY_SCAN_POSTS,
        profile_cache: TTLCache[str, str] | None = None,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ) -> None:
        self._client = client
        self._session_factory = session_factory
        self._profile_delay = profile_delay_seconds
        self._backoff = rate_limit_backoff_seconds
        self._reply_scan_posts = reply_scan_posts
        self._profiles = profile_cache or TTLCache(ttl_seconds=3600, max_entries=5000)
        self._sleep = sleep

    async def discover(self, limit: int) -> list[DiscoveredAgentDTO]:
        """Recently active agents with their latest post time and, when known, wallet.

        A feed failure yields an empty list; profile failures only leave the
        affected agent without a wallet.
        """
        try:
            posts = await self._client.get_feed(limit)
        except SocialClientError as e:
            logger.warning("Feed fetch failed, no agents discovered this cycle: %s", e)
            return []

        last_post_at: dict[str, datetime] = {}
        post_counts: dict[str, int] = {}
        for post in posts:
            post_counts[post.author] = post_counts.get(post.author, 0) + 1
            if post.created_at is not None:
                current = last_post_at.get(post.author)
                if current is None or post.created_at > current:
                    last_post_at[post.author] = post.created_at

        handles = list(post_counts)
        async with self._session_factory() as session:
            known = await DiscoveredAgentRepository(session).get_wallets(handles)

        agents: list[DiscoveredAgentDTO] = []
        for handle in handles:
            wallet = known.get(handle)
            if wallet is None:
                wallet = await self._lookup_wallet(handle)
            agents.append(
                DiscoveredAgentDTO(
                    handle=handle,
                    wallet_address=wallet,
                    last_activity_at=last_post_at.get(handle),
                    post_count=post_counts[handle],
                )
            )

        async with self._session_factory() as session:
            await DiscoveredAgentRepository(session).upsert_many(agents)

        logger.info(
            "Discovered %d agents (%d with wallet)",
            len(agents),
            sum(1 for a in agents if a.wallet_address),
        )
        return agents

    async def _lookup_wallet(self, handle: str) -> str | None:
        cached = self._profiles.get(handle)
        if cached is not None:
            return cached or None

        await self._sleep(self._profile_delay)
        try:
            wallet = await self._client.get_profile_wallet(handle)
        except SocialRateLimitError:
            logger.warning("Profile lookup rate limited, backing off %.0fs", self._backoff)
            await self._sleep(self._backoff)
            try:
                wallet = await self._client.get_profile_wallet(handle)
            except SocialClientError as e:
                logger.warning("Profile lookup for %s failed after backoff: %s", handle, e)
                return None
        except SocialClientError as e:
            logger.warning("Profile lookup for %s failed: %s", handle, e)
            return None

        self._profiles.set(handle, wallet or _NO_WALLET)
        return wallet

    async def scan_wallet_replies(self) -> int:
        """Apply wallet addresses found in replies to our posts.

        Returns:
            Number of agents whose wallet was updated.
        """
        try:
            post_ids = await self._client.list_own_post_ids()
        except SocialClientError as e:
            logger.warning("Listing own posts failed: %s", e)
            return 0

        updated = 0
        for post_id in post_ids[: self._reply_scan_posts]:
            try:
                replies = await self._client.list_replies(post_id)
            except SocialClientError as e:
                logger.warning("Listing replies for post %s failed: %s", post_id, e)
                continue

            for reply in replies:
                wallet = extract_wallet(reply.content)
                if wallet is None:
                    continue
                async with self._session_factory() as session:
                    await DiscoveredAgentRepository(session).set_wallet(reply.author, wallet)
                self._profiles.set(reply.author, wallet)
                updated += 1
                logger.info("Wallet updated from reply: %s -> %s...", reply.author, wallet[:10])

        return updated
