"""Tests for the social feed API client and payload parsing."""

import json
from datetime import UTC, datetime

import httpx
import pytest
import respx

from agentscore.social.client import SocialClient, SocialClientError, SocialRateLimitError
from agentscore.social.parsing import extract_wallet, parse_feed, parse_profile_wallet, parse_replies

BASE_URL = "https://social.test/api/v1"
# EIP-55 checksummed
CHECKSUMMED = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"


# ============================================================================
# Parsing
# ============================================================================


class TestParsing:
    """Tests for typed views over feed payloads."""

    def test_parse_feed_drops_posts_without_author(self):
        posts = parse_feed(
            {
                "posts": [
                    {"id": 1, "author": {"name": "alpha"}, "created_at": "2026-05-01T10:00:00Z"},
                    {"id": 2, "author": {}, "created_at": "2026-05-01T11:00:00Z"},
                    {"id": 3, "createdAt": 1_777_000_000_000, "author": {"name": "beta"}},
                    "garbage",
                ]
            }
        )
        assert [p.author for p in posts] == ["alpha", "beta"]
        assert posts[0].created_at == datetime(2026, 5, 1, 10, tzinfo=UTC)
        assert posts[0].post_id == "1"
        assert posts[1].created_at == datetime.fromtimestamp(1_777_000_000, tz=UTC)

    def test_parse_feed_tolerates_non_mapping(self):
        assert parse_feed(None) == []
        assert parse_feed({"posts": "nope"}) == []

    def test_parse_profile_wallet(self):
        assert parse_profile_wallet({"agent": {"wallet": CHECKSUMMED.lower()}}) == CHECKSUMMED
        assert parse_profile_wallet({"agent": {"wallet": "not-a-wallet"}}) is None
        assert parse_profile_wallet({}) is None

    def test_parse_replies(self):
        replies = parse_replies(
            {"comments": [{"author": {"name": "alpha"}, "content": "hi"}, {"author": {"name": "beta"}}]}
        )
        assert [(r.author, r.content) for r in replies] == [("alpha", "hi")]

    def test_extract_wallet_checksum(self):
        assert extract_wallet(f"my wallet is {CHECKSUMMED} thanks") == CHECKSUMMED
        assert extract_wallet(f"lower {CHECKSUMMED.lower()}") == CHECKSUMMED

    def test_extract_wallet_rejects_bad_checksum(self):
        bad = CHECKSUMMED[:-1] + ("d" if CHECKSUMMED[-1] == "D" else "D")
        assert extract_wallet(f"wallet {bad}") is None

    def test_extract_wallet_none(self):
        assert extract_wallet("no address here, 0x1234") is None


# ============================================================================
# Client
# ============================================================================


class TestSocialClient:
    """Tests for SocialClient HTTP calls."""

    @pytest.mark.asyncio
    async def test_get_feed_sends_bearer(self):
        async with SocialClient(BASE_URL, "secret") as client:
            with respx.mock:
                route = respx.get(f"{BASE_URL}/feed").mock(
                    return_value=httpx.Response(200, json={"posts": [{"author": {"name": "alpha"}}]})
                )
                posts = await client.get_feed(80)

        assert [p.author for p in posts] == ["alpha"]
        request = route.calls.last.request
        assert request.headers["Authorization"] == "Bearer secret"
        assert request.url.params["limit"] == "50"
        assert request.url.params["sort"] == "new"

    @pytest.mark.asyncio
    async def test_get_feed_error(self):
        async with SocialClient(BASE_URL, None) as client:
            with respx.mock:
                respx.get(f"{BASE_URL}/feed").mock(return_value=httpx.Response(500, json={"error": "boom"}))
                with pytest.raises(SocialClientError, match="boom"):
                    await client.get_feed()

    @pytest.mark.asyncio
    async def test_rate_limit(self):
        async with SocialClient(BASE_URL, None) as client:
            with respx.mock:
                respx.get(f"{BASE_URL}/agents/profile").mock(return_value=httpx.Response(429))
                with pytest.raises(SocialRateLimitError):
                    await client.get_profile_wallet("alpha")

    @pytest.mark.asyncio
    async def test_transport_error_is_wrapped(self):
        async with SocialClient(BASE_URL, None) as client:
            with respx.mock:
                respx.get(f"{BASE_URL}/feed").mock(side_effect=httpx.ConnectError("down"))
                with pytest.raises(SocialClientError):
                    await client.get_feed()

    @pytest.mark.asyncio
    async def test_profile_not_found(self):
        async with SocialClient(BASE_URL, None) as client:
            with respx.mock:
                respx.get(f"{BASE_URL}/agents/profile").mock(return_value=httpx.Response(404))
                assert await client.get_profile_wallet("ghost") is None

    @pytest.mark.asyncio
    async def test_create_post_success(self):
        async with SocialClient(BASE_URL, "secret") as client:
            with respx.mock:
                route = respx.post(f"{BASE_URL}/posts").mock(
                    return_value=httpx.Response(200, json={"success": True, "post": {"id": "p-1"}})
                )
                result = await client.create_post(title="t", content="c", submolt="general")

        assert result.success is True
        assert result.item_id == "p-1"
        assert json.loads(route.calls.last.request.read()) == {"submolt": "general", "title": "t", "content": "c"}

    @pytest.mark.asyncio
    async def test_create_post_requires_success_flag(self):
        async with SocialClient(BASE_URL, "secret") as client:
            with respx.mock:
                respx.post(f"{BASE_URL}/posts").mock(
                    return_value=httpx.Response(200, json={"success": False, "error": "cooldown"})
                )
                result = await client.create_post(title="t", content="c")

        assert result.success is False
        assert result.error == "cooldown"

    @pytest.mark.asyncio
    async def test_create_comment(self):
        async with SocialClient(BASE_URL, "secret") as client:
            with respx.mock:
                respx.post(f"{BASE_URL}/posts/p-1/comments").mock(
                    return_value=httpx.Response(201, json={"success": True, "comment": {"id": 9}})
                )
                result = await client.create_comment("p-1", "hello")

        assert result.success is True
        assert result.item_id == "9"

    @pytest.mark.asyncio
    async def test_list_own_posts_and_replies(self):
        async with SocialClient(BASE_URL, "secret") as client:
            with respx.mock:
                respx.get(f"{BASE_URL}/posts").mock(
                    return_value=httpx.Response(200, json={"posts": [{"id": "p-1"}, {"id": 2}, {}]})
                )
                respx.get(f"{BASE_URL}/posts/p-1/replies").mock(
                    return_value=httpx.Response(200, json={"replies": [{"author": {"name": "a"}, "content": "x"}]})
                )
                ids = await client.list_own_post_ids()
                replies = await client.list_replies("p-1")

        assert ids == ["p-1", "2"]
        assert replies[0].author == "a"

    def test_authenticated(self):
        assert SocialClient(BASE_URL, "secret").authenticated is True
        assert SocialClient(BASE_URL, None).authenticated is False
