"""HTTP client for the social feed API.

Bearer-token authenticated access to the feed listing, profile lookup,
post/comment creation and reply listing endpoints. Every request carries an
explicit timeout. Responses are parsed through `agentscore.social.parsing`,
so callers only ever see typed values.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from agentscore.payloads import as_bool, as_str, get_mapping
from agentscore.social.parsing import (
    FeedPost,
    Reply,
    parse_feed,
    parse_post_ids,
    parse_profile_wallet,
    parse_replies,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0
MAX_FEED_LIMIT = 50


class SocialClientError(Exception):
    """Raised when the social API cannot be reached or rejects a request."""


class SocialRateLimitError(SocialClientError):
    """Raised on HTTP 429."""


@dataclass(frozen=True)
class PublishResult:
    """Outcome of creating a post or comment."""

    success: bool
    item_id: str | None = None
    error: str | None = None


def _json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return {}


class SocialClient:
    """Async client for the social feed API."""

    def __init__(
        self,
        base_url: str,
        api_key: str | None,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout_seconds
        self._transport = transport
        self._http: httpx.AsyncClient | None = None

    @property
    def authenticated(self) -> bool:
        return bool(self._api_key)

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            headers = {"Content-Type": "application/json"}
            if self._api_key:
                headers["Authorization"] = f"Bearer {self._api_key}"
            self._http = httpx.AsyncClient(
                base_url=self._base_url,
                headers=headers,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._http

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    async def __aenter__(self) -> SocialClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client().request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise SocialClientError(f"{method} {path} failed: {e}") from e
        if response.status_code == 429:
            raise SocialRateLimitError(f"{method} {path} rate limited")
        return response

    async def get_feed(self, limit: int = MAX_FEED_LIMIT) -> list[FeedPost]:
        """Most recent feed posts (newest first)."""
        response = await self._request(
            "GET",
            "/feed",
            params={"sort": "new", "limit": min(limit, MAX_FEED_LIMIT)},
        )
        payload = _json(response)
        if not response.is_success:
            error = as_str(payload.get("error")) if isinstance(payload, dict) else None
            raise SocialClientError(error or f"Feed failed: HTTP {response.status_code}")
        return parse_feed(payload)

    async def get_profile_wallet(self, handle: str) -> str | None:
        """Wallet declared on an agent's profile, if any."""
        response = await self._request("GET", "/agents/profile", params={"name": handle})
        if not response.is_success:
            logger.warning("Profile lookup failed for %s: HTTP %d", handle, response.status_code)
            return None
        return parse_profile_wallet(_json(response))

    async def create_post(self, *, title: str, content: str, submolt: str = "general") -> PublishResult:
        response = await self._request(
            "POST",
            "/posts",
            json={"submolt": submolt, "title": title, "content": content},
        )
        return self._publish_result(response, "post")

    async def create_comment(self, post_id: str, content: str) -> PublishResult:
        response = await self._request("POST", f"/posts/{post_id}/comments", json={"content": content})
        return self._publish_result(response, "comment")

    async def list_own_post_ids(self) -> list[str]:
        response = await self._request("GET", "/posts", params={"mine": 1})
        if not response.is_success:
            return []
        return parse_post_ids(_json(response))

    async def list_replies(self, post_id: str) -> list[Reply]:
        response = await self._request("GET", f"/posts/{post_id}/replies")
        if not response.is_success:
            return []
        return parse_replies(_json(response))

    @staticmethod
    def _publish_result(response: httpx.Response, kind: str) -> PublishResult:
        payload = _json(response)
        body = payload if isinstance(payload, dict) else {}
        if response.is_success and as_bool(body.get("success")):
            item = get_mapping(body, kind)
            item_id = item.get("id")
            return PublishResult(success=True, item_id=str(item_id) if item_id is not None else None)
        error = as_str(body.get("error")) or f"HTTP {response.status_code}"
        return PublishResult(success=False, error=error)
