"""Typed views over social feed API payloads."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from web3 import AsyncWeb3

from agentscore.payloads import as_str, as_timestamp, first_present, get_list, get_mapping

WALLET_PATTERN = re.compile(r"0x[a-fA-F0-9]{40}\b")


@dataclass(frozen=True)
class FeedPost:
    """A post from the public feed."""

    author: str
    created_at: datetime | None
    post_id: str | None = None


@dataclass(frozen=True)
class Reply:
    """A reply to one of our own posts."""

    author: str
    content: str


def parse_feed(payload: Any) -> list[FeedPost]:
    """Posts with a usable author name; everything else is dropped."""
    posts: list[FeedPost] = []
    for raw in get_list(payload, "posts"):
        author = as_str(get_mapping(raw, "author").get("name"))
        if author is None:
            continue
        posts.append(
            FeedPost(
                author=author,
                created_at=as_timestamp(first_present(raw, "created_at", "createdAt")),
                post_id=_as_id(first_present(raw, "id")),
            )
        )
    return posts


def parse_profile_wallet(payload: Any) -> str | None:
    wallet = as_str(get_mapping(payload, "agent").get("wallet"))
    if wallet is None or not AsyncWeb3.is_address(wallet):
        return None
    return AsyncWeb3.to_checksum_address(wallet)


def parse_post_ids(payload: Any) -> list[str]:
    ids: list[str] = []
    for raw in get_list(payload, "posts"):
        post_id = _as_id(first_present(raw, "id"))
        if post_id is not None:
            ids.append(post_id)
    return ids


def parse_replies(payload: Any) -> list[Reply]:
    replies: list[Reply] = []
    for raw in get_list(payload, "replies", "comments"):
        author = as_str(get_mapping(raw, "author").get("name"))
        content = first_present(raw, "content")
        if author and isinstance(content, str) and content:
            replies.append(Reply(author=author, content=content))
    return replies


def extract_wallet(text: str) -> str | None:
    """First syntactically valid address in free text, checksummed.

    Mixed-case candidates must carry a valid EIP-55 checksum.
    """
    for match in WALLET_PATTERN.findall(text):
        if AsyncWeb3.is_address(match):
            return AsyncWeb3.to_checksum_address(match)
    return None


def _as_id(value: Any) -> str | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value)
    return as_str(value)
