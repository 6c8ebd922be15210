"""Debate-ranking source.

The debate service publishes an unauthenticated leaderboard. The whole
board is fetched once per cache TTL and agents are matched against it by
case-insensitive handle.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import httpx

from agentscore.cache import TTLCache
from agentscore.payloads import as_float, as_int, as_str, as_timestamp, first_present, get_list

logger = logging.getLogger(__name__)

DEFAULT_LEADERBOARD_LIMIT = 1000
DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_CACHE_TTL_SECONDS = 600.0
DEFAULT_FAILURE_TTL_SECONDS = 300.0

# Jury scores are reported on a 0-40 scale
JURY_SCORE_SCALE = 40.0
STRONG_JURY_SCORE = 32.0
STALE_AFTER_DAYS = 30

_HANDLE_FIELDS = ("moltbook_username", "name", "agent_name")
_LEADERBOARD_KEY = "leaderboard"


class DebateSourceError(Exception):
    """Raised when the leaderboard cannot be fetched or parsed."""


@dataclass(frozen=True)
class DebateRecord:
    """An agent's record on the debate leaderboard."""

    handle: str
    wins: int = 0
    losses: int = 0
    total_debates: int = 0
    forfeits: int = 0
    avg_jury_score: float = 0.0
    rank: int | None = None
    rating: float | None = None
    last_debate_at: datetime | None = None

    @property
    def win_rate(self) -> float:
        return self.wins / self.total_debates if self.total_debates > 0 else 0.0

    @property
    def forfeit_rate(self) -> float:
        if self.total_debates <= 0:
            return 0.0
        return min(1.0, self.forfeits / self.total_debates)

    @property
    def normalized_jury_score(self) -> float:
        if self.avg_jury_score <= 0:
            return 0.0
        return min(1.0, self.avg_jury_score / JURY_SCORE_SCALE)

    def to_dict(self) -> dict[str, object]:
        return {
            "handle": self.handle,
            "wins": self.wins,
            "losses": self.losses,
            "total_debates": self.total_debates,
            "win_rate": self.win_rate,
            "avg_jury_score": self.avg_jury_score,
            "rank": self.rank,
            "rating": self.rating,
            "last_debate_at": self.last_debate_at.isoformat() if self.last_debate_at else None,
        }


def parse_record(handle: str, row: Mapping[str, Any]) -> DebateRecord:
    wins = max(0, as_int(row.get("wins")))
    losses = max(0, as_int(row.get("losses")))
    total = max(0, as_int(first_present(row, "total_fights", "total_debates"))) or wins + losses
    rank_raw = first_present(row, "leaderboard_rank", "rank")
    rating_raw = first_present(row, "reputation", "rating", "elo")
    return DebateRecord(
        handle=handle,
        wins=wins,
        losses=losses,
        total_debates=total,
        forfeits=max(0, as_int(row.get("forfeits"))),
        avg_jury_score=max(0.0, as_float(row.get("avg_jury_score"))),
        rank=as_int(rank_raw) if rank_raw is not None else None,
        rating=as_float(rating_raw) if rating_raw is not None else None,
        last_debate_at=as_timestamp(first_present(row, "last_fight_at", "last_debate_at")),
    )


def find_record(rows: list[Any], handle: str) -> DebateRecord | None:
    """Case-insensitive match against any of the handle-bearing fields."""
    key = handle.strip().lower()
    if not key:
        return None
    for row in rows:
        if not isinstance(row, Mapping):
            continue
        for field_name in _HANDLE_FIELDS:
            candidate = as_str(row.get(field_name))
            if candidate is not None and candidate.lower() == key:
                return parse_record(handle, row)
    return None


def debate_score(record: DebateRecord, *, as_of: datetime) -> float:
    """Intellectual-reputation signal in [0, 1]; 0 when the agent never debated.

    Score Formula:
        0.40 * win_rate
      + 0.30 * normalized_jury_score
      + 0.15 * min(total_debates / 20, 1)
      + 0.15 * (1 - forfeit_rate)
      + 0.10 if rank <= 3, else 0.05 if rank <= 10
      + 0.05 if avg_jury_score > 32
      - 0.10 if the last debate is more than 30 days old
    """
    if record.total_debates <= 0:
        return 0.0
    score = (
        record.win_rate * 0.4
        + record.normalized_jury_score * 0.3
        + min(record.total_debates / 20, 1.0) * 0.15
        + (1 - record.forfeit_rate) * 0.15
    )
    if record.rank is not None and record.rank <= 3:
        score += 0.1
    elif record.rank is not None and record.rank <= 10:
        score += 0.05
    if record.avg_jury_score > STRONG_JURY_SCORE:
        score += 0.05
    if record.last_debate_at is not None:
        days_since = (as_of - record.last_debate_at).total_seconds() / 86_400
        if days_since > STALE_AFTER_DAYS:
            score -= 0.1
    return max(0.0, min(1.0, score))


class DebateSource:
    """Leaderboard-backed debate records, cached for `cache_ttl_seconds`."""

    def __init__(
        self,
        base_url: str,
        *,
        leaderboard_limit: int = DEFAULT_LEADERBOARD_LIMIT,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        cache_ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        failure_ttl_seconds: float = DEFAULT_FAILURE_TTL_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._limit = leaderboard_limit
        self._timeout = timeout_seconds
        self._transport = transport
        self._failure_ttl = failure_ttl_seconds
        self._cache: TTLCache[str, list[Any]] = TTLCache(ttl_seconds=cache_ttl_seconds, max_entries=1)

    async def fetch_leaderboard(self) -> list[Any]:
        """Leaderboard rows (cached).

        A failed fetch is remembered as an empty board for `failure_ttl_seconds`,
        so an outage costs one request rather than one per agent.

        Raises:
            DebateSourceError: If the service is unreachable or answers garbage.
        """
        cached = self._cache.get(_LEADERBOARD_KEY)
        if cached is not None:
            return cached
        try:
            rows = await self._fetch_rows()
        except DebateSourceError:
            self._cache.set(_LEADERBOARD_KEY, [], ttl_seconds=self._failure_ttl)
            raise
        self._cache.set(_LEADERBOARD_KEY, rows)
        return rows

    async def _fetch_rows(self) -> list[Any]:
        url = f"{self._base_url}/leaderboard"
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.get(url, params={"limit": self._limit})
                response.raise_for_status()
                payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise DebateSourceError(f"Leaderboard fetch failed: {e}") from e
        if not isinstance(payload, Mapping):
            raise DebateSourceError("Leaderboard payload is not an object")
        rows = get_list(payload, "leaderboard", "agents")
        logger.info("Fetched debate leaderboard (%d rows)", len(rows))
        return rows

    async def get_record(self, handle: str) -> DebateRecord | None:
        """The agent's record, or None when unranked or the source is unavailable."""
        try:
            rows = await self.fetch_leaderboard()
        except DebateSourceError as e:
            logger.warning("Debate source unavailable for %s: %s", handle, e)
            return None
        return find_record(rows, handle)
