"""Financial-activity source.

The financial service answers through an asynchronous job API: a prompt is
submitted, then the job is polled until it completes or fails. The service
requires an integration key; without one the source is disabled and every
lookup returns None.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

import httpx

from agentscore.cache import TTLCache
from agentscore.payloads import as_bool, as_count, as_float, as_str, first_present, get_mapping

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 2.0
DEFAULT_MAX_POLL_ATTEMPTS = 30
DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_CACHE_TTL_SECONDS = 3600.0

PORTFOLIO_PROMPT = "Show complete portfolio for {wallet} with USD values"


class FinancialSourceError(Exception):
    """Raised when a job cannot be submitted, polled or parsed."""


@dataclass(frozen=True)
class FinancialMetrics:
    """Portfolio, trading, risk and DeFi activity of a wallet."""

    wallet: str
    total_value_usd: float = 0.0
    diversification_score: float = 0.0
    stablecoin_ratio: float = 0.0
    chain_count: int = 0
    total_trades: int = 0
    total_volume_usd: float = 0.0
    win_rate: float = 0.0
    avg_hold_time_hours: float = 0.0
    has_used_stop_loss: bool = False
    max_leverage_used: float = 0.0
    liquidations: int = 0
    risk_score: float = 0.5
    liquidity_provided: bool = False
    total_lp_value_usd: float = 0.0
    automated_strategies: int = 0

    def to_dict(self) -> dict[str, object]:
        return {
            "wallet": self.wallet,
            "total_value_usd": self.total_value_usd,
            "diversification_score": self.diversification_score,
            "total_volume_usd": self.total_volume_usd,
            "win_rate": self.win_rate,
            "has_used_stop_loss": self.has_used_stop_loss,
            "liquidations": self.liquidations,
            "liquidity_provided": self.liquidity_provided,
            "automated_strategies": self.automated_strategies,
        }


def parse_metrics(wallet: str, result: Any) -> FinancialMetrics | None:
    """Parse a completed job result; camelCase and snake_case keys are both accepted."""
    if not isinstance(result, Mapping):
        return None
    portfolio = get_mapping(result, "portfolio")
    trading = get_mapping(result, "trading")
    risk = get_mapping(result, "risk")
    defi = get_mapping(result, "defi")
    return FinancialMetrics(
        wallet=wallet,
        total_value_usd=max(0.0, as_float(first_present(portfolio, "totalValueUSD", "total_value_usd"))),
        diversification_score=_unit(as_float(first_present(portfolio, "diversificationScore", "diversification_score"))),
        stablecoin_ratio=_unit(as_float(first_present(portfolio, "stablecoinRatio", "stablecoin_ratio"))),
        chain_count=as_count(first_present(portfolio, "chainCount", "chain_count")),
        total_trades=as_count(first_present(trading, "totalTrades", "total_trades")),
        total_volume_usd=max(0.0, as_float(first_present(trading, "totalVolumeUSD", "total_volume_usd"))),
        win_rate=_unit(as_float(first_present(trading, "winRate", "win_rate"))),
        avg_hold_time_hours=max(0.0, as_float(first_present(trading, "avgHoldTimeHours", "avg_hold_time_hours"))),
        has_used_stop_loss=as_bool(first_present(risk, "hasUsedStopLoss", "has_used_stop_loss")),
        max_leverage_used=max(0.0, as_float(first_present(risk, "maxLeverageUsed", "max_leverage_used"))),
        liquidations=as_count(risk.get("liquidations")),
        risk_score=_unit(as_float(first_present(risk, "riskScore", "risk_score"), 0.5)),
        liquidity_provided=as_bool(first_present(defi, "liquidityProvided", "liquidity_provided")),
        total_lp_value_usd=max(0.0, as_float(first_present(defi, "totalLPValueUSD", "total_lp_value_usd"))),
        automated_strategies=as_count(first_present(defi, "automatedStrategies", "automated_strategies")),
    )


def _unit(value: float) -> float:
    return max(0.0, min(1.0, value))


def _log_scale(value: float) -> float:
    return min(math.log10(max(value, 1.0)) / 5, 1.0)


def financial_score(metrics: FinancialMetrics) -> float:
    """Financial reliability in [0, 1].

    Score Formula:
        portfolio = 0.4 * min(log10(value) / 5, 1) + 0.3 * diversification
        trading   = 0.4 * win_rate + 0.3 * min(log10(volume) / 5, 1)
        risk      = max(0, (0.7 if stop-loss else 0.3) - 0.2 * liquidations)
        defi      = (0.3 if LP) + min(strategies / 10, 0.3)
        score     = 0.3 * portfolio + 0.25 * trading + 0.25 * risk + 0.2 * defi
    """
    portfolio = _log_scale(metrics.total_value_usd) * 0.4 + metrics.diversification_score * 0.3
    trading = metrics.win_rate * 0.4 + _log_scale(metrics.total_volume_usd) * 0.3
    risk = max(0.0, (0.7 if metrics.has_used_stop_loss else 0.3) - 0.2 * metrics.liquidations)
    defi = (0.3 if metrics.liquidity_provided else 0.0) + min(metrics.automated_strategies / 10, 0.3)
    return _unit(portfolio * 0.3 + trading * 0.25 + risk * 0.25 + defi * 0.2)


class FinancialSource:
    """Job-based financial metrics lookups, cached per wallet."""

    def __init__(
        self,
        base_url: str,
        api_key: str | None,
        *,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        max_poll_attempts: int = DEFAULT_MAX_POLL_ATTEMPTS,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        cache_ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._poll_interval = poll_interval_seconds
        self._max_poll_attempts = max_poll_attempts
        self._timeout = timeout_seconds
        self._transport = transport
        self._sleep = sleep
        self._cache: TTLCache[str, FinancialMetrics] = TTLCache(ttl_seconds=cache_ttl_seconds, max_entries=2048)

    @property
    def enabled(self) -> bool:
        return bool(self._api_key)

    async def get_metrics(self, wallet: str) -> FinancialMetrics | None:
        """Metrics for `wallet`, or None when disabled, failed, or timed out."""
        if not self.enabled or not wallet:
            return None
        key = wallet.lower()
        try:
            return await self._cache.get_or_fetch(key, lambda: self._fetch(key))
        except FinancialSourceError as e:
            logger.warning("Financial source unavailable for %s...: %s", key[:10], e)
            return None

    async def _fetch(self, wallet: str) -> FinancialMetrics:
        headers = {"Authorization": f"Bearer {self._api_key}"}
        async with httpx.AsyncClient(
            base_url=self._base_url,
            headers=headers,
            timeout=self._timeout,
            transport=self._transport,
        ) as client:
            job_id = await self._submit(client, PORTFOLIO_PROMPT.format(wallet=wallet))
            result = await self._poll(client, job_id)
        metrics = parse_metrics(wallet, result)
        if metrics is None:
            raise FinancialSourceError(f"Job {job_id} returned a malformed result")
        return metrics

    async def _submit(self, client: httpx.AsyncClient, prompt: str) -> str:
        try:
            response = await client.post("/v1/jobs", json={"prompt": prompt})
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise FinancialSourceError(f"Job submission failed: {e}") from e
        job_id = as_str(first_present(payload, "jobId", "job_id"))
        if job_id is None:
            raise FinancialSourceError("Job submission returned no job id")
        return job_id

    async def _poll(self, client: httpx.AsyncClient, job_id: str) -> Any:
        for attempt in range(self._max_poll_attempts):
            await self._sleep(self._poll_interval)
            try:
                response = await client.get(f"/v1/jobs/{job_id}")
                response.raise_for_status()
                payload = response.json()
            except httpx.HTTPStatusError as e:
                raise FinancialSourceError(f"Job {job_id} poll failed: {e}") from e
            except (httpx.HTTPError, ValueError) as e:
                logger.warning("Financial job %s poll error (attempt %d): %s", job_id, attempt + 1, e)
                continue
            state = as_str(first_present(payload, "state", "status"))
            if state == "completed":
                return first_present(payload, "result")
            if state == "failed":
                raise FinancialSourceError(f"Job {job_id} failed: {first_present(payload, 'error')}")
        raise FinancialSourceError(f"Job {job_id} did not finish after {self._max_poll_attempts} polls")
