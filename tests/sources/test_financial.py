"""Tests for the job-based financial source."""

import httpx
import pytest
import respx

from agentscore.sources.financial import FinancialMetrics, FinancialSource, financial_score, parse_metrics

BASE_URL = "https://financial.test"
WALLET = "0xAbCdEf0000000000000000000000000000000001"

RESULT = {
    "portfolio": {"totalValueUSD": 100_000, "diversificationScore": 0.5, "chainCount": ["base", "eth"]},
    "trading": {"totalTrades": 12, "totalVolumeUSD": 1_000_000, "winRate": 0.6},
    "risk": {"hasUsedStopLoss": True, "liquidations": 0, "riskScore": 0.3},
    "defi": {"liquidityProvided": True, "automatedStrategies": 2},
}


class TestParseMetrics:
    """Tests for job result parsing."""

    def test_camel_case(self):
        metrics = parse_metrics(WALLET, RESULT)

        assert metrics.total_value_usd == 100_000
        assert metrics.chain_count == 2
        assert metrics.total_trades == 12
        assert metrics.has_used_stop_loss is True
        assert metrics.automated_strategies == 2

    def test_snake_case_and_clamping(self):
        metrics = parse_metrics(
            WALLET,
            {
                "portfolio": {"total_value_usd": "-5", "diversification_score": 3},
                "trading": {"win_rate": "0.4"},
                "risk": {"liquidations": [1, 2]},
            },
        )

        assert metrics.total_value_usd == 0.0
        assert metrics.diversification_score == 1.0
        assert metrics.win_rate == 0.4
        assert metrics.liquidations == 2
        assert metrics.risk_score == 0.5

    def test_non_mapping(self):
        assert parse_metrics(WALLET, "nope") is None


class TestFinancialScore:
    """Tests for the financial reliability signal."""

    def test_empty_wallet(self):
        # risk component only: 0.3 * 0.25
        assert financial_score(FinancialMetrics(wallet=WALLET)) == pytest.approx(0.075)

    def test_active_wallet(self):
        metrics = parse_metrics(WALLET, RESULT)
        portfolio = 1.0 * 0.4 + 0.5 * 0.3
        trading = 0.6 * 0.4 + 1.0 * 0.3
        risk = 0.7
        defi = 0.3 + 0.2
        expected = portfolio * 0.3 + trading * 0.25 + risk * 0.25 + defi * 0.2
        assert financial_score(metrics) == pytest.approx(expected)

    def test_liquidations_floor_risk_at_zero(self):
        metrics = FinancialMetrics(wallet=WALLET, liquidations=5)
        assert financial_score(metrics) == 0.0


class TestFinancialSource:
    """Tests for submit-and-poll lookups."""

    @pytest.mark.asyncio
    async def test_disabled_without_key(self):
        source = FinancialSource(BASE_URL, None)

        assert source.enabled is False
        assert await source.get_metrics(WALLET) is None

    @pytest.mark.asyncio
    async def test_completed_job(self, no_sleep):
        source = FinancialSource(BASE_URL, "key", poll_interval_seconds=2.0, sleep=no_sleep)
        with respx.mock:
            submit = respx.post(f"{BASE_URL}/v1/jobs").mock(return_value=httpx.Response(200, json={"jobId": "j-1"}))
            respx.get(f"{BASE_URL}/v1/jobs/j-1").mock(
                side_effect=[
                    httpx.Response(200, json={"state": "running"}),
                    httpx.Response(200, json={"state": "completed", "result": RESULT}),
                ]
            )
            metrics = await source.get_metrics(WALLET)
            cached = await source.get_metrics(WALLET.lower())

        assert metrics.total_trades == 12
        assert metrics.wallet == WALLET.lower()
        assert cached is metrics
        assert submit.call_count == 1
        assert submit.calls.last.request.headers["Authorization"] == "Bearer key"
        assert no_sleep.calls == [2.0, 2.0]

    @pytest.mark.asyncio
    async def test_failed_job(self, no_sleep):
        source = FinancialSource(BASE_URL, "key", sleep=no_sleep)
        with respx.mock:
            respx.post(f"{BASE_URL}/v1/jobs").mock(return_value=httpx.Response(200, json={"job_id": "j-2"}))
            respx.get(f"{BASE_URL}/v1/jobs/j-2").mock(
                return_value=httpx.Response(200, json={"status": "failed", "error": "unknown wallet"})
            )
            assert await source.get_metrics(WALLET) is None

    @pytest.mark.asyncio
    async def test_attempts_exhausted(self, no_sleep):
        source = FinancialSource(BASE_URL, "key", max_poll_attempts=3, sleep=no_sleep)
        with respx.mock:
            respx.post(f"{BASE_URL}/v1/jobs").mock(return_value=httpx.Response(200, json={"jobId": "j-3"}))
            poll = respx.get(f"{BASE_URL}/v1/jobs/j-3").mock(return_value=httpx.Response(200, json={"state": "queued"}))
            assert await source.get_metrics(WALLET) is None

        assert poll.call_count == 3
        assert len(no_sleep.calls) == 3

    @pytest.mark.asyncio
    async def test_submission_without_job_id(self, no_sleep):
        source = FinancialSource(BASE_URL, "key", sleep=no_sleep)
        with respx.mock:
            respx.post(f"{BASE_URL}/v1/jobs").mock(return_value=httpx.Response(200, json={}))
            assert await source.get_metrics(WALLET) is None

    @pytest.mark.asyncio
    async def test_transient_poll_error_is_retried(self, no_sleep):
        source = FinancialSource(BASE_URL, "key", sleep=no_sleep)
        with respx.mock:
            respx.post(f"{BASE_URL}/v1/jobs").mock(return_value=httpx.Response(200, json={"jobId": "j-4"}))
            respx.get(f"{BASE_URL}/v1/jobs/j-4").mock(
                side_effect=[
                    httpx.ReadTimeout("slow"),
                    httpx.Response(200, json={"state": "completed", "result": RESULT}),
                ]
            )
            metrics = await source.get_metrics(WALLET)

        assert metrics is not None
