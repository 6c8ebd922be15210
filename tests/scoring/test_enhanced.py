"""Tests for enhanced five-component scoring."""

import pytest

from agentscore.scoring.enhanced import (
    data_completeness,
    dispute_record,
    ecosystem_participation,
    enhanced_score,
    financial_reliability,
    intellectual_reputation,
    task_performance,
)
from agentscore.scoring.tiers import enhanced_tier


class TestComponents:
    """Tests for the individual components."""

    def test_task_performance_bounds(self):
        assert task_performance(0, 0) == 0.0
        assert task_performance(50, 0) == pytest.approx(200.0)
        assert task_performance(500, 0) == pytest.approx(200.0)

    def test_task_performance_rewards_volume(self):
        assert task_performance(20, 0) > task_performance(2, 0)

    def test_financial_signal_wins_over_proxy(self):
        assert financial_reliability(0.5, slashes=10) == pytest.approx(150.0)

    @pytest.mark.parametrize(("slashes", "points"), [(0, 300.0), (1, 240.0), (2, 180.0), (10, 60.0)])
    def test_slash_proxy(self, slashes, points):
        assert financial_reliability(None, slashes) == pytest.approx(points)

    @pytest.mark.parametrize(("disputes", "points"), [(0, 150.0), (2, 105.0), (5, 60.0), (6, 30.0)])
    def test_dispute_steps(self, disputes, points):
        assert dispute_record(disputes) == pytest.approx(points)

    def test_ecosystem_participation(self):
        assert ecosystem_participation(0) == pytest.approx(100.0)
        assert ecosystem_participation(180) == pytest.approx(200.0)
        assert ecosystem_participation(10_000) == pytest.approx(200.0)

    def test_intellectual_requires_debates(self):
        assert intellectual_reputation(0.9, total_debates=0) == 0.0
        assert intellectual_reputation(None, total_debates=5) == 0.0
        assert intellectual_reputation(0.5, total_debates=5) == pytest.approx(75.0)

    def test_data_completeness(self):
        assert data_completeness(has_onchain=False, has_financial=False, has_debate=False) == 0.0
        assert data_completeness(has_onchain=True, has_financial=False, has_debate=True) == 0.7
        assert data_completeness(has_onchain=True, has_financial=True, has_debate=True) == 1.0


class TestEnhancedScore:
    """Tests for the combined score."""

    def test_no_data(self):
        result = enhanced_score(tasks_completed=0, tasks_failed=0, disputes=0, slashes=0, age_days=0)

        # 0 + 300 + 150 + 100 + 0
        assert result.score == 550
        assert result.tier == "BBB- - Fair"
        assert result.data_completeness == 0.0
        assert result.components.to_dict()["financial_reliability"] == 300.0

    def test_full_data_is_clamped(self):
        result = enhanced_score(
            tasks_completed=10,
            tasks_failed=0,
            disputes=0,
            slashes=0,
            age_days=180,
            financial_score=1.0,
            debate_score=1.0,
            total_debates=5,
        )

        assert result.components.total > 950
        assert result.score == 950
        assert result.tier == "AAA - Elite"
        assert result.data_completeness == 1.0

    def test_score_is_always_in_range(self):
        for slashes in (0, 3, 50):
            for disputes in (0, 4, 50):
                result = enhanced_score(
                    tasks_completed=1,
                    tasks_failed=9,
                    disputes=disputes,
                    slashes=slashes,
                    age_days=0,
                    financial_score=0.0 if slashes else None,
                )
                assert 300 <= result.score <= 950


class TestEnhancedTiers:
    @pytest.mark.parametrize(
        ("score", "tier"),
        [
            (900, "AAA - Elite"),
            (899, "AA - Exceptional"),
            (600, "BBB - Average"),
            (400, "C - High Risk"),
            (399, "D - Risk Watch"),
        ],
    )
    def test_boundaries(self, score, tier):
        assert enhanced_tier(score) == tier
