"""Tests for basic scoring."""

from datetime import UTC, datetime, timedelta

import pytest

from agentscore.scoring.basic import (
    BasicScore,
    activity_score,
    apply_debate_bonus,
    basic_score,
    completion_rate,
    debate_bonus,
)
from agentscore.scoring.tiers import basic_tier, clamp_score, round_half_up

NOW = datetime(2026, 6, 1, tzinfo=UTC)


class TestCompletionRate:
    def test_no_finished_tasks(self):
        assert completion_rate(0, 0) == 0.0

    def test_ratio(self):
        assert completion_rate(3, 1) == 0.75


class TestBasicScore:
    """Tests for the on-chain formula."""

    def test_perfect_record(self):
        result = basic_score(tasks_completed=10, tasks_failed=0, disputes=0, slashes=0, age_days=30)

        assert result.score == 950
        assert result.tier == "AAA"
        assert result.completion_rate == 1.0

    def test_mixed_record(self):
        result = basic_score(tasks_completed=5, tasks_failed=5, disputes=2, slashes=1, age_days=0)

        assert result.completion_rate == 0.5
        assert result.score == 700
        assert result.tier == "BBB"

    def test_partial_age_credit(self):
        result = basic_score(tasks_completed=0, tasks_failed=0, disputes=0, slashes=0, age_days=15)
        assert result.score == 725

    def test_clamped_low(self):
        result = basic_score(tasks_completed=0, tasks_failed=10, disputes=10, slashes=10, age_days=0)

        assert result.score == 300
        assert result.tier == "Risk Watch"

    def test_deterministic(self):
        kwargs = dict(tasks_completed=7, tasks_failed=2, disputes=1, slashes=0, age_days=12)
        assert basic_score(**kwargs) == basic_score(**kwargs)

    @pytest.mark.parametrize(
        ("completed", "failed", "disputes", "score"),
        [(1, 2, 0, 767), (5, 1, 2, 817), (2, 1, 1, 808)],
    )
    def test_fractional_score_is_rounded(self, completed, failed, disputes, score):
        result = basic_score(tasks_completed=completed, tasks_failed=failed, disputes=disputes, slashes=0, age_days=0)
        assert result.score == score

    def test_exact_tier_boundary(self):
        # 700 + 200 * 2/3 + 50 * 10/30 == 850
        result = basic_score(tasks_completed=2, tasks_failed=1, disputes=0, slashes=0, age_days=10)

        assert result.score == 850
        assert result.tier == "AAA"


class TestActivityScore:
    """Tests for agents without on-chain history."""

    def test_never_active(self):
        result = activity_score(last_activity_at=None, post_count=0, as_of=NOW)

        assert result.score == 400
        assert result.tier == "Risk Watch"

    def test_recent_poster(self):
        result = activity_score(last_activity_at=NOW - timedelta(hours=1), post_count=5, as_of=NOW)

        # 400 + 96 * 3 + 20 * 2
        assert result.score == 728
        assert result.tier == "BBB"

    def test_post_count_is_capped(self):
        capped = activity_score(last_activity_at=None, post_count=20, as_of=NOW)
        over = activity_score(last_activity_at=None, post_count=500, as_of=NOW)
        assert capped == over

    def test_half_point_rounds_up(self):
        # 400 + 99.5 * 3 == 698.5
        result = activity_score(last_activity_at=NOW - timedelta(minutes=7.5), post_count=0, as_of=NOW)
        assert result.score == 699


class TestDebateBonus:
    @pytest.mark.parametrize(
        ("rating", "bonus"),
        [(None, 0), (900.0, 0), (980.0, 0), (1090.0, 20), (1200.0, 40), (1500.0, 40)],
    )
    def test_bonus(self, rating, bonus):
        assert debate_bonus(rating) == bonus

    def test_half_point_bonus_rounds_up(self):
        # (993.75 - 980) / 220 * 40 == 2.5
        assert debate_bonus(993.75) == 3

    def test_bonus_respects_ceiling(self):
        result = apply_debate_bonus(BasicScore(score=940, tier="AAA", completion_rate=1.0), 1200.0)
        assert result.score == 950

    def test_bonus_can_lift_tier(self):
        result = apply_debate_bonus(BasicScore(score=690, tier="BB", completion_rate=0.5), 1200.0)

        assert result.score == 730
        assert result.tier == "BBB"


class TestTiers:
    @pytest.mark.parametrize(
        ("score", "tier"),
        [(850, "AAA"), (849, "AA"), (800, "AA"), (750, "A"), (700, "BBB"), (650, "BB"), (649, "Risk Watch")],
    )
    def test_boundaries(self, score, tier):
        assert basic_tier(score) == tier

    def test_clamp(self):
        assert clamp_score(1200.7) == 950
        assert clamp_score(-4) == 300

    def test_clamp_rounds_half_up(self):
        assert clamp_score(700.5) == 701
        assert clamp_score(766.4) == 766
        assert round_half_up(2.5) == 3
        assert round_half_up(0.5) == 1
