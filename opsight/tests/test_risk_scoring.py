"""
opsight/tests/test_risk_scoring.py
Deterministic scoring: fixed inputs always give the same level, confidence and delay.
"""

import math
from datetime import datetime, timedelta, timezone

import pytest

from opsight.features.insights.models import RiskLevel, ScopeCreepSeverity, VelocityTrend
from opsight.features.insights.scoring import RiskScoringEngine
from opsight.models.tracking import BehavioralMetric

NOW = datetime(2025, 6, 16, 12, 0, tzinfo=timezone.utc)


class TestDeadlineRisk:
    def test_required_velocity_over_twice_historical_is_critical(self):
        # 60 completions over 30 days = 2/day; 60 remaining over 10 days = 6/day
        score = RiskScoringEngine.score_deadline_risk(
            total_tasks=100,
            completed_tasks=40,
            completed_last_30_days=60,
            target_date=NOW + timedelta(days=10),
            now=NOW,
        )
        assert score.remaining_tasks == 60
        assert score.required_daily_velocity == 6
        assert score.historical_velocity == 2
        assert score.risk_level == RiskLevel.CRITICAL
        assert score.confidence == 0.9
        assert score.estimated_delay_days == 20
        assert score.recommendations[0] == "Consider scope reduction or deadline extension"

    def test_medium_band(self):
        score = RiskScoringEngine.score_deadline_risk(
            total_tasks=20,
            completed_tasks=8,
            completed_last_30_days=30,
            target_date=NOW + timedelta(days=10),
            now=NOW,
        )
        assert score.risk_level == RiskLevel.MEDIUM
        assert score.confidence == 0.4
        assert score.estimated_delay_days == 2

    def test_on_track_is_low_without_delay(self):
        score = RiskScoringEngine.score_deadline_risk(
            total_tasks=10,
            completed_tasks=5,
            completed_last_30_days=30,
            target_date=NOW + timedelta(days=10),
            now=NOW,
        )
        assert score.risk_level == RiskLevel.LOW
        assert score.confidence == 0.1
        assert score.estimated_delay_days is None
        assert score.recommendations == []

    def test_critical_bottlenecks_raise_confidence(self):
        score = RiskScoringEngine.score_deadline_risk(
            total_tasks=45,
            completed_tasks=10,
            completed_last_30_days=60,
            target_date=NOW + timedelta(days=10),
            now=NOW,
            critical_bottlenecks=1,
        )
        # 3.5/day required vs 2/day historical -> high
        assert score.risk_level == RiskLevel.HIGH
        assert score.confidence == 0.8
        assert "1 critical bottleneck(s) detected" in score.factors
        assert "Prioritize resolving critical bottlenecks" in score.recommendations

    def test_confidence_capped_at_one(self):
        score = RiskScoringEngine.score_deadline_risk(
            total_tasks=100,
            completed_tasks=40,
            completed_last_30_days=60,
            target_date=NOW + timedelta(days=10),
            now=NOW,
            critical_bottlenecks=5,
        )
        assert score.confidence == 1.0

    def test_zero_historical_velocity_is_critical_and_finite(self):
        score = RiskScoringEngine.score_deadline_risk(
            total_tasks=10,
            completed_tasks=2,
            completed_last_30_days=0,
            target_date=NOW + timedelta(days=5),
            now=NOW,
        )
        assert score.risk_level == RiskLevel.CRITICAL
        assert score.confidence == 0.9
        assert score.estimated_delay_days is None
        payload = score.payload()
        assert "estimatedDelay" not in payload
        for value in payload.values():
            if isinstance(value, float):
                assert math.isfinite(value)

    def test_zero_velocity_with_nothing_left_is_low(self):
        score = RiskScoringEngine.score_deadline_risk(
            total_tasks=4,
            completed_tasks=4,
            completed_last_30_days=0,
            target_date=NOW + timedelta(days=5),
            now=NOW,
        )
        assert score.risk_level == RiskLevel.LOW

    def test_past_deadline_uses_one_day_floor(self):
        score = RiskScoringEngine.score_deadline_risk(
            total_tasks=10,
            completed_tasks=5,
            completed_last_30_days=30,
            target_date=NOW - timedelta(days=3),
            now=NOW,
        )
        assert score.days_until_deadline == -3
        assert score.required_daily_velocity == 5
        assert score.risk_level == RiskLevel.CRITICAL

    def test_low_completion_near_deadline_factor(self):
        score = RiskScoringEngine.score_deadline_risk(
            total_tasks=10,
            completed_tasks=1,
            completed_last_30_days=30,
            target_date=NOW + timedelta(days=7),
            now=NOW,
        )
        assert "Low completion rate (10%) with limited time remaining" in score.factors

    def test_payload_shape(self):
        payload = RiskScoringEngine.score_deadline_risk(
            total_tasks=100,
            completed_tasks=40,
            completed_last_30_days=60,
            target_date=NOW + timedelta(days=10),
            now=NOW,
        ).payload()
        assert payload["riskLevel"] == "critical"
        assert payload["probability"] == 0.9
        assert payload["requiredVelocity"] == 6
        assert payload["historicalVelocity"] == 2
        assert payload["estimatedDelay"] == 20


class TestBurnout:
    def test_heavy_task_load_alone_is_medium(self):
        score = RiskScoringEngine.score_burnout(
            user_id="user-1", active_tasks=9, weekend_days=0, extended_hours_days=0
        )
        assert score.score == 30
        assert score.risk_level == RiskLevel.MEDIUM
        assert score.confidence == 0.3

    def test_all_signals_is_high(self):
        score = RiskScoringEngine.score_burnout(
            user_id="user-1", active_tasks=9, weekend_days=3, extended_hours_days=6
        )
        assert score.score == 75
        assert score.risk_level == RiskLevel.HIGH
        assert score.confidence == 0.75
        assert "Review deadline expectations" in score.recommendations

    def test_elevated_load_alone_stays_low(self):
        score = RiskScoringEngine.score_burnout(
            user_id="user-1", active_tasks=6, weekend_days=2, extended_hours_days=5
        )
        assert score.score == 15
        assert score.risk_level == RiskLevel.LOW
        assert score.recommendations == []

    def test_count_burnout_signals(self):
        def metric(day, end, weekend=False):
            return BehavioralMetric(
                organization_id="org-1",
                user_id="user-1",
                date=NOW - timedelta(days=day),
                active_hours_end=end,
                weekend_activity=weekend,
            )

        metrics = [metric(1, 19), metric(2, 20), metric(3, 23, weekend=True), metric(4, None, weekend=True)]
        assert RiskScoringEngine.count_burnout_signals(metrics) == (2, 2)


class TestVelocity:
    def test_rising_buckets_trend_increasing(self):
        forecast = RiskScoringEngine.forecast_from_buckets([5, 6, 8, 10], sample_size=29)
        assert forecast.predicted_velocity == 7.25
        assert forecast.trend == VelocityTrend.INCREASING
        assert forecast.std_dev == pytest.approx(1.9203, abs=1e-4)
        assert forecast.interval_low == pytest.approx(7.25 - 1.9203, abs=1e-4)
        assert forecast.confidence == 0.616

    def test_falling_buckets_trend_decreasing(self):
        forecast = RiskScoringEngine.forecast_from_buckets([10, 8, 6, 5], sample_size=29)
        assert forecast.trend == VelocityTrend.DECREASING

    def test_flat_buckets_trend_stable(self):
        forecast = RiskScoringEngine.forecast_from_buckets([5, 5, 5, 5], sample_size=20)
        assert forecast.trend == VelocityTrend.STABLE
        assert forecast.std_dev == 0
        assert forecast.interval_low == 5

    def test_interval_low_never_negative(self):
        forecast = RiskScoringEngine.forecast_from_buckets([0, 0, 0, 8], sample_size=8)
        assert forecast.interval_low == 0

    def test_confidence_caps_at_point_nine(self):
        forecast = RiskScoringEngine.forecast_from_buckets([30, 30, 30, 30], sample_size=500)
        assert forecast.confidence == 0.9

    def test_buckets_are_oldest_first(self):
        times = [
            NOW - timedelta(days=1),
            NOW - timedelta(days=8),
            NOW - timedelta(days=27),
            NOW - timedelta(days=28),
            NOW + timedelta(days=1),
        ]
        assert RiskScoringEngine.bucket_completions(times, NOW) == [1, 0, 1, 1]

    def test_payload_shape(self):
        payload = RiskScoringEngine.forecast_from_buckets([5, 6, 8, 10], sample_size=29).payload()
        assert payload["predictedVelocity"] == 7.25
        assert payload["trend"] == "increasing"
        assert payload["weeklyBuckets"] == [5, 6, 8, 10]
        assert set(payload["confidenceInterval"]) == {"low", "high"}


class TestScopeCreep:
    def test_fifty_percent_growth_is_severe(self):
        score = RiskScoringEngine.score_scope_creep(tasks_at_start=20, current_tasks=30)
        assert score.percentage_increase == 50
        assert score.severity == ScopeCreepSeverity.SEVERE
        assert score.detected is True
        assert score.confidence == 0.8

    @pytest.mark.parametrize(
        "current,severity",
        [(26, ScopeCreepSeverity.MODERATE), (25, ScopeCreepSeverity.MINOR), (23, ScopeCreepSeverity.MINOR)],
    )
    def test_bands(self, current, severity):
        score = RiskScoringEngine.score_scope_creep(tasks_at_start=20, current_tasks=current)
        assert score.severity == severity

    def test_ten_percent_is_not_detected(self):
        score = RiskScoringEngine.score_scope_creep(tasks_at_start=20, current_tasks=22)
        assert score.detected is False
        assert score.severity == ScopeCreepSeverity.NONE
        assert score.confidence == 0.0
        assert score.factors == []

    def test_requires_baseline(self):
        with pytest.raises(ValueError):
            RiskScoringEngine.score_scope_creep(tasks_at_start=0, current_tasks=5)
