"""
Risk Scoring Engine

Pure, deterministic computation of the four risk scores.
No datastore reads, no model calls, no side effects; `now` is always passed in.

Scoring rules:
- Deadline risk: required daily velocity vs. 30-day historical velocity,
  ladder 2x / 1.5x / 1x -> critical / high / medium, else low.
  +0.1 confidence per active critical bottleneck, capped at 1.0.
- Burnout: additive score from active tasks, weekend days and late days
  over a 14-day window; >=50 high, >=25 medium.
- Velocity: four trailing 7-day buckets, mean +/- population std dev,
  trend from recent half vs. older half with a 10% dead band.
- Scope creep: growth over the task count at project start;
  >=50% severe, >25% moderate, >10% minor.

Confidence values are rounded to 4 decimal places.
"""

import math
import statistics
from datetime import datetime, timedelta
from typing import Iterable, List, Sequence, Tuple

from opsight.features.insights.models import (
    BurnoutScore,
    DeadlineRiskScore,
    RiskLevel,
    ScopeCreepScore,
    ScopeCreepSeverity,
    VelocityForecast,
    VelocityTrend,
)
from opsight.models.tracking import BehavioralMetric


class RiskScoringEngine:
    """Pure deterministic risk scoring."""

    # Deadline risk
    HISTORY_WINDOW_DAYS = 30
    DEADLINE_LADDER: Tuple[Tuple[float, RiskLevel, float], ...] = (
        (2.0, RiskLevel.CRITICAL, 0.9),
        (1.5, RiskLevel.HIGH, 0.7),
        (1.0, RiskLevel.MEDIUM, 0.4),
    )
    DEADLINE_LOW_CONFIDENCE = 0.1
    CRITICAL_BOTTLENECK_BOOST = 0.1
    LOW_COMPLETION_RATE = 0.3
    NEAR_DEADLINE_DAYS = 14

    # Burnout
    BURNOUT_WINDOW_DAYS = 14
    HEAVY_TASK_LOAD = 8
    ELEVATED_TASK_LOAD = 5
    WEEKEND_DAYS_THRESHOLD = 2
    LATE_DAYS_THRESHOLD = 5
    LATE_HOUR = 20
    BURNOUT_HIGH = 50
    BURNOUT_MEDIUM = 25

    # Velocity
    VELOCITY_BUCKETS = 4
    BUCKET_DAYS = 7
    TREND_BAND = 0.1

    # Scope creep
    SCOPE_CONFIDENCE = 0.8

    @staticmethod
    def score_deadline_risk(
        *,
        total_tasks: int,
        completed_tasks: int,
        completed_last_30_days: int,
        target_date: datetime,
        now: datetime,
        critical_bottlenecks: int = 0,
    ) -> DeadlineRiskScore:
        """
        Score the risk of missing target_date.

        Zero historical velocity is critical when work remains (no finite
        delay estimate) and low when nothing remains.
        """
        cls = RiskScoringEngine
        completion_rate = completed_tasks / total_tasks if total_tasks > 0 else 0.0
        days_until = math.ceil((target_date - now) / timedelta(days=1))
        remaining = max(total_tasks - completed_tasks, 0)
        required = remaining / max(days_until, 1)
        historical = completed_last_30_days / cls.HISTORY_WINDOW_DAYS

        if historical == 0:
            if remaining > 0:
                risk_level, base = RiskLevel.CRITICAL, cls.DEADLINE_LADDER[0][2]
            else:
                risk_level, base = RiskLevel.LOW, cls.DEADLINE_LOW_CONFIDENCE
        else:
            risk_level, base = RiskLevel.LOW, cls.DEADLINE_LOW_CONFIDENCE
            for multiplier, level, level_confidence in cls.DEADLINE_LADDER:
                if required > multiplier * historical:
                    risk_level, base = level, level_confidence
                    break

        confidence = round(min(1.0, base + cls.CRITICAL_BOTTLENECK_BOOST * critical_bottlenecks), 4)

        estimated_delay = None
        if risk_level != RiskLevel.LOW and historical > 0:
            estimated_delay = math.ceil(remaining / historical - days_until)

        factors: List[str] = []
        if historical > 0 and required > historical:
            factors.append(
                f"Required velocity ({required:.1f}/day) exceeds historical ({historical:.1f}/day)"
            )
        elif historical == 0 and remaining > 0:
            factors.append(f"No tasks completed in the last {cls.HISTORY_WINDOW_DAYS} days")
        if critical_bottlenecks > 0:
            factors.append(f"{critical_bottlenecks} critical bottleneck(s) detected")
        if completion_rate < cls.LOW_COMPLETION_RATE and days_until < cls.NEAR_DEADLINE_DAYS:
            factors.append(
                f"Low completion rate ({round(completion_rate * 100)}%) with limited time remaining"
            )

        recommendations: List[str] = []
        if risk_level != RiskLevel.LOW:
            recommendations.append("Consider scope reduction or deadline extension")
            if critical_bottlenecks > 0:
                recommendations.append("Prioritize resolving critical bottlenecks")
            if historical == 0 or required > 1.5 * historical:
                recommendations.append("Add resources or redistribute workload")

        return DeadlineRiskScore(
            risk_level=risk_level,
            confidence=confidence,
            completion_rate=completion_rate,
            days_until_deadline=days_until,
            total_tasks=total_tasks,
            completed_tasks=completed_tasks,
            remaining_tasks=remaining,
            required_daily_velocity=required,
            historical_velocity=historical,
            critical_bottlenecks=critical_bottlenecks,
            estimated_delay_days=estimated_delay,
            factors=factors,
            recommendations=recommendations,
        )

    @staticmethod
    def count_burnout_signals(metrics: Iterable[BehavioralMetric]) -> Tuple[int, int]:
        """Return (weekend activity days, days ending at or after LATE_HOUR)."""
        weekend_days = 0
        late_days = 0
        for metric in metrics:
            if metric.weekend_activity:
                weekend_days += 1
            if metric.active_hours_end is not None and metric.active_hours_end >= RiskScoringEngine.LATE_HOUR:
                late_days += 1
        return weekend_days, late_days

    @staticmethod
    def score_burnout(
        *,
        user_id: str,
        active_tasks: int,
        weekend_days: int,
        extended_hours_days: int,
    ) -> BurnoutScore:
        cls = RiskScoringEngine
        score = 0
        factors: List[str] = []

        if active_tasks > cls.HEAVY_TASK_LOAD:
            score += 30
            factors.append(f"High workload: {active_tasks} active tasks")
        elif active_tasks > cls.ELEVATED_TASK_LOAD:
            score += 15
            factors.append(f"Elevated workload: {active_tasks} active tasks")

        if weekend_days > cls.WEEKEND_DAYS_THRESHOLD:
            score += 25
            factors.append(
                f"Frequent weekend activity ({weekend_days} days in {cls.BURNOUT_WINDOW_DAYS // 7} weeks)"
            )

        if extended_hours_days > cls.LATE_DAYS_THRESHOLD:
            score += 20
            factors.append(f"Frequent late working hours ({extended_hours_days} days)")

        if score >= cls.BURNOUT_HIGH:
            risk_level = RiskLevel.HIGH
        elif score >= cls.BURNOUT_MEDIUM:
            risk_level = RiskLevel.MEDIUM
        else:
            risk_level = RiskLevel.LOW

        recommendations: List[str] = []
        if risk_level != RiskLevel.LOW:
            recommendations.append("Consider redistributing workload")
            recommendations.append("Encourage taking breaks and time off")
            if weekend_days > cls.WEEKEND_DAYS_THRESHOLD:
                recommendations.append("Review deadline expectations")

        return BurnoutScore(
            user_id=user_id,
            score=score,
            risk_level=risk_level,
            confidence=round(score / 100, 4),
            active_tasks=active_tasks,
            weekend_days=weekend_days,
            extended_hours_days=extended_hours_days,
            factors=factors,
            recommendations=recommendations,
        )

    @staticmethod
    def bucket_completions(completion_times: Iterable[datetime], now: datetime) -> List[int]:
        """
        Count completions per trailing week, oldest bucket first.

        Week index 0 is the most recent 7 days; anything 28+ days old (or in
        the future) falls outside the buckets.
        """
        cls = RiskScoringEngine
        buckets = [0] * cls.VELOCITY_BUCKETS
        bucket_span = timedelta(days=cls.BUCKET_DAYS)
        for completed_at in completion_times:
            age = now - completed_at
            if age < timedelta(0):
                continue
            week_index = math.floor(age / bucket_span)
            if week_index < cls.VELOCITY_BUCKETS:
                buckets[cls.VELOCITY_BUCKETS - 1 - week_index] += 1
        return buckets

    @staticmethod
    def forecast_from_buckets(buckets: Sequence[int], sample_size: int) -> VelocityForecast:
        cls = RiskScoringEngine
        counts = [int(c) for c in buckets]
        avg = statistics.fmean(counts)
        std_dev = statistics.pstdev(counts)

        half = len(counts) // 2
        older = statistics.fmean(counts[:half])
        recent = statistics.fmean(counts[half:])
        if recent > older * (1 + cls.TREND_BAND):
            trend = VelocityTrend.INCREASING
        elif recent < older * (1 - cls.TREND_BAND):
            trend = VelocityTrend.DECREASING
        else:
            trend = VelocityTrend.STABLE

        confidence = round(min(0.9, 0.5 + (sample_size / 100) * 0.4), 4)

        return VelocityForecast(
            weekly_buckets=counts,
            sample_size=sample_size,
            predicted_velocity=avg,
            std_dev=std_dev,
            interval_low=max(0.0, avg - std_dev),
            interval_high=avg + std_dev,
            trend=trend,
            confidence=confidence,
        )

    @staticmethod
    def forecast_velocity(completion_times: Sequence[datetime], now: datetime) -> VelocityForecast:
        """Sample size counts every completion passed in (the full 30-day window)."""
        buckets = RiskScoringEngine.bucket_completions(completion_times, now)
        return RiskScoringEngine.forecast_from_buckets(buckets, len(completion_times))

    @staticmethod
    def score_scope_creep(*, tasks_at_start: int, current_tasks: int) -> ScopeCreepScore:
        """tasks_at_start must be positive; callers skip projects without a baseline."""
        if tasks_at_start <= 0:
            raise ValueError("tasks_at_start must be positive")

        cls = RiskScoringEngine
        increase = (current_tasks - tasks_at_start) / tasks_at_start * 100

        if increase >= 50:
            severity = ScopeCreepSeverity.SEVERE
        elif increase > 25:
            severity = ScopeCreepSeverity.MODERATE
        elif increase > 10:
            severity = ScopeCreepSeverity.MINOR
        else:
            severity = ScopeCreepSeverity.NONE

        detected = severity != ScopeCreepSeverity.NONE
        factors: List[str] = []
        if detected:
            factors.append(f"{current_tasks - tasks_at_start} new tasks added since project start")
            factors.append(f"{round(increase)}% increase from original scope")

        return ScopeCreepScore(
            detected=detected,
            severity=severity,
            percentage_increase=increase,
            tasks_at_start=tasks_at_start,
            current_tasks=current_tasks,
            confidence=cls.SCOPE_CONFIDENCE if detected else 0.0,
            factors=factors,
        )
