"""
Insight Engine - Data Models

Score results produced by the pure scoring engine and the run report
returned by run_all_predictions. All score models frozen (immutable).
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class VelocityTrend(str, Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


class ScopeCreepSeverity(str, Enum):
    NONE = "none"
    MINOR = "minor"
    MODERATE = "moderate"
    SEVERE = "severe"


class DeadlineRiskScore(BaseModel):
    """
    Deadline risk for one project.

    estimated_delay_days is None when risk is low or historical velocity is
    zero (no finite estimate exists).
    """
    risk_level: RiskLevel
    confidence: float = Field(..., ge=0.0, le=1.0)
    completion_rate: float
    days_until_deadline: int
    total_tasks: int
    completed_tasks: int
    remaining_tasks: int
    required_daily_velocity: float
    historical_velocity: float
    critical_bottlenecks: int = 0
    estimated_delay_days: Optional[int] = None
    factors: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)

    def payload(self) -> Dict[str, Any]:
        value: Dict[str, Any] = {
            "riskLevel": self.risk_level.value,
            "probability": self.confidence,
            "completionRate": round(self.completion_rate, 4),
            "daysUntilDeadline": self.days_until_deadline,
            "remainingTasks": self.remaining_tasks,
            "requiredVelocity": round(self.required_daily_velocity, 4),
            "historicalVelocity": round(self.historical_velocity, 4),
            "criticalBottlenecks": self.critical_bottlenecks,
            "factors": list(self.factors),
            "recommendations": list(self.recommendations),
        }
        if self.estimated_delay_days is not None:
            value["estimatedDelay"] = self.estimated_delay_days
        return value


class BurnoutScore(BaseModel):
    user_id: str
    score: int
    risk_level: RiskLevel
    confidence: float = Field(..., ge=0.0, le=1.0)
    active_tasks: int
    weekend_days: int
    extended_hours_days: int
    factors: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)

    def payload(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "riskLevel": self.risk_level.value,
            "score": self.score,
            "activeTasks": self.active_tasks,
            "weekendDays": self.weekend_days,
            "extendedHoursDays": self.extended_hours_days,
            "factors": list(self.factors),
            "recommendations": list(self.recommendations),
        }


class VelocityForecast(BaseModel):
    """Weekly buckets are ordered oldest to newest."""
    weekly_buckets: List[int]
    sample_size: int
    predicted_velocity: float
    std_dev: float
    interval_low: float
    interval_high: float
    trend: VelocityTrend
    confidence: float = Field(..., ge=0.0, le=1.0)

    model_config = ConfigDict(frozen=True)

    def payload(self) -> Dict[str, Any]:
        return {
            "predictedVelocity": round(self.predicted_velocity, 2),
            "confidenceInterval": {
                "low": round(self.interval_low, 2),
                "high": round(self.interval_high, 2),
            },
            "trend": self.trend.value,
            "weeklyBuckets": list(self.weekly_buckets),
            "sampleSize": self.sample_size,
        }


class ScopeCreepScore(BaseModel):
    detected: bool
    severity: ScopeCreepSeverity
    percentage_increase: float
    tasks_at_start: int
    current_tasks: int
    confidence: float = Field(..., ge=0.0, le=1.0)
    factors: List[str] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)

    def payload(self) -> Dict[str, Any]:
        return {
            "detected": self.detected,
            "severity": self.severity.value,
            "percentageIncrease": round(self.percentage_increase, 2),
            "tasksAtStart": self.tasks_at_start,
            "currentTasks": self.current_tasks,
            "factors": list(self.factors),
        }


class PredictorStatus(str, Enum):
    WRITTEN = "written"
    SKIPPED = "skipped"
    FAILED = "failed"


class PredictorOutcome(BaseModel):
    predictor: str
    status: PredictorStatus
    predictions_written: int = 0
    reason: Optional[str] = None
    error_code: Optional[str] = None


class PredictionRunReport(BaseModel):
    """What happened to each predictor in one run_all_predictions call."""
    organization_id: str
    project_id: Optional[str] = None
    started_at: datetime
    outcomes: List[PredictorOutcome] = Field(default_factory=list)

    @property
    def written(self) -> List[str]:
        return [o.predictor for o in self.outcomes if o.status == PredictorStatus.WRITTEN]

    @property
    def skipped(self) -> List[str]:
        return [o.predictor for o in self.outcomes if o.status == PredictorStatus.SKIPPED]

    @property
    def failed(self) -> List[str]:
        return [o.predictor for o in self.outcomes if o.status == PredictorStatus.FAILED]

    @property
    def predictions_written(self) -> int:
        return sum(o.predictions_written for o in self.outcomes)
