"""
Risk predictors: read tracking data, score it, explain it, write it.

Each predictor is independent. run_all() runs the four in sequence and
isolates failures so a broken predictor never rolls back the others:
- MissingPrerequisite (no target date, no baseline) -> skipped, debug log
- any other exception -> failed, error log + metric
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from opsight.core.config import settings
from opsight.core.errors import AppError, MissingPrerequisite, NotFoundError
from opsight.core.logging import log_event
from opsight.core.metrics import predictor_failures_total
from opsight.core.tracing import start_span
from opsight.features.insights.gateway import InsightStore, get_store
from opsight.features.insights.models import (
    PredictionRunReport,
    PredictorOutcome,
    PredictorStatus,
    RiskLevel,
)
from opsight.features.insights.reasoning import ReasoningGenerator
from opsight.features.insights.scoring import RiskScoringEngine
from opsight.features.insights.supersession import (
    SupersessionWriter,
    organization_scope,
    project_scope,
    user_scope,
)
from opsight.models.tracking import (
    Prediction,
    PredictionType,
    Project,
    Severity,
    TaskFilter,
    TaskStatus,
)

LOGGER_NAME = "opsight.insights.predictors"


class PredictionEngine:
    """
    Runs the four risk predictors for one organization.

    `now` is fixed at construction so one run scores against a single clock.
    """

    def __init__(
        self,
        organization_id: str,
        *,
        store: Optional[InsightStore] = None,
        reasoning: Optional[ReasoningGenerator] = None,
        now: Optional[datetime] = None,
        burnout_supersede: Optional[bool] = None,
    ):
        self.organization_id = organization_id
        self.store = store or get_store()
        self.reasoning = reasoning or ReasoningGenerator()
        self.writer = SupersessionWriter(self.store)
        self.now = now or datetime.now(timezone.utc)
        self.burnout_supersede = (
            settings.INSIGHTS_BURNOUT_SUPERSEDE if burnout_supersede is None else burnout_supersede
        )

    # -- predictors -------------------------------------------------------

    def predict_deadline_risk(self, project_id: str) -> Optional[Prediction]:
        project = self._require_project(project_id)
        if project.target_date is None:
            raise MissingPrerequisite(f"Project {project_id} has no target date")

        tasks = self.store.list_tasks(self.organization_id, TaskFilter(project_id=project_id))
        history_start = self.now - timedelta(days=RiskScoringEngine.HISTORY_WINDOW_DAYS)
        done = [t for t in tasks if t.status == TaskStatus.DONE]
        completed_recently = [t for t in done if t.completion_time >= history_start]
        critical = [
            b for b in self.store.list_active_bottlenecks(self.organization_id, project_id)
            if b.severity == Severity.CRITICAL
        ]

        score = RiskScoringEngine.score_deadline_risk(
            total_tasks=len(tasks),
            completed_tasks=len(done),
            completed_last_30_days=len(completed_recently),
            target_date=project.target_date,
            now=self.now,
            critical_bottlenecks=len(critical),
        )
        return self._write(
            PredictionType.DEADLINE_RISK,
            score.confidence,
            score.payload(),
            project_id=project_id,
            scope_key=project_scope(project_id),
        )

    def detect_burnout(self) -> List[Prediction]:
        """One prediction per user above low risk; low-risk users are skipped silently."""
        since = self.now - timedelta(days=RiskScoringEngine.BURNOUT_WINDOW_DAYS)
        written: List[Prediction] = []
        for user in self.store.list_users(self.organization_id):
            metrics = self.store.list_behavioral_metrics(self.organization_id, user.id, since)
            active = self.store.list_tasks(
                self.organization_id,
                TaskFilter(assignee_id=user.id, exclude_statuses=[TaskStatus.DONE]),
            )
            weekend_days, late_days = RiskScoringEngine.count_burnout_signals(metrics)
            score = RiskScoringEngine.score_burnout(
                user_id=user.id,
                active_tasks=len(active),
                weekend_days=weekend_days,
                extended_hours_days=late_days,
            )
            if score.risk_level == RiskLevel.LOW:
                continue
            written.append(
                self._write(
                    PredictionType.BURNOUT_INDICATOR,
                    score.confidence,
                    score.payload(),
                    project_id=None,
                    scope_key=user_scope(user.id) if self.burnout_supersede else None,
                )
            )
        return written

    def forecast_velocity(self, project_id: Optional[str] = None) -> Optional[Prediction]:
        since = self.now - timedelta(days=RiskScoringEngine.HISTORY_WINDOW_DAYS)
        if project_id is not None:
            self._require_project(project_id)
        completed = self.store.list_tasks(
            self.organization_id,
            TaskFilter(project_id=project_id, completed_since=since),
        )
        if not completed:
            raise MissingPrerequisite("No tasks completed in the last 30 days")

        forecast = RiskScoringEngine.forecast_velocity([t.completion_time for t in completed], self.now)
        scope_key = project_scope(project_id) if project_id else organization_scope(self.organization_id)
        return self._write(
            PredictionType.VELOCITY_FORECAST,
            forecast.confidence,
            forecast.payload(),
            project_id=project_id,
            scope_key=scope_key,
        )

    def detect_scope_creep(self, project_id: str) -> Optional[Prediction]:
        project = self._require_project(project_id)
        if project.start_date is None:
            raise MissingPrerequisite(f"Project {project_id} has no start date")

        at_start = self.store.list_tasks(
            self.organization_id,
            TaskFilter(project_id=project_id, created_on_or_before=project.start_date),
        )
        if not at_start:
            raise MissingPrerequisite(f"Project {project_id} had no tasks at its start date")

        current = self.store.list_tasks(self.organization_id, TaskFilter(project_id=project_id))
        score = RiskScoringEngine.score_scope_creep(tasks_at_start=len(at_start), current_tasks=len(current))
        if not score.detected:
            return None
        return self._write(
            PredictionType.SCOPE_CREEP,
            score.confidence,
            score.payload(),
            project_id=project_id,
            scope_key=project_scope(project_id),
        )

    # -- orchestration ----------------------------------------------------

    def run_all(self, project_id: Optional[str] = None) -> PredictionRunReport:
        if project_id is not None:
            self._require_project(project_id)

        report = PredictionRunReport(
            organization_id=self.organization_id,
            project_id=project_id,
            started_at=self.now,
        )

        def project_only(fn: Callable[[str], Optional[Prediction]]):
            def run():
                if project_id is None:
                    raise MissingPrerequisite("No project given")
                return fn(project_id)
            return run

        predictors = [
            (PredictionType.DEADLINE_RISK, project_only(self.predict_deadline_risk)),
            (PredictionType.BURNOUT_INDICATOR, self.detect_burnout),
            (PredictionType.VELOCITY_FORECAST, lambda: self.forecast_velocity(project_id)),
            (PredictionType.SCOPE_CREEP, project_only(self.detect_scope_creep)),
        ]
        for prediction_type, run in predictors:
            report.outcomes.append(self._run_isolated(prediction_type.value, run, project_id))
        return report

    def _run_isolated(self, name: str, run, project_id: Optional[str]) -> PredictorOutcome:
        with start_span(
            "insights.predictor",
            {"predictor": name, "organization_id": self.organization_id, "project_id": project_id},
        ):
            try:
                result = run()
            except MissingPrerequisite as exc:
                log_event(
                    "debug",
                    "insights.prediction.skipped",
                    request_id=None,
                    organization_id=self.organization_id,
                    project_id=project_id,
                    extra={"predictor": name, "reason": exc.message},
                    logger_name=LOGGER_NAME,
                )
                return PredictorOutcome(predictor=name, status=PredictorStatus.SKIPPED, reason=exc.message)
            except Exception as exc:
                predictor_failures_total.inc(labels={"predictor": name})
                error_code = exc.code if isinstance(exc, AppError) else "unexpected_error"
                log_event(
                    "error",
                    "insights.predictor.failed",
                    request_id=None,
                    organization_id=self.organization_id,
                    project_id=project_id,
                    error_code=error_code,
                    extra={"predictor": name, "error": str(exc)},
                    logger_name=LOGGER_NAME,
                )
                return PredictorOutcome(
                    predictor=name,
                    status=PredictorStatus.FAILED,
                    reason=str(exc),
                    error_code=error_code,
                )

        written = result if isinstance(result, list) else ([result] if result is not None else [])
        if not written:
            return PredictorOutcome(predictor=name, status=PredictorStatus.SKIPPED, reason="nothing to report")
        return PredictorOutcome(predictor=name, status=PredictorStatus.WRITTEN, predictions_written=len(written))

    # -- helpers ----------------------------------------------------------

    def _require_project(self, project_id: str) -> Project:
        project = self.store.get_project(self.organization_id, project_id)
        if project is None:
            raise NotFoundError(f"Project {project_id} not found")
        return project

    def _write(
        self,
        prediction_type: PredictionType,
        confidence: float,
        payload: dict,
        *,
        project_id: Optional[str],
        scope_key: Optional[str],
    ) -> Prediction:
        reasoning = self.reasoning.generate(
            prediction_type,
            payload,
            organization_id=self.organization_id,
            project_id=project_id,
        )
        prediction = Prediction(
            organization_id=self.organization_id,
            project_id=project_id,
            type=prediction_type,
            confidence=confidence,
            value=payload,
            reasoning=reasoning.text,
            reasoning_source=reasoning.source,
            scope_key=scope_key,
            created_at=self.now,
        )
        if scope_key is None:
            return self.writer.append(prediction)
        return self.writer.write(prediction)


def run_all_predictions(
    organization_id: str,
    project_id: Optional[str] = None,
    *,
    store: Optional[InsightStore] = None,
    reasoning: Optional[ReasoningGenerator] = None,
    now: Optional[datetime] = None,
) -> PredictionRunReport:
    """Run every predictor for the organization (and project, when given) and report each outcome."""
    engine = PredictionEngine(organization_id, store=store, reasoning=reasoning, now=now)
    return engine.run_all(project_id)
