"""
opsight/tests/test_predictors.py
Prediction engine against the in-memory store: writes, supersession, skips, isolation.
"""

from datetime import timedelta

import pytest

from opsight.core.errors import ExternalServiceError, NotFoundError
from opsight.core.metrics import predictions_written_total, predictor_failures_total
from opsight.features.insights.gateway import InMemoryInsightStore
from opsight.features.insights.models import PredictorStatus
from opsight.features.insights.predictors import PredictionEngine, run_all_predictions
from opsight.features.insights.reasoning import ReasoningGenerator
from opsight.models.tracking import (
    Bottleneck,
    BottleneckType,
    PredictionType,
    Project,
    ReasoningSource,
    Severity,
    Task,
    TaskStatus,
    User,
)

ORG = "org-1"


def seed_project(store, now, *, target_date=True, start_date=True):
    """
    27 tasks: 20 created before the start date, 7 after (35% growth).
    15 done over the last 15 days (0.5/day); 9 of the 12 open ones on user-1.
    """
    project = store.create_project(Project(
        id="proj-1",
        organization_id=ORG,
        name="Apollo",
        key="APOL",
        start_date=now - timedelta(days=40) if start_date else None,
        target_date=now + timedelta(days=10) if target_date else None,
        created_at=now - timedelta(days=50),
    ))
    store.create_user(User(id="user-1", organization_id=ORG, name="Ada"))
    store.create_user(User(id="user-2", organization_id=ORG, name="Grace"))

    for i in range(27):
        created_at = now - timedelta(days=45) if i < 20 else now - timedelta(days=20)
        done = i < 15
        store.create_task(Task(
            id=f"task-{i:02d}",
            organization_id=ORG,
            project_id=project.id,
            title=f"Task {i}",
            status=TaskStatus.DONE if done else TaskStatus.IN_PROGRESS,
            assignee_id=None if done or i >= 24 else "user-1",
            created_at=created_at,
            updated_at=now - timedelta(days=1 + i) if done else created_at,
            completed_at=now - timedelta(days=1 + i) if done else None,
        ))
    return project


def template_engine(store, now, fake_model, **kwargs):
    reasoning = ReasoningGenerator(client=fake_model(error=ExternalServiceError("model down")))
    return PredictionEngine(ORG, store=store, reasoning=reasoning, now=now, **kwargs)


class TestDeadlineRiskPredictor:
    def test_writes_critical_prediction(self, store, fixed_now, fake_model):
        seed_project(store, fixed_now)
        engine = template_engine(store, fixed_now, fake_model)

        prediction = engine.predict_deadline_risk("proj-1")

        assert prediction.type == PredictionType.DEADLINE_RISK
        assert prediction.value["riskLevel"] == "critical"
        assert prediction.value["remainingTasks"] == 12
        assert prediction.value["estimatedDelay"] == 14
        assert prediction.confidence == 0.9
        assert prediction.scope_key == "project:proj-1"
        assert prediction.reasoning_source == ReasoningSource.TEMPLATE
        assert prediction.reasoning == (
            "Based on current velocity of 0.50/day vs required 1.20/day, there is a 90% probability of delay."
        )

    def test_running_twice_leaves_one_active(self, store, fixed_now, fake_model):
        seed_project(store, fixed_now)
        engine = template_engine(store, fixed_now, fake_model)

        engine.predict_deadline_risk("proj-1")
        engine.predict_deadline_risk("proj-1")

        active = store.list_predictions(ORG, "proj-1", PredictionType.DEADLINE_RISK)
        everything = store.list_predictions(ORG, "proj-1", PredictionType.DEADLINE_RISK, active_only=False)
        assert len(active) == 1
        assert len(everything) == 2
        assert predictions_written_total.value({"type": "deadline_risk"}) == 2

    def test_critical_bottleneck_boosts_confidence(self, store, fixed_now, fake_model):
        seed_project(store, fixed_now)
        store.create_bottleneck(Bottleneck(
            organization_id=ORG,
            project_id="proj-1",
            type=BottleneckType.STUCK_REVIEW,
            severity=Severity.CRITICAL,
            title="PR #1 is stuck",
        ))
        prediction = template_engine(store, fixed_now, fake_model).predict_deadline_risk("proj-1")
        assert prediction.confidence == 1.0

    def test_model_reasoning_used_when_available(self, store, fixed_now, fake_model):
        seed_project(store, fixed_now)
        reasoning = ReasoningGenerator(client=fake_model(response="  Apollo will slip by two weeks.  "))
        engine = PredictionEngine(ORG, store=store, reasoning=reasoning, now=fixed_now)

        prediction = engine.predict_deadline_risk("proj-1")

        assert prediction.reasoning == "Apollo will slip by two weeks."
        assert prediction.reasoning_source == ReasoningSource.MODEL


class TestBurnoutPredictor:
    def test_medium_risk_user_gets_prediction(self, store, fixed_now, fake_model):
        seed_project(store, fixed_now)
        written = template_engine(store, fixed_now, fake_model).detect_burnout()

        assert len(written) == 1
        prediction = written[0]
        assert prediction.value["userId"] == "user-1"
        assert prediction.value["riskLevel"] == "medium"
        assert prediction.confidence == 0.3
        assert prediction.project_id is None

    def test_default_appends_history(self, store, fixed_now, fake_model):
        seed_project(store, fixed_now)
        engine = template_engine(store, fixed_now, fake_model)
        engine.detect_burnout()
        engine.detect_burnout()

        active = store.list_predictions(ORG, type=PredictionType.BURNOUT_INDICATOR)
        assert len(active) == 2

    def test_supersede_switch_keeps_one_per_user(self, store, fixed_now, fake_model):
        seed_project(store, fixed_now)
        engine = template_engine(store, fixed_now, fake_model, burnout_supersede=True)
        engine.detect_burnout()
        engine.detect_burnout()

        active = store.list_predictions(ORG, type=PredictionType.BURNOUT_INDICATOR)
        assert len(active) == 1
        assert active[0].scope_key == "user:user-1"


class TestVelocityAndScope:
    def test_project_velocity_forecast(self, store, fixed_now, fake_model):
        seed_project(store, fixed_now)
        prediction = template_engine(store, fixed_now, fake_model).forecast_velocity("proj-1")

        assert prediction.value["sampleSize"] == 15
        assert prediction.value["weeklyBuckets"] == [0, 2, 7, 6]
        assert prediction.value["predictedVelocity"] == 3.75
        assert prediction.scope_key == "project:proj-1"

    def test_organization_velocity_uses_org_scope(self, store, fixed_now, fake_model):
        seed_project(store, fixed_now)
        prediction = template_engine(store, fixed_now, fake_model).forecast_velocity()
        assert prediction.scope_key == f"organization:{ORG}"
        assert prediction.project_id is None

    def test_scope_creep_detected(self, store, fixed_now, fake_model):
        seed_project(store, fixed_now)
        prediction = template_engine(store, fixed_now, fake_model).detect_scope_creep("proj-1")

        assert prediction.value["tasksAtStart"] == 20
        assert prediction.value["currentTasks"] == 27
        assert prediction.value["severity"] == "moderate"
        assert prediction.confidence == 0.8


class TestRunAll:
    def test_all_four_written(self, store, fixed_now, fake_model):
        seed_project(store, fixed_now)
        reasoning = ReasoningGenerator(client=fake_model(error=ExternalServiceError("model down")))

        report = run_all_predictions(ORG, "proj-1", store=store, reasoning=reasoning, now=fixed_now)

        assert report.written == ["deadline_risk", "burnout_indicator", "velocity_forecast", "scope_creep"]
        assert report.failed == []
        assert report.predictions_written == 4

    def test_missing_dates_are_skipped_not_failed(self, store, fixed_now, fake_model):
        seed_project(store, fixed_now, target_date=False, start_date=False)
        report = template_engine(store, fixed_now, fake_model).run_all("proj-1")

        outcomes = {o.predictor: o for o in report.outcomes}
        assert outcomes["deadline_risk"].status == PredictorStatus.SKIPPED
        assert "no target date" in outcomes["deadline_risk"].reason
        assert outcomes["scope_creep"].status == PredictorStatus.SKIPPED
        assert report.failed == []
        assert store.list_predictions(ORG, "proj-1", PredictionType.DEADLINE_RISK) == []

    def test_without_project_only_org_predictors_run(self, store, fixed_now, fake_model):
        seed_project(store, fixed_now)
        report = template_engine(store, fixed_now, fake_model).run_all()

        assert report.skipped == ["deadline_risk", "scope_creep"]
        assert report.written == ["burnout_indicator", "velocity_forecast"]

    def test_empty_organization_skips_everything(self, store, fixed_now, fake_model):
        report = template_engine(store, fixed_now, fake_model).run_all()
        assert report.written == []
        assert report.failed == []

    def test_unknown_project_raises(self, store, fixed_now, fake_model):
        with pytest.raises(NotFoundError):
            template_engine(store, fixed_now, fake_model).run_all("missing")

    def test_one_failing_predictor_does_not_stop_the_rest(self, fixed_now, fake_model):
        class BrokenMetricsStore(InMemoryInsightStore):
            def list_behavioral_metrics(self, organization_id, user_id, since):
                raise RuntimeError("metrics table locked")

        store = BrokenMetricsStore()
        seed_project(store, fixed_now)
        report = template_engine(store, fixed_now, fake_model).run_all("proj-1")

        outcomes = {o.predictor: o for o in report.outcomes}
        assert outcomes["burnout_indicator"].status == PredictorStatus.FAILED
        assert outcomes["burnout_indicator"].error_code == "unexpected_error"
        assert report.written == ["deadline_risk", "velocity_forecast", "scope_creep"]
        assert predictor_failures_total.value({"predictor": "burnout_indicator"}) == 1
        assert len(store.list_predictions(ORG, "proj-1", PredictionType.DEADLINE_RISK)) == 1
