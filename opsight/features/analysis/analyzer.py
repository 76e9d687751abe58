"""
Autonomous repository analyzer.

One sequential pipeline per call:
1. prompt  - repository summaries, project context, already-tracked names
2. parse   - Parsed | Malformed | Unavailable; anything but Parsed switches to
             the heuristic plan
3. persist - projects, tasks, bottlenecks, predictions; every entity is
             written on its own so one failed write never aborts the batch

Caps apply to whichever plan was produced. An unreachable datastore
(DatastoreUnavailableError) propagates to the caller.
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, List, Optional, Tuple

from opsight.core.config import settings
from opsight.core.errors import (
    DatastoreUnavailableError,
    ExternalServiceError,
    ModelResponseError,
    PersistenceError,
    ValidationError,
)
from opsight.core.logging import log_event
from opsight.core.metrics import entities_created_total, fallback_total, persist_failures_total
from opsight.core.tracing import start_span
from opsight.features.analysis.dedup import DuplicateCheck, TitlePrefixMatcher
from opsight.features.analysis.fallback import generate_fallback_plan
from opsight.features.analysis.models import (
    AnalysisPlan,
    AnalysisResult,
    GeneratedBottleneck,
    GeneratedPrediction,
    GeneratedTask,
    GenerationPath,
    ProjectContext,
    SuggestedProject,
)
from opsight.features.analysis.parsing import Parsed, ParseOutcome, Unavailable, parse_model_response
from opsight.features.analysis.prompts import ANALYSIS_SYSTEM_INSTRUCTION, build_analysis_prompt
from opsight.features.insights.gateway import InsightStore, get_store
from opsight.features.insights.llm import ChatModel, LanguageModelClient
from opsight.models.repository import RepositoryAnalysis
from opsight.models.tracking import (
    Bottleneck,
    Prediction,
    Project,
    ProjectStatus,
    ReasoningSource,
    Task,
    TaskStatus,
)

LOGGER_NAME = "opsight.insights.analysis"
AUTO_LABEL = "auto-generated"

DEFAULT_PROJECT_NAME = "Engineering Health"
DEFAULT_PROJECT_KEY = "ENG"
DEFAULT_PROJECT_DESCRIPTION = "Auto-created project for tracking engineering health metrics"


class AutonomousAnalyzer:
    def __init__(
        self,
        organization_id: str,
        *,
        store: Optional[InsightStore] = None,
        client: Optional[ChatModel] = None,
        task_dedup: Optional[DuplicateCheck] = None,
        bottleneck_dedup: Optional[DuplicateCheck] = None,
        now: Optional[datetime] = None,
    ):
        self.organization_id = organization_id
        self.store = store or get_store()
        self.client = client or LanguageModelClient(model=settings.INSIGHTS_ANALYSIS_MODEL)
        self.task_dedup = task_dedup or TitlePrefixMatcher(settings.INSIGHTS_TASK_DEDUP_PREFIX)
        self.bottleneck_dedup = bottleneck_dedup or TitlePrefixMatcher(settings.INSIGHTS_BOTTLENECK_DEDUP_PREFIX)
        self.now = now or datetime.now(timezone.utc)
        self._linked_project: Optional[Project] = None

    # -- generation -------------------------------------------------------

    def request_plan(self, prompt: str) -> ParseOutcome:
        """One model call; never raises."""
        try:
            text = self.client.complete(
                ANALYSIS_SYSTEM_INSTRUCTION,
                prompt,
                max_tokens=settings.INSIGHTS_ANALYSIS_MAX_TOKENS,
                temperature=settings.INSIGHTS_ANALYSIS_TEMPERATURE,
            )
        except Exception as exc:
            return Unavailable(reason=getattr(exc, "message", None) or f"{type(exc).__name__}: {exc}")
        return parse_model_response(text)

    def generate_plan(
        self,
        analyses: List[RepositoryAnalysis],
        context: Optional[ProjectContext],
        existing_projects: Iterable[str],
        existing_tasks: Iterable[str],
    ) -> Tuple[AnalysisPlan, AnalysisResult]:
        """Produce the capped plan and an empty result recording the path taken."""
        if analyses:
            prompt = build_analysis_prompt(analyses, context, existing_projects, existing_tasks)
            outcome = self.request_plan(prompt)
        else:
            outcome = Unavailable(reason="no repositories to analyze")

        if isinstance(outcome, Parsed):
            plan = outcome.plan
            result = AnalysisResult(generation_path=GenerationPath.MODEL)
        else:
            fallback_total.inc(labels={"component": "analysis"})
            error_code = ExternalServiceError.code if outcome.kind == "unavailable" else ModelResponseError.code
            log_event(
                "warning",
                "insights.analysis.fallback",
                request_id=None,
                organization_id=self.organization_id,
                error_code=error_code,
                extra={"outcome": outcome.kind, "reason": outcome.reason},
                logger_name=LOGGER_NAME,
            )
            plan = generate_fallback_plan(analyses)
            result = AnalysisResult(
                generation_path=GenerationPath.HEURISTIC,
                degraded_reason=f"{outcome.kind}: {outcome.reason}",
            )

        plan = plan.capped(
            settings.INSIGHTS_MAX_TASKS,
            settings.INSIGHTS_MAX_BOTTLENECKS,
            settings.INSIGHTS_MAX_PREDICTIONS,
        )
        result.insights = list(plan.overall_insights)
        return plan, result

    # -- orchestration ----------------------------------------------------

    def analyze_and_generate(
        self,
        analyses: List[RepositoryAnalysis],
        *,
        project_context: Optional[ProjectContext] = None,
        target_project_id: Optional[str] = None,
    ) -> AnalysisResult:
        with start_span(
            "insights.analysis",
            {"organization_id": self.organization_id, "repositories": len(analyses)},
        ):
            if target_project_id is not None:
                target = self.store.get_project(self.organization_id, target_project_id)
                if target is None:
                    raise ValidationError(f"Target project {target_project_id} not found")
                self._linked_project = target

            projects = self.store.list_projects(self.organization_id)
            tasks = self.store.list_tasks(self.organization_id)

            with start_span("insights.analysis.generate", {"organization_id": self.organization_id}):
                plan, result = self.generate_plan(
                    analyses,
                    project_context,
                    [f"{p.name} ({p.key})" for p in projects],
                    [t.title for t in tasks],
                )

            with start_span(
                "insights.analysis.persist",
                {"organization_id": self.organization_id, "generation_path": result.generation_path.value},
            ):
                result.projects_created = self._create_projects(plan.suggested_projects, projects, result)
                result.tasks_created = self._create_tasks(plan.tasks, [t.title for t in tasks], result)
                result.bottlenecks_created = self._create_bottlenecks(plan.bottlenecks, result)
                result.predictions_created = self._create_predictions(plan.predictions, result)

        log_event(
            "info",
            "insights.analysis.complete",
            request_id=None,
            organization_id=self.organization_id,
            extra={
                "generation_path": result.generation_path.value,
                "tasks_created": result.tasks_created,
                "bottlenecks_created": result.bottlenecks_created,
                "predictions_created": result.predictions_created,
                "projects_created": result.projects_created,
                "persist_failures": result.persist_failures,
            },
            logger_name=LOGGER_NAME,
        )
        return result

    # -- persistence ------------------------------------------------------

    def _create_projects(self, suggested: List[SuggestedProject], existing: List[Project], result: AnalysisResult) -> int:
        keys = {p.key.upper() for p in existing}
        names = {p.name.lower() for p in existing}
        created = 0
        for suggestion in suggested:
            key = suggestion.key.upper()
            if key in keys or suggestion.name.lower() in names:
                continue
            project = Project(
                organization_id=self.organization_id,
                name=suggestion.name,
                key=key,
                description=suggestion.description,
                status=ProjectStatus.ACTIVE,
                created_at=self.now,
            )
            if self._persist("project", suggestion.name, lambda: self.store.create_project(project), result):
                keys.add(key)
                names.add(suggestion.name.lower())
                created += 1
        return created

    def _create_tasks(self, generated: List[GeneratedTask], existing_titles: List[str], result: AnalysisResult) -> int:
        titles = list(existing_titles)
        created = 0
        for item in generated:
            if self.task_dedup.is_duplicate(item.title, titles):
                log_event(
                    "debug",
                    "insights.analysis.duplicate_skipped",
                    request_id=None,
                    organization_id=self.organization_id,
                    extra={"kind": "task", "title": item.title},
                    logger_name=LOGGER_NAME,
                )
                continue

            def create(item=item):
                return self.store.create_task(Task(
                    organization_id=self.organization_id,
                    title=item.title,
                    description=item.description,
                    status=TaskStatus.BACKLOG,
                    priority=item.priority,
                    labels=[item.category, AUTO_LABEL],
                    created_at=self.now,
                    updated_at=self.now,
                ))

            if self._persist("task", item.title, create, result):
                titles.append(item.title)
                created += 1
        return created

    def _create_bottlenecks(self, generated: List[GeneratedBottleneck], result: AnalysisResult) -> int:
        if not generated:
            return 0
        titles = [b.title for b in self.store.list_active_bottlenecks(self.organization_id)]
        created = 0
        for item in generated:
            if self.bottleneck_dedup.is_duplicate(item.title, titles):
                continue

            def create(item=item):
                return self.store.create_bottleneck(Bottleneck(
                    organization_id=self.organization_id,
                    project_id=self._project_for_links().id,
                    type=item.type,
                    severity=item.severity,
                    title=item.title,
                    description=item.description,
                    impact=item.impact,
                    created_at=self.now,
                ))

            if self._persist("bottleneck", item.title, create, result):
                titles.append(item.title)
                created += 1
        return created

    def _create_predictions(self, generated: List[GeneratedPrediction], result: AnalysisResult) -> int:
        valid_until = self.now + timedelta(days=settings.INSIGHTS_PREDICTION_VALIDITY_DAYS)
        created = 0
        for item in generated:
            def create(item=item):
                return self.store.create_prediction(Prediction(
                    organization_id=self.organization_id,
                    project_id=self._project_for_links().id,
                    type=item.type,
                    confidence=item.confidence,
                    value=item.value,
                    reasoning=item.reasoning,
                    reasoning_source=ReasoningSource.ANALYZER,
                    scope_key=None,
                    valid_until=valid_until,
                    created_at=self.now,
                ))

            if self._persist("prediction", item.type.value, create, result):
                created += 1
        return created

    def _project_for_links(self) -> Project:
        """Explicit target, else the first active project, else the default project (created once)."""
        if self._linked_project is None:
            active = self.store.list_projects(self.organization_id, ProjectStatus.ACTIVE)
            if active:
                self._linked_project = active[0]
            else:
                self._linked_project = self.store.create_project(Project(
                    organization_id=self.organization_id,
                    name=DEFAULT_PROJECT_NAME,
                    key=DEFAULT_PROJECT_KEY,
                    description=DEFAULT_PROJECT_DESCRIPTION,
                    status=ProjectStatus.ACTIVE,
                    created_at=self.now,
                ))
        return self._linked_project

    def _persist(self, kind: str, label: str, create: Callable[[], object], result: AnalysisResult) -> bool:
        try:
            create()
        except DatastoreUnavailableError:
            raise
        except (PersistenceError, ValueError) as exc:
            persist_failures_total.inc(labels={"kind": kind})
            result.persist_failures[kind] = result.persist_failures.get(kind, 0) + 1
            log_event(
                "error",
                "insights.analysis.persist_failed",
                request_id=None,
                organization_id=self.organization_id,
                error_code=getattr(exc, "code", "invalid_entity"),
                extra={"kind": kind, "label": label[:80], "error": str(exc)},
                logger_name=LOGGER_NAME,
            )
            return False
        entities_created_total.inc(labels={"kind": kind})
        return True


def analyze_and_generate(
    repository_analyses: List[RepositoryAnalysis],
    organization_id: str,
    *,
    project_context: Optional[ProjectContext] = None,
    target_project_id: Optional[str] = None,
    store: Optional[InsightStore] = None,
    client: Optional[ChatModel] = None,
    now: Optional[datetime] = None,
) -> AnalysisResult:
    """Analyze a batch of repositories and persist what the analysis proposes."""
    analyzer = AutonomousAnalyzer(organization_id, store=store, client=client, now=now)
    return analyzer.analyze_and_generate(
        repository_analyses,
        project_context=project_context,
        target_project_id=target_project_id,
    )
