"""
Heuristic analysis plan.

Pure function of the repository analyses: no network, no datastore, same
input gives the same plan. Used whenever the model path is Malformed or
Unavailable. Caps are applied by the analyzer, not here.
"""

import re
from typing import Callable, Dict, List

from opsight.features.analysis.models import (
    AnalysisPlan,
    GeneratedBottleneck,
    GeneratedPrediction,
    GeneratedTask,
    SuggestedProject,
)
from opsight.models.repository import RepositoryAnalysis
from opsight.models.tracking import BottleneckType, PredictionType, Severity, TaskPriority

STALE_PR_HIGH_SEVERITY = 3
LOW_COMPLETENESS = 50
CRITICAL_COMPLETENESS = 30
FALLBACK_PREDICTION_CONFIDENCE = 0.7
TODO_INSIGHT_THRESHOLD = 10

_TESTING_PATTERN = re.compile(r"\btest(s|ing)?\b")
_CI_PATTERN = re.compile(r"\bci\b|ci/cd|continuous integration|pipeline")


def _is_testing(element: str) -> bool:
    return bool(_TESTING_PATTERN.search(element))


def _is_ci(element: str) -> bool:
    return bool(_CI_PATTERN.search(element))


def _is_readme(element: str) -> bool:
    return "readme" in element


def _testing_task(analysis: RepositoryAnalysis) -> GeneratedTask:
    return GeneratedTask(
        title=f"Add comprehensive test suite for {analysis.repo.name}",
        description=(
            f"The repository {analysis.repo.display_name} is missing tests. Implement unit and "
            "integration tests to ensure code quality and prevent regressions."
        ),
        priority=TaskPriority.HIGH,
        category="testing",
        source=analysis.repo.display_name,
    )


def _ci_task(analysis: RepositoryAnalysis) -> GeneratedTask:
    return GeneratedTask(
        title=f"Set up CI/CD pipeline for {analysis.repo.name}",
        description=(
            f"Configure continuous integration for {analysis.repo.display_name} so tests and "
            "linting run automatically on every push."
        ),
        priority=TaskPriority.MEDIUM,
        category="infrastructure",
        source=analysis.repo.display_name,
    )


def _readme_task(analysis: RepositoryAnalysis) -> GeneratedTask:
    return GeneratedTask(
        title=f"Create README documentation for {analysis.repo.name}",
        description=(
            f"Add a README to {analysis.repo.display_name} covering the project overview, "
            "installation, usage examples and contribution guidelines."
        ),
        priority=TaskPriority.MEDIUM,
        category="documentation",
        source=analysis.repo.display_name,
    )


# Category order is the order tasks are emitted for a repository
TASK_CATEGORIES: List[tuple] = [
    ("testing", _is_testing, _testing_task),
    ("infrastructure", _is_ci, _ci_task),
    ("documentation", _is_readme, _readme_task),
]


def recognized_categories(missing_elements: List[str]) -> List[str]:
    """Categories present in missing_elements, each at most once, in TASK_CATEGORIES order."""
    lowered = [element.lower() for element in missing_elements]
    return [
        category for category, matches, _ in TASK_CATEGORIES
        if any(matches(element) for element in lowered)
    ]


def _tasks_for(analysis: RepositoryAnalysis) -> List[GeneratedTask]:
    builders: Dict[str, Callable[[RepositoryAnalysis], GeneratedTask]] = {
        category: build for category, _, build in TASK_CATEGORIES
    }
    return [builders[c](analysis) for c in recognized_categories(analysis.completeness.missing_elements)]


def _stale_pr_bottleneck(analysis: RepositoryAnalysis) -> GeneratedBottleneck:
    stale = analysis.prs.stale
    full_name = analysis.repo.display_name
    return GeneratedBottleneck(
        type=BottleneckType.REVIEW_DELAY,
        severity=Severity.HIGH if stale > STALE_PR_HIGH_SEVERITY else Severity.MEDIUM,
        title=f"{stale} stale PRs blocking development in {analysis.repo.name}",
        description=(
            f"{stale} pull requests in {full_name} have been open for more than 7 days without merge. "
            "This is blocking feature delivery and causing code divergence."
        ),
        impact=f"Delaying {stale} features/fixes from reaching production. Risk of merge conflicts increasing daily.",
    )


def _completeness_prediction(analysis: RepositoryAnalysis) -> GeneratedPrediction:
    score = analysis.completeness.score
    full_name = analysis.repo.display_name
    return GeneratedPrediction(
        type=PredictionType.DEADLINE_RISK,
        confidence=FALLBACK_PREDICTION_CONFIDENCE,
        reasoning=(
            f"{full_name} has a low completeness score ({score:g}%) indicating significant technical debt. "
            "This typically results in slower feature delivery."
        ),
        value={
            "riskLevel": "critical" if score < CRITICAL_COMPLETENESS else "high",
            "repository": full_name,
            "estimatedDelayDays": round((100 - score) / 10),
        },
    )


def suggest_project(analysis: RepositoryAnalysis) -> SuggestedProject:
    name = analysis.repo.name
    key = re.sub(r"[^A-Z]", "", name.upper())[:4] or "PROJ"
    return SuggestedProject(
        name=name.replace("-", " ").title(),
        key=key,
        description=analysis.repo.description,
        based_on_repo=analysis.repo.display_name,
    )


def _insights(analyses: List[RepositoryAnalysis]) -> List[str]:
    count = len(analyses)
    average = round(sum(a.completeness.score for a in analyses) / count) if count else 0
    open_prs = sum(a.prs.open for a in analyses)
    stale_prs = sum(a.prs.stale for a in analyses)
    open_issues = sum(a.issues.open for a in analyses)
    bugs = sum(a.issues.bug_count for a in analyses)
    stale_issues = sum(a.issues.stale for a in analyses)

    insights = [f"Analyzed {count} repositories with an average completeness score of {average}%"]
    if open_prs > 0:
        insights.append(f"{open_prs} pull requests are open ({stale_prs} are stale >7 days)")
    if open_issues > 0:
        insights.append(f"{open_issues} issues are open ({bugs} bugs, {stale_issues} stale >30 days)")
    for analysis in analyses:
        todos = analysis.code_insights.total_todos
        if todos > TODO_INSIGHT_THRESHOLD:
            insights.append(f"{analysis.repo.display_name} has {todos} TODO comments that need attention")
    return insights


def generate_fallback_plan(analyses: List[RepositoryAnalysis]) -> AnalysisPlan:
    tasks: List[GeneratedTask] = []
    bottlenecks: List[GeneratedBottleneck] = []
    predictions: List[GeneratedPrediction] = []
    projects: List[SuggestedProject] = []
    seen_repos = set()

    for analysis in analyses:
        tasks.extend(_tasks_for(analysis))
        if analysis.prs.stale > 0:
            bottlenecks.append(_stale_pr_bottleneck(analysis))
        if analysis.completeness.score < LOW_COMPLETENESS:
            predictions.append(_completeness_prediction(analysis))
        full_name = analysis.repo.display_name
        if analysis.repo.description and full_name not in seen_repos:
            seen_repos.add(full_name)
            projects.append(suggest_project(analysis))

    return AnalysisPlan(
        tasks=tasks,
        bottlenecks=bottlenecks,
        predictions=predictions,
        suggested_projects=projects,
        overall_insights=_insights(analyses),
    )
