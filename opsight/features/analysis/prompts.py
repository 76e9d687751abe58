"""Prompt for the repository analysis pass.

The model is asked for one JSON document with five top-level arrays; enum
values are spelled out so the response can be validated item by item.
"""

import json
from typing import Iterable, List, Optional

from opsight.features.analysis.models import ProjectContext
from opsight.models.repository import RepositoryAnalysis

ANALYSIS_SYSTEM_INSTRUCTION = (
    "You are an AI engineering manager analyzing software repositories. "
    "Respond with a single JSON document and nothing else."
)

RESPONSE_SHAPE = """```json
{
  "tasks": [{"title": "...", "description": "...", "priority": "high", "category": "testing", "source": "owner/repo"}],
  "bottlenecks": [{"type": "review_delay", "severity": "high", "title": "...", "description": "...", "impact": "..."}],
  "predictions": [{"type": "deadline_risk", "confidence": 0.8, "reasoning": "...", "value": {"riskLevel": "high"}}],
  "suggestedProjects": [{"name": "...", "key": "ABCD", "description": "...", "basedOnRepo": "owner/repo"}],
  "overallInsights": ["insight 1", "insight 2"]
}
```"""

FIELD_RULES = [
    "priority: one of low, medium, high, urgent",
    "category: one of testing, infrastructure, documentation, bug, feature, tech_debt",
    "bottleneck type: one of stuck_review, stale_task, dependency_block, review_delay, ci_failure",
    "severity: one of low, medium, high, critical",
    "prediction type: one of deadline_risk, burnout_indicator, velocity_forecast, scope_creep",
    "confidence: a number between 0 and 1",
]


def _context_block(context: Optional[ProjectContext]) -> str:
    if context is None:
        return ""
    lines = ["## Project Context", f"Building: {context.building_description}"]
    if context.goals:
        lines.append(f"Goals: {', '.join(context.goals)}")
    if context.tech_stack:
        lines.append(f"Tech Stack: {', '.join(context.tech_stack)}")
    for milestone in context.milestones:
        due = f" (target {milestone.target_date})" if milestone.target_date else ""
        lines.append(f"Milestone: {milestone.name}{due}")
    return "\n".join(lines) + "\n\n"


def _existing_block(project_names: Iterable[str], task_titles: Iterable[str]) -> str:
    projects = sorted(set(project_names))
    titles = sorted(set(task_titles))
    if not projects and not titles:
        return ""
    return (
        "## Already Tracked (do not propose duplicates)\n"
        f"Projects: {json.dumps(projects)}\n"
        f"Tasks: {json.dumps(titles)}\n\n"
    )


def build_analysis_prompt(
    analyses: List[RepositoryAnalysis],
    context: Optional[ProjectContext] = None,
    existing_projects: Iterable[str] = (),
    existing_tasks: Iterable[str] = (),
) -> str:
    summaries = [analysis.summary() for analysis in analyses]
    rules = "\n".join(f"- {rule}" for rule in FIELD_RULES)
    return (
        f"{_context_block(context)}"
        "## Repository Data\n"
        f"{json.dumps(summaries, indent=2)}\n\n"
        f"{_existing_block(existing_projects, existing_tasks)}"
        "Generate actionable insights grounded in the data above. Return JSON only, in this shape:\n"
        f"{RESPONSE_SHAPE}\n\n"
        f"Field rules:\n{rules}"
    )
