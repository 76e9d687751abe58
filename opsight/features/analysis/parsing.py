"""
Model response parsing as a tagged result.

    Parsed(plan)        usable document (malformed items already dropped)
    Malformed(reason)   text came back but is not a usable document
    Unavailable(reason) no text at all (no key, transport error, bad body)

Exactly one of the three is produced per attempt; callers branch on `kind`.
"""

import json
import re
from typing import Any, Dict, List, Literal, Type, Union

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from opsight.features.analysis.models import (
    AnalysisPlan,
    GeneratedBottleneck,
    GeneratedPrediction,
    GeneratedTask,
    SuggestedProject,
)

FENCED_JSON = re.compile(r"```json\n?([\s\S]*?)\n?```")

SECTIONS: Dict[str, Type[BaseModel]] = {
    "tasks": GeneratedTask,
    "bottlenecks": GeneratedBottleneck,
    "predictions": GeneratedPrediction,
    "suggestedProjects": SuggestedProject,
}
INSIGHTS_SECTION = "overallInsights"


class Parsed(BaseModel):
    kind: Literal["parsed"] = "parsed"
    plan: AnalysisPlan
    dropped_items: int = 0

    model_config = ConfigDict(frozen=True)


class Malformed(BaseModel):
    kind: Literal["malformed"] = "malformed"
    reason: str

    model_config = ConfigDict(frozen=True)


class Unavailable(BaseModel):
    kind: Literal["unavailable"] = "unavailable"
    reason: str

    model_config = ConfigDict(frozen=True)


ParseOutcome = Union[Parsed, Malformed, Unavailable]


def _validate_items(raw_items: Any, model: Type[BaseModel]) -> tuple:
    if not isinstance(raw_items, list):
        return [], 0
    valid: List[BaseModel] = []
    dropped = 0
    for item in raw_items:
        try:
            valid.append(model.model_validate(item))
        except PydanticValidationError:
            dropped += 1
    return valid, dropped


def plan_from_document(document: Dict[str, Any]) -> Parsed:
    """Build a plan from a decoded document, dropping items that fail validation."""
    sections: Dict[str, List[Any]] = {}
    dropped = 0
    for name, model in SECTIONS.items():
        sections[name], section_dropped = _validate_items(document.get(name), model)
        dropped += section_dropped

    insights: List[str] = []
    raw_insights = document.get(INSIGHTS_SECTION)
    if isinstance(raw_insights, list):
        for item in raw_insights:
            if isinstance(item, str) and item.strip():
                insights.append(item.strip())
            else:
                dropped += 1

    plan = AnalysisPlan(
        tasks=sections["tasks"],
        bottlenecks=sections["bottlenecks"],
        predictions=sections["predictions"],
        suggested_projects=sections["suggestedProjects"],
        overall_insights=insights,
    )
    return Parsed(plan=plan, dropped_items=dropped)


def parse_model_response(text: str) -> Union[Parsed, Malformed]:
    """
    Fenced ```json block first, the whole text second.

    A decoded value that is not an object holding at least one of the five
    arrays is Malformed.
    """
    if not text or not text.strip():
        return Malformed(reason="empty response")

    match = FENCED_JSON.search(text)
    candidate = match.group(1) if match else text.strip()
    try:
        document = json.loads(candidate)
    except json.JSONDecodeError as exc:
        source = "fenced block" if match else "response body"
        return Malformed(reason=f"invalid JSON in {source}: {exc.msg}")

    if not isinstance(document, dict):
        return Malformed(reason=f"expected a JSON object, got {type(document).__name__}")

    expected = list(SECTIONS) + [INSIGHTS_SECTION]
    if not any(isinstance(document.get(name), list) for name in expected):
        return Malformed(reason="response has none of the expected arrays")

    return plan_from_document(document)
