"""
Natural-language reasoning for computed predictions.

One model call per prediction; any failure falls back to a fixed template
keyed by prediction type. generate() never raises.
"""

import json
import logging
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel, ConfigDict

from opsight.core.config import settings
from opsight.core.logging import log_event
from opsight.core.metrics import fallback_total
from opsight.features.insights.llm import ChatModel, LanguageModelClient
from opsight.models.tracking import PredictionType, ReasoningSource

SYSTEM_INSTRUCTION = (
    "You are a project management AI assistant. Provide concise 2-3 sentence insights "
    "in plain language. Be specific and actionable. Do not use markdown formatting."
)

_TYPE_LABELS = {
    PredictionType.DEADLINE_RISK: "deadline risk",
    PredictionType.BURNOUT_INDICATOR: "burnout indicator",
    PredictionType.VELOCITY_FORECAST: "velocity forecast",
    PredictionType.SCOPE_CREEP: "scope creep",
}


class Reasoning(BaseModel):
    text: str
    source: ReasoningSource

    model_config = ConfigDict(frozen=True)


def _number(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _deadline_template(payload: Dict[str, Any]) -> str:
    historical = _number(payload.get("historicalVelocity"))
    required = _number(payload.get("requiredVelocity"))
    probability = round(_number(payload.get("probability")) * 100)
    return (
        f"Based on current velocity of {historical:.2f}/day vs required {required:.2f}/day, "
        f"there is a {probability}% probability of delay."
    )


def _burnout_template(payload: Dict[str, Any]) -> str:
    factors = payload.get("factors") or []
    return (
        f"Elevated workload detected with {len(factors)} contributing factors. "
        "Consider redistributing tasks."
    )


def _velocity_template(payload: Dict[str, Any]) -> str:
    trend = payload.get("trend") or "stable"
    predicted = _number(payload.get("predictedVelocity"))
    return f"Team velocity is {trend} with a predicted rate of {predicted:.1f} tasks per week."


def _scope_template(payload: Dict[str, Any]) -> str:
    increase = round(_number(payload.get("percentageIncrease")))
    return f"Scope has increased by {increase}% since project start, indicating potential scope creep."


TEMPLATES: Dict[PredictionType, Callable[[Dict[str, Any]], str]] = {
    PredictionType.DEADLINE_RISK: _deadline_template,
    PredictionType.BURNOUT_INDICATOR: _burnout_template,
    PredictionType.VELOCITY_FORECAST: _velocity_template,
    PredictionType.SCOPE_CREEP: _scope_template,
}


def template_reasoning(prediction_type: PredictionType, payload: Dict[str, Any]) -> Reasoning:
    return Reasoning(text=TEMPLATES[prediction_type](payload), source=ReasoningSource.TEMPLATE)


class ReasoningGenerator:
    def __init__(self, client: Optional[ChatModel] = None):
        self.client = client or LanguageModelClient(model=settings.INSIGHTS_LLM_MODEL)

    def generate(
        self,
        prediction_type: PredictionType,
        payload: Dict[str, Any],
        *,
        organization_id: Optional[str] = None,
        project_id: Optional[str] = None,
    ) -> Reasoning:
        label = _TYPE_LABELS[prediction_type]
        message = (
            f"Explain this {label} prediction in plain language for a project manager: "
            f"{json.dumps(payload, default=str)}"
        )
        try:
            text = self.client.complete(
                SYSTEM_INSTRUCTION,
                message,
                max_tokens=settings.INSIGHTS_REASONING_MAX_TOKENS,
                temperature=settings.INSIGHTS_REASONING_TEMPERATURE,
            )
            return Reasoning(text=text.strip(), source=ReasoningSource.MODEL)
        except Exception as exc:
            # Any model failure degrades to the template; prose is best-effort
            fallback_total.inc(labels={"component": "reasoning"})
            log_event(
                "warning",
                "insights.reasoning.fallback",
                request_id=None,
                organization_id=organization_id,
                project_id=project_id,
                error_code=getattr(exc, "code", "unexpected_error"),
                extra={"prediction_type": prediction_type.value, "reason": str(exc)},
                logger_name="opsight.insights.reasoning",
            )
            return template_reasoning(prediction_type, payload)
