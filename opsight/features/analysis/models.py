"""
Autonomous analysis - Data Models

Entities proposed by the language model (or the heuristic fallback) before
persistence, plus the result returned to callers. Field names accept the
model's camelCase JSON.
"""

from enum import Enum
from typing import Annotated, Any, Dict, List, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field
from pydantic.alias_generators import to_camel

from opsight.models.tracking import (
    BottleneckType,
    PredictionType,
    Severity,
    TaskPriority,
    normalize_enum_value,
)

Priority = Annotated[TaskPriority, BeforeValidator(normalize_enum_value)]
GeneratedBottleneckType = Annotated[BottleneckType, BeforeValidator(normalize_enum_value)]
GeneratedSeverity = Annotated[Severity, BeforeValidator(normalize_enum_value)]
GeneratedPredictionType = Annotated[PredictionType, BeforeValidator(normalize_enum_value)]


class _Generated(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class GeneratedTask(_Generated):
    title: str = Field(..., min_length=1)
    description: str = ""
    priority: Priority = TaskPriority.MEDIUM
    category: str = "general"
    source: Optional[str] = None


class GeneratedBottleneck(_Generated):
    type: GeneratedBottleneckType
    severity: GeneratedSeverity = Severity.MEDIUM
    title: str = Field(..., min_length=1)
    description: str = ""
    impact: Optional[str] = None


class GeneratedPrediction(_Generated):
    type: GeneratedPredictionType
    confidence: float = Field(..., ge=0.0, le=1.0)
    reasoning: str = ""
    value: Dict[str, Any] = Field(default_factory=dict)


class SuggestedProject(_Generated):
    name: str = Field(..., min_length=1)
    key: str = Field(..., min_length=1)
    description: Optional[str] = None
    based_on_repo: Optional[str] = None


class AnalysisPlan(_Generated):
    """Everything one generation pass proposes, before dedup and persistence."""
    tasks: List[GeneratedTask] = Field(default_factory=list)
    bottlenecks: List[GeneratedBottleneck] = Field(default_factory=list)
    predictions: List[GeneratedPrediction] = Field(default_factory=list)
    suggested_projects: List[SuggestedProject] = Field(default_factory=list)
    overall_insights: List[str] = Field(default_factory=list)

    def capped(self, max_tasks: int, max_bottlenecks: int, max_predictions: int) -> "AnalysisPlan":
        return self.model_copy(update={
            "tasks": self.tasks[:max_tasks],
            "bottlenecks": self.bottlenecks[:max_bottlenecks],
            "predictions": self.predictions[:max_predictions],
        })


class ProjectMilestone(_Generated):
    name: str
    target_date: Optional[str] = None
    status: Optional[str] = None


class ProjectContext(_Generated):
    """Free-text description of what the organization is building."""
    building_description: str = ""
    goals: List[str] = Field(default_factory=list)
    tech_stack: List[str] = Field(default_factory=list)
    milestones: List[ProjectMilestone] = Field(default_factory=list)


class GenerationPath(str, Enum):
    MODEL = "model"
    HEURISTIC = "heuristic"


class AnalysisResult(BaseModel):
    """
    Counts of entities created by one analyze_and_generate call.

    generation_path tells a heuristic-only run apart from a model-curated
    one; degraded_reason says why the model path was abandoned.
    """
    tasks_created: int = 0
    bottlenecks_created: int = 0
    predictions_created: int = 0
    projects_created: int = 0
    insights: List[str] = Field(default_factory=list)
    generation_path: GenerationPath = GenerationPath.MODEL
    degraded_reason: Optional[str] = None
    persist_failures: Dict[str, int] = Field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tasksCreated": self.tasks_created,
            "bottlenecksCreated": self.bottlenecks_created,
            "predictionsCreated": self.predictions_created,
            "projectsCreated": self.projects_created,
            "insights": list(self.insights),
            "generationPath": self.generation_path.value,
            "degradedReason": self.degraded_reason,
            "persistFailures": dict(self.persist_failures),
        }
