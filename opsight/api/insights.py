"""
Insights API

Triggers for the prediction, bottleneck and analysis runs plus a read of
active predictions. The organization is passed in the X-Org-Id header.
Runs execute inline; schedulers use opsight.queue_client instead.
"""

from typing import Annotated, Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, Query
from pydantic import BaseModel, Field

from opsight.core.tracing import start_span
from opsight.features.analysis.analyzer import analyze_and_generate
from opsight.features.analysis.models import ProjectContext
from opsight.features.insights.bottlenecks import detect_bottlenecks
from opsight.features.insights.gateway import InsightStore, get_store
from opsight.features.insights.predictors import run_all_predictions
from opsight.models.repository import RepositoryAnalysis
from opsight.models.tracking import PredictionType

router = APIRouter(prefix="/api/insights", tags=["insights"])

OrgId = Annotated[str, Header(alias="X-Org-Id", min_length=1)]


class RunPredictionsRequest(BaseModel):
    project_id: Optional[str] = None


class AnalysisRequest(BaseModel):
    repository_analyses: List[RepositoryAnalysis] = Field(..., alias="repositoryAnalyses")
    project_context: Optional[ProjectContext] = Field(None, alias="projectContext")
    target_project_id: Optional[str] = Field(None, alias="targetProjectId")

    model_config = {"populate_by_name": True}


def insight_store() -> InsightStore:
    return get_store()


@router.post("/predictions/run")
def run_predictions(
    organization_id: OrgId,
    store: Annotated[InsightStore, Depends(insight_store)],
    body: Optional[RunPredictionsRequest] = None,
) -> Dict[str, Any]:
    project_id = body.project_id if body else None
    with start_span("api.insights.predictions.run", {"organization_id": organization_id, "project_id": project_id}):
        report = run_all_predictions(organization_id, project_id, store=store)
    return report.model_dump(mode="json")


@router.get("/predictions")
def list_predictions(
    organization_id: OrgId,
    store: Annotated[InsightStore, Depends(insight_store)],
    project_id: Optional[str] = Query(None),
    type: Optional[PredictionType] = Query(None),
    include_inactive: bool = Query(False),
) -> Dict[str, Any]:
    predictions = store.list_predictions(
        organization_id,
        project_id=project_id,
        type=type,
        active_only=not include_inactive,
    )
    return {"predictions": [p.model_dump(mode="json") for p in predictions]}


@router.post("/bottlenecks/detect")
def run_bottleneck_detection(
    organization_id: OrgId,
    store: Annotated[InsightStore, Depends(insight_store)],
) -> Dict[str, Any]:
    with start_span("api.insights.bottlenecks.detect", {"organization_id": organization_id}):
        report = detect_bottlenecks(organization_id, store=store)
    return report.model_dump(mode="json")


@router.post("/analysis")
def run_analysis(
    request: AnalysisRequest,
    organization_id: OrgId,
    store: Annotated[InsightStore, Depends(insight_store)],
) -> Dict[str, Any]:
    with start_span(
        "api.insights.analysis",
        {"organization_id": organization_id, "repositories": len(request.repository_analyses)},
    ):
        result = analyze_and_generate(
            request.repository_analyses,
            organization_id,
            project_context=request.project_context,
            target_project_id=request.target_project_id,
            store=store,
        )
    return result.to_dict()
