"""
Supersession: replace the active prediction for a (type, scope) in one step.

Scoped predictions go through InsightStore.supersede_prediction, which
deactivates the previous active row and inserts the new one atomically.
Unscoped predictions (burnout history, analyzer output) are appended.
"""

from typing import Optional

from opsight.core.logging import log_event
from opsight.core.metrics import predictions_written_total
from opsight.features.insights.gateway import InsightStore
from opsight.models.tracking import Prediction


def project_scope(project_id: str) -> str:
    return f"project:{project_id}"


def organization_scope(organization_id: str) -> str:
    return f"organization:{organization_id}"


def user_scope(user_id: str) -> str:
    return f"user:{user_id}"


class SupersessionWriter:
    def __init__(self, store: InsightStore):
        self.store = store

    def write(self, prediction: Prediction) -> Prediction:
        if prediction.scope_key:
            saved = self.store.supersede_prediction(prediction)
        else:
            saved = self.store.create_prediction(prediction)
        self._record(saved, superseded=bool(prediction.scope_key))
        return saved

    def append(self, prediction: Prediction) -> Prediction:
        """Insert without touching earlier predictions of the same type."""
        saved = self.store.create_prediction(prediction.model_copy(update={"scope_key": None}))
        self._record(saved, superseded=False)
        return saved

    @staticmethod
    def _record(prediction: Prediction, *, superseded: bool, request_id: Optional[str] = None) -> None:
        predictions_written_total.inc(labels={"type": prediction.type.value})
        log_event(
            "info",
            "insights.prediction.written",
            request_id=request_id,
            organization_id=prediction.organization_id,
            project_id=prediction.project_id,
            extra={
                "prediction_type": prediction.type.value,
                "prediction_id": prediction.id,
                "confidence": prediction.confidence,
                "scope_key": prediction.scope_key,
                "superseded": superseded,
                "reasoning_source": prediction.reasoning_source.value,
            },
            logger_name="opsight.insights.supersession",
        )
