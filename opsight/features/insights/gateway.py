"""
Datastore gateway for the insight engine.

Every operation is scoped by organization id. Two implementations share the
InsightStore contract:
- InMemoryInsightStore: default when no DATABASE_URL is configured (dev, tests)
- SqlInsightStore: SQLAlchemy Core over the tables in core/database.py

Write failures raise PersistenceError (one entity lost); an unreachable
datastore raises DatastoreUnavailableError.
"""

import logging
import os
import threading
from datetime import datetime
from typing import Dict, List, Optional, Protocol

from opsight.core.config import settings
from opsight.core.errors import PersistenceError
from opsight.models.tracking import (
    BehavioralMetric,
    Bottleneck,
    BottleneckStatus,
    Prediction,
    PredictionType,
    Project,
    ProjectStatus,
    PullRequest,
    PullRequestStatus,
    Task,
    TaskFilter,
    User,
)

logger = logging.getLogger("opsight.insights.gateway")


class InsightStore(Protocol):
    def get_project(self, organization_id: str, project_id: str) -> Optional[Project]: ...

    def list_projects(self, organization_id: str, status: Optional[ProjectStatus] = None) -> List[Project]: ...

    def create_project(self, project: Project) -> Project: ...

    def create_user(self, user: User) -> User: ...

    def list_users(self, organization_id: str) -> List[User]: ...

    def list_tasks(self, organization_id: str, task_filter: Optional[TaskFilter] = None) -> List[Task]: ...

    def create_task(self, task: Task) -> Task: ...

    def create_pull_request(self, pull_request: PullRequest) -> PullRequest: ...

    def list_pull_requests(self, organization_id: str, status: Optional[PullRequestStatus] = None) -> List[PullRequest]: ...

    def list_active_bottlenecks(self, organization_id: str, project_id: Optional[str] = None) -> List[Bottleneck]: ...

    def create_bottleneck(self, bottleneck: Bottleneck) -> Bottleneck: ...

    def upsert_bottleneck(self, bottleneck: Bottleneck) -> Bottleneck: ...

    def resolve_bottlenecks(self, organization_id: str, id_prefix: str, keep_ids: List[str], now: datetime) -> int: ...

    def record_behavioral_metric(self, metric: BehavioralMetric) -> BehavioralMetric: ...

    def list_behavioral_metrics(self, organization_id: str, user_id: str, since: datetime) -> List[BehavioralMetric]: ...

    def list_predictions(
        self,
        organization_id: str,
        project_id: Optional[str] = None,
        type: Optional[PredictionType] = None,
        active_only: bool = True,
    ) -> List[Prediction]: ...

    def create_prediction(self, prediction: Prediction) -> Prediction: ...

    def deactivate_predictions(self, organization_id: str, type: PredictionType, scope_key: str) -> int: ...

    def supersede_prediction(self, prediction: Prediction) -> Prediction: ...


class InMemoryInsightStore:
    """
    Process-local store.

    A single re-entrant lock guards all collections so supersession
    (deactivate + insert) is atomic with respect to other writers.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._projects: Dict[str, Project] = {}
        self._users: Dict[str, User] = {}
        self._tasks: Dict[str, Task] = {}
        self._pull_requests: Dict[str, PullRequest] = {}
        self._bottlenecks: Dict[str, Bottleneck] = {}
        self._metrics: Dict[str, BehavioralMetric] = {}
        self._predictions: Dict[str, Prediction] = {}

    # -- projects / users -------------------------------------------------

    def get_project(self, organization_id: str, project_id: str) -> Optional[Project]:
        with self._lock:
            project = self._projects.get(project_id)
        if project is None or project.organization_id != organization_id:
            return None
        return project

    def list_projects(self, organization_id: str, status: Optional[ProjectStatus] = None) -> List[Project]:
        with self._lock:
            found = [
                p for p in self._projects.values()
                if p.organization_id == organization_id and (status is None or p.status == status)
            ]
        return sorted(found, key=lambda p: (p.created_at, p.id))

    def create_project(self, project: Project) -> Project:
        with self._lock:
            self._insert(self._projects, project, "project")
        return project

    def create_user(self, user: User) -> User:
        with self._lock:
            self._insert(self._users, user, "user")
        return user

    def list_users(self, organization_id: str) -> List[User]:
        with self._lock:
            found = [u for u in self._users.values() if u.organization_id == organization_id]
        return sorted(found, key=lambda u: u.id)

    # -- tasks / pull requests --------------------------------------------

    def list_tasks(self, organization_id: str, task_filter: Optional[TaskFilter] = None) -> List[Task]:
        criteria = task_filter or TaskFilter()
        with self._lock:
            found = [
                t for t in self._tasks.values()
                if t.organization_id == organization_id and criteria.matches(t)
            ]
        return sorted(found, key=lambda t: (t.created_at, t.id))

    def create_task(self, task: Task) -> Task:
        with self._lock:
            self._insert(self._tasks, task, "task")
        return task

    def create_pull_request(self, pull_request: PullRequest) -> PullRequest:
        with self._lock:
            self._insert(self._pull_requests, pull_request, "pull request")
        return pull_request

    def list_pull_requests(self, organization_id: str, status: Optional[PullRequestStatus] = None) -> List[PullRequest]:
        with self._lock:
            found = [
                pr for pr in self._pull_requests.values()
                if pr.organization_id == organization_id and (status is None or pr.status == status)
            ]
        return sorted(found, key=lambda pr: pr.number)

    # -- bottlenecks ------------------------------------------------------

    def list_active_bottlenecks(self, organization_id: str, project_id: Optional[str] = None) -> List[Bottleneck]:
        with self._lock:
            found = [
                b for b in self._bottlenecks.values()
                if b.organization_id == organization_id
                and b.status == BottleneckStatus.ACTIVE
                and (project_id is None or b.project_id == project_id)
            ]
        return sorted(found, key=lambda b: (b.created_at, b.id))

    def create_bottleneck(self, bottleneck: Bottleneck) -> Bottleneck:
        with self._lock:
            self._insert(self._bottlenecks, bottleneck, "bottleneck")
        return bottleneck

    def upsert_bottleneck(self, bottleneck: Bottleneck) -> Bottleneck:
        with self._lock:
            existing = self._bottlenecks.get(bottleneck.id)
            if existing is None:
                self._bottlenecks[bottleneck.id] = bottleneck
                return bottleneck
            updated = existing.model_copy(update={
                "severity": bottleneck.severity,
                "title": bottleneck.title,
                "description": bottleneck.description,
                "impact": bottleneck.impact,
                "status": BottleneckStatus.ACTIVE,
                "resolved_at": None,
            })
            self._bottlenecks[bottleneck.id] = updated
            return updated

    def resolve_bottlenecks(self, organization_id: str, id_prefix: str, keep_ids: List[str], now: datetime) -> int:
        keep = set(keep_ids)
        resolved = 0
        with self._lock:
            for bottleneck_id, b in list(self._bottlenecks.items()):
                if (
                    b.organization_id == organization_id
                    and b.status == BottleneckStatus.ACTIVE
                    and bottleneck_id.startswith(id_prefix)
                    and bottleneck_id not in keep
                ):
                    self._bottlenecks[bottleneck_id] = b.model_copy(
                        update={"status": BottleneckStatus.RESOLVED, "resolved_at": now}
                    )
                    resolved += 1
        return resolved

    # -- behavioral metrics -----------------------------------------------

    def record_behavioral_metric(self, metric: BehavioralMetric) -> BehavioralMetric:
        with self._lock:
            self._insert(self._metrics, metric, "behavioral metric")
        return metric

    def list_behavioral_metrics(self, organization_id: str, user_id: str, since: datetime) -> List[BehavioralMetric]:
        with self._lock:
            found = [
                m for m in self._metrics.values()
                if m.organization_id == organization_id and m.user_id == user_id and m.date >= since
            ]
        return sorted(found, key=lambda m: m.date)

    # -- predictions ------------------------------------------------------

    def list_predictions(
        self,
        organization_id: str,
        project_id: Optional[str] = None,
        type: Optional[PredictionType] = None,
        active_only: bool = True,
    ) -> List[Prediction]:
        with self._lock:
            found = [
                p for p in self._predictions.values()
                if p.organization_id == organization_id
                and (project_id is None or p.project_id == project_id)
                and (type is None or p.type == type)
                and (not active_only or p.is_active)
            ]
        return sorted(found, key=lambda p: (p.created_at, p.id), reverse=True)

    def create_prediction(self, prediction: Prediction) -> Prediction:
        with self._lock:
            if prediction.is_active and prediction.scope_key and self._active_in_scope(prediction.type, prediction.scope_key):
                raise PersistenceError(
                    f"Active {prediction.type.value} prediction already exists for {prediction.scope_key}"
                )
            self._insert(self._predictions, prediction, "prediction")
        return prediction

    def deactivate_predictions(self, organization_id: str, type: PredictionType, scope_key: str) -> int:
        count = 0
        with self._lock:
            for prediction in self._active_in_scope(type, scope_key):
                if prediction.organization_id != organization_id:
                    continue
                self._predictions[prediction.id] = prediction.model_copy(update={"is_active": False})
                count += 1
        return count

    def supersede_prediction(self, prediction: Prediction) -> Prediction:
        if not prediction.scope_key:
            raise PersistenceError("supersede_prediction requires a scope_key")
        with self._lock:
            self.deactivate_predictions(prediction.organization_id, prediction.type, prediction.scope_key)
            return self.create_prediction(prediction)

    # -- helpers ----------------------------------------------------------

    def _active_in_scope(self, type: PredictionType, scope_key: str) -> List[Prediction]:
        return [
            p for p in self._predictions.values()
            if p.is_active and p.type == type and p.scope_key == scope_key
        ]

    @staticmethod
    def _insert(collection: Dict, record, label: str) -> None:
        if record.id in collection:
            raise PersistenceError(f"Duplicate {label} id {record.id}")
        collection[record.id] = record


# ============================================================================
# Store selection
# ============================================================================

def get_insight_store() -> InsightStore:
    """
    Pick the store implementation.

    SQL when DATABASE_URL (or TEST_DATABASE_URL) is configured, otherwise
    in-memory. Connection problems surface on first use as
    DatastoreUnavailableError rather than a silent switch to memory.
    """
    database_url = os.getenv("TEST_DATABASE_URL") or os.getenv("DATABASE_URL") or settings.DATABASE_URL
    if database_url:
        from opsight.features.insights.store_sql import SqlInsightStore

        logger.info("insights.store.selected", extra={"store": "sql"})
        return SqlInsightStore()

    logger.info("insights.store.selected", extra={"store": "memory"})
    return InMemoryInsightStore()


# Global store instance (lazy initialization)
_store_instance: Optional[InsightStore] = None


def get_store() -> InsightStore:
    """
    Get the singleton store instance.

    This is the primary API that all consumers should use.
    """
    global _store_instance
    if _store_instance is None:
        _store_instance = get_insight_store()
    return _store_instance


def set_store(store: InsightStore) -> None:
    """Install a specific store (tests, workers with an explicit database)."""
    global _store_instance
    _store_instance = store


def reset_store():
    """
    Reset the store instance.

    FOR TESTING ONLY - forces re-initialization on next get_store() call.
    """
    global _store_instance
    _store_instance = None
