"""SQLAlchemy Core implementation of the insight datastore gateway."""

import logging
from contextlib import contextmanager
from datetime import datetime
from enum import Enum
from typing import List, Optional

from sqlalchemy import and_, func, insert, select, update
from sqlalchemy.exc import DataError, IntegrityError, InterfaceError, OperationalError

from opsight.core.database import (
    behavioral_metrics,
    bottlenecks,
    get_db_session,
    predictions,
    projects,
    pull_requests,
    tasks,
    users,
)
from opsight.core.errors import DatastoreUnavailableError, PersistenceError
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
    TaskStatus,
    User,
    ensure_utc,
)

logger = logging.getLogger("opsight.insights.store_sql")


@contextmanager
def _translate_errors(action: str):
    try:
        yield
    except (OperationalError, InterfaceError) as exc:
        raise DatastoreUnavailableError(f"Datastore unavailable during {action}") from exc
    except (IntegrityError, DataError) as exc:
        raise PersistenceError(f"{action} failed: {exc.orig}") from exc


def _row(record) -> dict:
    values = record.model_dump()
    return {k: (v.value if isinstance(v, Enum) else v) for k, v in values.items()}


def _value(raw):
    return raw.value if isinstance(raw, Enum) else raw


class SqlInsightStore:
    """
    Reads and writes through get_db_session(); one session per operation.

    supersede_prediction runs deactivate + insert in a single transaction.
    The partial unique index on (type, scope_key) WHERE is_active rejects a
    concurrent writer, which retries its transaction once.
    """

    SUPERSEDE_ATTEMPTS = 2

    # -- generic helpers --------------------------------------------------

    def _insert(self, table, record, action: str):
        with _translate_errors(action), get_db_session() as session:
            session.execute(insert(table).values(**_row(record)))
        return record

    def _select(self, stmt, model, action: str) -> list:
        with _translate_errors(action), get_db_session() as session:
            rows = session.execute(stmt).mappings().all()
        return [model(**dict(row)) for row in rows]

    # -- projects / users -------------------------------------------------

    def get_project(self, organization_id: str, project_id: str) -> Optional[Project]:
        stmt = select(projects).where(
            projects.c.id == project_id,
            projects.c.organization_id == organization_id,
        )
        found = self._select(stmt, Project, "get project")
        return found[0] if found else None

    def list_projects(self, organization_id: str, status: Optional[ProjectStatus] = None) -> List[Project]:
        stmt = select(projects).where(projects.c.organization_id == organization_id)
        if status is not None:
            stmt = stmt.where(projects.c.status == _value(status))
        stmt = stmt.order_by(projects.c.created_at, projects.c.id)
        return self._select(stmt, Project, "list projects")

    def create_project(self, project: Project) -> Project:
        return self._insert(projects, project, "create project")

    def create_user(self, user: User) -> User:
        return self._insert(users, user, "create user")

    def list_users(self, organization_id: str) -> List[User]:
        stmt = (
            select(users.c.id, users.c.organization_id, users.c.name, users.c.email)
            .where(users.c.organization_id == organization_id)
            .order_by(users.c.id)
        )
        return self._select(stmt, User, "list users")

    # -- tasks / pull requests --------------------------------------------

    def list_tasks(self, organization_id: str, task_filter: Optional[TaskFilter] = None) -> List[Task]:
        criteria = task_filter or TaskFilter()
        clauses = [tasks.c.organization_id == organization_id]
        if criteria.project_id is not None:
            clauses.append(tasks.c.project_id == criteria.project_id)
        if criteria.statuses is not None:
            clauses.append(tasks.c.status.in_([_value(s) for s in criteria.statuses]))
        if criteria.exclude_statuses is not None:
            clauses.append(tasks.c.status.not_in([_value(s) for s in criteria.exclude_statuses]))
        if criteria.assignee_id is not None:
            clauses.append(tasks.c.assignee_id == criteria.assignee_id)
        if criteria.completed_since is not None:
            clauses.append(tasks.c.status == TaskStatus.DONE.value)
            clauses.append(func.coalesce(tasks.c.completed_at, tasks.c.updated_at) >= criteria.completed_since)
        if criteria.created_on_or_before is not None:
            clauses.append(tasks.c.created_at <= criteria.created_on_or_before)

        stmt = select(tasks).where(and_(*clauses)).order_by(tasks.c.created_at, tasks.c.id)
        return self._select(stmt, Task, "list tasks")

    def create_task(self, task: Task) -> Task:
        return self._insert(tasks, task, "create task")

    def create_pull_request(self, pull_request: PullRequest) -> PullRequest:
        return self._insert(pull_requests, pull_request, "create pull request")

    def list_pull_requests(self, organization_id: str, status: Optional[PullRequestStatus] = None) -> List[PullRequest]:
        stmt = select(pull_requests).where(pull_requests.c.organization_id == organization_id)
        if status is not None:
            stmt = stmt.where(pull_requests.c.status == _value(status))
        stmt = stmt.order_by(pull_requests.c.number)
        return self._select(stmt, PullRequest, "list pull requests")

    # -- bottlenecks ------------------------------------------------------

    def list_active_bottlenecks(self, organization_id: str, project_id: Optional[str] = None) -> List[Bottleneck]:
        stmt = select(bottlenecks).where(
            bottlenecks.c.organization_id == organization_id,
            bottlenecks.c.status == BottleneckStatus.ACTIVE.value,
        )
        if project_id is not None:
            stmt = stmt.where(bottlenecks.c.project_id == project_id)
        stmt = stmt.order_by(bottlenecks.c.created_at, bottlenecks.c.id)
        return self._select(stmt, Bottleneck, "list bottlenecks")

    def create_bottleneck(self, bottleneck: Bottleneck) -> Bottleneck:
        return self._insert(bottlenecks, bottleneck, "create bottleneck")

    def upsert_bottleneck(self, bottleneck: Bottleneck) -> Bottleneck:
        with _translate_errors("upsert bottleneck"), get_db_session() as session:
            existing = session.execute(
                select(bottlenecks).where(bottlenecks.c.id == bottleneck.id)
            ).mappings().first()
            if existing is None:
                session.execute(insert(bottlenecks).values(**_row(bottleneck)))
                return bottleneck
            changes = {
                "severity": bottleneck.severity.value,
                "title": bottleneck.title,
                "description": bottleneck.description,
                "impact": bottleneck.impact,
                "status": BottleneckStatus.ACTIVE.value,
                "resolved_at": None,
            }
            session.execute(update(bottlenecks).where(bottlenecks.c.id == bottleneck.id).values(**changes))
            merged = dict(existing)
            merged.update(changes)
        return Bottleneck(**merged)

    def resolve_bottlenecks(self, organization_id: str, id_prefix: str, keep_ids: List[str], now: datetime) -> int:
        stmt = update(bottlenecks).where(
            bottlenecks.c.organization_id == organization_id,
            bottlenecks.c.status == BottleneckStatus.ACTIVE.value,
            bottlenecks.c.id.startswith(id_prefix, autoescape=True),
        )
        if keep_ids:
            stmt = stmt.where(bottlenecks.c.id.not_in(list(keep_ids)))
        stmt = stmt.values(status=BottleneckStatus.RESOLVED.value, resolved_at=ensure_utc(now))
        with _translate_errors("resolve bottlenecks"), get_db_session() as session:
            result = session.execute(stmt)
            return result.rowcount or 0

    # -- behavioral metrics -----------------------------------------------

    def record_behavioral_metric(self, metric: BehavioralMetric) -> BehavioralMetric:
        return self._insert(behavioral_metrics, metric, "record behavioral metric")

    def list_behavioral_metrics(self, organization_id: str, user_id: str, since: datetime) -> List[BehavioralMetric]:
        stmt = (
            select(behavioral_metrics)
            .where(
                behavioral_metrics.c.organization_id == organization_id,
                behavioral_metrics.c.user_id == user_id,
                behavioral_metrics.c.date >= ensure_utc(since),
            )
            .order_by(behavioral_metrics.c.date)
        )
        return self._select(stmt, BehavioralMetric, "list behavioral metrics")

    # -- predictions ------------------------------------------------------

    def list_predictions(
        self,
        organization_id: str,
        project_id: Optional[str] = None,
        type: Optional[PredictionType] = None,
        active_only: bool = True,
    ) -> List[Prediction]:
        stmt = select(predictions).where(predictions.c.organization_id == organization_id)
        if project_id is not None:
            stmt = stmt.where(predictions.c.project_id == project_id)
        if type is not None:
            stmt = stmt.where(predictions.c.type == _value(type))
        if active_only:
            stmt = stmt.where(predictions.c.is_active.is_(True))
        stmt = stmt.order_by(predictions.c.created_at.desc(), predictions.c.id.desc())
        return self._select(stmt, Prediction, "list predictions")

    def create_prediction(self, prediction: Prediction) -> Prediction:
        return self._insert(predictions, prediction, "create prediction")

    def deactivate_predictions(self, organization_id: str, type: PredictionType, scope_key: str) -> int:
        with _translate_errors("deactivate predictions"), get_db_session() as session:
            result = session.execute(self._deactivate_stmt(organization_id, type, scope_key))
            return result.rowcount or 0

    def supersede_prediction(self, prediction: Prediction) -> Prediction:
        if not prediction.scope_key:
            raise PersistenceError("supersede_prediction requires a scope_key")

        for attempt in range(1, self.SUPERSEDE_ATTEMPTS + 1):
            try:
                with _translate_errors("supersede prediction"), get_db_session() as session:
                    session.execute(
                        self._deactivate_stmt(prediction.organization_id, prediction.type, prediction.scope_key)
                    )
                    session.execute(insert(predictions).values(**_row(prediction)))
                return prediction
            except PersistenceError:
                if attempt == self.SUPERSEDE_ATTEMPTS:
                    raise
                logger.warning(
                    "insights.supersession.retry",
                    extra={"prediction_type": prediction.type.value, "scope_key": prediction.scope_key},
                )
        return prediction

    @staticmethod
    def _deactivate_stmt(organization_id: str, type: PredictionType, scope_key: str):
        return (
            update(predictions)
            .where(
                predictions.c.organization_id == organization_id,
                predictions.c.type == _value(type),
                predictions.c.scope_key == scope_key,
                predictions.c.is_active.is_(True),
            )
            .values(is_active=False)
        )
