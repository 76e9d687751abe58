"""
Bottleneck detection over open pull requests and tasks.

Detector-owned bottlenecks use deterministic ids (stuck-pr-<id>,
stale-task-<id>, dep-block-<id>) so repeated runs upsert instead of
duplicating, and anything no longer matching is resolved. Pull requests and
tasks themselves are never modified.
"""

import math
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from opsight.core.config import settings
from opsight.core.logging import log_event
from opsight.core.tracing import start_span
from opsight.features.insights.gateway import InsightStore, get_store
from opsight.models.tracking import (
    Bottleneck,
    BottleneckType,
    CIStatus,
    PullRequestStatus,
    Severity,
    TaskFilter,
    TaskStatus,
)

STUCK_PR_PREFIX = "stuck-pr-"
STALE_TASK_PREFIX = "stale-task-"
DEPENDENCY_BLOCK_PREFIX = "dep-block-"


class BottleneckDetectionReport(BaseModel):
    organization_id: str
    detected: Dict[str, int] = Field(default_factory=dict)
    resolved: Dict[str, int] = Field(default_factory=dict)


class BottleneckDetector:
    def __init__(
        self,
        organization_id: str,
        *,
        store: Optional[InsightStore] = None,
        now: Optional[datetime] = None,
    ):
        self.organization_id = organization_id
        self.store = store or get_store()
        self.now = now or datetime.now(timezone.utc)
        self.stuck_days = settings.STUCK_PR_DAYS_WITHOUT_ACTIVITY
        self.comment_threshold = settings.STUCK_PR_UNRESOLVED_COMMENTS
        self.stale_days = settings.STALE_TASK_DAYS_IN_PROGRESS
        self.block_threshold = settings.DEPENDENCY_BLOCK_THRESHOLD

    def run(self) -> BottleneckDetectionReport:
        report = BottleneckDetectionReport(organization_id=self.organization_id)
        for kind, prefix, detect in (
            (BottleneckType.STUCK_REVIEW, STUCK_PR_PREFIX, self.detect_stuck_reviews),
            (BottleneckType.STALE_TASK, STALE_TASK_PREFIX, self.detect_stale_tasks),
            (BottleneckType.DEPENDENCY_BLOCK, DEPENDENCY_BLOCK_PREFIX, self.detect_dependency_blocks),
        ):
            with start_span("insights.bottlenecks", {"kind": kind.value, "organization_id": self.organization_id}):
                found = detect()
                for bottleneck in found:
                    self.store.upsert_bottleneck(bottleneck)
                resolved = self.store.resolve_bottlenecks(
                    self.organization_id, prefix, [b.id for b in found], self.now
                )
            report.detected[kind.value] = len(found)
            report.resolved[kind.value] = resolved

        log_event(
            "info",
            "insights.bottlenecks.detected",
            request_id=None,
            organization_id=self.organization_id,
            extra={"detected": report.detected, "resolved": report.resolved},
            logger_name="opsight.insights.bottlenecks",
        )
        return report

    def detect_stuck_reviews(self) -> List[Bottleneck]:
        cutoff = self.now - timedelta(days=self.stuck_days)
        project_names = {p.id: p.name for p in self.store.list_projects(self.organization_id)}
        found: List[Bottleneck] = []

        for pr in self.store.list_pull_requests(self.organization_id, PullRequestStatus.OPEN):
            inactive = pr.last_activity_at is not None and pr.last_activity_at < cutoff
            commented = pr.unresolved_comments >= self.comment_threshold
            failing = pr.ci_status == CIStatus.FAILING
            if not (inactive or commented or failing):
                continue

            severity = Severity.MEDIUM
            factors: List[str] = []
            if inactive:
                idle_days = self._days_since(pr.last_activity_at)
                factors.append(f"{idle_days} days without activity")
                if idle_days > self.stuck_days * 2:
                    severity = Severity.CRITICAL
                elif idle_days > self.stuck_days * 1.5:
                    severity = Severity.HIGH
            if commented:
                factors.append(f"{pr.unresolved_comments} unresolved comments")
                if severity != Severity.CRITICAL:
                    severity = Severity.HIGH
            if failing:
                factors.append("CI is failing")
                if severity != Severity.CRITICAL:
                    severity = Severity.HIGH

            project_name = project_names.get(pr.project_id)
            found.append(Bottleneck(
                id=f"{STUCK_PR_PREFIX}{pr.id}",
                organization_id=self.organization_id,
                project_id=pr.project_id,
                type=BottleneckType.STUCK_REVIEW,
                severity=severity,
                title=f"PR #{pr.number} is stuck",
                description=". ".join(factors),
                impact=f"Blocking progress on {project_name}" if project_name else None,
                pull_request_id=pr.id,
                created_at=self.now,
            ))
        return found

    def detect_stale_tasks(self) -> List[Bottleneck]:
        cutoff = self.now - timedelta(days=self.stale_days)
        open_tasks = self.store.list_tasks(self.organization_id, TaskFilter(exclude_statuses=[TaskStatus.DONE]))
        blocks = self._blocking_counts(open_tasks)
        found: List[Bottleneck] = []

        for task in open_tasks:
            if task.status != TaskStatus.IN_PROGRESS or task.updated_at >= cutoff:
                continue
            stale_days = self._days_since(task.updated_at)
            severity = Severity.MEDIUM
            if stale_days > self.stale_days * 3:
                severity = Severity.CRITICAL
            elif stale_days > self.stale_days * 2:
                severity = Severity.HIGH

            blocked = blocks.get(task.id, 0)
            found.append(Bottleneck(
                id=f"{STALE_TASK_PREFIX}{task.id}",
                organization_id=self.organization_id,
                project_id=task.project_id,
                type=BottleneckType.STALE_TASK,
                severity=severity,
                title=f"Task stale for {stale_days} days",
                description=f'"{task.title}" has been in progress without updates',
                impact=f"Blocking {blocked} other task(s)" if blocked else None,
                task_id=task.id,
                created_at=self.now,
            ))
        return found

    def detect_dependency_blocks(self) -> List[Bottleneck]:
        open_tasks = self.store.list_tasks(self.organization_id, TaskFilter(exclude_statuses=[TaskStatus.DONE]))
        by_id = {t.id: t for t in open_tasks}
        found: List[Bottleneck] = []

        for blocker_id, count in sorted(self._blocking_counts(open_tasks).items()):
            if count < self.block_threshold:
                continue
            severity = Severity.MEDIUM
            if count >= self.block_threshold * 3:
                severity = Severity.CRITICAL
            elif count >= self.block_threshold * 2:
                severity = Severity.HIGH

            blocker = by_id[blocker_id]
            found.append(Bottleneck(
                id=f"{DEPENDENCY_BLOCK_PREFIX}{blocker_id}",
                organization_id=self.organization_id,
                project_id=blocker.project_id,
                type=BottleneckType.DEPENDENCY_BLOCK,
                severity=severity,
                title=f"Task blocking {count} other tasks",
                description=f'"{blocker.title}" is a dependency for multiple tasks',
                impact=f"{count} tasks are waiting on this to complete",
                task_id=blocker_id,
                created_at=self.now,
            ))
        return found

    @staticmethod
    def _blocking_counts(open_tasks) -> Dict[str, int]:
        """How many open tasks each open task blocks (done blockers no longer count)."""
        open_ids = {t.id for t in open_tasks}
        counts: Dict[str, int] = {}
        for task in open_tasks:
            for blocker_id in task.blocked_by_ids:
                if blocker_id in open_ids:
                    counts[blocker_id] = counts.get(blocker_id, 0) + 1
        return counts

    def _days_since(self, moment: datetime) -> int:
        return math.floor((self.now - moment) / timedelta(days=1))


def detect_bottlenecks(
    organization_id: str,
    *,
    store: Optional[InsightStore] = None,
    now: Optional[datetime] = None,
) -> BottleneckDetectionReport:
    return BottleneckDetector(organization_id, store=store, now=now).run()
