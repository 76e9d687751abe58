"""
opsight/tests/test_bottlenecks.py
Bottleneck detection: stuck reviews, stale tasks, dependency blocks, resolve on rerun.
"""

from datetime import timedelta

from opsight.features.insights.bottlenecks import BottleneckDetector, detect_bottlenecks
from opsight.models.tracking import (
    BottleneckStatus,
    BottleneckType,
    CIStatus,
    Project,
    PullRequest,
    PullRequestStatus,
    Severity,
    Task,
    TaskStatus,
)

ORG = "org-1"


def add_pr(store, now, pr_id, *, idle_days=1, comments=0, ci=CIStatus.PASSING, status=PullRequestStatus.OPEN):
    store.create_pull_request(PullRequest(
        id=pr_id,
        organization_id=ORG,
        project_id="proj-1",
        number=int(pr_id.split("-")[1]),
        title=f"Change {pr_id}",
        status=status,
        ci_status=ci,
        unresolved_comments=comments,
        last_activity_at=now - timedelta(days=idle_days),
        created_at=now - timedelta(days=30),
    ))


def add_task(store, now, task_id, *, status=TaskStatus.IN_PROGRESS, idle_days=0, blocked_by=()):
    store.create_task(Task(
        id=task_id,
        organization_id=ORG,
        project_id="proj-1",
        title=f"Work item {task_id}",
        status=status,
        blocked_by_ids=list(blocked_by),
        created_at=now - timedelta(days=60),
        updated_at=now - timedelta(days=idle_days),
    ))


def by_id(bottlenecks):
    return {b.id: b for b in bottlenecks}


class TestStuckReviews:
    def test_severity_rules(self, store, fixed_now):
        store.create_project(Project(id="proj-1", organization_id=ORG, name="Apollo", key="APOL"))
        add_pr(store, fixed_now, "pr-1", idle_days=4)
        add_pr(store, fixed_now, "pr-2", idle_days=5)
        add_pr(store, fixed_now, "pr-3", idle_days=7)
        add_pr(store, fixed_now, "pr-4", comments=2)
        add_pr(store, fixed_now, "pr-5", ci=CIStatus.FAILING)
        add_pr(store, fixed_now, "pr-6")
        add_pr(store, fixed_now, "pr-7", idle_days=20, status=PullRequestStatus.MERGED)

        found = by_id(BottleneckDetector(ORG, store=store, now=fixed_now).detect_stuck_reviews())

        assert set(found) == {"stuck-pr-pr-1", "stuck-pr-pr-2", "stuck-pr-pr-3", "stuck-pr-pr-4", "stuck-pr-pr-5"}
        assert found["stuck-pr-pr-1"].severity == Severity.MEDIUM
        assert found["stuck-pr-pr-2"].severity == Severity.HIGH
        assert found["stuck-pr-pr-3"].severity == Severity.CRITICAL
        assert found["stuck-pr-pr-4"].severity == Severity.HIGH
        assert found["stuck-pr-pr-5"].severity == Severity.HIGH
        assert found["stuck-pr-pr-1"].title == "PR #1 is stuck"
        assert found["stuck-pr-pr-1"].description == "4 days without activity"
        assert found["stuck-pr-pr-1"].impact == "Blocking progress on Apollo"
        assert found["stuck-pr-pr-1"].type == BottleneckType.STUCK_REVIEW

    def test_critical_idle_is_not_downgraded_by_comments(self, store, fixed_now):
        add_pr(store, fixed_now, "pr-1", idle_days=10, comments=3, ci=CIStatus.FAILING)
        found = BottleneckDetector(ORG, store=store, now=fixed_now).detect_stuck_reviews()
        assert found[0].severity == Severity.CRITICAL
        assert found[0].description == "10 days without activity. 3 unresolved comments. CI is failing"


class TestStaleTasks:
    def test_severity_rules(self, store, fixed_now):
        add_task(store, fixed_now, "t-1", idle_days=8)
        add_task(store, fixed_now, "t-2", idle_days=15)
        add_task(store, fixed_now, "t-3", idle_days=22)
        add_task(store, fixed_now, "t-4", idle_days=3)
        add_task(store, fixed_now, "t-5", status=TaskStatus.TODO, idle_days=30)

        found = by_id(BottleneckDetector(ORG, store=store, now=fixed_now).detect_stale_tasks())

        assert set(found) == {"stale-task-t-1", "stale-task-t-2", "stale-task-t-3"}
        assert found["stale-task-t-1"].severity == Severity.MEDIUM
        assert found["stale-task-t-2"].severity == Severity.HIGH
        assert found["stale-task-t-3"].severity == Severity.CRITICAL
        assert found["stale-task-t-1"].title == "Task stale for 8 days"
        assert found["stale-task-t-1"].task_id == "t-1"

    def test_impact_counts_blocked_tasks(self, store, fixed_now):
        add_task(store, fixed_now, "t-1", idle_days=9)
        add_task(store, fixed_now, "t-2", status=TaskStatus.TODO, blocked_by=["t-1"])
        found = BottleneckDetector(ORG, store=store, now=fixed_now).detect_stale_tasks()
        assert found[0].impact == "Blocking 1 other task(s)"


class TestDependencyBlocks:
    def test_thresholds(self, store, fixed_now):
        for blocker, count in (("b-1", 1), ("b-2", 2), ("b-3", 4), ("b-4", 6)):
            add_task(store, fixed_now, blocker, status=TaskStatus.TODO)
            for i in range(count):
                add_task(store, fixed_now, f"{blocker}-w{i}", status=TaskStatus.TODO, blocked_by=[blocker])

        found = by_id(BottleneckDetector(ORG, store=store, now=fixed_now).detect_dependency_blocks())

        assert set(found) == {"dep-block-b-2", "dep-block-b-3", "dep-block-b-4"}
        assert found["dep-block-b-2"].severity == Severity.MEDIUM
        assert found["dep-block-b-3"].severity == Severity.HIGH
        assert found["dep-block-b-4"].severity == Severity.CRITICAL
        assert found["dep-block-b-3"].title == "Task blocking 4 other tasks"

    def test_done_tasks_do_not_count(self, store, fixed_now):
        add_task(store, fixed_now, "b-1", status=TaskStatus.TODO)
        add_task(store, fixed_now, "w-1", status=TaskStatus.DONE, blocked_by=["b-1"])
        add_task(store, fixed_now, "w-2", status=TaskStatus.TODO, blocked_by=["b-1"])
        assert BottleneckDetector(ORG, store=store, now=fixed_now).detect_dependency_blocks() == []


class TestRun:
    def test_report_counts(self, store, fixed_now):
        add_pr(store, fixed_now, "pr-1", idle_days=4)
        add_task(store, fixed_now, "t-1", idle_days=8)

        report = detect_bottlenecks(ORG, store=store, now=fixed_now)

        assert report.detected == {"stuck_review": 1, "stale_task": 1, "dependency_block": 0}
        assert report.resolved == {"stuck_review": 0, "stale_task": 0, "dependency_block": 0}

    def test_rerun_upserts_instead_of_duplicating(self, store, fixed_now):
        add_pr(store, fixed_now, "pr-1", idle_days=4)
        detect_bottlenecks(ORG, store=store, now=fixed_now)
        detect_bottlenecks(ORG, store=store, now=fixed_now)

        assert [b.id for b in store.list_active_bottlenecks(ORG)] == ["stuck-pr-pr-1"]

    def test_condition_cleared_resolves_then_reactivates(self, store, fixed_now):
        add_pr(store, fixed_now, "pr-1", idle_days=4)
        detect_bottlenecks(ORG, store=store, now=fixed_now)

        # two days earlier the PR had only been idle for two days
        report = detect_bottlenecks(ORG, store=store, now=fixed_now - timedelta(days=2))
        assert report.resolved["stuck_review"] == 1
        assert store.list_active_bottlenecks(ORG) == []

        detect_bottlenecks(ORG, store=store, now=fixed_now)
        active = store.list_active_bottlenecks(ORG)
        assert len(active) == 1
        assert active[0].status == BottleneckStatus.ACTIVE
        assert active[0].resolved_at is None

    def test_analyzer_bottlenecks_are_never_resolved_by_detector(self, store, fixed_now):
        from opsight.models.tracking import Bottleneck

        store.create_bottleneck(Bottleneck(
            organization_id=ORG,
            type=BottleneckType.REVIEW_DELAY,
            severity=Severity.MEDIUM,
            title="2 stale PRs blocking development in api",
        ))
        detect_bottlenecks(ORG, store=store, now=fixed_now)
        assert len(store.list_active_bottlenecks(ORG)) == 1

    def test_source_records_are_not_modified(self, store, fixed_now):
        add_pr(store, fixed_now, "pr-1", idle_days=4)
        add_task(store, fixed_now, "t-1", idle_days=8)
        before = (store.list_pull_requests(ORG), store.list_tasks(ORG))
        detect_bottlenecks(ORG, store=store, now=fixed_now)
        assert (store.list_pull_requests(ORG), store.list_tasks(ORG)) == before
