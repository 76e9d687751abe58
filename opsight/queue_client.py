# opsight/queue_client.py
"""
RQ queue client for scheduling insight jobs.
Workers run with: rq worker -u $REDIS_URL insights
"""
from typing import Any, Dict, List, Optional

from redis import Redis
from rq import Queue

from opsight.core.config import settings
from opsight.workers.insight_jobs import (
    analyze_repositories_job,
    detect_bottlenecks_job,
    run_predictions_job,
)

QUEUE_NAME = "insights"

redis_conn = Redis.from_url(settings.REDIS_URL)
queue = Queue(QUEUE_NAME, connection=redis_conn)


def enqueue_predictions(organization_id: str, project_id: Optional[str] = None) -> str:
    """
    Enqueue a full predictor run.

    Returns:
        Job ID
    """
    job = queue.enqueue(
        run_predictions_job,
        organization_id,
        project_id,
        job_timeout="10m",
        result_ttl=3600,
    )
    return job.id


def enqueue_bottleneck_detection(organization_id: str) -> str:
    job = queue.enqueue(detect_bottlenecks_job, organization_id, job_timeout="5m", result_ttl=3600)
    return job.id


def enqueue_repository_analysis(
    organization_id: str,
    repository_analyses: List[Dict[str, Any]],
    project_context: Optional[Dict[str, Any]] = None,
    target_project_id: Optional[str] = None,
) -> str:
    """
    Enqueue an autonomous analysis of scanner output.

    Args:
        organization_id: Organization that owns the repositories
        repository_analyses: Scanner records as JSON-compatible dicts
        project_context: Optional description of what is being built
        target_project_id: Project to link bottlenecks and predictions to

    Returns:
        Job ID
    """
    job = queue.enqueue(
        analyze_repositories_job,
        organization_id,
        repository_analyses,
        project_context,
        target_project_id,
        job_timeout="15m",
        result_ttl=3600,
    )
    return job.id
