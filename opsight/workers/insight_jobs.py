"""Scheduled insight jobs (RQ) and a CLI for running them by hand.

    python -m opsight.workers.insight_jobs predictions --org ORG [--project ID]
    python -m opsight.workers.insight_jobs bottlenecks --org ORG
"""

import argparse
import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from opsight.core.errors import DatastoreUnavailableError
from opsight.core.logging import configure_logging
from opsight.core.config import settings
from opsight.features.analysis.analyzer import analyze_and_generate
from opsight.features.analysis.models import ProjectContext
from opsight.features.insights.bottlenecks import detect_bottlenecks
from opsight.features.insights.predictors import run_all_predictions
from opsight.models.repository import RepositoryAnalysis

logger = logging.getLogger("opsight.workers.insights")


def run_predictions_job(organization_id: str, project_id: Optional[str] = None) -> Dict[str, Any]:
    """
    Run every predictor once.

    Individual predictor failures are reported, not raised. When every
    failure was the datastore being unreachable the job raises so the
    scheduler's retry policy applies.
    """
    report = run_all_predictions(organization_id, project_id)
    failures = [o for o in report.outcomes if o.status.value == "failed"]
    if failures and all(o.error_code == DatastoreUnavailableError.code for o in failures):
        raise DatastoreUnavailableError(
            f"Datastore unavailable for {len(failures)} predictor(s) in organization {organization_id}"
        )

    result = report.model_dump(mode="json")
    logger.info(
        "[insights] predictions run",
        extra={
            "organization_id": organization_id,
            "project_id": project_id,
            "written": report.written,
            "skipped": report.skipped,
            "failed": report.failed,
        },
    )
    return result


def detect_bottlenecks_job(organization_id: str) -> Dict[str, Any]:
    report = detect_bottlenecks(organization_id)
    return report.model_dump(mode="json")


def analyze_repositories_job(
    organization_id: str,
    repository_analyses: List[Dict[str, Any]],
    project_context: Optional[Dict[str, Any]] = None,
    target_project_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Job payloads arrive as plain JSON; validate them into scanner models first."""
    analyses = [RepositoryAnalysis.model_validate(item) for item in repository_analyses]
    context = ProjectContext.model_validate(project_context) if project_context else None
    result = analyze_and_generate(
        analyses,
        organization_id,
        project_context=context,
        target_project_id=target_project_id,
    )
    return result.to_dict()


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Run insight jobs once.")
    subcommands = parser.add_subparsers(dest="command", required=True)

    predictions = subcommands.add_parser("predictions", help="Run all risk predictors.")
    predictions.add_argument("--org", required=True, help="Organization id.")
    predictions.add_argument("--project", default=None, help="Limit project-scoped predictors to this project.")

    bottlenecks = subcommands.add_parser("bottlenecks", help="Detect and resolve bottlenecks.")
    bottlenecks.add_argument("--org", required=True, help="Organization id.")

    args = parser.parse_args(argv)
    configure_logging(settings.ENV)

    if args.command == "predictions":
        result = run_predictions_job(args.org, args.project)
        exit_code = 1 if result["outcomes"] and all(o["status"] == "failed" for o in result["outcomes"]) else 0
    else:
        result = detect_bottlenecks_job(args.org)
        exit_code = 0

    print(json.dumps(result, indent=2, default=str))
    return exit_code


if __name__ == "__main__":
    raise SystemExit(main())
