"""
Assessment Validator — Main Entry Point

Validate one unit locally (CLI):
    python -m assessment_validator BSBWHS211 documents.json [requirements.json]

    documents.json    — a list of DocumentReference objects (already indexed
                        by the provider, so each carries its file URI)
    requirements.json — optional {table_name: [rows]} used to seed the
                        in-memory requirement tables in mock mode

Run as an API server:
    python -m assessment_validator --serve
    # or: uvicorn assessment_validator.api:app --reload --port 8000

Or import and run programmatically:
    from assessment_validator.main import run
    report = run("BSBWHS211", "documents.json")
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from assessment_validator.config import get_settings
from assessment_validator.models.schemas import DocumentReference
from assessment_validator.orchestration.pipeline import ValidationPipeline
from assessment_validator.persistence.requirement_source import (
    InMemoryRequirementSource,
    get_requirement_source,
)
from assessment_validator.services.report import RunReport
from assessment_validator.utils.logger import setup_logging


def load_documents(path: str) -> list[DocumentReference]:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("documents", [data])
    return [DocumentReference.model_validate(item) for item in data]


def run(
    unit_identifier: str,
    documents_path: str,
    requirements_path: Optional[str] = None,
    org_identifier: str = "local",
) -> RunReport:
    """Validate every requirement of one unit and return the run report."""
    settings = get_settings()
    setup_logging(settings.log_level)
    logger = logging.getLogger(__name__)

    logger.info("=" * 60)
    logger.info("  ASSESSMENT VALIDATOR")
    logger.info(
        f"  Mode: {'MOCK' if settings.mock_mode else 'MONGODB'} | "
        f"Tier: {settings.api_tier} | Started: {datetime.now(timezone.utc).isoformat()}"
    )
    logger.info("=" * 60)

    source = get_requirement_source()
    if requirements_path:
        tables = json.loads(Path(requirements_path).read_text(encoding="utf-8"))
        source = InMemoryRequirementSource(tables)

    pipeline = ValidationPipeline(source=source)
    run_id = pipeline.start_run(unit_identifier, org_identifier, load_documents(documents_path))
    report = pipeline.get_run_report(run_id)

    _print_summary(report)
    return report


def _print_summary(report: RunReport) -> None:
    """Print a human-readable summary of the run."""
    logger = logging.getLogger(__name__)

    logger.info("")
    logger.info("-" * 60)
    logger.info("  RUN SUMMARY")
    logger.info("-" * 60)
    logger.info(f"  Run ID:         {report.run_id}")
    logger.info(f"  Unit:           {report.unit_identifier}")
    logger.info(f"  Final Status:   {report.status.value}")
    logger.info(f"  Requirements:   {report.validated}/{report.total_requirements} validated")
    for status, count in report.status_counts.items():
        logger.info(f"    {status:<14}{count}")
    logger.info(f"  Success rate:   {report.success_rate:.1%} (Met only)")
    logger.info(f"  Partial rate:   {report.partial_rate:.1%}")
    if report.error_message:
        logger.info(f"  Error:          {report.error_message}")
    logger.info("-" * 60)
    for row in report.categories:
        logger.info(
            f"    {row.category.value:<30} met={row.met} partial={row.partially_met} "
            f"not_met={row.not_met} error={row.error}"
        )
    logger.info("")


def serve(host: str = "0.0.0.0", port: int = 8000) -> None:
    """Start the FastAPI server."""
    import uvicorn

    setup_logging(get_settings().log_level)
    logger = logging.getLogger(__name__)
    logger.info(f"Starting API server on {host}:{port}")
    uvicorn.run("assessment_validator.api:app", host=host, port=port, reload=False)


def main(argv: list[str]) -> int:
    if "--serve" in argv:
        serve()
        return 0
    if len(argv) < 2:
        print(__doc__)
        return 2
    run(argv[0], argv[1], argv[2] if len(argv) > 2 else None)
    return 0


def cli() -> None:
    sys.exit(main(sys.argv[1:]))


if __name__ == "__main__":
    cli()
