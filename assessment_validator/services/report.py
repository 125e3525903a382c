"""
Run Report — status counts and rates for one run.

success_rate counts only Met verdicts, over every requirement that produced
a verdict (Error results excluded).  PartiallyMet is reported on its own as
partial_rate and is never counted as success.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel

from assessment_validator.models.enums import RequirementCategory, RunStatus, ValidationStatus
from assessment_validator.models.schemas import RunSummary, ValidationResult


class CategoryBreakdown(BaseModel):
    category: RequirementCategory
    total: int = 0
    met: int = 0
    partially_met: int = 0
    not_met: int = 0
    error: int = 0


class RunReport(BaseModel):
    run_id: str
    unit_identifier: str
    status: RunStatus
    total_requirements: int
    validated: int
    status_counts: dict[str, int]
    success_rate: float
    partial_rate: float
    categories: list[CategoryBreakdown]
    error_message: str = ""


def _rate(numerator: int, denominator: int) -> float:
    return round(numerator / denominator, 4) if denominator else 0.0


def build_run_report(
    summary: RunSummary, results: list[ValidationResult]
) -> RunReport:
    counts = {status.value: 0 for status in ValidationStatus}
    per_category: dict[Optional[RequirementCategory], CategoryBreakdown] = {}

    for result in results:
        counts[result.status.value] += 1
        if result.category is None:
            continue
        row = per_category.setdefault(
            result.category, CategoryBreakdown(category=result.category)
        )
        row.total += 1
        if result.status == ValidationStatus.MET:
            row.met += 1
        elif result.status == ValidationStatus.PARTIALLY_MET:
            row.partially_met += 1
        elif result.status == ValidationStatus.NOT_MET:
            row.not_met += 1
        else:
            row.error += 1

    verdicts = len(results) - counts[ValidationStatus.ERROR.value]
    return RunReport(
        run_id=summary.run_id,
        unit_identifier=summary.unit_identifier,
        status=summary.status,
        total_requirements=summary.total_count,
        validated=len(results),
        status_counts=counts,
        success_rate=_rate(counts[ValidationStatus.MET.value], verdicts),
        partial_rate=_rate(counts[ValidationStatus.PARTIALLY_MET.value], verdicts),
        categories=[per_category[c] for c in RequirementCategory if c in per_category],
        error_message=summary.error_message,
    )
