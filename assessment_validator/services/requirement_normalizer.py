"""
Requirement Normalizer — maps the five differently-shaped requirement tables
into the uniform Requirement model.

Linking key resolution happens once per call: when any fetched row carries a
URL-shaped unit link for the requested unit, every category is linked by URL;
otherwise every category is linked by plain unit code.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from assessment_validator.exceptions import RequirementNotFoundError
from assessment_validator.models.enums import RequirementCategory
from assessment_validator.models.schemas import Requirement
from assessment_validator.persistence.requirement_source import (
    RequirementSource,
    is_url,
    row_code,
    row_link,
    unit_code_from,
)

logger = logging.getLogger(__name__)

# Per-category text and number columns, most specific first
TEXT_COLUMNS: dict[RequirementCategory, tuple[str, ...]] = {
    RequirementCategory.KNOWLEDGE_EVIDENCE: ("knowledge_point",),
    RequirementCategory.PERFORMANCE_EVIDENCE: ("performance_evidence",),
    RequirementCategory.FOUNDATION_SKILLS: ("skill_description",),
    RequirementCategory.ELEMENTS_PERFORMANCE_CRITERIA: ("performance_criteria",),
    RequirementCategory.ASSESSMENT_CONDITIONS: ("condition_text",),
}

NUMBER_COLUMNS: dict[RequirementCategory, tuple[str, ...]] = {
    RequirementCategory.KNOWLEDGE_EVIDENCE: ("requirement_number",),
    RequirementCategory.PERFORMANCE_EVIDENCE: ("requirement_number",),
    RequirementCategory.FOUNDATION_SKILLS: ("skill_category",),
    RequirementCategory.ELEMENTS_PERFORMANCE_CRITERIA: ("element_number",),
    RequirementCategory.ASSESSMENT_CONDITIONS: ("condition_number",),
}

PARENT_COLUMNS = ("element", "element_text", "element_title")

FULL_VALIDATION = "full_validation"


def resolve_categories(category_filter: Any = None) -> list[RequirementCategory]:
    """None / "full_validation" → all five categories in canonical order."""
    if category_filter is None:
        return list(RequirementCategory)
    if isinstance(category_filter, str) and category_filter.strip().lower() in (
        "",
        FULL_VALIDATION,
        "all",
    ):
        return list(RequirementCategory)
    if isinstance(category_filter, (list, tuple, set)):
        wanted = {RequirementCategory.parse(c) for c in category_filter}
        return [c for c in RequirementCategory if c in wanted]
    return [RequirementCategory.parse(category_filter)]


def requirement_id_for(category: RequirementCategory, row_id: Any, number: str) -> str:
    """
    Unit-wide id: the tables number their rows independently, so the raw
    row id is qualified with the category code ("ke-1", "pe-1").
    Rows without an id fall back to their requirement number.
    """
    if row_id in (None, ""):
        return f"{category.code}-n{number}"
    return f"{category.code}-{row_id}"


def _first(row: dict[str, Any], columns: tuple[str, ...]) -> str:
    for column in columns:
        value = row.get(column)
        if value not in (None, ""):
            return str(value).strip()
    return ""


def _same_link(a: str, b: str) -> bool:
    return a.strip().rstrip("/").casefold() == b.strip().rstrip("/").casefold()


class RequirementNormalizer:
    """Read-only: fetches rows from the source and returns Requirements."""

    def __init__(self, source: RequirementSource):
        self.source = source

    def normalize(
        self, unit_identifier: str, category_filter: Any = None
    ) -> list[Requirement]:
        categories = resolve_categories(category_filter)
        unit_code = unit_code_from(unit_identifier)
        unit_link = unit_identifier.strip() if is_url(unit_identifier) else ""

        fetched: list[tuple[RequirementCategory, list[dict[str, Any]]]] = [
            (category, self.source.fetch_requirements_for_unit(unit_code, category))
            for category in categories
        ]

        def link_matches(row: dict[str, Any]) -> bool:
            link = row_link(row)
            if not link:
                return False
            if unit_link:
                return _same_link(link, unit_link)
            return unit_code_from(link).casefold() == unit_code.casefold()

        by_link = any(link_matches(row) for _, rows in fetched for row in rows)
        if by_link:
            canonical = unit_link or next(
                row_link(row) for _, rows in fetched for row in rows if link_matches(row)
            )
        else:
            canonical = unit_code
        logger.info(
            f"[Normalizer] Unit {unit_identifier} linked by "
            f"{'URL' if by_link else 'code'} across {len(categories)} categories"
        )

        requirements: list[Requirement] = []
        for category, rows in fetched:
            if by_link:
                kept = [r for r in rows if link_matches(r)]
            else:
                kept = [r for r in rows if row_code(r).casefold() == unit_code.casefold()]
            for position, row in enumerate(kept, start=1):
                requirements.append(self._to_requirement(row, category, position, canonical))
            if kept:
                logger.debug(f"[Normalizer] {len(kept)} {category.slug} rows")

        if not requirements:
            scope = None if len(categories) > 1 else categories[0].slug
            raise RequirementNotFoundError(unit_identifier, scope)

        logger.info(f"[Normalizer] {len(requirements)} requirements for {unit_identifier}")
        return requirements

    def _to_requirement(
        self,
        row: dict[str, Any],
        category: RequirementCategory,
        position: int,
        unit_identifier: str,
    ) -> Requirement:
        text = _first(row, TEXT_COLUMNS[category] + ("text", "description"))
        number = self._number(row, category, position)
        parent: Optional[str] = None
        if category == RequirementCategory.ELEMENTS_PERFORMANCE_CRITERIA:
            parent = _first(row, PARENT_COLUMNS) or None
            if parent is None and row.get("element_number") not in (None, ""):
                parent = f"Element {row['element_number']}"

        return Requirement(
            id=requirement_id_for(category, row.get("id"), number),
            unit_identifier=unit_identifier,
            category=category,
            number=number,
            text=text,
            parent_element=parent,
            description=str(row.get("description") or text),
        )

    @staticmethod
    def _number(row: dict[str, Any], category: RequirementCategory, position: int) -> str:
        if category == RequirementCategory.ELEMENTS_PERFORMANCE_CRITERIA:
            element = _first(row, ("element_number",))
            criterion = _first(row, ("criterion_number",))
            if element and criterion and "." not in criterion:
                return f"{element}.{criterion}"
            if criterion:
                return criterion
        number = _first(row, NUMBER_COLUMNS[category] + ("number",))
        return number or f"{category.ordinal}.{position}"
