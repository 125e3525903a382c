"""
Requirement Source — read-only access to the five requirement tables.

Rows are returned raw (their column names differ per table); mapping them to
the uniform Requirement shape is the normalizer's job.  Sources return every
row that could belong to a unit under EITHER linking key (plain unit code or
URL-shaped unit link); the normalizer decides which key wins.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Protocol

from assessment_validator.config import get_settings
from assessment_validator.models.enums import RequirementCategory

logger = logging.getLogger(__name__)

CODE_COLUMNS = ("unit_code", "unitCode", "unitcode")
LINK_COLUMNS = ("unit_link", "unitLink", "Link")

_CODE_IN_URL = re.compile(r"/details/([^/?#]+)", re.IGNORECASE)


def is_url(value: str) -> bool:
    return value.strip().lower().startswith(("http://", "https://"))


def unit_code_from(identifier: str) -> str:
    """Reduce a unit link to its code; plain codes pass through unchanged."""
    identifier = identifier.strip()
    if not is_url(identifier):
        return identifier
    match = _CODE_IN_URL.search(identifier)
    if match:
        return match.group(1)
    segments = [s for s in identifier.split("?")[0].split("/") if s]
    return segments[-1] if segments else identifier


def row_code(row: dict[str, Any]) -> str:
    for column in CODE_COLUMNS:
        value = row.get(column)
        if value:
            return str(value).strip()
    return ""


def row_link(row: dict[str, Any]) -> str:
    for column in LINK_COLUMNS:
        value = row.get(column)
        if value and is_url(str(value)):
            return str(value).strip()
    return ""


class RequirementSource(Protocol):
    def fetch_requirements_for_unit(
        self, unit_code: str, category: RequirementCategory
    ) -> list[dict[str, Any]]:
        ...


# Mongo filters; case-insensitive like the in-memory comparison
def code_pattern(unit_code: str) -> dict[str, str]:
    return {"$regex": rf"^\s*{re.escape(unit_code.strip())}\s*$", "$options": "i"}


def link_pattern(unit_code: str) -> dict[str, str]:
    return {"$regex": f"/{re.escape(unit_code.strip())}(/|$)", "$options": "i"}


class InMemoryRequirementSource:
    """Requirement tables held in process memory (mock mode, tests)."""

    def __init__(self, tables: dict[str, list[dict[str, Any]]] | None = None):
        self._tables: dict[str, list[dict[str, Any]]] = {}
        for name, rows in (tables or {}).items():
            self._tables[name] = [dict(r) for r in rows]

    def add_rows(self, category: RequirementCategory, rows: list[dict[str, Any]]) -> None:
        self._tables.setdefault(category.table_name, []).extend(dict(r) for r in rows)

    def fetch_requirements_for_unit(
        self, unit_code: str, category: RequirementCategory
    ) -> list[dict[str, Any]]:
        wanted = unit_code.casefold()
        rows = [
            dict(row)
            for row in self._tables.get(category.table_name, [])
            if row_code(row).casefold() == wanted
            or (row_link(row) and unit_code_from(row_link(row)).casefold() == wanted)
        ]
        rows.sort(key=lambda r: _sort_key(r.get("id")))
        return rows


class MongoRequirementSource:
    """Requirement tables stored as one MongoDB collection per category."""

    def __init__(self, database: Any):
        self._db = database

    def fetch_requirements_for_unit(
        self, unit_code: str, category: RequirementCategory
    ) -> list[dict[str, Any]]:
        query = {
            "$or": [{c: code_pattern(unit_code)} for c in CODE_COLUMNS]
            + [{c: link_pattern(unit_code)} for c in LINK_COLUMNS]
        }
        cursor = self._db[category.table_name].find(query, {"_id": 0}).sort("id", 1)
        rows = list(cursor)
        logger.debug(
            f"[Source] {len(rows)} rows from {category.table_name} for {unit_code}"
        )
        return rows


def _sort_key(value: Any) -> tuple[int, Any]:
    if isinstance(value, int):
        return (0, value)
    return (1, str(value))


def get_requirement_source() -> RequirementSource:
    """Pick the source backing for the configured mode."""
    settings = get_settings()
    if settings.mock_mode:
        return InMemoryRequirementSource()

    from assessment_validator.persistence.mongo_client import get_mongo

    return MongoRequirementSource(get_mongo().database)
