"""
Response Parser — turns free-form model output into a typed ValidationResult.

Never raises on malformed model output.  Layers, in order:
  1. strip markdown fences
  2. direct JSON parse
  3. balanced-brace scan for the first parseable {...} span
  4. key normalization, alias resolution and status coercion
  5. fallback: status=Error with an excerpt of the raw text
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional, Union

from assessment_validator.models.enums import CitationSource, ValidationStatus
from assessment_validator.models.schemas import (
    Citation,
    RawModelResponse,
    Requirement,
    ValidationResult,
)

logger = logging.getLogger(__name__)

NOT_APPLICABLE = "N/A"

_FENCE_BLOCK = re.compile(r"```[a-zA-Z0-9_-]*\s*\n?(.*?)\n?\s*```", re.DOTALL)
_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_PAGE_REF = re.compile(r"\bp(?:age|ages|g|p)?\.?\s*(\d+(?:\s*(?:-|–|,|&|and)\s*\d+)*)", re.IGNORECASE)

_STATUS_VARIANTS: dict[str, ValidationStatus] = {
    "met": ValidationStatus.MET,
    "pass": ValidationStatus.MET,
    "passed": ValidationStatus.MET,
    "satisfied": ValidationStatus.MET,
    "fullymet": ValidationStatus.MET,
    "compliant": ValidationStatus.MET,
    "partiallymet": ValidationStatus.PARTIALLY_MET,
    "partialmet": ValidationStatus.PARTIALLY_MET,
    "partial": ValidationStatus.PARTIALLY_MET,
    "partly": ValidationStatus.PARTIALLY_MET,
    "partlymet": ValidationStatus.PARTIALLY_MET,
    "partiallysatisfied": ValidationStatus.PARTIALLY_MET,
    "notmet": ValidationStatus.NOT_MET,
    "unmet": ValidationStatus.NOT_MET,
    "fail": ValidationStatus.NOT_MET,
    "failed": ValidationStatus.NOT_MET,
    "notsatisfied": ValidationStatus.NOT_MET,
    "noncompliant": ValidationStatus.NOT_MET,
}

# canonical field → accepted keys after normalization, most specific first
_ALIASES: dict[str, tuple[str, ...]] = {
    "status": ("status", "validation_status", "requirement_status", "verdict", "result"),
    "reasoning": ("reasoning", "justification", "rationale", "explanation", "summary"),
    "mapped_content": ("mapped_content", "evidence_found", "mapped_questions", "evidence"),
    "unmapped_content": ("unmapped_content", "gaps", "missing_content", "unmapped"),
    "recommendations": ("recommendations", "recommendation"),
    "smart_question": (
        "smart_question",
        "smart_task",
        "practical_task",
        "suggested_question",
        "smart_questions",
        "smart_tasks",
    ),
    "benchmark_answer": (
        "benchmark_answer",
        "model_answer",
        "expected_behavior",
        "expected_behaviour",
    ),
    "citations": ("citations", "evidence_citations", "references"),
    "confidence": ("confidence", "confidence_score"),
}

_WRAPPER_KEYS = ("requirement_validations", "validations", "results")


# ── Extraction helpers ───────────────────────────────────


def strip_fences(text: str) -> str:
    """Return the body of the first fenced block, or the text unchanged."""
    stripped = text.strip()
    match = _FENCE_BLOCK.search(stripped)
    if match:
        return match.group(1).strip()
    if stripped.startswith("```"):
        # opening fence with no closing fence (truncated output)
        return stripped.split("\n", 1)[1].strip() if "\n" in stripped else ""
    return stripped


def balanced_spans(text: str) -> list[str]:
    """Every top-level balanced {...} span, string- and escape-aware."""
    spans: list[str] = []
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        end = -1
        for index in range(start, len(text)):
            char = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    end = index
                    break
        if end == -1:
            # unbalanced from here on; retry from the next opening brace
            start = text.find("{", start + 1)
            continue
        spans.append(text[start : end + 1])
        start = text.find("{", end + 1)
    return spans


def _as_object(value: Any) -> Optional[dict[str, Any]]:
    if isinstance(value, dict):
        return value
    if isinstance(value, list) and value and isinstance(value[0], dict):
        return value[0]
    return None


def extract_json_object(text: str) -> Optional[dict[str, Any]]:
    """Layers 1–3: fences, direct parse, balanced-brace scan."""
    if not text or not text.strip():
        return None

    candidates = [strip_fences(text), text.strip()]
    for candidate in candidates:
        try:
            obj = _as_object(json.loads(candidate))
        except (json.JSONDecodeError, ValueError):
            continue
        if obj is not None:
            return obj

    for candidate in candidates:
        for span in balanced_spans(candidate):
            try:
                obj = json.loads(span)
            except (json.JSONDecodeError, ValueError):
                continue
            if isinstance(obj, dict):
                return obj
    return None


def normalize_key(key: str) -> str:
    key = _CAMEL_BOUNDARY.sub("_", str(key).strip())
    return re.sub(r"[\s\-]+", "_", key).lower()


def normalize_keys(obj: dict[str, Any]) -> dict[str, Any]:
    return {normalize_key(k): v for k, v in obj.items()}


def coerce_status(value: Any) -> Optional[ValidationStatus]:
    if value is None:
        return None
    compact = re.sub(r"[\s_\-]+", "", str(value)).lower()
    return _STATUS_VARIANTS.get(compact)


def coerce_confidence(value: Any) -> float:
    if value is None or value == "":
        return 0.0
    try:
        number = float(str(value).strip().rstrip("%"))
    except (TypeError, ValueError):
        return 0.0
    if 1.0 < number <= 100.0:
        number /= 100.0
    return max(0.0, min(1.0, number))


def _text(value: Any) -> str:
    """Flatten strings, lists and small objects into display text."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, list):
        parts = [_text(v) for v in value]
        return "\n".join(p for p in parts if p)
    if isinstance(value, dict):
        for key in ("question", "task", "text", "description", "content"):
            if value.get(key):
                return _text(value[key])
        return "; ".join(f"{k}: {_text(v)}" for k, v in value.items() if v)
    return str(value)


def _page_numbers(value: Any) -> list[int]:
    if value is None:
        return []
    if isinstance(value, int):
        return [value]
    if isinstance(value, list):
        pages: list[int] = []
        for item in value:
            pages.extend(_page_numbers(item))
        return pages
    return [int(n) for n in re.findall(r"\d+", str(value))]


def parse_model_citation(item: Any) -> Optional[Citation]:
    """A model citation given either as a string or as an object."""
    if isinstance(item, str):
        text = item.strip()
        if not text:
            return None
        name, _, location = text.partition(",")
        pages = []
        for match in _PAGE_REF.finditer(text):
            pages.extend(int(n) for n in re.findall(r"\d+", match.group(1)))
        return Citation(
            document_name=name.strip(),
            location=location.strip(),
            page_numbers=pages,
            source=CitationSource.MODEL,
        )
    if not isinstance(item, dict):
        return None

    data = normalize_keys(item)

    def pick(*keys: str) -> str:
        for key in keys:
            if data.get(key) not in (None, ""):
                return _text(data[key])
        return ""

    name = pick("document_name", "document", "file_name", "filename", "source", "title")
    if not name:
        return None
    location = pick("location", "section", "question_number", "locator")
    pages = _page_numbers(data.get("page_numbers", data.get("pages", data.get("page"))))
    if not pages and location:
        for match in _PAGE_REF.finditer(location):
            pages.extend(int(n) for n in re.findall(r"\d+", match.group(1)))
    return Citation(
        document_name=name,
        location=location,
        excerpt=pick("excerpt", "chunk_text", "quote", "question_text", "text"),
        relevance_note=pick("relevance_note", "relevance", "note", "reason"),
        page_numbers=pages,
        source=CitationSource.MODEL,
    )


# ── Parser ───────────────────────────────────────────────


class ResponseParser:
    def __init__(self, excerpt_chars: int = 500):
        self.excerpt_chars = excerpt_chars

    def parse(
        self,
        raw: Union[RawModelResponse, str],
        requirement: Requirement,
        run_id: str,
    ) -> ValidationResult:
        text = raw.text if isinstance(raw, RawModelResponse) else str(raw or "")

        obj = extract_json_object(text)
        if obj is None:
            logger.warning(
                f"[Parser] No JSON object in response for requirement "
                f"{requirement.id} ({len(text)} chars)"
            )
            return self.fallback(text, requirement, run_id)

        data = self._select_entry(normalize_keys(obj), requirement)
        fields = {name: self._lookup(data, keys) for name, keys in _ALIASES.items()}

        status = coerce_status(fields["status"])
        if status is None:
            logger.warning(
                f"[Parser] Unrecognized status {fields['status']!r} for "
                f"requirement {requirement.id}"
            )
            return self.fallback(
                text,
                requirement,
                run_id,
                reason=f"Unrecognized status value {fields['status']!r}",
            )

        citations = [
            c
            for c in (parse_model_citation(item) for item in self._as_list(fields["citations"]))
            if c is not None
        ]

        smart_question = _text(fields["smart_question"])
        benchmark_answer = _text(fields["benchmark_answer"])
        if status == ValidationStatus.MET:
            smart_question = NOT_APPLICABLE
            benchmark_answer = NOT_APPLICABLE

        result = ValidationResult(
            run_id=run_id,
            requirement_id=requirement.id,
            requirement_number=requirement.number,
            category=requirement.category,
            status=status,
            reasoning=_text(fields["reasoning"]),
            mapped_content=_text(fields["mapped_content"]),
            unmapped_content=_text(fields["unmapped_content"]),
            recommendations=_text(fields["recommendations"]),
            citations=citations,
            smart_question=smart_question,
            benchmark_answer=benchmark_answer,
            confidence=coerce_confidence(fields["confidence"]),
        )
        logger.debug(
            f"[Parser] Requirement {requirement.id} → {status.value} "
            f"({len(citations)} model citations)"
        )
        return result

    def fallback(
        self,
        text: str,
        requirement: Requirement,
        run_id: str,
        reason: str = "Unparseable model response",
    ) -> ValidationResult:
        excerpt = (text or "").strip()
        if len(excerpt) > self.excerpt_chars:
            excerpt = excerpt[: self.excerpt_chars] + "…"
        return ValidationResult(
            run_id=run_id,
            requirement_id=requirement.id,
            requirement_number=requirement.number,
            category=requirement.category,
            status=ValidationStatus.ERROR,
            reasoning=f"{reason}. Raw excerpt: {excerpt}" if excerpt else f"{reason}.",
            citations=[],
            parse_failed=True,
            error_message=reason,
        )

    # ── Internals ────────────────────────────────────────

    @staticmethod
    def _lookup(data: dict[str, Any], keys: tuple[str, ...]) -> Any:
        for key in keys:
            if key in data and data[key] not in (None, ""):
                return data[key]
        return None

    @staticmethod
    def _as_list(value: Any) -> list[Any]:
        if value is None:
            return []
        return value if isinstance(value, list) else [value]

    @staticmethod
    def _select_entry(data: dict[str, Any], requirement: Requirement) -> dict[str, Any]:
        """Unwrap {"requirement_validations": [...]} shaped answers."""
        if any(key in data for key in _ALIASES["status"]):
            return data
        for wrapper in _WRAPPER_KEYS:
            entries = data.get(wrapper)
            if not isinstance(entries, list):
                continue
            objects = [normalize_keys(e) for e in entries if isinstance(e, dict)]
            for entry in objects:
                if str(entry.get("requirement_id")) == str(requirement.id):
                    return entry
            if objects:
                return objects[0]
        if "overall_status" in data:
            return {**data, "status": data["overall_status"]}
        return data
