"""
Data schemas shared by every stage of the validation pipeline.
Inputs (Requirement, DocumentReference) and the session envelope are frozen;
ValidationResult is only ever replaced whole by the result store.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from assessment_validator.utils.hashing import sha256_hash
from .enums import (
    CitationSource,
    RequirementCategory,
    RunStatus,
    ValidationStatus,
)

RequirementId = Union[int, str]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Inputs ───────────────────────────────────────────────


class Requirement(BaseModel):
    """One competency statement to be validated against evidence."""

    model_config = ConfigDict(frozen=True)

    id: RequirementId
    unit_identifier: str
    category: RequirementCategory
    number: str
    text: str
    parent_element: Optional[str] = None
    description: str = ""

    def to_prompt_dict(self) -> dict[str, Any]:
        """The JSON shape documented in every validation prompt."""
        data: dict[str, Any] = {
            "id": self.id,
            "unitCode": self.unit_identifier,
            "type": self.category.slug,
            "number": self.number,
            "text": self.text,
        }
        if self.parent_element:
            data["parentElement"] = self.parent_element
        return data


class DocumentReference(BaseModel):
    """A source artifact already indexed by the AI provider."""

    model_config = ConfigDict(frozen=True)

    file_name: str
    document_type: str = "assessment"
    provider_file_uri: str
    uploaded_at: datetime
    mime_type: str = "application/pdf"
    expires_at: Optional[datetime] = None


# ── Session isolation envelope ───────────────────────────


class SessionContext(BaseModel):
    """
    Created once per run and attached to every model call of that run.
    Derive per-requirement envelopes with at_position(); never mutate.
    """

    model_config = ConfigDict(frozen=True)

    session_id: str
    run_id: str
    created_at: datetime = Field(default_factory=utcnow)
    unit_identifier: str
    org_identifier: str
    documents: tuple[DocumentReference, ...]
    position_in_batch: int = 0
    batch_size: int = 0

    def at_position(self, position: int) -> SessionContext:
        return self.model_copy(update={"position_in_batch": position})

    def with_batch_size(self, batch_size: int) -> SessionContext:
        return self.model_copy(update={"batch_size": batch_size})

    def header_text(self) -> str:
        # created_at stays out so identical inputs render identical text
        lines = [
            "=== SESSION CONTEXT ===",
            f"Session ID: {self.session_id}",
            f"Unit: {self.unit_identifier}",
            f"Organisation: {self.org_identifier}",
            f"Requirement: {self.position_in_batch} of {self.batch_size}",
            f"Documents in this session ({len(self.documents)}):",
        ]
        for index, doc in enumerate(self.documents, start=1):
            lines.append(
                f"  {index}. {doc.file_name} [{doc.document_type}] "
                f"uploaded {doc.uploaded_at.isoformat()} ({doc.provider_file_uri})"
            )
        lines.append("=== END SESSION CONTEXT ===")
        return "\n".join(lines)

    def fingerprint(self) -> str:
        return sha256_hash(self.header_text())


# ── Prompting ────────────────────────────────────────────


class PromptTemplate(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: RequirementCategory
    version: str
    system_instruction: str
    guidance: str
    output_schema: dict[str, Any]


class RequestPayload(BaseModel):
    """Everything the caller needs for exactly one model request."""

    model_config = ConfigDict(frozen=True)

    requirement_id: RequirementId
    category: RequirementCategory
    text: str
    system_instruction: str
    document_refs: tuple[DocumentReference, ...]
    session_fingerprint: str
    template_version: str


class RawModelResponse(BaseModel):
    text: str = ""
    grounding_metadata: Optional[dict[str, Any]] = None
    finish_reason: str = "unknown"
    elapsed_seconds: float = 0.0
    attempts: int = 1


# ── Results ──────────────────────────────────────────────


class Citation(BaseModel):
    document_name: str
    location: str = ""
    excerpt: str = ""
    relevance_note: str = ""
    page_numbers: list[int] = []
    source: CitationSource = CitationSource.MODEL


class ValidationResult(BaseModel):
    """The durable outcome of validating one requirement."""

    run_id: str
    requirement_id: RequirementId
    requirement_number: str = ""
    category: Optional[RequirementCategory] = None
    status: ValidationStatus
    reasoning: str = ""
    mapped_content: str = ""
    unmapped_content: str = ""
    recommendations: str = ""
    citations: list[Citation] = []
    smart_question: str = ""
    benchmark_answer: str = ""
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    parse_failed: bool = False
    error_message: str = ""
    created_at: datetime = Field(default_factory=utcnow)

    def comparable(self) -> dict[str, Any]:
        """Every field except created_at, for idempotence checks."""
        return self.model_dump(mode="json", exclude={"created_at"})


# ── Run bookkeeping ──────────────────────────────────────


class RunSummary(BaseModel):
    """One durable record per run: progress counters and overall status."""

    run_id: str
    unit_identifier: str
    org_identifier: str
    status: RunStatus = RunStatus.PENDING
    completed_count: int = 0
    total_count: int = 0
    error_count: int = 0
    requirement_ids: list[RequirementId] = []
    documents: list[DocumentReference] = []
    category_filter: Optional[str] = None
    prompt_version: str = "v1"
    cancel_requested: bool = False
    error_message: str = ""
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: Optional[datetime] = None


class RunProgress(BaseModel):
    completed_count: int
    total_count: int
    status: RunStatus
