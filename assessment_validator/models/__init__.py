"""Models — enums and pydantic schemas shared across the pipeline."""

from assessment_validator.models.enums import (
    ApiTier,
    CitationSource,
    RequirementCategory,
    RunStatus,
    ValidationStatus,
)
from assessment_validator.models.schemas import (
    Citation,
    DocumentReference,
    PromptTemplate,
    RawModelResponse,
    RequestPayload,
    Requirement,
    RunProgress,
    RunSummary,
    SessionContext,
    ValidationResult,
)

__all__ = [
    "ApiTier",
    "CitationSource",
    "RequirementCategory",
    "RunStatus",
    "ValidationStatus",
    "Citation",
    "DocumentReference",
    "PromptTemplate",
    "RawModelResponse",
    "RequestPayload",
    "Requirement",
    "RunProgress",
    "RunSummary",
    "SessionContext",
    "ValidationResult",
]
