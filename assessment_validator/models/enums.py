from enum import Enum


class RequirementCategory(str, Enum):
    KNOWLEDGE_EVIDENCE = "KnowledgeEvidence"
    PERFORMANCE_EVIDENCE = "PerformanceEvidence"
    FOUNDATION_SKILLS = "FoundationSkills"
    ELEMENTS_PERFORMANCE_CRITERIA = "ElementsPerformanceCriteria"
    ASSESSMENT_CONDITIONS = "AssessmentConditions"

    @property
    def slug(self) -> str:
        """snake_case name used by the source tables and the model prompts."""
        return _SLUGS[self]

    @property
    def table_name(self) -> str:
        return f"{self.slug}_requirements"

    @property
    def code(self) -> str:
        """Short prefix that qualifies row ids, which each table numbers on its own."""
        return _CODES[self]

    @property
    def ordinal(self) -> int:
        """1-based position in canonical order, used to synthesize numbers."""
        return list(RequirementCategory).index(self) + 1

    @classmethod
    def parse(cls, value: "str | RequirementCategory") -> "RequirementCategory":
        """Accept the enum value, the slug, or the legacy shorthand codes."""
        if isinstance(value, RequirementCategory):
            return value
        key = str(value).strip()
        for member in cls:
            if key == member.value or key.lower() == member.slug:
                return member
        alias = _ALIASES.get(key.lower())
        if alias is None:
            raise ValueError(f"Unknown requirement category: {value!r}")
        return alias


_SLUGS = {
    RequirementCategory.KNOWLEDGE_EVIDENCE: "knowledge_evidence",
    RequirementCategory.PERFORMANCE_EVIDENCE: "performance_evidence",
    RequirementCategory.FOUNDATION_SKILLS: "foundation_skills",
    RequirementCategory.ELEMENTS_PERFORMANCE_CRITERIA: "elements_performance_criteria",
    RequirementCategory.ASSESSMENT_CONDITIONS: "assessment_conditions",
}

_CODES = {
    RequirementCategory.KNOWLEDGE_EVIDENCE: "ke",
    RequirementCategory.PERFORMANCE_EVIDENCE: "pe",
    RequirementCategory.FOUNDATION_SKILLS: "fs",
    RequirementCategory.ELEMENTS_PERFORMANCE_CRITERIA: "epc",
    RequirementCategory.ASSESSMENT_CONDITIONS: "ac",
}

_ALIASES = {
    "ke": RequirementCategory.KNOWLEDGE_EVIDENCE,
    "learner": RequirementCategory.KNOWLEDGE_EVIDENCE,
    "pe": RequirementCategory.PERFORMANCE_EVIDENCE,
    "fs": RequirementCategory.FOUNDATION_SKILLS,
    "epc": RequirementCategory.ELEMENTS_PERFORMANCE_CRITERIA,
    "elements_criteria": RequirementCategory.ELEMENTS_PERFORMANCE_CRITERIA,
    "ac": RequirementCategory.ASSESSMENT_CONDITIONS,
}


class ValidationStatus(str, Enum):
    MET = "Met"
    PARTIALLY_MET = "PartiallyMet"
    NOT_MET = "NotMet"
    ERROR = "Error"


class RunStatus(str, Enum):
    PENDING = "Pending"
    PROCESSING = "Processing"
    COMPLETED = "Completed"
    PARTIALLY_FAILED = "PartiallyFailed"
    FAILED = "Failed"
    CANCELLED = "Cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            RunStatus.COMPLETED,
            RunStatus.PARTIALLY_FAILED,
            RunStatus.FAILED,
            RunStatus.CANCELLED,
        )


class ApiTier(str, Enum):
    FREE = "free"
    PAID = "paid"


class CitationSource(str, Enum):
    MODEL = "model"
    GROUNDING = "grounding"
    MERGED = "merged"
