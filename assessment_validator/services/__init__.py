"""Services — normalizer, session context, prompt assembly, model calls, parsing."""

from assessment_validator.services.backoff import BackoffPolicy
from assessment_validator.services.citation_merger import CitationMerger
from assessment_validator.services.llm_service import ValidationCaller, classify_provider_error
from assessment_validator.services.prompt_assembler import PromptAssembler
from assessment_validator.services.rate_limiter import RateLimiter, get_rate_limiter
from assessment_validator.services.report import RunReport, build_run_report
from assessment_validator.services.requirement_normalizer import RequirementNormalizer
from assessment_validator.services.response_parser import ResponseParser
from assessment_validator.services.session_context import SessionContextBuilder
from assessment_validator.services.smart_questions import SmartQuestionGenerator

__all__ = [
    "BackoffPolicy",
    "CitationMerger",
    "ValidationCaller",
    "classify_provider_error",
    "PromptAssembler",
    "RateLimiter",
    "get_rate_limiter",
    "RunReport",
    "build_run_report",
    "RequirementNormalizer",
    "ResponseParser",
    "SessionContextBuilder",
    "SmartQuestionGenerator",
]
