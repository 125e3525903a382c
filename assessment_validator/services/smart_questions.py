"""
Smart Question follow-up — for PartiallyMet / NotMet verdicts that came back
without a remediation artifact, one extra model call generates a smart
question (knowledge evidence) or practical task (other categories) and a
benchmark answer.  Failures never touch the primary verdict.
"""

from __future__ import annotations

import logging

from assessment_validator.models.enums import RequirementCategory, ValidationStatus
from assessment_validator.models.schemas import (
    RequestPayload,
    Requirement,
    SessionContext,
    ValidationResult,
)
from assessment_validator.prompts.templates import SMART_QUESTION_PROMPT
from assessment_validator.services.llm_service import ValidationCaller
from assessment_validator.services.response_parser import (
    NOT_APPLICABLE,
    extract_json_object,
    normalize_keys,
)

logger = logging.getLogger(__name__)

_ARTIFACT_KEYS = ("smart_question", "smart_task", "practical_task", "suggested_question")
_BENCHMARK_KEYS = ("benchmark_answer", "model_answer", "expected_behavior", "expected_behaviour")


def needs_smart_question(result: ValidationResult) -> bool:
    if result.status not in (ValidationStatus.PARTIALLY_MET, ValidationStatus.NOT_MET):
        return False
    return not result.smart_question or result.smart_question == NOT_APPLICABLE


class SmartQuestionGenerator:
    def __init__(self, caller: ValidationCaller):
        self.caller = caller

    def enrich(
        self,
        result: ValidationResult,
        requirement: Requirement,
        session_context: SessionContext,
        system_instruction: str,
        template_version: str,
    ) -> ValidationResult:
        if not needs_smart_question(result):
            return result

        is_knowledge = requirement.category == RequirementCategory.KNOWLEDGE_EVIDENCE
        prompt = SMART_QUESTION_PROMPT.format(
            session_header=session_context.header_text(),
            status=result.status.value,
            requirement_number=requirement.number,
            category=requirement.category.slug,
            requirement_text=requirement.text,
            reasoning=result.reasoning or "(none given)",
            unmapped_content=result.unmapped_content or "(none given)",
            artifact="assessment question" if is_knowledge else "practical task",
            artifact_key="smart_question" if is_knowledge else "smart_task",
        )
        payload = RequestPayload(
            requirement_id=requirement.id,
            category=requirement.category,
            text=prompt,
            system_instruction=system_instruction,
            document_refs=session_context.documents,
            session_fingerprint=session_context.fingerprint(),
            template_version=template_version,
        )

        logger.info(
            f"[SmartQ] Generating {'question' if is_knowledge else 'task'} "
            f"for requirement {requirement.id} ({result.status.value})"
        )
        try:
            raw = self.caller.call(payload)
        except Exception as exc:
            logger.warning(f"[SmartQ] Generation failed for {requirement.id}: {exc} — keeping original")
            return result

        data = extract_json_object(raw.text)
        if data is None:
            logger.warning(f"[SmartQ] No JSON in generation response for {requirement.id}")
            return result
        data = normalize_keys(data)

        artifact = next((str(data[k]).strip() for k in _ARTIFACT_KEYS if data.get(k)), "")
        if not artifact:
            return result
        benchmark = next((str(data[k]).strip() for k in _BENCHMARK_KEYS if data.get(k)), "")

        update = {"smart_question": artifact, "benchmark_answer": benchmark}
        if not result.recommendations and data.get("recommendations"):
            update["recommendations"] = str(data["recommendations"]).strip()
        return result.model_copy(update=update)
