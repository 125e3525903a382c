"""
Prompt templates — one per requirement category, looked up explicitly by
(category, version).  A run pins its version at start so revalidation uses
the same text the original verdict was produced with.
"""

from __future__ import annotations

import copy
from typing import Any, Iterable

from assessment_validator.exceptions import TemplateNotFoundError
from assessment_validator.models.enums import RequirementCategory
from assessment_validator.models.schemas import PromptTemplate

SYSTEM_INSTRUCTION_V1 = """You are an expert RTO (Registered Training Organisation) assessment validator.
You judge whether assessment documents satisfy ONE unit-of-competency requirement at a time.
Only the documents attached to this request exist for you. Evidence from any other document,
from earlier conversations, or from general knowledge is invalid and must not be cited.
Respond with a single JSON object and nothing else."""

_STATUS_RULES = """Determine the status:
- "Met": the documents fully address the requirement.
- "Partially Met": the requirement is addressed but gaps remain.
- "Not Met": the documents do not adequately address the requirement."""

_CITATION_RULES = """Citations:
- Name the document exactly as it appears in the session manifest.
- Give a precise location (section, question number, page).
- If evidence is missing, say what you looked for and could not find."""

KNOWLEDGE_EVIDENCE_V1 = f"""**Knowledge Evidence validation**

1. Identify the knowledge the requirement asks the learner to demonstrate.
2. Search the assessment for questions that directly test this knowledge.
   Note question numbers, sections and pages.
3. {_STATUS_RULES}
4. Explain what evidence you found (or did not find) and why it justifies the status.
5. If the status is not "Met", write ONE smart question that would close the gap
   and a benchmark answer describing what a competent learner would say.

{_CITATION_RULES}"""

PERFORMANCE_EVIDENCE_V1 = f"""**Performance Evidence validation**

1. Identify the task or activity the learner must perform, including frequency or volume.
2. Search the assessment for practical tasks, observation checklists and third-party reports
   that require the learner to actually perform it.
3. {_STATUS_RULES}
4. Explain how the tasks do (or do not) capture the performance, including how often.
5. If the status is not "Met", write ONE practical task that would close the gap
   and a benchmark answer describing the expected observable behaviour.

{_CITATION_RULES}"""

FOUNDATION_SKILLS_V1 = f"""**Foundation Skills validation**

1. Identify the foundation skill (reading, writing, oral communication, numeracy,
   learning, problem solving, teamwork, technology ...) and how it applies to the unit.
2. Search the assessment for tasks that require the learner to use this skill in context.
3. {_STATUS_RULES}
4. Explain which tasks exercise the skill and whether the level of demand is appropriate.
5. If the status is not "Met", write ONE practical task that would close the gap
   and a benchmark answer.

{_CITATION_RULES}"""

ELEMENTS_PERFORMANCE_CRITERIA_V1 = f"""**Elements and Performance Criteria validation**

1. Read the performance criterion together with its parent element.
2. Search the assessment for questions, tasks or observation items mapped to this criterion.
3. {_STATUS_RULES}
4. Explain how the mapped items cover the criterion within the context of its element.
5. If the status is not "Met", write ONE practical task that would close the gap
   and a benchmark answer.

{_CITATION_RULES}"""

ASSESSMENT_CONDITIONS_V1 = f"""**Assessment Conditions validation**

1. Identify the condition (environment, resources, equipment, assessor requirements ...).
2. Search the assessment instructions and assessor guidance for where the condition is
   specified or provided.
3. {_STATUS_RULES}
4. Explain where the condition is addressed and any part that is missing.
5. If the status is not "Met", write ONE practical task or instruction that would close the
   gap and a benchmark answer.

{_CITATION_RULES}"""


def _output_schema(remediation_key: str) -> dict[str, Any]:
    return {
        "type": "object",
        "required": ["status", "reasoning", "citations"],
        "properties": {
            "requirement_id": {"type": ["integer", "string"]},
            "status": {"enum": ["Met", "Partially Met", "Not Met"]},
            "reasoning": {"type": "string"},
            "mapped_content": {"type": "string"},
            "unmapped_content": {"type": "string"},
            "recommendations": {"type": "string"},
            "citations": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "document_name": {"type": "string"},
                        "location": {"type": "string"},
                        "excerpt": {"type": "string"},
                        "relevance": {"type": "string"},
                        "page_numbers": {"type": "array", "items": {"type": "integer"}},
                    },
                },
            },
            remediation_key: {"type": "string"},
            "benchmark_answer": {"type": "string"},
            "confidence": {"type": "number", "minimum": 0, "maximum": 1},
        },
    }


_V1_GUIDANCE = {
    RequirementCategory.KNOWLEDGE_EVIDENCE: (KNOWLEDGE_EVIDENCE_V1, "smart_question"),
    RequirementCategory.PERFORMANCE_EVIDENCE: (PERFORMANCE_EVIDENCE_V1, "smart_task"),
    RequirementCategory.FOUNDATION_SKILLS: (FOUNDATION_SKILLS_V1, "smart_task"),
    RequirementCategory.ELEMENTS_PERFORMANCE_CRITERIA: (
        ELEMENTS_PERFORMANCE_CRITERIA_V1,
        "smart_task",
    ),
    RequirementCategory.ASSESSMENT_CONDITIONS: (ASSESSMENT_CONDITIONS_V1, "smart_task"),
}


class TemplateRegistry:
    """(category, version) → PromptTemplate.  No fallback to a generic template."""

    def __init__(self, templates: Iterable[PromptTemplate] = ()):
        self._templates: dict[tuple[RequirementCategory, str], PromptTemplate] = {}
        for template in templates:
            self.register(template)

    def register(self, template: PromptTemplate) -> None:
        self._templates[(template.category, template.version)] = template

    def get(self, category: RequirementCategory, version: str) -> PromptTemplate:
        template = self._templates.get((category, version))
        if template is None:
            raise TemplateNotFoundError(category.value, version)
        return template


def default_registry() -> TemplateRegistry:
    """The five built-in v1 templates."""
    return TemplateRegistry(
        PromptTemplate(
            category=category,
            version="v1",
            system_instruction=SYSTEM_INSTRUCTION_V1,
            guidance=guidance,
            output_schema=copy.deepcopy(_output_schema(remediation_key)),
        )
        for category, (guidance, remediation_key) in _V1_GUIDANCE.items()
    )


# ── Smart question follow-up ─────────────────────────────

SMART_QUESTION_PROMPT = """{session_header}

A requirement was judged "{status}" against the documents listed above.

Requirement {requirement_number} ({category}):
{requirement_text}

Validator reasoning:
{reasoning}

Content that is missing from the assessment:
{unmapped_content}

Write ONE {artifact} that would close the gap, and a benchmark answer describing
what a competent learner would produce.  Use only the documents listed above for context.

Return only a JSON object:
{{"{artifact_key}": "...", "benchmark_answer": "...", "recommendations": "..."}}
"""
