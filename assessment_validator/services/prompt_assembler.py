"""
Prompt Assembler — one requirement in, one request payload out.

Requirements are never batched: each payload carries a JSON array holding
exactly one requirement, the run's session header and the template for the
requirement's category.
"""

from __future__ import annotations

import json
import logging
from typing import Optional

from assessment_validator.exceptions import TemplateNotFoundError
from assessment_validator.models.schemas import (
    PromptTemplate,
    RequestPayload,
    Requirement,
    SessionContext,
)
from assessment_validator.prompts.templates import TemplateRegistry

logger = logging.getLogger(__name__)

REQUIREMENT_HEADING = "**Requirement** (JSON array with exactly one element):"


class PromptAssembler:
    def __init__(self, registry: TemplateRegistry, version: str = "v1"):
        self.registry = registry
        self.version = version

    def assemble(
        self,
        requirement: Requirement,
        session_context: SessionContext,
        template: Optional[PromptTemplate] = None,
    ) -> RequestPayload:
        if template is None:
            template = self.registry.get(requirement.category, self.version)
        elif template.category != requirement.category:
            raise TemplateNotFoundError(requirement.category.value, template.version)

        text = self.render(requirement, session_context, template)
        logger.debug(
            f"[Assembler] Requirement {requirement.id} "
            f"({requirement.category.slug}, {template.version}) → {len(text)} chars"
        )
        return RequestPayload(
            requirement_id=requirement.id,
            category=requirement.category,
            text=text,
            system_instruction=template.system_instruction,
            document_refs=session_context.documents,
            session_fingerprint=session_context.fingerprint(),
            template_version=template.version,
        )

    @staticmethod
    def render(
        requirement: Requirement,
        session_context: SessionContext,
        template: PromptTemplate,
    ) -> str:
        requirement_json = json.dumps([requirement.to_prompt_dict()], indent=2)
        schema_json = json.dumps(template.output_schema, indent=2)
        position = session_context.position_in_batch
        total = session_context.batch_size

        sections = [
            session_context.header_text(),
            (
                "Only the documents listed in the session context above may be used "
                "as evidence. Evidence from any document that is not listed is invalid "
                "and must not be cited."
            ),
            (
                f"This request validates requirement {position} of {total} for unit "
                f"{session_context.unit_identifier}. Other requirements are validated "
                "in separate requests."
            ),
            template.guidance,
            f"{REQUIREMENT_HEADING}\n```json\n{requirement_json}\n```",
            f"**Required JSON response format**:\n```json\n{schema_json}\n```",
            "Return only the JSON object.",
        ]
        return "\n\n".join(sections)
