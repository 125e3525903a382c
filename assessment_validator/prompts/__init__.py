"""Prompts — versioned per-category templates."""

from assessment_validator.prompts.templates import (
    SMART_QUESTION_PROMPT,
    TemplateRegistry,
    default_registry,
)

__all__ = ["SMART_QUESTION_PROMPT", "TemplateRegistry", "default_registry"]
