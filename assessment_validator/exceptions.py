"""
Error taxonomy for the validation pipeline.

Run-fatal errors abort the remaining requirement loop and mark the run
Failed.  Provider errors are requirement-scoped: they are recorded as that
requirement's result and the loop continues.  Unparseable model output is
never an exception (see services.response_parser).
"""

from __future__ import annotations


class ValidationPipelineError(Exception):
    """Base class for every error raised by the pipeline."""

    run_fatal: bool = False


# ── Run-fatal ────────────────────────────────────────────


class RequirementNotFoundError(ValidationPipelineError):
    """No requirements resolved for the requested unit."""

    run_fatal = True

    def __init__(self, unit_identifier: str, category: str | None = None):
        self.unit_identifier = unit_identifier
        self.category = category
        scope = f" ({category})" if category else ""
        super().__init__(f"No requirements found for unit {unit_identifier}{scope}")


class EmptyDocumentSetError(ValidationPipelineError):
    """A run was started without any source documents."""

    run_fatal = True

    def __init__(self, run_id: str = ""):
        self.run_id = run_id
        super().__init__(
            f"Run {run_id or '<new>'} has no documents; nothing to validate against"
        )


class TemplateNotFoundError(ValidationPipelineError):
    """No prompt template registered for a (category, version) pair."""

    run_fatal = True

    def __init__(self, category: str, version: str):
        self.category = category
        self.version = version
        super().__init__(f"No prompt template for category={category} version={version}")


# ── Requirement-scoped ───────────────────────────────────


class ProviderError(ValidationPipelineError):
    """Failure talking to the generative model API."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class TransientProviderError(ProviderError):
    """429, 5xx, timeouts and connection drops; retried with backoff."""


class NonRetryableProviderError(ProviderError):
    """4xx other than 429, or a request that must never be sent."""


# ── Lookup ───────────────────────────────────────────────


class RunNotFoundError(ValidationPipelineError):
    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"Run {run_id} not found")


class RequirementNotInRunError(ValidationPipelineError):
    def __init__(self, run_id: str, requirement_id: int | str):
        self.run_id = run_id
        self.requirement_id = requirement_id
        super().__init__(f"Requirement {requirement_id} is not part of run {run_id}")
