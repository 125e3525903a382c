"""
Validation Pipeline — the operations exposed to collaborators.

  start_run()               → run_id (inline or on a background thread)
  get_run_progress()        → completed / total / status
  get_results()             → results in submission order
  revalidate_requirement()  → re-run one requirement, replacing its result
  cancel_run()              → stop before the next model call
  get_run_report()          → status counts and rates

Run-fatal errors mark the run Failed; anything that goes wrong while
validating a single requirement becomes that requirement's Error result.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from typing import Any, Iterable, Optional

from assessment_validator.config import get_settings
from assessment_validator.exceptions import (
    ProviderError,
    RequirementNotInRunError,
    ValidationPipelineError,
)
from assessment_validator.models.enums import RunStatus, ValidationStatus
from assessment_validator.models.schemas import (
    DocumentReference,
    Requirement,
    RequirementId,
    RunProgress,
    RunSummary,
    SessionContext,
    ValidationResult,
)
from assessment_validator.orchestration.graph import build_graph
from assessment_validator.persistence.requirement_source import (
    RequirementSource,
    get_requirement_source,
)
from assessment_validator.persistence.result_store import (
    ResultStore,
    finalize_status,
    get_result_store,
    requirement_key,
)
from assessment_validator.prompts.templates import TemplateRegistry, default_registry
from assessment_validator.services.citation_merger import CitationMerger
from assessment_validator.services.llm_service import ValidationCaller
from assessment_validator.services.prompt_assembler import PromptAssembler
from assessment_validator.services.report import RunReport, build_run_report
from assessment_validator.services.requirement_normalizer import RequirementNormalizer
from assessment_validator.services.response_parser import ResponseParser
from assessment_validator.services.session_context import SessionContextBuilder
from assessment_validator.services.smart_questions import SmartQuestionGenerator

logger = logging.getLogger(__name__)


def _default_progress_bus() -> Any:
    try:
        from assessment_validator.api.websocket import RunProgressBus

        return RunProgressBus.get()
    except ImportError:
        logger.debug("[Pipeline] API layer unavailable; progress events not broadcast")
        return None


class ValidationPipeline:
    def __init__(
        self,
        source: Optional[RequirementSource] = None,
        store: Optional[ResultStore] = None,
        caller: Optional[ValidationCaller] = None,
        registry: Optional[TemplateRegistry] = None,
        parser: Optional[ResponseParser] = None,
        merger: Optional[CitationMerger] = None,
        session_builder: Optional[SessionContextBuilder] = None,
        progress: Any = None,
        generate_smart_questions: Optional[bool] = None,
        prompt_version: Optional[str] = None,
    ):
        settings = get_settings()
        self.settings = settings
        self.source = source if source is not None else get_requirement_source()
        self.store = store if store is not None else get_result_store()
        self._caller = caller
        self.registry = registry if registry is not None else default_registry()
        self.parser = parser or ResponseParser(settings.reasoning_excerpt_chars)
        self.merger = merger or CitationMerger()
        self.session_builder = session_builder or SessionContextBuilder()
        self.normalizer = RequirementNormalizer(self.source)
        self.progress = progress if progress is not None else _default_progress_bus()
        self.generate_smart_questions = (
            settings.generate_smart_questions
            if generate_smart_questions is None
            else generate_smart_questions
        )
        self.prompt_version = prompt_version or settings.prompt_version
        self._graph = build_graph(self)
        self._threads: dict[str, threading.Thread] = {}

    @property
    def caller(self) -> ValidationCaller:
        if self._caller is None:
            self._caller = ValidationCaller()
        return self._caller

    # ── Public operations ────────────────────────────────

    def start_run(
        self,
        unit_identifier: str,
        org_identifier: str,
        document_refs: Iterable[DocumentReference],
        category_filter: Optional[str] = None,
        run_id: Optional[str] = None,
        background: bool = False,
    ) -> str:
        run_id = run_id or f"RUN-{uuid.uuid4().hex[:12].upper()}"
        summary = RunSummary(
            run_id=run_id,
            unit_identifier=unit_identifier,
            org_identifier=org_identifier,
            documents=list(document_refs),
            category_filter=category_filter,
            prompt_version=self.prompt_version,
        )
        self.store.create_run(summary)

        if background:
            thread = threading.Thread(
                target=self._execute, args=(run_id,), daemon=True, name=f"run-{run_id}"
            )
            self._threads[run_id] = thread
            thread.start()
        else:
            self._execute(run_id)
        return run_id

    def wait(self, run_id: str, timeout: Optional[float] = None) -> None:
        """Join a background run (tests, CLI)."""
        thread = self._threads.get(run_id)
        if thread is not None:
            thread.join(timeout)

    def get_run_progress(self, run_id: str) -> RunProgress:
        return self.store.get_progress(run_id)

    def get_results(self, run_id: str) -> list[ValidationResult]:
        return self.store.get_results(run_id)

    def cancel_run(self, run_id: str) -> RunProgress:
        summary = self.store.get_run(run_id)
        if summary.status.is_terminal:
            logger.info(f"[Pipeline] Run {run_id} already {summary.status.value}; nothing to cancel")
        else:
            self.store.request_cancel(run_id)
            logger.info(f"[Pipeline] Cancellation requested for {run_id}")
        return self.store.get_progress(run_id)

    def get_run_report(self, run_id: str) -> RunReport:
        summary = self.store.get_run(run_id)
        return build_run_report(summary, self.store.get_results(run_id))

    def revalidate_requirement(
        self, run_id: str, requirement_id: RequirementId
    ) -> ValidationResult:
        summary = self.store.get_run(run_id)
        key = requirement_key(requirement_id)
        keys = [requirement_key(rid) for rid in summary.requirement_ids]
        if key not in keys:
            raise RequirementNotInRunError(run_id, requirement_id)

        requirements = self.normalizer.normalize(
            summary.unit_identifier, summary.category_filter
        )
        requirement = next(
            (r for r in requirements if requirement_key(r.id) == key), None
        )
        if requirement is None:
            raise RequirementNotInRunError(run_id, requirement_id)

        session = self.session_builder.build(
            run_id, summary.unit_identifier, summary.org_identifier, summary.documents
        ).with_batch_size(summary.total_count)
        position = keys.index(key) + 1

        logger.info(f"[Pipeline] Revalidating {run_id}/{key} ({summary.prompt_version})")
        result = self._validate_one(
            requirement, session.at_position(position), run_id, summary.prompt_version
        )
        self.store.upsert(run_id, requirement.id, result)

        if summary.status in (RunStatus.COMPLETED, RunStatus.PARTIALLY_FAILED):
            status = finalize_status(self.store.get_run(run_id))
            if status != summary.status:
                self.store.set_status(run_id, status)
            self._emit("on_run_end", run_id, status.value)
        return result

    # ── Graph nodes ──────────────────────────────────────

    def load_requirements(self, state: dict[str, Any]) -> dict[str, Any]:
        run_id = state["run_id"]
        summary = self.store.set_status(run_id, RunStatus.PROCESSING)
        try:
            requirements = self.normalizer.normalize(
                summary.unit_identifier, summary.category_filter
            )
        except ValidationPipelineError as exc:
            state["fatal_error"] = str(exc)
            return state

        limit = self.settings.max_requirements_per_run
        if len(requirements) > limit:
            state["fatal_error"] = (
                f"{len(requirements)} requirements exceed the per-run limit of {limit}"
            )
            return state

        keys = [requirement_key(r.id) for r in requirements]
        if len(set(keys)) != len(keys):
            duplicates = sorted({k for k in keys if keys.count(k) > 1})
            state["fatal_error"] = f"Duplicate requirement ids: {', '.join(duplicates)}"
            return state

        self.store.update_run(
            run_id,
            total_count=len(requirements),
            requirement_ids=[r.id for r in requirements],
        )
        state["requirements"] = requirements
        state["cursor"] = 0
        return state

    def build_session(self, state: dict[str, Any]) -> dict[str, Any]:
        run_id = state["run_id"]
        summary = self.store.get_run(run_id)
        requirements: list[Requirement] = state["requirements"]
        try:
            session = self.session_builder.build(
                run_id, summary.unit_identifier, summary.org_identifier, summary.documents
            ).with_batch_size(len(requirements))
            # Fail before the first call, not halfway through the run
            for category in {r.category for r in requirements}:
                self.registry.get(category, summary.prompt_version)
        except ValidationPipelineError as exc:
            state["fatal_error"] = str(exc)
            return state

        state["session"] = session
        state["prompt_version"] = summary.prompt_version
        return state

    def validate_requirement(self, state: dict[str, Any]) -> dict[str, Any]:
        run_id = state["run_id"]
        if self.store.get_run(run_id).cancel_requested:
            logger.info(f"[Pipeline] Run {run_id} cancelled before requirement {state['cursor'] + 1}")
            state["cancelled"] = True
            return state

        requirements: list[Requirement] = state["requirements"]
        index = state["cursor"]
        requirement = requirements[index]
        session: SessionContext = state["session"]
        position = index + 1

        self._emit("on_requirement_start", run_id, requirement.id, position, len(requirements))
        result = self._validate_one(
            requirement, session.at_position(position), run_id, state["prompt_version"]
        )
        progress = self.store.upsert(run_id, requirement.id, result)
        self._emit(
            "on_requirement_end",
            run_id,
            requirement.id,
            result.status.value,
            progress.completed_count,
            progress.total_count,
        )

        state["cursor"] = position
        return state

    def finalize_run(self, state: dict[str, Any]) -> dict[str, Any]:
        run_id = state["run_id"]
        summary = self.store.get_run(run_id)
        status = finalize_status(summary, cancelled=bool(state.get("cancelled")))
        self.store.set_status(run_id, status)
        state["status"] = status.value
        self._emit("on_run_end", run_id, status.value)
        return state

    def fail_run(self, state: dict[str, Any]) -> dict[str, Any]:
        run_id = state["run_id"]
        message = state.get("fatal_error", "Run failed")
        logger.error(f"[Pipeline] Run {run_id} failed: {message}")
        self.store.set_status(run_id, RunStatus.FAILED, error_message=message)
        state["status"] = RunStatus.FAILED.value
        self._emit("on_error", run_id, message)
        self._emit("on_run_end", run_id, RunStatus.FAILED.value)
        return state

    # ── Internals ────────────────────────────────────────

    def _execute(self, run_id: str) -> None:
        logger.info("═" * 60)
        logger.info(f"  VALIDATION RUN {run_id} STARTING")
        logger.info("═" * 60)
        t0 = time.perf_counter()

        limit = 2 * self.settings.max_requirements_per_run + 10
        try:
            final_state = self._graph.invoke(
                {"run_id": run_id}, config={"recursion_limit": limit}
            )
        except Exception as exc:
            logger.exception(f"[Pipeline] Run {run_id} crashed: {exc}")
            self.store.set_status(run_id, RunStatus.FAILED, error_message=str(exc))
            self._emit("on_error", run_id, str(exc))
            return

        logger.info("═" * 60)
        logger.info(
            f"  RUN {run_id} FINISHED — status: {final_state.get('status')} "
            f"in {time.perf_counter() - t0:.1f}s"
        )
        logger.info("═" * 60)

    def _validate_one(
        self,
        requirement: Requirement,
        session: SessionContext,
        run_id: str,
        prompt_version: str,
    ) -> ValidationResult:
        """One requirement in, one result out; never raises."""
        try:
            assembler = PromptAssembler(self.registry, prompt_version)
            payload = assembler.assemble(requirement, session)
            raw = self.caller.call(payload, session.documents)
            result = self.parser.parse(raw, requirement, run_id)
            if result.status != ValidationStatus.ERROR:
                citations = self.merger.merge(
                    result.citations, raw.grounding_metadata, session.documents
                )
                result = result.model_copy(update={"citations": citations})
            if self.generate_smart_questions:
                result = SmartQuestionGenerator(self.caller).enrich(
                    result,
                    requirement,
                    session,
                    payload.system_instruction,
                    payload.template_version,
                )
            return result
        except ProviderError as exc:
            logger.error(f"[Pipeline] Requirement {requirement.id}: provider error: {exc}")
            return self._error_result(requirement, run_id, f"{type(exc).__name__}: {exc}")
        except Exception as exc:
            logger.exception(f"[Pipeline] Requirement {requirement.id}: unexpected error")
            return self._error_result(requirement, run_id, f"{type(exc).__name__}: {exc}")

    @staticmethod
    def _error_result(
        requirement: Requirement, run_id: str, message: str
    ) -> ValidationResult:
        return ValidationResult(
            run_id=run_id,
            requirement_id=requirement.id,
            requirement_number=requirement.number,
            category=requirement.category,
            status=ValidationStatus.ERROR,
            reasoning=f"Validation could not be completed: {message}",
            citations=[],
            error_message=message,
        )

    def _emit(self, hook: str, *args: Any) -> None:
        if self.progress is None:
            return
        try:
            getattr(self.progress, hook)(*args)
        except Exception as exc:
            logger.debug(f"[Pipeline] Progress hook {hook} failed: {exc}")


_pipeline_instance: Optional[ValidationPipeline] = None
_pipeline_lock = threading.Lock()


def get_pipeline() -> ValidationPipeline:
    """Process-wide pipeline used by the API and CLI (singleton)."""
    global _pipeline_instance
    with _pipeline_lock:
        if _pipeline_instance is None:
            _pipeline_instance = ValidationPipeline()
        return _pipeline_instance
