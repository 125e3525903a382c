"""Shared fixtures: requirement tables, documents, and a scripted fake LLM."""

from __future__ import annotations

import json
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Union

import pytest
from langchain_core.messages import AIMessage

from assessment_validator.models.enums import RequirementCategory
from assessment_validator.models.schemas import DocumentReference
from assessment_validator.orchestration.pipeline import ValidationPipeline
from assessment_validator.persistence.requirement_source import InMemoryRequirementSource
from assessment_validator.persistence.result_store import InMemoryResultStore
from assessment_validator.services.backoff import BackoffPolicy
from assessment_validator.services.llm_service import ValidationCaller
from assessment_validator.services.rate_limiter import RateLimiter

UNIT = "BSBWHS211"

Reply = Union[str, AIMessage, BaseException, Callable[[list[Any]], Any]]


class FakeLLM:
    """
    Stand-in for the chat model.  Replies are consumed in order; the last
    one repeats once the script runs out.
    """

    def __init__(self, *replies: Reply, grounding: dict[str, Any] | None = None):
        self.replies = list(replies) or [met_json()]
        self.grounding = grounding
        self.calls: list[list[Any]] = []

    def invoke(self, messages: list[Any]) -> AIMessage:
        self.calls.append(messages)
        index = min(len(self.calls) - 1, len(self.replies) - 1)
        reply = self.replies[index]
        if callable(reply) and not isinstance(reply, BaseException):
            reply = reply(messages)
        if isinstance(reply, BaseException):
            raise reply
        if isinstance(reply, AIMessage):
            return reply
        metadata: dict[str, Any] = {"finish_reason": "STOP"}
        if self.grounding is not None:
            metadata["grounding_metadata"] = self.grounding
        return AIMessage(content=reply, response_metadata=metadata)

    def prompt_text(self, call_index: int) -> str:
        human = self.calls[call_index][-1]
        return next(p["text"] for p in human.content if p.get("type") == "text")


class FakeClock:
    """Time only moves when someone sleeps."""

    def __init__(self, start: float = 100.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class RecordingLimiter(RateLimiter):
    """Records the clock at every grant."""

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.granted: list[float] = []
        self._record_lock = threading.Lock()

    def acquire(self) -> float:
        with self._record_lock:
            waited = super().acquire()
            self.granted.append(self._clock())
            return waited


class RecordingBus:
    def __init__(self):
        self.events: list[tuple[str, tuple[Any, ...]]] = []

    def __getattr__(self, hook: str):
        if not hook.startswith("on_"):
            raise AttributeError(hook)
        return lambda *args: self.events.append((hook, args))


def met_json(**extra: Any) -> str:
    body = {
        "status": "Met",
        "reasoning": "Question 4 asks the learner to explain the procedure.",
        "mapped_content": "Q4, Section B",
        "citations": [
            {"document_name": "Assessment.pdf", "location": "Section B, Q4", "relevance": "Tests recall"}
        ],
        "confidence": 0.9,
    }
    body.update(extra)
    return json.dumps(body)


def status_json(status: str, **extra: Any) -> str:
    body = {"status": status, "reasoning": f"Judged {status}", "confidence": 0.6}
    body.update(extra)
    return json.dumps(body)


def make_document(name: str, uri: str, day: int = 1) -> DocumentReference:
    return DocumentReference(
        file_name=name,
        provider_file_uri=uri,
        uploaded_at=datetime(2024, 3, day, 9, 0, tzinfo=timezone.utc),
    )


@pytest.fixture
def documents() -> list[DocumentReference]:
    return [
        make_document("Marking Guide.pdf", "files/guide", day=2),
        make_document("Assessment.pdf", "files/assessment", day=1),
    ]


@pytest.fixture
def tables() -> dict[str, list[dict[str, Any]]]:
    return {
        RequirementCategory.KNOWLEDGE_EVIDENCE.table_name: [
            {"id": 1, "unitCode": UNIT, "knowledge_point": "Explain lockout/tagout", "requirement_number": "1"},
            {"id": 2, "unitCode": UNIT, "knowledge_point": "Hazard identification methods"},
        ],
        RequirementCategory.PERFORMANCE_EVIDENCE.table_name: [
            {"id": 10, "unitCode": UNIT, "performance_evidence": "Conduct a workplace inspection"},
        ],
        RequirementCategory.ELEMENTS_PERFORMANCE_CRITERIA.table_name: [
            {
                "id": 20,
                "unitCode": UNIT,
                "performance_criteria": "Identify hazards in the work area",
                "element_number": "1",
                "criterion_number": "2",
                "element": "Contribute to WHS hazard identification",
            },
        ],
        RequirementCategory.ASSESSMENT_CONDITIONS.table_name: [
            {"id": 30, "unitCode": UNIT, "condition_text": "Access to a workplace or simulated environment"},
        ],
        RequirementCategory.FOUNDATION_SKILLS.table_name: [
            {"id": 40, "unitCode": "OTHER101", "skill_description": "Belongs to another unit"},
        ],
    }


@pytest.fixture
def source(tables) -> InMemoryRequirementSource:
    return InMemoryRequirementSource(tables)


@pytest.fixture
def store() -> InMemoryResultStore:
    return InMemoryResultStore()


def make_caller(llm: FakeLLM, max_attempts: int = 3) -> ValidationCaller:
    return ValidationCaller(
        llm=llm,
        rate_limiter=RateLimiter(0.0),
        backoff=BackoffPolicy(max_attempts=max_attempts, base_delay=0.01),
        timeout_seconds=30.0,
        sleep=lambda seconds: None,
    )


@pytest.fixture
def make_pipeline(source, store):
    def _make(llm: FakeLLM, **kwargs: Any) -> ValidationPipeline:
        kwargs.setdefault("generate_smart_questions", False)
        kwargs.setdefault("progress", RecordingBus())
        return ValidationPipeline(
            source=kwargs.pop("source", source),
            store=kwargs.pop("store", store),
            caller=make_caller(llm),
            **kwargs,
        )

    return _make
