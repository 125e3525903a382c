"""
LLM Service — the Gemini client and the per-requirement validation caller.

  - get_llm()                  → configured ChatGoogleGenerativeAI (singleton)
  - classify_provider_error()  → map any provider exception to the taxonomy
  - ValidationCaller.call()    → one rate-limited, retried model request
"""

from __future__ import annotations

import logging
import re
import time
from typing import Any, Callable, Iterable, Optional

from assessment_validator.config import get_settings
from assessment_validator.exceptions import (
    NonRetryableProviderError,
    ProviderError,
    TransientProviderError,
)
from assessment_validator.models.schemas import (
    DocumentReference,
    RawModelResponse,
    RequestPayload,
)
from assessment_validator.services.backoff import BackoffPolicy
from assessment_validator.services.rate_limiter import RateLimiter, get_rate_limiter

logger = logging.getLogger(__name__)

_llm_instance = None


def get_llm():
    """
    Return a configured Gemini chat model (singleton).
    Retries are owned by ValidationCaller, so the client itself retries once at most.
    """
    global _llm_instance
    if _llm_instance is not None:
        return _llm_instance

    settings = get_settings()

    if not settings.google_api_key:
        raise ValueError("GOOGLE_API_KEY is not set in environment / .env file")

    from langchain_google_genai import ChatGoogleGenerativeAI

    _llm_instance = ChatGoogleGenerativeAI(
        google_api_key=settings.google_api_key,
        model=settings.llm_model,
        temperature=settings.llm_temperature,
        max_output_tokens=settings.llm_max_tokens,
        timeout=settings.llm_timeout_seconds,
        max_retries=1,
    )
    logger.info(f"Initialized Gemini LLM: {settings.llm_model}")
    return _llm_instance


# ── Error classification ─────────────────────────────────

_TRANSIENT_PATTERN = re.compile(
    r"\b(429|5\d\d)\b|resource.?exhausted|rate.?limit|quota|unavailable|"
    r"deadline.?exceeded|timed?.?out|temporar|overloaded|internal error",
    re.IGNORECASE,
)
_CLIENT_ERROR_PATTERN = re.compile(r"\b(4\d\d)\b")


def _status_code_of(exc: BaseException) -> Optional[int]:
    for candidate in (
        getattr(exc, "status_code", None),
        getattr(exc, "code", None),
        getattr(getattr(exc, "response", None), "status_code", None),
    ):
        value = getattr(candidate, "value", candidate)
        if isinstance(value, int) and 100 <= value < 600:
            return value
    return None


def classify_provider_error(exc: BaseException) -> ProviderError:
    """Map a provider/client exception to Transient or NonRetryable."""
    if isinstance(exc, ProviderError):
        return exc

    # The wrapped client error usually carries the HTTP status on its cause
    current: Optional[BaseException] = exc
    status: Optional[int] = None
    while current is not None and status is None:
        status = _status_code_of(current)
        current = current.__cause__ or current.__context__

    message = f"{type(exc).__name__}: {exc}"
    if status is not None:
        if status == 429 or status >= 500:
            return TransientProviderError(message, status_code=status)
        if 400 <= status < 500:
            return NonRetryableProviderError(message, status_code=status)

    if isinstance(exc, (TimeoutError, ConnectionError)):
        return TransientProviderError(message)
    if _TRANSIENT_PATTERN.search(str(exc)) or _TRANSIENT_PATTERN.search(type(exc).__name__):
        return TransientProviderError(message)
    match = _CLIENT_ERROR_PATTERN.search(str(exc))
    if match:
        return NonRetryableProviderError(message, status_code=int(match.group(1)))
    return NonRetryableProviderError(message)


# ── Caller ───────────────────────────────────────────────


def _content_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type") == "text":
                parts.append(str(part.get("text", "")))
        return "".join(parts)
    return str(content or "")


class ValidationCaller:
    """
    Issues exactly one generation request per call.  Every attempt, retries
    included, takes a permit from the shared rate limiter first.
    """

    def __init__(
        self,
        llm: Any = None,
        rate_limiter: Optional[RateLimiter] = None,
        backoff: Optional[BackoffPolicy] = None,
        timeout_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.perf_counter,
        sleep: Callable[[float], None] = time.sleep,
    ):
        settings = get_settings()
        self._llm = llm
        self.rate_limiter = rate_limiter or get_rate_limiter()
        self.backoff = backoff or BackoffPolicy.from_settings(settings)
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else settings.llm_timeout_seconds
        )
        self._clock = clock
        self._sleep = sleep

    @property
    def llm(self) -> Any:
        if self._llm is None:
            self._llm = get_llm()
        return self._llm

    def call(
        self,
        payload: RequestPayload,
        document_refs: Optional[Iterable[DocumentReference]] = None,
    ) -> RawModelResponse:
        refs = tuple(document_refs) if document_refs is not None else payload.document_refs
        manifest = {d.provider_file_uri for d in payload.document_refs}
        foreign = [d.provider_file_uri for d in refs if d.provider_file_uri not in manifest]
        if foreign:
            raise NonRetryableProviderError(
                f"Document references outside the session manifest: {foreign}"
            )

        messages = self._build_messages(payload, refs)
        attempts_made = 0

        def attempt(number: int) -> RawModelResponse:
            nonlocal attempts_made
            attempts_made = number
            self.rate_limiter.acquire()
            t0 = self._clock()
            try:
                response = self.llm.invoke(messages)
            except ProviderError:
                raise
            except Exception as exc:
                raise classify_provider_error(exc) from exc
            elapsed = self._clock() - t0

            if self.timeout_seconds and elapsed > self.timeout_seconds:
                raise TransientProviderError(
                    f"Model call took {elapsed:.1f}s (timeout {self.timeout_seconds:.1f}s)"
                )

            meta = getattr(response, "response_metadata", {}) or {}
            text = _content_text(getattr(response, "content", ""))
            finish_reason = str(meta.get("finish_reason", "unknown"))
            logger.info(
                f"[Caller] Requirement {payload.requirement_id} answered in {elapsed:.2f}s | "
                f"attempt {number} | {len(text)} chars | finish_reason={finish_reason}"
            )
            if not text.strip():
                logger.warning(
                    f"[Caller] Empty response for requirement {payload.requirement_id}"
                )
            return RawModelResponse(
                text=text,
                grounding_metadata=meta.get("grounding_metadata") or None,
                finish_reason=finish_reason,
                elapsed_seconds=elapsed,
                attempts=number,
            )

        try:
            return self.backoff.run(
                attempt,
                is_retryable=lambda exc: isinstance(exc, TransientProviderError),
                sleep=self._sleep,
            )
        except ProviderError as exc:
            logger.error(
                f"[Caller] Requirement {payload.requirement_id} failed after "
                f"{attempts_made} attempt(s): {exc}"
            )
            raise

    @staticmethod
    def _build_messages(
        payload: RequestPayload, refs: Iterable[DocumentReference]
    ) -> list[Any]:
        from langchain_core.messages import HumanMessage, SystemMessage

        content: list[dict[str, Any]] = [{"type": "text", "text": payload.text}]
        for doc in refs:
            content.append(
                {
                    "type": "media",
                    "file_uri": doc.provider_file_uri,
                    "mime_type": doc.mime_type,
                }
            )
        return [
            SystemMessage(content=payload.system_instruction),
            HumanMessage(content=content),
        ]
