"""
Citation Merger — reconciles the model's own citations with the provider's
grounding metadata.

Grounding is authoritative for WHICH document was used (it cannot name a
document that was not retrieved); the model is authoritative for WHY the
evidence is relevant.  When both describe plausibly the same evidence they
collapse into one merged citation.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Iterable, Optional, Sequence

from assessment_validator.models.enums import CitationSource
from assessment_validator.models.schemas import Citation, DocumentReference

logger = logging.getLogger(__name__)

_EXTENSION = re.compile(r"\.(pdf|docx?|txt|md|xlsx?|pptx?)$", re.IGNORECASE)


def normalize_name(name: str) -> str:
    stem = _EXTENSION.sub("", (name or "").strip().rsplit("/", 1)[-1])
    return re.sub(r"[^a-z0-9]+", "", stem.lower())


def _get(obj: Any, *keys: str) -> Any:
    """First present key, tolerating camelCase and snake_case payloads."""
    if not isinstance(obj, dict):
        return None
    for key in keys:
        if obj.get(key) not in (None, "", [], {}):
            return obj[key]
    return None


def _pages(value: Any) -> list[int]:
    if value is None:
        return []
    if isinstance(value, int):
        return [value]
    if isinstance(value, (list, tuple)):
        return [int(v) for v in value if str(v).strip().isdigit()]
    return [int(n) for n in re.findall(r"\d+", str(value))]


def _page_location(pages: Sequence[int]) -> str:
    if not pages:
        return ""
    label = "Page" if len(pages) == 1 else "Pages"
    return f"{label} {', '.join(str(p) for p in pages)}"


def grounding_citations(grounding_metadata: Optional[dict[str, Any]]) -> list[Citation]:
    """Flatten groundingChunks (+ groundingSupports excerpts) into citations."""
    if not grounding_metadata:
        return []

    chunks = _get(grounding_metadata, "groundingChunks", "grounding_chunks") or []
    supports = _get(grounding_metadata, "groundingSupports", "grounding_supports") or []

    support_text: dict[int, list[str]] = {}
    for support in supports:
        segment = _get(support, "segment") or {}
        text = _get(segment, "text")
        for index in _get(support, "groundingChunkIndices", "grounding_chunk_indices") or []:
            if text:
                support_text.setdefault(int(index), []).append(str(text))

    citations: list[Citation] = []
    for index, chunk in enumerate(chunks):
        file_chunk = _get(chunk, "fileSearchChunk", "file_search_chunk")
        retrieved = _get(chunk, "retrievedContext", "retrieved_context")
        web = _get(chunk, "web")
        if file_chunk:
            name = _get(file_chunk, "displayName", "display_name", "documentName", "document_name")
            pages = _pages(_get(file_chunk, "pageNumbers", "page_numbers"))
            excerpt = _get(file_chunk, "chunkText", "chunk_text", "content")
        elif retrieved:
            name = _get(retrieved, "title", "uri")
            pages = _pages(_get(retrieved, "pageNumbers", "page_numbers"))
            excerpt = _get(retrieved, "text")
        elif web:
            name = _get(web, "title", "uri")
            pages = []
            excerpt = None
        else:
            continue
        if not name:
            continue
        if not excerpt and index in support_text:
            excerpt = " … ".join(support_text[index])
        citations.append(
            Citation(
                document_name=str(name),
                location=_page_location(pages),
                excerpt=str(excerpt or ""),
                page_numbers=pages,
                source=CitationSource.GROUNDING,
            )
        )
    return citations


class CitationMerger:
    def merge(
        self,
        model_citations: Iterable[Citation],
        grounding_metadata: Optional[dict[str, Any]],
        manifest: Optional[Sequence[DocumentReference]] = None,
    ) -> list[Citation]:
        model = list(model_citations or [])
        grounded = grounding_citations(grounding_metadata)

        if manifest is not None:
            model = self._restrict(model, manifest, "model")
            grounded = self._restrict(grounded, manifest, "grounding")

        consumed: set[int] = set()
        merged: list[Citation] = []
        for citation in model:
            match = self._find_match(citation, grounded, consumed)
            if match is None:
                merged.append(citation)
                continue
            consumed.add(match)
            merged.append(self._combine(citation, grounded[match]))

        merged.extend(g for i, g in enumerate(grounded) if i not in consumed)
        result = self._dedupe(merged)
        logger.debug(
            f"[Citations] model={len(model)} grounding={len(grounded)} → {len(result)}"
        )
        return result

    # ── Matching ─────────────────────────────────────────

    @staticmethod
    def same_evidence(model: Citation, grounded: Citation) -> bool:
        if normalize_name(model.document_name) != normalize_name(grounded.document_name):
            return False
        if set(model.page_numbers) & set(grounded.page_numbers):
            return True
        model_loc = model.location.strip().lower()
        grounded_loc = grounded.location.strip().lower()
        model_has_location = bool(model_loc or model.page_numbers)
        grounded_has_location = bool(grounded_loc or grounded.page_numbers)
        if not model_has_location or not grounded_has_location:
            return True
        if model.page_numbers and grounded.page_numbers:
            return False
        return bool(model_loc and grounded_loc) and (
            model_loc in grounded_loc or grounded_loc in model_loc
        )

    def _find_match(
        self, citation: Citation, grounded: list[Citation], consumed: set[int]
    ) -> Optional[int]:
        for index, candidate in enumerate(grounded):
            if index not in consumed and self.same_evidence(citation, candidate):
                return index
        return None

    @staticmethod
    def _combine(model: Citation, grounded: Citation) -> Citation:
        pages = sorted(set(grounded.page_numbers) | set(model.page_numbers))
        return Citation(
            document_name=grounded.document_name,
            location=model.location or grounded.location,
            excerpt=grounded.excerpt or model.excerpt,
            relevance_note=model.relevance_note,
            page_numbers=pages,
            source=CitationSource.MERGED,
        )

    # ── Session isolation ────────────────────────────────

    @staticmethod
    def resolve_document(
        name: str, manifest: Sequence[DocumentReference]
    ) -> Optional[DocumentReference]:
        """Map a cited name (or provider URI) onto the session manifest."""
        raw = (name or "").strip()
        for doc in manifest:
            if raw == doc.provider_file_uri:
                return doc
        key = normalize_name(raw)
        if not key:
            return None
        for doc in manifest:
            if key == normalize_name(doc.file_name):
                return doc
        # shortened citations ("Guide" for "Marking Guide.pdf"), never the reverse
        if len(key) >= 4:
            for doc in manifest:
                if key in normalize_name(doc.file_name):
                    return doc
        return None

    def _restrict(
        self,
        citations: list[Citation],
        manifest: Sequence[DocumentReference],
        origin: str,
    ) -> list[Citation]:
        kept: list[Citation] = []
        for citation in citations:
            doc = self.resolve_document(citation.document_name, manifest)
            if doc is None:
                logger.warning(
                    f"[Citations] Dropped {origin} citation to "
                    f"'{citation.document_name}': not in session manifest"
                )
                continue
            kept.append(citation.model_copy(update={"document_name": doc.file_name}))
        return kept

    @staticmethod
    def _dedupe(citations: list[Citation]) -> list[Citation]:
        seen: set[tuple[str, str]] = set()
        unique: list[Citation] = []
        for citation in citations:
            key = (normalize_name(citation.document_name), citation.location.strip().lower())
            if key in seen:
                continue
            seen.add(key)
            unique.append(citation)
        return unique
