"""
Tests: CitationMerger — grounding vs model citations, manifest isolation.

Run with:
    pytest assessment_validator/tests/test_citation_merger.py -v
"""

from assessment_validator.models.enums import CitationSource
from assessment_validator.models.schemas import Citation
from assessment_validator.services.citation_merger import (
    CitationMerger,
    grounding_citations,
    normalize_name,
)


def _model(name, location="", pages=(), relevance="", excerpt=""):
    return Citation(
        document_name=name,
        location=location,
        page_numbers=list(pages),
        relevance_note=relevance,
        excerpt=excerpt,
    )


def _retrieved(title, text="", pages=None):
    context = {"title": title, "text": text}
    if pages is not None:
        context["pageNumbers"] = pages
    return {"retrievedContext": context}


class TestGroundingExtraction:
    def test_camel_and_snake_case_chunks(self):
        meta = {
            "groundingChunks": [
                _retrieved("Assessment.pdf", "Q4 asks about isolation", pages=[4]),
                {"file_search_chunk": {"display_name": "Guide.pdf", "chunk_text": "Benchmark", "page_numbers": [2, 3]}},
                {"web": {"title": "example.org"}},
                {"unknown": {}},
            ]
        }
        citations = grounding_citations(meta)
        assert [c.document_name for c in citations] == ["Assessment.pdf", "Guide.pdf", "example.org"]
        assert citations[0].location == "Page 4"
        assert citations[1].location == "Pages 2, 3"
        assert all(c.source == CitationSource.GROUNDING for c in citations)

    def test_support_segments_fill_missing_excerpt(self):
        meta = {
            "groundingChunks": [_retrieved("Assessment.pdf")],
            "groundingSupports": [
                {"segment": {"text": "Lockout steps listed"}, "groundingChunkIndices": [0]},
            ],
        }
        [citation] = grounding_citations(meta)
        assert citation.excerpt == "Lockout steps listed"

    def test_missing_metadata(self):
        assert grounding_citations(None) == []
        assert grounding_citations({}) == []


class TestMerge:
    def test_same_evidence_collapses_into_one(self, documents):
        model = [_model("Assessment.pdf", "Section B, Q4", relevance="Tests recall")]
        meta = {"groundingChunks": [_retrieved("Assessment.pdf", "Q4: describe lockout")]}
        [merged] = CitationMerger().merge(model, meta, documents)
        assert merged.source == CitationSource.MERGED
        assert merged.document_name == "Assessment.pdf"
        assert merged.location == "Section B, Q4"
        assert merged.excerpt == "Q4: describe lockout"
        assert merged.relevance_note == "Tests recall"

    def test_overlapping_pages_match_and_union(self, documents):
        model = [_model("Assessment.pdf", "Page 4", pages=[4])]
        meta = {"groundingChunks": [_retrieved("Assessment.pdf", "text", pages=[4, 5])]}
        [merged] = CitationMerger().merge(model, meta, documents)
        assert merged.page_numbers == [4, 5]
        assert merged.location == "Page 4"

    def test_different_pages_kept_separately(self, documents):
        model = [_model("Assessment.pdf", "Page 2", pages=[2])]
        meta = {"groundingChunks": [_retrieved("Assessment.pdf", "text", pages=[9])]}
        citations = CitationMerger().merge(model, meta, documents)
        assert [c.source for c in citations] == [CitationSource.MODEL, CitationSource.GROUNDING]
        assert [c.page_numbers for c in citations] == [[2], [9]]

    def test_citations_outside_manifest_dropped(self, documents):
        model = [_model("Other Org Assessment.docx", "Q1"), _model("Marking Guide.pdf", "Task 2")]
        meta = {"groundingChunks": [_retrieved("Leaked.pdf", "secret")]}
        citations = CitationMerger().merge(model, meta, documents)
        assert [c.document_name for c in citations] == ["Marking Guide.pdf"]

    def test_names_and_uris_resolved_to_manifest(self, documents):
        model = [_model("marking guide", "Task 2")]
        meta = {"groundingChunks": [{"retrievedContext": {"uri": "files/assessment", "text": "Q4"}}]}
        citations = CitationMerger().merge(model, meta, documents)
        assert [c.document_name for c in citations] == ["Marking Guide.pdf", "Assessment.pdf"]

    def test_duplicates_removed(self, documents):
        model = [_model("Assessment.pdf", "Q4"), _model("assessment.PDF", "q4")]
        assert len(CitationMerger().merge(model, None, documents)) == 1

    def test_model_only_without_grounding(self):
        model = [_model("Assessment.pdf", "Q4")]
        assert CitationMerger().merge(model, None) == model

    def test_normalize_name(self):
        assert normalize_name("Marking Guide.pdf") == normalize_name("marking_guide")
        assert normalize_name("folder/Assessment.PDF") == "assessment"
