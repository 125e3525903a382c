"""
Tests: ResponseParser — fences, prose-wrapped JSON, status coercion, fallback.

Run with:
    pytest assessment_validator/tests/test_response_parser.py -v
"""

import json

import pytest

from assessment_validator.models.enums import RequirementCategory, ValidationStatus
from assessment_validator.models.schemas import RawModelResponse, Requirement
from assessment_validator.services.response_parser import (
    NOT_APPLICABLE,
    ResponseParser,
    balanced_spans,
    coerce_confidence,
    coerce_status,
    extract_json_object,
    normalize_key,
    parse_model_citation,
)


def _requirement(rid=7, category=RequirementCategory.KNOWLEDGE_EVIDENCE):
    return Requirement(
        id=rid,
        unit_identifier="BSBWHS211",
        category=category,
        number="1.1",
        text="Explain lockout/tagout",
    )


def _parse(text, rid=7, excerpt_chars=500):
    return ResponseParser(excerpt_chars).parse(RawModelResponse(text=text), _requirement(rid), "RUN-1")


class TestExtraction:
    def test_fenced_json(self):
        text = '```json\n{"status":"Met","reasoning":"Q4 covers it"}\n```'
        result = _parse(text)
        assert result.status == ValidationStatus.MET
        assert result.reasoning == "Q4 covers it"
        assert not result.parse_failed

    def test_leading_prose_and_partial_status(self):
        result = _parse('Sure! {"status": "partial_met", "reasoning": "Only half is covered"}', rid=8)
        assert result.status == ValidationStatus.PARTIALLY_MET
        assert result.requirement_id == 8

    def test_plain_prose_falls_back_to_error(self):
        result = _parse("I could not find anything relevant in the documents.")
        assert result.status == ValidationStatus.ERROR
        assert result.citations == []
        assert result.parse_failed
        assert "I could not find anything" in result.reasoning

    def test_empty_response_falls_back(self):
        result = _parse("")
        assert result.status == ValidationStatus.ERROR
        assert result.parse_failed

    def test_unbalanced_span_skipped(self):
        text = 'Notes {broken and then {"status": "Not Met", "reasoning": "absent"} trailing'
        assert _parse(text).status == ValidationStatus.NOT_MET

    def test_braces_inside_strings(self):
        text = 'Answer: {"status": "Met", "reasoning": "uses {placeholders} and \\"quotes\\""}'
        result = _parse(text)
        assert result.status == ValidationStatus.MET
        assert result.reasoning == 'uses {placeholders} and "quotes"'

    def test_top_level_array_takes_first_object(self):
        result = _parse(json.dumps([{"status": "Not Met", "reasoning": "missing"}]))
        assert result.status == ValidationStatus.NOT_MET

    def test_unterminated_fence(self):
        assert extract_json_object('```json\n{"status": "Met"}') == {"status": "Met"}

    def test_balanced_spans_lists_each_top_level_object(self):
        assert balanced_spans('a {"x": {"y": 1}} b {"z": 2}') == ['{"x": {"y": 1}}', '{"z": 2}']


class TestStatusCoercion:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("Met", ValidationStatus.MET),
            ("met", ValidationStatus.MET),
            ("PASS", ValidationStatus.MET),
            ("Partially Met", ValidationStatus.PARTIALLY_MET),
            ("partially_met", ValidationStatus.PARTIALLY_MET),
            ("Partial", ValidationStatus.PARTIALLY_MET),
            ("Not Met", ValidationStatus.NOT_MET),
            ("not-met", ValidationStatus.NOT_MET),
            ("Unmet", ValidationStatus.NOT_MET),
            ("fail", ValidationStatus.NOT_MET),
        ],
    )
    def test_variants(self, raw, expected):
        assert coerce_status(raw) == expected

    def test_unknown_status_is_none(self):
        assert coerce_status("Maybe") is None
        assert coerce_status(None) is None

    def test_unrecognized_status_becomes_error_result(self):
        result = _parse('{"status": "Probably", "reasoning": "unsure"}')
        assert result.status == ValidationStatus.ERROR
        assert result.parse_failed
        assert "Probably" in result.error_message


class TestFieldMapping:
    def test_met_forces_not_applicable_remediation(self):
        result = _parse(
            json.dumps({"status": "Met", "smart_question": "Ask more", "benchmark_answer": "More"})
        )
        assert result.smart_question == NOT_APPLICABLE
        assert result.benchmark_answer == NOT_APPLICABLE

    def test_not_met_keeps_remediation(self):
        result = _parse(
            json.dumps({"status": "Not Met", "smart_question": "Describe LOTO", "benchmark_answer": "Isolate"})
        )
        assert result.smart_question == "Describe LOTO"
        assert result.benchmark_answer == "Isolate"

    def test_camel_case_and_aliases(self):
        body = {
            "validationStatus": "Partially Met",
            "Justification": "Covered in part",
            "evidenceFound": ["Q1", "Q2"],
            "Gaps": "No practical demonstration",
            "smartTask": {"task": "Demonstrate an inspection"},
            "expectedBehavior": "Completes the checklist",
            "confidenceScore": "85%",
        }
        result = _parse(json.dumps(body))
        assert result.status == ValidationStatus.PARTIALLY_MET
        assert result.reasoning == "Covered in part"
        assert result.mapped_content == "Q1\nQ2"
        assert result.unmapped_content == "No practical demonstration"
        assert result.smart_question == "Demonstrate an inspection"
        assert result.benchmark_answer == "Completes the checklist"
        assert result.confidence == pytest.approx(0.85)

    def test_wrapped_validations_select_matching_requirement(self):
        body = {
            "requirementValidations": [
                {"requirementId": 6, "status": "Not Met"},
                {"requirementId": 7, "status": "Met", "reasoning": "mine"},
            ]
        }
        result = _parse(json.dumps(body))
        assert result.status == ValidationStatus.MET
        assert result.reasoning == "mine"

    def test_overall_status_used_when_no_status(self):
        assert _parse('{"overallStatus": "Not Met"}').status == ValidationStatus.NOT_MET

    def test_metadata_copied_from_requirement(self):
        result = _parse('{"status": "Met"}')
        assert result.run_id == "RUN-1"
        assert result.requirement_number == "1.1"
        assert result.category == RequirementCategory.KNOWLEDGE_EVIDENCE

    def test_normalize_key(self):
        assert normalize_key("smartQuestion") == "smart_question"
        assert normalize_key("Mapped Content") == "mapped_content"
        assert normalize_key("unmapped-content") == "unmapped_content"


class TestConfidence:
    @pytest.mark.parametrize(
        "raw,expected",
        [(0.7, 0.7), ("0.4", 0.4), (85, 0.85), ("90%", 0.9), (1, 1.0), (150, 1.0), (-2, 0.0), ("high", 0.0), (None, 0.0)],
    )
    def test_coercion(self, raw, expected):
        assert coerce_confidence(raw) == pytest.approx(expected)


class TestCitations:
    def test_object_citations(self):
        body = {
            "status": "Met",
            "citations": [
                {"documentName": "Assessment.pdf", "location": "Section B, Page 4", "relevance": "Q4"},
                {"location": "no document name"},
            ],
        }
        [citation] = _parse(json.dumps(body)).citations
        assert citation.document_name == "Assessment.pdf"
        assert citation.page_numbers == [4]
        assert citation.relevance_note == "Q4"

    def test_string_citation(self):
        citation = parse_model_citation("Marking Guide.pdf, Task 2, Page 7")
        assert citation.document_name == "Marking Guide.pdf"
        assert citation.location == "Task 2, Page 7"
        assert citation.page_numbers == [7]

    def test_explicit_page_list(self):
        citation = parse_model_citation({"document_name": "A.pdf", "page_numbers": [3, "5"]})
        assert citation.page_numbers == [3, 5]


class TestFallbackExcerpt:
    def test_long_output_truncated(self):
        result = _parse("x" * 2000, excerpt_chars=100)
        assert result.status == ValidationStatus.ERROR
        assert result.reasoning.endswith("x" * 100 + "…")
        assert "x" * 101 not in result.reasoning
