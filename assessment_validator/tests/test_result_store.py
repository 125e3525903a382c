"""
Tests: InMemoryResultStore — idempotent upsert, counters, ordering.

Run with:
    pytest assessment_validator/tests/test_result_store.py -v
"""

import pytest

from assessment_validator.config import Settings
from assessment_validator.exceptions import RunNotFoundError
from assessment_validator.models.enums import RunStatus, ValidationStatus
from assessment_validator.models.schemas import RunSummary, ValidationResult
from assessment_validator.persistence.mongo_client import MongoConnection
from assessment_validator.persistence.result_store import (
    InMemoryResultStore,
    finalize_status,
    get_result_store,
)


def _summary(**overrides):
    data = dict(
        run_id="RUN-1",
        unit_identifier="BSBWHS211",
        org_identifier="ORG",
        total_count=3,
        requirement_ids=[3, 1, "epc-2"],
    )
    data.update(overrides)
    return RunSummary(**data)


def _result(rid, status=ValidationStatus.MET, **extra):
    return ValidationResult(run_id="RUN-1", requirement_id=rid, status=status, **extra)


@pytest.fixture
def store():
    store = InMemoryResultStore()
    store.create_run(_summary())
    return store


class TestUpsert:
    def test_upsert_is_idempotent_per_requirement(self, store):
        store.upsert("RUN-1", 1, _result(1, reasoning="first"))
        progress = store.upsert("RUN-1", 1, _result(1, reasoning="second"))
        assert progress.completed_count == 1
        assert progress.total_count == 3
        [stored] = store.get_results("RUN-1")
        assert stored.reasoning == "second"

    def test_int_and_string_ids_share_a_key(self, store):
        store.upsert("RUN-1", 1, _result(1))
        store.upsert("RUN-1", "1", _result(1, reasoning="from the API"))
        assert len(store.get_results("RUN-1")) == 1
        assert store.get_result("RUN-1", "1").reasoning == "from the API"

    def test_error_count_follows_replacements(self, store):
        store.upsert("RUN-1", 3, _result(3, ValidationStatus.ERROR))
        assert store.get_run("RUN-1").error_count == 1
        store.upsert("RUN-1", 3, _result(3, ValidationStatus.NOT_MET))
        assert store.get_run("RUN-1").error_count == 0

    def test_results_returned_in_submission_order(self, store):
        store.upsert("RUN-1", "epc-2", _result("epc-2"))
        store.upsert("RUN-1", 1, _result(1))
        store.upsert("RUN-1", 3, _result(3))
        assert [r.requirement_id for r in store.get_results("RUN-1")] == [3, 1, "epc-2"]

    def test_stored_copy_is_isolated(self, store):
        result = _result(1, reasoning="original")
        store.upsert("RUN-1", 1, result)
        result.reasoning = "mutated afterwards"
        assert store.get_result("RUN-1", 1).reasoning == "original"

    def test_unknown_run(self, store):
        with pytest.raises(RunNotFoundError):
            store.upsert("RUN-404", 1, _result(1))
        with pytest.raises(RunNotFoundError):
            store.get_results("RUN-404")

    def test_missing_result_is_none(self, store):
        assert store.get_result("RUN-1", 99) is None


class TestRunSummary:
    def test_increment_progress_clamped_to_total(self, store):
        assert [store.increment_progress("RUN-1") for _ in range(4)] == [(1, 3), (2, 3), (3, 3), (3, 3)]

    def test_terminal_status_sets_finished_at(self, store):
        assert store.set_status("RUN-1", RunStatus.PROCESSING).finished_at is None
        summary = store.set_status("RUN-1", RunStatus.FAILED, "no requirements")
        assert summary.finished_at is not None
        assert summary.error_message == "no requirements"

    def test_cancel_flag_and_progress(self, store):
        store.request_cancel("RUN-1")
        assert store.get_run("RUN-1").cancel_requested
        progress = store.get_progress("RUN-1")
        assert (progress.completed_count, progress.total_count) == (0, 3)

    def test_delete_and_list(self, store):
        store.create_run(_summary(run_id="RUN-2"))
        assert {s.run_id for s in store.list_runs()} == {"RUN-1", "RUN-2"}
        store.delete_run("RUN-1")
        with pytest.raises(RunNotFoundError):
            store.get_run("RUN-1")

    @pytest.mark.parametrize(
        "errors,cancelled,expected",
        [
            (0, False, RunStatus.COMPLETED),
            (2, False, RunStatus.PARTIALLY_FAILED),
            (2, True, RunStatus.CANCELLED),
        ],
    )
    def test_finalize_status(self, errors, cancelled, expected):
        assert finalize_status(_summary(error_count=errors), cancelled) == expected


class TestBackingSelection:
    def test_mock_mode_uses_memory(self, monkeypatch):
        monkeypatch.setattr(
            "assessment_validator.persistence.result_store.get_settings",
            lambda: Settings(mock_mode=True),
        )
        assert isinstance(get_result_store(), InMemoryResultStore)

    def test_mongo_never_opened_in_mock_mode(self):
        with pytest.raises(RuntimeError):
            MongoConnection(Settings(mock_mode=True)).client
