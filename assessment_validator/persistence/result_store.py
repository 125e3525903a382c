"""
Result Store — durable per-requirement results plus the run summary record.

One ValidationResult per (run_id, requirement_id): a revalidation replaces the
stored result whole.  The summary's progress counters are derived from the
stored results inside the same critical section as the write, so a result is
never counted without being persisted (or persisted without being counted).
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from copy import deepcopy
from typing import Any, Iterable

from assessment_validator.config import get_settings
from assessment_validator.exceptions import RunNotFoundError
from assessment_validator.models.enums import RunStatus, ValidationStatus
from assessment_validator.models.schemas import (
    RequirementId,
    RunProgress,
    RunSummary,
    ValidationResult,
    utcnow,
)

logger = logging.getLogger(__name__)


def requirement_key(requirement_id: RequirementId) -> str:
    """Stable storage key; path parameters arrive as strings."""
    return str(requirement_id)


def finalize_status(summary: RunSummary, cancelled: bool = False) -> RunStatus:
    """Terminal status for a run whose requirement loop has stopped."""
    if cancelled:
        return RunStatus.CANCELLED
    if summary.error_count > 0:
        return RunStatus.PARTIALLY_FAILED
    return RunStatus.COMPLETED


def _order_results(
    summary: RunSummary, results: Iterable[ValidationResult]
) -> list[ValidationResult]:
    position = {
        requirement_key(rid): index for index, rid in enumerate(summary.requirement_ids)
    }
    tail = len(position)
    return sorted(
        results,
        key=lambda r: (position.get(requirement_key(r.requirement_id), tail), r.created_at),
    )


class ResultStore(ABC):
    """Storage contract shared by the in-memory and MongoDB backings."""

    @abstractmethod
    def create_run(self, summary: RunSummary) -> RunSummary:
        ...

    @abstractmethod
    def get_run(self, run_id: str) -> RunSummary:
        """Raises RunNotFoundError for unknown runs."""

    @abstractmethod
    def update_run(self, run_id: str, **fields: Any) -> RunSummary:
        ...

    @abstractmethod
    def upsert(
        self, run_id: str, requirement_id: RequirementId, result: ValidationResult
    ) -> RunProgress:
        ...

    @abstractmethod
    def increment_progress(self, run_id: str) -> tuple[int, int]:
        ...

    @abstractmethod
    def get_results(self, run_id: str) -> list[ValidationResult]:
        ...

    @abstractmethod
    def get_result(
        self, run_id: str, requirement_id: RequirementId
    ) -> ValidationResult | None:
        ...

    @abstractmethod
    def delete_run(self, run_id: str) -> None:
        ...

    @abstractmethod
    def list_runs(self) -> list[RunSummary]:
        ...

    # ── Shared helpers ───────────────────────────────────

    def set_status(
        self, run_id: str, status: RunStatus, error_message: str = ""
    ) -> RunSummary:
        fields: dict[str, Any] = {"status": status}
        if error_message:
            fields["error_message"] = error_message
        if status.is_terminal:
            fields["finished_at"] = utcnow()
        summary = self.update_run(run_id, **fields)
        logger.info(f"[Store] Run {run_id} → {status.value}")
        return summary

    def request_cancel(self, run_id: str) -> RunSummary:
        return self.update_run(run_id, cancel_requested=True)

    def get_progress(self, run_id: str) -> RunProgress:
        summary = self.get_run(run_id)
        return RunProgress(
            completed_count=summary.completed_count,
            total_count=summary.total_count,
            status=summary.status,
        )


# ── In-memory backing ────────────────────────────────────


class InMemoryResultStore(ResultStore):
    """Process-local store used in mock mode and by the tests."""

    def __init__(self):
        self._lock = threading.RLock()
        self._runs: dict[str, RunSummary] = {}
        self._results: dict[str, dict[str, ValidationResult]] = {}

    def create_run(self, summary: RunSummary) -> RunSummary:
        with self._lock:
            self._runs[summary.run_id] = summary.model_copy(deep=True)
            self._results.setdefault(summary.run_id, {})
        logger.info(
            f"[Store] Created run {summary.run_id} "
            f"({summary.total_count} requirements)"
        )
        return summary

    def get_run(self, run_id: str) -> RunSummary:
        with self._lock:
            summary = self._runs.get(run_id)
            if summary is None:
                raise RunNotFoundError(run_id)
            return summary.model_copy(deep=True)

    def update_run(self, run_id: str, **fields: Any) -> RunSummary:
        with self._lock:
            current = self._runs.get(run_id)
            if current is None:
                raise RunNotFoundError(run_id)
            updated = current.model_copy(update=fields)
            self._runs[run_id] = updated
            return updated.model_copy(deep=True)

    def upsert(
        self, run_id: str, requirement_id: RequirementId, result: ValidationResult
    ) -> RunProgress:
        with self._lock:
            if run_id not in self._runs:
                raise RunNotFoundError(run_id)
            bucket = self._results.setdefault(run_id, {})
            key = requirement_key(requirement_id)
            replaced = key in bucket
            bucket[key] = result.model_copy(deep=True)

            summary = self._runs[run_id]
            summary = summary.model_copy(
                update={
                    "completed_count": len(bucket),
                    "error_count": sum(
                        1 for r in bucket.values() if r.status == ValidationStatus.ERROR
                    ),
                }
            )
            self._runs[run_id] = summary

        logger.debug(
            f"[Store] {'Replaced' if replaced else 'Stored'} result "
            f"{run_id}/{key} ({result.status.value})"
        )
        return RunProgress(
            completed_count=summary.completed_count,
            total_count=summary.total_count,
            status=summary.status,
        )

    def increment_progress(self, run_id: str) -> tuple[int, int]:
        with self._lock:
            summary = self._runs.get(run_id)
            if summary is None:
                raise RunNotFoundError(run_id)
            completed = min(summary.completed_count + 1, summary.total_count)
            self._runs[run_id] = summary.model_copy(update={"completed_count": completed})
            return completed, summary.total_count

    def get_results(self, run_id: str) -> list[ValidationResult]:
        with self._lock:
            summary = self.get_run(run_id)
            stored = [deepcopy(r) for r in self._results.get(run_id, {}).values()]
        return _order_results(summary, stored)

    def get_result(
        self, run_id: str, requirement_id: RequirementId
    ) -> ValidationResult | None:
        with self._lock:
            if run_id not in self._runs:
                raise RunNotFoundError(run_id)
            result = self._results.get(run_id, {}).get(requirement_key(requirement_id))
            return result.model_copy(deep=True) if result else None

    def delete_run(self, run_id: str) -> None:
        with self._lock:
            if self._runs.pop(run_id, None) is None:
                raise RunNotFoundError(run_id)
            self._results.pop(run_id, None)
        logger.info(f"[Store] Deleted run {run_id}")

    def list_runs(self) -> list[RunSummary]:
        with self._lock:
            runs = [s.model_copy(deep=True) for s in self._runs.values()]
        return sorted(runs, key=lambda s: s.started_at)


# ── MongoDB backing ──────────────────────────────────────


class MongoResultStore(ResultStore):
    """
    validation_runs   — one document per run_id
    validation_results — one document per (run_id, requirement_key)
    """

    RUNS = "validation_runs"
    RESULTS = "validation_results"

    def __init__(self, database: Any, use_transactions: bool = False, client: Any = None):
        self._db = database
        self._client = client
        self._use_transactions = use_transactions and client is not None
        self._runs = database[self.RUNS]
        self._results = database[self.RESULTS]
        self._ensure_indexes()

    def _ensure_indexes(self) -> None:
        self._runs.create_index("run_id", unique=True)
        self._results.create_index(
            [("run_id", 1), ("requirement_key", 1)], unique=True
        )

    def create_run(self, summary: RunSummary) -> RunSummary:
        self._runs.insert_one(summary.model_dump(mode="json"))
        logger.info(
            f"[Store] Created run {summary.run_id} "
            f"({summary.total_count} requirements)"
        )
        return summary

    def get_run(self, run_id: str, session: Any = None) -> RunSummary:
        doc = self._runs.find_one({"run_id": run_id}, {"_id": 0}, session=session)
        if doc is None:
            raise RunNotFoundError(run_id)
        return RunSummary.model_validate(doc)

    def update_run(self, run_id: str, **fields: Any) -> RunSummary:
        payload = RunSummary.model_validate(
            {**self.get_run(run_id).model_dump(), **fields}
        ).model_dump(mode="json", include=set(fields))
        self._runs.update_one({"run_id": run_id}, {"$set": payload})
        return self.get_run(run_id)

    def upsert(
        self, run_id: str, requirement_id: RequirementId, result: ValidationResult
    ) -> RunProgress:
        if self._use_transactions:
            with self._client.start_session() as session:
                return session.with_transaction(
                    lambda s: self._write_and_count(run_id, requirement_id, result, s)
                )
        return self._write_and_count(run_id, requirement_id, result, None)

    def _write_and_count(
        self,
        run_id: str,
        requirement_id: RequirementId,
        result: ValidationResult,
        session: Any,
    ) -> RunProgress:
        summary = self.get_run(run_id, session=session)
        key = requirement_key(requirement_id)
        document = result.model_dump(mode="json")
        document["requirement_key"] = key
        self._results.replace_one(
            {"run_id": run_id, "requirement_key": key},
            document,
            upsert=True,
            session=session,
        )
        # Counters follow the persisted rows, never the other way round
        completed = self._results.count_documents({"run_id": run_id}, session=session)
        errors = self._results.count_documents(
            {"run_id": run_id, "status": ValidationStatus.ERROR.value}, session=session
        )
        self._runs.update_one(
            {"run_id": run_id},
            {"$set": {"completed_count": completed, "error_count": errors}},
            session=session,
        )
        return RunProgress(
            completed_count=completed,
            total_count=summary.total_count,
            status=summary.status,
        )

    def increment_progress(self, run_id: str) -> tuple[int, int]:
        summary = self.get_run(run_id)
        completed = min(summary.completed_count + 1, summary.total_count)
        self._runs.update_one(
            {"run_id": run_id}, {"$set": {"completed_count": completed}}
        )
        return completed, summary.total_count

    def get_results(self, run_id: str) -> list[ValidationResult]:
        summary = self.get_run(run_id)
        docs = self._results.find({"run_id": run_id}, {"_id": 0, "requirement_key": 0})
        return _order_results(summary, [ValidationResult.model_validate(d) for d in docs])

    def get_result(
        self, run_id: str, requirement_id: RequirementId
    ) -> ValidationResult | None:
        self.get_run(run_id)
        doc = self._results.find_one(
            {"run_id": run_id, "requirement_key": requirement_key(requirement_id)},
            {"_id": 0, "requirement_key": 0},
        )
        return ValidationResult.model_validate(doc) if doc else None

    def delete_run(self, run_id: str) -> None:
        deleted = self._runs.delete_one({"run_id": run_id})
        if deleted.deleted_count == 0:
            raise RunNotFoundError(run_id)
        self._results.delete_many({"run_id": run_id})
        logger.info(f"[Store] Deleted run {run_id}")

    def list_runs(self) -> list[RunSummary]:
        docs = self._runs.find({}, {"_id": 0}).sort("started_at", 1)
        return [RunSummary.model_validate(d) for d in docs]


def get_result_store() -> ResultStore:
    """Pick the store backing for the configured mode."""
    settings = get_settings()
    if settings.mock_mode:
        return InMemoryResultStore()

    from assessment_validator.persistence.mongo_client import get_mongo

    mongo = get_mongo()
    use_transactions = settings.mongodb_use_transactions
    if use_transactions and not mongo.supports_transactions():
        logger.warning("[Store] MongoDB deployment has no transactions; writing without them")
        use_transactions = False
    return MongoResultStore(mongo.database, use_transactions=use_transactions, client=mongo.client)
