"""
Session Context Builder — the isolation envelope attached to every model call
of one run.  Same inputs always render byte-identical header text.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Callable, Iterable, Optional

from assessment_validator.exceptions import EmptyDocumentSetError
from assessment_validator.models.schemas import DocumentReference, SessionContext, utcnow

logger = logging.getLogger(__name__)

_SESSION_NAMESPACE = uuid.UUID("6f1c8a52-3b7e-4d0a-9c55-2a4be1f0d7c3")


def order_documents(documents: Iterable[DocumentReference]) -> tuple[DocumentReference, ...]:
    """Sort by upload time (ties by name, then URI) and drop repeated URIs."""
    seen: set[str] = set()
    ordered: list[DocumentReference] = []
    for doc in sorted(
        documents, key=lambda d: (d.uploaded_at, d.file_name, d.provider_file_uri)
    ):
        if doc.provider_file_uri in seen:
            continue
        seen.add(doc.provider_file_uri)
        ordered.append(doc)
    return tuple(ordered)


class SessionContextBuilder:
    def __init__(
        self,
        clock: Optional[Callable[[], datetime]] = None,
        id_factory: Optional[Callable[[str], str]] = None,
    ):
        self._clock = clock or utcnow
        self._id_factory = id_factory or (
            lambda run_id: str(uuid.uuid5(_SESSION_NAMESPACE, run_id))
        )

    def build(
        self,
        run_id: str,
        unit_identifier: str,
        org_identifier: str,
        documents: Iterable[DocumentReference],
    ) -> SessionContext:
        ordered = order_documents(documents)
        if not ordered:
            raise EmptyDocumentSetError(run_id)

        context = SessionContext(
            session_id=self._id_factory(run_id),
            run_id=run_id,
            created_at=self._clock(),
            unit_identifier=unit_identifier,
            org_identifier=org_identifier,
            documents=ordered,
        )
        logger.info(
            f"[Session] {context.session_id} for run {run_id}: "
            f"{len(ordered)} documents"
        )
        return context
