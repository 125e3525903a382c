"""
API routes — thin HTTP layer that delegates to the validation pipeline.

Routes:
  GET  /health                                             → API health check
  POST /api/runs                                           → Start a run (background)
  GET  /api/runs                                           → List runs
  GET  /api/runs/{run_id}/progress                         → Progress counters + status
  GET  /api/runs/{run_id}/results                          → Results in submission order
  GET  /api/runs/{run_id}/report                           → Status counts and rates
  POST /api/runs/{run_id}/requirements/{requirement_id}/revalidate
  POST /api/runs/{run_id}/cancel                           → Stop before the next call
  WS   /api/runs/ws/{run_id}                               → Real-time progress
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from assessment_validator.api.websocket import RunProgressBus
from assessment_validator.config import get_settings
from assessment_validator.exceptions import (
    RequirementNotInRunError,
    RunNotFoundError,
    ValidationPipelineError,
)
from assessment_validator.models.schemas import DocumentReference, RunProgress, ValidationResult
from assessment_validator.orchestration.pipeline import ValidationPipeline, get_pipeline
from assessment_validator.services.report import RunReport

logger = logging.getLogger(__name__)

# ── Routers ──────────────────────────────────────────────
health_router = APIRouter()
runs_router = APIRouter()


# ── Request / response schemas ───────────────────────────
class StartRunRequest(BaseModel):
    unit_identifier: str
    org_identifier: str
    documents: list[DocumentReference]
    category: Optional[str] = None


class StartRunResponse(BaseModel):
    run_id: str
    status: str
    message: str


class RunListItem(BaseModel):
    run_id: str
    unit_identifier: str
    status: str
    completed_count: int
    total_count: int
    started_at: str


def _pipeline() -> ValidationPipeline:
    return get_pipeline()


def _not_found(exc: Exception) -> HTTPException:
    return HTTPException(status_code=404, detail=str(exc))


# ── Health ───────────────────────────────────────────────

@health_router.get("/health")
async def health_check():
    settings = get_settings()
    return {
        "status": "ok",
        "app": settings.app_name,
        "mock_mode": settings.mock_mode,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


# ── Start a run (background thread) ──────────────────────

@runs_router.post("", response_model=StartRunResponse)
def start_run(body: StartRunRequest):
    """
    Create the run record and start validating in a background thread.
    Returns immediately so the caller can poll /progress or connect to
    the WebSocket for live updates.
    """
    if not body.documents:
        raise HTTPException(status_code=422, detail="At least one document is required")

    pipeline = _pipeline()
    try:
        run_id = pipeline.start_run(
            body.unit_identifier,
            body.org_identifier,
            body.documents,
            category_filter=body.category,
            background=True,
        )
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))

    logger.info(f"Started run {run_id} for {body.unit_identifier} ({len(body.documents)} documents)")
    return StartRunResponse(
        run_id=run_id,
        status=pipeline.get_run_progress(run_id).status.value,
        message=f"Run started. Connect to /api/runs/ws/{run_id} for live progress.",
    )


@runs_router.get("", response_model=list[RunListItem])
def list_runs():
    return [
        RunListItem(
            run_id=s.run_id,
            unit_identifier=s.unit_identifier,
            status=s.status.value,
            completed_count=s.completed_count,
            total_count=s.total_count,
            started_at=s.started_at.isoformat(),
        )
        for s in _pipeline().store.list_runs()
    ]


# ── Progress / results / report ──────────────────────────

@runs_router.get("/{run_id}/progress", response_model=RunProgress)
def get_progress(run_id: str):
    try:
        return _pipeline().get_run_progress(run_id)
    except RunNotFoundError as exc:
        raise _not_found(exc)


@runs_router.get("/{run_id}/results", response_model=list[ValidationResult])
def get_results(run_id: str):
    try:
        return _pipeline().get_results(run_id)
    except RunNotFoundError as exc:
        raise _not_found(exc)


@runs_router.get("/{run_id}/report", response_model=RunReport)
def get_report(run_id: str):
    try:
        return _pipeline().get_run_report(run_id)
    except RunNotFoundError as exc:
        raise _not_found(exc)


# ── Revalidate / cancel ──────────────────────────────────

@runs_router.post(
    "/{run_id}/requirements/{requirement_id}/revalidate",
    response_model=ValidationResult,
)
def revalidate(run_id: str, requirement_id: str):
    try:
        return _pipeline().revalidate_requirement(run_id, requirement_id)
    except (RunNotFoundError, RequirementNotInRunError) as exc:
        raise _not_found(exc)
    except ValidationPipelineError as exc:
        raise HTTPException(status_code=422, detail=str(exc))


@runs_router.post("/{run_id}/cancel", response_model=RunProgress)
def cancel(run_id: str):
    try:
        return _pipeline().cancel_run(run_id)
    except RunNotFoundError as exc:
        raise _not_found(exc)


# ── WebSocket endpoint for real-time run progress ────────

@runs_router.websocket("/ws/{run_id}")
async def ws_run_progress(websocket: WebSocket, run_id: str):
    """
    WebSocket endpoint — client connects here after POSTing /api/runs.
    Receives JSON events: requirement_start, requirement_end, run_end, error.
    """
    progress = RunProgressBus.get()
    await progress.connect(run_id, websocket)
    try:
        while True:
            # Keep the connection alive; client can send pings
            await websocket.receive_text()
    except WebSocketDisconnect:
        progress.disconnect(run_id, websocket)
    except Exception:
        progress.disconnect(run_id, websocket)
