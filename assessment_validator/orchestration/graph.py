"""
LangGraph State Machine — one validation run.

    load_requirements → build_session → validate_requirement ↺ → finalize_run
                     ↘               ↘
                       fail_run        fail_run

validate_requirement handles exactly one requirement per visit and loops on
itself until the requirement list is exhausted or the run is cancelled.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from langgraph.graph import StateGraph, END

from assessment_validator.orchestration.transitions import (
    route_after_load,
    route_after_requirement,
    route_after_session,
)

if TYPE_CHECKING:
    from assessment_validator.orchestration.pipeline import ValidationPipeline

logger = logging.getLogger(__name__)


def build_graph(pipeline: "ValidationPipeline") -> Any:
    """
    Construct and compile the run state machine.
    Node functions are the pipeline's own node methods; collaborators
    (store, caller, parser) stay on the pipeline, not in the state.
    """

    graph = StateGraph(dict)

    # ── Add nodes ────────────────────────────────────────
    graph.add_node("load_requirements", pipeline.load_requirements)
    graph.add_node("build_session", pipeline.build_session)
    graph.add_node("validate_requirement", pipeline.validate_requirement)
    graph.add_node("finalize_run", pipeline.finalize_run)
    graph.add_node("fail_run", pipeline.fail_run)

    # ── Set entry point ──────────────────────────────────
    graph.set_entry_point("load_requirements")

    # ── Add edges ────────────────────────────────────────
    graph.add_conditional_edges(
        "load_requirements",
        route_after_load,
        {
            "build_session": "build_session",
            "fail_run": "fail_run",
        },
    )

    graph.add_conditional_edges(
        "build_session",
        route_after_session,
        {
            "validate_requirement": "validate_requirement",
            "fail_run": "fail_run",
        },
    )

    graph.add_conditional_edges(
        "validate_requirement",
        route_after_requirement,
        {
            "validate_requirement": "validate_requirement",  # next requirement
            "finalize_run": "finalize_run",
        },
    )

    # Terminal edges → END
    graph.add_edge("finalize_run", END)
    graph.add_edge("fail_run", END)

    return graph.compile()
