"""
Routing functions for LangGraph conditional edges.

Each function inspects the current state dict and returns the name of the
next node to execute.
"""

from __future__ import annotations

from typing import Any


# ── After requirement loading ────────────────────────────

def route_after_load(state: dict[str, Any]) -> str:
    """Nothing to validate (or lookup failed) → fail_run."""
    if state.get("fatal_error"):
        return "fail_run"
    return "build_session"


# ── After session building ───────────────────────────────

def route_after_session(state: dict[str, Any]) -> str:
    """No documents or no template for a category → fail_run."""
    if state.get("fatal_error"):
        return "fail_run"
    return "validate_requirement"


# ── After each requirement ───────────────────────────────

def route_after_requirement(state: dict[str, Any]) -> str:
    """
    more      → validate the next requirement
    cancelled → finalize (status Cancelled)
    done      → finalize
    """
    if state.get("cancelled"):
        return "finalize_run"
    if state.get("cursor", 0) < len(state.get("requirements", [])):
        return "validate_requirement"
    return "finalize_run"
