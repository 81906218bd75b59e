from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from mcp.server.fastmcp import FastMCP

from pitchmatch import services
from pitchmatch.db import init_db, session_scope
from pitchmatch.errors import MatchingError, RecordNotFound
from pitchmatch.predictor import VALID_ACTIONS, VALID_EXPECTED_OUTCOMES
from pitchmatch.scorer import load_weights

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def pitchmatch_lifespan(server: FastMCP) -> AsyncIterator[None]:
    init_db()
    load_weights()
    yield


mcp = FastMCP(
    "PitchMatch",
    instructions=(
        "PitchMatch scores how well a startup fits an investor. "
        "Use lookup_match() to read an existing result without computing, "
        "compute_match() to get a fresh one, and list_matches() to browse the best "
        "matches for a startup or investor. Start with get_stats() for an overview."
    ),
    lifespan=pitchmatch_lifespan,
    json_response=True,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _error(exc: Exception) -> dict:
    return {"error": exc.message if isinstance(exc, MatchingError) else str(exc)}


# ---------------------------------------------------------------------------
# Resource
# ---------------------------------------------------------------------------


@mcp.resource("pitchmatch://overview")
def pitchmatch_overview() -> str:
    """Overview of PitchMatch: scoring dimensions, outcomes, and workflow."""
    return json.dumps({
        "system": "PitchMatch: startup/investor compatibility matching",
        "description": (
            "Each startup/investor pair is scored 0-100 on ten weighted dimensions. "
            "Dimensions without data are left out and the remaining weights renormalized; "
            "confidence is the share of total weight that had data."
        ),
        "dimension_weights": load_weights(),
        "expected_outcomes": sorted(VALID_EXPECTED_OUTCOMES),
        "recommended_actions": sorted(VALID_ACTIONS),
        "workflow": [
            "1. get_stats() to see how many matches exist and how they score.",
            "2. lookup_match(startup_id, investor_id) to read a fresh result without computing.",
            "3. compute_match(startup_id, investor_id) to compute or reuse a fresh result.",
            "4. list_matches(startup_id=...) or list_matches(investor_id=...) to browse best matches.",
            "5. submit_match_feedback(match_id, side, ...) once the introduction plays out.",
        ],
        "freshness": "Results are reused for 7 days and expire after 30.",
    }, indent=2)


# ---------------------------------------------------------------------------
# Tools: Matches
# ---------------------------------------------------------------------------


@mcp.tool()
def compute_match(
    startup_id: str, investor_id: str, match_type: str = "investment", force_recalculate: bool = False,
) -> dict:
    """Get the fresh match for a startup/investor pair, computing it when none exists.

    Args:
        startup_id: Stored startup id.
        investor_id: Stored investor id.
        match_type: investment, mentorship, advisory, partnership or customer.
        force_recalculate: Recompute even when a fresh record exists.
    """
    with session_scope() as session:
        try:
            outcome = services.get_or_compute(
                session, startup_id, investor_id, match_type, force_recalculate=force_recalculate,
            )
        except (MatchingError, ValueError) as exc:
            return _error(exc)
        return {**services.match_record_dict(outcome.record), "from_cache": outcome.from_cache}


@mcp.tool()
def lookup_match(startup_id: str, investor_id: str, match_type: str = "investment") -> dict:
    """Read the fresh match for a pair without computing. Returns {"match": null} when none exists."""
    with session_scope() as session:
        try:
            outcome = services.get_or_compute(session, startup_id, investor_id, match_type, read_only=True)
        except RecordNotFound:
            return {"match": None}
        except ValueError as exc:
            return _error(exc)
        return {"match": services.match_record_dict(outcome.record)}


@mcp.tool()
def list_matches(startup_id: str | None = None, investor_id: str | None = None, limit: int = 20) -> list[dict] | dict:
    """List live matches for a startup or an investor, best score first (max 200)."""
    with session_scope() as session:
        try:
            return services.list_matches(
                session, startup_id=startup_id, investor_id=investor_id, limit=max(1, min(limit, 200)),
            )
        except ValueError as exc:
            return _error(exc)


@mcp.tool()
def get_match(match_id: int) -> dict:
    """Get a single match record by id."""
    with session_scope() as session:
        try:
            return services.match_record_dict(services.get_match(session, match_id))
        except MatchingError as exc:
            return _error(exc)


@mcp.tool()
def submit_match_feedback(
    match_id: int, side: str, feedback: str | None = None,
    notes: str | None = None, actual_outcome: str | None = None,
) -> dict:
    """Record feedback on a match. Never changes the score.

    Args:
        match_id: Match record id.
        side: startup, investor or admin.
        feedback: excellent, good, average, poor or no-feedback (startup/investor only).
        notes: Free-text notes.
        actual_outcome: investment-made, connection-established, meeting-scheduled,
                        interest-expressed, no-response, declined or pending.
    """
    with session_scope() as session:
        try:
            record = services.submit_feedback(
                session, match_id, side, feedback=feedback, notes=notes, actual_outcome=actual_outcome,
            )
        except (MatchingError, ValueError) as exc:
            return _error(exc)
        return services.match_record_dict(record)


@mcp.tool()
def expire_stale_matches() -> dict:
    """Mark live matches past their expiry time as expired."""
    with session_scope() as session:
        return {"expired": services.expire_stale(session)}


@mcp.tool()
def get_stats() -> dict:
    """Totals, score distribution, tracked outcomes and prediction accuracy."""
    with session_scope() as session:
        return services.compute_stats(session)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main():
    """Run the PitchMatch MCP server over stdio."""
    mcp.run()
