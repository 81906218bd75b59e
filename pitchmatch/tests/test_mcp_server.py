"""Tests for MCP tools, called directly against a temporary database."""
from __future__ import annotations

import json

import pytest

from pitchmatch import mcp_server, services
from pitchmatch.config import get_settings
from pitchmatch.db import init_db, session_scope


@pytest.fixture()
def db(tmp_path, monkeypatch):
    monkeypatch.setenv("PITCHMATCH_HOME", str(tmp_path))
    get_settings.cache_clear()
    init_db(tmp_path / "mcp.db")
    with session_scope() as session:
        services.upsert_document(session, "startup", {"id": "s1", "stage": "seed", "industry": "fintech"})
        services.upsert_document(session, "investor", {
            "id": "i1", "acceptedStages": ["seed"], "preferredIndustries": ["fintech"],
        })
        session.commit()
    yield
    get_settings.cache_clear()


def test_lookup_then_compute(db):
    assert mcp_server.lookup_match("s1", "i1") == {"match": None}
    created = mcp_server.compute_match("s1", "i1")
    assert created["from_cache"] is False
    found = mcp_server.lookup_match("s1", "i1")["match"]
    assert found["id"] == created["id"]


def test_errors_are_returned(db):
    assert "error" in mcp_server.compute_match("s1", "ghost")
    assert "error" in mcp_server.get_match(12345)
    assert "error" in mcp_server.list_matches()


def test_feedback_and_stats(db):
    match_id = mcp_server.compute_match("s1", "i1")["id"]
    updated = mcp_server.submit_match_feedback(match_id, "admin", actual_outcome="declined")
    assert updated["actual_outcome"] == "declined"
    assert mcp_server.get_stats()["outcome_tracking"]["declined"] == 1
    assert mcp_server.expire_stale_matches() == {"expired": 0}
    assert [m["id"] for m in mcp_server.list_matches(startup_id="s1")] == [match_id]


def test_overview_resource():
    overview = json.loads(mcp_server.pitchmatch_overview())
    assert sum(overview["dimension_weights"].values()) == 100
    assert "no-match" in overview["expected_outcomes"]
