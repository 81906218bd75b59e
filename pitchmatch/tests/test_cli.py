"""Tests for the typer command line interface."""
from __future__ import annotations

import json

import pytest
from typer.testing import CliRunner

from pitchmatch.cli import app
from pitchmatch.config import get_settings

runner = CliRunner()

RECORDS = {
    "startups": [{"id": "s1", "stage": "seed", "industry": "fintech", "fundingAsk": 500000}],
    "investors": [{
        "id": "i1", "acceptedStages": ["seed"], "preferredIndustries": ["fintech"],
        "minInvestmentAmount": 250000, "maxInvestmentAmount": 1000000,
    }],
}


@pytest.fixture()
def workspace(tmp_path, monkeypatch):
    monkeypatch.setenv("PITCHMATCH_HOME", str(tmp_path))
    monkeypatch.setenv("PITCHMATCH_DB", str(tmp_path / "cli.db"))
    get_settings.cache_clear()
    path = tmp_path / "records.json"
    path.write_text(json.dumps(RECORDS))
    yield path
    get_settings.cache_clear()


def _json(*args: str):
    result = runner.invoke(app, ["--json", *args])
    assert result.exit_code == 0, result.output
    return json.loads(result.stdout)


def test_import_and_match(workspace):
    imported = _json("import", str(workspace))
    assert imported["startups"] == 1
    assert imported["investors"] == 1

    first = _json("match", "s1", "i1")
    assert first["overall_score"] == 100
    assert first["from_cache"] is False

    second = _json("match", "s1", "i1")
    assert second["from_cache"] is True
    assert second["id"] == first["id"]


def test_lookup_missing_exits_nonzero(workspace):
    _json("import", str(workspace))
    result = runner.invoke(app, ["lookup", "s1", "i1"])
    assert result.exit_code == 1


def test_unknown_investor(workspace):
    _json("import", str(workspace))
    result = runner.invoke(app, ["match", "s1", "ghost"])
    assert result.exit_code == 1


def test_feedback_status_and_stats(workspace):
    _json("import", str(workspace))
    match_id = str(_json("match", "s1", "i1")["id"])
    fb = _json("feedback", match_id, "--side", "investor", "--rating", "good")
    assert fb["investor_feedback"] == "good"
    assert _json("status", match_id, "completed")["status"] == "completed"
    stats = _json("stats")
    assert stats["overview"]["total_matches"] == 1
    assert _json("expire") == {"expired": 0}


def test_list_renders_table(workspace):
    _json("import", str(workspace))
    _json("match", "s1", "i1")
    result = runner.invoke(app, ["list", "--startup", "s1"])
    assert result.exit_code == 0
    assert "i1" in result.output
