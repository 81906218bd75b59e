"""Tests for XLSX / JSON record import."""
from __future__ import annotations

import json

import openpyxl
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from pitchmatch import services
from pitchmatch.importer import import_file, import_json, import_xlsx
from pitchmatch.models import Base


@pytest.fixture()
def session():
    eng = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False})
    Base.metadata.create_all(eng)
    sess = sessionmaker(bind=eng, autoflush=False, expire_on_commit=False)()
    try:
        yield sess
    finally:
        sess.close()


@pytest.fixture()
def workbook(tmp_path):
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = "Startups"
    ws.append(["id", "stage", "industry", "fundingAsk", "founders", "needs"])
    ws.append(["s1", "Seed", "FinTech", 500000, '[{"experience": 8, "education": "MIT"}]', "mentorship, lead-investor"])
    ws.append([None, None, None, None, None, None])
    ws.append(["", "Seed", "SaaS", None, None, None])
    inv = wb.create_sheet("Investors")
    inv.append(["id", "acceptedStages", "preferredIndustries", "leadInvestments", "maxInvestmentAmount"])
    inv.append(["i1", "seed, series-a", "fintech", "yes", 1000000])
    path = tmp_path / "records.xlsx"
    wb.save(path)
    return path


class TestImportXlsx:
    def test_imports_both_sheets(self, session, workbook):
        result = import_xlsx(workbook, session)
        assert result.startups == 1
        assert result.investors == 1
        assert result.skipped == 1
        assert result.total_startups == 1

        startup = services.get_document(session, "startup", "s1")
        assert startup["stage"] == "Seed"
        assert startup["founders"] == [{"experience": 8, "education": "MIT"}]
        assert "fundingAsk" in startup

    def test_rows_feed_the_engine(self, session, workbook):
        import_xlsx(workbook, session)
        outcome = services.get_or_compute(session, "s1", "i1")
        breakdown = services.match_record_dict(outcome.record)["score_breakdown"]
        assert breakdown["value_add"] == 100
        # 8 years experience + MIT
        assert breakdown["team"] == 35
        assert outcome.record.overall_score == 90

    def test_reimport_upserts(self, session, workbook):
        import_xlsx(workbook, session)
        result = import_xlsx(workbook, session)
        assert result.total_startups == 1
        assert result.total_investors == 1


class TestImportJson:
    def test_imports(self, session, tmp_path):
        path = tmp_path / "records.json"
        path.write_text(json.dumps({
            "startups": [{"id": "s1", "stage": "seed", "industry": "fintech"}, "junk"],
            "investors": [],
        }))
        result = import_json(path, session)
        assert result.startups == 1
        assert result.investors == 0
        assert result.skipped == 1

    def test_rejects_non_object(self, session, tmp_path):
        path = tmp_path / "records.json"
        path.write_text("[]")
        with pytest.raises(ValueError):
            import_json(path, session)

    def test_dispatch_by_suffix(self, session, tmp_path):
        with pytest.raises(ValueError):
            import_file(tmp_path / "records.csv", session)
