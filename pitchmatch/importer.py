from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterable

import openpyxl
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from pitchmatch.models import InvestorRecord, StartupRecord
from pitchmatch.schemas import ImportResult
from pitchmatch.services import upsert_document

log = logging.getLogger(__name__)


def _s(value: object) -> str:
    """Safely coerce cell value to stripped string."""
    if value is None:
        return ""
    return str(value).strip()


def _cell(value: object) -> Any:
    """Cell value as stored in the record: JSON-looking text is decoded, blanks dropped."""
    if value is None:
        return None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text[0] in "[{":
            try:
                return json.loads(text)
            except json.JSONDecodeError:
                return text
        return text
    return value


# ---------------------------------------------------------------------------
# Sheet parsers
# ---------------------------------------------------------------------------


def _parse_sheet(ws) -> list[dict[str, Any]]:
    """Parse a sheet whose first row holds record field names (``id``, ``stage``, ...)."""
    rows = ws.iter_rows(values_only=True)
    header = next(rows, None)
    if not header:
        return []
    keys = [_s(h) for h in header]
    out: list[dict[str, Any]] = []
    for row in rows:
        if not row:
            continue
        entry = {}
        for key, value in zip(keys, row):
            value = _cell(value)
            if key and value is not None:
                entry[key] = value
        if entry:
            out.append(entry)
    return out


def _store(session: Session, kind: str, records: Iterable[dict[str, Any]]) -> tuple[int, int]:
    stored = skipped = 0
    for record in records:
        if not isinstance(record, dict):
            skipped += 1
            continue
        try:
            upsert_document(session, kind, record)
        except ValueError as exc:
            log.warning("Skipping %s row: %s", kind, exc)
            skipped += 1
            continue
        stored += 1
    return stored, skipped


def _result(session: Session, startups: int, investors: int, skipped: int) -> ImportResult:
    return ImportResult(
        startups=startups,
        investors=investors,
        skipped=skipped,
        total_startups=session.execute(select(func.count(StartupRecord.id))).scalar_one(),
        total_investors=session.execute(select(func.count(InvestorRecord.id))).scalar_one(),
    )


def import_xlsx(file_path: str | Path, session: Session) -> ImportResult:
    """Import the ``Startups`` and ``Investors`` sheets. Upserts by record id."""
    file_path = Path(file_path)
    wb = openpyxl.load_workbook(file_path, read_only=True, data_only=True)

    startup_rows: list[dict[str, Any]] = []
    investor_rows: list[dict[str, Any]] = []
    for sheet_name in wb.sheetnames:
        lower = sheet_name.casefold()
        if "startup" in lower:
            startup_rows = _parse_sheet(wb[sheet_name])
        elif "investor" in lower:
            investor_rows = _parse_sheet(wb[sheet_name])

    wb.close()

    s_count, s_skipped = _store(session, "startup", startup_rows)
    i_count, i_skipped = _store(session, "investor", investor_rows)
    session.commit()
    log.info("Imported %d startups and %d investors from %s", s_count, i_count, file_path.name)
    return _result(session, s_count, i_count, s_skipped + i_skipped)


def import_json(file_path: str | Path, session: Session) -> ImportResult:
    """Import ``{"startups": [...], "investors": [...]}``. Upserts by record id."""
    file_path = Path(file_path)
    payload = json.loads(file_path.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError("Expected a JSON object with 'startups' and/or 'investors' lists")

    s_count, s_skipped = _store(session, "startup", payload.get("startups") or [])
    i_count, i_skipped = _store(session, "investor", payload.get("investors") or [])
    session.commit()
    log.info("Imported %d startups and %d investors from %s", s_count, i_count, file_path.name)
    return _result(session, s_count, i_count, s_skipped + i_skipped)


def import_file(file_path: str | Path, session: Session) -> ImportResult:
    suffix = Path(file_path).suffix.lower()
    if suffix == ".xlsx":
        return import_xlsx(file_path, session)
    if suffix == ".json":
        return import_json(file_path, session)
    raise ValueError("Only .xlsx and .json files are supported")
