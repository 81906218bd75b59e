from __future__ import annotations

import logging
import tempfile
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Generator

from fastapi import Depends, FastAPI, File, HTTPException, Query, Request, UploadFile
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from pitchmatch import __version__, services
from pitchmatch.db import init_db, session_scope
from pitchmatch.errors import MatchingError, RecordNotFound
from pitchmatch.importer import import_file
from pitchmatch.schemas import (
    ExpireResult,
    FeedbackUpdate,
    ImportResult,
    LookupResponse,
    MatchRecordOut,
    MatchRequest,
    MatchResponse,
    StatsOut,
    StatusUpdate,
)
from pitchmatch.scorer import load_weights

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    weights = load_weights()
    log.info("Dimension weights: %s", weights)
    yield


app = FastAPI(
    title="PitchMatch",
    version=__version__,
    description=(
        "Startup/investor compatibility matching API. "
        "Scores pairs across ten weighted dimensions, predicts the likely outcome, "
        "and keeps one live match record per pair. "
        "All endpoints return JSON. No authentication required."
    ),
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Records", "description": "Store and read startup and investor documents."},
        {"name": "Import", "description": "Bulk import records from XLSX or JSON files."},
        {"name": "Matches", "description": "Compute, look up, and list match records."},
        {"name": "Feedback", "description": "Feedback and lifecycle status of match records."},
        {"name": "Stats", "description": "Aggregate statistics and maintenance."},
    ],
)


@app.exception_handler(MatchingError)
async def matching_error_handler(request: Request, exc: MatchingError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# ---------------------------------------------------------------------------
# Dependencies & Helpers
# ---------------------------------------------------------------------------


def db_session() -> Generator[Session, None, None]:
    with session_scope() as session:
        yield session


def _bad_request(exc: ValueError) -> HTTPException:
    return HTTPException(400, str(exc))


# ---------------------------------------------------------------------------
# Routes: Records
# ---------------------------------------------------------------------------


def _put_document(session: Session, kind: str, doc_id: str, body: dict[str, Any]) -> dict[str, Any]:
    body_id = body.get("id")
    if body_id is not None and str(body_id) != doc_id:
        raise HTTPException(400, f"Body id {body_id!r} does not match path id {doc_id!r}")
    try:
        data = services.upsert_document(session, kind, {**body, "id": doc_id})
    except ValueError as exc:
        raise _bad_request(exc) from exc
    session.commit()
    return data


@app.put("/api/startups/{startup_id}", tags=["Records"], summary="Create or replace a startup record")
async def put_startup(startup_id: str, body: dict[str, Any], session: Session = Depends(db_session)):
    return _put_document(session, "startup", startup_id, body)


@app.get("/api/startups/{startup_id}", tags=["Records"], summary="Get a startup record")
async def get_startup(startup_id: str, session: Session = Depends(db_session)):
    return services.get_document(session, "startup", startup_id)


@app.put("/api/investors/{investor_id}", tags=["Records"], summary="Create or replace an investor record")
async def put_investor(investor_id: str, body: dict[str, Any], session: Session = Depends(db_session)):
    return _put_document(session, "investor", investor_id, body)


@app.get("/api/investors/{investor_id}", tags=["Records"], summary="Get an investor record")
async def get_investor(investor_id: str, session: Session = Depends(db_session)):
    return services.get_document(session, "investor", investor_id)


# ---------------------------------------------------------------------------
# Routes: Import
# ---------------------------------------------------------------------------


@app.post("/api/import", response_model=ImportResult,
          tags=["Import"], summary="Import startups and investors from an XLSX or JSON file")
async def import_upload(file: UploadFile = File(...), session: Session = Depends(db_session)):
    suffix = Path(file.filename or "").suffix.lower()
    if suffix not in (".xlsx", ".json"):
        raise HTTPException(400, "Only .xlsx and .json files are supported")
    content = await file.read()
    tmp_path = None
    try:
        with tempfile.NamedTemporaryFile(suffix=suffix, delete=False) as f:
            tmp_path = Path(f.name)
            f.write(content)
        return import_file(tmp_path, session)
    except ValueError as exc:
        raise _bad_request(exc) from exc
    finally:
        if tmp_path:
            tmp_path.unlink(missing_ok=True)


# ---------------------------------------------------------------------------
# Routes: Matches (fixed paths before parameterized to avoid route shadowing)
# ---------------------------------------------------------------------------


@app.post("/api/matches", response_model=MatchResponse,
          tags=["Matches"], summary="Get the fresh match for a pair, computing it if needed")
async def compute_match(body: MatchRequest, session: Session = Depends(db_session)):
    try:
        outcome = services.get_or_compute(
            session, body.startup_id, body.investor_id, body.match_type,
            force_recalculate=body.force_recalculate,
        )
    except ValueError as exc:
        raise _bad_request(exc) from exc
    content = {"match": services.match_record_dict(outcome.record), "from_cache": outcome.from_cache}
    return JSONResponse(status_code=200 if outcome.from_cache else 201, content=content)


@app.get("/api/matches/lookup", response_model=LookupResponse,
         tags=["Matches"], summary="Read-only lookup of the fresh match for a pair")
async def lookup_match(
    startup_id: str = Query(..., min_length=1),
    investor_id: str = Query(..., min_length=1),
    match_type: str = Query("investment"),
    session: Session = Depends(db_session),
):
    try:
        outcome = services.get_or_compute(session, startup_id, investor_id, match_type, read_only=True)
    except RecordNotFound:
        return {"match": None}
    except ValueError as exc:
        raise _bad_request(exc) from exc
    return {"match": services.match_record_dict(outcome.record)}


@app.get("/api/matches", response_model=list[MatchRecordOut],
         tags=["Matches"], summary="List live matches for a startup or an investor, best first")
async def list_matches(
    startup_id: str | None = Query(None),
    investor_id: str | None = Query(None),
    limit: int = Query(20, ge=1, le=200),
    session: Session = Depends(db_session),
):
    try:
        return services.list_matches(session, startup_id=startup_id, investor_id=investor_id, limit=limit)
    except ValueError as exc:
        raise _bad_request(exc) from exc


@app.get("/api/matches/{match_id}", response_model=MatchRecordOut,
         tags=["Matches"], summary="Get a match record by id")
async def get_match(match_id: int, session: Session = Depends(db_session)):
    return services.match_record_dict(services.get_match(session, match_id))


@app.delete("/api/matches/{match_id}", tags=["Matches"], summary="Delete a match record")
async def delete_match(match_id: int, session: Session = Depends(db_session)):
    services.delete_match(session, match_id)
    return {"ok": True}


# ---------------------------------------------------------------------------
# Routes: Feedback & Status
# ---------------------------------------------------------------------------


@app.put("/api/matches/{match_id}/feedback", response_model=MatchRecordOut,
         tags=["Feedback"], summary="Record feedback or the actual outcome of a match")
async def submit_feedback(match_id: int, body: FeedbackUpdate, session: Session = Depends(db_session)):
    try:
        record = services.submit_feedback(
            session, match_id, body.side,
            feedback=body.feedback, notes=body.notes, actual_outcome=body.actual_outcome,
        )
    except ValueError as exc:
        raise _bad_request(exc) from exc
    return services.match_record_dict(record)


@app.put("/api/matches/{match_id}/status", response_model=MatchRecordOut,
         tags=["Feedback"], summary="Move a match record along its lifecycle")
async def update_status(match_id: int, body: StatusUpdate, session: Session = Depends(db_session)):
    return services.match_record_dict(services.update_status(session, match_id, body.status))


# ---------------------------------------------------------------------------
# Routes: Stats & Maintenance
# ---------------------------------------------------------------------------


@app.post("/api/maintenance/expire", response_model=ExpireResult,
          tags=["Stats"], summary="Expire live matches past their expiry time")
async def expire_matches(session: Session = Depends(db_session)):
    return {"expired": services.expire_stale(session)}


@app.get("/api/stats", response_model=StatsOut, tags=["Stats"], summary="Get match statistics")
async def get_stats(session: Session = Depends(db_session)):
    return services.compute_stats(session)


def main():
    import uvicorn
    uvicorn.run("pitchmatch.app:app", host="127.0.0.1", port=8001, reload=True)
