"""Match record store and shared business logic for the API, MCP server and CLI."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Mapping

from sqlalchemy import delete, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from pitchmatch.config import get_settings
from pitchmatch.errors import InvalidTransition, NotFound, RecordNotFound
from pitchmatch.features import InvestorFeatures, StartupFeatures, normalize_investor, normalize_startup
from pitchmatch.models import (
    FEEDBACK_SIDES,
    FROZEN_STATUSES,
    LIVE_STATUSES,
    MATCH_TYPES,
    STATUS_ACTIVE,
    STATUS_ARCHIVED,
    STATUS_COMPLETED,
    STATUS_EXPIRED,
    VALID_ACTUAL_OUTCOMES,
    VALID_FEEDBACK,
    InvestorRecord,
    MatchRecord,
    StartupRecord,
    live_key,
)
from pitchmatch.predictor import HistoricalMatch, Prediction, predict
from pitchmatch.scorer import DIMENSION_NAMES, Aggregate, aggregate, build_reasoning, load_weights, score_dimensions
from pitchmatch.utils import json_parse, to_json, utc_now

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Shared field tuples
# ---------------------------------------------------------------------------

RECORD_FIELDS = (
    "id", "startup_id", "investor_id", "match_type", "overall_score", "confidence",
    "success_probability", "historical_adjustment", "expected_outcome",
    "recommended_action", "status", "model_version", "algorithm_type",
    "startup_feedback", "investor_feedback", "feedback_notes", "actual_outcome",
)
TIMESTAMP_FIELDS = ("created_at", "last_updated", "expires_at", "feedback_at")

_TRANSITIONS: dict[str, set[str]] = {
    "active": {"presented", "acted-upon", "completed", "expired", "archived"},
    "presented": {"acted-upon", "completed", "expired", "archived"},
    "acted-upon": {"completed", "expired", "archived"},
    "expired": {"archived"},
    "completed": set(),
    "archived": set(),
}

_POSITIVE_OUTCOMES = {"investment-made", "connection-established"}
_NEGATIVE_OUTCOMES = {"no-response", "declined"}


# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def match_record_dict(record: MatchRecord) -> dict[str, Any]:
    result: dict[str, Any] = {f: getattr(record, f) for f in RECORD_FIELDS}
    result.update({f: _iso(getattr(record, f)) for f in TIMESTAMP_FIELDS})
    result["score_breakdown"] = json_parse(record.score_breakdown_json, {})
    result["similar_matches"] = json_parse(record.similar_matches_json, [])
    result["reasoning"] = json_parse(record.reasoning_json, [])
    result["features"] = json_parse(record.features_json, [])
    return result


def get_match(session: Session, record_id: int) -> MatchRecord:
    record = session.get(MatchRecord, record_id)
    if record is None:
        raise NotFound(f"Match record {record_id} not found")
    return record


# ---------------------------------------------------------------------------
# Startup / investor documents
# ---------------------------------------------------------------------------

_DOCUMENT_MODELS = {"startup": StartupRecord, "investor": InvestorRecord}


def upsert_document(session: Session, kind: str, record: Mapping[str, Any]) -> dict[str, Any]:
    """Store a raw startup or investor document keyed by its id (caller must commit)."""
    model = _DOCUMENT_MODELS[kind]
    doc_id = str(record.get("id") or record.get("_id") or "").strip()
    if not doc_id:
        raise ValueError(f"{kind} record has no id")
    data = {**record, "id": doc_id}
    existing = session.get(model, doc_id)
    if existing is None:
        session.add(model(id=doc_id, data_json=to_json(data)))
        session.flush()
    else:
        existing.data_json = to_json(data)
    return data


def get_document(session: Session, kind: str, doc_id: str) -> dict[str, Any]:
    row = session.get(_DOCUMENT_MODELS[kind], doc_id)
    if row is None:
        raise NotFound(f"{kind.capitalize()} {doc_id} not found")
    return json_parse(row.data_json, {})


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


@dataclass
class Evaluation:
    startup: StartupFeatures
    investor: InvestorFeatures
    aggregate: Aggregate
    prediction: Prediction
    reasoning: list[str]


def evaluate(
    startup: StartupFeatures,
    investor: InvestorFeatures,
    history: list[HistoricalMatch] | None = None,
    weights: dict[str, int] | None = None,
) -> Evaluation:
    """Score, aggregate and predict for one pair. Pure given its inputs."""
    agg = aggregate(score_dimensions(startup, investor), weights or load_weights())
    prediction = predict(agg, history)
    return Evaluation(startup, investor, agg, prediction, build_reasoning(agg, startup))


def find_similar_resolved(session: Session, stage: str, industry: str, limit: int = 500) -> list[HistoricalMatch]:
    """Completed records for the same stage and industry with a known outcome."""
    rows = session.execute(
        select(MatchRecord.id, MatchRecord.overall_score, MatchRecord.actual_outcome)
        .where(
            MatchRecord.status == STATUS_COMPLETED,
            MatchRecord.startup_stage == stage,
            MatchRecord.startup_industry == industry,
            MatchRecord.actual_outcome.is_not(None),
            MatchRecord.actual_outcome != "pending",
        )
        .order_by(MatchRecord.last_updated.desc())
        .limit(limit)
    ).all()
    return [HistoricalMatch(r.id, r.overall_score, r.actual_outcome) for r in rows]


# ---------------------------------------------------------------------------
# Match record store
# ---------------------------------------------------------------------------


@dataclass
class MatchOutcome:
    record: MatchRecord
    from_cache: bool
    reasoning: list[str]


def find_live(session: Session, startup_id: str, investor_id: str, match_type: str) -> MatchRecord | None:
    return session.execute(
        select(MatchRecord).where(MatchRecord.live_key == live_key(startup_id, investor_id, match_type))
    ).scalars().first()


def is_fresh(record: MatchRecord, now: datetime) -> bool:
    """Live, not past its hard expiry, and inside the reuse window."""
    window = timedelta(days=get_settings().freshness_days)
    return (
        record.status in LIVE_STATUSES
        and record.expires_at > now
        and record.created_at >= now - window
    )


def _upsert_insert(session: Session):
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert
    return sqlite_insert


def _persist(
    session: Session, startup_id: str, investor_id: str, match_type: str,
    ev: Evaluation, now: datetime,
) -> MatchRecord:
    """Archive the prior live record and upsert the new one in a single transaction."""
    settings = get_settings()
    key = live_key(startup_id, investor_id, match_type)
    archived = session.execute(
        update(MatchRecord)
        .where(MatchRecord.live_key == key)
        .values(status=STATUS_ARCHIVED, live_key=None, last_updated=now)
    ).rowcount
    values = {
        "startup_id": startup_id,
        "investor_id": investor_id,
        "match_type": match_type,
        "live_key": key,
        "overall_score": ev.aggregate.overall_score,
        "confidence": ev.aggregate.confidence,
        "score_breakdown_json": to_json(ev.aggregate.score_breakdown),
        "success_probability": ev.prediction.success_probability,
        "historical_adjustment": ev.prediction.historical_adjustment,
        "similar_matches_json": to_json(ev.prediction.similar_matches),
        "expected_outcome": ev.prediction.expected_outcome,
        "recommended_action": ev.prediction.recommended_action,
        "status": STATUS_ACTIVE,
        "reasoning_json": to_json(ev.reasoning),
        "model_version": settings.model_version,
        "algorithm_type": settings.algorithm_type,
        "features_json": to_json(list(DIMENSION_NAMES)),
        "startup_stage": ev.startup.stage,
        "startup_industry": ev.startup.industry,
        "created_at": now,
        "last_updated": now,
        "expires_at": now + timedelta(days=settings.expiry_days),
    }
    insert = _upsert_insert(session)
    stmt = insert(MatchRecord).values(**values)
    # A concurrent writer for the same identity loses to whoever commits last
    stmt = stmt.on_conflict_do_update(
        index_elements=[MatchRecord.live_key],
        set_={k: getattr(stmt.excluded, k) for k in values if k != "live_key"},
    ).returning(MatchRecord.id)
    new_id = session.execute(stmt).scalar_one()
    session.commit()
    if archived:
        log.info("Archived %d prior record(s) for %s", archived, key)
    return session.get(MatchRecord, new_id, populate_existing=True)


def get_or_compute(
    session: Session,
    startup_id: str,
    investor_id: str,
    match_type: str = "investment",
    force_recalculate: bool = False,
    read_only: bool = False,
    now: datetime | None = None,
) -> MatchOutcome:
    """Return the fresh live record for the identity, or compute and persist a new one.

    Raises RecordNotFound in ``read_only`` mode when nothing fresh exists,
    NotFound for unknown startups/investors, IncompleteRecord and
    InsufficientData from the pipeline (nothing is persisted then).
    """
    if match_type not in MATCH_TYPES:
        raise ValueError(f"Unknown match type: {match_type!r}")
    now = now or utc_now()
    existing = find_live(session, startup_id, investor_id, match_type)
    if existing is not None and not force_recalculate and is_fresh(existing, now):
        log.info("Match cache hit for %s/%s (%s): record %d", startup_id, investor_id, match_type, existing.id)
        return MatchOutcome(existing, True, json_parse(existing.reasoning_json, []))
    if read_only:
        raise RecordNotFound(f"No fresh {match_type} match for startup {startup_id} and investor {investor_id}")

    startup = normalize_startup(get_document(session, "startup", startup_id), as_of=now.date())
    investor = normalize_investor(get_document(session, "investor", investor_id))
    history = find_similar_resolved(session, startup.stage, startup.industry)
    ev = evaluate(startup, investor, history)

    try:
        record = _persist(session, startup_id, investor_id, match_type, ev, now)
    except Exception:
        session.rollback()
        raise
    log.info(
        "Computed match %d for %s/%s (%s): score=%d confidence=%.2f action=%s",
        record.id, startup_id, investor_id, match_type,
        record.overall_score, record.confidence, record.recommended_action,
    )
    return MatchOutcome(record, False, ev.reasoning)


def submit_feedback(
    session: Session,
    record_id: int,
    side: str,
    feedback: str | None = None,
    notes: str | None = None,
    actual_outcome: str | None = None,
    now: datetime | None = None,
) -> MatchRecord:
    """Write feedback fields (last value wins). Never recomputes the score."""
    if side not in FEEDBACK_SIDES:
        raise ValueError(f"Unknown feedback side: {side!r}")
    if feedback is not None:
        if feedback not in VALID_FEEDBACK:
            raise ValueError(f"Unknown feedback rating: {feedback!r}")
        if side == "admin":
            raise ValueError("Ratings are given by the startup or investor side")
    if actual_outcome is not None and actual_outcome not in VALID_ACTUAL_OUTCOMES:
        raise ValueError(f"Unknown actual outcome: {actual_outcome!r}")

    record = get_match(session, record_id)
    if feedback is not None:
        setattr(record, f"{side}_feedback", feedback)
    if notes is not None:
        record.feedback_notes = notes
    if actual_outcome is not None:
        record.actual_outcome = actual_outcome
    record.feedback_at = now or utc_now()
    session.commit()
    log.info("Feedback from %s side recorded on match %d", side, record_id)
    return record


def update_status(session: Session, record_id: int, status: str, now: datetime | None = None) -> MatchRecord:
    """Move a record along its lifecycle; completed and archived records are frozen."""
    record = get_match(session, record_id)
    if status == record.status:
        return record
    if status not in _TRANSITIONS:
        raise ValueError(f"Unknown status: {status!r}")
    if status not in _TRANSITIONS[record.status]:
        log.warning("Rejected status change of match %d: %s -> %s", record_id, record.status, status)
        if record.status in FROZEN_STATUSES:
            raise InvalidTransition(f"Match {record_id} is {record.status} and can no longer change status")
        raise InvalidTransition(f"Cannot move match {record_id} from {record.status} to {status}")
    record.status = status
    if status not in LIVE_STATUSES:
        record.live_key = None
    record.last_updated = now or utc_now()
    session.commit()
    return record


def expire_stale(session: Session, now: datetime | None = None) -> int:
    """Mark live records past ``expires_at`` as expired. Idempotent."""
    now = now or utc_now()
    count = session.execute(
        update(MatchRecord)
        .where(MatchRecord.status.in_(sorted(LIVE_STATUSES)), MatchRecord.expires_at <= now)
        .values(status=STATUS_EXPIRED, live_key=None, last_updated=now)
    ).rowcount
    session.commit()
    if count:
        log.info("Expired %d stale match record(s)", count)
    return count


def delete_match(session: Session, record_id: int) -> None:
    get_match(session, record_id)
    session.execute(delete(MatchRecord).where(MatchRecord.id == record_id))
    session.commit()


def list_matches(
    session: Session, *, startup_id: str | None = None, investor_id: str | None = None,
    limit: int | None = None, now: datetime | None = None,
) -> list[dict[str, Any]]:
    """Live, unexpired matches for a startup or an investor, best first.

    Records past ``expires_at`` are left out even before ``expire_stale``
    has marked them. Records older than the reuse window but not yet
    expired are still listed; only ``get_or_compute`` applies that window.
    """
    if not startup_id and not investor_id:
        raise ValueError("startup_id or investor_id is required")
    now = now or utc_now()
    query = select(MatchRecord).where(
        MatchRecord.status.in_(sorted(LIVE_STATUSES)), MatchRecord.expires_at > now,
    )
    if startup_id:
        query = query.where(MatchRecord.startup_id == startup_id)
    if investor_id:
        query = query.where(MatchRecord.investor_id == investor_id)
    query = query.order_by(MatchRecord.overall_score.desc(), MatchRecord.id.desc())
    query = query.limit(limit or get_settings().list_limit)
    return [match_record_dict(r) for r in session.execute(query).scalars().all()]


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------


def compute_stats(session: Session, now: datetime | None = None) -> dict:
    now = now or utc_now()
    records = session.execute(select(MatchRecord)).scalars().all()
    total = len(records)
    outcomes = [r for r in records if r.actual_outcome]

    def _count(pred) -> int:
        return sum(1 for r in records if pred(r))

    return {
        "overview": {
            "total_matches": total,
            "active_matches": _count(lambda r: r.status == STATUS_ACTIVE and r.expires_at > now),
            "average_score": round(sum(r.overall_score for r in records) / total, 2) if total else None,
            "average_confidence": round(sum(r.confidence for r in records) / total, 4) if total else None,
            "high_quality_matches": _count(lambda r: r.overall_score >= 80),
        },
        "score_distribution": {
            "excellent": _count(lambda r: r.overall_score >= 90),
            "good": _count(lambda r: 70 <= r.overall_score < 90),
            "average": _count(lambda r: 50 <= r.overall_score < 70),
            "poor": _count(lambda r: r.overall_score < 50),
        },
        "outcome_tracking": {
            "total_with_outcomes": len(outcomes),
            "investments_made": _count(lambda r: r.actual_outcome == "investment-made"),
            "connections_established": _count(lambda r: r.actual_outcome == "connection-established"),
            "no_response": _count(lambda r: r.actual_outcome == "no-response"),
            "declined": _count(lambda r: r.actual_outcome == "declined"),
        },
        "accuracy": {
            "predicted_high_actual_high": _count(
                lambda r: r.overall_score >= 80 and r.actual_outcome in _POSITIVE_OUTCOMES),
            "predicted_high_actual_low": _count(
                lambda r: r.overall_score >= 80 and r.actual_outcome in _NEGATIVE_OUTCOMES),
            "predicted_low_actual_high": _count(
                lambda r: r.overall_score < 50 and r.actual_outcome in _POSITIVE_OUTCOMES),
            "predicted_low_actual_low": _count(
                lambda r: r.overall_score < 50 and r.actual_outcome in _NEGATIVE_OUTCOMES),
        },
    }
