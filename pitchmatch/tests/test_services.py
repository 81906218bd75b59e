"""Tests for the match record store: caching, recompute, feedback, lifecycle, stats."""
from __future__ import annotations

from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine, false, select
from sqlalchemy.orm import Session, sessionmaker

from pitchmatch import services
from pitchmatch.errors import IncompleteRecord, InvalidTransition, NotFound, RecordNotFound
from pitchmatch.models import Base, MatchRecord

NOW = datetime(2025, 3, 1, 12, 0, 0)

STARTUP = {"id": "s1", "stage": "seed", "industry": "fintech", "fundingAsk": 500000}
INVESTOR = {
    "id": "i1", "acceptedStages": ["seed", "series-a"], "preferredIndustries": ["fintech"],
    "minInvestmentAmount": 250000, "maxInvestmentAmount": 1000000,
    "valueAdd": ["mentorship", "network-access"],
}

# ---------------------------------------------------------------------------
# Fixtures: in-memory SQLite database
# ---------------------------------------------------------------------------


@pytest.fixture()
def engine():
    eng = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False})
    Base.metadata.create_all(eng)
    return eng


@pytest.fixture()
def session(engine):
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    sess = SessionLocal()
    try:
        yield sess
    finally:
        sess.close()


@pytest.fixture()
def seeded(session: Session) -> Session:
    services.upsert_document(session, "startup", STARTUP)
    services.upsert_document(session, "investor", INVESTOR)
    session.commit()
    return session


def _records(session: Session) -> list[MatchRecord]:
    return session.execute(select(MatchRecord).order_by(MatchRecord.id)).scalars().all()


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


class TestDocuments:
    def test_roundtrip(self, seeded):
        assert services.get_document(seeded, "startup", "s1")["stage"] == "seed"

    def test_replace(self, seeded):
        services.upsert_document(seeded, "startup", {**STARTUP, "stage": "series-a"})
        seeded.commit()
        assert services.get_document(seeded, "startup", "s1")["stage"] == "series-a"

    def test_missing_id(self, session):
        with pytest.raises(ValueError):
            services.upsert_document(session, "investor", {"acceptedStages": ["seed"]})

    def test_not_found(self, session):
        with pytest.raises(NotFound):
            services.get_document(session, "startup", "nope")


# ---------------------------------------------------------------------------
# get_or_compute
# ---------------------------------------------------------------------------


class TestGetOrCompute:
    def test_computes_and_persists(self, seeded):
        outcome = services.get_or_compute(seeded, "s1", "i1", now=NOW)
        rec = outcome.record
        assert not outcome.from_cache
        assert rec.status == "active"
        assert rec.overall_score == 100
        assert rec.confidence == 0.55
        assert rec.expected_outcome == "medium-probability-investment"
        assert rec.recommended_action == "warm-introduction"
        assert rec.expires_at == NOW + timedelta(days=30)
        assert rec.live_key == "s1:i1:investment"
        assert services.match_record_dict(rec)["score_breakdown"]["geography"] is None

    def test_reuses_fresh_record(self, seeded):
        first = services.get_or_compute(seeded, "s1", "i1", now=NOW)
        second = services.get_or_compute(seeded, "s1", "i1", now=NOW + timedelta(days=6))
        assert second.from_cache
        assert second.record.id == first.record.id
        assert len(_records(seeded)) == 1

    def test_stale_record_recomputed_and_archived(self, seeded):
        first = services.get_or_compute(seeded, "s1", "i1", now=NOW)
        second = services.get_or_compute(seeded, "s1", "i1", now=NOW + timedelta(days=8))
        assert not second.from_cache
        assert second.record.id != first.record.id
        old, new = _records(seeded)
        assert old.status == "archived"
        assert old.live_key is None
        assert new.status == "active"

    def test_force_recalculate(self, seeded):
        first = services.get_or_compute(seeded, "s1", "i1", now=NOW)
        second = services.get_or_compute(seeded, "s1", "i1", force_recalculate=True, now=NOW)
        assert second.record.id != first.record.id
        live = [r for r in _records(seeded) if r.status == "active"]
        assert [r.id for r in live] == [second.record.id]

    def test_match_types_are_separate(self, seeded):
        a = services.get_or_compute(seeded, "s1", "i1", "investment", now=NOW)
        b = services.get_or_compute(seeded, "s1", "i1", "advisory", now=NOW)
        assert a.record.id != b.record.id
        assert {r.status for r in _records(seeded)} == {"active"}

    def test_unknown_match_type(self, seeded):
        with pytest.raises(ValueError):
            services.get_or_compute(seeded, "s1", "i1", "friendship", now=NOW)

    def test_read_only_never_computes(self, seeded):
        with pytest.raises(RecordNotFound):
            services.get_or_compute(seeded, "s1", "i1", read_only=True, now=NOW)
        assert _records(seeded) == []

    def test_read_only_returns_fresh(self, seeded):
        first = services.get_or_compute(seeded, "s1", "i1", now=NOW)
        found = services.get_or_compute(seeded, "s1", "i1", read_only=True, now=NOW + timedelta(days=1))
        assert found.from_cache
        assert found.record.id == first.record.id

    def test_read_only_ignores_stale(self, seeded):
        services.get_or_compute(seeded, "s1", "i1", now=NOW)
        with pytest.raises(RecordNotFound):
            services.get_or_compute(seeded, "s1", "i1", read_only=True, now=NOW + timedelta(days=10))

    def test_unknown_investor(self, seeded):
        with pytest.raises(NotFound):
            services.get_or_compute(seeded, "s1", "missing", now=NOW)

    def test_incomplete_record_persists_nothing(self, seeded):
        services.upsert_document(seeded, "startup", {"id": "s2", "stage": "seed"})
        seeded.commit()
        with pytest.raises(IncompleteRecord):
            services.get_or_compute(seeded, "s2", "i1", now=NOW)
        assert _records(seeded) == []

    def test_history_blends_probability(self, seeded):
        for k in range(5):
            seeded.add(MatchRecord(
                startup_id=f"old{k}", investor_id="i1", match_type="investment",
                overall_score=100, confidence=1.0, status="completed", actual_outcome="investment-made",
                startup_stage="seed", startup_industry="fintech", expires_at=NOW,
            ))
        seeded.commit()
        rec = services.get_or_compute(seeded, "s1", "i1", now=NOW).record
        assert rec.historical_adjustment == 1.0
        # base 0.55, weight 0.3 * 5/10 = 0.15 toward 1.0
        assert rec.success_probability == pytest.approx(0.6175)
        assert len(services.match_record_dict(rec)["similar_matches"]) == 5


# ---------------------------------------------------------------------------
# Feedback
# ---------------------------------------------------------------------------


class TestFeedback:
    def test_records_both_sides(self, seeded):
        rec = services.get_or_compute(seeded, "s1", "i1", now=NOW).record
        services.submit_feedback(seeded, rec.id, "startup", feedback="good")
        services.submit_feedback(seeded, rec.id, "investor", feedback="poor", notes="too early")
        rec = services.get_match(seeded, rec.id)
        assert rec.startup_feedback == "good"
        assert rec.investor_feedback == "poor"
        assert rec.feedback_notes == "too early"
        assert rec.overall_score == 100

    def test_idempotent(self, seeded):
        rec = services.get_or_compute(seeded, "s1", "i1", now=NOW).record
        for _ in range(2):
            services.submit_feedback(seeded, rec.id, "admin", actual_outcome="meeting-scheduled", now=NOW)
        d = services.match_record_dict(services.get_match(seeded, rec.id))
        assert d["actual_outcome"] == "meeting-scheduled"
        assert d["feedback_at"] == NOW.isoformat()

    def test_allowed_on_completed(self, seeded):
        rec = services.get_or_compute(seeded, "s1", "i1", now=NOW).record
        services.update_status(seeded, rec.id, "completed")
        services.submit_feedback(seeded, rec.id, "admin", actual_outcome="investment-made")
        assert services.get_match(seeded, rec.id).actual_outcome == "investment-made"

    def test_admin_cannot_rate(self, seeded):
        rec = services.get_or_compute(seeded, "s1", "i1", now=NOW).record
        with pytest.raises(ValueError):
            services.submit_feedback(seeded, rec.id, "admin", feedback="good")

    def test_invalid_values(self, seeded):
        rec = services.get_or_compute(seeded, "s1", "i1", now=NOW).record
        with pytest.raises(ValueError):
            services.submit_feedback(seeded, rec.id, "founder", feedback="good")
        with pytest.raises(ValueError):
            services.submit_feedback(seeded, rec.id, "startup", feedback="amazing")
        with pytest.raises(ValueError):
            services.submit_feedback(seeded, rec.id, "startup", actual_outcome="married")

    def test_unknown_record(self, seeded):
        with pytest.raises(NotFound):
            services.submit_feedback(seeded, 999, "startup", feedback="good")


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:
    def test_forward_transitions(self, seeded):
        rec = services.get_or_compute(seeded, "s1", "i1", now=NOW).record
        for status in ("presented", "acted-upon", "completed"):
            rec = services.update_status(seeded, rec.id, status)
        assert rec.status == "completed"
        assert rec.live_key is None

    def test_completed_is_frozen(self, seeded):
        rec = services.get_or_compute(seeded, "s1", "i1", now=NOW).record
        services.update_status(seeded, rec.id, "completed")
        with pytest.raises(InvalidTransition):
            services.update_status(seeded, rec.id, "active")

    def test_no_backward_transition(self, seeded):
        rec = services.get_or_compute(seeded, "s1", "i1", now=NOW).record
        services.update_status(seeded, rec.id, "acted-upon")
        with pytest.raises(InvalidTransition):
            services.update_status(seeded, rec.id, "presented")

    def test_same_status_is_noop(self, seeded):
        rec = services.get_or_compute(seeded, "s1", "i1", now=NOW).record
        assert services.update_status(seeded, rec.id, "active").status == "active"

    def test_presented_record_is_still_reused(self, seeded):
        rec = services.get_or_compute(seeded, "s1", "i1", now=NOW).record
        services.update_status(seeded, rec.id, "presented")
        again = services.get_or_compute(seeded, "s1", "i1", now=NOW + timedelta(days=1))
        assert again.from_cache and again.record.id == rec.id

    def test_completed_record_is_kept_on_recompute(self, seeded):
        rec = services.get_or_compute(seeded, "s1", "i1", now=NOW).record
        services.update_status(seeded, rec.id, "completed")
        fresh = services.get_or_compute(seeded, "s1", "i1", now=NOW)
        assert fresh.record.id != rec.id
        assert services.get_match(seeded, rec.id).status == "completed"

    def test_expire_stale_is_idempotent(self, seeded):
        rec = services.get_or_compute(seeded, "s1", "i1", now=NOW).record
        later = NOW + timedelta(days=31)
        assert services.expire_stale(seeded, now=NOW + timedelta(days=29)) == 0
        assert services.expire_stale(seeded, now=later) == 1
        assert services.expire_stale(seeded, now=later) == 0
        assert services.get_match(seeded, rec.id).status == "expired"

    def test_expired_record_not_reused(self, seeded):
        rec = services.get_or_compute(seeded, "s1", "i1", now=NOW).record
        services.expire_stale(seeded, now=NOW + timedelta(days=31))
        fresh = services.get_or_compute(seeded, "s1", "i1", now=NOW + timedelta(days=31))
        assert fresh.record.id != rec.id
        assert services.get_match(seeded, rec.id).status == "expired"

    def test_delete(self, seeded):
        rec = services.get_or_compute(seeded, "s1", "i1", now=NOW).record
        services.delete_match(seeded, rec.id)
        with pytest.raises(NotFound):
            services.get_match(seeded, rec.id)
        with pytest.raises(NotFound):
            services.delete_match(seeded, rec.id)


# ---------------------------------------------------------------------------
# Listing & stats
# ---------------------------------------------------------------------------


class TestListAndStats:
    def test_list_best_first(self, seeded):
        services.upsert_document(seeded, "investor", {**INVESTOR, "id": "i2", "preferredIndustries": ["health"]})
        seeded.commit()
        services.get_or_compute(seeded, "s1", "i2", now=NOW)
        services.get_or_compute(seeded, "s1", "i1", now=NOW)
        rows = services.list_matches(seeded, startup_id="s1", now=NOW)
        assert [r["investor_id"] for r in rows] == ["i1", "i2"]
        assert rows[0]["overall_score"] >= rows[1]["overall_score"]

    def test_list_excludes_non_live(self, seeded):
        rec = services.get_or_compute(seeded, "s1", "i1", now=NOW).record
        services.update_status(seeded, rec.id, "archived")
        assert services.list_matches(seeded, investor_id="i1") == []

    def test_list_requires_filter(self, seeded):
        with pytest.raises(ValueError):
            services.list_matches(seeded)

    def test_list_skips_expired_without_sweep(self, seeded):
        services.get_or_compute(seeded, "s1", "i1", now=NOW)
        later = NOW + timedelta(days=30)
        assert services.list_matches(seeded, startup_id="s1", now=later) == []
        assert services.compute_stats(seeded, now=later)["overview"]["active_matches"] == 0
        assert _records(seeded)[0].status == "active"

    def test_list_keeps_records_past_reuse_window(self, seeded):
        rec = services.get_or_compute(seeded, "s1", "i1", now=NOW).record
        later = NOW + timedelta(days=10)
        with pytest.raises(RecordNotFound):
            services.get_or_compute(seeded, "s1", "i1", read_only=True, now=later)
        rows = services.list_matches(seeded, startup_id="s1", now=later)
        assert [r["id"] for r in rows] == [rec.id]

    def test_stats(self, seeded):
        rec = services.get_or_compute(seeded, "s1", "i1", now=NOW).record
        services.submit_feedback(seeded, rec.id, "admin", actual_outcome="investment-made")
        stats = services.compute_stats(seeded, now=NOW)
        assert stats["overview"]["total_matches"] == 1
        assert stats["overview"]["active_matches"] == 1
        assert stats["overview"]["high_quality_matches"] == 1
        assert stats["score_distribution"]["excellent"] == 1
        assert stats["outcome_tracking"]["investments_made"] == 1
        assert stats["accuracy"]["predicted_high_actual_high"] == 1

    def test_stats_empty(self, session):
        stats = services.compute_stats(session)
        assert stats["overview"]["total_matches"] == 0
        assert stats["overview"]["average_score"] is None


# ---------------------------------------------------------------------------
# Atomic replacement & concurrent writers
# ---------------------------------------------------------------------------


class TestReplacement:
    def test_failed_insert_keeps_prior_record_live(self, seeded, monkeypatch):
        first = services.get_or_compute(seeded, "s1", "i1", now=NOW).record

        def failing_insert(model):
            raise RuntimeError("insert failed")

        monkeypatch.setattr(services, "_upsert_insert", lambda session: failing_insert)
        with pytest.raises(RuntimeError):
            services.get_or_compute(seeded, "s1", "i1", force_recalculate=True, now=NOW)
        seeded.expire_all()
        assert [(r.id, r.status, r.live_key) for r in _records(seeded)] == [
            (first.id, "active", "s1:i1:investment"),
        ]

    def test_two_sessions_missing_cache_leave_one_live(self, tmp_path, monkeypatch):
        eng = create_engine(f"sqlite:///{tmp_path / 'shared.db'}")
        Base.metadata.create_all(eng)
        SessionLocal = sessionmaker(bind=eng, autoflush=False, expire_on_commit=False)
        with SessionLocal() as setup:
            services.upsert_document(setup, "startup", STARTUP)
            services.upsert_document(setup, "investor", INVESTOR)
            setup.commit()

        monkeypatch.setattr(services, "find_live", lambda *args: None)
        with SessionLocal() as a, SessionLocal() as b:
            services.get_or_compute(a, "s1", "i1", now=NOW)
            services.get_or_compute(b, "s1", "i1", now=NOW)

        with SessionLocal() as check:
            rows = [(r.id, r.status) for r in _records(check)]
        assert rows == [(1, "archived"), (2, "active")]
        eng.dispose()

    def test_conflicting_insert_overwrites_live_row(self, seeded, monkeypatch):
        first = services.get_or_compute(seeded, "s1", "i1", now=NOW).record
        real_update = services.update
        # The other writer's archive step ran before this record was committed
        monkeypatch.setattr(services, "update", lambda model: real_update(model).where(false()))
        later = NOW + timedelta(days=1)
        second = services.get_or_compute(seeded, "s1", "i1", force_recalculate=True, now=later)
        assert second.record.id == first.id
        assert second.record.created_at == later
        assert [(r.id, r.status) for r in _records(seeded)] == [(first.id, "active")]
