from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Float, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from pitchmatch.utils import utc_now


class Base(DeclarativeBase):
    pass


# ---------------------------------------------------------------------------
# Match record vocabulary
# ---------------------------------------------------------------------------

MATCH_TYPES = {"investment", "mentorship", "advisory", "partnership", "customer"}

STATUS_ACTIVE = "active"
STATUS_PRESENTED = "presented"
STATUS_ACTED_UPON = "acted-upon"
STATUS_COMPLETED = "completed"
STATUS_EXPIRED = "expired"
STATUS_ARCHIVED = "archived"

VALID_STATUSES = {
    STATUS_ACTIVE, STATUS_PRESENTED, STATUS_ACTED_UPON,
    STATUS_COMPLETED, STATUS_EXPIRED, STATUS_ARCHIVED,
}
# Statuses that occupy the identity's single live slot
LIVE_STATUSES = {STATUS_ACTIVE, STATUS_PRESENTED, STATUS_ACTED_UPON}
# Only feedback may change once a record reaches one of these
FROZEN_STATUSES = {STATUS_COMPLETED, STATUS_ARCHIVED}

VALID_FEEDBACK = {"excellent", "good", "average", "poor", "no-feedback"}
VALID_ACTUAL_OUTCOMES = {
    "investment-made", "connection-established", "meeting-scheduled",
    "interest-expressed", "no-response", "declined", "pending",
}
FEEDBACK_SIDES = {"startup", "investor", "admin"}


def live_key(startup_id: str, investor_id: str, match_type: str) -> str:
    return f"{startup_id}:{investor_id}:{match_type}"


# ---------------------------------------------------------------------------
# Raw documents consumed by the engine
# ---------------------------------------------------------------------------


class StartupRecord(Base):
    __tablename__ = "startup_records"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    data_json: Mapped[str] = mapped_column(Text, default="{}")
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, onupdate=utc_now)


class InvestorRecord(Base):
    __tablename__ = "investor_records"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    data_json: Mapped[str] = mapped_column(Text, default="{}")
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, onupdate=utc_now)


# ---------------------------------------------------------------------------
# Persisted compatibility results
# ---------------------------------------------------------------------------


class MatchRecord(Base):
    __tablename__ = "match_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    startup_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    investor_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    match_type: Mapped[str] = mapped_column(String(30), default="investment")
    # "<startup>:<investor>:<match_type>" while live, NULL otherwise
    live_key: Mapped[str | None] = mapped_column(String(250), unique=True, nullable=True)

    overall_score: Mapped[int] = mapped_column(Integer, default=0)
    confidence: Mapped[float] = mapped_column(Float, default=0.0)
    score_breakdown_json: Mapped[str] = mapped_column(Text, default="{}")
    success_probability: Mapped[float] = mapped_column(Float, default=0.0)
    historical_adjustment: Mapped[float | None] = mapped_column(Float, nullable=True)
    similar_matches_json: Mapped[str] = mapped_column(Text, default="[]")
    expected_outcome: Mapped[str] = mapped_column(String(50), default="no-match")
    recommended_action: Mapped[str] = mapped_column(String(50), default="no-action")
    status: Mapped[str] = mapped_column(String(20), default=STATUS_ACTIVE, index=True)
    reasoning_json: Mapped[str] = mapped_column(Text, default="[]")
    model_version: Mapped[str] = mapped_column(String(20), default="1.0.0")
    algorithm_type: Mapped[str] = mapped_column(String(30), default="rule-based")
    features_json: Mapped[str] = mapped_column(Text, default="[]")

    # Denormalized for the historical similarity query
    startup_stage: Mapped[str] = mapped_column(String(30), default="", index=True)
    startup_industry: Mapped[str] = mapped_column(String(100), default="", index=True)

    startup_feedback: Mapped[str | None] = mapped_column(String(20), nullable=True)
    investor_feedback: Mapped[str | None] = mapped_column(String(20), nullable=True)
    feedback_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    actual_outcome: Mapped[str | None] = mapped_column(String(40), nullable=True)
    feedback_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    last_updated: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
