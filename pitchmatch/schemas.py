"""Pydantic request/response schemas for the PitchMatch API."""
from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from pitchmatch.models import MATCH_TYPES, VALID_STATUSES

FeedbackSide = Literal["startup", "investor", "admin"]
FeedbackRating = Literal["excellent", "good", "average", "poor", "no-feedback"]
ActualOutcome = Literal[
    "investment-made", "connection-established", "meeting-scheduled",
    "interest-expressed", "no-response", "declined", "pending",
]


class _MatchIdentity(BaseModel):
    startup_id: str = Field(min_length=1)
    investor_id: str = Field(min_length=1)
    match_type: str = "investment"

    @field_validator("match_type")
    @classmethod
    def _known_match_type(cls, v: str) -> str:
        if v not in MATCH_TYPES:
            raise ValueError(f"match_type must be one of {sorted(MATCH_TYPES)}")
        return v


class MatchRequest(_MatchIdentity):
    force_recalculate: bool = False


class MatchRecordOut(BaseModel):
    id: int
    startup_id: str
    investor_id: str
    match_type: str
    overall_score: int
    confidence: float
    score_breakdown: dict[str, int | None]
    success_probability: float
    historical_adjustment: float | None = None
    similar_matches: list[dict[str, Any]] = []
    expected_outcome: str
    recommended_action: str
    status: str
    reasoning: list[str] = []
    features: list[str] = []
    model_version: str
    algorithm_type: str
    startup_feedback: str | None = None
    investor_feedback: str | None = None
    feedback_notes: str | None = None
    actual_outcome: str | None = None
    feedback_at: str | None = None
    created_at: str | None = None
    last_updated: str | None = None
    expires_at: str | None = None


class MatchResponse(BaseModel):
    match: MatchRecordOut
    from_cache: bool


class LookupResponse(BaseModel):
    match: MatchRecordOut | None = None


class FeedbackUpdate(BaseModel):
    side: FeedbackSide
    feedback: FeedbackRating | None = None
    notes: str | None = None
    actual_outcome: ActualOutcome | None = None


class StatusUpdate(BaseModel):
    status: str

    @field_validator("status")
    @classmethod
    def _known_status(cls, v: str) -> str:
        if v not in VALID_STATUSES:
            raise ValueError(f"status must be one of {sorted(VALID_STATUSES)}")
        return v


class ExpireResult(BaseModel):
    expired: int


class ImportResult(BaseModel):
    startups: int
    investors: int
    skipped: int
    total_startups: int
    total_investors: int


class StatsOut(BaseModel):
    overview: dict[str, Any]
    score_distribution: dict[str, int]
    outcome_tracking: dict[str, int]
    accuracy: dict[str, int]
