"""Outcome prediction from an aggregate score.

Rules are evaluated top-down and the first match wins. The success
probability is ``overall/100 * confidence``, optionally nudged toward the
empirical success rate of similar resolved matches; the nudge never carries
more than ``history_blend_cap`` of the final value.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable

from pitchmatch.config import get_settings
from pitchmatch.scorer import Aggregate
from pitchmatch.utils import clamp

log = logging.getLogger(__name__)

VALID_EXPECTED_OUTCOMES = {
    "high-probability-investment", "medium-probability-investment", "low-probability-investment",
    "advisory", "network-introduction", "future-opportunity", "no-match",
}
VALID_ACTIONS = {
    "immediate-introduction", "warm-introduction", "cold-outreach",
    "wait-for-timing", "build-relationship-first", "no-action",
}

# How much each actual outcome counts as "success" for calibration
OUTCOME_VALUES: dict[str, float] = {
    "investment-made": 1.0,
    "connection-established": 0.6,
    "meeting-scheduled": 0.5,
    "interest-expressed": 0.4,
    "no-response": 0.1,
    "declined": 0.0,
}


@dataclass(frozen=True)
class HistoricalMatch:
    """A resolved match used for calibration."""
    match_id: int
    overall_score: int
    actual_outcome: str


@dataclass
class Prediction:
    success_probability: float
    expected_outcome: str
    recommended_action: str
    historical_adjustment: float | None = None
    similar_matches: list[dict] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Threshold rules
# ---------------------------------------------------------------------------


def _value_add_outcome(agg: Aggregate) -> str:
    va = agg.dimensions.get("value_add")
    if va is not None and va.data_present and va.score >= 60:
        return "advisory"
    return "network-introduction"


Rule = tuple[Callable[[Aggregate], bool], Callable[[Aggregate], str], str]

OUTCOME_RULES: list[Rule] = [
    (lambda a: a.overall_score >= 80 and a.confidence >= 0.7,
     lambda a: "high-probability-investment", "immediate-introduction"),
    (lambda a: a.overall_score >= 60,
     lambda a: "medium-probability-investment", "warm-introduction"),
    (lambda a: a.overall_score >= 40, _value_add_outcome, "cold-outreach"),
    (lambda a: a.overall_score >= 20,
     lambda a: "future-opportunity", "build-relationship-first"),
]


def classify(agg: Aggregate) -> tuple[str, str]:
    """Return ``(expected_outcome, recommended_action)`` for an aggregate."""
    for matches, outcome, action in OUTCOME_RULES:
        if matches(agg):
            return outcome(agg), action
    return "no-match", "no-action"


# ---------------------------------------------------------------------------
# Historical calibration
# ---------------------------------------------------------------------------


def similarity(overall_score: int, other_score: int) -> float:
    return 1.0 - abs(overall_score - other_score) / 100.0


def select_similar(
    overall_score: int, history: list[HistoricalMatch], top_k: int,
) -> list[tuple[HistoricalMatch, float]]:
    """Top-K resolved matches by score similarity (ties broken by id, newest first)."""
    scored = [
        (h, similarity(overall_score, h.overall_score))
        for h in history if h.actual_outcome in OUTCOME_VALUES
    ]
    scored.sort(key=lambda pair: (-pair[1], -pair[0].match_id))
    return scored[:top_k]


def empirical_rate(selected: list[tuple[HistoricalMatch, float]]) -> float | None:
    """Similarity-weighted mean outcome value."""
    total = sum(sim for _, sim in selected)
    if total <= 0:
        return None
    return sum(OUTCOME_VALUES[h.actual_outcome] * sim for h, sim in selected) / total


def predict(agg: Aggregate, history: list[HistoricalMatch] | None = None) -> Prediction:
    settings = get_settings()
    expected, action = classify(agg)
    base = (agg.overall_score / 100.0) * agg.confidence
    probability = base
    adjustment: float | None = None
    similar: list[dict] = []

    if history:
        selected = select_similar(agg.overall_score, history, settings.history_top_k)
        if len(selected) >= settings.history_min_matches:
            rate = empirical_rate(selected)
            if rate is not None:
                weight = min(
                    settings.history_blend_cap,
                    settings.history_blend_cap * len(selected) / settings.history_top_k,
                )
                probability = (1 - weight) * base + weight * rate
                adjustment = round(rate, 4)
                similar = [
                    {"match_id": h.match_id, "outcome": h.actual_outcome, "similarity": round(sim, 4)}
                    for h, sim in selected
                ]
                log.debug("Blended %d historical matches (rate=%.3f, weight=%.2f)", len(selected), rate, weight)
        else:
            log.debug("Only %d similar resolved matches, skipping calibration", len(selected))

    return Prediction(
        success_probability=round(clamp(probability, 0.0, 1.0), 4),
        expected_outcome=expected,
        recommended_action=action,
        historical_adjustment=adjustment,
        similar_matches=similar,
    )
