"""Scoring engine: ten independent dimension scores with deterministic aggregation.

Architecture
------------
Each startup/investor pair is scored on ten dimensions. Every dimension
function takes ``(StartupFeatures, InvestorFeatures)`` and returns a
:class:`DimensionScore` holding an integer 0-100 and a ``data_present`` flag.

- **stage / industry**: binary membership checks (always have data).
- **geography / check_size**: membership and range checks with falloff.
- **team / traction**: additive heuristics over founder and traction signals.
- **value_add / network / timing / risk**: overlap and fit heuristics.

Aggregation is a weighted mean over the dimensions that had data:

- ``overall_score``: ``Σ(w·s) / Σ(w present)``, rounded half-up, clamped 0-100
- ``confidence``: ``Σ(w present) / Σ(w)``, i.e. weight coverage
- ``reasoning``: strongest and weakest dimensions in plain words
"""
from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from typing import Callable

from pitchmatch.config import get_settings
from pitchmatch.errors import InsufficientData
from pitchmatch.features import TECH_INDUSTRIES, InvestorFeatures, StartupFeatures
from pitchmatch.utils import clamp

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Weight table
# ---------------------------------------------------------------------------

DIMENSION_WEIGHTS: dict[str, int] = {
    "stage": 15,
    "industry": 15,
    "geography": 10,
    "check_size": 15,
    "team": 10,
    "traction": 10,
    "value_add": 10,
    "network": 5,
    "timing": 5,
    "risk": 5,
}
DIMENSION_NAMES = tuple(DIMENSION_WEIGHTS)


def validate_weights(weights: dict[str, int]) -> dict[str, int]:
    """Raise ValueError unless *weights* covers every dimension, all positive, summing to 100."""
    if set(weights) != set(DIMENSION_NAMES):
        raise ValueError(f"Weights must cover exactly: {', '.join(DIMENSION_NAMES)}")
    if any(w <= 0 for w in weights.values()):
        raise ValueError("Dimension weights must be positive")
    if sum(weights.values()) != 100:
        raise ValueError(f"Dimension weights must sum to 100, got {sum(weights.values())}")
    return {name: weights[name] for name in DIMENSION_NAMES}


def load_weights() -> dict[str, int]:
    """Weight table from the configured YAML override, or the built-in table."""
    overrides = get_settings().load_weight_overrides()
    if not overrides:
        return dict(DIMENSION_WEIGHTS)
    return validate_weights(overrides)


# ---------------------------------------------------------------------------
# Dimension results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DimensionScore:
    name: str
    score: int
    data_present: bool
    reason: str = ""


def _result(name: str, score: float, reason: str = "") -> DimensionScore:
    return DimensionScore(name, int(round(clamp(score))), True, reason)


def _no_data(name: str, reason: str) -> DimensionScore:
    return DimensionScore(name, 0, False, reason)


# ---------------------------------------------------------------------------
# Lookup tables
# ---------------------------------------------------------------------------

REGION_MEMBERS: dict[str, set[str]] = {
    "north-america": {"us", "usa", "united-states", "canada", "mexico"},
    "europe": {
        "uk", "united-kingdom", "germany", "france", "netherlands", "spain", "italy",
        "sweden", "denmark", "finland", "norway", "ireland", "switzerland", "austria",
        "poland", "portugal", "belgium", "estonia",
    },
    "dach": {"germany", "austria", "switzerland"},
    "nordics": {"sweden", "denmark", "finland", "norway", "iceland"},
    "latam": {"brazil", "mexico", "argentina", "chile", "colombia", "peru"},
    "asia": {"india", "china", "japan", "singapore", "south-korea", "indonesia", "vietnam"},
    "mena": {"uae", "saudi-arabia", "egypt", "israel", "morocco", "qatar"},
    "africa": {"nigeria", "kenya", "south-africa", "egypt", "ghana", "morocco"},
}
_COUNTRY_ALIASES = {"usa": "us", "united-states": "us", "united-kingdom": "uk", "great-britain": "uk"}

# Traction points a stage is expected to show for a full score
STAGE_TRACTION_EXPECTATION = {
    "pre-seed": 20, "seed": 40, "series-a": 60, "series-b": 75,
    "series-c-plus": 85, "growth": 95, "late-stage": 100,
}
_TRACTION_KEYWORDS = re.compile(
    r"\b(revenue|customers?|paying|users|partnerships?|pilots?|loi|mrr|arr|contracts?|growth)\b",
    re.IGNORECASE,
)

# Baseline risk by stage before risk factors and strengths
STAGE_RISK = {
    "pre-seed": 60, "seed": 50, "series-a": 40, "series-b": 30,
    "series-c-plus": 20, "growth": 15, "late-stage": 10,
}
RISK_CAPACITY = {"low": 30, "medium": 55, "high": 80}
_HIGH_RISK_PHILOSOPHY = re.compile(
    r"\b(moonshots?|high[- ]risk|contrarian|deep[- ]tech|bold|frontier|pre-seed|earliest|outliers?)\b",
    re.IGNORECASE,
)
_LOW_RISK_PHILOSOPHY = re.compile(
    r"\b(conservative|capital preservation|proven|profitab\w*|low[- ]risk|downside protection|"
    r"cash[- ]flow positive|de-risked)\b",
    re.IGNORECASE,
)
_TYPE_TOLERANCE = {
    "angel": "high", "accelerator": "high", "micro-vc": "high",
    "vc": "medium", "venture-capital": "medium", "syndicate": "medium",
    "corporate": "low", "corporate-vc": "low", "family-office": "low",
    "private-equity": "low", "pe": "low",
}
_SUCCESS_OUTCOMES = {"ipo", "acquired", "exit", "successful-exit", "unicorn", "successful-investment"}


# ---------------------------------------------------------------------------
# Dimension scoring
# ---------------------------------------------------------------------------


def score_stage(s: StartupFeatures, i: InvestorFeatures) -> DimensionScore:
    if s.stage in i.accepted_stages:
        return _result("stage", 100, f"Investor backs {s.stage} companies")
    return _result("stage", 0, f"Investor does not back {s.stage} companies")


def score_industry(s: StartupFeatures, i: InvestorFeatures) -> DimensionScore:
    if s.industry in i.preferred_industries:
        return _result("industry", 100, f"Investor specializes in {s.industry}")
    return _result("industry", 0, f"{s.industry} is outside the investor's focus")


def _expand_region(tokens: set[str]) -> set[str]:
    expanded = {_COUNTRY_ALIASES.get(t, t) for t in tokens}
    for token in list(expanded):
        expanded |= {_COUNTRY_ALIASES.get(m, m) for m in REGION_MEMBERS.get(token, set())}
    return expanded


def score_geography(s: StartupFeatures, i: InvestorFeatures) -> DimensionScore:
    if not i.geographic_focus:
        return _no_data("geography", "Investor geographic focus unknown")
    if "global" in i.geographic_focus:
        return _result("geography", 100, "Investor invests globally")
    if not s.geography:
        return _no_data("geography", "Startup location unknown")
    location = {_COUNTRY_ALIASES.get(t, t) for t in s.geography}
    if location & _expand_region(set(i.geographic_focus)):
        return _result("geography", 100, "Startup is inside the investor's geographic focus")
    return _result("geography", 0, "Startup is outside the investor's geographic focus")


def _check_bounds(i: InvestorFeatures) -> tuple[float, float] | None:
    if i.min_investment is None and i.max_investment is None:
        if i.typical_check_size:
            return i.typical_check_size / 2, i.typical_check_size * 2
        return None
    low = i.min_investment or 0.0
    high = i.max_investment if i.max_investment is not None else math.inf
    return low, high


def score_check_size(s: StartupFeatures, i: InvestorFeatures) -> DimensionScore:
    if s.funding_ask is None:
        return _no_data("check_size", "Funding ask unknown")
    bounds = _check_bounds(i)
    if bounds is None:
        return _no_data("check_size", "Investor check size unknown")
    low, high = bounds
    ask = s.funding_ask
    if low <= ask <= high:
        return _result("check_size", 100, "Funding ask is within the investor's check range")
    if ask > high:
        # 100 at the max, 0 at twice the max
        score = 100 * (1 - (ask - high) / high) if high > 0 else 0
        return _result("check_size", score, "Funding ask is above the investor's maximum")
    # 100 at the min, 0 at half the min
    score = 100 * (2 * ask / low - 1)
    return _result("check_size", score, "Funding ask is below the investor's minimum")


def score_team(s: StartupFeatures, i: InvestorFeatures) -> DimensionScore:
    team = s.team
    if team is None:
        return _no_data("team", "No team information")
    points = 0
    if team.avg_experience is not None:
        if team.avg_experience >= 10:
            points += 30
        elif team.avg_experience >= 5:
            points += 20
        else:
            points += 10
    if team.founders_with_exits > 0:
        points += 25
    if team.strong_education:
        points += 15
    if s.industry in TECH_INDUSTRIES and team.technical_expertise:
        points += 20
    size = team.size or team.founder_count
    if 2 <= size <= 5:
        points += 10
    return _result("team", points, "Founder experience, exits and education")


def _traction_points(s: StartupFeatures) -> int:
    t = s.traction
    points = 0
    growth = s.growth_rate
    if t is not None:
        if t.users is not None:
            if t.users >= 100_000:
                points += 30
            elif t.users >= 10_000:
                points += 20
            elif t.users >= 1_000:
                points += 10
        if t.revenue is not None:
            if t.revenue >= 1_000_000:
                points += 30
            elif t.revenue >= 100_000:
                points += 20
            elif t.revenue >= 10_000:
                points += 10
        if t.partnerships:
            points += 15
        if t.monthly_growth is not None:
            growth = t.monthly_growth
        hits = {m.lower() for note in t.notes for m in _TRACTION_KEYWORDS.findall(note)}
        points += min(20, 5 * len(hits))
    if growth is not None:
        if growth >= 20:
            points += 25
        elif growth >= 10:
            points += 15
        elif growth >= 5:
            points += 10
    return points


def score_traction(s: StartupFeatures, i: InvestorFeatures) -> DimensionScore:
    if s.traction is None and s.growth_rate is None:
        return _no_data("traction", "No traction signals")
    expected = STAGE_TRACTION_EXPECTATION.get(s.stage, 60)
    points = _traction_points(s)
    return _result("traction", 100 * points / expected, f"Traction relative to {s.stage} expectations")


def investor_capabilities(i: InvestorFeatures) -> frozenset[str]:
    caps = set(i.value_add or ())
    if i.lead_investments:
        caps.add("lead-investor")
    return frozenset(caps)


def score_value_add(s: StartupFeatures, i: InvestorFeatures) -> DimensionScore:
    caps = investor_capabilities(i)
    if not caps:
        return _no_data("value_add", "Investor value-add unknown")
    if not s.needs:
        return _no_data("value_add", "Startup needs unknown")
    matched = caps & s.needs
    return _result(
        "value_add", 100 * len(matched) / len(caps),
        f"{len(matched)} of {len(caps)} investor capabilities address startup needs",
    )


def score_network(s: StartupFeatures, i: InvestorFeatures) -> DimensionScore:
    portfolio = i.notable_investments
    if not portfolio:
        return _no_data("network", "No notable investments on record")
    same_industry = [p for p in portfolio if p.industry and p.industry == s.industry]
    if same_industry:
        score = 40 + 60 * len(same_industry) / len(portfolio)
        if any(p.outcome in _SUCCESS_OUTCOMES for p in same_industry):
            score += 10
    else:
        score = 20
    if i.portfolio_size is not None and i.portfolio_size >= 50:
        score += 10
    competitors = {c.strip().lower() for c in (s.competitors or ()) if c.strip()}
    conflicts = [p for p in portfolio if p.name and p.name.lower() in competitors]
    score -= 30 * len(conflicts)
    reason = f"{len(same_industry)} of {len(portfolio)} notable investments in {s.industry}"
    if conflicts:
        reason += f"; portfolio includes competitor(s): {', '.join(p.name for p in conflicts)}"
    return _result("network", score, reason)


def _recency_component(months: float) -> int:
    if months < 6:
        return 40
    if months < 12:
        return 80
    if months < 24:
        return 100
    return 70


def _cadence_component(per_year: float) -> int:
    if per_year >= 12:
        return 100
    if per_year >= 6:
        return 80
    if per_year >= 2:
        return 60
    if per_year >= 1:
        return 40
    return 10


def score_timing(s: StartupFeatures, i: InvestorFeatures) -> DimensionScore:
    parts: list[int] = []
    if s.months_since_funding is not None:
        parts.append(_recency_component(s.months_since_funding))
    if i.investments_per_year is not None:
        parts.append(_cadence_component(i.investments_per_year))
    if not parts:
        return _no_data("timing", "Funding recency and investor cadence unknown")
    return _result("timing", sum(parts) / len(parts), "Funding recency and investor deal cadence")


def investor_risk_tolerance(i: InvestorFeatures) -> str | None:
    """Explicit tolerance, else philosophy keywords, else investor type."""
    if i.risk_tolerance:
        return i.risk_tolerance
    if i.investment_philosophy:
        high = len(_HIGH_RISK_PHILOSOPHY.findall(i.investment_philosophy))
        low = len(_LOW_RISK_PHILOSOPHY.findall(i.investment_philosophy))
        if high > low:
            return "high"
        if low > high:
            return "low"
        if high:
            return "medium"
    if i.investor_type:
        return _TYPE_TOLERANCE.get(i.investor_type)
    return None


def score_risk(s: StartupFeatures, i: InvestorFeatures) -> DimensionScore:
    if s.risk_factors is None:
        return _no_data("risk", "Startup risk factors unknown")
    tolerance = investor_risk_tolerance(i)
    if tolerance is None:
        return _no_data("risk", "Investor risk tolerance unknown")
    risk = clamp(
        STAGE_RISK.get(s.stage, 50) + 12 * len(s.risk_factors) - 8 * len(s.strengths or ())
    )
    capacity = RISK_CAPACITY[tolerance]
    score = 100 if risk <= capacity else 100 - 2 * (risk - capacity)
    return _result("risk", score, f"Startup risk {int(risk)} vs {tolerance} investor tolerance")


DimensionFn = Callable[[StartupFeatures, InvestorFeatures], DimensionScore]

DIMENSION_SCORERS: dict[str, DimensionFn] = {
    "stage": score_stage,
    "industry": score_industry,
    "geography": score_geography,
    "check_size": score_check_size,
    "team": score_team,
    "traction": score_traction,
    "value_add": score_value_add,
    "network": score_network,
    "timing": score_timing,
    "risk": score_risk,
}


def score_dimensions(s: StartupFeatures, i: InvestorFeatures) -> dict[str, DimensionScore]:
    """Run every dimension scorer independently."""
    return {name: fn(s, i) for name, fn in DIMENSION_SCORERS.items()}


# ---------------------------------------------------------------------------
# Deterministic aggregation
# ---------------------------------------------------------------------------


@dataclass
class Aggregate:
    overall_score: int
    confidence: float
    dimensions: dict[str, DimensionScore]
    missing: list[str] = field(default_factory=list)

    @property
    def score_breakdown(self) -> dict[str, int | None]:
        """Dimension -> score, ``None`` for dimensions without data."""
        return {
            name: (d.score if d.data_present else None)
            for name, d in self.dimensions.items()
        }


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def aggregate(
    dimensions: dict[str, DimensionScore],
    weights: dict[str, int] | None = None,
) -> Aggregate:
    """Weighted mean over dimensions with data; confidence is the weight coverage.

    Raises InsufficientData when no dimension had data.
    """
    weights = weights or DIMENSION_WEIGHTS
    total_weight = sum(weights.values())
    present = [d for d in dimensions.values() if d.data_present]
    covered = sum(weights[d.name] for d in present)
    if covered <= 0:
        raise InsufficientData("No compatibility dimension could be scored")

    weighted = sum(weights[d.name] * clamp(d.score) for d in present)
    overall = int(clamp(_round_half_up(weighted / covered)))
    confidence = round(covered / total_weight, 4)
    return Aggregate(
        overall_score=overall,
        confidence=confidence,
        dimensions=dimensions,
        missing=[d.name for d in dimensions.values() if not d.data_present],
    )


# ---------------------------------------------------------------------------
# Reasoning
# ---------------------------------------------------------------------------

_POSITIVE = {
    "stage": "Stage alignment: investor focuses on {stage} companies",
    "industry": "Strong industry fit: investor specializes in {industry}",
    "geography": "Geographic alignment with the investor's focus areas",
    "check_size": "Investment size matches the startup's funding ask",
    "team": "Experienced founding team with relevant background",
    "traction": "Traction ahead of {stage} expectations",
    "value_add": "Investor's value-add addresses the startup's needs",
    "network": "Strong portfolio network in {industry}",
    "timing": "Good timing for a new round with this investor",
    "risk": "Risk profile fits the investor's tolerance",
}
_NEGATIVE = {
    "stage": "Stage mismatch: investor typically invests at other stages",
    "industry": "Industry mismatch: {industry} is outside the investor's focus",
    "geography": "Geographic mismatch with the investor's focus",
    "check_size": "Funding ask does not fit the investor's check size",
    "team": "Team experience may not meet the investor's bar",
    "traction": "Limited traction for a {stage} company",
    "value_add": "Limited overlap between investor value-add and startup needs",
    "network": "Limited network synergies",
    "timing": "Timing concerns for a new round",
    "risk": "Risk profile exceeds the investor's tolerance",
}


def build_reasoning(agg: Aggregate, s: StartupFeatures) -> list[str]:
    """Top strengths (score >= 80), main concerns (score < 50), and data gaps."""
    ctx = {"stage": s.stage, "industry": s.industry}
    scored = [d for d in agg.dimensions.values() if d.data_present]
    ranked = sorted(scored, key=lambda d: (-d.score, DIMENSION_NAMES.index(d.name)))
    lines = [_POSITIVE[d.name].format(**ctx) for d in ranked[:3] if d.score >= 80]
    lows = [d for d in scored if d.score < 50][:2]
    lines.extend(_NEGATIVE[d.name].format(**ctx) for d in lows)
    if agg.missing:
        lines.append(f"Not enough data to assess: {', '.join(agg.missing)}")
    return lines
