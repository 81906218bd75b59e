"""Feature normalization: raw startup / investor documents -> comparable features.

Records arrive as the platform stores them (camelCase keys, free-form values
typed in by founders and investors). Normalization canonicalizes stages,
industries, regions and capabilities to kebab-case slugs and keeps absent
optional data as ``None`` so the scorer can tell "no match" from "no data".
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Mapping

from pitchmatch.errors import IncompleteRecord
from pitchmatch.utils import slugify, utc_now

log = logging.getLogger(__name__)

STAGE_ORDER = ("pre-seed", "seed", "series-a", "series-b", "series-c-plus", "growth", "late-stage")

_STAGE_ALIASES = {
    "preseed": "pre-seed",
    "angel": "pre-seed",
    "idea": "pre-seed",
    "series-c": "series-c-plus",
    "series-d": "series-c-plus",
    "series-e": "series-c-plus",
    "late": "late-stage",
    "pre-ipo": "late-stage",
}

EARLY_STAGES = {"pre-seed", "seed"}
TECH_INDUSTRIES = {"ai-ml", "developer-tools"}

_STRONG_EDUCATION_RE = re.compile(
    r"\b(stanford|mit|harvard|berkeley|oxford|cambridge|eth|caltech|phd)\b", re.IGNORECASE,
)
_TECH_EXPERTISE_RE = re.compile(
    r"\b(engineer\w*|ai|ml|machine learning|software|computer science|data science)\b", re.IGNORECASE,
)
_YEARS_RE = re.compile(r"(\d+(?:\.\d+)?)\s*\+?\s*(?:years?|yrs?)\b", re.IGNORECASE)
_EXIT_RE = re.compile(r"\b(exit|exits|exited|acquired|acquisition|sold)\b", re.IGNORECASE)
_TEAM_SIZE_RE = re.compile(r"\b(\d+)\s*(?:people|members|employees|founders|engineers)\b", re.IGNORECASE)
_AMOUNT_RE = re.compile(r"^\$?\s*(\d+(?:\.\d+)?)\s*([kmb])?$", re.IGNORECASE)
_AMOUNT_SUFFIX = {"k": 1e3, "m": 1e6, "b": 1e9}


# ---------------------------------------------------------------------------
# Feature types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TeamSummary:
    size: int | None
    founder_count: int
    avg_experience: float | None
    founders_with_exits: int
    strong_education: bool
    technical_expertise: bool


@dataclass(frozen=True)
class TractionSignals:
    users: float | None = None
    revenue: float | None = None
    partnerships: float | None = None
    monthly_growth: float | None = None
    notes: tuple[str, ...] = ()

    def is_empty(self) -> bool:
        return (
            self.users is None and self.revenue is None and self.partnerships is None
            and self.monthly_growth is None and not self.notes
        )


@dataclass(frozen=True)
class NotableInvestment:
    name: str
    industry: str
    stage: str | None
    outcome: str


@dataclass(frozen=True)
class StartupFeatures:
    id: str
    stage: str
    industry: str
    geography: tuple[str, ...] | None = None
    funding_ask: float | None = None
    team: TeamSummary | None = None
    traction: TractionSignals | None = None
    growth_rate: float | None = None
    business_model: str | None = None
    risk_factors: tuple[str, ...] | None = None
    strengths: tuple[str, ...] | None = None
    competitors: tuple[str, ...] | None = None
    needs: frozenset[str] = frozenset()
    needs_declared: bool = False
    months_since_funding: float | None = None


@dataclass(frozen=True)
class InvestorFeatures:
    id: str
    accepted_stages: frozenset[str]
    preferred_industries: frozenset[str]
    investor_type: str | None = None
    geographic_focus: frozenset[str] | None = None
    min_investment: float | None = None
    max_investment: float | None = None
    typical_check_size: float | None = None
    lead_investments: bool | None = None
    value_add: frozenset[str] | None = None
    portfolio_size: int | None = None
    investments_per_year: float | None = None
    risk_tolerance: str | None = None
    investment_philosophy: str | None = None
    notable_investments: tuple[NotableInvestment, ...] | None = None


# ---------------------------------------------------------------------------
# Value coercion
# ---------------------------------------------------------------------------


def canonical_stage(value: Any) -> str | None:
    slug = slugify(value)
    if slug in STAGE_ORDER:
        return slug
    return _STAGE_ALIASES.get(slug)


def _num(value: Any) -> float | None:
    """Coerce numbers and strings like ``"$500k"`` or ``"1,000,000"``; None if absent."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip().replace(",", "")
    if not text:
        return None
    m = _AMOUNT_RE.match(text)
    if not m:
        return None
    amount = float(m.group(1))
    suffix = (m.group(2) or "").lower()
    return amount * _AMOUNT_SUFFIX.get(suffix, 1.0)


def _int(value: Any) -> int | None:
    n = _num(value)
    return int(n) if n is not None else None


def _bool(value: Any) -> bool | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("true", "1", "yes", "y"):
        return True
    if text in ("false", "0", "no", "n"):
        return False
    return None


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _str_list(value: Any) -> tuple[str, ...] | None:
    """A list, or a comma-separated string, of non-blank strings."""
    if value is None:
        return None
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple, set, frozenset)):
        items = [str(v) for v in value if v is not None and not isinstance(v, dict)]
    else:
        return None
    return tuple(s.strip() for s in items if s and s.strip())


def _slug_set(value: Any) -> frozenset[str] | None:
    items = _str_list(value)
    if items is None:
        return None
    return frozenset(s for s in (slugify(i) for i in items) if s)


def _first(record: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if record.get(key) is not None:
            return record[key]
    return None


# ---------------------------------------------------------------------------
# Startup parsing
# ---------------------------------------------------------------------------


def _parse_founders(founders: Any) -> list[dict[str, Any]]:
    if not isinstance(founders, list):
        return []
    return [f for f in founders if isinstance(f, dict)]


def _team_from_text(text: str, size: int | None) -> TeamSummary:
    years = [float(y) for y in _YEARS_RE.findall(text)]
    size_match = _TEAM_SIZE_RE.search(text)
    if size is None and size_match:
        size = int(size_match.group(1))
    return TeamSummary(
        size=size,
        founder_count=0,
        avg_experience=sum(years) / len(years) if years else None,
        founders_with_exits=1 if _EXIT_RE.search(text) else 0,
        strong_education=bool(_STRONG_EDUCATION_RE.search(text)),
        technical_expertise=bool(_TECH_EXPERTISE_RE.search(text)),
    )


def _team_from_founders(founders: list[dict[str, Any]], size: int | None) -> TeamSummary:
    experiences = [_num(f.get("experience")) for f in founders]
    known = [e for e in experiences if e is not None]
    education = " ".join(str(f.get("education") or "") for f in founders)
    expertise = " ".join(
        " ".join(_str_list(f.get("expertise")) or ()) for f in founders
    )
    return TeamSummary(
        size=size,
        founder_count=len(founders),
        avg_experience=sum(known) / len(known) if known else None,
        founders_with_exits=sum(1 for f in founders if (_num(f.get("previousExits")) or 0) > 0),
        strong_education=bool(_STRONG_EDUCATION_RE.search(education)),
        technical_expertise=bool(_TECH_EXPERTISE_RE.search(expertise)),
    )


def _parse_team(record: Mapping[str, Any]) -> TeamSummary | None:
    summary = record.get("teamSummary")
    size = _int(record.get("teamSize"))
    founders = _parse_founders(record.get("founders"))

    if isinstance(summary, str) and summary.strip():
        return _team_from_text(summary, size)
    if isinstance(summary, dict):
        size = _int(summary.get("size")) if summary.get("size") is not None else size
        founders = _parse_founders(summary.get("founders")) or founders
        if not founders:
            exits = _num(summary.get("priorExits"))
            experience = _num(summary.get("avgExperience"))
            education = str(summary.get("education") or "")
            expertise = " ".join(_str_list(summary.get("expertise")) or ())
            if size is None and exits is None and experience is None and not education and not expertise:
                return None
            return TeamSummary(
                size=size,
                founder_count=0,
                avg_experience=experience,
                founders_with_exits=int(exits or 0),
                strong_education=bool(_STRONG_EDUCATION_RE.search(education)),
                technical_expertise=bool(_TECH_EXPERTISE_RE.search(expertise)),
            )
    if founders:
        return _team_from_founders(founders, size)
    if size is not None:
        return TeamSummary(size, 0, None, 0, False, False)
    return None


def _parse_traction(record: Mapping[str, Any]) -> TractionSignals | None:
    raw = _first(record, "tractionSignals", "traction")
    users = revenue = partnerships = growth = None
    notes: tuple[str, ...] = ()
    if isinstance(raw, dict):
        users = _num(raw.get("users"))
        revenue = _num(_first(raw, "revenue", "arr"))
        if revenue is None and _num(raw.get("mrr")) is not None:
            revenue = _num(raw.get("mrr")) * 12
        partnerships = _num(raw.get("partnerships"))
        growth = _num(raw.get("growth"))
        notes = _str_list(_first(raw, "signals", "notes")) or ()
    elif raw is not None:
        notes = _str_list(raw) or ()
    if revenue is None:
        revenue = _num(record.get("revenue"))
    traction = TractionSignals(users, revenue, partnerships, growth, notes)
    return None if traction.is_empty() else traction


def _parse_geography(value: Any) -> tuple[str, ...] | None:
    text = _text(value)
    if not text:
        return None
    tokens = [slugify(text)]
    tokens.extend(slugify(part) for part in text.split(",") if slugify(part))
    return tuple(dict.fromkeys(t for t in tokens if t))


def _months_since(value: Any, as_of: date) -> float | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        funded = value.date()
    elif isinstance(value, date):
        funded = value
    else:
        try:
            funded = date.fromisoformat(str(value).strip()[:10])
        except ValueError:
            return None
    return max(0.0, (as_of - funded).days / 30.44)


def derive_needs(stage: str, industry: str, business_model: str | None) -> frozenset[str]:
    """Needs a startup typically has when it declares none itself."""
    needs: set[str] = set()
    if stage in EARLY_STAGES:
        needs.update({"mentorship", "strategic-guidance", "network-access", "fundraising-support", "lead-investor"})
    if stage in ("series-a", "series-b"):
        needs.update({"business-development", "customer-introductions", "talent-acquisition"})
    if stage == "series-a":
        needs.add("lead-investor")
    if industry in TECH_INDUSTRIES:
        needs.add("technical-expertise")
    if industry in ("consumer", "ecommerce"):
        needs.update({"marketing-pr", "customer-introductions"})
    model = slugify(business_model)
    if any(k in model for k in ("b2b", "saas", "enterprise")):
        needs.add("customer-introductions")
    if any(k in model for k in ("b2c", "consumer", "marketplace")):
        needs.add("marketing-pr")
    return frozenset(needs)


def normalize_startup(record: Mapping[str, Any], as_of: date | None = None) -> StartupFeatures:
    """Extract StartupFeatures, raising IncompleteRecord without id/stage/industry."""
    record_id = _text(_first(record, "id", "_id"))
    stage = canonical_stage(record.get("stage"))
    industry = slugify(record.get("industry"))
    missing = [name for name, val in (("id", record_id), ("stage", stage), ("industry", industry)) if not val]
    if missing:
        raise IncompleteRecord("startup", record_id, missing)

    as_of = as_of or utc_now().date()
    business_model = _text(record.get("businessModel"))
    declared = _slug_set(record.get("needs"))
    months = _months_since(record.get("lastFundingDate"), as_of)
    if months is None:
        months = _num(record.get("monthsSinceLastRound"))

    return StartupFeatures(
        id=record_id,
        stage=stage,
        industry=industry,
        geography=_parse_geography(_first(record, "geography", "location")),
        funding_ask=_num(_first(record, "fundingAsk", "askAmount")),
        team=_parse_team(record),
        traction=_parse_traction(record),
        growth_rate=_num(record.get("growthRate")),
        business_model=business_model,
        risk_factors=_str_list(record.get("riskFactors")),
        strengths=_str_list(record.get("strengths")),
        competitors=_str_list(record.get("competitors")),
        needs=declared if declared else derive_needs(stage, industry, business_model),
        needs_declared=bool(declared),
        months_since_funding=months,
    )


# ---------------------------------------------------------------------------
# Investor parsing
# ---------------------------------------------------------------------------


def _parse_notable(value: Any) -> tuple[NotableInvestment, ...] | None:
    if not isinstance(value, list):
        return None
    out: list[NotableInvestment] = []
    for item in value:
        if isinstance(item, dict):
            out.append(NotableInvestment(
                name=str(_first(item, "name", "company") or "").strip(),
                industry=slugify(item.get("industry")),
                stage=canonical_stage(item.get("stage")),
                outcome=slugify(item.get("outcome")),
            ))
        elif isinstance(item, str) and item.strip():
            out.append(NotableInvestment(name=item.strip(), industry="", stage=None, outcome=""))
    return tuple(out) or None


def normalize_investor(record: Mapping[str, Any]) -> InvestorFeatures:
    """Extract InvestorFeatures, raising IncompleteRecord without id/stages/industries."""
    record_id = _text(_first(record, "id", "_id"))
    stages = frozenset(
        s for s in (canonical_stage(v) for v in (_str_list(_first(record, "acceptedStages", "investmentStages")) or ()))
        if s
    )
    industries = _slug_set(record.get("preferredIndustries")) or frozenset()
    missing = [
        name for name, val in (
            ("id", record_id), ("acceptedStages", stages), ("preferredIndustries", industries),
        ) if not val
    ]
    if missing:
        raise IncompleteRecord("investor", record_id, missing)

    tolerance = slugify(record.get("riskTolerance"))
    return InvestorFeatures(
        id=record_id,
        accepted_stages=stages,
        preferred_industries=industries,
        investor_type=slugify(record.get("investorType")) or None,
        geographic_focus=_slug_set(record.get("geographicFocus")) or None,
        min_investment=_num(record.get("minInvestmentAmount")),
        max_investment=_num(record.get("maxInvestmentAmount")),
        typical_check_size=_num(record.get("typicalCheckSize")),
        lead_investments=_bool(record.get("leadInvestments")),
        value_add=_slug_set(record.get("valueAdd")) or None,
        portfolio_size=_int(record.get("portfolioSize")),
        investments_per_year=_num(record.get("investmentsPerYear")),
        risk_tolerance=tolerance if tolerance in ("low", "medium", "high") else None,
        investment_philosophy=_text(record.get("investmentPhilosophy")),
        notable_investments=_parse_notable(_first(record, "notableInvestments", "pastInvestments")),
    )
