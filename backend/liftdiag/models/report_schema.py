"""
Canonical diagnostic report contract.

Every analysis leaving ResponseNormalizer, stored by DiagnosticStore or drawn
by the PDF renderer is a DiagnosticReport. Field names serialize in camelCase
(the JSON shape the generation step writes and the frontend reads).
The unit and building identities are filled in by the pipeline, not by the
generation step; reports normalized from bare model output leave them null.

Schema generations accepted on input:
  legacy      executiveSummary is one free-text string
  structured  executiveSummary is {overview, summaryOfEvents, currentSituation,
              serviceHandlingReview}; optional technicalSummary / finalExecSummary
  layered     {coreAnalysis, operationalAnalysis, technicalAnalysis}
"""
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, field_validator, model_validator
from pydantic.alias_generators import to_camel

SCHEMA_LEGACY = "legacy"
SCHEMA_STRUCTURED = "structured"
SCHEMA_LAYERED = "layered"
SCHEMA_GENERATIONS = (SCHEMA_LEGACY, SCHEMA_STRUCTURED, SCHEMA_LAYERED)

CONFIDENCE_LEVELS = ("low", "medium", "high")


def normalize_level(value: Any, default: str = "medium") -> str:
    level = str(value or "").strip().lower()
    return level if level in CONFIDENCE_LEVELS else default


def _as_list(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _as_text(value: Any) -> str:
    if isinstance(value, dict):
        for key in ("action", "text", "description", "check"):
            if value.get(key):
                return str(value[key])
        return "; ".join(f"{k}: {v}" for k, v in value.items())
    return str(value)


class CanonicalModel(BaseModel):
    """camelCase on the wire, nulls fall back to field defaults, unknown keys dropped."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        coerce_numbers_to_str=True,
    )

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data

    def to_dict(self) -> dict:
        return self.model_dump(by_alias=True)


class Identity(CanonicalModel):
    """Unit or building the report is about."""
    id: str = ""
    name: str = ""


class ExecutiveSummary(CanonicalModel):
    overview: str = ""
    summary_of_events: str = ""
    current_situation: str = ""
    service_handling_review: str = ""


class PartReplaced(CanonicalModel):
    part_name: str = ""
    part_family: str = ""
    part_sub_family: str = ""
    replacement_date: str = ""
    repair_request_number: str = ""
    component: str = ""
    linked_to_visit: str = ""
    linked_to_breakdown: str = ""


class TimelineEntry(CanonicalModel):
    date: str = ""
    type: str = ""
    description: str = ""


class RepeatedPattern(CanonicalModel):
    pattern: str = ""
    frequency: int = 0
    examples: List[str] = []
    related_issues: List[str] = []
    summary: str = ""
    root_cause: str = ""
    impact: str = ""
    escalation_path: str = ""
    correlation: str = ""

    @field_validator("frequency", mode="before")
    @classmethod
    def _frequency(cls, value: Any) -> int:
        try:
            return int(float(value))
        except (TypeError, ValueError):
            return 0

    @field_validator("examples", "related_issues", mode="before")
    @classmethod
    def _strings(cls, value: Any) -> list:
        return [_as_text(v) for v in _as_list(value)]


class QuantifiedImpact(CanonicalModel):
    root_cause: str = ""
    breakdown_count: int = 0
    time_span: str = ""
    downtime_hours: str = ""
    downtime_per_event: str = ""
    risk_level: str = "medium"
    risk_rationale: str = ""

    @field_validator("breakdown_count", mode="before")
    @classmethod
    def _count(cls, value: Any) -> int:
        try:
            return int(float(value))
        except (TypeError, ValueError):
            return 0

    @field_validator("risk_level", mode="before")
    @classmethod
    def _risk(cls, value: Any) -> str:
        return normalize_level(value)


class Recommendation(CanonicalModel):
    action: str = ""
    timeframe: str = ""
    owner: str = ""
    expected_outcome: str = ""


class ResolutionProbability(CanonicalModel):
    probability: str = ""
    escalation_path: str = ""


class PatternDetail(CanonicalModel):
    pattern_name: str = ""
    verdict: str = ""
    quantified_impact: QuantifiedImpact = QuantifiedImpact()
    driver_tree: str = ""
    actionable_recommendations: List[Recommendation] = []
    resolution_probability: ResolutionProbability = ResolutionProbability()

    @field_validator("actionable_recommendations", mode="before")
    @classmethod
    def _recommendations(cls, value: Any) -> list:
        return [v if isinstance(v, dict) else {"action": _as_text(v)} for v in _as_list(value)]


class TechnicalSummary(CanonicalModel):
    overview: str = ""
    pattern_details: List[PatternDetail] = []

    @field_validator("pattern_details", mode="before")
    @classmethod
    def _details(cls, value: Any) -> list:
        return [v for v in _as_list(value) if isinstance(v, dict)]


class Hypothesis(CanonicalModel):
    category: str = ""
    likelihood: str = "medium"
    reasoning: str = ""

    @field_validator("likelihood", mode="before")
    @classmethod
    def _likelihood(cls, value: Any) -> str:
        return normalize_level(value)


class DiagnosticReport(CanonicalModel):
    unit: Optional[Identity] = None
    building: Optional[Identity] = None
    executive_summary: ExecutiveSummary = ExecutiveSummary()
    final_exec_summary: Optional[str] = None
    parts_replaced: List[PartReplaced] = []
    timeline: List[TimelineEntry] = []
    repeated_patterns: List[RepeatedPattern] = []
    technical_summary: Optional[TechnicalSummary] = None
    hypotheses: List[Hypothesis] = []
    suggested_checks: List[str] = []
    confidence_level: str = "medium"

    @field_validator("parts_replaced", "timeline", "repeated_patterns", "hypotheses", mode="before")
    @classmethod
    def _records(cls, value: Any) -> list:
        return [v for v in _as_list(value) if isinstance(v, (dict, BaseModel))]

    @field_validator("suggested_checks", mode="before")
    @classmethod
    def _checks(cls, value: Any) -> list:
        return [_as_text(v) for v in _as_list(value) if v not in (None, "")]

    @field_validator("confidence_level", mode="before")
    @classmethod
    def _confidence(cls, value: Any) -> str:
        return normalize_level(value)

    @field_validator("unit", "building", "technical_summary", mode="before")
    @classmethod
    def _objects(cls, value: Any) -> Any:
        return value if isinstance(value, (dict, BaseModel)) else None
