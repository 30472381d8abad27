"""
Response Normalizer — every schema generation in, one DiagnosticReport out.

  legacy      plain-string executiveSummary, synthesized into the structured form
              with explicit "not available" placeholders
  structured  passed through with per-field defaults
  layered     coreAnalysis / operationalAnalysis / technicalAnalysis adapted

After shape normalization the parts list always goes through the linker's
uniqueness pass; the generation step is not trusted to honor it.
"""
import logging
import re
from typing import Any, Optional

from liftdiag.models.report_schema import (
    SCHEMA_LAYERED,
    SCHEMA_LEGACY,
    SCHEMA_STRUCTURED,
    DiagnosticReport,
    normalize_level,
)
from liftdiag.services.event_linker import deduplicate_parts
from liftdiag.services.text_utils import leading_sentences

logger = logging.getLogger("liftdiag-normalizer")

# Placeholders: never fabricated content, always flagged as unavailable
CURRENT_SITUATION_PLACEHOLDER = "Current status requires review."
LEGACY_SERVICE_REVIEW_PLACEHOLDER = "Service handling review not available for legacy diagnostics."
SERVICE_REVIEW_PLACEHOLDER = "Service handling review not available for this diagnostic."
NO_OVERVIEW = "No overview available"
NO_EVENTS_SUMMARY = "No events summary available"
NO_SUMMARY = "No summary available"
NO_SUMMARY_SERVICE_REVIEW = "Service handling review not available."

_EXCLUDED_CATEGORY_RE = re.compile(r"signature\s*[-_ ]?\s*not\s*[-_ ]?\s*needed", re.IGNORECASE)


def detect_generation(raw: Any) -> str:
    if isinstance(raw, dict):
        if "coreAnalysis" in raw and "operationalAnalysis" in raw and "technicalAnalysis" in raw:
            return SCHEMA_LAYERED
        if isinstance(raw.get("executiveSummary"), str):
            return SCHEMA_LEGACY
    return SCHEMA_STRUCTURED


def _executive_summary(value: Any, generation: str) -> dict:
    if isinstance(value, str):
        review = LEGACY_SERVICE_REVIEW_PLACEHOLDER if generation == SCHEMA_LEGACY else SERVICE_REVIEW_PLACEHOLDER
        return {
            "overview": leading_sentences(value, 2) or NO_OVERVIEW,
            "summaryOfEvents": value.strip() or NO_EVENTS_SUMMARY,
            "currentSituation": CURRENT_SITUATION_PLACEHOLDER,
            "serviceHandlingReview": review,
        }
    if isinstance(value, dict):
        return {
            "overview": value.get("overview") or NO_OVERVIEW,
            "summaryOfEvents": value.get("summaryOfEvents") or NO_EVENTS_SUMMARY,
            "currentSituation": value.get("currentSituation") or CURRENT_SITUATION_PLACEHOLDER,
            "serviceHandlingReview": value.get("serviceHandlingReview") or SERVICE_REVIEW_PLACEHOLDER,
        }
    return {
        "overview": NO_SUMMARY,
        "summaryOfEvents": NO_SUMMARY,
        "currentSituation": CURRENT_SITUATION_PLACEHOLDER,
        "serviceHandlingReview": NO_SUMMARY_SERVICE_REVIEW,
    }


def adapt_layered(raw: dict) -> dict:
    """Map the three-view layered analysis onto the structured shape."""
    core = raw.get("coreAnalysis") or {}
    operational = raw.get("operationalAnalysis") or {}
    technical = raw.get("technicalAnalysis") or {}

    summary_text = operational.get("executiveSummary") or operational.get("customerSummary") or NO_SUMMARY
    executive_summary = {
        "overview": leading_sentences(summary_text, 2),
        "summaryOfEvents": summary_text,
        "currentSituation": (operational.get("currentStatus") or {}).get("summary") or CURRENT_SITUATION_PLACEHOLDER,
        "serviceHandlingReview": SERVICE_REVIEW_PLACEHOLDER,
    }

    parts = [
        {
            "partName": p.get("partName", ""),
            "partFamily": p.get("partFamily") or "",
            "partSubFamily": p.get("partSubFamily") or "",
            "replacementDate": p.get("replacementDate") or "",
            "repairRequestNumber": p.get("repairRequestNumber") or "",
            "component": p.get("component") or "",
            "linkedToVisit": p.get("linkedVisitEventId") or "",
            "linkedToBreakdown": p.get("linkedBreakdownEventId") or "",
        }
        for p in core.get("linkedParts") or []
        if isinstance(p, dict)
    ]

    timeline = [
        {"date": e.get("date", ""), "type": e.get("type", ""), "description": e.get("description", "")}
        for e in core.get("timeline") or []
        if isinstance(e, dict)
    ]

    patterns = [
        {
            "pattern": p.get("description", ""),
            "frequency": p.get("frequency", 0),
            "examples": p.get("evidenceEventIds") or [],
            "summary": p.get("rootCause") or "",
            "rootCause": p.get("rootCause") or "",
            "impact": p.get("impact") or "",
            "escalationPath": p.get("escalationPath") or "",
            "correlation": p.get("correlation") or "",
        }
        for p in core.get("patterns") or []
        if isinstance(p, dict)
    ]

    hypotheses = []
    assessment = technical.get("rootCauseAssessment") or {}
    chain = assessment.get("mostLikelyChain")
    if isinstance(chain, dict):
        hypotheses.append({
            "category": chain.get("rootCause", ""),
            "likelihood": "high",
            "reasoning": f"{chain.get('causeEffectChain', '')} (Confidence: {chain.get('confidence', '')})",
        })
    for alternative in assessment.get("alternativeCauses") or []:
        if not isinstance(alternative, dict):
            continue
        confidence = str(alternative.get("confidence", ""))
        hypotheses.append({
            "category": alternative.get("cause", ""),
            "likelihood": "medium" if "high" in confidence.lower() else "low",
            "reasoning": f"{alternative.get('reasoning', '')} (Confidence: {confidence})",
        })

    checks = [
        f"[{a.get('timeframe', '')}] {a.get('action', '')} ({a.get('justification', '')})"
        for a in technical.get("recommendedActions") or []
        if isinstance(a, dict)
    ]
    outcome = technical.get("expectedOutcome")
    if isinstance(outcome, dict) and outcome.get("behaviorChange"):
        checks.append(f"Expected: {outcome['behaviorChange']}")

    return {
        "executiveSummary": executive_summary,
        "finalExecSummary": technical.get("executiveSummary"),
        "partsReplaced": parts,
        "timeline": timeline,
        "repeatedPatterns": patterns,
        "hypotheses": hypotheses,
        "suggestedChecks": checks,
        "confidenceLevel": normalize_level(technical.get("confidenceLevel")),
    }


def _mentions_excluded_category(*texts: Any) -> bool:
    return any(isinstance(t, str) and _EXCLUDED_CATEGORY_RE.search(t) for t in texts)


def _drop_excluded_category(report: DiagnosticReport) -> DiagnosticReport:
    patterns = [
        p for p in report.repeated_patterns
        if not _mentions_excluded_category(p.pattern, p.summary, p.root_cause)
    ]
    hypotheses = [h for h in report.hypotheses if not _mentions_excluded_category(h.category, h.reasoning)]
    checks = [c for c in report.suggested_checks if not _mentions_excluded_category(c)]
    technical = report.technical_summary
    if technical is not None:
        details = [
            d for d in technical.pattern_details
            if not _mentions_excluded_category(d.pattern_name, d.verdict)
        ]
        technical = technical.model_copy(update={"pattern_details": details})

    removed = (
        len(report.repeated_patterns) - len(patterns)
        + len(report.hypotheses) - len(hypotheses)
        + len(report.suggested_checks) - len(checks)
    )
    if technical is not None:
        removed += len(report.technical_summary.pattern_details) - len(technical.pattern_details)
    if removed:
        logger.warning(f"Dropped {removed} pattern/recommendation entries about signature-not-needed issues")
    return report.model_copy(update={
        "repeated_patterns": patterns,
        "hypotheses": hypotheses,
        "suggested_checks": checks,
        "technical_summary": technical,
    })


class ResponseNormalizer:
    """Raw generation output (dict or JSON-decoded) -> canonical DiagnosticReport."""

    def normalize(self, raw: Any, schema_hint: Optional[str] = None) -> DiagnosticReport:
        if isinstance(raw, DiagnosticReport):
            raw = raw.to_dict()
        if not isinstance(raw, dict):
            logger.warning(f"Analysis payload is {type(raw).__name__}, not an object; using empty report")
            raw = {}

        generation = detect_generation(raw)
        if schema_hint and schema_hint != generation:
            logger.info(f"Expected {schema_hint} analysis, received {generation}")

        if generation == SCHEMA_LAYERED:
            shaped = adapt_layered(raw)
            shaped.update({key: raw[key] for key in ("unit", "building") if key in raw})
        else:
            shaped = dict(raw)
            shaped["executiveSummary"] = _executive_summary(raw.get("executiveSummary"), generation)

        report = DiagnosticReport.model_validate(shaped)

        dedup = deduplicate_parts(report.to_dict()["partsReplaced"])
        report = report.model_copy(update={
            "parts_replaced": DiagnosticReport.model_validate({"partsReplaced": dedup.parts}).parts_replaced,
        })
        return _drop_excluded_category(report)


def normalize(raw: Any, schema_hint: Optional[str] = None) -> DiagnosticReport:
    return ResponseNormalizer().normalize(raw, schema_hint)
