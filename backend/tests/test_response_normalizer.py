"""
test_response_normalizer.py — Unit tests for ResponseNormalizer.

Tests cover:
  - Legacy (string summary) synthesis with explicit placeholders
  - Structured pass-through with per-field defaults
  - Layered (core / operational / technical) adaptation
  - Uniqueness pass over partsReplaced regardless of source
  - Signature-not-needed entries removed from patterns, hypotheses, checks and pattern details
  - Defaults for missing lists and confidence; idempotence on canonical input
  - Unit / building identity carried through normalization
"""

import pytest

from liftdiag.models.report_schema import SCHEMA_LAYERED, SCHEMA_LEGACY, SCHEMA_STRUCTURED, DiagnosticReport
from liftdiag.services.response_normalizer import (
    CURRENT_SITUATION_PLACEHOLDER,
    LEGACY_SERVICE_REVIEW_PLACEHOLDER,
    NO_EVENTS_SUMMARY,
    NO_OVERVIEW,
    NO_SUMMARY,
    SERVICE_REVIEW_PLACEHOLDER,
    ResponseNormalizer,
    detect_generation,
    normalize,
)


@pytest.fixture
def normalizer():
    return ResponseNormalizer()


@pytest.fixture
def layered_analysis():
    return {
        "coreAnalysis": {
            "linkedParts": [
                {"partName": "Door roller", "repairRequestNumber": "RR-7",
                 "replacementDate": "2024-02-02", "linkedVisitEventId": "2024-02-02", "component": "Door"},
                {"partName": "Door roller", "repairRequestNumber": "RR-7", "replacementDate": "2024-02-02"},
            ],
            "timeline": [{"date": "2024-02-01", "type": "breakdown", "description": "Door stuck"}],
            "patterns": [
                {"description": "Door faults", "frequency": "3", "evidenceEventIds": ["BD-1", "BD-2", "BD-3"],
                 "rootCause": "Worn rollers", "impact": "3 stops"},
            ],
        },
        "operationalAnalysis": {
            "executiveSummary": "Three door breakdowns in January. Rollers were replaced. No stops since.",
            "currentStatus": {"summary": "Running normally since the roller change."},
        },
        "technicalAnalysis": {
            "executiveSummary": "Roller wear explains all three stops.",
            "rootCauseAssessment": {
                "mostLikelyChain": {"rootCause": "Roller wear", "causeEffectChain": "wear -> drag -> stop",
                                    "confidence": "High"},
                "alternativeCauses": [
                    {"cause": "Track misalignment", "reasoning": "Possible", "confidence": "High"},
                    {"cause": "Controller fault", "reasoning": "Unlikely", "confidence": "Low"},
                ],
            },
            "recommendedActions": [
                {"timeframe": "Next visit", "action": "Check door track", "justification": "rule out misalignment"},
            ],
            "expectedOutcome": {"behaviorChange": "No further door stops"},
            "confidenceLevel": "HIGH",
        },
    }


# ===========================================================================
# Class 1: Generation detection
# ===========================================================================

class TestDetection:

    def test_detect_generations(self, structured_analysis, layered_analysis):
        assert detect_generation({"executiveSummary": "text"}) == SCHEMA_LEGACY
        assert detect_generation(structured_analysis) == SCHEMA_STRUCTURED
        assert detect_generation(layered_analysis) == SCHEMA_LAYERED
        assert detect_generation({}) == SCHEMA_STRUCTURED


# ===========================================================================
# Class 2: Legacy and structured
# ===========================================================================

class TestLegacyAndStructured:

    def test_legacy_summary_synthesized(self, normalizer):
        raw = {"executiveSummary": "First sentence. Second sentence. Third sentence."}
        summary = normalizer.normalize(raw).executive_summary

        assert summary.overview == "First sentence. Second sentence."
        assert summary.summary_of_events == "First sentence. Second sentence. Third sentence."
        assert summary.current_situation == CURRENT_SITUATION_PLACEHOLDER
        assert summary.service_handling_review == LEGACY_SERVICE_REVIEW_PLACEHOLDER

    def test_structured_passthrough(self, normalizer, structured_analysis):
        report = normalizer.normalize(structured_analysis)

        assert report.executive_summary.current_situation == "The lift is in service."
        assert report.final_exec_summary == "Power supply replaced; monitor for recurrence."
        assert report.parts_replaced[0].linked_to_breakdown == "BD-1"
        assert report.hypotheses[0].likelihood == "high"
        assert report.confidence_level == "high"

    def test_structured_missing_fields_get_defaults(self, normalizer):
        report = normalizer.normalize({"executiveSummary": {"overview": "Short."}})

        assert report.executive_summary.overview == "Short."
        assert report.executive_summary.current_situation == CURRENT_SITUATION_PLACEHOLDER
        assert report.executive_summary.service_handling_review == SERVICE_REVIEW_PLACEHOLDER

    def test_missing_summary_and_lists(self, normalizer):
        report = normalizer.normalize({})

        assert report.executive_summary.overview == NO_SUMMARY
        assert report.parts_replaced == []
        assert report.timeline == []
        assert report.repeated_patterns == []
        assert report.hypotheses == []
        assert report.suggested_checks == []
        assert report.confidence_level == "medium"

    def test_non_object_payload_gives_empty_report(self, normalizer):
        assert normalizer.normalize(["not", "an", "object"]).parts_replaced == []

    def test_null_values_fall_back_to_defaults(self, normalizer):
        report = normalizer.normalize({
            "partsReplaced": None,
            "confidenceLevel": None,
            "suggestedChecks": [None, "", "Check brake"],
        })
        assert report.parts_replaced == []
        assert report.confidence_level == "medium"
        assert report.suggested_checks == ["Check brake"]

    def test_unknown_confidence_defaults_to_medium(self, normalizer):
        assert normalizer.normalize({"confidenceLevel": "certain"}).confidence_level == "medium"

    def test_idempotent_on_canonical_input(self, normalizer, structured_analysis):
        once = normalizer.normalize(structured_analysis)
        twice = normalizer.normalize(once.to_dict())
        assert twice == once
        assert normalizer.normalize(once) == once

    @pytest.mark.parametrize("summary", ["", "   "])
    def test_blank_legacy_summary_stable_across_passes(self, normalizer, summary):
        once = normalizer.normalize({"executiveSummary": summary})
        assert once.executive_summary.overview == NO_OVERVIEW
        assert once.executive_summary.summary_of_events == NO_EVENTS_SUMMARY
        assert normalizer.normalize(once.to_dict()) == once

    def test_legacy_summary_stable_across_passes(self, normalizer):
        once = normalizer.normalize({"executiveSummary": "Door faults. Roller replaced. Running since."})
        assert normalizer.normalize(once.to_dict()) == once

    def test_identity_kept_through_round_trip(self, normalizer, structured_analysis):
        raw = dict(structured_analysis, unit={"id": "U-42", "name": "Lift A"}, building={"id": "B-1"})
        once = normalizer.normalize(raw)

        assert once.unit.id == "U-42"
        assert once.building.name == ""
        assert once.to_dict()["unit"] == {"id": "U-42", "name": "Lift A"}
        assert normalizer.normalize(once.to_dict()) == once

    def test_identity_absent_or_malformed_is_null(self, normalizer):
        assert normalizer.normalize({}).unit is None
        assert normalizer.normalize({"unit": "U-42"}).unit is None


# ===========================================================================
# Class 3: Layered adaptation
# ===========================================================================

class TestLayered:

    def test_layered_summary(self, normalizer, layered_analysis):
        report = normalizer.normalize(layered_analysis)

        assert report.executive_summary.overview == "Three door breakdowns in January. Rollers were replaced."
        assert report.executive_summary.current_situation == "Running normally since the roller change."
        assert report.final_exec_summary == "Roller wear explains all three stops."
        assert report.confidence_level == "high"

    def test_layered_parts_deduplicated_keeping_linked(self, normalizer, layered_analysis):
        parts = normalizer.normalize(layered_analysis).parts_replaced

        assert len(parts) == 1
        assert parts[0].linked_to_visit == "2024-02-02"

    def test_layered_patterns_and_hypotheses(self, normalizer, layered_analysis):
        report = normalizer.normalize(layered_analysis)

        assert report.repeated_patterns[0].pattern == "Door faults"
        assert report.repeated_patterns[0].frequency == 3
        assert report.repeated_patterns[0].examples == ["BD-1", "BD-2", "BD-3"]
        assert [h.category for h in report.hypotheses] == ["Roller wear", "Track misalignment", "Controller fault"]
        assert [h.likelihood for h in report.hypotheses] == ["high", "medium", "low"]

    def test_layered_checks(self, normalizer, layered_analysis):
        checks = normalizer.normalize(layered_analysis).suggested_checks
        assert checks == [
            "[Next visit] Check door track (rule out misalignment)",
            "Expected: No further door stops",
        ]

    def test_layered_identity_kept(self, normalizer, layered_analysis):
        raw = dict(layered_analysis, unit={"id": "U-42", "name": "Lift A"})
        report = normalizer.normalize(raw)
        assert report.unit.name == "Lift A"
        assert report.building is None


# ===========================================================================
# Class 4: Cleanup passes
# ===========================================================================

class TestCleanup:

    def test_duplicate_parts_from_generation_removed(self, normalizer, structured_analysis):
        raw = dict(structured_analysis)
        duplicate = dict(raw["partsReplaced"][0], linkedToVisit="")
        raw["partsReplaced"] = [duplicate] + raw["partsReplaced"]

        parts = normalizer.normalize(raw).parts_replaced
        assert len(parts) == 1
        assert parts[0].linked_to_visit == "2024-03-10"

    def test_signature_not_needed_entries_dropped(self, normalizer):
        raw = {
            "repeatedPatterns": [
                {"pattern": "Signature not needed on 4 visits", "frequency": 4},
                {"pattern": "Door stops", "frequency": 2},
            ],
            "hypotheses": [{"category": "Admin", "reasoning": "signatureNotNeeded recorded repeatedly"}],
            "suggestedChecks": ["Review signature-not-needed entries", "Check door track"],
        }
        report = normalizer.normalize(raw)

        assert [p.pattern for p in report.repeated_patterns] == ["Door stops"]
        assert report.hypotheses == []
        assert report.suggested_checks == ["Check door track"]

    def test_signature_not_needed_pattern_details_dropped_and_counted(self, normalizer, caplog):
        raw = {"technicalSummary": {"overview": "Door wear", "patternDetails": [
            {"patternName": "Signature not needed on visits"},
            {"patternName": "Door stops", "verdict": "Roller wear"},
        ]}}
        with caplog.at_level("WARNING", logger="liftdiag-normalizer"):
            report = normalizer.normalize(raw)

        assert [d.pattern_name for d in report.technical_summary.pattern_details] == ["Door stops"]
        assert "Dropped 1 " in caplog.text

    def test_module_level_normalize(self, structured_analysis):
        assert isinstance(normalize(structured_analysis), DiagnosticReport)
