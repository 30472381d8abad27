"""
test_prompt_builder.py — Unit tests for PromptBuilder / GenerationRequest.

Tests cover:
  - System instruction per schema generation (structured, legacy, layered)
  - Linking rules and signature-not-needed exclusion always present
  - User message: unit/building naming, per-collection sections and counts,
    empty-period notes, ONGOING downtimes, translated issue components
  - Linker hints, callback frequency and maintenance gap in the message
  - Temperature and request metadata
"""

import json
from datetime import date, datetime

import pytest

from liftdiag.models.records import DowntimeRecord, MaintenanceIssueRecord, UnitRecords
from liftdiag.models.report_schema import SCHEMA_LAYERED, SCHEMA_LEGACY, SCHEMA_STRUCTURED
from liftdiag.services.event_linker import EventLinker
from liftdiag.services.prompt_builder import PromptBuilder

UNIT = {"id": "U-42", "name": "Lift A"}
BUILDING = {"id": "B-1", "name": "Tour Horizon"}


@pytest.fixture
def builder():
    return PromptBuilder(temperature=0.3)


@pytest.fixture
def records(power_supply_scenario):
    visits, requests = power_supply_scenario
    return UnitRecords(
        visits=visits,
        downtimes=[DowntimeRecord(id="BD-1", start_time=datetime(2024, 3, 8, 10), end_time=None,
                                  failure_locations="power supply")],
        issues=[MaintenanceIssueRecord(task_id="T-9", completed_date=date(2024, 3, 1),
                                       component_key="landings.door.locks", problem_key="worn")],
        parts_requests=requests,
    )


# ===========================================================================
# Class 1: System instruction
# ===========================================================================

class TestSystemPrompt:

    def test_structured_schema(self, builder):
        system = builder.system_prompt(SCHEMA_STRUCTURED)
        assert '"serviceHandlingReview"' in system
        assert '"technicalSummary"' in system
        assert "EXACTLY ONCE" in system

    def test_legacy_schema_has_string_summary(self, builder):
        system = builder.system_prompt(SCHEMA_LEGACY)
        assert '"executiveSummary": "' in system
        assert '"technicalSummary"' not in system

    def test_layered_schema(self, builder):
        system = builder.system_prompt(SCHEMA_LAYERED)
        assert '"coreAnalysis"' in system
        assert '"operationalAnalysis"' in system
        assert '"technicalAnalysis"' in system

    @pytest.mark.parametrize("generation", [SCHEMA_LEGACY, SCHEMA_STRUCTURED, SCHEMA_LAYERED])
    def test_common_blocks(self, builder, generation):
        system = builder.system_prompt(generation)
        assert "signatureNotNeeded" in system
        assert "+/- 2 calendar days" in system
        assert '"supplied and fitted"' in system
        assert "never more than 10 sentences" in system

    def test_unknown_generation_rejected(self, builder):
        with pytest.raises(ValueError):
            builder.system_prompt("v9")


# ===========================================================================
# Class 2: User message
# ===========================================================================

class TestUserMessage:

    def test_names_unit_and_building(self, builder, records):
        message = builder.user_message(UNIT, BUILDING, records)
        assert message.startswith("Analyze the following data for the lift Lift A in Building Tour Horizon.")

    def test_sections_with_counts(self, builder, records):
        message = builder.user_message(UNIT, BUILDING, records)
        assert "**Visit Reports / Completed Tasks (2):**" in message
        assert "**Breakdowns / Downtimes (1):**" in message
        assert "**Maintenance Issues / Anomalies (1):**" in message
        assert "**Repair Requests / Parts Requests (1):**" in message

    def test_ongoing_downtime_and_translated_component(self, builder, records):
        message = builder.user_message(UNIT, BUILDING, records)
        assert '"endTime": "ONGOING"' in message
        assert '"component": "Landings Door Locks"' in message

    def test_empty_collections_noted(self, builder):
        message = builder.user_message(UNIT, BUILDING, UnitRecords())
        assert "No visit reports recorded in this period" in message
        assert "No breakdowns recorded in this period" in message
        assert "No maintenance issues recorded in this period" in message
        assert "No repair requests recorded in this period" in message

    def test_user_context_included_when_present(self, builder, records):
        assert "Additional Context from User: door noise" in builder.user_message(
            UNIT, BUILDING, records, user_context="  door noise  ")
        assert "Additional Context from User" not in builder.user_message(
            UNIT, BUILDING, records, user_context="   ")

    def test_linker_hints(self, builder, records):
        linkage = EventLinker().link(records.visits, records.downtimes, records.issues,
                                     records.parts_requests, as_of=date(2024, 3, 31))
        message = builder.user_message(UNIT, BUILDING, records, linkage)

        assert "**Pre-computed Links (rule-based):**" in message
        hints_json = message.split("**Pre-computed Links (rule-based):**\n", 1)[1].split("\n\nCallback", 1)[0]
        hints = json.loads(hints_json)
        assert hints["partsReplaced"][0]["linkedToVisit"] == "2024-03-10"
        assert "Callback Frequency: 0 callbacks in the period" in message
        assert "Time Since Last Maintenance: 30 days" in message


# ===========================================================================
# Class 3: Request
# ===========================================================================

class TestBuild:

    def test_build_request(self, builder, records):
        request = builder.build(UNIT, BUILDING, records, schema_generation=SCHEMA_LAYERED)

        assert request.temperature == 0.3
        assert request.schema_generation == SCHEMA_LAYERED
        assert request.metadata == {
            "unitId": "U-42",
            "counts": {"visits": 2, "breakdowns": 1, "maintenanceIssues": 1, "repairRequests": 1},
        }
        messages = request.messages()
        assert [m["role"] for m in messages] == ["system", "user"]
        assert '"coreAnalysis"' in messages[0]["content"]

    def test_build_is_pure(self, builder, records):
        first = builder.build(UNIT, BUILDING, records)
        second = builder.build(UNIT, BUILDING, records)
        assert first == second
