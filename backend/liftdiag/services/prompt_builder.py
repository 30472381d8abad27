"""
Prompt Builder — compiled unit history + linker hints -> GenerationRequest.

The system instruction is assembled from fixed blocks: role, data
documentation, the part-linking rules (restated so the generation step
re-derives them under the same one-part-one-visit rule), narrative
guidelines, and the output schema of the requested schema generation.
The user message carries the data as JSON. Pure data transform, no I/O.
"""
import json
from dataclasses import dataclass, field
from typing import Optional

from liftdiag.config import LLM_TEMPERATURE
from liftdiag.models.records import UnitRecords
from liftdiag.models.report_schema import SCHEMA_GENERATIONS, SCHEMA_LAYERED, SCHEMA_LEGACY, SCHEMA_STRUCTURED
from liftdiag.services.event_linker import ACTION_KEYWORDS, LinkageResult
from liftdiag.services.text_utils import translate_state_key


@dataclass
class GenerationRequest:
    system: str
    user: str
    temperature: float = LLM_TEMPERATURE
    schema_generation: str = SCHEMA_STRUCTURED
    metadata: dict = field(default_factory=dict)

    def messages(self) -> list:
        return [
            {"role": "system", "content": self.system},
            {"role": "user", "content": self.user},
        ]


# ── Instruction blocks ─────────────────────────────────────────────────────────

ROLE = (
    "You are a technical expert analyzing lift diagnostic data. Generate a structured diagnostic "
    "summary in JSON format. Be concise, actionable, and focus on patterns and likely causes. "
    "You may think step-by-step internally, but only output the final JSON object."
)

DATA_DOCUMENTATION = """**Data Structure Documentation:**

**Visit Reports / Completed Tasks:** tasks completed by engineers.
- date: when the task was finished; engineer: who completed it
- type: REGULAR (service visit), BREAKDOWN (callout), REPAIR, etc.
- endStatus: whether the device was working or not_working after the intervention
- globalComment: the engineer's free-text description of what was done/found. Read these carefully even
  when written in French or another language; they carry the key diagnostic information.
- fault: "Origin: x | Component: y | Problem: z" when recorded
- pdfReport: link to the detailed worksheet

**Breakdowns / Downtimes:** periods when the lift was not operational.
- startTime / endTime ("ONGOING" when the breakdown has not ended), durationMinutes
- origin, failureLocations, internalStatus, visitedDuringBreakdown
- publicComment / internalComment: accurate when written, may not reflect current reality

**Maintenance Issues / Anomalies:** issues raised during scheduled visits.
- component and problem are coded keys, not plain language
- question / answer: what the engineer was asked and answered; resolved: fixed during the visit

**IMPORTANT: Ignore any issues related to signatureNotNeeded. These are never actual issues even though
logged as such in the system. Do not include them in your analysis, patterns, or recommendations.**

**Repair Requests / Parts Requests:** requests raised by engineers for parts or technical support.
- repairRequestNumber (unique), requestedDate, description, status (DONE, IN_PROGRESS, CANCELLED, ...)
- stateStartDate: when the request entered its status (for DONE, the completion date)
- hasTechSupport, isChargeable, hasPartAttached, itemType, partName, partFamily, partSubFamily"""

LINKING_RULES = """**Linking Rules:**

**CRITICAL PART REPLACEMENT RULES:**
- Each unique part (identified by partName + repairRequestNumber) appears EXACTLY ONCE in the parts list
- Each part links to AT MOST ONE visit. One part -> one entry -> one visit maximum
- NEVER create multiple entries for the same part and NEVER link the same part to multiple visits

**Replacement Date Window:** for repair requests with status DONE and hasPartAttached true, the replacement
happened during a visit between requestedDate and stateStartDate (inclusive). Do NOT assume it equals stateStartDate.

**Visit Selection (once per part):** among visits completed inside the window select ONLY ONE, by priority:
  (1) REPAIR visit whose globalComment has replacement action words AND part type keywords
  (2) REPAIR visit without clear replacement indicators
  (3) other visit whose globalComment has replacement action words AND part type keywords
  (4) closest date to stateStartDate
Ties inside a priority level go to the visit closest to stateStartDate.
- Visit selected: replacementDate = visit completedDate, linkedToVisit = that date.
- No visit in the window: replacementDate = stateStartDate, linkedToVisit = "" (empty string).

**Comment Analysis:**
- Action words: {actions}
- Part type keywords: taken from part name, family and sub-family, with related terms
  (e.g. "UPS" and "battery" relate to "power supply"; "door contact" relates to "door" and "contact")
- If a comment has no action words and no part type keywords, do not link unless nothing better exists.
  Never link a part to a clearly unrelated visit.

**Parts <-> Breakdowns:** link the part to the most recent breakdown on the same or related component that
ended within +/- 2 calendar days of the replacement date, or was still ongoing at that date.

**Component Derivation (priority):** (1) part name keywords ("door contact", "roller", "controller"),
(2) part family / sub-family, (3) linked breakdown failureLocations or maintenance issue component.

**Breakdowns <-> Visits:** visits dated between a breakdown's start and end.
**Maintenance Issues <-> Visits:** visits on the same date or within 1 day.

**Patterns:** group events by component, problem type, origin, and recurring time interval. Only report
patterns with 2 or more occurrences, each with root cause, impact, escalation path and correlation.

**Pre-computed links:** the user message includes links and candidate patterns already derived with these
rules. Use them unless the comments clearly contradict them.

**MANDATORY FINAL VALIDATION:** before returning, count each (partName + repairRequestNumber). If any part
appears more than once, keep only the entry with the highest priority visit link and delete the others."""

NARRATIVE_GUIDELINES = """**Narrative Guidelines:**
- Length scales with the amount of activity: typically 2-3 sentences, 5-6 when there are many events,
  never more than 10 sentences.
- Be specific, dated and technical: name the actual problems, components, parameters, parts replaced,
  engineers involved and resolution status. Never write vague text such as "some issues were addressed".
- Present events in strict chronological order (earliest to latest).
- Only provide recommendations when there are clear patterns or obvious next steps; do not make things up.
- Hypotheses must reference at least two concrete dated events or part replacements.
- Set confidenceLevel from data quality and pattern strength."""

_PARTS_SCHEMA = """  "partsReplaced": [
    {
      "partName": "Name of the part",
      "partFamily": "Family category",
      "partSubFamily": "Sub-family category",
      "replacementDate": "YYYY-MM-DD",
      "repairRequestNumber": "Request number",
      "component": "Derived component",
      "linkedToVisit": "Date of the ONE linked visit, or empty",
      "linkedToBreakdown": "Breakdown ID, or empty"
    }
  ],
  "timeline": [{"date": "YYYY-MM-DD", "type": "visit|fault|alert|part", "description": "..."}],
  "repeatedPatterns": [
    {
      "pattern": "Description", "frequency": 2, "examples": ["dated example"], "relatedIssues": [],
      "summary": "3-4 line narrative", "rootCause": "...", "impact": "...",
      "escalationPath": "...", "correlation": "..."
    }
  ],"""

_TECHNICAL_SCHEMA = """  "technicalSummary": {
    "overview": "2-sentence overview of all patterns",
    "patternDetails": [
      {
        "patternName": "Matches a repeatedPatterns entry",
        "verdict": "One decisive sentence: root cause + consequence + what happens if nothing is done",
        "quantifiedImpact": {
          "rootCause": "...", "breakdownCount": 0, "timeSpan": "...", "downtimeHours": "...",
          "downtimePerEvent": "...", "riskLevel": "low|medium|high", "riskRationale": "..."
        },
        "driverTree": "Cause -> Effect chain starting from a specific component",
        "actionableRecommendations": [
          {"action": "Specific technical action", "timeframe": "immediate|within_24h|within_week|next_service",
           "owner": "technician|engineer|specialist", "expectedOutcome": "..."}
        ],
        "resolutionProbability": {"probability": "e.g. 50-60%", "escalationPath": "..."}
      }
    ]
  },"""

_TAIL_SCHEMA = """  "hypotheses": [{"category": "...", "likelihood": "low|medium|high", "reasoning": "..."}],
  "suggestedChecks": ["Specific, actionable inspection step"],
  "confidenceLevel": "low|medium|high"
}"""

OUTPUT_SCHEMAS = {
    SCHEMA_LEGACY: "**Output Format:**\n{\n"
    + '  "executiveSummary": "Concise, specific, dated summary of the events and current status",\n'
    + _PARTS_SCHEMA + "\n" + _TAIL_SCHEMA,
    SCHEMA_STRUCTURED: "**Output Format:**\n{\n"
    + """  "executiveSummary": {
    "overview": "1-2 sentences: issues experienced and primary components affected",
    "summaryOfEvents": "Chronological narrative with dates, engineers, actions, parts and findings",
    "currentSituation": "2-3 sentences: current status, what is resolved, what remains, next steps",
    "serviceHandlingReview": "INTERNAL ONLY, 2-4 sentences, never omitted: process-level gaps in how the issue was handled (late escalation, temporary fixes, contradicted diagnostics). Do not name individuals. If handling was appropriate, say so."
  },
  "finalExecSummary": "2-3 sentences maximum synthesizing the operational summary and technical patterns",
"""
    + _PARTS_SCHEMA + "\n" + _TECHNICAL_SCHEMA + "\n" + _TAIL_SCHEMA
    + "\n\ntechnicalSummary is MANDATORY whenever repeatedPatterns is not empty: one patternDetails entry per pattern.",
    SCHEMA_LAYERED: """**Output Format:** three layers; every operational and technical statement references eventIds from coreAnalysis.
{
  "coreAnalysis": {
    "timeline": [{"eventId": "evt_001", "date": "YYYY-MM-DD", "type": "visit|breakdown|maintenance_issue|part_replacement",
                  "description": "...", "engineerName": "...", "linkedPartIds": [], "linkedBreakdownId": "", "causality": "..."}],
    "linkedParts": [{"partId": "part_001", "partName": "...", "partFamily": "...", "partSubFamily": "...", "component": "...",
                     "replacementDate": "YYYY-MM-DD", "repairRequestNumber": "...", "linkedVisitEventId": "evt_...",
                     "linkedBreakdownEventId": "evt_...", "confidence": "high|medium|low", "linkingReason": "..."}],
    "patterns": [{"patternId": "pat_001", "description": "...", "frequency": 2, "evidenceEventIds": [], "component": "...",
                  "rootCause": "...", "impact": "...", "escalationPath": "...", "correlation": "..."}],
    "components": [{"componentName": "...", "issueEventIds": [], "patternIds": [], "breakdownCount": 0, "maintenanceIssueCount": 0}]
  },
  "operationalAnalysis": {
    "executiveSummary": "Specific, dated summary", "customerSummary": "3-4 plain-language sentences",
    "narrativeTimeline": [{"date": "...", "event": "...", "description": "...", "evidenceEventIds": []}],
    "actionLog": [{"date": "...", "action": "...", "performedBy": "...", "outcome": "...", "evidenceEventIds": []}],
    "currentStatus": {"status": "resolved|monitoring|requires_attention|critical", "summary": "...", "nextSteps": [], "evidenceEventIds": []}
  },
  "technicalAnalysis": {
    "executiveSummary": "1-2 sentence technical verdict",
    "rootCauseAssessment": {
      "mostLikelyChain": {"rootCause": "...", "confidence": "85%", "causeEffectChain": "Root -> ... -> consequence", "supportingEvidence": []},
      "alternativeCauses": [{"cause": "...", "confidence": "...", "reasoning": "...", "evidenceEventIds": []}]
    },
    "recommendedActions": [{"priority": 1, "action": "...", "timeframe": "immediate|within_24h|within_week|next_service",
                            "owner": "technician|engineer|specialist|management", "justification": "...", "evidenceEventIds": []}],
    "expectedOutcome": {"behaviorChange": "...", "successProbability": "...", "verificationMethod": "...", "escalationPath": "..."},
    "confidenceLevel": "low|medium|high"
  }
}""",
}


# ── Builder ────────────────────────────────────────────────────────────────────

def _section(title: str, rows: list, empty_note: str) -> str:
    header = f"**{title} ({len(rows)}):**"
    if not rows:
        return f"{header}\n{empty_note}"
    return f"{header}\n{json.dumps(rows, indent=2, ensure_ascii=False, default=str)}"


class PromptBuilder:
    """Builds the system + user messages for one diagnostic generation."""

    def __init__(self, temperature: float = LLM_TEMPERATURE):
        self.temperature = temperature

    def system_prompt(self, schema_generation: str = SCHEMA_STRUCTURED) -> str:
        if schema_generation not in SCHEMA_GENERATIONS:
            raise ValueError(f"Unknown schema generation '{schema_generation}', expected one of {SCHEMA_GENERATIONS}")
        actions = ", ".join(f'"{k}"' for k in ACTION_KEYWORDS)
        return "\n\n".join([
            ROLE,
            DATA_DOCUMENTATION,
            LINKING_RULES.format(actions=actions),
            NARRATIVE_GUIDELINES,
            OUTPUT_SCHEMAS[schema_generation],
        ])

    def user_message(
        self,
        unit: dict,
        building: dict,
        records: UnitRecords,
        linkage: Optional[LinkageResult] = None,
        user_context: Optional[str] = None,
    ) -> str:
        unit_name = unit.get("name") or unit.get("id", "")
        building_name = building.get("name") or building.get("id", "")
        payload = records.to_payload()
        for issue in payload["maintenanceIssues"]:
            issue["component"] = translate_state_key(issue["component"])

        parts = [
            f"Analyze the following data for the lift {unit_name} in Building {building_name}.",
            f'When writing summaries, refer to the unit as "the lift {unit_name}" or "{unit_name}", '
            f'never "at Unit {unit_name}".',
        ]
        if user_context and user_context.strip():
            parts.append(f"Additional Context from User: {user_context.strip()}")

        parts.extend([
            _section("Visit Reports / Completed Tasks", payload["visitReports"], "No visit reports recorded in this period"),
            _section("Breakdowns / Downtimes", payload["breakdowns"], "No breakdowns recorded in this period"),
            _section("Maintenance Issues / Anomalies", payload["maintenanceIssues"], "No maintenance issues recorded in this period"),
            _section("Repair Requests / Parts Requests", payload["repairRequests"], "No repair requests recorded in this period"),
        ])

        if linkage is not None:
            hints = linkage.to_hints()
            parts.append(
                "**Pre-computed Links (rule-based):**\n"
                + json.dumps(hints, indent=2, ensure_ascii=False, default=str)
            )
            parts.append(f"Callback Frequency: {linkage.callback_frequency} callbacks in the period")
            if linkage.days_since_last_maintenance is not None:
                parts.append(f"Time Since Last Maintenance: {linkage.days_since_last_maintenance} days")

        parts.append("Generate your analysis following the instructions and output format specified in the system prompt.")
        return "\n\n".join(parts)

    def build(
        self,
        unit: dict,
        building: dict,
        records: UnitRecords,
        linkage: Optional[LinkageResult] = None,
        user_context: Optional[str] = None,
        schema_generation: str = SCHEMA_STRUCTURED,
    ) -> GenerationRequest:
        return GenerationRequest(
            system=self.system_prompt(schema_generation),
            user=self.user_message(unit, building, records, linkage, user_context),
            temperature=self.temperature,
            schema_generation=schema_generation,
            metadata={"unitId": unit.get("id", ""), "counts": records.counts()},
        )
