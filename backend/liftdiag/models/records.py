"""
Typed maintenance records.

These dataclasses are the contract between RecordSource (which maps raw
analytics rows into them) and the linker / prompt builder. They are built once
per request and never mutated afterwards.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Optional

from liftdiag.services.text_utils import extract_preferred_locale, normalize_key

VISIT_REPORT_URL_TEMPLATE = os.getenv("VISIT_REPORT_URL_TEMPLATE", "")

# Task types with special meaning to the linker (matched case-insensitively)
TASK_TYPE_REGULAR = "REGULAR"
TASK_TYPE_BREAKDOWN = "BREAKDOWN"
TASK_TYPE_REPAIR = "REPAIR"

STATUS_DONE = "DONE"

# problem_key values that are logged as issues but never are
SIGNATURE_NOT_NEEDED_KEYS = {"signaturenotneeded"}


# ── Row parsing helpers ────────────────────────────────────────────────────────

def pick(row: dict, *keys: str, default: Any = None) -> Any:
    """First present, non-empty value among `keys`."""
    for key in keys:
        value = row.get(key)
        if value is not None and value != "":
            return value
    return default


def parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        pass
    for fmt in ("%Y-%m-%d %H:%M:%S", "%Y-%m-%d %H:%M", "%d/%m/%Y", "%Y/%m/%d"):
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def utc_naive(value: datetime) -> datetime:
    """Aware values converted to UTC, then made naive; naive values are taken as UTC already."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def parse_date(value: Any) -> Optional[date]:
    parsed = parse_datetime(value)
    return parsed.date() if parsed else None


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    if isinstance(value, (int, float)):
        return value != 0
    return str(value).strip().lower() in ("yes", "true", "1", "y")


def parse_int(value: Any, default: int = 0) -> int:
    try:
        return max(0, int(float(value)))
    except (TypeError, ValueError):
        return default


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None


# ── Records ────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class VisitRecord:
    completed_date: Optional[date]
    engineer_name: str = ""
    task_type: str = ""
    end_status: str = ""
    comment: str = ""
    fault_origin: str = ""
    component_impacted: str = ""
    problem: str = ""
    task_id: str = ""
    unit_id: str = ""

    @property
    def is_repair(self) -> bool:
        return self.task_type.strip().upper() == TASK_TYPE_REPAIR

    @property
    def report_url(self) -> str:
        if not self.task_id or not VISIT_REPORT_URL_TEMPLATE:
            return ""
        return VISIT_REPORT_URL_TEMPLATE.format(task_id=self.task_id)

    @classmethod
    def from_row(cls, row: dict) -> "VisitRecord":
        return cls(
            completed_date=parse_date(pick(row, "completedDate", "task.completed_date", "date")),
            engineer_name=_text(pick(row, "fullName", "engineer", "engineer.full_name")),
            task_type=_text(pick(row, "type", "taskType", "task.type")),
            end_status=_text(pick(row, "endStatus", "task.end_status")),
            comment=_text(pick(row, "globalComment", "task.global_comment", "comment")),
            fault_origin=_text(pick(row, "origin", "task.origin")),
            component_impacted=_text(pick(row, "componentImpacted", "task.component_impacted")),
            problem=_text(pick(row, "problem", "task.problem")),
            task_id=_text(pick(row, "taskId", "task.id", "id")),
            unit_id=_text(pick(row, "unitId", "device.id", "unit.id")),
        )

    def to_prompt_dict(self) -> dict:
        fault = [
            f"{label}: {value}"
            for label, value in (
                ("Origin", self.fault_origin),
                ("Component", self.component_impacted),
                ("Problem", self.problem),
            )
            if value
        ]
        return {
            "date": _iso(self.completed_date),
            "engineer": self.engineer_name,
            "type": self.task_type,
            "endStatus": self.end_status,
            "globalComment": self.comment,
            "fault": " | ".join(fault) if fault else None,
            "pdfReport": self.report_url or None,
        }


@dataclass(frozen=True)
class DowntimeRecord:
    id: str
    start_time: Optional[datetime]
    end_time: Optional[datetime] = None
    duration_minutes: int = 0
    origin: str = ""
    failure_locations: str = ""
    internal_comment: str = ""
    internal_status: str = ""
    visited_during_downtime: bool = False
    public_comment: str = ""
    unit_id: str = ""

    @property
    def is_ongoing(self) -> bool:
        return self.end_time is None

    @classmethod
    def from_row(cls, row: dict) -> "DowntimeRecord":
        locations = pick(row, "failureLocations", "breakdown.failure_locations", default="")
        if isinstance(locations, (list, tuple)):
            locations = ", ".join(str(loc) for loc in locations if loc)
        return cls(
            id=_text(pick(row, "breakdownId", "breakdown.id", "id")),
            start_time=parse_datetime(pick(row, "startTime", "breakdown.start_time")),
            end_time=parse_datetime(pick(row, "endTime", "breakdown.end_time")),
            duration_minutes=parse_int(pick(row, "minutesDuration", "durationMinutes", "breakdown.minutes_duration")),
            origin=_text(pick(row, "origin", "breakdown.origin")),
            failure_locations=_text(locations),
            internal_comment=_text(pick(row, "internalComment", "breakdown.internal_comment")),
            internal_status=_text(pick(row, "internalStatus", "breakdown.internal_status")),
            visited_during_downtime=parse_bool(pick(row, "visitedDuringBreakdown", "breakdown.visited")),
            public_comment=_text(pick(row, "publicComment", "breakdown.public_comment")),
            unit_id=_text(pick(row, "unitId", "device.id", "unit.id")),
        )

    def to_prompt_dict(self) -> dict:
        return {
            "breakdownId": self.id,
            "startTime": self.start_time.isoformat() if self.start_time else None,
            "endTime": self.end_time.isoformat() if self.end_time else "ONGOING",
            "durationMinutes": self.duration_minutes,
            "origin": self.origin,
            "failureLocations": self.failure_locations,
            "internalStatus": self.internal_status,
            "visitedDuringBreakdown": self.visited_during_downtime,
            "publicComment": self.public_comment,
            "internalComment": self.internal_comment,
        }


@dataclass(frozen=True)
class MaintenanceIssueRecord:
    task_id: str
    completed_date: Optional[date]
    task_type: str = ""
    component_key: str = ""
    problem_key: str = ""
    question: str = ""
    answer: str = ""
    resolved: bool = False
    unit_id: str = ""

    @property
    def is_signature_not_needed(self) -> bool:
        return normalize_key(self.problem_key) in SIGNATURE_NOT_NEEDED_KEYS

    @classmethod
    def from_row(cls, row: dict) -> "MaintenanceIssueRecord":
        follow_up = _text(pick(row, "followUp", "issue.follow_up")).lower()
        return cls(
            task_id=_text(pick(row, "taskId", "task.id")),
            completed_date=parse_date(pick(row, "completedDate", "task.completed_date")),
            task_type=_text(pick(row, "type", "task.type")),
            component_key=_text(pick(row, "stateKey", "issue.state_key")),
            problem_key=_text(pick(row, "problemKey", "issue.problem_key")),
            question=_text(pick(row, "question", "issue.question")),
            answer=_text(pick(row, "answer", "issue.answer")),
            resolved="resolved" in follow_up or "yes" in follow_up,
            unit_id=_text(pick(row, "unitId", "device.id", "unit.id")),
        )

    def to_prompt_dict(self) -> dict:
        return {
            "completedDate": _iso(self.completed_date),
            "taskType": self.task_type,
            "component": self.component_key,
            "problem": self.problem_key,
            "question": self.question,
            "answer": self.answer,
            "resolved": self.resolved,
        }


@dataclass(frozen=True)
class PartsRequestRecord:
    request_number: str
    requested_date: Optional[date]
    description: str = ""
    status: str = ""
    state_start_date: Optional[date] = None
    has_tech_support: bool = False
    is_chargeable: bool = False
    has_part_attached: bool = False
    item_type: str = ""
    part_name: str = ""
    part_family: str = ""
    part_sub_family: str = ""
    unit_id: str = ""

    @property
    def is_completed_replacement(self) -> bool:
        return self.status.strip().upper() == STATUS_DONE and self.has_part_attached

    @classmethod
    def from_row(cls, row: dict) -> "PartsRequestRecord":
        return cls(
            request_number=_text(pick(row, "repairRequestNumber", "repair_request.number", "requestNumber")),
            requested_date=parse_date(pick(row, "requestedDate", "repair_request.requested_date")),
            description=_text(pick(row, "description", "repair_request.description")),
            status=_text(pick(row, "status", "repair_request.status")).upper(),
            state_start_date=parse_date(pick(row, "stateStartDate", "repair_request.state_start_date")),
            has_tech_support=parse_bool(pick(row, "hasTechSupport", "repair_request.has_tech_support")),
            is_chargeable=parse_bool(pick(row, "isChargeable", "repair_request.is_chargeable")),
            has_part_attached=parse_bool(pick(row, "hasPartAttached", "repair_request.has_part_attached")),
            item_type=_text(pick(row, "itemType", "repair_request.item_type")),
            part_name=extract_preferred_locale(pick(row, "partName", "part.name", default="")),
            part_family=_text(pick(row, "partFamily", "part.family")),
            part_sub_family=_text(pick(row, "partSubFamily", "part.sub_family")),
            unit_id=_text(pick(row, "unitId", "device.id", "unit.id")),
        )

    def to_prompt_dict(self) -> dict:
        return {
            "repairRequestNumber": self.request_number,
            "requestedDate": _iso(self.requested_date),
            "description": self.description,
            "status": self.status,
            "stateStartDate": _iso(self.state_start_date),
            "hasTechSupport": self.has_tech_support,
            "isChargeable": self.is_chargeable,
            "hasPartAttached": self.has_part_attached,
            "itemType": self.item_type,
            "partName": self.part_name,
            "partFamily": self.part_family,
            "partSubFamily": self.part_sub_family,
        }


# ── Derived ────────────────────────────────────────────────────────────────────

@dataclass
class PartLinkage:
    """One replaced part, identified by (part_name, request_number)."""
    part_name: str
    request_number: str
    replacement_date: Optional[date]
    part_family: str = ""
    part_sub_family: str = ""
    linked_visit_date: Optional[date] = None
    linked_visit_task_id: str = ""
    linked_downtime_id: str = ""
    component: str = ""
    confidence: str = "low"      # high | medium | low
    linking_reason: str = ""

    @property
    def key(self) -> tuple:
        return (self.part_name, self.request_number)

    def to_dict(self) -> dict:
        """Canonical partsReplaced entry."""
        return {
            "partName": self.part_name,
            "partFamily": self.part_family,
            "partSubFamily": self.part_sub_family,
            "replacementDate": _iso(self.replacement_date) or "",
            "repairRequestNumber": self.request_number,
            "component": self.component,
            "linkedToVisit": _iso(self.linked_visit_date) or "",
            "linkedToBreakdown": self.linked_downtime_id,
        }


@dataclass
class UnitRecords:
    """The four record collections compiled for one unit and window."""
    visits: list = field(default_factory=list)
    downtimes: list = field(default_factory=list)
    issues: list = field(default_factory=list)
    parts_requests: list = field(default_factory=list)

    def counts(self) -> dict:
        return {
            "visits": len(self.visits),
            "breakdowns": len(self.downtimes),
            "maintenanceIssues": len(self.issues),
            "repairRequests": len(self.parts_requests),
        }

    def to_payload(self) -> dict:
        return {
            "visitReports": [v.to_prompt_dict() for v in self.visits],
            "breakdowns": [d.to_prompt_dict() for d in self.downtimes],
            "maintenanceIssues": [i.to_prompt_dict() for i in self.issues],
            "repairRequests": [r.to_prompt_dict() for r in self.parts_requests],
        }
