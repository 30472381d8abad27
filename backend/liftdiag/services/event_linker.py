"""
Event Linker — correlates replaced parts with the visit and downtime that
explain them, and groups recurring events into candidate patterns.

Pipeline (pure, no I/O, no hidden state):
  1. Candidate window [requested_date, state_start_date] per completed part request
  2. Confidence-ranked visit selection (exactly one or none)
  3. Downtime link (±2 calendar days, or ongoing at the replacement date)
  4. Component derivation (part name keyword → family literal → linked records)
  5. Uniqueness pass keyed by (part name, request number)
  6. Pattern grouping (≥2 occurrences) for the prompt context

The uniqueness pass (deduplicate_parts) is also applied by the
ResponseNormalizer to parts lists produced by the generation step.
"""
import logging
import re
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Iterable, List, Optional

from liftdiag.models.records import (
    DowntimeRecord,
    MaintenanceIssueRecord,
    PartLinkage,
    PartsRequestRecord,
    TASK_TYPE_BREAKDOWN,
    TASK_TYPE_REGULAR,
    VisitRecord,
    utc_naive,
)
from liftdiag.services.text_utils import normalize_key, tokenize, translate_state_key

logger = logging.getLogger("liftdiag-linker")

# ── Vocabularies ───────────────────────────────────────────────────────────────

# Replacement-indicating verbs. Compound forms are listed for reporting; every
# compound contains one of the single words, so token matching covers them.
ACTION_KEYWORDS = (
    "supplied and fitted",
    "fitted new",
    "installed new",
    "replaced",
    "replacement",
    "replace",
    "fitted",
    "supplied",
    "installed",
    "changed",
    "swapped",
)
_ACTION_RE = re.compile(r"\b(" + "|".join(re.escape(k) for k in ACTION_KEYWORDS) + r")\b")

# Related-term expansion for part-type keywords
RELATED_TERMS = {
    "power": {"ups", "battery", "psu", "supply"},
    "supply": {"ups", "battery", "psu", "power"},
    "psu": {"power", "supply", "ups", "battery"},
    "ups": {"battery", "power", "supply"},
    "battery": {"ups", "power", "supply"},
    "door": {"landing", "car"},
    "contact": {"lock", "door"},
    "lock": {"contact", "latch"},
    "roller": {"wheel", "hanger"},
    "controller": {"control", "board", "pcb", "inverter", "drive"},
    "board": {"pcb", "controller", "card"},
    "pcb": {"board", "controller", "card"},
    "inverter": {"drive", "vvvf", "controller"},
    "motor": {"operator", "drive"},
    "operator": {"motor"},
    "sensor": {"photocell", "detector", "curtain", "cell"},
    "photocell": {"sensor", "curtain"},
    "rope": {"cable", "suspension"},
    "valve": {"hydraulic"},
    "shoe": {"guide", "plate"},
    "button": {"push", "pushbutton", "keypad"},
}

# Tokens that say nothing about the part type
PART_STOPWORDS = {
    "the", "and", "for", "with", "new", "kit", "set", "assembly", "assy", "part",
    "parts", "model", "type", "unit", "box", "pack", "piece", "pcs", "std",
    "standard", "other", "misc", "various", "external", "item",
}

# Ordered: multi-word phrases before the single words they contain
COMPONENT_KEYWORDS = (
    ("door contact", "Door Contact"),
    ("door lock", "Door Lock"),
    ("landing door", "Landing Door"),
    ("car door", "Car Door"),
    ("door operator", "Door Operator"),
    ("door motor", "Door Operator"),
    ("safety edge", "Door Safety Edge"),
    ("light curtain", "Door Safety Edge"),
    ("shoe plate", "Door Shoe Plate"),
    ("guide shoe", "Guide Shoes"),
    ("power supply", "Power Supply"),
    ("roller", "Door Roller"),
    ("controller", "Controller"),
    ("contact", "Door Contact"),
    ("lock", "Door Lock"),
    ("ups", "Power Supply"),
    ("battery", "Power Supply"),
    ("inverter", "Drive / Inverter"),
    ("encoder", "Encoder"),
    ("motor", "Motor"),
    ("brake", "Brake"),
    ("sensor", "Sensor"),
    ("photocell", "Sensor"),
    ("rope", "Suspension Ropes"),
    ("valve", "Hydraulic Valve"),
    ("pump", "Hydraulic Pump"),
    ("pulley", "Pulley"),
    ("button", "Push Buttons"),
    ("display", "Display"),
    ("intercom", "Emergency Communication"),
    ("board", "Controller"),
    ("door", "Door"),
)

DOWNTIME_LINK_TOLERANCE_DAYS = 2
ISSUE_VISIT_TOLERANCE_DAYS = 1
MIN_PATTERN_FREQUENCY = 2

# Visit selection tiers (lower is better)
TIER_REPAIR_WITH_KEYWORDS = 1
TIER_REPAIR = 2
TIER_KEYWORDS = 3
TIER_CLOSEST = 4

_TIER_CONFIDENCE = {
    TIER_REPAIR_WITH_KEYWORDS: "high",
    TIER_REPAIR: "medium",
    TIER_KEYWORDS: "medium",
    TIER_CLOSEST: "low",
}
_TIER_REASON = {
    TIER_REPAIR_WITH_KEYWORDS: "REPAIR visit with replacement action and part keywords",
    TIER_REPAIR: "REPAIR visit in request window",
    TIER_KEYWORDS: "visit comment has replacement action and part keywords",
    TIER_CLOSEST: "closest keyword-bearing visit to request completion",
}


# ── Keyword helpers ────────────────────────────────────────────────────────────

def _stem(token: str) -> str:
    if len(token) > 3 and token.endswith("ies"):
        return token[:-3] + "y"
    if len(token) > 3 and token.endswith("s") and not token.endswith("ss"):
        return token[:-1]
    return token


def action_keywords_in(comment: str) -> list:
    """Replacement verbs found in a free-text comment, in order of appearance."""
    return _ACTION_RE.findall((comment or "").lower())


def part_type_keywords(part_name: str, part_family: str = "", part_sub_family: str = "") -> set:
    """
    Keywords describing the part type, expanded with related terms.

    Codes (tokens containing digits) and generic words are dropped:
    'Osram Power supply TFOS02550' -> {power, supply, ups, battery, psu, osram}.
    """
    keywords = set()
    for token in tokenize(part_name, part_family, part_sub_family):
        if len(token) < 3 or any(ch.isdigit() for ch in token) or token in PART_STOPWORDS:
            continue
        stem = _stem(token)
        keywords.add(stem)
        keywords.update(RELATED_TERMS.get(stem, ()))
    return keywords


def part_keywords_in(comment: str, keywords: set) -> set:
    if not keywords:
        return set()
    return {_stem(t) for t in tokenize(comment)} & keywords


def derive_component_from_name(part_name: str) -> str:
    """First component keyword found in the part name, phrases before single words."""
    padded = " " + " ".join(_stem(t) for t in re.findall(r"[a-z0-9]+", (part_name or "").lower())) + " "
    for phrase, component in COMPONENT_KEYWORDS:
        if f" {phrase} " in padded:
            return component
    return ""


# ── Uniqueness pass ────────────────────────────────────────────────────────────

@dataclass
class DedupResult:
    parts: list
    removed_count: int = 0
    duplicates: List[str] = field(default_factory=list)


def _part_field(part: Any, attr: str, key: str) -> Any:
    if isinstance(part, dict):
        return part.get(key)
    return getattr(part, attr, None)


def part_key(part: Any) -> tuple:
    name = _part_field(part, "part_name", "partName") or ""
    number = _part_field(part, "request_number", "repairRequestNumber") or ""
    return (str(name), str(number))


def has_visit_link(part: Any) -> bool:
    link = _part_field(part, "linked_visit_date", "linkedToVisit")
    return bool(link) and str(link).strip() != ""


def deduplicate_parts(parts: Iterable[Any]) -> DedupResult:
    """
    Keep one entry per (part name, request number).

    Within a group the entry carrying a visit link wins over one without;
    otherwise the first encountered is kept. Output order follows the first
    occurrence of each key. Works on PartLinkage objects and on canonical
    partsReplaced dicts. Idempotent.
    """
    parts = list(parts or [])
    seen: "OrderedDict[tuple, Any]" = OrderedDict()
    duplicates = []
    for part in parts:
        key = part_key(part)
        if key not in seen:
            seen[key] = part
            continue
        duplicates.append(f"{key[0]} (RR: {key[1]})")
        if not has_visit_link(seen[key]) and has_visit_link(part):
            seen[key] = part
    result = DedupResult(
        parts=list(seen.values()),
        removed_count=len(parts) - len(seen),
        duplicates=duplicates,
    )
    if result.removed_count:
        logger.warning(
            f"Removed {result.removed_count} duplicate part entries: {', '.join(duplicates)}"
        )
    return result


# ── Patterns ───────────────────────────────────────────────────────────────────

@dataclass
class RepeatedPattern:
    dimension: str          # component | problem | origin | interval
    label: str
    frequency: int
    examples: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "dimension": self.dimension,
            "pattern": self.label,
            "frequency": self.frequency,
            "examples": list(self.examples),
        }


@dataclass
class LinkageResult:
    parts: List[PartLinkage] = field(default_factory=list)
    removed_duplicates: int = 0
    downtime_visits: dict = field(default_factory=dict)   # downtime id -> [visit ISO dates]
    issue_visits: dict = field(default_factory=dict)      # issue task id -> [visit ISO dates]
    patterns: List[RepeatedPattern] = field(default_factory=list)
    callback_frequency: int = 0
    days_since_last_maintenance: Optional[int] = None

    def parts_replaced(self) -> list:
        return [p.to_dict() for p in self.parts]

    def to_hints(self) -> dict:
        """Prompt-ready summary of everything the linker derived."""
        return {
            "partsReplaced": self.parts_replaced(),
            "breakdownVisits": self.downtime_visits,
            "maintenanceIssueVisits": self.issue_visits,
            "candidatePatterns": [p.to_dict() for p in self.patterns],
        }


# ── Engine ─────────────────────────────────────────────────────────────────────

class EventLinker:
    """Rule-based correlation of visits, downtimes, issues and part requests."""

    def __init__(self, downtime_tolerance_days: int = DOWNTIME_LINK_TOLERANCE_DAYS):
        self.downtime_tolerance = timedelta(days=downtime_tolerance_days)

    def link(
        self,
        visits: List[VisitRecord],
        downtimes: List[DowntimeRecord],
        issues: List[MaintenanceIssueRecord],
        parts_requests: List[PartsRequestRecord],
        as_of: Optional[date] = None,
    ) -> LinkageResult:
        visits = list(visits or [])
        downtimes = list(downtimes or [])
        issues = [i for i in (issues or []) if not i.is_signature_not_needed]
        parts_requests = list(parts_requests or [])

        raw_parts = [
            self.link_part(request, visits, downtimes, issues)
            for request in parts_requests
            if request.is_completed_replacement
        ]
        dedup = deduplicate_parts(raw_parts)

        result = LinkageResult(
            parts=dedup.parts,
            removed_duplicates=dedup.removed_count,
            downtime_visits=self.visits_during_downtimes(downtimes, visits, as_of),
            issue_visits=self.visits_near_issues(issues, visits),
            patterns=self.detect_patterns(visits, downtimes, issues),
            callback_frequency=self.callback_frequency(visits),
            days_since_last_maintenance=self.days_since_last_maintenance(visits, as_of),
        )
        logger.info(
            f"Linked {len(result.parts)} parts "
            f"({sum(1 for p in result.parts if p.linked_visit_date)} to visits, "
            f"{sum(1 for p in result.parts if p.linked_downtime_id)} to breakdowns), "
            f"{len(result.patterns)} candidate patterns"
        )
        return result

    # ── Steps 1-4: one part ──────────────────────────────────────────────────

    def link_part(
        self,
        request: PartsRequestRecord,
        visits: List[VisitRecord],
        downtimes: List[DowntimeRecord],
        issues: List[MaintenanceIssueRecord],
    ) -> PartLinkage:
        linkage = PartLinkage(
            part_name=request.part_name,
            request_number=request.request_number,
            replacement_date=request.state_start_date or request.requested_date,
            part_family=request.part_family,
            part_sub_family=request.part_sub_family,
        )

        visit, tier = self.select_visit(request, visits)
        if visit is not None:
            linkage.replacement_date = visit.completed_date
            linkage.linked_visit_date = visit.completed_date
            linkage.linked_visit_task_id = visit.task_id
            linkage.confidence = _TIER_CONFIDENCE[tier]
            linkage.linking_reason = _TIER_REASON[tier]
        else:
            linkage.linking_reason = "no matching visit in request window"

        linkage.component = (
            derive_component_from_name(request.part_name)
            or request.part_family
            or request.part_sub_family
        )

        downtime = self.select_downtime(linkage, request, downtimes)
        if downtime is not None:
            linkage.linked_downtime_id = downtime.id

        if not linkage.component:
            linkage.component = self._component_from_linked_records(linkage, downtime, issues)
        return linkage

    def candidate_window(self, request: PartsRequestRecord) -> Optional[tuple]:
        start = request.requested_date or request.state_start_date
        end = request.state_start_date or request.requested_date
        if start is None or end is None:
            return None
        if start > end:
            logger.debug(f"RR {request.request_number}: requested date after state date, swapping window")
            start, end = end, start
        return start, end

    def visit_tier(self, visit: VisitRecord, keywords: set) -> Optional[int]:
        has_action = bool(action_keywords_in(visit.comment))
        has_part = bool(part_keywords_in(visit.comment, keywords))
        if visit.is_repair and has_action and has_part:
            return TIER_REPAIR_WITH_KEYWORDS
        if visit.is_repair:
            return TIER_REPAIR
        if has_action and has_part:
            return TIER_KEYWORDS
        if has_action or has_part:
            return TIER_CLOSEST
        return None

    def select_visit(self, request: PartsRequestRecord, visits: List[VisitRecord]) -> tuple:
        """Best visit inside the request window and its tier, or (None, None)."""
        window = self.candidate_window(request)
        if window is None:
            return None, None
        start, end = window
        anchor = request.state_start_date or end
        keywords = part_type_keywords(request.part_name, request.part_family, request.part_sub_family)

        ranked = []
        for index, visit in enumerate(visits):
            if visit.completed_date is None or not (start <= visit.completed_date <= end):
                continue
            tier = self.visit_tier(visit, keywords)
            if tier is None:
                continue
            distance = abs((anchor - visit.completed_date).days)
            ranked.append((tier, distance, index, visit))

        if not ranked:
            return None, None
        tier, _, _, best = min(ranked, key=lambda item: item[:3])
        return best, tier

    def select_downtime(
        self,
        linkage: PartLinkage,
        request: PartsRequestRecord,
        downtimes: List[DowntimeRecord],
    ) -> Optional[DowntimeRecord]:
        """Most recent related downtime ending within tolerance of, or ongoing at, the replacement."""
        replaced_on = linkage.replacement_date
        if replaced_on is None:
            return None
        related_terms = part_type_keywords(
            f"{request.part_name} {linkage.component}", request.part_family, request.part_sub_family
        )

        candidates = []
        for downtime in downtimes:
            if downtime.start_time is None:
                continue
            started = downtime.start_time.date()
            if downtime.is_ongoing:
                in_range = started <= replaced_on
            else:
                ended = downtime.end_time.date()
                in_range = (
                    abs((ended - replaced_on).days) <= self.downtime_tolerance.days
                    or started <= replaced_on <= ended
                )
            if not in_range or not self._downtime_related(downtime, related_terms):
                continue
            candidates.append(downtime)

        if not candidates:
            return None
        return max(candidates, key=lambda d: utc_naive(d.start_time))

    @staticmethod
    def _downtime_related(downtime: DowntimeRecord, terms: set) -> bool:
        location_tokens = {
            _stem(t) for t in tokenize(translate_state_key(downtime.failure_locations), downtime.origin)
        }
        return bool(location_tokens & terms)

    def _component_from_linked_records(
        self,
        linkage: PartLinkage,
        downtime: Optional[DowntimeRecord],
        issues: List[MaintenanceIssueRecord],
    ) -> str:
        if downtime is not None and downtime.failure_locations:
            return downtime.failure_locations
        if linkage.replacement_date is None:
            return ""
        for issue in issues:
            if issue.completed_date is None or not issue.component_key:
                continue
            if abs((issue.completed_date - linkage.replacement_date).days) <= ISSUE_VISIT_TOLERANCE_DAYS:
                return translate_state_key(issue.component_key)
        return ""

    # ── Cross-record links passed to the prompt ──────────────────────────────

    def visits_during_downtimes(
        self,
        downtimes: List[DowntimeRecord],
        visits: List[VisitRecord],
        as_of: Optional[date] = None,
    ) -> dict:
        links = {}
        horizon = as_of or date.max
        for downtime in downtimes:
            if downtime.start_time is None:
                continue
            started = downtime.start_time.date()
            ended = downtime.end_time.date() if downtime.end_time else horizon
            dates = sorted({
                v.completed_date.isoformat()
                for v in visits
                if v.completed_date and started <= v.completed_date <= ended
            })
            if dates:
                links[downtime.id] = dates
        return links

    def visits_near_issues(self, issues: List[MaintenanceIssueRecord], visits: List[VisitRecord]) -> dict:
        links = {}
        for issue in issues:
            if issue.completed_date is None:
                continue
            dates = sorted({
                v.completed_date.isoformat()
                for v in visits
                if v.completed_date
                and abs((v.completed_date - issue.completed_date).days) <= ISSUE_VISIT_TOLERANCE_DAYS
            })
            if dates:
                key = issue.task_id or issue.completed_date.isoformat()
                links[key] = sorted(set(links.get(key, [])) | set(dates))
        return links

    # ── Step 6: pattern grouping ─────────────────────────────────────────────

    def detect_patterns(
        self,
        visits: List[VisitRecord],
        downtimes: List[DowntimeRecord],
        issues: List[MaintenanceIssueRecord],
    ) -> List[RepeatedPattern]:
        issues = [i for i in issues if not i.is_signature_not_needed]
        groups: "OrderedDict[tuple, RepeatedPattern]" = OrderedDict()

        def add(dimension: str, label: str, example: str):
            label = (label or "").strip()
            if not label:
                return
            key = (dimension, normalize_key(label))
            if not key[1]:
                return
            pattern = groups.setdefault(key, RepeatedPattern(dimension=dimension, label=label, frequency=0))
            pattern.frequency += 1
            pattern.examples.append(example)

        for visit in visits:
            example = _visit_example(visit)
            add("component", visit.component_impacted, example)
            add("problem", visit.problem, example)
            add("origin", visit.fault_origin, example)
        for downtime in downtimes:
            example = _downtime_example(downtime)
            for location in _split_locations(downtime.failure_locations):
                add("component", location, example)
            add("origin", downtime.origin, example)
        for issue in issues:
            example = _issue_example(issue)
            add("component", translate_state_key(issue.component_key), example)
            add("problem", issue.problem_key, example)

        patterns = [p for p in groups.values() if p.frequency >= MIN_PATTERN_FREQUENCY]
        patterns.extend(self._interval_patterns(downtimes))
        patterns.sort(key=lambda p: (-p.frequency, p.dimension, p.label))
        return patterns

    def _interval_patterns(self, downtimes: List[DowntimeRecord]) -> List[RepeatedPattern]:
        starts = sorted(d.start_time.date() for d in downtimes if d.start_time is not None)
        buckets: "OrderedDict[int, RepeatedPattern]" = OrderedDict()
        for previous, current in zip(starts, starts[1:]):
            gap = (current - previous).days
            weeks = round(gap / 7)
            label = "Breakdowns recurring within a week" if weeks == 0 else (
                f"Breakdowns recurring roughly every {weeks} week{'s' if weeks > 1 else ''}"
            )
            pattern = buckets.setdefault(weeks, RepeatedPattern(dimension="interval", label=label, frequency=0))
            pattern.frequency += 1
            pattern.examples.append(f"{previous.isoformat()} → {current.isoformat()} ({gap} days)")
        return [p for p in buckets.values() if p.frequency >= MIN_PATTERN_FREQUENCY]

    # ── Summary metrics ──────────────────────────────────────────────────────

    @staticmethod
    def callback_frequency(visits: List[VisitRecord]) -> int:
        return sum(
            1 for v in visits
            if "callout" in v.task_type.lower() or TASK_TYPE_BREAKDOWN.lower() in v.task_type.lower()
        )

    @staticmethod
    def days_since_last_maintenance(visits: List[VisitRecord], as_of: Optional[date] = None) -> Optional[int]:
        dates = [
            v.completed_date for v in visits
            if v.completed_date
            and (TASK_TYPE_REGULAR.lower() in v.task_type.lower() or "maintenance" in v.task_type.lower())
        ]
        if not dates:
            return None
        return ((as_of or date.today()) - max(dates)).days


def _split_locations(locations: str) -> list:
    return [loc.strip() for loc in re.split(r"[,;|]", locations or "") if loc.strip()]


def _visit_example(visit: VisitRecord) -> str:
    when = visit.completed_date.isoformat() if visit.completed_date else "undated"
    who = f" ({visit.engineer_name})" if visit.engineer_name else ""
    comment = visit.comment[:160]
    return f"{when} {visit.task_type or 'visit'}{who}: {comment}".strip()


def _downtime_example(downtime: DowntimeRecord) -> str:
    when = downtime.start_time.date().isoformat() if downtime.start_time else "undated"
    status = "ongoing" if downtime.is_ongoing else f"{downtime.duration_minutes} min"
    return f"{when} breakdown {downtime.id} ({status}): {downtime.origin} / {downtime.failure_locations}"


def _issue_example(issue: MaintenanceIssueRecord) -> str:
    when = issue.completed_date.isoformat() if issue.completed_date else "undated"
    return f"{when} {translate_state_key(issue.component_key)}: {issue.question} → {issue.answer}"
