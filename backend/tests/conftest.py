"""
conftest.py — Shared pytest fixtures for the Lift Diagnostic Service test suite.

No database, analytics backend or generation backend is reached by any test:
HTTP is served by httpx.MockTransport, litellm is patched, and the store is
exercised through its compiled SQL or an in-memory fake.

Import-path bootstrapping:
    The ``backend/`` directory is inserted into sys.path so that all
    ``liftdiag.*`` imports resolve correctly regardless of where pytest is invoked.
"""

import sys
import os
from datetime import date, datetime

import pytest

# ---------------------------------------------------------------------------
# Ensure ``backend/`` is on the import path before any liftdiag imports occur.
# ---------------------------------------------------------------------------
_BACKEND_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _BACKEND_DIR not in sys.path:
    sys.path.insert(0, _BACKEND_DIR)


# ---------------------------------------------------------------------------
# Record builders
# ---------------------------------------------------------------------------

@pytest.fixture
def make_visit():
    from liftdiag.models.records import VisitRecord

    def _make(day, comment="", task_type="REGULAR", task_id=None, **kwargs):
        return VisitRecord(
            completed_date=day,
            task_type=task_type,
            comment=comment,
            task_id=task_id or f"T-{day.isoformat()}",
            **kwargs,
        )
    return _make


@pytest.fixture
def make_request():
    from liftdiag.models.records import PartsRequestRecord

    def _make(number, name, requested, state_start, status="DONE", attached=True, **kwargs):
        return PartsRequestRecord(
            request_number=number,
            requested_date=requested,
            state_start_date=state_start,
            status=status,
            has_part_attached=attached,
            part_name=name,
            **kwargs,
        )
    return _make


@pytest.fixture
def make_downtime():
    from liftdiag.models.records import DowntimeRecord

    def _make(downtime_id, start, end=None, locations="", origin="", **kwargs):
        return DowntimeRecord(
            id=downtime_id,
            start_time=start,
            end_time=end,
            failure_locations=locations,
            origin=origin,
            **kwargs,
        )
    return _make


@pytest.fixture
def power_supply_scenario(make_visit, make_request):
    """
    One completed power-supply request with a matching REPAIR visit inside its
    window and an unrelated maintenance visit outside it.
    """
    visits = [
        make_visit(date(2024, 3, 1), "Routine check, all ok"),
        make_visit(date(2024, 3, 10), "Replaced power supply unit, lift back in service",
                   task_type="REPAIR", task_id="T-REPAIR"),
    ]
    requests = [
        make_request("RR-100", "Osram Power supply TFOS02550",
                     requested=date(2024, 3, 5), state_start=date(2024, 3, 12)),
    ]
    return visits, requests


@pytest.fixture
def structured_analysis():
    """A canonical structured-generation analysis as the generation step returns it."""
    return {
        "executiveSummary": {
            "overview": "The lift had two breakdowns caused by the power supply.",
            "summaryOfEvents": "Breakdown on 8 March. Power supply replaced on 10 March.",
            "currentSituation": "The lift is in service.",
            "serviceHandlingReview": "Response times were within contract.",
        },
        "finalExecSummary": "Power supply replaced; monitor for recurrence.",
        "partsReplaced": [
            {
                "partName": "Osram Power supply TFOS02550",
                "partFamily": "Electrical",
                "partSubFamily": "Power",
                "replacementDate": "2024-03-10",
                "repairRequestNumber": "RR-100",
                "component": "Power Supply",
                "linkedToVisit": "2024-03-10",
                "linkedToBreakdown": "BD-1",
            }
        ],
        "timeline": [
            {"date": "2024-03-08", "type": "breakdown", "description": "Lift stopped between floors"},
            {"date": "2024-03-10", "type": "repair", "description": "Power supply replaced"},
        ],
        "repeatedPatterns": [
            {"pattern": "Power supply faults", "frequency": 2, "examples": ["2024-03-08", "2024-03-10"]},
        ],
        "hypotheses": [
            {"category": "Electrical", "likelihood": "High", "reasoning": "Two PSU-related stops."},
        ],
        "suggestedChecks": ["Check the supply voltage at the controller"],
        "confidenceLevel": "high",
    }


@pytest.fixture
def generated_at():
    return datetime(2024, 3, 15, 9, 30)
