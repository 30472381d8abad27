"""
test_report_engine.py — Unit tests for the PDF report renderer.

Tests cover:
  - Rendering a full structured report, a legacy report and an empty report
  - Long content flowing onto further pages
  - Download filename sanitization and date stamp
"""

from datetime import datetime, timezone

import pytest

from liftdiag.services.report_engine import ReportRenderer, pdf_filename
from liftdiag.services.response_normalizer import normalize

UNIT = {"id": "U-42", "name": "Lift A"}
BUILDING = {"id": "B-1", "name": "Tour Horizon"}
COUNTS = {"visits": 2, "breakdowns": 1, "maintenanceIssues": 0, "repairRequests": 1}


@pytest.fixture
def renderer():
    return ReportRenderer(company_name="ACME LIFTS", company_sub="Test header")


class TestRender:

    def test_structured_report(self, renderer, structured_analysis, generated_at):
        pdf = renderer.render(normalize(structured_analysis), UNIT, BUILDING, COUNTS, generated_at)
        assert isinstance(pdf, bytes)
        assert pdf.startswith(b"%PDF")
        assert pdf.rstrip().endswith(b"%%EOF")

    def test_legacy_report(self, renderer):
        report = normalize({"executiveSummary": "Door faults. Rollers replaced.", "confidenceLevel": "low"})
        assert renderer.render(report, UNIT, BUILDING).startswith(b"%PDF")

    def test_empty_report(self, renderer):
        assert renderer.render(normalize({}), UNIT, BUILDING, counts={}).startswith(b"%PDF")

    def test_long_timeline_spans_pages(self, renderer, structured_analysis):
        analysis = dict(structured_analysis, timeline=[
            {"date": f"2024-01-{(i % 28) + 1:02d}", "type": "visit", "description": "Routine inspection " * 8}
            for i in range(120)
        ])
        short = renderer.render(normalize(structured_analysis), UNIT, BUILDING)
        long = renderer.render(normalize(analysis), UNIT, BUILDING)
        assert long.startswith(b"%PDF")
        assert len(long) > len(short)


class TestFilename:

    def test_sanitized(self):
        when = datetime(2024, 3, 15, tzinfo=timezone.utc)
        assert pdf_filename("U-42", "Lift A / Nord", when) == "diagnostic_Lift_A___Nord_U-42_2024-03-15.pdf"

    def test_defaults_to_today(self):
        name = pdf_filename("U-42", "Lift")
        assert name.startswith("diagnostic_Lift_U-42_")
        assert name.endswith(".pdf")
