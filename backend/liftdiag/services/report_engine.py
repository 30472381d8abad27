"""
Report Engine — renders a canonical DiagnosticReport as a branded PDF.

Sections, in order:
  header / unit identity, executive summary (+ final synthesis), confidence,
  parts replaced, event timeline, repeated patterns, technical summary,
  likely causes, suggested checks, source-record counts.

The internal service-handling review is never drawn: the PDF is customer-facing.
Returns PDF bytes; the caller decides whether to stream or store them.
"""
import io
import logging
import os
import re
from datetime import datetime, timezone
from typing import Optional

from reportlab.lib.pagesizes import A4
from reportlab.lib.units import cm
from reportlab.lib.utils import simpleSplit
from reportlab.pdfgen import canvas as rl_canvas

from liftdiag.models.report_schema import DiagnosticReport

logger = logging.getLogger("liftdiag-report")

DEFAULT_COMPANY_NAME = os.getenv("REPORT_COMPANY_NAME", "LIFT DIAGNOSTIC SERVICE")
DEFAULT_COMPANY_SUB = os.getenv("REPORT_HEADER_TEXT", "Maintenance history analysis  |  Confidential")

CONFIDENCE_COLORS = {
    "high": (0.0, 0.67, 0.0),
    "medium": (1.0, 0.53, 0.0),
    "low": (0.8, 0.0, 0.0),
}

MARGIN = 1.5 * cm
TOP = 4.5 * cm       # first line below the header bar
BOTTOM = 2.0 * cm    # keep clear of the footer


def pdf_filename(unit_id: str, unit_name: str, when: Optional[datetime] = None) -> str:
    """diagnostic_<sanitized unit name>_<unit id>_<YYYY-MM-DD>.pdf"""
    stamp = (when or datetime.now(timezone.utc)).strftime("%Y-%m-%d")
    sanitized = re.sub(r"[^a-zA-Z0-9]", "_", unit_name or "")
    return f"diagnostic_{sanitized}_{unit_id}_{stamp}.pdf"


# ── PDF helpers ───────────────────────────────────────────────────────────────

def _draw_header(c, page_w, page_h, company_name: str = None, company_sub: str = None):
    name = company_name or DEFAULT_COMPANY_NAME
    sub = company_sub or DEFAULT_COMPANY_SUB
    c.setFillColorRGB(0.08, 0.08, 0.12)
    c.rect(0, page_h - 3*cm, page_w, 3*cm, fill=1, stroke=0)
    c.setFillColorRGB(1, 1, 1)
    c.setFont("Helvetica-Bold", 13)
    c.drawString(MARGIN, page_h - 1.5*cm, name)
    c.setFont("Helvetica", 8)
    c.drawString(MARGIN, page_h - 2.1*cm, sub)
    c.setStrokeColorRGB(0.58, 0.64, 0.72)
    c.setLineWidth(2)
    c.line(0, page_h - 3*cm, page_w, page_h - 3*cm)
    c.setLineWidth(1)
    c.setStrokeColorRGB(0, 0, 0)


def _draw_footer(c, page_w, page_num: int, generated_at: str):
    c.setFillColorRGB(0.5, 0.5, 0.5)
    c.setFont("Helvetica", 7)
    c.drawString(MARGIN, 0.8*cm, f"Lift Diagnostic Summary  |  Generated {generated_at}")
    c.drawRightString(page_w - MARGIN, 0.8*cm, f"Page {page_num}")
    c.setStrokeColorRGB(0.7, 0.7, 0.7)
    c.line(MARGIN, 1.2*cm, page_w - MARGIN, 1.2*cm)


class _PageWriter:
    """Top-down text cursor over a canvas with automatic page breaks."""

    def __init__(self, c, page_w, page_h, company_name: str, company_sub: str, generated_at: str):
        self.c = c
        self.page_w = page_w
        self.page_h = page_h
        self.company_name = company_name
        self.company_sub = company_sub
        self.generated_at = generated_at
        self.y = page_h - TOP
        self._decorate()

    @property
    def width(self) -> float:
        return self.page_w - 2 * MARGIN

    def _decorate(self):
        _draw_header(self.c, self.page_w, self.page_h, self.company_name, self.company_sub)
        _draw_footer(self.c, self.page_w, self.c.getPageNumber(), self.generated_at)

    def ensure(self, height: float):
        if self.y - height < BOTTOM:
            self.c.showPage()
            self._decorate()
            self.y = self.page_h - TOP

    def heading(self, text: str):
        self.ensure(1.4*cm)
        self.y -= 0.4*cm
        self.c.setFont("Helvetica-Bold", 11)
        self.c.setFillColorRGB(0.08, 0.08, 0.12)
        self.c.drawString(MARGIN, self.y, text.upper())
        self.y -= 0.25*cm
        self.c.setStrokeColorRGB(0.58, 0.64, 0.72)
        self.c.line(MARGIN, self.y, self.page_w - MARGIN, self.y)
        self.y -= 0.5*cm

    def paragraph(self, text: str, size: float = 9, bold: bool = False, indent: float = 0,
                  color: tuple = (0.2, 0.2, 0.2), gap: float = 0.15*cm):
        if not text:
            return
        font = "Helvetica-Bold" if bold else "Helvetica"
        leading = size * 1.35
        for line in simpleSplit(str(text), font, size, self.width - indent):
            self.ensure(leading)
            self.c.setFont(font, size)
            self.c.setFillColorRGB(*color)
            self.c.drawString(MARGIN + indent, self.y, line)
            self.y -= leading
        self.y -= gap

    def bullet(self, text: str, indent: float = 0.4*cm, size: float = 9):
        self.paragraph(f"• {text}", size=size, indent=indent, gap=0.05*cm)

    def row(self, columns: list, widths: list, size: float = 8, bold: bool = False):
        font = "Helvetica-Bold" if bold else "Helvetica"
        leading = size * 1.3
        wrapped = [simpleSplit(str(v or "-"), font, size, w - 0.2*cm) or [""] for v, w in zip(columns, widths)]
        height = max(len(lines) for lines in wrapped) * leading + 0.1*cm
        self.ensure(height)
        self.c.setFont(font, size)
        self.c.setFillColorRGB(0.2, 0.2, 0.2)
        x = MARGIN
        for lines, w in zip(wrapped, widths):
            line_y = self.y
            for line in lines:
                self.c.drawString(x, line_y, line)
                line_y -= leading
            x += w
        self.y -= height


class ReportRenderer:

    def __init__(self, company_name: str = None, company_sub: str = None):
        self.company_name = company_name or DEFAULT_COMPANY_NAME
        self.company_sub = company_sub or DEFAULT_COMPANY_SUB

    def render(
        self,
        report: DiagnosticReport,
        unit: dict,
        building: dict,
        counts: Optional[dict] = None,
        generated_at: Optional[datetime] = None,
    ) -> bytes:
        generated = (generated_at or datetime.now(timezone.utc)).strftime("%d %b %Y")
        buffer = io.BytesIO()
        page_w, page_h = A4
        c = rl_canvas.Canvas(buffer, pagesize=A4)
        c.setTitle(f"Lift Diagnostic Summary - {unit.get('name', '')}")
        try:
            w = _PageWriter(c, page_w, page_h, self.company_name, self.company_sub, generated)
            self._draw_identity(w, unit, building, generated)
            self._draw_summary(w, report)
            self._draw_parts(w, report)
            self._draw_timeline(w, report)
            self._draw_patterns(w, report)
            self._draw_technical(w, report)
            self._draw_hypotheses(w, report)
            self._draw_checks(w, report)
            self._draw_sources(w, counts or {})
        finally:
            c.save()
        pdf = buffer.getvalue()
        logger.info(f"Rendered diagnostic PDF for unit {unit.get('id', '')} ({len(pdf)} bytes, {c.getPageNumber()} pages)")
        return pdf

    # ── Sections ─────────────────────────────────────────────────────────────

    def _draw_identity(self, w: _PageWriter, unit: dict, building: dict, generated: str):
        w.c.setFillColorRGB(0.08, 0.08, 0.12)
        w.c.setFont("Helvetica-Bold", 18)
        w.c.drawString(MARGIN, w.y, "LIFT DIAGNOSTIC SUMMARY")
        w.y -= 0.8*cm
        w.paragraph(f"Unit: {unit.get('name', '')}", size=13, bold=True, color=(0.0, 0.13, 0.28), gap=0)
        w.paragraph(f"Building: {building.get('name', '')}", size=10, gap=0)
        w.paragraph(f"Unit Ref: {unit.get('id', '')}  |  Date: {generated}", size=9, color=(0.4, 0.4, 0.4))

    def _draw_summary(self, w: _PageWriter, report: DiagnosticReport):
        summary = report.executive_summary
        w.heading("Executive Summary")
        w.paragraph("Overview", bold=True, gap=0.05*cm)
        w.paragraph(summary.overview)
        w.paragraph("Summary of Events", bold=True, gap=0.05*cm)
        w.paragraph(summary.summary_of_events)
        w.paragraph("Current Situation", bold=True, gap=0.05*cm)
        w.paragraph(summary.current_situation)
        if report.final_exec_summary:
            w.paragraph("Final Executive Summary", bold=True, gap=0.05*cm)
            w.paragraph(report.final_exec_summary)

        level = report.confidence_level
        w.ensure(0.8*cm)
        w.c.setFont("Helvetica-Bold", 10)
        w.c.setFillColorRGB(0.08, 0.08, 0.12)
        w.c.drawString(MARGIN, w.y, "Confidence Level:")
        w.c.setFillColorRGB(*CONFIDENCE_COLORS.get(level, (0, 0, 0)))
        w.c.drawString(MARGIN + 3.2*cm, w.y, level.upper())
        w.y -= 0.6*cm

    def _draw_parts(self, w: _PageWriter, report: DiagnosticReport):
        if not report.parts_replaced:
            return
        w.heading("Parts Replaced")
        widths = [5.5*cm, 3.2*cm, 2.3*cm, 2.5*cm, 2.3*cm, 2.2*cm]
        w.row(["Part", "Component", "Replaced", "Request", "Visit", "Breakdown"], widths, bold=True)
        for part in report.parts_replaced:
            w.row(
                [part.part_name, part.component, part.replacement_date, part.repair_request_number,
                 part.linked_to_visit, part.linked_to_breakdown],
                widths,
            )
        w.y -= 0.3*cm

    def _draw_timeline(self, w: _PageWriter, report: DiagnosticReport):
        if not report.timeline:
            return
        w.heading("Event Timeline")
        for event in report.timeline:
            w.paragraph(f"{event.date} [{event.type.upper()}]", size=8.5, bold=True, gap=0)
            w.paragraph(event.description, size=8.5, indent=0.6*cm, gap=0.1*cm)

    def _draw_patterns(self, w: _PageWriter, report: DiagnosticReport):
        if not report.repeated_patterns:
            return
        w.heading("Repeated Patterns")
        for pattern in report.repeated_patterns:
            w.paragraph(f"{pattern.pattern} ({pattern.frequency} occurrences)", bold=True, gap=0.05*cm)
            if pattern.summary:
                w.paragraph(pattern.summary, indent=0.4*cm)
            for label, value in (
                ("Root cause", pattern.root_cause),
                ("Impact", pattern.impact),
                ("Escalation", pattern.escalation_path),
                ("Correlation", pattern.correlation),
            ):
                if value:
                    w.paragraph(f"{label}: {value}", size=8.5, indent=0.4*cm, gap=0.05*cm)
            for example in pattern.examples:
                w.bullet(example, indent=0.8*cm, size=8.5)
            w.y -= 0.2*cm

    def _draw_technical(self, w: _PageWriter, report: DiagnosticReport):
        technical = report.technical_summary
        if technical is None or not (technical.overview or technical.pattern_details):
            return
        w.heading("Technical Summary")
        w.paragraph(technical.overview)
        for detail in technical.pattern_details:
            impact = detail.quantified_impact
            w.paragraph(detail.pattern_name, bold=True, gap=0.05*cm)
            w.paragraph(detail.verdict, indent=0.4*cm)
            w.paragraph(
                f"Breakdowns: {impact.breakdown_count}  |  Span: {impact.time_span or '-'}  |  "
                f"Downtime: {impact.downtime_hours or '-'}  |  Risk: {impact.risk_level.upper()}",
                size=8.5, indent=0.4*cm, color=(0.0, 0.13, 0.28),
            )
            if detail.driver_tree:
                w.paragraph(f"Driver tree: {detail.driver_tree}", size=8.5, indent=0.4*cm)
            for rec in detail.actionable_recommendations:
                when = f"[{rec.timeframe}] " if rec.timeframe else ""
                who = f" ({rec.owner})" if rec.owner else ""
                w.bullet(f"{when}{rec.action}{who}", indent=0.8*cm, size=8.5)
            probability = detail.resolution_probability
            if probability.probability:
                w.paragraph(
                    f"Resolution probability: {probability.probability}. {probability.escalation_path}",
                    size=8.5, indent=0.4*cm,
                )
            w.y -= 0.2*cm

    def _draw_hypotheses(self, w: _PageWriter, report: DiagnosticReport):
        if not report.hypotheses:
            return
        w.heading("Likely Causes")
        for hypothesis in report.hypotheses:
            w.paragraph(f"{hypothesis.category} ({hypothesis.likelihood} likelihood)", bold=True, gap=0.05*cm)
            w.paragraph(hypothesis.reasoning, indent=0.4*cm)

    def _draw_checks(self, w: _PageWriter, report: DiagnosticReport):
        if not report.suggested_checks:
            return
        w.heading("Suggested Next Checks")
        for check in report.suggested_checks:
            w.bullet(check)

    def _draw_sources(self, w: _PageWriter, counts: dict):
        if not counts:
            return
        w.heading("Source Records")
        for label, key in (
            ("Visit reports", "visits"),
            ("Breakdowns", "breakdowns"),
            ("Maintenance issues", "maintenanceIssues"),
            ("Repair requests", "repairRequests"),
        ):
            w.paragraph(f"{label}: {counts.get(key, 0)}", size=9, gap=0)
