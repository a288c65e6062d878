"""Submission report export.

Builds the data of the "all submissions" report as polars DataFrames, one
per section, and writes them to a multi-section delimited text file::

    ALL SUBMISSIONS REPORT
    Factory: ...
    <blank>
    ═══ FACTORY SUMMARY ═══
    Metric,Value
    ...
    <blank>
    ═══ SEWING TARGETS ═══
    Section Summary:,12 records | Avg Target/hr: 48.0 | Late: 1
    Date,Time,Line,...
    ...
    ═══ END OF REPORT ═══

Every cell is text; missing values render as ``-``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Sequence

import polars as pl

from .groups import storage_rows
from .kpi import PipelineStage, QualitySummary, average_per_hour
from .matcher import MergedSubmission, key_metric
from .models import (
    BinCard,
    CuttingActual,
    CuttingTarget,
    FinishingActual,
    FinishingTarget,
    SewingActual,
    SewingTarget,
    Submission,
)
from .status import status_label

log = logging.getLogger(__name__)

REPORT_TITLE = "ALL SUBMISSIONS REPORT"
END_BANNER = "═══ END OF REPORT ═══"
MISSING = "-"


@dataclass(frozen=True)
class ReportSection:
    title: str
    frame: pl.DataFrame
    summary: str | None = None


@dataclass(frozen=True)
class Report:
    header_lines: tuple[str, ...]
    sections: tuple[ReportSection, ...] = field(default_factory=tuple)
    title: str = REPORT_TITLE

    def section(self, title: str) -> ReportSection:
        for s in self.sections:
            if s.title == title:
                return s
        raise KeyError(title)


def _cell(value: Any) -> str:
    if value is None or value == "":
        return MISSING
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, float):
        return f"{value:g}"
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d %H:%M")
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def _time(sub: Submission) -> str:
    return sub.submitted_at.strftime("%H:%M") if sub.submitted_at else MISSING


def _frame(columns: Sequence[str], rows: Iterable[Sequence[Any]]) -> pl.DataFrame:
    data = [[_cell(v) for v in row] for row in rows]
    schema = {c: pl.Utf8 for c in columns}
    if not data:
        return pl.DataFrame(schema=schema)
    return pl.DataFrame(data, schema=schema, orient="row")


def _base(sub: Submission) -> list[Any]:
    return [
        sub.production_date,
        _time(sub),
        sub.display_line,
        sub.po_number,
        sub.buyer,
        sub.style,
        sub.order_qty,
    ]


_BASE_COLUMNS = ["Date", "Time", "Line", "PO Number", "Buyer", "Style", "Order Qty"]


def _late(sub: Any) -> str:
    return "Late" if sub.is_late else "On Time"


def _blocker(sub: Any) -> str:
    if not sub.has_blocker:
        return "No"
    description = sub.blocker.description if sub.blocker else None
    return f"Yes: {description}" if description else "Yes"


def _avg(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def factory_summary_frame(
    submissions: Sequence[Submission], bin_cards: Sequence[BinCard] = ()
) -> pl.DataFrame:
    sewing_t = [s for s in submissions if isinstance(s, SewingTarget)]
    sewing_a = [s for s in submissions if isinstance(s, SewingActual)]
    cutting_t = [s for s in submissions if isinstance(s, CuttingTarget)]
    cutting_a = [s for s in submissions if isinstance(s, CuttingActual)]
    finishing_t = [s for s in submissions if isinstance(s, FinishingTarget)]
    finishing_a = [s for s in submissions if isinstance(s, FinishingActual)]
    blockers = sum(
        1 for s in (*sewing_a, *cutting_a, *finishing_a) if s.has_blocker
    )
    rows = [
        ("Sewing Targets", len(sewing_t)),
        ("Sewing Actuals", len(sewing_a)),
        ("Sewing Total Output (pcs)", sum(s.good_today for s in sewing_a)),
        ("Sewing Total Rejects", sum(s.reject_today for s in sewing_a)),
        ("Sewing Lines Reporting", len({s.line_id for s in sewing_a})),
        ("Cutting Targets", len(cutting_t)),
        ("Cutting Actuals", len(cutting_a)),
        ("Cutting Total Output (pcs)", sum(s.day_cutting for s in cutting_a)),
        ("Cutting Total Input (pcs)", sum(s.day_input for s in cutting_a)),
        ("Finishing Targets", len(finishing_t)),
        ("Finishing Outputs", len(finishing_a)),
        ("Finishing Total Carton (pcs)", sum(s.carton for s in finishing_a)),
        ("Storage Bin Cards", len(bin_cards)),
        ("Total Blockers Reported", blockers),
    ]
    return _frame(["Metric", "Value"], rows)


def merged_frame(rows: Sequence[MergedSubmission]) -> pl.DataFrame:
    out = []
    for row in rows:
        label, value = key_metric(row.primary)
        stamp = row.latest_submitted_at
        out.append(
            [
                row.production_date,
                stamp.strftime("%H:%M") if stamp else MISSING,
                row.display_label,
                row.line_name,
                row.po_number,
                f"{label}: {value}",
                status_label(row),
            ]
        )
    return _frame(
        ["Date", "Time", "Type", "Line", "PO Number", "Key Metric", "Status"], out
    )


def _sewing_target_section(subs: list[SewingTarget]) -> ReportSection:
    summary = (
        f"{len(subs)} records | Avg Target/hr: {_avg([s.per_hour_target for s in subs]):.1f}"
        f" | Late: {sum(1 for s in subs if s.is_late)}"
    )
    frame = _frame(
        _BASE_COLUMNS
        + ["Target/hr", "Planned Total", "Manpower", "Hours Planned", "OT Hours",
           "Progress %", "Next Milestone", "Status", "Remarks"],
        (
            _base(s)
            + [s.per_hour_target, s.planned_total(), s.manpower_planned, s.hours_planned,
               s.ot_hours_planned, s.planned_stage_progress, s.next_milestone, _late(s), s.remarks]
            for s in subs
        ),
    )
    return ReportSection("SEWING TARGETS", frame, summary)


def _sewing_actual_section(subs: list[SewingActual]) -> ReportSection:
    summary = (
        f"{len(subs)} records | Output: {sum(s.good_today for s in subs)} pcs"
        f" | Rejects: {sum(s.reject_today for s in subs)}"
        f" | Avg Actual/hr: {average_per_hour(subs):.2f}"
        f" | Blockers: {sum(1 for s in subs if s.has_blocker)}"
    )
    frame = _frame(
        _BASE_COLUMNS
        + ["Good Output", "Rejects", "Rework", "Cumulative", "Manpower", "Hours Actual",
           "Actual/hr", "OT Hours", "Progress %", "Blocker", "Remarks"],
        (
            _base(s)
            + [s.good_today, s.reject_today, s.rework_today, s.cumulative_good_total,
               s.manpower_actual, s.hours_actual, s.per_hour(), s.ot_hours_actual,
               s.actual_stage_progress, _blocker(s), s.remarks]
            for s in subs
        ),
    )
    return ReportSection("SEWING END OF DAY", frame, summary)


def _cutting_target_section(subs: list[CuttingTarget]) -> ReportSection:
    frame = _frame(
        _BASE_COLUMNS
        + ["Marker Capacity", "Lay Capacity", "Cutting Capacity", "Day Cutting",
           "Day Input", "Manpower", "OT Hours", "OT Manpower", "Under Qty", "Status"],
        (
            _base(s)
            + [s.marker_capacity, s.lay_capacity, s.cutting_capacity, s.day_cutting,
               s.day_input, s.man_power, s.ot_hours_planned, s.ot_manpower_planned,
               s.under_qty, _late(s)]
            for s in subs
        ),
    )
    return ReportSection(
        "CUTTING TARGETS",
        frame,
        f"{len(subs)} records | Late: {sum(1 for s in subs if s.is_late)}",
    )


def _cutting_actual_section(subs: list[CuttingActual]) -> ReportSection:
    acknowledged = sum(1 for s in subs if s.acknowledged)
    summary = (
        f"{len(subs)} records | Output: {sum(s.day_cutting for s in subs)} pcs"
        f" | Input: {sum(s.day_input for s in subs)} pcs"
        f" | Balance: {sum(s.balance or 0 for s in subs)}"
        f" | Acknowledged: {acknowledged}/{len(subs)}"
    )
    frame = _frame(
        _BASE_COLUMNS
        + ["Day Cutting", "Total Cutting", "Day Input", "Total Input", "Balance",
           "Manpower", "Hours Actual", "OT Hours", "OT Manpower", "Actual/hr",
           "Blocker", "Acknowledged"],
        (
            _base(s)
            + [s.day_cutting, s.total_cutting, s.day_input, s.total_input, s.balance,
               s.man_power, s.hours_actual, s.ot_hours_actual, s.ot_manpower_actual,
               s.per_hour(), _blocker(s), s.acknowledged]
            for s in subs
        ),
    )
    return ReportSection("CUTTING ACTUALS", frame, summary)


_PROCESS_COLUMNS = ["Thread Cutting", "Inside Check", "Top Side Check", "Buttoning",
                    "Iron", "Get Up", "Poly", "Carton"]


def _processes(s: FinishingTarget | FinishingActual) -> list[int]:
    return [s.thread_cutting, s.inside_check, s.top_side_check, s.buttoning,
            s.iron, s.get_up, s.poly, s.carton]


def _finishing_target_section(subs: list[FinishingTarget]) -> ReportSection:
    frame = _frame(
        _BASE_COLUMNS + _PROCESS_COLUMNS + ["Planned Hours", "OT Hours", "OT Manpower", "Status"],
        (
            _base(s) + _processes(s)
            + [s.planned_hours, s.ot_hours_planned, s.ot_manpower_planned, _late(s)]
            for s in subs
        ),
    )
    return ReportSection("FINISHING TARGETS", frame, f"{len(subs)} records")


def _finishing_actual_section(subs: list[FinishingActual]) -> ReportSection:
    summary = (
        f"{len(subs)} records | Carton: {sum(s.carton for s in subs)}"
        f" | Blockers: {sum(1 for s in subs if s.has_blocker)}"
    )
    frame = _frame(
        _BASE_COLUMNS + _PROCESS_COLUMNS
        + ["Actual Hours", "Carton/hr", "OT Hours", "OT Manpower", "Blocker"],
        (
            _base(s) + _processes(s)
            + [s.hours_actual, s.per_hour(), s.ot_hours_actual, s.ot_manpower_actual, _blocker(s)]
            for s in subs
        ),
    )
    return ReportSection("FINISHING OUTPUTS", frame, summary)


def raw_sections(submissions: Sequence[Submission]) -> list[ReportSection]:
    """One section per department and phase that has records."""
    builders = (
        (SewingTarget, _sewing_target_section),
        (SewingActual, _sewing_actual_section),
        (CuttingTarget, _cutting_target_section),
        (CuttingActual, _cutting_actual_section),
        (FinishingTarget, _finishing_target_section),
        (FinishingActual, _finishing_actual_section),
    )
    sections = []
    for cls, build in builders:
        subs = [s for s in submissions if isinstance(s, cls)]
        if subs:
            sections.append(build(subs))
    return sections


def quality_frame(quality: QualitySummary) -> pl.DataFrame:
    return _frame(
        ["Metric", "Value"],
        [
            ("Total Output", quality.total_output),
            ("Total Rejects", quality.total_rejects),
            ("Total Rework", quality.total_rework),
            ("Reject Rate %", f"{quality.reject_rate:.1f}"),
            ("Rework Rate %", f"{quality.rework_rate:.1f}"),
            ("Order Qty", quality.order_qty),
            ("Extras Total", quality.extras_total),
            ("Extras Consumed", quality.extras_consumed),
            ("Extras Available", quality.extras_available),
        ],
    )


def pipeline_frame(stages: Sequence[PipelineStage]) -> pl.DataFrame:
    return _frame(
        ["Stage", "Qty", "Progress %", "Started", "Last Date"],
        (
            [s.title, s.qty, s.pct, s.has_data, s.last_date]
            for s in stages
        ),
    )


def storage_frame(cards: Sequence[BinCard], threshold: int) -> pl.DataFrame:
    return _frame(
        ["Type", "Group", "PO Numbers", "Buyer", "Style", "Cards", "Total Received",
         "Total Issued", "Balance", "Low Stock"],
        (
            [r.kind, r.group_name, " / ".join(r.po_numbers), r.buyer, r.style,
             len(r.cards), r.total_received, r.total_issued, r.total_balance, r.low_stock]
            for r in storage_rows(cards, threshold)
        ),
    )


def build_report(
    submissions: Sequence[Submission],
    merged: Sequence[MergedSubmission],
    *,
    bin_cards: Sequence[BinCard] = (),
    quality: QualitySummary | None = None,
    pipeline: Sequence[PipelineStage] | None = None,
    factory_name: str | None = None,
    period: str | None = None,
    low_stock_threshold: int = 10,
    exported_at: datetime | None = None,
) -> Report:
    """Assemble all report sections from already computed engine results."""
    exported_at = exported_at or datetime.now(timezone.utc)
    header = [f"Factory: {factory_name or MISSING}"]
    if period:
        header.append(f"Period: {period}")
    header.append(f"Exported: {exported_at.strftime('%Y-%m-%d %H:%M')}")

    sections = [
        ReportSection("FACTORY SUMMARY", factory_summary_frame(submissions, bin_cards)),
        ReportSection(
            "SUBMISSIONS",
            merged_frame(merged),
            f"{len(merged)} merged records",
        ),
        *raw_sections(submissions),
    ]
    if quality is not None:
        sections.append(ReportSection("QUALITY", quality_frame(quality)))
    if pipeline is not None:
        sections.append(ReportSection("PIPELINE", pipeline_frame(pipeline)))
    if bin_cards:
        sections.append(
            ReportSection(
                "STORAGE BIN CARDS",
                storage_frame(bin_cards, low_stock_threshold),
                f"{len(bin_cards)} bin cards",
            )
        )
    return Report(header_lines=tuple(header), sections=tuple(sections))


def _escape(cell: str) -> str:
    if any(ch in cell for ch in ',"\n'):
        return '"' + cell.replace('"', '""') + '"'
    return cell


def render_report(report: Report) -> str:
    lines = [report.title, *report.header_lines, ""]
    for section in report.sections:
        lines.append(f"═══ {section.title} ═══")
        if section.summary:
            lines.append(f"Section Summary:,{_escape(section.summary)}")
        lines.append(section.frame.write_csv().rstrip("\n"))
        lines.append("")
    lines.append(END_BANNER)
    return "\n".join(lines) + "\n"


def write_report(path: Path, report: Report) -> Path:
    """Write *report* as UTF-8 text (with BOM, for spreadsheet apps)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_report(report), encoding="utf-8-sig")
    log.info("Wrote %d report sections to %s", len(report.sections), path)
    return path
