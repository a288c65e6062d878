from datetime import datetime, timezone

import pytest

from floorledger.export import (
    END_BANNER,
    REPORT_TITLE,
    build_report,
    merged_frame,
    raw_sections,
    render_report,
    write_report,
)
from floorledger.kpi import build_pipeline, summarize_quality
from floorledger.matcher import merge_submissions
from floorledger.store import load_bin_cards, load_submissions
from tests.conftest import _sewing_actual, _sewing_target

EXPORTED = datetime(2024, 1, 7, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
def report(seeded):
    subs = load_submissions(seeded)
    cards = load_bin_cards(seeded)
    return build_report(
        subs,
        merge_submissions(subs).rows,
        bin_cards=cards,
        quality=summarize_quality(subs, order_qty=1000, extras_consumed=20),
        pipeline=build_pipeline(subs, cards, 1000),
        factory_name="Unit 2",
        period="2024-01-05 to 2024-01-06",
        exported_at=EXPORTED,
    )


class TestBuildReport:
    """Tests for the section data of the submissions report."""

    def test_header(self, report):
        assert report.header_lines == (
            "Factory: Unit 2",
            "Period: 2024-01-05 to 2024-01-06",
            "Exported: 2024-01-07 09:30",
        )

    def test_sections(self, report):
        titles = [s.title for s in report.sections]
        assert titles == [
            "FACTORY SUMMARY",
            "SUBMISSIONS",
            "SEWING TARGETS",
            "SEWING END OF DAY",
            "CUTTING TARGETS",
            "CUTTING ACTUALS",
            "FINISHING TARGETS",
            "FINISHING OUTPUTS",
            "QUALITY",
            "PIPELINE",
            "STORAGE BIN CARDS",
        ]

    def test_factory_summary(self, report):
        summary = dict(report.section("FACTORY SUMMARY").frame.iter_rows())
        assert summary["Sewing Actuals"] == "3"
        assert summary["Sewing Total Output (pcs)"] == "1430"
        assert summary["Finishing Total Carton (pcs)"] == "600"
        assert summary["Total Blockers Reported"] == "1"

    def test_sewing_eod_summary(self, report):
        section = report.section("SEWING END OF DAY")
        assert section.summary.startswith("3 records | Output: 1430 pcs | Rejects: 24")
        assert section.summary.endswith("Blockers: 1")
        blockers = section.frame["Blocker"].to_list()
        assert "Yes: Needle shortage" in blockers

    def test_storage_rollup(self, report):
        frame = report.section("STORAGE BIN CARDS").frame
        assert frame.height == 1
        row = frame.row(0, named=True)
        assert row["Type"] == "group"
        assert row["Group"] == "Lot A"
        assert row["Balance"] == "600"
        assert row["PO Numbers"] == "PO-100 / PO-200"

    def test_quality_section(self, report):
        quality = dict(report.section("QUALITY").frame.iter_rows())
        assert quality["Extras Available"] == "410"

    def test_unknown_section(self, report):
        with pytest.raises(KeyError):
            report.section("NOPE")


class TestFrames:
    def test_merged_frame(self):
        rows = merge_submissions(
            [
                _sewing_target(submitted_at=datetime(2024, 1, 5, 8, 0)),
                _sewing_actual(po_number="PO-100", submitted_at=datetime(2024, 1, 5, 18, 5)),
            ]
        ).rows
        frame = merged_frame(rows)
        row = frame.row(0, named=True)
        assert row["Time"] == "18:05"
        assert row["Type"] == "Sewing"
        assert row["Key Metric"] == "Output: 380"
        assert row["Status"] == "On Time"
        assert row["Line"] == "L1"

    def test_empty_sections_omitted(self):
        sections = raw_sections([_sewing_actual()])
        assert [s.title for s in sections] == ["SEWING END OF DAY"]
        assert sections[0].frame["Manpower"].to_list() == ["-"]

    def test_no_period_or_cards(self):
        report = build_report([], [], exported_at=EXPORTED)
        assert report.header_lines == ("Factory: -", "Exported: 2024-01-07 09:30")
        assert [s.title for s in report.sections] == ["FACTORY SUMMARY", "SUBMISSIONS"]
        assert report.section("SUBMISSIONS").frame.height == 0


class TestWriteReport:
    def test_layout(self, report, tmp_path):
        path = write_report(tmp_path / "out" / "report.csv", report)
        text = path.read_text(encoding="utf-8-sig")
        lines = text.splitlines()
        assert lines[0] == REPORT_TITLE
        assert lines[1] == "Factory: Unit 2"
        assert lines[-1] == END_BANNER
        assert "═══ FACTORY SUMMARY ═══" in lines
        i = lines.index("═══ SEWING END OF DAY ═══")
        assert lines[i + 1].startswith("Section Summary:,3 records")
        assert lines[i + 2].startswith("Date,Time,Line,PO Number")

    def test_sections_separated_by_blank_line(self, report):
        lines = render_report(report).splitlines()
        for i, line in enumerate(lines):
            if line.startswith("═══ ") and line != END_BANNER and i > 4:
                assert lines[i - 1] == ""

    def test_bom(self, report, tmp_path):
        path = write_report(tmp_path / "report.csv", report)
        assert path.read_bytes().startswith(b"\xef\xbb\xbf")
