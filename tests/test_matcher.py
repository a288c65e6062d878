from datetime import datetime, timezone

import pytest

from floorledger.errors import RecordValidationError
from floorledger.matcher import (
    Matcher,
    MergedSubmission,
    date_entries,
    key_metric,
    merge_submissions,
)
from tests.conftest import (
    D1,
    D2,
    _cutting_actual,
    _finishing_actual,
    _sewing_actual,
    _sewing_target,
)


class TestMerge:
    """Tests for grouping targets and actuals into merged rows."""

    def test_target_and_actual_merge_into_one_row(self):
        target = _sewing_target()
        actual = _sewing_actual()
        result = merge_submissions([target, actual])
        assert len(result.rows) == 1
        row = result.rows[0]
        assert row.target is target
        assert row.actual is actual
        assert row.display_label == "Sewing"
        assert row.status_variant == "sewing"
        assert result.collisions == []

    def test_unpaired_rows(self):
        result = merge_submissions(
            [_sewing_target(line_id="L1"), _sewing_actual(id="sa-2", line_id="L2")]
        )
        labels = sorted(r.display_label for r in result.rows)
        assert labels == ["Sewing EOD", "Sewing Target"]
        target_only = next(r for r in result.rows if r.actual is None)
        assert target_only.status_variant == "info"

    def test_stages_never_merge(self):
        result = merge_submissions([_sewing_actual(), _cutting_actual()])
        assert {r.stage_kind for r in result.rows} == {"sewing", "cutting"}

    def test_finishing_without_line(self):
        result = merge_submissions([_finishing_actual(), _finishing_actual(id="fa-2", carton=10)])
        assert len(result.rows) == 1
        assert result.rows[0].display_label == "Finishing EOD"

    def test_newest_date_first(self):
        result = merge_submissions(
            [_sewing_actual(production_date=D1), _sewing_actual(id="sa-2", production_date=D2)]
        )
        assert [r.production_date for r in result.rows] == [D2, D1]

    def test_input_not_modified(self):
        subs = [_sewing_target(), _sewing_actual()]
        before = list(subs)
        merge_submissions(subs)
        assert subs == before

    def test_idempotent(self):
        """Merging the rows' own records again gives the same rows."""
        subs = [
            _sewing_target(),
            _sewing_actual(),
            _sewing_actual(id="sa-2", line_id="L2"),
            _cutting_actual(production_date=D2),
        ]
        first = merge_submissions(subs).rows
        again = merge_submissions(
            [s for r in first for s in (r.target, r.actual) if s is not None]
        ).rows
        assert {(r.key, r.target, r.actual) for r in first} == {
            (r.key, r.target, r.actual) for r in again
        }

    def test_non_submission_rejected(self):
        with pytest.raises(RecordValidationError, match="submission"):
            merge_submissions([{"id": "x"}])

    def test_unknown_mode(self):
        with pytest.raises(ValueError, match="match mode"):
            Matcher("fuzzy")

    def test_empty_row_rejected(self):
        with pytest.raises(RecordValidationError):
            MergedSubmission(key=("sewing", D1, "L1"))


class TestMatchModes:
    """Strict keys include the work order, loose keys do not."""

    def _two_orders_one_line(self):
        return [
            _sewing_target(id="st-1", work_order_id="wo-1"),
            _sewing_target(id="st-2", work_order_id="wo-2"),
            _sewing_actual(id="sa-1", work_order_id="wo-1"),
        ]

    def test_strict_keeps_work_orders_apart(self):
        result = Matcher("strict").merge(self._two_orders_one_line())
        assert len(result.rows) == 2
        assert result.collisions == []

    def test_loose_collapses_and_reports_collision(self):
        result = Matcher("loose").merge(self._two_orders_one_line())
        assert len(result.rows) == 1
        assert len(result.collisions) == 1
        collision = result.collisions[0]
        assert collision.phase == "target"
        # no submission times: the later arrival wins
        assert collision.kept_id == "st-2"
        assert collision.dropped_ids == ["st-1"]

    def test_at_most_one_per_phase(self):
        subs = self._two_orders_one_line() + [_sewing_actual(id="sa-9", work_order_id="wo-2")]
        for mode in ("strict", "loose"):
            rows = Matcher(mode).merge(subs).rows
            keys = [r.key for r in rows]
            assert len(keys) == len(set(keys))


class TestCollisionTieBreak:
    def test_latest_submission_wins(self):
        early = _sewing_actual(id="early", submitted_at=datetime(2024, 1, 5, 17, 0))
        late = _sewing_actual(id="late", submitted_at=datetime(2024, 1, 5, 19, 0))
        result = merge_submissions([late, early])
        assert result.rows[0].actual.id == "late"
        assert result.collisions[0].dropped_ids == ["early"]

    def test_missing_time_ranks_lowest(self):
        untimed = _sewing_actual(id="untimed")
        timed = _sewing_actual(id="timed", submitted_at=datetime(2024, 1, 5, 17, 0))
        result = merge_submissions([timed, untimed])
        assert result.rows[0].actual.id == "timed"

    def test_mixed_naive_and_aware_times(self):
        aware = _sewing_actual(
            id="aware", submitted_at=datetime(2030, 1, 1, tzinfo=timezone.utc)
        )
        naive = _sewing_actual(id="naive", submitted_at=datetime(2024, 1, 5, 17, 0))
        result = merge_submissions([aware, naive])
        assert result.rows[0].actual.id == "aware"


class TestListHelpers:
    def test_key_metric(self):
        assert key_metric(_sewing_target()) == ("Target", 400)
        assert key_metric(_sewing_actual()) == ("Output", 380)
        assert key_metric(_cutting_actual(total_cutting=900)) == ("Total Cut", 900)
        assert key_metric(_finishing_actual()) == ("Carton", 420)

    def test_latest_submitted_at(self):
        row = merge_submissions(
            [
                _sewing_target(submitted_at=datetime(2024, 1, 5, 8, 0)),
                _sewing_actual(submitted_at=datetime(2024, 1, 5, 18, 0)),
            ]
        ).rows[0]
        assert row.latest_submitted_at == datetime(2024, 1, 5, 18, 0)

    def test_date_entries(self):
        rows = merge_submissions(
            [
                _sewing_target(),
                _sewing_actual(),
                _sewing_actual(id="sa-2", line_id="L2", good_today=100),
                _sewing_actual(id="sa-3", production_date=D2, good_today=50),
                _sewing_actual(id="other", work_order_id="wo-9", production_date=D2),
            ]
        ).rows
        entries = date_entries(rows, work_order_id="wo-1")
        assert [e.production_date for e in entries] == [D2, D1]
        assert entries[1].has_target and entries[1].has_actual
        assert entries[1].target_total == 400
        assert entries[1].output == 480
        assert entries[0].output == 50
        assert not entries[0].has_target
