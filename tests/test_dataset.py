from pathlib import Path

import pytest

from floorledger.dataset import (
    load_dataset,
    load_dataset_from_file,
    load_dataset_from_module,
    resolve_module_path,
    seed_store,
)
from floorledger.store import STORE_TABLES
from tests.conftest import SAMPLE_DATASET, _count, _write_dataset_module


class TestLoadDataset:
    """Tests for dataset module parsing."""

    def test_sample_dataset(self):
        sources = load_dataset_from_file(SAMPLE_DATASET)
        assert [s.table for s in sources] == list(STORE_TABLES)

    def test_sources_in_store_order(self, tmp_path):
        module = _write_dataset_module(
            tmp_path,
            'TABLES = {"lines": [{"id": "L1", "line_id": "L1"}], '
            '"work_orders": [{"id": "wo-1", "po_number": "PO-1"}]}\n',
        )
        sources = load_dataset_from_module(module)
        assert [s.table for s in sources] == ["work_orders", "lines"]

    def test_callable_and_file_values(self, tmp_path):
        module = _write_dataset_module(
            tmp_path,
            "def _lines():\n"
            '    return [{"id": "L1", "line_id": "L1"}]\n'
            'TABLES = {"lines": _lines, "extras_ledger": "data/extras.csv"}\n',
        )
        sources = {s.table: s.data for s in load_dataset(module)}
        assert sources["lines"] == [{"id": "L1", "line_id": "L1"}]
        assert isinstance(sources["extras_ledger"], Path)
        assert sources["extras_ledger"].name == "extras.csv"
        assert sources["extras_ledger"].parent.name == "data"

    def test_missing_tables(self, tmp_path):
        module = _write_dataset_module(tmp_path, "NODES = []\n")
        with pytest.raises(ValueError, match="must define TABLES"):
            load_dataset_from_module(module)

    def test_unknown_table(self, tmp_path):
        module = _write_dataset_module(tmp_path, 'TABLES = {"widgets": []}\n')
        with pytest.raises(ValueError, match="unknown table names: widgets"):
            load_dataset_from_module(module)

    def test_bad_value(self, tmp_path):
        module = _write_dataset_module(tmp_path, 'TABLES = {"lines": 42}\n')
        with pytest.raises(ValueError, match="must be rows"):
            load_dataset_from_module(module)

    def test_unsupported_file(self, tmp_path):
        module = _write_dataset_module(tmp_path, 'TABLES = {"lines": "lines.xlsx"}\n')
        with pytest.raises(ValueError, match="unsupported file extension"):
            load_dataset_from_module(module)

    def test_import_error(self):
        with pytest.raises(ValueError, match="Cannot import dataset module"):
            load_dataset_from_module("no_such_dataset_module_xyz")

    def test_missing_file(self, tmp_path):
        with pytest.raises(ValueError, match="not found"):
            load_dataset_from_file(tmp_path / "missing.py")

    def test_resolve_module_path(self, tmp_path):
        module = _write_dataset_module(tmp_path, "TABLES = {}\n")
        assert resolve_module_path(module).name == "__init__.py"
        with pytest.raises(ValueError, match="Cannot resolve"):
            resolve_module_path("no_such_dataset_module_xyz")


class TestSeedStore:
    def test_counts(self, conn):
        counts = seed_store(conn, load_dataset_from_file(SAMPLE_DATASET))
        assert counts["sewing_actuals"] == 3
        assert counts["storage_bin_card_transactions"] == 4
        assert _count(conn, "work_orders") == 2

    def test_failure_writes_nothing(self, conn, tmp_path):
        module = _write_dataset_module(
            tmp_path,
            'TABLES = {"lines": [{"id": "L1", "line_id": "L1"}], '
            '"extras_ledger": "missing.csv"}\n',
        )
        with pytest.raises(FileNotFoundError):
            seed_store(conn, load_dataset_from_module(module))
        assert _count(conn, "lines") == 0
