from datetime import date

import polars as pl
import pytest

from floorledger.ingest import coerce_to_dataframe, ingest_file, ingest_table
from floorledger.store import load_work_orders
from tests.conftest import _count


class TestCoerceToDataframe:
    """Tests for coerce_to_dataframe."""

    def test_dataframe_passthrough(self):
        df = pl.DataFrame({"a": [1]})
        assert coerce_to_dataframe(df) is df

    def test_list_of_dicts_with_sparse_keys(self):
        df = coerce_to_dataframe([{"a": 1}, {"a": 2, "b": "x"}])
        assert df.columns == ["a", "b"]
        assert df["b"].to_list() == [None, "x"]

    def test_dict_of_lists(self):
        assert coerce_to_dataframe({"a": [1, 2]}).height == 2

    def test_unsupported(self):
        with pytest.raises(TypeError, match="Unsupported data type"):
            coerce_to_dataframe("nope")


class TestIngestTable:
    def test_rows_appended_by_name(self, conn):
        written = ingest_table(
            conn,
            [{"po_number": "PO-1", "id": "wo-1", "order_qty": 100, "planned_ex_factory": date(2024, 2, 1)}],
            "work_orders",
        )
        assert written == 1
        (wo,) = load_work_orders(conn)
        assert wo.po_number == "PO-1"
        assert wo.order_qty == 100

    def test_appends(self, conn):
        ingest_table(conn, [{"id": "L1", "line_id": "L1"}], "lines")
        ingest_table(conn, {"id": ["L2"], "line_id": ["L2"]}, "lines")
        assert _count(conn, "lines") == 2

    def test_empty_is_noop(self, conn):
        assert ingest_table(conn, [], "lines") == 0

    def test_unknown_table(self, conn):
        with pytest.raises(ValueError, match="Unknown store table"):
            ingest_table(conn, [{"x": 1}], "widgets")


class TestIngestFile:
    def test_csv_defaults_to_stem(self, conn, tmp_path):
        path = tmp_path / "lines.csv"
        path.write_text("id,line_id,name\nL1,L1,Line 1\nL2,L2,Line 2\n")
        assert ingest_file(conn, path) == 2
        assert _count(conn, "lines") == 2

    def test_parquet(self, conn, tmp_path):
        path = tmp_path / "extras.parquet"
        pl.DataFrame(
            {"id": ["x1"], "work_order_id": ["wo-1"], "transaction_type": ["sold"], "quantity": [3]}
        ).write_parquet(path)
        assert ingest_file(conn, path, "extras_ledger") == 1

    def test_missing_file(self, conn, tmp_path):
        with pytest.raises(FileNotFoundError):
            ingest_file(conn, tmp_path / "lines.csv")

    def test_unsupported_extension(self, conn, tmp_path):
        with pytest.raises(ValueError, match="Unsupported file extension"):
            ingest_file(conn, tmp_path / "lines.xlsx")
