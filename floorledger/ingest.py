"""Ingestion module — append tabular records to store tables.

Accepts Polars DataFrames, list[dict] (array of structs), or dict[str, list]
(struct of arrays). All are coerced to DataFrame before writing. CSV and
Parquet files are read with DuckDB's own readers.

Rows are appended by column name, so a source may omit optional columns
and list columns in any order; the table's defaults fill the gaps.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import duckdb
import polars as pl

from .store import STORE_TABLES

log = logging.getLogger(__name__)

# Type alias for data a dataset module can provide
TableData = Any  # pl.DataFrame | list[dict] | dict[str, list]

SUPPORTED_FILE_EXTENSIONS = {
    ".csv": "read_csv_auto",
    ".parquet": "read_parquet",
}


def coerce_to_dataframe(data: TableData) -> pl.DataFrame:
    """Convert supported tabular formats to a Polars DataFrame.

    Accepted formats:
    - pl.DataFrame: returned as-is
    - list[dict]: array of structs, e.g. [{"a": 1, "b": 2}, ...]
    - dict[str, list]: struct of arrays, e.g. {"a": [1, 2], "b": [3, 4]}

    Raises TypeError for unsupported formats.
    """
    if isinstance(data, pl.DataFrame):
        return data
    if isinstance(data, list):
        return pl.DataFrame(data, infer_schema_length=None)
    if isinstance(data, dict):
        return pl.DataFrame(data)
    raise TypeError(
        f"Unsupported data type: {type(data).__name__}. "
        f"Expected DataFrame, list[dict], or dict[str, list]."
    )


def _check_table(table_name: str) -> None:
    if table_name not in STORE_TABLES:
        raise ValueError(
            f"Unknown store table '{table_name}'. "
            f"Expected one of: {', '.join(STORE_TABLES)}"
        )


def _append_frame(
    conn: duckdb.DuckDBPyConnection, df: pl.DataFrame, table_name: str
) -> int:
    """Append a DataFrame to a store table using DuckDB's native DataFrame scan."""
    if df.width == 0 or df.height == 0:
        return 0
    conn.register("_df", df)
    try:
        conn.execute(f'INSERT INTO "{table_name}" BY NAME SELECT * FROM _df')
    finally:
        conn.unregister("_df")
    return df.height


def ingest_table(
    conn: duckdb.DuckDBPyConnection, data: TableData, table_name: str
) -> int:
    """Append tabular data to an existing store table; returns rows written.

    Accepts DataFrame, list[dict], or dict[str, list].
    """
    _check_table(table_name)
    df = coerce_to_dataframe(data)
    written = _append_frame(conn, df, table_name)
    log.info("Loaded %d rows into %s", written, table_name)
    return written


def _ensure_file_exists(path: Path) -> None:
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")


def _ingest_single_file(
    conn: duckdb.DuckDBPyConnection, path: Path, table_name: str, reader_fn: str
) -> int:
    """Append a single-file source (csv or parquet) using a DuckDB reader function."""
    _check_table(table_name)
    _ensure_file_exists(path)
    before = conn.execute(f'SELECT count(*) FROM "{table_name}"').fetchone()[0]
    conn.execute(
        f'INSERT INTO "{table_name}" BY NAME SELECT * FROM {reader_fn}(?)', [str(path)]
    )
    after = conn.execute(f'SELECT count(*) FROM "{table_name}"').fetchone()[0]
    log.info("Loaded %d rows from %s into %s", after - before, path.name, table_name)
    return after - before


def ingest_csv(conn: duckdb.DuckDBPyConnection, path: Path, table_name: str) -> int:
    return _ingest_single_file(conn, path, table_name, "read_csv_auto")


def ingest_parquet(
    conn: duckdb.DuckDBPyConnection, path: Path, table_name: str
) -> int:
    return _ingest_single_file(conn, path, table_name, "read_parquet")


def ingest_file(
    conn: duckdb.DuckDBPyConnection, path: Path, table_name: str | None = None
) -> int:
    """Append a CSV or Parquet file; the table defaults to the file's stem."""
    path = Path(path).expanduser().resolve()
    reader = SUPPORTED_FILE_EXTENSIONS.get(path.suffix.lower())
    if reader is None:
        raise ValueError(f"Unsupported file extension: {path.suffix}")
    return _ingest_single_file(conn, path, table_name or path.stem, reader)
