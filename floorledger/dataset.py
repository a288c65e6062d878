"""Dataset module loader.

A dataset is a Python module defining ``TABLES``: a dict mapping store table
names to their rows. Each value is one of:

- rows as ``list[dict]``, ``dict[str, list]`` or a ``pl.DataFrame``
- a callable returning such rows
- a path (``str`` or ``Path``) to a ``.csv`` or ``.parquet`` file, resolved
  relative to the module's directory

Example::

    TABLES = {
        "work_orders": [{"id": "wo-1", "po_number": "PO-100", "order_qty": 1000}],
        "sewing_actuals": "data/sewing_actuals.csv",
    }
"""

import importlib
import importlib.util
from dataclasses import dataclass
from pathlib import Path
from types import ModuleType
from typing import Any

import duckdb
import polars as pl

from .ingest import SUPPORTED_FILE_EXTENSIONS, ingest_file, ingest_table
from .store import STORE_TABLES, transaction


@dataclass(frozen=True)
class TableSource:
    table: str
    data: Any  # rows, or a Path to a csv/parquet file


def resolve_module_path(module_path: str) -> Path:
    """Resolve a module path to a source file path without importing it."""
    spec = importlib.util.find_spec(module_path)
    if spec is None or spec.origin is None:
        raise ValueError(f"Cannot resolve dataset module: {module_path}")
    if spec.origin in {"built-in", "frozen"}:
        raise ValueError(f"Dataset module has no source file: {module_path}")
    return Path(spec.origin).resolve()


def _resolve_value(table: str, value: Any, base_dir: Path) -> Any:
    if callable(value):
        value = value()
    if isinstance(value, str):
        value = Path(value)
    if isinstance(value, Path):
        path = value if value.is_absolute() else base_dir / value
        if path.suffix.lower() not in SUPPORTED_FILE_EXTENSIONS:
            raise ValueError(
                f"TABLES['{table}']: unsupported file extension: {path.suffix}"
            )
        return path.expanduser().resolve()
    if isinstance(value, (list, dict, pl.DataFrame)):
        return value
    raise ValueError(
        f"TABLES['{table}'] must be rows, a callable, or a csv/parquet path, "
        f"got {type(value).__name__}."
    )


def _parse_module(module: ModuleType) -> list[TableSource]:
    """Parse TABLES from a loaded module, in store table order."""
    if not hasattr(module, "TABLES"):
        raise ValueError("Dataset module must define TABLES dict.")
    tables = module.TABLES
    if not isinstance(tables, dict):
        raise ValueError("TABLES must be a dict mapping table name -> rows.")

    unknown = set(tables) - set(STORE_TABLES)
    if unknown:
        raise ValueError(
            f"TABLES has unknown table names: {', '.join(sorted(map(str, unknown)))}. "
            f"Allowed: {', '.join(STORE_TABLES)}"
        )

    base_dir = Path(module.__file__).resolve().parent if module.__file__ else Path.cwd()
    return [
        TableSource(table=name, data=_resolve_value(name, tables[name], base_dir))
        for name in STORE_TABLES
        if name in tables
    ]


def load_dataset_from_module(module_path: str) -> list[TableSource]:
    """Load a dataset from a dotted module path.

    Raises ValueError if the module cannot be imported or is invalid.
    """
    try:
        module = importlib.import_module(module_path)
    except ImportError as e:
        raise ValueError(f"Cannot import dataset module '{module_path}': {e}") from e
    except Exception as e:
        raise ValueError(f"Error loading dataset module '{module_path}': {e}") from e
    return _parse_module(module)


def load_dataset_from_file(path: Path) -> list[TableSource]:
    """Load a dataset from a ``.py`` file path."""
    path = Path(path).expanduser().resolve()
    if not path.exists():
        raise ValueError(f"Dataset file not found: {path}")
    spec = importlib.util.spec_from_file_location(f"_floorledger_dataset_{path.stem}", path)
    if spec is None or spec.loader is None:
        raise ValueError(f"Cannot load dataset file: {path}")
    module = importlib.util.module_from_spec(spec)
    try:
        spec.loader.exec_module(module)
    except Exception as e:
        raise ValueError(f"Error loading dataset file '{path}': {e}") from e
    return _parse_module(module)


def load_dataset(target: str) -> list[TableSource]:
    """Load a dataset from a ``.py`` path or a dotted module path."""
    if target.endswith(".py"):
        return load_dataset_from_file(Path(target))
    return load_dataset_from_module(target)


def seed_store(
    conn: duckdb.DuckDBPyConnection, sources: list[TableSource]
) -> dict[str, int]:
    """Append every source to its table in one transaction; returns row counts."""
    counts: dict[str, int] = {}
    with transaction(conn):
        for source in sources:
            if isinstance(source.data, Path):
                counts[source.table] = ingest_file(conn, source.data, source.table)
            else:
                counts[source.table] = ingest_table(conn, source.data, source.table)
    return counts
