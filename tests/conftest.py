"""Shared fixtures and helpers for the floorledger test suite."""

import importlib
import sys
import uuid
from dataclasses import replace
from datetime import date, datetime
from pathlib import Path

import duckdb
import pytest

from floorledger.dataset import load_dataset_from_file, seed_store
from floorledger.models import (
    BinCard,
    BinTransaction,
    CuttingActual,
    FinishingActual,
    FinishingTarget,
    SewingActual,
    SewingTarget,
)
from floorledger.store import init_store

SAMPLE_DATASET = Path(__file__).resolve().parent.parent / "examples" / "sample_factory.py"

D1 = date(2024, 1, 5)
D2 = date(2024, 1, 6)


@pytest.fixture
def conn():
    """In-memory DuckDB connection with the store tables for each test."""
    c = duckdb.connect(":memory:")
    init_store(c)
    yield c
    c.close()


@pytest.fixture
def seeded(conn):
    """Store loaded with the sample factory dataset."""
    seed_store(conn, load_dataset_from_file(SAMPLE_DATASET))
    return conn


def _sewing_target(**kwargs) -> SewingTarget:
    defaults = {
        "id": "st-1",
        "production_date": D1,
        "work_order_id": "wo-1",
        "line_id": "L1",
        "per_hour_target": 50,
        "hours_planned": 8,
    }
    defaults.update(kwargs)
    return SewingTarget(**defaults)


def _sewing_actual(**kwargs) -> SewingActual:
    defaults = {
        "id": "sa-1",
        "production_date": D1,
        "work_order_id": "wo-1",
        "line_id": "L1",
        "good_today": 380,
        "hours_actual": 8,
    }
    defaults.update(kwargs)
    return SewingActual(**defaults)


def _cutting_actual(**kwargs) -> CuttingActual:
    defaults = {
        "id": "ca-1",
        "production_date": D1,
        "work_order_id": "wo-1",
        "line_id": "L1",
        "day_cutting": 600,
        "total_cutting": 600,
    }
    defaults.update(kwargs)
    return CuttingActual(**defaults)


def _finishing_target(**kwargs) -> FinishingTarget:
    defaults = {
        "id": "ft-1",
        "production_date": D1,
        "work_order_id": "wo-1",
        "carton": 50,
        "planned_hours": 8,
    }
    defaults.update(kwargs)
    return FinishingTarget(**defaults)


def _finishing_actual(**kwargs) -> FinishingActual:
    defaults = {
        "id": "fa-1",
        "production_date": D1,
        "work_order_id": "wo-1",
        "carton": 420,
        "hours_actual": 8,
    }
    defaults.update(kwargs)
    return FinishingActual(**defaults)


def _txn(txn_id: str, day: date, receive: int = 0, issue: int = 0, **kwargs) -> BinTransaction:
    defaults = {
        "bin_card_id": "card-1",
        "created_at": datetime(day.year, day.month, day.day, 9, 0),
    }
    defaults.update(kwargs)
    return BinTransaction(
        id=txn_id, transaction_date=day, receive_qty=receive, issue_qty=issue, **defaults
    )


def _card(card_id: str = "card-1", txns=(), **kwargs) -> BinCard:
    """Helper to create a BinCard whose transactions point at it."""
    transactions = tuple(replace(t, bin_card_id=card_id) for t in txns)
    defaults = {"po_number": "PO-100", "buyer": "Northwind", "style": "Oxford"}
    defaults.update(kwargs)
    return BinCard(id=card_id, transactions=transactions, **defaults)


def _write_dataset_module(tmp_path: Path, source: str) -> str:
    """Create a temporary dataset package and return its module path."""
    module_name = f"dataset_{uuid.uuid4().hex}"
    module_dir = tmp_path / module_name
    module_dir.mkdir()
    (module_dir / "__init__.py").write_text(source)
    if str(tmp_path) not in sys.path:
        sys.path.insert(0, str(tmp_path))
    importlib.invalidate_caches()
    return module_name


def _count(conn: duckdb.DuckDBPyConnection, table: str) -> int:
    return conn.execute(f'SELECT count(*) FROM "{table}"').fetchone()[0]
