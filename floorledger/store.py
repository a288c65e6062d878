"""DuckDB record store.

Centralizes table creation, the read path that feeds the matcher and the
ledger, and the few write paths the engine allows:

- bin card deletion (transactions first, then the card)
- blocker resolution (status fields only)
- appending bin card transactions, one card or a bulk batch
- recording extras consumption

Write paths run inside a single DuckDB transaction and roll back on any
failure, so a refused or failed operation leaves the store unchanged.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import date, datetime, timezone
from typing import Any, Iterator, Sequence

import duckdb

from .errors import LedgerError, RecordValidationError
from .kpi import QualitySummary, check_extras_consumption, extras_consumed, summarize_quality
from .ledger import (
    BulkPlan,
    append_transaction as append_to_card,
    build_bin_cards,
    check_card_deletable,
    delete_transactions,
    plan_bulk_entry,
)
from .models import (
    STAGES,
    BinCard,
    BinTransaction,
    ExtrasEntry,
    Phase,
    RawSubmission,
    StageKind,
    WorkOrder,
    extras_from_record,
    submission_from_record,
    work_order_from_record,
)

log = logging.getLogger(__name__)

SUBMISSION_TABLES: dict[tuple[StageKind, Phase], str] = {
    ("sewing", "target"): "sewing_targets",
    ("sewing", "actual"): "sewing_actuals",
    ("cutting", "target"): "cutting_targets",
    ("cutting", "actual"): "cutting_actuals",
    ("finishing", "target"): "finishing_daily_logs",
    ("finishing", "actual"): "finishing_daily_logs",
}

FINISHING_LOG_TYPES: dict[Phase, str] = {"target": "TARGET", "actual": "OUTPUT"}

ACTUAL_TABLES: dict[StageKind, str] = {
    "sewing": "sewing_actuals",
    "cutting": "cutting_actuals",
    "finishing": "finishing_daily_logs",
}

STORE_TABLES = (
    "work_orders",
    "lines",
    "work_order_line_assignments",
    "sewing_targets",
    "sewing_actuals",
    "cutting_targets",
    "cutting_actuals",
    "finishing_daily_logs",
    "storage_bin_cards",
    "storage_bin_card_transactions",
    "extras_ledger",
)

_BLOCKER_COLUMNS = """
            has_blocker BOOLEAN DEFAULT false,
            blocker_description VARCHAR,
            blocker_impact VARCHAR,
            blocker_owner VARCHAR,
            blocker_status VARCHAR,
"""

_FINISHING_PROCESS_COLUMNS = """
            thread_cutting INTEGER DEFAULT 0,
            inside_check INTEGER DEFAULT 0,
            top_side_check INTEGER DEFAULT 0,
            buttoning INTEGER DEFAULT 0,
            iron INTEGER DEFAULT 0,
            get_up INTEGER DEFAULT 0,
            poly INTEGER DEFAULT 0,
            carton INTEGER DEFAULT 0,
"""

_CUTTING_CAPACITY_COLUMNS = """
            man_power DOUBLE,
            marker_capacity DOUBLE,
            lay_capacity DOUBLE,
            cutting_capacity DOUBLE,
            under_qty DOUBLE,
"""


def init_store(conn: duckdb.DuckDBPyConnection) -> None:
    """Ensure all store tables exist."""
    ensure_reference_tables(conn)
    ensure_sewing_tables(conn)
    ensure_cutting_tables(conn)
    ensure_finishing_tables(conn)
    ensure_storage_tables(conn)
    ensure_extras_ledger(conn)


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------


def ensure_reference_tables(conn: duckdb.DuckDBPyConnection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS work_orders (
            id VARCHAR PRIMARY KEY,
            po_number VARCHAR NOT NULL,
            buyer VARCHAR,
            style VARCHAR,
            item VARCHAR,
            color VARCHAR,
            order_qty INTEGER DEFAULT 0,
            planned_ex_factory DATE,
            status VARCHAR,
            line_id VARCHAR
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS lines (
            id VARCHAR PRIMARY KEY,
            line_id VARCHAR NOT NULL,
            name VARCHAR,
            is_active BOOLEAN DEFAULT true
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS work_order_line_assignments (
            work_order_id VARCHAR NOT NULL,
            line_id VARCHAR NOT NULL,
            UNIQUE (work_order_id, line_id)
        )
        """
    )


def ensure_sewing_tables(conn: duckdb.DuckDBPyConnection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS sewing_targets (
            id VARCHAR PRIMARY KEY,
            production_date DATE NOT NULL,
            line_id VARCHAR NOT NULL,
            work_order_id VARCHAR NOT NULL,
            per_hour_target DOUBLE DEFAULT 0,
            manpower_planned DOUBLE,
            hours_planned DOUBLE,
            target_total_planned INTEGER,
            ot_hours_planned DOUBLE,
            planned_stage_progress DOUBLE,
            next_milestone VARCHAR,
            estimated_ex_factory DATE,
            is_late BOOLEAN DEFAULT false,
            remarks VARCHAR,
            submitted_at TIMESTAMP
        )
        """
    )
    conn.execute(
        f"""
        CREATE TABLE IF NOT EXISTS sewing_actuals (
            id VARCHAR PRIMARY KEY,
            production_date DATE NOT NULL,
            line_id VARCHAR NOT NULL,
            work_order_id VARCHAR NOT NULL,
            good_today INTEGER DEFAULT 0,
            reject_today INTEGER DEFAULT 0,
            rework_today INTEGER DEFAULT 0,
            cumulative_good_total INTEGER DEFAULT 0,
            manpower_actual DOUBLE,
            hours_actual DOUBLE,
            actual_per_hour DOUBLE,
            ot_hours_actual DOUBLE,
            ot_manpower_actual DOUBLE,
            actual_stage_progress DOUBLE,
            {_BLOCKER_COLUMNS}
            remarks VARCHAR,
            submitted_at TIMESTAMP
        )
        """
    )


def ensure_cutting_tables(conn: duckdb.DuckDBPyConnection) -> None:
    conn.execute(
        f"""
        CREATE TABLE IF NOT EXISTS cutting_targets (
            id VARCHAR PRIMARY KEY,
            production_date DATE NOT NULL,
            line_id VARCHAR NOT NULL,
            work_order_id VARCHAR NOT NULL,
            {_CUTTING_CAPACITY_COLUMNS}
            day_cutting INTEGER,
            day_input INTEGER,
            ot_hours_planned DOUBLE,
            ot_manpower_planned DOUBLE,
            is_late BOOLEAN DEFAULT false,
            remarks VARCHAR,
            submitted_at TIMESTAMP
        )
        """
    )
    conn.execute(
        f"""
        CREATE TABLE IF NOT EXISTS cutting_actuals (
            id VARCHAR PRIMARY KEY,
            production_date DATE NOT NULL,
            line_id VARCHAR NOT NULL,
            work_order_id VARCHAR NOT NULL,
            {_CUTTING_CAPACITY_COLUMNS}
            day_cutting INTEGER DEFAULT 0,
            day_input INTEGER DEFAULT 0,
            total_cutting INTEGER,
            total_input INTEGER,
            balance INTEGER,
            hours_actual DOUBLE,
            actual_per_hour DOUBLE,
            ot_hours_actual DOUBLE,
            ot_manpower_actual DOUBLE,
            acknowledged BOOLEAN DEFAULT false,
            {_BLOCKER_COLUMNS}
            remarks VARCHAR,
            submitted_at TIMESTAMP
        )
        """
    )


def ensure_finishing_tables(conn: duckdb.DuckDBPyConnection) -> None:
    """Finishing targets and outputs share one daily-log table keyed by log_type."""
    conn.execute(
        f"""
        CREATE TABLE IF NOT EXISTS finishing_daily_logs (
            id VARCHAR PRIMARY KEY,
            log_type VARCHAR NOT NULL CHECK (log_type IN ('TARGET', 'OUTPUT')),
            production_date DATE NOT NULL,
            line_id VARCHAR,
            work_order_id VARCHAR NOT NULL,
            {_FINISHING_PROCESS_COLUMNS}
            planned_hours DOUBLE,
            actual_hours DOUBLE,
            actual_per_hour DOUBLE,
            ot_hours_planned DOUBLE,
            ot_hours_actual DOUBLE,
            ot_manpower_planned DOUBLE,
            ot_manpower_actual DOUBLE,
            is_late BOOLEAN DEFAULT false,
            {_BLOCKER_COLUMNS}
            remarks VARCHAR,
            submitted_at TIMESTAMP
        )
        """
    )


def ensure_storage_tables(conn: duckdb.DuckDBPyConnection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS storage_bin_cards (
            id VARCHAR PRIMARY KEY,
            work_order_id VARCHAR,
            supplier_name VARCHAR,
            description VARCHAR,
            po_set_signature VARCHAR,
            group_name VARCHAR,
            bin_group_id VARCHAR,
            created_at TIMESTAMP DEFAULT current_timestamp,
            updated_at TIMESTAMP DEFAULT current_timestamp
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS storage_bin_card_transactions (
            id VARCHAR PRIMARY KEY,
            bin_card_id VARCHAR NOT NULL,
            transaction_date DATE NOT NULL,
            receive_qty INTEGER DEFAULT 0 CHECK (receive_qty >= 0),
            issue_qty INTEGER DEFAULT 0 CHECK (issue_qty >= 0),
            ttl_receive INTEGER,
            balance_qty INTEGER,
            remarks VARCHAR,
            batch_id VARCHAR,
            created_at TIMESTAMP DEFAULT current_timestamp,
            UNIQUE (bin_card_id, transaction_date)
        )
        """
    )


def ensure_extras_ledger(conn: duckdb.DuckDBPyConnection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS extras_ledger (
            id VARCHAR PRIMARY KEY,
            work_order_id VARCHAR NOT NULL,
            transaction_type VARCHAR NOT NULL,
            quantity INTEGER NOT NULL,
            notes VARCHAR,
            created_at TIMESTAMP DEFAULT current_timestamp
        )
        """
    )


# ---------------------------------------------------------------------------
# Read path
# ---------------------------------------------------------------------------


def _records(
    conn: duckdb.DuckDBPyConnection, query: str, params: Sequence[Any] | None = None
) -> list[dict[str, Any]]:
    cursor = conn.execute(query, list(params or []))
    columns = [d[0] for d in cursor.description]
    return [dict(zip(columns, row)) for row in cursor.fetchall()]


def _submission_query(
    stage: StageKind,
    phase: Phase,
    *,
    work_order_id: str | None,
    line_id: str | None,
    date_from: date | None,
    date_to: date | None,
) -> tuple[str, list[Any]]:
    table = SUBMISSION_TABLES[(stage, phase)]
    where: list[str] = []
    params: list[Any] = []
    if stage == "finishing":
        where.append("s.log_type = ?")
        params.append(FINISHING_LOG_TYPES[phase])
    if work_order_id is not None:
        where.append("s.work_order_id = ?")
        params.append(work_order_id)
    if line_id is not None:
        where.append("s.line_id = ?")
        params.append(line_id)
    if date_from is not None:
        where.append("s.production_date >= ?")
        params.append(date_from)
    if date_to is not None:
        where.append("s.production_date <= ?")
        params.append(date_to)

    query = f"""
        SELECT
            s.*,
            COALESCE(l.name, l.line_id) AS line_name,
            w.po_number,
            w.buyer,
            w.style,
            w.order_qty
        FROM {table} s
        LEFT JOIN lines l ON l.id = s.line_id
        LEFT JOIN work_orders w ON w.id = s.work_order_id
        {"WHERE " + " AND ".join(where) if where else ""}
        ORDER BY s.production_date, s.submitted_at NULLS FIRST, s.id
    """
    return query, params


def load_submissions(
    conn: duckdb.DuckDBPyConnection,
    *,
    work_order_id: str | None = None,
    line_id: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    stages: Sequence[StageKind] = STAGES,
) -> list[RawSubmission]:
    """Load typed targets and actuals with line and work-order display fields.

    Raises RecordValidationError on a malformed row.
    """
    out: list[RawSubmission] = []
    for stage in stages:
        for phase in ("target", "actual"):
            query, params = _submission_query(
                stage,
                phase,
                work_order_id=work_order_id,
                line_id=line_id,
                date_from=date_from,
                date_to=date_to,
            )
            rows = _records(conn, query, params)
            out.extend(submission_from_record(stage, phase, r) for r in rows)
    log.debug("Loaded %d submissions", len(out))
    return out


_BIN_CARD_QUERY = """
    SELECT
        c.*,
        w.po_number,
        w.buyer,
        w.style,
        w.item
    FROM storage_bin_cards c
    LEFT JOIN work_orders w ON w.id = c.work_order_id
"""


def load_bin_cards(
    conn: duckdb.DuckDBPyConnection,
    *,
    work_order_id: str | None = None,
    card_ids: Sequence[str] | None = None,
) -> list[BinCard]:
    """Load bin cards with their transactions in ledger order.

    Without filters every transaction is loaded, so transactions pointing at
    a missing card raise OrphanTransactionError.
    """
    where: list[str] = []
    params: list[Any] = []
    if work_order_id is not None:
        where.append("c.work_order_id = ?")
        params.append(work_order_id)
    if card_ids is not None:
        if not card_ids:
            return []
        where.append(f"c.id IN ({', '.join('?' for _ in card_ids)})")
        params.extend(card_ids)
    clause = f"WHERE {' AND '.join(where)}" if where else ""

    cards = _records(conn, f"{_BIN_CARD_QUERY} {clause} ORDER BY c.created_at, c.id", params)
    if where:
        txns = _records(
            conn,
            f"""
            SELECT t.* FROM storage_bin_card_transactions t
            WHERE t.bin_card_id IN (SELECT c.id FROM storage_bin_cards c {clause})
            ORDER BY t.transaction_date, t.created_at NULLS FIRST
            """,
            params,
        )
    else:
        txns = _records(
            conn,
            "SELECT * FROM storage_bin_card_transactions "
            "ORDER BY transaction_date, created_at NULLS FIRST",
        )
    return build_bin_cards(cards, txns)


def load_work_orders(
    conn: duckdb.DuckDBPyConnection, *, active_only: bool = False
) -> list[WorkOrder]:
    """Load work orders with the names of their assigned lines."""
    assigned: dict[str, list[str]] = {}
    for r in _records(
        conn,
        """
        SELECT a.work_order_id, COALESCE(l.name, l.line_id, a.line_id) AS line_name
        FROM work_order_line_assignments a
        LEFT JOIN lines l ON l.id = a.line_id
        ORDER BY a.work_order_id, line_name
        """,
    ):
        assigned.setdefault(r["work_order_id"], []).append(r["line_name"])

    where = "WHERE w.status IN ('in_progress', 'not_started')" if active_only else ""
    rows = _records(
        conn,
        f"""
        SELECT w.*, COALESCE(l.name, l.line_id) AS primary_line
        FROM work_orders w
        LEFT JOIN lines l ON l.id = w.line_id
        {where}
        ORDER BY w.planned_ex_factory NULLS LAST, w.po_number
        """,
    )
    out: list[WorkOrder] = []
    for r in rows:
        names = assigned.get(r["id"]) or ([r["primary_line"]] if r["primary_line"] else [])
        out.append(work_order_from_record({**r, "line_names": names}))
    return out


def load_extras(
    conn: duckdb.DuckDBPyConnection, *, work_order_id: str | None = None
) -> list[ExtrasEntry]:
    if work_order_id is None:
        rows = _records(conn, "SELECT * FROM extras_ledger ORDER BY created_at, id")
    else:
        rows = _records(
            conn,
            "SELECT * FROM extras_ledger WHERE work_order_id = ? ORDER BY created_at, id",
            [work_order_id],
        )
    return [extras_from_record(r) for r in rows]


# ---------------------------------------------------------------------------
# Write paths
# ---------------------------------------------------------------------------


@contextmanager
def transaction(conn: duckdb.DuckDBPyConnection) -> Iterator[duckdb.DuckDBPyConnection]:
    """Run a block in one DuckDB transaction; roll back if it raises."""
    conn.begin()
    try:
        yield conn
    except BaseException:
        conn.rollback()
        raise
    conn.commit()


def _load_card(conn: duckdb.DuckDBPyConnection, card_id: str) -> BinCard:
    cards = load_bin_cards(conn, card_ids=[card_id])
    if not cards:
        raise LedgerError(f"Unknown bin card '{card_id}'")
    return cards[0]


def delete_bin_card(
    conn: duckdb.DuckDBPyConnection, card_id: str, *, with_transactions: bool = False
) -> int:
    """Delete a bin card, returning the number of transactions removed.

    Refuses with DanglingTransactionsError while the card has transactions
    unless *with_transactions* is set, in which case they are deleted first.
    """
    with transaction(conn):
        card = _load_card(conn, card_id)
        removed = len(card.transactions)
        if with_transactions:
            card = delete_transactions(card)
            conn.execute(
                "DELETE FROM storage_bin_card_transactions WHERE bin_card_id = ?", [card_id]
            )
        check_card_deletable(card)
        conn.execute("DELETE FROM storage_bin_cards WHERE id = ?", [card_id])
    log.info("Deleted bin card %s (%d transactions)", card_id, removed if with_transactions else 0)
    return removed if with_transactions else 0


def resolve_blocker(
    conn: duckdb.DuckDBPyConnection, actual_id: str, stage: StageKind = "sewing"
) -> None:
    """Mark the blocker on an actual as resolved; nothing else changes."""
    table = ACTUAL_TABLES[stage]
    extra = " AND log_type = 'OUTPUT'" if stage == "finishing" else ""
    with transaction(conn):
        found = conn.execute(
            f"SELECT has_blocker FROM {table} WHERE id = ?{extra}", [actual_id]
        ).fetchone()
        if found is None:
            raise RecordValidationError(f"No {stage} actual with id '{actual_id}'.")
        conn.execute(
            f"UPDATE {table} SET has_blocker = false, blocker_status = 'resolved' WHERE id = ?",
            [actual_id],
        )
    log.info("Resolved blocker on %s actual %s", stage, actual_id)


def append_transaction(
    conn: duckdb.DuckDBPyConnection,
    card_id: str,
    transaction_date: date,
    receive_qty: int = 0,
    issue_qty: int = 0,
    *,
    remarks: str | None = None,
    batch_id: str | None = None,
    created_at: datetime | None = None,
    allow_negative: bool = False,
) -> BinTransaction:
    """Validate a transaction against the card's ledger and insert it."""
    with transaction(conn):
        card = _load_card(conn, card_id)
        _, txn = append_to_card(
            card,
            transaction_date,
            receive_qty,
            issue_qty,
            remarks=remarks,
            batch_id=batch_id,
            created_at=created_at,
            allow_negative=allow_negative,
        )
        insert_transactions(conn, [txn])
    return txn


def bulk_entry(
    conn: duckdb.DuckDBPyConnection,
    card_ids: Sequence[str],
    transaction_date: date,
    receive_qty: int = 0,
    issue_qty: int = 0,
    *,
    remarks: str | None = None,
    allow_negative: bool = False,
) -> BulkPlan:
    """Apply one receive/issue to many cards under a shared batch id.

    Cards with an entry on *transaction_date* are skipped and cards that
    would go negative are blocked; the rest are inserted together.
    """
    with transaction(conn):
        cards = load_bin_cards(conn, card_ids=list(card_ids))
        missing = set(card_ids) - {c.id for c in cards}
        if missing:
            raise LedgerError(
                "Unknown bin card(s): " + ", ".join(repr(c) for c in sorted(missing))
            )
        plan = plan_bulk_entry(
            cards,
            transaction_date,
            receive_qty,
            issue_qty,
            remarks=remarks,
            allow_negative=allow_negative,
        )
        if plan.transactions:
            insert_transactions(conn, plan.transactions)
    log.info(
        "Bulk entry %s: %d inserted, %d skipped, %d blocked",
        plan.batch_id,
        len(plan.transactions),
        len(plan.skipped),
        len(plan.blocked),
    )
    return plan


def _naive_utc(value: datetime | None) -> datetime | None:
    # TIMESTAMP columns hold naive UTC
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def insert_transactions(
    conn: duckdb.DuckDBPyConnection, transactions: Sequence[BinTransaction]
) -> None:
    """Insert already validated transactions and touch their cards."""
    conn.executemany(
        """
        INSERT INTO storage_bin_card_transactions
            (id, bin_card_id, transaction_date, receive_qty, issue_qty,
             ttl_receive, balance_qty, remarks, batch_id, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        [
            [
                t.id,
                t.bin_card_id,
                t.transaction_date,
                t.receive_qty,
                t.issue_qty,
                t.running_receive_total,
                t.balance_qty,
                t.remarks,
                t.batch_id,
                _naive_utc(t.created_at),
            ]
            for t in transactions
        ],
    )
    for card_id in {t.bin_card_id for t in transactions}:
        conn.execute(
            "UPDATE storage_bin_cards SET updated_at = current_timestamp WHERE id = ?",
            [card_id],
        )


def extras_available(conn: duckdb.DuckDBPyConnection, work_order_id: str) -> QualitySummary:
    """Quality summary of a work order including the extras still available."""
    found = conn.execute(
        "SELECT order_qty FROM work_orders WHERE id = ?", [work_order_id]
    ).fetchone()
    if found is None:
        raise RecordValidationError(f"Unknown work order '{work_order_id}'.")
    consumed = extras_consumed(load_extras(conn, work_order_id=work_order_id))
    return summarize_quality(
        load_submissions(conn, work_order_id=work_order_id),
        order_qty=found[0] or 0,
        extras_consumed=consumed,
    )


def record_extras(
    conn: duckdb.DuckDBPyConnection, entry: ExtrasEntry, *, is_admin: bool = False
) -> None:
    """Insert an extras ledger entry after checking it against what is available."""
    with transaction(conn):
        quality = extras_available(conn, entry.work_order_id)
        check_extras_consumption(
            entry.quantity,
            entry.transaction_type,
            quality.extras_available,
            is_admin=is_admin,
            notes=entry.notes,
        )
        conn.execute(
            """
            INSERT INTO extras_ledger (id, work_order_id, transaction_type, quantity, notes, created_at)
            VALUES (?, ?, ?, ?, ?, COALESCE(?, current_timestamp))
            """,
            [
                entry.id,
                entry.work_order_id,
                entry.transaction_type,
                entry.quantity,
                entry.notes,
                _naive_utc(entry.created_at),
            ],
        )
    log.info(
        "Recorded %d extras (%s) for work order %s",
        entry.quantity,
        entry.transaction_type,
        entry.work_order_id,
    )
