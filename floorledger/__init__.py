"""Floorledger — submission reconciliation and storage ledger engine."""

from .errors import (
    AmbiguousGroupError,
    AmbiguousOrderError,
    BalanceDriftWarning,
    DanglingTransactionsError,
    DuplicateEntryError,
    ExtrasConsumptionError,
    LedgerError,
    NegativeBalanceError,
    OrphanTransactionError,
    RecordValidationError,
)
from .models import (
    BinCard,
    BinTransaction,
    CuttingActual,
    CuttingTarget,
    FinishingActual,
    FinishingTarget,
    SewingActual,
    SewingTarget,
    WorkOrder,
    submission_from_record,
)
from .matcher import Matcher, MergedSubmission, merge_submissions
from .status import compare_metrics, derive_status
from .ledger import append_transaction, compute_ledger, plan_bulk_entry
from .groups import group_bin_cards, rollup_group, storage_rows
from .kpi import build_pipeline, safe_rate, summarize_quality
from .health import build_overview, compute_health
from .store import init_store, load_bin_cards, load_submissions
from .export import build_report, write_report

__all__ = [
    # Errors
    "AmbiguousGroupError",
    "AmbiguousOrderError",
    "BalanceDriftWarning",
    "DanglingTransactionsError",
    "DuplicateEntryError",
    "ExtrasConsumptionError",
    "LedgerError",
    "NegativeBalanceError",
    "OrphanTransactionError",
    "RecordValidationError",
    # Records
    "BinCard",
    "BinTransaction",
    "CuttingActual",
    "CuttingTarget",
    "FinishingActual",
    "FinishingTarget",
    "SewingActual",
    "SewingTarget",
    "WorkOrder",
    "submission_from_record",
    # Matching
    "Matcher",
    "MergedSubmission",
    "merge_submissions",
    "compare_metrics",
    "derive_status",
    # Ledger
    "append_transaction",
    "compute_ledger",
    "plan_bulk_entry",
    "group_bin_cards",
    "rollup_group",
    "storage_rows",
    # KPIs
    "build_pipeline",
    "safe_rate",
    "summarize_quality",
    "build_overview",
    "compute_health",
    # Store
    "init_store",
    "load_bin_cards",
    "load_submissions",
    # Export
    "build_report",
    "write_report",
]
