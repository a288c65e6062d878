"""Record types for submissions, bin cards and work orders.

Raw submissions are a tagged variant over six concrete record types::

    SewingTarget    SewingActual
    CuttingTarget   CuttingActual
    FinishingTarget FinishingActual

Every variant exposes ``stage_kind`` and ``phase`` (class-level tags) and
``key(mode)``, which is all the matcher needs. Records coming out of the
store are loosely shaped dicts (nested ``lines``/``work_orders`` lookups,
missing optional columns, ISO strings for dates); ``submission_from_record``
normalizes them into the typed variants and fails fast on missing
identifiers.

Example::

    sub = submission_from_record("sewing", "actual", {
        "id": "a1",
        "production_date": "2024-01-05",
        "line_id": "L1",
        "work_order_id": "wo-1",
        "good_today": 380,
        "hours_actual": 8,
    })
    sub.key("strict")   # ("sewing", date(2024, 1, 5), "L1", "wo-1")
    sub.per_hour()      # 47.5
"""

from __future__ import annotations

import dataclasses
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, ClassVar, Literal, Mapping

from .errors import RecordValidationError

StageKind = Literal["sewing", "cutting", "finishing"]
Phase = Literal["target", "actual"]
MatchMode = Literal["strict", "loose"]

STAGES: tuple[StageKind, ...] = ("sewing", "cutting", "finishing")
PHASES: tuple[Phase, ...] = ("target", "actual")
MATCH_MODES: tuple[MatchMode, ...] = ("strict", "loose")

DEFAULT_PLANNED_HOURS = 8

FINISHING_PROCESSES = (
    "thread_cutting",
    "inside_check",
    "top_side_check",
    "buttoning",
    "iron",
    "get_up",
    "poly",
    "carton",
)

EXTRAS_TRANSACTION_TYPES = (
    "transferred_to_stock",
    "sold",
    "replacement_shipment",
    "scrapped",
    "donated",
    "adjustment",
)


# ---------------------------------------------------------------------------
# Value parsing
# ---------------------------------------------------------------------------


def parse_date(value: Any) -> date | None:
    """Parse a calendar date from a date, datetime, or ISO string."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError as e:
            raise RecordValidationError(f"Invalid date: {value!r}") from e
    raise RecordValidationError(f"Invalid date: {value!r}")


def parse_datetime(value: Any) -> datetime | None:
    """Parse a timestamp from a datetime, date, or ISO string."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.strip())
        except ValueError as e:
            raise RecordValidationError(f"Invalid timestamp: {value!r}") from e
    raise RecordValidationError(f"Invalid timestamp: {value!r}")


def _rate(numerator: float | None, hours: float | None) -> float | None:
    if numerator is None or hours is None or hours <= 0:
        return None
    return round(numerator / hours, 2)


# ---------------------------------------------------------------------------
# Submissions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BlockerInfo:
    description: str | None = None
    impact: str | None = None
    owner: str | None = None
    status: str | None = None


@dataclass(frozen=True)
class Submission(ABC):
    """Fields shared by every department's target and actual reports.

    Attributes:
        id: Store identifier of the record.
        production_date: Calendar day the report is for.
        work_order_id: Work order (PO) the report belongs to.
        line_id: Production line. Finishing reports are department-wide
            and may leave this empty.
        line_name: Display name of the line, supplied by the caller.
        po_number, buyer, style, order_qty: Denormalized work-order fields.
        submitted_at: When the report was submitted, if known.
    """

    stage_kind: ClassVar[StageKind]
    phase: ClassVar[Phase]

    id: str
    production_date: date
    work_order_id: str
    line_id: str | None = None
    line_name: str | None = None
    po_number: str | None = None
    buyer: str | None = None
    style: str | None = None
    order_qty: int | None = None
    submitted_at: datetime | None = None
    remarks: str | None = None

    def key(self, mode: MatchMode = "strict") -> tuple:
        """Return the merge key for this record under *mode*."""
        base = (self.stage_kind, self.production_date, self.line_id)
        if mode == "strict":
            return base + (self.work_order_id,)
        if mode == "loose":
            return base
        raise ValueError(f"Unknown match mode: {mode!r}. Expected 'strict' or 'loose'.")

    @property
    def display_line(self) -> str:
        return self.line_name or self.line_id or "—"


@dataclass(frozen=True)
class TargetSubmission(Submission):
    phase: ClassVar[Phase] = "target"

    is_late: bool = False

    @abstractmethod
    def headline_qty(self) -> int:
        """Planned quantity shown for this target."""


@dataclass(frozen=True)
class ActualSubmission(Submission):
    phase: ClassVar[Phase] = "actual"

    has_blocker: bool = False
    blocker: BlockerInfo | None = None
    hours_actual: float | None = None
    actual_per_hour: float | None = None
    ot_hours_actual: float | None = None
    ot_manpower_actual: float | None = None

    @abstractmethod
    def output(self) -> int:
        """Primary output metric of this department."""

    def rejects(self) -> int:
        return 0

    def rework(self) -> int:
        return 0

    def per_hour(self) -> float | None:
        """Stored per-hour rate, else output divided by hours worked."""
        if self.actual_per_hour is not None:
            return float(self.actual_per_hour)
        return _rate(self.output(), self.hours_actual)

    def headline_qty(self) -> int:
        return self.output()


@dataclass(frozen=True)
class SewingTarget(TargetSubmission):
    stage_kind: ClassVar[StageKind] = "sewing"

    per_hour_target: float = 0
    manpower_planned: float | None = None
    hours_planned: float | None = None
    target_total_planned: int | None = None
    ot_hours_planned: float | None = None
    planned_stage_progress: float | None = None
    next_milestone: str | None = None
    estimated_ex_factory: date | None = None

    def planned_total(self) -> int:
        if self.target_total_planned is not None:
            return int(self.target_total_planned)
        hours = self.hours_planned if self.hours_planned is not None else DEFAULT_PLANNED_HOURS
        return round((self.per_hour_target or 0) * hours)

    def headline_qty(self) -> int:
        return self.planned_total()


@dataclass(frozen=True)
class SewingActual(ActualSubmission):
    stage_kind: ClassVar[StageKind] = "sewing"

    good_today: int = 0
    reject_today: int = 0
    rework_today: int = 0
    cumulative_good_total: int = 0
    manpower_actual: float | None = None
    actual_stage_progress: float | None = None

    def output(self) -> int:
        return self.good_today or 0

    def rejects(self) -> int:
        return self.reject_today or 0

    def rework(self) -> int:
        return self.rework_today or 0


@dataclass(frozen=True)
class CuttingTarget(TargetSubmission):
    stage_kind: ClassVar[StageKind] = "cutting"

    man_power: float | None = None
    marker_capacity: float | None = None
    lay_capacity: float | None = None
    cutting_capacity: float | None = None
    under_qty: float | None = None
    day_cutting: int | None = None
    day_input: int | None = None
    ot_hours_planned: float | None = None
    ot_manpower_planned: float | None = None

    def headline_qty(self) -> int:
        return self.day_cutting or 0


@dataclass(frozen=True)
class CuttingActual(ActualSubmission):
    stage_kind: ClassVar[StageKind] = "cutting"

    man_power: float | None = None
    marker_capacity: float | None = None
    lay_capacity: float | None = None
    cutting_capacity: float | None = None
    under_qty: float | None = None
    day_cutting: int = 0
    day_input: int = 0
    total_cutting: int | None = None
    total_input: int | None = None
    balance: int | None = None
    acknowledged: bool = False

    def output(self) -> int:
        return self.day_cutting or 0

    def headline_qty(self) -> int:
        return self.total_cutting or 0


@dataclass(frozen=True)
class FinishingTarget(TargetSubmission):
    """Finishing targets are per-hour rates for each process."""

    stage_kind: ClassVar[StageKind] = "finishing"

    thread_cutting: int = 0
    inside_check: int = 0
    top_side_check: int = 0
    buttoning: int = 0
    iron: int = 0
    get_up: int = 0
    poly: int = 0
    carton: int = 0
    planned_hours: float | None = None
    ot_hours_planned: float | None = None
    ot_manpower_planned: float | None = None

    def planned_process_total(self, process: str) -> int | None:
        """Target per-hour rate for *process* times planned hours."""
        if self.planned_hours is None or self.planned_hours <= 0:
            return None
        return round(getattr(self, process) * self.planned_hours)

    def headline_qty(self) -> int:
        return self.carton or 0


@dataclass(frozen=True)
class FinishingActual(ActualSubmission):
    """Finishing actuals are day totals per process; carton is the output."""

    stage_kind: ClassVar[StageKind] = "finishing"

    thread_cutting: int = 0
    inside_check: int = 0
    top_side_check: int = 0
    buttoning: int = 0
    iron: int = 0
    get_up: int = 0
    poly: int = 0
    carton: int = 0

    def output(self) -> int:
        return self.carton or 0


RawSubmission = (
    SewingTarget
    | SewingActual
    | CuttingTarget
    | CuttingActual
    | FinishingTarget
    | FinishingActual
)

SUBMISSION_TYPES: dict[tuple[StageKind, Phase], type[Submission]] = {
    ("sewing", "target"): SewingTarget,
    ("sewing", "actual"): SewingActual,
    ("cutting", "target"): CuttingTarget,
    ("cutting", "actual"): CuttingActual,
    ("finishing", "target"): FinishingTarget,
    ("finishing", "actual"): FinishingActual,
}

_DATE_FIELDS = {"production_date", "estimated_ex_factory"}
_DATETIME_FIELDS = {"submitted_at"}
_BOOL_FIELDS = {"is_late", "has_blocker", "acknowledged"}
_LINE_REQUIRED: set[StageKind] = {"sewing", "cutting"}


def _nested(record: Mapping[str, Any], outer: str, inner: str) -> Any:
    value = record.get(outer)
    if isinstance(value, Mapping):
        return value.get(inner)
    return None


def _line_name(record: Mapping[str, Any]) -> str | None:
    return (
        record.get("line_name")
        or _nested(record, "lines", "name")
        or _nested(record, "lines", "line_id")
    )


def _blocker(record: Mapping[str, Any]) -> BlockerInfo | None:
    parts = {
        "description": record.get("blocker_description"),
        "impact": record.get("blocker_impact"),
        "owner": record.get("blocker_owner"),
        "status": record.get("blocker_status"),
    }
    if all(v is None for v in parts.values()):
        return None
    return BlockerInfo(**parts)


def _require(record: Mapping[str, Any], name: str, context: str) -> Any:
    value = record.get(name)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise RecordValidationError(f"{context} is missing required field '{name}'.")
    return value


def submission_from_record(
    stage: StageKind, phase: Phase, record: Mapping[str, Any]
) -> RawSubmission:
    """Build a typed submission from a loosely shaped store record.

    Work-order display fields fall back to a nested ``work_orders`` mapping
    and the line name to a nested ``lines`` mapping. Optional columns that are
    missing or null take the field default. Unknown columns are ignored.

    Raises RecordValidationError when ``id``, ``production_date`` or
    ``work_order_id`` is missing, or ``line_id`` is missing for a sewing or
    cutting record.
    """
    cls = SUBMISSION_TYPES.get((stage, phase))
    if cls is None:
        raise RecordValidationError(f"Unknown submission type: {stage} {phase}.")

    context = f"{stage} {phase} record"
    rec_id = _require(record, "id", context)
    context = f"{stage} {phase} record '{rec_id}'"
    _require(record, "production_date", context)
    _require(record, "work_order_id", context)
    if stage in _LINE_REQUIRED:
        _require(record, "line_id", context)

    kwargs: dict[str, Any] = {}
    for f in dataclasses.fields(cls):
        if f.name == "blocker":
            continue
        value = record.get(f.name)
        if value is None:
            if f.name in ("po_number", "buyer", "style", "order_qty"):
                value = _nested(record, "work_orders", f.name)
            elif f.name == "line_name":
                value = _line_name(record)
            elif f.name == "hours_actual":
                # finishing logs store this as actual_hours
                value = record.get("actual_hours")
        if value is None:
            continue
        if f.name in _DATE_FIELDS:
            value = parse_date(value)
        elif f.name in _DATETIME_FIELDS:
            value = parse_datetime(value)
        elif f.name in _BOOL_FIELDS:
            value = bool(value)
        elif f.name in ("id", "work_order_id", "line_id"):
            value = str(value)
        kwargs[f.name] = value

    if issubclass(cls, ActualSubmission):
        kwargs["blocker"] = _blocker(record)

    return cls(**kwargs)


def finishing_from_log(record: Mapping[str, Any]) -> FinishingTarget | FinishingActual:
    """Build a finishing submission from a daily-log row (``log_type`` TARGET/OUTPUT)."""
    log_type = str(record.get("log_type") or "").upper()
    if log_type == "TARGET":
        return submission_from_record("finishing", "target", record)
    if log_type == "OUTPUT":
        return submission_from_record("finishing", "actual", record)
    raise RecordValidationError(
        f"Finishing log '{record.get('id')}' has unknown log_type {record.get('log_type')!r}."
    )


# ---------------------------------------------------------------------------
# Bin cards
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BinTransaction:
    """One inventory movement on a bin card.

    ``running_receive_total`` and ``balance_qty`` are the values as stored;
    the ledger recomputes both and reports disagreement.
    """

    id: str
    bin_card_id: str
    transaction_date: date
    receive_qty: int = 0
    issue_qty: int = 0
    running_receive_total: int | None = None
    balance_qty: int | None = None
    remarks: str | None = None
    created_at: datetime | None = None
    batch_id: str | None = None

    def __post_init__(self) -> None:
        if self.receive_qty < 0 or self.issue_qty < 0:
            raise RecordValidationError(
                f"Transaction '{self.id}': receive and issue quantities must be >= 0 "
                f"(got receive={self.receive_qty}, issue={self.issue_qty})."
            )


@dataclass(frozen=True)
class BinCard:
    """A per-PO inventory card with an append-only transaction list."""

    id: str
    work_order_id: str | None = None
    po_number: str | None = None
    buyer: str | None = None
    style: str | None = None
    item: str | None = None
    supplier_name: str | None = None
    description: str | None = None
    group_signature: str | None = None
    group_name: str | None = None
    bin_group_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    transactions: tuple[BinTransaction, ...] = field(default_factory=tuple)

    @property
    def group_key(self) -> str | None:
        """Signature of the PO set this card shares a lot with, if any."""
        return self.group_signature or self.bin_group_id or None


def transaction_from_record(record: Mapping[str, Any]) -> BinTransaction:
    context = "bin card transaction"
    txn_id = _require(record, "id", context)
    context = f"bin card transaction '{txn_id}'"
    card_id = _require(record, "bin_card_id", context)
    txn_date = parse_date(_require(record, "transaction_date", context))

    def _int(name: str) -> int | None:
        value = record.get(name)
        return None if value is None else int(value)

    return BinTransaction(
        id=str(txn_id),
        bin_card_id=str(card_id),
        transaction_date=txn_date,
        receive_qty=_int("receive_qty") or 0,
        issue_qty=_int("issue_qty") or 0,
        running_receive_total=_int("ttl_receive") if "ttl_receive" in record else _int("running_receive_total"),
        balance_qty=_int("balance_qty"),
        remarks=record.get("remarks"),
        created_at=parse_datetime(record.get("created_at")),
        batch_id=record.get("batch_id"),
    )


def bin_card_from_record(
    record: Mapping[str, Any], transactions: tuple[BinTransaction, ...] = ()
) -> BinCard:
    card_id = _require(record, "id", "bin card")
    return BinCard(
        id=str(card_id),
        work_order_id=record.get("work_order_id"),
        po_number=record.get("po_number") or _nested(record, "work_orders", "po_number"),
        buyer=record.get("buyer") or _nested(record, "work_orders", "buyer"),
        style=record.get("style") or _nested(record, "work_orders", "style"),
        item=record.get("item") or _nested(record, "work_orders", "item"),
        supplier_name=record.get("supplier_name"),
        description=record.get("description"),
        group_signature=record.get("po_set_signature") or record.get("group_signature"),
        group_name=record.get("group_name"),
        bin_group_id=record.get("bin_group_id"),
        created_at=parse_datetime(record.get("created_at")),
        updated_at=parse_datetime(record.get("updated_at")),
        transactions=tuple(transactions),
    )


# ---------------------------------------------------------------------------
# Work orders and extras
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WorkOrder:
    id: str
    po_number: str
    buyer: str = ""
    style: str = ""
    item: str | None = None
    color: str | None = None
    order_qty: int = 0
    planned_ex_factory: date | None = None
    status: str | None = None
    line_names: tuple[str, ...] = ()

    @property
    def is_active(self) -> bool:
        return self.status in ("in_progress", "not_started")


def work_order_from_record(record: Mapping[str, Any]) -> WorkOrder:
    wo_id = _require(record, "id", "work order")
    context = f"work order '{wo_id}'"
    line_names = record.get("line_names") or ()
    if isinstance(line_names, str):
        line_names = tuple(n.strip() for n in line_names.split(",") if n.strip())
    return WorkOrder(
        id=str(wo_id),
        po_number=str(_require(record, "po_number", context)),
        buyer=record.get("buyer") or "",
        style=record.get("style") or "",
        item=record.get("item"),
        color=record.get("color"),
        order_qty=int(record.get("order_qty") or 0),
        planned_ex_factory=parse_date(record.get("planned_ex_factory")),
        status=record.get("status"),
        line_names=tuple(line_names),
    )


@dataclass(frozen=True)
class ExtrasEntry:
    id: str
    work_order_id: str
    transaction_type: str
    quantity: int
    notes: str | None = None
    created_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.transaction_type not in EXTRAS_TRANSACTION_TYPES:
            raise RecordValidationError(
                f"Extras entry '{self.id}': unknown transaction type "
                f"{self.transaction_type!r}."
            )


def extras_from_record(record: Mapping[str, Any]) -> ExtrasEntry:
    entry_id = _require(record, "id", "extras entry")
    context = f"extras entry '{entry_id}'"
    return ExtrasEntry(
        id=str(entry_id),
        work_order_id=str(_require(record, "work_order_id", context)),
        transaction_type=str(record.get("transaction_type") or "sold"),
        quantity=int(record.get("quantity") or 0),
        notes=record.get("notes"),
        created_at=parse_datetime(record.get("created_at")),
    )
