"""KPI and quality summaries over a set of submissions.

All rates go through ``safe_rate``: a zero or negative denominator, or a
non-finite result, yields 0 instead of NaN or infinity.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date
from typing import Iterable

from .errors import ExtrasConsumptionError
from .matcher import MergedSubmission
from .models import (
    EXTRAS_TRANSACTION_TYPES,
    ActualSubmission,
    BinCard,
    CuttingActual,
    ExtrasEntry,
    FinishingActual,
    SewingActual,
    StageKind,
    Submission,
)

PIPELINE_STAGES = ("storage", "cutting", "sewing", "finishing")

PIPELINE_TITLES = {
    "storage": "Storage",
    "cutting": "Cutting",
    "sewing": "Sewing",
    "finishing": "Finishing",
}


class _DivisionGuard(ArithmeticError):
    """A ratio had no usable denominator or produced a non-finite value."""


def _ratio(numerator: float, denominator: float | None) -> float:
    if denominator is None or denominator <= 0:
        raise _DivisionGuard
    value = numerator / denominator
    if not math.isfinite(value):
        raise _DivisionGuard
    return value


def safe_rate(numerator: float, denominator: float | None, scale: float = 100.0) -> float:
    """``numerator / denominator * scale``, or 0 when that is undefined."""
    try:
        return _ratio(numerator, denominator) * scale
    except _DivisionGuard:
        return 0.0


def _actuals(items: Iterable[MergedSubmission | Submission]) -> list[ActualSubmission]:
    out: list[ActualSubmission] = []
    for item in items:
        if isinstance(item, MergedSubmission):
            if item.actual is not None:
                out.append(item.actual)
        elif isinstance(item, ActualSubmission):
            out.append(item)
    return out


@dataclass(frozen=True)
class QualitySummary:
    total_output: int
    total_rejects: int
    total_rework: int
    reject_rate: float
    rework_rate: float
    order_qty: int
    extras_total: int
    extras_consumed: int
    extras_available: int


def extras_consumed(entries: Iterable[ExtrasEntry], work_order_id: str | None = None) -> int:
    return sum(
        e.quantity for e in entries if work_order_id is None or e.work_order_id == work_order_id
    )


def extras_total(sewing_output: int, order_qty: int | None) -> int:
    """Pieces sewn beyond the order quantity."""
    return max(sewing_output - (order_qty or 0), 0)


def summarize_quality(
    items: Iterable[MergedSubmission | Submission],
    order_qty: int = 0,
    extras_consumed: int = 0,
    stage: StageKind | None = "sewing",
) -> QualitySummary:
    """Quality figures over the actuals in *items*.

    Only actuals of *stage* count towards output, rejects and rework (all
    stages when *stage* is None). Extras always come from sewing good output,
    whatever *stage* is.
    """
    all_actuals = _actuals(items)
    actuals = [a for a in all_actuals if stage is None or a.stage_kind == stage]
    total_output = sum(a.output() for a in actuals)
    total_rejects = sum(a.rejects() for a in actuals)
    total_rework = sum(a.rework() for a in actuals)
    extras = extras_total(
        sum(a.output() for a in all_actuals if isinstance(a, SewingActual)), order_qty
    )
    return QualitySummary(
        total_output=total_output,
        total_rejects=total_rejects,
        total_rework=total_rework,
        reject_rate=safe_rate(total_rejects, total_output),
        rework_rate=safe_rate(total_rework, total_output),
        order_qty=order_qty or 0,
        extras_total=extras,
        extras_consumed=extras_consumed,
        extras_available=max(extras - extras_consumed, 0),
    )


@dataclass(frozen=True)
class PipelineStage:
    """Progress of one pipeline stage against the order quantity.

    ``has_data`` separates a stage that has not started (no records) from
    one whose records add up to zero; both have ``pct == 0``.
    """

    name: str
    qty: int
    pct: int
    has_data: bool
    last_date: date | None = None

    @property
    def title(self) -> str:
        return PIPELINE_TITLES[self.name]


def pipeline_pct(qty: float, order_qty: int | None) -> int:
    return min(round(safe_rate(qty, order_qty)), 100)


def _latest(dates: Iterable[date | None]) -> date | None:
    known = [d for d in dates if d is not None]
    return max(known) if known else None


def build_pipeline(
    items: Iterable[MergedSubmission | Submission],
    bin_cards: Iterable[BinCard] = (),
    order_qty: int = 0,
) -> list[PipelineStage]:
    """Storage → cutting → sewing → finishing progress for one work order.

    Storage is the sum of receipts on the bin cards, cutting the highest
    cumulative cut reported, sewing the sum of good output and finishing the
    sum of carton output.
    """
    actuals = _actuals(items)
    transactions = [t for card in bin_cards for t in card.transactions]
    cutting = [a for a in actuals if isinstance(a, CuttingActual)]
    cut_totals = [a.total_cutting for a in cutting if a.total_cutting is not None]
    sewing = [a for a in actuals if isinstance(a, SewingActual)]
    finishing = [a for a in actuals if isinstance(a, FinishingActual)]

    figures = {
        "storage": (
            sum(t.receive_qty for t in transactions),
            bool(transactions),
            _latest(t.transaction_date for t in transactions),
        ),
        "cutting": (
            max(cut_totals) if cut_totals else 0,
            bool(cutting),
            _latest(a.production_date for a in cutting),
        ),
        "sewing": (
            sum(a.output() for a in sewing),
            bool(sewing),
            _latest(a.production_date for a in sewing),
        ),
        "finishing": (
            sum(a.output() for a in finishing),
            bool(finishing),
            _latest(a.production_date for a in finishing),
        ),
    }
    stages: list[PipelineStage] = []
    for name in PIPELINE_STAGES:
        qty, has_data, last_date = figures[name]
        stages.append(
            PipelineStage(
                name=name,
                qty=qty,
                pct=pipeline_pct(qty, order_qty),
                has_data=has_data,
                last_date=last_date,
            )
        )
    return stages


def average_per_hour(items: Iterable[MergedSubmission | Submission]) -> float:
    """Mean per-hour rate over the actuals that have one, to 2 decimals."""
    rates = [r for r in (a.per_hour() for a in _actuals(items)) if r is not None]
    return round(safe_rate(sum(rates), len(rates), scale=1.0), 2)


def achievement_pct(output: float, target: float | None) -> int:
    return round(safe_rate(output, target))


def check_extras_consumption(
    quantity: int,
    transaction_type: str,
    extras_available: int,
    *,
    is_admin: bool = False,
    notes: str | None = None,
) -> None:
    """Refuse an extras ledger entry that is not allowed.

    Adjustments may exceed the available extras but need an admin and a
    reason; every other type is capped at what is available.
    """
    if transaction_type not in EXTRAS_TRANSACTION_TYPES:
        raise ExtrasConsumptionError(f"Unknown transaction type: {transaction_type!r}.")
    if quantity <= 0:
        raise ExtrasConsumptionError("Quantity must be greater than zero.")
    if transaction_type == "adjustment":
        if not is_admin:
            raise ExtrasConsumptionError("Only admins can record adjustments.")
        if not notes or not notes.strip():
            raise ExtrasConsumptionError("Adjustments require a reason in the notes.")
        return
    if quantity > extras_available:
        raise ExtrasConsumptionError(
            f"Cannot consume {quantity}: only {extras_available} extras available."
        )
