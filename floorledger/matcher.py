"""Matcher — merge independently submitted targets and actuals.

Targets (morning plans) and actuals (end-of-day reports) arrive separately
per department. The matcher groups them by key into ``MergedSubmission``
rows holding at most one of each::

    result = Matcher("strict").merge(submissions)
    for row in result.rows:
        print(row.display_label, row.target, row.actual)

Two key modes are supported:

- ``strict``: (stage, production date, line, work order). Used on multi-PO
  dashboards where several work orders run on one line.
- ``loose``: (stage, production date, line). Used on single work order
  views where a target and its actual are expected to pair up by line.

When several targets (or actuals) share a key, the most recently submitted
one is kept (``submitted_at`` descending, then arrival order) and the
collision is logged and returned in ``MergeResult.collisions``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Iterable

from .errors import AmbiguousGroupError, RecordValidationError
from .models import (
    MATCH_MODES,
    ActualSubmission,
    CuttingActual,
    CuttingTarget,
    FinishingActual,
    FinishingTarget,
    MatchMode,
    SewingActual,
    SewingTarget,
    StageKind,
    Submission,
    TargetSubmission,
)

log = logging.getLogger(__name__)

STAGE_TITLES: dict[str, str] = {
    "sewing": "Sewing",
    "cutting": "Cutting",
    "finishing": "Finishing",
}

STAGE_VARIANTS: dict[str, str] = {
    "sewing": "sewing",
    "cutting": "warning",
    "finishing": "finishing",
}

TARGET_ONLY_VARIANT = "info"


def resolve_stage_label(stage: StageKind, has_target: bool, has_actual: bool) -> str:
    """Display label for a merged row: "Sewing", "Sewing Target" or "Sewing EOD"."""
    title = STAGE_TITLES[stage]
    if has_target and has_actual:
        return title
    if has_target:
        return f"{title} Target"
    if has_actual:
        return f"{title} EOD"
    raise ValueError(f"A {stage} row needs a target or an actual.")


def resolve_stage_variant(stage: StageKind, has_actual: bool) -> str:
    return STAGE_VARIANTS[stage] if has_actual else TARGET_ONLY_VARIANT


@dataclass(frozen=True)
class MergedSubmission:
    """The reconciled view of one key: a target, an actual, or both."""

    key: tuple
    target: TargetSubmission | None = None
    actual: ActualSubmission | None = None

    def __post_init__(self) -> None:
        if self.target is None and self.actual is None:
            raise RecordValidationError(f"Merged row {self.key} has neither a target nor an actual.")

    @property
    def stage_kind(self) -> StageKind:
        return self.key[0]

    @property
    def production_date(self) -> date:
        return self.key[1]

    @property
    def line_id(self) -> str | None:
        return self.key[2]

    @property
    def primary(self) -> Submission:
        return self.actual if self.actual is not None else self.target

    @property
    def work_order_id(self) -> str:
        return self.primary.work_order_id

    @property
    def line_name(self) -> str:
        return self.primary.display_line

    @property
    def po_number(self) -> str | None:
        return self.primary.po_number or (self.target.po_number if self.target else None)

    @property
    def display_label(self) -> str:
        return resolve_stage_label(
            self.stage_kind, self.target is not None, self.actual is not None
        )

    @property
    def status_variant(self) -> str:
        return resolve_stage_variant(self.stage_kind, self.actual is not None)

    @property
    def latest_submitted_at(self) -> datetime | None:
        stamps = [
            s.submitted_at
            for s in (self.target, self.actual)
            if s is not None and s.submitted_at is not None
        ]
        if not stamps:
            return None
        return max(stamps, key=_timestamp)


@dataclass(frozen=True)
class MergeResult:
    rows: list[MergedSubmission] = field(default_factory=list)
    collisions: list[AmbiguousGroupError] = field(default_factory=list)


def _timestamp(value: datetime) -> float:
    # naive and aware datetimes cannot be compared directly
    return value.timestamp()


def _recency(item: tuple[int, Submission]) -> tuple:
    arrival, sub = item
    if sub.submitted_at is None:
        return (0, 0.0, arrival)
    return (1, _timestamp(sub.submitted_at), arrival)


class Matcher:
    """Groups raw submissions into merged rows under one key mode."""

    def __init__(self, mode: MatchMode = "strict"):
        if mode not in MATCH_MODES:
            raise ValueError(f"Unknown match mode: {mode!r}. Expected 'strict' or 'loose'.")
        self.mode = mode

    def merge(self, submissions: Iterable[Submission]) -> MergeResult:
        """Merge *submissions* into rows sorted by production date, newest first.

        Rows on the same date keep the order in which their key was first
        seen. The input is not modified.
        """
        buckets: dict[tuple, dict[str, list[tuple[int, Submission]]]] = {}
        for arrival, sub in enumerate(submissions):
            if not isinstance(sub, Submission):
                raise RecordValidationError(
                    f"Expected a submission record, got {type(sub).__name__}."
                )
            key = sub.key(self.mode)
            buckets.setdefault(key, {"target": [], "actual": []})[sub.phase].append(
                (arrival, sub)
            )

        rows: list[MergedSubmission] = []
        collisions: list[AmbiguousGroupError] = []
        for key, phases in buckets.items():
            picked: dict[str, Submission | None] = {}
            for phase, candidates in phases.items():
                if not candidates:
                    picked[phase] = None
                    continue
                ranked = sorted(candidates, key=_recency, reverse=True)
                picked[phase] = ranked[0][1]
                if len(ranked) > 1:
                    err = AmbiguousGroupError(
                        key, phase, ranked[0][1].id, [s.id for _, s in ranked[1:]]
                    )
                    log.warning(str(err))
                    collisions.append(err)
            rows.append(MergedSubmission(key=key, target=picked["target"], actual=picked["actual"]))

        rows.sort(key=lambda r: r.production_date, reverse=True)
        return MergeResult(rows=rows, collisions=collisions)


def merge_submissions(
    submissions: Iterable[Submission], mode: MatchMode = "strict"
) -> MergeResult:
    """Convenience wrapper around ``Matcher(mode).merge``."""
    return Matcher(mode).merge(submissions)


def key_metric(sub: Submission) -> tuple[str, int]:
    """Headline (label, value) of a submission for list views."""
    if isinstance(sub, SewingTarget):
        return ("Target", sub.planned_total())
    if isinstance(sub, SewingActual):
        return ("Output", sub.good_today)
    if isinstance(sub, CuttingTarget):
        return ("Day Cutting", sub.day_cutting or 0)
    if isinstance(sub, CuttingActual):
        return ("Total Cut", sub.total_cutting or 0)
    if isinstance(sub, (FinishingTarget, FinishingActual)):
        return ("Carton", sub.carton)
    raise TypeError(f"Unsupported submission type: {type(sub).__name__}")


@dataclass(frozen=True)
class DateEntry:
    production_date: date
    has_target: bool
    has_actual: bool
    target_total: int
    output: int


def date_entries(
    rows: Iterable[MergedSubmission], work_order_id: str | None = None
) -> list[DateEntry]:
    """Collapse merged rows into one entry per production date, newest first.

    Target totals and outputs are summed across the rows of a date.
    """
    by_date: dict[date, dict] = {}
    for row in rows:
        if work_order_id is not None and row.work_order_id != work_order_id:
            continue
        entry = by_date.setdefault(
            row.production_date,
            {"has_target": False, "has_actual": False, "target_total": 0, "output": 0},
        )
        if row.target is not None:
            entry["has_target"] = True
            entry["target_total"] += row.target.headline_qty()
        if row.actual is not None:
            entry["has_actual"] = True
            entry["output"] += row.actual.output()
    return [
        DateEntry(production_date=d, **by_date[d])
        for d in sorted(by_date, reverse=True)
    ]
