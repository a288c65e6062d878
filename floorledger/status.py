"""Status and target-vs-actual variance for merged submissions."""

from __future__ import annotations

import math
from dataclasses import dataclass
from operator import attrgetter, methodcaller
from typing import Any, Callable, Literal

from .matcher import MergedSubmission
from .models import FINISHING_PROCESSES, CuttingActual, StageKind

Status = Literal["blocker", "late", "acknowledged", "pending", "on_time"]
Direction = Literal["improvement", "shortfall", "neutral", "unknown"]

STATUS_LABELS: dict[str, str] = {
    "blocker": "Blocker",
    "late": "Late",
    "acknowledged": "Acknowledged",
    "pending": "Pending",
    "on_time": "On Time",
}

UNKNOWN = "—"


def derive_status(row: MergedSubmission) -> Status:
    """Status of a merged row; the first matching rule wins.

    1. the actual reports a blocker
    2. the target was submitted late
    3. cutting actuals are acknowledged or pending
    4. on time
    """
    if row.actual is not None and row.actual.has_blocker:
        return "blocker"
    if row.target is not None and row.target.is_late:
        return "late"
    if row.stage_kind == "cutting" and isinstance(row.actual, CuttingActual):
        return "acknowledged" if row.actual.acknowledged else "pending"
    return "on_time"


def status_label(row: MergedSubmission) -> str:
    return STATUS_LABELS[derive_status(row)]


@dataclass(frozen=True)
class MetricDefinition:
    """One paired metric shown in a target-vs-actual comparison.

    ``optional`` metrics are left out when neither side reports a value.
    """

    label: str
    target: Callable[[Any], float | None]
    actual: Callable[[Any], float | None]
    decimals: int = 0
    suffix: str = ""
    optional: bool = False


def format_number(value: float | None, decimals: int = 0, suffix: str = "") -> str:
    if value is None:
        return UNKNOWN
    return f"{value:.{decimals}f}{suffix}"


@dataclass(frozen=True)
class MetricVariance:
    """Target, actual and ``actual - target`` for one metric.

    ``variance`` is None when either side is missing, which is distinct from
    a variance of zero.
    """

    label: str
    target: float | None
    actual: float | None
    variance: float | None
    decimals: int = 0
    suffix: str = ""

    @property
    def direction(self) -> Direction:
        if self.variance is None:
            return "unknown"
        # float noise from per-hour division is not a difference
        if math.isclose(self.variance, 0, abs_tol=1e-9):
            return "neutral"
        return "improvement" if self.variance > 0 else "shortfall"

    def format_target(self) -> str:
        return format_number(self.target, self.decimals, self.suffix)

    def format_actual(self) -> str:
        return format_number(self.actual, self.decimals, self.suffix)

    def format_variance(self) -> str:
        direction = self.direction
        if direction == "unknown":
            return UNKNOWN
        if direction == "neutral":
            return format_number(0, self.decimals, self.suffix)
        text = format_number(self.variance, self.decimals, self.suffix)
        return f"+{text}" if direction == "improvement" else text


def _process_label(process: str) -> str:
    return process.replace("_", " ").title()


SEWING_METRICS: tuple[MetricDefinition, ...] = (
    MetricDefinition("Output per Hour", attrgetter("per_hour_target"), methodcaller("per_hour"), decimals=2),
    MetricDefinition("Total Output", methodcaller("planned_total"), attrgetter("good_today")),
    MetricDefinition("Hours", attrgetter("hours_planned"), attrgetter("hours_actual"), decimals=1),
    MetricDefinition("Manpower", attrgetter("manpower_planned"), attrgetter("manpower_actual"), decimals=1),
    MetricDefinition("OT Hours", attrgetter("ot_hours_planned"), attrgetter("ot_hours_actual"), decimals=1),
    MetricDefinition(
        "Stage Progress",
        attrgetter("planned_stage_progress"),
        attrgetter("actual_stage_progress"),
        suffix="%",
    ),
)

CUTTING_METRICS: tuple[MetricDefinition, ...] = (
    MetricDefinition("Day Cutting", attrgetter("day_cutting"), attrgetter("day_cutting")),
    MetricDefinition("Day Input", attrgetter("day_input"), attrgetter("day_input")),
    MetricDefinition("Man Power", attrgetter("man_power"), attrgetter("man_power"), decimals=1),
    MetricDefinition(
        "Cutting Capacity", attrgetter("cutting_capacity"), attrgetter("cutting_capacity"), decimals=1
    ),
    MetricDefinition(
        "Marker Capacity", attrgetter("marker_capacity"), attrgetter("marker_capacity"), decimals=1
    ),
    MetricDefinition("Lay Capacity", attrgetter("lay_capacity"), attrgetter("lay_capacity"), decimals=1),
    MetricDefinition("Under Qty", attrgetter("under_qty"), attrgetter("under_qty")),
    MetricDefinition("OT Hours", attrgetter("ot_hours_planned"), attrgetter("ot_hours_actual"), decimals=1),
    MetricDefinition(
        "OT Manpower", attrgetter("ot_manpower_planned"), attrgetter("ot_manpower_actual"), decimals=1
    ),
)

FINISHING_METRICS: tuple[MetricDefinition, ...] = (
    MetricDefinition("Carton per Hour", attrgetter("carton"), methodcaller("per_hour"), decimals=2),
    *(
        MetricDefinition(
            f"{_process_label(p)} Total",
            methodcaller("planned_process_total", p),
            attrgetter(p),
        )
        for p in FINISHING_PROCESSES
    ),
    MetricDefinition("Hours", attrgetter("planned_hours"), attrgetter("hours_actual"), decimals=1),
    MetricDefinition(
        "OT Hours",
        attrgetter("ot_hours_planned"),
        attrgetter("ot_hours_actual"),
        decimals=1,
        optional=True,
    ),
    MetricDefinition(
        "OT Manpower",
        attrgetter("ot_manpower_planned"),
        attrgetter("ot_manpower_actual"),
        decimals=1,
        optional=True,
    ),
)

METRICS: dict[StageKind, tuple[MetricDefinition, ...]] = {
    "sewing": SEWING_METRICS,
    "cutting": CUTTING_METRICS,
    "finishing": FINISHING_METRICS,
}


def compare_metrics(row: MergedSubmission) -> list[MetricVariance]:
    """Per-metric variance for a row with both a target and an actual.

    Returns an empty list when either side is missing.
    """
    if row.target is None or row.actual is None:
        return []

    out: list[MetricVariance] = []
    for metric in METRICS[row.stage_kind]:
        target = metric.target(row.target)
        actual = metric.actual(row.actual)
        if metric.optional and target is None and actual is None:
            continue
        variance = None
        if target is not None and actual is not None:
            variance = actual - target
        out.append(
            MetricVariance(
                label=metric.label,
                target=target,
                actual=actual,
                variance=variance,
                decimals=metric.decimals,
                suffix=metric.suffix,
            )
        )
    return out
