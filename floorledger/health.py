"""Work-order overview: health, workflow state, velocity and clustering.

Every function takes the factory's *today* explicitly so results do not
depend on the wall clock (see ``config.factory_today``).
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable, Literal

from .kpi import achievement_pct, extras_consumed, extras_total, safe_rate
from .matcher import MergedSubmission
from .models import (
    ExtrasEntry,
    FinishingActual,
    SewingActual,
    SewingTarget,
    Submission,
    TargetSubmission,
    WorkOrder,
)

log = logging.getLogger(__name__)

WorkflowState = Literal["not_started", "planned", "running", "completed"]
Cluster = Literal["due_soon", "behind_plan", "on_track", "missing_updates", "no_deadline"]
HealthStatus = Literal["completed", "deadline_passed", "at_risk", "watch", "no_deadline", "healthy"]
AnomalyFlag = Literal["no-output", "critically-low", "unusually-high"]

LINE_TARGET_THRESHOLD = 90


def workflow_state(
    *, has_any_actual: bool, has_target: bool, has_line: bool, remaining: int
) -> WorkflowState:
    """completed > running (any sewing EOD) > planned (line or target) > not_started."""
    if remaining <= 0:
        return "completed"
    if has_any_actual:
        return "running"
    if has_line or has_target:
        return "planned"
    return "not_started"


@dataclass(frozen=True)
class Velocity:
    avg_3d: float
    avg_7d: float
    effective: float


def average_per_day(actuals: Iterable[SewingActual], today: date) -> Velocity:
    """Rolling average daily sewing output over 3 and 7 days.

    Sums are divided by the window length, not the number of reports, so
    days without output count as zero. The 3-day figure is effective when
    any report falls inside it.
    """
    sum3 = sum7 = 0
    count3 = 0
    for a in actuals:
        days_ago = (today - a.production_date).days
        if 0 <= days_ago < 7:
            sum7 += a.output()
            if days_ago < 3:
                sum3 += a.output()
                count3 += 1
    avg3 = sum3 / 3
    avg7 = sum7 / 7
    return Velocity(avg_3d=avg3, avg_7d=avg7, effective=avg3 if count3 > 0 else avg7)


def needed_per_day(remaining: int, ex_factory: date | None, today: date) -> float:
    if remaining <= 0:
        return 0.0
    if ex_factory is None:
        return remaining / 7
    return remaining / max(1, (ex_factory - today).days)


def forecast_finish(remaining: int, avg_per_day: float, today: date) -> date | None:
    """Date the order would finish at the current pace, or None without pace."""
    if avg_per_day <= 0 or remaining <= 0:
        return None
    return today + timedelta(days=math.ceil(remaining / avg_per_day))


def cluster(
    *,
    ex_factory: date | None,
    remaining: int,
    needed: float,
    avg_per_day: float,
    forecast: date | None,
    has_eod_today: bool,
    today: date,
) -> Cluster:
    if ex_factory is None:
        return "no_deadline"
    if remaining > 0 and (ex_factory - today).days <= 7:
        return "due_soon"
    forecast_behind = forecast is not None and forecast > ex_factory
    pace_behind = avg_per_day > 0 and needed > avg_per_day
    if forecast_behind or pace_behind:
        return "behind_plan"
    if not has_eod_today:
        return "missing_updates"
    return "on_track"


@dataclass(frozen=True)
class Health:
    status: HealthStatus
    reasons: tuple[str, ...]


def _days(n: int) -> str:
    return f"{n} day{'s' if n != 1 else ''}"


def compute_health(
    *,
    order_qty: int,
    finished_output: int,
    sewing_output: int,
    total_rejects: int,
    planned_ex_factory: date | None,
    is_active: bool,
    has_line: bool,
    has_eod_today: bool,
    today: date,
) -> Health:
    """Health of a work order with human-readable reasons.

    At-risk conditions take precedence; watch conditions only apply when
    nothing marked the order at risk.
    """
    progress = min(safe_rate(finished_output, order_qty), 100.0)
    days_left = (planned_ex_factory - today).days if planned_ex_factory else None

    if progress >= 100:
        return Health("completed", ("Order fulfilled",))
    if days_left is not None and days_left < 0:
        return Health(
            "deadline_passed",
            (f"Deadline passed {_days(abs(days_left))} ago, {round(progress)}% done",),
        )

    reject_rate = safe_rate(total_rejects, sewing_output)
    reasons: list[str] = []
    status: HealthStatus = "healthy"

    if days_left is not None and days_left <= 7 and progress < 80:
        reasons.append(f"Ex-factory in {_days(days_left)}, only {round(progress)}% done")
        status = "at_risk"
    if is_active and not has_line:
        reasons.append("No line assigned")
        status = "at_risk"
    if reject_rate > 5:
        reasons.append(f"Reject rate {reject_rate:.1f}%")
        status = "at_risk"

    if status != "at_risk":
        if days_left is not None and days_left <= 14 and progress < 60:
            reasons.append(f"Ex-factory in {_days(days_left)}, only {round(progress)}% done")
            status = "watch"
        if days_left is not None and days_left <= 30 and progress < 10:
            reasons.append(f"Ex-factory in {_days(days_left)}, only {round(progress)}% done")
            status = "watch"
        if reject_rate > 3:
            reasons.append(f"Reject rate {reject_rate:.1f}%")
            status = "watch"
        if is_active and not has_eod_today and days_left is not None and progress < 80:
            reasons.append("No EOD submitted today")
            status = "watch"

    if not reasons and days_left is None:
        return Health("no_deadline", ("No deadline set",))
    if not reasons:
        reasons.append("On track")
    return Health(status, tuple(reasons))


def detect_line_anomaly(total_target: int, total_output: int, achievement: int) -> AnomalyFlag | None:
    if total_target > 0 and total_output == 0:
        return "no-output"
    if 0 < achievement < 50:
        return "critically-low"
    if achievement > 150:
        return "unusually-high"
    return None


@dataclass(frozen=True)
class LinePerformance:
    line_id: str
    line_name: str
    total_target: int
    total_output: int
    achievement_pct: int
    anomaly: AnomalyFlag | None

    @property
    def on_target(self) -> bool:
        return self.achievement_pct >= LINE_TARGET_THRESHOLD


def line_performance(rows: Iterable[MergedSubmission]) -> list[LinePerformance]:
    """Sewing target vs output per line, sorted by line name."""
    totals: dict[str, dict] = {}
    for row in rows:
        if row.stage_kind != "sewing" or row.line_id is None:
            continue
        entry = totals.setdefault(row.line_id, {"name": row.line_name, "target": 0, "output": 0})
        if isinstance(row.target, SewingTarget):
            entry["target"] += row.target.planned_total()
        if isinstance(row.actual, SewingActual):
            entry["output"] += row.actual.output()

    out: list[LinePerformance] = []
    for line_id, entry in totals.items():
        pct = achievement_pct(entry["output"], entry["target"])
        out.append(
            LinePerformance(
                line_id=line_id,
                line_name=entry["name"],
                total_target=entry["target"],
                total_output=entry["output"],
                achievement_pct=pct,
                anomaly=detect_line_anomaly(entry["target"], entry["output"], pct),
            )
        )
    out.sort(key=lambda p: p.line_name)
    return out


@dataclass(frozen=True)
class WorkOrderOverview:
    work_order: WorkOrder
    sewing_output: int
    finished_output: int
    total_rejects: int
    total_rework: int
    extras_total: int
    extras_consumed: int
    progress_pct: float
    remaining: int
    workflow: WorkflowState
    velocity: Velocity
    needed_per_day: float
    forecast_finish: date | None
    cluster: Cluster
    health: Health
    has_eod_today: bool


def overview_for(
    work_order: WorkOrder,
    submissions: Iterable[Submission],
    extras: Iterable[ExtrasEntry] = (),
    *,
    today: date,
) -> WorkOrderOverview:
    """Overview of one work order from its raw submissions."""
    subs = [s for s in submissions if s.work_order_id == work_order.id]
    sewing = [s for s in subs if isinstance(s, SewingActual)]
    finishing = [s for s in subs if isinstance(s, FinishingActual)]

    sewing_output = sum(s.output() for s in sewing)
    finished_output = sum(s.output() for s in finishing)
    rejects = sum(s.rejects() for s in sewing)
    rework = sum(s.rework() for s in sewing)
    remaining = work_order.order_qty - sewing_output
    has_line = bool(work_order.line_names) or any(s.line_id for s in subs if s.stage_kind == "sewing")
    has_eod_today = any(s.production_date == today for s in sewing)

    velocity = average_per_day(sewing, today)
    needed = needed_per_day(remaining, work_order.planned_ex_factory, today)
    forecast = forecast_finish(remaining, velocity.effective, today)

    return WorkOrderOverview(
        work_order=work_order,
        sewing_output=sewing_output,
        finished_output=finished_output,
        total_rejects=rejects,
        total_rework=rework,
        extras_total=extras_total(sewing_output, work_order.order_qty),
        extras_consumed=extras_consumed(extras, work_order.id),
        progress_pct=min(safe_rate(finished_output, work_order.order_qty), 100.0),
        remaining=remaining,
        workflow=workflow_state(
            has_any_actual=bool(sewing),
            has_target=any(isinstance(s, TargetSubmission) for s in subs),
            has_line=has_line,
            remaining=remaining,
        ),
        velocity=velocity,
        needed_per_day=needed,
        forecast_finish=forecast,
        cluster=cluster(
            ex_factory=work_order.planned_ex_factory,
            remaining=remaining,
            needed=needed,
            avg_per_day=velocity.effective,
            forecast=forecast,
            has_eod_today=has_eod_today,
            today=today,
        ),
        health=compute_health(
            order_qty=work_order.order_qty,
            finished_output=finished_output,
            sewing_output=sewing_output,
            total_rejects=rejects,
            planned_ex_factory=work_order.planned_ex_factory,
            is_active=work_order.is_active,
            has_line=has_line,
            has_eod_today=has_eod_today,
            today=today,
        ),
        has_eod_today=has_eod_today,
    )


def build_overview(
    work_orders: Iterable[WorkOrder],
    submissions: Iterable[Submission],
    extras: Iterable[ExtrasEntry] = (),
    *,
    today: date,
) -> list[WorkOrderOverview]:
    submissions = list(submissions)
    extras = list(extras)
    overviews = [overview_for(wo, submissions, extras, today=today) for wo in work_orders]
    at_risk = sum(1 for o in overviews if o.health.status == "at_risk")
    if at_risk:
        log.info("%d of %d work orders at risk", at_risk, len(overviews))
    return overviews


@dataclass(frozen=True)
class ControlRoomKPIs:
    active_orders: int
    total_qty: int
    sewing_output: int
    finished_output: int
    total_extras: int


def control_room_kpis(overviews: Iterable[WorkOrderOverview]) -> ControlRoomKPIs:
    overviews = list(overviews)
    return ControlRoomKPIs(
        active_orders=len(overviews),
        total_qty=sum(o.work_order.order_qty for o in overviews),
        sewing_output=sum(o.sewing_output for o in overviews),
        finished_output=sum(o.finished_output for o in overviews),
        total_extras=sum(o.extras_total for o in overviews),
    )
