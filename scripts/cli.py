"""CLI entry point for the floorledger engine.

Usage:
    floorledger init
    floorledger load examples/sample_factory.py

    # Merged target/actual rows for one work order
    floorledger submissions --work-order wo-1

    # Storage ledger
    floorledger bincard card-1
    floorledger entry card-1 --date 2024-01-05 --receive 100
    floorledger export report.csv --factory "Unit 2"
"""

import logging
import sys
import uuid
from datetime import date, datetime
from pathlib import Path

import click
import duckdb

from floorledger.config import ConfigError, Settings, load_dotenv_file, load_settings
from floorledger.dataset import load_dataset, seed_store
from floorledger.errors import LedgerError, RecordValidationError
from floorledger.export import build_report, write_report
from floorledger.groups import search_cards, storage_rows, storage_stats
from floorledger.health import build_overview, control_room_kpis, line_performance
from floorledger.kpi import build_pipeline, extras_consumed, summarize_quality
from floorledger.ledger import compute_ledger
from floorledger.matcher import key_metric, merge_submissions
from floorledger.models import STAGES, ExtrasEntry
from floorledger.status import compare_metrics, status_label
from floorledger.store import (
    bulk_entry,
    delete_bin_card,
    init_store,
    load_bin_cards,
    load_extras,
    load_submissions,
    load_work_orders,
    record_extras,
    resolve_blocker,
)
from floorledger.store import append_transaction as append_entry

DOTENV_PATH = load_dotenv_file()

log = logging.getLogger(__name__)

_ENGINE_ERRORS = (LedgerError, ValueError)


def _configure_logging(quiet: bool) -> None:
    level = logging.WARNING if quiet else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )


def _connect(settings: Settings) -> duckdb.DuckDBPyConnection:
    conn = duckdb.connect(str(settings.db))
    init_store(conn)
    return conn


def _parse_day(value: str | None) -> date | None:
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise click.BadParameter(f"Expected YYYY-MM-DD, got {value!r}")


def _fmt(value) -> str:
    return "—" if value is None else str(value)


@click.group()
@click.option(
    "--db",
    type=click.Path(path_type=Path),
    default=None,
    help="Store database path (default: [tool.floorledger].db, else floorledger.db)",
)
@click.option("--quiet", "-q", is_flag=True, help="Only log warnings and errors")
@click.pass_context
def main(ctx: click.Context, db: Path | None, quiet: bool):
    """Floorledger — factory submission reconciliation and storage ledger."""
    _configure_logging(quiet)
    try:
        settings = load_settings()
    except ConfigError as e:
        raise click.ClickException(str(e))
    if db is not None:
        settings = Settings(
            db=db,
            timezone=settings.timezone,
            low_stock_threshold=settings.low_stock_threshold,
            match_mode=settings.match_mode,
        )
    ctx.obj = settings


@main.command()
@click.pass_obj
def init(settings: Settings):
    """Create the store tables."""
    conn = _connect(settings)
    conn.close()
    click.echo(f"Initialized {settings.db}")


@main.command()
@click.argument("dataset")
@click.pass_obj
def load(settings: Settings, dataset: str):
    """Append a dataset module (TABLES dict) to the store."""
    try:
        sources = load_dataset(dataset)
    except ValueError as e:
        raise click.ClickException(str(e))

    conn = _connect(settings)
    try:
        counts = seed_store(conn, sources)
    except (duckdb.Error, ValueError, TypeError, FileNotFoundError) as e:
        raise click.ClickException(f"Load failed, nothing written: {e}")
    finally:
        conn.close()
    for table, n in counts.items():
        click.echo(f"  {table}: {n} rows")


@main.command()
@click.option("--work-order", "-w", default=None, help="Work order id")
@click.option("--line", "-l", default=None, help="Line id")
@click.option("--from", "date_from", default=None, help="First production date (YYYY-MM-DD)")
@click.option("--to", "date_to", default=None, help="Last production date (YYYY-MM-DD)")
@click.option(
    "--stage",
    "stages",
    type=click.Choice(STAGES),
    multiple=True,
    help="Departments to include (default: all)",
)
@click.option(
    "--mode",
    type=click.Choice(["strict", "loose"]),
    default=None,
    help="Match mode (default: [tool.floorledger].match_mode)",
)
@click.option("--metrics", is_flag=True, help="Show target-vs-actual metrics per row")
@click.pass_obj
def submissions(
    settings: Settings,
    work_order: str | None,
    line: str | None,
    date_from: str | None,
    date_to: str | None,
    stages: tuple[str, ...],
    mode: str | None,
    metrics: bool,
):
    """List merged target/actual submissions, newest first."""
    conn = _connect(settings)
    try:
        subs = load_submissions(
            conn,
            work_order_id=work_order,
            line_id=line,
            date_from=_parse_day(date_from),
            date_to=_parse_day(date_to),
            stages=stages or STAGES,
        )
    except RecordValidationError as e:
        raise click.ClickException(str(e))
    finally:
        conn.close()

    result = merge_submissions(subs, mode or settings.match_mode)
    if not result.rows:
        click.echo("No submissions.")
        return
    for row in result.rows:
        label, value = key_metric(row.primary)
        click.echo(
            f"{row.production_date}  {row.display_label:<22} {row.line_name:<10} "
            f"{_fmt(row.po_number):<12} {label}: {value:<8} {status_label(row)}"
        )
        if metrics:
            for m in compare_metrics(row):
                click.echo(
                    f"    {m.label:<22} target {m.format_target():>10}  "
                    f"actual {m.format_actual():>10}  {m.format_variance()}"
                )
    if result.collisions:
        click.echo(f"\n{len(result.collisions)} ambiguous group(s); see warnings above.")


@main.command()
@click.argument("card_id")
@click.pass_obj
def bincard(settings: Settings, card_id: str):
    """Show a bin card's ledger with recomputed running balances."""
    conn = _connect(settings)
    try:
        cards = load_bin_cards(conn, card_ids=[card_id])
    finally:
        conn.close()
    if not cards:
        raise click.ClickException(f"Unknown bin card '{card_id}'")
    card = cards[0]
    ledger = compute_ledger(card)

    click.echo(f"{card.id}  PO {_fmt(card.po_number)}  {_fmt(card.buyer)} / {_fmt(card.style)}")
    click.echo(f"{'Date':<12}{'Receive':>9}{'Issue':>9}{'Ttl Rcv':>9}{'Balance':>9}  Remarks")
    for e in ledger.entries:
        t = e.transaction
        click.echo(
            f"{t.transaction_date!s:<12}{t.receive_qty:>9}{t.issue_qty:>9}"
            f"{e.running_receive_total:>9}{e.balance:>9}  {t.remarks or ''}"
        )
    click.echo(f"Balance: {ledger.latest_balance}")
    for w in ledger.drift:
        click.echo(f"  ! {w}")
    for issue in ledger.order_issues:
        click.echo(f"  ! {issue}")


@main.command()
@click.option("--search", "-s", "query", default=None, help="Filter by PO, buyer, style or group")
@click.pass_obj
def storage(settings: Settings, query: str | None):
    """List bin cards, grouped lots rolled up into one row."""
    conn = _connect(settings)
    try:
        cards = load_bin_cards(conn)
    except LedgerError as e:
        raise click.ClickException(str(e))
    finally:
        conn.close()
    if query:
        cards = search_cards(cards, query)

    for row in storage_rows(cards, settings.low_stock_threshold):
        flag = "  LOW" if row.low_stock else ""
        name = row.group_name or " / ".join(row.po_numbers)
        click.echo(
            f"[{row.kind}] {name:<30} rcv {row.total_received:>7}  "
            f"iss {row.total_issued:>7}  bal {row.total_balance:>7}{flag}"
        )
    stats = storage_stats(cards, settings.low_stock_threshold)
    click.echo(
        f"\n{stats.card_count} cards, balance {stats.total_balance}, "
        f"{stats.low_stock_count} low on stock"
    )


@main.command()
@click.argument("card_ids", nargs=-1, required=True)
@click.option("--date", "day", required=True, help="Transaction date (YYYY-MM-DD)")
@click.option("--receive", type=int, default=0, show_default=True)
@click.option("--issue", type=int, default=0, show_default=True)
@click.option("--remarks", default=None)
@click.option("--allow-negative", is_flag=True, help="Allow the balance to go below zero")
@click.pass_obj
def entry(
    settings: Settings,
    card_ids: tuple[str, ...],
    day: str,
    receive: int,
    issue: int,
    remarks: str | None,
    allow_negative: bool,
):
    """Record a receive/issue on one bin card, or on several as one batch."""
    txn_date = _parse_day(day)
    conn = _connect(settings)
    try:
        if len(card_ids) == 1:
            txn = append_entry(
                conn,
                card_ids[0],
                txn_date,
                receive,
                issue,
                remarks=remarks,
                allow_negative=allow_negative,
            )
            click.echo(f"{txn.bin_card_id}: balance {txn.balance_qty}")
            return
        plan = bulk_entry(
            conn,
            list(card_ids),
            txn_date,
            receive,
            issue,
            remarks=remarks,
            allow_negative=allow_negative,
        )
    except _ENGINE_ERRORS as e:
        raise click.ClickException(str(e))
    finally:
        conn.close()

    for t in plan.transactions:
        click.echo(f"{t.bin_card_id}: balance {t.balance_qty}")
    for card_id in plan.skipped:
        click.echo(f"{card_id}: skipped, already has an entry on {txn_date}")
    for blocked in plan.blocked:
        click.echo(f"{blocked.bin_card_id}: blocked, balance would be {blocked.balance}")


@main.command("delete-card")
@click.argument("card_id")
@click.option("--with-transactions", is_flag=True, help="Delete the card's transactions too")
@click.option("--yes", "-y", is_flag=True, help="Do not prompt")
@click.pass_obj
def delete_card(settings: Settings, card_id: str, with_transactions: bool, yes: bool):
    """Delete a bin card."""
    if with_transactions and not yes:
        click.confirm(f"Delete {card_id} and all of its transactions?", abort=True)
    conn = _connect(settings)
    try:
        removed = delete_bin_card(conn, card_id, with_transactions=with_transactions)
    except LedgerError as e:
        raise click.ClickException(str(e))
    finally:
        conn.close()
    click.echo(f"Deleted {card_id} ({removed} transactions)")


@main.command("resolve-blocker")
@click.argument("actual_id")
@click.option("--stage", type=click.Choice(STAGES), default="sewing", show_default=True)
@click.pass_obj
def resolve_blocker_cmd(settings: Settings, actual_id: str, stage: str):
    """Mark the blocker on an actual as resolved."""
    conn = _connect(settings)
    try:
        resolve_blocker(conn, actual_id, stage)
    except RecordValidationError as e:
        raise click.ClickException(str(e))
    finally:
        conn.close()
    click.echo(f"Resolved blocker on {actual_id}")


@main.command()
@click.argument("work_order_id")
@click.pass_obj
def quality(settings: Settings, work_order_id: str):
    """Quality, extras and pipeline progress of one work order."""
    conn = _connect(settings)
    try:
        orders = {wo.id: wo for wo in load_work_orders(conn)}
        if work_order_id not in orders:
            raise click.ClickException(f"Unknown work order '{work_order_id}'")
        wo = orders[work_order_id]
        subs = load_submissions(conn, work_order_id=work_order_id)
        cards = load_bin_cards(conn, work_order_id=work_order_id)
        consumed = extras_consumed(load_extras(conn, work_order_id=work_order_id))
    except _ENGINE_ERRORS as e:
        raise click.ClickException(str(e))
    finally:
        conn.close()

    q = summarize_quality(subs, order_qty=wo.order_qty, extras_consumed=consumed)
    click.echo(f"PO {wo.po_number}  {wo.buyer} / {wo.style}  order {wo.order_qty}")
    click.echo(
        f"Output {q.total_output}  rejects {q.total_rejects} ({q.reject_rate:.1f}%)  "
        f"rework {q.total_rework} ({q.rework_rate:.1f}%)"
    )
    click.echo(
        f"Extras {q.extras_total}  consumed {q.extras_consumed}  available {q.extras_available}"
    )
    for stage in build_pipeline(subs, cards, wo.order_qty):
        state = f"{stage.pct}%" if stage.has_data else "not started"
        click.echo(f"  {stage.title:<10} {stage.qty:>8}  {state}")


@main.command()
@click.argument("work_order_id")
@click.argument("quantity", type=int)
@click.option(
    "--type",
    "transaction_type",
    default="sold",
    show_default=True,
    help="transferred_to_stock, sold, replacement_shipment, scrapped, donated or adjustment",
)
@click.option("--notes", default=None)
@click.option("--admin", is_flag=True, help="Record as an admin (needed for adjustments)")
@click.pass_obj
def extras(
    settings: Settings,
    work_order_id: str,
    quantity: int,
    transaction_type: str,
    notes: str | None,
    admin: bool,
):
    """Record consumption of a work order's extras."""
    conn = _connect(settings)
    try:
        entry_ = ExtrasEntry(
            id=str(uuid.uuid4()),
            work_order_id=work_order_id,
            transaction_type=transaction_type,
            quantity=quantity,
            notes=notes,
            created_at=datetime.now(),
        )
        record_extras(conn, entry_, is_admin=admin)
    except _ENGINE_ERRORS as e:
        raise click.ClickException(str(e))
    finally:
        conn.close()
    click.echo(f"Recorded {quantity} ({transaction_type}) for {work_order_id}")


@main.command()
@click.option("--all", "include_all", is_flag=True, help="Include inactive work orders")
@click.pass_obj
def overview(settings: Settings, include_all: bool):
    """Health, forecast and line performance across work orders."""
    conn = _connect(settings)
    try:
        orders = load_work_orders(conn, active_only=not include_all)
        subs = load_submissions(conn)
        ledger = load_extras(conn)
    except RecordValidationError as e:
        raise click.ClickException(str(e))
    finally:
        conn.close()

    today = settings.today()
    overviews = build_overview(orders, subs, ledger, today=today)
    kpis = control_room_kpis(overviews)
    click.echo(
        f"{kpis.active_orders} orders  qty {kpis.total_qty}  sewn {kpis.sewing_output}  "
        f"finished {kpis.finished_output}  extras {kpis.total_extras}"
    )
    for o in overviews:
        forecast = o.forecast_finish.isoformat() if o.forecast_finish else "—"
        click.echo(
            f"  {o.work_order.po_number:<12} {o.health.status:<9} {o.cluster:<12} "
            f"{o.progress_pct:5.1f}%  remaining {o.remaining:>6}  forecast {forecast}  "
            f"extras {o.extras_total}"
        )
        for reason in o.health.reasons:
            click.echo(f"      - {reason}")

    rows = merge_submissions(subs, settings.match_mode).rows
    perf = line_performance(r for r in rows if r.production_date == today)
    if perf:
        click.echo(f"\nLines today ({today}):")
        for p in perf:
            flag = f"  [{p.anomaly}]" if p.anomaly else ""
            click.echo(
                f"  {p.line_name:<10} {p.total_output:>6}/{p.total_target:<6} "
                f"{p.achievement_pct}%{flag}"
            )


@main.command()
@click.argument("output", type=click.Path(path_type=Path))
@click.option("--work-order", "-w", default=None, help="Work order id")
@click.option("--from", "date_from", default=None, help="First production date (YYYY-MM-DD)")
@click.option("--to", "date_to", default=None, help="Last production date (YYYY-MM-DD)")
@click.option("--factory", default=None, help="Factory name for the report header")
@click.option("--force", "-f", is_flag=True, help="Overwrite output file without prompting")
@click.pass_obj
def export(
    settings: Settings,
    output: Path,
    work_order: str | None,
    date_from: str | None,
    date_to: str | None,
    factory: str | None,
    force: bool,
):
    """Write the all-submissions report."""
    if output.exists() and not force:
        click.confirm(f"{output} already exists and will be overwritten. Continue?", abort=True)

    start, end = _parse_day(date_from), _parse_day(date_to)
    conn = _connect(settings)
    try:
        subs = load_submissions(conn, work_order_id=work_order, date_from=start, date_to=end)
        cards = load_bin_cards(conn, work_order_id=work_order)
        quality_summary = pipeline = None
        if work_order is not None:
            orders = {wo.id: wo for wo in load_work_orders(conn)}
            order_qty = orders[work_order].order_qty if work_order in orders else 0
            consumed = extras_consumed(load_extras(conn, work_order_id=work_order))
            quality_summary = summarize_quality(subs, order_qty, consumed)
            pipeline = build_pipeline(subs, cards, order_qty)
    except _ENGINE_ERRORS as e:
        raise click.ClickException(str(e))
    finally:
        conn.close()

    period = None
    if start or end:
        period = f"{start or '…'} to {end or '…'}"
    report = build_report(
        subs,
        merge_submissions(subs, settings.match_mode).rows,
        bin_cards=cards,
        quality=quality_summary,
        pipeline=pipeline,
        factory_name=factory,
        period=period,
        low_stock_threshold=settings.low_stock_threshold,
    )
    write_report(output, report)
    click.echo(f"Wrote {output}")


if __name__ == "__main__":
    main()
