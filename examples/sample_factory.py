"""Sample factory: two work orders on two sewing lines, one shared storage lot.

Demonstrates:
  - A sewing target and end-of-day actual merging into one row
    (L1, 2024-01-05: target 50/hr, actual 380 pcs in 8h = 47.5/hr)
  - A blocker on an actual taking priority over a late target (L2, 2024-01-05)
  - A cutting actual awaiting acknowledgement, finishing logs with carton output
  - A bin card ledger (PO-100: receive 500, issue 120, balance 380)
  - A grouped lot across PO-100 and PO-200 (balances 380 + 220 = 600)
  - Extras on PO-200 (order 1000, sewn 1050, 20 consumed, 30 available)

Usage:
    floorledger --db sample.db load examples/sample_factory.py
    floorledger --db sample.db submissions --metrics
    floorledger --db sample.db storage
    floorledger --db sample.db quality wo-2
"""

from datetime import date, datetime


D1 = date(2024, 1, 5)
D2 = date(2024, 1, 6)


# ---------------------------------------------------------------------------
# Reference data
# ---------------------------------------------------------------------------

work_orders = [
    {
        "id": "wo-1",
        "po_number": "PO-100",
        "buyer": "Northwind",
        "style": "Oxford Shirt",
        "item": "Shirt",
        "color": "Blue",
        "order_qty": 5000,
        "planned_ex_factory": date(2024, 2, 20),
        "status": "in_progress",
        "line_id": "L1",
    },
    {
        "id": "wo-2",
        "po_number": "PO-200",
        "buyer": "Northwind",
        "style": "Polo",
        "item": "Polo Shirt",
        "color": "White",
        "order_qty": 1000,
        "planned_ex_factory": date(2024, 1, 10),
        "status": "in_progress",
        "line_id": "L2",
    },
]

lines = [
    {"id": "L1", "line_id": "L1", "name": "Line 1"},
    {"id": "L2", "line_id": "L2", "name": "Line 2"},
]

work_order_line_assignments = [
    {"work_order_id": "wo-1", "line_id": "L1"},
    {"work_order_id": "wo-2", "line_id": "L2"},
]


# ---------------------------------------------------------------------------
# Submissions
# ---------------------------------------------------------------------------

sewing_targets = [
    {
        "id": "st-1",
        "production_date": D1,
        "line_id": "L1",
        "work_order_id": "wo-1",
        "per_hour_target": 50,
        "manpower_planned": 30,
        "hours_planned": 8,
        "is_late": False,
        "submitted_at": datetime(2024, 1, 5, 8, 15),
    },
    {
        "id": "st-2",
        "production_date": D1,
        "line_id": "L2",
        "work_order_id": "wo-2",
        "per_hour_target": 70,
        "manpower_planned": 28,
        "hours_planned": 8,
        "is_late": True,
        "submitted_at": datetime(2024, 1, 5, 10, 40),
    },
]

sewing_actuals = [
    {
        "id": "sa-1",
        "production_date": D1,
        "line_id": "L1",
        "work_order_id": "wo-1",
        "good_today": 380,
        "reject_today": 6,
        "rework_today": 12,
        "cumulative_good_total": 380,
        "manpower_actual": 29,
        "hours_actual": 8,
        "has_blocker": False,
        "submitted_at": datetime(2024, 1, 5, 18, 5),
    },
    {
        "id": "sa-2",
        "production_date": D1,
        "line_id": "L2",
        "work_order_id": "wo-2",
        "good_today": 520,
        "reject_today": 10,
        "rework_today": 4,
        "cumulative_good_total": 520,
        "manpower_actual": 28,
        "hours_actual": 8,
        "has_blocker": True,
        "blocker_description": "Needle shortage",
        "blocker_impact": "medium",
        "blocker_owner": "Maintenance",
        "blocker_status": "open",
        "submitted_at": datetime(2024, 1, 5, 18, 20),
    },
    {
        "id": "sa-3",
        "production_date": D2,
        "line_id": "L2",
        "work_order_id": "wo-2",
        "good_today": 530,
        "reject_today": 8,
        "rework_today": 2,
        "cumulative_good_total": 1050,
        "manpower_actual": 28,
        "hours_actual": 8,
        "has_blocker": False,
        "submitted_at": datetime(2024, 1, 6, 18, 0),
    },
]

cutting_targets = [
    {
        "id": "ct-1",
        "production_date": D1,
        "line_id": "L1",
        "work_order_id": "wo-1",
        "man_power": 12,
        "marker_capacity": 900,
        "lay_capacity": 800,
        "cutting_capacity": 750,
        "day_cutting": 700,
        "day_input": 600,
        "submitted_at": datetime(2024, 1, 5, 8, 0),
    },
]

cutting_actuals = [
    {
        "id": "ca-1",
        "production_date": D1,
        "line_id": "L1",
        "work_order_id": "wo-1",
        "man_power": 12,
        "day_cutting": 680,
        "day_input": 590,
        "total_cutting": 680,
        "total_input": 590,
        "balance": 90,
        "hours_actual": 8,
        "acknowledged": False,
        "submitted_at": datetime(2024, 1, 5, 17, 30),
    },
]

finishing_daily_logs = [
    {
        "id": "fl-1",
        "log_type": "TARGET",
        "production_date": D2,
        "work_order_id": "wo-2",
        "thread_cutting": 120,
        "inside_check": 110,
        "top_side_check": 110,
        "buttoning": 100,
        "iron": 100,
        "get_up": 90,
        "poly": 90,
        "carton": 80,
        "planned_hours": 8,
        "submitted_at": datetime(2024, 1, 6, 8, 30),
    },
    {
        "id": "fl-2",
        "log_type": "OUTPUT",
        "production_date": D2,
        "work_order_id": "wo-2",
        "thread_cutting": 900,
        "inside_check": 880,
        "top_side_check": 870,
        "buttoning": 820,
        "iron": 800,
        "get_up": 700,
        "poly": 650,
        "carton": 600,
        "actual_hours": 8,
        "submitted_at": datetime(2024, 1, 6, 18, 30),
    },
]


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

storage_bin_cards = [
    {
        "id": "card-1",
        "work_order_id": "wo-1",
        "supplier_name": "Fabrics Ltd",
        "description": "Oxford 40s",
        "po_set_signature": "wo-1,wo-2",
        "group_name": "Lot A",
        "created_at": datetime(2024, 1, 2, 9, 0),
        "updated_at": datetime(2024, 1, 4, 9, 0),
    },
    {
        "id": "card-2",
        "work_order_id": "wo-2",
        "supplier_name": "Fabrics Ltd",
        "description": "Pique 24s",
        "po_set_signature": "wo-1,wo-2",
        "group_name": "Lot A",
        "created_at": datetime(2024, 1, 2, 9, 5),
        "updated_at": datetime(2024, 1, 4, 9, 5),
    },
]

storage_bin_card_transactions = [
    {
        "id": "t-1",
        "bin_card_id": "card-1",
        "transaction_date": date(2024, 1, 3),
        "receive_qty": 500,
        "issue_qty": 0,
        "ttl_receive": 500,
        "balance_qty": 500,
        "created_at": datetime(2024, 1, 3, 9, 0),
    },
    {
        "id": "t-2",
        "bin_card_id": "card-1",
        "transaction_date": date(2024, 1, 4),
        "receive_qty": 0,
        "issue_qty": 120,
        "ttl_receive": 500,
        "balance_qty": 380,
        "created_at": datetime(2024, 1, 4, 9, 0),
    },
    {
        "id": "t-3",
        "bin_card_id": "card-2",
        "transaction_date": date(2024, 1, 3),
        "receive_qty": 300,
        "issue_qty": 0,
        "ttl_receive": 300,
        "balance_qty": 300,
        "created_at": datetime(2024, 1, 3, 9, 5),
    },
    {
        "id": "t-4",
        "bin_card_id": "card-2",
        "transaction_date": date(2024, 1, 4),
        "receive_qty": 0,
        "issue_qty": 80,
        "ttl_receive": 300,
        "balance_qty": 220,
        "created_at": datetime(2024, 1, 4, 9, 5),
    },
]

extras_ledger = [
    {
        "id": "x-1",
        "work_order_id": "wo-2",
        "transaction_type": "sold",
        "quantity": 20,
        "notes": "Local buyer",
        "created_at": datetime(2024, 1, 7, 12, 0),
    },
]


TABLES = {
    "work_orders": work_orders,
    "lines": lines,
    "work_order_line_assignments": work_order_line_assignments,
    "sewing_targets": sewing_targets,
    "sewing_actuals": sewing_actuals,
    "cutting_targets": cutting_targets,
    "cutting_actuals": cutting_actuals,
    "finishing_daily_logs": finishing_daily_logs,
    "storage_bin_cards": storage_bin_cards,
    "storage_bin_card_transactions": storage_bin_card_transactions,
    "extras_ledger": extras_ledger,
}
