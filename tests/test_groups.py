from datetime import date, datetime

import pytest

from floorledger.errors import DanglingTransactionsError
from floorledger.groups import (
    MIXED,
    BinGroup,
    group_bin_cards,
    group_signature,
    is_low_stock,
    rollup_group,
    search_cards,
    storage_rows,
    storage_stats,
)
from floorledger.ledger import delete_card
from tests.conftest import _card, _txn

JAN3 = date(2024, 1, 3)
JAN4 = date(2024, 1, 4)


def _lot():
    """Two cards sharing one lot: balances 380 and 220."""
    a = _card(
        "card-1",
        [_txn("t1", JAN3, receive=500), _txn("t2", JAN4, issue=120)],
        po_number="PO-100",
        style="Oxford",
        group_signature="wo-1,wo-2",
        group_name="Lot A",
        updated_at=datetime(2024, 1, 4, 9, 0),
    )
    b = _card(
        "card-2",
        [_txn("t3", JAN3, receive=300), _txn("t4", JAN4, issue=80)],
        po_number="PO-200",
        style="Polo",
        group_signature="wo-1,wo-2",
        updated_at=datetime(2024, 1, 4, 10, 0),
    )
    return a, b


class TestGroupRollup:
    """Group totals are sums of the members' own ledgers."""

    def test_balance_is_sum_of_members(self):
        a, b = _lot()
        rollup = rollup_group(BinGroup(signature="wo-1,wo-2", members=(a, b)))
        assert rollup.total_balance == 600
        assert rollup.member_balances == {"card-1": 380, "card-2": 220}
        assert rollup.total_received == 800
        assert rollup.total_issued == 200
        assert rollup.card_count == 2
        assert rollup.name == "Lot A"

    def test_delete_member_with_transactions_refused(self):
        a, b = _lot()
        cards = [a, b]
        with pytest.raises(DanglingTransactionsError):
            delete_card(cards, "card-1")
        groups, _ = group_bin_cards(cards)
        assert rollup_group(groups[0]).total_balance == 600

    def test_name_falls_back_to_signature(self):
        card = _card("c", group_signature="wo-3")
        assert BinGroup(signature="wo-3", members=(card,)).name == "wo-3"


class TestSignature:
    def test_sorted_and_unique(self):
        assert group_signature(["wo-2", "wo-1", "wo-2", " "]) == "wo-1,wo-2"

    def test_empty_refused(self):
        with pytest.raises(ValueError):
            group_signature([])


class TestStorageRows:
    def test_groups_and_singles(self):
        a, b = _lot()
        single = _card("card-3", [_txn("t5", JAN3, receive=5)], po_number="PO-300")
        groups, ungrouped = group_bin_cards([a, single, b])
        assert [g.signature for g in groups] == ["wo-1,wo-2"]
        assert [c.id for c in ungrouped] == ["card-3"]

        rows = storage_rows([a, single, b])
        assert [r.kind for r in rows] == ["group", "single"]
        group_row = rows[0]
        assert group_row.total_balance == 600
        assert group_row.po_numbers == ["PO-100", "PO-200"]
        assert group_row.style == MIXED
        assert group_row.buyer == "Northwind"
        assert group_row.transaction_count == 4
        assert group_row.updated_at == datetime(2024, 1, 4, 10, 0)
        assert rows[1].low_stock

    def test_never_updated_rows_last(self):
        fresh = _card("fresh", updated_at=datetime(2024, 1, 1))
        stale = _card("stale")
        rows = storage_rows([stale, fresh])
        assert [r.key for r in rows] == ["fresh", "stale"]

    def test_low_stock_threshold(self):
        assert is_low_stock(10)
        assert not is_low_stock(11)
        assert is_low_stock(50, threshold=100)


class TestSearch:
    def test_match_expands_to_group(self):
        a, b = _lot()
        other = _card("card-3", po_number="PO-300", style="Chino")
        hits = search_cards([a, b, other], "po-200")
        assert {c.id for c in hits} == {"card-1", "card-2"}

    def test_blank_query_returns_all(self):
        a, b = _lot()
        assert len(search_cards([a, b], "  ")) == 2


def test_storage_stats():
    a, b = _lot()
    stats = storage_stats([a, b, _card("empty")])
    assert stats.card_count == 3
    assert stats.total_balance == 600
    assert stats.low_stock_count == 1
