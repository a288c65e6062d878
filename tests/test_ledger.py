from dataclasses import replace
from datetime import date, datetime

import pytest

import floorledger
from floorledger import errors
from floorledger.errors import (
    DanglingTransactionsError,
    DuplicateEntryError,
    LedgerError,
    NegativeBalanceError,
    OrphanTransactionError,
    RecordValidationError,
)
from floorledger.ledger import (
    append_transaction,
    build_bin_cards,
    compute_ledger,
    delete_card,
    delete_transactions,
    latest_balance,
    ledger_order,
    plan_bulk_entry,
    preview_transaction,
)
from floorledger.models import BinTransaction
from tests.conftest import _card, _txn

JAN3 = date(2024, 1, 3)
JAN4 = date(2024, 1, 4)
JAN5 = date(2024, 1, 5)


def _po100():
    return _card("card-1", [_txn("t-1", JAN3, receive=500), _txn("t-2", JAN4, issue=120)])


class TestComputeLedger:
    """Tests for running balance computation."""

    def test_running_balances(self):
        ledger = compute_ledger(_po100())
        assert [e.balance for e in ledger.entries] == [500, 380]
        assert [e.running_receive_total for e in ledger.entries] == [500, 500]
        assert ledger.latest_balance == 380
        assert latest_balance(_po100()) == 380
        assert ledger.total_received == 500
        assert ledger.total_issued == 120

    def test_empty_card(self):
        ledger = compute_ledger(_card("empty"))
        assert ledger.entries == ()
        assert ledger.latest_balance == 0
        assert ledger.latest_entry is None

    def test_balance_recurrence(self):
        """Every balance is the previous balance plus receive minus issue."""
        sequences = [
            [(100, 0), (0, 30), (50, 20), (0, 100)],
            [(0, 10), (5, 0)],
            [(7, 7), (0, 0), (3, 1)],
        ]
        for moves in sequences:
            txns = [
                _txn(f"t{i}", date(2024, 1, i + 1), receive=r, issue=iss)
                for i, (r, iss) in enumerate(moves)
            ]
            entries = compute_ledger(_card("c", txns)).entries
            previous = 0
            for entry in entries:
                t = entry.transaction
                assert entry.balance == previous + t.receive_qty - t.issue_qty
                previous = entry.balance

    def test_negative_balance_flagged_not_raised(self):
        ledger = compute_ledger(_card("c", [_txn("t1", JAN3, issue=10)]))
        assert ledger.latest_balance == -10
        assert len(ledger.negative_entries) == 1

    def test_order_by_date_then_created_at(self):
        later = _txn("later", JAN3, receive=1, created_at=datetime(2024, 1, 3, 15, 0))
        earlier = _txn("earlier", JAN3, receive=2, created_at=datetime(2024, 1, 3, 8, 0))
        untimed = _txn("untimed", JAN3, receive=3, created_at=None)
        first_day = _txn("first", date(2024, 1, 2), receive=4)
        ordered = ledger_order([later, earlier, untimed, first_day])
        assert [t.id for t in ordered] == ["first", "untimed", "earlier", "later"]

    def test_tie_keeps_first_seen_order(self):
        stamp = datetime(2024, 1, 3, 9, 0)
        card = _card(
            "c",
            [
                _txn("b", JAN3, receive=10, created_at=stamp),
                _txn("a", JAN3, issue=5, created_at=stamp),
            ],
        )
        ledger = compute_ledger(card)
        assert [e.transaction.id for e in ledger.entries] == ["b", "a"]
        assert len(ledger.order_issues) == 1
        assert ledger.order_issues[0].transaction_ids == ["b", "a"]

    def test_drift_reported(self):
        card = _card(
            "c",
            [
                _txn("t1", JAN3, receive=100, balance_qty=100),
                _txn("t2", JAN4, issue=10, balance_qty=95),
            ],
        )
        ledger = compute_ledger(card)
        assert ledger.latest_balance == 90
        assert len(ledger.drift) == 1
        assert ledger.drift[0].stored == 95
        assert ledger.drift[0].computed == 90

    def test_foreign_transaction_is_orphan(self):
        card = _po100()
        stray = BinTransaction(id="x", bin_card_id="card-9", transaction_date=JAN5)
        with pytest.raises(OrphanTransactionError, match="card-9"):
            compute_ledger(replace(card, transactions=card.transactions + (stray,)))


class TestBuildBinCards:
    def test_assembles_in_ledger_order(self):
        cards = build_bin_cards(
            [{"id": "card-1", "po_set_signature": "wo-1,wo-2"}],
            [
                {"id": "t2", "bin_card_id": "card-1", "transaction_date": "2024-01-04", "issue_qty": 20},
                {"id": "t1", "bin_card_id": "card-1", "transaction_date": "2024-01-03", "receive_qty": 50},
            ],
        )
        assert [t.id for t in cards[0].transactions] == ["t1", "t2"]
        assert cards[0].group_key == "wo-1,wo-2"

    def test_orphans_raise(self):
        with pytest.raises(OrphanTransactionError) as exc:
            build_bin_cards(
                [{"id": "card-1"}],
                [{"id": "t1", "bin_card_id": "gone", "transaction_date": "2024-01-03"}],
            )
        assert exc.value.bin_card_ids == ["gone"]


class TestAppend:
    """Tests for appending transactions to a card."""

    def test_append(self):
        card = _po100()
        new_card, txn = append_transaction(card, JAN5, receive_qty=100, remarks="second roll")
        assert txn.balance_qty == 480
        assert txn.running_receive_total == 600
        assert txn.remarks == "second roll"
        assert latest_balance(new_card) == 480
        assert len(card.transactions) == 2

    def test_duplicate_date_refused(self):
        card = _po100()
        with pytest.raises(DuplicateEntryError):
            append_transaction(card, JAN4, receive_qty=1)
        assert len(card.transactions) == 2

    def test_back_dated_refused(self):
        card = _card("c", [_txn("t1", JAN5, receive=10)])
        with pytest.raises(LedgerError, match="before the latest entry"):
            append_transaction(card, JAN3, receive_qty=1)

    def test_negative_refused_unless_allowed(self):
        card = _po100()
        with pytest.raises(NegativeBalanceError) as exc:
            append_transaction(card, JAN5, issue_qty=400)
        assert exc.value.balance == -20
        _, txn = append_transaction(card, JAN5, issue_qty=400, allow_negative=True)
        assert txn.balance_qty == -20

    def test_zero_quantities_refused(self):
        with pytest.raises(RecordValidationError):
            preview_transaction(_po100())

    def test_preview(self):
        preview = preview_transaction(_po100(), receive_qty=20, issue_qty=50)
        assert preview.previous_balance == 380
        assert preview.balance_qty == 350
        assert preview.running_receive_total == 520


class TestBulkEntry:
    def test_plan_skips_and_blocks(self):
        full = _card("full", [_txn("t1", JAN3, receive=500)])
        low = _card("low", [_txn("t2", JAN3, receive=5)])
        done = _card("done", [_txn("t3", JAN5, receive=50)])
        plan = plan_bulk_entry([full, low, done], JAN5, issue_qty=10)

        assert plan.card_ids == ["full"]
        assert plan.skipped == ("done",)
        assert [b.bin_card_id for b in plan.blocked] == ["low"]
        assert plan.transactions[0].batch_id == plan.batch_id
        assert plan.transactions[0].balance_qty == 490

    def test_shared_batch_id(self):
        cards = [_card("a"), _card("b")]
        plan = plan_bulk_entry(cards, JAN5, receive_qty=10, batch_id="batch-1")
        assert {t.batch_id for t in plan.transactions} == {"batch-1"}
        assert len({t.id for t in plan.transactions}) == 2


class TestDelete:
    def test_card_with_transactions_refused(self):
        cards = [_po100(), _card("card-2")]
        with pytest.raises(DanglingTransactionsError) as exc:
            delete_card(cards, "card-1")
        assert exc.value.count == 2
        assert len(cards) == 2

    def test_delete_after_clearing(self):
        cards = [delete_transactions(_po100()), _card("card-2")]
        remaining = delete_card(cards, "card-1")
        assert [c.id for c in remaining] == ["card-2"]

    def test_delete_some_transactions(self):
        card = delete_transactions(_po100(), ["t-2"])
        assert [t.id for t in card.transactions] == ["t-1"]
        with pytest.raises(LedgerError, match="no transaction"):
            delete_transactions(_po100(), ["nope"])

    def test_unknown_card(self):
        with pytest.raises(LedgerError, match="Unknown bin card"):
            delete_card([], "card-1")


def test_package_exports_every_error():
    defined = {
        name
        for name, obj in vars(errors).items()
        if isinstance(obj, type) and issubclass(obj, Exception) and obj.__module__ == errors.__name__
    }
    assert "DanglingTransactionsError" in defined
    assert defined <= set(floorledger.__all__)
    assert floorledger.DanglingTransactionsError is DanglingTransactionsError
