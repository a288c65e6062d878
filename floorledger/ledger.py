"""Ledger aggregator — running balances for storage bin cards.

Each bin card keeps an independent, append-only transaction list. The
canonical ledger order is (transaction_date, created_at) ascending, and the
running balance is carried forward entry by entry::

    balance[0] = receive[0] - issue[0]
    balance[n] = balance[n-1] + receive[n] - issue[n]

A negative balance is an anomaly that is flagged, not an error. Stored
``balance_qty`` values are checked against the recomputed balance and any
disagreement is reported as drift.

Mutating operations (append, bulk entry, delete) never modify their inputs;
they return new ``BinCard`` values or raise a ``LedgerError`` subclass and
leave everything unchanged.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from itertools import groupby
from typing import Any, Iterable, Mapping, Sequence

from .errors import (
    AmbiguousOrderError,
    BalanceDriftWarning,
    DanglingTransactionsError,
    DuplicateEntryError,
    LedgerError,
    NegativeBalanceError,
    OrphanTransactionError,
    RecordValidationError,
)
from .models import BinCard, BinTransaction, bin_card_from_record, transaction_from_record

log = logging.getLogger(__name__)


def _order_key(txn: BinTransaction) -> tuple:
    # transactions without a creation time sort first within their date
    if txn.created_at is None:
        return (txn.transaction_date, 0, 0.0)
    return (txn.transaction_date, 1, txn.created_at.timestamp())


def ledger_order(transactions: Iterable[BinTransaction]) -> list[BinTransaction]:
    """Sort transactions into canonical ledger order (stable on ties)."""
    return sorted(transactions, key=_order_key)


@dataclass(frozen=True)
class LedgerEntry:
    transaction: BinTransaction
    running_receive_total: int
    balance: int

    @property
    def is_negative(self) -> bool:
        return self.balance < 0


@dataclass(frozen=True)
class Ledger:
    """A bin card's transactions in ledger order with recomputed totals."""

    bin_card_id: str
    entries: tuple[LedgerEntry, ...] = ()
    order_issues: tuple[AmbiguousOrderError, ...] = ()
    drift: tuple[BalanceDriftWarning, ...] = ()

    @property
    def latest_balance(self) -> int:
        return self.entries[-1].balance if self.entries else 0

    @property
    def total_received(self) -> int:
        return sum(e.transaction.receive_qty for e in self.entries)

    @property
    def total_issued(self) -> int:
        return sum(e.transaction.issue_qty for e in self.entries)

    @property
    def latest_entry(self) -> LedgerEntry | None:
        return self.entries[-1] if self.entries else None

    @property
    def negative_entries(self) -> list[LedgerEntry]:
        return [e for e in self.entries if e.is_negative]


def compute_ledger(card: BinCard) -> Ledger:
    """Recompute the running ledger of *card*.

    Ties on (transaction_date, created_at) keep first-seen order and are
    returned as ``AmbiguousOrderError`` values. Stored balances that differ
    from the recomputed ones are returned as ``BalanceDriftWarning`` values.
    Both are logged at WARNING.
    """
    foreign = [t.bin_card_id for t in card.transactions if t.bin_card_id != card.id]
    if foreign:
        raise OrphanTransactionError(foreign)

    ordered = ledger_order(card.transactions)

    order_issues: list[AmbiguousOrderError] = []
    for _, tied in groupby(ordered, key=_order_key):
        tied = list(tied)
        if len(tied) > 1:
            err = AmbiguousOrderError(card.id, [t.id for t in tied])
            log.warning(str(err))
            order_issues.append(err)

    entries: list[LedgerEntry] = []
    drift: list[BalanceDriftWarning] = []
    balance = 0
    received = 0
    for txn in ordered:
        balance += txn.receive_qty - txn.issue_qty
        received += txn.receive_qty
        entries.append(LedgerEntry(transaction=txn, running_receive_total=received, balance=balance))
        if txn.balance_qty is not None and txn.balance_qty != balance:
            warning = BalanceDriftWarning(card.id, txn.id, txn.balance_qty, balance)
            log.warning(str(warning))
            drift.append(warning)

    negatives = [e for e in entries if e.is_negative]
    if negatives:
        log.info(
            "Bin card '%s' has %d negative balance entr%s",
            card.id,
            len(negatives),
            "y" if len(negatives) == 1 else "ies",
        )

    return Ledger(
        bin_card_id=card.id,
        entries=tuple(entries),
        order_issues=tuple(order_issues),
        drift=tuple(drift),
    )


def latest_balance(card: BinCard) -> int:
    return compute_ledger(card).latest_balance


def build_bin_cards(
    card_records: Iterable[Mapping[str, Any]],
    transaction_records: Iterable[Mapping[str, Any]],
) -> list[BinCard]:
    """Assemble bin cards from flat store records.

    Raises OrphanTransactionError if any transaction references a card that
    is not among *card_records*.
    """
    by_card: dict[str, list[BinTransaction]] = {}
    for rec in transaction_records:
        txn = transaction_from_record(rec)
        by_card.setdefault(txn.bin_card_id, []).append(txn)

    cards: list[BinCard] = []
    seen: set[str] = set()
    for rec in card_records:
        card = bin_card_from_record(rec)
        seen.add(card.id)
        cards.append(replace(card, transactions=tuple(ledger_order(by_card.get(card.id, ())))))

    orphans = [card_id for card_id in by_card if card_id not in seen]
    if orphans:
        raise OrphanTransactionError(orphans)
    return cards


def has_entry_on(card: BinCard, transaction_date: date) -> bool:
    return any(t.transaction_date == transaction_date for t in card.transactions)


@dataclass(frozen=True)
class TransactionPreview:
    """Running totals the next transaction on a card would carry."""

    bin_card_id: str
    receive_qty: int
    issue_qty: int
    previous_balance: int
    running_receive_total: int
    balance_qty: int

    @property
    def is_negative(self) -> bool:
        return self.balance_qty < 0


def preview_transaction(
    card: BinCard,
    receive_qty: int = 0,
    issue_qty: int = 0,
    *,
    allow_negative: bool = False,
) -> TransactionPreview:
    """Compute the totals of a proposed receive/issue on *card*.

    Raises RecordValidationError for negative or all-zero quantities and
    NegativeBalanceError when the balance would drop below zero, unless
    *allow_negative* is set (admin override).
    """
    if receive_qty < 0 or issue_qty < 0:
        raise RecordValidationError("Receive and issue quantities must be >= 0.")
    if receive_qty == 0 and issue_qty == 0:
        raise RecordValidationError("Enter a receive or issue quantity.")

    last = compute_ledger(card).latest_entry
    previous_balance = last.balance if last else 0
    previous_received = last.running_receive_total if last else 0

    balance = previous_balance + receive_qty - issue_qty
    if balance < 0 and not allow_negative:
        raise NegativeBalanceError(card.id, balance)

    return TransactionPreview(
        bin_card_id=card.id,
        receive_qty=receive_qty,
        issue_qty=issue_qty,
        previous_balance=previous_balance,
        running_receive_total=previous_received + receive_qty,
        balance_qty=balance,
    )


def _new_transaction(
    card: BinCard,
    preview: TransactionPreview,
    transaction_date: date,
    *,
    transaction_id: str | None,
    remarks: str | None,
    created_at: datetime | None,
    batch_id: str | None,
) -> BinTransaction:
    return BinTransaction(
        id=transaction_id or str(uuid.uuid4()),
        bin_card_id=card.id,
        transaction_date=transaction_date,
        receive_qty=preview.receive_qty,
        issue_qty=preview.issue_qty,
        running_receive_total=preview.running_receive_total,
        balance_qty=preview.balance_qty,
        remarks=remarks,
        created_at=created_at or datetime.now(timezone.utc),
        batch_id=batch_id,
    )


def append_transaction(
    card: BinCard,
    transaction_date: date,
    receive_qty: int = 0,
    issue_qty: int = 0,
    *,
    remarks: str | None = None,
    transaction_id: str | None = None,
    created_at: datetime | None = None,
    batch_id: str | None = None,
    allow_negative: bool = False,
) -> tuple[BinCard, BinTransaction]:
    """Append a transaction to *card* and return the new card and transaction.

    Raises DuplicateEntryError when the card already has a transaction on
    *transaction_date* and LedgerError when the date precedes the card's
    latest entry.
    """
    if has_entry_on(card, transaction_date):
        raise DuplicateEntryError(card.id, transaction_date)
    if card.transactions:
        last_date = max(t.transaction_date for t in card.transactions)
        if transaction_date < last_date:
            raise LedgerError(
                f"Bin card '{card.id}': cannot append a transaction dated "
                f"{transaction_date} before the latest entry ({last_date})"
            )

    preview = preview_transaction(card, receive_qty, issue_qty, allow_negative=allow_negative)
    txn = _new_transaction(
        card,
        preview,
        transaction_date,
        transaction_id=transaction_id,
        remarks=remarks,
        created_at=created_at,
        batch_id=batch_id,
    )
    log.debug("Appended transaction %s to bin card %s (balance %d)", txn.id, card.id, txn.balance_qty)
    return replace(card, transactions=card.transactions + (txn,)), txn


@dataclass(frozen=True)
class BulkPlan:
    """Transactions planned for a bulk entry sharing one ``batch_id``."""

    batch_id: str
    transactions: tuple[BinTransaction, ...] = ()
    skipped: tuple[str, ...] = ()
    blocked: tuple[NegativeBalanceError, ...] = field(default_factory=tuple)

    @property
    def card_ids(self) -> list[str]:
        return [t.bin_card_id for t in self.transactions]


def plan_bulk_entry(
    cards: Iterable[BinCard],
    transaction_date: date,
    receive_qty: int = 0,
    issue_qty: int = 0,
    *,
    remarks: str | None = None,
    batch_id: str | None = None,
    created_at: datetime | None = None,
    allow_negative: bool = False,
) -> BulkPlan:
    """Plan one receive/issue across many cards.

    Cards that already have an entry on *transaction_date* are skipped.
    Cards whose balance would go negative are blocked unless
    *allow_negative* is set.
    """
    batch_id = batch_id or str(uuid.uuid4())
    created_at = created_at or datetime.now(timezone.utc)

    planned: list[BinTransaction] = []
    skipped: list[str] = []
    blocked: list[NegativeBalanceError] = []
    for card in cards:
        if has_entry_on(card, transaction_date):
            log.info("Bin card '%s' already has today's entry; skipping", card.id)
            skipped.append(card.id)
            continue
        try:
            _, txn = append_transaction(
                card,
                transaction_date,
                receive_qty,
                issue_qty,
                remarks=remarks,
                created_at=created_at,
                batch_id=batch_id,
                allow_negative=allow_negative,
            )
        except NegativeBalanceError as e:
            blocked.append(e)
            continue
        planned.append(txn)

    return BulkPlan(
        batch_id=batch_id,
        transactions=tuple(planned),
        skipped=tuple(skipped),
        blocked=tuple(blocked),
    )


def delete_transactions(card: BinCard, transaction_ids: Iterable[str] | None = None) -> BinCard:
    """Return *card* without the given transactions (all when None)."""
    if transaction_ids is None:
        return replace(card, transactions=())
    wanted = set(transaction_ids)
    unknown = wanted - {t.id for t in card.transactions}
    if unknown:
        raise LedgerError(
            f"Bin card '{card.id}' has no transaction(s) "
            + ", ".join(repr(t) for t in sorted(unknown))
        )
    return replace(card, transactions=tuple(t for t in card.transactions if t.id not in wanted))


def check_card_deletable(card: BinCard) -> None:
    if card.transactions:
        raise DanglingTransactionsError(card.id, len(card.transactions))


def delete_card(cards: Sequence[BinCard], card_id: str) -> list[BinCard]:
    """Return *cards* without *card_id*.

    Refuses with DanglingTransactionsError while the card still has
    transactions; delete those first with ``delete_transactions``.
    """
    for card in cards:
        if card.id == card_id:
            check_card_deletable(card)
            return [c for c in cards if c.id != card_id]
    raise LedgerError(f"Unknown bin card '{card_id}'")
