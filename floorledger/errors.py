"""Error taxonomy for the reconciliation and ledger engine.

Two kinds of conditions are modelled here:

- **Recovered** conditions (``AmbiguousGroupError``, ``AmbiguousOrderError``,
  ``BalanceDriftWarning``) are never raised by the engine. They are logged and
  returned alongside the computed result so callers can surface them.
- **Refused** operations (``DanglingTransactionsError``,
  ``DuplicateEntryError``, ``NegativeBalanceError``, ...) are raised and the
  operation leaves its inputs unchanged.

Malformed records fail fast with ``RecordValidationError``.
"""

from __future__ import annotations


class RecordValidationError(ValueError):
    """Raised when a raw record is missing required identifiers or fields."""


class AmbiguousGroupError(ValueError):
    """More than one target (or actual) was found for a single merge key."""

    def __init__(self, key: tuple, phase: str, kept_id: str, dropped_ids: list[str]):
        self.key = key
        self.phase = phase
        self.kept_id = kept_id
        self.dropped_ids = list(dropped_ids)
        super().__init__(
            f"{len(dropped_ids) + 1} {phase} submissions share key {key}; "
            f"kept '{kept_id}', dropped {', '.join(repr(d) for d in dropped_ids)}"
        )


class AmbiguousOrderError(ValueError):
    """Two transactions of one bin card tie on (transaction_date, created_at)."""

    def __init__(self, bin_card_id: str, transaction_ids: list[str]):
        self.bin_card_id = bin_card_id
        self.transaction_ids = list(transaction_ids)
        super().__init__(
            f"Bin card '{bin_card_id}': transactions "
            f"{', '.join(repr(t) for t in transaction_ids)} share the same "
            "transaction date and creation time; using first-seen order"
        )


class BalanceDriftWarning(ValueError):
    """A stored balance disagrees with the recomputed running balance."""

    def __init__(self, bin_card_id: str, transaction_id: str, stored: int, computed: int):
        self.bin_card_id = bin_card_id
        self.transaction_id = transaction_id
        self.stored = stored
        self.computed = computed
        super().__init__(
            f"Bin card '{bin_card_id}': transaction '{transaction_id}' stores "
            f"balance {stored} but the ledger computes {computed}"
        )


class LedgerError(RuntimeError):
    """Base class for refused ledger operations."""


class DanglingTransactionsError(LedgerError):
    """A bin card cannot be deleted while it still has transactions."""

    def __init__(self, bin_card_id: str, count: int):
        self.bin_card_id = bin_card_id
        self.count = count
        super().__init__(
            f"Bin card '{bin_card_id}' still has {count} transaction"
            f"{'s' if count != 1 else ''}; delete them before deleting the card"
        )


class OrphanTransactionError(LedgerError):
    """Transactions reference a bin card that does not exist."""

    def __init__(self, bin_card_ids: list[str]):
        self.bin_card_ids = sorted(set(bin_card_ids))
        super().__init__(
            "Transactions reference unknown bin card(s): "
            + ", ".join(repr(c) for c in self.bin_card_ids)
        )


class DuplicateEntryError(LedgerError):
    """A bin card already has a transaction on the given date."""

    def __init__(self, bin_card_id: str, transaction_date: object):
        self.bin_card_id = bin_card_id
        self.transaction_date = transaction_date
        super().__init__(
            f"Bin card '{bin_card_id}' already has a transaction on "
            f"{transaction_date}; edit the existing entry instead"
        )


class NegativeBalanceError(LedgerError):
    """A transaction would take the running balance below zero."""

    def __init__(self, bin_card_id: str, balance: int):
        self.bin_card_id = bin_card_id
        self.balance = balance
        super().__init__(
            f"Bin card '{bin_card_id}': balance would go negative ({balance}); "
            "reduce the issue quantity"
        )


class ExtrasConsumptionError(ValueError):
    """An extras ledger entry is not allowed."""
