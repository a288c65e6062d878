"""Bin groups — several POs sharing one physical storage lot.

A group is identified by its signature: the sorted work-order ids of its
member POs joined by ``,``. Each member card keeps its own ledger; group
totals are sums of the members' independently computed figures, never a
merged running ledger.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Literal

from .ledger import compute_ledger
from .models import BinCard

DEFAULT_LOW_STOCK_THRESHOLD = 10

MIXED = "Mixed"


def group_signature(work_order_ids: Iterable[str]) -> str:
    """Signature of a PO set: unique, sorted work-order ids joined by ``,``."""
    ids = sorted({str(i).strip() for i in work_order_ids if i and str(i).strip()})
    if not ids:
        raise ValueError("A bin group needs at least one work order id.")
    return ",".join(ids)


@dataclass(frozen=True)
class BinGroup:
    signature: str
    members: tuple[BinCard, ...]

    @property
    def name(self) -> str:
        for card in self.members:
            if card.group_name:
                return card.group_name
        return self.signature


@dataclass(frozen=True)
class GroupRollup:
    signature: str
    name: str
    card_count: int
    total_received: int
    total_issued: int
    total_balance: int
    member_balances: dict[str, int]


def rollup_group(group: BinGroup) -> GroupRollup:
    """Sum the members' receipts, issues and latest balances."""
    received = issued = balance = 0
    member_balances: dict[str, int] = {}
    for card in group.members:
        ledger = compute_ledger(card)
        received += ledger.total_received
        issued += ledger.total_issued
        balance += ledger.latest_balance
        member_balances[card.id] = ledger.latest_balance
    return GroupRollup(
        signature=group.signature,
        name=group.name,
        card_count=len(group.members),
        total_received=received,
        total_issued=issued,
        total_balance=balance,
        member_balances=member_balances,
    )


def group_bin_cards(cards: Iterable[BinCard]) -> tuple[list[BinGroup], list[BinCard]]:
    """Split cards into groups (first-seen order) and ungrouped cards."""
    grouped: dict[str, list[BinCard]] = {}
    ungrouped: list[BinCard] = []
    for card in cards:
        key = card.group_key
        if key is None:
            ungrouped.append(card)
        else:
            grouped.setdefault(key, []).append(card)
    groups = [BinGroup(signature=k, members=tuple(v)) for k, v in grouped.items()]
    return groups, ungrouped


def _shared(values: Iterable[str | None]) -> str | None:
    distinct = {v for v in values if v}
    if not distinct:
        return None
    if len(distinct) == 1:
        return distinct.pop()
    return MIXED


def is_low_stock(balance: int, threshold: int = DEFAULT_LOW_STOCK_THRESHOLD) -> bool:
    return balance <= threshold


@dataclass(frozen=True)
class StorageRow:
    """One row of the storage dashboard: a single card or a whole group."""

    kind: Literal["single", "group"]
    key: str
    cards: tuple[BinCard, ...]
    group_name: str | None
    buyer: str | None
    style: str | None
    total_received: int
    total_issued: int
    total_balance: int
    transaction_count: int
    updated_at: datetime | None
    low_stock: bool

    @property
    def po_numbers(self) -> list[str]:
        return [c.po_number or c.id for c in self.cards]


def _row(key: str, cards: list[BinCard], threshold: int) -> StorageRow:
    received = issued = balance = count = 0
    for card in cards:
        ledger = compute_ledger(card)
        received += ledger.total_received
        issued += ledger.total_issued
        balance += ledger.latest_balance
        count += len(ledger.entries)
    stamps = [c.updated_at for c in cards if c.updated_at is not None]
    return StorageRow(
        kind="group" if len(cards) > 1 else "single",
        key=key,
        cards=tuple(cards),
        group_name=_shared(c.group_name for c in cards),
        buyer=_shared(c.buyer for c in cards),
        style=_shared(c.style for c in cards),
        total_received=received,
        total_issued=issued,
        total_balance=balance,
        transaction_count=count,
        updated_at=max(stamps, key=lambda d: d.timestamp()) if stamps else None,
        low_stock=is_low_stock(balance, threshold),
    )


def storage_rows(
    cards: Iterable[BinCard], threshold: int = DEFAULT_LOW_STOCK_THRESHOLD
) -> list[StorageRow]:
    """Dashboard rows, most recently updated first (rows never updated last)."""
    groups, ungrouped = group_bin_cards(cards)
    rows = [_row(g.signature, list(g.members), threshold) for g in groups]
    rows += [_row(c.id, [c], threshold) for c in ungrouped]
    rows.sort(
        key=lambda r: (r.updated_at is not None, r.updated_at.timestamp() if r.updated_at else 0.0),
        reverse=True,
    )
    return rows


def _matches(card: BinCard, needle: str) -> bool:
    fields = (
        card.po_number,
        card.buyer,
        card.style,
        card.item,
        card.supplier_name,
        card.description,
        card.group_name,
    )
    return any(needle in f.lower() for f in fields if f)


def search_cards(cards: Iterable[BinCard], query: str) -> list[BinCard]:
    """Cards matching *query*, plus every other member of a matched group."""
    cards = list(cards)
    needle = query.strip().lower()
    if not needle:
        return cards
    hit_keys = set()
    hit_ids = set()
    for card in cards:
        if _matches(card, needle):
            hit_ids.add(card.id)
            if card.group_key is not None:
                hit_keys.add(card.group_key)
    return [c for c in cards if c.id in hit_ids or (c.group_key is not None and c.group_key in hit_keys)]


@dataclass(frozen=True)
class StorageStats:
    card_count: int
    total_balance: int
    total_received: int
    total_issued: int
    low_stock_count: int


def storage_stats(
    cards: Iterable[BinCard], threshold: int = DEFAULT_LOW_STOCK_THRESHOLD
) -> StorageStats:
    count = balance = received = issued = low = 0
    for card in cards:
        ledger = compute_ledger(card)
        count += 1
        balance += ledger.latest_balance
        received += ledger.total_received
        issued += ledger.total_issued
        if is_low_stock(ledger.latest_balance, threshold):
            low += 1
    return StorageStats(
        card_count=count,
        total_balance=balance,
        total_received=received,
        total_issued=issued,
        low_stock_count=low,
    )
