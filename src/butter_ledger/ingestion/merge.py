"""Deduplicating merge of incoming transactions into the existing feed."""

from collections.abc import Iterable
from dataclasses import dataclass, field

from butter_ledger.models import Transaction


@dataclass
class MergeResult:
    """Merged feed plus what the merge added and dropped."""

    transactions: list[Transaction]
    added: list[Transaction] = field(default_factory=list)
    duplicates: int = 0


def merge_transactions(
    existing: Iterable[Transaction], incoming: Iterable[Transaction]
) -> MergeResult:
    """Drop incoming records whose id is already known, prepend the rest.

    The merged feed is sorted by date, newest first; ties keep their order.
    """
    existing = list(existing)
    seen = {tx.id for tx in existing}
    added: list[Transaction] = []
    duplicates = 0
    for tx in incoming:
        if tx.id in seen:
            duplicates += 1
            continue
        seen.add(tx.id)
        added.append(tx)

    merged = sorted(added + existing, key=lambda tx: tx.date, reverse=True)
    return MergeResult(transactions=merged, added=added, duplicates=duplicates)
