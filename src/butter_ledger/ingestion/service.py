"""Ingestion service: parse or fetch, deduplicate, persist new transactions."""

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

import structlog

from butter_ledger.errors import (
    ConflictError,
    ExternalServiceError,
    LedgerError,
    ValidationError,
)
from butter_ledger.events import EventCallback, EventType, emit
from butter_ledger.ingestion.csv_import import parse_transactions_csv
from butter_ledger.ingestion.merge import merge_transactions
from butter_ledger.ingestion.wise import normalize_wise_transfer
from butter_ledger.models import Transaction
from butter_ledger.store.repository import LedgerRepository

logger = structlog.get_logger(__name__)


class BankTransferSource(Protocol):
    """External bank API returning raw transfer dictionaries."""

    async def fetch_recent_transfers(
        self, now: datetime | None = None
    ) -> list[dict[str, Any]]: ...


@dataclass
class IngestionResult:
    """What an import or sync added to the feed."""

    source: str
    added: list[Transaction] = field(default_factory=list)
    duplicates: int = 0
    transactions: list[Transaction] = field(default_factory=list)
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "added": [tx.id for tx in self.added],
            "duplicates": self.duplicates,
            "message": self.message,
        }


class TransactionIngestionService:
    """Merges file imports and bank syncs into the stored transaction feed.

    Nothing is written until the whole input has been parsed, so a
    malformed file never partially merges. Records whose id is already in
    the store are dropped; a uniqueness conflict on insert (another
    importer got there first) counts as a duplicate too. Any other store
    failure stops the import; rows already written stay and their ids are
    reported on the raised error.
    """

    def __init__(
        self,
        repository: LedgerRepository,
        bank_source: BankTransferSource | None = None,
        on_event: EventCallback | None = None,
    ):
        self._repo = repository
        self._bank_source = bank_source
        self._on_event = on_event
        self._logger = logger.bind(component="ingestion")

    async def import_file(self, text: str) -> IngestionResult:
        """Import a delimited bank export."""
        incoming = parse_transactions_csv(text)
        return await self._merge_and_persist("file", incoming)

    async def sync_bank(self, now: datetime | None = None) -> IngestionResult:
        """Pull recent transfers from the bank API."""
        if self._bank_source is None:
            raise ValidationError("No bank transaction source configured")

        raw_transfers = await self._bank_source.fetch_recent_transfers(now)
        incoming: list[Transaction] = []
        for raw in raw_transfers:
            try:
                incoming.append(normalize_wise_transfer(raw))
            except LedgerError as e:
                self._logger.warning("transfer_skipped", error=e.message)

        if not incoming:
            return IngestionResult(
                source="bank",
                transactions=await self._repo.list_transactions(),
                message="No transfers found for the sync window",
            )
        return await self._merge_and_persist("bank", incoming)

    async def _merge_and_persist(
        self, source: str, incoming: Iterable[Transaction]
    ) -> IngestionResult:
        existing = await self._repo.list_transactions()
        merged = merge_transactions(existing, incoming)

        added: list[Transaction] = []
        duplicates = merged.duplicates
        for tx in merged.added:
            try:
                added.append(await self._repo.insert_transaction(tx))
            except ConflictError:
                duplicates += 1
                self._logger.info("transaction_already_stored", transaction_id=tx.id)
            except LedgerError as e:
                # Transactions are append-only; a rerun skips the rows already stored
                inserted = [stored.id for stored in added]
                self._logger.error(
                    "transaction_import_interrupted",
                    source=source,
                    transaction_id=tx.id,
                    inserted=inserted,
                    error=e.message,
                )
                emit(
                    self._on_event,
                    EventType.TRANSACTIONS_IMPORTED,
                    source=source,
                    added=len(added),
                    duplicates=duplicates,
                    failed=tx.id,
                )
                raise ExternalServiceError(
                    f"Import stopped at transaction {tx.id} after {len(added)} insert(s): "
                    f"{e.message}",
                    details={"source": source, "inserted": inserted, "failed": tx.id},
                    retryable=e.retryable,
                ) from e

        conflicted = {tx.id for tx in merged.added} - {tx.id for tx in added}
        transactions = [tx for tx in merged.transactions if tx.id not in conflicted]
        self._logger.info(
            "transactions_imported",
            source=source,
            added=len(added),
            duplicates=duplicates,
        )
        emit(
            self._on_event,
            EventType.TRANSACTIONS_IMPORTED,
            source=source,
            added=len(added),
            duplicates=duplicates,
        )
        return IngestionResult(
            source=source,
            added=added,
            duplicates=duplicates,
            transactions=transactions,
            message=f"Imported {len(added)} transaction(s), skipped {duplicates} duplicate(s)",
        )
