"""Tests for transaction merging and the ingestion service."""

from datetime import date, datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest

from butter_ledger.errors import (
    ConflictError,
    ExternalServiceError,
    ParseError,
    ValidationError,
)
from butter_ledger.events import EventType
from butter_ledger.ingestion import TransactionIngestionService, merge_transactions
from butter_ledger.models import Transaction, TransactionType
from butter_ledger.store import Entity


def tx(tx_id: str, day: int, amount: str = "10.00", reconciled: bool = False) -> Transaction:
    return Transaction(
        id=tx_id,
        date=date(2024, 3, day),
        amount=Decimal(amount),
        type=TransactionType.CREDIT,
        reconciled=reconciled,
    )


class TestMergeTransactions:
    """Tests for deduplicating merge."""

    def test_new_records_added_and_sorted(self):
        result = merge_transactions([tx("a", 1)], [tx("b", 3), tx("c", 2)])

        assert [t.id for t in result.added] == ["b", "c"]
        assert [t.id for t in result.transactions] == ["b", "c", "a"]
        assert result.duplicates == 0

    def test_existing_copy_wins(self):
        """Test that a re-imported id never overwrites the stored record."""
        existing = [tx("a", 1, amount="99.00", reconciled=True)]

        result = merge_transactions(existing, [tx("a", 1, amount="10.00")])

        assert result.added == []
        assert result.duplicates == 1
        assert result.transactions[0].reconciled
        assert result.transactions[0].amount == Decimal("99.00")

    def test_duplicates_within_batch(self):
        result = merge_transactions([], [tx("a", 1), tx("a", 1)])

        assert len(result.added) == 1
        assert result.duplicates == 1

    def test_same_date_keeps_order(self):
        result = merge_transactions([tx("old", 5)], [tx("new", 5)])

        assert [t.id for t in result.transactions] == ["new", "old"]


CSV_TEXT = "ID,Date,Amount,Description\nT1,2024-03-02,1500.00,Acme payment\nT2,2024-03-03,-900.00,Hosting\n"


class TestImportFile:
    """Tests for file imports through the service."""

    @pytest.mark.asyncio
    async def test_import_persists_new_transactions(self, repository):
        service = TransactionIngestionService(repository)

        result = await service.import_file(CSV_TEXT)

        assert [t.id for t in result.added] == ["T1", "T2"]
        assert result.duplicates == 0
        assert [t.id for t in result.transactions] == ["T2", "T1"]
        stored = {t.id: t for t in await repository.list_transactions()}
        assert stored["T2"].type == TransactionType.DEBIT
        assert stored["T2"].amount == Decimal("900.00")

    @pytest.mark.asyncio
    async def test_reimport_leaves_stored_copy_untouched(self, store, repository):
        service = TransactionIngestionService(repository)
        await service.import_file(CSV_TEXT)
        await store.update(Entity.TRANSACTIONS, "T1", {"reconciled": True})

        result = await service.import_file(CSV_TEXT)

        assert result.added == []
        assert result.duplicates == 2
        assert (await repository.get_transaction("T1")).reconciled
        assert len(await repository.list_transactions()) == 2

    @pytest.mark.asyncio
    async def test_parse_failure_writes_nothing(self, repository):
        service = TransactionIngestionService(repository)

        with pytest.raises(ParseError):
            await service.import_file("ID,Date,Amount\nT1,2024-03-02,10\nT2,2024-03-02,abc\n")

        assert await repository.list_transactions() == []

    @pytest.mark.asyncio
    async def test_insert_conflict_counts_as_duplicate(self, repository):
        """Test that a concurrent importer winning the insert is not an error."""
        service = TransactionIngestionService(repository)
        original_insert = repository.insert_transaction

        async def racing_insert(transaction):
            if transaction.id == "T1":
                raise ConflictError("Duplicate id 'T1' in transactions")
            return await original_insert(transaction)

        with patch.object(repository, "insert_transaction", side_effect=racing_insert):
            result = await service.import_file(CSV_TEXT)

        assert [t.id for t in result.added] == ["T2"]
        assert result.duplicates == 1
        assert [t.id for t in result.transactions] == ["T2"]

    @pytest.mark.asyncio
    async def test_store_failure_reports_rows_written(self, repository):
        """Test that an outage mid-import names what was already stored."""
        events = []
        service = TransactionIngestionService(repository, on_event=events.append)
        original_insert = repository.insert_transaction

        async def failing_insert(transaction):
            if transaction.id == "T2":
                raise ExternalServiceError("Ledger store error: 503", status_code=503)
            return await original_insert(transaction)

        with patch.object(repository, "insert_transaction", side_effect=failing_insert):
            with pytest.raises(ExternalServiceError) as exc_info:
                await service.import_file(CSV_TEXT)

        assert exc_info.value.details == {"source": "file", "inserted": ["T1"], "failed": "T2"}
        assert exc_info.value.retryable
        assert [t.id for t in await repository.list_transactions()] == ["T1"]
        assert events[0].data == {"source": "file", "added": 1, "duplicates": 0, "failed": "T2"}

        result = await service.import_file(CSV_TEXT)

        assert [t.id for t in result.added] == ["T2"]
        assert result.duplicates == 1

    @pytest.mark.asyncio
    async def test_import_emits_event(self, repository):
        events = []
        service = TransactionIngestionService(repository, on_event=events.append)

        await service.import_file(CSV_TEXT)

        assert events[0].event_type == EventType.TRANSACTIONS_IMPORTED
        assert events[0].data == {"source": "file", "added": 2, "duplicates": 0}


class TestSyncBank:
    """Tests for bank API syncs through the service."""

    @pytest.mark.asyncio
    async def test_sync_normalizes_transfers(self, repository):
        source = AsyncMock()
        source.fetch_recent_transfers.return_value = [
            {
                "id": 555,
                "created": "2024-03-04 09:15:00",
                "targetValue": -120.5,
                "targetCurrency": "AUD",
                "targetAccount": "Cloud Hosting Pty",
            },
            {"id": 556, "targetValue": 10},
        ]
        service = TransactionIngestionService(repository, bank_source=source)
        now = datetime(2024, 3, 5, tzinfo=timezone.utc)

        result = await service.sync_bank(now)

        source.fetch_recent_transfers.assert_awaited_once_with(now)
        assert [t.id for t in result.added] == ["555"]
        added = result.added[0]
        assert added.type == TransactionType.DEBIT
        assert added.amount == Decimal("120.50")
        assert added.description == "Transfer to Cloud Hosting Pty"
        assert added.currency == "AUD"

    @pytest.mark.asyncio
    async def test_empty_sync_window(self, repository):
        source = AsyncMock()
        source.fetch_recent_transfers.return_value = []
        service = TransactionIngestionService(repository, bank_source=source)

        result = await service.sync_bank()

        assert result.added == []
        assert result.message == "No transfers found for the sync window"

    @pytest.mark.asyncio
    async def test_sync_without_source(self, repository):
        with pytest.raises(ValidationError):
            await TransactionIngestionService(repository).sync_bank()
