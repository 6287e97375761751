"""Tests for the ledger stores and repository."""

from datetime import date
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from butter_ledger.errors import ConflictError, ExternalServiceError, NotFoundError
from butter_ledger.models import Invoice, InvoiceStatus
from butter_ledger.store import Entity, InMemoryLedgerStore, SupabaseStore


def response(status_code: int, payload=None) -> MagicMock:
    mock_response = MagicMock()
    mock_response.status_code = status_code
    mock_response.json.return_value = payload
    mock_response.content = b"" if payload is None else b"x"
    mock_response.text = "" if payload is None else str(payload)
    return mock_response


class TestInMemoryLedgerStore:
    """Tests for the dictionary-backed store."""

    @pytest.mark.asyncio
    async def test_insert_generates_id(self):
        store = InMemoryLedgerStore()

        record = await store.insert(Entity.CLIENTS, {"name": "Acme"})

        assert record["id"]
        assert await store.get(Entity.CLIENTS, record["id"]) == record

    @pytest.mark.asyncio
    async def test_duplicate_id_conflicts(self):
        store = InMemoryLedgerStore({Entity.TRANSACTIONS: [{"id": "T1"}]})

        with pytest.raises(ConflictError):
            await store.insert(Entity.TRANSACTIONS, {"id": "T1"})

    @pytest.mark.asyncio
    async def test_duplicate_invoice_number_conflicts(self):
        store = InMemoryLedgerStore()
        await store.insert(Entity.INVOICES, {"invoiceNumber": "INV-ACME-0001"})

        with pytest.raises(ConflictError):
            await store.insert(Entity.INVOICES, {"invoiceNumber": "INV-ACME-0001"})

    @pytest.mark.asyncio
    async def test_one_invoice_per_profile_and_issue_date(self):
        store = InMemoryLedgerStore()
        run = {"recurringProfileId": "profile-1", "issueDate": "2024-04-15"}
        await store.insert(
            Entity.INVOICES, {**run, "invoiceNumber": "INV-ACME-0001", "scheduledFor": "2024-01-31"}
        )

        with pytest.raises(ConflictError) as exc_info:
            await store.insert(
                Entity.INVOICES,
                {**run, "invoiceNumber": "INV-ACME-0002", "scheduledFor": "2024-02-29"},
            )

        assert exc_info.value.details == run
        # Hand-entered invoices carry no profile and are unconstrained
        await store.insert(Entity.INVOICES, {"invoiceNumber": "INV-ACME-0003", "issueDate": "2024-04-15"})
        await store.insert(Entity.INVOICES, {"invoiceNumber": "INV-ACME-0004", "issueDate": "2024-04-15"})

    @pytest.mark.asyncio
    async def test_returned_records_are_copies(self):
        store = InMemoryLedgerStore({Entity.CLIENTS: [{"id": "c1", "name": "Acme"}]})

        record = await store.get(Entity.CLIENTS, "c1")
        record["name"] = "Changed"

        assert (await store.get(Entity.CLIENTS, "c1"))["name"] == "Acme"

    @pytest.mark.asyncio
    async def test_filters(self):
        store = InMemoryLedgerStore(
            {
                Entity.RECURRING_INVOICES: [
                    {"id": "p1", "status": "Active", "nextRunDate": "2024-01-31"},
                    {"id": "p2", "status": "Active", "nextRunDate": "2024-02-29"},
                    {"id": "p3", "status": "Paused", "nextRunDate": "2024-01-01"},
                ]
            }
        )

        due = await store.list(
            Entity.RECURRING_INVOICES,
            {"status": "Active", "nextRunDate": ("lte", date(2024, 2, 1))},
        )

        assert [r["id"] for r in due] == ["p1"]

    @pytest.mark.asyncio
    async def test_update_and_delete_missing(self):
        store = InMemoryLedgerStore()

        with pytest.raises(NotFoundError):
            await store.update(Entity.INVOICES, "nope", {"status": "Paid"})
        with pytest.raises(NotFoundError):
            await store.delete(Entity.INVOICES, "nope")


@pytest.fixture
def supabase():
    return SupabaseStore(base_url="http://supabase.test/", api_key="key", max_retries=2)


class TestSupabaseStore:
    """Tests for the PostgREST store."""

    def test_init_strips_trailing_slash(self, supabase):
        assert supabase.base_url == "http://supabase.test"

    def test_build_params(self):
        params = SupabaseStore._build_params(
            {"status": InvoiceStatus.SENT, "nextRunDate": ("lte", date(2024, 1, 31)), "isPaid": False}
        )

        assert params == {
            "select": "*",
            "status": "eq.Sent",
            "nextRunDate": "lte.2024-01-31",
            "isPaid": "eq.false",
        }

    @pytest.mark.asyncio
    async def test_list_sends_headers(self, supabase):
        http = AsyncMock()
        http.request = AsyncMock(return_value=response(200, [{"id": "c1"}]))

        with patch.object(supabase, "_get_client", AsyncMock(return_value=http)):
            rows = await supabase.list(Entity.CLIENTS)

        assert rows == [{"id": "c1"}]
        kwargs = http.request.await_args.kwargs
        assert kwargs["url"] == "/rest/v1/clients"
        assert kwargs["headers"]["apikey"] == "key"
        assert kwargs["headers"]["Authorization"] == "Bearer key"
        assert kwargs["headers"]["Prefer"] == "return=representation"

    @pytest.mark.asyncio
    async def test_retries_server_errors(self, supabase):
        http = AsyncMock()
        http.request = AsyncMock(side_effect=[response(503, {}), response(200, [{"id": "c1"}])])

        with patch.object(supabase, "_get_client", AsyncMock(return_value=http)), patch(
            "butter_ledger.store.rest.asyncio.sleep", AsyncMock()
        ) as sleep:
            rows = await supabase.list(Entity.CLIENTS)

        assert rows == [{"id": "c1"}]
        sleep.assert_awaited_once_with(1)

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, supabase):
        http = AsyncMock()
        http.request = AsyncMock(side_effect=httpx.ConnectError("refused"))

        with patch.object(supabase, "_get_client", AsyncMock(return_value=http)), patch(
            "butter_ledger.store.rest.asyncio.sleep", AsyncMock()
        ):
            with pytest.raises(ExternalServiceError) as exc_info:
                await supabase.list(Entity.CLIENTS)

        assert exc_info.value.retryable
        assert http.request.await_count == 3

    @pytest.mark.asyncio
    async def test_unique_violation_is_conflict(self, supabase):
        http = AsyncMock()
        http.request = AsyncMock(return_value=response(409, {"code": "23505"}))

        with patch.object(supabase, "_get_client", AsyncMock(return_value=http)):
            with pytest.raises(ConflictError):
                await supabase.insert(Entity.INVOICES, {"invoiceNumber": "INV-ACME-0001"})

    @pytest.mark.asyncio
    async def test_client_error_not_retryable(self, supabase):
        http = AsyncMock()
        http.request = AsyncMock(return_value=response(400, {"message": "bad column"}))

        with patch.object(supabase, "_get_client", AsyncMock(return_value=http)):
            with pytest.raises(ExternalServiceError) as exc_info:
                await supabase.list(Entity.CLIENTS)

        assert exc_info.value.status_code == 400
        assert not exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_missing_table_is_not_found(self, supabase):
        http = AsyncMock()
        http.request = AsyncMock(return_value=response(404, {"code": "42P01"}))

        with patch.object(supabase, "_get_client", AsyncMock(return_value=http)):
            with pytest.raises(NotFoundError) as exc_info:
                await supabase.list(Entity.TRANSACTIONS)

        assert exc_info.value.entity == Entity.TRANSACTIONS.value
        assert http.request.await_count == 1

    @pytest.mark.asyncio
    async def test_update_missing_row(self, supabase):
        http = AsyncMock()
        http.request = AsyncMock(return_value=response(200, []))

        with patch.object(supabase, "_get_client", AsyncMock(return_value=http)):
            with pytest.raises(NotFoundError):
                await supabase.update(Entity.INVOICES, "inv-9", {"status": "Paid"})

        assert http.request.await_args.kwargs["params"] == {"id": "eq.inv-9"}

    @pytest.mark.asyncio
    async def test_insert_drops_null_id(self, supabase):
        http = AsyncMock()
        http.request = AsyncMock(return_value=response(201, [{"id": "new", "name": "Acme"}]))

        with patch.object(supabase, "_get_client", AsyncMock(return_value=http)):
            row = await supabase.insert(Entity.CLIENTS, {"id": None, "name": "Acme"})

        assert row["id"] == "new"
        assert http.request.await_args.kwargs["json"] == {"name": "Acme"}


class TestRepository:
    """Tests for repository conversions."""

    @pytest.mark.asyncio
    async def test_due_profiles(self, repository):
        assert [r["id"] for r in await repository.list_due_profile_records(date(2024, 1, 31))] == [
            "profile-1"
        ]
        assert await repository.list_due_profile_records(date(2024, 1, 30)) == []

    @pytest.mark.asyncio
    async def test_require_client_missing(self, repository):
        with pytest.raises(NotFoundError):
            await repository.require_client("client-gone")

    @pytest.mark.asyncio
    async def test_settings_record_default(self, repository):
        assert await repository.get_settings_record() == {}

    @pytest.mark.asyncio
    async def test_compensation_delete(self, store, repository):
        """Test that materialize_invoice deletes the invoice when advancing fails."""
        invoice = Invoice(
            client_id="client-acme",
            invoice_number="INV-ACME-0001",
            issue_date=date(2024, 1, 31),
            due_date=date(2024, 2, 14),
        )

        with pytest.raises(ExternalServiceError):
            await repository.materialize_invoice(invoice, "profile-missing", date(2024, 2, 29))

        assert await store.list(Entity.INVOICES) == []
