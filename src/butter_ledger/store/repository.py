"""Typed repository over a LedgerStore.

Services get narrow per-entity read/write methods instead of reaching into
shared collections. The two writes spanning two records (invoice
materialization and reconciliation settlement) live here as well, using a
compensating action when the second write fails.
"""

from datetime import date
from typing import Any

import structlog

from butter_ledger.config import get_settings
from butter_ledger.errors import ExternalServiceError, LedgerError, NotFoundError
from butter_ledger.models import (
    Client,
    Expense,
    Invoice,
    InvoiceStatus,
    ProfileStatus,
    RecurringInvoiceProfile,
    Transaction,
)
from butter_ledger.store.base import Entity, LedgerStore

logger = structlog.get_logger(__name__)


class LedgerRepository:
    """Domain-level access to clients, invoices, profiles, expenses and transactions."""

    def __init__(self, store: LedgerStore, default_payment_terms: int | None = None):
        self.store = store
        self._default_payment_terms = (
            default_payment_terms or get_settings().default_payment_terms
        )
        self._logger = logger.bind(component="repository")

    # === Clients ===

    async def get_client(self, client_id: str) -> Client | None:
        record = await self.store.get(Entity.CLIENTS, client_id)
        return Client.from_record(record) if record else None

    async def require_client(self, client_id: str) -> Client:
        client = await self.get_client(client_id)
        if client is None:
            raise NotFoundError("Client", client_id)
        return client

    async def create_client(self, client: Client) -> Client:
        record = client.to_record()
        if not client.id:
            record.pop("id")
        return Client.from_record(await self.store.insert(Entity.CLIENTS, record))

    # === Invoices ===

    async def list_invoices(
        self, client_id: str | None = None, status: InvoiceStatus | None = None
    ) -> list[Invoice]:
        filters: dict[str, Any] = {}
        if client_id is not None:
            filters["clientId"] = client_id
        if status is not None:
            filters["status"] = status
        records = await self.store.list(Entity.INVOICES, filters)
        return [Invoice.from_record(r) for r in records]

    async def get_invoice(self, invoice_id: str) -> Invoice | None:
        record = await self.store.get(Entity.INVOICES, invoice_id)
        return Invoice.from_record(record) if record else None

    async def find_scheduled_invoice(
        self, profile_id: str, scheduled_for: date
    ) -> Invoice | None:
        """Find the invoice already generated for a profile's run date."""
        records = await self.store.list(
            Entity.INVOICES,
            {"recurringProfileId": profile_id, "scheduledFor": scheduled_for},
        )
        return Invoice.from_record(records[0]) if records else None

    async def find_issued_invoice(self, profile_id: str, issue_date: date) -> Invoice | None:
        """Find the invoice a profile produced on a given issue date."""
        records = await self.store.list(
            Entity.INVOICES,
            {"recurringProfileId": profile_id, "issueDate": issue_date},
        )
        return Invoice.from_record(records[0]) if records else None

    async def insert_invoice(self, invoice: Invoice) -> Invoice:
        record = await self.store.insert(Entity.INVOICES, invoice.to_record())
        return Invoice.from_record(record)

    async def set_invoice_status(self, invoice_id: str, status: InvoiceStatus) -> Invoice:
        record = await self.store.update(
            Entity.INVOICES, invoice_id, {"status": status.value}
        )
        return Invoice.from_record(record)

    # === Recurring profiles ===

    async def list_due_profile_records(self, today: date) -> list[dict[str, Any]]:
        """Raw records of active profiles whose next run date is on or before today."""
        return await self.store.list(
            Entity.RECURRING_INVOICES,
            {"status": ProfileStatus.ACTIVE, "nextRunDate": ("lte", today)},
        )

    def parse_profile(self, record: dict[str, Any]) -> RecurringInvoiceProfile:
        return RecurringInvoiceProfile.from_record(
            record, default_payment_terms=self._default_payment_terms
        )

    async def get_profile(self, profile_id: str) -> RecurringInvoiceProfile | None:
        record = await self.store.get(Entity.RECURRING_INVOICES, profile_id)
        return self.parse_profile(record) if record else None

    async def set_next_run_date(self, profile_id: str, next_run_date: date) -> None:
        await self.store.update(
            Entity.RECURRING_INVOICES,
            profile_id,
            {"nextRunDate": next_run_date.isoformat()},
        )

    # === Expenses ===

    async def list_expenses(self, unpaid_only: bool = False) -> list[Expense]:
        filters = {"isPaid": False} if unpaid_only else None
        records = await self.store.list(Entity.EXPENSES, filters)
        return [Expense.from_record(r) for r in records]

    async def get_expense(self, expense_id: str) -> Expense | None:
        record = await self.store.get(Entity.EXPENSES, expense_id)
        return Expense.from_record(record) if record else None

    async def set_expense_paid(self, expense_id: str, paid: bool) -> None:
        await self.store.update(Entity.EXPENSES, expense_id, {"isPaid": paid})

    # === Transactions ===

    async def list_transactions(self) -> list[Transaction]:
        records = await self.store.list(Entity.TRANSACTIONS)
        return [Transaction.from_record(r) for r in records]

    async def get_transaction(self, transaction_id: str) -> Transaction | None:
        record = await self.store.get(Entity.TRANSACTIONS, transaction_id)
        return Transaction.from_record(record) if record else None

    async def insert_transaction(self, transaction: Transaction) -> Transaction:
        record = await self.store.insert(Entity.TRANSACTIONS, transaction.to_record())
        return Transaction.from_record(record)

    async def set_transaction_reconciled(self, transaction_id: str, reconciled: bool) -> None:
        await self.store.update(
            Entity.TRANSACTIONS, transaction_id, {"reconciled": reconciled}
        )

    # === Settings ===

    async def get_settings_record(self) -> dict[str, Any]:
        """First row of the settings table, or an empty dict."""
        records = await self.store.list(Entity.SETTINGS)
        return records[0] if records else {}

    # === Two-record writes ===

    async def materialize_invoice(
        self, invoice: Invoice, profile_id: str, next_run_date: date
    ) -> Invoice:
        """Insert a scheduled invoice, then advance its profile.

        If advancing the profile fails the inserted invoice is deleted again
        so a retry starts from a clean state.
        """
        created = await self.insert_invoice(invoice)
        try:
            await self.set_next_run_date(profile_id, next_run_date)
        except LedgerError as e:
            await self._compensate(
                "delete_invoice",
                self.store.delete(Entity.INVOICES, str(created.id)),
                invoice_id=created.id,
            )
            raise ExternalServiceError(
                f"Failed to advance recurring profile {profile_id}: {e.message}",
                details={"invoice_number": created.invoice_number},
            ) from e
        return created

    async def settle(self, transaction: Transaction, counterpart: Invoice | Expense) -> None:
        """Mark a transaction reconciled and its counterpart paid, or neither."""
        await self.set_transaction_reconciled(transaction.id, True)
        try:
            if isinstance(counterpart, Invoice):
                await self.set_invoice_status(str(counterpart.id), InvoiceStatus.PAID)
            else:
                await self.set_expense_paid(counterpart.id, True)
        except LedgerError as e:
            await self._compensate(
                "unreconcile_transaction",
                self.set_transaction_reconciled(transaction.id, False),
                transaction_id=transaction.id,
            )
            raise ExternalServiceError(
                f"Failed to mark counterpart of transaction {transaction.id} paid: {e.message}",
                details={"counterpart_id": counterpart.id},
            ) from e

    async def _compensate(self, action: str, operation: Any, **context: Any) -> None:
        try:
            await operation
        except LedgerError as e:
            self._logger.error(
                "compensation_failed", action=action, error=str(e), **context
            )
            raise ExternalServiceError(
                f"Compensating action {action} failed: {e.message}",
                details=context,
                retryable=False,
            ) from e
        self._logger.warning("compensation_applied", action=action, **context)
