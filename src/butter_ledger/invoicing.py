"""Direct client and invoice entry, and invoice status changes."""

from datetime import date, timedelta

import structlog

from butter_ledger.errors import ConflictError, InvalidTransitionError, NotFoundError, ValidationError
from butter_ledger.models import Client, Invoice, InvoiceStatus, LineItem, calculate_totals
from butter_ledger.numbering import next_invoice_number, sequence_of
from butter_ledger.store.repository import LedgerRepository

logger = structlog.get_logger(__name__)

MAX_NUMBERING_ATTEMPTS = 3


class InvoiceService:
    """Validated writes for hand-entered clients and invoices."""

    def __init__(self, repository: LedgerRepository):
        self._repo = repository
        self._logger = logger.bind(component="invoicing")

    async def create_client(
        self, name: str, email: str, contact_name: str | None = None
    ) -> Client:
        """Create a client; name and email are required."""
        name = (name or "").strip()
        email = (email or "").strip()
        if not name or not email:
            raise ValidationError("Please fill in required fields: name and email")
        client = await self._repo.create_client(
            Client(id="", name=name, contact_name=contact_name or None, email=email)
        )
        self._logger.info("client_created", client_id=client.id)
        return client

    async def create_invoice(
        self,
        client_id: str,
        line_items: list[LineItem],
        issue_date: date | None = None,
        payment_terms: int = 14,
        include_gst: bool = False,
        status: InvoiceStatus = InvoiceStatus.DRAFT,
    ) -> Invoice:
        """Create an invoice with a freshly allocated number.

        Raises:
            ValidationError: No client chosen, no line items or bad terms.
            NotFoundError: The client does not exist.
        """
        if not client_id:
            raise ValidationError("Select a client")
        if not line_items:
            raise ValidationError("An invoice needs at least one line item")
        if payment_terms <= 0:
            raise ValidationError("Payment terms must be a positive number of days")
        if status not in (InvoiceStatus.DRAFT, InvoiceStatus.SENT):
            raise ValidationError("New invoices are saved as Draft or Sent")

        client = await self._repo.require_client(client_id)
        issue_date = issue_date or date.today()
        subtotal, tax, total = calculate_totals(line_items, include_gst)

        last_tried = 0
        for attempt in range(1, MAX_NUMBERING_ATTEMPTS + 1):
            existing = await self._repo.list_invoices(client_id=client.id)
            number = next_invoice_number(client, existing, after=last_tried)
            invoice = Invoice(
                client_id=client.id,
                invoice_number=number,
                issue_date=issue_date,
                due_date=issue_date + timedelta(days=payment_terms),
                status=status,
                subtotal=subtotal,
                tax=tax,
                total=total,
                include_gst=include_gst,
                line_items=list(line_items),
            )
            try:
                created = await self._repo.insert_invoice(invoice)
            except ConflictError:
                if attempt == MAX_NUMBERING_ATTEMPTS:
                    raise
                last_tried = sequence_of(number)
                continue
            self._logger.info(
                "invoice_created", invoice_number=created.invoice_number, status=status.value
            )
            return created
        raise AssertionError("unreachable")

    async def set_status(self, invoice_id: str, status: InvoiceStatus) -> Invoice:
        """Move an invoice to a new status via the transition table."""
        invoice = await self._repo.get_invoice(invoice_id)
        if invoice is None:
            raise NotFoundError("Invoice", invoice_id)
        if invoice.status == status:
            return invoice
        invoice.transition(status)
        return await self._repo.set_invoice_status(invoice_id, status)

    async def mark_overdue(self, today: date | None = None) -> list[Invoice]:
        """Flag sent invoices whose due date has passed."""
        today = today or date.today()
        updated: list[Invoice] = []
        for invoice in await self._repo.list_invoices(status=InvoiceStatus.SENT):
            if invoice.due_date >= today or invoice.id is None:
                continue
            try:
                invoice.transition(InvoiceStatus.OVERDUE)
            except InvalidTransitionError:
                continue
            updated.append(
                await self._repo.set_invoice_status(invoice.id, InvoiceStatus.OVERDUE)
            )
        if updated:
            self._logger.info("invoices_overdue", count=len(updated))
        return updated
