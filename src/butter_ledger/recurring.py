"""Recurring invoice scheduler.

Turns active recurring profiles that are due into concrete, auto-sent
invoices and advances each profile's next run date by one period.

Every generated invoice records the profile it came from, its issue date
and the period (``scheduledFor``) it was generated for. Before inserting,
the scheduler looks for an invoice of the profile issued today or covering
the current period. If one exists and the profile still points at that
period, an earlier run died before advancing and the profile is only
advanced. Otherwise the profile is skipped. Runs inside one process are
serialized by a lock. The store holds (profile, issue date) and (profile,
period) unique, so separate processes racing on a profile see a conflict
and resolve it through the same lookup.
"""

import asyncio
import calendar
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Any

import structlog

from butter_ledger.config import get_settings
from butter_ledger.delivery import (
    DeliveryChannel,
    DeliverySettings,
    PdfRenderer,
    WebhookDelivery,
    render_email_body,
)
from butter_ledger.errors import ConflictError, LedgerError, NotFoundError
from butter_ledger.events import EventCallback, EventType, emit
from butter_ledger.models import (
    Client,
    Frequency,
    Invoice,
    InvoiceStatus,
    RecurringInvoiceProfile,
)
from butter_ledger.numbering import next_invoice_number, sequence_of
from butter_ledger.store.repository import LedgerRepository

logger = structlog.get_logger(__name__)

MAX_NUMBERING_ATTEMPTS = 3


def add_months(value: date, months: int) -> date:
    """Add calendar months, clamping the day to the end of the target month."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def advance_run_date(current: date, frequency: Frequency) -> date:
    """Next run date exactly one period after ``current``.

    2024-01-31 monthly becomes 2024-02-29; the clamped day is kept for later
    periods (2024-03-29), since each step starts from the previous value.
    """
    return add_months(current, frequency.months)


@dataclass
class CreatedInvoiceRef:
    """Reference to an invoice created during a run."""

    invoice_id: str | None
    invoice_number: str
    client_name: str
    amount: Decimal


@dataclass
class ProfileError:
    """A per-profile failure collected instead of aborting the batch."""

    profile_id: str
    message: str
    retryable: bool = False


@dataclass
class SchedulerRunSummary:
    """Outcome of one scheduler run."""

    run_date: date
    invoices: list[CreatedInvoiceRef] = field(default_factory=list)
    errors: list[ProfileError] = field(default_factory=list)
    # Profiles whose invoice already existed; only the run date was advanced
    recovered: list[str] = field(default_factory=list)
    # Profiles not processed: paused, not yet due, or already invoiced today
    skipped: list[str] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return len(self.invoices)

    def to_dict(self) -> dict[str, Any]:
        return {
            "runDate": self.run_date.isoformat(),
            "processed": self.processed,
            "invoices": [
                {
                    "id": ref.invoice_id,
                    "invoiceNumber": ref.invoice_number,
                    "clientName": ref.client_name,
                    "amount": str(ref.amount),
                }
                for ref in self.invoices
            ],
            "errors": [
                {"profileId": e.profile_id, "message": e.message, "retryable": e.retryable}
                for e in self.errors
            ],
            "recovered": list(self.recovered),
            "skipped": list(self.skipped),
        }


class RecurringInvoiceScheduler:
    """Materializes due recurring profiles into invoices."""

    def __init__(
        self,
        repository: LedgerRepository,
        delivery: DeliveryChannel | None = None,
        pdf_renderer: PdfRenderer | None = None,
        on_event: EventCallback | None = None,
        delivery_timeout: float | None = None,
    ):
        self._repo = repository
        self._delivery = delivery
        self._pdf_renderer = pdf_renderer
        self._on_event = on_event
        self._delivery_timeout = delivery_timeout or get_settings().delivery_timeout
        self._run_lock = asyncio.Lock()
        self._logger = logger.bind(component="recurring_scheduler")

    async def run(self, today: date | None = None) -> SchedulerRunSummary:
        """Process every active profile due on or before ``today``."""
        today = today or date.today()
        async with self._run_lock:
            summary = SchedulerRunSummary(run_date=today)
            delivery_settings = await self._load_delivery_settings()
            records = await self._repo.list_due_profile_records(today)

            self._logger.info("recurring_run_starting", run_date=today.isoformat(), due=len(records))

            for record in records:
                profile_id = str(record.get("id"))
                try:
                    await self._process_profile(record, today, summary, delivery_settings)
                except LedgerError as e:
                    self._logger.error(
                        "profile_failed", profile_id=profile_id, error=e.message
                    )
                    summary.errors.append(ProfileError(profile_id, e.message, e.retryable))
                except Exception as e:
                    self._logger.exception("profile_error", profile_id=profile_id)
                    summary.errors.append(
                        ProfileError(
                            profile_id,
                            f"Error processing recurring invoice {profile_id}: {e}",
                        )
                    )

            self._logger.info(
                "recurring_run_completed",
                run_date=today.isoformat(),
                processed=summary.processed,
                errors=len(summary.errors),
                recovered=len(summary.recovered),
                skipped=len(summary.skipped),
            )
            return summary

    async def _load_delivery_settings(self) -> DeliverySettings:
        try:
            stored = await self._repo.get_settings_record()
        except LedgerError as e:
            self._logger.warning("settings_unavailable", error=e.message)
            stored = {}
        return DeliverySettings.resolve(stored)

    async def _process_profile(
        self,
        record: dict[str, Any],
        today: date,
        summary: SchedulerRunSummary,
        delivery_settings: DeliverySettings,
    ) -> None:
        profile = self._repo.parse_profile(record)
        if not profile.is_due(today):
            summary.skipped.append(profile.id)
            return

        client = await self._repo.get_client(profile.client_id)
        if client is None:
            raise NotFoundError("Client", profile.client_id)

        existing = await self._find_existing(profile, today)
        if existing is not None:
            await self._resume(profile, existing, summary)
            return

        next_run = advance_run_date(profile.next_run_date, profile.frequency)
        invoice = await self._create_invoice(profile, client, today, next_run, summary)
        if invoice is None:
            return
        summary.invoices.append(
            CreatedInvoiceRef(
                invoice_id=invoice.id,
                invoice_number=invoice.invoice_number,
                client_name=client.name,
                amount=invoice.total,
            )
        )
        self._logger.info(
            "invoice_created",
            profile_id=profile.id,
            invoice_number=invoice.invoice_number,
            total=str(invoice.total),
            next_run_date=next_run.isoformat(),
        )
        emit(
            self._on_event,
            EventType.INVOICE_CREATED,
            invoice_id=invoice.id,
            invoice_number=invoice.invoice_number,
            profile_id=profile.id,
        )
        emit(
            self._on_event,
            EventType.PROFILE_ADVANCED,
            profile_id=profile.id,
            next_run_date=next_run.isoformat(),
        )

        await self._deliver(profile, invoice, client, summary, delivery_settings)

    def _build_invoice(
        self,
        profile: RecurringInvoiceProfile,
        client: Client,
        invoice_number: str,
        today: date,
    ) -> Invoice:
        return Invoice(
            client_id=client.id,
            invoice_number=invoice_number,
            issue_date=today,
            due_date=today + timedelta(days=profile.payment_terms),
            status=InvoiceStatus.SENT,
            subtotal=profile.subtotal,
            tax=profile.tax,
            total=profile.total,
            include_gst=profile.include_gst,
            line_items=list(profile.line_items),
            recurring_profile_id=profile.id,
            scheduled_for=profile.next_run_date,
        )

    async def _find_existing(
        self, profile: RecurringInvoiceProfile, today: date
    ) -> Invoice | None:
        """Invoice already produced for this run, by issue date or by period."""
        issued = await self._repo.find_issued_invoice(profile.id, today)
        if issued is not None:
            return issued
        return await self._repo.find_scheduled_invoice(profile.id, profile.next_run_date)

    async def _resume(
        self,
        profile: RecurringInvoiceProfile,
        existing: Invoice,
        summary: SchedulerRunSummary,
    ) -> None:
        """Finish a run whose invoice is already stored.

        The profile is advanced only while it still points at the period the
        invoice was generated for. Otherwise another run already moved it on.
        """
        current = await self._repo.get_profile(profile.id)
        if (
            current is None
            or existing.scheduled_for is None
            or current.next_run_date != existing.scheduled_for
        ):
            summary.skipped.append(profile.id)
            self._logger.info(
                "invoice_already_issued",
                profile_id=profile.id,
                invoice_number=existing.invoice_number,
            )
            return

        next_run = advance_run_date(existing.scheduled_for, profile.frequency)
        await self._repo.set_next_run_date(profile.id, next_run)
        summary.recovered.append(profile.id)
        self._logger.warning(
            "scheduled_invoice_exists",
            profile_id=profile.id,
            invoice_number=existing.invoice_number,
            next_run_date=next_run.isoformat(),
        )
        emit(
            self._on_event,
            EventType.PROFILE_ADVANCED,
            profile_id=profile.id,
            next_run_date=next_run.isoformat(),
        )

    async def _create_invoice(
        self,
        profile: RecurringInvoiceProfile,
        client: Client,
        today: date,
        next_run: date,
        summary: SchedulerRunSummary,
    ) -> Invoice | None:
        """Insert the run's invoice, or return None if another writer got there first."""
        last_tried = 0
        for attempt in range(1, MAX_NUMBERING_ATTEMPTS + 1):
            invoices = await self._repo.list_invoices(client_id=client.id)
            number = next_invoice_number(client, invoices, after=last_tried)
            invoice = self._build_invoice(profile, client, number, today)
            try:
                return await self._repo.materialize_invoice(invoice, profile.id, next_run)
            except ConflictError:
                # The conflict may be our own insert whose response was lost,
                # or a concurrent run that materialized this period
                existing = await self._find_existing(profile, today)
                if existing is not None:
                    await self._resume(profile, existing, summary)
                    return None
                if attempt == MAX_NUMBERING_ATTEMPTS:
                    raise
                last_tried = sequence_of(number)
                self._logger.warning(
                    "invoice_number_conflict",
                    profile_id=profile.id,
                    invoice_number=number,
                    attempt=attempt,
                )
        raise AssertionError("unreachable")

    async def _deliver(
        self,
        profile: RecurringInvoiceProfile,
        invoice: Invoice,
        client: Client,
        summary: SchedulerRunSummary,
        delivery_settings: DeliverySettings,
    ) -> None:
        channel = self._delivery
        if channel is None and delivery_settings.webhook_url:
            channel = WebhookDelivery(delivery_settings.webhook_url, self._delivery_timeout)
        if channel is None:
            return

        email_body = render_email_body(delivery_settings.email_template, invoice, client)
        try:
            pdf_bytes = None
            if self._pdf_renderer is not None:
                pdf_bytes = await self._pdf_renderer.render(invoice, client)
            await asyncio.wait_for(
                channel.notify(invoice, client, email_body, pdf_bytes),
                timeout=self._delivery_timeout,
            )
        except Exception as e:
            # Delivery never rolls back the invoice or the advanced run date
            self._logger.warning(
                "delivery_failed",
                profile_id=profile.id,
                invoice_number=invoice.invoice_number,
                error=str(e) or type(e).__name__,
            )
            summary.errors.append(
                ProfileError(profile.id, f"Email failed for invoice {invoice.invoice_number}")
            )
            emit(
                self._on_event,
                EventType.DELIVERY_FAILED,
                invoice_number=invoice.invoice_number,
                profile_id=profile.id,
            )
