"""Domain records for clients, invoices, recurring profiles, expenses and transactions.

Records are plain dataclasses. ``from_record``/``to_record`` translate to and
from the ledger store's camelCase columns, so the rest of the package never
handles loosely typed dictionaries.
"""

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Any

from butter_ledger.errors import InvalidTransitionError, ValidationError

CENT = Decimal("0.01")

# Fixed Australian GST rate; not user-configurable.
GST_RATE = Decimal("0.10")


class InvoiceStatus(str, Enum):
    """Lifecycle of an invoice."""

    DRAFT = "Draft"
    SENT = "Sent"
    PAID = "Paid"
    OVERDUE = "Overdue"

    @classmethod
    def parse(cls, value: Any) -> "InvoiceStatus":
        """Parse a stored status; a missing status is Draft."""
        try:
            return cls(value or cls.DRAFT.value)
        except ValueError as e:
            raise ValidationError(f"Invalid invoice status: {value!r}") from e


# Allowed status changes. Paid is terminal.
INVOICE_TRANSITIONS: dict[InvoiceStatus, frozenset[InvoiceStatus]] = {
    InvoiceStatus.DRAFT: frozenset({InvoiceStatus.SENT, InvoiceStatus.PAID}),
    InvoiceStatus.SENT: frozenset({InvoiceStatus.PAID, InvoiceStatus.OVERDUE}),
    InvoiceStatus.OVERDUE: frozenset({InvoiceStatus.PAID, InvoiceStatus.SENT}),
    InvoiceStatus.PAID: frozenset(),
}


class ProfileStatus(str, Enum):
    """Whether a recurring profile is materialized by the scheduler."""

    ACTIVE = "Active"
    PAUSED = "Paused"
    INACTIVE = "Inactive"

    @classmethod
    def parse(cls, value: Any) -> "ProfileStatus":
        try:
            return cls(value)
        except ValueError:
            return cls.INACTIVE


class Frequency(str, Enum):
    """Cadence of a recurring invoice profile."""

    MONTHLY = "Monthly"
    QUARTERLY = "Quarterly"
    YEARLY = "Yearly"

    @property
    def months(self) -> int:
        return {"Monthly": 1, "Quarterly": 3, "Yearly": 12}[self.value]

    @classmethod
    def parse(cls, value: Any) -> "Frequency":
        """Parse a stored frequency; anything unrecognized is monthly."""
        try:
            return cls(value)
        except ValueError:
            return cls.MONTHLY


class TransactionType(str, Enum):
    """Direction of money movement on a bank transaction."""

    CREDIT = "Credit"
    DEBIT = "Debit"

    @classmethod
    def parse(cls, value: Any) -> "TransactionType":
        try:
            return cls(value or cls.CREDIT.value)
        except ValueError as e:
            raise ValidationError(f"Invalid transaction type: {value!r}") from e


def to_money(value: Any) -> Decimal:
    """Convert a stored or parsed amount into a cent-quantized Decimal."""
    if value is None or value == "":
        return Decimal("0.00")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation as e:
        raise ValidationError(f"Invalid amount: {value!r}") from e
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def to_date(value: Any) -> date:
    """Convert an ISO date or datetime string into a date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value:
        raise ValidationError("Missing date")
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError as e:
        raise ValidationError(f"Invalid date: {value!r}") from e


def _optional_date(value: Any) -> date | None:
    return to_date(value) if value else None


@dataclass
class LineItem:
    """One billable line of an invoice or recurring profile."""

    category: str
    description: str
    quantity: Decimal = Decimal("1")
    unit_price: Decimal = Decimal("0.00")

    def __post_init__(self) -> None:
        self.quantity = Decimal(str(self.quantity))
        self.unit_price = to_money(self.unit_price)
        if self.quantity < 0:
            raise ValidationError("Line item quantity cannot be negative")
        if self.unit_price < 0:
            raise ValidationError("Line item unit price cannot be negative")

    @property
    def amount(self) -> Decimal:
        return to_money(self.quantity * self.unit_price)

    @classmethod
    def from_record(cls, data: dict[str, Any]) -> "LineItem":
        return cls(
            category=str(data.get("category") or ""),
            description=str(data.get("description") or ""),
            quantity=Decimal(str(data.get("quantity", 1) or 0)),
            unit_price=to_money(data.get("unitPrice")),
        )

    def to_record(self) -> dict[str, Any]:
        return {
            "category": self.category,
            "description": self.description,
            "quantity": str(self.quantity),
            "unitPrice": str(self.unit_price),
        }


def calculate_totals(
    line_items: list[LineItem], include_gst: bool
) -> tuple[Decimal, Decimal, Decimal]:
    """Return (subtotal, tax, total) for the given line items."""
    subtotal = to_money(sum((item.amount for item in line_items), Decimal("0")))
    tax = to_money(subtotal * GST_RATE) if include_gst else Decimal("0.00")
    return subtotal, tax, subtotal + tax


@dataclass
class Client:
    """A customer that invoices are addressed to."""

    id: str
    name: str
    contact_name: str | None = None
    email: str | None = None

    @classmethod
    def from_record(cls, data: dict[str, Any]) -> "Client":
        return cls(
            id=str(data["id"]),
            name=str(data.get("name") or ""),
            contact_name=data.get("contactName"),
            email=data.get("email"),
        )

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "contactName": self.contact_name,
            "email": self.email,
        }


@dataclass
class Invoice:
    """A concrete invoice, entered by hand or generated from a profile."""

    client_id: str
    invoice_number: str
    issue_date: date
    due_date: date
    status: InvoiceStatus = InvoiceStatus.DRAFT
    subtotal: Decimal = Decimal("0.00")
    tax: Decimal = Decimal("0.00")
    total: Decimal = Decimal("0.00")
    include_gst: bool = False
    line_items: list[LineItem] = field(default_factory=list)
    id: str | None = None
    # Provenance for invoices materialized by the recurring scheduler
    recurring_profile_id: str | None = None
    scheduled_for: date | None = None

    @property
    def is_paid(self) -> bool:
        return self.status == InvoiceStatus.PAID

    def can_transition(self, target: InvoiceStatus) -> bool:
        return target == self.status or target in INVOICE_TRANSITIONS[self.status]

    def transition(self, target: InvoiceStatus) -> "Invoice":
        """Return a copy of this invoice in the target status."""
        if not self.can_transition(target):
            raise InvalidTransitionError(
                f"Invoice {self.invoice_number}", self.status.value, target.value
            )
        return replace(self, status=target)

    @classmethod
    def from_record(cls, data: dict[str, Any]) -> "Invoice":
        return cls(
            id=str(data["id"]) if data.get("id") is not None else None,
            client_id=str(data.get("clientId") or ""),
            invoice_number=str(data.get("invoiceNumber") or ""),
            issue_date=to_date(data.get("issueDate")),
            due_date=to_date(data.get("dueDate") or data.get("issueDate")),
            status=InvoiceStatus.parse(data.get("status")),
            subtotal=to_money(data.get("subtotal", data.get("total"))),
            tax=to_money(data.get("tax")),
            total=to_money(data.get("total")),
            include_gst=bool(data.get("includeGst", False)),
            line_items=[LineItem.from_record(li) for li in data.get("lineItems") or []],
            recurring_profile_id=data.get("recurringProfileId"),
            scheduled_for=_optional_date(data.get("scheduledFor")),
        )

    def to_record(self) -> dict[str, Any]:
        record: dict[str, Any] = {
            "clientId": self.client_id,
            "invoiceNumber": self.invoice_number,
            "issueDate": self.issue_date.isoformat(),
            "dueDate": self.due_date.isoformat(),
            "status": self.status.value,
            "subtotal": str(self.subtotal),
            "tax": str(self.tax),
            "total": str(self.total),
            "includeGst": self.include_gst,
            "lineItems": [li.to_record() for li in self.line_items],
            "recurringProfileId": self.recurring_profile_id,
            "scheduledFor": self.scheduled_for.isoformat() if self.scheduled_for else None,
        }
        if self.id is not None:
            record["id"] = self.id
        return record


@dataclass
class RecurringInvoiceProfile:
    """Template that the scheduler turns into invoices on a cadence."""

    id: str
    client_id: str
    start_date: date
    next_run_date: date
    frequency: Frequency = Frequency.MONTHLY
    payment_terms: int = 14
    status: ProfileStatus = ProfileStatus.ACTIVE
    subtotal: Decimal = Decimal("0.00")
    tax: Decimal = Decimal("0.00")
    total: Decimal = Decimal("0.00")
    include_gst: bool = False
    line_items: list[LineItem] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.payment_terms <= 0:
            raise ValidationError("Payment terms must be a positive number of days")

    def is_due(self, today: date) -> bool:
        return self.status == ProfileStatus.ACTIVE and self.next_run_date <= today

    @classmethod
    def from_record(
        cls, data: dict[str, Any], default_payment_terms: int = 14
    ) -> "RecurringInvoiceProfile":
        start_date = to_date(data.get("startDate") or data.get("nextRunDate"))
        return cls(
            id=str(data["id"]),
            client_id=str(data.get("clientId") or ""),
            start_date=start_date,
            next_run_date=to_date(data.get("nextRunDate") or start_date),
            frequency=Frequency.parse(data.get("frequency")),
            payment_terms=int(data.get("paymentTerms") or default_payment_terms),
            status=ProfileStatus.parse(data.get("status")),
            subtotal=to_money(data.get("subtotal", data.get("total"))),
            tax=to_money(data.get("tax")),
            total=to_money(data.get("total")),
            include_gst=bool(data.get("includeGst", False)),
            line_items=[LineItem.from_record(li) for li in data.get("lineItems") or []],
        )

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "clientId": self.client_id,
            "startDate": self.start_date.isoformat(),
            "nextRunDate": self.next_run_date.isoformat(),
            "frequency": self.frequency.value,
            "paymentTerms": self.payment_terms,
            "status": self.status.value,
            "subtotal": str(self.subtotal),
            "tax": str(self.tax),
            "total": str(self.total),
            "includeGst": self.include_gst,
            "lineItems": [li.to_record() for li in self.line_items],
        }


@dataclass
class Expense:
    """A business cost, settled by a matching debit transaction."""

    id: str
    category: str
    description: str
    amount: Decimal
    date: date
    is_paid: bool = False

    def __post_init__(self) -> None:
        self.amount = to_money(self.amount)
        if self.amount < 0:
            raise ValidationError("Expense amount cannot be negative")

    def mark_paid(self) -> "Expense":
        if self.is_paid:
            raise InvalidTransitionError(f"Expense {self.id}", "paid", "paid")
        return replace(self, is_paid=True)

    @classmethod
    def from_record(cls, data: dict[str, Any]) -> "Expense":
        return cls(
            id=str(data["id"]),
            category=str(data.get("category") or ""),
            description=str(data.get("description") or ""),
            amount=to_money(data.get("amount")),
            date=to_date(data.get("date")),
            is_paid=bool(data.get("isPaid", False)),
        )

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "category": self.category,
            "description": self.description,
            "amount": str(self.amount),
            "date": self.date.isoformat(),
            "isPaid": self.is_paid,
        }


@dataclass
class Transaction:
    """A bank feed entry; amount is a magnitude and type carries the sign."""

    id: str
    date: date
    amount: Decimal
    type: TransactionType
    description: str = ""
    currency: str | None = None
    reconciled: bool = False

    def __post_init__(self) -> None:
        self.amount = to_money(self.amount)
        if self.amount < 0:
            raise ValidationError("Transaction amount must be a positive magnitude")

    def mark_reconciled(self) -> "Transaction":
        if self.reconciled:
            raise InvalidTransitionError(
                f"Transaction {self.id}", "reconciled", "reconciled"
            )
        return replace(self, reconciled=True)

    @classmethod
    def from_record(cls, data: dict[str, Any]) -> "Transaction":
        return cls(
            id=str(data["id"]),
            date=to_date(data.get("date")),
            amount=to_money(data.get("amount")),
            type=TransactionType.parse(data.get("type")),
            description=str(data.get("description") or ""),
            currency=data.get("currency") or None,
            reconciled=bool(data.get("reconciled", False)),
        )

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "date": self.date.isoformat(),
            "amount": str(self.amount),
            "type": self.type.value,
            "description": self.description,
            "currency": self.currency,
            "reconciled": self.reconciled,
        }
