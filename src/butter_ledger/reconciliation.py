"""Bank-feed reconciliation.

A credit transaction settles an unpaid invoice, a debit settles an unpaid
expense; candidates must match the amount exactly. When several candidates
share the amount they are all offered and the operator picks one. A
confirmed match marks the transaction reconciled and the counterpart paid
as one logical unit; there is no un-reconcile operation.
"""

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any

import structlog

from butter_ledger.errors import (
    ExternalServiceError,
    InvalidTransitionError,
    LedgerError,
    NotFoundError,
    ValidationError,
)
from butter_ledger.events import EventCallback, EventType, emit
from butter_ledger.models import (
    Expense,
    Invoice,
    InvoiceStatus,
    Transaction,
    TransactionType,
)
from butter_ledger.store.repository import LedgerRepository

logger = structlog.get_logger(__name__)


class CandidateKind(str, Enum):
    """Kind of record a transaction can settle."""

    INVOICE = "invoice"
    EXPENSE = "expense"

    @classmethod
    def for_transaction(cls, transaction: Transaction) -> "CandidateKind":
        return cls.INVOICE if transaction.type == TransactionType.CREDIT else cls.EXPENSE


@dataclass(frozen=True)
class Candidate:
    """A record that a transaction could be matched to."""

    kind: CandidateKind
    record_id: str
    amount: Decimal
    label: str
    date: date


def unreconciled(transactions: Iterable[Transaction]) -> list[Transaction]:
    return [tx for tx in transactions if not tx.reconciled]


def find_candidates(
    transaction: Transaction,
    invoices: Iterable[Invoice],
    expenses: Iterable[Expense],
) -> list[Candidate]:
    """Unpaid invoices (credits) or expenses (debits) with exactly the same amount."""
    if transaction.reconciled:
        return []

    if transaction.type == TransactionType.CREDIT:
        return [
            Candidate(
                kind=CandidateKind.INVOICE,
                record_id=str(inv.id),
                amount=inv.total,
                label=inv.invoice_number,
                date=inv.issue_date,
            )
            for inv in invoices
            if inv.status != InvoiceStatus.PAID and inv.total == transaction.amount
        ]

    return [
        Candidate(
            kind=CandidateKind.EXPENSE,
            record_id=exp.id,
            amount=exp.amount,
            label=exp.description,
            date=exp.date,
        )
        for exp in expenses
        if not exp.is_paid and exp.amount == transaction.amount
    ]


def _validate_match(transaction: Transaction, counterpart: Invoice | Expense) -> None:
    if transaction.reconciled:
        raise InvalidTransitionError(
            f"Transaction {transaction.id}", "reconciled", "reconciled"
        )

    if isinstance(counterpart, Invoice):
        if transaction.type != TransactionType.CREDIT:
            raise ValidationError("Only credit transactions can settle invoices")
        if counterpart.is_paid:
            raise InvalidTransitionError(
                f"Invoice {counterpart.invoice_number}", "Paid", "Paid"
            )
        amount = counterpart.total
    else:
        if transaction.type != TransactionType.DEBIT:
            raise ValidationError("Only debit transactions can settle expenses")
        if counterpart.is_paid:
            raise InvalidTransitionError(f"Expense {counterpart.id}", "paid", "paid")
        amount = counterpart.amount

    if amount != transaction.amount:
        raise ValidationError(
            f"Amount {amount} does not match transaction amount {transaction.amount}"
        )


def _settled(counterpart: Invoice | Expense) -> Invoice | Expense:
    if isinstance(counterpart, Invoice):
        return counterpart.transition(InvoiceStatus.PAID)
    return counterpart.mark_paid()


@dataclass
class ReconciliationOutcome:
    """Records as they stand after a confirmed match."""

    transaction: Transaction
    counterpart: Invoice | Expense

    @property
    def kind(self) -> CandidateKind:
        return CandidateKind.INVOICE if isinstance(self.counterpart, Invoice) else CandidateKind.EXPENSE


@dataclass
class LedgerView:
    """Local copy of the records an operator reconciles against.

    Updated optimistically for responsiveness; the store stays authoritative
    and the view is restored when persisting fails.
    """

    transactions: list[Transaction] = field(default_factory=list)
    invoices: list[Invoice] = field(default_factory=list)
    expenses: list[Expense] = field(default_factory=list)

    @classmethod
    async def load(cls, repository: LedgerRepository) -> "LedgerView":
        return cls(
            transactions=await repository.list_transactions(),
            invoices=await repository.list_invoices(),
            expenses=await repository.list_expenses(),
        )

    def find_transaction(self, transaction_id: str) -> Transaction:
        for tx in self.transactions:
            if tx.id == transaction_id:
                return tx
        raise NotFoundError("Transaction", transaction_id)

    def find_counterpart(self, kind: CandidateKind, record_id: str) -> Invoice | Expense:
        records: list[Any] = self.invoices if kind == CandidateKind.INVOICE else self.expenses
        for record in records:
            if str(record.id) == record_id:
                return record
        raise NotFoundError(kind.value.capitalize(), record_id)

    def candidates_for(self, transaction_id: str) -> list[Candidate]:
        return find_candidates(
            self.find_transaction(transaction_id), self.invoices, self.expenses
        )

    def snapshot(self) -> tuple[list[Transaction], list[Invoice], list[Expense]]:
        return list(self.transactions), list(self.invoices), list(self.expenses)

    def restore(self, snapshot: tuple[list[Transaction], list[Invoice], list[Expense]]) -> None:
        self.transactions, self.invoices, self.expenses = (list(s) for s in snapshot)

    def apply(self, transaction: Transaction, counterpart: Invoice | Expense) -> None:
        """Replace the stored copies of both records."""
        self.transactions = [transaction if tx.id == transaction.id else tx for tx in self.transactions]
        if isinstance(counterpart, Invoice):
            self.invoices = [counterpart if inv.id == counterpart.id else inv for inv in self.invoices]
        else:
            self.expenses = [counterpart if exp.id == counterpart.id else exp for exp in self.expenses]


class ReconciliationMatcher:
    """Proposes candidates and confirms matches against the ledger store."""

    def __init__(
        self,
        repository: LedgerRepository,
        on_event: EventCallback | None = None,
    ):
        self._repo = repository
        self._on_event = on_event
        self._lock = asyncio.Lock()
        self._logger = logger.bind(component="reconciliation")

    async def _require_transaction(self, transaction_id: str) -> Transaction:
        transaction = await self._repo.get_transaction(transaction_id)
        if transaction is None:
            raise NotFoundError("Transaction", transaction_id)
        return transaction

    async def _require_counterpart(
        self, kind: CandidateKind, record_id: str
    ) -> Invoice | Expense:
        counterpart: Invoice | Expense | None
        if kind == CandidateKind.INVOICE:
            counterpart = await self._repo.get_invoice(record_id)
        else:
            counterpart = await self._repo.get_expense(record_id)
        if counterpart is None:
            raise NotFoundError(kind.value.capitalize(), record_id)
        return counterpart

    async def candidates(self, transaction_id: str) -> list[Candidate]:
        """Candidates for a stored transaction."""
        transaction = await self._require_transaction(transaction_id)
        if transaction.reconciled:
            return []
        if transaction.type == TransactionType.CREDIT:
            invoices = [
                inv for inv in await self._repo.list_invoices() if not inv.is_paid
            ]
            return find_candidates(transaction, invoices, [])
        expenses = await self._repo.list_expenses(unpaid_only=True)
        return find_candidates(transaction, [], expenses)

    async def confirm_match(
        self, transaction_id: str, counterpart_id: str
    ) -> ReconciliationOutcome:
        """Reconcile a transaction against the chosen invoice or expense.

        Raises:
            NotFoundError: If either record is missing.
            ValidationError: If the records do not form a valid match.
            ExternalServiceError: If persisting failed; nothing is left half-applied.
        """
        async with self._lock:
            transaction = await self._require_transaction(transaction_id)
            kind = CandidateKind.for_transaction(transaction)
            counterpart = await self._require_counterpart(kind, counterpart_id)
            _validate_match(transaction, counterpart)

            try:
                await self._repo.settle(transaction, counterpart)
            except ExternalServiceError as e:
                self._logger.error(
                    "reconciliation_rolled_back",
                    transaction_id=transaction_id,
                    counterpart_id=counterpart_id,
                    error=e.message,
                )
                emit(
                    self._on_event,
                    EventType.RECONCILIATION_ROLLED_BACK,
                    transaction_id=transaction_id,
                    counterpart_id=counterpart_id,
                )
                raise

            outcome = ReconciliationOutcome(
                transaction=transaction.mark_reconciled(),
                counterpart=_settled(counterpart),
            )
            self._logger.info(
                "transaction_reconciled",
                transaction_id=transaction_id,
                counterpart_id=counterpart_id,
                kind=kind.value,
                amount=str(transaction.amount),
            )
            emit(
                self._on_event,
                EventType.TRANSACTION_RECONCILED,
                transaction_id=transaction_id,
                counterpart_id=counterpart_id,
                kind=kind.value,
            )
            return outcome

    async def confirm_in_view(
        self, view: LedgerView, transaction_id: str, counterpart_id: str
    ) -> ReconciliationOutcome:
        """Apply a match to the local view first, then persist it.

        On any failure the view is put back exactly as it was.
        """
        transaction = view.find_transaction(transaction_id)
        kind = CandidateKind.for_transaction(transaction)
        counterpart = view.find_counterpart(kind, counterpart_id)
        _validate_match(transaction, counterpart)

        snapshot = view.snapshot()
        view.apply(transaction.mark_reconciled(), _settled(counterpart))
        try:
            outcome = await self.confirm_match(transaction_id, counterpart_id)
        except LedgerError:
            view.restore(snapshot)
            raise
        view.apply(outcome.transaction, outcome.counterpart)
        return outcome
