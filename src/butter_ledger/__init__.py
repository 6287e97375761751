"""Butter Ledger - invoice automation and bank reconciliation core."""

__version__ = "0.1.0"

from butter_ledger.config import configure_logging, get_settings
from butter_ledger.errors import (
    ConflictError,
    ExternalServiceError,
    InvalidTransitionError,
    LedgerError,
    NotFoundError,
    ParseError,
    ValidationError,
)
from butter_ledger.ingestion import TransactionIngestionService, WiseClient
from butter_ledger.invoicing import InvoiceService
from butter_ledger.models import (
    Client,
    Expense,
    Frequency,
    Invoice,
    InvoiceStatus,
    LineItem,
    RecurringInvoiceProfile,
    Transaction,
    TransactionType,
)
from butter_ledger.numbering import next_invoice_number
from butter_ledger.reconciliation import LedgerView, ReconciliationMatcher, find_candidates
from butter_ledger.recurring import RecurringInvoiceScheduler, SchedulerRunSummary
from butter_ledger.scheduler import DailyJob, DailyScheduler
from butter_ledger.store import InMemoryLedgerStore, LedgerRepository, SupabaseStore
from butter_ledger.tax import summarize_financial_year

__all__ = [
    # Version
    "__version__",
    # Records
    "Client",
    "Invoice",
    "InvoiceStatus",
    "LineItem",
    "RecurringInvoiceProfile",
    "Frequency",
    "Expense",
    "Transaction",
    "TransactionType",
    # Services
    "InvoiceService",
    "RecurringInvoiceScheduler",
    "SchedulerRunSummary",
    "TransactionIngestionService",
    "ReconciliationMatcher",
    "LedgerView",
    "find_candidates",
    "next_invoice_number",
    "summarize_financial_year",
    # Scheduling
    "DailyScheduler",
    "DailyJob",
    # Storage
    "LedgerRepository",
    "InMemoryLedgerStore",
    "SupabaseStore",
    "WiseClient",
    # Errors
    "LedgerError",
    "ValidationError",
    "InvalidTransitionError",
    "NotFoundError",
    "ConflictError",
    "ExternalServiceError",
    "ParseError",
    # Config
    "get_settings",
    "configure_logging",
]
