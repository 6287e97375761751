"""Domain events emitted by the scheduler, ingestion and matcher.

Services accept an optional ``on_event`` callback; the CLI uses it to log
an audit trail, a hosting application can forward events to its own bus.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import UUID, uuid4


class EventType(str, Enum):
    """Types of events published by the ledger core."""

    # Recurring invoices
    INVOICE_CREATED = "invoice.created"
    PROFILE_ADVANCED = "profile.advanced"
    DELIVERY_FAILED = "delivery.failed"

    # Bank feed
    TRANSACTIONS_IMPORTED = "transactions.imported"
    TRANSACTION_RECONCILED = "transaction.reconciled"
    RECONCILIATION_ROLLED_BACK = "reconciliation.rolled_back"


@dataclass
class LedgerEvent:
    """Base event structure for all ledger events."""

    event_type: EventType
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    event_id: UUID = field(default_factory=uuid4)
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Serialize event to a JSON-friendly dictionary."""
        return {
            "id": str(self.event_id),
            "type": self.event_type.value,
            "timestamp": self.timestamp.isoformat(),
            "data": self.data,
        }


EventCallback = Callable[[LedgerEvent], None]


def emit(callback: EventCallback | None, event_type: EventType, **data: Any) -> None:
    """Invoke the callback, if any, with a new event."""
    if callback is not None:
        callback(LedgerEvent(event_type=event_type, data=data))
