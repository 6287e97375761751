"""Ledger store interface.

The store is durable record storage with CRUD by id and filtered listing.
Records are plain dictionaries keyed by the store's column names; the
repository layer converts them into domain models.
"""

from abc import ABC, abstractmethod
from datetime import date
from enum import Enum
from typing import Any

# Filter values are either a plain value (equality) or an (operator, value) pair.
FILTER_OPERATORS = ("eq", "neq", "lt", "lte", "gt", "gte")


class Entity(str, Enum):
    """Tables held by the ledger store."""

    CLIENTS = "clients"
    INVOICES = "invoices"
    RECURRING_INVOICES = "recurring_invoices"
    EXPENSES = "expenses"
    TRANSACTIONS = "transactions"
    SETTINGS = "settings"


def split_filter(value: Any) -> tuple[str, Any]:
    """Return (operator, operand) for a filter value."""
    if isinstance(value, tuple) and len(value) == 2 and value[0] in FILTER_OPERATORS:
        return value[0], value[1]
    return "eq", value


def filter_operand(value: Any) -> Any:
    """Normalize an operand to the representation records are stored in."""
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


class LedgerStore(ABC):
    """Async CRUD interface over the ledger's record tables."""

    @abstractmethod
    async def list(
        self, entity: Entity, filters: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        """List records matching all filters."""

    @abstractmethod
    async def get(self, entity: Entity, record_id: str) -> dict[str, Any] | None:
        """Get a record by id, or None if it does not exist."""

    @abstractmethod
    async def insert(self, entity: Entity, record: dict[str, Any]) -> dict[str, Any]:
        """Insert a record and return it with its id."""

    @abstractmethod
    async def update(
        self, entity: Entity, record_id: str, patch: dict[str, Any]
    ) -> dict[str, Any]:
        """Apply a partial update and return the updated record."""

    @abstractmethod
    async def delete(self, entity: Entity, record_id: str) -> None:
        """Delete a record by id."""

    async def close(self) -> None:
        """Release any held connections."""
        return None

    async def __aenter__(self) -> "LedgerStore":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()
