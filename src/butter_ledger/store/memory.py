"""In-memory ledger store for tests and local runs."""

import copy
import operator
from collections.abc import Callable
from typing import Any
from uuid import uuid4

import structlog

from butter_ledger.errors import ConflictError, NotFoundError
from butter_ledger.store.base import Entity, LedgerStore, filter_operand, split_filter

logger = structlog.get_logger(__name__)

_COMPARATORS: dict[str, Callable[[Any, Any], bool]] = {
    "eq": operator.eq,
    "neq": operator.ne,
    "lt": operator.lt,
    "lte": operator.le,
    "gt": operator.gt,
    "gte": operator.ge,
}

# Column groups that must be unique within a table besides the id
UNIQUE_COLUMNS: dict[Entity, tuple[tuple[str, ...], ...]] = {
    Entity.INVOICES: (
        ("invoiceNumber",),
        ("recurringProfileId", "issueDate"),
        ("recurringProfileId", "scheduledFor"),
    ),
}


class InMemoryLedgerStore(LedgerStore):
    """Dictionary-backed store enforcing id and UNIQUE_COLUMNS uniqueness.

    Records are deep-copied on the way in and out so callers cannot mutate
    stored state without going through ``update``.
    """

    def __init__(self, seed: dict[Entity, list[dict[str, Any]]] | None = None):
        self._tables: dict[Entity, dict[str, dict[str, Any]]] = {e: {} for e in Entity}
        for entity, records in (seed or {}).items():
            for record in records:
                record_id = str(record.get("id") or uuid4().hex)
                self._tables[entity][record_id] = {**copy.deepcopy(record), "id": record_id}

    @staticmethod
    def _matches(record: dict[str, Any], filters: dict[str, Any]) -> bool:
        for column, raw in filters.items():
            op, operand = split_filter(raw)
            value = record.get(column)
            operand = filter_operand(operand)
            if op != "eq" and op != "neq" and (value is None or operand is None):
                return False
            if not _COMPARATORS[op](value, operand):
                return False
        return True

    def _check_unique(
        self, entity: Entity, record: dict[str, Any], exclude_id: str | None = None
    ) -> None:
        for columns in UNIQUE_COLUMNS.get(entity, ()):
            values = tuple(record.get(column) for column in columns)
            # Rows missing any column of the group are not constrained
            if any(value is None for value in values):
                continue
            for record_id, existing in self._tables[entity].items():
                if record_id == exclude_id:
                    continue
                if tuple(existing.get(column) for column in columns) == values:
                    raise ConflictError(
                        f"Duplicate {', '.join(columns)} {values!r} in {entity.value}",
                        details=dict(zip(columns, values)),
                    )

    async def list(
        self, entity: Entity, filters: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        return [
            copy.deepcopy(record)
            for record in self._tables[entity].values()
            if self._matches(record, filters or {})
        ]

    async def get(self, entity: Entity, record_id: str) -> dict[str, Any] | None:
        record = self._tables[entity].get(str(record_id))
        return copy.deepcopy(record) if record is not None else None

    async def insert(self, entity: Entity, record: dict[str, Any]) -> dict[str, Any]:
        record_id = str(record.get("id") or uuid4().hex)
        if record_id in self._tables[entity]:
            raise ConflictError(
                f"Duplicate id {record_id!r} in {entity.value}",
                details={"column": "id", "value": record_id},
            )
        self._check_unique(entity, record)
        stored = {**copy.deepcopy(record), "id": record_id}
        self._tables[entity][record_id] = stored
        logger.debug("record_inserted", entity=entity.value, record_id=record_id)
        return copy.deepcopy(stored)

    async def update(
        self, entity: Entity, record_id: str, patch: dict[str, Any]
    ) -> dict[str, Any]:
        existing = self._tables[entity].get(str(record_id))
        if existing is None:
            raise NotFoundError(entity.value, str(record_id))
        updated = {**existing, **copy.deepcopy(patch), "id": existing["id"]}
        self._check_unique(entity, updated, exclude_id=existing["id"])
        self._tables[entity][existing["id"]] = updated
        return copy.deepcopy(updated)

    async def delete(self, entity: Entity, record_id: str) -> None:
        if self._tables[entity].pop(str(record_id), None) is None:
            raise NotFoundError(entity.value, str(record_id))
