"""Ledger store collaborators and the typed repository."""

from butter_ledger.store.base import Entity, LedgerStore
from butter_ledger.store.memory import InMemoryLedgerStore
from butter_ledger.store.repository import LedgerRepository
from butter_ledger.store.rest import SupabaseStore

__all__ = [
    "Entity",
    "LedgerStore",
    "InMemoryLedgerStore",
    "LedgerRepository",
    "SupabaseStore",
]
