"""Pytest configuration and fixtures."""

import os

import pytest

# Set test environment variables before importing settings
os.environ.setdefault("LEDGER_STORE_URL", "http://localhost:54321")
os.environ.setdefault("LEDGER_STORE_KEY", "service-role-test")
os.environ.setdefault("WISE_API_KEY", "wise-test-token")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from butter_ledger.config import configure_logging, get_settings  # noqa: E402
from butter_ledger.store import Entity, InMemoryLedgerStore, LedgerRepository  # noqa: E402

configure_logging(level="WARNING", format="console")

CLIENT_ID = "client-acme"
OTHER_CLIENT_ID = "client-bolt"


@pytest.fixture(autouse=True)
def fresh_settings():
    """Re-read settings for every test."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def client_records():
    return [
        {"id": CLIENT_ID, "name": "Acme Corp", "contactName": "Jane Doe", "email": "jane@acme.test"},
        {"id": OTHER_CLIENT_ID, "name": "Bolt Logistics", "contactName": None, "email": "ap@bolt.test"},
    ]


@pytest.fixture
def profile_record():
    """An active monthly profile due on 2024-01-31."""
    return {
        "id": "profile-1",
        "clientId": CLIENT_ID,
        "startDate": "2024-01-31",
        "nextRunDate": "2024-01-31",
        "frequency": "Monthly",
        "paymentTerms": 14,
        "status": "Active",
        "subtotal": "1000.00",
        "tax": "100.00",
        "total": "1100.00",
        "includeGst": True,
        "lineItems": [
            {
                "category": "Consulting",
                "description": "Monthly retainer",
                "quantity": "1",
                "unitPrice": "1000.00",
            }
        ],
    }


@pytest.fixture
def store(client_records, profile_record):
    """In-memory store seeded with two clients and one due profile."""
    return InMemoryLedgerStore(
        {
            Entity.CLIENTS: client_records,
            Entity.RECURRING_INVOICES: [profile_record],
        }
    )


@pytest.fixture
def repository(store):
    return LedgerRepository(store, default_payment_terms=14)


@pytest.fixture
def empty_repository():
    return LedgerRepository(InMemoryLedgerStore(), default_payment_terms=14)
