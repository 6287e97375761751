"""Tests for invoice numbering."""

from datetime import date

from butter_ledger.models import Client, Invoice
from butter_ledger.numbering import (
    client_code,
    max_sequence,
    next_invoice_number,
    sequence_of,
)

ACME = Client(id="c1", name="Acme Corp")


def invoice(number: str, client_id: str = "c1") -> Invoice:
    return Invoice(
        client_id=client_id,
        invoice_number=number,
        issue_date=date(2024, 1, 1),
        due_date=date(2024, 1, 15),
    )


class TestClientCode:
    """Tests for the four character client code."""

    def test_strips_punctuation(self):
        assert client_code("Acme Corp!!") == "ACME"

    def test_pads_short_names(self):
        assert client_code("Al") == "ALXX"

    def test_empty_name(self):
        assert client_code("") == "XXXX"

    def test_digits_kept(self):
        assert client_code("7-Eleven") == "7ELE"


class TestNextInvoiceNumber:
    """Tests for sequence allocation."""

    def test_first_invoice(self):
        assert next_invoice_number(ACME, []) == "INV-ACME-0001"

    def test_continues_after_highest(self):
        invoices = [invoice(f"INV-ACME-000{n}") for n in range(1, 10)]

        assert next_invoice_number(ACME, invoices) == "INV-ACME-0010"

    def test_unordered_history(self):
        invoices = [invoice("INV-ACME-0003"), invoice("INV-ACME-0012"), invoice("INV-ACME-0007")]

        assert next_invoice_number(ACME, invoices) == "INV-ACME-0013"

    def test_ignores_other_clients(self):
        """Test that another client's invoices never affect the sequence."""
        invoices = [invoice("INV-ACME-0040", client_id="c2")]

        assert next_invoice_number(ACME, invoices) == "INV-ACME-0001"

    def test_ignores_legacy_formats(self):
        invoices = [invoice("INV-2023-0815"), invoice("ACME-0099"), invoice("INV-ACME-0002")]

        assert next_invoice_number(ACME, invoices) == "INV-ACME-0003"

    def test_skips_past_conflicting_number(self):
        invoices = [invoice("INV-ACME-0002")]

        assert next_invoice_number(ACME, invoices, after=3) == "INV-ACME-0004"

    def test_grows_past_four_digits(self):
        assert next_invoice_number(ACME, [invoice("INV-ACME-9999")]) == "INV-ACME-10000"


def test_max_sequence_filters_code():
    assert max_sequence(["INV-ACME-0005", "INV-BOLT-0009", None], "ACME") == 5


def test_sequence_of():
    assert sequence_of("INV-ACME-0042") == 42
    assert sequence_of("legacy-1") == 0
