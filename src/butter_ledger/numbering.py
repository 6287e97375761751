"""Sequential per-client invoice numbering.

Numbers look like ``INV-ACME-0007``: a four character code derived from the
client's name and a zero-padded sequence. Numbers in other formats (for
example date-based legacy numbers) are ignored when finding the next
sequence, so mixed schemes can coexist.
"""

import re
from collections.abc import Iterable

from butter_ledger.models import Client, Invoice

INVOICE_NUMBER_PATTERN = re.compile(r"INV-([A-Z0-9]{4})-(\d+)")
CODE_LENGTH = 4
SEQUENCE_WIDTH = 4


def client_code(name: str) -> str:
    """Upper-cased first four alphanumerics of the name, padded with X."""
    code = re.sub(r"[^a-zA-Z0-9]", "", name or "")[:CODE_LENGTH].upper()
    return code.ljust(CODE_LENGTH, "X")


def max_sequence(invoice_numbers: Iterable[str | None], code: str) -> int:
    """Highest sequence among numbers carrying the given client code."""
    highest = 0
    for number in invoice_numbers:
        match = INVOICE_NUMBER_PATTERN.fullmatch((number or "").strip())
        if match and match.group(1) == code:
            highest = max(highest, int(match.group(2)))
    return highest


def format_invoice_number(code: str, sequence: int) -> str:
    return f"INV-{code}-{sequence:0{SEQUENCE_WIDTH}d}"


def next_invoice_number(
    client: Client, invoices: Iterable[Invoice], after: int = 0
) -> str:
    """Allocate the next invoice number for a client.

    Only invoices belonging to the client are considered. ``after`` lets a
    caller that hit a uniqueness conflict skip past the number it tried.
    """
    code = client_code(client.name)
    numbers = (inv.invoice_number for inv in invoices if inv.client_id == client.id)
    return format_invoice_number(code, max(max_sequence(numbers, code), after) + 1)


def sequence_of(invoice_number: str) -> int:
    """Sequence part of a well-formed invoice number, else 0."""
    match = INVOICE_NUMBER_PATTERN.fullmatch(invoice_number.strip())
    return int(match.group(2)) if match else 0
