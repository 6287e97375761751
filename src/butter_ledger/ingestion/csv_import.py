"""Bank statement file import.

Columns are located by case-insensitive substring match on the header row,
so exports that add, drop or reorder columns still import. Rows that are
internal balance movements (currency conversions, moves between balances)
are discarded. The whole file is parsed before anything is returned; one
bad row rejects the import.
"""

import csv
import io
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

import structlog

from butter_ledger.errors import ParseError
from butter_ledger.models import Transaction, TransactionType

logger = structlog.get_logger(__name__)

REQUIRED_COLUMNS = ("id", "date", "amount")
OPTIONAL_COLUMNS = ("currency", "description")

INTERNAL_ID_PREFIXES = ("BALANCE",)
# Compared against the lower-cased description
INTERNAL_DESCRIPTION_PREFIXES = ("converted ", "moved ", "balance cashback")

DATE_FORMATS = ("%Y-%m-%d", "%d-%m-%Y", "%d/%m/%Y")

_AMOUNT_JUNK = re.compile(r"[^\d.\-]")


def locate_columns(header: list[str]) -> dict[str, int]:
    """Map each known column name to the first header cell containing it."""
    positions: dict[str, int] = {}
    normalized = [cell.strip().lower() for cell in header]
    for name in REQUIRED_COLUMNS + OPTIONAL_COLUMNS:
        for index, cell in enumerate(normalized):
            if name in cell:
                positions[name] = index
                break
    missing = [name for name in REQUIRED_COLUMNS if name not in positions]
    if missing:
        raise ParseError(f"Missing required column(s): {', '.join(missing)}", line=1)
    return positions


def parse_amount(raw: str) -> Decimal:
    """Parse a signed amount, tolerating symbols, separators and (negatives)."""
    text = raw.strip()
    negative = text.startswith("(") and text.endswith(")")
    cleaned = _AMOUNT_JUNK.sub("", text)
    if not cleaned or cleaned in ("-", "."):
        raise ValueError(f"invalid amount {raw!r}")
    try:
        amount = Decimal(cleaned)
    except InvalidOperation as e:
        raise ValueError(f"invalid amount {raw!r}") from e
    return -abs(amount) if negative else amount


def parse_date(raw: str) -> date:
    """Parse ISO, day-first dashed or slashed dates, and ISO datetimes."""
    text = raw.strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError as e:
        raise ValueError(f"invalid date {raw!r}") from e


def is_internal_transfer(transaction_id: str, description: str) -> bool:
    """Balance movements that are not real income or spending."""
    if transaction_id.upper().startswith(INTERNAL_ID_PREFIXES):
        return True
    return description.strip().lower().startswith(INTERNAL_DESCRIPTION_PREFIXES)


def _sniff_dialect(text: str) -> type[csv.Dialect]:
    first_line = text.split("\n", 1)[0]
    try:
        return csv.Sniffer().sniff(first_line, delimiters=",;\t|")
    except csv.Error:
        return csv.excel


def parse_transactions_csv(text: str) -> list[Transaction]:
    """Parse a delimited bank export into canonical transactions.

    Raises:
        ParseError: If the header lacks a required column or any row is malformed.
    """
    text = text.lstrip("\ufeff")
    if not text.strip():
        raise ParseError("Import file is empty")

    reader = csv.reader(io.StringIO(text), dialect=_sniff_dialect(text))
    rows = list(reader)
    columns = locate_columns(rows[0])

    transactions: list[Transaction] = []
    skipped = 0
    for line, row in enumerate(rows[1:], start=2):
        if not any(cell.strip() for cell in row):
            continue

        def cell(name: str) -> str:
            index = columns.get(name)
            if index is None or index >= len(row):
                return ""
            return row[index].strip()

        transaction_id = cell("id")
        description = cell("description")
        if not transaction_id:
            raise ParseError("Missing transaction id", line=line)
        if is_internal_transfer(transaction_id, description):
            skipped += 1
            continue

        try:
            amount = parse_amount(cell("amount"))
            tx_date = parse_date(cell("date"))
        except ValueError as e:
            raise ParseError(str(e), line=line) from e

        transactions.append(
            Transaction(
                id=transaction_id,
                date=tx_date,
                amount=abs(amount),
                type=TransactionType.DEBIT if amount < 0 else TransactionType.CREDIT,
                description=description,
                currency=cell("currency") or None,
            )
        )

    logger.info("csv_parsed", transactions=len(transactions), internal_skipped=skipped)
    return transactions
