"""Australian financial year summary for the tax pack.

A financial year runs July 1 of the previous year to June 30, so FY 2024
covers 2023-07-01 .. 2024-06-30. Expense amounts are treated as
GST-inclusive and their GST component is estimated with the 1/11 rule.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from butter_ledger.models import CENT, Expense, Invoice, InvoiceStatus

GST_FRACTION = Decimal(11)


def financial_year_bounds(fy: int) -> tuple[date, date]:
    return date(fy - 1, 7, 1), date(fy, 6, 30)


def financial_year_for(value: date) -> int:
    """Financial year a date falls in."""
    return value.year + 1 if value.month >= 7 else value.year


@dataclass
class TaxSummary:
    """Income, expenses and GST position for one financial year."""

    financial_year: int
    start: date
    end: date
    total_income: Decimal = Decimal("0.00")
    gst_collected: Decimal = Decimal("0.00")
    total_expenses: Decimal = Decimal("0.00")
    gst_paid: Decimal = Decimal("0.00")
    expenses_by_category: dict[str, Decimal] = field(default_factory=dict)

    @property
    def net_profit(self) -> Decimal:
        return self.total_income - self.total_expenses

    @property
    def income_excluding_gst(self) -> Decimal:
        return self.total_income - self.gst_collected

    @property
    def gst_payable(self) -> Decimal:
        """Estimated GST owing; never negative."""
        return max(Decimal("0.00"), self.gst_collected - self.gst_paid)

    def to_dict(self) -> dict[str, Any]:
        return {
            "financialYear": self.financial_year,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "totalIncome": str(self.total_income),
            "gstCollected": str(self.gst_collected),
            "totalExpenses": str(self.total_expenses),
            "gstPaid": str(self.gst_paid),
            "netProfit": str(self.net_profit),
            "gstPayable": str(self.gst_payable),
            "expensesByCategory": {k: str(v) for k, v in self.expenses_by_category.items()},
        }


def summarize_financial_year(
    fy: int,
    invoices: Iterable[Invoice],
    expenses: Iterable[Expense],
) -> TaxSummary:
    """Summarize non-draft invoices and all expenses dated within the year."""
    start, end = financial_year_bounds(fy)
    summary = TaxSummary(financial_year=fy, start=start, end=end)

    for invoice in invoices:
        if invoice.status == InvoiceStatus.DRAFT or not start <= invoice.issue_date <= end:
            continue
        summary.total_income += invoice.total
        summary.gst_collected += invoice.tax

    for expense in expenses:
        if not start <= expense.date <= end:
            continue
        summary.total_expenses += expense.amount
        category = expense.category or "Uncategorised"
        summary.expenses_by_category[category] = (
            summary.expenses_by_category.get(category, Decimal("0.00")) + expense.amount
        )

    summary.gst_paid = (summary.total_expenses / GST_FRACTION).quantize(
        CENT, rounding=ROUND_HALF_UP
    )
    return summary
