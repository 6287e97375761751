"""Command line entry point.

Usage:
    # Materialize due recurring invoices for today
    butter-ledger run-recurring

    # Import a bank export, then look for matches
    butter-ledger import-csv statement.csv
    butter-ledger candidates TX123
    butter-ledger reconcile TX123 <invoice-or-expense-id>

    # Run the recurring job every day at SCHEDULER_RUN_HOUR (UTC)
    butter-ledger daemon
"""

import argparse
import asyncio
import json
import sys
from datetime import date
from pathlib import Path
from typing import Any

from butter_ledger.config import configure_logging, get_logger, get_settings
from butter_ledger.errors import LedgerError
from butter_ledger.events import LedgerEvent
from butter_ledger.ingestion import TransactionIngestionService, WiseClient
from butter_ledger.invoicing import InvoiceService
from butter_ledger.reconciliation import ReconciliationMatcher
from butter_ledger.recurring import RecurringInvoiceScheduler
from butter_ledger.scheduler import DailyJob, DailyScheduler
from butter_ledger.store import LedgerRepository, SupabaseStore
from butter_ledger.tax import financial_year_for, summarize_financial_year

logger = get_logger(__name__, component="cli")


def log_event(event: LedgerEvent) -> None:
    logger.info("ledger_event", **event.to_dict())


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="butter-ledger",
        description="Invoice scheduling, bank feed import and reconciliation",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    recurring = commands.add_parser("run-recurring", help="Create invoices for due profiles")
    recurring.add_argument(
        "--date",
        type=date.fromisoformat,
        default=None,
        help="Run date in YYYY-MM-DD (default: today)",
    )

    import_csv = commands.add_parser("import-csv", help="Import a bank statement file")
    import_csv.add_argument("path", type=Path)

    commands.add_parser("sync-bank", help="Pull recent transfers from Wise")

    candidates = commands.add_parser("candidates", help="List match candidates")
    candidates.add_argument("transaction_id")

    reconcile = commands.add_parser("reconcile", help="Confirm a match")
    reconcile.add_argument("transaction_id")
    reconcile.add_argument("counterpart_id")

    tax = commands.add_parser("tax-summary", help="Summarize a financial year")
    tax.add_argument(
        "fy",
        type=int,
        nargs="?",
        default=None,
        help="Financial year ending June 30 (default: current)",
    )

    commands.add_parser("daemon", help="Run the recurring job once a day")
    return parser


def _print(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


async def _run_daemon(repository: LedgerRepository) -> None:
    recurring = RecurringInvoiceScheduler(repository, on_event=log_event)
    invoicing = InvoiceService(repository)

    async def recurring_job(run_date: date) -> dict[str, Any]:
        summary = await recurring.run(run_date)
        return summary.to_dict()

    async def overdue_job(run_date: date) -> list[str]:
        return [inv.invoice_number for inv in await invoicing.mark_overdue(run_date)]

    scheduler = DailyScheduler()
    scheduler.register(DailyJob(name="recurring_invoices", handler=recurring_job))
    scheduler.register(DailyJob(name="overdue_invoices", handler=overdue_job, priority=1))
    await scheduler.run_continuous()


async def dispatch(args: argparse.Namespace, repository: LedgerRepository) -> None:
    """Execute one parsed command against the repository."""
    if args.command == "run-recurring":
        scheduler = RecurringInvoiceScheduler(repository, on_event=log_event)
        summary = await scheduler.run(args.date)
        _print(summary.to_dict())

    elif args.command == "import-csv":
        service = TransactionIngestionService(repository, on_event=log_event)
        result = await service.import_file(args.path.read_text(encoding="utf-8"))
        _print(result.to_dict())

    elif args.command == "sync-bank":
        async with WiseClient() as wise:
            service = TransactionIngestionService(repository, bank_source=wise, on_event=log_event)
            result = await service.sync_bank()
        _print(result.to_dict())

    elif args.command == "candidates":
        matcher = ReconciliationMatcher(repository)
        _print(
            [
                {
                    "kind": c.kind.value,
                    "id": c.record_id,
                    "label": c.label,
                    "amount": str(c.amount),
                    "date": c.date.isoformat(),
                }
                for c in await matcher.candidates(args.transaction_id)
            ]
        )

    elif args.command == "reconcile":
        matcher = ReconciliationMatcher(repository, on_event=log_event)
        outcome = await matcher.confirm_match(args.transaction_id, args.counterpart_id)
        _print(
            {
                "transaction": outcome.transaction.to_record(),
                "kind": outcome.kind.value,
                "counterpart": outcome.counterpart.to_record(),
            }
        )

    elif args.command == "tax-summary":
        fy = args.fy or financial_year_for(date.today())
        summary = summarize_financial_year(
            fy, await repository.list_invoices(), await repository.list_expenses()
        )
        _print(summary.to_dict())

    elif args.command == "daemon":
        await _run_daemon(repository)


async def main(argv: list[str] | None = None) -> int:
    """Parse arguments and run a command; returns the process exit code."""
    configure_logging()
    args = build_parser().parse_args(argv)
    settings = get_settings()

    logger.info("command_starting", command=args.command)
    try:
        async with SupabaseStore() as store:
            repository = LedgerRepository(store, settings.default_payment_terms)
            await dispatch(args, repository)
    except LedgerError as e:
        logger.error("command_failed", command=args.command, error=e.message)
        return 1
    except KeyboardInterrupt:
        logger.info("command_interrupted", command=args.command)
    return 0


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
