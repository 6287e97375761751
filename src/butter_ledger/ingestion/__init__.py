"""Transaction ingestion from bank exports and the Wise API."""

from butter_ledger.ingestion.csv_import import parse_transactions_csv
from butter_ledger.ingestion.merge import MergeResult, merge_transactions
from butter_ledger.ingestion.service import IngestionResult, TransactionIngestionService
from butter_ledger.ingestion.wise import WiseClient, normalize_wise_transfer

__all__ = [
    "parse_transactions_csv",
    "MergeResult",
    "merge_transactions",
    "IngestionResult",
    "TransactionIngestionService",
    "WiseClient",
    "normalize_wise_transfer",
]
