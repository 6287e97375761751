"""Exception hierarchy shared by the scheduler, ingestion and matcher."""

from typing import Any


class LedgerError(Exception):
    """Base exception for ledger automation errors."""

    retryable: bool = False

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(LedgerError):
    """A required field is missing or a value is out of range."""

    pass


class InvalidTransitionError(ValidationError):
    """A status change that the transition table does not allow."""

    def __init__(self, record: str, current: str, target: str):
        super().__init__(f"{record} cannot move from {current} to {target}")
        self.current = current
        self.target = target


class NotFoundError(LedgerError):
    """A referenced record does not exist."""

    def __init__(self, entity: str, record_id: str):
        super().__init__(f"{entity} {record_id} not found")
        self.entity = entity
        self.record_id = record_id


class ConflictError(LedgerError):
    """Uniqueness violation on insert (invoice number, transaction id)."""

    retryable = True


class ExternalServiceError(LedgerError):
    """The ledger store, delivery webhook or bank API failed."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: Any = None,
        retryable: bool = True,
    ):
        super().__init__(message, details)
        self.status_code = status_code
        self.retryable = retryable


class ParseError(LedgerError):
    """An import file could not be parsed; nothing was merged."""

    def __init__(self, message: str, line: int | None = None):
        super().__init__(f"line {line}: {message}" if line is not None else message)
        self.line = line
