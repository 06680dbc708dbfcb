"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class NotFoundError(DomainException):
    """Driver or settlement does not exist"""

    pass


class NoDataError(DomainException):
    """The driver-week has no ingestion rows"""

    pass


class InvalidInputError(DomainException):
    """Malformed payment request (missing date, non-positive total)"""

    pass


class ConflictError(DomainException):
    """Commit against a paid week, or a concurrent commit won the race"""

    pass


class PaymentAlreadyRecordedError(ConflictError):
    """The week already has an active payment transaction"""

    def __init__(self, message: str, transaction=None):
        super().__init__(message)
        self.transaction = transaction


class StorageFailureError(DomainException):
    """Evidence upload or persistence write failed; the commit was rolled back"""

    pass


class IngestionUnavailableError(DomainException):
    """No ingestion rows could be read and at least one source failed"""

    pass


class PartialSourceFailure(DomainException):
    """A source or accumulator failed; carried as a diagnostic, not raised to callers"""

    def __init__(self, source: str, reason: str):
        super().__init__(f"{source}: {reason}")
        self.source = source
        self.reason = reason

    def as_note(self) -> dict:
        return {"kind": "partial_source_failure", "source": self.source, "reason": self.reason}


class IngestionSourceError(DomainException):
    """An ingestion source returned an error or malformed rows"""

    pass
