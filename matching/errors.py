class DuplicateDetectionError(Exception):
    """Base class for duplicate detection failures."""


class DuplicateValidationError(DuplicateDetectionError):
    """Caller supplied malformed or insufficient data."""


class WarningNotFoundError(DuplicateDetectionError):
    """No duplicate warning exists with the requested id."""

    def __init__(self, warning_id: str):
        super().__init__(f"Duplicate warning not found: {warning_id}")
        self.warning_id = warning_id


class InfrastructureError(DuplicateDetectionError):
    """Storage or network failure talking to an external collaborator."""
