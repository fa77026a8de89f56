"""Exception hierarchy for PrintFlow.

Exception Hierarchy:
    PrintFlowError (base)
    ├── BusinessRuleViolation   - a requested operation breaks a domain rule
    │   ├── MissingReferenceError - referenced job/user id is unknown
    │   ├── AlreadyTerminalError  - advance requested on a Completed job
    │   ├── DuplicateRecordError  - id or username already taken
    │   └── InvariantViolation    - a Job breaks its ledger invariants
    ├── RestoreError            - backup document or history blob is malformed
    ├── StorageReadError        - the master workbook could not be read
    └── StaleSnapshotError      - a collection changed since it was loaded

Rule violations leave state untouched. ``StorageReadError`` never reaches
callers of :meth:`WorkbookStore.load`; it is logged and an empty collection is
returned instead.
"""

from __future__ import annotations


class PrintFlowError(Exception):
    """Base exception for all PrintFlow errors."""


class BusinessRuleViolation(PrintFlowError):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced job, customer, or user is unknown."""


class AlreadyTerminalError(BusinessRuleViolation):
    """Raised when a Completed job is asked to advance."""

    def __init__(self, job_id: str):
        super().__init__(f"Job '{job_id}' is already completed")
        self.job_id = job_id


class DuplicateRecordError(BusinessRuleViolation):
    """Raised when a record would collide with an existing unique key."""


class InvariantViolation(BusinessRuleViolation):
    """Raised when a Job no longer satisfies its ledger invariants."""


class RestoreError(PrintFlowError):
    """Raised when an imported backup cannot be reconciled."""


class StorageReadError(PrintFlowError):
    """Raised when persisted data is missing or unreadable."""


class StaleSnapshotError(PrintFlowError):
    """Raised when a save is based on an outdated collection version."""

    def __init__(self, collection: str, expected: int, actual: int):
        super().__init__(
            f"Collection '{collection}' changed since it was loaded "
            f"(expected version {expected}, found {actual})"
        )
        self.collection = collection
        self.expected = expected
        self.actual = actual
