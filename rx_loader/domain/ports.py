"""Domain Ports - Abstract Contracts for Ingestion and Storage.

This module defines the Port interfaces (abstract contracts) that Adapters must implement.
Following Hexagonal Architecture, the Domain Core defines what it needs, not how it's provided.

Architecture:
    - Pure abstract interfaces with zero infrastructure dependencies
    - Ingesters (CSV, workbook) implement IngestionPort and yield typed records
    - Storage adapters (DuckDB, PostgreSQL) implement StoragePort's bulk operations
    - Failures of individual rows or store calls travel as Result values, so the
      orchestrator can aggregate them instead of aborting the run
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Generic, Iterator, Optional, Sequence, TypeVar, Union

# Type variable for Result generic
T = TypeVar('T')

# Progress callback: (message, percentage 0-100)
ProgressCallback = Callable[[str, int], None]


# ============================================================================
# Result Type for Success/Failure Communication
# ============================================================================

@dataclass(frozen=True)
class Result(Generic[T]):
    """Result type for communicating success or failure without exceptions.

    Row parsers return a failure Result to signal a skipped row, and storage
    adapters return a failure Result when a bulk call fails. Callers decide
    whether the failure is recoverable.

    Attributes:
        success: True if the operation succeeded, False otherwise
        value: The successful result value (only present if success=True)
        error: Error information (only present if success=False)
        error_type: Type of error (ValidationError, StorageConflictError, etc.)
        error_details: Additional error context (row_number, field, table, etc.)

    Example:
        ```python
        # Success case
        result = Result.success_result(prescription_event)
        if result.is_success():
            records.append(result.value)

        # Failure case
        result = Result.failure_result(
            ValidationError("PrescribedDate is required"),
            error_type="ValidationError",
            error_details={"row_number": 12, "field": "PrescribedDate"}
        )
        if result.is_failure():
            summary.record_skip(result.error_details["reason"])
        ```
    """

    success: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    error_details: Optional[dict] = None

    @classmethod
    def success_result(cls, value: T) -> 'Result[T]':
        """Create a successful result.

        Parameters:
            value: The successful result value

        Returns:
            Result: Success result with the value
        """
        return cls(
            success=True,
            value=value,
            error=None,
            error_type=None,
            error_details=None
        )

    @classmethod
    def failure_result(
        cls,
        error: Union[str, Exception],
        error_type: Optional[str] = None,
        error_details: Optional[dict] = None
    ) -> 'Result[T]':
        """Create a failure result.

        Parameters:
            error: Error message or exception
            error_type: Type of error (e.g., "ValidationError", "StorageError")
            error_details: Additional context (row_number, field, table, etc.)

        Returns:
            Result: Failure result with error information
        """
        error_message = str(error) if isinstance(error, Exception) else error
        error_type_name = error_type or (type(error).__name__ if isinstance(error, Exception) else "UnknownError")

        return cls(
            success=False,
            value=None,
            error=error_message,
            error_type=error_type_name,
            error_details=error_details or {}
        )

    def is_success(self) -> bool:
        """Check if result is successful."""
        return self.success

    def is_failure(self) -> bool:
        """Check if result is a failure."""
        return not self.success


# ============================================================================
# Custom Exception Hierarchy
# ============================================================================

class IngestionError(Exception):
    """Base exception for all ingestion-related errors."""
    pass


class ValidationError(IngestionError):
    """Raised when a source row cannot be turned into a typed record.

    Attributes:
        source: The source identifier (file name) of the row
        details: Additional context such as the failing field and row number
    """

    def __init__(self, message: str, source: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message)
        self.source = source
        self.details = details or {}


class SourceNotFoundError(IngestionError):
    """Raised when the source file cannot be found or accessed.

    Attributes:
        source: The source identifier that was not found
    """

    def __init__(self, message: str, source: Optional[str] = None):
        super().__init__(message)
        self.source = source


class UnsupportedSourceError(IngestionError):
    """Raised when the source format is not supported by the adapter.

    Attributes:
        source: The source identifier that is unsupported
        adapter: The adapter that cannot handle the source
    """

    def __init__(self, message: str, source: Optional[str] = None, adapter: Optional[str] = None):
        super().__init__(message)
        self.source = source
        self.adapter = adapter


class StorageError(IngestionError):
    """Raised when a backing-store operation fails.

    Attributes:
        operation: The storage operation that failed (bulk_read, bulk_insert, ...)
        details: Additional error context (table name, row count, ...)
    """

    def __init__(self, message: str, operation: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message)
        self.operation = operation
        self.details = details or {}


class StorageConflictError(StorageError):
    """Raised when a write violates a uniqueness constraint of the store.

    The pipeline treats this as "the row already exists": fact chunks are
    counted as skipped and reference inserts are re-read and retried.
    """
    pass


class StageFatalError(IngestionError):
    """Raised when an entity kind cannot be resolved at all.

    Attributes:
        kind: The entity kind whose resolution was abandoned
    """

    def __init__(self, message: str, kind: Optional[str] = None):
        super().__init__(message)
        self.kind = kind


class ImportCancelledError(IngestionError):
    """Raised at a stage boundary when the caller asked the run to stop."""
    pass


# ============================================================================
# Ingestion Port
# ============================================================================

class IngestionPort(ABC):
    """Abstract contract for tabular source adapters.

    An ingester reads one source file, parses every raw row into a typed record
    and yields one Result per row. Rows that fail the required-field policy are
    yielded as failure Results (skips); they never stop the iteration.
    """

    @abstractmethod
    def ingest(
        self,
        source: str,
        progress_callback: Optional[ProgressCallback] = None
    ) -> Iterator[Result[Any]]:
        """Ingest a source and yield one Result per raw row.

        Parameters:
            source: Path to the source file
            progress_callback: Optional callback receiving (message, percentage)

        Yields:
            Result: Success with a typed record, or failure describing the skip

        Raises:
            SourceNotFoundError: If the source file doesn't exist
            UnsupportedSourceError: If the source cannot be read as a table
        """
        pass

    @abstractmethod
    def can_ingest(self, source: str) -> bool:
        """Check if this adapter can handle the given source.

        Parameters:
            source: Source identifier to check

        Returns:
            bool: True if this adapter can handle the source, False otherwise
        """
        pass

    def get_source_info(self, source: str) -> Optional[dict]:
        """Get metadata about the source (optional, adapter-specific).

        Returns:
            Optional[dict]: Metadata such as format and size, or None
        """
        return None


# ============================================================================
# Storage Port
# ============================================================================

@dataclass(frozen=True)
class UpsertOutcome:
    """Outcome of one bulk upsert call.

    Attributes:
        submitted_count: Rows sent to the store
        inserted_count: Rows the store actually inserted; the rest conflicted
    """

    submitted_count: int
    inserted_count: int

    @property
    def conflict_count(self) -> int:
        return self.submitted_count - self.inserted_count


class StoragePort(ABC):
    """Abstract contract for the backing relational store.

    The core only needs three bulk operations, each a single round trip (or one
    per chunk when the store limits request size). Table names are the ones
    declared in rx_loader.adapters.storage.schema.
    """

    @abstractmethod
    def initialize_schema(self) -> Result[None]:
        """Create tables, constraints and indexes if they don't exist."""
        pass

    @abstractmethod
    def bulk_read(
        self,
        table: str,
        columns: Sequence[str],
        filters: Optional[dict[str, Sequence[Any]]] = None
    ) -> Result[list[dict]]:
        """Read rows of a table.

        Parameters:
            table: Table name
            columns: Columns to return (the id column is always included)
            filters: Optional column -> allowed values; conditions are ANDed

        Returns:
            Result[list[dict]]: Rows as column -> value dictionaries
        """
        pass

    @abstractmethod
    def bulk_insert(self, table: str, rows: Sequence[dict]) -> Result[list[dict]]:
        """Insert rows and return them as stored, including generated ids.

        Returns:
            Result[list[dict]]: The inserted rows as read back from the store.
                A uniqueness violation fails the whole call with error_type
                "StorageConflictError" and nothing is inserted.
        """
        pass

    @abstractmethod
    def bulk_upsert(
        self,
        table: str,
        rows: Sequence[dict],
        conflict_key: Optional[Sequence[str]] = None
    ) -> Result[UpsertOutcome]:
        """Insert rows, silently skipping rows that violate a uniqueness constraint.

        Parameters:
            table: Table name
            rows: Rows to insert
            conflict_key: Columns of the conflict target; None means any
                unique constraint of the table

        Returns:
            Result[UpsertOutcome]: Submitted and inserted counts
        """
        pass

    def record_import_log(self, log_entry: dict) -> Result[str]:
        """Persist one import log entry (optional).

        Returns:
            Result[str]: Identifier of the log row
        """
        return Result.failure_result(
            StorageError("Import logs are not supported by this store", operation="record_import_log"),
            error_type="StorageError"
        )

    @abstractmethod
    def close(self) -> None:
        """Close storage connection and release resources."""
        pass
