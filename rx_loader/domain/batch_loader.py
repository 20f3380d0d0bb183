"""Chunked bulk loading of fact records.

One bulk upsert per chunk. Conflict-key violations are skips, not errors:
a chunk where 10 of 500 rows already exist loads the other 490. A store that
can only reject a conflicting chunk wholesale has that chunk counted as
skipped (nothing from it persisted) with a diagnostic on the outcome.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, Sequence

from rx_loader.domain.fact_builder import FactRecord
from rx_loader.domain.ports import StoragePort
from rx_loader.domain.records import ErrorCategory, RecordType, RowError

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 500

SKIP_DUPLICATE_IN_FILE = "duplicate in file"
SKIP_ALREADY_EXISTS = "already exists"
SKIP_CHUNK_CONFLICT = "chunk rejected on conflict"
SKIP_CHUNK_FAILED = "chunk load failed"


class ConflictPolicy(str, Enum):
    """How the store treats a fact whose conflict key already exists.

    UPSERT names the conflict key explicitly (``ON CONFLICT (key) DO NOTHING``);
    APPEND relies on the table's own unique constraint.
    Both count the conflicting rows as skipped.
    """
    UPSERT = "upsert"
    APPEND = "append"


@dataclass(frozen=True)
class FactTarget:
    """Fact table a record type loads into."""
    table: str
    conflict_key: tuple[str, ...]
    policy: ConflictPolicy


FACT_TARGETS: dict[RecordType, FactTarget] = {
    RecordType.PRESCRIPTIONS: FactTarget(
        "prescriptions", ("prescription_identifier",), ConflictPolicy.UPSERT
    ),
    RecordType.CLAIMS: FactTarget(
        "claims", ("prescription_number", "refill_number", "fill_date"), ConflictPolicy.APPEND
    ),
}


@dataclass
class LoadOutcome:
    imported: int = 0
    skipped: int = 0
    skip_reasons: dict[str, int] = field(default_factory=dict)
    errors: list[RowError] = field(default_factory=list)

    def skip(self, reason: str, count: int) -> None:
        if count <= 0:
            return
        self.skipped += count
        self.skip_reasons[reason] = self.skip_reasons.get(reason, 0) + count


class BatchLoader:
    """Loads fact records into their fact table in fixed-size chunks.

    Parameters:
        storage: Backing store
        target: Fact table, conflict key and policy
        chunk_size: Rows per bulk call (default 500)
    """

    def __init__(self, storage: StoragePort, target: FactTarget, chunk_size: int = DEFAULT_CHUNK_SIZE):
        if chunk_size < 1:
            raise ValueError("chunk_size must be positive")
        self.storage = storage
        self.target = target
        self.chunk_size = chunk_size

    def load(
        self,
        facts: Sequence[FactRecord],
        on_chunk: Optional[Callable[[int, int], None]] = None
    ) -> LoadOutcome:
        """Load ``facts`` chunk by chunk.

        Parameters:
            facts: Fact records, in source order
            on_chunk: Called with (facts processed, facts total) after each chunk

        Returns:
            LoadOutcome: imported + skipped always equals ``len(facts)``
        """
        outcome = LoadOutcome()
        seen: set[tuple] = set()
        total = len(facts)

        for start in range(0, total, self.chunk_size):
            chunk = facts[start:start + self.chunk_size]
            rows = []
            for fact in chunk:
                row = fact.model_dump()
                key = tuple(row.get(column) for column in self.target.conflict_key)
                if key in seen:
                    outcome.skip(SKIP_DUPLICATE_IN_FILE, 1)
                    continue
                seen.add(key)
                rows.append(row)

            if rows:
                self._load_chunk(rows, start // self.chunk_size + 1, outcome)
            if on_chunk is not None:
                on_chunk(min(start + self.chunk_size, total), total)

        logger.info(
            f"Loaded {self.target.table}: {outcome.imported} imported, {outcome.skipped} skipped"
        )
        return outcome

    def _load_chunk(self, rows: list[dict], chunk_number: int, outcome: LoadOutcome) -> None:
        conflict_key = list(self.target.conflict_key) if self.target.policy is ConflictPolicy.UPSERT else None
        result = self.storage.bulk_upsert(self.target.table, rows, conflict_key=conflict_key)

        if result.is_success():
            inserted = result.value.inserted_count
            outcome.imported += inserted
            outcome.skip(SKIP_ALREADY_EXISTS, len(rows) - inserted)
            return

        if result.error_type == "StorageConflictError":
            message = (
                f"Chunk {chunk_number} of {self.target.table} rejected on conflict; "
                f"{len(rows)} rows counted as skipped"
            )
            logger.warning(message)
            outcome.skip(SKIP_CHUNK_CONFLICT, len(rows))
            outcome.errors.append(RowError(category=ErrorCategory.ROW_SKIPPED, message=message))
            return

        message = f"Chunk {chunk_number} of {self.target.table} failed to load ({len(rows)} rows): {result.error}"
        logger.error(message)
        outcome.skip(SKIP_CHUNK_FAILED, len(rows))
        outcome.errors.append(RowError(category=ErrorCategory.CHUNK_LOAD_FAILED, message=message))
