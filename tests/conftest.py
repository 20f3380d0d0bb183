"""Shared fixtures for the rx-loader test suite.

InMemoryStorage is a StoragePort double that enforces the same uniqueness
rules as the real schema, so resolver, loader and orchestrator tests can run
without a database. Tests that need real SQL use the ``duckdb_storage``
fixture (an in-memory DuckDB).
"""

import uuid
from collections import defaultdict
from datetime import date
from pathlib import Path
from typing import Any, Optional, Sequence

import pandas as pd
import pytest

from rx_loader.adapters.storage.duckdb_adapter import DuckDBAdapter
from rx_loader.domain.ports import (
    Result,
    StorageConflictError,
    StorageError,
    StoragePort,
    UpsertOutcome,
)
from rx_loader.domain.records import ClaimEvent, PrescriptionEvent

UNIQUE_COLUMNS: dict[str, tuple[str, ...]] = {
    "covered_entities": ("opaid",),
    "pharmacies": ("npi_number",),
    "prescribers": ("npi",),
    "locations": ("location_identifier",),
    "drugs": ("ndc_code",),
    "patients": ("mrn",),
    "prescriptions": ("prescription_identifier",),
    "claims": ("prescription_number", "refill_number", "fill_date"),
}


class InMemoryStorage(StoragePort):
    """Dictionary-backed StoragePort.

    Switches:
        fail_reads / fail_inserts / fail_upserts: tables whose calls fail
        partial_upserts: False makes a conflicting upsert chunk fail wholesale
        racing_rows: table -> rows another run "commits" right before our next
            insert into that table
    """

    def __init__(self, partial_upserts: bool = True):
        self.tables: dict[str, list[dict]] = defaultdict(list)
        self.calls: list[tuple[str, str, int]] = []
        self.fail_reads: set[str] = set()
        self.fail_inserts: set[str] = set()
        self.fail_upserts: set[str] = set()
        self.partial_upserts = partial_upserts
        self.racing_rows: dict[str, list[dict]] = {}
        self.closed = False

    def seed(self, table: str, **row: Any) -> str:
        row.setdefault("id", str(uuid.uuid4()))
        self.tables[table].append(row)
        return row["id"]

    def calls_for(self, operation: str, table: Optional[str] = None) -> list[tuple[str, str, int]]:
        return [c for c in self.calls if c[0] == operation and (table is None or c[1] == table)]

    def _violates(self, table: str, row: dict, existing: Sequence[dict]) -> bool:
        columns = UNIQUE_COLUMNS.get(table)
        if not columns:
            return False
        values = tuple(row.get(column) for column in columns)
        if any(value is None for value in values):
            return False
        return any(tuple(other.get(column) for column in columns) == values for other in existing)

    def initialize_schema(self) -> Result[None]:
        return Result.success_result(None)

    def bulk_read(self, table, columns, filters=None) -> Result[list[dict]]:
        self.calls.append(("bulk_read", table, 0))
        if table in self.fail_reads:
            return Result.failure_result(StorageError("store unreachable", operation="bulk_read"))
        selected = ["id"] + [c for c in columns if c != "id"]
        rows = []
        for row in self.tables[table]:
            if filters and not all(row.get(column) in values for column, values in filters.items()):
                continue
            rows.append({column: row.get(column) for column in selected})
        return Result.success_result(rows)

    def bulk_insert(self, table, rows) -> Result[list[dict]]:
        self.calls.append(("bulk_insert", table, len(rows)))
        if table in self.racing_rows:
            for racing in self.racing_rows.pop(table):
                self.seed(table, **racing)
        if table in self.fail_inserts:
            return Result.failure_result(StorageError("insert failed", operation="bulk_insert"))

        staged: list[dict] = []
        for row in rows:
            if self._violates(table, row, self.tables[table] + staged):
                return Result.failure_result(
                    StorageConflictError(f"duplicate key in {table}", operation="bulk_insert"),
                    error_type="StorageConflictError"
                )
            staged.append({**row, "id": row.get("id") or str(uuid.uuid4())})
        self.tables[table].extend(staged)
        return Result.success_result([dict(row) for row in staged])

    def bulk_upsert(self, table, rows, conflict_key=None) -> Result[UpsertOutcome]:
        self.calls.append(("bulk_upsert", table, len(rows)))
        if table in self.fail_upserts:
            return Result.failure_result(StorageError("upsert failed", operation="bulk_upsert"))

        accepted: list[dict] = []
        for row in rows:
            if self._violates(table, row, self.tables[table] + accepted):
                if not self.partial_upserts:
                    return Result.failure_result(
                        StorageConflictError(f"duplicate key in {table}", operation="bulk_upsert"),
                        error_type="StorageConflictError"
                    )
                continue
            accepted.append({**row, "id": row.get("id") or str(uuid.uuid4())})
        self.tables[table].extend(accepted)
        return Result.success_result(UpsertOutcome(submitted_count=len(rows), inserted_count=len(accepted)))

    def record_import_log(self, log_entry: dict) -> Result[str]:
        return Result.success_result(self.seed("import_logs", **log_entry))

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def storage():
    """Empty in-memory store."""
    return InMemoryStorage()


@pytest.fixture
def strict_storage():
    """In-memory store that rejects a conflicting upsert chunk wholesale."""
    return InMemoryStorage(partial_upserts=False)


@pytest.fixture
def duckdb_storage():
    """In-memory DuckDB with the schema created."""
    adapter = DuckDBAdapter(db_path=":memory:")
    assert adapter.initialize_schema().is_success()
    yield adapter
    adapter.close()


@pytest.fixture
def write_csv(tmp_path):
    """Write rows (dicts) to a CSV file under tmp_path and return its path."""

    def _write(name: str, rows: list[dict], columns: Optional[list[str]] = None) -> str:
        path = Path(tmp_path) / name
        frame = pd.DataFrame(rows, columns=columns)
        frame.to_csv(path, index=False)
        return str(path)

    return _write


@pytest.fixture
def make_prescription():
    """Factory for PrescriptionEvent with the required fields filled in."""
    counter = iter(range(1, 100000))

    def _make(**overrides: Any) -> PrescriptionEvent:
        row_number = next(counter)
        values = {
            "row_number": row_number,
            "source_file": "scripts.csv",
            "prescription_identifier": f"RX-{row_number:05d}",
            "prescribed_date": date(2024, 3, 1),
            "patient_first_name": "Jane",
            "patient_last_name": "Doe",
            "prescriber_last_name": "House",
        }
        values.update(overrides)
        return PrescriptionEvent(**values)

    return _make


@pytest.fixture
def make_claim():
    """Factory for ClaimEvent with the required fields filled in."""
    counter = iter(range(1, 100000))

    def _make(**overrides: Any) -> ClaimEvent:
        row_number = next(counter)
        values = {
            "row_number": row_number,
            "source_file": "claims.csv",
            "prescription_number": f"{7000000 + row_number}",
            "date_rx_written": date(2024, 1, 5),
            "refill_number": 0,
            "fill_date": date(2024, 1, 6),
        }
        values.update(overrides)
        return ClaimEvent(**values)

    return _make
