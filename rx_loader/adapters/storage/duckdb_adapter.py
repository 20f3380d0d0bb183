"""DuckDB Storage Adapter.

This adapter implements the StoragePort contract on DuckDB, an in-process
analytical database. It is the default store: a file for local use, or
``:memory:`` for tests and dry runs.

Architecture:
    - Implements StoragePort (Hexagonal Architecture)
    - Isolated from domain core - only depends on ports and the shared schema
    - Every bulk call runs in its own transaction; a failed call leaves no rows
    - Uniqueness violations surface as StorageConflictError results
"""

import logging
import uuid
from pathlib import Path
from typing import Any, Optional, Sequence

import duckdb

from rx_loader.adapters.storage.schema import INDEXES, TABLES, TableSpec, get_table
from rx_loader.domain.ports import (
    Result,
    StorageConflictError,
    StorageError,
    StoragePort,
    UpsertOutcome,
)
from rx_loader.infrastructure.config_manager import DatabaseConfig

logger = logging.getLogger(__name__)


def _to_python(value: Any) -> Any:
    if isinstance(value, uuid.UUID):
        return str(value)
    return value


def _with_ids(rows: Sequence[dict]) -> list[dict]:
    prepared = []
    for row in rows:
        row = dict(row)
        if not row.get("id"):
            row["id"] = str(uuid.uuid4())
        prepared.append(row)
    return prepared


def _columns_for(table: TableSpec, rows: Sequence[dict]) -> list[str]:
    present = set()
    for row in rows:
        present.update(row)
    unknown = present - set(table.column_names)
    if unknown:
        raise StorageError(
            f"Unknown columns for {table.name}: {', '.join(sorted(unknown))}",
            operation="validate_columns",
            details={"table_name": table.name}
        )
    return [name for name in table.column_names if name in present]


class DuckDBAdapter(StoragePort):
    """DuckDB implementation of StoragePort.

    Parameters:
        db_config: DatabaseConfig from configuration manager (preferred)
        db_path: Path to DuckDB database file (or ':memory:' for in-memory)

    Example Usage:
        ```python
        from rx_loader.infrastructure.config_manager import get_database_config

        adapter = DuckDBAdapter(db_config=get_database_config())
        # Or directly
        adapter = DuckDBAdapter(db_path="data/pharmacy.duckdb")

        result = adapter.initialize_schema()
        if result.is_success():
            rows = adapter.bulk_read("pharmacies", ["npi_number", "pharmacy_name"]).value
        ```
    """

    def __init__(self, db_config: Optional[DatabaseConfig] = None, db_path: Optional[str] = None):
        if db_config:
            if db_config.db_type != "duckdb":
                raise StorageError(
                    f"DatabaseConfig type '{db_config.db_type}' does not match DuckDB adapter",
                    operation="__init__"
                )
            self.db_path = db_config.db_path or ":memory:"
        else:
            self.db_path = db_path or ":memory:"

        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._initialized = False

        if self.db_path != ":memory:":
            db_path_obj = Path(self.db_path)
            if not db_path_obj.parent.exists():
                raise StorageError(
                    f"Database directory does not exist: {db_path_obj.parent}",
                    operation="__init__"
                )

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        """Get or create the DuckDB connection (created lazily, then reused)."""
        if self._connection is None:
            try:
                self._connection = duckdb.connect(self.db_path)
                logger.info(f"Connected to DuckDB database: {self.db_path}")
            except Exception as e:
                raise StorageError(
                    f"Failed to connect to DuckDB: {str(e)}",
                    operation="connect",
                    details={"db_path": self.db_path}
                )
        return self._connection

    def _ensure_schema(self) -> None:
        if not self._initialized:
            result = self.initialize_schema()
            if result.is_failure():
                raise StorageError(result.error or "Schema initialization failed", operation="initialize_schema")

    def initialize_schema(self) -> Result[None]:
        """Create all tables and indexes if they don't exist.

        Returns:
            Result[None]: Success or failure result
        """
        try:
            conn = self._get_connection()
            for table in TABLES:
                conn.execute(table.create_sql())
            for statement in INDEXES:
                conn.execute(statement)
            self._initialized = True
            logger.info("DuckDB schema initialized")
            return Result.success_result(None)
        except Exception as e:
            error_msg = f"Failed to initialize schema: {str(e)}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                StorageError(error_msg, operation="initialize_schema"),
                error_type="StorageError"
            )

    def bulk_read(
        self,
        table: str,
        columns: Sequence[str],
        filters: Optional[dict[str, Sequence[Any]]] = None
    ) -> Result[list[dict]]:
        try:
            self._ensure_schema()
            spec = get_table(table)
            selected = ["id"] + [c for c in columns if c != "id"]
            _columns_for(spec, [dict.fromkeys(selected)])

            query = f"SELECT {', '.join(selected)} FROM {spec.name}"
            params: list[Any] = []
            if filters:
                _columns_for(spec, [dict.fromkeys(filters)])
                clauses = []
                for column, values in filters.items():
                    values = list(values)
                    if not values:
                        return Result.success_result([])
                    clauses.append(f"{column} IN ({', '.join(['?'] * len(values))})")
                    params.extend(values)
                query += " WHERE " + " AND ".join(clauses)

            rows = self._get_connection().execute(query, params).fetchall()
            logger.debug(f"Read {len(rows)} rows from {table}")
            return Result.success_result(
                [{name: _to_python(value) for name, value in zip(selected, row)} for row in rows]
            )
        except Exception as e:
            error_msg = f"Failed to read {table}: {str(e)}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                StorageError(error_msg, operation="bulk_read", details={"table_name": table}),
                error_type="StorageError"
            )

    def bulk_insert(self, table: str, rows: Sequence[dict]) -> Result[list[dict]]:
        if not rows:
            return Result.success_result([])

        try:
            self._ensure_schema()
            spec = get_table(table)
            prepared = _with_ids(rows)
            columns = _columns_for(spec, prepared)
            placeholders = ", ".join(["?"] * len(columns))

            conn = self._get_connection()
            conn.begin()
            try:
                conn.executemany(
                    f"INSERT INTO {spec.name} ({', '.join(columns)}) VALUES ({placeholders})",
                    [[row.get(column) for column in columns] for row in prepared]
                )
                ids = [row["id"] for row in prepared]
                stored = conn.execute(
                    f"SELECT {', '.join(spec.column_names)} FROM {spec.name} "
                    f"WHERE id IN ({', '.join(['?'] * len(ids))})",
                    ids
                ).fetchall()
                conn.commit()
            except Exception:
                conn.rollback()
                raise

            logger.info(f"Inserted {len(stored)} rows into {table}")
            return Result.success_result(
                [{name: _to_python(value) for name, value in zip(spec.column_names, row)} for row in stored]
            )
        except duckdb.ConstraintException as e:
            error_msg = f"Uniqueness conflict inserting into {table}: {str(e)}"
            logger.warning(error_msg)
            return Result.failure_result(
                StorageConflictError(error_msg, operation="bulk_insert", details={"table_name": table}),
                error_type="StorageConflictError"
            )
        except Exception as e:
            error_msg = f"Failed to insert into {table}: {str(e)}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                StorageError(error_msg, operation="bulk_insert", details={"table_name": table, "row_count": len(rows)}),
                error_type="StorageError"
            )

    def bulk_upsert(
        self,
        table: str,
        rows: Sequence[dict],
        conflict_key: Optional[Sequence[str]] = None
    ) -> Result[UpsertOutcome]:
        """Insert rows with ``ON CONFLICT DO NOTHING``.

        The inserted count is the table's row-count delta inside the call's
        transaction, so a partially conflicting chunk reports exactly how many
        rows it added.
        """
        if not rows:
            return Result.success_result(UpsertOutcome(submitted_count=0, inserted_count=0))

        try:
            self._ensure_schema()
            spec = get_table(table)
            prepared = _with_ids(rows)
            columns = _columns_for(spec, prepared)
            target = ""
            if conflict_key:
                _columns_for(spec, [dict.fromkeys(conflict_key)])
                target = f" ({', '.join(conflict_key)})"
            statement = (
                f"INSERT INTO {spec.name} ({', '.join(columns)}) "
                f"VALUES ({', '.join(['?'] * len(columns))}) "
                f"ON CONFLICT{target} DO NOTHING"
            )

            conn = self._get_connection()
            conn.begin()
            try:
                before = conn.execute(f"SELECT COUNT(*) FROM {spec.name}").fetchone()[0]
                conn.executemany(statement, [[row.get(column) for column in columns] for row in prepared])
                after = conn.execute(f"SELECT COUNT(*) FROM {spec.name}").fetchone()[0]
                conn.commit()
            except Exception:
                conn.rollback()
                raise

            inserted = after - before
            logger.info(f"Upserted into {table}: {inserted} of {len(prepared)} rows inserted")
            return Result.success_result(UpsertOutcome(submitted_count=len(prepared), inserted_count=inserted))
        except duckdb.ConstraintException as e:
            error_msg = f"Uniqueness conflict upserting into {table}: {str(e)}"
            logger.warning(error_msg)
            return Result.failure_result(
                StorageConflictError(error_msg, operation="bulk_upsert", details={"table_name": table}),
                error_type="StorageConflictError"
            )
        except Exception as e:
            error_msg = f"Failed to upsert into {table}: {str(e)}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                StorageError(error_msg, operation="bulk_upsert", details={"table_name": table, "row_count": len(rows)}),
                error_type="StorageError"
            )

    def record_import_log(self, log_entry: dict) -> Result[str]:
        """Insert one import_logs row and return its id."""
        result = self.bulk_insert("import_logs", [log_entry])
        if result.is_failure():
            return Result.failure_result(
                StorageError(result.error or "Failed to record import log", operation="record_import_log"),
                error_type=result.error_type
            )
        log_id = result.value[0]["id"]
        logger.debug(f"Recorded import log {log_id}")
        return Result.success_result(log_id)

    def close(self) -> None:
        """Close storage connection and release resources."""
        if self._connection is not None:
            try:
                self._connection.close()
                self._connection = None
                logger.info("Closed DuckDB connection")
            except Exception as e:
                logger.warning(f"Error closing connection: {str(e)}")
