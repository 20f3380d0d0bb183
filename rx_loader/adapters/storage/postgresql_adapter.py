"""PostgreSQL Storage Adapter.

This adapter implements the StoragePort contract on PostgreSQL for shared,
multi-user deployments where several imports may run against the same
database.

Architecture:
    - Implements StoragePort (Hexagonal Architecture)
    - Isolated from domain core - only depends on ports and the shared schema
    - Connection pooling via psycopg2's ThreadedConnectionPool
    - Every bulk call runs in its own transaction; a failed call leaves no rows
    - Uniqueness violations surface as StorageConflictError results
"""

import logging
import uuid
from typing import Any, Optional, Sequence

import psycopg2
from psycopg2 import errors, pool
from psycopg2.extras import execute_values

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


def _check_columns(table: TableSpec, names) -> None:
    unknown = set(names) - set(table.column_names)
    if unknown:
        raise StorageError(
            f"Unknown columns for {table.name}: {', '.join(sorted(unknown))}",
            operation="validate_columns",
            details={"table_name": table.name}
        )


def _prepare(table: TableSpec, rows: Sequence[dict]) -> tuple[list[str], list[tuple]]:
    """Assign missing ids and flatten rows into value tuples in column order."""
    prepared = []
    present = set()
    for row in rows:
        row = dict(row)
        if not row.get("id"):
            row["id"] = str(uuid.uuid4())
        present.update(row)
        prepared.append(row)

    _check_columns(table, present)
    columns = [name for name in table.column_names if name in present]
    return columns, [tuple(row.get(column) for column in columns) for row in prepared]


class PostgreSQLAdapter(StoragePort):
    """PostgreSQL implementation of StoragePort.

    Parameters:
        db_config: DatabaseConfig from configuration manager (preferred)
        connection_string: Full PostgreSQL connection string
        host: Database host (if not using connection_string)
        port: Database port (default: 5432)
        database: Database name
        username: Database username
        password: Database password
        ssl_mode: SSL mode (require, prefer, disable)
        pool_size: Connection pool size (default: 5)
        max_overflow: Maximum connection pool overflow (default: 10)

    Example Usage:
        ```python
        from rx_loader.infrastructure.config_manager import get_database_config

        adapter = PostgreSQLAdapter(db_config=get_database_config())
        adapter.initialize_schema()
        result = adapter.bulk_upsert("prescriptions", rows, conflict_key=["prescription_identifier"])
        ```

    Note:
        Priority order: db_config > connection_string > individual parameters.
        Credentials are never logged.
    """

    def __init__(
        self,
        db_config: Optional[DatabaseConfig] = None,
        connection_string: Optional[str] = None,
        host: Optional[str] = None,
        port: int = 5432,
        database: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        ssl_mode: Optional[str] = None,
        pool_size: int = 5,
        max_overflow: int = 10,
    ):
        self._connection_pool: Optional[pool.ThreadedConnectionPool] = None
        self._schema_initialized = False

        if db_config:
            if db_config.db_type != "postgresql":
                raise StorageError(
                    f"DatabaseConfig type '{db_config.db_type}' does not match PostgreSQL adapter",
                    operation="__init__"
                )
            if db_config.connection_string:
                self.connection_params = {"dsn": db_config.connection_string.get_secret_value()}
            else:
                if not all([db_config.host, db_config.database]):
                    raise StorageError(
                        "PostgreSQL DatabaseConfig requires host and database",
                        operation="__init__"
                    )
                self.connection_params = {
                    "host": db_config.host,
                    "port": db_config.port or 5432,
                    "database": db_config.database,
                    "user": db_config.username,
                    "sslmode": db_config.ssl_mode or "prefer",
                }
                if db_config.password:
                    self.connection_params["password"] = db_config.password.get_secret_value()
            self.pool_size = db_config.pool_size
            self.max_overflow = db_config.max_overflow
        elif connection_string:
            self.connection_params = {"dsn": connection_string}
            self.pool_size = pool_size
            self.max_overflow = max_overflow
        else:
            if not all([host, database]):
                raise StorageError(
                    "PostgreSQL adapter requires either db_config, connection_string, or (host and database)",
                    operation="__init__"
                )
            self.connection_params = {
                "host": host,
                "port": port,
                "database": database,
                "user": username,
                "password": password,
                "sslmode": ssl_mode or "prefer",
            }
            self.pool_size = pool_size
            self.max_overflow = max_overflow

    def _get_connection_pool(self) -> pool.ThreadedConnectionPool:
        """Get or create the connection pool (created lazily, then reused)."""
        if self._connection_pool is None:
            try:
                self._connection_pool = pool.ThreadedConnectionPool(
                    minconn=1,
                    maxconn=self.pool_size + self.max_overflow,
                    **self.connection_params
                )
                logger.info("Created PostgreSQL connection pool")
            except Exception as e:
                raise StorageError(
                    f"Failed to create PostgreSQL connection pool: {str(e)}",
                    operation="connect",
                    details={"host": self.connection_params.get("host", "N/A")}
                )
        return self._connection_pool

    def _get_connection(self):
        """Get a connection from the pool.

        Raises:
            StorageError: If connection cannot be obtained
        """
        try:
            return self._get_connection_pool().getconn()
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(
                f"Failed to get connection from pool: {str(e)}",
                operation="get_connection"
            )

    def _return_connection(self, conn) -> None:
        try:
            self._get_connection_pool().putconn(conn)
        except Exception as e:
            logger.warning(f"Error returning connection to pool: {str(e)}")

    def _ensure_schema(self) -> None:
        if not self._schema_initialized:
            result = self.initialize_schema()
            if result.is_failure():
                raise StorageError(result.error or "Schema initialization failed", operation="initialize_schema")

    def initialize_schema(self) -> Result[None]:
        """Create all tables and indexes if they don't exist.

        Returns:
            Result[None]: Success or failure result
        """
        conn = None
        try:
            conn = self._get_connection()
            with conn.cursor() as cursor:
                for table in TABLES:
                    cursor.execute(table.create_sql())
                for statement in INDEXES:
                    cursor.execute(statement)
            conn.commit()
            self._schema_initialized = True
            logger.info("PostgreSQL schema initialized")
            return Result.success_result(None)
        except Exception as e:
            if conn:
                conn.rollback()
            error_msg = f"Failed to initialize schema: {str(e)}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                StorageError(error_msg, operation="initialize_schema"),
                error_type="StorageError"
            )
        finally:
            if conn:
                self._return_connection(conn)

    def bulk_read(
        self,
        table: str,
        columns: Sequence[str],
        filters: Optional[dict[str, Sequence[Any]]] = None
    ) -> Result[list[dict]]:
        conn = None
        try:
            self._ensure_schema()
            spec = get_table(table)
            selected = ["id"] + [c for c in columns if c != "id"]
            _check_columns(spec, selected)

            query = f"SELECT {', '.join(selected)} FROM {spec.name}"
            params: list[Any] = []
            if filters:
                _check_columns(spec, filters)
                clauses = []
                for column, values in filters.items():
                    values = tuple(values)
                    if not values:
                        return Result.success_result([])
                    clauses.append(f"{column} IN %s")
                    params.append(values)
                query += " WHERE " + " AND ".join(clauses)

            conn = self._get_connection()
            with conn.cursor() as cursor:
                cursor.execute(query, params)
                rows = cursor.fetchall()
            conn.commit()
            logger.debug(f"Read {len(rows)} rows from {table}")
            return Result.success_result(
                [{name: _to_python(value) for name, value in zip(selected, row)} for row in rows]
            )
        except Exception as e:
            if conn:
                conn.rollback()
            error_msg = f"Failed to read {table}: {str(e)}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                StorageError(error_msg, operation="bulk_read", details={"table_name": table}),
                error_type="StorageError"
            )
        finally:
            if conn:
                self._return_connection(conn)

    def bulk_insert(self, table: str, rows: Sequence[dict]) -> Result[list[dict]]:
        if not rows:
            return Result.success_result([])

        conn = None
        try:
            self._ensure_schema()
            spec = get_table(table)
            columns, values = _prepare(spec, rows)

            conn = self._get_connection()
            with conn.cursor() as cursor:
                stored = execute_values(
                    cursor,
                    f"INSERT INTO {spec.name} ({', '.join(columns)}) VALUES %s "
                    f"RETURNING {', '.join(spec.column_names)}",
                    values,
                    page_size=len(values),
                    fetch=True
                )
            conn.commit()

            logger.info(f"Inserted {len(stored)} rows into {table}")
            return Result.success_result(
                [{name: _to_python(value) for name, value in zip(spec.column_names, row)} for row in stored]
            )
        except errors.UniqueViolation as e:
            conn.rollback()
            error_msg = f"Uniqueness conflict inserting into {table}: {str(e)}"
            logger.warning(error_msg)
            return Result.failure_result(
                StorageConflictError(error_msg, operation="bulk_insert", details={"table_name": table}),
                error_type="StorageConflictError"
            )
        except Exception as e:
            if conn:
                conn.rollback()
            error_msg = f"Failed to insert into {table}: {str(e)}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                StorageError(error_msg, operation="bulk_insert", details={"table_name": table, "row_count": len(rows)}),
                error_type="StorageError"
            )
        finally:
            if conn:
                self._return_connection(conn)

    def bulk_upsert(
        self,
        table: str,
        rows: Sequence[dict],
        conflict_key: Optional[Sequence[str]] = None
    ) -> Result[UpsertOutcome]:
        """Insert rows with ``ON CONFLICT DO NOTHING``.

        Rows skipped by the conflict clause produce no RETURNING row, so the
        returned id count is exactly the number inserted.
        """
        if not rows:
            return Result.success_result(UpsertOutcome(submitted_count=0, inserted_count=0))

        conn = None
        try:
            self._ensure_schema()
            spec = get_table(table)
            columns, values = _prepare(spec, rows)
            target = ""
            if conflict_key:
                _check_columns(spec, conflict_key)
                target = f" ({', '.join(conflict_key)})"

            conn = self._get_connection()
            with conn.cursor() as cursor:
                inserted = execute_values(
                    cursor,
                    f"INSERT INTO {spec.name} ({', '.join(columns)}) VALUES %s "
                    f"ON CONFLICT{target} DO NOTHING RETURNING id",
                    values,
                    page_size=len(values),
                    fetch=True
                )
            conn.commit()

            logger.info(f"Upserted into {table}: {len(inserted)} of {len(values)} rows inserted")
            return Result.success_result(UpsertOutcome(submitted_count=len(values), inserted_count=len(inserted)))
        except errors.UniqueViolation as e:
            conn.rollback()
            error_msg = f"Uniqueness conflict upserting into {table}: {str(e)}"
            logger.warning(error_msg)
            return Result.failure_result(
                StorageConflictError(error_msg, operation="bulk_upsert", details={"table_name": table}),
                error_type="StorageConflictError"
            )
        except Exception as e:
            if conn:
                conn.rollback()
            error_msg = f"Failed to upsert into {table}: {str(e)}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                StorageError(error_msg, operation="bulk_upsert", details={"table_name": table, "row_count": len(rows)}),
                error_type="StorageError"
            )
        finally:
            if conn:
                self._return_connection(conn)

    def record_import_log(self, log_entry: dict) -> Result[str]:
        """Insert one import_logs row and return its id."""
        result = self.bulk_insert("import_logs", [log_entry])
        if result.is_failure():
            return Result.failure_result(
                StorageError(result.error or "Failed to record import log", operation="record_import_log"),
                error_type=result.error_type
            )
        return Result.success_result(result.value[0]["id"])

    def close(self) -> None:
        """Close storage connection pool and release resources."""
        if self._connection_pool is not None:
            try:
                self._connection_pool.closeall()
                self._connection_pool = None
                logger.info("Closed PostgreSQL connection pool")
            except psycopg2.Error as e:
                logger.warning(f"Error closing connection pool: {str(e)}")
