"""Main entry point for the rx-loader import pipeline.

This module wires the pieces together for one import: it picks the ingester
for the source file, builds the configured storage adapter, runs the
ImportOrchestrator and records the run in ``import_logs``.

Architecture:
    - Follows Hexagonal Architecture principles
    - Ingesters are selected from the file's extension and headers
    - Storage adapter is configured via configuration manager
    - The CLI (rx_loader.cli) is a thin shell around run_import
"""

import logging
from pathlib import Path
from typing import Callable, Optional, Union

from rx_loader.adapters.ingesters import get_ingester
from rx_loader.adapters.storage import DuckDBAdapter, PostgreSQLAdapter
from rx_loader.domain.orchestrator import ImportOrchestrator
from rx_loader.domain.ports import ProgressCallback, SourceNotFoundError, StorageError, StoragePort
from rx_loader.domain.records import ImportSummary, RecordType
from rx_loader.infrastructure.config_manager import DatabaseConfig, get_database_config
from rx_loader.infrastructure.settings import settings

logger = logging.getLogger(__name__)


def create_storage_adapter(db_config: Optional[DatabaseConfig] = None) -> StoragePort:
    """Create storage adapter based on configuration.

    Parameters:
        db_config: Explicit configuration; read from the environment when omitted

    Returns:
        StoragePort: Configured storage adapter instance

    Raises:
        ValueError: If database type is unsupported
    """
    db_config = db_config or get_database_config()

    if db_config.db_type == "duckdb":
        logger.info(f"Initializing DuckDB adapter with path: {db_config.db_path or ':memory:'}")
        return DuckDBAdapter(db_config=db_config)
    elif db_config.db_type == "postgresql":
        logger.info(f"Initializing PostgreSQL adapter with host: {db_config.host}")
        return PostgreSQLAdapter(db_config=db_config)
    else:
        raise ValueError(f"Unsupported database type: {db_config.db_type}")


def run_import(
    source: Union[str, Path],
    storage: StoragePort,
    record_type: Optional[Union[RecordType, str]] = None,
    progress_callback: Optional[ProgressCallback] = None,
    cancel_check: Optional[Callable[[], bool]] = None,
    load_chunk_size: Optional[int] = None,
    insert_chunk_size: Optional[int] = None,
    record_import_log: Optional[bool] = None
) -> ImportSummary:
    """Import one prescription or claim file into ``storage``.

    Parameters:
        source: Path to a CSV or Excel file
        storage: Storage adapter (see create_storage_adapter)
        record_type: ``prescriptions`` or ``claims``; inferred from headers when omitted
        progress_callback: Optional ``(message, percentage)`` callback
        cancel_check: Optional callable polled between stages
        load_chunk_size: Fact rows per bulk upsert (default from settings)
        insert_chunk_size: Reference rows per bulk insert (default from settings)
        record_import_log: Write an import_logs row (default from settings)

    Returns:
        ImportSummary: Counts, skip reasons, created entities and errors

    Raises:
        SourceNotFoundError: If the source file does not exist
        UnsupportedSourceError: If the file type or record type cannot be handled
        StorageError: If the schema cannot be initialized
    """
    source_path = Path(source)
    if not source_path.exists():
        raise SourceNotFoundError(f"Source file not found: {source}", source=str(source))

    ingester = get_ingester(
        str(source_path),
        record_type=record_type,
        progress_interval=settings.progress_interval
    )
    source_info = ingester.get_source_info(str(source_path)) or {}
    logger.info(
        f"Selected ingester: {ingester.__class__.__name__} "
        f"({source_info.get('format', 'unknown')}, {source_info.get('size', 0):,} bytes)"
    )

    schema_result = storage.initialize_schema()
    if schema_result.is_failure():
        raise StorageError(f"Schema initialization failed: {schema_result.error}", operation="initialize_schema")

    orchestrator = ImportOrchestrator(
        storage,
        load_chunk_size=load_chunk_size or settings.load_chunk_size,
        insert_chunk_size=insert_chunk_size or settings.insert_chunk_size,
        progress_callback=progress_callback,
        cancel_check=cancel_check,
        max_errors=settings.max_row_errors
    )
    summary = orchestrator.run(ingester, str(source_path), ingester.record_type)

    should_log = settings.record_import_logs if record_import_log is None else record_import_log
    if should_log:
        log_result = storage.record_import_log(summary.to_log_entry())
        if log_result.is_failure():
            logger.warning(f"Failed to record import log for {summary.file_name}: {log_result.error}")
        else:
            logger.info(f"Recorded import log {log_result.value}")

    return summary
