"""Import Orchestrator.

Drives one import run through a fixed sequence of states:

    PARSING
    EXTRACTING_REFERENCE_DATA(kind)   for kind in RESOLUTION_ORDER
    BUILDING_FACTS
    LOADING
    COMPLETE | FAILED

Every stage owns a fixed share of the 0-100 progress range; inside a stage the
reported percentage is ``stage_start + stage_weight * fraction``. Progress
never moves backwards.

Row skips, entity-creation failures and chunk failures are collected on the
ImportSummary and never stop the run. A failed bulk read abandons one entity
kind and its dependents. Anything else ends the run in FAILED, still returning
the summary built so far.
"""

import logging
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from rx_loader.domain.batch_loader import DEFAULT_CHUNK_SIZE, FACT_TARGETS, BatchLoader
from rx_loader.domain.fact_builder import build_fact
from rx_loader.domain.ports import (
    ImportCancelledError,
    IngestionPort,
    ProgressCallback,
    SourceNotFoundError,
    StageFatalError,
    StoragePort,
    UnsupportedSourceError,
)
from rx_loader.domain.records import (
    EntityKind,
    ErrorCategory,
    ImportStatus,
    ImportSummary,
    RecordType,
    RowError,
)
from rx_loader.domain.references import TypedRecord
from rx_loader.domain.resolution import (
    DEFAULT_INSERT_CHUNK_SIZE,
    RESOLUTION_ORDER,
    EntityResolver,
    ResolutionContext,
)

logger = logging.getLogger(__name__)


class ImportState(str, Enum):
    PENDING = "pending"
    PARSING = "parsing"
    EXTRACTING_REFERENCE_DATA = "extracting_reference_data"
    BUILDING_FACTS = "building_facts"
    LOADING = "loading"
    COMPLETE = "complete"
    FAILED = "failed"


STAGE_WEIGHTS: dict[ImportState, int] = {
    ImportState.PARSING: 20,
    ImportState.EXTRACTING_REFERENCE_DATA: 40,
    ImportState.BUILDING_FACTS: 5,
    ImportState.LOADING: 35,
}

# Share of the reference-data range per kind; patients dominate most extracts.
REFERENCE_STAGE_WEIGHTS: dict[EntityKind, int] = {
    EntityKind.ORGANIZATION: 5,
    EntityKind.PHARMACY: 5,
    EntityKind.PRESCRIBER: 5,
    EntityKind.LOCATION: 5,
    EntityKind.DRUG: 5,
    EntityKind.PATIENT: 10,
    EntityKind.INSURANCE_PLAN: 5,
}


def stage_start(state: ImportState, kind: Optional[EntityKind] = None) -> int:
    """Percentage at which a stage (or one reference kind) begins."""
    start = 0
    for stage, weight in STAGE_WEIGHTS.items():
        if stage is state:
            break
        start += weight
    if state is ImportState.EXTRACTING_REFERENCE_DATA and kind is not None:
        for earlier in RESOLUTION_ORDER:
            if earlier is kind:
                break
            start += REFERENCE_STAGE_WEIGHTS[earlier]
    return start


class ProgressReporter:
    """Forwards progress to a callback, clamped to 0-100 and never decreasing."""

    def __init__(self, callback: Optional[ProgressCallback] = None):
        self._callback = callback
        self.percentage = 0

    def report(self, message: str, percentage: float) -> None:
        value = max(self.percentage, min(100, int(percentage)))
        self.percentage = value
        if self._callback is not None:
            self._callback(message, value)

    def stage(self, message: str, state: ImportState, fraction: float, kind: Optional[EntityKind] = None) -> None:
        weight = REFERENCE_STAGE_WEIGHTS[kind] if kind is not None else STAGE_WEIGHTS[state]
        fraction = min(1.0, max(0.0, fraction))
        self.report(message, stage_start(state, kind) + weight * fraction)


class ImportOrchestrator:
    """Runs one import of one source file.

    Parameters:
        storage: Backing store
        load_chunk_size: Fact rows per bulk upsert
        insert_chunk_size: Reference rows per bulk insert
        progress_callback: Optional ``(message, percentage)`` callback
        cancel_check: Optional callable polled at every stage boundary; a
            truthy return stops the run in FAILED
        max_errors: Cap of the summary's error list

    Example Usage:
        ```python
        orchestrator = ImportOrchestrator(storage, progress_callback=print)
        summary = orchestrator.run(PrescriptionIngester(), "scripts.csv", RecordType.PRESCRIPTIONS)
        print(summary.status, summary.records_imported)
        ```
    """

    def __init__(
        self,
        storage: StoragePort,
        load_chunk_size: int = DEFAULT_CHUNK_SIZE,
        insert_chunk_size: int = DEFAULT_INSERT_CHUNK_SIZE,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_check: Optional[Callable[[], bool]] = None,
        max_errors: int = 1000
    ):
        self.storage = storage
        self.load_chunk_size = load_chunk_size
        self.insert_chunk_size = insert_chunk_size
        self.cancel_check = cancel_check
        self.max_errors = max_errors
        self.progress = ProgressReporter(progress_callback)
        self.state = ImportState.PENDING
        self.transitions: list[tuple[ImportState, Optional[EntityKind]]] = []

    def run(self, ingester: IngestionPort, source: str, record_type: RecordType) -> ImportSummary:
        """Import ``source`` and return the run's summary.

        Raises:
            SourceNotFoundError: If the source is missing (before any progress)
            UnsupportedSourceError: If the source cannot be read (before any progress)
        """
        summary = ImportSummary(
            file_name=Path(source).name,
            record_type=record_type,
            max_errors=self.max_errors,
        )
        context = ResolutionContext()
        logger.info(f"Starting {record_type.value} import of {summary.file_name}")

        try:
            self._enter(ImportState.PARSING)
            records = self._parse(ingester, source, summary)

            for kind in RESOLUTION_ORDER:
                self._check_cancelled()
                self._enter(ImportState.EXTRACTING_REFERENCE_DATA, kind)
                self._resolve_kind(kind, records, context, summary)

            self._check_cancelled()
            self._enter(ImportState.BUILDING_FACTS)
            facts = [build_fact(record, context) for record in records]
            self.progress.stage(f"Built {len(facts)} records", ImportState.BUILDING_FACTS, 1.0)

            self._check_cancelled()
            self._enter(ImportState.LOADING)
            self._load(facts, record_type, summary)

        except (SourceNotFoundError, UnsupportedSourceError) as e:
            if summary.total_records == 0:
                raise
            return self._fail(summary, f"Source became unreadable during import: {e}")
        except ImportCancelledError as e:
            logger.warning(f"Import of {summary.file_name} cancelled: {e}")
            return self._fail(summary, f"Import cancelled: {e}")
        except Exception as e:
            logger.error(f"Import of {summary.file_name} failed: {e}", exc_info=True)
            return self._fail(summary, f"Import failed: {e}")

        self._enter(ImportState.COMPLETE)
        summary.finish()
        self.progress.report("Import complete", 100)
        logger.info(
            f"Import of {summary.file_name} finished with status {summary.status.value}: "
            f"{summary.records_imported} imported, {summary.records_skipped} skipped "
            f"of {summary.total_records}"
        )
        return summary

    # ------------------------------------------------------------------------

    def _enter(self, state: ImportState, kind: Optional[EntityKind] = None) -> None:
        self.state = state
        self.transitions.append((state, kind))
        if kind is not None:
            logger.debug(f"State -> {state.value}({kind.label})")
        else:
            logger.debug(f"State -> {state.value}")

    def _check_cancelled(self) -> None:
        if self.cancel_check is not None and self.cancel_check():
            raise ImportCancelledError(f"cancelled before {self.state.value} finished")

    def _fail(self, summary: ImportSummary, message: str) -> ImportSummary:
        self._enter(ImportState.FAILED)
        summary.add_error(RowError(category=ErrorCategory.RUN_FATAL, message=message))
        summary.finish(ImportStatus.FAILED)
        return summary

    def _parse(self, ingester: IngestionPort, source: str, summary: ImportSummary) -> list[TypedRecord]:
        def on_progress(message: str, percentage: int) -> None:
            self.progress.stage(message, ImportState.PARSING, percentage / 100)

        records: list[TypedRecord] = []
        for result in ingester.ingest(source, progress_callback=on_progress):
            summary.total_records += 1
            if result.is_success():
                records.append(result.value)
                continue
            details = result.error_details or {}
            summary.record_skip(details.get("reason", result.error_type or "invalid row"))
            summary.add_error(RowError(
                row=details.get("row_number", 0),
                category=ErrorCategory.ROW_SKIPPED,
                message=result.error or "Row skipped",
                field=details.get("field"),
            ))

        self.progress.stage(f"Parsed {summary.total_records} rows", ImportState.PARSING, 1.0)
        logger.info(
            f"Parsed {summary.total_records} rows: {len(records)} valid, "
            f"{summary.records_skipped} skipped"
        )
        return records

    def _resolve_kind(
        self,
        kind: EntityKind,
        records: list[TypedRecord],
        context: ResolutionContext,
        summary: ImportSummary
    ) -> None:
        state = ImportState.EXTRACTING_REFERENCE_DATA
        self.progress.stage(f"Resolving {kind.table}", state, 0.0, kind)

        blocker = context.blocking_failure(kind)
        if blocker is not None:
            context.mark_failed(kind)
            message = f"Skipped {kind.table} resolution: {blocker.table} could not be resolved"
            logger.error(message)
            summary.add_error(RowError(category=ErrorCategory.STAGE_FATAL, message=message, entity_kind=kind))
            return

        resolver = EntityResolver(kind, self.storage, insert_chunk_size=self.insert_chunk_size)
        try:
            outcome = resolver.resolve(records, context)
        except StageFatalError as e:
            context.mark_failed(kind)
            logger.error(f"Resolution of {kind.table} abandoned: {e}")
            summary.add_error(RowError(category=ErrorCategory.STAGE_FATAL, message=str(e), entity_kind=kind))
            return

        summary.reference_data_created[kind] += outcome.created
        for error in outcome.errors:
            summary.add_error(error)
        self.progress.stage(
            f"Resolved {kind.table}: {outcome.created} created", state, 1.0, kind
        )

    def _load(self, facts: list, record_type: RecordType, summary: ImportSummary) -> None:
        target = FACT_TARGETS[record_type]

        def on_chunk(done: int, total: int) -> None:
            self.progress.stage(
                f"Loaded {done}/{total} {target.table}", ImportState.LOADING, done / total if total else 1.0
            )

        loader = BatchLoader(self.storage, target, chunk_size=self.load_chunk_size)
        outcome = loader.load(facts, on_chunk=on_chunk)

        summary.records_imported += outcome.imported
        for reason, count in outcome.skip_reasons.items():
            summary.record_skip(reason, count)
        for error in outcome.errors:
            summary.add_error(error)
