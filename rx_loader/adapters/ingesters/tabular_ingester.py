"""Tabular Source Ingestion Base.

Shared reading and parsing machinery for the prescription and claim
ingesters. A subclass declares its columns as ColumnSpec entries and the
typed record model to build; this base does the rest:

    file -> pandas DataFrame -> RawRow -> normalized values -> typed record

Architecture:
    - Implements IngestionPort (Hexagonal Architecture)
    - pandas reads CSV/TXT and XLSX workbooks (first sheet) in one pass
    - Header whitespace is trimmed; column names are then matched exactly
    - Fail-safe design: a bad row becomes a failure Result, never an exception
"""

import logging
import zipfile
from abc import abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, ClassVar, Iterator, Optional

import pandas as pd
from openpyxl.utils.exceptions import InvalidFileException
from pydantic import BaseModel, ValidationError as PydanticValidationError

from rx_loader.domain.ports import (
    IngestionPort,
    ProgressCallback,
    Result,
    SourceNotFoundError,
    UnsupportedSourceError,
    ValidationError,
)
from rx_loader.domain.raw_row import ABSENT, RawRow
from rx_loader.domain.records import RecordType

logger = logging.getLogger(__name__)

CSV_EXTENSIONS = (".csv", ".txt")
WORKBOOK_EXTENSIONS = (".xlsx", ".xlsm")
SUPPORTED_EXTENSIONS = CSV_EXTENSIONS + WORKBOOK_EXTENSIONS

DEFAULT_PROGRESS_INTERVAL = 250
MIN_PROGRESS_INTERVAL = 100
MAX_PROGRESS_INTERVAL = 500


@dataclass(frozen=True)
class ColumnSpec:
    """Maps one source column onto one field of the typed record.

    Attributes:
        field: Field name on the typed record
        column: Exact source header (after whitespace trimming)
        normalize: Field Normalizer applied to the cell
        required: Rows where the normalized value is None are skipped
    """

    field: str
    column: str
    normalize: Callable[[Any], Any]
    required: bool = False


def clamp_progress_interval(interval: int) -> int:
    return max(MIN_PROGRESS_INTERVAL, min(MAX_PROGRESS_INTERVAL, interval))


def read_table(source: str, nrows: Optional[int] = None) -> pd.DataFrame:
    """Read a CSV or workbook source into a DataFrame with trimmed headers.

    CSV cells are kept as text (no type inference, no NA guessing) so
    identifiers such as ``"00123"`` survive. Workbook cells keep their native
    types (numbers, datetimes); the normalizers handle both.

    Raises:
        SourceNotFoundError: If the file does not exist
        UnsupportedSourceError: If the extension is not supported or the file
            cannot be parsed as a table
    """
    source_path = Path(source)
    if not source_path.exists():
        raise SourceNotFoundError(f"Source not found: {source}", source=source)

    extension = source_path.suffix.lower()
    try:
        if extension in CSV_EXTENSIONS:
            frame = pd.read_csv(
                source_path,
                dtype=str,
                keep_default_na=False,
                skip_blank_lines=True,
                encoding="utf-8-sig",
                nrows=nrows,
            )
        elif extension in WORKBOOK_EXTENSIONS:
            frame = pd.read_excel(
                source_path,
                sheet_name=0,
                dtype=object,
                engine="openpyxl",
                nrows=nrows,
            )
        else:
            raise UnsupportedSourceError(
                f"Unsupported file type '{extension}'. Supported: {', '.join(SUPPORTED_EXTENSIONS)}",
                source=source
            )
    except pd.errors.EmptyDataError:
        raise UnsupportedSourceError(f"Source {source} is empty", source=source)
    except pd.errors.ParserError as e:
        raise UnsupportedSourceError(f"Source {source} is not a valid CSV file: {e}", source=source)
    except (zipfile.BadZipFile, InvalidFileException) as e:
        raise UnsupportedSourceError(f"Source {source} is not a valid workbook: {e}", source=source)
    except (ValueError, OSError) as e:
        raise UnsupportedSourceError(f"Failed to read {source}: {e}", source=source)

    frame.columns = [str(column).strip() for column in frame.columns]
    return frame


class TabularIngester(IngestionPort):
    """Base class for column-spec driven tabular ingesters.

    Subclasses set ``record_type``, ``record_model`` and ``column_specs``.

    Parameters:
        progress_interval: Rows between progress callbacks (clamped to 100..500)
    """

    record_type: ClassVar[RecordType]
    record_model: ClassVar[type[BaseModel]]
    column_specs: ClassVar[tuple[ColumnSpec, ...]]

    def __init__(self, progress_interval: int = DEFAULT_PROGRESS_INTERVAL):
        self.progress_interval = clamp_progress_interval(progress_interval)
        self.adapter_name = f"{self.record_type.value}_ingester"

    def can_ingest(self, source: str) -> bool:
        if not source:
            return False
        return Path(source).suffix.lower() in SUPPORTED_EXTENSIONS

    def get_source_info(self, source: str) -> Optional[dict]:
        source_path = Path(source)
        if not source_path.exists():
            return None
        extension = source_path.suffix.lower()
        return {
            "format": "workbook" if extension in WORKBOOK_EXTENSIONS else "csv",
            "size": source_path.stat().st_size,
            "record_type": self.record_type.value,
            "exists": True,
        }

    def ingest(
        self,
        source: str,
        progress_callback: Optional[ProgressCallback] = None
    ) -> Iterator[Result[BaseModel]]:
        """Read ``source`` and yield one Result per data row.

        Progress is reported every ``progress_interval`` rows as
        ``(message, percentage of rows parsed)``.
        """
        if not self.can_ingest(source):
            raise UnsupportedSourceError(
                f"{self.adapter_name} cannot read {source}",
                source=source,
                adapter=self.adapter_name
            )
        frame = read_table(source)
        source_file = Path(source).name
        total = len(frame)
        logger.info(f"Reading {total} {self.record_type.value} rows from {source_file}")

        if progress_callback:
            progress_callback(f"Processing {total} rows...", 0)

        accepted = rejected = 0
        for index, cells in enumerate(frame.to_dict(orient="records"), start=1):
            result = self.parse_row(RawRow(cells, row_number=index), source_file=source_file)
            if result.is_success():
                accepted += 1
            else:
                rejected += 1
            yield result

            if progress_callback and index % self.progress_interval == 0:
                progress_callback(f"Processing row {index} of {total}...", index * 100 // total)

        if progress_callback:
            progress_callback(f"Parsed {accepted} {self.record_type.value} ({rejected} rows skipped)", 100)
        logger.info(f"Ingestion complete: {source_file} - {accepted} accepted, {rejected} rejected")

    def parse_row(self, raw_row: RawRow, source_file: Optional[str] = None) -> Result[BaseModel]:
        """Parse one raw row into the typed record.

        Returns:
            Result: Success with the typed record, or failure whose
                ``error_details`` carry ``row_number``, ``field`` and ``reason``
        """
        values: dict[str, Any] = {"row_number": raw_row.row_number, "source_file": source_file}
        for spec in self.column_specs:
            cell = raw_row.cell(spec.column)
            value = spec.normalize(cell)
            if spec.required and value is None:
                if cell is ABSENT:
                    return self._skip(raw_row, spec.column, f"missing {spec.column}", source_file)
                return self._skip(
                    raw_row, spec.column, f"invalid {spec.column}", source_file,
                    detail=f"unparseable value {cell!r}"
                )
            values[spec.field] = value

        try:
            return Result.success_result(self.record_model(**values))
        except PydanticValidationError as e:
            first = e.errors()[0]
            field_name = str(first["loc"][0]) if first.get("loc") else None
            column = self._column_for(field_name) if field_name else None
            return self._skip(
                raw_row, column or field_name, f"invalid {column or field_name or 'row'}", source_file,
                detail=first.get("msg")
            )

    @classmethod
    @abstractmethod
    def matches_headers(cls, headers: list[str]) -> bool:
        """True when a header row identifies this ingester's record type."""
        pass

    # ------------------------------------------------------------------------

    def _column_for(self, field_name: str) -> Optional[str]:
        for spec in self.column_specs:
            if spec.field == field_name:
                return spec.column
        return None

    def _skip(
        self,
        raw_row: RawRow,
        column: Optional[str],
        reason: str,
        source_file: Optional[str],
        detail: Optional[str] = None
    ) -> Result[BaseModel]:
        message = f"Row {raw_row.row_number}: {reason}"
        if detail:
            message = f"{message} ({detail})"
        logger.warning(f"Skipping row {raw_row.row_number} of {source_file}: {reason}")
        return Result.failure_result(
            ValidationError(message, source=source_file, details={"field": column}),
            error_type="ValidationError",
            error_details={
                "row_number": raw_row.row_number,
                "field": column,
                "reason": reason,
                "source": source_file,
            }
        )
