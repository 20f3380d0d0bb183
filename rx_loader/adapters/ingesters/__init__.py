"""Ingestion adapters for rx-loader.

This module contains the tabular ingesters that implement the IngestionPort
interface for the two supported extracts (prescriptions and claims).
"""

from pathlib import Path
from typing import Optional, Union

from rx_loader.adapters.ingesters.claim_ingester import ClaimIngester
from rx_loader.adapters.ingesters.prescription_ingester import PrescriptionIngester
from rx_loader.adapters.ingesters.tabular_ingester import SUPPORTED_EXTENSIONS, TabularIngester, read_table
from rx_loader.domain.ports import UnsupportedSourceError
from rx_loader.domain.records import RecordType

__all__ = ["ClaimIngester", "PrescriptionIngester", "TabularIngester", "detect_record_type", "get_ingester"]

INGESTERS: dict[RecordType, type[TabularIngester]] = {
    RecordType.PRESCRIPTIONS: PrescriptionIngester,
    RecordType.CLAIMS: ClaimIngester,
}


def detect_record_type(source: str) -> RecordType:
    """Infer the record type of a source from its header row.

    Raises:
        SourceNotFoundError: If the source doesn't exist
        UnsupportedSourceError: If no ingester recognizes the headers
    """
    headers = list(read_table(source, nrows=0).columns)
    for record_type, ingester_class in INGESTERS.items():
        if ingester_class.matches_headers(headers):
            return record_type
    raise UnsupportedSourceError(
        f"Cannot tell whether {source} holds prescriptions or claims; pass the record type explicitly",
        source=source
    )


def get_ingester(
    source: str,
    record_type: Optional[Union[RecordType, str]] = None,
    **kwargs
) -> TabularIngester:
    """Factory function to get the ingester for a source.

    Parameters:
        source: Path to the source file
        record_type: Record type of the extract; inferred from headers when None
        **kwargs: Passed to the ingester constructor (progress_interval)

    Returns:
        TabularIngester: PrescriptionIngester or ClaimIngester

    Raises:
        UnsupportedSourceError: If the extension or record type is not supported
        SourceNotFoundError: If headers must be read and the file is missing

    Example Usage:
        ```python
        ingester = get_ingester("ClaimReports.csv")
        ingester = get_ingester("scripts.xlsx", record_type="prescriptions", progress_interval=500)
        ```
    """
    extension = Path(source).suffix.lower()
    if extension not in SUPPORTED_EXTENSIONS:
        raise UnsupportedSourceError(
            f"No ingester for source: {source}. Supported formats: {', '.join(SUPPORTED_EXTENSIONS)}",
            source=source
        )

    if record_type is None:
        record_type = detect_record_type(source)
    else:
        try:
            record_type = RecordType(record_type)
        except ValueError:
            raise UnsupportedSourceError(f"Unknown record type: {record_type}", source=source)

    return INGESTERS[record_type](**kwargs)
