"""Domain layer for rx-loader.

This module contains the import pipeline: normalizers, natural keys, entity
resolution, fact building and batch loading, plus the ports the adapters
implement. Domain models are pure Python with no dependencies beyond Pydantic.
"""

from .records import (
    ClaimEvent,
    ClaimRecord,
    EntityKind,
    ImportStatus,
    ImportSummary,
    PrescriptionEvent,
    PrescriptionRecord,
    RecordType,
    RowError,
)

__all__ = [
    "ClaimEvent",
    "ClaimRecord",
    "EntityKind",
    "ImportStatus",
    "ImportSummary",
    "PrescriptionEvent",
    "PrescriptionRecord",
    "RecordType",
    "RowError",
]
