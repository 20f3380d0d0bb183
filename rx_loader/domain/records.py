"""Record Schema Definitions.

This module defines the typed records that flow through the pipeline:

    RawRow -> PrescriptionEvent | ClaimEvent   (typed, validated source rows)
           -> PrescriptionRecord | ClaimRecord (facts with resolved reference ids)

plus the ImportSummary that a run hands back to its caller.

Architecture:
    - Pure domain models with zero infrastructure dependencies
    - Typed records and facts are immutable (frozen Pydantic models)
    - Field names of the fact records match the columns of the fact tables
"""

import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ============================================================================
# Enumerations
# ============================================================================

class RecordType(str, Enum):
    """Kind of source extract."""
    PRESCRIPTIONS = "prescriptions"
    CLAIMS = "claims"


class EntityKind(str, Enum):
    """Reference entity kinds, valued by their table name."""
    ORGANIZATION = "covered_entities"
    PHARMACY = "pharmacies"
    PRESCRIBER = "prescribers"
    LOCATION = "locations"
    DRUG = "drugs"
    PATIENT = "patients"
    INSURANCE_PLAN = "insurance_plans"

    @property
    def table(self) -> str:
        return self.value

    @property
    def label(self) -> str:
        return self.name.lower()


class ImportStatus(str, Enum):
    """Lifecycle status of an import run (persisted in import_logs)."""
    PROCESSING = "Processing"
    SUCCESS = "Success"
    PARTIAL = "Partial"
    FAILED = "Failed"


class ErrorCategory(str, Enum):
    """Error taxonomy of a run.

    ROW_SKIPPED, ENTITY_CREATION_FAILED and CHUNK_LOAD_FAILED are recovered
    locally; STAGE_FATAL and RUN_FATAL are surfaced on the summary.
    """
    ROW_SKIPPED = "row_skipped"
    ENTITY_CREATION_FAILED = "entity_creation_failed"
    CHUNK_LOAD_FAILED = "chunk_load_failed"
    STAGE_FATAL = "stage_fatal"
    RUN_FATAL = "run_fatal"


# ============================================================================
# Typed source records
# ============================================================================

class _TypedRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    row_number: int = Field(..., ge=1, description="1-based data row number in the source")
    source_file: Optional[str] = None


class PrescriptionEvent(_TypedRecord):
    """One row of a prescription (scripts) extract.

    Required: prescription_identifier, prescribed_date, patient first and last
    name, prescriber last name. Everything else is nullable.
    """

    organization_identifier: Optional[str] = None
    encounter_fin: Optional[int] = None
    encounter_start: Optional[datetime] = None
    encounter_end: Optional[datetime] = None

    patient_mrn: Optional[str] = None
    patient_first_name: str
    patient_middle_name: Optional[str] = None
    patient_last_name: str
    patient_suffix: Optional[str] = None
    patient_date_of_birth: Optional[date] = None

    prescriber_first_name: Optional[str] = None
    prescriber_middle_name: Optional[str] = None
    prescriber_last_name: str
    prescriber_suffix: Optional[str] = None
    prescriber_npi: Optional[int] = None
    prescriber_dea_number: Optional[str] = None

    location_identifier: Optional[str] = None
    location_name: Optional[str] = None

    pharmacy_name: Optional[str] = None
    pharmacy_npi: Optional[int] = None
    pharmacy_nabp: Optional[int] = None

    prescription_identifier: str
    prescribed_date: date
    transmission_method: Optional[str] = None
    status: Optional[str] = None

    ndc_code: Optional[str] = None
    medication_name: Optional[str] = None
    dispense_quantity: Optional[Decimal] = None
    dispense_quantity_unit: Optional[str] = None
    refills: Optional[int] = None
    days_supply: Optional[int] = None
    frequency: Optional[str] = None
    dose: Optional[str] = None
    dose_units: Optional[str] = None
    drug_form: Optional[str] = None
    route_of_administration: Optional[str] = None

    primary_insurance_company: Optional[str] = None
    primary_group: Optional[str] = None
    primary_subscriber_number: Optional[str] = None
    primary_bin: Optional[str] = None
    primary_pcn: Optional[str] = None
    primary_is_medicaid: bool = False

    secondary_insurance_company: Optional[str] = None
    secondary_group: Optional[str] = None
    secondary_subscriber_number: Optional[str] = None
    secondary_bin: Optional[str] = None
    secondary_pcn: Optional[str] = None
    secondary_is_medicaid: bool = False

    @field_validator("ndc_code")
    @classmethod
    def validate_ndc_length(cls, v: Optional[str]) -> Optional[str]:
        """NDCs reach this model already padded to 11 digits."""
        if v is not None and (not v.isdigit() or len(v) < 11):
            raise ValueError(f"NDC must be canonical 11-digit text, got {v!r}")
        return v


class ClaimEvent(_TypedRecord):
    """One row of a pharmacy claims extract.

    Required: prescription_number, date_rx_written, fill_date, refill_number.
    """

    covered_entity_name: Optional[str] = None
    opaid: Optional[str] = None
    chain_pharmacy: Optional[str] = None
    pharmacy_name: Optional[str] = None
    pharmacy_nabp_npi: Optional[int] = None
    transaction_code: Optional[str] = None

    prescription_number: str
    date_rx_written: date
    refill_number: int
    fill_date: date
    claim_date: Optional[date] = None
    claim_id: Optional[int] = None
    claim_captured_date: Optional[date] = None

    bin: Optional[str] = None
    pcn: Optional[str] = None
    plan_group: Optional[str] = None
    secondary_bin: Optional[str] = None
    secondary_pcn: Optional[str] = None
    secondary_group: Optional[str] = None
    other_coverage_code: Optional[str] = None
    submission_clarification_code: Optional[str] = None

    patient_id_external: Optional[str] = None
    gender: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    date_of_birth: Optional[date] = None
    medical_record_number: Optional[str] = None

    prescriber_name: Optional[str] = None
    prescriber_npi_dea: Optional[str] = None

    ndc: Optional[str] = None
    drug_name: Optional[str] = None
    package_size: Optional[Decimal] = None
    manufacturer_name: Optional[str] = None
    drug_indicator: Optional[str] = None
    qty_dispensed: Optional[Decimal] = None
    days_supply: Optional[int] = None

    claim_type: Optional[str] = None
    claim_sub_type: Optional[str] = None
    reason: Optional[str] = None
    sub_reason: Optional[str] = None

    patient_pay: Optional[Decimal] = None
    third_party_payment: Optional[Decimal] = None
    total_payment: Optional[Decimal] = None
    dispensing_fee: Optional[Decimal] = None
    ce_receivable: Optional[Decimal] = None
    drug_cost_340b: Optional[Decimal] = None
    total_claim_cost: Optional[Decimal] = None
    profit_or_loss: Optional[Decimal] = None
    retail_drug_cost: Optional[Decimal] = None

    comments: Optional[str] = None
    replenishment_status: Optional[str] = None
    billing_model: Optional[str] = None
    trued_up_units: Optional[Decimal] = None
    trued_up_cost: Optional[Decimal] = None
    trued_up_date: Optional[date] = None


# ============================================================================
# Fact records
# ============================================================================

class PrescriptionRecord(BaseModel):
    """Row of the prescriptions fact table."""

    model_config = ConfigDict(frozen=True)

    prescription_identifier: str
    prescribed_date: date
    encounter_fin: Optional[int] = None
    encounter_start: Optional[datetime] = None
    encounter_end: Optional[datetime] = None
    transmission_method: Optional[str] = None
    status: Optional[str] = None

    covered_entity_id: Optional[str] = None
    pharmacy_id: Optional[str] = None
    prescriber_id: Optional[str] = None
    location_id: Optional[str] = None
    drug_id: Optional[str] = None
    patient_id: Optional[str] = None
    primary_insurance_id: Optional[str] = None
    secondary_insurance_id: Optional[str] = None

    ndc_code: Optional[str] = None
    medication_name: Optional[str] = None
    dispense_quantity: Optional[Decimal] = None
    dispense_quantity_unit: Optional[str] = None
    refills: Optional[int] = None
    days_supply: Optional[int] = None
    frequency: Optional[str] = None
    primary_subscriber_number: Optional[str] = None
    secondary_subscriber_number: Optional[str] = None
    source_file: Optional[str] = None


class ClaimRecord(BaseModel):
    """Row of the claims fact table."""

    model_config = ConfigDict(frozen=True)

    prescription_number: str
    date_rx_written: date
    refill_number: int
    fill_date: date

    covered_entity_id: Optional[str] = None
    pharmacy_id: Optional[str] = None
    prescriber_id: Optional[str] = None
    drug_id: Optional[str] = None
    patient_id: Optional[str] = None

    covered_entity_name: Optional[str] = None
    opaid: Optional[str] = None
    chain_pharmacy: Optional[str] = None
    pharmacy_name: Optional[str] = None
    pharmacy_nabp_npi: Optional[int] = None
    transaction_code: Optional[str] = None
    claim_date: Optional[date] = None
    claim_id: Optional[int] = None
    claim_captured_date: Optional[date] = None
    bin: Optional[str] = None
    pcn: Optional[str] = None
    plan_group: Optional[str] = None
    secondary_bin: Optional[str] = None
    secondary_pcn: Optional[str] = None
    secondary_group: Optional[str] = None
    other_coverage_code: Optional[str] = None
    submission_clarification_code: Optional[str] = None
    patient_id_external: Optional[str] = None
    gender: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    date_of_birth: Optional[date] = None
    medical_record_number: Optional[str] = None
    prescriber_name: Optional[str] = None
    prescriber_npi_dea: Optional[str] = None
    ndc: Optional[str] = None
    drug_name: Optional[str] = None
    package_size: Optional[Decimal] = None
    manufacturer_name: Optional[str] = None
    drug_indicator: Optional[str] = None
    qty_dispensed: Optional[Decimal] = None
    days_supply: Optional[int] = None
    claim_type: Optional[str] = None
    claim_sub_type: Optional[str] = None
    reason: Optional[str] = None
    sub_reason: Optional[str] = None
    patient_pay: Optional[Decimal] = None
    third_party_payment: Optional[Decimal] = None
    total_payment: Optional[Decimal] = None
    dispensing_fee: Optional[Decimal] = None
    ce_receivable: Optional[Decimal] = None
    drug_cost_340b: Optional[Decimal] = None
    total_claim_cost: Optional[Decimal] = None
    profit_or_loss: Optional[Decimal] = None
    retail_drug_cost: Optional[Decimal] = None
    comments: Optional[str] = None
    replenishment_status: Optional[str] = None
    billing_model: Optional[str] = None
    trued_up_units: Optional[Decimal] = None
    trued_up_cost: Optional[Decimal] = None
    trued_up_date: Optional[date] = None
    source_file: Optional[str] = None


# ============================================================================
# Import summary
# ============================================================================

class RowError(BaseModel):
    """One entry of the summary's error list.

    ``row`` is the 1-based source row, or 0 for errors that are not tied to a
    single row (a failed chunk, a failed stage).
    """

    row: int = 0
    category: ErrorCategory
    message: str
    field: Optional[str] = None
    entity_kind: Optional[EntityKind] = None


def _empty_created_counts() -> dict[EntityKind, int]:
    return {kind: 0 for kind in EntityKind}


class ImportSummary(BaseModel):
    """Aggregate outcome of one import run, built incrementally.

    Attributes:
        total_records: Raw rows seen in the source
        records_imported: Fact rows the store accepted
        records_skipped: Rows rejected by the parser plus facts the store skipped
        skip_reasons: Reason -> count for every skipped row
        reference_data_created: Entity kind -> entities created this run
        errors: Ordered error list, capped at ``max_errors`` entries
        errors_truncated: Errors beyond the cap (counted, not stored)
    """

    file_name: Optional[str] = None
    record_type: Optional[RecordType] = None
    status: ImportStatus = ImportStatus.PROCESSING
    total_records: int = 0
    records_imported: int = 0
    records_skipped: int = 0
    skip_reasons: dict[str, int] = Field(default_factory=dict)
    reference_data_created: dict[EntityKind, int] = Field(default_factory=_empty_created_counts)
    errors: list[RowError] = Field(default_factory=list)
    errors_truncated: int = 0
    max_errors: int = Field(default=1000, exclude=True)
    started_at: datetime = Field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None

    def add_error(self, error: RowError) -> None:
        if len(self.errors) >= self.max_errors:
            self.errors_truncated += 1
            return
        self.errors.append(error)

    def record_skip(self, reason: str, count: int = 1) -> None:
        self.records_skipped += count
        self.skip_reasons[reason] = self.skip_reasons.get(reason, 0) + count

    def finish(self, status: Optional[ImportStatus] = None) -> None:
        """Stamp completion time and settle the final status.

        Without an explicit status: FAILED on a run-level error, PARTIAL when
        anything was skipped or any error was recorded, SUCCESS otherwise.
        """
        self.completed_at = datetime.now()
        self.duration_ms = int((self.completed_at - self.started_at).total_seconds() * 1000)
        if status is not None:
            self.status = status
        elif any(e.category == ErrorCategory.RUN_FATAL for e in self.errors):
            self.status = ImportStatus.FAILED
        elif self.errors or self.errors_truncated or self.records_skipped:
            self.status = ImportStatus.PARTIAL
        else:
            self.status = ImportStatus.SUCCESS

    def to_log_entry(self) -> dict:
        """Flatten the summary into an import_logs row."""
        first_error = self.errors[0].message if self.errors else None
        entry = {
            "file_name": self.file_name,
            "file_type": self.record_type.value if self.record_type else None,
            "status": self.status.value,
            "total_records": self.total_records,
            "records_imported": self.records_imported,
            "records_skipped": self.records_skipped,
            "error_message": first_error,
            "errors_json": json.dumps([e.model_dump(mode="json") for e in self.errors]) if self.errors else None,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "duration_ms": self.duration_ms,
        }
        for kind, count in self.reference_data_created.items():
            entry[f"{kind.table}_created"] = count
        return entry
