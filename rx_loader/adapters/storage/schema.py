"""Relational schema shared by the storage adapters.

Column types are limited to those DuckDB and PostgreSQL spell the same way,
so one declaration renders valid DDL for both. Ids are UUIDs generated by the
adapters, never by the database.

Reference tables carry a UNIQUE constraint on their primary external
identifier; two runs racing to create the same entity collide there and the
loser re-reads the winner's row.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class TableSpec:
    """One table: ordered (column, type) pairs plus table constraints."""

    name: str
    columns: tuple[tuple[str, str], ...]
    constraints: tuple[str, ...] = ()

    @property
    def column_names(self) -> list[str]:
        return [name for name, _ in self.columns]

    def create_sql(self) -> str:
        lines = [f"    {name} {sql_type}" for name, sql_type in self.columns]
        lines.extend(f"    {constraint}" for constraint in self.constraints)
        body = ",\n".join(lines)
        return f"CREATE TABLE IF NOT EXISTS {self.name} (\n{body}\n)"


ID = ("id", "UUID PRIMARY KEY")
CREATED_AT = ("created_at", "TIMESTAMP DEFAULT CURRENT_TIMESTAMP")
MONEY = "DECIMAL(14, 4)"
QUANTITY = "DECIMAL(14, 3)"


COVERED_ENTITIES = TableSpec(
    "covered_entities",
    (
        ID,
        ("opaid", "VARCHAR"),
        ("organization_identifier", "VARCHAR"),
        ("entity_name", "VARCHAR NOT NULL"),
        CREATED_AT,
    ),
    ("UNIQUE (opaid)",),
)

PHARMACIES = TableSpec(
    "pharmacies",
    (
        ID,
        ("pharmacy_name", "VARCHAR NOT NULL"),
        ("chain_pharmacy", "VARCHAR"),
        ("npi_number", "BIGINT"),
        ("nabp_number", "BIGINT"),
        CREATED_AT,
    ),
    ("UNIQUE (npi_number)",),
)

PRESCRIBERS = TableSpec(
    "prescribers",
    (
        ID,
        ("first_name", "VARCHAR"),
        ("middle_name", "VARCHAR"),
        ("last_name", "VARCHAR NOT NULL"),
        ("suffix", "VARCHAR"),
        ("npi", "BIGINT"),
        ("dea_number", "VARCHAR"),
        CREATED_AT,
    ),
    ("UNIQUE (npi)",),
)

LOCATIONS = TableSpec(
    "locations",
    (
        ID,
        ("location_identifier", "VARCHAR"),
        ("location_name", "VARCHAR NOT NULL"),
        ("covered_entity_id", "UUID REFERENCES covered_entities (id)"),
        CREATED_AT,
    ),
    ("UNIQUE (location_identifier)",),
)

DRUGS = TableSpec(
    "drugs",
    (
        ID,
        ("ndc_code", "VARCHAR NOT NULL"),
        ("drug_name", "VARCHAR"),
        ("manufacturer_name", "VARCHAR"),
        ("package_size", QUANTITY),
        ("drug_indicator", "VARCHAR"),
        ("drug_form", "VARCHAR"),
        ("dose", "VARCHAR"),
        ("dose_units", "VARCHAR"),
        ("route_of_administration", "VARCHAR"),
        CREATED_AT,
    ),
    ("UNIQUE (ndc_code)",),
)

PATIENTS = TableSpec(
    "patients",
    (
        ID,
        ("mrn", "VARCHAR"),
        ("patient_id_external", "VARCHAR"),
        ("first_name", "VARCHAR NOT NULL"),
        ("middle_name", "VARCHAR"),
        ("last_name", "VARCHAR NOT NULL"),
        ("suffix", "VARCHAR"),
        ("date_of_birth", "DATE"),
        ("gender", "VARCHAR"),
        CREATED_AT,
    ),
    ("UNIQUE (mrn)",),
)

INSURANCE_PLANS = TableSpec(
    "insurance_plans",
    (
        ID,
        ("insurance_company", "VARCHAR NOT NULL"),
        ("plan_group", "VARCHAR"),
        ("bin", "VARCHAR"),
        ("pcn", "VARCHAR"),
        ("is_medicaid", "BOOLEAN DEFAULT FALSE"),
        ("is_primary", "BOOLEAN DEFAULT TRUE"),
        CREATED_AT,
    ),
)

PRESCRIPTIONS = TableSpec(
    "prescriptions",
    (
        ID,
        ("prescription_identifier", "VARCHAR NOT NULL"),
        ("prescribed_date", "DATE NOT NULL"),
        ("encounter_fin", "BIGINT"),
        ("encounter_start", "TIMESTAMP"),
        ("encounter_end", "TIMESTAMP"),
        ("transmission_method", "VARCHAR"),
        ("status", "VARCHAR"),
        ("covered_entity_id", "UUID REFERENCES covered_entities (id)"),
        ("pharmacy_id", "UUID REFERENCES pharmacies (id)"),
        ("prescriber_id", "UUID REFERENCES prescribers (id)"),
        ("location_id", "UUID REFERENCES locations (id)"),
        ("drug_id", "UUID REFERENCES drugs (id)"),
        ("patient_id", "UUID REFERENCES patients (id)"),
        ("primary_insurance_id", "UUID REFERENCES insurance_plans (id)"),
        ("secondary_insurance_id", "UUID REFERENCES insurance_plans (id)"),
        ("ndc_code", "VARCHAR"),
        ("medication_name", "VARCHAR"),
        ("dispense_quantity", QUANTITY),
        ("dispense_quantity_unit", "VARCHAR"),
        ("refills", "INTEGER"),
        ("days_supply", "INTEGER"),
        ("frequency", "VARCHAR"),
        ("primary_subscriber_number", "VARCHAR"),
        ("secondary_subscriber_number", "VARCHAR"),
        ("source_file", "VARCHAR"),
        CREATED_AT,
    ),
    ("UNIQUE (prescription_identifier)",),
)

CLAIMS = TableSpec(
    "claims",
    (
        ID,
        ("prescription_number", "VARCHAR NOT NULL"),
        ("date_rx_written", "DATE NOT NULL"),
        ("refill_number", "INTEGER NOT NULL"),
        ("fill_date", "DATE NOT NULL"),
        ("covered_entity_id", "UUID REFERENCES covered_entities (id)"),
        ("pharmacy_id", "UUID REFERENCES pharmacies (id)"),
        ("prescriber_id", "UUID REFERENCES prescribers (id)"),
        ("drug_id", "UUID REFERENCES drugs (id)"),
        ("patient_id", "UUID REFERENCES patients (id)"),
        ("covered_entity_name", "VARCHAR"),
        ("opaid", "VARCHAR"),
        ("chain_pharmacy", "VARCHAR"),
        ("pharmacy_name", "VARCHAR"),
        ("pharmacy_nabp_npi", "BIGINT"),
        ("transaction_code", "VARCHAR"),
        ("claim_date", "DATE"),
        ("claim_id", "BIGINT"),
        ("claim_captured_date", "DATE"),
        ("bin", "VARCHAR"),
        ("pcn", "VARCHAR"),
        ("plan_group", "VARCHAR"),
        ("secondary_bin", "VARCHAR"),
        ("secondary_pcn", "VARCHAR"),
        ("secondary_group", "VARCHAR"),
        ("other_coverage_code", "VARCHAR"),
        ("submission_clarification_code", "VARCHAR"),
        ("patient_id_external", "VARCHAR"),
        ("gender", "VARCHAR"),
        ("first_name", "VARCHAR"),
        ("last_name", "VARCHAR"),
        ("date_of_birth", "DATE"),
        ("medical_record_number", "VARCHAR"),
        ("prescriber_name", "VARCHAR"),
        ("prescriber_npi_dea", "VARCHAR"),
        ("ndc", "VARCHAR"),
        ("drug_name", "VARCHAR"),
        ("package_size", QUANTITY),
        ("manufacturer_name", "VARCHAR"),
        ("drug_indicator", "VARCHAR"),
        ("qty_dispensed", QUANTITY),
        ("days_supply", "INTEGER"),
        ("claim_type", "VARCHAR"),
        ("claim_sub_type", "VARCHAR"),
        ("reason", "VARCHAR"),
        ("sub_reason", "VARCHAR"),
        ("patient_pay", MONEY),
        ("third_party_payment", MONEY),
        ("total_payment", MONEY),
        ("dispensing_fee", MONEY),
        ("ce_receivable", MONEY),
        ("drug_cost_340b", MONEY),
        ("total_claim_cost", MONEY),
        ("profit_or_loss", MONEY),
        ("retail_drug_cost", MONEY),
        ("comments", "VARCHAR"),
        ("replenishment_status", "VARCHAR"),
        ("billing_model", "VARCHAR"),
        ("trued_up_units", QUANTITY),
        ("trued_up_cost", MONEY),
        ("trued_up_date", "DATE"),
        ("source_file", "VARCHAR"),
        CREATED_AT,
    ),
    ("UNIQUE (prescription_number, refill_number, fill_date)",),
)

IMPORT_LOGS = TableSpec(
    "import_logs",
    (
        ID,
        ("file_name", "VARCHAR"),
        ("file_type", "VARCHAR"),
        ("status", "VARCHAR NOT NULL"),
        ("total_records", "INTEGER DEFAULT 0"),
        ("records_imported", "INTEGER DEFAULT 0"),
        ("records_skipped", "INTEGER DEFAULT 0"),
        ("covered_entities_created", "INTEGER DEFAULT 0"),
        ("pharmacies_created", "INTEGER DEFAULT 0"),
        ("prescribers_created", "INTEGER DEFAULT 0"),
        ("locations_created", "INTEGER DEFAULT 0"),
        ("drugs_created", "INTEGER DEFAULT 0"),
        ("patients_created", "INTEGER DEFAULT 0"),
        ("insurance_plans_created", "INTEGER DEFAULT 0"),
        ("error_message", "VARCHAR"),
        ("errors_json", "TEXT"),
        ("started_at", "TIMESTAMP"),
        ("completed_at", "TIMESTAMP"),
        ("duration_ms", "BIGINT"),
        CREATED_AT,
    ),
)

# Creation order respects foreign keys.
TABLES: tuple[TableSpec, ...] = (
    COVERED_ENTITIES,
    PHARMACIES,
    PRESCRIBERS,
    LOCATIONS,
    DRUGS,
    PATIENTS,
    INSURANCE_PLANS,
    PRESCRIPTIONS,
    CLAIMS,
    IMPORT_LOGS,
)

TABLES_BY_NAME: dict[str, TableSpec] = {table.name: table for table in TABLES}

INDEXES: tuple[str, ...] = (
    "CREATE INDEX IF NOT EXISTS idx_pharmacies_nabp ON pharmacies (nabp_number)",
    "CREATE INDEX IF NOT EXISTS idx_prescribers_dea ON prescribers (dea_number)",
    "CREATE INDEX IF NOT EXISTS idx_patients_external ON patients (patient_id_external)",
    "CREATE INDEX IF NOT EXISTS idx_prescriptions_date ON prescriptions (prescribed_date)",
    "CREATE INDEX IF NOT EXISTS idx_claims_fill_date ON claims (fill_date)",
    "CREATE INDEX IF NOT EXISTS idx_claims_patient ON claims (patient_id)",
)


def get_table(name: str) -> TableSpec:
    """Look up a table by name.

    Raises:
        KeyError: If the table is not part of the schema
    """
    try:
        return TABLES_BY_NAME[name]
    except KeyError:
        raise KeyError(f"Unknown table: {name}")
