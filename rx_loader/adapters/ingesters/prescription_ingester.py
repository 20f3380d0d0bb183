"""Prescription (scripts) extract ingester.

Reads the combined scripts export: one row per prescription with the
patient, practitioner, location, pharmacy, drug and up to two insurance plans
inlined. The patient SSN column is present in the export and intentionally
never read.
"""

from rx_loader.adapters.ingesters.tabular_ingester import ColumnSpec, TabularIngester
from rx_loader.domain.normalizers import (
    normalize_boolean,
    normalize_date,
    normalize_decimal,
    normalize_identifier,
    normalize_integer,
    normalize_ndc,
    normalize_text,
    normalize_timestamp,
)
from rx_loader.domain.records import PrescriptionEvent, RecordType

IDENTIFYING_HEADER = "PrescriptionIdentifier"

PRESCRIPTION_COLUMNS: tuple[ColumnSpec, ...] = (
    # required, checked in this order
    ColumnSpec("prescription_identifier", "PrescriptionIdentifier", normalize_text, required=True),
    ColumnSpec("prescribed_date", "PrescribedDate", normalize_date, required=True),
    ColumnSpec("patient_first_name", "PatientFirstName", normalize_text, required=True),
    ColumnSpec("patient_last_name", "PatientLastName", normalize_text, required=True),
    ColumnSpec("prescriber_last_name", "PractitionerLastName", normalize_text, required=True),

    ColumnSpec("organization_identifier", "OrganizationIdentifier", normalize_text),
    ColumnSpec("encounter_fin", "EncounterFin", normalize_integer),
    ColumnSpec("encounter_start", "EncounterStartDateTime", normalize_timestamp),
    ColumnSpec("encounter_end", "EncounterEndDateTime", normalize_timestamp),

    ColumnSpec("patient_mrn", "PatientMrn", normalize_text),
    ColumnSpec("patient_middle_name", "PatientMiddleName", normalize_text),
    ColumnSpec("patient_suffix", "PatientSuffix", normalize_text),
    ColumnSpec("patient_date_of_birth", "PatientDateOfBirth", normalize_date),

    ColumnSpec("prescriber_first_name", "PractitionerFirstName", normalize_text),
    ColumnSpec("prescriber_middle_name", "PractitionerMiddleName", normalize_text),
    ColumnSpec("prescriber_suffix", "PractitionerSuffix", normalize_text),
    ColumnSpec("prescriber_npi", "PractitionerNpi", normalize_integer),
    ColumnSpec("prescriber_dea_number", "PractitionerDeaNumber", normalize_identifier),

    ColumnSpec("location_identifier", "LocationIdentifier", normalize_text),
    ColumnSpec("location_name", "LocationName", normalize_text),

    ColumnSpec("pharmacy_name", "PharmacyName", normalize_text),
    ColumnSpec("pharmacy_npi", "PharmacyNpi", normalize_integer),
    ColumnSpec("pharmacy_nabp", "PharmacyNabp", normalize_integer),

    ColumnSpec("transmission_method", "TransmissionMethod", normalize_text),
    ColumnSpec("status", "Status", normalize_text),
    ColumnSpec("ndc_code", "NdcCode", normalize_ndc),
    ColumnSpec("medication_name", "MedicationName", normalize_text),
    ColumnSpec("dispense_quantity", "DispenseQuantity", normalize_decimal),
    ColumnSpec("dispense_quantity_unit", "DispenseQuantityUnit", normalize_text),
    ColumnSpec("refills", "Refills", normalize_integer),
    ColumnSpec("days_supply", "DaysSupply", normalize_integer),
    ColumnSpec("frequency", "Frequency", normalize_text),
    ColumnSpec("dose", "Dose", normalize_text),
    ColumnSpec("dose_units", "DoseUnits", normalize_text),
    ColumnSpec("drug_form", "DrugForm", normalize_text),
    ColumnSpec("route_of_administration", "RouteOfAdministration", normalize_text),

    ColumnSpec("primary_insurance_company", "InsuranceCompany", normalize_text),
    ColumnSpec("primary_group", "Group", normalize_text),
    ColumnSpec("primary_subscriber_number", "SubscriberNumber", normalize_text),
    ColumnSpec("primary_bin", "Bin", normalize_identifier),
    ColumnSpec("primary_pcn", "Pcn", normalize_identifier),
    ColumnSpec("primary_is_medicaid", "IsMedicaid", normalize_boolean),

    ColumnSpec("secondary_insurance_company", "SecondaryInsuranceCompany", normalize_text),
    ColumnSpec("secondary_group", "SecondaryGroup", normalize_text),
    ColumnSpec("secondary_subscriber_number", "SecondarySubscriberNumber", normalize_text),
    ColumnSpec("secondary_bin", "SecondaryBin", normalize_identifier),
    ColumnSpec("secondary_pcn", "SecondaryPcn", normalize_identifier),
    ColumnSpec("secondary_is_medicaid", "SecondaryIsMedicaid", normalize_boolean),
)


class PrescriptionIngester(TabularIngester):
    """Parses scripts extracts into PrescriptionEvent records.

    Example Usage:
        ```python
        ingester = PrescriptionIngester()
        for result in ingester.ingest("combinedscript.xlsx"):
            if result.is_success():
                event = result.value
        ```
    """

    record_type = RecordType.PRESCRIPTIONS
    record_model = PrescriptionEvent
    column_specs = PRESCRIPTION_COLUMNS

    @classmethod
    def matches_headers(cls, headers: list[str]) -> bool:
        return IDENTIFYING_HEADER in headers
