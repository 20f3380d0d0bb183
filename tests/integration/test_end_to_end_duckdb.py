"""End-to-end imports through run_import into an in-memory DuckDB.

Tests cover:
- Reference data shared between facts (one pharmacy for NPI and name-only rows)
- Row skips for unparseable required fields
- Idempotent re-imports (nothing imported, nothing created)
- Partially conflicting chunks and stores that reject conflicting chunks wholesale
- Import log recording
"""

import pytest

from rx_loader.domain.records import EntityKind, ImportStatus, RecordType
from rx_loader.main import run_import

SCRIPT_COLUMNS = [
    "PrescriptionIdentifier", "PrescribedDate", "PatientFirstName", "PatientLastName", "PatientMrn",
    "PractitionerLastName", "PractitionerNpi", "OrganizationIdentifier", "LocationIdentifier", "LocationName",
    "PharmacyName", "PharmacyNpi", "NdcCode", "MedicationName", "InsuranceCompany", "Bin", "Pcn",
]


def script(identifier, **overrides):
    row = {
        "PrescriptionIdentifier": identifier,
        "PrescribedDate": "03/01/2024",
        "PatientFirstName": "Jane",
        "PatientLastName": "Doe",
        "PatientMrn": "MRN-1",
        "PractitionerLastName": "House",
        "PractitionerNpi": "1234567893",
        "OrganizationIdentifier": "ORG1",
        "LocationIdentifier": "LOC1",
        "LocationName": "Main Campus",
        "PharmacyName": "Main St Pharmacy",
        "PharmacyNpi": "1234567890",
        "NdcCode": "00002-3227-30",
        "MedicationName": "Humalog",
        "InsuranceCompany": "Acme Health",
        "Bin": "610014",
        "Pcn": "ADV",
    }
    row.update(overrides)
    return row


def claim(number, **overrides):
    row = {
        "OPAID": "DSH123",
        "Pharmacy": "Corner Drugs",
        "Pharmacy NABP or NPI": "312345",
        "Prescription #": number,
        "Date Rx Written": "01/05/2024",
        "Refill #": "0",
        "Fill Date": "01/06/2024",
        "First Name": "Ann",
        "Last Name": "Lee",
        "DOB": "02/03/1975",
        "Prescriber Name": "SMITH, JOHN",
        "Prescriber NPI/DEA": "AS1234563",
        "NDC": "00093015001",
        "Patient Pay": "$10.00",
    }
    row.update(overrides)
    return row


@pytest.fixture
def import_file(duckdb_storage):
    def _import(source, **kwargs):
        kwargs.setdefault("record_import_log", False)
        return run_import(source, duckdb_storage, **kwargs)
    return _import


class TestPrescriptionImport:
    """Importing scripts extracts."""

    def test_name_only_pharmacy_shares_id(self, import_file, duckdb_storage, write_csv):
        """A row naming the pharmacy without an NPI links to the NPI row's pharmacy."""
        source = write_csv("scripts.csv", [
            script("RX-1"),
            script("RX-2", PharmacyNpi=""),
        ], columns=SCRIPT_COLUMNS)
        summary = import_file(source)

        assert summary.status is ImportStatus.SUCCESS
        assert summary.record_type is RecordType.PRESCRIPTIONS
        assert summary.records_imported == 2
        assert summary.reference_data_created[EntityKind.PHARMACY] == 1

        pharmacies = duckdb_storage.bulk_read("pharmacies", ["npi_number"]).value
        assert [p["npi_number"] for p in pharmacies] == [1234567890]
        facts = duckdb_storage.bulk_read("prescriptions", ["pharmacy_id", "location_id"]).value
        assert {f["pharmacy_id"] for f in facts} == {pharmacies[0]["id"]}

        [location] = duckdb_storage.bulk_read("locations", ["covered_entity_id"]).value
        [organization] = duckdb_storage.bulk_read("covered_entities", ["opaid"]).value
        assert location["covered_entity_id"] == organization["id"]

    def test_reimport_is_idempotent(self, import_file, duckdb_storage, write_csv):
        """Importing the same file twice imports and creates nothing the second time."""
        source = write_csv("scripts.csv", [script(f"RX-{i}") for i in range(1, 4)], columns=SCRIPT_COLUMNS)
        first = import_file(source)
        second = import_file(source)

        assert first.records_imported == 3
        assert second.records_imported == 0
        assert second.records_skipped == second.total_records == 3
        assert sum(second.reference_data_created.values()) == 0
        assert len(duckdb_storage.bulk_read("prescriptions", []).value) == 3

    def test_partially_conflicting_chunk(self, import_file, duckdb_storage, write_csv):
        """Rows already loaded are skipped; the rest of their chunk loads."""
        import_file(write_csv("first.csv", [script("RX-2"), script("RX-4")], columns=SCRIPT_COLUMNS))
        summary = import_file(
            write_csv("second.csv", [script(f"RX-{i}") for i in range(1, 6)], columns=SCRIPT_COLUMNS),
            load_chunk_size=5,
        )
        assert summary.records_imported == 3
        assert summary.skip_reasons == {"already exists": 2}
        assert summary.status is ImportStatus.PARTIAL
        assert len(duckdb_storage.bulk_read("prescriptions", []).value) == 5

    def test_wholesale_rejecting_store(self, strict_storage, write_csv):
        """A store that rejects a conflicting chunk persists nothing from it."""
        strict_storage.seed("prescriptions", prescription_identifier="RX-1")
        source = write_csv(
            "scripts.csv", [script(f"RX-{i}") for i in range(1, 5)], columns=SCRIPT_COLUMNS
        )
        summary = run_import(source, strict_storage, load_chunk_size=2, record_import_log=False)

        assert summary.records_imported == 2
        assert summary.skip_reasons == {"chunk rejected on conflict": 2}
        persisted = sorted(row["prescription_identifier"] for row in strict_storage.tables["prescriptions"])
        assert persisted == ["RX-1", "RX-3", "RX-4"]


class TestClaimImport:
    """Importing claims reports."""

    def test_bad_fill_date_row_skipped(self, import_file, duckdb_storage, write_csv):
        """Only the row with the impossible date is skipped."""
        source = write_csv("ClaimReports.csv", [
            claim("7000001"),
            claim("7000002", **{"Fill Date": "13/45/2024"}),
            claim("7000003"),
        ])
        summary = import_file(source)

        assert summary.status is ImportStatus.PARTIAL
        assert summary.record_type is RecordType.CLAIMS
        assert summary.total_records == 3
        assert summary.records_imported == 2
        assert summary.skip_reasons == {"invalid Fill Date": 1}
        assert summary.errors[0].row == 2

        [prescriber] = duckdb_storage.bulk_read("prescribers", ["first_name", "last_name", "dea_number"]).value
        assert (prescriber["first_name"], prescriber["last_name"]) == ("JOHN", "SMITH")
        assert prescriber["dea_number"] == "AS1234563"
        [pharmacy] = duckdb_storage.bulk_read("pharmacies", ["nabp_number"]).value
        assert pharmacy["nabp_number"] == 312345

    def test_progress_reaches_100(self, import_file, write_csv):
        seen = []
        import_file(write_csv("ClaimReports.csv", [claim("7000001")]), progress_callback=lambda m, p: seen.append(p))
        assert seen == sorted(seen)
        assert seen[-1] == 100


class TestImportLog:
    """Run records in import_logs."""

    def test_run_is_logged(self, duckdb_storage, write_csv):
        source = write_csv("scripts.csv", [script("RX-1")], columns=SCRIPT_COLUMNS)
        summary = run_import(source, duckdb_storage, record_import_log=True)

        [entry] = duckdb_storage.bulk_read(
            "import_logs", ["file_name", "status", "records_imported", "pharmacies_created"]
        ).value
        assert entry["file_name"] == "scripts.csv"
        assert entry["status"] == summary.status.value
        assert entry["records_imported"] == 1
        assert entry["pharmacies_created"] == 1

    def test_missing_file_raises(self, duckdb_storage, tmp_path):
        from rx_loader.domain.ports import SourceNotFoundError

        with pytest.raises(SourceNotFoundError):
            run_import(str(tmp_path / "missing.csv"), duckdb_storage)

    @pytest.mark.parametrize("record_type", [None, RecordType.PRESCRIPTIONS])
    def test_corrupt_workbook_raises(self, duckdb_storage, tmp_path, record_type):
        """A broken workbook fails the same way whether or not the type is given."""
        from rx_loader.domain.ports import UnsupportedSourceError

        source = tmp_path / "scripts.xlsx"
        source.write_bytes(b"not a zip")
        with pytest.raises(UnsupportedSourceError):
            run_import(str(source), duckdb_storage, record_type=record_type)
