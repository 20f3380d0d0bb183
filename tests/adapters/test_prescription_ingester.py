"""Unit tests for PrescriptionIngester.

Tests cover:
- CSV and XLSX reading with trimmed headers
- Required-field skips with reasons and row numbers
- Normalization of identifiers, dates and numbers
- Progress reporting
"""

from datetime import date, datetime
from decimal import Decimal

import pandas as pd
import pytest

from rx_loader.adapters.ingesters.prescription_ingester import PrescriptionIngester
from rx_loader.domain.ports import SourceNotFoundError, UnsupportedSourceError
from rx_loader.domain.raw_row import RawRow
from rx_loader.domain.records import PrescriptionEvent


def script_row(**overrides):
    row = {
        "PrescriptionIdentifier": "RX-1",
        "PrescribedDate": "03/01/2024",
        "PatientFirstName": "Jane",
        "PatientLastName": "Doe",
        "PatientDateOfBirth": "1980-07-04",
        "PractitionerFirstName": "Greg",
        "PractitionerLastName": "House",
        "PractitionerNpi": "1234567893",
        "PharmacyName": "Main St Pharmacy",
        "PharmacyNpi": "1234567890",
        "NdcCode": "2322730",
        "DispenseQuantity": "30",
        "Refills": "2",
        "InsuranceCompany": "Acme Health",
        "Bin": " 610014 ",
        "IsMedicaid": "No",
        "PatientSsn": "123-45-6789",
    }
    row.update(overrides)
    return row


@pytest.fixture
def ingester():
    return PrescriptionIngester()


class TestPrescriptionIngester:
    """Test reading scripts extracts."""

    def test_parses_csv_rows(self, ingester, write_csv):
        """A valid row becomes a normalized PrescriptionEvent."""
        source = write_csv("scripts.csv", [script_row()])
        [result] = list(ingester.ingest(source))

        assert result.is_success()
        event = result.value
        assert isinstance(event, PrescriptionEvent)
        assert event.row_number == 1
        assert event.source_file == "scripts.csv"
        assert event.prescribed_date == date(2024, 3, 1)
        assert event.patient_date_of_birth == date(1980, 7, 4)
        assert event.prescriber_npi == 1234567893
        assert event.pharmacy_npi == 1234567890
        assert event.ndc_code == "00002322730"
        assert event.dispense_quantity == Decimal("30")
        assert event.refills == 2
        assert event.primary_bin == "610014"
        assert event.primary_is_medicaid is False

    def test_headers_are_trimmed(self, ingester, write_csv):
        """Whitespace around header names is ignored."""
        row = {f" {key} ": value for key, value in script_row().items()}
        [result] = list(ingester.ingest(write_csv("scripts.csv", [row])))
        assert result.is_success()

    def test_missing_required_column_skips(self, ingester, write_csv):
        """A blank required cell skips the row with a 'missing' reason."""
        source = write_csv("scripts.csv", [script_row(), script_row(PatientLastName="")])
        results = list(ingester.ingest(source))

        assert results[0].is_success()
        assert results[1].is_failure()
        assert results[1].error_details == {
            "row_number": 2,
            "field": "PatientLastName",
            "reason": "missing PatientLastName",
            "source": "scripts.csv",
        }

    def test_unparseable_date_skips(self, ingester, write_csv):
        """An impossible date is reported as invalid, not missing."""
        source = write_csv("scripts.csv", [script_row(PrescribedDate="13/45/2024")])
        [result] = list(ingester.ingest(source))
        assert result.is_failure()
        assert result.error_details["reason"] == "invalid PrescribedDate"
        assert "13/45/2024" in result.error

    def test_ndc_without_digits_is_dropped(self, ingester, write_csv):
        """An NDC with no digits loads as null; the row is kept."""
        [result] = list(ingester.ingest(write_csv("scripts.csv", [script_row(NdcCode="N/A")])))
        assert result.is_success()
        assert result.value.ndc_code is None

    def test_reads_xlsx(self, ingester, tmp_path):
        """Workbook cells keep native types and parse the same way."""
        path = tmp_path / "scripts.xlsx"
        row = script_row(PrescribedDate=datetime(2024, 3, 1), PharmacyNpi=1234567890, Refills=2.0)
        pd.DataFrame([row]).to_excel(path, index=False, engine="openpyxl")

        [result] = list(ingester.ingest(str(path)))
        assert result.is_success()
        assert result.value.prescribed_date == date(2024, 3, 1)
        assert result.value.pharmacy_npi == 1234567890
        assert result.value.refills == 2

    def test_reports_progress(self, write_csv):
        """Progress goes from 0 to 100 with interval updates in between."""
        source = write_csv("scripts.csv", [script_row(PrescriptionIdentifier=f"RX-{i}") for i in range(250)])
        seen = []
        list(PrescriptionIngester(progress_interval=100).ingest(source, progress_callback=lambda m, p: seen.append(p)))
        assert seen == [0, 40, 80, 100]

    def test_progress_interval_clamped(self):
        assert PrescriptionIngester(progress_interval=1).progress_interval == 100
        assert PrescriptionIngester(progress_interval=10000).progress_interval == 500

    def test_missing_file(self, ingester, tmp_path):
        with pytest.raises(SourceNotFoundError):
            list(ingester.ingest(str(tmp_path / "missing.csv")))

    def test_corrupt_workbook(self, ingester, tmp_path):
        """A file that is not a zip archive fails as an unsupported source."""
        path = tmp_path / "scripts.xlsx"
        path.write_bytes(b"not a zip")
        with pytest.raises(UnsupportedSourceError, match="not a valid workbook"):
            list(ingester.ingest(str(path)))

    def test_unsupported_extension(self, ingester, tmp_path):
        path = tmp_path / "scripts.json"
        path.write_text("[]")
        assert ingester.can_ingest(str(path)) is False
        with pytest.raises(UnsupportedSourceError):
            list(ingester.ingest(str(path)))

    def test_matches_headers(self):
        assert PrescriptionIngester.matches_headers(["PrescriptionIdentifier", "PrescribedDate"])
        assert not PrescriptionIngester.matches_headers(["Prescription #"])


class TestParseRow:
    """Test parse_row on raw rows directly."""

    def test_absent_column_is_missing(self, ingester):
        """A column not present in the source at all counts as missing."""
        row = script_row()
        del row["PractitionerLastName"]
        result = ingester.parse_row(RawRow(row, row_number=7), source_file="scripts.csv")
        assert result.is_failure()
        assert result.error_details["reason"] == "missing PractitionerLastName"
        assert result.error_details["row_number"] == 7

    def test_required_fields_checked_in_order(self, ingester):
        """The first failing required field is the one reported."""
        row = script_row(PrescriptionIdentifier="", PatientFirstName="")
        result = ingester.parse_row(RawRow(row, row_number=1))
        assert result.error_details["field"] == "PrescriptionIdentifier"


class TestSourceInfo:
    """Test get_source_info."""

    def test_existing_file(self, ingester, write_csv):
        info = ingester.get_source_info(write_csv("scripts.csv", [script_row()]))
        assert info["format"] == "csv"
        assert info["record_type"] == "prescriptions"
        assert info["size"] > 0

    def test_missing_file(self, ingester, tmp_path):
        assert ingester.get_source_info(str(tmp_path / "missing.xlsx")) is None
