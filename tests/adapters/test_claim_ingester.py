"""Unit tests for ClaimIngester."""

from datetime import date
from decimal import Decimal

import pytest

from rx_loader.adapters.ingesters.claim_ingester import ClaimIngester


def claim_row(**overrides):
    row = {
        "Covered Entity": "County Clinic",
        "OPAID": "dsh123",
        "Pharmacy": "Main St Pharmacy",
        "Pharmacy NABP or NPI": "1234567890",
        "Prescription #": "7000001",
        "Date Rx Written": "01/05/2024",
        "Refill #": "0",
        "Fill Date": "01/06/2024",
        "BIN": "610014",
        "First Name": "Ann",
        "Last Name": "Lee",
        "DOB": "02/03/1975",
        "Prescriber Name": "SMITH, JOHN",
        "Prescriber NPI/DEA": "1234567893",
        "NDC": "0002-3227-30",
        "Drug Name": "Humalog",
        "Qty Dispensed": "10.5",
        "Patient Pay": "$1,234.50",
        "Profit OR Loss": "($12.00)",
        "Trued Up Date": "",
    }
    row.update(overrides)
    return row


@pytest.fixture
def ingester():
    return ClaimIngester()


class TestClaimIngester:
    """Test reading claims reports."""

    def test_parses_claim(self, ingester, write_csv):
        """US dates, currency and NDC separators are normalized."""
        [result] = list(ingester.ingest(write_csv("ClaimReports.csv", [claim_row()])))

        assert result.is_success()
        claim = result.value
        assert claim.prescription_number == "7000001"
        assert claim.date_rx_written == date(2024, 1, 5)
        assert claim.fill_date == date(2024, 1, 6)
        assert claim.refill_number == 0
        assert claim.opaid == "DSH123"
        assert claim.pharmacy_nabp_npi == 1234567890
        assert claim.date_of_birth == date(1975, 2, 3)
        assert claim.ndc == "00002322730"
        assert claim.qty_dispensed == Decimal("10.5")
        assert claim.patient_pay == Decimal("1234.50")
        assert claim.profit_or_loss == Decimal("-12.00")
        assert claim.trued_up_date is None

    def test_impossible_fill_date_skipped(self, ingester, write_csv):
        """A 13/45/2024 fill date skips only that row."""
        rows = [claim_row(), claim_row(**{"Prescription #": "7000002", "Fill Date": "13/45/2024"}), claim_row()]
        results = list(ingester.ingest(write_csv("ClaimReports.csv", rows)))

        assert [r.is_success() for r in results] == [True, False, True]
        assert results[1].error_details["row_number"] == 2
        assert results[1].error_details["reason"] == "invalid Fill Date"

    def test_fractional_refill_number_skipped(self, ingester, write_csv):
        """Refill # must be integral."""
        [result] = list(ingester.ingest(write_csv("ClaimReports.csv", [claim_row(**{"Refill #": "1.5"})])))
        assert result.is_failure()
        assert result.error_details["field"] == "Refill #"

    def test_missing_required_column(self, ingester, write_csv):
        """Files lacking a required column skip every row."""
        row = claim_row()
        del row["Date Rx Written"]
        results = list(ingester.ingest(write_csv("ClaimReports.csv", [row, row])))
        assert all(r.is_failure() for r in results)
        assert {r.error_details["reason"] for r in results} == {"missing Date Rx Written"}

    def test_matches_headers(self):
        assert ClaimIngester.matches_headers(["Prescription #", "Fill Date"])
        assert not ClaimIngester.matches_headers(["PrescriptionIdentifier"])
